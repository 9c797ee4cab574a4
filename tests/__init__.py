"""Test package for the cognitive test engines.

Core engine tests drive a fake clock and pump timers by hand, so every run is
deterministic. The UI smoke tests use pygame's dummy video driver to avoid
opening real windows. To run these tests, execute ``pytest`` from the project
root.
"""
