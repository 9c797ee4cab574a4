"""Settings resolver for cognitive test configurations.

Question definitions carry test overrides as an ordered list of ``{label, value}``
pairs, usually with every value as a string. The resolver folds those pairs onto
a variant's default configuration (a frozen dataclass):

- numeric-looking strings become floats, ``"true"``/``"false"`` become booleans;
- comma-containing strings become a trimmed list, and a single string assigned to
  a list-typed field becomes a one-element list;
- later entries for the same label win;
- anything malformed is logged and skipped, so the field keeps its prior value.

Nothing in here raises to the caller.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConfigurationError(ValueError):
    """A single override could not be applied to its field."""


@dataclass(frozen=True, slots=True)
class SettingOption:
    label: str
    value: object


def setting(default: Any, *, aliases: tuple[str, ...] = (), minimum: float | None = None,
            maximum: float | None = None, exclusive_minimum: bool = False) -> Any:
    """Declare a config field with resolver metadata."""

    meta = {
        "aliases": tuple(aliases),
        "minimum": minimum,
        "maximum": maximum,
        "exclusive_minimum": bool(exclusive_minimum),
    }
    return dataclasses.field(default=default, metadata=meta)


_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def parse_setting_value(raw: object) -> object:
    """Parse one raw override value without knowledge of the target field."""

    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if _NUMBER_RE.match(text):
        return float(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if "," in text:
        return [part.strip() for part in text.split(",") if part.strip() != ""]
    return text


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def _label_index(config_type: type) -> dict[str, dataclasses.Field[Any]]:
    index: dict[str, dataclasses.Field[Any]] = {}
    for f in dataclasses.fields(config_type):
        index[f.name] = f
        index[_camel(f.name)] = f
        for alias in f.metadata.get("aliases", ()):
            index[alias] = f
    return index


def _coerce(f: dataclasses.Field[Any], default: object, raw: object) -> object:
    # Symbol lists keep their raw text so "5" stays "5" rather than "5.0".
    if isinstance(default, tuple):
        if isinstance(raw, str):
            items = raw.split(",") if "," in raw else [raw]
        elif isinstance(raw, (list, tuple)):
            items = list(raw)
        else:
            items = [raw]
        items = [str(v).strip() for v in items]
        items = [v for v in items if v != ""]
        if not items:
            raise ConfigurationError(f"{f.name}: empty symbol list")
        return tuple(items)

    parsed = parse_setting_value(raw)

    # bool is checked before int/float: bool is a subclass of int.
    if isinstance(default, bool):
        if isinstance(parsed, bool):
            return parsed
        raise ConfigurationError(f"{f.name}: expected true/false, got {parsed!r}")

    if isinstance(default, (int, float)):
        if isinstance(parsed, bool) or not isinstance(parsed, (int, float)):
            raise ConfigurationError(f"{f.name}: expected a number, got {parsed!r}")
        value = float(parsed)
        if not math.isfinite(value):
            raise ConfigurationError(f"{f.name}: non-finite value {parsed!r}")
        lo = f.metadata.get("minimum")
        hi = f.metadata.get("maximum")
        if lo is not None:
            if f.metadata.get("exclusive_minimum") and value <= lo:
                raise ConfigurationError(f"{f.name}: must be > {lo}, got {value}")
            if value < lo:
                raise ConfigurationError(f"{f.name}: must be >= {lo}, got {value}")
        if hi is not None and value > hi:
            raise ConfigurationError(f"{f.name}: must be <= {hi}, got {value}")
        if isinstance(default, int):
            if not value.is_integer():
                raise ConfigurationError(f"{f.name}: expected an integer, got {parsed!r}")
            return int(value)
        return value

    if isinstance(default, str):
        return str(parsed)

    raise ConfigurationError(f"{f.name}: unsupported field type {type(default).__name__}")


def _iter_pairs(options: object) -> Iterable[tuple[object, object]]:
    if options is None:
        return
    if isinstance(options, Mapping):
        yield from options.items()
        return
    if isinstance(options, (str, bytes)):
        logger.warning("Ignoring settings overrides given as a bare string")
        return
    try:
        entries = iter(options)  # type: ignore[call-overload]
    except TypeError:
        logger.warning("Ignoring settings overrides of type %s", type(options).__name__)
        return
    for entry in entries:
        if isinstance(entry, SettingOption):
            yield entry.label, entry.value
        elif isinstance(entry, Mapping):
            if "label" not in entry or "value" not in entry:
                logger.debug("Skipping option without label/value: %r", entry)
                continue
            yield entry["label"], entry["value"]
        elif isinstance(entry, (tuple, list)) and len(entry) == 2:
            yield entry[0], entry[1]
        else:
            logger.debug("Skipping malformed option: %r", entry)


def resolve_settings(defaults: T, options: object) -> T:
    """Fold ``options`` onto ``defaults`` (a dataclass instance) and return a new instance.

    Entries apply in order, so the last one for a field wins. A malformed entry
    is logged and skipped: the field keeps its prior value, which is an earlier
    override when there is one and the default otherwise.
    """

    if not dataclasses.is_dataclass(defaults) or isinstance(defaults, type):
        raise TypeError("defaults must be a dataclass instance")

    index = _label_index(type(defaults))
    values: dict[str, object] = {f.name: getattr(defaults, f.name) for f in dataclasses.fields(defaults)}

    for label, raw in _iter_pairs(options):
        if not isinstance(label, str) or label.strip() == "":
            logger.debug("Skipping option with invalid label %r", label)
            continue
        f = index.get(label.strip())
        if f is None:
            logger.debug("Ignoring unknown setting %r for %s", label, type(defaults).__name__)
            continue
        if raw is None:
            continue
        try:
            values[f.name] = _coerce(f, getattr(defaults, f.name), raw)
        except ConfigurationError as exc:
            logger.warning("Ignoring setting %r=%r: %s", label, raw, exc)

    return dataclasses.replace(defaults, **values)


def options_from_question(question: Mapping[str, Any] | None) -> list[SettingOption]:
    """Extract the override list from a question definition mapping."""

    if not question:
        return []
    raw = question.get("options")
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[SettingOption] = []
    for entry in raw:
        if isinstance(entry, Mapping) and isinstance(entry.get("label"), str) and "value" in entry:
            out.append(SettingOption(label=entry["label"], value=entry["value"]))
    return out
