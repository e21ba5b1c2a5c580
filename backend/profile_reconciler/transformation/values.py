"""Typed proposed values and their string wire format.

Values travel between the pipeline stages as one of five small frozen
dataclasses. They are turned into strings only at the store boundary:
scalars are written as plain text or JSON scalars, while string arrays and
objects are always written as JSON so any consumer can parse them back.
Reading is tolerant: a stored string that does not parse as the expected
structure is kept as opaque text rather than rejected.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, ClassVar, Literal

ValueKind = Literal["text", "number", "boolean", "string_array", "json_object"]

_TRUE_STRINGS = {"true", "yes", "y", "1", "on", "evet"}
_FALSE_STRINGS = {"false", "no", "n", "0", "off", "hayir", "hayır"}
_DECIMAL_COMMA_RE = re.compile(r"^[+-]?\d+,\d+$")
_GROUPED_THOUSANDS_RE = re.compile(r",\d{3}$")


@dataclass(frozen=True, slots=True)
class TextValue:
    value: str
    kind: ClassVar[str] = "text"


@dataclass(frozen=True, slots=True)
class NumberValue:
    value: int | float
    kind: ClassVar[str] = "number"


@dataclass(frozen=True, slots=True)
class BooleanValue:
    value: bool
    kind: ClassVar[str] = "boolean"


@dataclass(frozen=True, slots=True)
class StringArrayValue:
    value: tuple[str, ...]
    kind: ClassVar[str] = "string_array"


@dataclass(frozen=True, slots=True)
class JsonObjectValue:
    value: dict[str, Any]
    kind: ClassVar[str] = "json_object"


ProposedValue = TextValue | NumberValue | BooleanValue | StringArrayValue | JsonObjectValue

VALUE_KINDS: tuple[str, ...] = ("text", "number", "boolean", "string_array", "json_object")


def serialize_value(value: ProposedValue) -> str:
    """Render a typed value in its stored string form."""

    if isinstance(value, TextValue):
        return value.value
    if isinstance(value, BooleanValue):
        return "true" if value.value else "false"
    if isinstance(value, NumberValue):
        return json.dumps(value.value)
    if isinstance(value, StringArrayValue):
        return json.dumps(list(value.value), ensure_ascii=False)
    if isinstance(value, JsonObjectValue):
        return json.dumps(value.value, ensure_ascii=False, sort_keys=True, default=str)
    raise TypeError(f"Unsupported proposed value type: {type(value).__name__}")


def deserialize_value(raw: str | None, kind: str | None = None) -> ProposedValue | None:
    """Parse a stored string back into a typed value.

    With a known ``kind`` the string is parsed as that kind; without one the
    string is parsed as JSON and typed by its shape. Anything that does not
    parse is returned as ``TextValue``.
    """

    if raw is None:
        return None
    if kind == "text":
        return TextValue(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return TextValue(raw)
    if kind is None:
        if parsed is None:
            return TextValue(raw)
        return from_python(parsed)
    try:
        return coerce_to_kind(parsed, kind)
    except (TypeError, ValueError):
        return TextValue(raw)


def from_python(obj: Any) -> ProposedValue:
    """Wrap a plain Python value in the matching typed value."""

    if isinstance(obj, bool):
        return BooleanValue(obj)
    if isinstance(obj, (int, float)):
        return NumberValue(obj)
    if isinstance(obj, str):
        return TextValue(obj)
    if isinstance(obj, (list, tuple, set)):
        return StringArrayValue(tuple(str(item) for item in obj))
    if isinstance(obj, dict):
        return JsonObjectValue({str(key): item for key, item in obj.items()})
    if isinstance(obj, (date, datetime)):
        return TextValue(obj.isoformat())
    return TextValue(str(obj))


def coerce_to_kind(obj: Any, kind: str) -> ProposedValue:
    """Convert a plain Python value to the requested kind or raise ``ValueError``."""

    if kind == "text":
        if isinstance(obj, (dict, list)):
            return TextValue(json.dumps(obj, ensure_ascii=False))
        return TextValue(str(obj))
    if kind == "number":
        return NumberValue(to_number(obj))
    if kind == "boolean":
        return BooleanValue(to_boolean(obj))
    if kind == "string_array":
        if isinstance(obj, (list, tuple)):
            return StringArrayValue(tuple(str(item) for item in obj))
        return StringArrayValue((str(obj),))
    if kind == "json_object":
        if not isinstance(obj, dict):
            raise ValueError("Expected a JSON object")
        return JsonObjectValue({str(key): item for key, item in obj.items()})
    raise ValueError(f"Unknown value kind: {kind}")


def to_number(obj: Any) -> int | float:
    if isinstance(obj, bool):
        raise ValueError("Boolean is not a number")
    if isinstance(obj, (int, float)):
        number = obj
    elif isinstance(obj, str):
        text = _normalize_decimal_comma(obj.strip())
        if not text:
            raise ValueError("Empty string is not a number")
        number = float(text)
        if number.is_integer() and "." not in text and "e" not in text.lower():
            number = int(number)
    else:
        raise ValueError(f"Cannot convert {type(obj).__name__} to a number")
    if isinstance(number, float) and not math.isfinite(number):
        raise ValueError("Number must be finite")
    return number


def _normalize_decimal_comma(text: str) -> str:
    """Accept ``"1,5"`` as a decimal; reject digit grouping such as ``"1,000"`` or ``"1.000,5"``."""

    if "," not in text:
        return text
    if not _DECIMAL_COMMA_RE.match(text) or _GROUPED_THOUSANDS_RE.search(text):
        raise ValueError(f"Ambiguous number format: {text!r}")
    return text.replace(",", ".")


def to_boolean(obj: Any) -> bool:
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, (int, float)):
        return bool(obj)
    if isinstance(obj, str):
        lowered = obj.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Cannot interpret {obj!r} as a boolean")


def to_python(value: ProposedValue) -> Any:
    if isinstance(value, StringArrayValue):
        return list(value.value)
    return value.value


def is_empty_answer(answer: Any) -> bool:
    """Return True for answers that should never produce proposals."""

    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple, set, dict)):
        return len(answer) == 0
    return False
