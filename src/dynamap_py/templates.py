"""Key templates.

A key template mixes static text with ``{{property}}`` placeholders, for
example ``"VER:{{version}}#REV:{{revision}}"``. Templates turn record
properties into key values (``substitute``), build key prefixes from a partial
set of properties (``partial_substitute``) and split stored key values back
into properties (``parse_key``).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from .conditions import Condition
from .errors import ValidationError
from .update_builder import Update

if TYPE_CHECKING:
    from .model import KeyDef, KeyType

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class Segment:
    text: str
    placeholder: bool = False


@dataclass(frozen=True)
class KeyTemplate:
    expression: str
    segments: tuple[Segment, ...]

    @property
    def placeholders(self) -> tuple[str, ...]:
        return tuple(seg.text for seg in self.segments if seg.placeholder)

    @property
    def has_static(self) -> bool:
        return any(not seg.placeholder for seg in self.segments)

    @property
    def is_bare(self) -> bool:
        return len(self.segments) == 1 and self.segments[0].placeholder


@lru_cache(maxsize=256)
def parse_template(expression: str) -> KeyTemplate:
    segments: list[Segment] = []
    pos = 0
    for match in _PLACEHOLDER.finditer(expression):
        if match.start() > pos:
            segments.append(Segment(expression[pos : match.start()]))
        segments.append(Segment(match.group(1), placeholder=True))
        pos = match.end()
    if pos < len(expression):
        segments.append(Segment(expression[pos:]))
    return KeyTemplate(expression=expression, segments=tuple(segments))


def template_attributes(expression: str) -> frozenset[str]:
    return frozenset(parse_template(expression).placeholders)


def has_adjacent_placeholders(expression: str) -> bool:
    return "}}{{" in expression


def read_value(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def to_number(value: Any) -> int | Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"not a number: {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value))
    except InvalidOperation as err:
        raise ValidationError(f"not a number: {value!r}") from err
    if number.is_finite() and number == number.to_integral_value():
        return int(number)
    return number


def coerce_to_type(value: Any, type: KeyType | None) -> Any:
    if value is None or type is None:
        return value
    if type == "N":
        return to_number(value)
    if isinstance(value, str):
        return value
    return key_text(value)


def key_text(value: Any) -> str:
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(int(value))
    return str(value)


def is_plain(value: Any) -> bool:
    return value is not None and not isinstance(value, (Condition, Update))


def substitute(source: Any, key_def: KeyDef) -> Any:
    parts: list[str] = []
    for seg in parse_template(key_def.expression).segments:
        if not seg.placeholder:
            parts.append(seg.text)
            continue
        value = read_value(source, seg.text)
        if not is_plain(value):
            raise ValidationError(f"missing value for {seg.text!r} in key {key_def.name!r}")
        parts.append(key_text(value))
    return coerce_to_type("".join(parts), key_def.type)


def partial_substitute(spec: Any, key_def: KeyDef) -> Any | None:
    """Key prefix from the leading placeholders that have plain values.

    Stops at the first placeholder that is missing or holds a condition; the
    static text in front of that placeholder is dropped. When every
    placeholder is supplied the trailing static text is kept.
    """
    parts: list[str] = []
    static = ""
    complete = True
    for seg in parse_template(key_def.expression).segments:
        if not seg.placeholder:
            static = seg.text
            continue
        value = read_value(spec, seg.text)
        if not is_plain(value):
            complete = False
            break
        parts.append(static + key_text(value))
        static = ""
    if complete:
        parts.append(static)

    prefix = "".join(parts)
    if not prefix:
        return None
    return coerce_to_type(prefix, key_def.type)


def supplied_fragments(spec: Any, key_def: KeyDef) -> list[tuple[int, str]]:
    """(placeholder position, text) for every placeholder with a plain value.

    The text is the value framed by the static text around the placeholder.
    """
    segments = parse_template(key_def.expression).segments
    out: list[tuple[int, str]] = []
    position = 0
    for i, seg in enumerate(segments):
        if not seg.placeholder:
            continue
        value = read_value(spec, seg.text)
        if is_plain(value):
            before = segments[i - 1].text if i > 0 and not segments[i - 1].placeholder else ""
            after = segments[i + 1].text if i + 1 < len(segments) and not segments[i + 1].placeholder else ""
            out.append((position, before + key_text(value) + after))
        position += 1
    return out


def parse_key(
    value: Any,
    key_def: KeyDef,
    types: Mapping[str, KeyType | None] | None = None,
) -> dict[str, Any]:
    template = parse_template(key_def.expression)
    names = template.placeholders
    if not names:
        return {}

    def coerce(name: str, raw: Any) -> Any:
        declared = (types or {}).get(name)
        return coerce_to_type(raw, declared or key_def.type)

    if not isinstance(value, str) or not template.has_static:
        if len(names) != 1:
            raise ValidationError(f"cannot split key value {value!r} with template {key_def.expression!r}")
        return {names[0]: coerce(names[0], value)}

    out: dict[str, Any] = {}
    cursor = 0
    pending: str | None = None
    for seg in template.segments:
        if seg.placeholder:
            pending = seg.text
            continue
        idx = value.find(seg.text, cursor)
        if idx < 0 or (pending is None and idx != cursor):
            raise ValidationError(f"key value {value!r} does not match template {key_def.expression!r}")
        if pending is not None:
            out[pending] = coerce(pending, value[cursor:idx])
            pending = None
        cursor = idx + len(seg.text)

    if pending is not None:
        out[pending] = coerce(pending, value[cursor:])
    return out
