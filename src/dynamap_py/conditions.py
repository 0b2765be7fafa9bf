from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .errors import ValidationError

type Comparator = Literal["=", "<>", "<", "<=", ">", ">="]

COMPARATORS: frozenset[str] = frozenset({"=", "<>", "<", "<=", ">", ">="})
ATTRIBUTE_TYPES: frozenset[str] = frozenset({"S", "SS", "N", "NS", "B", "BS", "BOOL", "NULL", "L", "M"})


@dataclass(frozen=True)
class Condition:
    op: str
    values: tuple[Any, ...] = ()
    conditions: tuple[Condition, ...] = ()


def equal(value: Any) -> Condition:
    return Condition(op="=", values=(value,))


def not_equal(value: Any) -> Condition:
    return Condition(op="<>", values=(value,))


def less_than(value: Any) -> Condition:
    return Condition(op="<", values=(value,))


def less_than_or_equal(value: Any) -> Condition:
    return Condition(op="<=", values=(value,))


def greater_than(value: Any) -> Condition:
    return Condition(op=">", values=(value,))


def greater_than_or_equal(value: Any) -> Condition:
    return Condition(op=">=", values=(value,))


def between(low: Any, high: Any) -> Condition:
    return Condition(op="between", values=(low, high))


def is_in(*values: Any) -> Condition:
    if len(values) > 100:
        raise ValidationError("IN supports maximum 100 values")
    return Condition(op="in", values=tuple(values))


def attribute_exists() -> Condition:
    return Condition(op="attribute_exists")


def attribute_not_exists() -> Condition:
    return Condition(op="attribute_not_exists")


def attribute_type(type: str) -> Condition:
    if type not in ATTRIBUTE_TYPES:
        raise ValidationError(f"unsupported attribute type: {type}")
    return Condition(op="attribute_type", values=(type,))


def begins_with(value: Any) -> Condition:
    return Condition(op="begins_with", values=(value,))


def contains(value: Any) -> Condition:
    return Condition(op="contains", values=(value,))


def size(comparator: Comparator, value: int) -> Condition:
    if comparator not in COMPARATORS:
        raise ValidationError(f"unsupported size comparator: {comparator}")
    return Condition(op="size", values=(comparator, value))


def and_(*conditions: Condition) -> Condition:
    return Condition(op="AND", conditions=tuple(conditions))


def or_(*conditions: Condition) -> Condition:
    return Condition(op="OR", conditions=tuple(conditions))


def not_(condition: Condition) -> Condition:
    return Condition(op="NOT", conditions=(condition,))


@dataclass(frozen=True)
class ConditionExpression:
    expression: str | None
    names: dict[str, str]
    values: dict[str, Any]


class ConditionBuilder:
    """Accumulates condition fragments and their placeholders.

    Name placeholders (``#a<N>``) are assigned once per attribute name and
    value placeholders (``:v<N>``) once per value, from a single running
    index. A builder whose expression is sent together with another one
    starts at that builder's ``next_index``.
    """

    def __init__(self, start_index: int = 0) -> None:
        self._index = start_index
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._fragments: list[str] = []

    @property
    def next_index(self) -> int:
        return self._index

    def name_ref(self, attribute_name: str) -> str:
        ref = self._names.get(attribute_name)
        if ref is None:
            ref = f"#a{self._index}"
            self._index += 1
            self._names[attribute_name] = ref
        return ref

    def value_ref(self, value: Any) -> str:
        ref = f":v{self._index}"
        self._index += 1
        self._values[ref] = value
        return ref

    def apply(self, attribute_name: str, condition: Condition) -> ConditionBuilder:
        fragment = self._fragment(attribute_name, condition)
        if fragment:
            self._fragments.append(fragment)
        return self

    def build(self) -> ConditionExpression:
        return ConditionExpression(
            expression=" AND ".join(self._fragments) if self._fragments else None,
            names={ref: name for name, ref in self._names.items()},
            values=dict(self._values),
        )

    def _fragment(self, attribute_name: str, cond: Condition) -> str | None:
        op = cond.op
        vals = cond.values

        if op in {"AND", "OR"}:
            parts = [self._fragment(attribute_name, c) for c in cond.conditions]
            joined = [p for p in parts if p]
            if not joined:
                return None
            return "(" + f" {op} ".join(joined) + ")"

        if op == "NOT":
            inner = self._fragment(attribute_name, cond.conditions[0]) if cond.conditions else None
            if not inner:
                return None
            return f"NOT {inner}"

        if op == "in":
            if not vals:
                return None
            name = self.name_ref(attribute_name)
            refs = [self.value_ref(v) for v in vals]
            return f"{name} IN (" + ", ".join(refs) + ")"

        name = self.name_ref(attribute_name)

        if op in COMPARATORS:
            if len(vals) != 1:
                raise ValidationError(f"{op} requires one value")
            return f"{name} {op} {self.value_ref(vals[0])}"

        if op == "between":
            if len(vals) != 2:
                raise ValidationError("BETWEEN requires two values")
            low = self.value_ref(vals[0])
            high = self.value_ref(vals[1])
            return f"{name} BETWEEN {low} AND {high}"

        if op == "attribute_exists":
            return f"attribute_exists({name})"

        if op == "attribute_not_exists":
            return f"attribute_not_exists({name})"

        if op in {"attribute_type", "begins_with", "contains"}:
            if len(vals) != 1:
                raise ValidationError(f"{op} requires one value")
            return f"{op}({name}, {self.value_ref(vals[0])})"

        if op == "size":
            comparator, value = vals
            return f"size({name}) {comparator} {self.value_ref(value)}"

        raise ValidationError(f"unsupported condition operator: {op}")


def merge_expressions(*parts: ConditionExpression) -> tuple[dict[str, str], dict[str, Any]]:
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    for part in parts:
        for k, v in part.names.items():
            if k in names:
                raise ValidationError(f"expression attribute name collision: {k}")
            names[k] = v
        for k, v in part.values.items():
            if k in values:
                raise ValidationError(f"expression attribute value collision: {k}")
            values[k] = v
    return names, values

