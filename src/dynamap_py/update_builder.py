from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import ValidationError


@dataclass(frozen=True)
class Update:
    op: str
    values: tuple[Any, ...] = ()


def increment(n: int | float | Decimal = 1) -> Update:
    return Update(op="increment", values=(n,))


def decrement(n: int | float | Decimal = 1) -> Update:
    return Update(op="decrement", values=(n,))


def append_list(*values: Any) -> Update:
    return Update(op="append_list", values=tuple(values))


def remove() -> Update:
    return Update(op="remove")


def add_set(*values: Any) -> Update:
    return Update(op="add_set", values=tuple(values))


def delete_set(*values: Any) -> Update:
    return Update(op="delete_set", values=tuple(values))


@dataclass(frozen=True)
class UpdateExpression:
    expression: str
    names: dict[str, str]
    values: dict[str, Any]
    return_values: str = "ALL_NEW"


class UpdateBuilder:
    """Accumulates SET/ADD/REMOVE/DELETE clauses.

    Every attribute touched takes one index ``N`` and is written as
    ``#aN`` with its value (if any) as ``:vN``.
    """

    def __init__(self, start_index: int = 0) -> None:
        self._index = start_index
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._set: list[str] = []
        self._add: list[str] = []
        self._remove: list[str] = []
        self._delete: list[str] = []

    @property
    def next_index(self) -> int:
        return self._index

    @property
    def empty(self) -> bool:
        return not (self._set or self._add or self._remove or self._delete)

    def _refs(self, attribute_name: str, value: Any = None, *, with_value: bool = True) -> tuple[str, str]:
        n = self._index
        self._index += 1
        name_ref = f"#a{n}"
        value_ref = f":v{n}"
        self._names[name_ref] = attribute_name
        if with_value:
            self._values[value_ref] = value
        return name_ref, value_ref

    def set(self, attribute_name: str, value: Any) -> UpdateBuilder:
        name, ref = self._refs(attribute_name, value)
        self._set.append(f"{name} = {ref}")
        return self

    def apply(self, attribute_name: str, update: Update) -> UpdateBuilder:
        op = update.op
        vals = update.values

        if op in {"increment", "decrement"}:
            (amount,) = vals
            if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
                raise ValidationError(f"{op} requires a numeric value")
            name, ref = self._refs(attribute_name, amount)
            sign = "+" if op == "increment" else "-"
            self._set.append(f"{name} = {name} {sign} {ref}")
            return self

        if op == "append_list":
            if not vals:
                return self
            name, ref = self._refs(attribute_name, list(vals))
            self._set.append(f"{name} = list_append({name}, {ref})")
            return self

        if op == "remove":
            name, _ = self._refs(attribute_name, with_value=False)
            self._remove.append(name)
            return self

        if op in {"add_set", "delete_set"}:
            if not vals:
                return self
            name, ref = self._refs(attribute_name, set(vals))
            if op == "add_set":
                self._add.append(f"{name} {ref}")
            else:
                self._delete.append(f"{name} {ref}")
            return self

        raise ValidationError(f"unsupported update operation: {op}")

    def build(self) -> UpdateExpression:
        parts: list[str] = []
        if self._set:
            parts.append("SET " + ", ".join(self._set))
        if self._add:
            parts.append("ADD " + ", ".join(self._add))
        if self._remove:
            parts.append("REMOVE " + ", ".join(self._remove))
        if self._delete:
            parts.append("DELETE " + ", ".join(self._delete))
        if not parts:
            raise ValidationError("no updates provided")
        return UpdateExpression(
            expression=" ".join(parts),
            names=dict(self._names),
            values=dict(self._values),
        )
