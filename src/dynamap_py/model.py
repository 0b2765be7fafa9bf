from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import MISSING, dataclass, field, replace
from types import MappingProxyType
from typing import Any, Literal

from .errors import ConfigurationError, ValidationError
from .templates import has_adjacent_placeholders, template_attributes

type KeyType = Literal["S", "N"]
type HookKind = Literal["pre_put", "pre_update", "post_load"]

HOOK_KINDS: tuple[HookKind, ...] = ("pre_put", "pre_update", "post_load")
HOOK_MARKER = "__dynamap_hooks__"


@dataclass(frozen=True)
class KeyAttribute:
    name: str
    type: KeyType = "S"


@dataclass(frozen=True)
class GlobalIndexAttributes:
    partition_key: KeyAttribute
    sort_key: KeyAttribute | None = None


@dataclass(frozen=True)
class TableDefinition:
    """Physical layout of a table: key attribute names/types and its indexes.

    ``sort_key=None`` declares a partition-key-only table. ``lsi`` and ``gsi``
    left as ``None`` mean the table has no index configuration at all.
    """

    name: str
    partition_key: KeyAttribute = KeyAttribute("pk")
    sort_key: KeyAttribute | None = KeyAttribute("sk")
    lsi: Mapping[str, KeyAttribute] | None = None
    gsi: Mapping[str, GlobalIndexAttributes] | None = None


@dataclass(frozen=True)
class GlobalIndexKeys:
    partition_key: str
    sort_key: str | None = None


@dataclass(frozen=True)
class KeyDef:
    name: str
    type: KeyType = "S"
    expression: str = ""
    template_attributes: frozenset[str] = frozenset()


@dataclass(frozen=True)
class GlobalIndex:
    partition_key: KeyDef
    sort_key: KeyDef | None = None


@dataclass(frozen=True)
class AttributeDefinition:
    python_name: str
    attribute_name: str
    type: KeyType | None = None
    annotation: Any = Any


def dynamap_field(
    *,
    name: str | None = None,
    type: KeyType | None = None,
    partition_key: bool = False,
    sort_key: bool = False,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("dynamap_field: cannot set both default and default_factory")
    if type is not None and type not in ("S", "N"):
        raise ValueError(f"dynamap_field: unsupported type: {type!r}")

    opts: dict[str, Any] = {
        "partition_key": partition_key,
        "sort_key": sort_key,
        "ignore": ignore,
    }
    if name is not None:
        opts["name"] = name
    if type is not None:
        opts["type"] = type

    return field(default=default, default_factory=default_factory, metadata={"dynamap": opts})


def _mark_hook[F: Callable[..., Any]](fn: F, kind: HookKind) -> F:
    kinds = tuple(getattr(fn, HOOK_MARKER, ()))
    setattr(fn, HOOK_MARKER, (*kinds, kind))
    return fn


def pre_put[F: Callable[..., Any]](fn: F) -> F:
    return _mark_hook(fn, "pre_put")


def pre_update[F: Callable[..., Any]](fn: F) -> F:
    return _mark_hook(fn, "pre_update")


def post_load[F: Callable[..., Any]](fn: F) -> F:
    return _mark_hook(fn, "post_load")


class Metadata:
    """Mapping metadata of one record class.

    Mutable while the class is being registered; ``finalize`` computes the
    template attributes of every key definition and freezes the object.
    """

    def __init__(self) -> None:
        self.table_name: str | None = None
        self.table: TableDefinition | None = None
        self.partition_key: KeyDef = KeyDef(name="pk")
        self.sort_key: KeyDef | None = KeyDef(name="sk")
        self.lsi: Mapping[str, KeyDef] = {}
        self.gsi: Mapping[str, GlobalIndex] = {}
        self.attributes: Mapping[str, AttributeDefinition] = {}
        self.hooks: Mapping[HookKind, tuple[str, ...]] = {kind: () for kind in HOOK_KINDS}
        self._own_table = False
        self._finalized = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_finalized", False):
            raise ConfigurationError(f"metadata is finalized: cannot set {name}")
        super().__setattr__(name, value)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def key_attributes(self) -> frozenset[str]:
        """Properties stored only through the primary key templates."""
        out = set(self.partition_key.template_attributes)
        if self.sort_key is not None:
            out.update(self.sort_key.template_attributes)
        return frozenset(out)

    def index_keys(self) -> list[KeyDef]:
        out: list[KeyDef] = list(self.lsi.values())
        for index in self.gsi.values():
            out.append(index.partition_key)
            if index.sort_key is not None:
                out.append(index.sort_key)
        return out

    def resolve_index(self, index_name: str | None) -> tuple[KeyDef, KeyDef | None]:
        if index_name is None:
            return self.partition_key, self.sort_key
        if index_name in self.lsi:
            return self.partition_key, self.lsi[index_name]
        if index_name in self.gsi:
            index = self.gsi[index_name]
            return index.partition_key, index.sort_key
        raise ValidationError(f"unknown index: {index_name}")

    def set_table(self, table: TableDefinition) -> None:
        if self._own_table:
            raise ConfigurationError(f"table is already set: {self.table_name}")
        self.table_name = table.name
        self.table = table
        self._own_table = True

    def set_partition_key(self, key_def: KeyDef) -> None:
        self.partition_key = key_def

    def set_sort_key(self, key_def: KeyDef | None) -> None:
        self.sort_key = key_def

    def set_lsi(self, name: str, key_def: KeyDef) -> None:
        self.lsi = {**self.lsi, name: key_def}

    def set_gsi(self, name: str, partition_key: KeyDef, sort_key: KeyDef | None = None) -> None:
        self.gsi = {**self.gsi, name: GlobalIndex(partition_key=partition_key, sort_key=sort_key)}

    def create_attribute(self, name: str, *, store_name: str | None = None, annotation: Any = Any) -> None:
        existing = self.attributes.get(name)
        if existing is None:
            attr = AttributeDefinition(python_name=name, attribute_name=store_name or name, annotation=annotation)
        else:
            attr = replace(
                existing,
                attribute_name=store_name or existing.attribute_name,
                annotation=annotation if annotation is not Any else existing.annotation,
            )
        self.attributes = {**self.attributes, name: attr}

    def set_type(self, name: str, type: KeyType) -> None:
        if name not in self.attributes:
            raise ConfigurationError(f"unknown attribute: {name}")
        self.attributes = {**self.attributes, name: replace(self.attributes[name], type=type)}

    def add_hook(self, kind: HookKind, method_name: str) -> None:
        if kind not in HOOK_KINDS:
            raise ConfigurationError(f"unsupported hook kind: {kind}")
        current = self.hooks[kind]
        if method_name in current:
            return
        self.hooks = {**self.hooks, kind: (*current, method_name)}

    def clone(self) -> Metadata:
        copy = Metadata()
        copy.table_name = self.table_name
        copy.table = self.table
        copy.partition_key = self.partition_key
        copy.sort_key = self.sort_key
        copy.lsi = dict(self.lsi)
        copy.gsi = dict(self.gsi)
        copy.attributes = dict(self.attributes)
        copy.hooks = dict(self.hooks)
        return copy

    def validate(self) -> None:
        if not self.table_name:
            raise ConfigurationError("table name is required")

        if not self.partition_key.expression.strip():
            raise ConfigurationError("partition key expression is required")

        keys: list[tuple[str, KeyDef | None]] = [
            ("partition key", self.partition_key),
            ("sort key", self.sort_key),
        ]
        for name, key_def in self.lsi.items():
            keys.append((f"index {name} sort key", key_def))
        for name, index in self.gsi.items():
            keys.append((f"index {name} partition key", index.partition_key))
            keys.append((f"index {name} sort key", index.sort_key))

        for label, key_def in keys:
            if key_def is None:
                continue
            if not key_def.expression.strip():
                raise ConfigurationError(f"{label} {key_def.name!r} is in use but has no expression")
            if has_adjacent_placeholders(key_def.expression):
                raise ConfigurationError(
                    f"{label} expression {key_def.expression!r} has adjacent placeholders without a separator"
                )

        self.finalize()

    def finalize(self) -> None:
        def resolved(key_def: KeyDef) -> KeyDef:
            return replace(key_def, template_attributes=template_attributes(key_def.expression))

        self.partition_key = resolved(self.partition_key)
        if self.sort_key is not None:
            self.sort_key = resolved(self.sort_key)
        self.lsi = MappingProxyType({name: resolved(kd) for name, kd in self.lsi.items()})
        self.gsi = MappingProxyType(
            {
                name: GlobalIndex(
                    partition_key=resolved(index.partition_key),
                    sort_key=resolved(index.sort_key) if index.sort_key is not None else None,
                )
                for name, index in self.gsi.items()
            }
        )
        self.attributes = MappingProxyType(dict(self.attributes))
        self.hooks = MappingProxyType(dict(self.hooks))
        self._finalized = True
