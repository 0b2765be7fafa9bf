from __future__ import annotations

import logging
import threading
import types
from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from decimal import Decimal
from typing import Any, Union, cast, get_args, get_origin, get_type_hints

from .errors import ConfigurationError
from .model import (
    HOOK_MARKER,
    GlobalIndexKeys,
    KeyDef,
    KeyType,
    Metadata,
    TableDefinition,
)

logger = logging.getLogger(__name__)

type IndexKeys = str | GlobalIndexKeys


def infer_type(annotation: Any) -> KeyType | None:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        members = [a for a in get_args(annotation) if a is not type(None)]
        if len(members) != 1:
            return None
        annotation = members[0]
    if annotation in (int, float, Decimal):
        return "N"
    if annotation is str:
        return "S"
    return None


def resolve_annotations(cls: type) -> dict[str, Any]:
    try:
        return get_type_hints(cls)
    except (NameError, TypeError):
        return dict(getattr(cls, "__annotations__", {}))


def _gsi_keys(value: IndexKeys) -> GlobalIndexKeys:
    if isinstance(value, GlobalIndexKeys):
        return value
    if isinstance(value, str):
        return GlobalIndexKeys(partition_key=value)
    raise ConfigurationError(f"unsupported global index declaration: {value!r}")


class MetadataRegistry:
    """Per-class mapping metadata.

    Metadata for a class is looked up by identity. A class without its own
    entry starts from a copy of its nearest registered ancestor, so base
    class declarations carry over while subclasses stay independent.
    """

    def __init__(self, tables: Mapping[str, TableDefinition] | None = None) -> None:
        self._tables: dict[str, TableDefinition] = dict(tables or {})
        self._metadata: dict[type, Metadata] = {}
        self._lock = threading.RLock()

    @property
    def tables(self) -> Mapping[str, TableDefinition]:
        return types.MappingProxyType(self._tables)

    def add_table(self, table: TableDefinition) -> None:
        with self._lock:
            self._tables[table.name] = table

    def has_metadata(self, cls: type) -> bool:
        return cls in self._metadata

    def is_registered(self, cls: type) -> bool:
        md = self._metadata.get(cls)
        return md is not None and md.finalized

    def get_metadata(self, cls: type) -> Metadata:
        with self._lock:
            md = self._metadata.get(cls)
            if md is None:
                md = self._inherited(cls)
                self._metadata[cls] = md
            return md

    def _inherited(self, cls: type) -> Metadata:
        for base in cls.__mro__[1:]:
            md = self._metadata.get(base)
            if md is not None and md.finalized:
                return md.clone()
        return Metadata()

    def resolve_table(self, table: TableDefinition | str) -> TableDefinition:
        if isinstance(table, TableDefinition):
            return table
        return self._tables.get(table) or TableDefinition(name=table)

    def register(
        self,
        cls: type,
        *,
        table: TableDefinition | str | None = None,
        partition_key: str | None = None,
        sort_key: str | None = None,
        lsi: Mapping[str, str] | None = None,
        gsi: Mapping[str, IndexKeys] | None = None,
    ) -> Metadata:
        if not is_dataclass(cls):
            raise ConfigurationError(f"{cls.__name__}: record classes must be dataclasses")

        with self._lock:
            if self.is_registered(cls):
                raise ConfigurationError(f"{cls.__name__} is already registered")

            md = self.get_metadata(cls).clone()
            if table is not None:
                md.set_table(self.resolve_table(table))
            if md.table is None:
                raise ConfigurationError(f"{cls.__name__}: table name is required")

            pk_expr, sk_expr = self._collect_attributes(cls, md)
            if partition_key is not None:
                if pk_expr is not None:
                    raise ConfigurationError(f"{cls.__name__}: partition key declared twice")
                pk_expr = partition_key
            if sort_key is not None:
                if sk_expr is not None:
                    raise ConfigurationError(f"{cls.__name__}: sort key declared twice")
                sk_expr = sort_key

            self._apply_keys(cls, md, pk_expr, sk_expr)
            self._apply_indexes(cls, md, lsi or {}, gsi or {})
            self._collect_hooks(cls, md)

            try:
                md.validate()
            except ConfigurationError as err:
                raise ConfigurationError(f"{cls.__name__}: {err}") from err

            key_defs = [md.partition_key, md.sort_key, *md.index_keys()]
            unknown = sorted(
                {name for kd in key_defs if kd is not None for name in kd.template_attributes} - set(md.attributes)
            )
            if unknown:
                raise ConfigurationError(f"{cls.__name__}: key templates reference unknown fields: {', '.join(unknown)}")

            self._metadata[cls] = md

        logger.info("registered %s on table %s", cls.__name__, md.table_name)
        return md

    def _collect_attributes(self, cls: type, md: Metadata) -> tuple[str | None, str | None]:
        hints = resolve_annotations(cls)
        pk_fields: list[str] = []
        sk_fields: list[str] = []

        for dc_field in fields(cast(Any, cls)):
            opts = cast(dict[str, Any], dc_field.metadata.get("dynamap", {}))
            if opts.get("ignore", False):
                continue

            annotation = hints.get(dc_field.name, Any)
            md.create_attribute(dc_field.name, store_name=opts.get("name"), annotation=annotation)
            type_tag = opts.get("type") or infer_type(annotation)
            if type_tag is not None:
                md.set_type(dc_field.name, type_tag)

            if opts.get("partition_key", False):
                pk_fields.append(dc_field.name)
            if opts.get("sort_key", False):
                sk_fields.append(dc_field.name)

        if len(pk_fields) > 1:
            raise ConfigurationError(f"{cls.__name__}: more than one partition key field: {', '.join(pk_fields)}")
        if len(sk_fields) > 1:
            raise ConfigurationError(f"{cls.__name__}: more than one sort key field: {', '.join(sk_fields)}")

        pk_expr = "{{" + pk_fields[0] + "}}" if pk_fields else None
        sk_expr = "{{" + sk_fields[0] + "}}" if sk_fields else None
        return pk_expr, sk_expr

    def _apply_keys(self, cls: type, md: Metadata, pk_expr: str | None, sk_expr: str | None) -> None:
        table = cast(TableDefinition, md.table)

        md.set_partition_key(
            KeyDef(
                name=table.partition_key.name,
                type=table.partition_key.type,
                expression=pk_expr if pk_expr is not None else md.partition_key.expression,
            )
        )

        if table.sort_key is None:
            if sk_expr is not None:
                raise ConfigurationError(f"{cls.__name__}: table {table.name} has no sort key")
            md.set_sort_key(None)
            return

        inherited = md.sort_key.expression if md.sort_key is not None else ""
        md.set_sort_key(
            KeyDef(
                name=table.sort_key.name,
                type=table.sort_key.type,
                expression=sk_expr if sk_expr is not None else inherited,
            )
        )

    def _apply_indexes(
        self,
        cls: type,
        md: Metadata,
        lsi: Mapping[str, str],
        gsi: Mapping[str, IndexKeys],
    ) -> None:
        table = cast(TableDefinition, md.table)

        local: dict[str, str] = {name: kd.expression for name, kd in md.lsi.items()}
        local.update(lsi)
        global_: dict[str, GlobalIndexKeys] = {
            name: GlobalIndexKeys(
                partition_key=index.partition_key.expression,
                sort_key=index.sort_key.expression if index.sort_key is not None else None,
            )
            for name, index in md.gsi.items()
        }
        global_.update({name: _gsi_keys(value) for name, value in gsi.items()})

        md.lsi = {}
        md.gsi = {}
        if not local and not global_:
            return

        if table.lsi is None and table.gsi is None:
            raise ConfigurationError(
                f"{cls.__name__} declares indexes but table {table.name} has no index configuration"
            )

        table_lsi = table.lsi or {}
        table_gsi = table.gsi or {}
        missing = [name for name in local if name not in table_lsi]
        missing.extend(name for name in global_ if name not in table_gsi)
        if missing:
            raise ConfigurationError(
                f"{cls.__name__}: indexes not declared on table {table.name}: {', '.join(missing)}"
            )

        for name, expression in local.items():
            attr = table_lsi[name]
            md.set_lsi(name, KeyDef(name=attr.name, type=attr.type, expression=expression))

        for name, keys in global_.items():
            attrs = table_gsi[name]
            if keys.sort_key is not None and attrs.sort_key is None:
                raise ConfigurationError(f"{cls.__name__}: index {name} has no sort key on table {table.name}")
            pk_def = KeyDef(
                name=attrs.partition_key.name,
                type=attrs.partition_key.type,
                expression=keys.partition_key,
            )
            sk_def = None
            if keys.sort_key is not None and attrs.sort_key is not None:
                sk_def = KeyDef(name=attrs.sort_key.name, type=attrs.sort_key.type, expression=keys.sort_key)
            md.set_gsi(name, pk_def, sk_def)

    def _collect_hooks(self, cls: type, md: Metadata) -> None:
        for name, member in vars(cls).items():
            for kind in getattr(member, HOOK_MARKER, ()):
                md.add_hook(kind, name)
