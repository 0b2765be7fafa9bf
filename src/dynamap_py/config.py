"""Table definitions from YAML (or JSON) documents.

Example::

    tables:
      projects:
        partition_key: pk
        sort_key: {name: sk, type: S}
        gsi:
          date-index:
            partition_key: gsi1pk
            sort_key: {name: gsi1sk, type: N}

A key given as a plain string is an ``S`` key of that name. A table without
``sort_key`` uses ``sk``; ``sort_key: null`` declares a partition-key-only
table.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ValidationError
from .model import GlobalIndexAttributes, KeyAttribute, TableDefinition

_KEY_TYPES = ("S", "N")


def load_table_definitions(raw: str) -> dict[str, TableDefinition]:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError("invalid table definition YAML/JSON") from err

    if not isinstance(parsed, dict):
        raise ValidationError("table definition document must be a map/object")

    tables = parsed.get("tables")
    if not isinstance(tables, dict) or not tables:
        raise ValidationError("table definition document must include tables{}")

    out: dict[str, TableDefinition] = {}
    for name, body in tables.items():
        if not isinstance(name, str) or not name:
            raise ValidationError(f"invalid table name: {name!r}")
        out[name] = _parse_table(name, body if body is not None else {})
    return out


def load_table_definitions_file(path: str | Path) -> dict[str, TableDefinition]:
    return load_table_definitions(Path(path).read_text(encoding="utf-8"))


def _parse_key(value: Any, *, path: str) -> KeyAttribute:
    if isinstance(value, str) and value:
        return KeyAttribute(name=value)
    if not isinstance(value, dict):
        raise ValidationError(f"{path}: expected a key name or {{name, type}}")

    name = value.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError(f"{path}: missing name")
    key_type = value.get("type", "S")
    if key_type not in _KEY_TYPES:
        raise ValidationError(f"{path}: unsupported key type: {key_type!r}")
    return KeyAttribute(name=name, type=key_type)


def _parse_table(name: str, body: Any) -> TableDefinition:
    if not isinstance(body, dict):
        raise ValidationError(f"table {name}: expected a map")
    path = f"tables.{name}"

    partition_key = _parse_key(body.get("partition_key", "pk"), path=f"{path}.partition_key")
    sort_key: KeyAttribute | None = KeyAttribute(name="sk")
    if "sort_key" in body:
        raw_sort = body["sort_key"]
        sort_key = None if raw_sort is None else _parse_key(raw_sort, path=f"{path}.sort_key")

    lsi: dict[str, KeyAttribute] | None = None
    if body.get("lsi") is not None:
        raw_lsi = body["lsi"]
        if not isinstance(raw_lsi, dict):
            raise ValidationError(f"{path}.lsi: expected a map")
        lsi = {str(index): _parse_key(key, path=f"{path}.lsi.{index}") for index, key in raw_lsi.items()}

    gsi: dict[str, GlobalIndexAttributes] | None = None
    if body.get("gsi") is not None:
        raw_gsi = body["gsi"]
        if not isinstance(raw_gsi, dict):
            raise ValidationError(f"{path}.gsi: expected a map")
        gsi = {}
        for index, keys in raw_gsi.items():
            index_path = f"{path}.gsi.{index}"
            if not isinstance(keys, dict):
                raise ValidationError(f"{index_path}: expected a map")
            raw_index_sort = keys.get("sort_key")
            gsi[str(index)] = GlobalIndexAttributes(
                partition_key=_parse_key(keys.get("partition_key"), path=f"{index_path}.partition_key"),
                sort_key=(
                    None
                    if raw_index_sort is None
                    else _parse_key(raw_index_sort, path=f"{index_path}.sort_key")
                ),
            )

    return TableDefinition(
        name=name,
        partition_key=partition_key,
        sort_key=sort_key,
        lsi=cast(Mapping[str, KeyAttribute] | None, lsi),
        gsi=cast(Mapping[str, GlobalIndexAttributes] | None, gsi),
    )
