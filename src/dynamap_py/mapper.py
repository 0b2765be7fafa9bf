from __future__ import annotations

import types
from collections.abc import Mapping
from dataclasses import MISSING, fields
from decimal import Decimal
from typing import Any, Union, cast, get_args, get_origin

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .errors import ValidationError
from .model import HookKind, KeyDef, Metadata
from .templates import coerce_to_type, is_plain, parse_key, read_value, substitute


def _coerce_value(value: Any, annotation: Any) -> Any:
    if value is None:
        return None

    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        members = [a for a in get_args(annotation) if a is not type(None)]
        if len(members) == 1:
            return _coerce_value(value, members[0])
        return value

    if annotation is int and isinstance(value, Decimal):
        return int(value)
    if annotation is float and isinstance(value, (Decimal, int)):
        return float(value)

    if origin is set and isinstance(value, set):
        (elem_type,) = get_args(annotation) or (Any,)
        return {_coerce_value(v, elem_type) for v in value}
    if origin is list and isinstance(value, list):
        (elem_type,) = get_args(annotation) or (Any,)
        return [_coerce_value(v, elem_type) for v in value]

    return value


def marshal(value: Any) -> Any:
    """Python value in the shapes ``TypeSerializer`` accepts (no floats)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: marshal(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return {marshal(v) for v in value}
    if isinstance(value, (list, tuple)):
        return [marshal(v) for v in value]
    return value


class ItemMapper[T]:
    def __init__(self, model_type: type[T], metadata: Metadata) -> None:
        self._model_type = model_type
        self._metadata = metadata
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def model_type(self) -> type[T]:
        return self._model_type

    @property
    def metadata(self) -> Metadata:
        return self._metadata

    def instantiate(self, values: Mapping[str, Any]) -> T:
        """Build a record from a plain mapping; absent required fields are None."""
        kwargs: dict[str, Any] = {}
        late: dict[str, Any] = {}
        known: set[str] = set()
        for dc_field in fields(cast(Any, self._model_type)):
            known.add(dc_field.name)
            if not dc_field.init:
                if dc_field.name in values:
                    late[dc_field.name] = values[dc_field.name]
                continue
            if dc_field.name in values:
                kwargs[dc_field.name] = values[dc_field.name]
            elif dc_field.default is MISSING and dc_field.default_factory is MISSING:
                kwargs[dc_field.name] = None

        unknown = [name for name in values if name not in known]
        if unknown:
            raise ValidationError(f"unknown attributes for {self._model_type.__name__}: {', '.join(unknown)}")

        instance = self._model_type(**kwargs)
        for name, value in late.items():
            setattr(instance, name, value)
        return instance

    def coerce_input(self, item: T | Mapping[str, Any]) -> T:
        if isinstance(item, self._model_type):
            return item
        if isinstance(item, Mapping):
            return self.instantiate(item)
        raise ValidationError(f"expected {self._model_type.__name__} or mapping, got {type(item).__name__}")

    def key(self, source: Any, pk: KeyDef | None = None, sk: KeyDef | None = None) -> dict[str, Any]:
        pk_def = pk or self._metadata.partition_key
        sk_def = sk if (pk is not None or sk is not None) else self._metadata.sort_key
        out: dict[str, Any] = {pk_def.name: substitute(source, pk_def)}
        if sk_def is not None:
            out[sk_def.name] = substitute(source, sk_def)
        return out

    def serialize(self, source: Any) -> dict[str, Any]:
        md = self._metadata
        out = self.key(source)

        for key_def in md.index_keys():
            if all(is_plain(read_value(source, name)) for name in key_def.template_attributes):
                out[key_def.name] = substitute(source, key_def)

        key_attributes = md.key_attributes
        for name, attr in md.attributes.items():
            if name in key_attributes:
                continue
            value = read_value(source, name)
            if not is_plain(value):
                continue
            if isinstance(value, (set, frozenset)) and not value:
                continue
            out[attr.attribute_name] = coerce_to_type(value, attr.type)

        return out

    def to_store(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {name: self._serializer.serialize(marshal(value)) for name, value in values.items()}

    def from_store(self, item: Mapping[str, Any]) -> dict[str, Any]:
        return {name: self._deserializer.deserialize(value) for name, value in item.items()}

    def load_values(
        self,
        item: Mapping[str, Any],
        pk: KeyDef | None = None,
        sk: KeyDef | None = None,
    ) -> dict[str, Any]:
        md = self._metadata
        types_by_name = {name: attr.type for name, attr in md.attributes.items()}

        key_defs: list[KeyDef | None] = []
        if pk is not None or sk is not None:
            key_defs.extend([pk or md.partition_key, sk])
        key_defs.extend([md.partition_key, md.sort_key])

        values: dict[str, Any] = {}
        seen: set[str] = set()
        for key_def in key_defs:
            if key_def is None or key_def.name in seen:
                continue
            seen.add(key_def.name)
            raw = item.get(key_def.name)
            if raw is None:
                continue
            for name, value in parse_key(raw, key_def, types_by_name).items():
                if name not in values:
                    values[name] = self._coerce(name, value)

        for name, attr in md.attributes.items():
            if name in values or attr.attribute_name not in item:
                continue
            values[name] = _coerce_value(item[attr.attribute_name], attr.annotation)

        return values

    def deserialize(self, item: Mapping[str, Any], pk: KeyDef | None = None, sk: KeyDef | None = None) -> T:
        instance = self.instantiate(self.load_values(item, pk, sk))
        self.run_hooks(instance, "post_load")
        return instance

    def run_hooks(self, instance: T, kind: HookKind) -> None:
        for name in self._metadata.hooks[kind]:
            getattr(instance, name)()

    def _coerce(self, name: str, value: Any) -> Any:
        attr = self._metadata.attributes.get(name)
        if attr is None:
            return value
        return _coerce_value(value, attr.annotation)
