from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .conditions import (
    Condition,
    ConditionBuilder,
    and_,
    begins_with,
    contains,
    equal,
    merge_expressions,
)
from .errors import ValidationError
from .mapper import ItemMapper
from .model import KeyDef, Metadata
from .templates import (
    coerce_to_type,
    is_plain,
    parse_template,
    partial_substitute,
    read_value,
    substitute,
    supplied_fragments,
)
from .update_builder import Update, UpdateBuilder, remove

logger = logging.getLogger(__name__)

GET_BATCH_SIZE = 100
WRITE_BATCH_SIZE = 25

type SortComparator = Callable[[Any], Condition]


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


class Repository[T]:
    """Store operations for one registered record class.

    Specs passed to ``get``/``delete``/``query``/``scan``/``update`` are either
    record instances or mappings from property name to a plain value (or a
    ``Condition`` for query/scan, an ``Update`` for update).
    """

    def __init__(
        self,
        model_type: type[T],
        metadata: Metadata,
        *,
        client: Any,
        max_workers: int = 8,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if not metadata.table_name:
            raise ValueError("metadata has no table name")

        self._model_type = model_type
        self._metadata = metadata
        self._mapper: ItemMapper[T] = ItemMapper(model_type, metadata)
        self._client: Any = client
        self._table_name: str = metadata.table_name
        self._max_workers = max_workers

    @property
    def metadata(self) -> Metadata:
        return self._metadata

    @property
    def mapper(self) -> ItemMapper[T]:
        return self._mapper

    @property
    def table_name(self) -> str:
        return self._table_name

    def get(self, spec: T | Mapping[str, Any]) -> T | None:
        key = self._mapper.to_store(self._mapper.key(spec))
        logger.debug("get_item %s", self._table_name)
        resp = self._client.get_item(TableName=self._table_name, Key=key)
        item = resp.get("Item")
        if not item:
            return None
        return self._mapper.deserialize(self._mapper.from_store(item))

    def get_many(self, *specs: T | Mapping[str, Any]) -> list[T]:
        if not specs:
            return []
        keys = [self._mapper.to_store(self._mapper.key(spec)) for spec in specs]
        batches = self._fan_out(self._batch_get, _chunked(keys, GET_BATCH_SIZE))
        return [item for batch in batches for item in batch]

    def put(self, item: T | Mapping[str, Any]) -> None:
        request = self._put_request(item)
        logger.debug("put_item %s", self._table_name)
        self._client.put_item(TableName=self._table_name, Item=request["PutRequest"]["Item"])

    def put_all(self, *items: T | Mapping[str, Any]) -> None:
        if not items:
            return
        requests = [self._put_request(item) for item in items]
        self._fan_out(self._batch_write, _chunked(requests, WRITE_BATCH_SIZE))

    def delete(self, spec: T | Mapping[str, Any]) -> None:
        key = self._mapper.to_store(self._mapper.key(spec))
        logger.debug("delete_item %s", self._table_name)
        self._client.delete_item(TableName=self._table_name, Key=key)

    def delete_all(self, *specs: T | Mapping[str, Any]) -> None:
        if not specs:
            return
        requests = [{"DeleteRequest": {"Key": self._mapper.to_store(self._mapper.key(spec))}} for spec in specs]
        self._fan_out(self._batch_write, _chunked(requests, WRITE_BATCH_SIZE))

    def query(
        self,
        spec: T | Mapping[str, Any],
        *,
        index_name: str | None = None,
        sort_comparator: SortComparator = begins_with,
        scan_forward: bool = True,
        consistent_read: bool = False,
    ) -> list[T]:
        values = self._spec_values(spec)
        pk_def, sk_def = self._metadata.resolve_index(index_name)

        key_builder = ConditionBuilder()
        key_builder.apply(pk_def.name, equal(substitute(values, pk_def)))
        if sk_def is not None:
            sort_condition = self._sort_key_condition(values, sk_def, sort_comparator)
            if sort_condition is not None:
                key_builder.apply(sk_def.name, sort_condition)
        key_expr = key_builder.build()

        handled = set(pk_def.template_attributes)
        if sk_def is not None:
            handled.update(sk_def.template_attributes)

        filter_builder = ConditionBuilder(key_builder.next_index)
        if index_name is not None:
            for table_key in (self._metadata.partition_key, self._metadata.sort_key):
                if table_key is None or table_key.name in {pk_def.name, sk_def.name if sk_def else None}:
                    continue
                if any(name in values for name in table_key.template_attributes - handled):
                    self._key_filter(filter_builder, values, table_key)
                handled.update(table_key.template_attributes)
        self._attribute_filters(filter_builder, values, handled)
        filter_expr = filter_builder.build()

        names, expr_values = merge_expressions(key_expr, filter_expr)
        req: dict[str, Any] = {
            "TableName": self._table_name,
            "KeyConditionExpression": key_expr.expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": self._mapper.to_store(expr_values),
            "ScanIndexForward": scan_forward,
            "ConsistentRead": consistent_read,
        }
        if index_name is not None:
            req["IndexName"] = index_name
        if filter_expr.expression is not None:
            req["FilterExpression"] = filter_expr.expression

        logger.debug("query %s index=%s key=%s", self._table_name, index_name, key_expr.expression)
        items = self._paginate(self._client.query, req)
        return self._load_all(items, index_name)

    def scan(
        self,
        spec: T | Mapping[str, Any] | None = None,
        *,
        index_name: str | None = None,
        consistent_read: bool = False,
    ) -> list[T]:
        values = self._spec_values(spec)
        pk_def, sk_def = self._metadata.resolve_index(index_name)

        key_defs: list[KeyDef] = [pk_def]
        if sk_def is not None:
            key_defs.append(sk_def)
        if index_name is not None:
            for table_key in (self._metadata.partition_key, self._metadata.sort_key):
                if table_key is not None and all(table_key.name != kd.name for kd in key_defs):
                    key_defs.append(table_key)

        builder = ConditionBuilder()
        handled: set[str] = set()
        for key_def in key_defs:
            self._key_filter(builder, values, key_def)
            handled.update(key_def.template_attributes)
        self._attribute_filters(builder, values, handled)
        expr = builder.build()

        req: dict[str, Any] = {"TableName": self._table_name, "ConsistentRead": consistent_read}
        if index_name is not None:
            req["IndexName"] = index_name
        if expr.expression is not None:
            req["FilterExpression"] = expr.expression
            req["ExpressionAttributeNames"] = expr.names
            if expr.values:
                req["ExpressionAttributeValues"] = self._mapper.to_store(expr.values)

        logger.debug("scan %s index=%s filter=%s", self._table_name, index_name, expr.expression)
        items = self._paginate(self._client.scan, req)
        return self._load_all(items, index_name)

    def update(self, spec: T | Mapping[str, Any]) -> T:
        md = self._metadata
        if isinstance(spec, self._model_type):
            instance = spec
            supplied = set(md.attributes)
            updates = {
                name: value for name in md.attributes if isinstance(value := getattr(spec, name, None), Update)
            }
        elif isinstance(spec, Mapping):
            self._check_names(spec)
            supplied = set(spec)
            updates = {name: value for name, value in spec.items() if isinstance(value, Update)}
            instance = self._mapper.instantiate(
                {name: value for name, value in spec.items() if not isinstance(value, Update)}
            )
        else:
            raise ValidationError(f"expected {self._model_type.__name__} or mapping, got {type(spec).__name__}")

        before = {name: getattr(instance, name, None) for name in md.attributes}
        self._mapper.run_hooks(instance, "pre_update")
        for name, value in before.items():
            current = getattr(instance, name, None)
            if current is value or current == value:
                continue
            supplied.add(name)
            if isinstance(current, Update):
                updates[name] = current

        key = self._mapper.key(instance)

        builder = UpdateBuilder()
        touched: set[str] = set(key)
        key_attributes = md.key_attributes
        for name, attr in md.attributes.items():
            if name in key_attributes or name not in supplied:
                continue
            update = updates.get(name)
            if update is not None:
                builder.apply(attr.attribute_name, update)
                touched.add(attr.attribute_name)
                continue
            value = getattr(instance, name, None)
            if not is_plain(value) or (isinstance(value, (set, frozenset)) and not value):
                continue
            builder.set(attr.attribute_name, coerce_to_type(value, attr.type))
            touched.add(attr.attribute_name)

        for key_def in md.index_keys():
            if key_def.name in touched:
                continue
            names = key_def.template_attributes
            if names and all(is_plain(getattr(instance, name, None)) for name in names):
                builder.set(key_def.name, substitute(instance, key_def))
                touched.add(key_def.name)

        item = self._send_update(key, builder, instance, updates)

        # Index keys built from attributes changed by update functions are
        # rewritten from the stored result.
        stale = [kd for kd in md.index_keys() if kd.name not in touched and kd.template_attributes & updates.keys()]
        if stale:
            refresh = UpdateBuilder()
            for key_def in stale:
                if all(is_plain(getattr(instance, name, None)) for name in key_def.template_attributes):
                    value = substitute(instance, key_def)
                    if item.get(key_def.name) != value:
                        refresh.set(key_def.name, value)
                elif key_def.name in item:
                    refresh.apply(key_def.name, remove())
            if not refresh.empty:
                logger.debug("refreshing index keys on %s", self._table_name)
                self._send_update(key, refresh, instance, {})

        self._mapper.run_hooks(instance, "post_load")
        return instance

    def update_all(self, *specs: T | Mapping[str, Any]) -> list[T]:
        if not specs:
            return []
        return self._fan_out(self.update, specs)

    def _send_update(
        self,
        key: Mapping[str, Any],
        builder: UpdateBuilder,
        instance: T,
        updates: Mapping[str, Update],
    ) -> dict[str, Any]:
        expr = builder.build()
        req: dict[str, Any] = {
            "TableName": self._table_name,
            "Key": self._mapper.to_store(key),
            "UpdateExpression": expr.expression,
            "ExpressionAttributeNames": expr.names,
            "ReturnValues": expr.return_values,
        }
        if expr.values:
            req["ExpressionAttributeValues"] = self._mapper.to_store(expr.values)

        logger.debug("update_item %s %s", self._table_name, expr.expression)
        resp = self._client.update_item(**req)

        item = self._mapper.from_store(resp.get("Attributes") or {})
        loaded = self._mapper.load_values(item)
        for name, value in loaded.items():
            setattr(instance, name, value)
        for name in updates:
            if name not in loaded:
                setattr(instance, name, None)
        return item

    def _put_request(self, item: T | Mapping[str, Any]) -> dict[str, Any]:
        instance = self._mapper.coerce_input(item)
        self._mapper.run_hooks(instance, "pre_put")
        return {"PutRequest": {"Item": self._mapper.to_store(self._mapper.serialize(instance))}}

    def _batch_get(self, keys: Sequence[Mapping[str, Any]]) -> list[T]:
        out: list[T] = []
        pending: list[Any] = list(keys)
        while pending:
            logger.debug("batch_get_item %s keys=%d", self._table_name, len(pending))
            resp = self._client.batch_get_item(RequestItems={self._table_name: {"Keys": pending}})
            for item in resp.get("Responses", {}).get(self._table_name, []):
                out.append(self._mapper.deserialize(self._mapper.from_store(item)))
            pending = resp.get("UnprocessedKeys", {}).get(self._table_name, {}).get("Keys") or []
            if pending:
                logger.debug("resubmitting %d unprocessed keys for %s", len(pending), self._table_name)
        return out

    def _batch_write(self, requests: Sequence[Mapping[str, Any]]) -> None:
        pending: list[Any] = list(requests)
        while pending:
            logger.debug("batch_write_item %s requests=%d", self._table_name, len(pending))
            resp = self._client.batch_write_item(RequestItems={self._table_name: pending})
            pending = resp.get("UnprocessedItems", {}).get(self._table_name, []) or []
            if pending:
                logger.debug("resubmitting %d unprocessed items for %s", len(pending), self._table_name)

    def _fan_out[A, R](self, fn: Callable[[A], R], args: Sequence[A]) -> list[R]:
        if len(args) <= 1 or self._max_workers == 1:
            return [fn(arg) for arg in args]
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(args))) as ex:
            futures = [ex.submit(fn, arg) for arg in args]
            return [fut.result() for fut in futures]

    def _paginate(self, call: Callable[..., Mapping[str, Any]], req: Mapping[str, Any]) -> list[Any]:
        items: list[Any] = []
        request = dict(req)
        while True:
            resp = call(**request)
            items.extend(resp.get("Items", []))
            last = resp.get("LastEvaluatedKey")
            if not last:
                return items
            logger.debug("following LastEvaluatedKey on %s", self._table_name)
            request = dict(req, ExclusiveStartKey=last)

    def _load_all(self, items: Sequence[Mapping[str, Any]], index_name: str | None) -> list[T]:
        if index_name is None:
            return [self._mapper.deserialize(self._mapper.from_store(item)) for item in items]
        pk_def, sk_def = self._metadata.resolve_index(index_name)
        return [self._mapper.deserialize(self._mapper.from_store(item), pk_def, sk_def) for item in items]

    def _check_names(self, spec: Mapping[str, Any]) -> None:
        unknown = [name for name in spec if name not in self._metadata.attributes]
        if unknown:
            raise ValidationError(f"unknown attributes for {self._model_type.__name__}: {', '.join(unknown)}")

    def _spec_values(self, spec: T | Mapping[str, Any] | None) -> dict[str, Any]:
        if spec is None:
            return {}
        if isinstance(spec, self._model_type):
            return {
                name: value
                for name in self._metadata.attributes
                if (value := getattr(spec, name, None)) is not None
            }
        if not isinstance(spec, Mapping):
            raise ValidationError(f"expected {self._model_type.__name__} or mapping, got {type(spec).__name__}")
        self._check_names(spec)
        return {name: value for name, value in spec.items() if value is not None}

    def _sort_key_condition(
        self,
        values: Mapping[str, Any],
        sk_def: KeyDef,
        comparator: SortComparator,
    ) -> Condition | None:
        template = parse_template(sk_def.expression)
        if template.is_bare:
            value = read_value(values, template.placeholders[0])
            if isinstance(value, Condition):
                return value

        prefix = partial_substitute(values, sk_def)
        if prefix is None:
            return None
        if sk_def.type == "N" and comparator is begins_with:
            return equal(prefix)
        return comparator(prefix)

    def _key_filter(self, builder: ConditionBuilder, values: Mapping[str, Any], key_def: KeyDef) -> None:
        template = parse_template(key_def.expression)
        if not template.placeholders:
            builder.apply(key_def.name, equal(coerce_to_type(key_def.expression, key_def.type)))
            return

        if template.is_bare:
            value = read_value(values, template.placeholders[0])
            if isinstance(value, Condition):
                builder.apply(key_def.name, value)
            elif is_plain(value):
                builder.apply(key_def.name, equal(coerce_to_type(value, key_def.type)))
            return

        fragments = supplied_fragments(values, key_def)
        if not fragments:
            return
        conditions = [begins_with(text) if position == 0 else contains(text) for position, text in fragments]
        builder.apply(key_def.name, conditions[0] if len(conditions) == 1 else and_(*conditions))

    def _attribute_filters(self, builder: ConditionBuilder, values: Mapping[str, Any], handled: set[str]) -> None:
        for name, value in values.items():
            if name in handled:
                continue
            attr = self._metadata.attributes[name]
            if isinstance(value, Condition):
                builder.apply(attr.attribute_name, value)
            elif isinstance(value, Update):
                raise ValidationError(f"update function not allowed in a query or scan: {name}")
            else:
                builder.apply(attr.attribute_name, equal(coerce_to_type(value, attr.type)))
