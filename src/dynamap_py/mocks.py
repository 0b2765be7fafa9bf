"""Scripted stand-in for the low-level DynamoDB client.

Each call is checked against the next expectation, in order. An expectation
matches a request partially (a mapping compared as a subset), through a
callable, or by its expressions rendered with attribute names and values in
place of the ``#aN`` / ``:vN`` placeholders::

    client.expect_query(
        "pk = 'PROJECT_A' AND begins_with(sk, 'VER:Initial')",
        "date BETWEEN 1662541000 AND 1662541200",
        items=[{"pk": "PROJECT_A", "sk": "VER:Initial#REV:515", "date": 1662541189}],
    )

Items, keys and returned attributes are written as plain Python values and
converted to the store's wire format.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .mapper import marshal
from .templates import key_text

type Matcher = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]

_PLACEHOLDER = re.compile(r"#a\d+|:v\d+")
_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_wire(values: Mapping[str, Any]) -> dict[str, Any]:
    return {name: _serializer.serialize(marshal(value)) for name, value in values.items()}


def _literal(value: Any) -> str:
    if isinstance(value, Decimal):
        return key_text(value)
    if isinstance(value, (set, frozenset)):
        return "{" + ", ".join(sorted(_literal(v) for v in value)) + "}"
    if isinstance(value, list):
        return "[" + ", ".join(_literal(v) for v in value) + "]"
    return repr(value)


def render_expression(
    expression: str | None,
    names: Mapping[str, str] | None,
    values: Mapping[str, Any] | None,
) -> str | None:
    """Expression text with its placeholders resolved; wire values are decoded."""
    if expression is None:
        return None
    names = names or {}
    values = values or {}

    def resolve(match: re.Match[str]) -> str:
        ref = match.group(0)
        if ref.startswith("#"):
            if ref not in names:
                raise AssertionError(f"unbound name placeholder {ref} in {expression!r}")
            return names[ref]
        if ref not in values:
            raise AssertionError(f"unbound value placeholder {ref} in {expression!r}")
        return _literal(_deserializer.deserialize(values[ref]))

    return _PLACEHOLDER.sub(resolve, expression)


def _check_subset(expected: Any, actual: Any, path: str) -> None:
    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            raise AssertionError(f"{path}: expected a mapping, got {actual!r}")
        for name, value in expected.items():
            if name not in actual:
                raise AssertionError(f"{path}: {name!r} missing from request")
            _check_subset(value, actual[name], f"{path}.{name}")
    elif isinstance(expected, list):
        if not isinstance(actual, list) or len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")
        for i, (want, got) in enumerate(zip(expected, actual, strict=True)):
            _check_subset(want, got, f"{path}[{i}]")
    elif expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    match: Matcher | None = None
    expressions: Mapping[str, str | None] = field(default_factory=dict)
    response: Mapping[str, Any] | None = None
    error: Exception | None = None

    def check(self, method: str, req: Mapping[str, Any]) -> None:
        if method != self.method:
            raise AssertionError(f"expected {self.method}, got {method}")
        if callable(self.match):
            self.match(req)
        elif self.match is not None:
            _check_subset(self.match, req, method)
        for name, text in self.expressions.items():
            rendered = render_expression(
                req.get(name), req.get("ExpressionAttributeNames"), req.get("ExpressionAttributeValues")
            )
            if rendered != text:
                raise AssertionError(f"{method}.{name}: expected {text!r}, got {rendered!r}")


class FakeDynamoDBClient:
    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def expect(
        self,
        method: str,
        match: Matcher | None = None,
        *,
        expressions: Mapping[str, str | None] | None = None,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(
            ExpectedCall(method=method, match=match, expressions=expressions or {}, response=response, error=error)
        )

    def expect_query(
        self,
        key_condition: str,
        filter: str | None = None,
        *,
        index_name: str | None = None,
        items: Iterable[Mapping[str, Any]] = (),
        last_key: Mapping[str, Any] | None = None,
    ) -> None:
        self.expect(
            "query",
            {"IndexName": index_name} if index_name else None,
            expressions={"KeyConditionExpression": key_condition, "FilterExpression": filter},
            response=_page(items, last_key),
        )

    def expect_scan(
        self,
        filter: str | None = None,
        *,
        index_name: str | None = None,
        items: Iterable[Mapping[str, Any]] = (),
        last_key: Mapping[str, Any] | None = None,
    ) -> None:
        self.expect(
            "scan",
            {"IndexName": index_name} if index_name else None,
            expressions={"FilterExpression": filter},
            response=_page(items, last_key),
        )

    def expect_update(
        self,
        update: str,
        *,
        key: Mapping[str, Any] | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        self.expect(
            "update_item",
            {"Key": to_wire(key)} if key is not None else None,
            expressions={"UpdateExpression": update},
            response={"Attributes": to_wire(attributes)} if attributes is not None else {},
        )

    def rendered(self, name: str, index: int = -1) -> str | None:
        """Expression ``name`` of a recorded call, placeholders resolved."""
        _, req = self.calls[index]
        return render_expression(
            req.get(name), req.get("ExpressionAttributeNames"), req.get("ExpressionAttributeValues")
        )

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {[call.method for call in self._expected]}")

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            self.calls.append((method, dict(req)))
            if not self._expected:
                raise AssertionError(f"unexpected call: {method}")
            call = self._expected.pop(0)

        call.check(method, req)
        if call.error is not None:
            raise call.error
        return dict(call.response or {})

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("put_item", kwargs)

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("get_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("update_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("delete_item", kwargs)

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("query", kwargs)

    def scan(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("scan", kwargs)

    def batch_get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_get_item", kwargs)

    def batch_write_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_write_item", kwargs)


def _page(items: Iterable[Mapping[str, Any]], last_key: Mapping[str, Any] | None) -> dict[str, Any]:
    page: dict[str, Any] = {"Items": [to_wire(item) for item in items]}
    if last_key is not None:
        page["LastEvaluatedKey"] = to_wire(last_key)
    return page
