from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreCallMetric:
    operation: str
    seconds: float
    ok: bool


@dataclass(frozen=True)
class ClientSettings:
    region: str | None = None
    endpoint_url: str | None = None
    connect_timeout: float = 1.0
    read_timeout: float = 3.0
    max_attempts: int = 3

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> ClientSettings:
        return cls(
            region=(environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or "").strip() or None,
            endpoint_url=(environ.get("DYNAMODB_ENDPOINT") or "").strip() or None,
        )


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, on_call: Callable[[StoreCallMetric], None]) -> None:
        self._client = client
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                out = attr(*args, **kwargs)
            except Exception:
                self._on_call(StoreCallMetric(operation=name, seconds=time.monotonic() - start, ok=False))
                raise

            self._on_call(StoreCallMetric(operation=name, seconds=time.monotonic() - start, ok=True))
            return out

        return wrapped


def instrument_client(client: Any, *, on_call: Callable[[StoreCallMetric], None]) -> Any:
    return _InstrumentedClient(client, on_call)


_clients: dict[tuple[str | None, str | None], Any] = {}
_clients_lock = threading.Lock()


def get_dynamodb_client(
    settings: ClientSettings | None = None,
    *,
    session: Any | None = None,
    metrics: Callable[[StoreCallMetric], None] | None = None,
) -> Any:
    """One cached DynamoDB client per (region, endpoint).

    ``metrics`` wraps the returned client only; the cached client stays
    uninstrumented so each caller gets its own callback.
    """
    settings = settings or ClientSettings.from_env()
    key = (settings.region, settings.endpoint_url)
    with _clients_lock:
        client = _clients.get(key)
        if client is None:
            config = create_boto3_config(
                connect_timeout=settings.connect_timeout,
                read_timeout=settings.read_timeout,
                max_attempts=settings.max_attempts,
            )
            sess = session or boto3.session.Session(region_name=settings.region)
            client = cast(Any, sess).client(
                "dynamodb",
                region_name=settings.region,
                endpoint_url=settings.endpoint_url,
                config=config,
            )
            logger.debug("created dynamodb client region=%s endpoint=%s", settings.region, settings.endpoint_url)
            _clients[key] = client

    if metrics is not None:
        return instrument_client(client, on_call=metrics)
    return client


def _reset_clients_for_tests() -> None:
    with _clients_lock:
        _clients.clear()
