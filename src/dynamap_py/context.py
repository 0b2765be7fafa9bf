from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from .config import load_table_definitions_file
from .errors import ConfigurationError
from .model import Metadata, TableDefinition
from .registry import IndexKeys, MetadataRegistry
from .repository import Repository
from .runtime import ClientSettings, get_dynamodb_client


class Dynamap:
    """Entry point: metadata registry, table definitions, client and repositories.

    Create one per process and register record classes on it, either with
    ``register`` or the ``record`` class decorator::

        db = Dynamap(tables=[TableDefinition("projects")])

        @db.record(table="projects", partition_key="{{name}}", sort_key="REV#{{revision}}")
        @dataclass
        class Project:
            name: str
            revision: int

        db.get_repository(Project).put({"name": "A", "revision": 1})

    The DynamoDB client is created from ``settings`` (or the environment) on
    first use unless one is passed in.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        tables: Mapping[str, TableDefinition] | Iterable[TableDefinition] | None = None,
        settings: ClientSettings | None = None,
        max_workers: int = 8,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        if tables is None:
            table_map: dict[str, TableDefinition] = {}
        elif isinstance(tables, Mapping):
            table_map = dict(tables)
        else:
            table_map = {table.name: table for table in tables}

        self._client = client
        self._settings = settings
        self._max_workers = max_workers
        self._registry = MetadataRegistry(table_map)
        self._repositories: dict[type, Repository[Any]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        path: str | Path,
        client: Any | None = None,
        *,
        settings: ClientSettings | None = None,
        max_workers: int = 8,
    ) -> Dynamap:
        return cls(client, tables=load_table_definitions_file(path), settings=settings, max_workers=max_workers)

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    @property
    def client(self) -> Any:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = get_dynamodb_client(self._settings)
        return self._client

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
        return self._registry.register(
            cls,
            table=table,
            partition_key=partition_key,
            sort_key=sort_key,
            lsi=lsi,
            gsi=gsi,
        )

    def record[C: type](
        self,
        *,
        table: TableDefinition | str | None = None,
        partition_key: str | None = None,
        sort_key: str | None = None,
        lsi: Mapping[str, str] | None = None,
        gsi: Mapping[str, IndexKeys] | None = None,
    ) -> Callable[[C], C]:
        def decorate(cls: C) -> C:
            self.register(cls, table=table, partition_key=partition_key, sort_key=sort_key, lsi=lsi, gsi=gsi)
            return cls

        return decorate

    def get_metadata(self, cls: type) -> Metadata:
        return self._registry.get_metadata(cls)

    def has_metadata(self, cls: type) -> bool:
        return self._registry.has_metadata(cls)

    def get_repository[T](self, cls: type[T]) -> Repository[T]:
        repo = self._repositories.get(cls)
        if repo is not None:
            return repo

        with self._lock:
            repo = self._repositories.get(cls)
            if repo is None:
                if not self._registry.is_registered(cls):
                    raise ConfigurationError(f"{cls.__name__} is not registered with table and key metadata")
                client = self._client
                if client is None:
                    client = self._client = get_dynamodb_client(self._settings)
                repo = Repository(cls, self._registry.get_metadata(cls), client=client, max_workers=self._max_workers)
                self._repositories[cls] = repo
        return repo
