from __future__ import annotations

import json
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .conditions import (
    Condition,
    ConditionBuilder,
    ConditionExpression,
    and_,
    attribute_exists,
    attribute_not_exists,
    attribute_type,
    begins_with,
    between,
    contains,
    equal,
    greater_than,
    greater_than_or_equal,
    is_in,
    less_than,
    less_than_or_equal,
    not_,
    not_equal,
    or_,
    size,
)
from .context import Dynamap
from .errors import ConfigurationError, DynamapError, ValidationError
from .model import (
    GlobalIndexAttributes,
    GlobalIndexKeys,
    KeyAttribute,
    KeyDef,
    Metadata,
    TableDefinition,
    dynamap_field,
    post_load,
    pre_put,
    pre_update,
)
from .repository import Repository
from .update_builder import (
    Update,
    UpdateBuilder,
    UpdateExpression,
    add_set,
    append_list,
    decrement,
    delete_set,
    increment,
    remove,
)

if TYPE_CHECKING:
    from .config import load_table_definitions, load_table_definitions_file
    from .runtime import (
        ClientSettings,
        StoreCallMetric,
        create_boto3_config,
        get_dynamodb_client,
        instrument_client,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


__version__ = _read_repo_version()


def __getattr__(name: str) -> Any:
    if name in {"load_table_definitions", "load_table_definitions_file"}:
        from . import config

        return getattr(config, name)
    if name in {
        "ClientSettings",
        "StoreCallMetric",
        "create_boto3_config",
        "get_dynamodb_client",
        "instrument_client",
    }:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "ClientSettings",
    "Condition",
    "ConditionBuilder",
    "ConditionExpression",
    "ConfigurationError",
    "Dynamap",
    "DynamapError",
    "GlobalIndexAttributes",
    "GlobalIndexKeys",
    "KeyAttribute",
    "KeyDef",
    "Metadata",
    "Repository",
    "StoreCallMetric",
    "TableDefinition",
    "Update",
    "UpdateBuilder",
    "UpdateExpression",
    "ValidationError",
    "__version__",
    "add_set",
    "and_",
    "append_list",
    "attribute_exists",
    "attribute_not_exists",
    "attribute_type",
    "begins_with",
    "between",
    "contains",
    "create_boto3_config",
    "decrement",
    "delete_set",
    "dynamap_field",
    "equal",
    "get_dynamodb_client",
    "greater_than",
    "greater_than_or_equal",
    "increment",
    "instrument_client",
    "is_in",
    "less_than",
    "less_than_or_equal",
    "load_table_definitions",
    "load_table_definitions_file",
    "not_",
    "not_equal",
    "or_",
    "post_load",
    "pre_put",
    "pre_update",
    "remove",
    "size",
]
