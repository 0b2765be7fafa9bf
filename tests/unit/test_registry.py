from __future__ import annotations

from dataclasses import dataclass

import pytest

from dynamap_py import (
    ConfigurationError,
    GlobalIndexAttributes,
    GlobalIndexKeys,
    KeyAttribute,
    KeyDef,
    TableDefinition,
    ValidationError,
    dynamap_field,
    post_load,
    pre_put,
)
from dynamap_py.registry import MetadataRegistry, infer_type

PROJECTS = TableDefinition(
    name="projects",
    gsi={
        "date-index": GlobalIndexAttributes(
            partition_key=KeyAttribute("gsi1pk"),
            sort_key=KeyAttribute("gsi1sk", "N"),
        )
    },
)


@dataclass
class Project:
    name: str
    version: str
    revision: int
    date: int | None = None


@dataclass
class Item:
    name: str
    date: int | None = None


def _register_project(registry: MetadataRegistry, **kwargs):
    return registry.register(
        Project,
        table=kwargs.pop("table", PROJECTS),
        partition_key="{{name}}",
        sort_key="VER:{{version}}#REV:{{revision}}",
        **kwargs,
    )


def test_register_builds_finalized_metadata() -> None:
    md = _register_project(MetadataRegistry())

    assert md.finalized is True
    assert md.table_name == "projects"
    assert md.partition_key == KeyDef(name="pk", expression="{{name}}", template_attributes=frozenset({"name"}))
    assert md.sort_key is not None
    assert md.sort_key.template_attributes == frozenset({"version", "revision"})
    assert md.key_attributes == frozenset({"name", "version", "revision"})
    assert list(md.attributes) == ["name", "version", "revision", "date"]
    assert md.attributes["name"].type == "S"
    assert md.attributes["revision"].type == "N"
    assert md.attributes["date"].type == "N"


def test_finalized_metadata_is_frozen() -> None:
    md = _register_project(MetadataRegistry())
    with pytest.raises(ConfigurationError, match="finalized"):
        md.set_type("date", "S")
    with pytest.raises(ConfigurationError, match="finalized"):
        md.table_name = "other"


def test_register_resolves_configured_table_names() -> None:
    registry = MetadataRegistry({"projects": PROJECTS})
    md = _register_project(registry, table="projects", gsi={"date-index": GlobalIndexKeys("PROJECTS", "{{date}}")})

    index = md.gsi["date-index"]
    assert index.partition_key == KeyDef(name="gsi1pk", expression="PROJECTS")
    assert index.sort_key == KeyDef(
        name="gsi1sk", type="N", expression="{{date}}", template_attributes=frozenset({"date"})
    )
    assert md.resolve_index("date-index") == (index.partition_key, index.sort_key)
    with pytest.raises(ValidationError, match="unknown index"):
        md.resolve_index("nope")


def test_added_tables_are_resolved_by_name() -> None:
    registry = MetadataRegistry()
    registry.add_table(TableDefinition("items", partition_key=KeyAttribute("id"), sort_key=None))

    md = registry.register(Item, table="items", partition_key="ITEM#{{name}}")
    assert md.partition_key.name == "id"
    assert md.sort_key is None
    assert list(registry.tables) == ["items"]


def test_unknown_table_names_get_default_keys() -> None:
    md = MetadataRegistry().register(Item, table="items", partition_key="ITEM#{{name}}", sort_key="ITEM")
    assert md.table is not None
    assert md.partition_key.name == "pk"
    assert md.sort_key is not None and md.sort_key.name == "sk"


def test_missing_partition_key_expression() -> None:
    with pytest.raises(ConfigurationError, match="partition key expression is required"):
        MetadataRegistry().register(Item, table=TableDefinition("items", sort_key=None))

    with pytest.raises(ConfigurationError, match="partition key expression is required"):
        MetadataRegistry().register(Item, table=TableDefinition("items", sort_key=None), partition_key="  ")


def test_sort_key_in_use_without_expression() -> None:
    with pytest.raises(ConfigurationError, match="no expression"):
        MetadataRegistry().register(Item, table="items", partition_key="{{name}}")


def test_partition_key_only_table() -> None:
    md = MetadataRegistry().register(Item, table=TableDefinition("items", sort_key=None), partition_key="{{name}}")
    assert md.sort_key is None

    with pytest.raises(ConfigurationError, match="no sort key"):
        MetadataRegistry().register(
            Item, table=TableDefinition("items", sort_key=None), partition_key="{{name}}", sort_key="X"
        )


def test_adjacent_placeholders_are_rejected() -> None:
    with pytest.raises(ConfigurationError, match="adjacent placeholders"):
        MetadataRegistry().register(Item, table="items", partition_key="X", sort_key="{{name}}{{date}}")


def test_undeclared_index_names_the_index() -> None:
    table = TableDefinition(
        "items", gsi={"other-index": GlobalIndexAttributes(partition_key=KeyAttribute("gsi1pk"))}
    )
    with pytest.raises(ConfigurationError, match="date-index"):
        MetadataRegistry().register(
            Item,
            table=table,
            partition_key="{{name}}",
            sort_key="ITEM",
            gsi={"date-index": "{{date}}"},
        )


def test_index_direction_must_match() -> None:
    table = TableDefinition("items", lsi={"date-index": KeyAttribute("lsi1")})
    with pytest.raises(ConfigurationError, match="date-index"):
        MetadataRegistry().register(
            Item, table=table, partition_key="{{name}}", sort_key="ITEM", gsi={"date-index": "{{date}}"}
        )


def test_indexes_without_table_index_configuration() -> None:
    with pytest.raises(ConfigurationError, match="no index configuration"):
        MetadataRegistry().register(
            Item, table="items", partition_key="{{name}}", sort_key="ITEM", lsi={"date-index": "{{date}}"}
        )


def test_global_index_sort_template_requires_table_sort_key() -> None:
    table = TableDefinition("items", gsi={"name-index": GlobalIndexAttributes(partition_key=KeyAttribute("g"))})
    with pytest.raises(ConfigurationError, match="name-index has no sort key"):
        MetadataRegistry().register(
            Item,
            table=table,
            partition_key="{{name}}",
            sort_key="ITEM",
            gsi={"name-index": GlobalIndexKeys("{{name}}", "{{date}}")},
        )


def test_local_index() -> None:
    table = TableDefinition("items", lsi={"date-index": KeyAttribute("lsi1", "N")})
    md = MetadataRegistry().register(
        Item, table=table, partition_key="{{name}}", sort_key="ITEM", lsi={"date-index": "{{date}}"}
    )
    assert md.resolve_index("date-index") == (md.partition_key, md.lsi["date-index"])
    assert md.lsi["date-index"].type == "N"


def test_key_templates_must_reference_fields() -> None:
    with pytest.raises(ConfigurationError, match="unknown fields: missing"):
        MetadataRegistry().register(Item, table="items", partition_key="{{name}}", sort_key="{{missing}}")


def test_register_twice_fails() -> None:
    registry = MetadataRegistry()
    _register_project(registry)
    with pytest.raises(ConfigurationError, match="already registered"):
        _register_project(registry)


def test_register_requires_dataclass() -> None:
    class Plain:
        pass

    with pytest.raises(ConfigurationError, match="dataclass"):
        MetadataRegistry().register(Plain, table="items", partition_key="X")


def test_register_requires_table() -> None:
    with pytest.raises(ConfigurationError, match="table name is required"):
        MetadataRegistry().register(Item, partition_key="{{name}}")


def test_field_options() -> None:
    @dataclass
    class Note:
        id: str = dynamap_field(partition_key=True)
        code: str = dynamap_field(type="N", default="0")
        title: str = dynamap_field(name="t", default="")
        cached: str = dynamap_field(ignore=True, default="")

    md = MetadataRegistry().register(Note, table=TableDefinition("notes", sort_key=None))
    assert md.partition_key.expression == "{{id}}"
    assert md.attributes["code"].type == "N"
    assert md.attributes["title"].attribute_name == "t"
    assert "cached" not in md.attributes


def test_field_flag_and_explicit_key_conflict() -> None:
    @dataclass
    class Note:
        id: str = dynamap_field(partition_key=True)

    with pytest.raises(ConfigurationError, match="declared twice"):
        MetadataRegistry().register(Note, table=TableDefinition("notes", sort_key=None), partition_key="{{id}}")


def test_hooks_are_collected_in_declaration_order() -> None:
    @dataclass
    class Note:
        id: str

        @pre_put
        def first(self) -> None:
            pass

        @pre_put
        def second(self) -> None:
            pass

        @post_load
        def loaded(self) -> None:
            pass

    md = MetadataRegistry().register(Note, table=TableDefinition("notes", sort_key=None), partition_key="{{id}}")
    assert md.hooks["pre_put"] == ("first", "second")
    assert md.hooks["post_load"] == ("loaded",)
    assert md.hooks["pre_update"] == ()


def test_subclasses_inherit_and_stay_independent() -> None:
    @dataclass
    class Base:
        name: str

    @dataclass
    class Left(Base):
        left: str | None = None

    @dataclass
    class Right(Base):
        right: int | None = None

    registry = MetadataRegistry()
    registry.register(Base, table=TableDefinition("things", sort_key=None), partition_key="THING#{{name}}")

    assert registry.has_metadata(Left) is False
    inherited = registry.get_metadata(Left)
    assert registry.has_metadata(Left) is True
    assert inherited.table_name == "things"
    assert inherited.partition_key.expression == "THING#{{name}}"

    left = registry.register(Left)
    right = registry.register(Right)

    assert left.table_name == right.table_name == "things"
    assert left.partition_key.expression == right.partition_key.expression == "THING#{{name}}"
    assert "left" in left.attributes and "left" not in right.attributes
    assert "right" in right.attributes and "right" not in left.attributes
    base = registry.get_metadata(Base)
    assert "left" not in base.attributes and "right" not in base.attributes


def test_infer_type() -> None:
    assert infer_type(int) == "N"
    assert infer_type(float | None) == "N"
    assert infer_type(str) == "S"
    assert infer_type(bool) is None
    assert infer_type(set[str]) is None
