from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import pytest

from dynamap_py import (
    GlobalIndexAttributes,
    GlobalIndexKeys,
    KeyAttribute,
    TableDefinition,
    ValidationError,
    dynamap_field,
    post_load,
)
from dynamap_py.mapper import ItemMapper
from dynamap_py.registry import MetadataRegistry

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
    score: float | None = None
    tags: set[str] = field(default_factory=set)
    title: str | None = dynamap_field(name="t", default=None)


def _mapper() -> ItemMapper[Project]:
    md = MetadataRegistry().register(
        Project,
        table=PROJECTS,
        partition_key="{{name}}",
        sort_key="VER:{{version}}#REV:{{revision}}",
        gsi={"date-index": GlobalIndexKeys("PROJECTS", "{{date}}")},
    )
    return ItemMapper(Project, md)


def test_key_only_contains_key_attributes() -> None:
    mapper = _mapper()
    source = {"name": "PROJECT_A", "version": "Initial", "revision": 515, "date": 1}
    assert mapper.key(source) == {"pk": "PROJECT_A", "sk": "VER:Initial#REV:515"}


def test_serialize_writes_keys_index_keys_and_attributes() -> None:
    mapper = _mapper()
    project = Project(name="PROJECT_A", version="Initial", revision=515, date=1662541189, title="A")

    assert mapper.serialize(project) == {
        "pk": "PROJECT_A",
        "sk": "VER:Initial#REV:515",
        "gsi1pk": "PROJECTS",
        "gsi1sk": 1662541189,
        "date": 1662541189,
        "t": "A",
    }


def test_serialize_skips_missing_values_and_incomplete_index_keys() -> None:
    mapper = _mapper()
    item = mapper.serialize(Project(name="A", version="v", revision=1))
    assert "date" not in item
    assert "gsi1sk" not in item
    assert "tags" not in item
    assert item["gsi1pk"] == "PROJECTS"


def test_store_round_trip() -> None:
    mapper = _mapper()
    project = Project(
        name="PROJECT_A",
        version="Initial",
        revision=515,
        date=1662541189,
        score=1.5,
        tags={"a", "b"},
        title="A",
    )

    stored = mapper.to_store(mapper.serialize(project))
    assert stored["date"] == {"N": "1662541189"}
    assert stored["score"] == {"N": "1.5"}
    assert stored["sk"] == {"S": "VER:Initial#REV:515"}

    loaded = mapper.deserialize(mapper.from_store(stored))
    assert loaded == project
    assert isinstance(loaded.revision, int)
    assert isinstance(loaded.score, float)


def test_load_values_with_index_keys() -> None:
    mapper = _mapper()
    pk_def, sk_def = mapper.metadata.resolve_index("date-index")
    item = {
        "pk": "PROJECT_A",
        "sk": "VER:Initial#REV:515",
        "gsi1pk": "PROJECTS",
        "gsi1sk": Decimal("1662541189"),
    }

    values = mapper.load_values(item, pk_def, sk_def)
    assert values == {"date": 1662541189, "name": "PROJECT_A", "version": "Initial", "revision": 515}


def test_instantiate_fills_missing_required_fields_with_none() -> None:
    mapper = _mapper()
    project = mapper.instantiate({"name": "A"})
    assert project == Project(name="A", version=None, revision=None)  # type: ignore[arg-type]

    with pytest.raises(ValidationError, match="unknown attributes"):
        mapper.instantiate({"name": "A", "nope": 1})


def test_coerce_input_keeps_instances() -> None:
    mapper = _mapper()
    project = Project(name="A", version="v", revision=1)
    assert mapper.coerce_input(project) is project
    assert mapper.coerce_input({"name": "A", "version": "v", "revision": 1}) == project
    with pytest.raises(ValidationError):
        mapper.coerce_input(42)  # type: ignore[arg-type]


def test_post_load_hooks_run_in_order() -> None:
    @dataclass
    class Note:
        id: str
        calls: list[str] = dynamap_field(ignore=True, default_factory=list)

        @post_load
        def first(self) -> None:
            self.calls.append("first")

        @post_load
        def second(self) -> None:
            self.calls.append("second")

    md = MetadataRegistry().register(Note, table=TableDefinition("notes", sort_key=None), partition_key="NOTE#{{id}}")
    note = ItemMapper(Note, md).deserialize({"pk": "NOTE#1"})
    assert note.id == "1"
    assert note.calls == ["first", "second"]
