"""Tests for graph property conversion."""

import json

from codelens.analysis.models import EntityType, entity_to_dict
from codelens.graph_db.neo4j_client import MAX_CONTENT_LENGTH, record_value, to_graph_properties
from helpers import make_entity


def test_metadata_is_lifted_to_properties():
    entity = make_entity("find", complexity=3, parameters=["id: string"], parent_class=None)

    properties = to_graph_properties(entity_to_dict(entity))

    assert properties["complexity"] == 3
    assert properties["parameters"] == ["id: string"]
    assert properties["type"] == EntityType.FUNCTION.value
    assert "metadata" not in properties
    assert "parent_class" not in properties
    assert "signature" not in properties


def test_non_primitive_values_are_json_encoded():
    properties = to_graph_properties({"id": "1", "metadata": {"filters": {"a": 1}, "lines": [1, 2]}})

    assert json.loads(properties["filters"]) == {"a": 1}
    assert json.loads(properties["lines"]) == [1, 2]


def test_content_is_truncated():
    entity = make_entity("big", content="x" * (MAX_CONTENT_LENGTH + 50))

    properties = to_graph_properties(entity_to_dict(entity))

    assert len(properties["content"]) == MAX_CONTENT_LENGTH


def test_record_value_passes_plain_values_through():
    row = {"entity": {"id": "1", "tags": ["a"]}, "count": 3}

    assert record_value(row) == row
