"""Tests for the natural-language query processor."""

import pytest

from codelens.analysis.query.intents import QueryIntent
from codelens.analysis.query.nl_processor import (
    QUERY_SUGGESTIONS,
    NaturalLanguageProcessor,
    NLQueryOptions,
    apply_filters,
    entity_value,
)
from helpers import FakeGraph

ROWS = [
    {"entity": {"id": "1", "name": "parse", "type": "Function", "file_path": "src/p.ts", "line": 3, "complexity": 4}},
    {"entity": {"id": "2", "name": "render", "type": "Function", "file_path": "src/r.ts", "line": 9, "complexity": 8}},
]


class BrokenGraph:
    def query(self, cypher, params=None):
        raise ConnectionError("graph is down")


@pytest.mark.asyncio
class TestProcessQuery:
    async def test_find_with_metrics(self):
        processor = NaturalLanguageProcessor(FakeGraph(ROWS))

        result = await processor.process_query("find functions", NLQueryOptions(include_metrics=True))

        assert result.success
        assert [e["name"] for e in result.data.entities] == ["parse", "render"]
        assert result.data.metrics == {"total_entities": 2, "total_relationships": 0, "avg_complexity": 6.0}
        assert result.data.intent.target == "function"

    async def test_name_filter_is_parameterized(self):
        graph = FakeGraph(ROWS)
        processor = NaturalLanguageProcessor(graph)

        result = await processor.process_query("functions named parse")

        assert [e["name"] for e in result.data.entities] == ["parse"]
        cypher, params = graph.calls[0]
        assert "$name" in cypher
        assert params == {"name": "parse"}

    async def test_empty_query_is_a_parse_error(self):
        result = await NaturalLanguageProcessor(FakeGraph(ROWS)).process_query("")

        assert not result.success
        assert result.error.code == "QUERY_PARSE_ERROR"

    async def test_without_graph_results_are_empty(self):
        result = await NaturalLanguageProcessor().process_query(
            "find functions", NLQueryOptions(include_suggestions=True)
        )

        assert result.success
        assert result.data.entities == []
        assert "Try broadening your search criteria." in result.data.suggestions

    async def test_graph_failure_yields_empty_result(self):
        result = await NaturalLanguageProcessor(BrokenGraph()).process_query("find functions")

        assert result.success
        assert result.data.entities == []

    async def test_count(self):
        result = await NaturalLanguageProcessor(FakeGraph(ROWS)).process_query("how many things are there")

        assert result.data.metrics == {"count": 2}
        assert result.data.entities == []

    async def test_explain_describes_entities(self):
        result = await NaturalLanguageProcessor(FakeGraph(ROWS)).process_query(
            "explain the code", NLQueryOptions(include_explanations=True)
        )

        explanations = result.data.explanations
        assert explanations[0] == "Found 2 function(s) matching your query."
        assert "parse is a Function in src/p.ts at line 3 with complexity 4." in explanations

    async def test_analyze_functions(self):
        result = await NaturalLanguageProcessor(FakeGraph(ROWS)).process_query("analyze complexity")

        metrics = result.data.metrics
        assert metrics["count"] == 2
        assert metrics["max_complexity"] == 8
        assert metrics["avg_complexity"] == 6.0

    async def test_max_results(self):
        result = await NaturalLanguageProcessor(FakeGraph(ROWS)).process_query(
            "find functions", NLQueryOptions(max_results=1)
        )

        assert len(result.data.entities) == 1


class TestBuildCypher:
    def test_function_filters_and_modifiers(self):
        intent = QueryIntent(
            type="find",
            target="function",
            filters={"complexity": ("gt", 5)},
            modifiers={"limit": 3, "sort_by": "complexity"},
        )

        cypher, params = NaturalLanguageProcessor().build_cypher(intent)

        assert cypher == (
            "MATCH (f:Function) WHERE f.complexity > $complexity "
            "RETURN f as entity ORDER BY f.complexity LIMIT 3"
        )
        assert params == {"complexity": 5}

    def test_unsafe_sort_key_is_ignored(self):
        intent = QueryIntent(type="find", target="function", modifiers={"sort_by": "name; DROP"})

        cypher, _ = NaturalLanguageProcessor().build_cypher(intent)

        assert "ORDER BY" not in cypher

    def test_generic_target(self):
        cypher, params = NaturalLanguageProcessor().build_cypher(QueryIntent(type="find", target="file"))

        assert cypher == "MATCH (n) RETURN n as entity LIMIT 50"
        assert params == {}


class TestHelpers:
    def test_suggestions_filtered_by_context(self):
        result = NaturalLanguageProcessor().get_query_suggestions("security")

        assert result.data == ["What security issues were found?"]

    def test_all_suggestions_without_context(self):
        suggestions = NaturalLanguageProcessor().get_query_suggestions().data

        assert suggestions == QUERY_SUGGESTIONS
        assert len(suggestions) == 28

    def test_entity_value_reads_metadata(self):
        entity = {"name": "f", "complexity": None, "metadata": {"complexity": 7}}

        assert entity_value(entity, "complexity") == 7
        assert entity_value(entity, "missing", 0) == 0

    def test_apply_filters(self):
        entities = [row["entity"] for row in ROWS]

        assert apply_filters(entities, {"complexity": ("lt", 5)}) == [entities[0]]
        assert apply_filters(entities, {"name": "REND"}) == [entities[1]]
        assert apply_filters(entities, {"language": "python"}) == []
