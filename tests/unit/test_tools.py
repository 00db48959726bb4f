"""Tests for the MCP tool layer."""

import pytest

from codelens.analysis.engine import AnalysisEngine
from codelens.analysis.errors import NotFoundError, Result
from codelens.tools.analysis_tool import AnalysisTool, error_response, result_response
from codelens.tools.query_tool import QueryTool
from helpers import FakeGraph


class FakeVectorStore:
    def __init__(self):
        self.stored = []
        self.deleted = []

    async def store(self, entities):
        self.stored.append(list(entities))
        return len(entities)

    def delete_by_file_path(self, file_path):
        self.deleted.append(file_path)


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def tool(graph):
    return AnalysisTool(AnalysisEngine(graph=graph), graph=graph)


def test_error_response():
    response = error_response(NotFoundError("File not found: x.ts", {"file_path": "x.ts"}))

    assert response == {
        "success": False,
        "error": "File not found: x.ts",
        "error_code": "NOT_FOUND",
        "context": {"file_path": "x.ts"},
    }


def test_result_response():
    assert result_response(Result.ok(["a"]), context="x") == {"success": True, "context": "x", "data": ["a"]}
    assert result_response(Result.fail(NotFoundError("gone")))["error_code"] == "NOT_FOUND"


@pytest.mark.asyncio
class TestAnalysisTool:
    async def test_analyze_file_from_disk(self, tool, graph, tmp_path, service_source):
        path = tmp_path / "service.ts"
        path.write_text(service_source)

        response = await tool.analyze_file(str(path))

        assert response["success"]
        assert response["total_entities"] == len(response["entities"])
        assert response["stored"]["graph"]["nodes"] == response["total_entities"]
        assert len(graph.stored) == 1

    async def test_analyze_file_without_storing(self, tool, graph, service_source):
        response = await tool.analyze_file(
            "src/service.ts", service_source, store_results=False, include_entities=False
        )

        assert response["success"]
        assert "entities" not in response
        assert "stored" not in response
        assert graph.stored == []

    async def test_missing_file(self, tool, tmp_path):
        response = await tool.analyze_file(str(tmp_path / "missing.ts"))

        assert response["success"] is False
        assert response["error_code"] == "NOT_FOUND"

    async def test_analyze_project_persists_once(self, tool, graph, cyclic_project):
        first = await tool.analyze_project(str(cyclic_project))
        second = await tool.analyze_project(str(cyclic_project))

        assert first["cached"] is False
        assert second["cached"] is True
        assert "stored" not in second
        assert len(graph.stored) == 1
        assert first["files_analyzed"] == 3
        assert any(p["name"] == "Circular Dependency" for p in first["patterns"])
        assert "entities" not in first

    async def test_vectors_receive_entities(self, cyclic_project):
        vectors = FakeVectorStore()
        tool = AnalysisTool(AnalysisEngine(), vectors=vectors)

        response = await tool.analyze_project(str(cyclic_project))

        assert response["stored"]["vectors"] == response["total_entities"]

    async def test_deleted_files_are_removed_from_stores(self, graph, cyclic_project):
        vectors = FakeVectorStore()
        tool = AnalysisTool(AnalysisEngine(graph=graph), graph=graph, vectors=vectors)
        path = str(cyclic_project)
        await tool.analyze_project(path)

        deleted = str(cyclic_project / "src" / "c.ts")
        await tool.handle_file_changes(set(), {deleted})

        assert graph.deleted == [deleted]
        assert vectors.deleted == [deleted]
        assert (await tool.analyze_project(path))["cached"] is False

    async def test_modified_files_are_reanalyzed(self, graph, cyclic_project):
        tool = AnalysisTool(AnalysisEngine(graph=graph), graph=graph)
        modified = str(cyclic_project / "src" / "a.ts")

        await tool.handle_file_changes({modified}, set())

        assert graph.deleted == [modified]
        assert len(graph.stored) == 1

    async def test_changes_without_stores_only_invalidate(self, cyclic_project):
        engine = AnalysisEngine()
        tool = AnalysisTool(engine)
        path = str(cyclic_project)
        await tool.analyze_project(path)

        await tool.handle_file_changes({str(cyclic_project / "src" / "a.ts")}, set())

        assert (await tool.analyze_project(path))["cached"] is False

    async def test_status_and_cache(self, tool):
        assert tool.get_analysis_status()["success"] is True
        assert tool.clear_analysis_cache() == {"success": True, "message": "Analysis cache cleared"}

    async def test_impact_analysis(self, graph):
        graph.rows = [{"dependent": {"id": "d"}}]
        tool = AnalysisTool(AnalysisEngine(graph=graph), graph=graph)

        response = await tool.get_impact_analysis("abc")

        assert response["success"]
        assert response["entity_id"] == "abc"
        assert response["risk_level"] == "low"

    async def test_similar_code_needs_vectors(self, tool):
        response = await tool.find_similar_code("function f() {}")

        assert response["error_code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
class TestQueryTool:
    async def test_query_code(self):
        graph = FakeGraph([{"entity": {"id": "1", "name": "parse", "complexity": 5}}])
        tool = QueryTool(AnalysisEngine(graph=graph))

        response = await tool.query_code("What are the most complex functions?")

        assert response["success"]
        assert response["intent"]["type"] == "find"
        assert response["intent"]["target"] == "function"
        assert response["total_results"] == 1
        assert response["metrics"]["avg_complexity"] == 5
        assert response["explanations"]

    async def test_empty_query(self):
        response = await QueryTool(AnalysisEngine()).query_code("  ")

        assert response["error_code"] == "QUERY_PARSE_ERROR"

    async def test_suggestions(self):
        response = QueryTool(AnalysisEngine()).get_query_suggestions("singleton")

        assert response["success"]
        assert response["context"] == "singleton"
        assert response["data"] == ["Show me all Singleton implementations"]
