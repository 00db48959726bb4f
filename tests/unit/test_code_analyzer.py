"""Tests for file and project analysis."""

import pytest

from codelens.analysis.code_analyzer import (
    AnalysisOptions,
    CodeAnalyzer,
    calculate_metrics,
    is_test_file,
)
from codelens.analysis.models import EntityType, RelationshipType
from codelens.analysis.patterns.rules import find_import_cycles
from codelens.analysis.relationship_extractor import module_id
from helpers import FakeGraph, make_entity


@pytest.fixture
def analyzer(parser):
    return CodeAnalyzer(parser=parser)


class FakeVectors:
    def __init__(self, hits):
        self.hits = hits
        self.calls = []

    async def search(self, query_text, limit=10, score_threshold=None, file_path_filter=None):
        self.calls.append((query_text, limit, score_threshold))
        return self.hits


@pytest.mark.asyncio
class TestAnalyzeFile:
    async def test_entities_relationships_and_metrics(self, analyzer, service_source):
        result = await analyzer.analyze_file("src/service.ts", service_source)

        assert result.success
        analysis = result.data
        assert analysis.files_analyzed == 1
        assert analysis.metrics.classes == 1
        assert analysis.metrics.functions == 4
        assert analysis.metrics.total_lines == len(service_source.split("\n"))
        assert any(e.type == EntityType.MODULE for e in analysis.entities)
        assert any(r.type == RelationshipType.CALLS for r in analysis.relationships)

    async def test_private_members_included_by_default(self, analyzer):
        source = "class A {\n  private hidden() { return 1; }\n}\n"

        result = await analyzer.analyze_file("a.ts", source)

        assert "hidden" in {e.name for e in result.data.entities}

    async def test_unsupported_language(self, analyzer):
        result = await analyzer.analyze_file("main.py", "print(1)")

        assert not result.success
        assert result.error.code == "VALIDATION_ERROR"


@pytest.mark.asyncio
class TestAnalyzeProject:
    async def test_cross_file_imports(self, analyzer, cyclic_project):
        result = await analyzer.analyze_project(str(cyclic_project))

        assert result.success
        analysis = result.data
        assert analysis.files_analyzed == 3
        assert analysis.files_failed == 0

        file_modules = {
            e.id: e for e in analysis.entities if e.type == EntityType.MODULE and e.metadata.get("is_file")
        }
        cross_file = [
            r for r in analysis.relationships
            if r.type == RelationshipType.IMPORTS and r.metadata.get("cross_file")
        ]
        assert len(cross_file) == 3
        assert all(r.source_id in file_modules and r.target_id in file_modules for r in cross_file)

    async def test_placeholders_are_redirected(self, analyzer, cyclic_project):
        result = await analyzer.analyze_project(str(cyclic_project))

        entity_ids = {e.id for e in result.data.entities}
        placeholder = module_id(str(cyclic_project / "src" / "b"))
        assert placeholder not in entity_ids
        assert all(r.target_id != placeholder for r in result.data.relationships)

    async def test_exactly_one_cycle(self, analyzer, cyclic_project):
        result = await analyzer.analyze_project(str(cyclic_project))

        cycles = find_import_cycles(result.data.entities, result.data.relationships)

        assert len(cycles) == 1
        assert len(cycles[0][0]) == 3

    async def test_named_imports_use_declarations(self, analyzer, cyclic_project):
        result = await analyzer.analyze_project(str(cyclic_project))
        by_id = {e.id: e for e in result.data.entities}

        used = {
            by_id[r.target_id].name
            for r in result.data.relationships
            if r.type == RelationshipType.USES and r.target_id in by_id
        }

        assert {"a", "b", "c"} <= used

    async def test_missing_directory(self, analyzer, tmp_path):
        result = await analyzer.analyze_project(str(tmp_path / "nope"))

        assert result.error.code == "NOT_FOUND"

    async def test_unreadable_file_counts_as_failed(self, analyzer, tmp_path):
        (tmp_path / "ok.ts").write_text("export const ok = 1;\n")
        (tmp_path / "bad.ts").write_bytes(b"\xff\xfe\x00bad")

        result = await analyzer.analyze_project(str(tmp_path))

        assert result.data.files_analyzed == 1
        assert result.data.files_failed == 1


class TestDiscoverFiles:
    @pytest.fixture
    def project(self, tmp_path):
        for relative in (
            "src/app.ts",
            "src/view.tsx",
            "src/legacy.js",
            "src/app.test.ts",
            "src/__tests__/helper.ts",
            "node_modules/lib/index.js",
            "generated/out.ts",
            "README.md",
        ):
            path = tmp_path / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("export {};\n")
        (tmp_path / ".gitignore").write_text("generated/\n")
        return tmp_path

    def names(self, files, root):
        return sorted(str(f)[len(str(root)) + 1:].replace("\\", "/") for f in files)

    def test_defaults(self, analyzer, project):
        files = analyzer.discover_files(str(project))

        assert self.names(files, project) == ["src/app.ts", "src/legacy.js", "src/view.tsx"]

    def test_include_tests_and_ignore_gitignore(self, analyzer, project):
        options = AnalysisOptions(include_tests=True, follow_gitignore=False)

        names = self.names(analyzer.discover_files(str(project), options), project)

        assert "src/app.test.ts" in names
        assert "src/__tests__/helper.ts" in names
        assert "generated/out.ts" in names
        assert "node_modules/lib/index.js" not in names

    def test_language_filter(self, analyzer, project):
        options = AnalysisOptions(languages=["javascript"])

        assert self.names(analyzer.discover_files(str(project), options), project) == ["src/legacy.js"]

    def test_exclude_patterns(self, analyzer, project):
        options = AnalysisOptions(exclude_patterns=["*.tsx"])

        assert "src/view.tsx" not in self.names(analyzer.discover_files(str(project), options), project)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("src/app.test.ts", True),
        ("src/app.spec.tsx", True),
        ("tests/util.ts", True),
        ("src/__mocks__/api.ts", True),
        ("src/testing.ts", False),
        ("src/contest.ts", False),
    ],
)
def test_is_test_file(path, expected):
    assert is_test_file(path) is expected


def test_metrics_ignore_external_placeholders():
    from codelens.analysis.models import ExternalEntity

    local = make_entity("f", complexity=4)
    external = ExternalEntity(id="x", name="g", type=EntityType.FUNCTION)

    metrics = calculate_metrics("a\nb", [local, external])

    assert metrics.functions == 1
    assert metrics.complexity == 4
    assert metrics.total_lines == 2


@pytest.mark.asyncio
class TestGraphAndVectors:
    async def test_impact_analysis(self, parser):
        graph = FakeGraph([{"dependent": {"id": "d1"}, "dependency": {"id": "x1"}}])
        analyzer = CodeAnalyzer(graph=graph, parser=parser)

        result = await analyzer.get_impact_analysis("abc")

        assert result.success
        assert result.data["direct_dependents"] == [{"id": "d1"}]
        assert result.data["depends_on"] == [{"id": "x1"}]
        assert result.data["risk_level"] == "low"
        assert all(params == {"entity_id": "abc"} for _, params in graph.calls)

    async def test_impact_analysis_risk_levels(self, parser):
        graph = FakeGraph([{"dependent": {"id": f"d{i}"}} for i in range(6)])

        result = await CodeAnalyzer(graph=graph, parser=parser).get_impact_analysis("abc")

        # 6 direct plus 6 indirect
        assert result.data["risk_level"] == "medium"

    async def test_impact_analysis_without_graph(self, analyzer):
        result = await analyzer.get_impact_analysis("abc")

        assert result.error.code == "VALIDATION_ERROR"

    async def test_find_similar_code(self, parser):
        vectors = FakeVectors([{"id": "1", "type": "Function", "score": 0.9}, {"id": "2", "type": "chunk"}])
        analyzer = CodeAnalyzer(vectors=vectors, parser=parser)

        result = await analyzer.find_similar_code("def f(): pass", limit=5, threshold=0.7)

        assert [hit["id"] for hit in result.data] == ["1"]
        assert vectors.calls == [("def f(): pass", 5, 0.7)]

    async def test_find_similar_code_without_vectors(self, analyzer):
        result = await analyzer.find_similar_code("x")

        assert result.error.code == "VALIDATION_ERROR"
