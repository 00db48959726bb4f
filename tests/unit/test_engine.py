"""Tests for the analysis engine."""

import asyncio
import os

import pytest

from codelens.analysis.engine import (
    AnalysisEngine,
    AnalysisEngineConfig,
    cache_key,
    generate_summary,
    insight_options,
)
from codelens.analysis.insights import InsightsReport
from codelens.analysis.models import AnalysisResult
from codelens.analysis.patterns.models import TechnicalDebtReport
from helpers import FakeGraph


def pattern_names(result):
    return [p.name for p in result.data.patterns]


@pytest.mark.asyncio
class TestAnalyzeProject:
    async def test_cycle_is_reported(self, cyclic_project):
        engine = AnalysisEngine()

        result = await engine.analyze_project(str(cyclic_project))

        assert result.success
        assert pattern_names(result).count("Circular Dependency") == 1
        assert result.data.analysis.files_analyzed == 3
        assert result.data.summary["metrics"]["total_functions"] == 3
        assert result.data.insights.summary["critical_insights"] == 1

    async def test_repeat_is_served_from_cache(self, cyclic_project):
        engine = AnalysisEngine()

        first = await engine.analyze_project(str(cyclic_project))
        second = await engine.analyze_project(str(cyclic_project))

        assert "cached" not in first.metadata
        assert second.metadata["cached"] is True
        assert second.data is first.data

    async def test_concurrent_request_for_same_path_fails_fast(self, cyclic_project):
        engine = AnalysisEngine()
        path = str(cyclic_project)

        results = await asyncio.gather(engine.analyze_project(path), engine.analyze_project(path))

        assert [r.success for r in results] == [True, False]
        assert results[1].error.code == "ALREADY_IN_PROGRESS"
        assert engine.get_analysis_status()["is_analyzing"] is False

        third = await engine.analyze_project(path)
        assert third.metadata.get("cached") is True

        engine.clear_cache()
        fresh = await engine.analyze_project(path)
        assert fresh.success
        assert "cached" not in fresh.metadata

    async def test_file_change_invalidates_cached_analysis(self, cyclic_project):
        engine = AnalysisEngine()
        path = str(cyclic_project)
        await engine.analyze_project(path)

        engine.notify_file_changed(os.path.join(path, "src", "a.ts"))
        result = await engine.analyze_project(path)

        assert result.success
        assert "cached" not in result.metadata

    async def test_change_during_analysis_is_not_served_from_cache(self, cyclic_project):
        engine = AnalysisEngine()
        path = str(cyclic_project)
        analyze = engine.code_analyzer.analyze_project

        async def analyze_with_concurrent_change(project_path, options):
            result = await analyze(project_path, options)
            engine.notify_file_changed(os.path.join(path, "src", "c.ts"))
            # another request applies the event before this result is stored
            engine.cache.get("unrelated")
            return result

        engine.code_analyzer.analyze_project = analyze_with_concurrent_change
        first = await engine.analyze_project(path)
        engine.code_analyzer.analyze_project = analyze
        second = await engine.analyze_project(path)

        assert first.success
        assert second.success
        assert "cached" not in second.metadata

    async def test_change_elsewhere_keeps_cache(self, cyclic_project, tmp_path_factory):
        engine = AnalysisEngine()
        path = str(cyclic_project)
        await engine.analyze_project(path)

        elsewhere = tmp_path_factory.mktemp("other") / "x.ts"
        engine.notify_file_changed(str(elsewhere), "deleted")
        result = await engine.analyze_project(path)

        assert result.metadata.get("cached") is True

    async def test_options_reach_pattern_detection(self, cyclic_project):
        engine = AnalysisEngine()

        result = await engine.analyze_project(str(cyclic_project), {"min_confidence": 0.99})

        assert "Circular Dependency" not in pattern_names(result)

    async def test_disabled_stages(self, cyclic_project):
        config = AnalysisEngineConfig(
            enable_pattern_detection=False,
            enable_debt_analysis=False,
            enable_insights_generation=False,
        )
        engine = AnalysisEngine(config=config)

        result = await engine.analyze_project(str(cyclic_project))

        assert result.data.patterns == []
        assert result.data.technical_debt.summary["total_items"] == 0
        assert result.data.insights.summary["total_insights"] == 0

    async def test_missing_directory(self, tmp_path):
        result = await AnalysisEngine().analyze_project(str(tmp_path / "missing"))

        assert not result.success
        assert result.error.code == "NOT_FOUND"


@pytest.mark.asyncio
class TestAnalyzeFile:
    async def test_single_file(self, service_source):
        result = await AnalysisEngine().analyze_file("src/service.ts", service_source)

        assert result.success
        assert result.data.analysis.files_analyzed == 1
        assert result.data.summary["metrics"]["total_classes"] == 1

    async def test_factory_function_is_detected(self):
        source = "class User {}\nexport function createUser() { return new User(); }\n"

        result = await AnalysisEngine().analyze_file("src/app.ts", source)

        assert "Factory Pattern" in pattern_names(result)

    async def test_callback_is_not_dead_code(self):
        source = (
            "function helper(item) { return item; }\n"
            "export function run(items) { return items.map(helper); }\n"
        )

        result = await AnalysisEngine().analyze_file("src/run.ts", source)

        by_id = {e.id: e.name for e in result.data.analysis.entities}
        dead = [
            [by_id.get(entity_id) for entity_id in p.entities]
            for p in result.data.patterns
            if p.name == "Dead Code"
        ]
        assert ["helper"] not in dead

    async def test_unsupported_file(self):
        result = await AnalysisEngine().analyze_file("notes.md", "# notes")

        assert not result.success
        assert result.error.code == "VALIDATION_ERROR"


@pytest.mark.asyncio
class TestQueries:
    async def test_query_goes_through_graph(self):
        graph = FakeGraph([{"entity": {"id": "1", "name": "parse", "complexity": 3}}])
        engine = AnalysisEngine(graph=graph)

        result = await engine.process_query("find functions")

        assert result.success
        assert result.data.entities[0]["name"] == "parse"

    async def test_disabled_queries(self):
        engine = AnalysisEngine()
        engine.update_config(enable_natural_language_queries=False)

        result = await engine.process_query("find functions")

        assert result.error.code == "VALIDATION_ERROR"
        assert engine.get_query_suggestions().error.code == "VALIDATION_ERROR"

    async def test_impact_analysis_needs_graph(self):
        result = await AnalysisEngine().get_impact_analysis("abc")

        assert result.error.code == "VALIDATION_ERROR"


class TestConfiguration:
    def test_update_config(self):
        engine = AnalysisEngine()

        result = engine.update_config(analysis_depth="comprehensive", batch_size=20)

        assert result.success
        assert engine.config.analysis_depth == "comprehensive"
        assert engine.config.batch_size == 20

    def test_unknown_option(self):
        engine = AnalysisEngine()

        result = engine.update_config(turbo=True)

        assert result.error.code == "VALIDATION_ERROR"
        assert "turbo" in result.error_message

    def test_invalid_depth_changes_nothing(self):
        engine = AnalysisEngine()

        result = engine.update_config(analysis_depth="deep", batch_size=99)

        assert not result.success
        assert engine.config.batch_size == 10

    def test_status(self):
        status = AnalysisEngine().get_analysis_status()

        assert status["is_analyzing"] is False
        assert status["cache_size"] == 0
        assert status["config"]["analysis_depth"] == "detailed"

    def test_stop_discards_pending_events(self):
        engine = AnalysisEngine()
        engine.notify_file_changed("/work/a.ts")

        engine.stop()

        assert engine.cache.get_metrics()["pending_events"] == 0


class TestHelpers:
    def test_cache_key_ignores_option_order(self):
        assert cache_key("/p", {"a": 1, "b": 2}) == cache_key("/p", {"b": 2, "a": 1})
        assert cache_key("/p", {"a": 1}) != cache_key("/q", {"a": 1})

    def test_insight_options(self):
        options = insight_options({"insight_types": ["quality"], "insight_min_confidence": 0.8})

        assert options.include_types == ["quality"]
        assert options.min_confidence == 0.8
        assert options.focus_areas is None

    def test_summary_of_empty_analysis(self):
        summary = generate_summary(
            AnalysisResult(), [], TechnicalDebtReport.empty(), InsightsReport.empty()
        )

        assert summary["overall_health"] == 100
        assert summary["critical_issues"] == 0
        assert summary["recommendations"] == ["Code quality is good, continue current practices"]
