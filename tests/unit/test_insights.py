"""Tests for insight generation."""

import pytest

from codelens.analysis.insights import (
    INSIGHT_RULES,
    InsightOptions,
    InsightRule,
    InsightsGenerator,
    InsightsReport,
)
from codelens.analysis.models import AnalysisMetrics, AnalysisResult, RelationshipType
from codelens.analysis.patterns.detector import PatternDetector
from codelens.analysis.patterns.models import TechnicalDebtReport
from helpers import make_module, make_relationship


@pytest.fixture
def cycle_patterns():
    a, b = make_module("src/a.ts"), make_module("src/b.ts")
    relationships = [
        make_relationship(a, b, RelationshipType.IMPORTS),
        make_relationship(b, a, RelationshipType.IMPORTS),
    ]
    return PatternDetector().detect_patterns([a, b], relationships).data


@pytest.fixture
def complex_analysis():
    return AnalysisResult(metrics=AnalysisMetrics(functions=2, complexity=30))


@pytest.fixture
def poorly_documented_debt():
    debt = TechnicalDebtReport.empty()
    debt.metrics["documentation_coverage"] = 25.0
    return debt


def generate(analysis, patterns, debt, **options):
    result = InsightsGenerator().generate_insights(analysis, patterns, debt, InsightOptions(**options))
    assert result.success
    return result.data


class TestRules:
    def test_empty_analysis(self):
        report = generate(AnalysisResult(), [], TechnicalDebtReport.empty())

        assert report.summary["total_insights"] == 0
        assert report.prioritized_insights == []
        assert report.summary["overall_health"] == 95

    def test_high_average_complexity(self, complex_analysis):
        report = generate(complex_analysis, [], TechnicalDebtReport.empty())

        insight = report.prioritized_insights[0]
        assert insight.title == "High Average Complexity"
        assert insight.severity == "warning"
        assert insight.evidence["metrics"]["avg_complexity"] == 15

    def test_average_at_threshold_is_fine(self):
        analysis = AnalysisResult(metrics=AnalysisMetrics(functions=3, complexity=30))

        assert generate(analysis, [], TechnicalDebtReport.empty()).prioritized_insights == []

    def test_circular_dependency_is_critical(self, cycle_patterns):
        report = generate(AnalysisResult(), cycle_patterns, TechnicalDebtReport.empty())

        insight = report.prioritized_insights[0]
        assert insight.title == "Circular Dependencies Detected"
        assert insight.severity == "critical"
        assert insight.evidence["patterns"] == [cycle_patterns[0].id]
        assert report.action_plan["immediate"] == [insight]

    def test_low_documentation_coverage(self, poorly_documented_debt):
        report = generate(AnalysisResult(), [], poorly_documented_debt)

        insight = report.prioritized_insights[0]
        assert insight.title == "Low Documentation Coverage"
        assert insight.description == "Only 25% of functions are documented"
        assert report.summary["quick_wins"] == 1

    def test_high_debt_item_count(self):
        debt = TechnicalDebtReport.empty()
        debt.summary["total_items"] = 21

        report = generate(AnalysisResult(), [], debt)

        assert [i.title for i in report.prioritized_insights] == ["High Technical Debt"]


class TestReport:
    def test_prioritized_by_severity_then_confidence(
        self, complex_analysis, cycle_patterns, poorly_documented_debt
    ):
        report = generate(complex_analysis, cycle_patterns, poorly_documented_debt)

        assert [i.title for i in report.prioritized_insights] == [
            "Circular Dependencies Detected",
            "High Average Complexity",
            "Low Documentation Coverage",
        ]
        assert report.summary["critical_insights"] == 1
        assert report.summary["architectural_concerns"] == 1
        # critical 80, debt 100, architecture 85, maintainability 90, tests 75
        assert report.summary["overall_health"] == 86

    def test_grouping(self, complex_analysis, cycle_patterns, poorly_documented_debt):
        report = generate(complex_analysis, cycle_patterns, poorly_documented_debt)

        assert set(report.by_type) == {"architecture", "quality", "maintainability"}
        assert set(report.by_category) == {"dependencies", "complexity", "documentation"}

    def test_include_types(self, complex_analysis, cycle_patterns, poorly_documented_debt):
        report = generate(
            complex_analysis, cycle_patterns, poorly_documented_debt, include_types=["architecture"]
        )

        assert [i.type for i in report.prioritized_insights] == ["architecture"]

    def test_focus_areas(self, complex_analysis, cycle_patterns, poorly_documented_debt):
        report = generate(
            complex_analysis, cycle_patterns, poorly_documented_debt, focus_areas=["documentation"]
        )

        assert [i.category for i in report.prioritized_insights] == ["documentation"]

    def test_min_confidence(self, complex_analysis, cycle_patterns, poorly_documented_debt):
        report = generate(complex_analysis, cycle_patterns, poorly_documented_debt, min_confidence=0.8)

        assert "Low Documentation Coverage" not in [i.title for i in report.prioritized_insights]

    def test_failing_rule_is_skipped(self, complex_analysis):
        def broken(rule, analysis, patterns, debt):
            raise RuntimeError("boom")

        rules = (InsightRule("broken", "quality", ("complexity",), broken),) + INSIGHT_RULES
        result = InsightsGenerator(rules).generate_insights(
            complex_analysis, [], TechnicalDebtReport.empty()
        )

        assert result.success
        assert len(result.data.prioritized_insights) == 1

    def test_empty_report_shape(self):
        report = InsightsReport.empty()

        assert report.summary["overall_health"] == 100
        assert report.action_plan == {"immediate": [], "short_term": [], "long_term": []}
