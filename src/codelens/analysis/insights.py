"""Turn analysis results, patterns and debt into prioritized insights."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import Result, to_analysis_error
from .models import AnalysisResult, EntityType
from .patterns.models import Pattern, PatternType, TechnicalDebtReport

logger = logging.getLogger(__name__)

LARGE_MODULE_COUNT = 50
HIGH_AVERAGE_COMPLEXITY = 10
HIGH_DEBT_ITEM_COUNT = 20
LOW_DOCUMENTATION_COVERAGE = 50
ASSUMED_TEST_COVERAGE_SCORE = 75

SEVERITY_RANK = {"critical": 3, "warning": 2, "info": 1}
MAGNITUDE_RANK = {"high": 3, "medium": 2, "low": 1}

TREND_RECOMMENDATIONS = [
    "Monitor complexity growth in core modules",
    "Establish code review guidelines for new features",
    "Implement automated quality gates in CI/CD",
]


@dataclass
class Recommendation:
    action: str
    priority: str  # low, medium, high
    effort: str  # minimal, moderate, significant
    benefit: str
    steps: List[str] = field(default_factory=list)


@dataclass
class Insight:
    """An observation about the code base with recommended actions."""

    id: str
    type: str  # architecture, quality, performance, security, maintainability, best_practice
    category: str
    title: str
    description: str
    severity: str  # info, warning, critical
    confidence: float
    impact: Dict[str, Any]  # scope, magnitude, areas
    evidence: Dict[str, Any]  # entities, patterns, metrics
    recommendations: List[Recommendation] = field(default_factory=list)
    related_insights: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InsightsReport:
    summary: Dict[str, Any]
    by_type: Dict[str, List[Insight]]
    by_category: Dict[str, List[Insight]]
    prioritized_insights: List[Insight]
    action_plan: Dict[str, List[Insight]]
    trends: Dict[str, Any]

    @classmethod
    def empty(cls) -> "InsightsReport":
        return cls(
            summary={
                "total_insights": 0,
                "critical_insights": 0,
                "architectural_concerns": 0,
                "quick_wins": 0,
                "overall_health": 100,
            },
            by_type={},
            by_category={},
            prioritized_insights=[],
            action_plan={"immediate": [], "short_term": [], "long_term": []},
            trends={
                "code_growth": "stable",
                "complexity_trend": "stable",
                "quality_trend": "stable",
                "recommendations": [],
            },
        )


@dataclass
class InsightOptions:
    include_types: Optional[List[str]] = None
    min_confidence: Optional[float] = None
    focus_areas: Optional[List[str]] = None


@dataclass(frozen=True)
class InsightRule:
    """A named generator of insights for one type and set of categories."""

    name: str
    type: str
    categories: Sequence[str]
    generate: Callable[["InsightRule", AnalysisResult, List[Pattern], TechnicalDebtReport], List[Insight]]

    def create_insight(
        self,
        category: str,
        title: str,
        description: str,
        severity: str,
        confidence: float,
        impact: Dict[str, Any],
        evidence: Dict[str, Any],
        recommendations: List[Recommendation],
    ) -> Insight:
        return Insight(
            id=f"{self.type}_{category}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            type=self.type,
            category=category,
            title=title,
            description=description,
            severity=severity,
            confidence=confidence,
            impact=impact,
            evidence=evidence,
            recommendations=recommendations,
        )


def _architecture_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    insights = []

    module_count = len([e for e in analysis.entities if e.type == EntityType.MODULE])
    if module_count > LARGE_MODULE_COUNT:
        insights.append(
            rule.create_insight(
                "structure",
                "Large Module Count",
                f"Project has {module_count} modules which may indicate need for better organization",
                "warning",
                0.8,
                {"scope": "project", "magnitude": "medium", "areas": ["maintainability", "navigation"]},
                {"entities": [], "patterns": [], "metrics": {"module_count": module_count}},
                [
                    Recommendation(
                        action="Group related modules into packages or namespaces",
                        priority="medium",
                        effort="moderate",
                        benefit="Improved code organization and developer experience",
                    )
                ],
            )
        )

    circular = [p for p in patterns if "Circular" in p.name]
    if circular:
        insights.append(
            rule.create_insight(
                "dependencies",
                "Circular Dependencies Detected",
                f"Found {len(circular)} circular dependency patterns that can complicate "
                "testing and deployment",
                "critical",
                0.9,
                {
                    "scope": "project",
                    "magnitude": "high",
                    "areas": ["testability", "modularity", "deployment"],
                },
                {
                    "entities": [e for p in circular for e in p.entities],
                    "patterns": [p.id for p in circular],
                    "metrics": {"circular_count": len(circular)},
                },
                [
                    Recommendation(
                        action="Refactor modules to eliminate circular dependencies",
                        priority="high",
                        effort="significant",
                        benefit="Improved modularity and testability",
                        steps=[
                            "Identify dependency cycles",
                            "Extract common interfaces",
                            "Apply dependency inversion principle",
                            "Use dependency injection where appropriate",
                        ],
                    )
                ],
            )
        )

    return insights


def _complexity_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    if not analysis.metrics.functions:
        return []

    avg_complexity = analysis.metrics.complexity / analysis.metrics.functions
    if avg_complexity <= HIGH_AVERAGE_COMPLEXITY:
        return []

    return [
        rule.create_insight(
            "complexity",
            "High Average Complexity",
            f"Average function complexity of {avg_complexity:.1f} is above recommended threshold",
            "warning",
            0.85,
            {"scope": "project", "magnitude": "medium", "areas": ["maintainability", "testing"]},
            {
                "entities": [],
                "patterns": [],
                "metrics": {"avg_complexity": avg_complexity, "threshold": HIGH_AVERAGE_COMPLEXITY},
            },
            [
                Recommendation(
                    action="Refactor complex functions to reduce cyclomatic complexity",
                    priority="medium",
                    effort="moderate",
                    benefit="Improved maintainability and testability",
                )
            ],
        )
    ]


def _pattern_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    design = [p for p in patterns if p.type == PatternType.DESIGN_PATTERN]
    if not design:
        return []

    names = sorted({p.name for p in design})
    return [
        rule.create_insight(
            "patterns",
            "Design Patterns In Use",
            f"Found {len(design)} design pattern instances: {', '.join(names)}",
            "info",
            0.7,
            {"scope": "project", "magnitude": "low", "areas": ["design", "consistency"]},
            {
                "entities": [e for p in design for e in p.entities],
                "patterns": [p.id for p in design],
                "metrics": {"design_pattern_count": len(design)},
            },
            [
                Recommendation(
                    action="Document the design patterns in use so new code follows them",
                    priority="low",
                    effort="minimal",
                    benefit="Consistent architecture across the code base",
                )
            ],
        )
    ]


def _maintainability_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    total_items = debt.summary.get("total_items", 0)
    if total_items <= HIGH_DEBT_ITEM_COUNT:
        return []

    return [
        rule.create_insight(
            "debt",
            "High Technical Debt",
            f"Found {total_items} technical debt items totalling "
            f"{debt.summary.get('total_estimated_hours', 0)} estimated hours",
            "warning",
            0.75,
            {"scope": "project", "magnitude": "high", "areas": ["maintainability", "velocity"]},
            {
                "entities": [],
                "patterns": [],
                "metrics": {
                    "debt_items": total_items,
                    "estimated_hours": debt.summary.get("total_estimated_hours", 0),
                },
            },
            [
                Recommendation(
                    action="Schedule regular refactoring time for the highest priority debt items",
                    priority="high",
                    effort="moderate",
                    benefit="Sustained development velocity",
                )
            ],
        )
    ]


def _documentation_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    coverage = debt.metrics.get("documentation_coverage", 100)
    if coverage >= LOW_DOCUMENTATION_COVERAGE:
        return []

    return [
        rule.create_insight(
            "documentation",
            "Low Documentation Coverage",
            f"Only {coverage:.0f}% of functions are documented",
            "warning",
            0.7,
            {"scope": "project", "magnitude": "low", "areas": ["onboarding", "knowledge"]},
            {"entities": [], "patterns": [], "metrics": {"documentation_coverage": coverage}},
            [
                Recommendation(
                    action="Add JSDoc comments to public functions",
                    priority="high",
                    effort="minimal",
                    benefit="Easier onboarding and safer changes",
                )
            ],
        )
    ]


def _no_insights(
    rule: InsightRule, analysis: AnalysisResult, patterns: List[Pattern], debt: TechnicalDebtReport
) -> List[Insight]:
    return []


INSIGHT_RULES = (
    InsightRule("architecture", "architecture", ("structure", "dependencies", "layering"), _architecture_insights),
    InsightRule("complexity", "quality", ("complexity", "maintainability"), _complexity_insights),
    InsightRule("patterns", "best_practice", ("patterns", "design"), _pattern_insights),
    # No test, security or performance data is collected yet
    InsightRule("testing", "quality", ("testing", "coverage"), _no_insights),
    InsightRule("security", "security", ("vulnerabilities", "best_practices"), _no_insights),
    InsightRule("performance", "performance", ("bottlenecks", "optimization"), _no_insights),
    InsightRule("maintainability", "maintainability", ("debt", "refactoring"), _maintainability_insights),
    InsightRule("documentation", "maintainability", ("documentation", "knowledge"), _documentation_insights),
)


def prioritize_insights(insights: List[Insight]) -> List[Insight]:
    """Order by severity, then confidence, then impact magnitude."""
    return sorted(
        insights,
        key=lambda i: (
            SEVERITY_RANK.get(i.severity, 0),
            i.confidence,
            MAGNITUDE_RANK.get(i.impact.get("magnitude"), 0),
        ),
        reverse=True,
    )


class InsightsGenerator:
    """Generate insights and an action plan from analysis output."""

    def __init__(self, rules: Sequence[InsightRule] = INSIGHT_RULES):
        self.rules = tuple(rules)

    def _should_apply(self, rule: InsightRule, options: InsightOptions) -> bool:
        if options.include_types and rule.type not in options.include_types:
            return False
        if options.focus_areas and not any(a in rule.categories for a in options.focus_areas):
            return False
        return True

    def generate_insights(
        self,
        analysis: AnalysisResult,
        patterns: List[Pattern],
        technical_debt: TechnicalDebtReport,
        options: Optional[InsightOptions] = None,
    ) -> Result[InsightsReport]:
        """Apply every enabled insight rule and build a report.

        Args:
            analysis: File or project analysis
            patterns: Detected patterns
            technical_debt: Debt report for the same entities
            options: Type, confidence and focus-area filters

        Returns:
            Result with the insights report
        """
        options = options or InsightOptions()

        try:
            insights: List[Insight] = []
            for rule in self.rules:
                if not self._should_apply(rule, options):
                    continue
                try:
                    insights.extend(rule.generate(rule, analysis, patterns, technical_debt))
                except Exception as e:
                    logger.error(f"Insight rule '{rule.name}' failed: {e}")

            if options.min_confidence is not None:
                insights = [i for i in insights if i.confidence >= options.min_confidence]
            if options.include_types:
                insights = [i for i in insights if i.type in options.include_types]

            report = self._build_report(prioritize_insights(insights), technical_debt)
            logger.debug(f"Generated {len(insights)} insights")
            return Result.ok(report)
        except Exception as e:
            logger.error(f"Insight generation failed: {e}")
            return Result.fail(to_analysis_error(e, operation="generate_insights"))

    def _build_report(self, insights: List[Insight], technical_debt: TechnicalDebtReport) -> InsightsReport:
        critical = [i for i in insights if i.severity == "critical"]
        architectural = [i for i in insights if i.type == "architecture"]
        maintainability = [i for i in insights if i.type == "maintainability"]
        quick_wins = [
            i
            for i in insights
            if any(r.effort == "minimal" and r.priority == "high" for r in i.recommendations)
        ]

        by_type: Dict[str, List[Insight]] = {}
        by_category: Dict[str, List[Insight]] = {}
        for insight in insights:
            by_type.setdefault(insight.type, []).append(insight)
            by_category.setdefault(insight.category, []).append(insight)

        immediate = [
            i
            for i in insights
            if i.severity == "critical"
            or (i.severity == "warning" and any(r.priority == "high" for r in i.recommendations))
        ][:5]
        short_term = [
            i
            for i in insights
            if i.severity == "warning"
            and i not in immediate
            and any(r.effort != "significant" for r in i.recommendations)
        ][:8]
        long_term = [
            i
            for i in insights
            if i not in immediate and i not in short_term and i.impact.get("magnitude") == "high"
        ][:5]

        health_factors = [
            max(0, 100 - len(critical) * 20),
            max(0, 100 - technical_debt.summary.get("total_items", 0) * 2),
            max(0, 100 - len(architectural) * 15),
            max(0, 100 - len(maintainability) * 10),
            ASSUMED_TEST_COVERAGE_SCORE,
        ]

        return InsightsReport(
            summary={
                "total_insights": len(insights),
                "critical_insights": len(critical),
                "architectural_concerns": len(architectural),
                "quick_wins": len(quick_wins),
                "overall_health": round(sum(health_factors) / len(health_factors)),
            },
            by_type=by_type,
            by_category=by_category,
            prioritized_insights=insights,
            action_plan={"immediate": immediate, "short_term": short_term, "long_term": long_term},
            trends={
                "code_growth": "stable",
                "complexity_trend": "stable",
                "quality_trend": "stable",
                "recommendations": list(TREND_RECOMMENDATIONS),
            },
        )
