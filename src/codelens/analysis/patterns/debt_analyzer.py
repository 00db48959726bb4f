"""Quantify technical debt from detected patterns and direct code metrics."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..errors import Result, to_analysis_error
from ..models import CodeRelationship, EntityType
from .detector import DetectionOptions, PatternDetector
from .models import (
    SEVERITY_ORDER,
    DebtImpact,
    DebtType,
    Difficulty,
    EffortEstimate,
    Pattern,
    PatternLocation,
    PatternType,
    Severity,
    TechnicalDebtItem,
    TechnicalDebtReport,
)
from .rules import find_duplicate_groups, find_import_cycles

logger = logging.getLogger(__name__)

COMPLEXITY_DEBT_THRESHOLD = 10
COMPLEXITY_MEDIUM_THRESHOLD = 15
COMPLEXITY_HIGH_THRESHOLD = 20

SEVERITY_MULTIPLIER = {
    Severity.LOW: 0.8,
    Severity.MEDIUM: 1.0,
    Severity.HIGH: 1.3,
    Severity.CRITICAL: 1.6,
}
SEVERITY_SCORE = {
    Severity.LOW: 25,
    Severity.MEDIUM: 50,
    Severity.HIGH: 75,
    Severity.CRITICAL: 100,
}
BASE_PATTERN_IMPACT = (70, 70, 70, 80)

MIN_EFFORT_HOURS = 1
MAX_EFFORT_HOURS = 40
DEFAULT_ENTITY_LINES = 10
TOP_PRIORITIES = 10

# Keyword in a pattern name -> debt type
DEBT_TYPE_KEYWORDS = [
    ("complex", DebtType.COMPLEXITY),
    ("duplicate", DebtType.DUPLICATION),
    ("dependency", DebtType.DEPENDENCIES),
    ("performance", DebtType.PERFORMANCE),
    ("security", DebtType.SECURITY),
]


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def calculate_priority(item: TechnicalDebtItem) -> int:
    """Priority 0-100 from impact, severity and effort.

    Args:
        item: Debt item

    Returns:
        round(impact_avg * 0.4 + severity_score * 0.4 + effort_score * 0.2)
    """
    effort_score = max(0, 100 - item.estimated_effort.hours * 2)
    return round(
        item.impact.average * 0.4 + SEVERITY_SCORE[item.severity] * 0.4 + effort_score * 0.2
    )


@dataclass
class DebtOptions:
    """Filters for a technical debt analysis."""

    include_types: Optional[List[str]] = None
    min_severity: Optional[str] = None


class TechnicalDebtAnalyzer:
    """Convert findings into prioritized technical debt items and reports."""

    def __init__(self, detector: Optional[PatternDetector] = None):
        """Initialize technical debt analyzer.

        Args:
            detector: Pattern detector used for anti-pattern and code smell findings
        """
        self.detector = detector or PatternDetector()

    def analyze_technical_debt(
        self,
        entities: Sequence[Any],
        relationships: Sequence[CodeRelationship],
        options: Optional[DebtOptions] = None,
    ) -> Result[TechnicalDebtReport]:
        """Build a technical debt report.

        Args:
            entities: Entities to analyse
            relationships: Relationships between them
            options: Type and severity filters

        Returns:
            Result with the aggregated report
        """
        options = options or DebtOptions()

        try:
            detection = self.detector.detect_patterns(
                entities,
                relationships,
                DetectionOptions(include_design_patterns=False),
            )
            patterns = detection.data if detection.success else []
            if not detection.success:
                logger.warning(f"Pattern detection failed during debt analysis: {detection.error}")

            by_id = {e.id: e for e in entities}
            items = [
                self._pattern_to_item(pattern, by_id)
                for pattern in patterns
                if pattern.type in (PatternType.ANTI_PATTERN, PatternType.CODE_SMELL)
            ]

            items.extend(self._analyze_complexity(entities))
            items.extend(self._analyze_duplication(entities))
            items.extend(self._analyze_dependencies(entities, relationships))
            items.extend(self._analyze_documentation(entities))

            items = self._filter_items(items, options)
            for item in items:
                item.priority = calculate_priority(item)

            report = self._build_report(items)
            logger.info(
                f"Technical debt analysis found {len(items)} items "
                f"({report.summary['total_estimated_hours']} hours)"
            )
            return Result.ok(report)
        except Exception as e:
            logger.error(f"Technical debt analysis failed: {e}")
            return Result.fail(to_analysis_error(e))

    # Pattern conversion

    def _pattern_to_item(self, pattern: Pattern, by_id: Dict[str, Any]) -> TechnicalDebtItem:
        multiplier = SEVERITY_MULTIPLIER[pattern.severity]
        impact = DebtImpact(*(_clamp(base * multiplier) for base in BASE_PATTERN_IMPACT))

        lines = sum(
            by_id[i].metadata.get("line_count") or DEFAULT_ENTITY_LINES
            if i in by_id
            else DEFAULT_ENTITY_LINES
            for i in pattern.entities
        )
        hours = math.ceil(lines / 20)
        difficulty = Difficulty.MEDIUM
        if pattern.type == PatternType.ANTI_PATTERN:
            hours *= 1.5
            difficulty = (
                Difficulty.EXPERT if pattern.severity == Severity.CRITICAL else Difficulty.HARD
            )
        if pattern.category == "architectural":
            hours *= 2
            difficulty = Difficulty.EXPERT
        hours = int(_clamp(math.ceil(hours), MIN_EFFORT_HOURS, MAX_EFFORT_HOURS))

        name = pattern.name.lower()
        debt_type = next(
            (debt_type for keyword, debt_type in DEBT_TYPE_KEYWORDS if keyword in name),
            DebtType.COMPLEXITY,
        )

        return TechnicalDebtItem(
            id=pattern.id,
            type=debt_type,
            severity=pattern.severity,
            description=f"{pattern.name}: {pattern.description}",
            location=pattern.location,
            impact=impact,
            estimated_effort=EffortEstimate(hours=hours, difficulty=difficulty),
            related_patterns=[pattern.id],
            suggestions=[pattern.metadata["recommendation"]]
            if pattern.metadata.get("recommendation")
            else [],
            metadata={
                "pattern_type": pattern.type.value,
                "pattern_category": pattern.category,
                "confidence": pattern.confidence,
            },
        )

    # Direct analyses

    def _analyze_complexity(self, entities: Sequence[Any]) -> List[TechnicalDebtItem]:
        items = []
        for function in entities:
            if function.type != EntityType.FUNCTION or function.is_external:
                continue
            complexity = function.metadata.get("complexity", 1)
            if complexity <= COMPLEXITY_DEBT_THRESHOLD:
                continue

            if complexity > COMPLEXITY_HIGH_THRESHOLD:
                severity = Severity.HIGH
            elif complexity > COMPLEXITY_MEDIUM_THRESHOLD:
                severity = Severity.MEDIUM
            else:
                severity = Severity.LOW

            items.append(
                TechnicalDebtItem(
                    id=f"complexity_{function.id}",
                    type=DebtType.COMPLEXITY,
                    severity=severity,
                    description=f"High cyclomatic complexity ({complexity}) in {function.name}",
                    location=PatternLocation(
                        function.file_path,
                        function.line,
                        function.metadata.get("end_line", function.line),
                    ),
                    impact=DebtImpact(
                        maintainability=max(0, 100 - complexity * 3),
                        readability=max(0, 100 - complexity * 4),
                        testability=max(0, 100 - complexity * 5),
                        performance=80,
                    ),
                    estimated_effort=EffortEstimate(
                        hours=math.ceil(complexity / 5),
                        difficulty=Difficulty.HARD
                        if complexity > COMPLEXITY_HIGH_THRESHOLD
                        else Difficulty.MEDIUM,
                    ),
                    suggestions=[
                        "Break down into smaller functions",
                        "Extract conditional logic",
                        "Use early returns to reduce nesting",
                        "Consider using polymorphism for complex conditionals",
                    ],
                    metadata={"complexity": complexity, "function": function.name},
                )
            )
        return items

    def _analyze_duplication(self, entities: Sequence[Any]) -> List[TechnicalDebtItem]:
        items = []
        for group in find_duplicate_groups(entities):
            count = len(group)
            total_lines = sum(e.metadata.get("line_count", 0) for e in group)
            first = group[0]
            items.append(
                TechnicalDebtItem(
                    id=f"duplication_{first.id}",
                    type=DebtType.DUPLICATION,
                    severity=Severity.HIGH if count > 3 else Severity.MEDIUM,
                    description=f"Code duplication across {count} functions",
                    location=PatternLocation(
                        first.file_path, first.line, first.metadata.get("end_line", first.line)
                    ),
                    impact=DebtImpact(
                        maintainability=max(0, 100 - count * 15),
                        readability=70,
                        testability=max(0, 100 - count * 10),
                        performance=85,
                    ),
                    estimated_effort=EffortEstimate(
                        hours=max(1, math.ceil(total_lines / 50)), difficulty=Difficulty.MEDIUM
                    ),
                    suggestions=[
                        "Extract common functionality into shared function",
                        "Create utility module for shared logic",
                        "Use template method pattern",
                        "Consider parameterizing differences",
                    ],
                    metadata={"locations": [f"{e.file_path}:{e.line}" for e in group]},
                )
            )
        return items

    def _analyze_dependencies(
        self, entities: Sequence[Any], relationships: Sequence[CodeRelationship]
    ) -> List[TechnicalDebtItem]:
        by_id = {e.id: e for e in entities}
        items = []
        for cycle, _ in find_import_cycles(entities, relationships):
            first = by_id.get(cycle[0])
            location = (
                PatternLocation(first.file_path, first.line, first.line)
                if first is not None
                else PatternLocation("unknown", 0, 0)
            )
            items.append(
                TechnicalDebtItem(
                    id=f"circular_dep_{cycle[0]}",
                    type=DebtType.DEPENDENCIES,
                    severity=Severity.HIGH,
                    description=f"Circular dependency between {len(cycle)} modules",
                    location=location,
                    impact=DebtImpact(
                        maintainability=30, readability=50, testability=20, performance=70
                    ),
                    estimated_effort=EffortEstimate(
                        hours=len(cycle) * 4, difficulty=Difficulty.HARD
                    ),
                    suggestions=[
                        "Extract common dependencies to separate module",
                        "Use dependency injection",
                        "Apply dependency inversion principle",
                        "Create facade or mediator",
                    ],
                    metadata={"modules": [by_id[i].name if i in by_id else i for i in cycle]},
                )
            )
        return items

    def _analyze_documentation(self, entities: Sequence[Any]) -> List[TechnicalDebtItem]:
        functions = [
            e for e in entities if e.type == EntityType.FUNCTION and not e.is_external
        ]
        undocumented = [f for f in functions if not f.metadata.get("documentation")]
        if not undocumented:
            return []

        count = len(undocumented)
        ratio = count / len(functions)
        first = undocumented[0]

        return [
            TechnicalDebtItem(
                id="documentation_debt",
                type=DebtType.DOCUMENTATION,
                severity=Severity.MEDIUM if ratio > 0.5 else Severity.LOW,
                description=f"{count} undocumented functions",
                location=PatternLocation(first.file_path, first.line, first.line),
                impact=DebtImpact(
                    maintainability=max(0, 100 - count * 2),
                    readability=max(0, 100 - count * 3),
                    testability=80,
                    performance=100,
                ),
                estimated_effort=EffortEstimate(
                    hours=math.ceil(count * 0.5), difficulty=Difficulty.EASY
                ),
                suggestions=[
                    "Add JSDoc comments to public functions",
                    "Document complex algorithms",
                    "Include parameter and return type descriptions",
                    "Add usage examples for important functions",
                ],
                metadata={
                    "undocumented_count": count,
                    "total_count": len(functions),
                    "coverage_ratio": (len(functions) - count) / len(functions),
                },
            )
        ]

    # Reporting

    def _filter_items(
        self, items: List[TechnicalDebtItem], options: DebtOptions
    ) -> List[TechnicalDebtItem]:
        if options.include_types:
            items = [i for i in items if i.type.value in options.include_types]
        if options.min_severity:
            threshold = SEVERITY_ORDER[Severity(options.min_severity)]
            items = [i for i in items if SEVERITY_ORDER[i.severity] >= threshold]
        return items

    @staticmethod
    def _breakdown(items: List[TechnicalDebtItem]) -> Dict[str, Any]:
        return {
            "count": len(items),
            "average_priority": round(sum(i.priority for i in items) / len(items), 1)
            if items
            else 0,
            "total_hours": sum(i.estimated_effort.hours for i in items),
        }

    def _build_report(self, items: List[TechnicalDebtItem]) -> TechnicalDebtReport:
        if not items:
            return TechnicalDebtReport.empty()

        total_hours = sum(i.estimated_effort.hours for i in items)
        by_priority = sorted(items, key=lambda i: i.priority, reverse=True)

        by_type: Dict[str, List[TechnicalDebtItem]] = {}
        by_severity: Dict[str, List[TechnicalDebtItem]] = {}
        for item in items:
            by_type.setdefault(item.type.value, []).append(item)
            by_severity.setdefault(item.severity.value, []).append(item)

        quick_wins = [
            i for i in by_priority if i.estimated_effort.hours <= 4 and i.priority >= 70
        ][:5]
        major_refactoring = [
            i for i in by_priority if i.estimated_effort.hours > 16 and i.severity == Severity.HIGH
        ][:3]
        long_term_goals = [
            i
            for i in by_priority
            if i.type == DebtType.DEPENDENCIES or i.estimated_effort.difficulty == Difficulty.EXPERT
        ][:3]

        counts = {debt_type: len(group) for debt_type, group in by_type.items()}
        documentation = by_type.get(DebtType.DOCUMENTATION.value)
        documentation_coverage = (
            round(documentation[0].metadata.get("coverage_ratio", 1) * 100, 1)
            if documentation
            else 100
        )

        return TechnicalDebtReport(
            summary={
                "total_items": len(items),
                "total_estimated_hours": total_hours,
                "average_priority": round(sum(i.priority for i in items) / len(items), 1),
                "debt_ratio": min(1, total_hours / 1000),
                "trends": {"improving": False, "change_rate": 0},
            },
            by_type={key: self._breakdown(group) for key, group in by_type.items()},
            by_severity={key: self._breakdown(group) for key, group in by_severity.items()},
            top_priorities=by_priority[:TOP_PRIORITIES],
            recommendations={
                "quick_wins": quick_wins,
                "major_refactoring": major_refactoring,
                "long_term_goals": long_term_goals,
            },
            metrics={
                "code_complexity": max(0, 100 - counts.get("complexity", 0) * 5),
                "duplicated_code": max(0, 100 - counts.get("duplication", 0) * 10),
                "test_coverage": 75,
                "documentation_coverage": documentation_coverage,
                "dependency_health": max(0, 100 - counts.get("dependencies", 0) * 15),
            },
            items=items,
        )

    # Planning

    def suggest_debt_reduction(
        self,
        items: List[TechnicalDebtItem],
        constraints: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Lay out a phased plan for paying down debt.

        Args:
            items: Debt items, typically from a report
            constraints: Optional ``available_hours`` per week

        Returns:
            Dictionary with phases, timeline and risk assessment
        """
        constraints = constraints or {}
        ordered = sorted(items, key=lambda i: (-i.priority, i.estimated_effort.hours))
        slices = [
            ("Phase 1: Critical fixes", ordered[:5]),
            ("Phase 2: Structural improvements", ordered[5:10]),
            ("Phase 3: Long-term cleanup", ordered[10:]),
        ]

        phases = []
        for name, phase_items in slices:
            if not phase_items:
                continue
            phases.append(
                {
                    "name": name,
                    "items": phase_items,
                    "total_hours": sum(i.estimated_effort.hours for i in phase_items),
                }
            )

        available = constraints.get("available_hours")
        total_hours = sum(i.estimated_effort.hours for i in ordered)
        weeks = math.ceil(total_hours / available) if available else 12

        phase_one = ordered[:5]
        if not ordered:
            risk = "low"
        elif any(
            i.severity == Severity.CRITICAL or i.estimated_effort.difficulty == Difficulty.EXPERT
            for i in phase_one
        ):
            risk = "high"
        else:
            risk = "medium"

        return {
            "phases": phases,
            "timeline": {
                "total_weeks": weeks,
                "total_hours": total_hours,
                "milestones": [phase["name"] for phase in phases],
            },
            "risk_assessment": {
                "level": risk,
                "factors": [
                    "Refactoring without test coverage can introduce regressions",
                ]
                if ordered
                else [],
            },
        }

    def get_debt_trends(self) -> Dict[str, Any]:
        """Debt trends over time; no history is kept, so the trend is flat."""
        return {"history": [], "improving": False, "change_rate": 0}
