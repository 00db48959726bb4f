"""Data models for detected patterns and technical debt."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class PatternType(str, Enum):
    """Broad families of detected patterns."""

    DESIGN_PATTERN = "design_pattern"
    ANTI_PATTERN = "anti_pattern"
    CODE_SMELL = "code_smell"
    BEST_PRACTICE = "best_practice"


class Severity(str, Enum):
    """How urgently a finding should be addressed."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DebtType(str, Enum):
    """Kinds of technical debt."""

    COMPLEXITY = "complexity"
    DUPLICATION = "duplication"
    COVERAGE = "coverage"
    DEPENDENCIES = "dependencies"
    DOCUMENTATION = "documentation"
    PERFORMANCE = "performance"
    SECURITY = "security"


class Difficulty(str, Enum):
    """Skill level needed to pay off a debt item."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


@dataclass
class PatternLocation:
    """Where a pattern occurs."""

    file_path: str
    start_line: int
    end_line: int


@dataclass
class Pattern:
    """A detected design pattern, anti-pattern or code smell."""

    id: str  # randomized, not stable across runs
    name: str
    type: PatternType
    category: str
    confidence: float  # 0..1
    severity: Severity
    description: str
    entities: List[str]
    relationships: List[str]
    location: PatternLocation
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DebtImpact:
    """Impact of a debt item on four quality dimensions, each 0-100."""

    maintainability: float
    readability: float
    testability: float
    performance: float

    @property
    def average(self) -> float:
        return (self.maintainability + self.readability + self.testability + self.performance) / 4


@dataclass
class EffortEstimate:
    """Estimated cost of paying off a debt item."""

    hours: int
    difficulty: Difficulty


@dataclass
class TechnicalDebtItem:
    """A quantified unit of technical debt."""

    id: str
    type: DebtType
    severity: Severity
    description: str
    location: PatternLocation
    impact: DebtImpact
    estimated_effort: EffortEstimate
    priority: int = 0  # always recomputed by the analyzer
    related_patterns: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TechnicalDebtReport:
    """Aggregated technical debt for a set of entities."""

    summary: Dict[str, Any]
    by_type: Dict[str, Dict[str, Any]]
    by_severity: Dict[str, Dict[str, Any]]
    top_priorities: List[TechnicalDebtItem]
    recommendations: Dict[str, List[TechnicalDebtItem]]
    metrics: Dict[str, float]
    items: List[TechnicalDebtItem] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "TechnicalDebtReport":
        return cls(
            summary={
                "total_items": 0,
                "total_estimated_hours": 0,
                "average_priority": 0,
                "debt_ratio": 0,
                "trends": {"improving": False, "change_rate": 0},
            },
            by_type={},
            by_severity={},
            top_priorities=[],
            recommendations={"quick_wins": [], "major_refactoring": [], "long_term_goals": []},
            metrics={
                "code_complexity": 100,
                "duplicated_code": 100,
                "test_coverage": 0,
                "documentation_coverage": 100,
                "dependency_health": 100,
            },
        )
