"""Run the registered pattern rules over an entity/relationship graph."""

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..errors import NotFoundError, Result, to_analysis_error
from ..models import CodeRelationship, EntityType
from .models import SEVERITY_ORDER, Pattern, PatternType
from .rules import RULES, PatternRule, RuleMatch

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.5
MAX_REMEMBERED_PATTERNS = 1000


@dataclass
class DetectionOptions:
    """Which rules to run and which findings to keep."""

    pattern_types: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    include_design_patterns: bool = True
    include_anti_patterns: bool = True
    include_code_smells: bool = True


def _slug(name: str) -> str:
    return name.lower().replace(" ", "_")


def generate_pattern_id(name: str) -> str:
    return f"{_slug(name)}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def sort_patterns(patterns: List[Pattern]) -> List[Pattern]:
    """Order by severity (most severe first), then confidence; stable otherwise."""
    return sorted(
        patterns,
        key=lambda p: (SEVERITY_ORDER[p.severity], p.confidence),
        reverse=True,
    )


class PatternDetector:
    """Detect design patterns, anti-patterns and code smells."""

    def __init__(self, rules: Sequence[PatternRule] = RULES):
        """Initialize pattern detector.

        Args:
            rules: Rule registry to evaluate, in order
        """
        self.rules = tuple(rules)
        self._recent: "OrderedDict[str, Pattern]" = OrderedDict()

    def _select_rules(self, options: DetectionOptions) -> List[PatternRule]:
        enabled_types = set()
        if options.include_design_patterns:
            enabled_types.add(PatternType.DESIGN_PATTERN)
        if options.include_anti_patterns:
            enabled_types.add(PatternType.ANTI_PATTERN)
        if options.include_code_smells:
            enabled_types.add(PatternType.CODE_SMELL)

        selected = []
        for rule in self.rules:
            if rule.type not in enabled_types:
                continue
            if options.pattern_types and rule.type.value not in options.pattern_types:
                continue
            if options.categories and rule.category not in options.categories:
                continue
            selected.append(rule)
        return selected

    def _to_pattern(self, rule: PatternRule, match: RuleMatch) -> Pattern:
        return Pattern(
            id=generate_pattern_id(rule.name),
            name=rule.name,
            type=rule.type,
            category=rule.category,
            confidence=match.confidence,
            severity=match.severity,
            description=rule.description,
            entities=list(match.entities),
            relationships=list(match.relationships),
            location=match.location,
            metadata=dict(match.metadata),
        )

    def _remember(self, patterns: List[Pattern]) -> None:
        for pattern in patterns:
            self._recent[pattern.id] = pattern
        while len(self._recent) > MAX_REMEMBERED_PATTERNS:
            self._recent.popitem(last=False)

    def detect_patterns(
        self,
        entities: Sequence[Any],
        relationships: Sequence[CodeRelationship],
        options: Optional[DetectionOptions] = None,
    ) -> Result[List[Pattern]]:
        """Evaluate the enabled rules and collect their findings.

        A rule that raises is logged and skipped; the other rules still run.

        Args:
            entities: Entities to inspect
            relationships: Relationships between them
            options: Rule selection and confidence threshold

        Returns:
            Result with patterns sorted by severity then confidence
        """
        options = options or DetectionOptions()

        try:
            patterns = []
            for rule in self._select_rules(options):
                try:
                    matches = rule.detect(entities, relationships)
                except Exception as e:
                    logger.error(f"Pattern rule '{rule.name}' failed: {e}")
                    continue
                patterns.extend(self._to_pattern(rule, match) for match in matches)

            patterns = [p for p in patterns if p.confidence >= options.min_confidence]
            patterns = sort_patterns(patterns)
            self._remember(patterns)

            logger.info(f"Detected {len(patterns)} patterns in {len(entities)} entities")
            return Result.ok(patterns)
        except Exception as e:
            logger.error(f"Pattern detection failed: {e}")
            return Result.fail(to_analysis_error(e))

    def detect_patterns_in_file(
        self,
        file_path: str,
        entities: Sequence[Any],
        relationships: Sequence[CodeRelationship],
        options: Optional[DetectionOptions] = None,
    ) -> Result[List[Pattern]]:
        """Detect patterns using only the entities and relationships of one file."""
        file_entities = [e for e in entities if e.file_path == file_path]
        file_relationships = [r for r in relationships if r.file_path == file_path]
        return self.detect_patterns(file_entities, file_relationships, options)

    def analyze_pattern(
        self,
        pattern_id: str,
        entities: Sequence[Any],
        relationships: Sequence[CodeRelationship],
    ) -> Result[Dict[str, Any]]:
        """Break down a previously detected pattern.

        Args:
            pattern_id: ID returned by an earlier detection run
            entities: Entities the pattern was detected in
            relationships: Relationships the pattern was detected in

        Returns:
            Result with per-dimension scores, the involved entities and suggestions
        """
        pattern = self._recent.get(pattern_id)
        if pattern is None:
            return Result.fail(NotFoundError(f"Pattern not found: {pattern_id}"))

        by_id = {e.id: e for e in entities}
        involved = [by_id[i] for i in pattern.entities if i in by_id]
        functions = [e for e in involved if e.type == EntityType.FUNCTION]
        severity_rank = SEVERITY_ORDER[pattern.severity]

        complexity = (
            sum(f.metadata.get("complexity", 1) for f in functions) / len(functions)
            if functions
            else 0
        )
        related = [r for r in relationships if r.id in set(pattern.relationships)]

        analysis = {
            "complexity": round(complexity, 1),
            "maintainability": max(0, 100 - severity_rank * 15 - len(involved) * 2),
            "performance": max(0, 100 - severity_rank * 5),
            "security": 100,
        }

        suggestions = []
        if pattern.metadata.get("recommendation"):
            suggestions.append(pattern.metadata["recommendation"])
        if pattern.type == PatternType.DESIGN_PATTERN:
            suggestions.append("Document the pattern so future changes keep its intent")
        else:
            suggestions.append("Add tests around the affected code before refactoring")

        return Result.ok(
            {
                "pattern": pattern,
                "analysis": analysis,
                "involved_entities": involved,
                "relationships": related,
                "suggestions": suggestions,
            }
        )
