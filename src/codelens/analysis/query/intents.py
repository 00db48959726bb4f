"""Rule-based recognition of natural-language query intents."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

QUERY_TYPES = ("find", "analyze", "compare", "explain", "suggest", "count", "list")
QUERY_TARGETS = (
    "function",
    "class",
    "module",
    "variable",
    "relationship",
    "pattern",
    "file",
    "project",
)

NAME_FILTER_RE = re.compile(r"\b(?:named|called)\s+([\w$]+)")
COMPLEXITY_COMPARE_RE = re.compile(r"complexity\s+(greater|more|less|fewer)\s+than\s+(\d+)")
COMPLEXITY_EQUALS_RE = re.compile(r"complexity\s+of\s+(\d+)")
LIMIT_RE = re.compile(r"\b(?:top|first)\s+(\d+)")


@dataclass
class QueryIntent:
    """Structured interpretation of a free-text question.

    ``filters`` may hold ``name``, ``language``, ``complexity`` and ``size``
    (``(operator, value)`` with operator ``gt``/``lt``/``eq``), ``pattern``
    and ``scope``. ``modifiers`` may hold ``include_related``,
    ``include_metrics``, ``include_examples``, ``sort_by`` and ``limit``.
    """

    type: str
    target: str
    filters: Dict[str, Any] = field(default_factory=dict)
    modifiers: Dict[str, Any] = field(default_factory=dict)
    context: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class IntentMatcher:
    """Keyword trigger mapped to an intent template."""

    name: str
    keywords: Sequence[str]
    type: str
    target: str
    modifiers: Dict[str, Any] = field(default_factory=dict)

    def match(self, query: str) -> Optional[QueryIntent]:
        if not any(keyword in query for keyword in self.keywords):
            return None
        return QueryIntent(
            type=self.type,
            target=self.target,
            modifiers=dict(self.modifiers),
            context=query.split(),
        )


# Evaluated in order, first match wins
INTENT_MATCHERS = (
    IntentMatcher("find_functions", ("function", "method", "call"), "find", "function"),
    IntentMatcher("find_classes", ("class", "classes"), "find", "class"),
    IntentMatcher("find_modules", ("module", "modules", "package"), "find", "module"),
    IntentMatcher("find_callers", ("call", "calls", "caller", "invoke"), "find", "relationship"),
    IntentMatcher("find_usage", ("use", "usage", "used", "depend"), "find", "relationship"),
    IntentMatcher(
        "analyze_complexity",
        ("complex", "complexity", "complicated"),
        "analyze",
        "function",
        {"include_metrics": True},
    ),
    IntentMatcher(
        "analyze_dependencies",
        ("depend", "dependency", "dependencies"),
        "analyze",
        "module",
        {"include_related": True},
    ),
    IntentMatcher(
        "analyze_architecture",
        ("architecture", "structure", "design"),
        "analyze",
        "project",
        {"include_metrics": True, "include_related": True},
    ),
    IntentMatcher("find_debt", ("debt", "technical debt", "issue", "problem"), "find", "pattern"),
    IntentMatcher("find_patterns", ("pattern", "patterns", "design pattern"), "find", "pattern"),
    IntentMatcher(
        "find_smells", ("smell", "smells", "code smell", "anti-pattern"), "find", "pattern"
    ),
)

# (words, value); later entries override earlier ones
_FALLBACK_TYPES = (
    (("analyze", "analysis"), "analyze"),
    (("compare", "comparison"), "compare"),
    (("explain", "why", "how"), "explain"),
    (("suggest", "recommend"), "suggest"),
    (("count",), "count"),
    (("list", "show"), "list"),
)

_FALLBACK_TARGETS = (
    (("class", "classes"), "class"),
    (("module", "modules"), "module"),
    (("variable", "variables"), "variable"),
    (("relationship", "relationships"), "relationship"),
    (("pattern", "patterns"), "pattern"),
    (("file", "files"), "file"),
    (("project", "codebase"), "project"),
)


def normalize_query(text: str) -> str:
    return text.lower().strip()


def extract_basic_intent(query: str) -> QueryIntent:
    """Keyword scan used when no matcher fires. Always produces an intent."""
    words = query.split()

    query_type = "find"
    for triggers, value in _FALLBACK_TYPES:
        if any(w in triggers for w in words):
            query_type = value
    if "how many" in query:
        query_type = "count"

    target = "function"
    for triggers, value in _FALLBACK_TARGETS:
        if any(w in triggers for w in words):
            target = value

    return QueryIntent(type=query_type, target=target, context=words)


def lift_filters(query: str, intent: QueryIntent) -> QueryIntent:
    """Pull simple name/complexity/limit filters out of the query text."""
    name_match = NAME_FILTER_RE.search(query)
    if name_match:
        intent.filters["name"] = name_match.group(1)

    compare_match = COMPLEXITY_COMPARE_RE.search(query)
    if compare_match:
        operator = "lt" if compare_match.group(1) in ("less", "fewer") else "gt"
        intent.filters["complexity"] = (operator, int(compare_match.group(2)))
    else:
        equals_match = COMPLEXITY_EQUALS_RE.search(query)
        if equals_match:
            intent.filters["complexity"] = ("eq", int(equals_match.group(1)))

    limit_match = LIMIT_RE.search(query)
    if limit_match:
        intent.modifiers["limit"] = int(limit_match.group(1))

    return intent


def parse_query(text: str, matchers: Sequence[IntentMatcher] = INTENT_MATCHERS) -> Optional[QueryIntent]:
    """Turn a question into a QueryIntent.

    Args:
        text: Free-text question
        matchers: Ordered matchers, first match wins

    Returns:
        Parsed intent, or None when the text is empty
    """
    query = normalize_query(text)
    if not query:
        return None

    intent = None
    for matcher in matchers:
        intent = matcher.match(query)
        if intent:
            break

    if intent is None:
        intent = extract_basic_intent(query)

    return lift_filters(query, intent)
