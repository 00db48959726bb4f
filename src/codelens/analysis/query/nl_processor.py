"""Translate natural-language questions into graph queries."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import QueryParseError, Result, to_analysis_error
from .intents import QueryIntent, parse_query

logger = logging.getLogger(__name__)

GENERIC_QUERY_LIMIT = 50
RELATED_QUERY_LIMIT = 100
NARROW_SUGGESTION_THRESHOLD = 50

_SORT_KEY_RE = re.compile(r"^\w+$")
_OPERATORS = {"gt": ">", "lt": "<", "eq": "="}

QUERY_SUGGESTIONS = [
    # Functions
    "What are the most complex functions?",
    "Which functions call the authenticate method?",
    "Show me all functions with more than 10 parameters",
    "Find functions that are never called",
    # Classes
    "What classes implement the Service interface?",
    "Show me the class hierarchy for User",
    "Which classes have the most methods?",
    "Find all classes with circular dependencies",
    # Modules
    "What modules does the auth module depend on?",
    "Show me modules with the highest coupling",
    "Which modules have the most imports?",
    "Find modules that are not being used",
    # Patterns
    "What design patterns are used in this codebase?",
    "Show me all Singleton implementations",
    "Find anti-patterns in the code",
    "What code smells are present?",
    # Quality
    "What are the main technical debt issues?",
    "Show me functions with high complexity",
    "Which files have duplicate code?",
    "What security issues were found?",
    # Architecture
    "What is the overall architecture of this project?",
    "Show me the dependency graph",
    "Which components are most tightly coupled?",
    "What are the main architectural concerns?",
    # Performance
    "What are the performance hotspots?",
    "Show me functions that might be bottlenecks",
    "Which algorithms could be optimized?",
    "Find memory-intensive operations",
]

PROJECT_METRICS_QUERY = """
MATCH (f:Function)
WITH count(f) as functions, avg(f.complexity) as avg_complexity
MATCH (c:Class)
WITH functions, avg_complexity, count(c) as classes
MATCH (m:Module)
RETURN {
    functions: functions,
    classes: classes,
    modules: count(m),
    avg_complexity: avg_complexity
} as metrics
"""

RELATED_ENTITIES_QUERY = (
    "MATCH (n)-[]-(m) WHERE n.id IN $ids "
    f"RETURN DISTINCT m as entity LIMIT {RELATED_QUERY_LIMIT}"
)


@dataclass
class NLQueryOptions:
    """Per-call query options."""

    include_explanations: bool = False
    include_suggestions: bool = False
    include_metrics: bool = False
    max_results: Optional[int] = None


@dataclass
class QueryResult:
    """Answer to a natural-language query."""

    entities: List[Dict[str, Any]] = field(default_factory=list)
    relationships: List[Dict[str, Any]] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)
    explanations: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    intent: Optional[QueryIntent] = None


def entity_value(entity: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Read a property from a graph row, falling back to its metadata."""
    if key in entity and entity[key] is not None:
        return entity[key]
    metadata = entity.get("metadata")
    if isinstance(metadata, dict) and metadata.get(key) is not None:
        return metadata[key]
    return default


def _count(value: Any) -> int:
    if isinstance(value, (list, tuple)):
        return len(value)
    if isinstance(value, int):
        return value
    return 0


def apply_filters(entities: List[Dict[str, Any]], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Re-apply intent filters to rows returned by the graph."""
    filtered = entities

    name = filters.get("name")
    if name:
        filtered = [e for e in filtered if name.lower() in str(e.get("name", "")).lower()]

    language = filters.get("language")
    if language:
        filtered = [e for e in filtered if e.get("language") == language]

    complexity = filters.get("complexity")
    if complexity:
        operator, value = complexity

        def keep(entity: Dict[str, Any]) -> bool:
            actual = entity_value(entity, "complexity", 0) or 0
            if operator == "gt":
                return actual > value
            if operator == "lt":
                return actual < value
            return actual == value

        filtered = [e for e in filtered if keep(e)]

    return filtered


def is_relevant_to_context(suggestion: str, context: str) -> bool:
    suggestion_words = suggestion.lower().split()
    return any(word in suggestion_words for word in context.split())


class NaturalLanguageProcessor:
    """Answer free-text questions about the code graph."""

    def __init__(self, graph: Optional[Any] = None):
        """Initialize the processor.

        Args:
            graph: Graph service exposing ``query(text, params) -> Result``.
                When None every query yields an empty result.
        """
        self.graph = graph

    async def process_query(
        self, text: str, options: Optional[NLQueryOptions] = None
    ) -> Result[QueryResult]:
        """Parse a question and run it against the graph.

        Args:
            text: Free-text question
            options: Explanation, suggestion, metrics and size options

        Returns:
            Result with the QueryResult, or a QueryParseError for empty input
        """
        options = options or NLQueryOptions()

        try:
            intent = parse_query(text or "")
            if intent is None:
                return Result.fail(
                    QueryParseError(
                        "Could not understand the query", {"operation": "process_query"}
                    )
                )

            logger.info(f"Query intent: {intent.type}/{intent.target} for '{text}'")
            result = await self._execute(intent, options)
            result.intent = intent

            if options.include_explanations:
                result.explanations = self._generate_explanations(intent, result) + result.explanations
            if options.include_suggestions:
                result.suggestions = self._generate_suggestions(result)

            return Result.ok(result)
        except Exception as e:
            logger.error(f"Query processing failed: {e}")
            return Result.fail(to_analysis_error(e, operation="process_query"))

    def get_query_suggestions(self, context: Optional[str] = None) -> Result[List[str]]:
        """Example questions, optionally filtered by a context string."""
        if not context:
            return Result.ok(list(QUERY_SUGGESTIONS))

        context_lower = context.lower()
        return Result.ok(
            [
                s
                for s in QUERY_SUGGESTIONS
                if context_lower in s.lower() or is_relevant_to_context(s, context_lower)
            ]
        )

    async def _execute(self, intent: QueryIntent, options: NLQueryOptions) -> QueryResult:
        if intent.type in ("find", "list"):
            return await self._execute_find(intent, options)
        if intent.type == "analyze":
            return await self._execute_analyze(intent, options)
        if intent.type == "count":
            found = await self._execute_find(intent, options)
            return QueryResult(metrics={"count": len(found.entities)})
        if intent.type == "explain":
            found = await self._execute_find(intent, options)
            found.explanations = self._describe_entities(found.entities)
            return found
        # compare and suggest have no backing data
        return QueryResult()

    async def _run_graph_query(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        if self.graph is None:
            return []
        try:
            result = await asyncio.to_thread(self.graph.query, cypher, params or {})
        except Exception as e:
            logger.error(f"Graph query failed: {e}")
            return []
        if not result.success:
            logger.debug(f"Graph query returned an error: {result.error_message}")
            return []
        return result.data or []

    def build_cypher(self, intent: QueryIntent):
        """Build a parameterized Cypher query for a find intent.

        Returns:
            Tuple of (cypher text, parameters)
        """
        params: Dict[str, Any] = {}

        if intent.target == "function":
            conditions = []
            if intent.filters.get("name"):
                conditions.append("f.name CONTAINS $name")
                params["name"] = intent.filters["name"]
            if intent.filters.get("complexity"):
                operator, value = intent.filters["complexity"]
                conditions.append(f"f.complexity {_OPERATORS.get(operator, '=')} $complexity")
                params["complexity"] = value

            cypher = "MATCH (f:Function)"
            if conditions:
                cypher += " WHERE " + " AND ".join(conditions)
            cypher += " RETURN f as entity"

            sort_by = intent.modifiers.get("sort_by")
            if sort_by and _SORT_KEY_RE.match(sort_by):
                cypher += f" ORDER BY f.{sort_by}"
            limit = intent.modifiers.get("limit")
            if limit:
                cypher += f" LIMIT {int(limit)}"
            return cypher, params

        if intent.target == "class":
            return "MATCH (c:Class) RETURN c as entity", params
        if intent.target == "module":
            return "MATCH (m:Module) RETURN m as entity", params
        if intent.target == "relationship":
            return "MATCH ()-[r]->() RETURN r as relationship", params
        return f"MATCH (n) RETURN n as entity LIMIT {GENERIC_QUERY_LIMIT}", params

    async def _execute_find(self, intent: QueryIntent, options: NLQueryOptions) -> QueryResult:
        result = QueryResult()
        cypher, params = self.build_cypher(intent)
        rows = await self._run_graph_query(cypher, params)

        result.entities = [row["entity"] for row in rows if row.get("entity")]
        result.relationships = [row["relationship"] for row in rows if row.get("relationship")]

        result.entities = apply_filters(result.entities, intent.filters)
        limit = intent.modifiers.get("limit")
        if limit:
            result.entities = result.entities[:limit]
        if options.max_results:
            result.entities = result.entities[: options.max_results]
            result.relationships = result.relationships[: options.max_results]

        if intent.modifiers.get("include_related") and result.entities:
            result.entities.extend(await self._find_related_entities(result.entities))

        if intent.modifiers.get("include_metrics") or options.include_metrics:
            result.metrics = self._calculate_metrics(result.entities, result.relationships)

        return result

    async def _find_related_entities(self, entities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = [e["id"] for e in entities if e.get("id")]
        if not ids:
            return []

        known = set(ids)
        related = []
        for row in await self._run_graph_query(RELATED_ENTITIES_QUERY, {"ids": ids}):
            entity = row.get("entity")
            if entity and entity.get("id") not in known:
                known.add(entity.get("id"))
                related.append(entity)
        return related

    def _calculate_metrics(self, entities: List[Dict[str, Any]], relationships: List[Dict[str, Any]]) -> Dict[str, float]:
        total_complexity = sum(entity_value(e, "complexity", 0) or 0 for e in entities)
        return {
            "total_entities": len(entities),
            "total_relationships": len(relationships),
            "avg_complexity": total_complexity / len(entities) if entities else 0,
        }

    async def _execute_analyze(self, intent: QueryIntent, options: NLQueryOptions) -> QueryResult:
        result = await self._execute_find(intent, options)
        entities = result.entities
        relationships = result.relationships

        if intent.target == "function":
            functions = [e for e in entities if e.get("type", "Function") == "Function"]
            complexities = [entity_value(f, "complexity", 0) or 0 for f in functions]
            result.metrics.update(
                {
                    "count": len(functions),
                    "avg_complexity": sum(complexities) / len(functions) if functions else 0,
                    "max_complexity": max(complexities) if complexities else 0,
                    "total_lines": sum(entity_value(f, "line_count", 0) or 0 for f in functions),
                }
            )
        elif intent.target == "class":
            classes = [e for e in entities if e.get("type", "Class") == "Class"]
            methods = sum(_count(entity_value(c, "methods")) for c in classes)
            result.metrics.update(
                {
                    "count": len(classes),
                    "avg_methods": methods / len(classes) if classes else 0,
                    "inheritance": len([r for r in relationships if r.get("type") == "INHERITS"]),
                }
            )
        elif intent.target == "module":
            modules = [e for e in entities if e.get("type", "Module") == "Module"]
            imports = len([r for r in relationships if r.get("type") == "IMPORTS"])
            result.metrics.update(
                {
                    "count": len(modules),
                    "avg_dependencies": imports / len(modules) if modules else 0,
                    "total_size": sum(entity_value(m, "size", 0) or 0 for m in modules),
                }
            )
        elif intent.target == "project":
            rows = await self._run_graph_query(PROJECT_METRICS_QUERY)
            if rows and isinstance(rows[0].get("metrics"), dict):
                result.metrics.update(
                    {k: v for k, v in rows[0]["metrics"].items() if v is not None}
                )

        return result

    def _describe_entities(self, entities: List[Dict[str, Any]]) -> List[str]:
        sentences = []
        for entity in entities:
            name = entity.get("name", "unknown")
            entity_type = entity.get("type", "entity")
            sentence = f"{name} is a {entity_type}"
            if entity.get("file_path"):
                sentence += f" in {entity['file_path']}"
                if entity.get("line"):
                    sentence += f" at line {entity['line']}"
            complexity = entity_value(entity, "complexity")
            if complexity:
                sentence += f" with complexity {complexity}"
            sentences.append(sentence + ".")
        return sentences

    def _generate_explanations(self, intent: QueryIntent, result: QueryResult) -> List[str]:
        explanations = [f"Found {len(result.entities)} {intent.target}(s) matching your query."]
        avg_complexity = result.metrics.get("avg_complexity")
        if avg_complexity:
            explanations.append(f"Average complexity is {avg_complexity:.1f}.")
        return explanations

    def _generate_suggestions(self, result: QueryResult) -> List[str]:
        if not result.entities:
            return [
                "Try broadening your search criteria.",
                "Check if the entity names are spelled correctly.",
            ]
        if len(result.entities) > NARROW_SUGGESTION_THRESHOLD:
            return ["Consider adding more specific filters to narrow down results."]
        return []
