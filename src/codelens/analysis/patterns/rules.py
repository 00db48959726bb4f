"""Pattern detection rules.

Each rule is a pure function over entities and relationships that returns
``RuleMatch`` records. The detector wraps matches into ``Pattern`` objects
using the metadata registered alongside the rule in ``RULES``.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import CodeRelationship, EntityType, RelationshipType
from .models import PatternLocation, PatternType, Severity

GOD_CLASS_MAX_LINES = 1000
GOD_CLASS_MAX_METHODS = 20
GOD_CLASS_MAX_PROPERTIES = 15
LARGE_CLASS_MIN_LINES = 500
LONG_METHOD_MAX_LINES = 100
LONG_METHOD_MAX_COMPLEXITY = 15
LONG_PARAMETER_LIST_MAX = 5
MAGIC_NUMBER_THRESHOLD = 3

ALLOWED_NUMBERS = {"0", "1", "2"}
NUMBER_RE = re.compile(r"(?<![\w.$])\d+(?:\.\d+)?(?![\w.])")
STRING_RE = re.compile(r"(['\"`])(?:\\.|(?!\1).)*\1")
LINE_COMMENT_RE = re.compile(r"//.*$")


@dataclass
class RuleMatch:
    """One occurrence of a rule in the analysed code."""

    entities: List[str]
    location: PatternLocation
    severity: Severity
    confidence: float
    metadata: Dict[str, Any]
    relationships: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PatternRule:
    """A registered pattern rule and the description of what it finds."""

    name: str
    type: PatternType
    category: str
    description: str
    detect: Callable[[Sequence[Any], Sequence[CodeRelationship]], List[RuleMatch]]


# Entity helpers


def _local(entities: Iterable[Any], *types: EntityType) -> List[Any]:
    return [e for e in entities if e.type in types and not e.is_external]


def _location(entity: Any) -> PatternLocation:
    return PatternLocation(
        file_path=entity.file_path,
        start_line=entity.line,
        end_line=entity.metadata.get("end_line", entity.line),
    )


def _members(cls: Any, entities: Sequence[Any], *types: EntityType) -> List[Any]:
    return [
        e
        for e in _local(entities, *types)
        if e.metadata.get("parent_class") == cls.name and e.file_path == cls.file_path
    ]


def _meta(impact: str, recommendation: str, examples: List[str]) -> Dict[str, Any]:
    return {"impact": impact, "recommendation": recommendation, "examples": examples}


def normalize_signature(entity: Any) -> str:
    """Lowercase the signature (or name) and drop everything but letters and digits."""
    text = (entity.signature or entity.name or "").lower()
    return re.sub(r"[^a-z0-9]", "", text)


def parameter_type(parameter: str) -> Optional[str]:
    """Type annotation of a parameter declaration, e.g. ``inner: Source`` -> ``Source``."""
    if ":" not in parameter:
        return None
    annotation = parameter.split(":", 1)[1].split("=", 1)[0]
    return annotation.strip() or None


def find_import_cycles(
    entities: Sequence[Any], relationships: Sequence[CodeRelationship]
) -> List[Tuple[List[str], List[str]]]:
    """Find cycles in the import graph with a depth-first search.

    The search starts from every Module entity and keeps a recursion stack;
    an edge back into the stack closes a cycle. Each distinct cycle is
    reported once, whichever module the search started from.

    Args:
        entities: Entities to search
        relationships: Relationships to search; only IMPORTS edges are followed

    Returns:
        List of (entity ids on the cycle, relationship ids on the cycle)
    """
    graph: Dict[str, List[str]] = {}
    edge_ids: Dict[Tuple[str, str], str] = {}
    for rel in relationships:
        if rel.type != RelationshipType.IMPORTS:
            continue
        targets = graph.setdefault(rel.source_id, [])
        if rel.target_id not in targets:
            targets.append(rel.target_id)
            edge_ids[(rel.source_id, rel.target_id)] = rel.id

    starts = [e.id for e in entities if e.type == EntityType.MODULE]
    visited = set()
    seen_cycles = set()
    cycles = []

    for start in starts:
        if start in visited:
            continue
        visited.add(start)
        path = [start]
        on_path = {start}
        stack = [iter(graph.get(start, ()))]

        while stack:
            target = next(stack[-1], None)
            if target is None:
                stack.pop()
                on_path.discard(path.pop())
                continue

            if target in on_path:
                cycle = path[path.index(target):]
                pivot = cycle.index(min(cycle))
                key = tuple(cycle[pivot:] + cycle[:pivot])
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    hops = list(zip(cycle, cycle[1:] + cycle[:1]))
                    cycles.append((cycle, [edge_ids[hop] for hop in hops if hop in edge_ids]))
            elif target not in visited:
                visited.add(target)
                path.append(target)
                on_path.add(target)
                stack.append(iter(graph.get(target, ())))

    return cycles


def find_duplicate_groups(entities: Sequence[Any]) -> List[List[Any]]:
    """Group functions with the same normalized signature across different files."""
    groups: Dict[str, List[Any]] = {}
    for function in _local(entities, EntityType.FUNCTION):
        key = normalize_signature(function)
        if key:
            groups.setdefault(key, []).append(function)

    return [
        group
        for group in groups.values()
        if len(group) > 1 and len({e.file_path for e in group}) > 1
    ]


# Design patterns


def detect_singleton(entities, relationships) -> List[RuleMatch]:
    matches = []
    for cls in _local(entities, EntityType.CLASS):
        methods = _members(cls, entities, EntityType.FUNCTION)
        fields = _members(cls, entities, EntityType.VARIABLE, EntityType.CONSTANT)

        private_constructor = next(
            (
                m
                for m in methods
                if m.name == "constructor" and m.metadata.get("visibility") == "private"
            ),
            None,
        )
        instance_getter = next(
            (m for m in methods if m.metadata.get("is_static") and "instance" in m.name.lower()),
            None,
        )
        static_field = next((f for f in fields if f.metadata.get("is_static")), None)

        if private_constructor and instance_getter and static_field:
            matches.append(
                RuleMatch(
                    entities=[cls.id, private_constructor.id, instance_getter.id, static_field.id],
                    location=_location(cls),
                    severity=Severity.LOW,
                    confidence=0.9,
                    metadata=_meta(
                        "Controls object instantiation",
                        "Consider dependency injection for better testability",
                        ["Database connections", "Logger instances", "Configuration objects"],
                    ),
                )
            )
    return matches


def detect_factory(entities, relationships) -> List[RuleMatch]:
    by_id = {e.id: e for e in entities}
    matches = []

    for function in _local(entities, EntityType.FUNCTION):
        name = function.name.lower()
        if not any(word in name for word in ("create", "factory", "make")):
            continue

        creations = []
        for rel in relationships:
            if rel.type != RelationshipType.CALLS or rel.source_id != function.id:
                continue
            target = by_id.get(rel.target_id)
            target_name = target.name if target is not None else ""
            if (
                target_name == "constructor"
                or "new" in target_name.lower()
                or rel.metadata.get("call_type") == "constructor_call"
            ):
                creations.append(rel)

        if creations:
            matches.append(
                RuleMatch(
                    entities=[function.id] + [rel.target_id for rel in creations],
                    relationships=[rel.id for rel in creations],
                    location=_location(function),
                    severity=Severity.LOW,
                    confidence=0.8,
                    metadata=_meta(
                        "Encapsulates object creation logic",
                        "Ensure factory handles all object creation variants",
                        ["UI component factories", "Database connection factories"],
                    ),
                )
            )
    return matches


def detect_observer(entities, relationships) -> List[RuleMatch]:
    matches = []
    for cls in _local(entities, EntityType.CLASS):
        methods = _members(cls, entities, EntityType.FUNCTION)
        names = [m.name.lower() for m in methods]

        has_add = any("add" in n and "observer" in n for n in names)
        has_remove = any("remove" in n and "observer" in n for n in names)
        has_notify = any("notify" in n or "update" in n for n in names)

        if has_add and has_remove and has_notify:
            matches.append(
                RuleMatch(
                    entities=[cls.id] + [m.id for m in methods],
                    location=_location(cls),
                    severity=Severity.LOW,
                    confidence=0.85,
                    metadata=_meta(
                        "Enables loose coupling between objects",
                        "Consider using event emitters or reactive patterns",
                        ["Event systems", "Model-View architectures", "Pub/Sub systems"],
                    ),
                )
            )
    return matches


def detect_strategy(entities, relationships) -> List[RuleMatch]:
    matches = []
    for interface in _local(entities, EntityType.INTERFACE):
        implementations = [
            rel
            for rel in relationships
            if rel.type == RelationshipType.IMPLEMENTS and rel.target_id == interface.id
        ]
        if len(implementations) >= 2:
            matches.append(
                RuleMatch(
                    entities=[interface.id] + [rel.source_id for rel in implementations],
                    relationships=[rel.id for rel in implementations],
                    location=_location(interface),
                    severity=Severity.LOW,
                    confidence=0.8,
                    metadata=_meta(
                        "Enables algorithm selection at runtime",
                        "Ensure all strategies have consistent interfaces",
                        ["Sorting algorithms", "Payment processing", "Validation strategies"],
                    ),
                )
            )
    return matches


def detect_decorator(entities, relationships) -> List[RuleMatch]:
    matches = []
    for cls in _local(entities, EntityType.CLASS):
        implements = cls.metadata.get("implements") or []
        if not implements:
            continue

        constructor = next(
            (m for m in _members(cls, entities, EntityType.FUNCTION) if m.name == "constructor"),
            None,
        )
        if constructor is None:
            continue

        wrapped = implements[0]
        if any(parameter_type(p) == wrapped for p in constructor.metadata.get("parameters", [])):
            matches.append(
                RuleMatch(
                    entities=[cls.id, constructor.id],
                    location=_location(cls),
                    severity=Severity.LOW,
                    confidence=0.75,
                    metadata=_meta(
                        "Adds behavior without modifying original objects",
                        "Ensure decorators maintain the same interface",
                        ["Middleware systems", "UI component wrappers", "Data transformers"],
                    ),
                )
            )
    return matches


# Anti-patterns


def detect_god_class(entities, relationships) -> List[RuleMatch]:
    matches = []
    for cls in _local(entities, EntityType.CLASS):
        lines = cls.metadata.get("line_count", 0)
        methods = len(cls.metadata.get("methods", []))
        properties = len(cls.metadata.get("properties", []))

        if (
            lines > GOD_CLASS_MAX_LINES
            or methods > GOD_CLASS_MAX_METHODS
            or properties > GOD_CLASS_MAX_PROPERTIES
        ):
            severity = Severity.HIGH if lines > 2000 or methods > 50 else Severity.MEDIUM
            matches.append(
                RuleMatch(
                    entities=[cls.id],
                    location=_location(cls),
                    severity=severity,
                    confidence=0.9,
                    metadata=_meta(
                        "Difficult to maintain, test, and understand",
                        "Split into smaller, more focused classes using Single Responsibility Principle",
                        [f"{lines} lines", f"{methods} methods", f"{properties} properties"],
                    ),
                )
            )
    return matches


def detect_long_method(entities, relationships) -> List[RuleMatch]:
    matches = []
    for function in _local(entities, EntityType.FUNCTION):
        lines = function.metadata.get("line_count", 0)
        complexity = function.metadata.get("complexity", 1)

        if lines > LONG_METHOD_MAX_LINES or complexity > LONG_METHOD_MAX_COMPLEXITY:
            severity = Severity.HIGH if lines > 200 or complexity > 25 else Severity.MEDIUM
            matches.append(
                RuleMatch(
                    entities=[function.id],
                    location=_location(function),
                    severity=severity,
                    confidence=0.85,
                    metadata=_meta(
                        "Difficult to understand, test, and maintain",
                        "Extract smaller methods, reduce complexity",
                        [f"{lines} lines", f"Complexity: {complexity}"],
                    ),
                )
            )
    return matches


def detect_duplicate_code(entities, relationships) -> List[RuleMatch]:
    matches = []
    for group in find_duplicate_groups(entities):
        matches.append(
            RuleMatch(
                entities=[e.id for e in group],
                location=_location(group[0]),
                severity=Severity.MEDIUM,
                confidence=0.8,
                metadata=_meta(
                    "Increases maintenance burden and bug risk",
                    "Extract common functionality into shared methods or modules",
                    [f"{e.file_path}:{e.line}" for e in group],
                ),
            )
        )
    return matches


def detect_circular_dependency(entities, relationships) -> List[RuleMatch]:
    by_id = {e.id: e for e in entities}
    matches = []

    for cycle, edge_ids in find_import_cycles(entities, relationships):
        first = by_id.get(cycle[0])
        location = (
            _location(first) if first is not None else PatternLocation("unknown", 0, 0)
        )
        matches.append(
            RuleMatch(
                entities=list(cycle),
                relationships=edge_ids,
                location=location,
                severity=Severity.HIGH,
                confidence=0.95,
                metadata=_meta(
                    "Prevents modular compilation and testing",
                    "Refactor to remove circular dependencies using dependency inversion",
                    [by_id[i].name if i in by_id else i for i in cycle],
                ),
            )
        )
    return matches


# Code smells


def detect_large_class(entities, relationships) -> List[RuleMatch]:
    matches = []
    for cls in _local(entities, EntityType.CLASS):
        lines = cls.metadata.get("line_count", 0)
        if LARGE_CLASS_MIN_LINES < lines <= GOD_CLASS_MAX_LINES:
            matches.append(
                RuleMatch(
                    entities=[cls.id],
                    location=_location(cls),
                    severity=Severity.MEDIUM,
                    confidence=0.7,
                    metadata=_meta(
                        "Becoming difficult to maintain",
                        "Consider splitting into smaller classes",
                        [f"{lines} lines of code"],
                    ),
                )
            )
    return matches


def detect_long_parameter_list(entities, relationships) -> List[RuleMatch]:
    matches = []
    for function in _local(entities, EntityType.FUNCTION):
        count = len(function.metadata.get("parameters", []))
        if count > LONG_PARAMETER_LIST_MAX:
            matches.append(
                RuleMatch(
                    entities=[function.id],
                    location=_location(function),
                    severity=Severity.MEDIUM if count > 8 else Severity.LOW,
                    confidence=0.8,
                    metadata=_meta(
                        "Difficult to call and maintain",
                        "Use parameter objects or builder pattern",
                        [f"{count} parameters"],
                    ),
                )
            )
    return matches


def detect_dead_code(entities, relationships) -> List[RuleMatch]:
    called = set()
    exported = set()
    for rel in relationships:
        if rel.type == RelationshipType.CALLS:
            called.add(rel.target_id)
        elif rel.type == RelationshipType.EXPORTS:
            exported.add(rel.source_id)
            exported.add(rel.target_id)

    matches = []
    for function in _local(entities, EntityType.FUNCTION):
        if function.id in called or function.id in exported:
            continue
        if function.metadata.get("visibility") == "private":
            continue
        matches.append(
            RuleMatch(
                entities=[function.id],
                location=_location(function),
                severity=Severity.LOW,
                confidence=0.9,
                metadata=_meta(
                    "Increases code size and maintenance burden",
                    "Remove unused code or make it private if needed internally",
                    [function.name],
                ),
            )
        )
    return matches


def find_magic_numbers(content: str) -> List[str]:
    """Numeric literals in code other than 0, 1 and 2, skipping const declarations."""
    found = []
    for line in content.splitlines():
        if re.match(r"\s*(export\s+)?const\s", line):
            continue
        code = LINE_COMMENT_RE.sub("", STRING_RE.sub("", line))
        for literal in NUMBER_RE.findall(code):
            if literal not in ALLOWED_NUMBERS and literal not in found:
                found.append(literal)
    return found


def detect_magic_numbers(entities, relationships) -> List[RuleMatch]:
    matches = []
    for function in _local(entities, EntityType.FUNCTION):
        literals = find_magic_numbers(function.content)
        if len(literals) >= MAGIC_NUMBER_THRESHOLD:
            matches.append(
                RuleMatch(
                    entities=[function.id],
                    location=_location(function),
                    severity=Severity.LOW,
                    confidence=0.6,
                    metadata=_meta(
                        "Obscures intent and makes values hard to change",
                        "Replace numeric literals with named constants",
                        literals[:5],
                    ),
                )
            )
    return matches


RULES: Tuple[PatternRule, ...] = (
    PatternRule(
        "Singleton Pattern",
        PatternType.DESIGN_PATTERN,
        "creational",
        "A class that ensures only one instance exists",
        detect_singleton,
    ),
    PatternRule(
        "Factory Pattern",
        PatternType.DESIGN_PATTERN,
        "creational",
        "A method that creates objects without specifying their concrete classes",
        detect_factory,
    ),
    PatternRule(
        "Observer Pattern",
        PatternType.DESIGN_PATTERN,
        "behavioral",
        "Defines a one-to-many dependency between objects",
        detect_observer,
    ),
    PatternRule(
        "Strategy Pattern",
        PatternType.DESIGN_PATTERN,
        "behavioral",
        "Defines a family of algorithms and makes them interchangeable",
        detect_strategy,
    ),
    PatternRule(
        "Decorator Pattern",
        PatternType.DESIGN_PATTERN,
        "structural",
        "Adds new functionality to objects dynamically",
        detect_decorator,
    ),
    PatternRule(
        "God Class",
        PatternType.ANTI_PATTERN,
        "structural",
        "A class that has too many responsibilities",
        detect_god_class,
    ),
    PatternRule(
        "Long Method",
        PatternType.ANTI_PATTERN,
        "structural",
        "A method that has too many lines of code",
        detect_long_method,
    ),
    PatternRule(
        "Duplicate Code",
        PatternType.ANTI_PATTERN,
        "structural",
        "Similar or identical code blocks in different locations",
        detect_duplicate_code,
    ),
    PatternRule(
        "Circular Dependency",
        PatternType.ANTI_PATTERN,
        "architectural",
        "Modules or classes that depend on each other in a circular fashion",
        detect_circular_dependency,
    ),
    PatternRule(
        "Large Class",
        PatternType.CODE_SMELL,
        "structural",
        "A class that has grown too large",
        detect_large_class,
    ),
    PatternRule(
        "Long Parameter List",
        PatternType.CODE_SMELL,
        "method",
        "A method with too many parameters",
        detect_long_parameter_list,
    ),
    PatternRule(
        "Dead Code",
        PatternType.CODE_SMELL,
        "structural",
        "Code that is never executed or used",
        detect_dead_code,
    ),
    PatternRule(
        "Magic Numbers",
        PatternType.CODE_SMELL,
        "readability",
        "Numeric literals without clear meaning",
        detect_magic_numbers,
    ),
)
