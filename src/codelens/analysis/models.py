"""Data models for code analysis."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

EXTERNAL_FILE_PATH = "external"


class EntityType(str, Enum):
    """Kinds of code entities extracted from source."""

    FUNCTION = "Function"
    CLASS = "Class"
    INTERFACE = "Interface"
    TYPE = "Type"
    VARIABLE = "Variable"
    CONSTANT = "Constant"
    IMPORT = "Import"
    EXPORT = "Export"
    MODULE = "Module"


class RelationshipType(str, Enum):
    """Kinds of directed edges between entities."""

    CALLS = "CALLS"
    IMPORTS = "IMPORTS"
    INHERITS = "INHERITS"
    IMPLEMENTS = "IMPLEMENTS"
    USES = "USES"
    MODIFIES = "MODIFIES"
    REFERENCES = "REFERENCES"
    DEFINES = "DEFINES"
    EXPORTS = "EXPORTS"


@dataclass
class CodeEntity:
    """A named, located construct in a source file."""

    id: str  # Blake3 hash of file, type, name and position
    name: str
    type: EntityType
    file_path: str
    line: int  # 1-based
    column: int  # 1-based
    content: str
    language: str
    signature: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_external(self) -> bool:
        return False


@dataclass
class ExternalEntity:
    """Placeholder for a symbol that could not be resolved to local source."""

    id: str
    name: str
    type: EntityType
    language: str = "unknown"
    metadata: Dict[str, Any] = field(default_factory=dict)

    file_path = EXTERNAL_FILE_PATH
    line = 0
    column = 0
    content = ""
    signature = None

    @property
    def is_external(self) -> bool:
        return True


@dataclass
class CodeRelationship:
    """A directed, typed edge between two entities."""

    id: str
    source_id: str
    target_id: str
    type: RelationshipType
    file_path: str
    line: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalysisMetrics:
    """Size and complexity counters for an analysis run."""

    total_lines: int = 0
    functions: int = 0
    classes: int = 0
    complexity: int = 0


@dataclass
class AnalysisResult:
    """Entities, relationships and metrics produced by analysing code."""

    entities: List[Any] = field(default_factory=list)
    relationships: List[CodeRelationship] = field(default_factory=list)
    metrics: AnalysisMetrics = field(default_factory=AnalysisMetrics)
    insights: List[str] = field(default_factory=list)
    files_analyzed: int = 0
    files_failed: int = 0


def entity_to_dict(entity: Any) -> Dict[str, Any]:
    """Flatten a local or external entity into a plain dictionary.

    Args:
        entity: CodeEntity or ExternalEntity

    Returns:
        Dictionary with string enum values, suitable for JSON or graph storage
    """
    return {
        "id": entity.id,
        "name": entity.name,
        "type": entity.type.value,
        "file_path": entity.file_path,
        "line": entity.line,
        "column": entity.column,
        "content": entity.content,
        "language": entity.language,
        "signature": entity.signature,
        "is_external": entity.is_external,
        "metadata": dict(entity.metadata),
    }


def relationship_to_dict(relationship: CodeRelationship) -> Dict[str, Any]:
    """Flatten a relationship into a plain dictionary."""
    data = asdict(relationship)
    data["type"] = relationship.type.value
    return data


def to_dict(value: Any) -> Any:
    """Recursively convert dataclasses and enums into JSON-friendly values."""
    if isinstance(value, (CodeEntity, ExternalEntity)):
        return entity_to_dict(value)
    if isinstance(value, CodeRelationship):
        return relationship_to_dict(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return {name: to_dict(getattr(value, name)) for name in value.__dataclass_fields__}
    if isinstance(value, dict):
        return {key: to_dict(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dict(item) for item in value]
    return value
