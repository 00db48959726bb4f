"""Test doubles and entity builders shared by the test modules."""

from typing import Any, Dict, List, Optional

from codelens.analysis.entity_extractor import generate_entity_id
from codelens.analysis.errors import Result
from codelens.analysis.models import (
    CodeEntity,
    CodeRelationship,
    EntityType,
    RelationshipType,
)
from codelens.analysis.relationship_extractor import module_id


class FakeGraph:
    """Stands in for CodeGraphDB: returns canned rows and records queries."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows or []
        self.calls = []
        self.stored = []
        self.deleted = []

    def query(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> Result:
        self.calls.append((cypher, params or {}))
        return Result.ok(list(self.rows))

    def store_analysis(self, entities, relationships, batch_size: int = 1000) -> Dict[str, int]:
        self.stored.append((list(entities), list(relationships)))
        return {"nodes": len(entities), "relationships": len(relationships)}

    def delete_by_file_path(self, file_path: str) -> int:
        self.deleted.append(file_path)
        return 0


def make_entity(
    name: str,
    entity_type: EntityType = EntityType.FUNCTION,
    file_path: str = "src/app.ts",
    line: int = 1,
    content: str = "",
    signature: Optional[str] = None,
    **metadata: Any,
) -> CodeEntity:
    """Build an entity without parsing source."""
    return CodeEntity(
        id=generate_entity_id(file_path, entity_type, name, line, 1),
        name=name,
        type=entity_type,
        file_path=file_path,
        line=line,
        column=1,
        content=content,
        language="typescript",
        signature=signature,
        metadata=metadata,
    )


def make_module(path: str) -> CodeEntity:
    return CodeEntity(
        id=module_id(path),
        name=path,
        type=EntityType.MODULE,
        file_path=path,
        line=1,
        column=1,
        content="",
        language="typescript",
        metadata={"path": path, "is_file": True},
    )


def make_relationship(
    source: Any,
    target: Any,
    rel_type: RelationshipType,
    file_path: str = "src/app.ts",
    line: int = 1,
    **metadata: Any,
) -> CodeRelationship:
    return CodeRelationship(
        id=f"{source.id}-{rel_type.value}-{target.id}",
        source_id=source.id,
        target_id=target.id,
        type=rel_type,
        file_path=file_path,
        line=line,
        metadata=metadata,
    )
