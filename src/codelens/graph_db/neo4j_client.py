"""Neo4j client for the code entity graph.

Entities are stored as nodes labelled with their entity type (Function,
Class, Interface, Type, Variable, Constant, Import, Export, Module) and
relationships as typed edges:

- CALLS: Function calls and constructor invocations
- IMPORTS: Import statement or file module to imported module
- INHERITS / IMPLEMENTS: Class and interface heritage
- USES / MODIFIES / REFERENCES: Identifier usage inside a declaration
- DEFINES: Class to its members
- EXPORTS: Module to export statement, export to exported declaration
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from neo4j import GraphDatabase
from neo4j.exceptions import AuthError, Neo4jError, ServiceUnavailable
from neo4j.graph import Node, Path, Relationship

from ..analysis.errors import GraphServiceError, Result
from ..analysis.models import CodeRelationship, EntityType, entity_to_dict

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def to_graph_properties(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an entity or relationship dict into Neo4j property values.

    Metadata keys are lifted to top-level properties. Neo4j only stores
    primitives and homogeneous lists of primitives, so anything else is
    JSON-encoded. None values are dropped.
    """
    properties = {k: v for k, v in data.items() if k != "metadata"}
    properties.update(data.get("metadata") or {})

    flattened = {}
    for key, value in properties.items():
        if value is None:
            continue
        if _is_primitive(value):
            flattened[key] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            flattened[key] = list(value)
        else:
            flattened[key] = json.dumps(value, default=str)

    content = flattened.get("content")
    if isinstance(content, str) and len(content) > MAX_CONTENT_LENGTH:
        flattened["content"] = content[:MAX_CONTENT_LENGTH]
    return flattened


def record_value(value: Any) -> Any:
    """Convert driver graph types into plain dicts and lists."""
    if isinstance(value, Node):
        return dict(value)
    if isinstance(value, Relationship):
        data = dict(value)
        data["type"] = value.type
        if value.start_node is not None:
            data.setdefault("source_id", value.start_node.get("id"))
        if value.end_node is not None:
            data.setdefault("target_id", value.end_node.get("id"))
        return data
    if isinstance(value, Path):
        return {
            "nodes": [record_value(n) for n in value.nodes],
            "relationships": [record_value(r) for r in value.relationships],
        }
    if isinstance(value, dict):
        return {k: record_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [record_value(v) for v in value]
    return value


class CodeGraphDB:
    """Neo4j client for the code entity graph."""

    def __init__(self, uri: str, user: str, password: str):
        """Initialize Neo4j connection.

        Args:
            uri: Neo4j connection URI (e.g., "bolt://localhost:7687")
            user: Neo4j username
            password: Neo4j password
        """
        self.uri = uri
        self.user = user
        self.driver = None

        try:
            self.driver = GraphDatabase.driver(uri, auth=(user, password))
            logger.info(f"Connected to Neo4j at {uri}")
        except (ServiceUnavailable, AuthError) as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

    def close(self):
        if self.driver:
            self.driver.close()
            logger.info("Neo4j connection closed")

    def verify_connectivity(self) -> bool:
        try:
            with self.driver.session() as session:
                result = session.run("RETURN 1 AS result")
                return result.single()["result"] == 1
        except Exception as e:
            logger.error(f"Neo4j connectivity check failed: {e}")
            return False

    def create_indexes(self):
        """Create id and name indexes for every entity label."""
        indexes = []
        for entity_type in EntityType:
            label = entity_type.value
            indexes.append(
                f"CREATE INDEX {label.lower()}_id IF NOT EXISTS FOR (n:{label}) ON (n.id)"
            )
            indexes.append(
                f"CREATE INDEX {label.lower()}_name IF NOT EXISTS FOR (n:{label}) ON (n.name)"
            )
        indexes.append(
            "CREATE INDEX function_file IF NOT EXISTS FOR (f:Function) ON (f.file_path)"
        )

        with self.driver.session() as session:
            for index_query in indexes:
                try:
                    session.run(index_query)
                    logger.debug(f"Created index: {index_query}")
                except Exception as e:
                    logger.warning(f"Index creation warning: {e}")

    def query(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> Result[List[Dict[str, Any]]]:
        """Run a read query.

        Args:
            cypher: Cypher text
            params: Query parameters

        Returns:
            Result with one dict per record; nodes and relationships are
            flattened to their properties
        """
        try:
            with self.driver.session() as session:
                result = session.run(cypher, params or {})
                rows = [{key: record_value(record[key]) for key in record.keys()} for record in result]
            return Result.ok(rows)
        except (Neo4jError, ServiceUnavailable) as e:
            logger.error(f"Graph query failed: {e}")
            return Result.fail(GraphServiceError(str(e), {"query": cypher}))

    def store_analysis(
        self,
        entities: Sequence[Any],
        relationships: Sequence[CodeRelationship],
        batch_size: int = 1000,
    ) -> Dict[str, int]:
        """Write entities and relationships, merging on entity id.

        Args:
            entities: CodeEntity or ExternalEntity objects
            relationships: Relationships between them
            batch_size: Records per UNWIND batch

        Returns:
            Counts of nodes and relationships written
        """
        nodes_by_label: Dict[str, List[Dict[str, Any]]] = {}
        for entity in entities:
            properties = to_graph_properties(entity_to_dict(entity))
            nodes_by_label.setdefault(entity.type.value, []).append(
                {"id": entity.id, "properties": properties}
            )

        rels_by_type: Dict[str, List[Dict[str, Any]]] = {}
        for rel in relationships:
            properties = to_graph_properties(
                {"id": rel.id, "file_path": rel.file_path, "line": rel.line, "metadata": rel.metadata}
            )
            rels_by_type.setdefault(rel.type.value, []).append(
                {"source_id": rel.source_id, "target_id": rel.target_id, "properties": properties}
            )

        with self.driver.session() as session:
            for label, label_nodes in nodes_by_label.items():
                for i in range(0, len(label_nodes), batch_size):
                    session.run(
                        f"""
                        UNWIND $nodes AS node
                        MERGE (n:{label} {{id: node.id}})
                        SET n += node.properties
                        """,
                        nodes=label_nodes[i : i + batch_size],
                    )

            for rel_type, type_rels in rels_by_type.items():
                for i in range(0, len(type_rels), batch_size):
                    session.run(
                        f"""
                        UNWIND $rels AS rel
                        MATCH (source {{id: rel.source_id}})
                        MATCH (target {{id: rel.target_id}})
                        MERGE (source)-[r:{rel_type} {{id: rel.properties.id}}]->(target)
                        SET r += rel.properties
                        """,
                        rels=type_rels[i : i + batch_size],
                    )

        logger.info(f"Stored {len(entities)} entities and {len(relationships)} relationships")
        return {"nodes": len(entities), "relationships": len(relationships)}

    def delete_by_file_path(self, file_path: str) -> int:
        """Delete all nodes declared in a file, with their relationships.

        Returns:
            Number of deleted nodes
        """
        with self.driver.session() as session:
            result = session.run(
                "MATCH (n {file_path: $file_path}) DETACH DELETE n", file_path=file_path
            )
            deleted_count = result.consume().counters.nodes_deleted
            logger.info(f"Deleted {deleted_count} nodes from {file_path}")
            return deleted_count

    def clear_graph(self):
        with self.driver.session() as session:
            session.run("MATCH (n) DETACH DELETE n")
            logger.info("Cleared entire graph database")

    def get_statistics(self) -> Dict[str, Any]:
        with self.driver.session() as session:
            node_counts = session.run(
                "MATCH (n) RETURN labels(n)[0] AS label, count(*) AS count"
            )
            nodes_by_label = {record["label"]: record["count"] for record in node_counts}

            rel_counts = session.run("MATCH ()-[r]->() RETURN type(r) AS type, count(*) AS count")
            relationships_by_type = {record["type"]: record["count"] for record in rel_counts}

            return {
                "nodes_by_label": nodes_by_label,
                "relationships_by_type": relationships_by_type,
            }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
