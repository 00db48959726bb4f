"""Qdrant vector store for code entity embeddings."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client.http import models
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from ..analysis.models import entity_to_dict
from .embeddings import OllamaEmbeddings

logger = logging.getLogger(__name__)

MAX_EMBEDDED_CONTENT = 4000


def hex_to_uuid(hex_str: str) -> str:
    """Convert a hexadecimal entity id to UUID format.

    Args:
        hex_str: Hexadecimal string (16 or 32 characters)

    Returns:
        UUID string
    """
    hex_str = hex_str.ljust(32, "0")
    return f"{hex_str[0:8]}-{hex_str[8:12]}-{hex_str[12:16]}-{hex_str[16:20]}-{hex_str[20:32]}"


def embedding_text(entity: Any) -> str:
    """Text embedded for an entity: its signature (if any) and source."""
    content = entity.content[:MAX_EMBEDDED_CONTENT]
    if entity.signature and entity.signature not in content:
        return f"{entity.signature}\n{content}"
    return content


class CodeVectorStore:
    """Stores entity embeddings in Qdrant and answers similarity queries."""

    def __init__(
        self,
        embeddings: OllamaEmbeddings,
        host: str = "localhost",
        port: int = 6333,
        collection_name: str = "code_entities",
        vector_size: int = 768,  # nomic-embed-text
    ):
        """Initialize Qdrant client.

        Args:
            embeddings: Embedding generator used for stored and queried text
            host: Qdrant server host
            port: Qdrant server port
            collection_name: Name of the collection to use
            vector_size: Dimension of embedding vectors
        """
        self.embeddings = embeddings
        self.client = QdrantClient(host=host, port=port)
        self.collection_name = collection_name
        self.vector_size = vector_size
        self._ensure_collection()

    def _ensure_collection(self) -> None:
        try:
            collection_names = [col.name for col in self.client.get_collections().collections]
            if self.collection_name not in collection_names:
                logger.info(f"Creating collection: {self.collection_name}")
                self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                )
        except Exception as e:
            logger.error(f"Error ensuring collection: {e}")
            raise

    async def store(self, entities: Sequence[Any]) -> int:
        """Embed and upsert local entities that carry source text.

        Entities whose embedding fails are skipped.

        Args:
            entities: CodeEntity objects

        Returns:
            Number of points upserted
        """
        candidates = [e for e in entities if not e.is_external and e.content.strip()]
        if not candidates:
            return 0

        vectors = await self.embeddings.generate_embeddings([embedding_text(e) for e in candidates])

        points = []
        for entity, vector in zip(candidates, vectors):
            if vector is None:
                continue
            payload = entity_to_dict(entity)
            payload["content"] = entity.content[:MAX_EMBEDDED_CONTENT]
            points.append(PointStruct(id=hex_to_uuid(entity.id), vector=vector, payload=payload))

        if not points:
            return 0

        await asyncio.to_thread(
            self.client.upsert, collection_name=self.collection_name, points=points
        )
        logger.info(f"Upserted {len(points)} entity embeddings to Qdrant")
        return len(points)

    async def search(
        self,
        query_text: str,
        limit: int = 10,
        score_threshold: Optional[float] = None,
        file_path_filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Find stored entities similar to a piece of code or text.

        Args:
            query_text: Code snippet or description
            limit: Maximum number of results
            score_threshold: Minimum cosine similarity
            file_path_filter: Only return entities from this file

        Returns:
            Entity payloads with an added ``score``
        """
        query_vector = await self.embeddings.generate_embedding(query_text)

        query_filter = None
        if file_path_filter:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(
                        key="file_path", match=models.MatchValue(value=file_path_filter)
                    )
                ]
            )

        response = await asyncio.to_thread(
            self.client.query_points,
            collection_name=self.collection_name,
            query=query_vector,
            query_filter=query_filter,
            limit=limit,
            score_threshold=score_threshold,
            with_payload=True,
        )

        results = [{**(point.payload or {}), "score": point.score} for point in response.points]
        logger.info(f"Found {len(results)} similar entities")
        return results

    def delete_by_file_path(self, file_path: str) -> None:
        self.client.delete(
            collection_name=self.collection_name,
            points_selector=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.FieldCondition(
                            key="file_path", match=models.MatchValue(value=file_path)
                        )
                    ]
                )
            ),
        )
        logger.info(f"Deleted embeddings for file: {file_path}")

    def clear_collection(self) -> None:
        self.client.delete_collection(collection_name=self.collection_name)
        self._ensure_collection()
        logger.info(f"Cleared collection: {self.collection_name}")

    def health_check(self) -> bool:
        try:
            self.client.get_collections()
            return True
        except Exception as e:
            logger.error(f"Qdrant health check failed: {e}")
            return False
