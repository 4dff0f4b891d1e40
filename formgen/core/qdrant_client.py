from dataclasses import dataclass
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)
from formgen.core.errors import VectorStoreError
from formgen.core.settings import Settings
from typing import List, Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    id: str
    score: float
    payload: Dict[str, Any]


class QdrantVectorStore:
    """Qdrant collection holding one point per form, keyed by form id"""

    def __init__(
        self,
        collection_name: str,
        vector_size: int,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[AsyncQdrantClient] = None
    ):
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key)
        self.collection_name = collection_name
        self.vector_size = vector_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "QdrantVectorStore":
        return cls(
            collection_name=settings.QDRANT_COLLECTION_NAME,
            vector_size=settings.EMBEDDING_DIMENSIONS,
            url=settings.QDRANT_URL,
            api_key=settings.QDRANT_API_KEY,
        )

    async def ensure_collection(self) -> None:
        """
        Create the collection if it doesn't exist

        Raises:
            VectorStoreError: existing collection has a different vector size;
                stored embeddings are left untouched
        """
        collections = (await self.client.get_collections()).collections
        collection_names = [col.name for col in collections]

        if self.collection_name in collection_names:
            collection_info = await self.client.get_collection(self.collection_name)
            existing_size = collection_info.config.params.vectors.size

            if existing_size == self.vector_size:
                logger.info(f"Collection {self.collection_name} already exists with correct dimensions")
                return

            raise VectorStoreError(
                f"Collection '{self.collection_name}' has {existing_size}-dimension vectors "
                f"but the embedding provider produces {self.vector_size}; "
                f"set EMBEDDING_DIMENSIONS or QDRANT_COLLECTION_NAME to match"
            )

        await self._create_collection()

    async def _create_collection(self) -> None:
        logger.info(f"Creating Qdrant collection: {self.collection_name} (dimension: {self.vector_size})")
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(
                size=self.vector_size,
                distance=Distance.COSINE
            )
        )
        # User-scoped queries filter on this key
        await self.client.create_payload_index(
            collection_name=self.collection_name,
            field_name="user_id",
            field_schema=PayloadSchemaType.KEYWORD,
        )
        logger.info(f"✅ Collection {self.collection_name} created successfully")

    async def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        """
        Insert or replace the point for a form

        Args:
            point_id: Form id (UUID string)
            vector: Embedding vector
            payload: Primitive-valued metadata
        """
        if len(vector) != self.vector_size:
            raise VectorStoreError(
                f"Vector dimension mismatch: expected {self.vector_size}, got {len(vector)}"
            )

        await self.client.upsert(
            collection_name=self.collection_name,
            points=[PointStruct(id=point_id, vector=vector, payload=payload)]
        )

    async def query(self, vector: List[float], user_id: str, limit: int = 5) -> List[VectorMatch]:
        """
        Nearest neighbours restricted to one user's forms

        Args:
            vector: Query embedding
            user_id: Owner whose forms may match
            limit: Maximum number of results

        Returns:
            Matches ordered by descending similarity
        """
        result = await self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            limit=limit,
            query_filter=Filter(
                must=[FieldCondition(key="user_id", match=MatchValue(value=user_id))]
            ),
            with_payload=True,
        )

        return [
            VectorMatch(id=str(point.id), score=point.score, payload=point.payload or {})
            for point in result.points
        ]

    async def delete(self, point_id: str) -> None:
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=[point_id]
        )
        logger.info(f"Deleted embedding for form {point_id}")

    async def close(self) -> None:
        await self.client.close()
