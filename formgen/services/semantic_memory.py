# formgen/services/semantic_memory.py
"""
Semantic memory over a user's past forms.

1. When a form is created its summary is embedded and upserted into the
   vector store with metadata (user_id, purpose, field types, summary).
2. When a new form is generated the prompt is embedded, the user's top-K
   nearest forms are looked up, and only their title/summary/purpose/field
   names are hydrated from the database for the LLM prompt.

Retrieval is advisory: every failure degrades to an empty context.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import or_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from formgen.core.embedding_client import EmbeddingProvider
from formgen.core.errors import EmbeddingProviderError
from formgen.core.qdrant_client import QdrantVectorStore
from formgen.models.form import Form
from formgen.schemas.form import FormContext

logger = logging.getLogger(__name__)

SUMMARY_METADATA_LIMIT = 500
MIN_KEYWORD_LENGTH = 4


class SemanticMemoryService:

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: Optional[QdrantVectorStore],
        session_factory: async_sessionmaker[AsyncSession],
        top_k: int = 5,
        score_threshold: float = 0.5,
        cache_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.session_factory = session_factory
        self.top_k = top_k
        self.score_threshold = score_threshold
        self.cache_ttl = cache_ttl
        self._clock = clock

        # Set from the startup health check
        self.vector_available = vector_store is not None

        # "<user_id>::<normalized prompt>" -> (stored_at, results)
        self._cache: Dict[str, Tuple[float, List[FormContext]]] = {}
        self._lock = threading.Lock()

    async def generate_embedding(self, text: str) -> List[float]:
        try:
            vector = await self.embedder.embed(text)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}") from e

        if not vector:
            raise EmbeddingProviderError("Embedding provider returned no vector")
        return vector

    async def store_form_embedding(
        self,
        form_id: str,
        user_id: str,
        summary: str,
        purpose: str,
        field_types: Sequence[str],
    ) -> None:
        """Best effort: failures are logged, never raised"""
        if self.vector_store is None:
            logger.info(f"Vector store not configured, skipping embedding for form {form_id}")
            return

        try:
            vector = await self.generate_embedding(summary)
            await self.vector_store.upsert(
                point_id=str(form_id),
                vector=vector,
                payload={
                    "user_id": str(user_id),
                    "purpose": purpose,
                    "field_types": ",".join(field_types),
                    "summary": summary[:SUMMARY_METADATA_LIMIT],
                },
            )
            logger.info(f"✅ Stored embedding for form {form_id}")
        except Exception as e:
            logger.error(f"Error storing form embedding for {form_id}: {e}")

    async def delete_form_embedding(self, form_id: str) -> None:
        if self.vector_store is None:
            return
        try:
            await self.vector_store.delete(str(form_id))
        except Exception as e:
            logger.warning(f"Failed to delete embedding for form {form_id}: {e}")

    # ---------- Cache ----------

    @staticmethod
    def _cache_key(user_id: str, prompt: str) -> str:
        return f"{user_id}::{prompt.strip().lower()}"

    def _cache_get(self, key: str) -> Optional[List[FormContext]]:
        now = self._clock()
        with self._lock:
            item = self._cache.get(key)
            if item is None:
                return None
            stored_at, results = item
            if now - stored_at < self.cache_ttl:
                return results
            del self._cache[key]
            return None

    def _cache_put(self, key: str, results: List[FormContext]) -> None:
        now = self._clock()
        with self._lock:
            expired = [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl]
            for k in expired:
                del self._cache[k]
            self._cache[key] = (now, results)

    # ---------- Retrieval ----------

    async def retrieve_relevant_forms(self, user_id: str, prompt: str) -> List[FormContext]:
        """
        Top-K most similar past forms of this user

        Returns:
            Context entries in similarity order, [] on any error
        """
        key = self._cache_key(str(user_id), prompt)
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug(f"Semantic memory cache hit for user {user_id}")
            return cached

        try:
            if self.vector_store is None:
                raise RuntimeError("Vector store not configured")

            query_vector = await self.generate_embedding(prompt)
            matches = await self.vector_store.query(query_vector, user_id=str(user_id), limit=self.top_k)

            form_ids = [match.id for match in matches if match.score > self.score_threshold]
            results = await self._hydrate(user_id, form_ids) if form_ids else []
        except Exception as e:
            logger.error(f"Error retrieving relevant forms: {e}")
            return []

        logger.info(f"Retrieved {len(results)} relevant forms for user {user_id}")
        self._cache_put(key, results)
        return results

    async def _hydrate(self, user_id: str, form_ids: List[str]) -> List[FormContext]:
        ids = []
        for form_id in form_ids:
            try:
                ids.append(UUID(form_id))
            except ValueError:
                logger.warning(f"Ignoring vector match with non-form id {form_id}")

        async with self.session_factory() as db:
            result = await db.execute(
                select(Form.id, Form.title, Form.summary, Form.purpose, Form.field_names).where(
                    Form.id.in_(ids),
                    Form.user_id == UUID(str(user_id)),
                )
            )
            rows = {row.id: row for row in result.all()}

        # Keep similarity order
        return [_to_context(rows[form_id]) for form_id in ids if form_id in rows]

    async def fallback_text_search(self, user_id: str, prompt: str) -> List[FormContext]:
        """Keyword-overlap search over the user's forms, for when the vector backend is down"""
        keywords = list(dict.fromkeys(
            word for word in prompt.lower().split() if len(word) >= MIN_KEYWORD_LENGTH
        ))
        if not keywords:
            return []

        searchable = (Form.title, Form.description, Form.summary)
        conditions = [
            func.lower(column).contains(keyword, autoescape=True)
            for keyword in keywords
            for column in searchable
        ]

        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    Form.id, Form.title, Form.description, Form.summary, Form.purpose, Form.field_names
                )
                .where(Form.user_id == UUID(str(user_id)), or_(*conditions))
                .order_by(Form.created_at.desc())
                .limit(self.top_k * 4)
            )
            rows = result.all()

        def overlap(row) -> int:
            text = " ".join(filter(None, (row.title, row.description, row.summary))).lower()
            return sum(1 for keyword in keywords if keyword in text)

        ranked = sorted(rows, key=overlap, reverse=True)[: self.top_k]
        logger.info(f"Fallback text search found {len(ranked)} forms for user {user_id}")
        return [_to_context(row) for row in ranked]


def _to_context(row) -> FormContext:
    return FormContext(
        purpose=row.purpose,
        fields=list(row.field_names or []),
        title=row.title,
        summary=row.summary,
    )
