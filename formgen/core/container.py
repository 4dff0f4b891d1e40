# formgen/core/container.py
"""
Explicitly constructed services shared by request handlers.

Built once per application in the lifespan and stored on app.state;
routes reach it through FastAPI dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from formgen.core.background import BackgroundTaskRunner
from formgen.core.database import close_db, create_engine, create_session_factory, init_db
from formgen.core.embedding_client import build_embedding_provider
from formgen.core.gemini_client import GeminiClient
from formgen.core.qdrant_client import QdrantVectorStore
from formgen.core.settings import Settings
from formgen.services.form_generator import FormGeneratorService
from formgen.services.semantic_memory import SemanticMemoryService
from formgen.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    runner: BackgroundTaskRunner
    memory: SemanticMemoryService
    generator: FormGeneratorService
    webhooks: WebhookService
    vector_store: Optional[QdrantVectorStore] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        runner = BackgroundTaskRunner()

        vector_store = QdrantVectorStore.from_settings(settings) if settings.QDRANT_URL else None
        if vector_store is None:
            logger.warning("⚠️ QDRANT_URL not set, semantic search will use fallback text search")

        memory = SemanticMemoryService(
            embedder=build_embedding_provider(settings),
            vector_store=vector_store,
            session_factory=session_factory,
            top_k=settings.MEMORY_TOP_K,
            score_threshold=settings.MEMORY_SCORE_THRESHOLD,
            cache_ttl=settings.MEMORY_CACHE_TTL,
        )
        generator = FormGeneratorService(
            llm=GeminiClient(api_key=settings.GOOGLE_API_KEY, model=settings.GEMINI_MODEL),
            memory=memory,
            temperature=settings.GENERATION_TEMPERATURE,
            max_output_tokens=settings.GENERATION_MAX_OUTPUT_TOKENS,
        )
        webhooks = WebhookService(
            session_factory=session_factory,
            runner=runner,
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            timeout=settings.WEBHOOK_TIMEOUT,
            user_agent=settings.WEBHOOK_USER_AGENT,
        )

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            runner=runner,
            memory=memory,
            generator=generator,
            webhooks=webhooks,
            vector_store=vector_store,
        )

    async def startup(self) -> None:
        await init_db(self.engine)

        if self.vector_store is None:
            self.memory.vector_available = False
            return

        try:
            await self.vector_store.ensure_collection()
            self.memory.vector_available = True
            logger.info("✅ Vector store ready")
        except Exception as e:
            self.memory.vector_available = False
            logger.warning(f"⚠️ Vector store initialization failed: {e}")
            logger.warning("Semantic search will use fallback text search")

    async def shutdown(self) -> None:
        await self.runner.drain()
        if self.vector_store is not None:
            await self.vector_store.close()
        await close_db(self.engine)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
