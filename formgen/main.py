import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from formgen.core.container import ServiceContainer
from formgen.core.settings import Settings, get_settings
from formgen.routes import forms, submissions

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Application factory.

    Run with: uvicorn formgen.main:create_app --factory
    """
    settings = settings or (container.settings if container else get_settings())

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Runs on startup and shutdown.
        Builds services, creates tables and checks the vector store.
        """
        owns_container = getattr(app.state, "container", None) is None
        if owns_container:
            app.state.container = ServiceContainer.from_settings(settings)
            await app.state.container.startup()
            logger.info("✅ FormGen services started")

        yield

        if owns_container:
            await app.state.container.shutdown()

    app = FastAPI(
        title="FormGen AI",
        lifespan=lifespan
    )

    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CLIENT_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(forms.router)
    app.include_router(submissions.router)

    @app.get("/health")
    async def health(request: Request):
        memory = request.app.state.container.memory
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "vector_search": "semantic" if memory.vector_available else "fallback",
        }

    return app
