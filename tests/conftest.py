import uuid
from typing import Any, Dict, List, Optional

import httpx
import pytest

from formgen.core.background import BackgroundTaskRunner
from formgen.core.container import ServiceContainer
from formgen.core.database import close_db, create_engine, create_session_factory, init_db
from formgen.core.embedding_client import EmbeddingProvider
from formgen.core.qdrant_client import VectorMatch
from formgen.core.security import create_access_token
from formgen.core.settings import Settings
from formgen.main import create_app
from formgen.models.form import Form
from formgen.services.form_generator import FormGeneratorService
from formgen.services.semantic_memory import SemanticMemoryService
from formgen.services.webhook_service import WebhookService


# ---------- Fakes ----------

class FakeEmbedder(EmbeddingProvider):
    model = "fake-embedding"

    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.vector


class FakeVectorStore:
    def __init__(self, matches: Optional[List[VectorMatch]] = None, query_error: Optional[Exception] = None):
        self.matches = matches or []
        self.query_error = query_error
        self.upsert_error: Optional[Exception] = None
        self.points: Dict[str, Dict[str, Any]] = {}
        self.queries: List[Dict[str, Any]] = []
        self.deleted: List[str] = []

    async def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        if self.upsert_error:
            raise self.upsert_error
        self.points[point_id] = {"vector": vector, "payload": payload}

    async def query(self, vector: List[float], user_id: str, limit: int) -> List[VectorMatch]:
        self.queries.append({"vector": vector, "user_id": user_id, "limit": limit})
        if self.query_error:
            raise self.query_error
        return self.matches[:limit]

    async def delete(self, point_id: str) -> None:
        self.deleted.append(point_id)

    async def close(self) -> None:
        pass


class FakeLLM:
    def __init__(self, response: str = "", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str, temperature: float = 0.7, max_output_tokens: int = 2048) -> str:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.response


class WebhookRecorder:
    """MockTransport handler that records requests and answers with a fixed status"""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text="ok")


async def no_sleep(seconds: float) -> None:
    pass


# ---------- Fixtures ----------

@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'formgen.db'}",
        JWT_SECRET="test-secret",
        QDRANT_URL=None,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def runner():
    return BackgroundTaskRunner()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def webhook_recorder():
    return WebhookRecorder()


@pytest.fixture
def memory(embedder, vector_store, session_factory):
    return SemanticMemoryService(
        embedder=embedder,
        vector_store=vector_store,
        session_factory=session_factory,
        top_k=5,
        score_threshold=0.5,
    )


@pytest.fixture
def container(settings, engine, session_factory, runner, memory, vector_store, llm, webhook_recorder):
    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        runner=runner,
        memory=memory,
        generator=FormGeneratorService(llm=llm, memory=memory),
        webhooks=WebhookService(
            session_factory=session_factory,
            runner=runner,
            transport=httpx.MockTransport(webhook_recorder),
            sleep=no_sleep,
        ),
        vector_store=vector_store,
    )


@pytest.fixture
async def client(container):
    app = create_app(container=container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await container.runner.drain()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def auth_headers(settings, user_id):
    return bearer(settings, user_id)


def bearer(settings: Settings, user_id: uuid.UUID) -> Dict[str, str]:
    token = create_access_token({"user_id": str(user_id)}, settings)
    return {"Authorization": f"Bearer {token}"}


# ---------- Data helpers ----------

def schema_with(*fields: Dict[str, Any], title: str = "Test Form") -> Dict[str, Any]:
    return {"title": title, "description": "", "fields": list(fields)}


def text_field(field_id: str, name: str, label: str, required: bool = False, type: str = "text") -> Dict[str, Any]:
    return {"id": field_id, "name": name, "label": label, "type": type, "required": required}


async def make_form(session_factory, user_id: uuid.UUID, **overrides: Any) -> Form:
    values = {
        "user_id": user_id,
        "title": "Contact form",
        "description": "",
        "prompt": "contact form",
        "schema": schema_with(text_field("field-name", "name", "Name", required=True)),
        "summary": "A contact form",
        "purpose": "contact",
        "field_types": ["text"],
        "field_names": ["name"],
        "webhooks": [],
        "conditional_rules": [],
    }
    values.update(overrides)
    form = Form(**values)
    async with session_factory() as db:
        db.add(form)
        await db.commit()
        await db.refresh(form)
    return form
