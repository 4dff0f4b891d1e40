import asyncio
import json
import logging
import uuid

import httpx
import pytest
from fastapi import HTTPException
from qdrant_client import AsyncQdrantClient

from formgen.core.background import BackgroundTaskRunner
from formgen.core.embedding_client import (
    InferenceEmbeddingProvider,
    OpenAIEmbeddingProvider,
    build_embedding_provider,
)
from formgen.core.errors import EmbeddingProviderError, VectorStoreError
from formgen.core.qdrant_client import QdrantVectorStore
from formgen.core.security import create_access_token, decode_user_id
from formgen.core.settings import Settings


# ---------- Embedding providers ----------

def inference_provider(handler):
    return InferenceEmbeddingProvider(
        url="https://inference.test/embed",
        api_key="key",
        model="llama-text-embed-v2",
        transport=httpx.MockTransport(handler),
    )


async def test_inference_provider_reads_values():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": [{"values": [0.1, 0.2]}]})

    vector = await inference_provider(handler).embed("hello")

    assert vector == [0.1, 0.2]
    assert seen[0].headers["Api-Key"] == "key"
    assert json.loads(seen[0].content) == {"model": "llama-text-embed-v2", "inputs": ["hello"]}


async def test_inference_provider_accepts_embeddings_key():
    provider = inference_provider(lambda request: httpx.Response(200, json={"embeddings": [{"values": [1.0]}]}))
    assert await provider.embed("x") == [1.0]


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="boom"),
    httpx.Response(200, json={"data": []}),
])
async def test_inference_provider_errors(response):
    provider = inference_provider(lambda request: response)
    with pytest.raises(EmbeddingProviderError):
        await provider.embed("x")


async def test_inference_provider_network_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(EmbeddingProviderError):
        await inference_provider(handler).embed("x")


def test_inference_provider_requires_key():
    with pytest.raises(EmbeddingProviderError):
        InferenceEmbeddingProvider(url="https://inference.test/embed", api_key=None, model="m")


def test_build_embedding_provider_follows_settings(settings):
    assert isinstance(build_embedding_provider(settings), OpenAIEmbeddingProvider)

    inference = settings.model_copy(update={"EMBEDDING_PROVIDER": "inference", "INFERENCE_API_KEY": "k"})
    assert isinstance(build_embedding_provider(inference), InferenceEmbeddingProvider)


# ---------- Background runner ----------

async def test_runner_logs_failures_without_raising(caplog):
    runner = BackgroundTaskRunner()

    async def explode():
        raise RuntimeError("side effect failed")

    with caplog.at_level(logging.ERROR, logger="formgen.core.background"):
        runner.submit(explode(), name="explode")
        await runner.drain()

    assert runner.pending == 0
    assert "explode failed: side effect failed" in caplog.text


async def test_runner_drain_waits_for_nested_submissions():
    runner = BackgroundTaskRunner()
    done = []

    async def child():
        await asyncio.sleep(0)
        done.append("child")

    async def parent():
        runner.submit(child(), name="child")
        done.append("parent")

    runner.submit(parent(), name="parent")
    await runner.drain()

    assert done == ["parent", "child"]


# ---------- Vector store ----------

@pytest.fixture
async def local_store():
    store = QdrantVectorStore(
        collection_name="test_forms",
        vector_size=3,
        client=AsyncQdrantClient(location=":memory:"),
    )
    await store.ensure_collection()
    yield store
    await store.close()


async def test_vector_store_query_is_scoped_to_user(local_store):
    mine = str(uuid.uuid4())
    theirs = str(uuid.uuid4())
    await local_store.upsert(mine, [1.0, 0.0, 0.0], {"user_id": "u1", "purpose": "survey"})
    await local_store.upsert(theirs, [1.0, 0.0, 0.0], {"user_id": "u2", "purpose": "survey"})

    matches = await local_store.query([1.0, 0.0, 0.0], user_id="u1", limit=5)

    assert [match.id for match in matches] == [mine]
    assert matches[0].score == pytest.approx(1.0)
    assert matches[0].payload["purpose"] == "survey"


async def test_vector_store_delete_and_dimension_check(local_store):
    point = str(uuid.uuid4())
    await local_store.upsert(point, [0.0, 1.0, 0.0], {"user_id": "u1"})
    await local_store.delete(point)

    assert await local_store.query([0.0, 1.0, 0.0], user_id="u1") == []

    with pytest.raises(VectorStoreError):
        await local_store.upsert(str(uuid.uuid4()), [1.0, 2.0], {"user_id": "u1"})


async def test_ensure_collection_refuses_dimension_change(local_store):
    point = str(uuid.uuid4())
    await local_store.upsert(point, [1.0, 0.0, 0.0], {"user_id": "u1"})

    resized = QdrantVectorStore(collection_name="test_forms", vector_size=4, client=local_store.client)
    with pytest.raises(VectorStoreError, match="3-dimension vectors"):
        await resized.ensure_collection()

    info = await local_store.client.get_collection("test_forms")
    assert info.config.params.vectors.size == 3
    assert [match.id for match in await local_store.query([1.0, 0.0, 0.0], user_id="u1")] == [point]


@pytest.mark.parametrize("provider, explicit, expected", [
    ("openai", None, 1536),
    ("inference", None, 1024),
    ("inference", 768, 768),
])
def test_embedding_dimensions_follow_provider(tmp_path, provider, explicit, expected):
    settings = Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'formgen.db'}",
        JWT_SECRET="test-secret",
        EMBEDDING_PROVIDER=provider,
        EMBEDDING_DIMENSIONS=explicit,
    )
    assert settings.EMBEDDING_DIMENSIONS == expected


# ---------- Security ----------

def test_token_round_trip(settings):
    user_id = uuid.uuid4()
    token = create_access_token({"user_id": str(user_id)}, settings)
    assert decode_user_id(token, settings) == user_id


@pytest.mark.parametrize("claims", [{}, {"user_id": "not-a-uuid"}])
def test_tokens_without_valid_user_are_rejected(settings, claims):
    token = create_access_token(claims, settings)
    with pytest.raises(HTTPException) as exc:
        decode_user_id(token, settings)
    assert exc.value.status_code == 401


def test_tokens_signed_with_another_secret_are_rejected(settings):
    other = settings.model_copy(update={"JWT_SECRET": "different"})
    token = create_access_token({"user_id": str(uuid.uuid4())}, other)
    with pytest.raises(HTTPException):
        decode_user_id(token, settings)
