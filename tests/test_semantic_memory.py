import uuid

import pytest

from formgen.core.errors import EmbeddingProviderError
from formgen.core.qdrant_client import VectorMatch
from formgen.services.semantic_memory import SemanticMemoryService

from conftest import FakeEmbedder, FakeVectorStore, make_form


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_store_form_embedding_upserts_summary_metadata(memory, vector_store, embedder):
    form_id = str(uuid.uuid4())
    await memory.store_form_embedding(form_id, "user-1", "S" * 800, "survey", ["text", "email"])

    point = vector_store.points[form_id]
    assert point["vector"] == embedder.vector
    assert point["payload"] == {
        "user_id": "user-1",
        "purpose": "survey",
        "field_types": "text,email",
        "summary": "S" * 500,
    }
    assert embedder.calls == ["S" * 800]


async def test_store_form_embedding_swallows_failures(memory, vector_store):
    vector_store.upsert_error = RuntimeError("qdrant down")
    await memory.store_form_embedding(str(uuid.uuid4()), "user-1", "summary", "other", [])
    assert vector_store.points == {}


async def test_store_form_embedding_without_vector_store(session_factory, embedder):
    memory = SemanticMemoryService(embedder=embedder, vector_store=None, session_factory=session_factory)
    await memory.store_form_embedding(str(uuid.uuid4()), "user-1", "summary", "other", [])
    assert embedder.calls == []
    assert not memory.vector_available


async def test_generate_embedding_wraps_provider_errors(session_factory):
    memory = SemanticMemoryService(
        embedder=FakeEmbedder(error=ValueError("boom")),
        vector_store=FakeVectorStore(),
        session_factory=session_factory,
    )
    with pytest.raises(EmbeddingProviderError):
        await memory.generate_embedding("text")


async def test_generate_embedding_rejects_empty_vectors(session_factory):
    memory = SemanticMemoryService(
        embedder=FakeEmbedder(vector=[]),
        vector_store=FakeVectorStore(),
        session_factory=session_factory,
    )
    with pytest.raises(EmbeddingProviderError):
        await memory.generate_embedding("text")


async def test_retrieve_filters_by_threshold_and_keeps_similarity_order(memory, vector_store, session_factory, user_id):
    first = await make_form(session_factory, user_id, title="First")
    second = await make_form(session_factory, user_id, title="Second")
    weak = await make_form(session_factory, user_id, title="Weak")
    vector_store.matches = [
        VectorMatch(id=str(second.id), score=0.92, payload={}),
        VectorMatch(id=str(first.id), score=0.81, payload={}),
        VectorMatch(id=str(weak.id), score=0.5, payload={}),
    ]

    results = await memory.retrieve_relevant_forms(str(user_id), "contact form")

    assert [context.title for context in results] == ["Second", "First"]
    assert results[0].fields == ["name"]
    assert vector_store.queries[0]["limit"] == 5


async def test_retrieve_never_returns_other_users_forms(memory, vector_store, session_factory, user_id):
    stranger = await make_form(session_factory, uuid.uuid4(), title="Not yours")
    vector_store.matches = [VectorMatch(id=str(stranger.id), score=0.99, payload={})]

    assert await memory.retrieve_relevant_forms(str(user_id), "anything") == []


async def test_retrieve_returns_empty_on_vector_errors(session_factory, embedder):
    memory = SemanticMemoryService(
        embedder=embedder,
        vector_store=FakeVectorStore(query_error=RuntimeError("connection reset")),
        session_factory=session_factory,
    )
    assert await memory.retrieve_relevant_forms("user-1", "prompt") == []


async def test_retrieve_returns_empty_on_embedding_errors(session_factory):
    memory = SemanticMemoryService(
        embedder=FakeEmbedder(error=RuntimeError("rate limited")),
        vector_store=FakeVectorStore(),
        session_factory=session_factory,
    )
    assert await memory.retrieve_relevant_forms("user-1", "prompt") == []


async def test_retrieve_results_are_cached_until_ttl(embedder, vector_store, session_factory, user_id):
    clock = FakeClock()
    memory = SemanticMemoryService(
        embedder=embedder,
        vector_store=vector_store,
        session_factory=session_factory,
        cache_ttl=30.0,
        clock=clock,
    )
    form = await make_form(session_factory, user_id)
    vector_store.matches = [VectorMatch(id=str(form.id), score=0.9, payload={})]

    await memory.retrieve_relevant_forms(str(user_id), "Contact Form")
    clock.now += 10
    cached = await memory.retrieve_relevant_forms(str(user_id), "  contact form ")
    assert len(cached) == 1
    assert len(vector_store.queries) == 1

    clock.now += 30
    await memory.retrieve_relevant_forms(str(user_id), "contact form")
    assert len(vector_store.queries) == 2


async def test_cache_is_per_user(memory, vector_store):
    await memory.retrieve_relevant_forms("user-a", "same prompt")
    await memory.retrieve_relevant_forms("user-b", "same prompt")
    assert [query["user_id"] for query in vector_store.queries] == ["user-a", "user-b"]


async def test_failed_retrievals_are_not_cached(session_factory, embedder):
    vector_store = FakeVectorStore(query_error=RuntimeError("down"))
    memory = SemanticMemoryService(embedder=embedder, vector_store=vector_store, session_factory=session_factory)

    await memory.retrieve_relevant_forms("user-1", "prompt")
    await memory.retrieve_relevant_forms("user-1", "prompt")
    assert len(vector_store.queries) == 2


async def test_fallback_text_search_ranks_by_keyword_overlap(memory, session_factory, user_id):
    await make_form(session_factory, user_id, title="Volunteer signup", summary="Signup for volunteers")
    await make_form(
        session_factory, user_id,
        title="Volunteer event signup", summary="Signup for the beach cleanup event", purpose="event",
    )
    await make_form(session_factory, user_id, title="Unrelated", summary="Tax questionnaire")
    await make_form(session_factory, uuid.uuid4(), title="Volunteer event signup", summary="Someone else's")

    results = await memory.fallback_text_search(str(user_id), "volunteer event signup")

    assert [context.title for context in results] == ["Volunteer event signup", "Volunteer signup"]
    assert results[0].purpose == "event"


async def test_fallback_text_search_ignores_short_words(memory, session_factory, user_id):
    await make_form(session_factory, user_id, title="A to Z")
    assert await memory.fallback_text_search(str(user_id), "a to z") == []


async def test_fallback_text_search_treats_wildcards_literally(memory, session_factory, user_id):
    await make_form(session_factory, user_id, title="Quarterly report")
    assert await memory.fallback_text_search(str(user_id), "%%%% ____") == []


async def test_delete_form_embedding(memory, vector_store):
    await memory.delete_form_embedding("form-1")
    assert vector_store.deleted == ["form-1"]


async def test_expired_entries_are_pruned_when_caching(embedder, vector_store, session_factory):
    clock = FakeClock()
    memory = SemanticMemoryService(
        embedder=embedder,
        vector_store=vector_store,
        session_factory=session_factory,
        cache_ttl=30.0,
        clock=clock,
    )

    await memory.retrieve_relevant_forms("user-1", "first prompt")
    await memory.retrieve_relevant_forms("user-1", "second prompt")
    clock.now += 31
    await memory.retrieve_relevant_forms("user-1", "third prompt")

    assert list(memory._cache) == ["user-1::third prompt"]
