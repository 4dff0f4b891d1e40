from abc import ABC, abstractmethod
from openai import AsyncOpenAI
from formgen.core.errors import EmbeddingProviderError
from formgen.core.settings import Settings
import httpx
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

# Rough character limit (OpenAI limit is ~8191 tokens)
MAX_EMBED_CHARS = 30000


class EmbeddingProvider(ABC):
    """Converts text into a fixed-length vector"""

    model: str

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI Embedding client (text-embedding-3-small by default)
    """

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        logger.info(f"✅ Initialized OpenAI embedding client with {self.model}")

    async def embed(self, text: str) -> List[float]:
        """
        Generate embedding using OpenAI API

        Args:
            text: Text to embed

        Returns:
            List of floats (embedding vector)
        """
        if len(text) > MAX_EMBED_CHARS:
            logger.warning(f"Text too long ({len(text)} chars), truncating")
            text = text[:MAX_EMBED_CHARS]

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float"
            )
        except Exception as e:
            logger.error(f"OpenAI embedding failed: {e}")
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}") from e

        if not response.data or not response.data[0].embedding:
            raise EmbeddingProviderError("OpenAI returned no embedding")

        embedding = response.data[0].embedding
        logger.debug(f"Generated embedding: {len(embedding)} dimensions")
        return embedding


class InferenceEmbeddingProvider(EmbeddingProvider):
    """
    Hosted vector-inference API (Pinecone-compatible /embed endpoint)
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not api_key:
            raise EmbeddingProviderError("INFERENCE_API_KEY is required for inference embeddings")
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport
        logger.info(f"✅ Initialized inference embedding client with {self.model}")

    async def embed(self, text: str) -> List[float]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.url,
                    headers={"Content-Type": "application/json", "Api-Key": self.api_key},
                    json={"model": self.model, "inputs": [text[:MAX_EMBED_CHARS]]},
                )
        except httpx.HTTPError as e:
            logger.error(f"Inference embedding request failed: {e}")
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}") from e

        if response.status_code >= 400:
            raise EmbeddingProviderError(
                f"Inference embedding request failed: {response.status_code} {response.text[:200]}"
            )

        data = response.json()
        # Responses carry the vector under data[0].values or embeddings[0].values depending on version
        values = None
        for key in ("data", "embeddings"):
            items = data.get(key) or []
            if items and items[0].get("values"):
                values = items[0]["values"]
                break

        if not values:
            raise EmbeddingProviderError("Malformed inference embedding response")
        return values


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Select the embedding backend once, at construction time"""
    if settings.EMBEDDING_PROVIDER == "inference":
        return InferenceEmbeddingProvider(
            url=settings.INFERENCE_API_URL,
            api_key=settings.INFERENCE_API_KEY,
            model=settings.INFERENCE_EMBEDDING_MODEL,
        )
    return OpenAIEmbeddingProvider(api_key=settings.OPENAI_API_KEY, model=settings.EMBEDDING_MODEL)
