# formgen/core/settings.py

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional
from functools import lru_cache


# text-embedding-3-small and llama-text-embed-v2
PROVIDER_DIMENSIONS = {"openai": 1536, "inference": 1024}


class Settings(BaseSettings):
    """Application Settings"""

    # Database
    DATABASE_URL: str

    # JWT (tokens are issued by the identity provider)
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"

    # Gemini Configuration
    GOOGLE_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_OUTPUT_TOKENS: int = 2048

    # Embedding provider: "openai" or "inference"
    EMBEDDING_PROVIDER: Literal["openai", "inference"] = "openai"
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    # Defaults to the provider model's native size when unset
    EMBEDDING_DIMENSIONS: Optional[int] = None

    # Hosted vector-inference API
    INFERENCE_API_URL: str = "https://api.pinecone.io/inference/v1/embed"
    INFERENCE_API_KEY: Optional[str] = None
    INFERENCE_EMBEDDING_MODEL: str = "llama-text-embed-v2"

    # Qdrant (Cloud)
    QDRANT_URL: Optional[str] = None
    QDRANT_API_KEY: Optional[str] = None
    QDRANT_COLLECTION_NAME: str = "form_embeddings"

    # Semantic memory
    MEMORY_TOP_K: int = 5
    MEMORY_SCORE_THRESHOLD: float = 0.5
    MEMORY_CACHE_TTL: float = 30.0

    # Webhooks
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_TIMEOUT: float = 10.0
    WEBHOOK_USER_AGENT: str = "FormGen-Webhook/1.0"

    CLIENT_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @model_validator(mode="after")
    def _default_embedding_dimensions(self) -> "Settings":
        if self.EMBEDDING_DIMENSIONS is None:
            self.EMBEDDING_DIMENSIONS = PROVIDER_DIMENSIONS[self.EMBEDDING_PROVIDER]
        return self


# Singleton instance
@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
