class FormGenError(Exception):
    """Base error for the form generation service"""


class EmbeddingProviderError(FormGenError):
    """Embedding provider returned no vector or could not be reached"""


class VectorStoreError(FormGenError):
    """Vector store rejected a request or is unavailable"""
