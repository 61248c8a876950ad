"""Embedding generation for the semantic cache.

Embedders are built once at startup from ModelSettings and passed into the
VectorIndex. `embed()` raises on any failure; the caller decides whether
that means the cache is unavailable.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .config_loader import ModelSettings
from .llm_router import get_api_key, provider_for

logger = logging.getLogger(__name__)


class Embedder(ABC):
    model: str
    dimensions: int

    @abstractmethod
    def embed(self, text: str, timeout: Optional[float] = None) -> list[float]:
        """Embed a single text into a fixed-length vector."""
        ...

    def embed_batch(self, texts: list[str], timeout: Optional[float] = None) -> list[list[float]]:
        if not texts:
            return []
        return [self.embed(text, timeout=timeout) for text in texts]


class GeminiEmbedder(Embedder):
    def __init__(self, model: str = "gemini-embedding-001", dimensions: int = 3072,
                 api_key: Optional[str] = None):
        self.model = model
        self.dimensions = dimensions
        self._api_key = api_key or get_api_key("gemini")
        if not self._api_key:
            raise ValueError("GEMINI_API_KEY not set")

    def embed(self, text: str, timeout: Optional[float] = None) -> list[float]:
        from google import genai
        from google.genai import types

        http_options = types.HttpOptions(timeout=int(timeout * 1000)) if timeout else None
        client = genai.Client(api_key=self._api_key, http_options=http_options)
        result = client.models.embed_content(
            model=self.model,
            contents=text,
            config=types.EmbedContentConfig(output_dimensionality=self.dimensions),
        )
        return list(result.embeddings[0].values)


class OpenAIEmbedder(Embedder):
    def __init__(self, model: str = "text-embedding-3-small", dimensions: int = 1536,
                 api_key: Optional[str] = None):
        self.model = model
        self.dimensions = dimensions
        self._api_key = api_key or get_api_key("openai")
        if not self._api_key:
            raise ValueError("OPENAI_API_KEY not set")

    def embed(self, text: str, timeout: Optional[float] = None) -> list[float]:
        from openai import OpenAI

        client = OpenAI(api_key=self._api_key, timeout=timeout, max_retries=0)
        response = client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions,
        )
        return list(response.data[0].embedding)


def build_embedder(settings: ModelSettings) -> Embedder:
    """Pick the embedder implementation from the configured model name."""
    model = settings.embedding_model
    if model.startswith("text-embedding-") or provider_for(model) == "openai":
        embedder = OpenAIEmbedder(model=model, dimensions=settings.embedding_dimensions)
    else:
        embedder = GeminiEmbedder(model=model, dimensions=settings.embedding_dimensions)
    logger.info(f"Embedder: {type(embedder).__name__} ({model}, {embedder.dimensions} dims)")
    return embedder
