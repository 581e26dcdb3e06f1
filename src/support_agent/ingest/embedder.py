"""Embedding clients for indexing and querying the knowledge base."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Callable

from support_agent.config import Settings
from support_agent.errors import ConfigurationError

EmbedderFactory = Callable[[str], "Embedder"]


class Embedder(ABC):
    """Turns text into fixed-length vectors."""

    @abstractmethod
    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in one call."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one query."""


class OpenAIEmbedder(Embedder):
    """OpenAI embeddings via LangChain.

    One outbound request per call, no retries; callers decide how to react to
    failures.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "text-embedding-3-small",
    ) -> None:
        if not api_key:
            raise ConfigurationError(
                "No embedding credential configured. Set OPENAI_API_KEY or the "
                "tenant's openai_api_key.",
                provider="openai",
                field="OPENAI_API_KEY",
            )
        from langchain_openai import OpenAIEmbeddings

        self.model = model
        self._client = OpenAIEmbeddings(model=model, api_key=api_key, max_retries=0)

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        _require_text(texts)
        return self._client.embed_documents(texts)

    def embed(self, text: str) -> list[float]:
        _require_text([text])
        return self._client.embed_query(text)


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local development and tests in place of a hosted model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        _require_text(texts)
        return [self._embed(text) for text in texts]

    def embed(self, text: str) -> list[float]:
        _require_text([text])
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def resolve_embedding_key(tenant_key: str | None, settings: Settings) -> str:
    """Pick the tenant's key, else the platform default.

    Raises:
        ConfigurationError: when neither is configured.
    """
    key = tenant_key or settings.openai_api_key
    if not key:
        raise ConfigurationError(
            "No embedding credential configured. Set OPENAI_API_KEY or the "
            "tenant's openai_api_key.",
            provider="openai",
            field="OPENAI_API_KEY",
        )
    return key


def create_embedder(settings: Settings) -> EmbedderFactory:
    """Return a factory building a fresh OpenAI embedder per credential."""

    def _factory(api_key: str) -> Embedder:
        return OpenAIEmbedder(api_key, model=settings.embedding_model)

    return _factory


def _require_text(texts: list[str]) -> None:
    if not texts or any(not text for text in texts):
        raise ValueError("embedding input must be non-empty text")
