"""Knowledge chunk store contract and in-process implementation."""

from __future__ import annotations

import threading
from math import sqrt
from typing import Protocol

from support_agent.types import KnowledgeChunk, RetrievedSnippet


class ChunkStore(Protocol):
    """Tenant-scoped nearest-neighbour lookup over knowledge chunks."""

    def add(self, chunks: list[KnowledgeChunk]) -> None:
        """Persist chunks produced by ingestion."""

    def similarity_search(
        self,
        tenant_id: str,
        query_embedding: list[float],
        k: int,
    ) -> list[RetrievedSnippet]:
        """Return at most `k` chunks of `tenant_id`, most similar first.

        Similarity is `1 - cosine_distance`. Chunks of other tenants are
        never candidates.
        """


class InMemoryChunkStore:
    """Exact cosine search over chunks kept in process memory.

    Suitable for tests and single-process deployments with small corpora.
    """

    def __init__(self) -> None:
        self._chunks: dict[str, list[KnowledgeChunk]] = {}
        self._lock = threading.Lock()

    def add(self, chunks: list[KnowledgeChunk]) -> None:
        with self._lock:
            for chunk in chunks:
                self._chunks.setdefault(chunk.tenant_id, []).append(chunk)

    def similarity_search(
        self,
        tenant_id: str,
        query_embedding: list[float],
        k: int,
    ) -> list[RetrievedSnippet]:
        with self._lock:
            candidates = list(self._chunks.get(tenant_id, []))

        ranked = sorted(
            (
                RetrievedSnippet(
                    content=chunk.content,
                    similarity=_cosine_similarity(query_embedding, chunk.embedding),
                    source_title=chunk.source_title,
                )
                for chunk in candidates
            ),
            key=lambda item: item.similarity,
            reverse=True,
        )
        return ranked[:k]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
