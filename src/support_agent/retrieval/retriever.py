"""Tenant-scoped context retrieval for chat turns."""

from __future__ import annotations

import logging

from support_agent.config import RetrievalConfig
from support_agent.errors import ConfigurationError
from support_agent.ingest.embedder import EmbedderFactory
from support_agent.retrieval.vector_store import ChunkStore
from support_agent.types import RetrievalResult

logger = logging.getLogger(__name__)


class ContextRetriever:
    """Finds a tenant's knowledge snippets relevant to a query.

    Only snippets at or above `min_similarity` survive; when none do the
    result is empty rather than padded with weak matches. Lookup failures
    degrade to an empty result so the turn can still be answered. A missing
    credential is a configuration problem and is raised instead.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder_factory: EmbedderFactory,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder_factory = embedder_factory
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        tenant_id: str,
        query_text: str,
        credential: str,
        *,
        top_k: int | None = None,
    ) -> RetrievalResult:
        limit = self.config.top_k if top_k is None else top_k
        if limit < 1:
            raise ValueError(f"top_k must be at least 1, got {limit}")
        if not query_text.strip():
            return RetrievalResult.empty()

        try:
            embedding = self.embedder_factory(credential).embed(query_text)
            hits = self.store.similarity_search(tenant_id, embedding, limit)
        except ConfigurationError:
            raise
        except Exception:
            logger.warning(
                "Context retrieval failed for tenant %s; answering without context",
                tenant_id,
                exc_info=True,
            )
            return RetrievalResult.empty(degraded=True)

        ranked = sorted(hits, key=lambda hit: hit.similarity, reverse=True)
        survivors = [hit for hit in ranked if hit.similarity >= self.config.min_similarity]
        logger.debug(
            "Retrieved %d/%d snippets for tenant %s",
            len(survivors),
            len(ranked),
            tenant_id,
        )
        return RetrievalResult(snippets=survivors[:limit])
