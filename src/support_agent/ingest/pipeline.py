"""Document ingestion: chunk -> embed -> store."""

from __future__ import annotations

import logging
import uuid

from support_agent.ingest.chunker import ParagraphChunker
from support_agent.ingest.embedder import EmbedderFactory
from support_agent.retrieval.vector_store import ChunkStore
from support_agent.types import KnowledgeChunk

logger = logging.getLogger(__name__)


class DocumentIngestor:
    """Turns an uploaded document into tenant-scoped knowledge chunks.

    Runs outside the chat turn, when a document is created; the chat
    pipeline only ever reads what this writes.
    """

    def __init__(
        self,
        chunker: ParagraphChunker,
        embedder_factory: EmbedderFactory,
        store: ChunkStore,
    ) -> None:
        self._chunker = chunker
        self._embedder_factory = embedder_factory
        self._store = store

    def ingest(
        self,
        *,
        tenant_id: str,
        document_id: str,
        title: str,
        content: str,
        credential: str,
    ) -> list[KnowledgeChunk]:
        """Chunk and embed one document, returning the stored chunks."""

        texts = self._chunker.split(content)
        if not texts:
            return []

        embeddings = self._embedder_factory(credential).embed_many(texts)
        chunks = [
            KnowledgeChunk(
                chunk_id=uuid.uuid4().hex,
                document_id=document_id,
                tenant_id=tenant_id,
                content=text,
                embedding=embedding,
                chunk_index=index,
                source_title=title,
            )
            for index, (text, embedding) in enumerate(zip(texts, embeddings, strict=True))
        ]
        self._store.add(chunks)
        logger.info(
            "Ingested document %s for tenant %s into %d chunks",
            document_id,
            tenant_id,
            len(chunks),
        )
        return chunks
