"""PostgreSQL + pgvector chunk store.

Mirrors the `documents` / `document_chunks` tables owned by the document
management service. Vectors are 1536-dimensional (text-embedding-3-small).
"""

from __future__ import annotations

from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from support_agent.errors import RetrievalDegraded
from support_agent.types import KnowledgeChunk, RetrievedSnippet

EMBEDDING_DIMENSIONS = 1536


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)


class DocumentChunkRow(Base):
    __tablename__ = "document_chunks"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), index=True, nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class PgVectorChunkStore:
    """Chunk store backed by pgvector's cosine distance operator.

    Tenant scoping goes through the owning document, so a chunk can only be
    returned for the tenant that owns its document. Backend failures are
    raised as `RetrievalDegraded`.
    """

    def __init__(self, database_url: str) -> None:
        self._engine = create_engine(database_url, pool_pre_ping=True)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def add(self, chunks: list[KnowledgeChunk]) -> None:
        rows = [
            DocumentChunkRow(
                id=chunk.chunk_id,
                document_id=chunk.document_id,
                content=chunk.content,
                embedding=chunk.embedding,
                chunk_index=chunk.chunk_index,
            )
            for chunk in chunks
        ]
        try:
            with self._session_factory.begin() as session:
                session.add_all(rows)
        except SQLAlchemyError as exc:
            raise RetrievalDegraded(
                "Failed to store knowledge chunks.", {"error": type(exc).__name__}
            ) from exc

    def similarity_search(
        self,
        tenant_id: str,
        query_embedding: list[float],
        k: int,
    ) -> list[RetrievedSnippet]:
        distance = DocumentChunkRow.embedding.cosine_distance(query_embedding)
        stmt = (
            select(
                DocumentChunkRow.content,
                DocumentRow.title,
                (1 - distance).label("similarity"),
            )
            .join(DocumentRow, DocumentChunkRow.document_id == DocumentRow.id)
            .where(DocumentRow.tenant_id == tenant_id)
            .where(DocumentChunkRow.embedding.is_not(None))
            .order_by(distance)
            .limit(k)
        )
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise RetrievalDegraded(
                "Knowledge index unavailable.",
                {"tenant_id": tenant_id, "error": type(exc).__name__},
            ) from exc

        return [
            RetrievedSnippet(
                content=row.content,
                similarity=float(row.similarity),
                source_title=row.title,
            )
            for row in rows
        ]
