"""Shared domain records used within one chat turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class KnowledgeChunk:
    """A persisted fragment of a tenant document with its embedding."""

    chunk_id: str
    document_id: str
    tenant_id: str
    content: str
    embedding: list[float]
    chunk_index: int
    source_title: str | None = None


@dataclass(slots=True)
class RetrievedSnippet:
    """A ranked retrieval hit."""

    content: str
    similarity: float
    source_title: str | None = None


@dataclass(slots=True)
class RetrievalResult:
    """Ranked snippets above the similarity floor for one query.

    `degraded` marks results that are empty because the lookup failed rather
    than because nothing relevant exists.
    """

    snippets: list[RetrievedSnippet] = field(default_factory=list)
    degraded: bool = False

    @classmethod
    def empty(cls, *, degraded: bool = False) -> "RetrievalResult":
        return cls(snippets=[], degraded=degraded)

    @property
    def is_empty(self) -> bool:
        return not self.snippets

    def __len__(self) -> int:
        return len(self.snippets)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    failed: bool = False
