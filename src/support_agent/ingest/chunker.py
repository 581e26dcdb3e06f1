"""Paragraph-packing chunker for uploaded knowledge documents."""

from __future__ import annotations

import re

from support_agent.config import ChunkingConfig

_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
# Average characters per word used to turn a character overlap into words.
_CHARS_PER_WORD = 5


class ParagraphChunker:
    """Packs whole paragraphs into chunks of at most `max_chunk_chars`.

    A paragraph is never split. When the next paragraph would overflow the
    current chunk, the chunk is closed and its trailing words (about
    `overlap_chars` worth) are carried into the next one so adjacent chunks
    share context. A single paragraph longer than the limit becomes its own
    oversized chunk.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.overlap_chars >= self.config.max_chunk_chars:
            raise ValueError("overlap_chars must be less than max_chunk_chars")

    def split(self, text: str) -> list[str]:
        chunks: list[str] = []
        current = ""
        carry_words = self.config.overlap_chars // _CHARS_PER_WORD

        for paragraph in _PARAGRAPH_SPLIT.split(text):
            if not paragraph.strip():
                continue
            if current and len(current) + len(paragraph) > self.config.max_chunk_chars:
                chunks.append(current.strip())
                overlap = current.split(" ")[-carry_words:] if carry_words else []
                current = " ".join(overlap) + "\n\n" + paragraph if overlap else paragraph
            else:
                current += ("\n\n" if current else "") + paragraph

        if current.strip():
            chunks.append(current.strip())
        return chunks
