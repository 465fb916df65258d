"""Paragraph chunker with character overlap.

Paragraphs (blank-line delimited) are packed into a buffer until the next
one would push it past ``chunk_size`` characters. The buffer is then emitted
and the next buffer starts with the last ``overlap`` characters of the chunk
just emitted, so neighbouring chunks share context. A paragraph longer than
``chunk_size`` is emitted whole rather than split mid-paragraph.
"""

from __future__ import annotations

import re

from ragchat.db.models import Chunk

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

PARAGRAPH_SEPARATOR = "\n\n"

_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")


def split_paragraphs(text: str) -> list[str]:
    """Return the non-empty, stripped paragraphs of *text* in order."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [p.strip() for p in _BLANK_LINE_RE.split(normalized) if p.strip()]


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """Split *text* into ordered, non-empty chunks.

    The overlap seed is shortened when seed + paragraph would not fit, so a
    chunk only exceeds ``chunk_size`` when it holds one oversized paragraph.

    Raises:
        ValueError: If ``chunk_size < 1``, ``overlap < 0`` or
            ``overlap >= chunk_size``.
    """
    _validate(chunk_size, overlap)

    chunks: list[str] = []
    buffer = ""
    for paragraph in split_paragraphs(text):
        if not buffer:
            buffer = paragraph
            continue

        candidate = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}"
        if len(candidate) <= chunk_size:
            buffer = candidate
            continue

        chunks.append(buffer)
        seed = _overlap_seed(buffer, paragraph, chunk_size, overlap)
        buffer = f"{seed}{PARAGRAPH_SEPARATOR}{paragraph}" if seed else paragraph

    if buffer:
        chunks.append(buffer)
    return chunks


def _overlap_seed(emitted: str, paragraph: str, chunk_size: int, overlap: int) -> str:
    room = chunk_size - len(paragraph) - len(PARAGRAPH_SEPARATOR)
    if overlap == 0 or room <= 0:
        return ""
    return emitted[-min(overlap, room):]


def _validate(chunk_size: int, overlap: int) -> None:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")


class ParagraphChunker:
    """Turn document content into sequentially indexed Chunk objects.

    Default: 1000 characters / 200 characters overlap.
    """

    def __init__(
        self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP
    ) -> None:
        _validate(chunk_size, overlap)
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> list[str]:
        return split_text(text, self.chunk_size, self.overlap)

    def chunk(self, document_id: int, content: str) -> list[Chunk]:
        """Split *content* into Chunks for *document_id* with indices 0..n-1."""
        return [
            Chunk(document_id=document_id, chunk_index=i, content=text)
            for i, text in enumerate(self.split(content))
        ]
