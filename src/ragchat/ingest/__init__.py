"""ragchat ingest pipeline — paragraph chunker and document ingestor."""

from ragchat.ingest.chunker import ParagraphChunker, split_paragraphs, split_text
from ragchat.ingest.processor import DocumentIngestor

__all__ = [
    "DocumentIngestor",
    "ParagraphChunker",
    "split_paragraphs",
    "split_text",
]
