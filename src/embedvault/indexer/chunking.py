"""
Sentence-aware chunking
=======================

Long documents are split on sentence boundaries and greedily packed into
chunks of at most ``max_chunk_size`` characters (a single oversized sentence
still becomes its own chunk). Each chunk after the first is seeded with a few
trailing words of the previous chunk so that context carries across the seam.
"""

from __future__ import annotations

import logging
import re
from typing import List

from embedvault.models import DocumentChunk

logger = logging.getLogger(__name__)

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

SUMMARY_SENTENCES = 3
SUMMARY_MAX_CHARS = 500


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_RE.split(text or "") if s.strip()]


def generate_summary(content: str) -> str:
    """Extractive summary: the first few sentences, capped at 500 characters."""
    return " ".join(split_sentences(content)[:SUMMARY_SENTENCES])[:SUMMARY_MAX_CHARS]


def overlap_words(chunk_text: str, overlap_size: int) -> List[str]:
    """Trailing words of ``chunk_text`` carried into the next chunk."""
    if overlap_size <= 0:
        return []
    words = chunk_text.split()
    n = int(min(overlap_size / 6, len(words) / 2))
    return words[-n:] if n > 0 else []


def create_chunks(
    content: str,
    title: str,
    summary: str,
    *,
    max_chunk_size: int = 1000,
    overlap_size: int = 100,
) -> List[DocumentChunk]:
    if len(content) <= max_chunk_size:
        return [DocumentChunk(content=content, title=title, summary=summary, chunk_index=0, chunk_count=1)]

    texts: List[str] = []
    current = ""
    for sentence in split_sentences(content):
        if current and len(current) + len(sentence) > max_chunk_size:
            texts.append(current.strip())
            carry = overlap_words(current, overlap_size)
            current = " ".join(carry) + " " if carry else ""
        current += sentence + " "
    if current.strip():
        texts.append(current.strip())

    chunks = [
        DocumentChunk(
            content=text,
            title=f"{title} (Part {i + 1})",
            summary=summary if i == 0 else None,
            chunk_index=i,
            chunk_count=len(texts),
            metadata={"original_title": title, "chunk_type": "intro" if i == 0 else "continuation"},
        )
        for i, text in enumerate(texts)
    ]

    logger.info(
        "Document chunked (length=%d chunks=%d max_chunk_size=%d overlap=%d)",
        len(content), len(chunks), max_chunk_size, overlap_size,
    )
    return chunks


def build_chunk_text(chunk: DocumentChunk) -> str:
    """Text sent to the embedding provider for one chunk."""
    text = ""
    if chunk.title:
        text += f"Title: {chunk.title}\n"
    if chunk.summary:
        text += f"Summary: {chunk.summary}\n"
    return text + f"Content: {chunk.content}"


__all__ = ["split_sentences", "generate_summary", "overlap_words", "create_chunks", "build_chunk_text"]
