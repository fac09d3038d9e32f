"""Chunking, embedding and persistence of incoming documents."""

from .bulk import index_knowledge_base, index_products, index_reviews
from .chunking import build_chunk_text, create_chunks, generate_summary, split_sentences
from .indexer import DocumentIndexer, IndexingStats

__all__ = [
    "DocumentIndexer",
    "IndexingStats",
    "create_chunks",
    "build_chunk_text",
    "generate_summary",
    "split_sentences",
    "index_products",
    "index_reviews",
    "index_knowledge_base",
]
