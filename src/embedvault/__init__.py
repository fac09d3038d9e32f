"""Embedding lifecycle engine: chunked indexing, similarity clustering and multi-strategy search."""

__version__ = "0.1.0"
