"""Embedding providers (text -> vector)."""

from .base import BatchEmbedding, Embedding, EmbeddingProvider, approx_tokens

__all__ = ["BatchEmbedding", "Embedding", "EmbeddingProvider", "approx_tokens"]
