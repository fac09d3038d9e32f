import os
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

os.environ.setdefault("OPENAI_API_KEY", "test-openai")
os.environ.setdefault("EMBEDDING_PROVIDER", "openai")
os.environ.setdefault("STORE_BACKEND", "memory")

from embedvault.errors import EmbeddingError
from embedvault.models import ContentType, Document
from embedvault.providers.base import BatchEmbedding, Embedding, EmbeddingProvider, approx_tokens
from embedvault.similarity import blake16, tokenize
from embedvault.store.memory import InMemoryVectorStore

DIM = 16


def unit(index: int, dim: int = DIM) -> np.ndarray:
    v = np.zeros(dim, dtype=np.float32)
    v[index] = 1.0
    return v


def bag_of_words(text: str, dim: int = DIM) -> np.ndarray:
    """Hashed bag-of-words vector: texts sharing words point the same way."""
    v = np.zeros(dim, dtype=np.float32)
    for token in tokenize(text):
        v[int(blake16([token]), 16) % dim] += 1.0
    if not v.any():
        v[0] = 1.0
    return v


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic provider. ``vectors`` pins exact texts to exact vectors;
    anything else gets a hashed bag-of-words embedding.
    """

    def __init__(self, dim: int = DIM, vectors: Optional[Dict[str, np.ndarray]] = None) -> None:
        self.dim = dim
        self.vectors = dict(vectors or {})
        self.calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.fail = False

    def vector_for(self, text: str) -> np.ndarray:
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float32)
        return bag_of_words(text, self.dim)

    async def embed(self, text: str) -> Embedding:
        if self.fail:
            raise EmbeddingError("provider down")
        self.calls.append(text)
        return Embedding(self.vector_for(text), approx_tokens(text))

    async def embed_batch(
        self,
        texts: Sequence[str],
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> BatchEmbedding:
        if self.fail:
            raise EmbeddingError("provider down")
        self.batch_calls.append(list(texts))
        return BatchEmbedding(
            [self.vector_for(t) for t in texts],
            sum(approx_tokens(t) for t in texts),
        )


def make_doc(
    embedding,
    *,
    content: str = "content",
    title: str = "",
    content_type: ContentType = ContentType.PRODUCT,
    tenant_id: str = "shop-1",
    **kwargs,
) -> Document:
    return Document(
        content=content,
        title=title,
        content_type=content_type,
        tenant_id=tenant_id,
        embedding=None if embedding is None else np.asarray(embedding, dtype=np.float32),
        **kwargs,
    )


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def store():
    return InMemoryVectorStore()
