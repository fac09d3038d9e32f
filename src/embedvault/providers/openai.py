"""Embedding provider backed by the OpenAI embeddings API."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import numpy as np
from openai import AsyncOpenAI

from embedvault.errors import ConfigurationError, EmbeddingError

from .base import BatchEmbedding, Embedding, EmbeddingProvider, approx_tokens

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Async OpenAI embeddings.

    Batches are sent ``batch_size`` texts at a time with ``batch_delay``
    seconds between requests to stay under rate limits.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "text-embedding-3-small",
        dim: int = 1536,
        batch_size: int = 100,
        batch_delay: float = 1.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the OpenAI embedding provider")
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.dim = dim
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay

    def _check(self, vec: np.ndarray, model: str) -> np.ndarray:
        if vec.size != self.dim:
            raise EmbeddingError(f"Unexpected embedding size {vec.size} != {self.dim} for model {model}")
        return vec

    async def embed(self, text: str) -> Embedding:
        if not text:
            return Embedding(np.zeros(self.dim, dtype=np.float32), 0)

        try:
            resp = await self.client.embeddings.create(model=self.model, input=text)
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        vec = self._check(np.asarray(resp.data[0].embedding, dtype=np.float32), self.model)
        usage = getattr(resp, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or approx_tokens(text))
        return Embedding(vec, tokens)

    async def embed_batch(
        self,
        texts: Sequence[str],
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> BatchEmbedding:
        if not texts:
            raise EmbeddingError("No texts provided for embedding generation")

        use_model = model or self.model
        size = max(1, batch_size or self.batch_size)
        vectors: List[np.ndarray] = []
        total_tokens = 0

        logger.info("Generating batch embeddings (texts=%d batch_size=%d model=%s)", len(texts), size, use_model)

        for i in range(0, len(texts), size):
            batch = list(texts[i : i + size])
            try:
                resp = await self.client.embeddings.create(model=use_model, input=batch)
            except Exception as e:
                raise EmbeddingError(f"Failed to generate batch embeddings: {e}") from e

            # The API tags each vector with its input index; do not trust list order.
            ordered = sorted(resp.data, key=lambda d: d.index)
            if len(ordered) != len(batch):
                raise EmbeddingError(f"Expected {len(batch)} embeddings, got {len(ordered)}")
            vectors.extend(self._check(np.asarray(d.embedding, dtype=np.float32), use_model) for d in ordered)

            usage = getattr(resp, "usage", None)
            total_tokens += int(getattr(usage, "total_tokens", 0) or sum(approx_tokens(t) for t in batch))

            if i + size < len(texts):
                await asyncio.sleep(self.batch_delay)

        return BatchEmbedding(vectors, total_tokens)
