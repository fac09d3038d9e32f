"""Embedding provider backed by a local Ollama server"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import numpy as np
from ollama import AsyncClient

from embedvault.errors import EmbeddingError

from .base import BatchEmbedding, Embedding, EmbeddingProvider, approx_tokens


class OllamaEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        host: str,
        *,
        model: str = "nomic-embed-text",
        dim: int = 768,
        batch_size: int = 100,
        batch_delay: float = 0.0,
        client: AsyncClient | None = None,
    ) -> None:
        self.client = client or AsyncClient(host=host)
        self.model = model
        self.dim = dim
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay

    async def _embed(self, inputs: List[str], model: str) -> tuple[List[np.ndarray], int]:
        try:
            resp = await self.client.embed(model=model, input=inputs)
        except Exception as e:
            raise EmbeddingError(f"Ollama embed failed: {e}") from e

        vectors = [np.asarray(v, dtype=np.float32) for v in resp.embeddings]
        if len(vectors) != len(inputs):
            raise EmbeddingError(f"Expected {len(inputs)} embeddings, got {len(vectors)}")
        for v in vectors:
            if v.size != self.dim:
                raise EmbeddingError(f"Unexpected embedding size {v.size} != {self.dim} for model {model}")

        tokens = getattr(resp, "prompt_eval_count", None) or sum(approx_tokens(t) for t in inputs)
        return vectors, int(tokens)

    async def embed(self, text: str) -> Embedding:
        if not text:
            return Embedding(np.zeros(self.dim, dtype=np.float32), 0)
        vectors, tokens = await self._embed([text], self.model)
        return Embedding(vectors[0], tokens)

    async def embed_batch(
        self,
        texts: Sequence[str],
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> BatchEmbedding:
        if not texts:
            raise EmbeddingError("No texts provided for embedding generation")

        size = max(1, batch_size or self.batch_size)
        out: List[np.ndarray] = []
        total = 0
        for i in range(0, len(texts), size):
            vectors, tokens = await self._embed(list(texts[i : i + size]), model or self.model)
            out.extend(vectors)
            total += tokens
            if self.batch_delay and i + size < len(texts):
                await asyncio.sleep(self.batch_delay)
        return BatchEmbedding(out, total)
