"""Embedding provider contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np


@dataclass(slots=True)
class Embedding:
    vector: np.ndarray
    token_count: int


@dataclass(slots=True)
class BatchEmbedding:
    vectors: List[np.ndarray]
    total_tokens: int

    def token_share(self, index: int) -> int:
        """Even split of ``total_tokens`` attributed to vector ``index``."""
        if not self.vectors:
            return 0
        share, rest = divmod(self.total_tokens, len(self.vectors))
        return share + (1 if index < rest else 0)


def approx_tokens(text: str) -> int:
    """Rough token estimate (~4 chars per token)."""
    return max(1, (len(text) + 3) // 4) if text else 0


class EmbeddingProvider(ABC):
    """Converts text into fixed-dimension vectors."""

    dim: int

    @abstractmethod
    async def embed(self, text: str) -> Embedding:
        """Embed a single text."""

    @abstractmethod
    async def embed_batch(
        self,
        texts: Sequence[str],
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> BatchEmbedding:
        """Embed ``texts``; the result is order-preserving and 1:1 with the input."""
