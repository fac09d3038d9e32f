"""
Result reranking strategies.

``semantic`` and ``cross-encoder`` keep the raw similarity as the rerank
score; ``hybrid`` layers a few cheap heuristics on top of the current score.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Dict, List

from embedvault.models import ContentType, SearchResult

from .options import RerankOptions

logger = logging.getLogger(__name__)

LENGTH_BAND = (100, 2000)
LENGTH_BOOST = 1.1
TITLE_BOOST = 1.2
TYPE_WEIGHTS: Dict[ContentType, float] = {
    ContentType.KNOWLEDGE_BASE: 1.3,
    ContentType.FAQ: 1.2,
    ContentType.PRODUCT: 1.1,
    ContentType.REVIEW: 1.0,
}


def semantic_rerank(query: str, results: List[SearchResult]) -> List[SearchResult]:
    return [dataclasses.replace(r, rerank_score=r.similarity) for r in results]


def cross_encoder_rerank(query: str, results: List[SearchResult]) -> List[SearchResult]:
    # No cross-encoder model is wired in; keeps the raw similarity.
    return [dataclasses.replace(r, rerank_score=r.similarity) for r in results]


def hybrid_rerank(query: str, results: List[SearchResult]) -> List[SearchResult]:
    words = query.lower().split()
    first = words[0] if words else ""
    out = []
    for r in results:
        score = r.score
        if LENGTH_BAND[0] < len(r.content) < LENGTH_BAND[1]:
            score *= LENGTH_BOOST
        if first and r.title and first in r.title.lower():
            score *= TITLE_BOOST
        score *= TYPE_WEIGHTS.get(ContentType(r.content_type), 1.0)
        out.append(dataclasses.replace(r, rerank_score=score, combined_score=score))
    return out


STRATEGIES: Dict[str, Callable[[str, List[SearchResult]], List[SearchResult]]] = {
    "semantic": semantic_rerank,
    "cross-encoder": cross_encoder_rerank,
    "hybrid": hybrid_rerank,
}


def rerank(query: str, results: List[SearchResult], options: RerankOptions) -> List[SearchResult]:
    """
    Rerank the first ``options.top_k`` results (all when unset); the tail is
    kept as is. Any failure returns ``results`` untouched.
    """
    top_k = options.top_k or len(results)
    head, tail = results[:top_k], results[top_k:]
    strategy = STRATEGIES.get(options.model, hybrid_rerank)
    try:
        return strategy(query, head) + tail
    except Exception as e:
        logger.warning("Reranking failed, returning original order: %s", e)
        return results


__all__ = ["rerank", "semantic_rerank", "cross_encoder_rerank", "hybrid_rerank", "STRATEGIES", "TYPE_WEIGHTS"]
