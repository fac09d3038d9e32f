"""Fold chunk-level hits back into their parent documents."""

from __future__ import annotations

import dataclasses
from typing import Dict, List

from embedvault.models import AggregatedSearchResult, SearchResult

DECAY = 0.8


def aggregate_chunks(results: List[SearchResult], max_chunks_per_document: int = 3) -> List[AggregatedSearchResult]:
    """
    Group chunk hits by parent id and score each parent by the
    ``DECAY ** rank`` weighted mean of its best chunks. Unchunked hits pass
    through with their own similarity.
    """
    groups: Dict[str, List[SearchResult]] = {}
    standalone: List[SearchResult] = []
    for r in results:
        parent_id = r.chunk_info.parent_id if r.chunk_info else None
        if parent_id:
            groups.setdefault(parent_id, []).append(r)
        else:
            standalone.append(r)

    out: List[AggregatedSearchResult] = []
    for chunks in groups.values():
        chunks.sort(key=lambda c: c.similarity, reverse=True)
        top = chunks[:max_chunks_per_document]
        weights = [DECAY**i for i in range(len(top))]
        score = sum(c.similarity * w for c, w in zip(top, weights)) / sum(weights)
        out.append(
            AggregatedSearchResult(
                parent_document=dataclasses.replace(chunks[0], similarity=score, combined_score=score),
                relevant_chunks=top,
                aggregated_score=score,
                chunk_count=len(chunks),
                best_chunk_similarity=chunks[0].similarity,
            )
        )

    for r in standalone:
        out.append(AggregatedSearchResult(r, [], r.similarity, 1, r.similarity))

    out.sort(key=lambda a: a.aggregated_score, reverse=True)
    return out


__all__ = ["aggregate_chunks", "DECAY"]
