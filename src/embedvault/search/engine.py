"""
Search engine
=============

Strategy selection per query:

- **cluster**: ``use_cluster_search`` and (``k > 20`` or explicit
  ``cluster_params``) -> only members of the nearest clusters are scored
- **hybrid**: ``use_hybrid_search`` -> weighted vector + lexical score
- **vector**: otherwise -> thresholded cosine search

The query is embedded once and 2*k candidates are fetched, then boosted,
reranked, sorted by score and truncated to k. Responses are cached for the
TTL window.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from embedvault.errors import EmbedVaultError, SearchError
from embedvault.models import (
    AggregatedSearchResult,
    ContentType,
    Metadata,
    SearchAnalytics,
    SearchResponse,
    SearchResult,
)
from embedvault.providers.base import EmbeddingProvider
from embedvault.similarity import cosine_similarity
from embedvault.store.base import VectorStore, metadata_matches

from .aggregation import aggregate_chunks
from .boosting import apply_boosts
from .cache import CacheStats, SearchCache, cache_key
from .options import Boosts, ClusterParams, HybridWeights, SearchContext, SearchOptions
from .reranking import rerank

logger = logging.getLogger(__name__)

CLUSTER_SEARCH_MIN_K = 20
FOLLOW_UP_WORDS = frozenset({"it", "that", "this", "also", "more", "other"})
EXCLUDE_SIMILARITY = 0.9


def is_follow_up(query: str) -> bool:
    return any(w in FOLLOW_UP_WORDS for w in query.lower().split())


def _merge(primary: List[SearchResult], secondary: List[SearchResult]) -> List[SearchResult]:
    """Union by id; duplicates get the mean of both similarities as their score."""
    merged: Dict[str, SearchResult] = {r.id: r for r in primary}
    for r in secondary:
        existing = merged.get(r.id)
        if existing is None:
            merged[r.id] = r
        else:
            merged[r.id] = dataclasses.replace(
                existing, combined_score=(existing.similarity + r.similarity) / 2
            )
    return list(merged.values())


def _by_type(results: Sequence[SearchResult]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for r in results:
        key = ContentType(r.content_type).value
        counts[key] = counts.get(key, 0) + 1
    return counts


def _avg_similarity(results: Sequence[SearchResult]) -> float:
    return float(np.mean([r.similarity for r in results])) if results else 0.0


def _sort(results: List[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda r: r.score, reverse=True)


class SearchEngine:
    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        *,
        tenant_id: Optional[str] = None,
        default_k: int = 10,
        vector_threshold: float = 0.7,
        hybrid_threshold: float = 0.5,
        min_chunk_similarity: float = 0.8,
        hybrid_weights: Optional[HybridWeights] = None,
        cache: Optional[SearchCache] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.tenant_id = tenant_id
        self.default_k = default_k
        self.vector_threshold = vector_threshold
        self.hybrid_threshold = hybrid_threshold
        self.min_chunk_similarity = min_chunk_similarity
        self.hybrid_weights = hybrid_weights or HybridWeights()
        self.cache = cache or SearchCache()

    # --- Public API ---------------------------------------------------------

    async def search(
        self, query: str, options: Optional[SearchOptions] = None, *, use_cache: bool = True
    ) -> SearchResponse:
        """
        ``use_cache=False`` always runs the strategy and leaves the cache untouched.

        :raises SearchError: embedding or retrieval failed.
        """
        options = options or SearchOptions()
        started = time.perf_counter()
        k = options.k or self.default_k

        key = cache_key(query, options)
        cached = self.cache.get(key) if use_cache else None
        if cached is not None:
            method, clusters_searched, results = cached
            logger.debug("Search cache hit (%s)", key[:12])
            return SearchResponse(
                results,
                SearchAnalytics(
                    query_time=time.perf_counter() - started,
                    total_results=len(results),
                    results_by_type=_by_type(results),
                    average_similarity=_avg_similarity(results),
                    search_method=method,
                    clusters_searched=clusters_searched,
                    reranked=bool(options.reranking and options.reranking.enabled),
                    cache_hit=True,
                ),
            )

        try:
            embedding = (await self.provider.embed(query)).vector
            method, clusters_searched, results = await self._retrieve(query, embedding, options, k)
        except EmbedVaultError as e:
            logger.error("Search failed: %s", e)
            raise SearchError(f"Search failed: {e}") from e

        results = self._enhance(query, results, options)
        results = _sort(results)[:k]
        if use_cache:
            self.cache.put(key, (method, clusters_searched, results))

        analytics = SearchAnalytics(
            query_time=time.perf_counter() - started,
            total_results=len(results),
            results_by_type=_by_type(results),
            average_similarity=_avg_similarity(results),
            search_method=method,
            clusters_searched=clusters_searched,
            reranked=bool(options.reranking and options.reranking.enabled),
            cache_hit=False,
        )
        logger.info(
            "Search completed (method=%s results=%d avg_similarity=%.3f in %.3fs)",
            method, len(results), analytics.average_similarity, analytics.query_time,
        )
        return SearchResponse(results, analytics)

    async def contextual_search(
        self,
        query: str,
        context: Optional[SearchContext] = None,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """Fold follow-up queries into the previous one and apply profile category boosts."""
        context = context or SearchContext()
        options = dataclasses.replace(options) if options else SearchOptions()
        insights: List[str] = []

        enhanced = query
        if context.previous_queries and is_follow_up(query):
            enhanced = f"{context.previous_queries[-1]} {query}"
            insights.append("Query enhanced with previous context")

        preferred = context.user_profile.get("preferred_categories") or context.user_profile.get("preferredCategories")
        if isinstance(preferred, dict) and preferred:
            base = options.boosts or Boosts()
            options.boosts = dataclasses.replace(base, user_preferences=dict(preferred))
            insights.append("Search boosted for user preferences")

        response = await self.search(enhanced, options)
        response.contextual_insights = insights
        return response

    async def multi_modal_search(
        self,
        text: Optional[str] = None,
        *,
        metadata: Optional[Metadata] = None,
        similar_to: Optional[str] = None,
        exclude_similar_to: Optional[str] = None,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """
        Combine a text query (with metadata filters), documents similar to
        ``similar_to``, and removal of anything too close to
        ``exclude_similar_to``.
        """
        options = options or SearchOptions()
        started = time.perf_counter()
        k = options.k or self.default_k
        results: List[SearchResult] = []

        if text:
            filters = {**(options.filters or {}), **(metadata or {})} or None
            results = (await self.search(text, dataclasses.replace(options, filters=filters))).results

        if similar_to:
            ref = await self.store.get_document(similar_to)
            if ref is not None and ref.embedding is not None:
                similar = await self._vector(ref.embedding, options, k * 2)
                similar = [r for r in similar if r.id != similar_to]
                results = _merge(results, similar) if results else similar
            else:
                logger.warning("Reference document %s missing or not embedded", similar_to)

        if exclude_similar_to:
            results = await self._exclude_similar(results, exclude_similar_to)

        results = _sort(results)[:k]
        return SearchResponse(
            results,
            SearchAnalytics(
                query_time=time.perf_counter() - started,
                total_results=len(results),
                results_by_type=_by_type(results),
                average_similarity=_avg_similarity(results),
                search_method="hybrid",
            ),
        )

    def aggregate_chunks(
        self, results: List[SearchResult], max_chunks_per_document: int = 3
    ) -> List[AggregatedSearchResult]:
        return aggregate_chunks(results, max_chunks_per_document)

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # --- Strategies ---------------------------------------------------------

    async def _retrieve(
        self, query: str, embedding, options: SearchOptions, k: int
    ) -> Tuple[str, Optional[int], List[SearchResult]]:
        if options.use_cluster_search and (k > CLUSTER_SEARCH_MIN_K or options.cluster_params is not None):
            params = options.cluster_params or ClusterParams()
            results = await self._per_type(
                options,
                lambda ctype: self.store.cluster_search(
                    embedding,
                    content_type=ctype,
                    tenant_id=self._tenant(options),
                    cluster_count=params.cluster_count,
                    docs_per_cluster=params.documents_per_cluster,
                ),
            )
            return "cluster", params.cluster_count, self._post_filter(results, options)

        if options.use_hybrid_search:
            weights = options.hybrid_weights or self.hybrid_weights
            results = await self._per_type(
                options,
                lambda ctype: self.store.hybrid_search(
                    query,
                    embedding,
                    tenant_id=self._tenant(options),
                    content_type=ctype,
                    vector_weight=weights.vector,
                    text_weight=weights.text,
                    count=k * 2,
                    threshold=options.threshold if options.threshold is not None else self.hybrid_threshold,
                ),
            )
            return "hybrid", None, self._post_filter(results, options)

        return "vector", None, await self._vector(embedding, options, k * 2)

    async def _vector(self, embedding, options: SearchOptions, count: int) -> List[SearchResult]:
        return await self._per_type(
            options,
            lambda ctype: self.store.similarity_search(
                embedding,
                content_type=ctype,
                tenant_id=self._tenant(options),
                threshold=options.threshold if options.threshold is not None else self.vector_threshold,
                count=count,
                filters=options.filters,
                exclude_chunks=not options.include_chunks,
                min_chunk_similarity=(
                    options.min_chunk_similarity
                    if options.min_chunk_similarity is not None
                    else self.min_chunk_similarity
                ),
            ),
        )

    async def _per_type(self, options: SearchOptions, run) -> List[SearchResult]:
        types: List[Optional[ContentType]] = list(options.content_types or [None])
        if len(types) == 1:
            return await run(types[0])
        merged: Dict[str, SearchResult] = {}
        for ctype in types:
            for r in await run(ctype):
                if r.id not in merged or r.score > merged[r.id].score:
                    merged[r.id] = r
        return list(merged.values())

    def _post_filter(self, results: List[SearchResult], options: SearchOptions) -> List[SearchResult]:
        return [
            r
            for r in results
            if metadata_matches(r.metadata, options.filters)
            and (options.include_chunks or not (r.chunk_info and r.chunk_info.parent_id))
        ]

    def _enhance(self, query: str, results: List[SearchResult], options: SearchOptions) -> List[SearchResult]:
        if options.boosts:
            try:
                results = apply_boosts(results, options.boosts)
            except Exception as e:
                logger.warning("Boosting failed, using unboosted scores: %s", e)
        if options.reranking and options.reranking.enabled:
            results = rerank(query, results, options.reranking)
        return results

    async def _exclude_similar(self, results: List[SearchResult], exclude_id: str) -> List[SearchResult]:
        excluded = await self.store.get_document(exclude_id)
        if excluded is None or excluded.embedding is None:
            logger.warning("Excluded document %s missing or not embedded", exclude_id)
            return results

        kept = []
        for r in results:
            if r.id == exclude_id:
                continue
            doc = await self.store.get_document(r.id)
            if doc is not None and doc.embedding is not None:
                if cosine_similarity(doc.embedding, excluded.embedding) >= EXCLUDE_SIMILARITY:
                    continue
            kept.append(r)
        return kept

    def _tenant(self, options: SearchOptions) -> Optional[str]:
        return options.tenant_id or self.tenant_id


__all__ = ["SearchEngine", "is_follow_up", "FOLLOW_UP_WORDS", "EXCLUDE_SIMILARITY", "CLUSTER_SEARCH_MIN_K"]
