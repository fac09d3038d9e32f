"""Similarity search: strategies, caching, boosting, reranking."""

from .aggregation import aggregate_chunks
from .cache import CacheStats, SearchCache, cache_key
from .convenience import quick_search, search_knowledge_base, search_products
from .engine import SearchEngine
from .options import Boosts, ClusterParams, HybridWeights, RerankOptions, SearchContext, SearchOptions

__all__ = [
    "SearchEngine",
    "SearchOptions",
    "SearchContext",
    "HybridWeights",
    "ClusterParams",
    "Boosts",
    "RerankOptions",
    "SearchCache",
    "CacheStats",
    "cache_key",
    "aggregate_chunks",
    "quick_search",
    "search_products",
    "search_knowledge_base",
]
