"""Search request options."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from embedvault.models import ContentType, Metadata

RerankModel = Literal["semantic", "cross-encoder", "hybrid"]


@dataclass(slots=True)
class HybridWeights:
    vector: float = 0.7
    text: float = 0.3


@dataclass(slots=True)
class ClusterParams:
    cluster_count: int = 3
    documents_per_cluster: int = 5


@dataclass(slots=True)
class Boosts:
    """Multiplicative score modifiers; ``None`` disables a boost."""

    recent_documents: Optional[float] = None
    high_rated_content: Optional[float] = None
    user_preferences: Optional[Dict[str, float]] = None


@dataclass(slots=True)
class RerankOptions:
    enabled: bool = True
    model: RerankModel = "hybrid"
    top_k: Optional[int] = None


@dataclass(slots=True)
class SearchOptions:
    content_types: Optional[List[ContentType]] = None
    tenant_id: Optional[str] = None
    k: Optional[int] = None
    threshold: Optional[float] = None
    include_chunks: bool = False
    min_chunk_similarity: Optional[float] = None
    use_hybrid_search: bool = False
    hybrid_weights: Optional[HybridWeights] = None
    use_cluster_search: bool = False
    cluster_params: Optional[ClusterParams] = None
    filters: Optional[Metadata] = None
    boosts: Optional[Boosts] = None
    reranking: Optional[RerankOptions] = None


@dataclass(slots=True)
class SearchContext:
    previous_queries: List[str] = field(default_factory=list)
    user_profile: Dict[str, object] = field(default_factory=dict)
    session_data: Dict[str, object] = field(default_factory=dict)


__all__ = [
    "HybridWeights",
    "ClusterParams",
    "Boosts",
    "RerankOptions",
    "RerankModel",
    "SearchOptions",
    "SearchContext",
]
