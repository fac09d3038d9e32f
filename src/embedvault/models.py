"""
Data model
==========

Plain dataclasses shared by the indexer, cluster manager, search engine and
store manager. Timestamps are Unix seconds (``time.time()``). Embeddings are
``float32`` :class:`numpy.ndarray` vectors.

A chunk is a :class:`Document` with ``parent_id`` set; its
``chunk_index`` lies in ``[0, chunk_count)`` and it carries the parent's
tenant and content type.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class ContentType(str, Enum):
    PRODUCT = "product"
    CUSTOMER = "customer"
    ORDER = "order"
    CONTENT = "content"
    FAQ = "faq"
    KNOWLEDGE_BASE = "knowledge_base"
    REVIEW = "review"
    MARKETING = "marketing"
    SUPPORT_TICKET = "support_ticket"
    CONVERSATION = "conversation"


class DocumentStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CLUSTERED = "clustered"
    COMPRESSED = "compressed"


Metadata = Dict[str, Any]

# Optional metadata keys understood by side records, boosting, cluster naming
# and filtering. Any other key is stored and filterable but otherwise ignored.
RECOGNIZED_METADATA_KEYS: Dict[ContentType, tuple[str, ...]] = {
    ContentType.PRODUCT: (
        "productId", "title", "name", "description", "productType", "type", "vendor",
        "handle", "tags", "priceRange", "inventory", "variants", "collections",
        "images", "seo", "performance", "category", "rating",
    ),
    ContentType.CUSTOMER: (
        "customerId", "sentiment", "intent", "priority", "status", "rating",
        "contact", "purchases", "preferences", "interaction_type",
    ),
    ContentType.REVIEW: ("customerId", "productId", "rating", "sentiment", "priority"),
    ContentType.SUPPORT_TICKET: ("customerId", "sentiment", "intent", "priority", "status"),
    ContentType.KNOWLEDGE_BASE: (
        "articleId", "category", "subcategory", "difficulty", "views", "helpfulVotes",
        "outdated", "author", "reviewer", "approvalStatus", "relatedArticles", "permissions",
    ),
    ContentType.FAQ: ("articleId", "category", "subcategory", "approvalStatus"),
}


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class Document:
    content: str
    content_type: ContentType
    tenant_id: str
    title: str = ""
    summary: Optional[str] = None
    embedding: Optional[np.ndarray] = None
    metadata: Metadata = field(default_factory=dict)
    status: DocumentStatus = DocumentStatus.ACTIVE
    parent_id: Optional[str] = None
    chunk_index: int = 0
    chunk_count: int = 1
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    language: str = "en"
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_chunk(self) -> bool:
        return self.parent_id is not None


@dataclass(slots=True)
class Cluster:
    name: str
    content_type: ContentType
    tenant_id: str
    centroid: np.ndarray
    member_count: int = 0
    average_similarity: float = 1.0
    metadata: Metadata = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class ClusterMembership:
    document_id: str
    cluster_id: str
    similarity_to_centroid: float
    assigned_at: float = field(default_factory=time.time)


# --- Indexing ---------------------------------------------------------------

@dataclass(slots=True)
class IndexingOptions:
    content_type: ContentType
    tenant_id: str
    batch_size: Optional[int] = None
    max_chunk_size: int = 1000
    overlap_size: int = 100
    enable_clustering: bool = False
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    language: str = "en"
    metadata: Metadata = field(default_factory=dict)


@dataclass(slots=True)
class DocumentChunk:
    content: str
    title: str
    chunk_index: int
    chunk_count: int
    summary: Optional[str] = None
    metadata: Metadata = field(default_factory=dict)


@dataclass(slots=True)
class IndexingResult:
    document_id: str
    chunk_ids: List[str]
    total_chunks: int
    processing_time: float
    token_count: int
    success: bool
    errors: Optional[List[str]] = None


@dataclass(slots=True)
class BatchIndexingResult:
    results: List[IndexingResult]
    total_documents: int
    success_count: int
    failure_count: int
    total_processing_time: float
    total_tokens: int
    average_chunks_per_document: float


@dataclass(slots=True)
class BatchOperationResult:
    success: bool
    processed: int
    failed: int
    errors: List[str]
    duration: float
    metadata: Metadata = field(default_factory=dict)


# --- Clustering -------------------------------------------------------------

@dataclass(slots=True)
class AssignmentResult:
    cluster_id: str
    similarity: float
    new_cluster_created: bool


@dataclass(slots=True)
class ReassignmentResult:
    reassigned: bool
    old_cluster_id: Optional[str] = None
    new_cluster_id: Optional[str] = None
    improvement_score: Optional[float] = None


@dataclass(slots=True)
class KMeansResult:
    centroids: List[np.ndarray]
    assignments: List[int]
    wcss: float
    converged: bool
    iterations: int


@dataclass(slots=True)
class RebalanceResult:
    clusters_created: int = 0
    clusters_deleted: int = 0
    documents_moved: int = 0
    improvement_score: float = 0.0
    processing_time: float = 0.0
    converged: bool = True
    iterations: int = 0


@dataclass(slots=True)
class ClusterStats:
    total_clusters: int
    clusters_by_type: Dict[str, int]
    average_cluster_size: float
    size_distribution: Dict[str, int]
    average_intra_cluster_similarity: float
    average_inter_cluster_distance: float
    silhouette_score: float
    last_rebalance: Optional[float]


# --- Search -----------------------------------------------------------------

@dataclass(slots=True)
class ChunkInfo:
    chunk_index: int
    chunk_count: int
    parent_id: Optional[str] = None


@dataclass(slots=True)
class ClusterInfo:
    cluster_id: str
    cluster_name: str


@dataclass(slots=True)
class SearchResult:
    id: str
    content: str
    content_type: ContentType
    similarity: float
    title: str = ""
    metadata: Metadata = field(default_factory=dict)
    text_similarity: Optional[float] = None
    combined_score: Optional[float] = None
    boost_score: Optional[float] = None
    rerank_score: Optional[float] = None
    chunk_info: Optional[ChunkInfo] = None
    cluster_info: Optional[ClusterInfo] = None
    created_at: Optional[float] = None

    @property
    def score(self) -> float:
        """Final ranking score: ``combined_score`` when set, else raw similarity."""
        return self.combined_score if self.combined_score is not None else self.similarity


@dataclass(slots=True)
class SearchAnalytics:
    query_time: float
    total_results: int
    results_by_type: Dict[str, int]
    average_similarity: float
    search_method: str
    clusters_searched: Optional[int] = None
    reranked: bool = False
    cache_hit: bool = False


@dataclass(slots=True)
class SearchResponse:
    results: List[SearchResult]
    analytics: SearchAnalytics
    contextual_insights: Optional[List[str]] = None


@dataclass(slots=True)
class AggregatedSearchResult:
    parent_document: SearchResult
    relevant_chunks: List[SearchResult]
    aggregated_score: float
    chunk_count: int
    best_chunk_similarity: float


# --- Lifecycle --------------------------------------------------------------

@dataclass(slots=True)
class LifecycleEvent:
    type: EventType
    document_id: str
    content_type: Optional[ContentType]
    timestamp: float = field(default_factory=time.time)
    metadata: Metadata = field(default_factory=dict)


@dataclass(slots=True)
class OperationState:
    in_progress: bool = False
    progress: Optional[float] = None
    started_at: Optional[float] = None
    last_run: Optional[float] = None
    # scheduled passes only
    cycles: int = 0
    failures: int = 0
    last_error: Optional[str] = None


@dataclass(slots=True)
class CleanupState:
    orphaned_embeddings: int = 0
    outdated_clusters: int = 0
    last_cleanup: Optional[float] = None


@dataclass(slots=True)
class MaintenanceState:
    reindexing: OperationState = field(default_factory=OperationState)
    clustering: OperationState = field(default_factory=OperationState)
    compression: OperationState = field(default_factory=OperationState)
    cleanup: CleanupState = field(default_factory=CleanupState)


@dataclass(slots=True)
class StoreStatistics:
    total_documents: int
    documents_by_type: Dict[str, int]
    total_embeddings: int
    total_clusters: int
    cluster_distribution: Dict[str, int]
    cache_hit_rate: float
    storage_size: int
    last_updated: float = field(default_factory=time.time)
