"""
Wire a :class:`~embedvault.manager.StoreManager` from configuration.

Every builder accepts pre-built collaborators so tests and embedding
applications can swap in their own provider or store.
"""

from __future__ import annotations

import logging
from typing import Optional

from embedvault.clustering.manager import ClusteringConfig, ClusterManager
from embedvault.config import Config
from embedvault.errors import ConfigurationError
from embedvault.indexer.indexer import DocumentIndexer
from embedvault.manager import StoreManager, StoreManagerConfig
from embedvault.providers.base import EmbeddingProvider
from embedvault.providers.ollama import OllamaEmbeddingProvider
from embedvault.providers.openai import OpenAIEmbeddingProvider
from embedvault.search.cache import SearchCache
from embedvault.search.engine import SearchEngine
from embedvault.search.options import HybridWeights
from embedvault.store.base import VectorStore
from embedvault.store.memory import InMemoryVectorStore
from embedvault.store.milvus import MilvusIndex
from embedvault.store.sqlite import SqliteVectorStore

logger = logging.getLogger(__name__)


def build_provider(cfg=Config) -> EmbeddingProvider:
    """
    :raises ConfigurationError: unknown provider, or OpenAI without an API key.
    """
    name = cfg.core.EMBEDDING_PROVIDER
    if name == "openai":
        return OpenAIEmbeddingProvider(
            cfg.core.OPENAI_API_KEY,
            model=cfg.embeddings.EMB_MODEL_ID,
            dim=cfg.embeddings.EMB_DIM,
            batch_size=cfg.embeddings.EMB_BATCH_SIZE,
            batch_delay=cfg.embeddings.EMB_BATCH_DELAY,
        )
    if name == "ollama":
        return OllamaEmbeddingProvider(
            cfg.local_llm.LOCAL_SERVER_URL,
            model=cfg.local_llm.LOCAL_EMB_MODEL_ID,
            dim=cfg.embeddings.EMB_DIM,
            batch_size=cfg.embeddings.EMB_BATCH_SIZE,
        )
    raise ConfigurationError(f"Unknown embedding provider: {name!r}")


def build_store(cfg=Config, *, dim: Optional[int] = None) -> VectorStore:
    """
    :raises ConfigurationError: unknown store backend.
    """
    backend = cfg.core.STORE_BACKEND
    if backend == "memory":
        return InMemoryVectorStore()
    if backend == "sqlite":
        index = None
        if cfg.milvus.ENABLE_MILVUS:
            index = MilvusIndex(
                host=cfg.milvus.MILVUS_HOST,
                port=cfg.milvus.MILVUS_PORT,
                collection=cfg.milvus.MILVUS_COLLECTION,
                dim=dim or cfg.embeddings.EMB_DIM,
                nlist=cfg.milvus.MILVUS_NLIST,
                nprobe=cfg.milvus.MILVUS_NPROBE,
                delete_chunk=cfg.milvus.MILVUS_DELETE_CHUNK,
            )
        return SqliteVectorStore(cfg.core.SQLITE_PATH, index=index)
    raise ConfigurationError(f"Unknown store backend: {backend!r}")


def clustering_config(cfg=Config) -> ClusteringConfig:
    c = cfg.clustering
    return ClusteringConfig(
        similarity_threshold=c.SIMILARITY_THRESHOLD,
        max_clusters=c.MAX_CLUSTERS,
        min_documents_per_cluster=c.MIN_DOCUMENTS_PER_CLUSTER,
        rebalance_threshold=c.REBALANCE_THRESHOLD,
        max_iterations=c.MAX_ITERATIONS,
        convergence_threshold=c.CONVERGENCE_THRESHOLD,
        rebalance_interval=c.REBALANCE_INTERVAL,
        seed=c.SEED,
    )


def build_manager(
    cfg=Config,
    *,
    provider: Optional[EmbeddingProvider] = None,
    store: Optional[VectorStore] = None,
) -> StoreManager:
    provider = provider or build_provider(cfg)
    store = store or build_store(cfg, dim=provider.dim)
    tenant = cfg.core.TENANT_ID

    cluster_manager = None
    if cfg.indexing.ENABLE_CLUSTERING:
        cluster_manager = ClusterManager(store, clustering_config(cfg), tenant_id=tenant)

    indexer = DocumentIndexer(
        provider,
        store,
        cluster_manager=cluster_manager,
        batch_size=cfg.indexing.BATCH_SIZE,
        batch_delay=cfg.indexing.BATCH_DELAY,
        max_chunk_size=cfg.indexing.MAX_CHUNK_SIZE,
        overlap_size=cfg.indexing.OVERLAP_SIZE,
    )
    engine = SearchEngine(
        provider,
        store,
        tenant_id=tenant,
        default_k=cfg.search.DEFAULT_K,
        vector_threshold=cfg.search.VECTOR_THRESHOLD,
        hybrid_threshold=cfg.search.HYBRID_THRESHOLD,
        min_chunk_similarity=cfg.search.MIN_CHUNK_SIMILARITY,
        hybrid_weights=HybridWeights(cfg.search.VECTOR_WEIGHT, cfg.search.TEXT_WEIGHT),
        cache=SearchCache(cfg.search.CACHE_TTL),
    )

    logger.info(
        "Built store manager (provider=%s backend=%s clustering=%s)",
        cfg.core.EMBEDDING_PROVIDER, cfg.core.STORE_BACKEND, cluster_manager is not None,
    )
    return StoreManager(
        store,
        indexer,
        engine,
        cluster_manager,
        StoreManagerConfig(
            tenant_id=tenant,
            enable_clustering=cfg.indexing.ENABLE_CLUSTERING,
            enable_compression=cfg.indexing.ENABLE_COMPRESSION,
            reindex_batch_delay=cfg.indexing.REINDEX_BATCH_DELAY,
        ),
    )


__all__ = ["build_provider", "build_store", "build_manager", "clustering_config"]
