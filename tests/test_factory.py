from types import SimpleNamespace

import pytest

from conftest import FakeEmbeddingProvider
from embedvault.config.clustering import Clustering
from embedvault.config.core import Core
from embedvault.config.embeddings import Embeddings
from embedvault.config.indexing import Indexing
from embedvault.config.local_llm import LocalLLM
from embedvault.config.milvus import Milvus
from embedvault.config.search import Search
from embedvault.errors import ConfigurationError
from embedvault.factory import build_manager, build_provider, build_store, clustering_config
from embedvault.providers.ollama import OllamaEmbeddingProvider
from embedvault.providers.openai import OpenAIEmbeddingProvider
from embedvault.store.memory import InMemoryVectorStore
from embedvault.store.milvus import MilvusIndex
from embedvault.store.sqlite import SqliteVectorStore


def _cfg(**sections):
    raw = {"embedvault": sections}
    return SimpleNamespace(
        core=Core(raw),
        embeddings=Embeddings(raw),
        indexing=Indexing(raw),
        clustering=Clustering(raw),
        search=Search(raw),
        milvus=Milvus(raw),
        local_llm=LocalLLM(raw),
    )


def test_build_provider_by_name():
    assert isinstance(build_provider(_cfg(core={"embedding_provider": "openai"})), OpenAIEmbeddingProvider)

    ollama = build_provider(_cfg(core={"embedding_provider": "ollama"}, embeddings={"dim": 768}))
    assert isinstance(ollama, OllamaEmbeddingProvider)
    assert ollama.dim == 768

    with pytest.raises(ConfigurationError):
        build_provider(_cfg(core={"embedding_provider": "cohere"}))


def test_build_store_backends(tmp_path):
    assert isinstance(build_store(_cfg(core={"store_backend": "memory"})), InMemoryVectorStore)

    sqlite = build_store(
        _cfg(core={"store_backend": "sqlite", "sqlite_path": str(tmp_path / "v.db")}, milvus={"enable_milvus": True}),
        dim=16,
    )
    try:
        assert isinstance(sqlite, SqliteVectorStore)
        assert isinstance(sqlite.index, MilvusIndex)
        assert sqlite.index.dim == 16
    finally:
        sqlite.conn.close()

    with pytest.raises(ConfigurationError):
        build_store(_cfg(core={"store_backend": "postgres"}))


def test_clustering_config_maps_section():
    cc = clustering_config(_cfg(clustering={"max_clusters": 7, "seed": 3}))
    assert cc.max_clusters == 7
    assert cc.seed == 3


def test_build_manager_wires_components():
    cfg = _cfg(
        core={"store_backend": "memory", "tenant_id": "shop-1"},
        indexing={"enable_clustering": True},
        search={"default_k": 4, "cache_ttl": 30},
    )
    provider = FakeEmbeddingProvider()

    manager = build_manager(cfg, provider=provider)

    assert manager.clustering_enabled
    assert manager.config.tenant_id == "shop-1"
    assert manager.indexer.provider is provider
    assert manager.search_engine.default_k == 4
    assert manager.search_engine.cache.ttl == 30.0
    assert manager.cluster_manager.tenant_id == "shop-1"

    plain = build_manager(_cfg(core={"store_backend": "memory"}, indexing={"enable_clustering": False}), provider=provider)
    assert plain.cluster_manager is None
    assert not plain.clustering_enabled
