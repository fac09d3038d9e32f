import asyncio

import pytest

from conftest import FakeEmbeddingProvider, make_doc, unit
from embedvault.clustering import ClusteringConfig, ClusterManager
from embedvault.errors import ClusteringError, StoreError
from embedvault.indexer import DocumentIndexer
from embedvault.manager import StoreManager, StoreManagerConfig
from embedvault.models import ContentType, EventType, IndexingOptions
from embedvault.search import SearchEngine
from embedvault.store.memory import InMemoryVectorStore

LONG = " ".join(f"Sentence number {i} talks about widgets and gadgets." for i in range(60))


def _options(content_type=ContentType.PRODUCT, **kwargs) -> IndexingOptions:
    return IndexingOptions(content_type=content_type, tenant_id="shop-1", **kwargs)


def _manager(provider=None, store=None, *, clustering=True, rebalance_interval=86400.0, **config) -> StoreManager:
    provider = provider or FakeEmbeddingProvider()
    store = store if store is not None else InMemoryVectorStore()
    clusters = ClusterManager(store, ClusteringConfig(seed=0, rebalance_interval=rebalance_interval))
    indexer = DocumentIndexer(provider, store, cluster_manager=clusters, batch_delay=0)
    engine = SearchEngine(provider, store)
    cfg = StoreManagerConfig(
        tenant_id="shop-1",
        enable_clustering=clustering,
        batch_delay=0,
        reindex_batch_delay=0,
        **config,
    )
    return StoreManager(store, indexer, engine, clusters if clustering else None, cfg)


def _record(manager, *types):
    seen = []
    for t in types:
        manager.add_event_listener(t, seen.append)
    return seen


# --- Indexing and events ----------------------------------------------------


def test_index_content_clusters_and_emits_events():
    manager = _manager()
    seen = _record(manager, EventType.CREATED, EventType.CLUSTERED, EventType.COMPRESSED)

    result = asyncio.run(manager.index_content("Oak table.", "Table", _options()))

    assert result.success
    assert result.clustered
    assert not result.compressed
    assert [e.type for e in seen] == [EventType.CLUSTERED, EventType.CREATED]
    created = seen[-1]
    assert created.document_id == result.document_id
    assert created.content_type == ContentType.PRODUCT
    assert created.metadata["chunks_created"] == 1
    assert created.metadata["clustered"] is True
    assert asyncio.run(manager.store.get_membership(result.document_id)) is not None


def test_index_content_without_clustering_but_with_compression():
    manager = _manager(clustering=False, enable_compression=True)
    seen = _record(manager, EventType.CLUSTERED, EventType.COMPRESSED, EventType.CREATED)

    result = asyncio.run(manager.index_content("Oak table.", "Table", _options()))

    assert not result.clustered
    assert result.compressed
    assert [e.type for e in seen] == [EventType.COMPRESSED, EventType.CREATED]
    assert asyncio.run(manager.store.list_clusters()) == []


def test_failed_index_emits_nothing():
    provider = FakeEmbeddingProvider()
    provider.fail = True
    manager = _manager(provider)
    seen = _record(manager, EventType.CREATED)

    result = asyncio.run(manager.index_content("Oak table.", "Table", _options()))

    assert not result.success
    assert result.document_id == ""
    assert result.errors == ["provider down"]
    assert seen == []


def test_listener_failures_are_isolated():
    manager = _manager(clustering=False)
    calls = []

    def broken(event):
        raise RuntimeError("listener bug")

    async def async_listener(event):
        calls.append(("async", event.document_id))

    manager.add_event_listener(EventType.CREATED, broken)
    manager.add_event_listener(EventType.CREATED, async_listener)
    manager.add_event_listener("created", lambda e: calls.append(("sync", e.document_id)))

    result = asyncio.run(manager.index_content("Oak table.", "Table", _options()))

    assert result.success
    assert calls == [("async", result.document_id), ("sync", result.document_id)]


def test_remove_event_listener():
    manager = _manager(clustering=False)
    seen = []
    manager.add_event_listener(EventType.CREATED, seen.append)
    manager.remove_event_listener(EventType.CREATED, seen.append)
    manager.remove_event_listener(EventType.DELETED, seen.append)

    asyncio.run(manager.index_content("Oak table.", "Table", _options()))
    assert seen == []


def test_batch_index_content_counts_failures():
    class FailingTitleStore(InMemoryVectorStore):
        async def insert_document(self, doc):
            if doc.title == "bad":
                raise StoreError("rejected")
            return await super().insert_document(doc)

    manager = _manager(store=FailingTitleStore(), batch_size=2)
    docs = [(f"Doc {i}.", "bad" if i == 1 else f"t{i}", _options()) for i in range(3)]

    result = asyncio.run(manager.batch_index_content(docs))

    assert not result.success
    assert result.processed == 2
    assert result.failed == 1
    assert result.errors == ["Document 'bad': Indexing failed"]
    assert result.metadata["batch_size"] == 2


# --- Update and delete ------------------------------------------------------


def test_update_document_keeps_id_and_emits_update():
    manager = _manager()
    seen = _record(manager, EventType.UPDATED)
    doc_id = asyncio.run(manager.index_content(LONG, "Widgets", _options())).document_id

    result = asyncio.run(manager.update_document(doc_id, "Now short.", title="Short", metadata={"vendor": "Acme"}))

    assert result.success
    assert result.reindexed
    assert result.version_created
    doc = asyncio.run(manager.store.get_document(doc_id))
    assert doc.content == "Now short."
    assert doc.metadata == {"vendor": "Acme"}
    assert asyncio.run(manager.store.get_chunks(doc_id)) == []
    assert asyncio.run(manager.store.get_membership(doc_id)) is not None
    assert [e.document_id for e in seen] == [doc_id]


def test_update_unknown_document_reports_failure():
    result = asyncio.run(_manager().update_document("missing", "x"))
    assert not result.success
    assert "missing" in result.error


def test_delete_document_cleans_empty_clusters():
    manager = _manager()
    seen = _record(manager, EventType.DELETED)
    doc_id = asyncio.run(manager.index_content("Oak table.", "Table", _options())).document_id
    assert len(asyncio.run(manager.store.list_clusters())) == 1

    result = asyncio.run(manager.delete_document(doc_id))

    assert result.success
    assert result.cleanup_performed
    assert asyncio.run(manager.store.get_document(doc_id)) is None
    assert asyncio.run(manager.store.list_clusters()) == []
    status = manager.get_maintenance_status()
    assert status.cleanup.outdated_clusters == 1
    assert status.cleanup.last_cleanup is not None
    assert seen[0].metadata == {"cleanup_performed": True}


def test_delete_unknown_document_reports_failure():
    result = asyncio.run(_manager().delete_document("missing"))
    assert not result.success
    assert result.error


# --- Search and reporting ---------------------------------------------------


def test_search_defaults_to_configured_tenant():
    provider = FakeEmbeddingProvider(vectors={"oak": unit(0)})
    store = InMemoryVectorStore()
    mine = asyncio.run(store.insert_document(make_doc(unit(0), tenant_id="shop-1")))
    asyncio.run(store.insert_document(make_doc(unit(0), tenant_id="shop-2")))
    manager = _manager(provider, store)

    response = asyncio.run(manager.search("oak"))
    assert [r.id for r in response.results] == [mine]


def test_statistics():
    manager = _manager()
    asyncio.run(manager.index_content(LONG, "Widgets", _options()))
    asyncio.run(manager.index_content("How to return?", "Returns", _options(ContentType.FAQ)))
    asyncio.run(manager.search("widgets"))
    asyncio.run(manager.search("widgets"))

    stats = asyncio.run(manager.get_statistics())

    assert stats.total_documents == 2
    assert stats.documents_by_type == {"product": 1, "faq": 1}
    assert stats.total_embeddings > 2
    assert stats.total_clusters == 2
    assert stats.cluster_distribution == {"product": 1, "faq": 1}
    assert stats.cache_hit_rate == 0.5
    assert stats.storage_size == 2 * 16 * 4


def test_maintenance_status_is_a_snapshot():
    manager = _manager()
    status = manager.get_maintenance_status()
    status.reindexing.in_progress = True
    assert not manager.get_maintenance_status().reindexing.in_progress


# --- Maintenance ------------------------------------------------------------


def test_reindex_store_tracks_progress():
    manager = _manager()
    for i in range(3):
        asyncio.run(manager.index_content(f"Item {i}.", f"Item {i}", _options()))

    seen_progress = []
    original = manager.indexer.reindex_document

    async def tracking(document_id, **kwargs):
        state = manager.get_maintenance_status().reindexing
        seen_progress.append((state.in_progress, state.progress))
        return await original(document_id, **kwargs)

    manager.indexer.reindex_document = tracking
    result = asyncio.run(manager.reindex_store(batch_size=2))

    assert result.success
    assert result.processed == 3
    assert result.metadata == {"total_documents": 3, "batch_size": 2}
    assert [p for _, p in seen_progress] == [0.0, 0.0, pytest.approx(2 / 3)]
    assert all(in_progress for in_progress, _ in seen_progress)

    status = manager.get_maintenance_status()
    assert not status.reindexing.in_progress
    assert status.reindexing.progress == 1.0
    assert status.reindexing.last_run is not None
    assert status.clustering.last_run is not None


def test_reindex_store_by_content_type():
    manager = _manager(clustering=False)
    asyncio.run(manager.index_content("Item.", "Item", _options()))
    asyncio.run(manager.index_content("Question?", "FAQ", _options(ContentType.FAQ)))

    result = asyncio.run(manager.reindex_store(content_types=[ContentType.FAQ]))

    assert result.processed == 1
    assert manager.get_maintenance_status().clustering.last_run is None


def test_compress_embeddings_is_a_noop():
    manager = _manager()
    result = asyncio.run(manager.compress_embeddings(compression_ratio=0.25, quantization_bits=4))

    assert result.success
    assert result.processed == 0
    assert result.metadata == {"compression_ratio": 0.25, "quantization_bits": 4}
    assert manager.get_maintenance_status().compression.last_run is not None


@pytest.mark.asyncio
async def test_periodic_rebalance_start_and_stop():
    manager = _manager(rebalance_interval=0.01)
    await manager.index_content("Oak table.", "Table", _options())

    task = await manager.start_maintenance()
    assert await manager.start_maintenance() is task
    await asyncio.sleep(0.05)
    await manager.stop_maintenance()

    assert task.cancelled()
    assert manager.get_maintenance_status().clustering.last_run is not None


def test_maintenance_not_started_without_clustering():
    manager = _manager(clustering=False)
    assert asyncio.run(manager.start_maintenance()) is None
    asyncio.run(manager.stop_maintenance())


# --- Health -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_check_healthy():
    report = await _manager().health_check()

    assert report.healthy
    assert report.issues == []
    assert report.performance.indexing_working
    assert report.performance.search_working
    assert report.performance.clustering_working


@pytest.mark.asyncio
async def test_health_check_reports_failures_without_raising():
    class DeadStore(InMemoryVectorStore):
        async def ping(self):
            raise StoreError("connection refused")

    provider = FakeEmbeddingProvider()
    provider.fail = True
    report = await _manager(provider, DeadStore()).health_check()

    assert not report.healthy
    assert not report.performance.indexing_working
    assert not report.performance.search_working
    assert report.performance.clustering_working
    assert report.issues[0].startswith("Store connectivity:")
    assert report.issues[1].startswith("Search functionality:")


@pytest.mark.asyncio
async def test_health_check_bypasses_search_cache():
    class FlakyStore(InMemoryVectorStore):
        down = False

        async def list_documents(self, **kwargs):
            if self.down:
                raise StoreError("store offline")
            return await super().list_documents(**kwargs)

    store = FlakyStore()
    manager = _manager(store=store)

    first = await manager.health_check()
    assert first.performance.search_working
    assert manager.search_engine.cache_stats().size == 0

    store.down = True
    second = await manager.health_check()

    assert not second.healthy
    assert not second.performance.search_working
    assert any(issue.startswith("Search functionality:") for issue in second.issues)


# --- Advisory clustering ----------------------------------------------------


def test_reindex_store_survives_rebalance_failure(monkeypatch):
    manager = _manager()
    for i in range(3):
        asyncio.run(manager.index_content(f"Item {i}.", f"Item {i}", _options()))

    async def broken_rebalance(content_type=None):
        raise ClusteringError("rebalance exploded")

    monkeypatch.setattr(manager.cluster_manager, "rebalance_clusters", broken_rebalance)
    result = asyncio.run(manager.reindex_store())

    assert result.processed == 3
    assert result.failed == 0
    assert result.errors == ["Rebalance: rebalance exploded"]
    status = manager.get_maintenance_status()
    assert not status.reindexing.in_progress
    assert status.reindexing.progress == 1.0
    assert status.reindexing.last_run is not None
    assert not status.clustering.in_progress


def test_unexpected_clustering_errors_do_not_fail_indexing(monkeypatch):
    manager = _manager()
    seen = _record(manager, EventType.CLUSTERED, EventType.CREATED, EventType.UPDATED)

    async def mixed_dimensions(document_id):
        raise ValueError("all input arrays must have the same shape")

    monkeypatch.setattr(manager.cluster_manager, "assign_document_to_cluster", mixed_dimensions)
    monkeypatch.setattr(manager.cluster_manager, "reassign_document", mixed_dimensions)

    indexed = asyncio.run(manager.index_content("Oak table.", "Table", _options()))
    assert indexed.success
    assert not indexed.clustered

    updated = asyncio.run(manager.update_document(indexed.document_id, "Pine table."))
    assert updated.success
    assert [e.type for e in seen] == [EventType.CREATED, EventType.UPDATED]


@pytest.mark.asyncio
async def test_scheduled_rebalance_failures_are_recorded(monkeypatch):
    manager = _manager(rebalance_interval=0.01)

    async def broken_rebalance(content_type=None):
        raise ClusteringError("no quorum")

    monkeypatch.setattr(manager.cluster_manager, "rebalance_clusters", broken_rebalance)

    await manager.start_maintenance()
    await asyncio.sleep(0.05)
    await manager.stop_maintenance()

    state = manager.get_maintenance_status().clustering
    assert state.failures >= 1
    assert state.cycles == state.failures
    assert state.last_error == "no quorum"
    assert not state.in_progress
