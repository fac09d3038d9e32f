import asyncio
import time

import numpy as np
import pytest

from conftest import FakeEmbeddingProvider, make_doc, unit
from embedvault.errors import SearchError
from embedvault.models import ChunkInfo, Cluster, ClusterMembership, ContentType, SearchResult
from embedvault.search import (
    Boosts,
    ClusterParams,
    RerankOptions,
    SearchCache,
    SearchContext,
    SearchEngine,
    SearchOptions,
    quick_search,
    search_knowledge_base,
    search_products,
)
from embedvault.search import reranking
from embedvault.search.aggregation import aggregate_chunks
from embedvault.search.boosting import apply_boosts, boost_factor
from embedvault.search.cache import cache_key
from embedvault.search.engine import is_follow_up
from embedvault.search.reranking import rerank
from embedvault.store.memory import InMemoryVectorStore


def _norm(v):
    v = np.asarray(v, dtype=np.float32)
    return v / np.linalg.norm(v)


NEAR = _norm(unit(0) + 0.3 * unit(1))  # ~0.958 to unit(0)
FAR = _norm(0.8 * unit(0) + 0.6 * unit(2))  # 0.8 to unit(0)


class Catalog:
    def __init__(self, cache=None):
        self.provider = FakeEmbeddingProvider(vectors={"table": unit(0), "lamp": unit(1)})
        self.store = InMemoryVectorStore()
        self.engine = SearchEngine(self.provider, self.store, tenant_id="shop-1", cache=cache)
        self.ids = asyncio.run(self._seed())

    async def _seed(self):
        s = self.store
        return {
            "oak": await s.insert_document(make_doc(
                unit(0), title="Oak table", content="Solid oak dining table",
                metadata={"category": "furniture", "vendor": "Acme"},
            )),
            "pine": await s.insert_document(make_doc(
                NEAR, title="Pine table", content="Light pine table",
                metadata={"category": "furniture", "rating": 5},
            )),
            "lamp": await s.insert_document(make_doc(
                unit(1), title="Lamp", content="Desk lamp", metadata={"category": "lighting"},
            )),
            "faq": await s.insert_document(make_doc(
                FAR, title="Cleaning tips", content="How do I clean a table?", content_type=ContentType.FAQ,
            )),
            "other_tenant": await s.insert_document(make_doc(
                unit(0), title="Oak table", content="Solid oak dining table", tenant_id="shop-2",
            )),
        }

    def search(self, query, options=None):
        return asyncio.run(self.engine.search(query, options))


@pytest.fixture
def catalog():
    return Catalog()


def _ids(catalog, response):
    names = {v: k for k, v in catalog.ids.items()}
    return [names[r.id] for r in response.results]


# --- Strategies -------------------------------------------------------------


def test_vector_search_is_sorted_and_tenant_scoped(catalog):
    response = catalog.search("table")

    assert _ids(catalog, response) == ["oak", "pine", "faq"]
    scores = [r.score for r in response.results]
    assert scores == sorted(scores, reverse=True)
    assert response.analytics.search_method == "vector"
    assert response.analytics.results_by_type == {"product": 2, "faq": 1}
    assert not response.analytics.cache_hit


def test_vector_search_filters_and_k(catalog):
    assert _ids(catalog, catalog.search("table", SearchOptions(content_types=[ContentType.FAQ]))) == ["faq"]
    assert _ids(catalog, catalog.search("table", SearchOptions(filters={"category": "furniture"}))) == ["oak", "pine"]
    assert _ids(catalog, catalog.search("table", SearchOptions(k=1))) == ["oak"]

    both = catalog.search("table", SearchOptions(content_types=[ContentType.PRODUCT, ContentType.FAQ]))
    assert set(_ids(catalog, both)) == {"oak", "pine", "faq"}


def test_hybrid_search_blends_text_overlap(catalog):
    response = catalog.search("table", SearchOptions(use_hybrid_search=True, filters={"category": "furniture"}))

    assert response.analytics.search_method == "hybrid"
    assert _ids(catalog, response) == ["oak", "pine"]
    top = response.results[0]
    assert top.text_similarity == 1.0
    assert top.combined_score == pytest.approx(1.0)


def test_cluster_search_only_scores_nearest_cluster_members(catalog):
    async def seed():
        s = catalog.store
        a = await s.create_cluster(Cluster("A", ContentType.PRODUCT, "shop-1", centroid=unit(0), member_count=2))
        b = await s.create_cluster(Cluster("B", ContentType.PRODUCT, "shop-1", centroid=unit(1), member_count=1))
        await s.upsert_membership(ClusterMembership(catalog.ids["oak"], a, 1.0))
        await s.upsert_membership(ClusterMembership(catalog.ids["pine"], a, 0.95))
        await s.upsert_membership(ClusterMembership(catalog.ids["lamp"], b, 1.0))
        return a

    a = asyncio.run(seed())
    response = catalog.search(
        "table", SearchOptions(use_cluster_search=True, cluster_params=ClusterParams(cluster_count=1))
    )

    assert response.analytics.search_method == "cluster"
    assert response.analytics.clusters_searched == 1
    assert _ids(catalog, response) == ["oak", "pine"]
    assert all(r.cluster_info.cluster_id == a for r in response.results)


def test_cluster_search_needs_large_k_or_params(catalog):
    response = catalog.search("table", SearchOptions(use_cluster_search=True, k=5))
    assert response.analytics.search_method == "vector"


def test_provider_failure_raises_search_error(catalog):
    catalog.provider.fail = True
    with pytest.raises(SearchError):
        catalog.search("table")


# --- Cache ------------------------------------------------------------------


def test_repeat_query_is_served_from_cache(catalog):
    first = catalog.search("table")
    second = catalog.search("table")

    assert len(catalog.provider.calls) == 1
    assert second.analytics.cache_hit
    assert second.analytics.search_method == "vector"
    assert [r.id for r in second.results] == [r.id for r in first.results]

    stats = catalog.engine.cache_stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.size == 1


def test_cache_entry_expires_after_ttl():
    now = [1000.0]
    catalog = Catalog(cache=SearchCache(ttl=10, clock=lambda: now[0]))

    catalog.search("table")
    now[0] += 11
    again = catalog.search("table")

    assert not again.analytics.cache_hit
    assert len(catalog.provider.calls) == 2


def test_put_evicts_expired_entries():
    now = [0.0]
    cache = SearchCache(ttl=300, clock=lambda: now[0])

    for i in range(1000):
        cache.put(f"q{i}", ("vector", 0, []))
        now[0] += 1000

    assert cache.stats().size == 1
    assert cache.get("q999") is None
    assert cache.get("q0") is None


def test_put_keeps_live_entries_and_caps_size():
    now = [0.0]
    cache = SearchCache(ttl=300, max_entries=3, clock=lambda: now[0])

    for key in ("a", "b", "c"):
        cache.put(key, key)
        now[0] += 10
    cache.put("a", "a2")
    cache.put("d", "d")

    assert cache.stats().size == 3
    assert cache.get("b") is None
    assert [cache.get(k) for k in ("c", "a", "d")] == ["c", "a2", "d"]


def test_uncached_search_always_runs_the_strategy(catalog):
    catalog.search("table")
    fresh = asyncio.run(catalog.engine.search("table", use_cache=False))

    assert not fresh.analytics.cache_hit
    assert len(catalog.provider.calls) == 2
    stats = catalog.engine.cache_stats()
    assert (stats.hits, stats.misses, stats.size) == (0, 1, 1)


def test_clear_cache_forces_recompute(catalog):
    catalog.search("table")
    catalog.engine.clear_cache()
    catalog.search("table")
    assert len(catalog.provider.calls) == 2


def test_cache_key_depends_on_options():
    assert cache_key("q", SearchOptions(k=3)) == cache_key("q", SearchOptions(k=3))
    assert cache_key("q", SearchOptions(k=3)) != cache_key("q", SearchOptions(k=4))
    assert cache_key("q", SearchOptions()) != cache_key("r", SearchOptions())


# --- Boosts and reranking ---------------------------------------------------


def test_high_rating_boost_reorders(catalog):
    response = catalog.search("table", SearchOptions(boosts=Boosts(high_rated_content=2.0)))

    assert _ids(catalog, response)[0] == "pine"
    assert response.results[0].boost_score == 2.0
    assert response.results[1].boost_score == 1.0


def test_boost_factor_rules():
    now = time.time()
    fresh = SearchResult("a", "", ContentType.PRODUCT, 0.9, metadata={"category": "shoes"}, created_at=now - 3600)
    stale = SearchResult("b", "", ContentType.PRODUCT, 0.9, created_at=now - 10 * 86400)
    iso = SearchResult("c", "", ContentType.PRODUCT, 0.9, metadata={"created_at": "2020-01-01T00:00:00Z"})

    boosts = Boosts(recent_documents=1.5, user_preferences={"shoes": 2.0})
    assert boost_factor(fresh, boosts, now=now) == pytest.approx(3.0)
    assert boost_factor(stale, boosts, now=now) == 1.0
    assert boost_factor(iso, boosts, now=now) == 1.0

    boosted = apply_boosts([fresh], boosts, now=now)[0]
    assert boosted.combined_score == pytest.approx(2.7)


def test_hybrid_rerank_prefers_title_and_type(catalog):
    response = catalog.search("table", SearchOptions(reranking=RerankOptions(model="hybrid")))

    assert response.analytics.reranked
    assert _ids(catalog, response) == ["oak", "pine", "faq"]
    oak = response.results[0]
    assert oak.rerank_score == pytest.approx(1.0 * 1.2 * 1.1, rel=1e-5)
    assert response.results[2].rerank_score == pytest.approx(0.8 * 1.2, rel=1e-4)


def test_rerank_top_k_leaves_tail_untouched():
    results = [SearchResult(str(i), "x", ContentType.PRODUCT, 0.9 - i * 0.1) for i in range(3)]

    out = rerank("x", results, RerankOptions(model="semantic", top_k=1))

    assert out[0].rerank_score == pytest.approx(0.9)
    assert out[1].rerank_score is None
    assert [r.id for r in out] == ["0", "1", "2"]


def test_rerank_failure_returns_input(monkeypatch):
    def boom(query, results):
        raise RuntimeError("model unavailable")

    monkeypatch.setitem(reranking.STRATEGIES, "hybrid", boom)
    results = [SearchResult("a", "x", ContentType.PRODUCT, 0.5)]
    assert rerank("x", results, RerankOptions()) is results


# --- Aggregation ------------------------------------------------------------


def test_aggregate_chunks_weights_best_chunks():
    chunks = [
        SearchResult(f"c{i}", "x", ContentType.PRODUCT, sim, chunk_info=ChunkInfo(i, 4, "p"))
        for i, sim in enumerate([0.7, 0.9, 0.6, 0.8])
    ]
    standalone = SearchResult("s", "x", ContentType.PRODUCT, 0.85, chunk_info=ChunkInfo(0, 1, None))

    out = aggregate_chunks(chunks + [standalone], max_chunks_per_document=3)

    expected = (0.9 + 0.8 * 0.8 + 0.7 * 0.64) / (1 + 0.8 + 0.64)
    assert [a.parent_document.id for a in out] == ["s", "c1"]
    grouped = out[1]
    assert grouped.aggregated_score == pytest.approx(expected)
    assert grouped.chunk_count == 4
    assert grouped.best_chunk_similarity == 0.9
    assert [c.id for c in grouped.relevant_chunks] == ["c1", "c3", "c0"]
    assert out[0].chunk_count == 1


# --- Contextual and multi-modal ---------------------------------------------


def test_follow_up_detection():
    assert is_follow_up("show me more")
    assert is_follow_up("Is IT waterproof")
    assert not is_follow_up("oak table")


def test_contextual_search_folds_previous_query(catalog):
    context = SearchContext(previous_queries=["table"])
    response = asyncio.run(catalog.engine.contextual_search("more like that", context))

    assert catalog.provider.calls[-1] == "table more like that"
    assert response.contextual_insights == ["Query enhanced with previous context"]


def test_contextual_search_applies_preferences(catalog):
    context = SearchContext(user_profile={"preferred_categories": {"furniture": 1.5}})
    response = asyncio.run(catalog.engine.contextual_search("table", context))

    assert catalog.provider.calls[-1] == "table"
    assert response.contextual_insights == ["Search boosted for user preferences"]
    assert response.results[0].boost_score == 1.5


def test_multi_modal_similar_to_excludes_reference(catalog):
    response = asyncio.run(catalog.engine.multi_modal_search(similar_to=catalog.ids["oak"]))

    assert response.analytics.search_method == "hybrid"
    assert _ids(catalog, response) == ["pine", "faq"]


def test_multi_modal_metadata_and_exclusion(catalog):
    engine = catalog.engine
    furniture = asyncio.run(engine.multi_modal_search("table", metadata={"category": "furniture"}))
    assert _ids(catalog, furniture) == ["oak", "pine"]

    excluded = asyncio.run(engine.multi_modal_search("table", exclude_similar_to=catalog.ids["oak"]))
    assert _ids(catalog, excluded) == ["faq"]


# --- Convenience presets ----------------------------------------------------


def test_quick_search_and_products(catalog):
    quick = asyncio.run(quick_search(catalog.engine, "table", "shop-1", k=2))
    assert [r.id for r in quick] == [catalog.ids["oak"], catalog.ids["pine"]]

    by_vendor = asyncio.run(search_products(catalog.engine, "table", "shop-1", vendor="Acme"))
    assert [r.id for r in by_vendor] == [catalog.ids["oak"]]

    products = asyncio.run(search_products(catalog.engine, "table", "shop-1"))
    assert all(r.content_type == ContentType.PRODUCT for r in products)
    assert products[0].id == catalog.ids["pine"]


def test_search_knowledge_base_only_returns_approved(catalog):
    async def seed():
        s = catalog.store
        approved = await s.insert_document(make_doc(
            unit(0), title="Table care", content="Oil the table yearly",
            content_type=ContentType.KNOWLEDGE_BASE, metadata={"approvalStatus": "approved"},
        ))
        await s.insert_document(make_doc(
            unit(0), title="Table care draft", content="Oil the table",
            content_type=ContentType.KNOWLEDGE_BASE, metadata={"approvalStatus": "draft"},
        ))
        return approved

    approved = asyncio.run(seed())
    results = asyncio.run(search_knowledge_base(catalog.engine, "table", "shop-1"))

    assert [r.id for r in results] == [approved]
    assert results[0].rerank_score is not None
