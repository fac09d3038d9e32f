import asyncio

import numpy as np
import pytest

from conftest import FakeEmbeddingProvider, make_doc, unit
from embedvault.clustering import ClusterManager
from embedvault.errors import StoreError
from embedvault.indexer import DocumentIndexer
from embedvault.models import Cluster, ClusterMembership, ContentType, DocumentStatus, IndexingOptions
from embedvault.store.sqlite import SqliteVectorStore

LONG = " ".join(f"Sentence number {i} talks about widgets and gadgets." for i in range(60))


@pytest.fixture
def db(tmp_path):
    store = SqliteVectorStore(str(tmp_path / "data" / "vault.db"))
    yield store
    store.conn.close()


def test_document_round_trip(db):
    async def run():
        doc = make_doc(unit(3), title="Oak", metadata={"vendor": "Acme", "tags": ["a"]}, source_id="p-1")
        await db.insert_document(doc)
        return doc, await db.get_document(doc.id), await db.get_document("missing")

    doc, loaded, missing = asyncio.run(run())

    assert missing is None
    assert loaded.id == doc.id
    assert loaded.content_type is ContentType.PRODUCT
    assert loaded.status is DocumentStatus.ACTIVE
    assert loaded.metadata == {"vendor": "Acme", "tags": ["a"]}
    assert loaded.source_id == "p-1"
    assert np.array_equal(loaded.embedding, unit(3))


def test_duplicate_insert_raises_store_error(db):
    doc = make_doc(unit(0))
    asyncio.run(db.insert_document(doc))
    with pytest.raises(StoreError):
        asyncio.run(db.insert_document(doc))


def test_update_and_list_filters(db):
    async def run():
        product = make_doc(unit(0))
        faq = make_doc(unit(1), content_type=ContentType.FAQ)
        bare = make_doc(None, tenant_id="shop-2")
        for d in (product, faq, bare):
            await db.insert_document(d)
        chunk = make_doc(unit(0), parent_id=product.id, chunk_index=0, chunk_count=1)
        await db.insert_document(chunk)

        faq.status = DocumentStatus.ARCHIVED
        faq.content = "archived"
        await db.update_document(faq)

        return (
            product,
            chunk,
            await db.get_document(faq.id),
            await db.list_documents(tenant_id="shop-1"),
            await db.list_documents(parents_only=True, status=None),
            await db.list_documents(with_embedding=True),
            await db.list_documents(content_type=ContentType.FAQ, status=DocumentStatus.ARCHIVED),
            await db.count_documents("shop-1"),
        )

    product, chunk, faq, shop1, parents, embedded, archived, count = asyncio.run(run())

    assert faq.content == "archived"
    assert {d.id for d in shop1} == {product.id, chunk.id}
    assert len(parents) == 3
    assert {d.id for d in embedded} == {product.id, chunk.id}
    assert [d.id for d in archived] == [faq.id]
    assert count == 3


def test_deleting_parent_cascades(db):
    async def run():
        parent = make_doc(unit(0))
        await db.insert_document(parent)
        for i in range(3):
            await db.insert_document(make_doc(unit(1), parent_id=parent.id, chunk_index=i, chunk_count=3))
        await db.upsert_side_record("product", parent.id, {"vendor": "Acme"})
        cid = await db.create_cluster(Cluster("c", ContentType.PRODUCT, "shop-1", centroid=unit(0)))
        await db.upsert_membership(ClusterMembership(parent.id, cid, 1.0))

        chunks = await db.get_chunks(parent.id)
        removed = await db.delete_document(parent.id)
        return (
            chunks,
            removed,
            await db.get_chunks(parent.id),
            await db.get_side_record("product", parent.id),
            await db.get_membership(parent.id),
            await db.delete_document(parent.id),
        )

    chunks, removed, after, side, membership, again = asyncio.run(run())

    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert removed
    assert after == []
    assert side is None
    assert membership is None
    assert not again


def test_side_records(db):
    async def run():
        doc = make_doc(unit(0))
        await db.insert_document(doc)
        await db.upsert_side_record("product", doc.id, {"vendor": "Acme"})
        await db.upsert_side_record("product", doc.id, {"vendor": "Globex"})
        await db.upsert_side_record("knowledge", doc.id, {"category": "faq"})
        first = await db.get_side_record("product", doc.id)
        removed = await db.delete_side_records(doc.id)
        return first, removed, await db.get_side_record("knowledge", doc.id)

    first, removed, gone = asyncio.run(run())
    assert first == {"vendor": "Globex"}
    assert removed == 2
    assert gone is None


def test_clusters_and_memberships(db):
    async def run():
        docs = [make_doc(unit(i)) for i in range(2)]
        for d in docs:
            await db.insert_document(d)
        a = await db.create_cluster(Cluster("A", ContentType.PRODUCT, "shop-1", centroid=unit(0), metadata={"x": 1}))
        b = await db.create_cluster(Cluster("B", ContentType.FAQ, "shop-1", centroid=unit(1)))

        await db.upsert_membership(ClusterMembership(docs[0].id, a, 0.9))
        await db.upsert_membership(ClusterMembership(docs[0].id, b, 0.5))
        await db.upsert_membership(ClusterMembership(docs[1].id, a, 0.7))

        cluster = await db.get_cluster(a)
        cluster.member_count = 1
        cluster.centroid = unit(2)
        await db.update_cluster(cluster)

        state = {
            "a": await db.get_cluster(a),
            "product_clusters": await db.list_clusters(content_type=ContentType.PRODUCT),
            "in_a": await db.list_memberships(cluster_id=a),
            "by_doc": await db.list_memberships(document_ids=[docs[0].id]),
            "none": await db.list_memberships(document_ids=[]),
        }
        state["deleted"] = await db.delete_cluster(a)
        state["orphan"] = await db.get_membership(docs[1].id)
        state["left"] = await db.delete_membership(docs[0].id)
        return state

    s = asyncio.run(run())

    assert s["a"].member_count == 1
    assert s["a"].metadata == {"x": 1}
    assert np.array_equal(s["a"].centroid, unit(2))
    assert [c.name for c in s["product_clusters"]] == ["A"]
    assert len(s["in_a"]) == 1
    assert s["by_doc"][0].cluster_id != s["a"].id
    assert s["none"] == []
    assert s["deleted"]
    assert s["orphan"] is None
    assert s["left"]


def test_similarity_search_without_index(db):
    async def run():
        near = make_doc(unit(0))
        far = make_doc(unit(1))
        other = make_doc(unit(0), tenant_id="shop-2")
        for d in (near, far, other):
            await db.insert_document(d)
        return near, await db.similarity_search(unit(0), tenant_id="shop-1", threshold=0.5)

    near, hits = asyncio.run(run())
    assert [h.id for h in hits] == [near.id]
    assert hits[0].similarity == pytest.approx(1.0)


def test_indexer_and_clusters_over_sqlite(db):
    provider = FakeEmbeddingProvider()
    indexer = DocumentIndexer(provider, db, cluster_manager=ClusterManager(db))
    opts = IndexingOptions(content_type=ContentType.PRODUCT, tenant_id="shop-1", enable_clustering=True)

    async def run():
        result = await indexer.index_document(LONG, "Widgets", opts)
        before = await db.get_chunks(result.document_id)
        membership = await db.get_membership(result.document_id)
        await indexer.delete_document_and_chunks(result.document_id)
        return result, before, membership, await db.count_documents()

    result, before, membership, remaining = asyncio.run(run())

    assert result.success
    assert len(before) == result.total_chunks
    assert membership is not None
    assert remaining == 0


def test_housekeeping(db):
    async def run():
        await db.insert_document(make_doc(unit(0)))
        await db.refresh_analytics()
        return await db.ping()

    assert asyncio.run(run()) is True
