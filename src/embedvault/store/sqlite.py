"""
SQLite-backed store
===================

- WAL + pragmatic PRAGMAs for decent concurrent read perf.
- Every statement runs in a worker thread under one ``asyncio.Lock``.
- Embeddings are raw float32 blobs; metadata is JSON text.
- An optional :class:`~embedvault.store.milvus.MilvusIndex` supplies ANN
  candidates for :meth:`SqliteVectorStore.similarity_search`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from embedvault.errors import StoreError
from embedvault.models import (
    Cluster,
    ClusterMembership,
    ContentType,
    Document,
    DocumentStatus,
    Metadata,
    SearchResult,
)
from embedvault.similarity import cosine_similarity, from_bytes, to_bytes

from .base import VectorStore, metadata_matches, to_result
from .milvus import MilvusIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DOC_COLUMNS = (
    "id, tenant_id, content_type, title, content, summary, embedding, metadata, status, "
    "parent_id, chunk_index, chunk_count, source_id, source_url, language, created_at, updated_at"
)


def connect(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)

    # Autocommit; writes use explicit `with conn:` blocks in worker threads.
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)

    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-65536;")  # ~64 MiB page cache
    conn.execute("PRAGMA busy_timeout=3000;")

    conn.row_factory = sqlite3.Row
    return conn


def migrate(conn: sqlite3.Connection) -> None:
    """Execute schema.sql (idempotent)."""
    sql = pathlib.Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
    with conn:
        conn.executescript(sql)


def _doc_row(doc: Document) -> tuple:
    return (
        doc.id,
        doc.tenant_id,
        ContentType(doc.content_type).value,
        doc.title or "",
        doc.content,
        doc.summary,
        to_bytes(doc.embedding) if doc.embedding is not None else None,
        json.dumps(doc.metadata or {}),
        DocumentStatus(doc.status).value,
        doc.parent_id,
        doc.chunk_index,
        doc.chunk_count,
        doc.source_id,
        doc.source_url,
        doc.language,
        doc.created_at,
        doc.updated_at,
    )


def _row_doc(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        tenant_id=row["tenant_id"],
        content_type=ContentType(row["content_type"]),
        title=row["title"],
        content=row["content"],
        summary=row["summary"],
        embedding=from_bytes(row["embedding"]) if row["embedding"] is not None else None,
        metadata=json.loads(row["metadata"] or "{}"),
        status=DocumentStatus(row["status"]),
        parent_id=row["parent_id"],
        chunk_index=row["chunk_index"],
        chunk_count=row["chunk_count"],
        source_id=row["source_id"],
        source_url=row["source_url"],
        language=row["language"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_cluster(row: sqlite3.Row) -> Cluster:
    return Cluster(
        id=row["id"],
        tenant_id=row["tenant_id"],
        content_type=ContentType(row["content_type"]),
        name=row["name"],
        centroid=from_bytes(row["centroid"]),
        member_count=row["member_count"],
        average_similarity=row["average_similarity"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_membership(row: sqlite3.Row) -> ClusterMembership:
    return ClusterMembership(
        document_id=row["document_id"],
        cluster_id=row["cluster_id"],
        similarity_to_centroid=row["similarity_to_centroid"],
        assigned_at=row["assigned_at"],
    )


class SqliteVectorStore(VectorStore):
    def __init__(self, path: str, *, index: MilvusIndex | None = None) -> None:
        self.path = path
        self.index = index
        self.conn = connect(path)
        migrate(self.conn)
        self._lock = asyncio.Lock()

    async def _run(self, fn: Callable[[], T]) -> T:
        async with self._lock:
            try:
                return await asyncio.to_thread(fn)
            except sqlite3.Error as e:
                raise StoreError(f"SQLite call failed: {e}") from e

    async def _mirror(self, docs: Iterable[Document]) -> None:
        if self.index is None:
            return
        items = [
            (d.id, d.tenant_id, ContentType(d.content_type).value, d.embedding)
            for d in docs
            if d.embedding is not None and d.status == DocumentStatus.ACTIVE
        ]
        await self.index.upsert_many(items)

    # --- Documents ----------------------------------------------------------

    async def insert_document(self, doc: Document) -> str:
        row = _doc_row(doc)
        ph = ",".join(["?"] * len(row))

        def _q():
            with self.conn:
                self.conn.execute(f"INSERT INTO documents ({_DOC_COLUMNS}) VALUES ({ph})", row)

        await self._run(_q)
        await self._mirror([doc])
        return doc.id

    async def get_document(self, document_id: str) -> Optional[Document]:
        def _q():
            return self.conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents WHERE id=?", (document_id,)
            ).fetchone()

        row = await self._run(_q)
        return _row_doc(row) if row else None

    async def update_document(self, doc: Document) -> None:
        doc.updated_at = time.time()
        row = _doc_row(doc)
        sql = """
            UPDATE documents SET
              tenant_id=?, content_type=?, title=?, content=?, summary=?, embedding=?,
              metadata=?, status=?, parent_id=?, chunk_index=?, chunk_count=?,
              source_id=?, source_url=?, language=?, created_at=?, updated_at=?
            WHERE id=?
        """

        def _q():
            with self.conn:
                self.conn.execute(sql, row[1:] + (row[0],))

        await self._run(_q)
        if self.index is not None and doc.status != DocumentStatus.ACTIVE:
            await self.index.delete_many([doc.id])
        else:
            await self._mirror([doc])

    async def delete_document(self, document_id: str) -> bool:
        def _q():
            with self.conn:
                return self.conn.execute("DELETE FROM documents WHERE id=?", (document_id,)).rowcount > 0

        removed = await self._run(_q)
        if removed and self.index is not None:
            await self.index.delete_many([document_id])
        return removed

    async def delete_chunks(self, parent_id: str) -> int:
        def _q():
            with self.conn:
                ids = [r[0] for r in self.conn.execute("SELECT id FROM documents WHERE parent_id=?", (parent_id,))]
                self.conn.execute("DELETE FROM documents WHERE parent_id=?", (parent_id,))
                return ids

        ids = await self._run(_q)
        if ids and self.index is not None:
            await self.index.delete_many(ids)
        return len(ids)

    async def list_documents(
        self,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
        status: Optional[DocumentStatus] = DocumentStatus.ACTIVE,
        parents_only: bool = False,
        with_embedding: bool = False,
    ) -> List[Document]:
        clauses: list[str] = []
        params: list[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id=?")
            params.append(tenant_id)
        if content_type is not None:
            clauses.append("content_type=?")
            params.append(ContentType(content_type).value)
        if status is not None:
            clauses.append("status=?")
            params.append(DocumentStatus(status).value)
        if parents_only:
            clauses.append("parent_id IS NULL")
        if with_embedding:
            clauses.append("embedding IS NOT NULL")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def _q():
            return self.conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents {where} ORDER BY created_at", params
            ).fetchall()

        return [_row_doc(r) for r in await self._run(_q)]

    async def get_chunks(self, parent_id: str) -> List[Document]:
        def _q():
            return self.conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents WHERE parent_id=? ORDER BY chunk_index", (parent_id,)
            ).fetchall()

        return [_row_doc(r) for r in await self._run(_q)]

    async def count_documents(self, tenant_id: Optional[str] = None) -> int:
        def _q():
            if tenant_id is None:
                return self.conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            return self.conn.execute("SELECT COUNT(*) FROM documents WHERE tenant_id=?", (tenant_id,)).fetchone()[0]

        return int(await self._run(_q))

    # --- Side records -------------------------------------------------------

    async def upsert_side_record(self, kind: str, document_id: str, record: Dict[str, Any]) -> None:
        sql = """
            INSERT INTO side_records (document_id, kind, payload, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(document_id, kind) DO UPDATE SET
              payload=excluded.payload,
              updated_at=excluded.updated_at
        """
        payload = json.dumps(record, default=str)

        def _q():
            with self.conn:
                self.conn.execute(sql, (document_id, kind, payload, time.time()))

        await self._run(_q)

    async def get_side_record(self, kind: str, document_id: str) -> Optional[Dict[str, Any]]:
        def _q():
            return self.conn.execute(
                "SELECT payload FROM side_records WHERE document_id=? AND kind=?", (document_id, kind)
            ).fetchone()

        row = await self._run(_q)
        return json.loads(row["payload"]) if row else None

    async def delete_side_records(self, document_id: str) -> int:
        def _q():
            with self.conn:
                return self.conn.execute("DELETE FROM side_records WHERE document_id=?", (document_id,)).rowcount

        return await self._run(_q)

    # --- Clusters -----------------------------------------------------------

    async def create_cluster(self, cluster: Cluster) -> str:
        sql = """
            INSERT INTO clusters (
              id, tenant_id, content_type, name, centroid, member_count,
              average_similarity, metadata, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        row = (
            cluster.id,
            cluster.tenant_id,
            ContentType(cluster.content_type).value,
            cluster.name,
            to_bytes(cluster.centroid),
            cluster.member_count,
            cluster.average_similarity,
            json.dumps(cluster.metadata or {}),
            cluster.created_at,
            cluster.updated_at,
        )

        def _q():
            with self.conn:
                self.conn.execute(sql, row)

        await self._run(_q)
        return cluster.id

    async def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        def _q():
            return self.conn.execute("SELECT * FROM clusters WHERE id=?", (cluster_id,)).fetchone()

        row = await self._run(_q)
        return _row_cluster(row) if row else None

    async def list_clusters(
        self,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
    ) -> List[Cluster]:
        clauses: list[str] = []
        params: list[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id=?")
            params.append(tenant_id)
        if content_type is not None:
            clauses.append("content_type=?")
            params.append(ContentType(content_type).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def _q():
            return self.conn.execute(f"SELECT * FROM clusters {where} ORDER BY created_at", params).fetchall()

        return [_row_cluster(r) for r in await self._run(_q)]

    async def update_cluster(self, cluster: Cluster) -> None:
        cluster.updated_at = time.time()
        sql = """
            UPDATE clusters SET
              name=?, centroid=?, member_count=?, average_similarity=?, metadata=?, updated_at=?
            WHERE id=?
        """
        row = (
            cluster.name,
            to_bytes(cluster.centroid),
            cluster.member_count,
            cluster.average_similarity,
            json.dumps(cluster.metadata or {}),
            cluster.updated_at,
            cluster.id,
        )

        def _q():
            with self.conn:
                self.conn.execute(sql, row)

        await self._run(_q)

    async def delete_cluster(self, cluster_id: str) -> bool:
        def _q():
            with self.conn:
                return self.conn.execute("DELETE FROM clusters WHERE id=?", (cluster_id,)).rowcount > 0

        return await self._run(_q)

    # --- Memberships --------------------------------------------------------

    async def upsert_membership(self, membership: ClusterMembership) -> None:
        sql = """
            INSERT INTO cluster_memberships (document_id, cluster_id, similarity_to_centroid, assigned_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(document_id) DO UPDATE SET
              cluster_id=excluded.cluster_id,
              similarity_to_centroid=excluded.similarity_to_centroid,
              assigned_at=excluded.assigned_at
        """
        row = (
            membership.document_id,
            membership.cluster_id,
            float(membership.similarity_to_centroid),
            membership.assigned_at,
        )

        def _q():
            with self.conn:
                self.conn.execute(sql, row)

        await self._run(_q)

    async def get_membership(self, document_id: str) -> Optional[ClusterMembership]:
        def _q():
            return self.conn.execute(
                "SELECT * FROM cluster_memberships WHERE document_id=?", (document_id,)
            ).fetchone()

        row = await self._run(_q)
        return _row_membership(row) if row else None

    async def list_memberships(
        self,
        *,
        cluster_id: Optional[str] = None,
        document_ids: Optional[Iterable[str]] = None,
    ) -> List[ClusterMembership]:
        clauses: list[str] = []
        params: list[Any] = []
        if cluster_id is not None:
            clauses.append("cluster_id=?")
            params.append(cluster_id)
        if document_ids is not None:
            ids = list(document_ids)
            if not ids:
                return []
            clauses.append(f"document_id IN ({','.join(['?'] * len(ids))})")
            params.extend(ids)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def _q():
            return self.conn.execute(f"SELECT * FROM cluster_memberships {where}", params).fetchall()

        return [_row_membership(r) for r in await self._run(_q)]

    async def delete_membership(self, document_id: str) -> bool:
        def _q():
            with self.conn:
                return self.conn.execute(
                    "DELETE FROM cluster_memberships WHERE document_id=?", (document_id,)
                ).rowcount > 0

        return await self._run(_q)

    # --- Housekeeping -------------------------------------------------------

    async def ping(self) -> bool:
        await self._run(lambda: self.conn.execute("SELECT 1").fetchone())
        if self.index is not None:
            await self.index.ping()
        return True

    async def refresh_analytics(self) -> None:
        """Refresh planner statistics and truncate the WAL."""

        def _q():
            self.conn.execute("ANALYZE;")
            self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")

        await self._run(_q)

    async def close(self) -> None:
        await self._run(self.conn.close)

    # --- Query surface ------------------------------------------------------

    async def similarity_search(
        self,
        embedding,
        *,
        content_type: Optional[ContentType] = None,
        tenant_id: Optional[str] = None,
        threshold: float = 0.7,
        count: int = 10,
        filters: Optional[Metadata] = None,
        exclude_chunks: bool = False,
        min_chunk_similarity: float = 0.8,
    ) -> List[SearchResult]:
        if self.index is None:
            return await super().similarity_search(
                embedding,
                content_type=content_type,
                tenant_id=tenant_id,
                threshold=threshold,
                count=count,
                filters=filters,
                exclude_chunks=exclude_chunks,
                min_chunk_similarity=min_chunk_similarity,
            )

        # Overfetch: metadata and chunk filters run after the ANN lookup.
        candidates = await self.index.search(
            embedding,
            max(count * 4, 50),
            tenant_id=tenant_id,
            content_type=ContentType(content_type).value if content_type is not None else None,
        )
        hits = []
        for doc_id, _ in candidates:
            doc = await self.get_document(doc_id)
            if doc is None or doc.embedding is None or doc.status != DocumentStatus.ACTIVE:
                continue
            if exclude_chunks and doc.is_chunk:
                continue
            if not metadata_matches(doc.metadata, filters):
                continue
            sim = cosine_similarity(doc.embedding, embedding)
            if sim <= threshold or (doc.is_chunk and sim <= min_chunk_similarity):
                continue
            hits.append(to_result(doc, sim))
        hits.sort(key=lambda r: r.similarity, reverse=True)
        return hits[:count]


__all__ = ["SqliteVectorStore", "connect", "migrate"]
