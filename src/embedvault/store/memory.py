"""In-process store used by tests and single-process deployments."""

from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from embedvault.models import (
    Cluster,
    ClusterMembership,
    ContentType,
    Document,
    DocumentStatus,
)

from .base import VectorStore


def _clone(obj):
    return copy.deepcopy(obj)


class InMemoryVectorStore(VectorStore):
    """
    Dict-backed store. Every read returns a copy so callers cannot mutate
    stored rows behind the store's back.
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Document] = {}
        self._side: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._clusters: Dict[str, Cluster] = {}
        self._members: Dict[str, ClusterMembership] = {}
        self._lock = asyncio.Lock()

    # --- Documents ----------------------------------------------------------

    async def insert_document(self, doc: Document) -> str:
        async with self._lock:
            self._docs[doc.id] = _clone(doc)
        return doc.id

    async def get_document(self, document_id: str) -> Optional[Document]:
        doc = self._docs.get(document_id)
        return _clone(doc) if doc is not None else None

    async def update_document(self, doc: Document) -> None:
        async with self._lock:
            doc.updated_at = time.time()
            self._docs[doc.id] = _clone(doc)

    async def delete_document(self, document_id: str) -> bool:
        async with self._lock:
            return self._docs.pop(document_id, None) is not None

    async def delete_chunks(self, parent_id: str) -> int:
        async with self._lock:
            ids = [d.id for d in self._docs.values() if d.parent_id == parent_id]
            for did in ids:
                del self._docs[did]
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
        out = []
        for doc in self._docs.values():
            if tenant_id is not None and doc.tenant_id != tenant_id:
                continue
            if content_type is not None and doc.content_type != content_type:
                continue
            if status is not None and doc.status != status:
                continue
            if parents_only and doc.is_chunk:
                continue
            if with_embedding and doc.embedding is None:
                continue
            out.append(_clone(doc))
        out.sort(key=lambda d: d.created_at)
        return out

    async def get_chunks(self, parent_id: str) -> List[Document]:
        chunks = [_clone(d) for d in self._docs.values() if d.parent_id == parent_id]
        return sorted(chunks, key=lambda d: d.chunk_index)

    # --- Side records -------------------------------------------------------

    async def upsert_side_record(self, kind: str, document_id: str, record: Dict[str, Any]) -> None:
        async with self._lock:
            self._side[(kind, document_id)] = _clone(record)

    async def get_side_record(self, kind: str, document_id: str) -> Optional[Dict[str, Any]]:
        rec = self._side.get((kind, document_id))
        return _clone(rec) if rec is not None else None

    async def delete_side_records(self, document_id: str) -> int:
        async with self._lock:
            keys = [k for k in self._side if k[1] == document_id]
            for k in keys:
                del self._side[k]
            return len(keys)

    # --- Clusters -----------------------------------------------------------

    async def create_cluster(self, cluster: Cluster) -> str:
        async with self._lock:
            self._clusters[cluster.id] = _clone(cluster)
        return cluster.id

    async def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        c = self._clusters.get(cluster_id)
        return _clone(c) if c is not None else None

    async def list_clusters(
        self,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
    ) -> List[Cluster]:
        return [
            _clone(c)
            for c in self._clusters.values()
            if (tenant_id is None or c.tenant_id == tenant_id)
            and (content_type is None or c.content_type == content_type)
        ]

    async def update_cluster(self, cluster: Cluster) -> None:
        async with self._lock:
            cluster.updated_at = time.time()
            self._clusters[cluster.id] = _clone(cluster)

    async def delete_cluster(self, cluster_id: str) -> bool:
        async with self._lock:
            if self._clusters.pop(cluster_id, None) is None:
                return False
            # Memberships reference the cluster; drop them with it.
            for did in [d for d, m in self._members.items() if m.cluster_id == cluster_id]:
                del self._members[did]
            return True

    # --- Memberships --------------------------------------------------------

    async def upsert_membership(self, membership: ClusterMembership) -> None:
        async with self._lock:
            self._members[membership.document_id] = _clone(membership)

    async def get_membership(self, document_id: str) -> Optional[ClusterMembership]:
        m = self._members.get(document_id)
        return _clone(m) if m is not None else None

    async def list_memberships(
        self,
        *,
        cluster_id: Optional[str] = None,
        document_ids: Optional[Iterable[str]] = None,
    ) -> List[ClusterMembership]:
        wanted = set(document_ids) if document_ids is not None else None
        return [
            _clone(m)
            for m in self._members.values()
            if (cluster_id is None or m.cluster_id == cluster_id)
            and (wanted is None or m.document_id in wanted)
        ]

    async def delete_membership(self, document_id: str) -> bool:
        async with self._lock:
            return self._members.pop(document_id, None) is not None

    async def ping(self) -> bool:
        return True
