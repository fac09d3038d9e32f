"""
Vector store contract
=====================

A :class:`VectorStore` owns durable documents, side records, clusters and
cluster memberships, and answers the similarity queries the search engine and
cluster manager need.

Concrete stores implement the CRUD primitives. The query surface
(:meth:`VectorStore.similarity_search`, :meth:`VectorStore.hybrid_search`,
:meth:`VectorStore.cluster_search`, :meth:`VectorStore.find_closest_clusters`)
has a brute-force numpy implementation here that backends may override with an
ANN index.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from embedvault.models import (
    ChunkInfo,
    Cluster,
    ClusterInfo,
    ClusterMembership,
    ContentType,
    Document,
    DocumentStatus,
    Metadata,
    SearchResult,
)
from embedvault.similarity import as_vector, lexical_score, similarity_matrix

SIDE_RECORD_KINDS = ("product", "customer", "knowledge")


def metadata_matches(metadata: Metadata, filters: Optional[Metadata]) -> bool:
    """
    JSON-containment check: every filter key must be present with an equal
    value. List filters match when all their items appear in the stored list.
    """
    if not filters:
        return True
    for key, want in filters.items():
        if key not in metadata:
            return False
        have = metadata[key]
        if isinstance(want, list) and isinstance(have, list):
            if not all(item in have for item in want):
                return False
        elif isinstance(want, dict) and isinstance(have, dict):
            if not metadata_matches(have, want):
                return False
        elif have != want:
            return False
    return True


def to_result(doc: Document, similarity: float, **extra: Any) -> SearchResult:
    """Project a stored document into a search hit."""
    return SearchResult(
        id=doc.id,
        content=doc.content,
        title=doc.title or "",
        content_type=doc.content_type,
        metadata=dict(doc.metadata),
        similarity=float(similarity),
        combined_score=extra.pop("combined_score", float(similarity)),
        chunk_info=ChunkInfo(doc.chunk_index, doc.chunk_count, doc.parent_id),
        created_at=doc.created_at,
        **extra,
    )


def _scores(docs: Sequence[Document], embedding) -> np.ndarray:
    if not docs:
        return np.zeros(0)
    matrix = np.stack([as_vector(d.embedding) for d in docs])
    return similarity_matrix(matrix, as_vector(embedding)[None, :])[:, 0]


class VectorStore(ABC):
    """Async storage + similarity query surface."""

    # --- Documents ----------------------------------------------------------

    @abstractmethod
    async def insert_document(self, doc: Document) -> str:
        """Persist ``doc`` and return its id."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        """Return the document or ``None``."""

    @abstractmethod
    async def update_document(self, doc: Document) -> None:
        """Overwrite an existing document row."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        """Delete one document row; ``True`` if it existed."""

    @abstractmethod
    async def delete_chunks(self, parent_id: str) -> int:
        """Delete every chunk of ``parent_id``; returns the number removed."""

    @abstractmethod
    async def list_documents(
        self,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
        status: Optional[DocumentStatus] = DocumentStatus.ACTIVE,
        parents_only: bool = False,
        with_embedding: bool = False,
    ) -> List[Document]:
        """Return documents matching the filters."""

    @abstractmethod
    async def get_chunks(self, parent_id: str) -> List[Document]:
        """Return the chunks of ``parent_id`` ordered by ``chunk_index``."""

    # --- Side records -------------------------------------------------------

    @abstractmethod
    async def upsert_side_record(self, kind: str, document_id: str, record: Dict[str, Any]) -> None:
        """Insert or replace a content-type side record."""

    @abstractmethod
    async def get_side_record(self, kind: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Return a side record or ``None``."""

    @abstractmethod
    async def delete_side_records(self, document_id: str) -> int:
        """Delete every side record for ``document_id``."""

    # --- Clusters -----------------------------------------------------------

    @abstractmethod
    async def create_cluster(self, cluster: Cluster) -> str:
        """Persist a new cluster and return its id."""

    @abstractmethod
    async def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        """Return the cluster or ``None``."""

    @abstractmethod
    async def list_clusters(
        self,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
    ) -> List[Cluster]:
        """Return clusters matching the filters."""

    @abstractmethod
    async def update_cluster(self, cluster: Cluster) -> None:
        """Overwrite an existing cluster row."""

    @abstractmethod
    async def delete_cluster(self, cluster_id: str) -> bool:
        """Delete one cluster; ``True`` if it existed."""

    # --- Memberships --------------------------------------------------------

    @abstractmethod
    async def upsert_membership(self, membership: ClusterMembership) -> None:
        """Insert or replace the membership row for ``membership.document_id``."""

    @abstractmethod
    async def get_membership(self, document_id: str) -> Optional[ClusterMembership]:
        """Return the document's membership or ``None``."""

    @abstractmethod
    async def list_memberships(
        self,
        *,
        cluster_id: Optional[str] = None,
        document_ids: Optional[Iterable[str]] = None,
    ) -> List[ClusterMembership]:
        """Return memberships filtered by cluster and/or document ids."""

    @abstractmethod
    async def delete_membership(self, document_id: str) -> bool:
        """Remove the document from its cluster; ``True`` if it had one."""

    # --- Housekeeping -------------------------------------------------------

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap connectivity probe; raises on failure."""

    async def refresh_analytics(self) -> None:
        """Refresh any derived statistics the backend keeps."""
        return None

    async def count_documents(self, tenant_id: Optional[str] = None) -> int:
        return len(await self.list_documents(tenant_id=tenant_id, status=None))

    async def close(self) -> None:
        return None

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
        """
        Active, embedded documents with similarity above ``threshold``.

        Chunks must additionally clear ``min_chunk_similarity`` and are dropped
        entirely when ``exclude_chunks`` is set.
        """
        docs = [
            d
            for d in await self.list_documents(
                tenant_id=tenant_id, content_type=content_type, with_embedding=True
            )
            if metadata_matches(d.metadata, filters) and not (exclude_chunks and d.is_chunk)
        ]
        hits: List[Tuple[Document, float]] = []
        for doc, sim in zip(docs, _scores(docs, embedding)):
            sim = float(sim)
            if sim <= threshold:
                continue
            if doc.is_chunk and sim <= min_chunk_similarity:
                continue
            hits.append((doc, sim))
        hits.sort(key=lambda h: h[1], reverse=True)
        return [to_result(d, s) for d, s in hits[:count]]

    async def hybrid_search(
        self,
        text: str,
        embedding,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[ContentType] = None,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
        count: int = 10,
        threshold: float = 0.5,
    ) -> List[SearchResult]:
        """Weighted blend of vector similarity and lexical term overlap."""
        docs = await self.list_documents(tenant_id=tenant_id, content_type=content_type, with_embedding=True)
        hits: List[SearchResult] = []
        for doc, sim in zip(docs, _scores(docs, embedding)):
            text_sim = lexical_score(text, doc.title or "", doc.content)
            combined = vector_weight * float(sim) + text_weight * text_sim
            if combined <= threshold:
                continue
            hits.append(to_result(doc, float(sim), text_similarity=text_sim, combined_score=combined))
        hits.sort(key=lambda r: r.combined_score or 0.0, reverse=True)
        return hits[:count]

    async def cluster_search(
        self,
        embedding,
        *,
        content_type: Optional[ContentType] = None,
        tenant_id: Optional[str] = None,
        cluster_count: int = 3,
        docs_per_cluster: int = 5,
    ) -> List[SearchResult]:
        """Search only the members of the ``cluster_count`` nearest clusters."""
        top = await self.find_closest_clusters(
            embedding, content_type=content_type, tenant_id=tenant_id, limit=cluster_count
        )
        results: List[SearchResult] = []
        for cluster, _ in top:
            ids = [m.document_id for m in await self.list_memberships(cluster_id=cluster.id)]
            docs = []
            for did in ids:
                doc = await self.get_document(did)
                if doc is not None and doc.status == DocumentStatus.ACTIVE and doc.embedding is not None:
                    docs.append(doc)
            scored = sorted(zip(docs, _scores(docs, embedding)), key=lambda h: h[1], reverse=True)
            info = ClusterInfo(cluster.id, cluster.name)
            results.extend(to_result(d, float(s), cluster_info=info) for d, s in scored[:docs_per_cluster])
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    async def find_closest_clusters(
        self,
        embedding,
        *,
        content_type: Optional[ContentType] = None,
        tenant_id: Optional[str] = None,
        limit: int = 1,
    ) -> List[Tuple[Cluster, float]]:
        """Clusters ordered by centroid similarity to ``embedding``."""
        clusters = [
            c for c in await self.list_clusters(tenant_id=tenant_id, content_type=content_type)
            if c.centroid is not None and c.centroid.size == as_vector(embedding).size
        ]
        if not clusters:
            return []
        sims = similarity_matrix(np.stack([c.centroid for c in clusters]), as_vector(embedding)[None, :])[:, 0]
        ranked = sorted(zip(clusters, (float(s) for s in sims)), key=lambda p: p[1], reverse=True)
        return ranked[:limit]
