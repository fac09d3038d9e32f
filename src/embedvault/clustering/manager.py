"""
Cluster manager
===============

Keeps every embedded document in at most one similarity cluster per
(tenant, content type).

- Greedy assignment: reuse the closest cluster above ``similarity_threshold``,
  otherwise open a new one while under ``max_clusters``, otherwise force the
  closest one. The owning centroid is recomputed from all members afterwards.
- Reassignment only moves a document when it gains more than
  ``rebalance_threshold`` similarity.
- Rebalancing runs k-means per (tenant, content type) and migrates
  memberships to the result.

Nothing here is locked; concurrent indexing may briefly see stale counts or
centroids until the next assignment or rebalance.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np

from embedvault.errors import ClusteringError, EmbedVaultError, NotFoundError
from embedvault.models import (
    AssignmentResult,
    Cluster,
    ClusterMembership,
    ClusterStats,
    ContentType,
    Document,
    Metadata,
    ReassignmentResult,
    RebalanceResult,
)
from embedvault.similarity import cosine_similarity, mean_vector, similarity_matrix
from embedvault.store.base import VectorStore

from .kmeans import calculate_optimal_k, perform_kmeans

logger = logging.getLogger(__name__)

# Rebalanced centroids at least this similar are treated as one cluster.
MERGE_THRESHOLD = 0.98

SILHOUETTE_PLACEHOLDER = 0.5


@dataclass(slots=True)
class ClusteringConfig:
    similarity_threshold: float = 0.8
    max_clusters: int = 50
    min_documents_per_cluster: int = 5
    rebalance_threshold: float = 0.1
    max_iterations: int = 10
    convergence_threshold: float = 0.01
    rebalance_interval: float = 86400.0
    seed: Optional[int] = None


@dataclass(slots=True)
class ClusterDocument:
    id: str
    title: str
    content: str
    similarity: float
    metadata: Metadata = field(default_factory=dict)


@dataclass(slots=True)
class SimilarCluster:
    id: str
    name: str
    similarity: float
    member_count: int


def cluster_name(content_type: ContentType, metadata: Optional[Metadata] = None) -> str:
    """Human-readable name derived from the content type and seed metadata."""
    meta = metadata or {}
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    ctype = ContentType(content_type)
    if ctype == ContentType.PRODUCT:
        return f"Products: {meta.get('category') or meta.get('product_type') or meta.get('productType') or 'general'} ({stamp})"
    if ctype == ContentType.KNOWLEDGE_BASE:
        return f"Knowledge: {meta.get('category') or 'general'} ({stamp})"
    if ctype == ContentType.REVIEW:
        return f"Reviews: {meta.get('sentiment') or 'mixed'} sentiment ({stamp})"
    if ctype == ContentType.CUSTOMER:
        return f"Customer: {meta.get('interaction_type') or 'general'} ({stamp})"
    return f"{ctype.value}: Auto-cluster ({stamp})"


class ClusterManager:
    def __init__(
        self,
        store: VectorStore,
        config: Optional[ClusteringConfig] = None,
        *,
        tenant_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.config = config or ClusteringConfig()
        self.tenant_id = tenant_id
        self._rng = np.random.default_rng(self.config.seed)

    # --- Assignment ---------------------------------------------------------

    async def assign_document_to_cluster(self, document_id: str) -> AssignmentResult:
        """
        :raises NotFoundError: unknown document.
        :raises ClusteringError: no embedding, or a store call failed.
        """
        doc = await self._embedded_document(document_id)
        try:
            previous = await self.store.get_membership(doc.id)
            assignment = await self._find_best_cluster(doc)
            await self.store.upsert_membership(
                ClusterMembership(doc.id, assignment.cluster_id, assignment.similarity)
            )
            await self.update_cluster_centroid(assignment.cluster_id)
            if previous is not None and previous.cluster_id != assignment.cluster_id:
                await self.update_cluster_centroid(previous.cluster_id)
        except EmbedVaultError as e:
            if isinstance(e, ClusteringError):
                raise
            raise ClusteringError(f"Cluster assignment failed for {document_id}: {e}") from e

        logger.info(
            "Assigned %s to cluster %s (similarity=%.3f new=%s)",
            doc.id, assignment.cluster_id, assignment.similarity, assignment.new_cluster_created,
        )
        return assignment

    async def reassign_document(self, document_id: str) -> ReassignmentResult:
        """Move ``document_id`` only if the best cluster beats its current one by more than the threshold."""
        current = await self.store.get_membership(document_id)
        if current is None:
            result = await self.assign_document_to_cluster(document_id)
            return ReassignmentResult(reassigned=True, new_cluster_id=result.cluster_id)

        doc = await self._embedded_document(document_id)
        try:
            best = await self._find_best_cluster(doc)
            improvement = best.similarity - current.similarity_to_centroid

            if best.cluster_id != current.cluster_id and improvement > self.config.rebalance_threshold:
                await self.store.delete_membership(document_id)
                await self.store.upsert_membership(ClusterMembership(document_id, best.cluster_id, best.similarity))
                await self.update_cluster_centroid(current.cluster_id)
                await self.update_cluster_centroid(best.cluster_id)
                logger.info(
                    "Reassigned %s from %s to %s (improvement=%.3f)",
                    document_id, current.cluster_id, best.cluster_id, improvement,
                )
                return ReassignmentResult(
                    reassigned=True,
                    old_cluster_id=current.cluster_id,
                    new_cluster_id=best.cluster_id,
                    improvement_score=improvement,
                )

            if best.new_cluster_created:
                # Opened speculatively but not used; let cleanup drop it.
                await self.update_cluster_centroid(best.cluster_id)
        except EmbedVaultError as e:
            raise ClusteringError(f"Document reassignment failed for {document_id}: {e}") from e

        return ReassignmentResult(reassigned=False, improvement_score=improvement)

    async def update_cluster_centroid(self, cluster_id: str) -> None:
        """Recompute centroid, member count and average similarity from all members."""
        cluster = await self.store.get_cluster(cluster_id)
        if cluster is None:
            return

        embeddings = []
        for m in await self.store.list_memberships(cluster_id=cluster_id):
            doc = await self.store.get_document(m.document_id)
            if doc is not None and doc.embedding is not None:
                embeddings.append(doc.embedding)

        if not embeddings:
            cluster.member_count = 0
            await self.store.update_cluster(cluster)
            return

        centroid = mean_vector(embeddings)
        cluster.centroid = centroid
        cluster.member_count = len(embeddings)
        cluster.average_similarity = float(np.mean([cosine_similarity(e, centroid) for e in embeddings]))
        await self.store.update_cluster(cluster)

    # --- Rebalancing --------------------------------------------------------

    async def rebalance_clusters(self, content_type: Optional[ContentType] = None) -> RebalanceResult:
        started = time.perf_counter()
        logger.info("Starting cluster rebalance (content_type=%s)", content_type)

        try:
            docs = await self.store.list_documents(
                tenant_id=self.tenant_id, content_type=content_type, parents_only=True, with_embedding=True
            )
            groups: Dict[Tuple[str, ContentType], List[Document]] = {}
            for d in docs:
                groups.setdefault((d.tenant_id, ContentType(d.content_type)), []).append(d)

            total = RebalanceResult()
            scores: List[float] = []
            for (tenant, ctype), members in groups.items():
                part = await self._rebalance_group(tenant, ctype, members)
                total.clusters_created += part.clusters_created
                total.documents_moved += part.documents_moved
                total.iterations = max(total.iterations, part.iterations)
                total.converged = total.converged and part.converged
                if part.documents_moved:
                    scores.append(part.improvement_score)

            total.clusters_deleted = await self.cleanup_empty_clusters()
        except EmbedVaultError as e:
            raise ClusteringError(f"Rebalancing failed: {e}") from e

        total.improvement_score = float(np.mean(scores)) if scores else 0.0
        total.processing_time = time.perf_counter() - started
        logger.info(
            "Cluster rebalance completed (created=%d deleted=%d moved=%d improvement=%.3f)",
            total.clusters_created, total.clusters_deleted, total.documents_moved, total.improvement_score,
        )
        return total

    async def _rebalance_group(self, tenant_id: str, content_type: ContentType, docs: List[Document]) -> RebalanceResult:
        embeddings = [d.embedding for d in docs]
        k = calculate_optimal_k(
            embeddings,
            max_clusters=self.config.max_clusters,
            convergence_threshold=self.config.convergence_threshold,
            rng=self._rng,
        )
        result = perform_kmeans(
            embeddings,
            k,
            max_iterations=self.config.max_iterations,
            convergence_threshold=self.config.convergence_threshold,
            rng=self._rng,
        )
        centroids, assignments = _merge_duplicates(embeddings, result.centroids, result.assignments)

        existing = await self.store.list_clusters(tenant_id=tenant_id, content_type=content_type)
        targets, created = await self._target_clusters(tenant_id, content_type, centroids, existing)

        current = {m.document_id: m.cluster_id for m in await self.store.list_memberships(document_ids=[d.id for d in docs])}
        moved = 0
        moved_similarity = 0.0
        for doc, label in zip(docs, assignments):
            cluster_id = targets[label]
            similarity = cosine_similarity(doc.embedding, centroids[label])
            await self.store.upsert_membership(ClusterMembership(doc.id, cluster_id, similarity))
            if current.get(doc.id) != cluster_id:
                moved += 1
                moved_similarity += similarity

        for cluster_id in set(targets) | {c.id for c in existing}:
            await self.update_cluster_centroid(cluster_id)

        return RebalanceResult(
            clusters_created=created,
            documents_moved=moved,
            improvement_score=moved_similarity / moved if moved else 0.0,
            converged=result.converged,
            iterations=result.iterations,
        )

    async def _target_clusters(
        self,
        tenant_id: str,
        content_type: ContentType,
        centroids: List[np.ndarray],
        existing: List[Cluster],
    ) -> Tuple[List[str], int]:
        """
        Map each centroid to a cluster id, reusing an existing cluster whose
        centroid clears ``similarity_threshold`` (one-to-one, best first).
        """
        targets: List[Optional[str]] = [None] * len(centroids)
        usable = [c for c in existing if c.centroid is not None and c.centroid.size == centroids[0].size]
        if usable:
            sims = similarity_matrix(np.stack(centroids), np.stack([c.centroid for c in usable]))
            taken: set[int] = set()
            for flat in np.argsort(-sims, axis=None):
                i, j = np.unravel_index(flat, sims.shape)
                if sims[i, j] < self.config.similarity_threshold:
                    break
                if targets[i] is None and j not in taken:
                    targets[i] = usable[j].id
                    taken.add(int(j))

        created = 0
        for i, centroid in enumerate(centroids):
            if targets[i] is not None:
                continue
            cluster = Cluster(
                name=f"{content_type.value}: Rebalanced Cluster {i + 1} ({datetime.now(timezone.utc):%Y-%m-%d})",
                content_type=content_type,
                tenant_id=tenant_id,
                centroid=np.asarray(centroid, dtype=np.float32),
                average_similarity=0.0,
                metadata={"rebalanced": True, "rebalance_date": time.time(), "algorithm": "k-means"},
            )
            targets[i] = await self.store.create_cluster(cluster)
            created += 1
        return [t for t in targets if t is not None], created

    async def cleanup_empty_clusters(self) -> int:
        """Delete clusters without members; best effort, returns the count removed."""
        deleted = 0
        try:
            for cluster in await self.store.list_clusters(tenant_id=self.tenant_id):
                if cluster.member_count == 0 and not await self.store.list_memberships(cluster_id=cluster.id):
                    if await self.store.delete_cluster(cluster.id):
                        deleted += 1
        except EmbedVaultError as e:
            logger.error("Empty cluster cleanup failed: %s", e)
        if deleted:
            logger.info("Removed %d empty clusters", deleted)
        return deleted

    # --- Reporting ----------------------------------------------------------

    async def get_cluster_stats(self) -> ClusterStats:
        clusters = await self.store.list_clusters(tenant_id=self.tenant_id)
        total = len(clusters)
        by_type: Dict[str, int] = {}
        sizes = {"small": 0, "medium": 0, "large": 0}
        for c in clusters:
            key = ContentType(c.content_type).value
            by_type[key] = by_type.get(key, 0) + 1
            if c.member_count < 10:
                sizes["small"] += 1
            elif c.member_count <= 50:
                sizes["medium"] += 1
            else:
                sizes["large"] += 1

        return ClusterStats(
            total_clusters=total,
            clusters_by_type=by_type,
            average_cluster_size=sum(c.member_count for c in clusters) / total if total else 0.0,
            size_distribution=sizes,
            average_intra_cluster_similarity=sum(c.average_similarity for c in clusters) / total if total else 0.0,
            average_inter_cluster_distance=_inter_cluster_distance(clusters),
            silhouette_score=SILHOUETTE_PLACEHOLDER,
            last_rebalance=max((c.updated_at for c in clusters), default=None),
        )

    async def get_cluster_documents(self, cluster_id: str, limit: int = 50) -> List[ClusterDocument]:
        if await self.store.get_cluster(cluster_id) is None:
            raise NotFoundError("Cluster", cluster_id)
        members = sorted(
            await self.store.list_memberships(cluster_id=cluster_id),
            key=lambda m: m.similarity_to_centroid,
            reverse=True,
        )
        out: List[ClusterDocument] = []
        for m in members:
            if len(out) >= limit:
                break
            doc = await self.store.get_document(m.document_id)
            if doc is not None:
                out.append(ClusterDocument(doc.id, doc.title or "", doc.content, m.similarity_to_centroid, dict(doc.metadata)))
        return out

    async def find_similar_clusters(self, cluster_id: str, limit: int = 5) -> List[SimilarCluster]:
        ref = await self.store.get_cluster(cluster_id)
        if ref is None:
            raise NotFoundError("Cluster", cluster_id)
        others = [
            c for c in await self.store.list_clusters(tenant_id=ref.tenant_id, content_type=ref.content_type)
            if c.id != cluster_id
        ]
        ranked = sorted(
            (
                SimilarCluster(
                    c.id,
                    c.name,
                    cosine_similarity(ref.centroid, c.centroid) if c.centroid.size == ref.centroid.size else 0.0,
                    c.member_count,
                )
                for c in others
            ),
            key=lambda s: s.similarity,
            reverse=True,
        )
        return ranked[:limit]

    # --- Internals ----------------------------------------------------------

    async def _embedded_document(self, document_id: str) -> Document:
        doc = await self.store.get_document(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        if doc.embedding is None:
            raise ClusteringError(f"Document has no embedding: {document_id}")
        return doc

    async def _find_best_cluster(self, doc: Document) -> AssignmentResult:
        clusters = [
            c for c in await self.store.list_clusters(tenant_id=doc.tenant_id, content_type=doc.content_type)
            if c.member_count > 0 and c.centroid is not None and c.centroid.size == doc.embedding.size
        ]

        best: Optional[Cluster] = None
        best_sim = 0.0
        for c in clusters:
            sim = cosine_similarity(doc.embedding, c.centroid)
            if sim > best_sim:
                best, best_sim = c, sim

        if best is not None and best_sim >= self.config.similarity_threshold:
            return AssignmentResult(best.id, best_sim, False)

        if len(clusters) < self.config.max_clusters or best is None:
            cluster = Cluster(
                name=cluster_name(doc.content_type, doc.metadata),
                content_type=ContentType(doc.content_type),
                tenant_id=doc.tenant_id,
                centroid=np.array(doc.embedding, dtype=np.float32, copy=True),
                metadata={"auto_created": True, "creation_threshold": self.config.similarity_threshold},
            )
            await self.store.create_cluster(cluster)
            logger.info("Created cluster %s (%s)", cluster.id, cluster.name)
            return AssignmentResult(cluster.id, 1.0, True)

        # At capacity: bounded growth wins over the threshold.
        return AssignmentResult(best.id, best_sim, False)


def _merge_duplicates(
    embeddings: List[np.ndarray], centroids: List[np.ndarray], assignments: List[int]
) -> Tuple[List[np.ndarray], List[int]]:
    """
    Collapse non-empty k-means clusters whose centroids are near-identical and
    drop empty ones. Returns recomputed centroids and relabelled assignments.
    """
    used = sorted(set(assignments))
    reps: List[int] = []
    label_of: Dict[int, int] = {}
    for c in used:
        for pos, r in enumerate(reps):
            if cosine_similarity(centroids[c], centroids[r]) >= MERGE_THRESHOLD:
                label_of[c] = pos
                break
        else:
            label_of[c] = len(reps)
            reps.append(c)

    labels = [label_of[a] for a in assignments]
    merged = [
        mean_vector([e for e, lbl in zip(embeddings, labels) if lbl == i])
        for i in range(len(reps))
    ]
    return merged, labels


def _inter_cluster_distance(clusters: List[Cluster]) -> float:
    total = 0.0
    pairs = 0
    for i in range(len(clusters)):
        for j in range(i + 1, len(clusters)):
            a, b = clusters[i].centroid, clusters[j].centroid
            if a is not None and b is not None and a.size == b.size:
                total += 1.0 - cosine_similarity(a, b)
                pairs += 1
    return total / pairs if pairs else 0.0


__all__ = [
    "ClusterManager",
    "ClusteringConfig",
    "ClusterDocument",
    "SimilarCluster",
    "cluster_name",
    "MERGE_THRESHOLD",
]
