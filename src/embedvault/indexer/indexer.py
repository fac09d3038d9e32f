"""
Document indexer
================

Turns raw text into stored, embedded documents:

1. extractive summary + sentence-aware chunking
2. one ``embed_batch`` call for every chunk
3. parent row (first chunk's embedding), then one child row per chunk
4. best-effort side record and cluster assignment

Only a failed embedding call or a failed parent insert fails the operation;
chunk insert failures are reported on :attr:`IndexingResult.errors`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from embedvault.errors import NotFoundError
from embedvault.models import (
    BatchIndexingResult,
    ContentType,
    Document,
    IndexingOptions,
    IndexingResult,
    Metadata,
)
from embedvault.providers.base import EmbeddingProvider
from embedvault.store.base import VectorStore

from .chunking import build_chunk_text, create_chunks, generate_summary
from .side_records import build_side_record

if TYPE_CHECKING:
    from embedvault.clustering.manager import ClusterManager

logger = logging.getLogger(__name__)

BatchItem = Tuple[str, str, IndexingOptions]


@dataclass(slots=True)
class IndexingStats:
    total_documents: int
    documents_by_type: Dict[str, int]
    total_chunks: int
    average_chunks_per_document: float
    last_indexed_at: Optional[float]


class DocumentIndexer:
    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        *,
        cluster_manager: Optional["ClusterManager"] = None,
        batch_size: int = 10,
        batch_delay: float = 1.0,
        max_chunk_size: int = 1000,
        overlap_size: int = 100,
    ) -> None:
        self.provider = provider
        self.store = store
        self.cluster_manager = cluster_manager
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size

    async def index_document(
        self,
        content: str,
        title: str,
        options: IndexingOptions,
        *,
        document_id: Optional[str] = None,
    ) -> IndexingResult:
        """
        Index one document. Never raises; failures come back as
        ``success=False`` with the reason in ``errors``.

        :param document_id: Reuse this id for the parent row (reindexing).
        """
        started = time.perf_counter()
        errors: List[str] = []

        try:
            summary = generate_summary(content)
            chunks = create_chunks(
                content,
                title,
                summary,
                max_chunk_size=options.max_chunk_size,
                overlap_size=options.overlap_size,
            )
            batch = await self.provider.embed_batch(
                [build_chunk_text(c) for c in chunks], batch_size=options.batch_size
            )

            parent = Document(
                content=content,
                title=title,
                summary=summary,
                content_type=ContentType(options.content_type),
                tenant_id=options.tenant_id,
                embedding=batch.vectors[0],
                metadata=dict(options.metadata or {}),
                chunk_count=len(chunks),
                source_id=options.source_id,
                source_url=options.source_url,
                language=options.language or "en",
            )
            if document_id:
                parent.id = document_id
            await self.store.insert_document(parent)
        except Exception as e:
            logger.error("Document indexing failed (title=%r): %s", title, e)
            return IndexingResult(
                document_id="",
                chunk_ids=[],
                total_chunks=0,
                processing_time=time.perf_counter() - started,
                token_count=0,
                success=False,
                errors=[str(e)],
            )

        chunk_ids: List[str] = []
        tokens = 0
        if len(chunks) > 1:
            for i, chunk in enumerate(chunks):
                child = Document(
                    content=chunk.content,
                    title=chunk.title or title,
                    summary=chunk.summary,
                    content_type=parent.content_type,
                    tenant_id=parent.tenant_id,
                    embedding=batch.vectors[i],
                    metadata={**chunk.metadata, "chunk_index": i, "chunk_count": len(chunks)},
                    parent_id=parent.id,
                    chunk_index=i,
                    chunk_count=len(chunks),
                    source_id=parent.source_id,
                    source_url=parent.source_url,
                    language=parent.language,
                )
                try:
                    chunk_ids.append(await self.store.insert_document(child))
                    tokens += batch.token_share(i)
                except Exception as e:
                    logger.error("Failed to insert chunk %d of %s: %s", i, parent.id, e)
                    errors.append(f"Chunk {i}: {e}")
        else:
            chunk_ids.append(parent.id)
            tokens = batch.total_tokens

        await self._write_side_record(parent.id, options)

        if options.enable_clustering:
            await self._assign_cluster(parent.id)

        elapsed = time.perf_counter() - started
        logger.info(
            "Indexed document %s (chunks=%d tokens=%d errors=%d in %.2fs)",
            parent.id, len(chunk_ids), tokens, len(errors), elapsed,
        )
        return IndexingResult(
            document_id=parent.id,
            chunk_ids=chunk_ids,
            total_chunks=len(chunks),
            processing_time=elapsed,
            token_count=tokens,
            success=True,
            errors=errors or None,
        )

    async def index_documents(self, documents: Sequence[BatchItem]) -> BatchIndexingResult:
        """
        Index ``(content, title, options)`` triples in fixed sub-batches.

        Documents inside a sub-batch run concurrently; one failure never
        aborts its siblings.
        """
        started = time.perf_counter()
        results: List[IndexingResult] = []

        logger.info("Starting batch indexing (documents=%d)", len(documents))

        for i in range(0, len(documents), self.batch_size):
            batch = documents[i : i + self.batch_size]
            settled = await asyncio.gather(
                *(self.index_document(content, title, opts) for content, title, opts in batch),
                return_exceptions=True,
            )
            for outcome in settled:
                if isinstance(outcome, BaseException):
                    results.append(
                        IndexingResult("", [], 0, 0.0, 0, False, [str(outcome) or "Batch processing failed"])
                    )
                else:
                    results.append(outcome)

            if i + self.batch_size < len(documents):
                await asyncio.sleep(self.batch_delay)

        successes = sum(1 for r in results if r.success)
        total_chunks = sum(r.total_chunks for r in results)
        summary = BatchIndexingResult(
            results=results,
            total_documents=len(documents),
            success_count=successes,
            failure_count=len(results) - successes,
            total_processing_time=time.perf_counter() - started,
            total_tokens=sum(r.token_count for r in results),
            average_chunks_per_document=total_chunks / len(documents) if documents else 0.0,
        )
        logger.info(
            "Batch indexing completed (ok=%d failed=%d tokens=%d)",
            summary.success_count, summary.failure_count, summary.total_tokens,
        )
        return summary

    async def reindex_document(
        self,
        document_id: str,
        *,
        content: Optional[str] = None,
        title: Optional[str] = None,
        metadata: Optional[Metadata] = None,
        enable_clustering: bool = True,
    ) -> IndexingResult:
        """
        Delete the document with all dependents and index it again under the
        same id, optionally with replacement content/title/metadata.

        :raises NotFoundError: if ``document_id`` does not exist.
        """
        doc = await self.store.get_document(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        if doc.parent_id is not None:
            return await self.reindex_document(
                doc.parent_id, content=content, title=title, metadata=metadata, enable_clustering=enable_clustering
            )

        await self.delete_document_and_chunks(document_id)

        options = IndexingOptions(
            content_type=doc.content_type,
            tenant_id=doc.tenant_id,
            max_chunk_size=self.max_chunk_size,
            overlap_size=self.overlap_size,
            enable_clustering=enable_clustering and self.cluster_manager is not None,
            source_id=doc.source_id,
            source_url=doc.source_url,
            language=doc.language,
            metadata=dict(metadata if metadata is not None else doc.metadata),
        )
        return await self.index_document(
            content if content is not None else doc.content,
            title if title is not None else doc.title,
            options,
            document_id=document_id,
        )

    async def delete_document_and_chunks(self, document_id: str) -> None:
        """
        Remove side records, cluster memberships, chunks and the parent row.

        :raises NotFoundError: if ``document_id`` does not exist.
        """
        doc = await self.store.get_document(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)

        chunks = await self.store.get_chunks(document_id)
        await self.store.delete_side_records(document_id)

        touched: set[str] = set()
        for did in [document_id, *(c.id for c in chunks)]:
            membership = await self.store.get_membership(did)
            if membership is not None:
                touched.add(membership.cluster_id)
                await self.store.delete_membership(did)

        await self.store.delete_chunks(document_id)
        await self.store.delete_document(document_id)

        if self.cluster_manager is not None:
            for cluster_id in touched:
                try:
                    await self.cluster_manager.update_cluster_centroid(cluster_id)
                except Exception as e:
                    logger.warning("Failed to refresh cluster %s after delete: %s", cluster_id, e)

        logger.info("Deleted document %s with %d chunks", document_id, len(chunks))

    async def get_indexing_stats(self, tenant_id: Optional[str] = None) -> IndexingStats:
        docs = await self.store.list_documents(tenant_id=tenant_id, status=None)
        parents = [d for d in docs if not d.is_chunk]
        by_type: Dict[str, int] = {}
        for d in parents:
            key = ContentType(d.content_type).value
            by_type[key] = by_type.get(key, 0) + 1
        chunks = len(docs) - len(parents)
        return IndexingStats(
            total_documents=len(parents),
            documents_by_type=by_type,
            total_chunks=chunks,
            average_chunks_per_document=chunks / len(parents) if parents else 0.0,
            last_indexed_at=max((d.created_at for d in docs), default=None),
        )

    async def _write_side_record(self, document_id: str, options: IndexingOptions) -> None:
        try:
            built = build_side_record(options)
            if built is not None:
                kind, record = built
                await self.store.upsert_side_record(kind, document_id, record)
        except Exception as e:
            logger.error("Failed to write side record for %s: %s", document_id, e)

    async def _assign_cluster(self, document_id: str) -> None:
        if self.cluster_manager is None:
            return
        try:
            await self.cluster_manager.assign_document_to_cluster(document_id)
        except Exception as e:
            logger.warning("Cluster assignment failed for %s: %s", document_id, e)


__all__ = ["DocumentIndexer", "IndexingStats", "BatchItem"]
