"""Async helpers for mirroring document embeddings into a Milvus index."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import List, Optional, Sequence, Tuple

import numpy as np
from pymilvus import (
    Collection,
    CollectionSchema,
    DataType,
    FieldSchema,
    connections,
    utility,
)

from embedvault.errors import StoreError

logger = logging.getLogger(__name__)

_ID_LEN = 64
_TAG_LEN = 128


class MilvusIndex:
    """
    IVF_FLAT / inner-product index over unit-normalized embeddings.

    Acts only as a candidate source: the SQLite store stays the system of
    record and rescores every candidate itself.
    """

    def __init__(
        self,
        *,
        host: str,
        port: str,
        collection: str,
        dim: int,
        nlist: int = 1024,
        nprobe: int = 32,
        delete_chunk: int = 800,
    ) -> None:
        self.host = host
        self.port = port
        self.name = collection
        self.dim = dim
        self.nlist = nlist
        self.nprobe = nprobe
        self.delete_chunk = max(1, delete_chunk)
        self._collection: Collection | None = None
        self._loaded = False
        self._lock = threading.Lock()

    def _normalize(self, v) -> list[float]:
        """Return a length-normalized embedding as a writable list."""
        v = np.array(v, dtype=np.float32, copy=True).reshape(-1)
        if v.shape[0] != self.dim:
            raise ValueError(f"Expected embedding of dim {self.dim}, got {v.shape[0]}")
        np.nan_to_num(v, copy=False)
        n = float(np.linalg.norm(v))
        if n > 0:
            v /= n
        return v.tolist()

    def _get_collection(self) -> Collection:
        """Return the collection, connecting and creating it on first use."""
        if self._collection is not None and self._loaded:
            return self._collection

        with self._lock:
            if self._collection is not None and self._loaded:
                return self._collection

            connections.connect(alias="default", uri=f"http://{self.host}:{self.port}")

            index_params = {
                "index_type": "IVF_FLAT",
                "metric_type": "IP",
                "params": {"nlist": self.nlist or 1024},
            }

            if not utility.has_collection(self.name):
                fields = [
                    FieldSchema(name="doc_id", dtype=DataType.VARCHAR, is_primary=True, auto_id=False, max_length=_ID_LEN),
                    FieldSchema(name="tenant_id", dtype=DataType.VARCHAR, max_length=_TAG_LEN),
                    FieldSchema(name="content_type", dtype=DataType.VARCHAR, max_length=_TAG_LEN),
                    FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=self.dim),
                ]
                schema = CollectionSchema(fields, description="Document embeddings")
                self._collection = Collection(self.name, schema)
                self._collection.create_index("embedding", index_params)
                self._loaded = False
            else:
                self._collection = Collection(self.name)
                if not self._collection.has_index():
                    self._collection.create_index("embedding", index_params)
                    self._loaded = False

            if not self._loaded:
                self._collection.load()
                self._loaded = True

            return self._collection

    async def upsert_many(self, items: Sequence[Tuple[str, str, str, object]]) -> None:
        """Insert or replace ``(doc_id, tenant_id, content_type, embedding)`` rows."""
        if not items:
            return

        ids: list[str] = []
        tenants: list[str] = []
        types: list[str] = []
        vectors: list[list[float]] = []
        for doc_id, tenant_id, content_type, emb in items:
            ids.append(str(doc_id))
            tenants.append(str(tenant_id))
            types.append(str(content_type))
            vectors.append(self._normalize(emb))

        def _run() -> None:
            col = self._get_collection()
            for i in range(0, len(ids), self.delete_chunk):
                col.delete(f"doc_id in {json.dumps(ids[i : i + self.delete_chunk])}")
            col.insert([ids, tenants, types, vectors])
            col.flush()

        await self._call(_run)

    async def upsert(self, doc_id: str, tenant_id: str, content_type: str, embedding) -> None:
        await self.upsert_many([(doc_id, tenant_id, content_type, embedding)])

    async def delete_many(self, ids: Sequence[str]) -> None:
        ids = [str(i) for i in ids]
        if not ids:
            return

        def _run() -> None:
            col = self._get_collection()
            for i in range(0, len(ids), self.delete_chunk):
                col.delete(f"doc_id in {json.dumps(ids[i : i + self.delete_chunk])}")
            col.flush()

        await self._call(_run)

    async def search(
        self,
        query_vec,
        k: int,
        *,
        tenant_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        """Return ``(doc_id, score)`` pairs for the ``k`` nearest embeddings."""
        vec = self._normalize(query_vec)
        clauses = []
        if tenant_id is not None:
            clauses.append(f"tenant_id == {json.dumps(str(tenant_id))}")
        if content_type is not None:
            clauses.append(f"content_type == {json.dumps(str(content_type))}")
        expr = " and ".join(clauses) or None

        def _run() -> List[Tuple[str, float]]:
            col = self._get_collection()
            res = col.search(
                data=[vec],
                anns_field="embedding",
                param={"metric_type": "IP", "params": {"nprobe": self.nprobe}},
                limit=k,
                expr=expr,
                consistency_level="Strong",
            )
            hits = res[0] if res else []
            return [(str(h.id), float(h.score)) for h in hits]

        return await self._call(_run)

    async def ping(self) -> bool:
        await self._call(self._get_collection)
        return True

    async def _call(self, fn):
        try:
            return await asyncio.to_thread(fn)
        except ValueError:
            raise
        except Exception as e:
            raise StoreError(f"Milvus call failed: {e}") from e


__all__ = ["MilvusIndex"]
