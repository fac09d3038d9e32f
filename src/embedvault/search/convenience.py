"""Preset searches for the common storefront use cases."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from embedvault.models import ContentType, SearchResult

from .engine import SearchEngine
from .options import Boosts, RerankOptions, SearchOptions


async def quick_search(
    engine: SearchEngine,
    query: str,
    tenant_id: Optional[str] = None,
    content_type: Optional[ContentType] = None,
    k: int = 5,
) -> List[SearchResult]:
    response = await engine.search(
        query,
        SearchOptions(
            tenant_id=tenant_id,
            content_types=[content_type] if content_type else None,
            k=k,
            threshold=0.7,
            use_hybrid_search=True,
        ),
    )
    return response.results


async def search_products(
    engine: SearchEngine,
    query: str,
    tenant_id: Optional[str] = None,
    *,
    category: Optional[str] = None,
    vendor: Optional[str] = None,
    in_stock: bool = False,
    k: int = 10,
) -> List[SearchResult]:
    """Hybrid product search favouring well-rated and recently added listings."""
    filters: Dict[str, Any] = {}
    if category:
        filters["category"] = category
    if vendor:
        filters["vendor"] = vendor
    if in_stock:
        filters["in_stock"] = True

    response = await engine.search(
        query,
        SearchOptions(
            tenant_id=tenant_id,
            content_types=[ContentType.PRODUCT],
            k=k,
            threshold=0.6,
            use_hybrid_search=True,
            filters=filters or None,
            boosts=Boosts(recent_documents=1.1, high_rated_content=1.2),
        ),
    )
    return response.results


async def search_knowledge_base(
    engine: SearchEngine,
    query: str,
    tenant_id: Optional[str] = None,
    *,
    category: Optional[str] = None,
    difficulty: Optional[int] = None,
    approval_status: str = "approved",
    k: int = 8,
) -> List[SearchResult]:
    """Knowledge-base and FAQ search restricted to one approval status."""
    filters: Dict[str, Any] = {"approvalStatus": approval_status}
    if category:
        filters["category"] = category
    if difficulty:
        filters["difficulty"] = difficulty

    response = await engine.search(
        query,
        SearchOptions(
            tenant_id=tenant_id,
            content_types=[ContentType.KNOWLEDGE_BASE, ContentType.FAQ],
            k=k,
            threshold=0.7,
            use_hybrid_search=True,
            filters=filters,
            boosts=Boosts(recent_documents=1.15),
            reranking=RerankOptions(enabled=True, model="hybrid", top_k=k * 2),
        ),
    )
    return response.results


__all__ = ["quick_search", "search_products", "search_knowledge_base"]
