"""Content-type specific records stored alongside a parent document."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from embedvault.models import ContentType, IndexingOptions, Metadata

_CUSTOMER_TYPES = (ContentType.CUSTOMER, ContentType.REVIEW, ContentType.SUPPORT_TICKET)
_KNOWLEDGE_TYPES = (ContentType.KNOWLEDGE_BASE, ContentType.FAQ)


def _product(options: IndexingOptions, meta: Metadata) -> Dict[str, Any]:
    price = meta.get("priceRange")
    return {
        "product_id": options.source_id or meta.get("productId"),
        "tenant_id": options.tenant_id,
        "title": meta.get("title") or meta.get("name"),
        "description": meta.get("description"),
        "product_type": meta.get("productType") or meta.get("type"),
        "vendor": meta.get("vendor"),
        "handle": meta.get("handle"),
        "tags": meta.get("tags") or [],
        "price_range": [price.get("min"), price.get("max")] if isinstance(price, dict) else None,
        "inventory_count": meta.get("inventory"),
        "variants": meta.get("variants") or [],
        "collections": meta.get("collections") or [],
        "images": meta.get("images") or [],
        "seo_data": meta.get("seo") or {},
        "performance_metrics": meta.get("performance") or {},
    }


def _customer(options: IndexingOptions, meta: Metadata) -> Dict[str, Any]:
    return {
        "customer_id": options.source_id or meta.get("customerId"),
        "tenant_id": options.tenant_id,
        "interaction_type": ContentType(options.content_type).value,
        "sentiment": meta.get("sentiment"),
        "intent": meta.get("intent"),
        "priority_level": meta.get("priority") or 1,
        "resolution_status": meta.get("status"),
        "satisfaction_rating": meta.get("rating"),
        "contact_info": meta.get("contact") or {},
        "purchase_history": meta.get("purchases") or [],
        "preferences": meta.get("preferences") or {},
    }


def _knowledge(options: IndexingOptions, meta: Metadata) -> Dict[str, Any]:
    return {
        "article_id": options.source_id or meta.get("articleId"),
        "tenant_id": options.tenant_id,
        "category": meta.get("category"),
        "subcategory": meta.get("subcategory"),
        "difficulty_level": meta.get("difficulty") or 1,
        "view_count": meta.get("views") or 0,
        "helpful_votes": meta.get("helpfulVotes") or 0,
        "outdated": bool(meta.get("outdated", False)),
        "author": meta.get("author"),
        "reviewer": meta.get("reviewer"),
        "approval_status": meta.get("approvalStatus") or "draft",
        "related_articles": meta.get("relatedArticles") or [],
        "required_permissions": meta.get("permissions") or [],
    }


def build_side_record(options: IndexingOptions) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    Return ``(kind, record)`` for content types that carry a side record, or
    ``None`` for the rest.
    """
    ctype = ContentType(options.content_type)
    meta = options.metadata or {}
    if ctype == ContentType.PRODUCT:
        return "product", _product(options, meta)
    if ctype in _CUSTOMER_TYPES:
        return "customer", _customer(options, meta)
    if ctype in _KNOWLEDGE_TYPES:
        return "knowledge", _knowledge(options, meta)
    return None


__all__ = ["build_side_record"]
