"""Helpers that turn raw catalogue / review / article records into batch index jobs."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from embedvault.models import BatchIndexingResult, ContentType, IndexingOptions

from .indexer import BatchItem, DocumentIndexer


def _tags(raw) -> List[str]:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    return []


def _price(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def product_job(product: Dict[str, Any], tenant_id: str) -> BatchItem:
    variants = product.get("variants") or []
    tags = _tags(product.get("tags"))
    content = "\n".join(
        [
            f"Product: {product.get('title', '')}",
            f"Description: {product.get('body_html') or product.get('description') or ''}",
            f"Type: {product.get('product_type') or ''}",
            f"Vendor: {product.get('vendor') or ''}",
            f"Tags: {', '.join(tags)}",
            f"Price Range: {', '.join(str(v.get('price')) for v in variants if v.get('price') is not None)}",
            f"SKUs: {', '.join(str(v['sku']) for v in variants if v.get('sku'))}",
        ]
    )
    prices = [_price(v.get("price")) for v in variants]
    handle = product.get("handle")
    options = IndexingOptions(
        content_type=ContentType.PRODUCT,
        tenant_id=tenant_id,
        source_id=str(product["id"]),
        source_url=f"/products/{handle}" if handle else None,
        enable_clustering=True,
        max_chunk_size=1500,
        metadata={
            "productId": product["id"],
            "title": product.get("title"),
            "handle": handle,
            "productType": product.get("product_type"),
            "vendor": product.get("vendor"),
            "category": product.get("product_type"),
            "tags": tags,
            "variants": variants,
            "collections": product.get("collections") or [],
            "images": product.get("images") or [],
            "priceRange": {"min": min(prices), "max": max(prices)} if prices else None,
            "inventory": sum(int(v.get("inventory_quantity") or 0) for v in variants),
            "seo": {"title": product.get("seo_title"), "description": product.get("seo_description")},
        },
    )
    return content, product.get("title", ""), options


def review_job(review: Dict[str, Any], tenant_id: str) -> BatchItem:
    rating = review.get("rating") or 0
    if rating >= 4:
        sentiment = "positive"
    elif rating <= 2:
        sentiment = "negative"
    else:
        sentiment = "neutral"
    options = IndexingOptions(
        content_type=ContentType.REVIEW,
        tenant_id=tenant_id,
        source_id=str(review["id"]),
        enable_clustering=True,
        max_chunk_size=800,
        metadata={
            "customerId": review.get("customerId"),
            "productId": review.get("productId"),
            "rating": rating,
            "sentiment": sentiment,
            # Low ratings get handled first.
            "priority": 3 if rating <= 2 else 1,
        },
    )
    title = review.get("title") or f"Customer Review - Rating: {rating}/5"
    return review["content"], title, options


def article_job(article: Dict[str, Any], tenant_id: str) -> BatchItem:
    options = IndexingOptions(
        content_type=ContentType.KNOWLEDGE_BASE,
        tenant_id=tenant_id,
        source_id=str(article["id"]),
        enable_clustering=True,
        max_chunk_size=1200,
        overlap_size=150,
        metadata={
            "articleId": article["id"],
            "category": article.get("category"),
            "subcategory": article.get("subcategory"),
            "author": article.get("author"),
            "difficulty": article.get("difficulty") or 1,
            "approvalStatus": "approved",
        },
    )
    return article["content"], article["title"], options


async def index_products(
    indexer: DocumentIndexer, products: Iterable[Dict[str, Any]], tenant_id: str
) -> BatchIndexingResult:
    return await indexer.index_documents([product_job(p, tenant_id) for p in products])


async def index_reviews(
    indexer: DocumentIndexer, reviews: Iterable[Dict[str, Any]], tenant_id: str
) -> BatchIndexingResult:
    return await indexer.index_documents([review_job(r, tenant_id) for r in reviews])


async def index_knowledge_base(
    indexer: DocumentIndexer,
    articles: Iterable[Dict[str, Any]],
    tenant_id: str,
) -> BatchIndexingResult:
    return await indexer.index_documents([article_job(a, tenant_id) for a in articles])


__all__ = [
    "product_job",
    "review_job",
    "article_job",
    "index_products",
    "index_reviews",
    "index_knowledge_base",
]
