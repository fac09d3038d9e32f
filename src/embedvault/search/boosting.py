"""Multiplicative post-retrieval score boosts."""

from __future__ import annotations

import dataclasses
import time
from datetime import datetime
from typing import List, Optional

from embedvault.models import SearchResult

from .options import Boosts

RECENT_DAYS = 7
HIGH_RATING = 4


def _created_at(result: SearchResult) -> Optional[float]:
    if result.created_at is not None:
        return float(result.created_at)
    raw = result.metadata.get("created_at")
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def boost_factor(result: SearchResult, boosts: Boosts, *, now: Optional[float] = None) -> float:
    factor = 1.0

    if boosts.recent_documents:
        created = _created_at(result)
        now = time.time() if now is None else now
        if created is not None and (now - created) / 86400.0 < RECENT_DAYS:
            factor *= boosts.recent_documents

    rating = result.metadata.get("rating")
    if boosts.high_rated_content and isinstance(rating, (int, float)) and rating >= HIGH_RATING:
        factor *= boosts.high_rated_content

    category = result.metadata.get("category")
    if boosts.user_preferences and category is not None:
        pref = boosts.user_preferences.get(category)
        if pref:
            factor *= pref

    return factor


def apply_boosts(results: List[SearchResult], boosts: Boosts, *, now: Optional[float] = None) -> List[SearchResult]:
    out = []
    for r in results:
        factor = boost_factor(r, boosts, now=now)
        out.append(dataclasses.replace(r, boost_score=factor, combined_score=r.score * factor))
    return out


__all__ = ["apply_boosts", "boost_factor", "RECENT_DAYS", "HIGH_RATING"]
