from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from review_pipeline.modules.cache.schemas import CacheClearOut, CacheStats, HitRateReport
from review_pipeline.modules.cache.service import ReviewCache, get_review_cache

router = APIRouter(tags=["cache"])


@router.get("/cache/stats", response_model=CacheStats)
def cache_stats(cache: ReviewCache = Depends(get_review_cache)) -> CacheStats:
    return cache.get_stats()


@router.get("/cache/hit-rate", response_model=HitRateReport)
def cache_hit_rate(
    days: int = Query(default=7, ge=1, le=90),
    cache: ReviewCache = Depends(get_review_cache),
) -> HitRateReport:
    return cache.get_hit_rate(days)


@router.delete("/cache", response_model=CacheClearOut)
def clear_cache(cache: ReviewCache = Depends(get_review_cache)) -> CacheClearOut:
    return CacheClearOut(removed=cache.clear_all())
