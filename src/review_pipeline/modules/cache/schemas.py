from __future__ import annotations

from pydantic import BaseModel


class CacheStats(BaseModel):
    hits: int
    misses: int
    total: int
    hit_rate: float
    date: str


class DailyHitRate(BaseModel):
    date: str
    hits: int
    misses: int
    hit_rate: float


class HitRateReport(BaseModel):
    period: str
    data: list[DailyHitRate]
    average_hit_rate: float


class CacheClearOut(BaseModel):
    removed: int
