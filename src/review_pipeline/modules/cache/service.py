"""
Content-addressed cache for reviewer responses.

Entries are keyed by a SHA-256 digest of the exact prompt (and model), so identical
requests from any worker resolve to the same entry without coordination. Every
failure here degrades to a cache miss; the review job itself never fails because
of the cache.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from review_pipeline.core.config import settings
from review_pipeline.core.kv import KeyValueStore, get_kv_store
from review_pipeline.core.logging import get_logger, log_event, log_exception
from review_pipeline.core.periods import day_key, trailing_days, utc_now
from review_pipeline.modules.cache.schemas import CacheStats, DailyHitRate, HitRateReport

logger = get_logger(__name__)

CACHE_PREFIX = "review:cache:"
METRICS_PREFIX = "cache:metrics:"


def generate_key(prompt: str, model: str | None = None) -> str:
    material = prompt if not model else f"{model}\n{prompt}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}{digest}"


def _hit_rate(hits: int, total: int) -> float:
    return round(hits / total * 100, 2) if total > 0 else 0.0


class ReviewCache:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        ttl_seconds: int | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self._store = store or get_kv_store()
        self._ttl = ttl_seconds or settings.cache_ttl_seconds
        self._now = now

    def generate_key(self, prompt: str, model: str | None = None) -> str:
        return generate_key(prompt, model)

    def get(self, prompt: str, model: str | None = None) -> dict[str, Any] | None:
        key = self.generate_key(prompt, model)
        try:
            cached = self._store.get(key)
            value = json.loads(cached) if cached is not None else None
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.get.failure", cache_key=key)
            return None

        if value is None:
            self._track("miss")
            log_event(logger, "cache.miss", level=logging.DEBUG, cache_key=key)
            return None

        self._track("hit")
        log_event(logger, "cache.hit", level=logging.DEBUG, cache_key=key)
        return value

    def set(self, prompt: str, result: dict[str, Any], model: str | None = None) -> bool:
        key = self.generate_key(prompt, model)
        try:
            self._store.set(key, json.dumps(result, default=str), ttl_seconds=self._ttl)
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.set.failure", cache_key=key)
            return False
        log_event(logger, "cache.set", level=logging.DEBUG, cache_key=key, ttl_seconds=self._ttl)
        return True

    def _track(self, metric: str) -> None:
        key = f"{METRICS_PREFIX}{metric}:{day_key(self._now())}"
        try:
            self._store.incr(
                key, ttl_seconds=settings.cache_metrics_retention_days * 86400
            )
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.metric.failure", metric=metric)

    def _day_counts(self, date_str: str) -> tuple[int, int]:
        hits = self._store.get(f"{METRICS_PREFIX}hit:{date_str}")
        misses = self._store.get(f"{METRICS_PREFIX}miss:{date_str}")
        return int(hits or 0), int(misses or 0)

    def get_stats(self) -> CacheStats:
        today = day_key(self._now())
        try:
            hits, misses = self._day_counts(today)
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.stats.failure")
            return CacheStats(hits=0, misses=0, total=0, hit_rate=0.0, date=today)
        total = hits + misses
        return CacheStats(
            hits=hits, misses=misses, total=total, hit_rate=_hit_rate(hits, total), date=today
        )

    def get_hit_rate(self, days: int = 7) -> HitRateReport:
        period = f"{days} days"
        data: list[DailyHitRate] = []
        try:
            for date_str in trailing_days(self._now(), days):
                hits, misses = self._day_counts(date_str)
                total = hits + misses
                if total == 0:
                    continue
                data.append(
                    DailyHitRate(
                        date=date_str, hits=hits, misses=misses, hit_rate=_hit_rate(hits, total)
                    )
                )
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.hit_rate.failure", days=days)
            return HitRateReport(period=period, data=[], average_hit_rate=0.0)

        average = round(sum(d.hit_rate for d in data) / len(data), 2) if data else 0.0
        return HitRateReport(period=period, data=data, average_hit_rate=average)

    def clear_all(self) -> int:
        try:
            keys = self._store.scan_keys(f"{CACHE_PREFIX}*")
            if not keys:
                return 0
            removed = self._store.delete(*keys)
        except Exception:  # noqa: BLE001
            log_exception(logger, "cache.clear.failure")
            return 0
        log_event(logger, "cache.cleared", removed=removed)
        return removed


def get_review_cache() -> ReviewCache:
    return ReviewCache(get_kv_store())
