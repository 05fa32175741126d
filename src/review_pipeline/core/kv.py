"""
Shared key-value store used for counters, cache entries and usage aggregates.

Every mutation is a single atomic command or a MULTI/EXEC pipeline so that any
number of worker processes can write concurrently without read-modify-write races.
"""

from __future__ import annotations

import fnmatch
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import redis

from review_pipeline.core.config import settings
from review_pipeline.core.logging import get_logger, log_exception

logger = get_logger(__name__)


class StoreError(RuntimeError):
    failure_category = "store_error"


class KeyValueStore:
    def get(self, key: str) -> str | None:  # pragma: no cover
        raise NotImplementedError

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:  # pragma: no cover
        raise NotImplementedError

    def incr(self, key: str, amount: int = 1, *, ttl_seconds: int | None = None) -> int:  # pragma: no cover
        raise NotImplementedError

    def hgetall(self, key: str) -> dict[str, str]:  # pragma: no cover
        raise NotImplementedError

    def hincr(
        self,
        updates: Mapping[str, Mapping[str, int | float]],
        *,
        members: Mapping[str, Iterable[str]] | None = None,
    ) -> None:  # pragma: no cover
        """Apply hash field increments (and set-member registrations) as one transaction."""
        raise NotImplementedError

    def smembers(self, key: str) -> set[str]:  # pragma: no cover
        raise NotImplementedError

    def lpush_trimmed(
        self, key: str, value: str, *, max_len: int, ttl_seconds: int | None = None
    ) -> None:  # pragma: no cover
        raise NotImplementedError

    def lrange(self, key: str, start: int, stop: int) -> list[str]:  # pragma: no cover
        raise NotImplementedError

    def record_failure(
        self,
        counter_keys: Iterable[str],
        log_key: str,
        record: str,
        *,
        max_len: int,
        ttl_seconds: int | None = None,
    ) -> None:  # pragma: no cover
        """Increment every counter and push `record` onto the trimmed log as one transaction."""
        raise NotImplementedError


    def scan_keys(self, pattern: str) -> list[str]:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *keys: str) -> int:  # pragma: no cover
        raise NotImplementedError

    def ping(self) -> bool:  # pragma: no cover
        raise NotImplementedError


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, url: str, *, client: redis.Redis | None = None):
        self._client = client or redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    def _run(self, op: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except redis.RedisError as e:
            log_exception(logger, "kv.command.failure", backend="redis", op=op)
            raise StoreError(f"Redis {op} failed: {e}") from e

    def get(self, key: str) -> str | None:
        return self._run("get", lambda: self._client.get(key))

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._run("set", lambda: self._client.set(key, value, ex=ttl_seconds))

    def incr(self, key: str, amount: int = 1, *, ttl_seconds: int | None = None) -> int:
        def _incr() -> int:
            pipe = self._client.pipeline(transaction=True)
            pipe.incrby(key, amount)
            if ttl_seconds:
                pipe.expire(key, ttl_seconds)
            return int(pipe.execute()[0])

        return self._run("incr", _incr)

    def hgetall(self, key: str) -> dict[str, str]:
        return self._run("hgetall", lambda: self._client.hgetall(key))

    def hincr(
        self,
        updates: Mapping[str, Mapping[str, int | float]],
        *,
        members: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        def _hincr() -> None:
            pipe = self._client.pipeline(transaction=True)
            for key, fields in updates.items():
                for field, amount in fields.items():
                    if isinstance(amount, int):
                        pipe.hincrby(key, field, amount)
                    else:
                        pipe.hincrbyfloat(key, field, amount)
            for key, values in (members or {}).items():
                values = list(values)
                if values:
                    pipe.sadd(key, *values)
            pipe.execute()

        self._run("hincr", _hincr)

    def smembers(self, key: str) -> set[str]:
        return set(self._run("smembers", lambda: self._client.smembers(key)))

    def lpush_trimmed(
        self, key: str, value: str, *, max_len: int, ttl_seconds: int | None = None
    ) -> None:
        def _push() -> None:
            pipe = self._client.pipeline(transaction=True)
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_len - 1)
            if ttl_seconds:
                pipe.expire(key, ttl_seconds)
            pipe.execute()

        self._run("lpush", _push)

    def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return self._run("lrange", lambda: self._client.lrange(key, start, stop))

    def record_failure(
        self,
        counter_keys: Iterable[str],
        log_key: str,
        record: str,
        *,
        max_len: int,
        ttl_seconds: int | None = None,
    ) -> None:
        def _record() -> None:
            pipe = self._client.pipeline(transaction=True)
            for key in counter_keys:
                pipe.incr(key)
                if ttl_seconds:
                    pipe.expire(key, ttl_seconds)
            pipe.lpush(log_key, record)
            pipe.ltrim(log_key, 0, max_len - 1)
            if ttl_seconds:
                pipe.expire(log_key, ttl_seconds)
            pipe.execute()

        self._run("record_failure", _record)


    def scan_keys(self, pattern: str) -> list[str]:
        return self._run("scan", lambda: list(self._client.scan_iter(match=pattern, count=500)))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._run("delete", lambda: self._client.delete(*keys)))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store with Redis semantics, for tests and single-process dev runs."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires: dict[str, float] = {}
        self._lock = threading.RLock()

    def _alive(self, key: str) -> bool:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return key in self._data

    def _expire(self, key: str, ttl_seconds: int | None) -> None:
        if ttl_seconds:
            self._expires[key] = self._clock() + ttl_seconds

    def _typed(self, key: str, kind: type) -> Any:
        if not self._alive(key):
            self._data[key] = kind()
        value = self._data[key]
        if not isinstance(value, kind):
            raise StoreError(f"WRONGTYPE for key {key}")
        return value

    def ttl(self, key: str) -> float | None:
        with self._lock:
            if not self._alive(key) or key not in self._expires:
                return None
            return self._expires[key] - self._clock()

    def get(self, key: str) -> str | None:
        with self._lock:
            if not self._alive(key):
                return None
            value = self._data[key]
            if not isinstance(value, str):
                raise StoreError(f"WRONGTYPE for key {key}")
            return value

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._expires.pop(key, None)
            self._expire(key, ttl_seconds)

    def incr(self, key: str, amount: int = 1, *, ttl_seconds: int | None = None) -> int:
        with self._lock:
            current = int(self.get(key) or 0) + amount
            expires_at = self._expires.get(key)
            self._data[key] = str(current)
            if ttl_seconds:
                self._expire(key, ttl_seconds)
            elif expires_at is not None:
                self._expires[key] = expires_at
            return current

    def hgetall(self, key: str) -> dict[str, str]:
        with self._lock:
            if not self._alive(key):
                return {}
            return {k: _format_number(v) for k, v in self._typed(key, dict).items()}

    def hincr(
        self,
        updates: Mapping[str, Mapping[str, int | float]],
        *,
        members: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        with self._lock:
            for key, fields in updates.items():
                target = self._typed(key, dict)
                for field, amount in fields.items():
                    target[field] = target.get(field, 0) + amount
            for key, values in (members or {}).items():
                self._typed(key, set).update(values)

    def smembers(self, key: str) -> set[str]:
        with self._lock:
            if not self._alive(key):
                return set()
            return set(self._typed(key, set))

    def lpush_trimmed(
        self, key: str, value: str, *, max_len: int, ttl_seconds: int | None = None
    ) -> None:
        with self._lock:
            items = self._typed(key, list)
            items.insert(0, value)
            del items[max_len:]
            self._expire(key, ttl_seconds)

    def lrange(self, key: str, start: int, stop: int) -> list[str]:
        with self._lock:
            if not self._alive(key):
                return []
            items = self._typed(key, list)
            end = None if stop == -1 else stop + 1
            return list(items[start:end])

    def record_failure(
        self,
        counter_keys: Iterable[str],
        log_key: str,
        record: str,
        *,
        max_len: int,
        ttl_seconds: int | None = None,
    ) -> None:
        counter_keys = list(counter_keys)
        with self._lock:
            # Type-check every key before the first write so a failure leaves nothing applied.
            for key in counter_keys:
                if self._alive(key) and not isinstance(self._data[key], str):
                    raise StoreError(f"WRONGTYPE for key {key}")
            if self._alive(log_key) and not isinstance(self._data[log_key], list):
                raise StoreError(f"WRONGTYPE for key {log_key}")

            for key in counter_keys:
                self.incr(key, ttl_seconds=ttl_seconds)
            self.lpush_trimmed(log_key, record, max_len=max_len, ttl_seconds=ttl_seconds)


    def scan_keys(self, pattern: str) -> list[str]:
        with self._lock:
            return [k for k in list(self._data) if self._alive(k) and fnmatch.fnmatchcase(k, pattern)]

    def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._alive(key):
                    del self._data[key]
                    self._expires.pop(key, None)
                    removed += 1
            return removed

    def ping(self) -> bool:
        return True


def _format_number(value: Any) -> str:
    if isinstance(value, float):
        return repr(value)
    return str(value)


_store: KeyValueStore | None = None


def get_kv_store() -> KeyValueStore:
    global _store  # noqa: PLW0603
    if _store is not None:
        return _store

    if settings.kv_backend == "memory":
        _store = InMemoryKeyValueStore()
    else:
        _store = RedisKeyValueStore(settings.redis_url)
    return _store
