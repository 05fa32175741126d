from __future__ import annotations

import os

import pytest

# Set env before any review_pipeline imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.review_pipeline_test.db")
os.environ.setdefault("KV_BACKEND", "memory")
os.environ.setdefault("ALERT_WEBHOOK_URL", "")


class BrokenStore:
    """Key-value store whose every command fails like an unreachable Redis."""

    def __getattr__(self, name: str):
        from review_pipeline.core.kv import StoreError

        def _fail(*args, **kwargs):
            raise StoreError(f"Redis {name} failed: connection refused")

        return _fail


@pytest.fixture(autouse=True)
def _reset_db_and_store():
    import review_pipeline.models  # noqa: F401
    from review_pipeline.core import kv as kv_mod
    from review_pipeline.core.db import engine
    from review_pipeline.core.models import Base

    kv_mod._store = kv_mod.InMemoryKeyValueStore()

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield

    kv_mod._store = None


@pytest.fixture
def kv_store():
    from review_pipeline.core.kv import get_kv_store

    return get_kv_store()


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()
