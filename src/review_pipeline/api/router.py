from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response

from review_pipeline.core.kv import get_kv_store
from review_pipeline.core.metrics import prometheus_metrics_response
from review_pipeline.modules.cache.api import router as cache_router
from review_pipeline.modules.costs.api import router as costs_router
from review_pipeline.modules.deadletter.api import router as deadletter_router
from review_pipeline.modules.reviews.api import router as reviews_router

router = APIRouter()

router.include_router(reviews_router, prefix="/api")
router.include_router(cache_router, prefix="/api")
router.include_router(costs_router, prefix="/api")
router.include_router(deadletter_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/store")
def healthz_store() -> JSONResponse:
    ok = get_kv_store().ping()
    return JSONResponse(status_code=200 if ok else 503, content={"ok": ok})


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    body, content_type = prometheus_metrics_response()
    return Response(content=body, media_type=content_type)
