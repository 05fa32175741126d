from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from review_pipeline.api.router import router as api_router
from review_pipeline.bootstrap import bootstrap
from review_pipeline.core.kv import StoreError
from review_pipeline.core.logging import RequestContextMiddleware


async def _store_error_handler(_: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Metrics store unavailable"})


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        bootstrap()
        yield

    app = FastAPI(title="Review Pipeline", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreError, _store_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
