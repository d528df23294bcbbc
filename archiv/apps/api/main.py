from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from archiv.apps.api.errors import (
    archiv_exception_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from archiv.apps.api.response import API_VERSION
from archiv.apps.api.routes.assets import router as assets_router
from archiv.apps.api.routes.embeddings import router as embeddings_router
from archiv.apps.api.routes.health import router as health_router
from archiv.apps.api.routes.search import router as search_router
from archiv.core.errors import ArchivError
from archiv.core.logging import configure_logging
from archiv.persistence.guards import TenantPredicateError
from archiv.services.context import ServiceContext
from archiv.services.factory import build_service_context, close_service_context
from archiv.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def create_app(services: ServiceContext | None = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Build providers on startup unless the caller injected a context.
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_service_context()
        try:
            yield
        finally:
            if owned:
                await close_service_context(app.state.services)

    app = FastAPI(title="Archiv API", version=API_VERSION, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        increment_counter(f"http_requests_total.{response.status_code // 100}xx")
        logger.debug(
            "request_done method=%s path=%s status=%d latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(ArchivError)
    async def _archiv_exception_handler(request: Request, exc: ArchivError):
        return await archiv_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(search_router, prefix=f"/{API_VERSION}")
    app.include_router(assets_router, prefix=f"/{API_VERSION}")
    app.include_router(embeddings_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
