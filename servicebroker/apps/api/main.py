from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicebroker.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from servicebroker.apps.api.response import BROKER_API_VERSION
from servicebroker.apps.api.routes.broker import router as broker_router
from servicebroker.apps.api.routes.health import router as health_router
from servicebroker.core.config import get_settings
from servicebroker.core.logging import configure_logging
from servicebroker.domain.contracts import BrokerContract
from servicebroker.persistence.db import dispose_engine, get_engine, get_session_factory
from servicebroker.persistence.migrations import run_migrations
from servicebroker.services.bootstrap import build_broker


logger = logging.getLogger(__name__)


def create_app(broker: BrokerContract | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # An injected broker owns its own storage; otherwise bring up the configured database.
        owns_engine = app.state.broker is None
        if owns_engine:
            await run_migrations(get_engine())
            app.state.broker = await build_broker(get_session_factory())
        try:
            yield
        finally:
            if owns_engine:
                await dispose_engine()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.broker = broker

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "http_request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        response.headers.setdefault("X-Broker-API-Version", BROKER_API_VERSION)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(broker_router)

    return app


app = create_app()
