"""FastAPI application for the quote ingestion and price intelligence API.

Run with ``uvicorn mpintel.web.app:app`` or ``mpintel web serve``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from mpintel.config import get_config
from mpintel.core.logging import configure_logging
from mpintel.db.connection import close_db
from mpintel.exceptions import (
    DispatchError,
    DocumentNotFoundError,
    DocumentStateError,
    LineItemNotFoundError,
    MaterialNotFoundError,
    QuoteImmutableError,
    QuoteNotFoundError,
    ReviewNotAllowedError,
    StorageError,
)
from mpintel.ingestion.storage import LocalObjectStorage
from mpintel.web.routes import documents, health, materials, prices, quotes
from mpintel.worker import build_notifier, create_dispatcher

configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    app.state.dispatcher = create_dispatcher(config)
    app.state.storage = LocalObjectStorage(config.storage.root_dir)
    app.state.notifier = build_notifier(config)
    logger.info("app_started", queue_backend=config.queue.backend)
    yield
    close = getattr(app.state.dispatcher, "close", None)
    if close is not None:
        await close()
    await close_db()
    logger.info("app_stopped")


# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                status_code=response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (QuoteNotFoundError, status.HTTP_404_NOT_FOUND),
    (LineItemNotFoundError, status.HTTP_404_NOT_FOUND),
    (MaterialNotFoundError, status.HTTP_404_NOT_FOUND),
    (QuoteImmutableError, status.HTTP_409_CONFLICT),
    (ReviewNotAllowedError, status.HTTP_409_CONFLICT),
    (DocumentStateError, status.HTTP_409_CONFLICT),
    (DispatchError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ValueError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def _register_exception_handlers(app: FastAPI) -> None:
    for exc_type, status_code in _ERROR_STATUS:

        async def handler(request: Request, exc: Exception, status_code: int = status_code):
            logger.warning(
                "request_rejected",
                error_type=type(exc).__name__,
                error=str(exc),
                status_code=status_code,
            )
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        app.add_exception_handler(exc_type, handler)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers,
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="mpintel",
        description="Supplier quote ingestion and material price intelligence",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)

    # Prometheus Metrics
    Instrumentator().instrument(app).expose(app)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(documents.router)
    app.include_router(quotes.router)
    app.include_router(prices.router)
    app.include_router(materials.router)
    return app


app = create_app()
