"""
FastAPI API Server.

REST API for the review queue, price history and quote building used by
the sales team's web client.

Start with:
    uvicorn quotememory.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quotememory.api.middleware import RateLimitMiddleware, RequestIdMiddleware
from quotememory.api.price_history import router as price_history_router
from quotememory.api.quotes import router as quotes_router
from quotememory.api.reviews import router as reviews_router
from quotememory.config import Settings, get_settings
from quotememory.errors import QuoteMemoryError, StoreUnavailable, ValidationError
from quotememory.logging_config import get_logger, setup_logging
from quotememory.schemas.extraction import field_path
from quotememory.services.container import Services, build_services

setup_logging()
logger = get_logger(__name__)


async def handle_domain_error(request: Request, exc: QuoteMemoryError) -> JSONResponse:
    """Map the error hierarchy onto HTTP statuses with a structured body."""
    headers = {}
    if isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = "1"
        logger.error("request_store_unavailable", path=request.url.path, exc_info=exc)
    else:
        logger.info("request_rejected", path=request.url.path, error=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed requests in the same shape as domain validation errors."""
    # Only paths and messages: echoed inputs such as NaN are not valid JSON
    error = ValidationError(
        "Request failed validation",
        fields={field_path(err["loc"]): err["msg"] for err in exc.errors()},
    )
    return await handle_domain_error(request, error)


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Tests pass ready-made ``services``; otherwise they are built from
    settings when the app starts.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        logger.info("api_server_starting", backend=settings.store_backend.value)
        yield
        logger.info("api_server_stopping")

    app = FastAPI(
        title="Sales Quote Memory API",
        description="Review queue for mail-extracted quotations, price history and quote building",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Middleware (last added is outermost)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(QuoteMemoryError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.include_router(reviews_router)
    app.include_router(price_history_router)
    app.include_router(quotes_router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "service": "sales-quote-memory"}

    @app.get("/", tags=["System"])
    async def root() -> dict[str, str]:
        return {
            "service": "Sales Quote Memory",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


app = create_app()
