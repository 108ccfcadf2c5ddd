"""
Structured logging for the quote memory service.

structlog renders JSON lines in production and a colored console view in
development. Request-scoped fields are bound with structlog's contextvars
support: the request middleware binds ``trace_id``, the actor dependency
binds ``actor_id``, and every entry logged while serving that request
carries both.

Usage:
    from quotememory.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("review_item_approved", item_id="abc-123", price_records=2)
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog

from quotememory.config import get_settings
from quotememory.errors import QuoteMemoryError

# Keys whose values never reach a log sink
_SECRET_KEYS = frozenset({"supabase_service_key", "authorization", "api_key", "password"})


def _mask_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _add_domain_error(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Flatten a QuoteMemoryError passed as ``exc_info`` into searchable fields."""
    exc = event_dict.get("exc_info")
    if exc is True:
        exc = sys.exc_info()[1]
    elif isinstance(exc, tuple):
        exc = exc[1]
    if isinstance(exc, QuoteMemoryError):
        event_dict.setdefault("error_code", exc.code)
        for key, value in exc.details.items():
            event_dict.setdefault(f"error_{key}", value)
    return event_dict


def generate_trace_id() -> str:
    """Short unique id for correlating one request's log entries."""
    return uuid.uuid4().hex[:12]


def bind_request(trace_id: str) -> None:
    """Start a fresh logging context for an incoming request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)


def bind_actor(actor_id: str) -> None:
    structlog.contextvars.bind_contextvars(actor_id=actor_id)


def setup_logging() -> None:
    """
    Configure structlog and route stdlib logging through the same renderer.

    - **Production**: JSON output to stdout, exceptions rendered inline.
    - **Development**: colored console output.
    """
    settings = get_settings()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_domain_error,
        _mask_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if settings.is_production:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # postgrest and supabase log every HTTP round trip through httpx
    for noisy in ("httpx", "httpcore", "hpack", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
