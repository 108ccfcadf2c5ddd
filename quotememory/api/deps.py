"""
Request dependencies shared by the routers.

Identity comes from the upstream identity provider, which verifies the
caller and forwards an opaque subject id in the actor header. The id is
passed explicitly to every mutating service call.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from quotememory.logging_config import bind_actor, get_logger
from quotememory.services.container import Services

logger = get_logger(__name__)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


async def get_actor(request: Request) -> str:
    """Verified caller id, or 401."""
    header = get_services(request).settings.actor_header
    actor = request.headers.get(header, "").strip()
    if not actor:
        logger.warning("missing_actor", path=request.url.path, header=header)
        raise HTTPException(status_code=401, detail="Missing verified caller identity")
    bind_actor(actor)
    return actor
