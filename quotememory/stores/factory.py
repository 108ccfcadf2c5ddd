"""
Build the store bundle for the configured backend.
"""

from __future__ import annotations

from quotememory.config import Settings, StoreBackend
from quotememory.logging_config import get_logger
from quotememory.stores.base import Stores
from quotememory.stores.memory import build_memory_stores

logger = get_logger(__name__)


def build_stores(settings: Settings) -> Stores:
    if settings.store_backend == StoreBackend.SUPABASE:
        # Imported lazily so the memory backend starts without Supabase credentials
        from quotememory.db import get_db
        from quotememory.stores.supabase_backend import build_supabase_stores

        logger.info("stores_built", backend="supabase", timeout=settings.store_timeout_seconds)
        return build_supabase_stores(get_db().client, settings.store_timeout_seconds)

    logger.info("stores_built", backend="memory")
    return build_memory_stores()
