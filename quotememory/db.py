"""
Supabase Database Client.

Provides a singleton instance of the Supabase client configured with a
bounded PostgREST timeout. The store layer in ``quotememory.stores`` is
the only consumer; services never talk to the client directly.
"""

from __future__ import annotations

from typing import Optional

from supabase import Client, create_client
from supabase.client import ClientOptions

from quotememory.config import get_settings
from quotememory.logging_config import get_logger

logger = get_logger(__name__)


class DatabaseClient:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[DatabaseClient] = None
    _client: Client

    def __new__(cls) -> DatabaseClient:
        """Singleton pattern to ensure only one client instance."""
        if cls._instance is None:
            instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "supabase_credentials_missing",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                    options=ClientOptions(
                        postgrest_client_timeout=settings.store_timeout_seconds,
                    ),
                )
                logger.info("supabase_client_initialized", url=settings.supabase_url)
            except Exception as e:
                logger.error("supabase_client_init_failed", error=str(e))
                raise

            cls._instance = instance

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    @classmethod
    def reset(cls) -> None:
        """Drop the cached client (settings changed, or between tests)."""
        cls._instance = None


# Global accessor
def get_db() -> DatabaseClient:
    return DatabaseClient()
