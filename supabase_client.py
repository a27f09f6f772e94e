"""
Supabase client for the canonical catalog.

A single client is created lazily and shared by every Supabase-backed
repository. When ``SUPABASE_URL`` / ``SUPABASE_SERVICE_ROLE_KEY`` are not
set the client is None and callers fall back to in-memory storage.
"""

import os
from typing import Optional

from supabase import Client, create_client

from logging_config import get_logger

logger = get_logger(__name__)


class SupabaseClient:
    """Singleton Supabase client manager."""

    _instance: Optional[Client] = None
    _initialized: bool = False

    @classmethod
    def initialize(cls, url: Optional[str] = None, key: Optional[str] = None):
        """
        Create the shared client.

        Args:
            url: Project URL (defaults to SUPABASE_URL)
            key: Service role key (defaults to SUPABASE_SERVICE_ROLE_KEY, then SUPABASE_KEY)
        """
        url = url or os.getenv("SUPABASE_URL")
        key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")
        cls._initialized = True

        if not url or not key:
            logger.warning("Supabase credentials not configured; catalog will not be persisted")
            cls._instance = None
            return

        cls._instance = create_client(url, key)
        logger.info("Supabase client initialized", extra={"supabase_url": url})

    @classmethod
    def get_client(cls) -> Optional[Client]:
        if not cls._initialized:
            cls.initialize()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls.get_client() is not None

    @classmethod
    def reset(cls):
        """Forget the current client so the next call re-reads the environment."""
        cls._instance = None
        cls._initialized = False


def get_supabase_client() -> Optional[Client]:
    """
    Convenience function to get the Supabase client.

    Returns:
        Supabase client or None if not configured
    """
    return SupabaseClient.get_client()
