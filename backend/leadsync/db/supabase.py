"""Supabase client factory for outcome persistence and contact lookups."""

import logging

from leadsync.core.config import Settings
from leadsync.core.exceptions import DatabaseError
from supabase import Client, create_client

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings) -> Client:
    """Create a Supabase client from settings.

    Args:
        settings: Application settings with Supabase URL and service key.

    Returns:
        Initialized Supabase client.

    Raises:
        DatabaseError: If Supabase is not configured or initialization fails.
    """
    if not settings.supabase_configured:
        raise DatabaseError("Supabase is not configured")
    try:
        client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
        )
    except Exception as e:
        logger.exception("Failed to initialize Supabase client")
        raise DatabaseError(f"Failed to initialize database connection: {e}") from e
    logger.info("Supabase client initialized successfully")
    return client
