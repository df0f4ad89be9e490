"""Service-role Supabase client factory."""

import logging

from supabase import create_client, Client

logger = logging.getLogger(__name__)


def create_supabase(url: str, key: str) -> Client:
    """Create a Supabase client from an explicit URL and service role key."""
    if not url or not key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    logger.info("Connecting to Supabase at %s", url)
    return create_client(url, key)
