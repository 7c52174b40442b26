"""
Supabase client creation for the persistent storage backend.
"""
from typing import Optional

from supabase import create_client, Client

from app.core.logging import get_logger

logger = get_logger(__name__)


def get_supabase_client(supabase_url: Optional[str], supabase_key: Optional[str]) -> Optional[Client]:
    """Create and return a Supabase client, or None when it cannot be built."""
    if not supabase_url or not supabase_key:
        logger.warning(
            "supabase_credentials_missing",
            has_url=bool(supabase_url),
            has_key=bool(supabase_key),
            message="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in .env",
        )
        return None

    if not supabase_url.startswith("http"):
        logger.error(
            "supabase_url_invalid",
            url=supabase_url,
            message="Should start with http:// or https://",
        )
        return None

    try:
        logger.info("supabase_client_creating", url_prefix=supabase_url[:30])
        client = create_client(supabase_url, supabase_key)
        logger.info("supabase_client_created")
        return client
    except Exception as e:
        logger.error(
            "supabase_client_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return None
