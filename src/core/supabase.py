"""Supabase client singleton for database operations."""

from functools import lru_cache
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client, create_client

from src.core.config import get_settings

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


@lru_cache
def get_supabase_client() -> Client:
    """Get cached Supabase client singleton for database operations.

    Uses the secret key for backend operations, which bypasses RLS
    at the PostgREST level. Webhook handlers have already verified the
    caller's signature before they touch the database.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def is_unique_violation(error: Exception) -> bool:
    """Check whether a PostgREST error is a unique constraint violation.

    Args:
        error: Exception raised by a Supabase query.

    Returns:
        bool: True if the database rejected the write as a duplicate key.
    """
    return isinstance(error, PostgrestAPIError) and str(error.code) == UNIQUE_VIOLATION


async def check_database_connection() -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a simple query to verify database connectivity.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client = get_supabase_client()
        client.table("orders").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
