"""FastAPI dependency injection — preference storage, bulk job and current user."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException

from scrobble_state.api.bulk_fetch import BulkFetchJob
from scrobble_state.memory.user_preferences import UserPreferencesStore


@lru_cache(maxsize=1)
def get_preferences_store() -> UserPreferencesStore:
    """Return the singleton preference document store."""
    return UserPreferencesStore()


@lru_cache(maxsize=1)
def get_bulk_fetch_job() -> BulkFetchJob:
    """Return the bulk fetch job, reading its items from settings."""
    return BulkFetchJob()


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Resolve the authenticated user from the X-User-Id header.

    Session handling lives in front of this service; a missing header means
    the request is anonymous.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="unauthorized")
    return x_user_id
