"""FastAPI route handlers for the preferences and bulk-fetch endpoints."""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from scrobble_state.api.bulk_fetch import BulkFetchJob
from scrobble_state.api.dependencies import (
    get_bulk_fetch_job,
    get_current_user,
    get_preferences_store,
)
from scrobble_state.api.schemas import ClearAICacheResponse, SavePreferencesResponse
from scrobble_state.memory.user_preferences import (
    UserPreferencesStore,
    clear_ai_cache,
    merge_preferences,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/apis/web/v1")


@router.get("/user/preferences")
async def get_user_preferences(
    user_id: str = Depends(get_current_user),
    store: UserPreferencesStore = Depends(get_preferences_store),
) -> dict[str, Any]:
    """Return the user's whole preference document (empty object when none)."""
    return await store.get(user_id)


@router.post("/user/preferences", response_model=SavePreferencesResponse)
async def save_user_preferences(
    request: Request,
    user_id: str = Depends(get_current_user),
    store: UserPreferencesStore = Depends(get_preferences_store),
):
    """Replace the user's preferences with the posted document.

    Server-owned cache keys keep their stored values.
    """
    try:
        incoming = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid preferences data")
    if not isinstance(incoming, dict):
        raise HTTPException(status_code=400, detail="invalid preferences data")

    existing = await store.get(user_id)
    merged, cleared = merge_preferences(existing, incoming)
    await store.save(user_id, merged)

    logger.debug("preferences.saved", user_id=user_id, cleared_cache=cleared)
    return SavePreferencesResponse(cleared_cache=cleared)


@router.delete("/ai/cache", response_model=ClearAICacheResponse)
async def clear_user_ai_cache(
    user_id: str = Depends(get_current_user),
    store: UserPreferencesStore = Depends(get_preferences_store),
):
    """Drop every cached AI critique and playlist for the user."""
    prefs, cleared = clear_ai_cache(await store.get(user_id))
    await store.save(user_id, prefs)
    logger.info("ai_cache.cleared", user_id=user_id, cleared_count=cleared)
    return ClearAICacheResponse(cleared_count=cleared)


@router.get("/spotify/bulk-fetch-sse")
async def stream_bulk_fetch(
    user_id: str = Depends(get_current_user),
    job: BulkFetchJob = Depends(get_bulk_fetch_job),
):
    """SSE endpoint reporting the bulk metadata fetch as it runs."""
    logger.info("bulk_fetch.requested", user_id=user_id)

    async def event_generator():
        try:
            async for event in job.events():
                yield event
        except Exception as e:
            logger.exception("bulk_fetch.failed", user_id=user_id)
            yield {"event": "error", "data": json.dumps({"message": f"Bulk fetch failed: {e}"})}

    return EventSourceResponse(event_generator())
