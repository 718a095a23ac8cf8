"""Comet AI critiques — async helpers guarded by the circuit breaker.

Each critique is cached in the user's preferences, so a remount or a second
surface showing the same track never pays for a second AI call.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from scrobble_state.config import settings
from scrobble_state.errors import RateLimited
from scrobble_state.guard.circuit_breaker import CircuitBreaker
from scrobble_state.memory.preferences import PreferenceStore

logger = structlog.get_logger()

TRACK_CACHE_PREFIX = "comet_ai_track_"
PROFILE_CACHE_PREFIX = "comet_ai_profile_"


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull a readable message out of an error body ({error: {message}} or {message})."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return fallback


async def _guarded_critique(
    client: httpx.AsyncClient,
    breaker: CircuitBreaker,
    preferences: PreferenceStore,
    *,
    lock_key: str,
    cache_key: str,
    path: str,
    payload: dict[str, Any],
) -> str | None:
    if not breaker.can_fetch(lock_key):
        return preferences.get(cache_key, None)

    cached = preferences.get(cache_key, None)
    if cached:
        breaker.mark_fetched(lock_key)
        return cached

    # lock before the request so a concurrent caller is refused
    breaker.mark_fetched(lock_key)

    logger.info("ai_critique.start", lock_key=lock_key)
    try:
        response = await client.post(path, json=payload)
    except httpx.HTTPError:
        logger.warning("ai_critique.request_failed", lock_key=lock_key, exc_info=True)
        return None

    if response.status_code == 429:
        seconds = settings.ai_cooldown_seconds
        breaker.trigger_cooldown(seconds)
        message = _error_message(response, "Limit reached. Check OpenRouter credits.")
        raise RateLimited(f"Provider Error: {message}", retry_after=seconds)

    if not response.is_success:
        logger.warning(
            "ai_critique.bad_status",
            lock_key=lock_key,
            status_code=response.status_code,
            detail=_error_message(response, "Failed to fetch critique"),
        )
        return None

    try:
        critique = response.json().get("critique")
    except (ValueError, AttributeError):
        logger.warning("ai_critique.malformed", lock_key=lock_key)
        return None
    if not critique:
        return None

    preferences.set(cache_key, critique)
    logger.info("ai_critique.done", lock_key=lock_key, critique_len=len(critique))
    return critique


async def fetch_track_critique(
    client: httpx.AsyncClient,
    breaker: CircuitBreaker,
    preferences: PreferenceStore,
    track_id: int | str,
    track_name: str,
    artist_name: str = "Unknown Artist",
    album_name: str = "Unknown Album",
) -> str | None:
    """Return the AI critique for a track, calling the AI endpoint at most once per session.

    Args:
        client: HTTP client bound to the web API.
        breaker: Session circuit breaker shared by every caller.
        preferences: Preference store holding cached critiques.
        track_id: Track identifier used for the lock and cache keys.
        track_name: Track title sent to the AI endpoint.
        artist_name: Primary artist name.
        album_name: Album title.

    Returns:
        The critique text, or None when it is unavailable (blocked, failed).

    Raises:
        RateLimited: If the AI endpoint answered 429. The global cooldown has
            already been applied.
    """
    return await _guarded_critique(
        client,
        breaker,
        preferences,
        lock_key=f"track_{track_id}",
        cache_key=f"{TRACK_CACHE_PREFIX}{track_id}",
        path=settings.ai_critique_path,
        payload={
            "track_name": track_name,
            "artist_name": artist_name,
            "album_name": album_name,
        },
    )


async def fetch_profile_critique(
    client: httpx.AsyncClient,
    breaker: CircuitBreaker,
    preferences: PreferenceStore,
    period: str,
) -> str | None:
    """Return the AI critique of the listening profile for ``period`` (week, month, year, all_time)."""
    return await _guarded_critique(
        client,
        breaker,
        preferences,
        lock_key=f"profile_{period}",
        cache_key=f"{PROFILE_CACHE_PREFIX}{period}",
        path=settings.ai_profile_critique_path,
        payload={"period": period},
    )
