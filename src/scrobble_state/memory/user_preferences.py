"""User preferences store — server-side documents for the reference backend."""

from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger()

# Written by the server only; values sent by clients are ignored so a stale
# client cache cannot overwrite them.
PROTECTED_KEYS = {"profile_critiques", "ai_playlists_cache"}
TRACK_CACHE_PREFIX = "comet_ai_track_"
PROFILE_CACHE_PREFIX = "comet_ai_profile_"


def is_cache_key(key: str) -> bool:
    return key in PROTECTED_KEYS or key.startswith(TRACK_CACHE_PREFIX)


def _drop_prefixed(prefs: dict[str, Any], prefix: str) -> int:
    keys = [k for k in prefs if k.startswith(prefix)]
    for k in keys:
        del prefs[k]
    return len(keys)


def merge_preferences(existing: dict[str, Any], incoming: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Merge a client document into the stored one.

    Protected cache keys from the client are skipped. A changed critique or
    playlist prompt invalidates the AI results generated with the old prompt.

    Returns:
        The merged document and the number of cache entries removed.
    """
    merged = dict(existing)
    profile_prompt_changed = False
    track_prompt_changed = False
    playlist_prompt_changed = False

    for key, value in incoming.items():
        if is_cache_key(key):
            continue
        changed = key not in merged or merged[key] != value
        if key == "profile_critique_prompt":
            profile_prompt_changed = changed
        elif key == "ai_critique_prompt":
            track_prompt_changed = changed
        elif key == "ai_playlists_prompt":
            playlist_prompt_changed = changed
        merged[key] = value

    cleared = 0
    if profile_prompt_changed:
        if "profile_critiques" in merged:
            del merged["profile_critiques"]
            cleared += 1
        cleared += _drop_prefixed(merged, PROFILE_CACHE_PREFIX)
        logger.info("user_preferences.invalidated", cache="profile")
    if track_prompt_changed:
        count = _drop_prefixed(merged, TRACK_CACHE_PREFIX)
        cleared += count
        if count:
            logger.info("user_preferences.invalidated", cache="track", count=count)
    if playlist_prompt_changed and "ai_playlists_cache" in merged:
        del merged["ai_playlists_cache"]
        cleared += 1
        logger.info("user_preferences.invalidated", cache="playlists")

    return merged, cleared


def clear_ai_cache(prefs: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Remove every cached AI result from a document."""
    cleaned = dict(prefs)
    cleared = 0
    for key in ("profile_critiques", "ai_playlists_cache"):
        if key in cleaned:
            del cleaned[key]
            cleared += 1
    cleared += _drop_prefixed(cleaned, TRACK_CACHE_PREFIX)
    cleared += _drop_prefixed(cleaned, PROFILE_CACHE_PREFIX)
    return cleaned, cleared


class UserPreferencesStore:
    """In-memory store for user preference documents. Replace with database-backed implementation."""

    def __init__(self):
        self._store: dict[str, dict[str, Any]] = {}

    async def get(self, user_id: str) -> dict[str, Any]:
        return dict(self._store.get(user_id, {}))

    async def save(self, user_id: str, preferences: dict[str, Any]) -> None:
        self._store[user_id] = dict(preferences)
