"""Client application context — one instance of each shared service per session."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import httpx

from scrobble_state.config import settings
from scrobble_state.guard.circuit_breaker import CircuitBreaker
from scrobble_state.memory.fallback_store import build_fallback_store
from scrobble_state.memory.preferences import PreferenceStore
from scrobble_state.stream.tracker import StreamProgressTracker


@dataclass
class AppContext:
    client: httpx.AsyncClient
    preferences: PreferenceStore
    breaker: CircuitBreaker
    bulk_fetch: StreamProgressTracker

    async def aclose(self) -> None:
        """Stop the stream, flush pending preference writes and close the client."""
        self.bulk_fetch.stop_fetch()
        await self.preferences.flush()
        await self.client.aclose()


def build_app_context(client: httpx.AsyncClient | None = None) -> AppContext:
    """Wire the services together. Tests pass their own client."""
    if client is None:
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_sec,
        )
    fallback = build_fallback_store(settings.fallback_prefix, settings.fallback_path)
    return AppContext(
        client=client,
        preferences=PreferenceStore(client, fallback),
        breaker=CircuitBreaker(state_path=settings.circuit_state_path or None),
        bulk_fetch=StreamProgressTracker(client),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Return the session-wide context, building it on first use."""
    return build_app_context()
