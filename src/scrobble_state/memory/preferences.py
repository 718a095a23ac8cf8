"""User preferences store — server-persisted document with local fallback.

A single ``PreferenceStore`` is shared by every consumer in the session. Reads
are served from its in-memory cache, writes are applied to the cache first and
persisted to the server afterwards, and keys that cannot be persisted (not
logged in, server unreachable) are mirrored into a ``LocalFallbackStore``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import structlog

from scrobble_state.config import settings
from scrobble_state.errors import AuthError, MalformedPayload, NetworkError
from scrobble_state.memory.fallback_store import LocalFallbackStore

logger = structlog.get_logger()

Listener = Callable[[dict[str, Any]], None]


def _decode_document(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedPayload(f"preferences body is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload(f"preferences body is a {type(data).__name__}, expected an object")
    return data


class PreferenceStore:
    """Session-wide preference cache with single-flight loads and optimistic writes."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        fallback: LocalFallbackStore,
        path: str = settings.preferences_path,
    ):
        self._client = client
        self._fallback = fallback
        self._path = path
        self._cache: dict[str, Any] = {}
        self._inflight: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []
        # None until the server has answered once
        self.is_authenticated: bool | None = None

    @property
    def preferences(self) -> dict[str, Any]:
        return dict(self._cache)

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a copy of the cache whenever it changes.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        snapshot = dict(self._cache)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("preferences.listener_failed")

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load_all(self) -> dict[str, Any]:
        """Fetch the full preference document from the server.

        Callers arriving while a load is in flight await that same load. The
        shared task is shielded so that cancelling one waiter does not abort
        the request for the others. Never raises on network or server errors.
        """
        if self._inflight is None:
            self._inflight = asyncio.get_running_loop().create_task(self._fetch_all())
        else:
            logger.debug("preferences.load.coalesced")
        return await asyncio.shield(self._inflight)

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        """Send a request to the preferences endpoint.

        Raises:
            NetworkError: If the request could not be sent or read.
            AuthError: If the server answered 401.
        """
        try:
            response = await self._client.request(method, self._path, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {self._path} failed: {exc}") from exc
        if response.status_code == 401:
            raise AuthError(f"{method} {self._path} requires a logged-in user")
        return response

    async def _fetch_all(self) -> dict[str, Any]:
        try:
            response = await self._request("GET")
            if not response.is_success:
                logger.warning("preferences.load.bad_status", status_code=response.status_code)
                return dict(self._cache)
            document = _decode_document(response)
        except AuthError:
            self.is_authenticated = False
            logger.info("preferences.load.unauthenticated", reason="using local fallback")
            return dict(self._cache)
        except NetworkError:
            logger.warning("preferences.load.failed", path=self._path, exc_info=True)
            return dict(self._cache)
        except MalformedPayload:
            logger.warning("preferences.load.malformed", exc_info=True)
            return dict(self._cache)
        finally:
            self._inflight = None

        self.is_authenticated = True
        self._cache = document
        self._notify()
        logger.debug("preferences.load.done", key_count=len(document))
        return dict(self._cache)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, else the fallback value, else ``default``."""
        if key in self._cache:
            return self._cache[key]

        stored = self._fallback.get_item(key)
        if stored:
            try:
                return json.loads(stored)
            except ValueError:
                return stored

        return default

    def set(self, key: str, value: Any) -> asyncio.Task:
        """Write ``value`` to the cache now and persist the whole document later.

        Must be called from a running event loop; outside one it raises
        ``RuntimeError`` and the cache is left unchanged. The returned task
        never raises; callers may ignore it.
        """
        loop = asyncio.get_running_loop()

        self._cache = {**self._cache, key: value}
        self._notify()

        task = loop.create_task(
            self._persist(dict(self._cache), key, value)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist(self, document: dict[str, Any], key: str, value: Any) -> None:
        try:
            response = await self._request("POST", json=document)
        except AuthError:
            self.is_authenticated = False
            logger.info("preferences.save.unauthenticated", key=key)
            self._mirror(key, value)
            return
        except NetworkError:
            logger.warning("preferences.save.failed", key=key, exc_info=True)
            self._mirror(key, value)
            return
        except (TypeError, ValueError):
            logger.exception("preferences.save.unserializable", key=key)
            return

        if not response.is_success:
            logger.warning("preferences.save.bad_status", key=key, status_code=response.status_code)
        else:
            logger.debug("preferences.save.done", key=key)

    def _mirror(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError):
            logger.exception("preferences.fallback.unserializable", key=key)
            return
        self._fallback.set_item(key, raw)

    async def flush(self) -> None:
        """Wait for every scheduled persist to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
