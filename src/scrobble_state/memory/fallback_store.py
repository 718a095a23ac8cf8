"""Local fallback storage used when the preferences endpoint is unreachable.

Values are stored as JSON text under namespaced keys (``pref_<key>``) so the
store can share a backing file or mapping with other client-side data.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog

logger = structlog.get_logger()


class LocalFallbackStore:
    """Synchronous, prefix-namespaced key/value store kept in memory."""

    def __init__(self, prefix: str = "pref_"):
        self.prefix = prefix
        self._items: dict[str, str] = {}

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get_item(self, key: str) -> str | None:
        return self._items.get(self._key(key))

    def set_item(self, key: str, raw: str) -> None:
        self._items[self._key(key)] = raw

    def remove_item(self, key: str) -> None:
        self._items.pop(self._key(key), None)

    def keys(self) -> list[str]:
        """Return the un-prefixed keys currently stored."""
        return [k[len(self.prefix):] for k in self._items if k.startswith(self.prefix)]


class JsonFileFallbackStore(LocalFallbackStore):
    """Fallback store persisted to a single JSON file.

    The whole file is rewritten on each mutation. Entries written by other
    consumers under a different prefix are preserved.
    """

    def __init__(self, path: str | Path, prefix: str = "pref_"):
        super().__init__(prefix=prefix)
        self.path = Path(path)
        self._items = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("fallback_store.read_failed", path=str(self.path), exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("fallback_store.not_an_object", path=str(self.path))
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._items), encoding="utf-8")
        except OSError:
            logger.exception("fallback_store.write_failed", path=str(self.path))

    def set_item(self, key: str, raw: str) -> None:
        super().set_item(key, raw)
        self._write()

    def remove_item(self, key: str) -> None:
        super().remove_item(key)
        self._write()


def build_fallback_store(prefix: str, path: str = "") -> LocalFallbackStore:
    """Return a file-backed store when ``path`` is set, else an in-memory one."""
    if path:
        return JsonFileFallbackStore(path, prefix=prefix)
    return LocalFallbackStore(prefix=prefix)
