"""AI circuit breaker — session-scoped guard for the metered AI endpoints.

Keys are marked as fetched before the guarded request is sent, so a second
caller racing for the same key is refused immediately. A 429 from the AI
provider puts every key on hold until the global cooldown lapses.
"""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

import structlog

from scrobble_state.config import settings

logger = structlog.get_logger()


class CircuitBreaker:
    """In-memory admission guard exposing can_fetch/mark_fetched/trigger_cooldown/reset.

    Args:
        clock: Returns the current time in seconds since the epoch.
        state_path: Optional JSON file used to keep flags and the cooldown
            across process restarts. Persistence is off when unset.
        log_interval_sec: Minimum spacing between "cooldown active" warnings.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        state_path: str | Path | None = None,
        log_interval_sec: float = settings.cooldown_log_interval_sec,
    ):
        self._clock = clock
        self._state_path = Path(state_path) if state_path else None
        self._log_interval_ms = int(log_interval_sec * 1000)
        self._fetched: set[str] = set()
        self._cooldown_until_ms: int | None = None
        self._last_log_ms = 0
        if self._state_path is not None:
            self._load()

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    @property
    def cooldown_until_ms(self) -> int | None:
        return self._cooldown_until_ms

    def can_fetch(self, key: str) -> bool:
        """Return whether a request for ``key`` may be sent right now."""
        if self._cooldown_until_ms is not None:
            now = self._now_ms()
            if now < self._cooldown_until_ms:
                if now - self._last_log_ms > self._log_interval_ms:
                    logger.warning(
                        "circuit_breaker.cooldown.active",
                        until=datetime.fromtimestamp(self._cooldown_until_ms / 1000).isoformat(),
                    )
                    self._last_log_ms = now
                return False
            # expired
            self._cooldown_until_ms = None
            self._save()

        return key not in self._fetched

    def mark_fetched(self, key: str) -> None:
        self._fetched.add(key)
        self._save()

    def trigger_cooldown(self, seconds: float = settings.ai_cooldown_seconds) -> None:
        """Pause every key for ``seconds``. Call this when the AI endpoint answers 429."""
        self._cooldown_until_ms = self._now_ms() + int(seconds * 1000)
        self._save()
        logger.error("circuit_breaker.cooldown.triggered", seconds=seconds)

    def cooldown_remaining(self) -> float:
        """Seconds left on the global cooldown, 0.0 when none is active."""
        if self._cooldown_until_ms is None:
            return 0.0
        return max(0.0, (self._cooldown_until_ms - self._now_ms()) / 1000)

    def reset(self) -> None:
        self._fetched.clear()
        self._cooldown_until_ms = None
        self._last_log_ms = 0
        self._save()
        logger.info("circuit_breaker.reset")

    # ------------------------------------------------------------------
    # Optional persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if self._state_path is None or not self._state_path.exists():
            return
        try:
            data = json.loads(self._state_path.read_text(encoding="utf-8"))
            self._fetched = {str(k) for k in data.get("fetched", [])}
            until = data.get("cooldown_until_ms")
            self._cooldown_until_ms = int(until) if until is not None else None
        except (OSError, ValueError, TypeError, AttributeError):
            logger.warning("circuit_breaker.state.load_failed", path=str(self._state_path), exc_info=True)
            self._fetched = set()
            self._cooldown_until_ms = None

    def _save(self) -> None:
        if self._state_path is None:
            return
        payload = {
            "fetched": sorted(self._fetched),
            "cooldown_until_ms": self._cooldown_until_ms,
        }
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            self._state_path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError:
            logger.exception("circuit_breaker.state.save_failed", path=str(self._state_path))
