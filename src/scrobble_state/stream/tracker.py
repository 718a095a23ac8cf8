"""Client side of the Spotify bulk metadata fetch, reported over server-sent events.

The tracker owns at most one connection at a time. Its log, progress and
counters stay readable after the stream ends so the caller can show what
happened; a new ``start_fetch()`` resets them.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog

from scrobble_state.config import settings
from scrobble_state.errors import MalformedPayload, StreamInterrupted
from scrobble_state.models.stream import (
    LogEntry,
    StreamSnapshot,
    StreamState,
    StreamStats,
)
from scrobble_state.stream.events import (
    EVENT_TYPES,
    CompleteEvent,
    ErrorEvent,
    LogEvent,
    ProgressEvent,
    StreamEvent,
    decode_event,
    iter_sse,
)

logger = structlog.get_logger()

INIT_MESSAGE = "Initializing connection to Spotify Metadata Service..."
CONNECTED_MESSAGE = "Connected. Waiting for server events..."
INTERRUPTED_MESSAGE = "Connection interrupted."


class StreamProgressTracker:
    """Drives a single bulk-fetch push stream and records what it reports."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str = settings.bulk_fetch_path,
        connect_timeout_sec: float = settings.request_timeout_sec,
    ):
        self._client = client
        self._path = path
        # the stream may stay silent for long stretches, so no read timeout
        self._timeout = httpx.Timeout(connect_timeout_sec, read=None)
        self._task: asyncio.Task | None = None

        self.state = StreamState.IDLE
        self.logs: list[LogEntry] = []
        self.progress: float = 0.0
        self.stats = StreamStats()
        self.is_fetching = False
        self.is_complete = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_fetch(self) -> bool:
        """Open the push stream. Returns False when one is already running."""
        if self.is_fetching:
            logger.debug("stream.start.ignored", state=self.state.value)
            return False

        # raises RuntimeError outside a running loop, before any state changes
        loop = asyncio.get_running_loop()

        self.clear_logs()
        self.is_fetching = True
        self.state = StreamState.CONNECTING
        self._add_log("log", INIT_MESSAGE)

        self._task = loop.create_task(self._consume())
        logger.info("stream.started", path=self._path)
        return True

    def stop_fetch(self) -> None:
        """Close the connection if open. Log and counters are left as they are."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        self.is_fetching = False
        if self.state in (StreamState.CONNECTING, StreamState.STREAMING):
            self.state = StreamState.IDLE

    def clear_logs(self) -> None:
        """Reset log, progress, counters and the complete flag. The connection is untouched."""
        self.logs = []
        self.progress = 0.0
        self.stats = StreamStats()
        self.is_complete = False

    async def wait(self) -> None:
        """Wait until the current consumer, if any, has finished."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            state=self.state,
            logs=list(self.logs),
            progress=self.progress,
            stats=self.stats.model_copy(),
            is_fetching=self.is_fetching,
            is_complete=self.is_complete,
        )

    # ------------------------------------------------------------------
    # Stream consumption
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        try:
            async with self._client.stream("GET", self._path, timeout=self._timeout) as response:
                if not response.is_success:
                    raise StreamInterrupted(f"bulk fetch stream answered {response.status_code}")

                self.state = StreamState.STREAMING
                self._add_log("log", CONNECTED_MESSAGE)
                async for name, data in iter_sse(response.aiter_lines()):
                    if name not in EVENT_TYPES:
                        logger.debug("stream.event.ignored", event_type=name)
                        continue
                    try:
                        event = decode_event(name, data)
                    except MalformedPayload:
                        logger.warning("stream.event.malformed", event_type=name, exc_info=True)
                        continue

                    self._handle(event)
                    if self.is_complete:
                        return

            raise StreamInterrupted("stream closed before complete")
        except (httpx.HTTPError, StreamInterrupted) as exc:
            self._interrupt(exc)
        except Exception as exc:
            logger.exception("stream.failed")
            self._interrupt(exc)

    def _handle(self, event: StreamEvent) -> None:
        if isinstance(event, LogEvent):
            self._add_log("log", event.message)
        elif isinstance(event, ErrorEvent):
            self._add_log("error", event.message)
        elif isinstance(event, ProgressEvent):
            self.progress = event.percent
            self.stats = StreamStats(processed=event.processed, failed=event.failed)
        elif isinstance(event, CompleteEvent):
            self.stats = StreamStats(processed=event.processed, failed=event.failed)
            self.is_complete = True
            self._add_log(
                "success",
                f"Operation complete! Processed: {event.processed}, Failed: {event.failed}",
            )
            self.is_fetching = False
            self.state = StreamState.COMPLETE
            self._task = None
            logger.info("stream.complete", processed=event.processed, failed=event.failed)

    def _interrupt(self, exc: Exception) -> None:
        # a transport close right after complete is not an interruption
        if self.is_complete:
            return
        logger.warning("stream.interrupted", error=str(exc))
        self._add_log("error", INTERRUPTED_MESSAGE)
        self.stop_fetch()
        self.state = StreamState.ERRORED

    def _add_log(self, kind: str, message: str) -> None:
        self.logs.append(LogEntry(type=kind, message=message))


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
