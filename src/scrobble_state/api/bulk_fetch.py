"""Bulk Spotify metadata fetch job, reported as server-sent events."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from scrobble_state.config import settings

logger = structlog.get_logger()

ItemSource = Callable[[], Awaitable[list[str]]]
ItemFetcher = Callable[[str], Awaitable[None]]


async def configured_items() -> list[str]:
    """Track ids listed in BULK_FETCH_ITEMS."""
    return [i.strip() for i in settings.bulk_fetch_items.split(",") if i.strip()]


async def noop_fetch(item_id: str) -> None:
    await asyncio.sleep(0)


def _event(name: str, **payload: Any) -> dict[str, str]:
    return {"event": name, "data": json.dumps(payload)}


class BulkFetchJob:
    """Fetch metadata for every item from ``source`` one at a time.

    A failing item is reported with an ``error`` event and counted as failed;
    it never aborts the job.
    """

    def __init__(self, source: ItemSource = configured_items, fetcher: ItemFetcher = noop_fetch):
        self._source = source
        self._fetcher = fetcher

    async def events(self) -> AsyncIterator[dict[str, str]]:
        yield _event("log", message="Looking for tracks without Spotify metadata...")
        items = await self._source()
        total = len(items)
        yield _event("log", message=f"Found {total} tracks to process")
        logger.info("bulk_fetch.start", total=total)

        processed = 0
        failed = 0
        for index, item_id in enumerate(items, start=1):
            try:
                await self._fetcher(item_id)
                processed += 1
            except Exception as exc:
                failed += 1
                logger.warning("bulk_fetch.item_failed", item_id=item_id, exc_info=True)
                yield _event("error", message=f"Failed to fetch metadata for {item_id}: {exc}")

            yield _event(
                "progress",
                percent=round(index / total * 100, 1),
                processed=processed,
                failed=failed,
            )

        logger.info("bulk_fetch.done", processed=processed, failed=failed)
        yield _event("complete", processed=processed, failed=failed)
