from __future__ import annotations

import asyncio
from typing import AsyncIterator

import httpx
import pytest

from scrobble_state.models.stream import StreamState
from scrobble_state.stream.tracker import (
    CONNECTED_MESSAGE,
    INIT_MESSAGE,
    INTERRUPTED_MESSAGE,
    StreamProgressTracker,
)

PATH = "/apis/web/v1/spotify/bulk-fetch-sse"
SSE_HEADERS = {"content-type": "text/event-stream"}


def _tracker(client: httpx.AsyncClient) -> StreamProgressTracker:
    return StreamProgressTracker(client, path=PATH)


async def _until(condition, attempts: int = 200) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_scripted_stream_completes(make_client, sse_body) -> None:
    body = sse_body(
        ("log", {"message": "init"}),
        ("progress", {"percent": 10, "processed": 5, "failed": 0}),
        ("progress", {"percent": 55, "processed": 40, "failed": 2}),
        ("complete", {"processed": 78, "failed": 3}),
    )

    async with make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body)) as client:
        tracker = _tracker(client)
        assert tracker.start_fetch() is True
        assert tracker.is_fetching
        await tracker.wait()

    assert tracker.is_fetching is False
    assert tracker.is_complete is True
    assert tracker.state is StreamState.COMPLETE
    assert tracker.stats.model_dump() == {"processed": 78, "failed": 3}
    assert tracker.progress == 55
    assert len(tracker.logs) >= 4
    assert [(entry.type, entry.message) for entry in tracker.logs] == [
        ("log", INIT_MESSAGE),
        ("log", CONNECTED_MESSAGE),
        ("log", "init"),
        ("success", "Operation complete! Processed: 78, Failed: 3"),
    ]


@pytest.mark.asyncio
async def test_second_start_is_a_noop(make_client, sse_body) -> None:
    calls = 0
    body = sse_body(("complete", {"processed": 1, "failed": 0}))

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, headers=SSE_HEADERS, content=body)

    async with make_client(handler) as client:
        tracker = _tracker(client)
        assert tracker.start_fetch() is True
        assert tracker.start_fetch() is False
        await tracker.wait()

    assert calls == 1
    assert [entry.message for entry in tracker.logs].count(INIT_MESSAGE) == 1


@pytest.mark.asyncio
async def test_error_events_do_not_end_the_session(make_client, sse_body) -> None:
    body = sse_body(
        ("error", {"message": "Failed to fetch metadata for 12"}),
        ("progress", {"percent": 100, "processed": 1, "failed": 1}),
        ("complete", {"processed": 1, "failed": 1}),
    )

    async with make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body)) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()

    assert tracker.is_complete
    assert ("error", "Failed to fetch metadata for 12") in [(e.type, e.message) for e in tracker.logs]


@pytest.mark.asyncio
async def test_transport_error_before_complete_interrupts(make_client, sse_body) -> None:
    calls = 0

    async def broken_stream() -> AsyncIterator[bytes]:
        yield sse_body(("log", {"message": "Found 3 tracks to process"}))
        raise httpx.ReadError("connection reset by peer")

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, headers=SSE_HEADERS, content=broken_stream())

    async with make_client(handler) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()
        # give any reconnect attempt a chance to show up
        for _ in range(10):
            await asyncio.sleep(0)

    assert calls == 1
    assert tracker.is_fetching is False
    assert tracker.is_complete is False
    assert tracker.state is StreamState.ERRORED
    assert (tracker.logs[-1].type, tracker.logs[-1].message) == ("error", INTERRUPTED_MESSAGE)
    assert tracker.logs[-2].message == "Found 3 tracks to process"


@pytest.mark.asyncio
async def test_stream_closing_without_complete_interrupts(make_client, sse_body) -> None:
    body = sse_body(("progress", {"percent": 20, "processed": 2, "failed": 0}))

    async with make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body)) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()

    assert tracker.is_fetching is False
    assert tracker.logs[-1].message == INTERRUPTED_MESSAGE
    # counters stay visible after the interruption
    assert tracker.stats.processed == 2


@pytest.mark.asyncio
async def test_error_status_interrupts(make_client) -> None:
    async with make_client(lambda request: httpx.Response(401, json={"error": "unauthorized"})) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()

    assert tracker.state is StreamState.ERRORED
    assert [(e.type, e.message) for e in tracker.logs] == [
        ("log", INIT_MESSAGE),
        ("error", INTERRUPTED_MESSAGE),
    ]


@pytest.mark.asyncio
async def test_connect_error_interrupts(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()

    assert tracker.is_fetching is False
    assert tracker.logs[-1].message == INTERRUPTED_MESSAGE


@pytest.mark.asyncio
async def test_malformed_events_are_discarded(make_client) -> None:
    body = (
        b"event: log\ndata: not json\n\n"
        b"event: progress\ndata: {\"percent\": 50}\n\n"
        b"event: heartbeat\ndata: {}\n\n"
        b"event: complete\ndata: {\"processed\": 4, \"failed\": 0}\n\n"
    )

    async with make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body)) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()

    assert tracker.is_complete
    assert tracker.progress == 0
    assert [e.type for e in tracker.logs] == ["log", "log", "success"]


@pytest.mark.asyncio
async def test_stop_fetch_closes_connection_and_keeps_log(make_client, sse_body) -> None:
    never = asyncio.Event()
    closed = asyncio.Event()

    async def endless_stream() -> AsyncIterator[bytes]:
        try:
            yield sse_body(("progress", {"percent": 5, "processed": 1, "failed": 0}))
            await never.wait()
            yield b""
        finally:
            closed.set()

    async with make_client(
        lambda request: httpx.Response(200, headers=SSE_HEADERS, content=endless_stream())
    ) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await _until(lambda: tracker.stats.processed == 1)
        assert tracker.state is StreamState.STREAMING

        tracker.stop_fetch()
        await asyncio.wait_for(closed.wait(), timeout=1)

    assert tracker.is_fetching is False
    assert tracker.state is StreamState.IDLE
    assert tracker.stats.processed == 1
    assert INTERRUPTED_MESSAGE not in [e.message for e in tracker.logs]


@pytest.mark.asyncio
async def test_restart_after_complete_resets_session(make_client, sse_body) -> None:
    bodies = iter(
        [
            sse_body(("log", {"message": "first run"}), ("complete", {"processed": 9, "failed": 1})),
            sse_body(("complete", {"processed": 0, "failed": 0})),
        ]
    )

    async with make_client(
        lambda request: httpx.Response(200, headers=SSE_HEADERS, content=next(bodies))
    ) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        await tracker.wait()
        assert tracker.stats.processed == 9

        assert tracker.start_fetch() is True
        assert tracker.is_complete is False
        assert tracker.stats.processed == 0
        assert [e.message for e in tracker.logs] == [INIT_MESSAGE]
        await tracker.wait()

    assert "first run" not in [e.message for e in tracker.logs]
    assert tracker.is_complete


@pytest.mark.asyncio
async def test_clear_logs_leaves_connection_alone(make_client, sse_body) -> None:
    body = sse_body(("log", {"message": "x"}), ("complete", {"processed": 2, "failed": 0}))

    async with make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body)) as client:
        tracker = _tracker(client)
        tracker.start_fetch()
        tracker.clear_logs()
        assert tracker.is_fetching is True
        assert tracker.logs == []
        await tracker.wait()

    snapshot = tracker.snapshot()
    assert snapshot.is_complete
    assert snapshot.stats.processed == 2
    assert snapshot.logs[-1].type == "success"


def test_start_outside_event_loop_leaves_tracker_idle(make_client, sse_body) -> None:
    body = sse_body(("complete", {"processed": 1, "failed": 0}))
    client = make_client(lambda request: httpx.Response(200, headers=SSE_HEADERS, content=body))
    tracker = _tracker(client)

    with pytest.raises(RuntimeError):
        tracker.start_fetch()

    assert tracker.state is StreamState.IDLE
    assert tracker.is_fetching is False
    assert tracker.logs == []

    async def start_inside_loop() -> bool:
        async with client:
            started = tracker.start_fetch()
            await tracker.wait()
            return started

    assert asyncio.run(start_inside_loop()) is True
    assert tracker.is_complete
