"""Shared fixtures for the client state layer tests."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest


class FakeClock:
    """Settable wall clock in seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Build an AsyncClient that routes every request to ``handler``."""

    def _make(handler: Callable) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="http://testserver",
        )

    return _make


@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    """Encode ``(event, payload)`` pairs as a server-sent-events body."""

    def _encode(*events: tuple[str, Any]) -> bytes:
        chunks = [f"event: {name}\ndata: {json.dumps(payload)}\n\n" for name, payload in events]
        return "".join(chunks).encode()

    return _encode
