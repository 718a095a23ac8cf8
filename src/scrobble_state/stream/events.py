"""Bulk-fetch push events and server-sent-events frame decoding."""

from __future__ import annotations

import json
from typing import AsyncIterator, Union

from pydantic import BaseModel, ValidationError

from scrobble_state.errors import MalformedPayload

# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


class LogEvent(BaseModel):
    message: str


class ErrorEvent(BaseModel):
    message: str


class ProgressEvent(BaseModel):
    percent: float
    processed: int
    failed: int


class CompleteEvent(BaseModel):
    processed: int
    failed: int


StreamEvent = Union[LogEvent, ErrorEvent, ProgressEvent, CompleteEvent]

EVENT_TYPES: dict[str, type[BaseModel]] = {
    "log": LogEvent,
    "error": ErrorEvent,
    "progress": ProgressEvent,
    "complete": CompleteEvent,
}


def decode_event(name: str, data: str) -> StreamEvent:
    """Parse the JSON ``data`` of a named event into its variant.

    Raises:
        MalformedPayload: If the event name is unknown, the data is not JSON,
            or the payload does not match the event schema.
    """
    model = EVENT_TYPES.get(name)
    if model is None:
        raise MalformedPayload(f"unknown event type {name!r}")
    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise MalformedPayload(f"{name} event data is not JSON") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPayload(f"{name} event payload does not match schema: {exc}") from exc


# ---------------------------------------------------------------------------
# SSE wire format
# ---------------------------------------------------------------------------


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Yield ``(event, data)`` frames from an async iterator of SSE text lines.

    Events without an ``event:`` field are named ``message``. Comment lines and
    fields other than ``event`` and ``data`` are ignored, as are frames that
    carry no data.
    """
    event = ""
    data: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")

        if not line:
            if data:
                yield event or "message", "\n".join(data)
            event = ""
            data = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    # a frame not terminated by a blank line is incomplete and dropped
