"""Pydantic models for the bulk-fetch stream session."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"


class LogEntry(BaseModel):
    type: Literal["log", "error", "success"]
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)


class StreamStats(BaseModel):
    processed: int = 0
    failed: int = 0


class StreamSnapshot(BaseModel):
    state: StreamState
    logs: list[LogEntry]
    progress: float
    stats: StreamStats
    is_fetching: bool
    is_complete: bool
