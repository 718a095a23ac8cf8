"""Error taxonomy shared by the client services."""

from __future__ import annotations


class ScrobbleStateError(Exception):
    """Base class for every error raised by this package."""


class NetworkError(ScrobbleStateError):
    """A request could not be sent or its response could not be read."""


class AuthError(ScrobbleStateError):
    """The server answered 401; callers degrade to local fallback storage."""


class RateLimited(ScrobbleStateError):
    """The metered AI endpoint answered 429.

    ``retry_after`` is the cooldown window applied to the circuit breaker, so the
    caller can tell the user how long AI features are paused.
    """

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


class StreamInterrupted(ScrobbleStateError):
    """The push stream closed before a ``complete`` event was received."""


class MalformedPayload(ScrobbleStateError):
    """A response or event body was not JSON or did not match its schema."""
