"""Exception hierarchy for the activity client.

Transport failures are raised by the feed transports and recovered inside
the connection manager; they never reach snapshot consumers.
"""
from __future__ import annotations


class ActivityError(Exception):
    """Base exception for all activity client errors."""


class ConfigError(ActivityError):
    """A configuration value is missing or invalid."""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid config value for {key}: {reason}")


class TransportError(ActivityError):
    """Base class for live feed transport failures."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Feed for session {session_id}: {reason}")


class FeedConnectError(TransportError):
    """The transport could not establish the feed."""


class FeedRejectedError(TransportError):
    """The remote end answered the feed request with an error status."""
    def __init__(self, session_id: str, status: int):
        self.status = status
        super().__init__(session_id, f"rejected with HTTP {status}")


class FeedDroppedError(TransportError):
    """An established feed failed mid-stream."""


class GreetingError(ActivityError):
    """The content-generation call did not produce a greeting."""
    def __init__(self, message: str, session_id: str | None = None):
        self.session_id = session_id
        super().__init__(message)
