"""GreetBot engine - configuration, error types, the activity reducer and
the greeting request flow."""
from .config import ActivityConfig
from .errors import (
    ActivityError,
    ConfigError,
    FeedConnectError,
    FeedDroppedError,
    FeedRejectedError,
    GreetingError,
    TransportError,
)

__all__ = [
    "ActivityConfig",
    "ActivityError",
    "ConfigError",
    "FeedConnectError",
    "FeedDroppedError",
    "FeedRejectedError",
    "GreetingError",
    "TransportError",
]
