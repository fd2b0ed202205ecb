"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via GREETBOT_* env vars,
or load a YAML file with ``greetbot.engine.yaml_config``.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .errors import ConfigError

logger = logging.getLogger(__name__)

TRANSPORT_KINDS = frozenset({"websocket", "sse"})

# Default agent for the greeting flow.
GREETING_AGENT_ID = "69970d4c46f8ff4c518efb66"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(name, f"expected a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(name, f"expected an integer, got {raw!r}") from exc


@dataclass
class ActivityConfig:
    """Activity feed and content-generation client configuration."""

    # Live feed transport: "websocket" or "sse".
    transport: str = "websocket"
    # Feed URL template; {session_id} is replaced per session.
    feed_url: str = "ws://localhost:8000/ws/{session_id}"
    # Content-generation endpoint used by AgentClient.submit().
    api_url: str = "http://localhost:8000/api/agent"
    api_key: str | None = None
    user_id: str | None = None
    agent_id: str = GREETING_AGENT_ID

    # Reconnection backoff: min(cap, base * factor ** attempt).
    backoff_base_seconds: float = 0.5
    backoff_factor: float = 2.0
    backoff_max_seconds: float = 10.0
    # Consecutive failed attempts before the manager gives up.
    max_reconnect_attempts: int = 5

    # Snapshot bounds.
    max_events: int = 200
    max_thinking_events: int = 200

    # WebSocket ping interval; 0 disables heartbeats.
    heartbeat_seconds: float = 30.0
    request_timeout_seconds: float = 120.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError for values the client cannot run with."""
        self.transport = self.transport.lower()
        if self.transport not in TRANSPORT_KINDS:
            raise ConfigError(
                "transport",
                f"expected one of {sorted(TRANSPORT_KINDS)}, got {self.transport!r}",
            )
        if "{session_id}" not in self.feed_url:
            raise ConfigError("feed_url", "missing {session_id} placeholder")
        if self.backoff_base_seconds <= 0:
            raise ConfigError("backoff_base_seconds", "must be positive")
        if self.backoff_factor < 1:
            raise ConfigError("backoff_factor", "must be at least 1")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ConfigError(
                "backoff_max_seconds", "must not be below backoff_base_seconds",
            )
        if self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts", "must not be negative")
        if self.max_events < 1:
            raise ConfigError("max_events", "must be at least 1")
        if self.max_thinking_events < 1:
            raise ConfigError("max_thinking_events", "must be at least 1")

    def feed_url_for(self, session_id: str) -> str:
        return self.feed_url.replace("{session_id}", session_id)

    @classmethod
    def from_env(cls) -> ActivityConfig:
        """Load configuration from GREETBOT_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("GREETBOT_")
        }
        if overrides:
            logger.info(
                "ActivityConfig.from_env: GREETBOT_* env overrides: %s",
                ", ".join(
                    f"{k}={'***' if k == 'GREETBOT_API_KEY' else v}"
                    for k, v in sorted(overrides.items())
                ),
            )
        else:
            logger.debug("ActivityConfig.from_env: no GREETBOT_* env vars set, using defaults")

        config = cls(
            transport=os.getenv("GREETBOT_TRANSPORT", cls.transport),
            feed_url=os.getenv("GREETBOT_FEED_URL", cls.feed_url),
            api_url=os.getenv("GREETBOT_API_URL", cls.api_url),
            api_key=os.getenv("GREETBOT_API_KEY") or None,
            user_id=os.getenv("GREETBOT_USER_ID") or None,
            agent_id=os.getenv("GREETBOT_AGENT_ID", cls.agent_id),
            backoff_base_seconds=_env_float(
                "GREETBOT_BACKOFF_BASE", cls.backoff_base_seconds,
            ),
            backoff_factor=_env_float(
                "GREETBOT_BACKOFF_FACTOR", cls.backoff_factor,
            ),
            backoff_max_seconds=_env_float(
                "GREETBOT_BACKOFF_MAX", cls.backoff_max_seconds,
            ),
            max_reconnect_attempts=_env_int(
                "GREETBOT_MAX_RECONNECTS", cls.max_reconnect_attempts,
            ),
            max_events=_env_int("GREETBOT_MAX_EVENTS", cls.max_events),
            max_thinking_events=_env_int(
                "GREETBOT_MAX_THINKING_EVENTS", cls.max_thinking_events,
            ),
            heartbeat_seconds=_env_float(
                "GREETBOT_HEARTBEAT", cls.heartbeat_seconds,
            ),
            request_timeout_seconds=_env_float(
                "GREETBOT_REQUEST_TIMEOUT", cls.request_timeout_seconds,
            ),
            log_level=os.getenv("GREETBOT_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ActivityConfig.from_env: transport=%s feed_url=%s api_url=%s log_level=%s",
            config.transport, config.feed_url, config.api_url, config.log_level,
        )
        return config
