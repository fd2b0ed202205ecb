"""YAML configuration loader.

Example YAML:
    feed:
      transport: websocket
      url: wss://activity.example.com/ws/{session_id}
      backoff_base_seconds: 0.5
      backoff_factor: 2
      backoff_max_seconds: 10
      max_reconnect_attempts: 5
      max_events: 200
      heartbeat_seconds: 30

    agent:
      api_url: https://agents.example.com/api/agent
      api_key_env: GREETBOT_API_KEY
      agent_id: 69970d4c46f8ff4c518efb66
      user_id: someone@example.com

    logging:
      level: DEBUG

Values left out fall back to ``ActivityConfig.from_env()``, so env vars
still apply underneath a partial file.
"""
from __future__ import annotations

import logging
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from .config import ActivityConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

# YAML key -> ActivityConfig field, per section.
_FEED_KEYS: dict[str, str] = {
    "transport": "transport",
    "url": "feed_url",
    "backoff_base_seconds": "backoff_base_seconds",
    "backoff_factor": "backoff_factor",
    "backoff_max_seconds": "backoff_max_seconds",
    "max_reconnect_attempts": "max_reconnect_attempts",
    "max_events": "max_events",
    "max_thinking_events": "max_thinking_events",
    "heartbeat_seconds": "heartbeat_seconds",
}

_AGENT_KEYS: dict[str, str] = {
    "api_url": "api_url",
    "api_key": "api_key",
    "agent_id": "agent_id",
    "user_id": "user_id",
    "request_timeout_seconds": "request_timeout_seconds",
}


def _coerce(name: str, value: Any) -> Any:
    """Coerce a raw YAML value to the type of the ActivityConfig field."""
    field_types = {f.name: f.type for f in fields(ActivityConfig)}
    declared = str(field_types[name])
    try:
        if declared == "float":
            return float(value)
        if declared == "int":
            if isinstance(value, bool):
                raise ValueError("booleans are not integers")
            return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(name, f"cannot use {value!r}: {exc}") from exc
    if value is None:
        if "None" not in declared:
            raise ConfigError(name, "must not be empty")
        return None
    return str(value)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(name, "section must be a mapping")
    return section


def _collect(
    section: dict[str, Any], keys: dict[str, str], label: str,
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in section.items():
        target = keys.get(key)
        if target is None:
            logger.warning("load_yaml_config: ignoring unknown key %s.%s", label, key)
            continue
        overrides[target] = _coerce(target, value)
    return overrides


def load_yaml_config(path: str | Path) -> ActivityConfig:
    """Load and parse a YAML config file into an ActivityConfig."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )

    overrides: dict[str, Any] = {}
    overrides.update(_collect(_section(raw, "feed"), _FEED_KEYS, "feed"))

    agent = dict(_section(raw, "agent"))
    api_key_env = agent.pop("api_key_env", None)
    overrides.update(_collect(agent, _AGENT_KEYS, "agent"))
    if api_key_env and "api_key" not in overrides:
        overrides["api_key"] = os.getenv(str(api_key_env)) or None
        if overrides["api_key"] is None:
            logger.warning(
                "load_yaml_config: api_key_env %s is not set", api_key_env,
            )

    level = _section(raw, "logging").get("level")
    if level:
        overrides["log_level"] = str(level).upper()

    base = ActivityConfig.from_env()
    config = replace(base, **overrides)
    logger.info(
        "load_yaml_config: transport=%s feed_url=%s max_events=%d",
        config.transport, config.feed_url, config.max_events,
    )
    return config
