"""
Configuration loader for vc_commit_refiner.

The tool reads a JSON configuration file named ``config.json`` from the
``~/.commit_refiner/`` directory in the user's home directory, or from an
explicit path given on the command line. The loader validates the
structure of the file and returns a dictionary with the provider
settings and the run settings.

If the configuration file is missing, malformed, or has fields of the
wrong type, a :class:`ConfigError` is raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from vc_commit_refiner.errors import ConfigError


logger = logging.getLogger(__name__)
# Attach a null handler to avoid "No handler" warnings in environments
# where the root logger is not configured. The CLI configures logging
# explicitly when it runs.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


CONFIG_FILE_NAME = "config.json"

PROVIDERS = ("ollama", "openai")

# key -> (accepted types, description used in error messages)
_OPTIONAL_KEYS = {
    "provider": ((str,), "a string"),
    "base_url": ((str,), "a string"),
    "port": ((int,), "an integer"),
    "api_key": ((str,), "a string"),
    "request_timeout": ((int, float), "a number"),
    "max_tokens": ((int,), "an integer"),
    "max_context_tokens": ((int,), "an integer"),
    "concurrency_limit": ((int,), "an integer"),
    "coherence_enabled": ((bool,), "a boolean"),
    "legacy_batch_size": ((int, type(None)), "an integer or null"),
    "max_retry_attempts": ((int,), "an integer"),
    "safety_margin_ratio": ((int, float), "a number"),
}

_POSITIVE_KEYS = ("port", "max_tokens", "max_context_tokens", "concurrency_limit", "max_retry_attempts")


@dataclass(frozen=True)
class RunSettings:
    """Settings that shape one run of the engine."""

    concurrency_limit: int = 4
    coherence_enabled: bool = True
    legacy_batch_size: Optional[int] = None
    max_retry_attempts: int = 3
    retry_backoff: float = 1.0
    safety_margin_ratio: float = 0.0

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides: Any) -> "RunSettings":
        """Build settings from a loaded config; non-``None`` overrides win."""
        values: Dict[str, Any] = {}
        for name in (
            "concurrency_limit",
            "coherence_enabled",
            "legacy_batch_size",
            "max_retry_attempts",
            "safety_margin_ratio",
        ):
            if name in config:
                values[name] = config[name]
        values.update({key: value for key, value in overrides.items() if value is not None})
        settings = cls(**values)
        if settings.concurrency_limit < 1:
            raise ConfigError("'concurrency_limit' must be at least 1")
        if settings.max_retry_attempts < 1:
            raise ConfigError("'max_retry_attempts' must be at least 1")
        if settings.legacy_batch_size is not None and settings.legacy_batch_size < 1:
            raise ConfigError("'legacy_batch_size' must be at least 1")
        return settings


def _get_config_directory() -> Path:
    """Return the per-user configuration directory, ``~/.commit_refiner/``."""
    return Path.home() / ".commit_refiner"


def validate_config(data: Any) -> Dict[str, Any]:
    """Validate a parsed configuration mapping and return it."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")
    if "model" not in data:
        logger.error("Configuration file missing required key: model")
        raise ConfigError("Missing required configuration keys: model")
    if not isinstance(data["model"], str) or not data["model"]:
        raise ConfigError("'model' must be a non-empty string")

    for key, (types, description) in _OPTIONAL_KEYS.items():
        if key not in data:
            continue
        value = data[key]
        # bool is a subclass of int; reject it where a number is expected.
        if isinstance(value, bool) and bool not in types:
            raise ConfigError(f"'{key}' must be {description}")
        if not isinstance(value, types):
            raise ConfigError(f"'{key}' must be {description}")

    for key in _POSITIVE_KEYS:
        if key in data and data[key] < 1:
            raise ConfigError(f"'{key}' must be at least 1")
    if data.get("legacy_batch_size") is not None and data["legacy_batch_size"] < 1:
        raise ConfigError("'legacy_batch_size' must be at least 1")
    if "safety_margin_ratio" in data and data["safety_margin_ratio"] < 0:
        raise ConfigError("'safety_margin_ratio' must not be negative")
    if "provider" in data and data["provider"].lower() not in PROVIDERS:
        raise ConfigError(f"'provider' must be one of: {', '.join(PROVIDERS)}")
    return data


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and validate the configuration file.

    Args:
        config_path: Explicit path to the configuration file. Defaults to
                     ``~/.commit_refiner/config.json``.

    Returns:
        A dictionary with the validated configuration. ``model`` is
        required; provider keys (``provider``, ``base_url``, ``port``,
        ``api_key``, ``request_timeout``, ``max_tokens``,
        ``max_context_tokens``) and run keys (see :class:`RunSettings`)
        are optional.

    Raises:
        ConfigError: If the configuration file is missing, malformed, or invalid.
    """
    if config_path is None:
        config_dir = _get_config_directory()
        config_path = config_dir / CONFIG_FILE_NAME
    config_path = Path(config_path)

    if not config_path.exists():
        logger.error("Configuration file '%s' does not exist", config_path)
        raise ConfigError(
            f"Missing configuration file: {config_path}. "
            f"Create it with at least a 'model' key, e.g. {{\"model\": \"llama3\"}}."
        )

    try:
        content = config_path.read_text(encoding="utf-8")
        data = json.loads(content)
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Failed to read or parse configuration file: %s", exc)
        raise ConfigError(f"Invalid JSON in {config_path.name}: {exc}") from exc

    validate_config(data)
    logger.debug("Loaded configuration from: %s", config_path)
    return data
