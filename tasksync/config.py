"""Client configuration for the sync engine.

Settings are resolved with this priority:
1. Environment variables (TASKSYNC_API_BASE_URL, TASKSYNC_BATCH_SIZE, ...)
2. <data dir>/config.json
3. Built-in defaults
"""

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from tasksync.utils import get_tasksync_home

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:3000/api"
DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_RETRIES = 3
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_BATCH_TIMEOUT = 30.0

# env var -> (field, converter)
_ENV_OVERRIDES = {
    "TASKSYNC_API_BASE_URL": ("api_base_url", str),
    "TASKSYNC_BATCH_SIZE": ("batch_size", int),
    "TASKSYNC_MAX_RETRIES": ("max_retries", int),
    "TASKSYNC_PROBE_TIMEOUT": ("probe_timeout", float),
    "TASKSYNC_BATCH_TIMEOUT": ("batch_timeout", float),
    "TASKSYNC_DB_PATH": ("db_path", Path),
}


@dataclass(frozen=True)
class SyncConfig:
    """Knobs recognized by the sync engine."""

    api_base_url: str = DEFAULT_API_BASE_URL
    batch_size: int = DEFAULT_BATCH_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT  # seconds
    batch_timeout: float = DEFAULT_BATCH_TIMEOUT  # seconds
    db_path: Optional[Path] = None

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.probe_timeout <= 0 or self.batch_timeout <= 0:
            raise ValueError("timeouts must be positive")

    def resolved_db_path(self) -> Path:
        return self.db_path or get_tasksync_home() / "tasks.db"


def validate_base_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate the remote base address.

    Rejects non-http/https schemes, URLs with no host, and remote plaintext
    HTTP endpoints (only localhost/127.0.0.1 may use http).

    Returns:
        The URL without a trailing slash, or ``None`` if rejected.
    """
    if not url:
        return None

    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid api_base_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid api_base_url; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http:
            logger.warning("HTTP not allowed in this context.")
            return None
        host = parsed.hostname or ""
        if host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http api_base_url.")
            return None
    return url.rstrip("/")


def _load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: expected a JSON object")
        return {}
    return data


def load_config(config_path: Optional[Path] = None, **overrides: Any) -> SyncConfig:
    """Build a SyncConfig from defaults, config.json, env vars and overrides."""
    config = SyncConfig()

    file_values = _load_config_file(config_path or get_tasksync_home() / "config.json")
    updates: Dict[str, Any] = {}
    for key, converter in (
        ("api_base_url", str),
        ("batch_size", int),
        ("max_retries", int),
        ("probe_timeout", float),
        ("batch_timeout", float),
        ("db_path", Path),
    ):
        if file_values.get(key) is not None:
            try:
                updates[key] = converter(file_values[key])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid config.json value for {key}: {file_values[key]!r}")

    for env_var, (key, converter) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            updates[key] = converter(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid {env_var}={raw!r}")

    updates.update({k: v for k, v in overrides.items() if v is not None})

    if "api_base_url" in updates:
        validated = validate_base_url(updates["api_base_url"])
        if validated is None:
            logger.warning(f"Falling back to default api_base_url {DEFAULT_API_BASE_URL}")
            updates.pop("api_base_url")
        else:
            updates["api_base_url"] = validated

    return replace(config, **updates)
