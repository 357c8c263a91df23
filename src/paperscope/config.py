"""Configuration persistence: load and save client preferences."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from paperscope.models import (
    CONFIG_APP_NAME,
    DEFAULT_BACKEND_URL,
    DEFAULT_MAX_PARALLEL,
    HEALTH_INTERVAL_SECONDS,
    MAX_PARALLEL_LIMIT,
    LLMSettings,
    UserConfig,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration Persistence
# ============================================================================
#
# Validation contract: _dict_to_config() guarantees valid output for any input:
#
#   Field                    Rule                      Handler
#   ───────────────────────  ────────────────────────  ──────────────────
#   max_parallel             1 ≤ x ≤ MAX_PARALLEL_LIMIT  clamp_max_parallel
#   health_interval_seconds  x > 0                     _parse_interval
#   llm.timeout              x > 0                     _parse_llm_settings
#   scalar fields            type-checked via safe_get()
#
CONFIG_FILENAME = "config.json"


def get_config_path() -> Path:
    """Get the path to the configuration file.

    Uses platformdirs for cross-platform config directory:
    - Linux: ~/.config/paperscope/config.json
    - macOS: ~/Library/Application Support/paperscope/config.json
    - Windows: %APPDATA%/paperscope/config.json
    """
    return Path(user_config_dir(CONFIG_APP_NAME)) / CONFIG_FILENAME


def clamp_max_parallel(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return DEFAULT_MAX_PARALLEL
    return max(1, min(value, MAX_PARALLEL_LIMIT))


def safe_get(data: dict, key: str, default: Any, expected_type: type | tuple[type, ...]) -> Any:
    """Safely get a value from dict with type validation.

    Returns the default if key is missing or value has wrong type.
    """
    value = data.get(key, default)
    if isinstance(value, bool) and expected_type is not bool:
        return default
    if not isinstance(value, expected_type):
        return default
    return value


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write via tempfile + os.replace so readers never see a partial file."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=f".{path.stem}-")
    closed = False
    try:
        os.write(fd, payload)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _parse_interval(data: dict[str, Any]) -> float:
    value = safe_get(data, "health_interval_seconds", HEALTH_INTERVAL_SECONDS, (int, float))
    return float(value) if value > 0 else HEALTH_INTERVAL_SECONDS


def _llm_to_dict(settings: LLMSettings) -> dict[str, Any]:
    return {
        "use_external": settings.use_external,
        "base_url": settings.base_url,
        "api_key": settings.api_key,
        "model": settings.model,
        "temperature": settings.temperature,
        "max_context_window": settings.max_context_window,
        "timeout": settings.timeout,
        "language": settings.language,
    }


def _parse_llm_settings(raw: Any) -> LLMSettings:
    defaults = LLMSettings()
    if not isinstance(raw, dict):
        return defaults
    timeout = safe_get(raw, "timeout", defaults.timeout, int)
    return LLMSettings(
        use_external=safe_get(raw, "use_external", defaults.use_external, bool),
        base_url=safe_get(raw, "base_url", defaults.base_url, str) or defaults.base_url,
        api_key=safe_get(raw, "api_key", defaults.api_key, str),
        model=safe_get(raw, "model", defaults.model, str) or defaults.model,
        temperature=float(safe_get(raw, "temperature", defaults.temperature, (int, float))),
        max_context_window=safe_get(
            raw, "max_context_window", defaults.max_context_window, int
        ),
        timeout=timeout if timeout > 0 else defaults.timeout,
        language=safe_get(raw, "language", defaults.language, str) or defaults.language,
    )


def _config_to_dict(config: UserConfig) -> dict[str, Any]:
    """Serialize UserConfig to a JSON-compatible dictionary."""
    return {
        "version": config.version,
        "backend_url": config.backend_url,
        "max_parallel": clamp_max_parallel(config.max_parallel),
        "health_interval_seconds": config.health_interval_seconds,
        "llm": _llm_to_dict(config.llm),
    }


def _dict_to_config(data: dict[str, Any]) -> UserConfig:
    """Deserialize a dictionary to UserConfig with type validation."""
    if not isinstance(data, dict):
        raise TypeError("config root must be an object")
    return UserConfig(
        backend_url=safe_get(data, "backend_url", DEFAULT_BACKEND_URL, str)
        or DEFAULT_BACKEND_URL,
        max_parallel=clamp_max_parallel(data.get("max_parallel", DEFAULT_MAX_PARALLEL)),
        health_interval_seconds=_parse_interval(data),
        llm=_parse_llm_settings(data.get("llm")),
        version=safe_get(data, "version", 1, int),
    )


def load_config(path: Path | None = None) -> UserConfig:
    """Load configuration from disk.

    Returns default config if file doesn't exist or is corrupted.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return UserConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return _dict_to_config(data)
    except json.JSONDecodeError as e:
        logger.warning("Config file has invalid JSON, using defaults: %s", e)
        return UserConfig()
    except (KeyError, TypeError) as e:
        logger.warning("Config file has invalid structure, using defaults: %s", e)
        return UserConfig()
    except OSError as e:
        logger.warning("Could not read config file, using defaults: %s", e)
        return UserConfig()


def save_config(config: UserConfig, path: Path | None = None) -> bool:
    """Save configuration to disk atomically (tempfile + os.replace).

    Returns True on success, False on failure.
    """
    config_path = path or get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(_config_to_dict(config), indent=2, ensure_ascii=False)
        write_bytes_atomic(config_path, json_str.encode("utf-8"))
        return True
    except OSError as e:
        logger.error("Failed to save config: %s", e)
        return False


__all__ = [
    "CONFIG_FILENAME",
    "clamp_max_parallel",
    "get_config_path",
    "load_config",
    "safe_get",
    "save_config",
    "write_bytes_atomic",
]
