"""Configuration loading utilities."""

import json
import os
import re
from pathlib import Path
from typing import Any

from loguru import logger

from aicoder.config.schema import Config


# Legacy flat environment variables: (section, key, caster, names in priority order)
_LEGACY_ENV: list[tuple[str | None, str, type, tuple[str, ...]]] = [
    ("api", "base_url", str, ("OPENAI_BASE_URL", "API_BASE_URL")),
    ("api", "api_key", str, ("OPENAI_API_KEY", "API_KEY")),
    ("api", "model", str, ("OPENAI_MODEL", "API_MODEL")),
    ("api", "temperature", float, ("TEMPERATURE",)),
    ("api", "max_tokens", int, ("MAX_TOKENS",)),
    ("context", "size", int, ("CONTEXT_SIZE",)),
    ("context", "compact_percentage", int, ("CONTEXT_COMPACT_PERCENTAGE",)),
    ("context", "compact_protect_rounds", int, ("COMPACT_PROTECT_ROUNDS",)),
    ("context", "prune_percentage", int, ("TMUX_PRUNE_PERCENTAGE",)),
    ("retry", "max_retries", int, ("MAX_RETRIES",)),
    ("retry", "max_wait", float, ("RETRY_MAX_WAIT",)),
    ("timeouts", "total", float, ("TOTAL_TIMEOUT",)),
    ("timeouts", "read", float, ("STREAMING_READ_TIMEOUT",)),
    (None, "debug", bool, ("DEBUG",)),
]


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".aicoder" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, then apply legacy environment overrides.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()
    data: dict[str, Any] = {}

    if path.exists():
        try:
            text = path.read_text(encoding="utf-8")
            if text.strip():
                loaded = json.loads(text)
                if isinstance(loaded, dict):
                    data = convert_keys(loaded)
                else:
                    logger.warning(f"Ignoring config {path}: expected a JSON object")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            data = {}

    apply_legacy_env(data)

    try:
        return Config(**data)
    except ValueError as e:
        logger.warning(f"Invalid config values, using defaults: {e}")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file with camelCase keys.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def apply_legacy_env(data: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Overlay the flat legacy environment variables onto a snake_case config dict."""
    env = os.environ if environ is None else environ

    for section, key, caster, names in _LEGACY_ENV:
        raw = next((env[name] for name in names if env.get(name)), None)
        if raw is None:
            continue
        try:
            value: Any = raw in ("1", "true", "True") if caster is bool else caster(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {names[0]}: {raw!r}")
            continue

        target = data if section is None else data.setdefault(section, {})
        target[key] = value

    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    first, *rest = name.split("_")
    return first + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_keys(data: Any) -> Any:
    """Recursively convert dict keys from camelCase to snake_case."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Recursively convert dict keys from snake_case to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data
