"""YAML + environment variable configuration loading.

Config file: config/llmstub.yaml
Env var override prefix: LLMSTUB_
Nesting convention: double underscore (e.g. LLMSTUB_STREAM__FRAMING)
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

import yaml

_DEFAULT_CONFIG_PATH = Path("config/llmstub.yaml")

_DEFAULTS: dict[str, Any] = {
    "server": {
        "port": 3000,
    },
    "backend": "mock",
    "mock": {
        "patterns_path": "config/patterns.yaml",
        "default_response": "Sorry, I cannot help with that.",
        "port": 8082,
    },
    "stream": {
        "framing": "data-stream",
        "inter_chunk_delay_ms": 100,
        "tool_call_delay_ms": 200,
        "trailing_space": True,
    },
    "upstream": {
        "base_url": "https://api.openai.com/v1",
        "api_key": "",
        "model": "gpt-4o",
        "timeout_seconds": 60,
        "max_steps": 5,
    },
    "logging": {
        "level": "INFO",
    },
}

ENV_PREFIX = "LLMSTUB_"


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base, recursively for nested dicts."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _coerce_value(value: str) -> int | float | bool | str:
    """Attempt to coerce a string env var value to a typed value."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _apply_env_overrides(config: dict) -> dict:
    """Apply LLMSTUB_ prefixed environment variables as overrides.

    Double underscore separates nesting levels:
        LLMSTUB_SERVER__PORT=9090 -> config["server"]["port"] = 9090
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX) :].lower().split("__")
        target = config
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = _coerce_value(value)
    return config


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load configuration from YAML file with env var overrides.

    Precedence (highest wins): env vars > YAML file > defaults.
    The upstream API key falls back to OPENAI_API_KEY when unset.
    """
    config = copy.deepcopy(_DEFAULTS)

    path = config_path or _DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config = _deep_merge(config, file_config)

    config = _apply_env_overrides(config)
    if not config["upstream"].get("api_key"):
        config["upstream"]["api_key"] = os.environ.get("OPENAI_API_KEY", "")
    return config
