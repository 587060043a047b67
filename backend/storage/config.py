"""Global app configuration (LLM connections, role assignments, search)."""

import json
import os
from pathlib import Path
from typing import Any

from .core import data_dir

DEFAULT_CONNECTION_NAME = "default"

# Which connection each kind of model call uses. Empty means the default
# connection from the environment.
ROLES = ("simulation", "discovery", "advisor")


def _env_connections() -> list[dict[str, Any]]:
    url = os.getenv("LLM_PROVIDER_URL", "")
    if not url:
        return []
    return [{
        "name": DEFAULT_CONNECTION_NAME,
        "provider_url": url,
        "api_key": os.getenv("LLM_API_KEY", ""),
        "provider_format": os.getenv("LLM_PROVIDER_FORMAT", "koboldcpp"),
        "model": os.getenv("LLM_MODEL", ""),
    }]


def _defaults() -> dict[str, Any]:
    return {
        "llm_connections": _env_connections(),
        "roles": {role: "" for role in ROLES},
        "search_api_key": os.getenv("TAVILY_API_KEY", ""),
        "reader_url": "https://r.jina.ai/",
    }


def _config_path() -> Path:
    return data_dir() / "config.json"


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = _defaults()
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text())
        if "llm_connections" in stored:
            config["llm_connections"] = stored["llm_connections"]
        if "roles" in stored:
            config["roles"].update(stored["roles"])
        for key in ("search_api_key", "reader_url"):
            if stored.get(key):
                config[key] = stored[key]
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config."""
    config = get_config()
    if "llm_connections" in fields:
        config["llm_connections"] = fields["llm_connections"]
    if "roles" in fields:
        config["roles"].update(
            {k: v for k, v in fields["roles"].items() if k in ROLES}
        )
    for key in ("search_api_key", "reader_url"):
        if key in fields:
            config[key] = fields[key]
    _config_path().write_text(json.dumps(config, indent=2))
    return config
