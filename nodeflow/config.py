"""Shared nodeflow configuration utilities.

Centralises reading of ~/.nodeflow/configuration.json so that the LLM
toolkit, the context node and the CLI share one set of defaults. The file
location can be overridden with the NODEFLOW_CONFIG environment variable.

Example file:

    {
      "llm": {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "max_tokens": 2048,
        "api_key_env_var": "OPENAI_API_KEY"
      },
      "dialogue": {"language": "en", "memory_length": 4}
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MEMORY_LENGTH = 4
DEFAULT_LANGUAGE = "en"

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_CONFIG_FILE = Path.home() / ".nodeflow" / "configuration.json"


def get_config_path() -> Path:
    override = os.environ.get("NODEFLOW_CONFIG")
    return Path(override) if override else NODEFLOW_CONFIG_FILE


def get_nodeflow_config() -> dict[str, Any]:
    """Load configuration from the config file. Missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"⚠ Ignoring unreadable config file {path}: {e}")
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the preferred model string in LiteLLM form (e.g. 'openai/gpt-4o-mini')."""
    llm = get_nodeflow_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return llm.get("model") or DEFAULT_MODEL


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_nodeflow_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_nodeflow_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_nodeflow_config().get("llm", {}).get("api_base")


def get_memory_length() -> int:
    return get_nodeflow_config().get("dialogue", {}).get("memory_length", DEFAULT_MEMORY_LENGTH)


def get_language() -> str:
    return get_nodeflow_config().get("dialogue", {}).get("language", DEFAULT_LANGUAGE)


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime defaults loaded from the configuration file."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = field(default_factory=get_api_base)
    language: str = field(default_factory=get_language)
    memory_length: int = field(default_factory=get_memory_length)
