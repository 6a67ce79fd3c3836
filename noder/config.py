"""Shared noder configuration utilities.

Centralises reading of ~/.noder/configuration.json so the executor, the
invoker and the provider clients agree on polling and retry settings.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from noder.providers.router import DEFAULT_CHAT_OWNERS

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODER_CONFIG_FILE = Path.home() / ".noder" / "configuration.json"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
REPLICATE_BASE_URL = "https://api.replicate.com/v1"

# save-media nodes write here unless given an absolute destination
DEFAULT_SAVE_MEDIA_DIR = Path.home() / "Downloads" / "noder"


def get_noder_config() -> dict[str, Any]:
    """Load noder configuration from ~/.noder/configuration.json."""
    if not NODER_CONFIG_FILE.exists():
        return {}
    try:
        with open(NODER_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _execution_setting(key: str, default: Any) -> Any:
    return get_noder_config().get("execution", {}).get(key, default)


def _provider_setting(key: str, default: Any) -> Any:
    return get_noder_config().get("providers", {}).get(key, default)


def get_chat_owners() -> frozenset[str]:
    """Return the model owners served by the chat-completion provider."""
    owners = _provider_setting("chat_owners", None)
    if not owners:
        return DEFAULT_CHAT_OWNERS
    return frozenset(str(owner).lower() for owner in owners)


# ---------------------------------------------------------------------------
# RuntimeConfig – shared by executor, invoker and clients
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Execution and provider settings loaded from ~/.noder/configuration.json."""

    poll_interval_seconds: float = field(
        default_factory=lambda: float(_execution_setting("poll_interval_seconds", 1.0))
    )
    max_poll_attempts: int = field(
        default_factory=lambda: int(_execution_setting("max_poll_attempts", 300))
    )
    poll_progress_every: int = 10
    chat_timeout_seconds: float = field(
        default_factory=lambda: float(_execution_setting("chat_timeout_seconds", 60.0))
    )
    request_timeout_seconds: float = 30.0
    chat_max_attempts: int = 2
    poll_max_attempts: int = 3
    retry_base_delay_seconds: float = field(
        default_factory=lambda: float(_execution_setting("retry_base_delay_seconds", 1.0))
    )
    enable_parallel_execution: bool = field(
        default_factory=lambda: bool(_execution_setting("parallel", False))
    )
    chat_owners: frozenset[str] = field(default_factory=get_chat_owners)
    openrouter_base_url: str = field(
        default_factory=lambda: _provider_setting("openrouter_base_url", OPENROUTER_BASE_URL)
    )
    replicate_base_url: str = field(
        default_factory=lambda: _provider_setting("replicate_base_url", REPLICATE_BASE_URL)
    )
    save_media_dir: Path = field(
        default_factory=lambda: Path(
            _execution_setting("save_media_dir", DEFAULT_SAVE_MEDIA_DIR)
        ).expanduser()
    )
