"""Environment-driven settings."""

import os
import sys
from pathlib import Path

DEFAULT_API_BASE_URL = "http://localhost:8000"
DEFAULT_APP_NAME = "multi_tool_agent"


def get_api_base_url() -> str:
    """Return the agent runtime base URL, without a trailing slash."""
    return os.environ.get("AGENTCHAT_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/")


def get_app_name() -> str:
    """Return the default agent app name used for new sessions."""
    return os.environ.get("AGENTCHAT_APP_NAME") or DEFAULT_APP_NAME


def get_timeout() -> float:
    """Return the upstream request timeout in seconds."""
    try:
        return float(os.environ.get("AGENTCHAT_TIMEOUT", "60"))
    except ValueError:
        return 60.0


def get_debug_history_size() -> int:
    """Return how many API calls the debug panel keeps."""
    try:
        return max(1, int(os.environ.get("AGENTCHAT_DEBUG_HISTORY", "200")))
    except ValueError:
        return 200


def get_data_path() -> Path:
    """Return the directory where transcripts and the session config are saved."""
    env = os.environ.get("AGENTCHAT_DATA_PATH")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "agentchat-debug"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "agentchat-debug"
    else:  # Linux
        return Path.home() / ".local" / "share" / "agentchat-debug"
