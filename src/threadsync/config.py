"""Environment-driven configuration for the thread service and execution store."""

import os
import re
import sys
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_PAGE_SIZE = 20
DEFAULT_ASSISTANT_ID = "agent"
DEFAULT_ASSISTANT_NAME = "Research Agent"

FILE_SYNC_DEBOUNCE_SECONDS = 1.0
CREATION_POLL_INTERVAL = 0.1
HEALTH_CHECK_TIMEOUT = 3.0
FALLBACK_RECHECK_DELAY = 2.0

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def get_service_base_url() -> str | None:
    """Return the thread service URL without trailing slash, or None if not configured."""
    url = os.environ.get("THREADSYNC_SERVICE_URL", "").rstrip("/")
    return url or None


def get_access_token() -> str | None:
    """Return the bearer token for the thread service, or None when unauthenticated."""
    return os.environ.get("THREADSYNC_ACCESS_TOKEN") or None


def get_execution_url() -> str | None:
    """Return the execution store (LangGraph server) URL, or None for the in-memory store."""
    url = os.environ.get("THREADSYNC_EXECUTION_URL", "").rstrip("/")
    return url or None


def get_execution_api_key() -> str | None:
    return os.environ.get("THREADSYNC_EXECUTION_API_KEY") or None


def get_assistant_id() -> str:
    return os.environ.get("THREADSYNC_ASSISTANT_ID") or DEFAULT_ASSISTANT_ID


def get_assistant_name() -> str:
    return os.environ.get("THREADSYNC_ASSISTANT_NAME") or DEFAULT_ASSISTANT_NAME


def get_page_size() -> int:
    raw = os.environ.get("THREADSYNC_PAGE_SIZE")
    if not raw:
        return DEFAULT_PAGE_SIZE
    try:
        size = int(raw)
    except ValueError:
        return DEFAULT_PAGE_SIZE
    return size if size > 0 else DEFAULT_PAGE_SIZE


def get_store_path() -> Path:
    """Return the path of the local durable store."""
    env = os.environ.get("THREADSYNC_STORE_PATH")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "threadsync" / "state.db"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "threadsync" / "state.db"
    else:  # Linux
        return Path.home() / ".local" / "share" / "threadsync" / "state.db"


def is_valid_uuid(value: str | None) -> bool:
    """Return True if ``value`` has the persistent-store id format."""
    return bool(value) and UUID_PATTERN.match(value) is not None


def is_valid_url(url: str) -> bool:
    """Return True for http/https URLs only."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
