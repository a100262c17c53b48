"""Configuration and credential loading for yearsync.

Settings are resolved with priority:
1. <data dir>/credentials.json
2. Environment variables (YEARSYNC_*)
3. <data dir>/config.json (fallback for anything still unset)

The data dir is ``$YEARSYNC_DATA_DIR`` or ``~/.yearsync``.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://api.pocketcasts.com"
DEFAULT_CACHE_URL = "https://podcast-api.pocketcasts.com"
API_VERSION = 2
HISTORY_YEAR_PATH = "/history/year"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


def get_yearsync_home() -> Path:
    """Directory holding credentials, config and the default database."""
    override = os.environ.get("YEARSYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".yearsync"


def validate_backend_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Return ``url`` if a bearer token may be sent to it, else None.

    HTTPS is always fine. Plain HTTP is only accepted for a local dev
    server, and not at all when ``allow_localhost_http`` is False.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if not parsed.netloc:
        logger.warning(f"Ignoring server url without a host: {url!r}")
        return None
    if parsed.scheme == "https":
        return url
    if parsed.scheme != "http":
        logger.warning(f"Ignoring server url with unsupported scheme {parsed.scheme!r}")
        return None
    if allow_localhost_http and (parsed.hostname or "") in _LOCAL_HOSTS:
        return url
    logger.warning(f"Refusing to send the auth token over plain http to {parsed.hostname!r}")
    return None


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.debug(f"Failed to load {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring {path}: expected a JSON object")
        return {}
    return data


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{field_name} must be a boolean, got {value!r}")


def _parse_optional_number(value: Any, field_name: str, cast):
    if value is None or value == "":
        return None
    try:
        number = cast(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field_name} must be a number, got {value!r}") from e
    if number <= 0:
        raise ValueError(f"{field_name} must be positive, got {value!r}")
    return number


@dataclass
class SyncSettings:
    """Resolved settings for a sync run.

    Attributes:
        server_url: Sync API base url.
        cache_url: Podcast metadata (cache) server base url.
        auth_token: Bearer token for the sync API; None when not configured.
        api_version: Protocol version sent with every request.
        max_workers: Cap on concurrent lookups; None means one worker per item.
        timeout: HTTP timeout in seconds; None blocks indefinitely.
        apply_remote_changes: When False, downloaded history is not applied locally.
        db_path: Local database path; None uses <data dir>/yearsync.db.
    """

    server_url: str = DEFAULT_SERVER_URL
    cache_url: str = DEFAULT_CACHE_URL
    auth_token: Optional[str] = None
    api_version: int = API_VERSION
    max_workers: Optional[int] = None
    timeout: Optional[float] = None
    apply_remote_changes: bool = True
    db_path: Optional[Path] = None

    @property
    def history_year_url(self) -> str:
        return f"{self.server_url.rstrip('/')}{HISTORY_YEAR_PATH}"

    def resolved_db_path(self) -> Path:
        return Path(self.db_path) if self.db_path else get_yearsync_home() / "yearsync.db"

    @classmethod
    def load(cls, home: Optional[Path] = None) -> "SyncSettings":
        """Load settings from credentials.json, environment and config.json.

        Raises:
            ValueError: If a numeric or boolean setting cannot be parsed.
        """
        home = home or get_yearsync_home()
        creds = _read_json(home / "credentials.json")
        config = _read_json(home / "config.json")

        server_url = creds.get("server_url") or creds.get("backend_url")
        cache_url = creds.get("cache_url")
        # Support both "auth_token" (preferred) and "token"
        auth_token = creds.get("auth_token") or creds.get("token")

        server_url = os.environ.get("YEARSYNC_SERVER_URL") or server_url
        cache_url = os.environ.get("YEARSYNC_CACHE_URL") or cache_url
        auth_token = os.environ.get("YEARSYNC_AUTH_TOKEN") or auth_token

        server_url = server_url or config.get("server_url") or DEFAULT_SERVER_URL
        cache_url = cache_url or config.get("cache_url") or DEFAULT_CACHE_URL
        auth_token = auth_token or config.get("auth_token")

        validated_server = validate_backend_url(server_url)
        if validated_server is None:
            logger.warning(f"Falling back to default server url; rejected {server_url!r}")
            validated_server = DEFAULT_SERVER_URL
        validated_cache = validate_backend_url(cache_url)
        if validated_cache is None:
            logger.warning(f"Falling back to default cache url; rejected {cache_url!r}")
            validated_cache = DEFAULT_CACHE_URL

        max_workers = os.environ.get("YEARSYNC_MAX_WORKERS", config.get("max_workers"))
        timeout = os.environ.get("YEARSYNC_TIMEOUT", config.get("timeout"))
        apply_changes = os.environ.get(
            "YEARSYNC_APPLY_CHANGES", config.get("apply_remote_changes", True)
        )
        db_path = os.environ.get("YEARSYNC_DB_PATH") or config.get("db_path")

        return cls(
            server_url=validated_server.rstrip("/"),
            cache_url=validated_cache.rstrip("/"),
            auth_token=auth_token or None,
            api_version=int(config.get("api_version", API_VERSION)),
            max_workers=_parse_optional_number(max_workers, "max_workers", int),
            timeout=_parse_optional_number(timeout, "timeout", float),
            apply_remote_changes=_parse_bool(apply_changes, "apply_remote_changes"),
            db_path=Path(db_path).expanduser() if db_path else None,
        )
