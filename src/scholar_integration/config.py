"""
Runtime configuration for the ScholarBot client.

Values come from environment variables, optionally seeded from a ``.env``
file at the project root (python-dotenv). Only the API base URL is required;
everything else has a default matching the production web client.

Usage:
    config = ScholarConfig.from_env()
    async with ApiClient(config.api_url, timeout=config.http_timeout) as api:
        ...
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

# src/scholar_integration/config.py -> src/ -> project root
_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.dirname(_THIS_DIR)
_PROJECT_ROOT = os.path.dirname(_SRC_DIR)

DEFAULT_ENV_PATH = os.path.join(_PROJECT_ROOT, ".env")
DEFAULT_GUEST_SESSION_PATH = str(Path.home() / ".scholarbot" / "guest_session.yaml")

# Seconds between a dropped notification socket and the next attempt.
DEFAULT_RECONNECT_DELAY = 3.0

# Seconds between fallback REST polls of the notification list.
DEFAULT_POLL_INTERVAL = 300.0

DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_BRIDGE_WS_PORT = 8765


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


class ScholarConfig:
    """
    Settings shared by the REST clients, the realtime channel and the bridge.
    """

    def __init__(
        self,
        api_url: str,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        guest_session_path: str = DEFAULT_GUEST_SESSION_PATH,
        bridge_ws_port: int = DEFAULT_BRIDGE_WS_PORT,
    ):
        self.api_url = api_url.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self.poll_interval = poll_interval
        self.http_timeout = http_timeout
        self.guest_session_path = guest_session_path
        self.bridge_ws_port = bridge_ws_port

    @classmethod
    def from_env(cls, env_path: str | None = None) -> ScholarConfig:
        """
        Load configuration from environment variables.

        Required env vars:
            SCHOLAR_API_URL

        Optional env vars:
            SCHOLAR_WS_RECONNECT_DELAY          (seconds, default 3)
            SCHOLAR_NOTIFICATION_POLL_INTERVAL  (seconds, default 300)
            SCHOLAR_HTTP_TIMEOUT                (seconds, default 30)
            SCHOLAR_GUEST_SESSION_PATH          (default ~/.scholarbot/guest_session.yaml)
            SCHOLAR_BRIDGE_WS_PORT              (default 8765)

        Raises:
            ValueError: If SCHOLAR_API_URL is missing or a numeric value is malformed.
        """
        path = env_path or DEFAULT_ENV_PATH
        if os.path.exists(path):
            load_dotenv(path)

        api_url = os.environ.get("SCHOLAR_API_URL", "")
        if not api_url:
            raise ValueError(
                "Missing required configuration: SCHOLAR_API_URL. "
                "Set it in .env or export it as an environment variable."
            )

        return cls(
            api_url=api_url,
            reconnect_delay=_float_env("SCHOLAR_WS_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
            poll_interval=_float_env("SCHOLAR_NOTIFICATION_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            http_timeout=_float_env("SCHOLAR_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            guest_session_path=os.path.expanduser(
                os.environ.get("SCHOLAR_GUEST_SESSION_PATH", DEFAULT_GUEST_SESSION_PATH)
            ),
            bridge_ws_port=int(_float_env("SCHOLAR_BRIDGE_WS_PORT", DEFAULT_BRIDGE_WS_PORT)),
        )

    @property
    def ws_base_url(self) -> str:
        """WebSocket base mirroring the REST scheme (``wss`` iff ``https``)."""
        return ws_base_from(self.api_url)


def ws_base_from(api_url: str) -> str:
    """
    Derive the WebSocket base URL from a REST base URL.

    ``https://api.example.com/v1`` -> ``wss://api.example.com/v1``;
    anything else becomes ``ws://``.
    """
    url = api_url.rstrip("/")
    scheme = "wss" if url.startswith("https") else "ws"
    if "://" in url:
        url = url.split("://", 1)[1]
    return f"{scheme}://{url}"
