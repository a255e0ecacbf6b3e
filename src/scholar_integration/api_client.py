"""
Async HTTP client for the ScholarBot backend.

Wraps a single ``httpx.AsyncClient`` and is the one place REST failures are
intercepted: every httpx error is translated into an ``ApiError`` carrying a
user-facing title and message. Calls made on behalf of an explicit user
action pass ``notify=True`` so the error is also shown as a toast; the
always-on background systems (notification fetch, polling, read receipts)
leave it off and handle the error quietly.

Usage:
    async with ApiClient(base_url, session_store=store) as api:
        stats = await api.request("GET", "/admin/dashboard/stats", notify=True)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from scholar_integration.config import DEFAULT_HTTP_TIMEOUT, ws_base_from
from scholar_integration.errors import ApiError, parse_api_error
from scholar_integration.session_store import GuestSessionStore, SessionStore
from scholar_integration.toasts import ToastCenter

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Authenticated JSON client for the ScholarBot REST API.

    The class implements the async context-manager protocol so the
    underlying ``httpx.AsyncClient`` is properly closed on exit.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session_store: SessionStore | None = None,
        guest_sessions: GuestSessionStore | None = None,
        toaster: ToastCenter | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: REST base URL (e.g. ``https://api.scholarbot.app``).
            session_store: Source of the current identity's bearer token.
            guest_sessions: Persisted guest session; its token wins while valid.
            toaster: Toast sink for errors of explicit user actions.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.session_store = session_store
        self.guest_sessions = guest_sessions
        self.toaster = toaster
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    # -- Context manager support -----------------------------------------------

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # -- Helpers ---------------------------------------------------------------

    def ws_url(self, path: str) -> str:
        """WebSocket URL for ``path`` on the same host as the REST API."""
        return f"{ws_base_from(self.base_url)}/{path.lstrip('/')}"

    async def _bearer_token(self) -> str | None:
        """
        Pick the credential for the next request.

        A guest session that has not expired is attached ahead of the
        authenticated user's token.
        """
        if self.guest_sessions is not None:
            guest = self.guest_sessions.load()
            if guest is not None:
                return guest.token
        if self.session_store is not None and self.session_store.identity is not None:
            return await self.session_store.identity.get_token()
        return None

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    # -- Requests --------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        notify: bool = False,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            json: Optional JSON body.
            params: Optional query parameters.
            notify: Show a toast when the call fails (explicit user actions).

        Returns:
            The decoded body, with a ``{"data": ...}`` envelope unwrapped.
            ``None`` for empty responses.

        Raises:
            ApiError: On any transport or HTTP failure, or when no token
                could be obtained.
        """
        headers: dict[str, str] = {}
        try:
            token = await self._bearer_token()
        except Exception as exc:
            # Token providers (e.g. a session refresh) can fail with anything.
            error = ApiError("Unauthorized", "Your session could not be refreshed. Please log in again.")
            logger.error("API %s %s: could not obtain a token: %s", method, path, exc)
            if notify and self.toaster is not None:
                self.toaster.error(error.title, error.message)
            raise error from exc
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            error = parse_api_error(exc)
            logger.error("API %s %s failed: %s", method, path, error)
            if notify and self.toaster is not None:
                self.toaster.error(error.title, error.message)
            raise error from exc

        if not response.content:
            return None
        try:
            return self._unwrap(response.json())
        except ValueError as exc:
            error = ApiError("Error", "The server returned an unreadable response.", response.status_code)
            logger.error("API %s %s returned non-JSON body", method, path)
            if notify and self.toaster is not None:
                self.toaster.error(error.title, error.message)
            raise error from exc

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)
