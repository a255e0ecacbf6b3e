"""
Error types shared by the ScholarBot client, plus the central translation of
transport failures into user-facing messages.
"""

from __future__ import annotations

from typing import Any

import httpx


class ScholarError(Exception):
    """Base class for every error raised by this client."""


class ApiError(ScholarError):
    """A REST call failed. ``title``/``message`` are safe to show to a user."""

    def __init__(self, title: str, message: str, status_code: int | None = None):
        super().__init__(f"{title}: {message}")
        self.title = title
        self.message = message
        self.status_code = status_code


class AdminActionError(ScholarError):
    """Takeover, release or admin send did not take effect."""

    def __init__(self, action: str, conversation_id: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Admin {action} failed for conversation {conversation_id}{detail}")
        self.action = action
        self.conversation_id = conversation_id
        self.cause = cause


class OwnershipError(ScholarError):
    """An ownership transition was requested from a state that does not allow it."""


# status code -> (title, default message, backend message allowed)
_STATUS_MESSAGES: dict[int, tuple[str, str, bool]] = {
    400: ("Bad Request", "The request was invalid. Please check your input.", True),
    401: ("Unauthorized", "Please log in to continue.", False),
    403: ("Forbidden", "You do not have permission to perform this action.", False),
    404: ("Not Found", "The requested resource was not found.", True),
    409: ("Conflict", "This action conflicts with existing data.", True),
    422: ("Validation Error", "Please check the form and try again.", True),
    429: ("Too Many Requests", "You are making too many requests. Please slow down.", False),
    500: ("Server Error", "Something went wrong on our end. Please try again later.", False),
    502: ("Bad Gateway", "Unable to reach the server. Please try again later.", False),
    503: ("Service Unavailable", "The service is temporarily unavailable. Please try again later.", False),
    504: ("Gateway Timeout", "The server took too long to respond. Please try again.", False),
}


def _backend_message(response: httpx.Response) -> str | None:
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def error_for_status(status_code: int, backend_message: str | None = None) -> ApiError:
    """Build the user-facing error for an HTTP status code."""
    title, default, allow_backend = _STATUS_MESSAGES.get(
        status_code,
        ("Error", "An unexpected error occurred. Please try again.", True),
    )
    message = backend_message if (allow_backend and backend_message) else default
    return ApiError(title, message, status_code)


def parse_api_error(exc: BaseException) -> ApiError:
    """
    Translate any failure of an HTTP call into an ``ApiError``.

    Args:
        exc: The exception raised by httpx (or anything else).

    Returns:
        ApiError with a user-facing title and message.
    """
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(
            exc.response.status_code, _backend_message(exc.response)
        )
    if isinstance(exc, httpx.TransportError):
        return ApiError(
            "Network Error",
            "Unable to connect to the server. Please check your internet connection.",
        )
    return ApiError("Error", str(exc) or "An unexpected error occurred.")
