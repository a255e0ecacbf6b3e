"""
CRM endpoints: per-user chat threads with ScholarBot.

Like the admin routes, these back explicit operator screens, so failures are
toasted and raised. Malformed thread records are logged and skipped.

Usage:
    crm = CrmApi(api)
    stats = await crm.get_stats()
    active = await crm.get_threads(status="active")
    detail = await crm.get_thread(active[0].user_id)
"""

from __future__ import annotations

import logging
from typing import Any

from crm.models import ConversationThread, CrmStats, ThreadDetail, ThreadMessage, ThreadStatus
from scholar_integration.api_client import ApiClient
from scholar_integration.errors import ApiError

logger = logging.getLogger(__name__)

# Raised by the model constructors on records they cannot read.
PAYLOAD_ERRORS = (KeyError, TypeError, ValueError)

ALL_STATUSES = "all"


def _as_list(data: Any) -> list:
    if isinstance(data, list):
        return data
    return [data] if data else []


class CrmApi:
    """Stats, thread list/search/detail and thread messages."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def _unreadable(self, what: str, exc: Exception) -> ApiError:
        error = ApiError("Error", f"The server returned an unreadable {what}.")
        logger.error("Unreadable CRM %s in response: %r", what, exc)
        if self.client.toaster is not None:
            self.client.toaster.error(error.title, error.message)
        return error

    def _threads(self, data: Any) -> list[ConversationThread]:
        threads = []
        for item in _as_list(data):
            try:
                threads.append(ConversationThread.from_payload(item))
            except PAYLOAD_ERRORS as exc:
                logger.warning("Skipping malformed CRM thread: %r", exc)
        return threads

    # -- Stats -----------------------------------------------------------------

    async def get_stats(self) -> CrmStats:
        data = await self.client.get("/crm/stats", notify=True)
        try:
            return CrmStats.from_payload(data or {})
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("stats", exc) from exc

    # -- Threads ---------------------------------------------------------------

    async def get_threads(self, status: str | None = None) -> list[ConversationThread]:
        """
        List user threads, optionally only those in one activity bucket.

        Args:
            status: ``active``, ``inactive`` or ``old``; ``None`` or ``"all"``
                lists everything. The filter is also applied locally, so a
                backend that ignores the parameter gives the same answer.

        Raises:
            ValueError: If ``status`` is not a known bucket.
        """
        wanted: ThreadStatus | None = None
        params: dict[str, Any] = {}
        if status and status != ALL_STATUSES:
            try:
                wanted = ThreadStatus(status)
            except ValueError:
                raise ValueError(f"Unknown thread status {status!r}") from None
            params["status"] = wanted.value

        data = await self.client.get("/crm/threads", params=params or None, notify=True)
        threads = self._threads(data)
        if wanted is not None:
            threads = [t for t in threads if t.status is wanted]
        logger.info("Listed %d CRM thread(s) (status=%s)", len(threads), status or ALL_STATUSES)
        return threads

    async def search_threads(self, query: str) -> list[ConversationThread]:
        """A blank query matches nothing and is not sent."""
        query = query.strip()
        if not query:
            return []
        data = await self.client.get("/crm/threads/search", params={"q": query}, notify=True)
        return self._threads(data)

    async def get_thread(self, thread_id: str) -> ThreadDetail:
        data = await self.client.get(f"/crm/threads/{thread_id}", notify=True)
        try:
            return ThreadDetail.from_payload(data)
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("thread", exc) from exc

    # -- Messages --------------------------------------------------------------

    async def send_message(self, thread_id: str, content: str) -> ThreadMessage:
        data = await self.client.post(
            f"/crm/threads/{thread_id}/messages", json={"content": content}, notify=True
        )
        try:
            message = ThreadMessage.from_payload(data)
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("message", exc) from exc
        logger.info("CRM message %s sent to thread %s", message.id, thread_id)
        return message
