"""
Admin/CRM endpoints of the ScholarBot backend.

Every call here is an explicit operator action, so failures are toasted by
the ``ApiClient`` and raised to the caller.

Usage:
    admin = AdminApi(api)
    detail = await admin.get_conversation(conversation_id)
    if await admin.take_over(conversation_id):
        message = await admin.send_admin_message(conversation_id, "Hi, a human here.")
"""

from __future__ import annotations

import logging
from typing import Any

from crm.models import Conversation, ConversationDetail, DashboardStats, Message
from scholar_integration.api_client import ApiClient
from scholar_integration.errors import ApiError

logger = logging.getLogger(__name__)

# Raised by the model constructors on records they cannot read.
PAYLOAD_ERRORS = (KeyError, TypeError, ValueError)


class AdminApi:
    """Dashboard, conversation list/detail, admin messages and chat control."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    # -- Dashboard -------------------------------------------------------------

    async def get_dashboard_stats(self) -> DashboardStats:
        data = await self.client.get("/admin/dashboard/stats", notify=True)
        try:
            return DashboardStats.from_payload(data or {})
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("dashboard", exc) from exc

    # -- Conversations ---------------------------------------------------------

    async def list_conversations(self) -> list[Conversation]:
        """Malformed records are logged and left out of the list."""
        data = await self.client.get("/admin/conversations", notify=True)
        if not isinstance(data, list):
            data = [data] if data else []
        conversations = []
        for item in data:
            try:
                conversations.append(Conversation.from_payload(item))
            except PAYLOAD_ERRORS as exc:
                logger.warning("Skipping malformed conversation record: %r", exc)
        logger.info("Listed %d conversation(s)", len(conversations))
        return conversations

    async def get_conversation(self, conversation_id: str) -> ConversationDetail:
        data = await self.client.get(f"/admin/conversations/{conversation_id}", notify=True)
        try:
            return ConversationDetail.from_payload(data)
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("conversation", exc) from exc

    # -- Messages --------------------------------------------------------------

    async def send_admin_message(self, conversation_id: str, content: str) -> Message:
        """
        Post an operator message into a conversation.

        Returns:
            The message as persisted by the server (server-assigned id and
            timestamp).
        """
        data = await self.client.post(
            f"/admin/conversations/{conversation_id}/messages",
            json={"content": content},
            notify=True,
        )
        try:
            message = Message.from_payload(data)
        except PAYLOAD_ERRORS as exc:
            raise self._unreadable("message", exc) from exc
        logger.info("Admin message %s sent to %s", message.id, conversation_id)
        return message

    def _unreadable(self, what: str, exc: Exception) -> ApiError:
        error = ApiError("Error", f"The server returned an unreadable {what}.")
        logger.error("Unreadable %s in response: %r", what, exc)
        if self.client.toaster is not None:
            self.client.toaster.error(error.title, error.message)
        return error

    # -- Chat control ----------------------------------------------------------

    async def take_over(self, conversation_id: str) -> bool:
        """Returns the server's ``success`` flag (a bare 2xx counts as success)."""
        data = await self.client.post(
            f"/admin/conversations/{conversation_id}/takeover", notify=True
        )
        success = _success_flag(data)
        logger.info("Takeover of %s: success=%s", conversation_id, success)
        return success

    async def release(self, conversation_id: str) -> bool:
        """Returns the server's ``success`` flag (a bare 2xx counts as success)."""
        data = await self.client.post(
            f"/admin/conversations/{conversation_id}/release", notify=True
        )
        success = _success_flag(data)
        logger.info("Release of %s: success=%s", conversation_id, success)
        return success


def _success_flag(data: Any) -> bool:
    # Only an explicit ``success: false`` body is a refusal.
    if isinstance(data, dict):
        return data.get("success", True) is not False
    return True
