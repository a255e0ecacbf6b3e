"""
Operator-to-user message path for a taken-over conversation.

Sends are gated on the ownership controller: nothing reaches the network
unless a human currently owns the chat. The transcript only ever shows what
the server persisted, so a successful send appends the server's copy.
"""

from __future__ import annotations

import logging
from typing import Iterable

from crm.models import Message
from crm.ownership import ConversationOwnershipController
from scholar_integration.admin_api import AdminApi
from scholar_integration.errors import AdminActionError, ApiError

logger = logging.getLogger(__name__)


class Transcript:
    """Ordered messages of one conversation."""

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = []
        self.hydrate(messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def hydrate(self, messages: Iterable[Message]) -> None:
        """Replace the whole transcript (initial load)."""
        self._messages = []
        for message in messages:
            self.append(message)

    def append(self, message: Message) -> bool:
        if any(m.id == message.id for m in self._messages):
            return False
        self._messages.append(message)
        return True


class AdminMessageRelay:
    def __init__(
        self,
        controller: ConversationOwnershipController,
        api: AdminApi,
        transcript: Transcript,
    ) -> None:
        self.controller = controller
        self.api = api
        self.transcript = transcript

    def can_send(self, content: str) -> bool:
        """Sends need non-blank content and a human-owned chat with no action in flight."""
        return (
            bool(content and content.strip())
            and self.controller.can_compose
            and not self.controller.is_pending
        )

    async def send(self, conversation_id: str, content: str) -> Message | None:
        """
        Deliver one operator message.

        Returns:
            The persisted message, or None when nothing was sent (blank
            content, composer gated, or a different conversation).

        Raises:
            AdminActionError: The server did not accept the message.
        """
        if conversation_id != self.controller.conversation_id:
            logger.warning(
                "Refusing send to %s from relay bound to %s",
                conversation_id, self.controller.conversation_id,
            )
            return None
        if not self.can_send(content):
            logger.debug("Admin send to %s skipped (state=%s)", conversation_id, self.controller.state.value)
            return None

        try:
            message = await self.api.send_admin_message(conversation_id, content.strip())
        except ApiError as exc:
            logger.error("Error sending admin message to %s: %s", conversation_id, exc)
            raise AdminActionError("send", conversation_id, exc) from exc

        self.transcript.append(message)
        return message
