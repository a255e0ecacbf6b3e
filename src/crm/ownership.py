"""
Who is answering a conversation: ScholarBot or a human operator.

The controller mirrors the server's conversation status into a small state
machine and is the only thing allowed to request a takeover or a release.
The server stays the source of truth: after every successful action the
detail is refetched, and whatever the server says wins.

    BOT --take_over()--> HUMAN_TAKEN_OVER --release()--> BOT
    CLOSED is terminal and only ever comes from the server.

Usage:
    controller = ConversationOwnershipController(conversation_id, admin_api)
    await controller.refresh()
    if controller.state is OwnershipState.BOT:
        await controller.take_over()
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from crm.models import ConversationDetail, ConversationStatus
from scholar_integration.admin_api import AdminApi
from scholar_integration.errors import AdminActionError, ApiError, OwnershipError

logger = logging.getLogger(__name__)

COMPOSER_HINT = "Take over the chat to send messages"


class OwnershipState(str, Enum):
    BOT = "bot"
    HUMAN_TAKEN_OVER = "human_taken_over"
    CLOSED = "closed"

    @classmethod
    def from_status(cls, status: ConversationStatus) -> OwnershipState:
        return _STATUS_TO_STATE[status]


_STATUS_TO_STATE = {
    ConversationStatus.ACTIVE: OwnershipState.BOT,
    ConversationStatus.TAKEN_OVER: OwnershipState.HUMAN_TAKEN_OVER,
    ConversationStatus.CLOSED: OwnershipState.CLOSED,
}


class ConversationOwnershipController:
    def __init__(
        self,
        conversation_id: str,
        api: AdminApi,
        *,
        on_change: Callable[[OwnershipState], None] | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.api = api
        self._on_change = on_change
        self._state = OwnershipState.BOT
        self._detail: ConversationDetail | None = None
        self._pending: str | None = None

    # -- Views -----------------------------------------------------------------

    @property
    def state(self) -> OwnershipState:
        return self._state

    @property
    def detail(self) -> ConversationDetail | None:
        return self._detail

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    @property
    def can_compose(self) -> bool:
        """The admin composer is enabled only while a human owns the chat."""
        return self._state is OwnershipState.HUMAN_TAKEN_OVER

    @property
    def composer_hint(self) -> str | None:
        return None if self.can_compose else COMPOSER_HINT

    def _set_state(self, state: OwnershipState) -> None:
        if state is self._state:
            return
        logger.info(
            "Conversation %s ownership: %s -> %s",
            self.conversation_id, self._state.value, state.value,
        )
        self._state = state
        if self._on_change is not None:
            try:
                self._on_change(state)
            except Exception:
                logger.exception("Ownership observer failed")

    # -- Server sync -----------------------------------------------------------

    def apply_detail(self, detail: ConversationDetail) -> None:
        """Adopt a server snapshot of the conversation."""
        if detail.conversation.id != self.conversation_id:
            raise ValueError(
                f"Detail for {detail.conversation.id} given to controller of {self.conversation_id}"
            )
        self._detail = detail
        self._set_state(OwnershipState.from_status(detail.conversation.status))

    async def refresh(self) -> ConversationDetail:
        """
        Refetch the conversation and re-derive the state from its status.

        Raises:
            ApiError: If the detail could not be fetched.
        """
        detail = await self.api.get_conversation(self.conversation_id)
        self.apply_detail(detail)
        return detail

    # -- Actions ---------------------------------------------------------------

    async def take_over(self) -> None:
        """
        Hand the conversation to the operator. Legal only from BOT.

        Raises:
            OwnershipError: Wrong state, or another action is in flight.
            AdminActionError: The server call failed; state is unchanged.
        """
        await self._transition("takeover", OwnershipState.BOT, OwnershipState.HUMAN_TAKEN_OVER)

    async def release(self) -> None:
        """
        Hand the conversation back to ScholarBot. Legal only from HUMAN_TAKEN_OVER.

        Raises:
            OwnershipError: Wrong state, or another action is in flight.
            AdminActionError: The server call failed; state is unchanged.
        """
        await self._transition("release", OwnershipState.HUMAN_TAKEN_OVER, OwnershipState.BOT)

    async def _transition(self, action: str, source: OwnershipState, target: OwnershipState) -> None:
        if self._pending is not None:
            raise OwnershipError(
                f"Cannot {action} conversation {self.conversation_id}: {self._pending} in progress"
            )
        if self._state is not source:
            raise OwnershipError(
                f"Cannot {action} conversation {self.conversation_id} from state {self._state.value}"
            )

        call = self.api.take_over if target is OwnershipState.HUMAN_TAKEN_OVER else self.api.release
        self._pending = action
        try:
            success = await call(self.conversation_id)
        except ApiError as exc:
            logger.error("Error during %s of %s: %s", action, self.conversation_id, exc)
            raise AdminActionError(action, self.conversation_id, exc) from exc
        finally:
            self._pending = None

        if not success:
            logger.error("Server rejected %s of %s", action, self.conversation_id)
            raise AdminActionError(action, self.conversation_id)

        self._set_state(target)
        try:
            await self.refresh()
        except (ApiError, ValueError) as exc:
            logger.warning("Could not refresh %s after %s: %s", self.conversation_id, action, exc)
