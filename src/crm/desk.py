"""
Admin desk: the operator's entry point into the CRM screens.

Access requires a resolved admin identity. While the identity is still
loading (or nobody is signed in) every call returns an empty answer so the
caller can simply try again later; a signed-in non-admin is refused.

Usage:
    desk = AdminDesk(AdminApi(api), session_store)
    stats = await desk.dashboard()
    active_users = await desk.threads("active")
    view = await desk.open_conversation(conversation_id)
    await view.controller.take_over()
    await view.relay.send(view.conversation.id, "Hello from a human")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from crm.models import Conversation, ConversationThread, CrmStats, DashboardStats, ThreadDetail
from crm.ownership import ConversationOwnershipController
from crm.relay import AdminMessageRelay, Transcript
from scholar_integration.admin_api import AdminApi
from scholar_integration.crm_api import CrmApi
from scholar_integration.session_store import Identity, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class ConversationView:
    """Everything the conversation detail screen shows and drives."""

    controller: ConversationOwnershipController
    relay: AdminMessageRelay
    transcript: Transcript

    @property
    def conversation(self) -> Conversation | None:
        detail = self.controller.detail
        return detail.conversation if detail else None

    @property
    def status_label(self) -> str:
        conversation = self.conversation
        return conversation.status_label if conversation else ""

    async def refresh(self) -> None:
        """Re-pull the conversation; the transcript is replaced with the server's."""
        detail = await self.controller.refresh()
        self.transcript.hydrate(detail.messages)


class AdminDesk:
    def __init__(
        self,
        api: AdminApi,
        session_store: SessionStore,
        crm: CrmApi | None = None,
    ) -> None:
        self.api = api
        self.session_store = session_store
        self.crm = crm or CrmApi(api.client)

    def _admin(self) -> Identity | None:
        identity = self.session_store.ready_identity
        if identity is None:
            return None
        if not identity.is_admin:
            raise PermissionError(f"User {identity.id} is not an admin")
        return identity

    async def dashboard(self) -> DashboardStats | None:
        if self._admin() is None:
            return None
        return await self.api.get_dashboard_stats()

    async def conversations(self) -> list[Conversation]:
        if self._admin() is None:
            return []
        return await self.api.list_conversations()

    async def open_conversation(self, conversation_id: str) -> ConversationView | None:
        """
        Load one conversation and wire its controller, relay and transcript.

        Raises:
            PermissionError: The signed-in user is not an admin.
            ApiError: The conversation could not be fetched.
        """
        admin = self._admin()
        if admin is None:
            return None

        controller = ConversationOwnershipController(conversation_id, self.api)
        detail = await controller.refresh()
        transcript = Transcript(detail.messages)
        relay = AdminMessageRelay(controller, self.api, transcript)
        logger.info(
            "Admin %s opened conversation %s (%s, %d message(s))",
            admin.id, conversation_id, detail.conversation.status.value, len(transcript),
        )
        return ConversationView(controller=controller, relay=relay, transcript=transcript)

    # -- CRM threads -----------------------------------------------------------

    async def crm_stats(self) -> CrmStats | None:
        if self._admin() is None:
            return None
        return await self.crm.get_stats()

    async def threads(self, status: str | None = None) -> list[ConversationThread]:
        if self._admin() is None:
            return []
        return await self.crm.get_threads(status)

    async def search_threads(self, query: str) -> list[ConversationThread]:
        if self._admin() is None:
            return []
        return await self.crm.search_threads(query)

    async def open_thread(self, thread_id: str) -> ThreadDetail | None:
        if self._admin() is None:
            return None
        return await self.crm.get_thread(thread_id)
