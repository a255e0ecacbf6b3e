"""
Application-root object wiring the notification pipeline together.

One ``NotificationContext`` is built when the app starts and handed to
whatever needs notifications. It owns the store, the realtime channel and the
fallback poll, and rebuilds all three whenever the identity changes.

Usage:
    context = NotificationContext(config, NotificationsApi(api), toaster=toasts)
    unfollow = context.follow(session_store)
    ...
    await context.mark_all_as_read()
    ...
    unfollow()
    await context.teardown()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from realtime.channel import Connector, RealtimeChannelManager
from realtime.models import Notification
from realtime.notification_store import NotificationStore
from scholar_integration.config import ScholarConfig
from scholar_integration.notifications_api import NotificationsApi
from scholar_integration.session_store import Identity, SessionStore
from scholar_integration.toasts import ToastCenter

logger = logging.getLogger(__name__)


def _log_rebuild_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Notification context rebuild failed", exc_info=task.exception())


class NotificationContext:
    """
    Lifecycle: ``create(identity)`` -> (events, polls, mutations) -> ``teardown()``.

    Guests and absent identities get an empty, disconnected context.
    """

    def __init__(
        self,
        config: ScholarConfig,
        api: NotificationsApi,
        *,
        toaster: ToastCenter | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config
        self.store = NotificationStore(api, toaster=toaster)
        self.channel = RealtimeChannelManager(
            config.api_url,
            on_event=self.store.on_push,
            reconnect_delay=config.reconnect_delay,
            connector=connector,
        )
        self._identity: Identity | None = None
        self._poll_task: asyncio.Task | None = None
        self._rebuild_lock = asyncio.Lock()
        self._pending_rebuild: asyncio.Task | None = None

    # -- Views -----------------------------------------------------------------

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self.store.notifications

    @property
    def unread_count(self) -> int:
        return self.store.unread_count

    @property
    def loading(self) -> bool:
        return self.store.loading

    @property
    def is_connected(self) -> bool:
        return self.channel.is_connected

    # -- Lifecycle -------------------------------------------------------------

    async def create(self, identity: Identity | None) -> None:
        """Tear down whatever is running and start over for ``identity``."""
        async with self._rebuild_lock:
            await self._teardown()
            if identity is None or identity.is_guest:
                logger.info("No realtime notifications for %s", "guest" if identity else "anonymous user")
                return

            self._identity = identity
            await self.store.load_initial(identity)
            await self.channel.connect(identity)
            self._poll_task = asyncio.create_task(
                self._poll_loop(identity), name=f"notification-poll:{identity.id}"
            )
            logger.info("Notification context ready for %s", identity.id)

    async def teardown(self) -> None:
        async with self._rebuild_lock:
            await self._teardown()

    async def _teardown(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        await self.channel.disconnect()
        self.store.reset()
        self._identity = None

    async def _poll_loop(self, identity: Identity) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            logger.debug("Fallback notification poll for %s", identity.id)
            try:
                await self.store.load_initial(identity)
            except Exception:
                logger.exception("Fallback notification poll failed for %s", identity.id)

    def follow(self, session_store: SessionStore) -> Callable[[], None]:
        """
        Rebuild on every identity change of ``session_store``.

        While the identity is still loading nothing happens. Returns a
        callable that stops following (it does not tear down).
        """

        def _on_identity(_identity: Identity | None) -> None:
            if session_store.loading:
                return
            self._schedule_rebuild(session_store.ready_identity)

        unsubscribe = session_store.subscribe(_on_identity)
        if not session_store.loading:
            self._schedule_rebuild(session_store.ready_identity)
        return unsubscribe

    def _schedule_rebuild(self, identity: Identity | None) -> None:
        if identity == self._identity and (identity is None or self._poll_task is not None):
            return
        self._pending_rebuild = asyncio.create_task(self.create(identity))
        self._pending_rebuild.add_done_callback(_log_rebuild_failure)

    async def wait_ready(self) -> None:
        """Wait for the most recent identity-driven rebuild to finish."""
        task = self._pending_rebuild
        if task is not None:
            await asyncio.wait({task})

    # -- Actions ---------------------------------------------------------------

    async def refetch(self) -> None:
        if self._identity is not None:
            await self.store.load_initial(self._identity)

    async def mark_as_read(self, notification_id: str) -> None:
        await self.store.mark_as_read(notification_id)

    async def mark_all_as_read(self) -> None:
        await self.store.mark_all_as_read()
