"""
Single source of truth for a user's notification list.

Merges the REST snapshot (initial load, fallback poll, manual refetch) with
the WebSocket push stream into one newest-first, de-duplicated list and an
unread counter. Read-state changes are optimistic: the local state flips
first, then the read receipt goes to the server, and a failed receipt is
logged but never rolled back.

The list is only mutated through ``load_initial``, ``on_push``,
``mark_as_read`` and ``mark_all_as_read`` (plus ``reset`` on teardown).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from realtime.models import Notification
from scholar_integration.errors import ApiError
from scholar_integration.notifications_api import NotificationsApi
from scholar_integration.session_store import Identity
from scholar_integration.toasts import ToastCenter

logger = logging.getLogger(__name__)

StoreListener = Callable[["NotificationStore"], None]


class NotificationStore:
    def __init__(self, api: NotificationsApi, *, toaster: ToastCenter | None = None) -> None:
        self.api = api
        self.toaster = toaster
        self._identity: Identity | None = None
        self._notifications: list[Notification] = []
        self._ids: set[str] = set()
        self._unread_count = 0
        self._loading = False
        self._generation = 0
        self._listeners: list[StoreListener] = []

    # -- Read-only views -------------------------------------------------------

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return tuple(self._notifications)

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def get(self, notification_id: str) -> Notification | None:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Notification store listener failed")

    # -- Snapshot --------------------------------------------------------------

    async def load_initial(self, identity: Identity) -> None:
        """
        Replace the list with the server's snapshot for ``identity``.

        Used on startup, by the fallback poll and by manual refetch. Errors
        are logged and leave the current list untouched. A response that
        lands after the store has moved to another identity is dropped.
        """
        if identity.id != (self._identity.id if self._identity else None):
            self._replace([], identity)
        self._identity = identity
        generation = self._generation

        self._loading = True
        self._emit()
        try:
            raw_items = await self.api.fetch_notifications(identity.id)
        except ApiError as exc:
            logger.error("Error fetching notifications for %s: %s", identity.id, exc)
            self._fetch_failed(generation)
            return
        except Exception:
            logger.exception("Unexpected error fetching notifications for %s", identity.id)
            self._fetch_failed(generation)
            return

        if generation != self._generation:
            logger.debug("Discarding stale notification snapshot for %s", identity.id)
            return
        self._loading = False

        items: list[Notification] = []
        seen: set[str] = set()
        for raw in raw_items:
            try:
                notification = Notification.from_payload(raw)
            except ValueError as exc:
                logger.warning("Skipping malformed notification in snapshot: %s", exc)
                continue
            if notification.id in seen:
                continue
            seen.add(notification.id)
            items.append(notification)

        self._replace(items, identity, bump=False)
        logger.info(
            "Loaded %d notification(s) for %s (%d unread)",
            len(items), identity.id, self._unread_count,
        )
        self._emit()

    def _fetch_failed(self, generation: int) -> None:
        if generation == self._generation:
            self._loading = False
            self._emit()

    def _replace(self, items: list[Notification], identity: Identity | None, bump: bool = True) -> None:
        if bump:
            self._generation += 1
        self._identity = identity
        self._notifications = list(items)
        self._ids = {n.id for n in items}
        self._unread_count = sum(1 for n in items if not n.is_read)

    def reset(self) -> None:
        """Forget everything; in-flight snapshots for the old identity are dropped."""
        self._replace([], None)
        self._loading = False
        self._emit()

    # -- Push ------------------------------------------------------------------

    def on_push(self, raw: dict) -> Notification | None:
        """
        Apply one realtime event. Synchronous so rapid bursts cannot interleave.

        Returns:
            The new notification, or None when the event was a duplicate or
            could not be read.
        """
        try:
            notification = Notification.from_payload(raw)
        except ValueError as exc:
            logger.error("Discarding unreadable notification push: %s", exc)
            return None

        if notification.id in self._ids:
            logger.debug("Duplicate notification %s ignored", notification.id)
            return None

        self._notifications.insert(0, notification)
        self._ids.add(notification.id)
        if not notification.is_read:
            self._unread_count += 1

        logger.info("Notification %s pushed (%s)", notification.id, notification.type.value)
        if self.toaster is not None:
            self.toaster.info(notification.title, notification.message)
        self._emit()
        return notification

    # -- Read state ------------------------------------------------------------

    async def mark_as_read(self, notification_id: str) -> None:
        """Flip one notification to read now, then tell the server."""
        for index, notification in enumerate(self._notifications):
            if notification.id == notification_id:
                if not notification.is_read:
                    self._notifications[index] = notification.mark_read()
                    self._unread_count = max(0, self._unread_count - 1)
                    self._emit()
                break

        if self._identity is not None:
            await self._send_read_receipt(self._identity.id, notification_id)

    async def mark_all_as_read(self) -> None:
        """Flip every notification to read now, then send one receipt per id."""
        if self._unread_count == 0:
            return

        unread_ids = [n.id for n in self._notifications if not n.is_read]
        self._notifications = [n.mark_read() for n in self._notifications]
        self._unread_count = 0
        self._emit()

        if self._identity is None or not unread_ids:
            return
        user_id = self._identity.id
        await asyncio.gather(*(self._send_read_receipt(user_id, nid) for nid in unread_ids))

    async def _send_read_receipt(self, user_id: str, notification_id: str) -> None:
        try:
            await self.api.mark_read(user_id, notification_id)
        except ApiError as exc:
            logger.error("Error marking notification %s as read: %s", notification_id, exc)
