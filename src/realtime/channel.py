"""
WebSocket channel for a user's notification topic.

Owns the one physical connection per active non-guest identity, reconnects
after a fixed delay when the connection drops, and forwards decoded events to
a single consumer callback. No other component touches the socket.

Lifecycle:
    IDLE -> CONNECTING -> OPEN -> CLOSED_RETRYING -> (CONNECTING ...)
                                    \\-> CLOSED_FINAL on disconnect()

Each physical connection runs in its own asyncio task (a ``_ChannelSession``)
with an explicit close handler. ``disconnect()`` detaches that handler before
closing, so a teardown never schedules a reconnect.

Usage:
    channel = RealtimeChannelManager(api_url, on_event=store.on_push)
    await channel.connect(identity)
    ...
    await channel.disconnect()
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncContextManager, Callable

import websockets

from scholar_integration.config import DEFAULT_RECONNECT_DELAY, ws_base_from
from scholar_integration.session_store import Identity

logger = logging.getLogger(__name__)

NOTIFICATION_PATH = "realtime/ws/updates/user.{uid}.notifications"

EventCallback = Callable[[dict], None]
Connector = Callable[[str], AsyncContextManager[Any]]


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_RETRYING = "closed_retrying"
    CLOSED_FINAL = "closed_final"


def _default_connector(url: str) -> AsyncContextManager[Any]:
    return websockets.connect(url, open_timeout=10, ping_interval=20)


class _ChannelSession:
    """One physical connection attempt and the handler to run when it ends."""

    def __init__(
        self,
        identity: Identity,
        url: str,
        on_close: Callable[[_ChannelSession], None] | None,
    ) -> None:
        self.identity = identity
        self.url = url
        self.on_close = on_close
        self.ws: Any = None
        self.task: asyncio.Task | None = None

    async def close(self) -> None:
        task = self.task
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            await asyncio.wait({task})


class RealtimeChannelManager:
    """
    Maintains the live notification stream for one identity at a time.

    Connection failures are never raised to the caller: they all resolve into
    the reconnect path. Retry is unbounded with a fixed delay.
    """

    def __init__(
        self,
        api_url: str,
        on_event: EventCallback,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connector: Connector | None = None,
        on_state_change: Callable[[ChannelState], None] | None = None,
    ) -> None:
        """
        Args:
            api_url: REST base URL; the socket uses the same host and a
                mirrored scheme.
            on_event: Called synchronously with each decoded event dict.
            reconnect_delay: Seconds to wait before reconnecting after a drop.
            connector: Factory returning an async context manager that yields
                an async-iterable socket. Defaults to ``websockets.connect``.
            on_state_change: Optional observer of state transitions.
        """
        self.ws_base = ws_base_from(api_url)
        self.reconnect_delay = reconnect_delay
        self._on_event = on_event
        self._connector = connector or _default_connector
        self._on_state_change = on_state_change

        self._identity: Identity | None = None
        self._session: _ChannelSession | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._state = ChannelState.IDLE

        self.connection_attempts = 0
        self.reconnects_scheduled = 0

    # -- Introspection ---------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ChannelState.OPEN

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def build_url(self, identity: Identity) -> str:
        return f"{self.ws_base}/{NOTIFICATION_PATH.format(uid=identity.id)}"

    # -- Public API ------------------------------------------------------------

    async def connect(self, identity: Identity | None) -> None:
        """
        Start (or keep) the channel for ``identity``.

        Guests and absent identities never get a channel; any existing one is
        closed. Calling again for the identity that is already connecting or
        open is a no-op. A different identity fully tears down the old
        channel first.
        """
        if identity is None or identity.is_guest:
            await self.disconnect()
            return

        if identity == self._identity and self._state in (
            ChannelState.CONNECTING,
            ChannelState.OPEN,
        ):
            logger.debug("Channel for %s already %s", identity.id, self._state.value)
            return

        if self._identity is not None and identity != self._identity:
            logger.info("Identity switch %s -> %s, closing old channel", self._identity.id, identity.id)
            await self.disconnect()

        self._identity = identity
        self._cancel_reconnect()
        self._open()

    async def disconnect(self) -> None:
        """
        Tear the channel down. Safe to call any number of times.

        The close handler is detached before the socket is closed, and a
        pending reconnect is cancelled.
        """
        self._cancel_reconnect()
        session, self._session = self._session, None
        self._identity = None

        if session is not None:
            session.on_close = None
            await session.close()
            logger.info("Notification channel closed for %s", session.identity.id)

        if self._state not in (ChannelState.IDLE, ChannelState.CLOSED_FINAL):
            self._set_state(ChannelState.CLOSED_FINAL)

    # -- Connection lifecycle --------------------------------------------------

    def _set_state(self, state: ChannelState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("Channel state observer failed")

    def _open(self) -> None:
        identity = self._identity
        if identity is None:
            return
        url = self.build_url(identity)
        session = _ChannelSession(identity, url, on_close=self._handle_close)
        self._session = session
        self.connection_attempts += 1
        self._set_state(ChannelState.CONNECTING)
        logger.info("Connecting notification channel: %s", url)
        session.task = asyncio.create_task(
            self._run(session), name=f"notification-channel:{identity.id}"
        )

    async def _run(self, session: _ChannelSession) -> None:
        try:
            async with self._connector(session.url) as ws:
                session.ws = ws
                self._handle_open(session)
                async for raw in ws:
                    self._handle_message(raw)
            logger.info("Notification channel closed by server for %s", session.identity.id)
        except asyncio.CancelledError:
            session.on_close = None
            raise
        except Exception as exc:
            logger.warning("Notification channel error for %s: %s", session.identity.id, exc)
        finally:
            session.ws = None
            handler, session.on_close = session.on_close, None
            if handler is not None:
                handler(session)

    def _handle_open(self, session: _ChannelSession) -> None:
        if session is not self._session:
            return
        logger.info("Notification channel connected for %s", session.identity.id)
        self._cancel_reconnect()
        self._set_state(ChannelState.OPEN)

    def _handle_message(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("Discarding malformed notification payload: %s", exc)
            return
        if not isinstance(payload, dict):
            logger.error("Discarding non-object notification payload: %r", payload)
            return

        logger.debug("Notification event received: id=%s type=%s", payload.get("id"), payload.get("type"))
        try:
            self._on_event(payload)
        except Exception:
            logger.exception("Notification consumer failed on event %s", payload.get("id"))

    def _handle_close(self, session: _ChannelSession) -> None:
        if session is not self._session:
            return
        self._session = None
        self._set_state(ChannelState.CLOSED_RETRYING)
        self._schedule_reconnect(session.identity)

    # -- Reconnect -------------------------------------------------------------

    def _schedule_reconnect(self, identity: Identity) -> None:
        if self.reconnect_pending:
            return
        self.reconnects_scheduled += 1
        logger.info("Reconnecting notification channel in %.1fs", self.reconnect_delay)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(identity), name=f"notification-reconnect:{identity.id}"
        )

    async def _reconnect_after(self, identity: Identity) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        if identity != self._identity or self._session is not None:
            return
        logger.info("Attempting notification channel reconnect for %s", identity.id)
        self._open()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
