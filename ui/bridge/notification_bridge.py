"""
WebSocket bridge that keeps one user's notification feed live and forwards
it to local UI clients.

Architecture:
    ScholarBot REST + WS (user.<uid>.notifications)
        ---> NotificationContext ---> UI clients (ws://localhost:8765)

The bridge:
1. Loads configuration from .env (SCHOLAR_API_URL, SCHOLAR_USER_ID, ...).
2. Builds a NotificationContext for SCHOLAR_USER_ID (initial REST snapshot,
   realtime channel with reconnect, 5-minute fallback poll).
3. Broadcasts a full ``notifications`` snapshot to every UI client whenever
   the store changes, and every toast as a ``toast`` event.
4. Accepts commands from UI clients:
       {"action": "mark_read", "id": "<notification id>"}
       {"action": "mark_all_read"}
       {"action": "refetch"}
       {"action": "ping"}

Run from the project root:
    python ui/bridge/notification_bridge.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Any

import websockets

# ---------------------------------------------------------------------------
# Resolve project root and load .env
# ---------------------------------------------------------------------------

_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.abspath(os.path.join(_THIS_DIR, "..", ".."))

sys.path.insert(0, os.path.join(_PROJECT_ROOT, "src"))

from dotenv import load_dotenv

from realtime.context import NotificationContext
from realtime.notification_store import NotificationStore
from scholar_integration.api_client import ApiClient
from scholar_integration.config import ScholarConfig
from scholar_integration.notifications_api import NotificationsApi
from scholar_integration.session_store import GuestSessionStore, Identity, SessionStore
from scholar_integration.toasts import Toast, ToastCenter

_ENV_PATH = os.path.join(_PROJECT_ROOT, ".env")
if os.path.exists(_ENV_PATH):
    load_dotenv(_ENV_PATH)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("notification_bridge")
logging.getLogger("websockets").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _make_event(event_type: str, **kwargs: Any) -> dict:
    """Build a bridge event dict with a timestamp."""
    return {"type": event_type, "timestamp": _now_iso(), **kwargs}


def snapshot_event(store: NotificationStore, connected: bool) -> dict:
    return _make_event(
        "notifications",
        items=[n.to_dict() for n in store.notifications],
        unread_count=store.unread_count,
        loading=store.loading,
        connected=connected,
    )


# ---------------------------------------------------------------------------
# Local WS server
# ---------------------------------------------------------------------------

class BridgeServer:
    """
    Local WebSocket server for UI clients.

    Store changes and toasts are queued and drained by ``broadcast_loop``;
    client commands are applied to the ``NotificationContext``.
    """

    def __init__(self, context: NotificationContext, toaster: ToastCenter, port: int) -> None:
        self.context = context
        self.port = port
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self._clients: set[Any] = set()
        self._unsubscribes = [
            context.store.subscribe(self._on_store_change),
            toaster.subscribe(self._on_toast),
        ]

    def _on_store_change(self, store: NotificationStore) -> None:
        self.event_queue.put_nowait(snapshot_event(store, self.context.is_connected))

    def _on_toast(self, toast: Toast) -> None:
        self.event_queue.put_nowait(_make_event("toast", **toast.to_dict()))

    async def handler(self, websocket: Any) -> None:
        """Handle a single UI client connection."""
        self._clients.add(websocket)
        client_id = id(websocket)
        logger.info("UI client connected (id=%d, total=%d)", client_id, len(self._clients))

        try:
            await websocket.send(json.dumps(snapshot_event(self.context.store, self.context.is_connected)))
            async for raw_msg in websocket:
                reply = await self.handle_command(raw_msg)
                if reply is not None:
                    await websocket.send(json.dumps(reply))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            logger.info("UI client disconnected (id=%d, total=%d)", client_id, len(self._clients))

    async def handle_command(self, raw_msg: str | bytes) -> dict | None:
        """
        Apply one client command.

        Returns:
            A direct reply for the sender, or None when the effect is
            broadcast through the store instead.
        """
        try:
            msg = json.loads(raw_msg)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Ignoring non-JSON client message: %r", raw_msg)
            return _make_event("error", message="Invalid JSON")
        if not isinstance(msg, dict):
            return _make_event("error", message="Expected a JSON object")

        action = msg.get("action")
        if action == "ping":
            return _make_event("pong")
        if action == "mark_read":
            notification_id = msg.get("id")
            if not notification_id:
                return _make_event("error", message="mark_read requires an id")
            await self.context.mark_as_read(str(notification_id))
            return None
        if action == "mark_all_read":
            await self.context.mark_all_as_read()
            return None
        if action == "refetch":
            await self.context.refetch()
            return None

        logger.warning("Unknown client action: %r", action)
        return _make_event("error", message=f"Unknown action: {action}")

    async def broadcast_loop(self) -> None:
        """Continuously drain the event queue and send to all UI clients."""
        while True:
            event = await self.event_queue.get()
            if not self._clients:
                continue
            payload = json.dumps(event)
            dead = []
            for ws in list(self._clients):
                try:
                    await ws.send(payload)
                except websockets.exceptions.ConnectionClosed:
                    dead.append(ws)
            for ws in dead:
                self._clients.discard(ws)

    async def start(self) -> None:
        """Start the local WS server and broadcast loop."""
        broadcast_task = asyncio.create_task(self.broadcast_loop())
        try:
            async with websockets.serve(self.handler, "0.0.0.0", self.port):
                logger.info("Bridge WS server listening on ws://0.0.0.0:%d", self.port)
                await asyncio.Future()
        finally:
            broadcast_task.cancel()

    def close(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    logger.info("=" * 60)
    logger.info("  ScholarBot -- Notification Bridge")
    logger.info("=" * 60)

    config = ScholarConfig.from_env(_ENV_PATH)
    user_id = os.environ.get("SCHOLAR_USER_ID", "")
    if not user_id:
        raise ValueError("Missing required configuration: SCHOLAR_USER_ID")
    user_token = os.environ.get("SCHOLAR_USER_TOKEN") or None

    async def _token() -> str | None:
        return user_token

    toaster = ToastCenter(echo=True)
    session_store = SessionStore()
    api = ApiClient(
        config.api_url,
        session_store=session_store,
        guest_sessions=GuestSessionStore(config.guest_session_path),
        toaster=toaster,
        timeout=config.http_timeout,
    )
    context = NotificationContext(config, NotificationsApi(api), toaster=toaster)
    server = BridgeServer(context, toaster, config.bridge_ws_port)

    unfollow = context.follow(session_store)
    session_store.set_identity(Identity.from_uid(user_id, token_provider=_token))
    server_task = asyncio.create_task(server.start())

    logger.info("Bridge is running for %s. Press Ctrl+C to stop.", user_id)

    # --- Graceful shutdown via signal ----------------------------------------
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received.")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    try:
        await asyncio.wait(
            [server_task, asyncio.create_task(shutdown_event.wait())],
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        server_task.cancel()
        unfollow()
        server.close()
        await context.teardown()
        await api.close()
        logger.info("Bridge stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
