"""
Shared pytest fixtures for the ScholarBot client tests.

Provides:
- A fake ScholarBot backend served through ``httpx.MockTransport``
- An ``ApiClient`` wired to that backend
- A fake WebSocket connector for the realtime channel
- A controllable notifications API for ordering/race tests
- Polling helpers for asynchronous assertions
"""

import asyncio
import json
import os
from pathlib import Path

import httpx
import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------

# Resolve project root: src/tests/conftest.py -> src/ -> project root
_TESTS_DIR = Path(__file__).parent
_SRC_DIR = _TESTS_DIR.parent
_PROJECT_ROOT = _SRC_DIR.parent

# Load .env for the live-backend tests
_ENV_PATH = _PROJECT_ROOT / ".env"
if _ENV_PATH.exists():
    load_dotenv(str(_ENV_PATH))

API_URL = "https://api.scholarbot.test"


# ---------------------------------------------------------------------------
# Fake REST backend
# ---------------------------------------------------------------------------

class FakeBackend:
    """
    In-memory stand-in for the ScholarBot REST API.

    ``failures`` maps ``(method, path)`` to a status code the route should
    answer with instead of succeeding.
    """

    def __init__(self):
        self.notifications: dict[str, list[dict]] = {}
        self.conversations: dict[str, dict] = {}
        self.messages: dict[str, list[dict]] = {}
        self.stats = {"totalUsers": 12, "totalConversations": 4, "activeConversations": 3}
        self.answer: dict = {"answer": "Try the MEXT scholarship."}
        self.takeover_success = True
        self.takeover_empty = False
        self.threads: list[dict] = []
        self.thread_chats: dict[str, list[dict]] = {}
        self.crm_stats = {"total_users": 10, "total_chats": 25, "chats_today": 3, "active_users": 4}
        self.failures: dict[tuple[str, str], int] = {}
        self.requests: list[httpx.Request] = []
        self._seq = 0

    # -- Seeding ---------------------------------------------------------------

    def add_conversation(self, conversation_id: str, status: str = "active", user_id: str = "u1") -> None:
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "userId": user_id,
            "userName": "Lan Nguyen",
            "status": status,
            "lastMessage": "Do you have scholarships in Korea?",
            "createdAt": "2026-10-01T08:00:00Z",
            "updatedAt": "2026-10-01T08:05:00Z",
        }
        self.messages[conversation_id] = [
            {"id": f"{conversation_id}-m1", "conversationId": conversation_id, "role": "user",
             "content": "Do you have scholarships in Korea?", "createdAt": "2026-10-01T08:00:00Z"},
            {"id": f"{conversation_id}-m2", "conversationId": conversation_id, "role": "bot",
             "content": "Yes, the GKS scholarship.", "createdAt": "2026-10-01T08:00:05Z"},
        ]

    def add_thread(self, user_id: str, status: str = "active", name: str = "Lan Nguyen") -> None:
        self.threads.append({
            "user_id": user_id,
            "display_name": name,
            "email": f"{user_id}@example.com",
            "chat_count": 2,
            "last_chat_at": "2026-10-18T10:00:00Z",
            "status": status,
        })
        self.thread_chats[user_id] = [
            {"id": f"{user_id}-q1", "query": "Scholarships in Japan?", "answer": "Try MEXT.",
             "timestamp": "2026-10-18T10:00:00Z", "plan": "pro", "scholarship_names": ["MEXT"]},
        ]

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    # -- Routing ---------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        forced = self.failures.get((method, path))
        if forced:
            return httpx.Response(forced, json={"message": f"forced failure {forced}"})

        parts = path.strip("/").split("/")

        if parts[0] == "notifications":
            if method == "GET" and len(parts) == 2:
                return httpx.Response(200, json=self.notifications.get(parts[1], []))
            if method == "PATCH" and len(parts) == 4 and parts[3] == "read":
                for item in self.notifications.get(parts[1], []):
                    if item["id"] == parts[2]:
                        item["isRead"] = True
                return httpx.Response(200, json={"success": True})

        if parts[:3] == ["admin", "dashboard", "stats"] and method == "GET":
            return httpx.Response(200, json={"data": self.stats})

        if parts[:2] == ["admin", "conversations"]:
            if len(parts) == 2 and method == "GET":
                return httpx.Response(200, json=list(self.conversations.values()))
            conversation_id = parts[2]
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return httpx.Response(404, json={"message": "Conversation not found"})
            if len(parts) == 3 and method == "GET":
                return httpx.Response(200, json={
                    "conversation": conversation,
                    "messages": self.messages.get(conversation_id, []),
                })
            if len(parts) == 4 and method == "POST":
                return self._conversation_action(conversation, parts[3], request)

        if parts[0] == "crm":
            return self._crm(method, parts, request)

        if path == "/chatbot/ask" and method == "POST":
            return httpx.Response(200, json=self.answer)

        return httpx.Response(404, json={"message": f"No route {method} {path}"})

    def _conversation_action(self, conversation: dict, action: str, request: httpx.Request) -> httpx.Response:
        if action == "messages":
            self._seq += 1
            body = json.loads(request.content)
            message = {
                "id": f"srv-{self._seq}",
                "conversationId": conversation["id"],
                "role": "admin",
                "content": body["content"],
                "createdAt": "2026-10-01T09:00:00Z",
            }
            self.messages.setdefault(conversation["id"], []).append(message)
            return httpx.Response(201, json=message)
        if action == "takeover":
            if self.takeover_success:
                conversation["status"] = "taken_over"
                conversation["takenOverBy"] = "admin-1"
            if self.takeover_empty:
                return httpx.Response(204)
            return httpx.Response(200, json={"success": self.takeover_success})
        if action == "release":
            conversation["status"] = "active"
            conversation.pop("takenOverBy", None)
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"message": "Unknown action"})

    def _crm(self, method: str, parts: list[str], request: httpx.Request) -> httpx.Response:
        if parts[1:] == ["stats"] and method == "GET":
            return httpx.Response(200, json={"success": True, "data": self.crm_stats})
        if parts[1:] == ["threads"] and method == "GET":
            # The status filter is left to the client.
            return httpx.Response(200, json={"success": True, "data": self.threads})
        if parts[1:] == ["threads", "search"] and method == "GET":
            q = request.url.params.get("q", "").lower()
            hits = [t for t in self.threads if q in t["display_name"].lower() or q in t["email"]]
            return httpx.Response(200, json={"success": True, "data": hits})
        if len(parts) >= 3 and parts[1] == "threads":
            user_id = parts[2]
            thread = next((t for t in self.threads if t["user_id"] == user_id), None)
            if thread is None:
                return httpx.Response(404, json={"message": "Thread not found"})
            if len(parts) == 3 and method == "GET":
                return httpx.Response(200, json={
                    "user_id": user_id,
                    "display_name": thread["display_name"],
                    "email": thread["email"],
                    "chat_history": self.thread_chats.get(user_id, []),
                })
            if parts[3:] == ["messages"] and method == "POST":
                self._seq += 1
                body = json.loads(request.content)
                message = {"id": f"crm-{self._seq}", "query": body["content"], "answer": "",
                           "timestamp": "2026-10-19T09:00:00Z", "plan": "basic"}
                self.thread_chats.setdefault(user_id, []).append(message)
                return httpx.Response(201, json=message)
        return httpx.Response(404, json={"message": "No CRM route"})


# ---------------------------------------------------------------------------
# Fake WebSocket
# ---------------------------------------------------------------------------

_CLOSE = object()


class FakeSocket:
    """Async-iterable socket fed by the test; also its own connect context."""

    def __init__(self, url: str):
        self.url = url
        self.entered = False
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, payload) -> None:
        if not isinstance(payload, (str, bytes)):
            payload = json.dumps(payload)
        self._queue.put_nowait(payload)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._queue.put_nowait(_CLOSE)

    def fail(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class _RefusedConnect:
    async def __aenter__(self):
        raise OSError("connection refused")

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnector:
    """Connector handed to ``RealtimeChannelManager`` in place of ``websockets.connect``."""

    def __init__(self):
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.refuse = 0

    def __call__(self, url: str):
        self.urls.append(url)
        if self.refuse:
            self.refuse -= 1
            return _RefusedConnect()
        socket = FakeSocket(url)
        self.sockets.append(socket)
        return socket

    @property
    def open_sockets(self) -> list[FakeSocket]:
        return [s for s in self.sockets if s.entered and not s.closed]

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


# ---------------------------------------------------------------------------
# Controllable notifications API
# ---------------------------------------------------------------------------

class FakeNotificationsApi:
    """
    Drop-in for ``NotificationsApi`` whose fetches can be held open per user
    (``gates``) and whose calls can be made to fail.
    """

    def __init__(self, snapshots: dict[str, list[dict]] | None = None):
        self.snapshots = snapshots or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.fetch_calls: list[str] = []
        self.read_calls: list[tuple[str, str]] = []
        self.fetch_error: Exception | None = None
        self.read_error: Exception | None = None

    async def fetch_notifications(self, user_id: str) -> list[dict]:
        self.fetch_calls.append(user_id)
        gate = self.gates.get(user_id)
        if gate is not None:
            await gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return [dict(item) for item in self.snapshots.get(user_id, [])]

    async def mark_read(self, user_id: str, notification_id: str) -> None:
        self.read_calls.append((user_id, notification_id))
        if self.read_error is not None:
            raise self.read_error


def notification_payload(notification_id: str, is_read: bool = False, **extra) -> dict:
    payload = {
        "id": notification_id,
        "userId": "u1",
        "type": "SYSTEM_ALERT",
        "title": f"Title {notification_id}",
        "message": f"Message {notification_id}",
        "isRead": is_read,
        "createdAt": "2026-10-18T10:00:00Z",
    }
    payload.update(extra)
    return payload


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def toaster():
    from scholar_integration.toasts import ToastCenter

    return ToastCenter()


@pytest.fixture
def session_store():
    from scholar_integration.session_store import SessionStore

    return SessionStore()


@pytest.fixture
async def api_client(backend, session_store, toaster):
    """``ApiClient`` talking to the in-memory backend."""
    from scholar_integration.api_client import ApiClient

    client = ApiClient(
        API_URL,
        session_store=session_store,
        toaster=toaster,
        transport=httpx.MockTransport(backend.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def notifications_api() -> FakeNotificationsApi:
    return FakeNotificationsApi()


@pytest.fixture
def config():
    from scholar_integration.config import ScholarConfig

    return ScholarConfig(API_URL, reconnect_delay=0.01, poll_interval=3600)


@pytest.fixture
def identity():
    from scholar_integration.session_store import Identity

    return Identity.from_uid("u1", email="lan@example.com")


@pytest.fixture
def wait_until():
    """Poll ``predicate`` on the running loop until it holds or time runs out."""

    async def _wait_until(predicate, timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within %.2fs" % timeout)
            await asyncio.sleep(0.005)

    return _wait_until


@pytest.fixture
def live_api_env():
    """Live backend settings; skips the test when they are not configured."""
    api_url = os.environ.get("SCHOLAR_API_URL")
    user_id = os.environ.get("SCHOLAR_TEST_USER_ID")
    if not api_url or not user_id:
        pytest.skip("SCHOLAR_API_URL / SCHOLAR_TEST_USER_ID not set")
    return {"api_url": api_url, "user_id": user_id, "token": os.environ.get("SCHOLAR_TEST_USER_TOKEN")}


@pytest.fixture
def make_notification():
    """Factory for wire-format notification payloads."""
    return notification_payload
