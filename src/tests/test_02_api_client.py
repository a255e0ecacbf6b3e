"""
Tests for the REST layer: error translation, the ApiClient wrapper and the
typed endpoint clients, all against the in-memory backend.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest


# ---------------------------------------------------------------------------
# Error translation tests
# ---------------------------------------------------------------------------

class TestErrorTranslation:
    """Test parse_api_error() and error_for_status()."""

    def test_known_status_uses_table(self):
        from scholar_integration.errors import error_for_status

        error = error_for_status(401, "token expired")

        assert error.title == "Unauthorized"
        assert error.message == "Please log in to continue."
        assert error.status_code == 401

    def test_backend_message_preferred_where_allowed(self):
        from scholar_integration.errors import error_for_status

        assert error_for_status(404, "Conversation not found").message == "Conversation not found"
        assert error_for_status(500, "stack trace").message.startswith("Something went wrong")

    def test_unknown_status_is_generic(self):
        from scholar_integration.errors import error_for_status

        assert error_for_status(418).title == "Error"

    def test_http_status_error_reads_backend_detail(self):
        from scholar_integration.errors import parse_api_error

        request = httpx.Request("GET", "https://api.test/x")
        response = httpx.Response(422, json={"detail": "GPA must be a number"}, request=request)
        exc = httpx.HTTPStatusError("bad", request=request, response=response)

        error = parse_api_error(exc)

        assert error.title == "Validation Error"
        assert error.message == "GPA must be a number"

    def test_transport_error_is_network_error(self):
        from scholar_integration.errors import parse_api_error

        error = parse_api_error(httpx.ConnectError("refused"))

        assert error.title == "Network Error"
        assert error.status_code is None

    def test_admin_action_error_message(self):
        from scholar_integration.errors import AdminActionError, ApiError

        cause = ApiError("Server Error", "boom", 500)
        error = AdminActionError("takeover", "c1", cause)

        assert "takeover" in str(error)
        assert error.conversation_id == "c1"
        assert error.cause is cause


# ---------------------------------------------------------------------------
# ApiClient tests
# ---------------------------------------------------------------------------

class TestApiClient:
    """Test request handling, auth headers and error toasts."""

    async def test_unwraps_data_envelope(self, api_client):
        data = await api_client.get("/admin/dashboard/stats")

        assert data["totalUsers"] == 12

    async def test_bearer_token_from_identity(self, api_client, backend, session_store):
        from scholar_integration.session_store import Identity

        async def provider():
            return "firebase-id-token"

        session_store.set_identity(Identity.from_uid("u1", token_provider=provider))

        await api_client.get("/notifications/u1")

        assert backend.requests[-1].headers["Authorization"] == "Bearer firebase-id-token"

    async def test_token_provider_failure_is_api_error(self, api_client, backend, session_store, toaster):
        """A failing session refresh surfaces as ApiError and sends nothing."""
        from scholar_integration.errors import ApiError
        from scholar_integration.session_store import Identity

        async def provider():
            raise RuntimeError("token refresh failed")

        session_store.set_identity(Identity.from_uid("u1", token_provider=provider))

        with pytest.raises(ApiError) as excinfo:
            await api_client.get("/admin/dashboard/stats", notify=True)

        assert excinfo.value.title == "Unauthorized"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert backend.requests == []
        assert toaster.history[-1].title == "Unauthorized"

    async def test_no_token_no_header(self, api_client, backend):
        await api_client.get("/notifications/u1")

        assert "Authorization" not in backend.requests[-1].headers

    async def test_valid_guest_token_wins(self, backend, session_store, tmp_path):
        from scholar_integration.api_client import ApiClient
        from scholar_integration.session_store import GuestSession, GuestSessionStore, Identity

        async def provider():
            return "user-token"

        guests = GuestSessionStore(str(tmp_path / "guest.yaml"))
        guests.save(GuestSession("guest-token", datetime.now(timezone.utc) + timedelta(hours=1)))
        session_store.set_identity(Identity.from_uid("u1", token_provider=provider))

        async with ApiClient(
            "https://api.test",
            session_store=session_store,
            guest_sessions=guests,
            transport=httpx.MockTransport(backend.handler),
        ) as client:
            await client.get("/notifications/u1")

        assert backend.requests[-1].headers["Authorization"] == "Bearer guest-token"

    async def test_http_error_raises_api_error_and_toasts(self, api_client, backend, toaster):
        from scholar_integration.errors import ApiError

        backend.failures[("GET", "/admin/conversations")] = 503

        with pytest.raises(ApiError) as excinfo:
            await api_client.get("/admin/conversations", notify=True)

        assert excinfo.value.status_code == 503
        assert toaster.history[-1].level == "error"
        assert toaster.history[-1].title == "Service Unavailable"

    async def test_background_errors_do_not_toast(self, api_client, backend, toaster):
        from scholar_integration.errors import ApiError

        backend.failures[("GET", "/notifications/u1")] = 500

        with pytest.raises(ApiError):
            await api_client.get("/notifications/u1")

        assert toaster.history == []

    async def test_network_failure_is_api_error(self, toaster):
        from scholar_integration.api_client import ApiClient
        from scholar_integration.errors import ApiError

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with ApiClient("https://api.test", toaster=toaster, transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.get("/admin/conversations", notify=True)

        assert excinfo.value.title == "Network Error"
        assert toaster.history[-1].title == "Network Error"

    async def test_non_json_body_is_api_error(self):
        from scholar_integration.api_client import ApiClient
        from scholar_integration.errors import ApiError

        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
        async with ApiClient("https://api.test", transport=transport) as client:
            with pytest.raises(ApiError):
                await client.get("/anything")

    async def test_empty_body_is_none(self):
        from scholar_integration.api_client import ApiClient

        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        async with ApiClient("https://api.test", transport=transport) as client:
            assert await client.patch("/notifications/u1/n1/read") is None

    def test_ws_url_uses_same_host(self):
        from scholar_integration.api_client import ApiClient

        client = ApiClient("https://api.scholarbot.app")

        assert client.ws_url("/realtime/ws") == "wss://api.scholarbot.app/realtime/ws"


# ---------------------------------------------------------------------------
# Endpoint client tests
# ---------------------------------------------------------------------------

class TestNotificationsApi:
    """Test the notification routes."""

    async def test_fetch_notifications(self, api_client, backend, make_notification):
        from scholar_integration.notifications_api import NotificationsApi

        backend.notifications["u1"] = [make_notification("n1"), make_notification("n2", is_read=True)]

        items = await NotificationsApi(api_client).fetch_notifications("u1")

        assert [item["id"] for item in items] == ["n1", "n2"]

    async def test_fetch_accepts_wrapped_list(self, make_notification):
        from scholar_integration.api_client import ApiClient
        from scholar_integration.notifications_api import NotificationsApi

        body = {"data": {"notifications": [make_notification("n1")]}}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        async with ApiClient("https://api.test", transport=transport) as client:
            items = await NotificationsApi(client).fetch_notifications("u1")

        assert [item["id"] for item in items] == ["n1"]

    async def test_mark_read_patches_route(self, api_client, backend, make_notification):
        from scholar_integration.notifications_api import NotificationsApi

        backend.notifications["u1"] = [make_notification("n1")]

        await NotificationsApi(api_client).mark_read("u1", "n1")

        assert len(backend.requests_to("PATCH", "/notifications/u1/n1/read")) == 1
        assert backend.notifications["u1"][0]["isRead"] is True


class TestAdminApi:
    """Test the admin routes and their typed results."""

    async def test_dashboard_stats(self, api_client):
        from scholar_integration.admin_api import AdminApi

        stats = await AdminApi(api_client).get_dashboard_stats()

        assert stats.total_users == 12
        assert stats.active_conversations == 3

    async def test_list_and_get_conversation(self, api_client, backend):
        from crm.models import ConversationStatus, MessageRole
        from scholar_integration.admin_api import AdminApi

        backend.add_conversation("c1")
        backend.add_conversation("c2", status="taken_over")
        admin = AdminApi(api_client)

        conversations = await admin.list_conversations()
        detail = await admin.get_conversation("c2")

        assert [c.id for c in conversations] == ["c1", "c2"]
        assert detail.conversation.status is ConversationStatus.TAKEN_OVER
        assert [m.role for m in detail.messages] == [MessageRole.USER, MessageRole.BOT]

    async def test_send_admin_message_returns_server_copy(self, api_client, backend):
        from crm.models import MessageRole
        from scholar_integration.admin_api import AdminApi

        backend.add_conversation("c1", status="taken_over")

        message = await AdminApi(api_client).send_admin_message("c1", "Hello from a human")

        assert message.id == "srv-1"
        assert message.role is MessageRole.ADMIN
        request = backend.requests_to("POST", "/admin/conversations/c1/messages")[0]
        assert json.loads(request.content) == {"content": "Hello from a human"}

    async def test_takeover_success_flag(self, api_client, backend):
        from scholar_integration.admin_api import AdminApi

        backend.add_conversation("c1")
        admin = AdminApi(api_client)

        assert await admin.take_over("c1") is True
        backend.takeover_success = False
        assert await admin.take_over("c1") is False

    async def test_takeover_without_success_flag_counts_as_success(self, api_client, backend):
        from scholar_integration.admin_api import AdminApi

        backend.add_conversation("c1")
        backend.takeover_empty = True

        assert await AdminApi(api_client).take_over("c1") is True

    async def test_list_skips_unreadable_records(self, api_client, backend):
        from crm.models import ConversationStatus
        from scholar_integration.admin_api import AdminApi

        backend.add_conversation("c1", status="pending")
        backend.add_conversation("c2")
        backend.conversations["broken"] = {"userId": "u3", "status": "active"}

        conversations = await AdminApi(api_client).list_conversations()

        assert [c.id for c in conversations] == ["c1", "c2"]
        assert conversations[0].status is ConversationStatus.CLOSED
        assert conversations[0].status_label == "pending"

    async def test_unreadable_detail_is_api_error(self, api_client, backend, toaster):
        from scholar_integration.admin_api import AdminApi
        from scholar_integration.errors import ApiError

        backend.add_conversation("c1")
        backend.conversations["c1"]["id"] = ""

        with pytest.raises(ApiError, match="unreadable conversation"):
            await AdminApi(api_client).get_conversation("c1")

        assert toaster.history[-1].message == "The server returned an unreadable conversation."

    async def test_missing_conversation_raises(self, api_client, backend, toaster):
        from scholar_integration.admin_api import AdminApi
        from scholar_integration.errors import ApiError

        with pytest.raises(ApiError) as excinfo:
            await AdminApi(api_client).get_conversation("nope")

        assert excinfo.value.message == "Conversation not found"
        assert toaster.history[-1].message == "Conversation not found"


class TestChatbotApi:
    """Test the question endpoint payload."""

    async def test_ask_basic_never_sends_profile(self, api_client, backend):
        from scholar_integration.chatbot_api import ChatbotApi

        answer = await ChatbotApi(api_client).ask("Japan?", plan="basic", user_id="u1", use_profile=True)

        assert answer["answer"] == "Try the MEXT scholarship."
        body = json.loads(backend.requests_to("POST", "/chatbot/ask")[0].content)
        assert body == {"query": "Japan?", "plan": "basic", "user_id": "u1", "use_profile": False}

    async def test_ask_pro_sends_profile(self, api_client, backend):
        from scholar_integration.chatbot_api import ChatbotApi

        await ChatbotApi(api_client).ask("Japan?", plan="pro", use_profile=True)

        body = json.loads(backend.requests_to("POST", "/chatbot/ask")[0].content)
        assert body["use_profile"] is True
        assert body["user_id"] is None

    async def test_unknown_plan_rejected(self, api_client):
        from scholar_integration.chatbot_api import ChatbotApi

        with pytest.raises(ValueError, match="Unknown chatbot plan"):
            await ChatbotApi(api_client).ask("hi", plan="enterprise")


class TestCrmApi:
    """Test the CRM thread routes."""

    @pytest.fixture
    def crm(self, api_client):
        from scholar_integration.crm_api import CrmApi

        return CrmApi(api_client)

    async def test_stats(self, crm):
        stats = await crm.get_stats()

        assert stats.total_users == 10
        assert stats.total_messages == 25
        assert stats.avg_messages_per_user == 2.5
        assert stats.chats_today == 3

    async def test_threads_filtered_by_status(self, crm, backend):
        from crm.models import ThreadStatus

        backend.add_thread("u1", status="active")
        backend.add_thread("u2", status="old", name="Minh Tran")

        active = await crm.get_threads("active")

        assert [t.user_id for t in active] == ["u1"]
        assert active[0].status is ThreadStatus.ACTIVE
        assert active[0].user_name == "Lan Nguyen"
        assert active[0].message_count == 2
        assert backend.requests[-1].url.params["status"] == "active"

    async def test_all_threads_sends_no_filter(self, crm, backend):
        backend.add_thread("u1", status="active")
        backend.add_thread("u2", status="old")

        threads = await crm.get_threads("all")

        assert len(threads) == 2
        assert "status" not in backend.requests[-1].url.params

    async def test_unknown_status_rejected(self, crm, backend):
        with pytest.raises(ValueError):
            await crm.get_threads("archived")

        assert backend.requests == []

    async def test_search(self, crm, backend):
        backend.add_thread("u1")
        backend.add_thread("u2", name="Minh Tran")

        hits = await crm.search_threads("  minh ")

        assert [t.user_id for t in hits] == ["u2"]
        assert backend.requests[-1].url.params["q"] == "minh"

    async def test_blank_search_not_sent(self, crm, backend):
        assert await crm.search_threads("   ") == []
        assert backend.requests == []

    async def test_thread_detail_and_send(self, crm, backend):
        backend.add_thread("u1")

        detail = await crm.get_thread("u1")
        message = await crm.send_message("u1", "Following up")

        assert detail.email == "u1@example.com"
        assert detail.chat_history[0].scholarship_names == ("MEXT",)
        assert message.id == "crm-1"
        assert message.query == "Following up"

    async def test_missing_thread_raises(self, crm, toaster):
        from scholar_integration.errors import ApiError

        with pytest.raises(ApiError):
            await crm.get_thread("nobody")

        assert toaster.history[-1].message == "Thread not found"
