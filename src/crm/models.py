"""
Admin console data model: conversations between users and ScholarBot, their
messages, and the dashboard counters; plus the CRM view of users' chat
threads.

Unknown status or role values from the backend never break a list: they fall
back to a safe member and the raw text is kept for display. A record without
an ``id`` is rejected with ``ValueError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    TAKEN_OVER = "taken_over"
    CLOSED = "closed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")

    @classmethod
    def parse(cls, value: Any) -> ConversationStatus:
        """Unknown statuses are treated as CLOSED, which allows no takeover or release."""
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning("Unknown conversation status %r, treating as closed", value)
            return cls.CLOSED


class MessageRole(str, Enum):
    USER = "user"
    BOT = "bot"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> MessageRole:
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning("Unknown message role %r, treating as bot", value)
            return cls.BOT


class ThreadStatus(str, Enum):
    """Activity bucket of a CRM user thread."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    OLD = "old"

    @classmethod
    def parse(cls, value: Any) -> ThreadStatus:
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.INACTIVE


def _get(raw: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return default


def _require_id(raw: dict, *keys: str) -> str:
    if not isinstance(raw, dict):
        raise ValueError(f"Expected an object, got {type(raw).__name__}")
    value = _get(raw, *keys)
    if value in (None, ""):
        raise ValueError(f"Record has no {keys[0]}")
    return str(value)


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: str

    @classmethod
    def from_payload(cls, raw: dict) -> Message:
        return cls(
            id=_require_id(raw, "id"),
            conversation_id=str(_get(raw, "conversationId", "conversation_id", default="")),
            role=MessageRole.parse(_get(raw, "role", default="bot")),
            content=str(_get(raw, "content", default="")),
            created_at=str(_get(raw, "createdAt", "created_at", default="")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Conversation:
    id: str
    user_id: str
    status: ConversationStatus
    user_name: str | None = None
    last_message: str = ""
    created_at: str = ""
    updated_at: str = ""
    taken_over_by: str | None = None
    taken_over_at: str | None = None
    status_text: str = ""

    @classmethod
    def from_payload(cls, raw: dict) -> Conversation:
        conversation_id = _require_id(raw, "id")
        status = str(_get(raw, "status", default="active"))
        return cls(
            id=conversation_id,
            user_id=str(_get(raw, "userId", "user_id", default="")),
            status=ConversationStatus.parse(status),
            user_name=_get(raw, "userName", "user_name"),
            last_message=str(_get(raw, "lastMessage", "last_message", default="")),
            created_at=str(_get(raw, "createdAt", "created_at", default="")),
            updated_at=str(_get(raw, "updatedAt", "updated_at", default="")),
            taken_over_by=_get(raw, "takenOverBy", "taken_over_by"),
            taken_over_at=_get(raw, "takenOverAt", "taken_over_at"),
            status_text=status,
        )

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_id

    @property
    def status_label(self) -> str:
        """The server's own status text, readable (``taken_over`` -> ``taken over``)."""
        return (self.status_text or self.status.value).replace("_", " ")


@dataclass(frozen=True)
class ConversationDetail:
    conversation: Conversation
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict) -> ConversationDetail:
        if not isinstance(raw, dict):
            raise ValueError(f"Expected an object, got {type(raw).__name__}")
        messages = []
        for item in raw.get("messages") or []:
            try:
                messages.append(Message.from_payload(item))
            except ValueError as exc:
                logger.warning("Skipping malformed message: %s", exc)
        return cls(conversation=Conversation.from_payload(raw["conversation"]), messages=messages)


@dataclass(frozen=True)
class DashboardStats:
    total_users: int = 0
    total_conversations: int = 0
    active_conversations: int = 0

    @classmethod
    def from_payload(cls, raw: dict) -> DashboardStats:
        return cls(
            total_users=int(_get(raw, "totalUsers", "total_users", default=0)),
            total_conversations=int(_get(raw, "totalConversations", "total_conversations", default=0)),
            active_conversations=int(_get(raw, "activeConversations", "active_conversations", default=0)),
        )


# ---------------------------------------------------------------------------
# CRM threads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrmStats:
    total_users: int = 0
    active_users: int = 0
    total_messages: int = 0
    avg_messages_per_user: float = 0.0
    chats_today: int = 0

    @classmethod
    def from_payload(cls, raw: dict) -> CrmStats:
        total_users = int(_get(raw, "totalUsers", "total_users", default=0))
        total_messages = int(_get(raw, "totalMessages", "total_chats", "total_messages", default=0))
        avg = _get(raw, "avgMessagesPerUser", "avg_messages_per_user")
        if avg is None:
            avg = total_messages / total_users if total_users else 0.0
        return cls(
            total_users=total_users,
            active_users=int(_get(raw, "activeUsers", "active_users", default=0)),
            total_messages=total_messages,
            avg_messages_per_user=round(float(avg), 1),
            chats_today=int(_get(raw, "chatsToday", "chats_today", default=0)),
        )


@dataclass(frozen=True)
class ThreadMessage:
    """One ScholarBot exchange: the user's query and the bot's answer."""

    id: str
    query: str
    answer: str
    timestamp: str = ""
    plan: str = "basic"
    scholarship_names: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, raw: dict) -> ThreadMessage:
        thread_message_id = _require_id(raw, "id")
        names = _get(raw, "scholarshipNames", "scholarship_names", default=[])
        return cls(
            id=thread_message_id,
            query=str(_get(raw, "query", default="")),
            answer=str(_get(raw, "answer", default="")),
            timestamp=str(_get(raw, "timestamp", default="")),
            plan=str(_get(raw, "plan", default="basic")),
            scholarship_names=tuple(str(n) for n in names) if isinstance(names, list) else (),
        )


@dataclass(frozen=True)
class ConversationThread:
    """A user with chat activity, as listed in the CRM."""

    user_id: str
    user_name: str = ""
    email: str = ""
    message_count: int = 0
    last_activity: str = ""
    last_message: str = ""
    status: ThreadStatus = ThreadStatus.INACTIVE
    plan: str = "basic"

    @classmethod
    def from_payload(cls, raw: dict) -> ConversationThread:
        return cls(
            user_id=_require_id(raw, "userId", "user_id", "id"),
            user_name=str(_get(raw, "userName", "display_name", "user_name", default="")),
            email=str(_get(raw, "email", default="")),
            message_count=int(_get(raw, "messageCount", "chat_count", "message_count", default=0)),
            last_activity=str(_get(raw, "lastActivity", "last_chat_at", "last_activity", default="")),
            last_message=str(_get(raw, "lastMessage", "last_message", default="")),
            status=ThreadStatus.parse(_get(raw, "status", default="inactive")),
            plan=str(_get(raw, "plan", default="basic")),
        )


@dataclass(frozen=True)
class ThreadDetail:
    user_id: str
    user_name: str = ""
    email: str = ""
    chat_history: list[ThreadMessage] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict) -> ThreadDetail:
        user_id = _require_id(raw, "userId", "user_id")
        history = []
        items = _get(raw, "chatHistory", "chat_history", "data", default=[])
        for item in items if isinstance(items, list) else []:
            try:
                history.append(ThreadMessage.from_payload(item))
            except ValueError as exc:
                logger.warning("Skipping malformed thread message: %s", exc)
        return cls(
            user_id=user_id,
            user_name=str(_get(raw, "userName", "display_name", "user_name", default="")),
            email=str(_get(raw, "email", default="")),
            chat_history=history,
        )
