"""
ScholarBot conversation as seen by the user.

Keeps the message list, the composer text and the "thinking" flag of one
chat, relays questions to ``ChatbotApi`` and lets the user stop a request
that is taking too long.

Usage:
    session = ChatbotSession(ChatbotApi(api), identity=identity, plan="pro")
    task = await session.send("Scholarships in Japan for a master's?")
    await task
    print(session.messages[-1].text)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from scholar_integration.chatbot_api import PLANS, ChatbotApi
from scholar_integration.errors import ApiError
from scholar_integration.scholarships import Scholarship, adapt_scholarships
from scholar_integration.session_store import Identity

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Hi! I am a Scholarship Routing virtual assistant. How would you like me to help you today?"
ERROR_TEXT = "Sorry, I encountered an error. Please try again later."
EMPTY_ANSWER_TEXT = "Sorry, I could not process your request."
STOPPED_TEXT = "Request stopped by user."


@dataclass(frozen=True)
class ChatMessage:
    text: str
    sender: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    scholarships: list[Scholarship] = field(default_factory=list)


def _welcome() -> ChatMessage:
    return ChatMessage(text=WELCOME_TEXT, sender="bot")


def _scholarships_from_answer(data: dict) -> list[Scholarship]:
    if isinstance(data.get("scholarships"), list):
        return adapt_scholarships(data["scholarships"])
    names = data.get("scholarship_names") or []
    ids = data.get("scholarship_ids") or []
    return [Scholarship(id=str(sid), title=str(name)) for name, sid in zip(names, ids)]


class ChatbotSession:
    def __init__(
        self,
        api: ChatbotApi,
        *,
        identity: Identity | None = None,
        plan: str = "basic",
        use_profile: bool = False,
    ) -> None:
        if plan not in PLANS:
            raise ValueError(f"Unknown chatbot plan {plan!r}; expected one of {PLANS}")
        self.api = api
        self.identity = identity
        self.plan = plan
        self.use_profile = use_profile
        self.messages: list[ChatMessage] = [_welcome()]
        self.input_text = ""
        self.is_thinking = False
        self._current_query = ""
        self._task: asyncio.Task | None = None

    async def send(self, text: str | None = None) -> asyncio.Task | None:
        """
        Post the composer text (or ``text``) as a user message and ask it.

        Returns:
            The task running the request, or None when nothing was sent
            (blank input, or a request already in flight).
        """
        query = self.input_text if text is None else text
        if not query.strip() or self.is_thinking:
            return None

        self.messages.append(ChatMessage(text=query, sender="user"))
        self.input_text = ""
        self.is_thinking = True
        self._current_query = query
        self._task = asyncio.create_task(self.ask(query), name="scholarbot-ask")
        return self._task

    async def ask(self, query: str) -> None:
        """Relay ``query`` and append the answer (or an apology) as a bot message."""
        task = asyncio.current_task()
        try:
            data = await self.api.ask(
                query,
                plan=self.plan,
                user_id=self.identity.id if self.identity else None,
                use_profile=self.use_profile,
            )
            self.messages.append(
                ChatMessage(
                    text=data.get("answer") or EMPTY_ANSWER_TEXT,
                    sender="bot",
                    scholarships=_scholarships_from_answer(data),
                )
            )
        except asyncio.CancelledError:
            logger.info("ScholarBot request cancelled")
            raise
        except ApiError as exc:
            logger.error("Error sending message to chatbot: %s", exc)
            self.messages.append(ChatMessage(text=ERROR_TEXT, sender="bot"))
        finally:
            # A stopped request must not clear the state of a newer one.
            if self._task is None or self._task is task:
                self.is_thinking = False
                self._current_query = ""
                self._task = None

    def stop(self) -> None:
        """Abort the in-flight request and give the query back to the composer."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        self.is_thinking = False
        self.input_text = self._current_query
        self._current_query = ""
        self.messages.append(ChatMessage(text=STOPPED_TEXT, sender="bot"))

    def new_chat(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self.is_thinking = False
        self._current_query = ""
        self.messages = [_welcome()]
