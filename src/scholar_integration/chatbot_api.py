"""
ScholarBot question endpoint.

The answer is produced by an external LLM backend; this client only relays
the query. Cancellation is handled by the caller cancelling the awaiting
task, which aborts the in-flight httpx request.
"""

from __future__ import annotations

import logging
from typing import Any

from scholar_integration.api_client import ApiClient

logger = logging.getLogger(__name__)

PLANS = ("basic", "pro")


class ChatbotApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def ask(
        self,
        query: str,
        *,
        plan: str = "basic",
        user_id: str | None = None,
        use_profile: bool = False,
    ) -> dict[str, Any]:
        """
        Ask ScholarBot a question.

        Args:
            query: The user's natural-language question.
            plan: ``"basic"`` or ``"pro"``.
            user_id: Identity id, if any.
            use_profile: Personalise with the user's profile (pro plan only).

        Returns:
            Answer dict with ``answer`` and optionally ``scholarships``,
            ``scholarship_names`` and ``scholarship_ids``.
        """
        if plan not in PLANS:
            raise ValueError(f"Unknown chatbot plan {plan!r}; expected one of {PLANS}")

        payload = {
            "query": query,
            "plan": plan,
            "user_id": user_id,
            "use_profile": use_profile if plan == "pro" else False,
        }
        logger.info("Asking ScholarBot (plan=%s, len=%d)", plan, len(query))
        data = await self.client.post("/chatbot/ask", json=payload)
        return data if isinstance(data, dict) else {}
