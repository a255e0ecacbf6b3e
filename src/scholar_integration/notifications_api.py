"""
REST endpoints for a user's notifications.

Both calls back the always-on notification pipeline, so they never raise
toasts; callers log and carry on.
"""

from __future__ import annotations

import logging

from scholar_integration.api_client import ApiClient

logger = logging.getLogger(__name__)


class NotificationsApi:
    """Fetch notifications and send read receipts."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def fetch_notifications(self, user_id: str) -> list[dict]:
        """
        Fetch the full notification list for a user.

        Returns:
            List of raw notification dicts (camelCase wire format).
        """
        data = await self.client.get(f"/notifications/{user_id}")
        if isinstance(data, dict):
            data = data.get("notifications", [])
        if not isinstance(data, list):
            data = [data] if data else []
        logger.info("Fetched %d notification(s) for %s", len(data), user_id)
        return data

    async def mark_read(self, user_id: str, notification_id: str) -> None:
        await self.client.patch(f"/notifications/{user_id}/{notification_id}/read")
        logger.debug("Marked notification %s read for %s", notification_id, user_id)
