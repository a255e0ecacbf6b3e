"""
Notification data model.

Notifications reach the client from two sources, the REST snapshot and the
WebSocket push, and each may carry ``createdAt`` in a different shape. Both
paths go through ``Notification.from_payload`` so the rest of the client sees
one type, with timestamps behind the lazily evaluated ``Timestamp`` accessor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    DEADLINE_WARNING = "DEADLINE_WARNING"
    DEADLINE_MISSED = "DEADLINE_MISSED"
    APPLICATION_ADDED = "APPLICATION_ADDED"
    APPLICATION_STATUS = "APPLICATION_STATUS"
    SCHOLARSHIP_MATCH = "SCHOLARSHIP_MATCH"
    SYSTEM_ALERT = "SYSTEM_ALERT"

    @classmethod
    def parse(cls, value: Any) -> NotificationType:
        try:
            return cls(str(value).upper())
        except ValueError:
            logger.debug("Unknown notification type %r, using SYSTEM_ALERT", value)
            return cls.SYSTEM_ALERT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Timestamp:
    """
    Lazily parsed point in time.

    Wraps whatever the source sent (ISO string, epoch seconds or
    milliseconds, ``datetime``, or a Firestore-style ``{"seconds": ...}``
    map) and only parses it when ``to_datetime()`` is first called. A
    missing or unparseable value resolves to the receipt time.
    """

    __slots__ = ("_raw", "_received_at", "_parsed")

    def __init__(self, raw: Any = None, received_at: datetime | None = None):
        self._raw = raw
        self._received_at = received_at or _utcnow()
        self._parsed: datetime | None = None

    @property
    def raw(self) -> Any:
        return self._raw

    def to_datetime(self) -> datetime:
        if self._parsed is None:
            self._parsed = self._parse()
        return self._parsed

    def _parse(self) -> datetime:
        raw = self._raw
        if raw is None or raw == "":
            return self._received_at
        try:
            if isinstance(raw, datetime):
                value = raw
            elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
                # Values past year ~2286 in seconds are taken as milliseconds.
                seconds = raw / 1000.0 if raw > 1e10 else float(raw)
                value = datetime.fromtimestamp(seconds, tz=timezone.utc)
            elif isinstance(raw, dict):
                seconds = raw.get("seconds", raw.get("_seconds"))
                nanos = raw.get("nanoseconds", raw.get("_nanoseconds", 0)) or 0
                value = datetime.fromtimestamp(
                    float(seconds) + float(nanos) / 1e9, tz=timezone.utc
                )
            else:
                text = str(raw).strip()
                if text.endswith("Z"):
                    text = text[:-1] + "+00:00"
                value = datetime.fromisoformat(text)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.warning("Unparseable timestamp %r, using receipt time", raw)
            return self._received_at

        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def from_now(self, now: datetime | None = None) -> str:
        """Relative description such as ``"5 minutes ago"`` or ``"in 2 days"``."""
        delta = ((now or _utcnow()) - self.to_datetime()).total_seconds()
        future = delta < 0
        seconds = abs(delta)

        if seconds < 45:
            return "just now" if not future else "in a few seconds"

        for limit, size, unit in (
            (45 * 60, 60, "minute"),
            (22 * 3600, 3600, "hour"),
            (26 * 86400, 86400, "day"),
            (320 * 86400, 30 * 86400, "month"),
            (float("inf"), 365 * 86400, "year"),
        ):
            if seconds < limit:
                count = max(1, round(seconds / size))
                label = f"{count} {unit}{'' if count == 1 else 's'}"
                return f"in {label}" if future else f"{label} ago"
        return ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self.to_datetime() == other.to_datetime()

    def __hash__(self) -> int:
        return hash(self.to_datetime())

    def __repr__(self) -> str:
        return f"Timestamp({self._raw!r})"


def _pick(raw: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _flag(value: Any) -> bool:
    """Read a boolean that may arrive as a string (``"false"``, ``"0"``)."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


@dataclass(frozen=True)
class Notification:
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    is_read: bool = False
    created_at: Timestamp = field(default_factory=Timestamp)
    link: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: dict, received_at: datetime | None = None) -> Notification:
        """
        Normalize a REST or push payload (camelCase or snake_case keys).

        Raises:
            ValueError: If the payload is not a mapping or has no ``id``.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Notification payload must be an object, got {type(raw).__name__}")
        notification_id = _pick(raw, "id", "_id")
        if notification_id in (None, ""):
            raise ValueError("Notification payload has no id")

        metadata = _pick(raw, "metadata", default={})
        return cls(
            id=str(notification_id),
            user_id=str(_pick(raw, "userId", "user_id", default="")),
            type=NotificationType.parse(_pick(raw, "type", default="SYSTEM_ALERT")),
            title=str(_pick(raw, "title", default="")),
            message=str(_pick(raw, "message", default="")),
            is_read=_flag(_pick(raw, "isRead", "is_read", default=False)),
            created_at=Timestamp(_pick(raw, "createdAt", "created_at"), received_at),
            link=_pick(raw, "link"),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    def mark_read(self) -> Notification:
        return self if self.is_read else replace(self, is_read=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "isRead": self.is_read,
            "createdAt": self.created_at.to_datetime().isoformat(),
            "createdAgo": self.created_at.from_now(),
            "link": self.link,
            "metadata": self.metadata,
        }
