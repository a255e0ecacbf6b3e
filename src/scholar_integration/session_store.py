"""
Identity holder for the ScholarBot client.

The external identity provider (Firebase Auth in production) decides who the
user is; this module only keeps the answer and tells dependents when it
changes. Every component that scopes state to a user subscribes here and
rebuilds when the identity changes.

Guest sessions are time-boxed credentials persisted on disk as YAML, the
analogue of the web client's local storage entry.

Usage:
    store = SessionStore()
    unsubscribe = store.subscribe(lambda identity: print("now", identity))
    store.set_identity(Identity.from_uid("u1", token_provider=get_token))
    store.clear()  # logout
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

import yaml

logger = logging.getLogger(__name__)

GUEST_ID_PREFIX = "guest_"

TokenProvider = Callable[[], Awaitable["str | None"]]
IdentityListener = Callable[["Identity | None"], None]


@dataclass(frozen=True)
class Identity:
    """The principal the app acts as."""

    id: str
    is_guest: bool = False
    email: str | None = None
    role: str | None = None
    token_provider: TokenProvider | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_uid(
        cls,
        uid: str,
        *,
        email: str | None = None,
        role: str | None = None,
        token_provider: TokenProvider | None = None,
    ) -> Identity:
        """Build an identity, flagging ``guest_``-prefixed ids as guests."""
        return cls(
            id=uid,
            is_guest=uid.startswith(GUEST_ID_PREFIX),
            email=email,
            role=role,
            token_provider=token_provider,
        )

    @property
    def is_admin(self) -> bool:
        if self.is_guest:
            return False
        return self.role == "admin" or "admin" in (self.email or "")

    async def get_token(self) -> str | None:
        if self.token_provider is None:
            return None
        return await self.token_provider()


class SessionStore:
    """
    Holds the current identity (authenticated, guest, or none).

    ``loading`` is true between ``begin_loading()`` and the next
    ``set_identity()``/``clear()``; dependents treat that window as
    "do nothing yet".
    """

    def __init__(self) -> None:
        self._identity: Identity | None = None
        self._loading = False
        self._listeners: list[IdentityListener] = []

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def ready_identity(self) -> Identity | None:
        """The identity, or None while it is still being resolved."""
        if self._loading:
            return None
        return self._identity

    def begin_loading(self) -> None:
        self._loading = True

    def set_identity(self, identity: Identity | None) -> None:
        changed = identity != self._identity or self._loading
        self._identity = identity
        self._loading = False
        if changed:
            logger.info("Identity changed: %s", identity.id if identity else None)
            self._emit()

    def clear(self) -> None:
        """Logout."""
        self.set_identity(None)

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._identity)


# ---------------------------------------------------------------------------
# Guest session persistence
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GuestSession:
    token: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class GuestSessionStore:
    """
    Reads and writes the guest session file.

    A missing, unreadable or expired file loads as ``None``.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self, now: datetime | None = None) -> GuestSession | None:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                raw = yaml.safe_load(f) or {}
            token = raw["token"]
            expires_at = raw["expires_at"]
            if isinstance(expires_at, str):
                expires_at = datetime.fromisoformat(expires_at)
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable guest session at %s: %s", self.path, exc)
            return None

        session = GuestSession(token=str(token), expires_at=expires_at)
        if session.is_expired(now):
            logger.info("Guest session expired at %s", session.expires_at.isoformat())
            return None
        return session

    def save(self, session: GuestSession) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.dump(
                {"token": session.token, "expires_at": session.expires_at.isoformat()},
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        logger.info("Guest session saved to %s", self.path)

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
            logger.info("Guest session removed from %s", self.path)
