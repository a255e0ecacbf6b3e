"""
User-facing toast notifications.

The web client pops a transient toast for explicit-action failures and for
every realtime notification. Here the toast sink keeps a short history,
fans out to subscribers (the UI bridge forwards them to dashboard clients)
and can echo to the terminal in colour.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from colorama import Fore, Style, init

logger = logging.getLogger(__name__)

init(autoreset=True)

_LEVEL_COLORS = {
    "info": Fore.CYAN,
    "success": Fore.GREEN,
    "warning": Fore.YELLOW,
    "error": Fore.RED,
}


@dataclass(frozen=True)
class Toast:
    level: str
    title: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


ToastListener = Callable[[Toast], None]


class ToastCenter:
    """Bounded toast history with subscribers and optional terminal echo."""

    def __init__(self, max_history: int = 20, echo: bool = False):
        self.echo = echo
        self._history: deque[Toast] = deque(maxlen=max_history)
        self._listeners: list[ToastListener] = []

    @property
    def history(self) -> list[Toast]:
        return list(self._history)

    def subscribe(self, listener: ToastListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def show(self, level: str, title: str, message: str) -> Toast:
        toast = Toast(level=level, title=title, message=message)
        self._history.append(toast)
        if self.echo:
            color = _LEVEL_COLORS.get(level, "")
            print(f"{color}{Style.BRIGHT}[{level.upper()}] {title}{Style.RESET_ALL} {message}")
        for listener in list(self._listeners):
            try:
                listener(toast)
            except Exception:
                logger.exception("Toast listener failed")
        return toast

    def info(self, title: str, message: str) -> Toast:
        return self.show("info", title, message)

    def success(self, title: str, message: str) -> Toast:
        return self.show("success", title, message)

    def error(self, title: str, message: str) -> Toast:
        return self.show("error", title, message)
