"""Turn newly arrived intake items into notifications.

Two things happen for every non-empty diff, in this order:
1. a best-effort desktop notification (osascript on macOS, notify-send on Linux)
2. one structured ``new_items`` event handed to the in-process consumer
   (normally the WebSocket hub)

Desktop notification failures never reach the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import subprocess
import sys
from collections.abc import Awaitable, Callable

from triage_sidekick.intake.models import IntakeItem, ItemKind, NewItemsEvent

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Triage Sidekick"

Notifier = Callable[[str, str], None]
EventConsumer = Callable[[NewItemsEvent], Awaitable[None] | None]


def _plural(count: int, noun: str) -> str:
    return f"{count} new {noun}{'s' if count != 1 else ''}"


def summarize_new_items(added: list[IntakeItem]) -> str:
    """Return e.g. ``"2 new issues and 1 new discussion"``."""

    issues = sum(1 for i in added if i.kind is ItemKind.ISSUE)
    discussions = sum(1 for i in added if i.kind is ItemKind.DISCUSSION)
    parts: list[str] = []
    if issues:
        parts.append(_plural(issues, "issue"))
    if discussions:
        parts.append(_plural(discussions, "discussion"))
    return " and ".join(parts)


def send_desktop_notification(title: str, body: str) -> None:
    """Show a native notification. Unsupported platforms are a no-op."""

    if sys.platform == "darwin":
        script = "display notification {} with title {}".format(
            _applescript_string(body), _applescript_string(title)
        )
        args = ["osascript", "-e", script]
    elif sys.platform.startswith("linux"):
        args = ["notify-send", title, body]
    else:
        return
    subprocess.run(args, check=True, capture_output=True, timeout=5)  # noqa: S603


def _applescript_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class NotificationDispatcher:
    def __init__(
        self,
        *,
        on_event: EventConsumer,
        notifier: Notifier | None = send_desktop_notification,
    ) -> None:
        self._on_event = on_event
        self._notifier = notifier

    async def dispatch(self, added: list[IntakeItem]) -> NewItemsEvent | None:
        if not added:
            return None

        event = NewItemsEvent.from_items(added)
        await self._notify_desktop(summarize_new_items(added))

        result = self._on_event(event)
        if inspect.isawaitable(result):
            await result
        logger.info(
            "Dispatched new intake items",
            extra={"issues": len(event.issues), "discussions": len(event.discussions)},
        )
        return event

    async def _notify_desktop(self, body: str) -> None:
        if self._notifier is None:
            return
        try:
            await asyncio.to_thread(self._notifier, NOTIFICATION_TITLE, body)
        except Exception:  # noqa: BLE001
            logger.debug("Desktop notification failed", exc_info=True)
