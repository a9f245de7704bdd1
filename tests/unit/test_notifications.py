"""Unit tests for new-item notification dispatch."""

from __future__ import annotations

import asyncio
import subprocess
from unittest.mock import Mock

from factories import make_discussion, make_issue

from triage_sidekick.intake import notifications
from triage_sidekick.intake.models import NewItemsEvent
from triage_sidekick.intake.notifications import (
    NOTIFICATION_TITLE,
    NotificationDispatcher,
    send_desktop_notification,
    summarize_new_items,
)


def test_summary_text_pluralizes() -> None:
    assert summarize_new_items([make_issue(1)]) == "1 new issue"
    assert (
        summarize_new_items([make_issue(1), make_issue(2), make_discussion(3)])
        == "2 new issues and 1 new discussion"
    )
    assert summarize_new_items([make_discussion(1), make_discussion(2)]) == "2 new discussions"


def test_empty_diff_dispatches_nothing() -> None:
    notifier = Mock()
    on_event = Mock()
    dispatcher = NotificationDispatcher(on_event=on_event, notifier=notifier)

    assert asyncio.run(dispatcher.dispatch([])) is None

    notifier.assert_not_called()
    on_event.assert_not_called()


def test_desktop_notification_is_attempted_before_the_event() -> None:
    order: list[str] = []

    def notifier(title: str, body: str) -> None:
        order.append(f"desktop:{title}:{body}")

    async def on_event(event: NewItemsEvent) -> None:
        order.append(f"event:{len(event.issues)}:{len(event.discussions)}")

    dispatcher = NotificationDispatcher(on_event=on_event, notifier=notifier)
    event = asyncio.run(dispatcher.dispatch([make_issue(3), make_discussion(4)]))

    assert order == [
        f"desktop:{NOTIFICATION_TITLE}:1 new issue and 1 new discussion",
        "event:1:1",
    ]
    assert event is not None
    assert event.type == "new_items"


def test_notifier_failure_is_swallowed_and_event_still_emitted() -> None:
    notifier = Mock(side_effect=OSError("notify-send: not found"))
    on_event = Mock(return_value=None)
    dispatcher = NotificationDispatcher(on_event=on_event, notifier=notifier)

    event = asyncio.run(dispatcher.dispatch([make_issue(3)]))

    notifier.assert_called_once()
    on_event.assert_called_once_with(event)


def test_event_wire_shape() -> None:
    event = NewItemsEvent.from_items([make_issue(3), make_discussion(9)])
    wire = event.to_wire()

    assert wire["type"] == "new_items"
    assert wire["issues"][0]["number"] == 3
    assert wire["issues"][0]["createdAt"] == "2025-01-01T00:00:00Z"
    assert wire["discussions"][0]["category"] == "Q&A"
    assert "timestamp" in wire


def test_linux_notification_uses_notify_send(monkeypatch) -> None:
    run = Mock()
    monkeypatch.setattr(notifications.sys, "platform", "linux")
    monkeypatch.setattr(notifications.subprocess, "run", run)

    send_desktop_notification("Title", "2 new issues")

    args = run.call_args.args[0]
    assert args == ["notify-send", "Title", "2 new issues"]


def test_macos_notification_escapes_applescript(monkeypatch) -> None:
    run = Mock()
    monkeypatch.setattr(notifications.sys, "platform", "darwin")
    monkeypatch.setattr(notifications.subprocess, "run", run)

    send_desktop_notification("Triage", 'say "hi"')

    args = run.call_args.args[0]
    assert args[:2] == ["osascript", "-e"]
    assert args[2] == 'display notification "say \\"hi\\"" with title "Triage"'


def test_unsupported_platform_is_a_no_op(monkeypatch) -> None:
    run = Mock(side_effect=subprocess.CalledProcessError(1, "x"))
    monkeypatch.setattr(notifications.sys, "platform", "win32")
    monkeypatch.setattr(notifications.subprocess, "run", run)

    send_desktop_notification("Title", "body")

    run.assert_not_called()
