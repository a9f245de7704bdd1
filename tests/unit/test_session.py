"""Unit tests for the client-side conversation session."""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

import pytest

from triage_sidekick.agent.assembler import error_content
from triage_sidekick.agent.session import (
    CATCH_UP_MESSAGE,
    ConversationSession,
    NotConnectedError,
    TurnInProgressError,
)


class FakeChannel:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_with = fail_with

    async def __call__(self, frame: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(frame)


def _session(channel: FakeChannel, *, connected: bool = True) -> ConversationSession:
    counter = itertools.count(1)
    session = ConversationSession(channel, id_factory=lambda: f"id{next(counter)}")
    if connected:
        session.on_open()
    return session


def _delta(text: str) -> dict[str, Any]:
    return {"type": "stream_event", "event": {"delta": {"type": "text_delta", "text": text}}}


def test_catch_up_sends_frame_and_opens_turn() -> None:
    channel = FakeChannel()
    session = _session(channel)

    asyncio.run(session.catch_up())

    assert channel.sent == [{"type": "catch_up"}]
    assert session.is_loading is True
    messages = session.messages
    assert [(m.role, m.content, m.streaming) for m in messages] == [
        ("user", CATCH_UP_MESSAGE, False),
        ("assistant", "", True),
    ]


def test_full_turn_from_raw_frames() -> None:
    channel = FakeChannel()
    session = _session(channel)
    asyncio.run(session.send_message("What is new?"))

    session.on_frame(json.dumps({"type": "system", "subtype": "init", "session_id": "s1"}))
    session.on_frame(json.dumps(_delta("Hello ")))
    session.on_frame(json.dumps(_delta("world")).encode())
    session.on_frame({"type": "result", "subtype": "success", "session_id": "s1"})

    assert channel.sent == [{"type": "follow_up", "prompt": "What is new?"}]
    assert session.is_loading is False
    assert session.messages[-1].content == "Hello world"
    assert session.messages[-1].streaming is False


def test_second_prompt_refused_while_loading() -> None:
    channel = FakeChannel()
    session = _session(channel)

    async def scenario() -> None:
        await session.catch_up()
        with pytest.raises(TurnInProgressError):
            await session.send_message("too soon")

    asyncio.run(scenario())

    assert channel.sent == [{"type": "catch_up"}]
    assert len(session.messages) == 2


def test_prompt_refused_when_disconnected() -> None:
    channel = FakeChannel()
    session = _session(channel, connected=False)

    with pytest.raises(NotConnectedError):
        asyncio.run(session.catch_up())

    assert channel.sent == []
    assert session.messages == []


def test_on_close_marks_disconnected() -> None:
    session = _session(FakeChannel())
    assert session.is_connected is True

    session.on_close()

    assert session.is_connected is False


def test_error_frame_ends_loading_and_keeps_partial_text() -> None:
    session = _session(FakeChannel())
    asyncio.run(session.catch_up())

    session.on_frame(_delta("Half an answer"))
    session.on_frame({"type": "error", "content": "Claude authentication required", "isAuthError": True})

    assert session.is_loading is False
    contents = [m.content for m in session.messages]
    assert contents[-2:] == ["Half an answer", error_content("Claude authentication required")]

    # The session accepts a new prompt once the error closed the turn.
    asyncio.run(session.send_message("retry"))
    assert session.is_loading is True


def test_send_failure_closes_turn() -> None:
    session = _session(FakeChannel(fail_with=ConnectionError("socket closed")))

    with pytest.raises(ConnectionError):
        asyncio.run(session.catch_up())

    assert session.is_loading is False
    assert session.assembler.is_open is False
    assert session.messages[-1].content == error_content("socket closed")


def test_non_json_frame_is_ignored() -> None:
    session = _session(FakeChannel())
    asyncio.run(session.catch_up())

    session.on_frame("not json")
    session.on_frame("[1, 2]")

    assert session.is_loading is True
    assert session.messages[-1].content == ""


def test_quick_action_sends_frame_without_turn() -> None:
    channel = FakeChannel()
    session = _session(channel)

    asyncio.run(session.execute_action("add-label", 42, "bug"))

    assert channel.sent == [
        {"type": "quick_action", "action": "add-label", "issueNumber": 42, "value": "bug"}
    ]
    assert session.messages == []
    assert session.is_loading is False


def test_quick_action_requires_connection() -> None:
    session = _session(FakeChannel(), connected=False)

    with pytest.raises(NotConnectedError):
        asyncio.run(session.execute_action("close", 1))


def test_abort_turn_closes_open_turn() -> None:
    session = _session(FakeChannel())
    asyncio.run(session.catch_up())
    session.on_frame(_delta("Partial"))

    session.abort_turn("Agent relay closed the connection")

    assert session.is_loading is False
    assert session.assembler.is_open is False
    assert [m.content for m in session.messages[-2:]] == [
        "Partial",
        error_content("Agent relay closed the connection"),
    ]
    asyncio.run(session.send_message("again"))
    assert session.is_loading is True


def test_abort_turn_when_idle_is_a_no_op() -> None:
    session = _session(FakeChannel())

    session.abort_turn("nothing to abort")

    assert session.messages == []
