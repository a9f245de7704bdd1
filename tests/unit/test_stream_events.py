"""Unit tests for agent stream event parsing and request frames."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from triage_sidekick.agent.events import (
    AssistantEvent,
    CatchUpRequest,
    ErrorEvent,
    FollowUpRequest,
    IgnoredEvent,
    QuickActionRequest,
    ResultEvent,
    SystemEvent,
    TextBlock,
    TextDeltaEvent,
    ToolUseBlock,
    UnhandledEventError,
    parse_stream_event,
    request_frame_adapter,
    request_to_wire,
    unhandled_event,
)


def test_parse_system_event_keeps_session_id() -> None:
    event = parse_stream_event({"type": "system", "subtype": "init", "session_id": "s-1"})

    assert event == SystemEvent(subtype="init", session_id="s-1")


def test_parse_assistant_blocks_in_order() -> None:
    event = parse_stream_event(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "Looking"},
                    {"type": "tool_use", "name": "search", "input": {}},
                    {"type": "thinking", "thinking": "hmm"},
                    {"type": "text", "text": ""},
                    {"type": "text", "text": "Done"},
                ]
            },
        }
    )

    assert isinstance(event, AssistantEvent)
    assert event.blocks == (TextBlock("Looking"), ToolUseBlock("search"), TextBlock("Done"))


def test_parse_assistant_without_content() -> None:
    assert parse_stream_event({"type": "assistant"}) == AssistantEvent(blocks=())


def test_parse_text_delta() -> None:
    event = parse_stream_event(
        {
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}},
        }
    )

    assert event == TextDeltaEvent(text="Hel")


def test_non_text_delta_is_ignored() -> None:
    event = parse_stream_event(
        {
            "type": "stream_event",
            "event": {"delta": {"type": "input_json_delta", "partial_json": "{"}},
        }
    )

    assert isinstance(event, IgnoredEvent)


def test_parse_result() -> None:
    event = parse_stream_event({"type": "result", "subtype": "success", "session_id": "s-2"})

    assert event == ResultEvent(subtype="success", is_error=False, session_id="s-2")


def test_parse_error_reads_content_then_message() -> None:
    assert parse_stream_event({"type": "error", "content": "boom"}) == ErrorEvent("boom")
    assert parse_stream_event({"type": "error", "message": "bang"}) == ErrorEvent("bang")
    assert parse_stream_event({"type": "error"}) == ErrorEvent("Unknown error")

    auth = parse_stream_event({"type": "error", "content": "login", "isAuthError": True})
    assert auth == ErrorEvent("login", is_auth_error=True)


def test_unknown_type_is_ignored_not_rejected() -> None:
    assert parse_stream_event({"type": "user"}) == IgnoredEvent(type="user")
    assert parse_stream_event({}) == IgnoredEvent(type="None")


def test_unhandled_event_raises() -> None:
    with pytest.raises(UnhandledEventError):
        unhandled_event(object())  # type: ignore[arg-type]


def test_request_frames_wire_shape() -> None:
    assert request_to_wire(CatchUpRequest()) == {"type": "catch_up"}
    assert request_to_wire(FollowUpRequest(prompt="Why?")) == {"type": "follow_up", "prompt": "Why?"}
    assert request_to_wire(QuickActionRequest(action="close", issue_number=12)) == {
        "type": "quick_action",
        "action": "close",
        "issueNumber": 12,
    }


def test_request_adapter_dispatches_on_type() -> None:
    frame = request_frame_adapter.validate_python(
        {"type": "quick_action", "action": "add-label", "issueNumber": 4, "value": "bug"}
    )

    assert isinstance(frame, QuickActionRequest)
    assert frame.issue_number == 4
    assert frame.value == "bug"


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "dance"},
        {"type": "follow_up", "prompt": ""},
        {"type": "quick_action", "action": "close", "issueNumber": 0},
    ],
)
def test_request_adapter_rejects_bad_frames(raw) -> None:
    with pytest.raises(ValidationError):
        request_frame_adapter.validate_python(raw)
