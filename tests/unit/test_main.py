"""Unit tests for the command-line entrypoint."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import Mock

import pytest
import websockets

from triage_sidekick import main as cli
from triage_sidekick.agent.assembler import error_content
from triage_sidekick.agent.session import ConversationSession


def test_serve_runs_uvicorn(settings, monkeypatch) -> None:
    app = object()
    create_app = Mock(return_value=app)
    run = Mock()
    monkeypatch.setattr(cli, "create_app", create_app)
    monkeypatch.setattr(cli.uvicorn, "run", run)
    configure_logging = Mock()
    monkeypatch.setattr(cli, "configure_logging", configure_logging)

    assert cli.main(["serve", "--port", "4000"]) == 0

    run.assert_called_once_with(app, host="127.0.0.1", port=4000, log_config=None)
    configure_logging.assert_called_once_with("INFO", "json")


def test_invalid_settings_exit_2(server_env, monkeypatch, capsys) -> None:
    monkeypatch.setenv("TRIAGE_POLL_INTERVAL_SECONDS", "0")

    assert cli.main(["serve"]) == 2
    assert "Invalid configuration" in capsys.readouterr().err


def test_chat_reports_unreachable_relay(server_env, monkeypatch) -> None:
    async def refuse(_url, _follow_ups, **_kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(cli, "run_chat", refuse)
    monkeypatch.setattr(cli, "configure_logging", Mock())

    assert cli.main(["chat", "--url", "ws://127.0.0.1:1/ws/agent"]) == 1


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


class FakeConnection:
    """Hands out queued frames, then closes or goes silent."""

    def __init__(self, frames: list[dict[str, Any]], *, then_close: bool) -> None:
        self.frames = [json.dumps(f) for f in frames]
        self.then_close = then_close
        self.sent: list[dict[str, Any]] = []

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def recv(self) -> str:
        if self.frames:
            return self.frames.pop(0)
        if self.then_close:
            raise websockets.exceptions.ConnectionClosedError(None, None)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def _drain(connection: FakeConnection, timeout: float = 5.0) -> tuple[bool, ConversationSession]:
    session = ConversationSession(lambda frame: connection.send(json.dumps(frame)))
    session.on_open()

    async def scenario() -> bool:
        await session.catch_up()
        return await cli._drain_turn(session, connection, timeout)

    return asyncio.run(scenario()), session


def test_drain_turn_stops_at_result() -> None:
    connection = FakeConnection(
        [
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "All clear"}]}},
            {"type": "result", "subtype": "success", "session_id": "s1"},
        ],
        then_close=True,
    )

    completed, session = _drain(connection)

    assert completed is True
    assert session.messages[-1].content == "All clear"
    assert connection.sent == [{"type": "catch_up"}]


def test_drain_turn_ends_when_relay_closes() -> None:
    connection = FakeConnection(
        [{"type": "stream_event", "event": {"delta": {"type": "text_delta", "text": "Half"}}}],
        then_close=True,
    )

    completed, session = _drain(connection)

    assert completed is False
    assert session.is_loading is False
    assert [m.content for m in session.messages[-2:]] == [
        "Half",
        error_content("Agent relay closed the connection"),
    ]


def test_drain_turn_gives_up_after_silence() -> None:
    connection = FakeConnection([], then_close=False)

    completed, session = _drain(connection, timeout=0.01)

    assert completed is False
    assert session.is_loading is False
    assert session.messages[-1].content == error_content(
        "No reply from the agent relay for 0.01s"
    )
