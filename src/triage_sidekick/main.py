"""CLI entrypoint for the triage dashboard."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import uvicorn
import websockets
import websockets.exceptions
from pydantic import ValidationError

from triage_sidekick import __version__
from triage_sidekick.agent.session import ConversationSession
from triage_sidekick.logging import configure_logging
from triage_sidekick.server.app import create_app
from triage_sidekick.server.config import ServerSettings

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001
DEFAULT_TURN_TIMEOUT_SECONDS = 300.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="triage-sidekick",
        description="Intake triage dashboard for GitHub issues and discussions",
    )
    parser.add_argument("--version", action="version", version=f"triage-sidekick {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the dashboard server")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to bind")

    chat = subparsers.add_parser(
        "chat", help="Run a catch-up turn (plus optional follow-ups) against a running server"
    )
    chat.add_argument(
        "--url",
        default=f"ws://127.0.0.1:{DEFAULT_PORT}/ws/agent",
        help="Agent relay WebSocket URL",
    )
    chat.add_argument(
        "--follow-up",
        dest="follow_ups",
        action="append",
        default=[],
        help="Follow-up question to ask after catching up (repeatable)",
    )
    chat.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TURN_TIMEOUT_SECONDS,
        help="Give up on a turn after this many seconds without a frame",
    )
    return parser


async def _drain_turn(
    session: ConversationSession, connection: websockets.ClientConnection, timeout: float
) -> bool:
    """Feed frames to ``session`` until its turn ends. False if the turn was abandoned."""

    while session.is_loading:
        try:
            frame = await asyncio.wait_for(connection.recv(), timeout)
        except TimeoutError:
            session.abort_turn(f"No reply from the agent relay for {timeout:g}s")
            return False
        except websockets.exceptions.ConnectionClosed:
            session.abort_turn("Agent relay closed the connection")
            return False
        session.on_frame(frame)
    return True


async def run_chat(
    url: str, follow_ups: list[str], *, timeout: float = DEFAULT_TURN_TIMEOUT_SECONDS
) -> int:
    async with websockets.connect(url) as connection:
        session = ConversationSession(lambda frame: connection.send(json.dumps(frame)))
        session.on_open()
        try:
            await session.catch_up()
            completed = await _drain_turn(session, connection, timeout)
            for prompt in follow_ups:
                if not completed:
                    break
                await session.send_message(prompt)
                completed = await _drain_turn(session, connection, timeout)
        finally:
            session.on_close()

    for message in session.messages:
        prefix = ">" if message.role == "user" else ""
        print(f"{prefix} {message.content}".strip() + "\n")
    return 0 if completed else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ServerSettings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    if args.command == "serve":
        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
        return 0

    if args.command == "chat":
        try:
            return asyncio.run(run_chat(args.url, args.follow_ups, timeout=args.timeout))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error("Agent relay unavailable", extra={"url": args.url, "error": str(e)})
            return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
