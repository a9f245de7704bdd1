"""Client-side conversation over the agent relay channel.

The session owns the visible history and the stream assembler. It does not own
the transport: whoever holds the socket calls :meth:`on_open`, :meth:`on_close`
and :meth:`on_frame`, and provides a ``send`` coroutine for outbound frames.
Reconnecting is the transport's job.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from triage_sidekick.agent.assembler import (
    ChatMessage,
    ConversationHistory,
    StreamAssembler,
)
from triage_sidekick.agent.events import (
    CatchUpRequest,
    ErrorEvent,
    FollowUpRequest,
    QuickActionRequest,
    ResultEvent,
    parse_stream_event,
    request_to_wire,
)

logger = logging.getLogger(__name__)

CATCH_UP_MESSAGE = "Let's get caught up on intake"

SendFrame = Callable[[dict[str, Any]], Awaitable[None]]


class NotConnectedError(RuntimeError):
    pass


class TurnInProgressError(RuntimeError):
    pass


class ConversationSession:
    def __init__(self, send: SendFrame, *, id_factory: Callable[[], str] | None = None) -> None:
        self._send = send
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._history = ConversationHistory()
        self._assembler = StreamAssembler(self._history, id_factory=self._new_id)
        self._connected = False
        self._loading = False

    @property
    def messages(self) -> list[ChatMessage]:
        return self._history.messages

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def assembler(self) -> StreamAssembler:
        return self._assembler

    def on_open(self) -> None:
        self._connected = True
        logger.info("Agent channel connected")

    def on_close(self) -> None:
        self._connected = False
        logger.info("Agent channel disconnected")

    async def catch_up(self) -> None:
        await self._submit(CATCH_UP_MESSAGE, CatchUpRequest())

    async def send_message(self, prompt: str) -> None:
        await self._submit(prompt, FollowUpRequest(prompt=prompt))

    async def execute_action(self, action: str, issue_number: int, value: str | None = None) -> None:
        """Ask the agent to perform a quick action. No assistant turn is opened."""

        self._require_connected()
        frame = QuickActionRequest(action=action, issue_number=issue_number, value=value)
        await self._send(request_to_wire(frame))

    def on_frame(self, raw: str | bytes | Mapping[str, Any]) -> None:
        """Route one inbound frame to the assembler."""

        if isinstance(raw, (str, bytes)):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame from agent channel")
                return
            if not isinstance(decoded, dict):
                return
            raw = decoded

        event = parse_stream_event(raw)
        self._assembler.handle(event)
        if isinstance(event, (ResultEvent, ErrorEvent)):
            self._loading = False

    def abort_turn(self, reason: str) -> None:
        """End a turn the relay will never finish. Partial text is kept."""

        if not (self._loading or self._assembler.is_open):
            return
        logger.warning("Abandoning agent turn", extra={"reason": reason})
        self._assembler.handle(ErrorEvent(message=reason))
        self._loading = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise NotConnectedError("Agent channel is not connected")

    async def _submit(self, user_text: str, frame: CatchUpRequest | FollowUpRequest) -> None:
        self._require_connected()
        if self._loading or self._assembler.is_open:
            raise TurnInProgressError("Wait for the current response to finish")

        self._loading = True
        self._history.append(ChatMessage(id=self._new_id(), role="user", content=user_text))
        self._assembler.start_turn()
        try:
            await self._send(request_to_wire(frame))
        except Exception as e:
            # Close the turn so the session can accept the next prompt.
            self._assembler.handle(ErrorEvent(message=str(e) or type(e).__name__))
            self._loading = False
            raise
