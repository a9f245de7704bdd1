"""Rebuild one assistant message out of a streamed agent turn.

A turn moves through ``idle -> open -> finalized``:

- ``start_turn`` opens a fresh buffer and appends an empty, streaming assistant
  entry to the history.
- Text (from deltas or complete assistant messages) and tool markers are
  appended to the buffer; after every append the whole buffer is written back
  to that history entry.
- A ``result`` event finalizes the entry. An ``error`` event finalizes it too,
  and the error is appended as a separate assistant entry so partial output
  stays visible on its own.

Only one buffer may be open at a time.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from triage_sidekick.agent.events import (
    AssistantEvent,
    ErrorEvent,
    IgnoredEvent,
    ResultEvent,
    StreamEvent,
    SystemEvent,
    TextBlock,
    TextDeltaEvent,
    ToolUseBlock,
    unhandled_event,
)

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


def tool_marker(name: str) -> str:
    return f"\n\n*Running: {name}*\n"


def error_content(message: str) -> str:
    return f"**Error:** {message}"


class IllegalTurnTransition(ValueError):
    pass


class FrozenMessageError(ValueError):
    pass


class TurnState(str, Enum):
    IDLE = "idle"
    OPEN = "open"
    FINALIZED = "finalized"


@dataclass(slots=True)
class ChatMessage:
    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    streaming: bool = False

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "isStreaming": self.streaming,
        }


class ConversationHistory:
    """Append-only list of turns. Only a streaming entry may be rewritten."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        return message

    def get(self, message_id: str) -> ChatMessage | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def set_content(self, message_id: str, content: str) -> None:
        message = self.get(message_id)
        if message is None:
            raise KeyError(message_id)
        if not message.streaming:
            raise FrozenMessageError(f"Message {message_id} is finalized")
        message.content = content

    def freeze(self, message_id: str) -> None:
        message = self.get(message_id)
        if message is not None:
            message.streaming = False


@dataclass(slots=True)
class StreamBuffer:
    message_id: str
    text: str = ""
    open: bool = True


class StreamAssembler:
    def __init__(
        self,
        history: ConversationHistory,
        *,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._history = history
        self._new_id = id_factory
        self._buffer: StreamBuffer | None = None
        self._state = TurnState.IDLE

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._buffer is not None and self._buffer.open

    @property
    def buffer(self) -> StreamBuffer | None:
        return self._buffer

    def start_turn(self) -> ChatMessage:
        if self.is_open:
            raise IllegalTurnTransition("A turn is already streaming")
        self._buffer = StreamBuffer(message_id=self._new_id())
        self._state = TurnState.OPEN
        return self._history.append(
            ChatMessage(id=self._buffer.message_id, role="assistant", content="", streaming=True)
        )

    def handle(self, event: StreamEvent) -> None:
        if isinstance(event, TextDeltaEvent):
            self._append(event.text)
        elif isinstance(event, AssistantEvent):
            for block in event.blocks:
                if isinstance(block, TextBlock):
                    self._append(block.text)
                elif isinstance(block, ToolUseBlock):
                    self._append(tool_marker(block.name))
        elif isinstance(event, ResultEvent):
            self._finalize()
        elif isinstance(event, ErrorEvent):
            self._finalize()
            self._history.append(
                ChatMessage(id=self._new_id(), role="assistant", content=error_content(event.message))
            )
        elif isinstance(event, (SystemEvent, IgnoredEvent)):
            pass
        else:
            unhandled_event(event)

    def _append(self, text: str) -> None:
        if not text:
            return
        buffer = self._buffer
        if buffer is None or not buffer.open:
            logger.debug("Dropping stream text outside an open turn")
            return
        buffer.text += text
        self._history.set_content(buffer.message_id, buffer.text)

    def _finalize(self) -> None:
        buffer = self._buffer
        if buffer is None:
            return
        buffer.open = False
        self._history.freeze(buffer.message_id)
        self._buffer = None
        self._state = TurnState.FINALIZED
