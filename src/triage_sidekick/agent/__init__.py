"""Streamed analysis turns: event types, response assembly and conversation state."""

from triage_sidekick.agent.assembler import (
    ChatMessage,
    ConversationHistory,
    IllegalTurnTransition,
    StreamAssembler,
    TurnState,
)
from triage_sidekick.agent.events import parse_stream_event
from triage_sidekick.agent.session import (
    ConversationSession,
    NotConnectedError,
    TurnInProgressError,
)

__all__ = [
    "ChatMessage",
    "ConversationHistory",
    "ConversationSession",
    "IllegalTurnTransition",
    "NotConnectedError",
    "StreamAssembler",
    "TurnInProgressError",
    "TurnState",
    "parse_stream_event",
]
