"""Typed events exchanged with the analysis agent.

Inbound: every JSON frame the agent relay streams during a turn is parsed into
exactly one of the variants below. Anything unrecognised becomes
:class:`IgnoredEvent` so newer agent versions cannot break older dashboards.

Outbound: request frames a client sends to start a turn.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, NoReturn

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    name: str


ContentBlock = TextBlock | ToolUseBlock


@dataclass(frozen=True, slots=True)
class SystemEvent:
    subtype: str = ""
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class AssistantEvent:
    """A complete assistant message; blocks keep their original order."""

    blocks: tuple[ContentBlock, ...] = ()
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class TextDeltaEvent:
    text: str


@dataclass(frozen=True, slots=True)
class ResultEvent:
    subtype: str = "success"
    is_error: bool = False
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    is_auth_error: bool = False


@dataclass(frozen=True, slots=True)
class IgnoredEvent:
    type: str


StreamEvent = (
    SystemEvent | AssistantEvent | TextDeltaEvent | ResultEvent | ErrorEvent | IgnoredEvent
)


class UnhandledEventError(TypeError):
    pass


def unhandled_event(event: NoReturn) -> NoReturn:
    """Fail loudly when a handler is missing a branch for some variant."""

    raise UnhandledEventError(f"No handler for stream event: {event!r}")


def _str_or_none(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_blocks(raw_blocks: object) -> tuple[ContentBlock, ...]:
    if not isinstance(raw_blocks, list):
        return ()
    blocks: list[ContentBlock] = []
    for raw in raw_blocks:
        if not isinstance(raw, Mapping):
            continue
        kind = raw.get("type")
        if kind == "text" and isinstance(raw.get("text"), str) and raw["text"]:
            blocks.append(TextBlock(text=raw["text"]))
        elif kind == "tool_use" and isinstance(raw.get("name"), str) and raw["name"]:
            blocks.append(ToolUseBlock(name=raw["name"]))
    return tuple(blocks)


def parse_stream_event(raw: Mapping[str, Any]) -> StreamEvent:
    """Parse one inbound frame (already JSON-decoded) into its variant."""

    kind = raw.get("type")
    session_id = _str_or_none(raw.get("session_id"))

    if kind == "system":
        return SystemEvent(subtype=str(raw.get("subtype") or ""), session_id=session_id)

    if kind == "assistant":
        message = raw.get("message")
        content = message.get("content") if isinstance(message, Mapping) else None
        return AssistantEvent(blocks=_parse_blocks(content), session_id=session_id)

    if kind == "stream_event":
        event = raw.get("event")
        delta = event.get("delta") if isinstance(event, Mapping) else None
        if (
            isinstance(delta, Mapping)
            and delta.get("type") == "text_delta"
            and isinstance(delta.get("text"), str)
        ):
            return TextDeltaEvent(text=delta["text"])
        return IgnoredEvent(type="stream_event")

    if kind == "result":
        return ResultEvent(
            subtype=str(raw.get("subtype") or "success"),
            is_error=bool(raw.get("is_error", False)),
            session_id=session_id,
        )

    if kind == "error":
        message = raw.get("content")
        if not isinstance(message, str) or not message:
            message = raw.get("message")
        return ErrorEvent(
            message=message if isinstance(message, str) and message else "Unknown error",
            is_auth_error=bool(raw.get("isAuthError", False)),
        )

    return IgnoredEvent(type=str(kind))


class CatchUpRequest(BaseModel):
    type: Literal["catch_up"] = "catch_up"


class FollowUpRequest(BaseModel):
    type: Literal["follow_up"] = "follow_up"
    prompt: str = Field(min_length=1)


class QuickActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["quick_action"] = "quick_action"
    action: str
    issue_number: int = Field(alias="issueNumber", gt=0)
    value: str | None = None


RequestFrame = Annotated[
    CatchUpRequest | FollowUpRequest | QuickActionRequest, Field(discriminator="type")
]

request_frame_adapter: TypeAdapter[CatchUpRequest | FollowUpRequest | QuickActionRequest] = (
    TypeAdapter(RequestFrame)
)


def request_to_wire(frame: CatchUpRequest | FollowUpRequest | QuickActionRequest) -> dict[str, Any]:
    return frame.model_dump(mode="json", by_alias=True, exclude_none=True)
