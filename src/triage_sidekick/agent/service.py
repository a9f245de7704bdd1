"""Analysis service adapter over the Claude Agent SDK.

Every entry point is an async generator of JSON-ready frames, one per SDK
message, in the wire shape dashboard clients consume (``system``,
``assistant``, ``stream_event``, ``result``). Failures that look like missing
or expired credentials are re-raised as :class:`AuthenticationRequiredError`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from claude_agent_sdk import ClaudeAgentOptions, query
from claude_agent_sdk import types as sdk_types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from triage_sidekick.agent.prompts import (
    FILTER_SYSTEM_PROMPT,
    analysis_prompt,
    catch_up_prompt,
    filter_prompt,
    intake_system_prompt,
    quick_action_prompt,
)
from triage_sidekick.intake.models import ItemKind

logger = logging.getLogger(__name__)

READ_ONLY_TOOLS = ["Bash", "Read", "Glob", "Grep"]
ANALYSIS_MAX_TURNS = 15
FILTER_MAX_TURNS = 1

_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

_AUTH_ERROR_MARKERS = (
    "not authenticated",
    "authentication required",
    "token has expired",
    "sso session",
    "expired sso",
    "unable to locate credentials",
    "invalid credentials",
)


class AuthenticationRequiredError(RuntimeError):
    def __init__(self, refresh_command: str | None = None) -> None:
        hint = (
            f"Run: {refresh_command}"
            if refresh_command
            else 'Please run "claude" in your terminal to authenticate.'
        )
        super().__init__(f"Claude authentication required. {hint}")
        self.refresh_command = refresh_command


class ClaudeSettings(BaseModel):
    """The subset of ``~/.claude/settings.json`` this app uses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    env: dict[str, str] = Field(default_factory=dict)
    aws_auth_refresh: str | None = Field(default=None, alias="awsAuthRefresh")


def load_claude_settings(path: Path | None = None) -> ClaudeSettings:
    settings_path = path or Path.home() / ".claude" / "settings.json"
    if not settings_path.exists():
        return ClaudeSettings()
    try:
        return ClaudeSettings.model_validate(json.loads(settings_path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Ignoring unreadable Claude settings", extra={"path": str(settings_path)})
        return ClaudeSettings()


def is_auth_error(error: BaseException) -> bool:
    message = str(error)
    lowered = message.lower()
    # The CLI prints an interactive login prompt instead of JSON when logged out.
    if "unexpected token" in lowered and "Attempting" in message:
        return True
    return any(marker in lowered for marker in _AUTH_ERROR_MARKERS)


def _block_to_frame(block: object) -> dict[str, Any] | None:
    if isinstance(block, sdk_types.TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, sdk_types.ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return None


def message_to_frame(message: object) -> dict[str, Any]:
    """Convert one SDK message into its JSON wire frame."""

    if isinstance(message, sdk_types.SystemMessage):
        data = message.data if isinstance(message.data, dict) else {}
        return {
            "type": "system",
            "subtype": message.subtype,
            "session_id": data.get("session_id"),
        }
    if isinstance(message, sdk_types.AssistantMessage):
        blocks = [b for b in (_block_to_frame(block) for block in message.content) if b]
        return {"type": "assistant", "message": {"content": blocks}}
    if isinstance(message, sdk_types.StreamEvent):
        return {"type": "stream_event", "event": message.event, "session_id": message.session_id}
    if isinstance(message, sdk_types.ResultMessage):
        return {
            "type": "result",
            "subtype": message.subtype,
            "is_error": message.is_error,
            "session_id": message.session_id,
            "result": message.result,
        }
    if isinstance(message, sdk_types.UserMessage):
        return {"type": "user"}
    return {"type": "unknown"}


class FilterGenerationError(RuntimeError):
    pass


class FilterCriteria(BaseModel):
    """Client-side filter for the intake list; every field is optional."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    types: list[ItemKind] | None = None
    title_contains: list[str] | None = Field(default=None, alias="titleContains")
    author_includes: list[str] | None = Field(default=None, alias="authorIncludes")
    labels_include_any: list[str] | None = Field(default=None, alias="labelsIncludeAny")
    labels_exclude: list[str] | None = Field(default=None, alias="labelsExclude")
    has_labels: bool | None = Field(default=None, alias="hasLabels")
    age_min_days: int | None = Field(default=None, alias="ageMinDays", ge=0)
    age_max_days: int | None = Field(default=None, alias="ageMaxDays", ge=0)
    is_stale: bool | None = Field(default=None, alias="isStale")


class GeneratedFilter(BaseModel):
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)
    explanation: str = ""

    def restricted_to(self, labels: list[str]) -> GeneratedFilter:
        """Drop label names the repository does not have."""

        if not labels:
            return self
        known = set(labels)
        updates = {
            field: [name for name in values if name in known]
            for field in ("labels_include_any", "labels_exclude")
            if (values := getattr(self.criteria, field)) is not None
        }
        return self.model_copy(update={"criteria": self.criteria.model_copy(update=updates)})

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_filter_reply(text: str) -> GeneratedFilter:
    match = _JSON_BLOCK.search(text)
    raw = match.group(1) if match else text.strip()
    try:
        return GeneratedFilter.model_validate_json(raw)
    except ValidationError:
        logger.warning("Could not parse filter reply", extra={"reply": text[:200]})
        return GeneratedFilter(explanation="Could not understand that request. Try rephrasing it.")


QueryFn = Callable[..., AsyncIterator[Any]]


class AnalysisService:
    """Runs agent turns against a local checkout of the target repository."""

    def __init__(
        self,
        *,
        repository: str,
        working_directory: Path,
        intake_criteria: Callable[[], str],
        claude_settings: ClaudeSettings | None = None,
        query_fn: QueryFn = query,
    ) -> None:
        self._repository = repository
        self._cwd = working_directory
        self._intake_criteria = intake_criteria
        self._claude = claude_settings or ClaudeSettings()
        self._query = query_fn

    def _options(
        self,
        *,
        allowed_tools: list[str],
        resume: str | None = None,
        with_intake_prompt: bool = True,
        system_prompt: str | None = None,
        max_turns: int | None = None,
    ) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "allowed_tools": allowed_tools,
            "cwd": str(self._cwd),
            "env": dict(self._claude.env),
        }
        if with_intake_prompt:
            kwargs["system_prompt"] = {
                "type": "preset",
                "preset": "claude_code",
                "append": intake_system_prompt(self._repository, self._intake_criteria()),
            }
        elif system_prompt is not None:
            kwargs["system_prompt"] = system_prompt
        if resume:
            kwargs["resume"] = resume
        if max_turns is not None:
            kwargs["max_turns"] = max_turns
        return ClaudeAgentOptions(**kwargs)

    async def _stream(self, prompt: str, options: ClaudeAgentOptions) -> AsyncIterator[dict[str, Any]]:
        try:
            async for message in self._query(prompt=prompt, options=options):
                yield message_to_frame(message)
        except Exception as e:
            if is_auth_error(e):
                raise AuthenticationRequiredError(self._claude.aws_auth_refresh) from e
            raise

    def catch_up(self, *, session_id: str | None = None) -> AsyncIterator[dict[str, Any]]:
        options = self._options(allowed_tools=READ_ONLY_TOOLS, resume=session_id)
        return self._stream(catch_up_prompt(self._repository), options)

    def follow_up(self, prompt: str, *, session_id: str) -> AsyncIterator[dict[str, Any]]:
        options = self._options(allowed_tools=READ_ONLY_TOOLS, resume=session_id)
        return self._stream(prompt, options)

    def quick_action(
        self, action: str, issue_number: int, value: str | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        prompt = quick_action_prompt(self._repository, action, issue_number, value)
        options = self._options(allowed_tools=["Bash"], with_intake_prompt=False)
        return self._stream(prompt, options)

    def analyze_issue(
        self, *, number: int, title: str, body: str, labels: list[str]
    ) -> AsyncIterator[dict[str, Any]]:
        prompt = analysis_prompt(number=number, title=title, body=body, labels=labels)
        options = self._options(allowed_tools=["Bash"], max_turns=ANALYSIS_MAX_TURNS)
        return self._stream(prompt, options)

    async def generate_filter(self, query: str, labels: list[str]) -> GeneratedFilter:
        """Translate a plain-language request into :class:`FilterCriteria`.

        Raises:
            AuthenticationRequiredError: when Claude credentials are missing.
            FilterGenerationError: when the agent run itself reports an error.
        """

        options = self._options(
            allowed_tools=[],
            with_intake_prompt=False,
            system_prompt=FILTER_SYSTEM_PROMPT,
            max_turns=FILTER_MAX_TURNS,
        )
        texts: list[str] = []
        async for frame in self._stream(filter_prompt(query, labels), options):
            if frame["type"] == "assistant":
                blocks = frame["message"]["content"]
                texts.extend(b["text"] for b in blocks if b["type"] == "text")
            elif frame["type"] == "result" and frame.get("is_error"):
                raise FilterGenerationError(frame.get("result") or "Filter generation failed")
        return parse_filter_reply("".join(texts)).restricted_to(labels)
