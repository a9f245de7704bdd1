"""Data shapes for the intake queue.

Items cross two boundaries: they are parsed out of GitHub GraphQL responses and
they are broadcast to dashboard clients as JSON. Wire names are camelCase to
match what the React UI already consumes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(str, Enum):
    ISSUE = "issue"
    DISCUSSION = "discussion"


@dataclass(frozen=True, slots=True)
class ItemIdentity:
    """The (kind, number) pair naming one tracked item.

    Issue #5 and discussion #5 are different items: GitHub numbers them from a
    shared sequence today, but nothing here relies on that.
    """

    kind: ItemKind
    number: int


class IntakeItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: ItemKind
    number: int
    title: str
    author: str = "unknown"
    created_at: str = Field(alias="createdAt")
    labels: list[str] = Field(default_factory=list)
    url: str = ""

    # Issue-only metadata.
    project_status: str | None = Field(default=None, alias="projectStatus")

    # Discussion-only metadata.
    category: str | None = None
    answered: bool = False
    has_maintainer_response: bool = Field(default=False, alias="hasMaintainerResponse")

    @property
    def identity(self) -> ItemIdentity:
        return ItemIdentity(kind=self.kind, number=self.number)


class IntakeFilters(BaseModel):
    """Which already-triaged items to hide. Every filter defaults to on."""

    model_config = ConfigDict(populate_by_name=True)

    # Issues
    exclude_milestoned: bool = Field(default=True, alias="excludeMilestoned")
    exclude_triaged_labels: bool = Field(default=True, alias="excludeTriagedLabels")
    exclude_status_set: bool = Field(default=True, alias="excludeStatusSet")
    exclude_backlog_project: bool = Field(default=True, alias="excludeBacklogProject")
    # Discussions
    exclude_answered: bool = Field(default=True, alias="excludeAnswered")
    exclude_maintainer_responded: bool = Field(default=True, alias="excludeMaintainerResponded")


class IntakeSnapshot(BaseModel):
    """One full read of the open intake queue."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    issues: list[IntakeItem] = Field(default_factory=list)
    discussions: list[IntakeItem] = Field(default_factory=list)
    fetched_at: str = Field(
        default_factory=lambda: datetime.now(tz=UTC).isoformat(), alias="fetchedAt"
    )
    warnings: list[str] = Field(default_factory=list)

    @property
    def items(self) -> list[IntakeItem]:
        """Issues first, then discussions, each in tracker order."""

        return [*self.issues, *self.discussions]


class DiscussionComment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    author: str = "unknown"
    body: str = ""
    created_at: str = Field(default="", alias="createdAt")
    is_maintainer: bool = Field(default=False, alias="isMaintainer")


class ItemDetail(IntakeItem):
    """An intake item plus the fields the detail view needs."""

    body: str = ""
    state: str | None = None
    answer: str | None = None
    comments: list[DiscussionComment] = Field(default_factory=list)


class DuplicateMatch(BaseModel):
    number: int
    title: str
    url: str
    state: str


class RepoMetadata(BaseModel):
    description: str | None = None
    topics: list[str] = Field(default_factory=list)


class NewItemsEvent(BaseModel):
    type: Literal["new_items"] = "new_items"
    issues: list[IntakeItem]
    discussions: list[IntakeItem]
    timestamp: str

    @classmethod
    def from_items(cls, added: list[IntakeItem]) -> NewItemsEvent:
        return cls(
            issues=[i for i in added if i.kind is ItemKind.ISSUE],
            discussions=[i for i in added if i.kind is ItemKind.DISCUSSION],
            timestamp=datetime.now(tz=UTC).isoformat(),
        )

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
