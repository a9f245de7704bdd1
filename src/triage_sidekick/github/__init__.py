"""GitHub tracker adapter."""

from triage_sidekick.github.client import (
    InvalidLabelError,
    ItemNotFoundError,
    ProjectConfig,
    ProjectStatusError,
    TrackerClient,
    TrackerError,
)

__all__ = [
    "InvalidLabelError",
    "ItemNotFoundError",
    "ProjectConfig",
    "ProjectStatusError",
    "TrackerClient",
    "TrackerError",
]
