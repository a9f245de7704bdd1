"""Intake queue tracking: snapshot models, diffing, polling and notification."""

from triage_sidekick.intake.models import (
    IntakeFilters,
    IntakeItem,
    IntakeSnapshot,
    ItemDetail,
    ItemIdentity,
    ItemKind,
    NewItemsEvent,
)
from triage_sidekick.intake.notifications import NotificationDispatcher
from triage_sidekick.intake.poller import DEFAULT_POLL_INTERVAL_SECONDS, BackgroundPoller

__all__ = [
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "BackgroundPoller",
    "IntakeFilters",
    "IntakeItem",
    "IntakeSnapshot",
    "ItemDetail",
    "ItemIdentity",
    "ItemKind",
    "NewItemsEvent",
    "NotificationDispatcher",
]
