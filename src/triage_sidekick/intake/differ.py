"""Known-set diffing for the intake queue.

The poller only ever asks "what is new since last time?". Items that vanish
from a snapshot are not reported; they simply stop being known, so an item
that reappears later is reported as new again.
"""

from __future__ import annotations

from collections.abc import Iterable

from triage_sidekick.intake.models import IntakeItem, ItemIdentity


def identities(items: Iterable[IntakeItem]) -> frozenset[ItemIdentity]:
    return frozenset(item.identity for item in items)


def diff_new_items(
    known: frozenset[ItemIdentity] | set[ItemIdentity], items: Iterable[IntakeItem]
) -> list[IntakeItem]:
    """Return the items whose identity is not in ``known``, in snapshot order."""

    return [item for item in items if item.identity not in known]
