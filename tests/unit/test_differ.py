"""Unit tests for known-set diffing."""

from factories import make_discussion, make_issue

from triage_sidekick.intake.differ import diff_new_items, identities
from triage_sidekick.intake.models import ItemIdentity, ItemKind


def test_identities_distinguish_kind() -> None:
    known = identities([make_issue(5), make_discussion(5)])

    assert known == {
        ItemIdentity(ItemKind.ISSUE, 5),
        ItemIdentity(ItemKind.DISCUSSION, 5),
    }


def test_diff_returns_only_unknown_items_in_snapshot_order() -> None:
    known = identities([make_issue(1), make_issue(2)])
    items = [make_issue(4), make_issue(1), make_discussion(2), make_issue(3), make_issue(2)]

    added = diff_new_items(known, items)

    assert [(i.kind, i.number) for i in added] == [
        (ItemKind.ISSUE, 4),
        (ItemKind.DISCUSSION, 2),
        (ItemKind.ISSUE, 3),
    ]


def test_diff_ignores_removed_items() -> None:
    known = identities([make_issue(1), make_issue(2), make_issue(3)])

    assert diff_new_items(known, [make_issue(2)]) == []


def test_diff_against_empty_known_set_returns_everything() -> None:
    items = [make_issue(1), make_discussion(1)]

    assert diff_new_items(frozenset(), items) == items
