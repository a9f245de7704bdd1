"""Background poller for newly arrived intake items.

The poller re-reads the intake queue on a fixed cadence, diffs the result
against the identities it already knows about and dispatches anything new.

Scheduling rules:
- one armed timer at most; ``start`` and ``stop`` are idempotent
- a tick that fires while the previous poll is still fetching is dropped,
  never queued
- the first successful poll only seeds the known set and notifies nobody
- a failed fetch leaves the known set exactly as it was

Stopping the poller disarms future ticks only. A fetch already in flight still
completes and commits its result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from triage_sidekick.intake.differ import diff_new_items, identities
from triage_sidekick.intake.models import IntakeFilters, IntakeItem, IntakeSnapshot, ItemIdentity
from triage_sidekick.intake.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 90

SnapshotFetcher = Callable[[IntakeFilters], Awaitable[IntakeSnapshot]]


class BackgroundPoller:
    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        dispatcher: NotificationDispatcher,
        filters: IntakeFilters | None = None,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._filters = filters or IntakeFilters()
        self._interval_seconds = interval_seconds

        self._known: frozenset[ItemIdentity] = frozenset()
        self._initialized = False
        self._polling = False
        self._timer: asyncio.Task[None] | None = None
        self._poll_tasks: set[asyncio.Task[bool]] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def running(self) -> bool:
        return self._timer is not None

    @property
    def polling(self) -> bool:
        return self._polling

    @property
    def known(self) -> frozenset[ItemIdentity]:
        return self._known

    @property
    def filters(self) -> IntakeFilters:
        return self._filters

    def update_filters(self, filters: IntakeFilters) -> None:
        """Use ``filters`` from the next poll on."""

        self._filters = filters

    def seed(self, snapshot: IntakeSnapshot) -> None:
        """Record every item in ``snapshot`` as already seen."""

        self._known = identities(snapshot.items)
        self._initialized = True
        logger.info("Intake poller seeded", extra={"known": len(self._known)})

    def reset(self) -> None:
        """Forget every known item; the next successful poll seeds again."""

        self._known = frozenset()
        self._initialized = False

    def start(self) -> None:
        """Arm the repeating timer. Must be called from inside the event loop."""

        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(
            self._tick_forever(self._interval_seconds), name="intake-poller-timer"
        )
        logger.info(
            "Background poller started", extra={"interval_seconds": self._interval_seconds}
        )

    def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("Background poller stopped")

    def set_interval(self, seconds: float) -> None:
        """Change the cadence. A running timer is re-armed; it does not fire now."""

        if seconds <= 0:
            raise ValueError("seconds must be positive")
        self._interval_seconds = seconds
        logger.info("Poll interval updated", extra={"interval_seconds": seconds})
        if self._timer is not None:
            # Raises off the loop before the old timer is cancelled.
            asyncio.get_running_loop()
            self.stop()
            self.start()

    async def aclose(self) -> None:
        """Stop ticking and cancel any poll still running (process shutdown)."""

        self.stop()
        pending = list(self._poll_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _tick_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            # Overlapping ticks are dropped inside poll().
            task = asyncio.create_task(self.poll(), name="intake-poll")
            self._poll_tasks.add(task)
            task.add_done_callback(self._poll_tasks.discard)

    async def poll(self) -> bool:
        """Fetch and diff once.

        Returns:
            False when the call was dropped because another poll is in flight or
            the fetch failed, True otherwise.
        """

        if self._polling:
            logger.debug("Skipping poll; previous poll still running")
            return False
        self._polling = True
        try:
            try:
                snapshot = await self._fetcher(self._filters)
            except Exception:
                logger.exception("Background poll failed")
                return False

            if not self._initialized:
                self.seed(snapshot)
                return True

            added = self._commit(snapshot)
            if added:
                try:
                    await self._dispatcher.dispatch(added)
                except Exception:
                    logger.exception("Dispatching new intake items failed")
            return True
        finally:
            self._polling = False

    def _commit(self, snapshot: IntakeSnapshot) -> list[IntakeItem]:
        items = snapshot.items
        added = diff_new_items(self._known, items)
        # Replace, never merge: items that left the queue stop being known.
        self._known = identities(items)
        logger.debug(
            "Intake poll complete", extra={"known": len(self._known), "added": len(added)}
        )
        return added
