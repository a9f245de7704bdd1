"""Fan-out of server-initiated events to connected dashboard sockets."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket

from triage_sidekick.intake.models import NewItemsEvent

logger = logging.getLogger(__name__)


class ConnectionHub:
    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def add(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)
        logger.info("Notification client connected", extra={"clients": len(self._clients)})

    def discard(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """Send ``payload`` to every client; clients that fail are dropped."""

        delivered = 0
        for client in list(self._clients):
            try:
                await client.send_json(payload)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.info("Dropping notification client after failed send")
                self._clients.discard(client)
        return delivered

    async def publish_new_items(self, event: NewItemsEvent) -> None:
        await self.broadcast(event.to_wire())
