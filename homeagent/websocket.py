"""
WebSocket Manager - verteilt Agent-Updates an verbundene Clients.

Jedes Update der Engine (Entscheidung, Aktion, kritischer Alert, ...)
geht als {"event", "data", "timestamp"} an alle Clients.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import WebSocket

from .models import to_jsonable

logger = logging.getLogger(__name__)


def encode_update(event: str, data: Optional[Any] = None) -> str:
    return json.dumps({
        "event": event,
        "data": to_jsonable(data) if data is not None else {},
        "timestamp": datetime.now().isoformat(),
    })


class ConnectionManager:
    """Verwaltet aktive WebSocket-Verbindungen."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("WebSocket verbunden (%d aktiv)", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info("WebSocket getrennt (%d aktiv)", len(self.active_connections))

    async def broadcast(self, event: str, data: Optional[Any] = None) -> int:
        """Update an alle Clients senden, tote Verbindungen entfernen.

        Returns:
            Anzahl erfolgreich belieferter Clients
        """
        if not self.active_connections:
            return 0

        message = encode_update(event, data)
        delivered = 0
        # Snapshot, connect/disconnect koennen waehrend der awaits passieren
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
                delivered += 1
            except Exception as e:
                logger.debug("WebSocket-Versand fehlgeschlagen, trenne: %s", e)
                self.disconnect(connection)
        return delivered

    async def send_personal(self, websocket: WebSocket, event: str,
                            data: Optional[Any] = None) -> None:
        await websocket.send_text(encode_update(event, data))


# Globale Instanz
ws_manager = ConnectionManager()
