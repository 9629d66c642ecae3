"""Client connection handle."""

import re
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import WebSocket


def new_thread_id(connection_id: str) -> str:
    """Correlation key assigned to a connection at creation."""
    suffix = re.sub(r"[^a-zA-Z0-9]", "", connection_id)
    return f"thread_{int(time.time() * 1000)}_{suffix}"


class Connection:
    """
    One live client socket.

    The thread id is fixed at creation. `connected` flips to False as soon
    as the transport goes away; emitting to a closed connection is a no-op.
    """

    def __init__(
        self,
        websocket: WebSocket,
        connection_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.connection_id = connection_id or f"conn_{secrets.token_hex(6)}"
        self._thread_id = thread_id or new_thread_id(self.connection_id)
        self.connected = True
        self.connected_at = datetime.now()

    @property
    def thread_id(self) -> str:
        return self._thread_id

    def close(self):
        """Mark connection dead."""
        self.connected = False

    async def emit(self, event: str, data: Dict[str, Any]) -> bool:
        """Send an event frame. Returns False if the connection is already closed."""
        if not self.connected:
            return False
        await self.websocket.send_json({"event": event, "data": data})
        return True

    def __repr__(self) -> str:
        state = "connected" if self.connected else "closed"
        return f"<Connection {self.connection_id} thread={self.thread_id} {state}>"
