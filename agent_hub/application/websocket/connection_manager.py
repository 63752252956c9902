from typing import Dict, Set
from fastapi import WebSocket
import asyncio
import uuid
from datetime import datetime, timezone
import structlog

from agent_hub.domain.events.schema import AgentEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Fans agent events out to connected WebSocket observers"""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_metadata: Dict[str, Dict] = {}
        self._pending: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a new WebSocket connection and return its id"""
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        async with self._lock:
            self.active_connections[connection_id] = websocket
            self.connection_metadata[connection_id] = {
                "connected_at": datetime.now(timezone.utc),
                "events_sent": 0
            }

        logger.info("WebSocket connected", connection_id=connection_id)
        return connection_id

    async def disconnect(self, connection_id: str):
        """Forget a connection, closing it if still open"""
        async with self._lock:
            ws = self.active_connections.pop(connection_id, None)
            self.connection_metadata.pop(connection_id, None)

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing WebSocket", connection_id=connection_id, error=str(e))

        logger.info("WebSocket disconnected", connection_id=connection_id)

    async def send_event(self, connection_id: str, event: AgentEvent) -> bool:
        """Send an event to one connection"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False

        try:
            await websocket.send_json(event.to_wire())
            if connection_id in self.connection_metadata:
                self.connection_metadata[connection_id]["events_sent"] += 1
            return True

        except Exception as e:
            logger.error("Failed to send event", connection_id=connection_id, error=str(e))
            await self.disconnect(connection_id)
            return False

    async def broadcast(self, event: AgentEvent):
        """Send an event to every connection"""
        tasks = [self.send_event(connection_id, event) for connection_id in list(self.active_connections)]
        await asyncio.gather(*tasks, return_exceptions=True)

    def publish(self, event: AgentEvent):
        """Event-dispatcher handler; schedules delivery on the running loop"""
        if not self.active_connections:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def connection_count(self) -> int:
        return len(self.active_connections)
