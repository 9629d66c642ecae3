"""Fan-out of envelopes and events to the connections on a thread."""

import logging
from typing import Any, Dict, Tuple

from .jobs import Job
from .models import ResponseEnvelope, utc_now
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def envelope_event(job: Job, envelope: ResponseEnvelope) -> Tuple[str, Dict[str, Any]]:
    """Client event name and payload for a delivered envelope."""
    if envelope.is_error:
        return "error", {
            "messageId": job.message_id,
            "message": envelope.text,
            "conversationId": envelope.conversation_id or job.conversation_id,
        }

    return "reply", {
        "messageId": job.message_id,
        "response": envelope.text,
        "conversationId": envelope.conversation_id or job.conversation_id,
        "status": envelope.status.value,
        "timestamp": envelope.timestamp,
    }


class Courier:
    """Delivers to every live connection registered under a thread id."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def broadcast(self, thread_id: str, event: str, data: Dict[str, Any]) -> int:
        """
        Emit event to all live connections on thread_id.

        Returns the number of connections reached. Dead connections are
        skipped; a failing send is logged and does not stop the fan-out.
        """
        connections = await self.registry.connections_for(thread_id)
        delivered = 0

        for connection in connections:
            if not connection.connected:
                continue
            try:
                if await connection.emit(event, data):
                    delivered += 1
            except Exception as e:
                logger.warning(f"Send to {connection.connection_id} failed: {e}")
                connection.close()

        return delivered

    async def deliver(self, job: Job, envelope: ResponseEnvelope) -> int:
        """Send a job's final envelope. Zero live connections is an orphaned delivery."""
        event, data = envelope_event(job, envelope)
        delivered = await self.broadcast(job.thread_id, event, data)

        if delivered:
            logger.info(f"Delivered {event} for job {job.key} to {delivered} connections "
                        f"on thread {job.thread_id}")
        else:
            logger.warning(f"Orphaned delivery: no live connection on thread {job.thread_id} "
                           f"for job {job.key}")
        return delivered

    async def notify_processing(self, job: Job, message: str) -> int:
        return await self.broadcast(job.thread_id, "processing", {
            "messageId": job.message_id,
            "status": "processing",
            "message": message,
            "timestamp": utc_now(),
        })
