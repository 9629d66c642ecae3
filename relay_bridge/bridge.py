"""Owner of the connection registry and job table."""

import logging
from typing import Optional

from .agent_client import AgentClient
from .config import Config
from .connection import Connection
from .delivery import Courier
from .dispatcher import RequestDispatcher
from .jobs import Job, JobStore
from .poller import FallbackPoller
from .registry import ConnectionRegistry
from .webhooks import CallbackReceiver

logger = logging.getLogger(__name__)


class Bridge:
    """
    Wires the dispatcher, callback receiver and fallback poller to one
    registry and one job table.

    A single instance lives on `app.state.bridge`; nothing else holds the
    registry or job table.
    """

    def __init__(self, config: Config, client: Optional[AgentClient] = None):
        self.config = config
        self.client = client or AgentClient(config)
        self.registry = ConnectionRegistry(monitor_interval=config.monitor_interval)
        self.jobs = JobStore()
        self.courier = Courier(self.registry)
        self.poller = FallbackPoller(config, self.client, self.jobs, self.courier)
        self.dispatcher = RequestDispatcher(config, self.client, self.jobs, self.poller, self.courier)
        self.receiver = CallbackReceiver(self.jobs, self.courier)

    async def start(self):
        await self.registry.start()

    async def stop(self):
        await self.jobs.cancel_all()
        await self.registry.stop()
        await self.client.close()

    async def connect(self, connection: Connection) -> str:
        """Register a new connection and return its thread id."""
        await self.registry.register(connection, connection.thread_id)
        return connection.thread_id

    async def disconnect(self, connection: Connection):
        """Forget a connection. Its outstanding jobs keep running."""
        connection.close()
        await self.registry.unregister(connection)

    async def send(
        self,
        connection: Connection,
        message: str,
        agent_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> Job:
        """Dispatch a message on behalf of a connection."""
        return await self.dispatcher.dispatch(message, agent_id, connection.thread_id, message_id)
