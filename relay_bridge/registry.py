"""Thread id -> live connection registry."""

import asyncio
import logging
import weakref
from typing import Dict, Optional, Set

from .connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Maps correlation (thread) ids to the connections waiting on them.

    Handles:
    - Registration when a connection is created
    - Removal on disconnect, dropping threads that become empty
    - Lookup for fan-out delivery
    - Periodic pruning and logging of the active thread table

    Connections are held weakly: a connection that is garbage collected
    without unregistering simply vanishes from its thread set.
    """

    def __init__(self, monitor_interval: float = 60.0):
        self._threads: Dict[str, "weakref.WeakSet[Connection]"] = {}
        self._thread_of: "weakref.WeakKeyDictionary[Connection, str]" = weakref.WeakKeyDictionary()
        self._lock = asyncio.Lock()
        self._monitor_interval = monitor_interval
        self._monitor_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start background monitor task."""
        self._monitor_task = asyncio.create_task(self._monitor())
        logger.info("Connection registry started")

    async def stop(self):
        """Stop monitor task."""
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        logger.info("Connection registry stopped")

    async def register(self, connection: Connection, thread_id: str):
        """Add connection under thread_id. Idempotent for the same pair."""
        async with self._lock:
            current = self._thread_of.get(connection)
            if current is not None and current != thread_id:
                raise ValueError(
                    f"Connection {connection.connection_id} already bound to thread {current}"
                )

            sockets = self._threads.setdefault(thread_id, weakref.WeakSet())
            sockets.add(connection)
            self._thread_of[connection] = thread_id

            logger.info(f"Connection {connection.connection_id} added to thread {thread_id} "
                        f"({len(sockets)} connections)")

    async def unregister(self, connection: Connection) -> bool:
        """Remove connection from its thread. Returns False if it was not registered."""
        async with self._lock:
            thread_id = self._thread_of.pop(connection, None)
            if thread_id is None:
                return False

            sockets = self._threads.get(thread_id)
            if sockets is not None:
                sockets.discard(connection)
                if not sockets:
                    del self._threads[thread_id]
                    logger.info(f"Removed thread {thread_id} (no more connections)")
                else:
                    logger.info(f"Removed connection {connection.connection_id} from thread "
                                f"{thread_id}. Remaining connections: {len(sockets)}")
            return True

    async def connections_for(self, thread_id: str) -> Set[Connection]:
        """Snapshot of connections registered under thread_id (empty if unknown)."""
        async with self._lock:
            sockets = self._threads.get(thread_id)
            if sockets is None:
                return set()
            snapshot = set(sockets)
            if not snapshot:
                del self._threads[thread_id]
            return snapshot

    def snapshot(self) -> Dict[str, int]:
        """Connection count per thread."""
        return {thread_id: len(sockets) for thread_id, sockets in self._threads.items() if sockets}

    @property
    def thread_count(self) -> int:
        return len(self.snapshot())

    @property
    def connection_count(self) -> int:
        return sum(self.snapshot().values())

    async def prune(self) -> int:
        """Drop thread entries whose connections were all collected."""
        async with self._lock:
            empty = [thread_id for thread_id, sockets in self._threads.items() if not sockets]
            for thread_id in empty:
                del self._threads[thread_id]
            return len(empty)

    async def _monitor(self):
        """Prune and log the active thread table periodically."""
        while True:
            await asyncio.sleep(self._monitor_interval)

            pruned = await self.prune()
            if pruned:
                logger.info(f"Pruned {pruned} empty threads")

            table = self.snapshot()
            for thread_id, count in table.items():
                logger.debug(f"  {thread_id}: {count} connections")
            logger.info(f"Active: {len(table)} threads, {sum(table.values())} connections")
