"""Test configuration and fixtures."""
import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio

from relay_bridge.agent_client import AgentClient
from relay_bridge.bridge import Bridge
from relay_bridge.config import Config
from relay_bridge.connection import Connection

PROCESSOR_URL = "https://processor.test/latest"
RUNNING = (200, {"state": "running"})


class FakeSocket:
    """Stands in for a WebSocket; records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.frames: List[Dict[str, Any]] = []
        self.fail = fail
        self._arrived = asyncio.Event()

    async def send_json(self, data: Dict[str, Any]):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)
        self._arrived.set()

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [f["data"] for f in self.frames if f["event"] == name]

    def deliveries(self) -> List[Dict[str, Any]]:
        """Frames carrying a job's final envelope."""
        return [f for f in self.frames if f["event"] in ("reply", "error")]

    async def wait_for(self, name: str, timeout: float = 2.0) -> List[Dict[str, Any]]:
        async def _wait():
            while not self.events(name):
                self._arrived.clear()
                await self._arrived.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.events(name)


Reply = Tuple[int, Union[Dict[str, Any], Exception]]


class ProcessorStub:
    """
    Fake external processor behind httpx.MockTransport.

    `statuses` is consumed in order by status polls; the last entry repeats.
    An Exception in place of a body is raised from the transport.
    """

    def __init__(self):
        self.trigger_reply: Reply = (200, {
            "conversation_id": "C1",
            "job_info": {"job_id": "J1"},
            "state": "queued",
        })
        self.statuses: List[Reply] = [RUNNING]
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST" and request.url.path.endswith("/agents/trigger"):
            return self._respond(self.trigger_reply)

        if request.method == "GET" and "/jobs/" in request.url.path:
            reply = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return self._respond(reply)

        return httpx.Response(404, json={"error": "not found"})

    @staticmethod
    def _respond(reply: Reply) -> httpx.Response:
        code, body = reply
        if isinstance(body, Exception):
            raise body
        return httpx.Response(code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def trigger_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    @property
    def status_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "GET")


def make_config(**overrides) -> Config:
    values = dict(
        api_base_url=PROCESSOR_URL,
        auth_token="project:test-key",
        agent_id="agent-default",
        server_url="https://bridge.test",
        webhook_path="/api/relevance-webhook",
        status_path="/jobs/{job_id}",
        arm_timeout=0.05,
        poll_interval=0.01,
        poll_max_attempts=10,
        monitor_interval=60.0,
    )
    values.update(overrides)
    return Config(**values)


def make_connection(thread_id: str, connection_id: Optional[str] = None, fail: bool = False) -> Connection:
    return Connection(FakeSocket(fail=fail), connection_id=connection_id, thread_id=thread_id)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll predicate until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def processor():
    return ProcessorStub()


@pytest.fixture
def config():
    return make_config()


@pytest_asyncio.fixture
async def bridge(config, processor):
    """Bridge wired to the processor stub."""
    b = Bridge(config, client=AgentClient(config, transport=processor.transport))
    yield b
    await b.jobs.cancel_all()
    await b.client.close()
