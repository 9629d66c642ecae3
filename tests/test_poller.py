"""Tests for fallback status polling."""
import httpx
import pytest

from relay_bridge.jobs import Job
from relay_bridge.models import EnvelopeStatus, JobState
from relay_bridge.poller import NO_TEXT_MESSAGE, TIMEOUT_MESSAGE, job_status
from .conftest import RUNNING, make_connection


async def _setup(bridge, job_id="J1"):
    conn = make_connection("T1", connection_id="C1")
    await bridge.connect(conn)
    job = Job(thread_id="T1", message_id="m1", job_id=job_id, conversation_id="C1")
    await bridge.jobs.add(job)
    return conn, job


@pytest.mark.asyncio
async def test_completes_after_in_progress(bridge, processor):
    """An in-progress poll is followed by delivery of the completed result."""
    processor.statuses = [RUNNING, (200, {"state": "completed", "output": {"text": "Hi there"}})]
    conn, job = await _setup(bridge)

    envelope = await bridge.poller.run(job)

    assert envelope.text == "Hi there"
    assert processor.status_calls == 2
    assert job.state == JobState.RESOLVED
    assert conn.websocket.events("reply") == [{
        "messageId": "m1",
        "response": "Hi there",
        "conversationId": "C1",
        "status": "ok",
        "timestamp": envelope.timestamp,
    }]


@pytest.mark.asyncio
async def test_status_request(bridge, processor):
    """Polls hit the configured status path with the auth header."""
    processor.statuses = [(200, {"status": "completed", "response": "ok"})]
    _, job = await _setup(bridge)

    await bridge.poller.run(job)

    request = processor.requests[0]
    assert str(request.url) == "https://processor.test/latest/jobs/J1"
    assert request.headers["Authorization"] == "project:test-key"


@pytest.mark.asyncio
async def test_failure_state_delivers_error(bridge, processor):
    """A failed job produces one error envelope."""
    processor.statuses = [(200, {"state": "failed", "error": "agent crashed"})]
    conn, job = await _setup(bridge)

    envelope = await bridge.poller.run(job)

    assert envelope.status == EnvelopeStatus.ERROR
    assert job.state == JobState.FAILED
    assert conn.websocket.events("error") == [{
        "messageId": "m1",
        "message": "Error: agent crashed",
        "conversationId": "C1",
    }]
    assert conn.websocket.events("reply") == []


@pytest.mark.asyncio
async def test_exhausted_budget_delivers_one_timeout(bridge, processor, config):
    """Running out of attempts delivers exactly one timeout envelope."""
    conn, job = await _setup(bridge)

    await bridge.poller.run(job)

    assert processor.status_calls == config.poll_max_attempts
    assert job.state == JobState.TIMED_OUT
    assert [d["data"]["message"] for d in conn.websocket.deliveries()] == [TIMEOUT_MESSAGE]


@pytest.mark.asyncio
async def test_transport_errors_spend_attempts(bridge, processor):
    """A failing poll is retried until a terminal state arrives."""
    processor.statuses = [
        (503, {"error": "unavailable"}),
        (200, httpx.ConnectError("refused")),
        (200, {"state": "completed", "response": "recovered"}),
    ]
    conn, job = await _setup(bridge)

    envelope = await bridge.poller.run(job)

    assert envelope.text == "recovered"
    assert processor.status_calls == 3
    assert len(conn.websocket.deliveries()) == 1


@pytest.mark.asyncio
async def test_completed_result_fields(bridge, processor):
    """Completed status bodies fall back to result, then a placeholder."""
    processor.statuses = [(200, {"state": "completed", "result": {"answer": 42}})]
    _, job = await _setup(bridge)
    assert (await bridge.poller.run(job)).text == '{"answer": 42}'

    processor.statuses = [(200, {"state": "completed"})]
    job = Job(thread_id="T1", job_id="J2")
    await bridge.jobs.add(job)
    assert (await bridge.poller.run(job)).text == NO_TEXT_MESSAGE


@pytest.mark.asyncio
async def test_job_without_id_times_out(bridge, processor):
    """Without an external job id the poller waits out the budget, then times out."""
    conn, job = await _setup(bridge, job_id=None)

    envelope = await bridge.poller.run(job)

    assert processor.status_calls == 0
    assert envelope.text == TIMEOUT_MESSAGE
    assert len(conn.websocket.deliveries()) == 1


@pytest.mark.asyncio
async def test_already_resolved_job_is_not_delivered(bridge, processor):
    """A job claimed elsewhere is neither polled nor delivered."""
    conn, job = await _setup(bridge)
    await bridge.jobs.claim(job)

    assert await bridge.poller.run(job) is None
    assert processor.status_calls == 0
    assert conn.websocket.deliveries() == []


def test_job_status():
    """State is read from state, then status, case-insensitively."""
    assert job_status({"state": "COMPLETED"}) == "completed"
    assert job_status({"status": "failed"}) == "failed"
    assert job_status({"state": None, "status": "running"}) == "running"
    assert job_status({}) == ""
