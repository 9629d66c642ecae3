"""Webhook endpoints for receiving completion callbacks from the processor."""

import hashlib
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Request

from .delivery import Courier
from .errors import CorrelationError
from .jobs import JobStore
from .models import ResponseEnvelope, utc_now
from .normalizer import normalize

logger = logging.getLogger(__name__)

router = APIRouter()


def resolve_thread_id(payload: Any) -> str:
    """
    Correlation key of a callback payload.

    Tried in order: thread_id, threadId, conversation_id, task.thread_id, id.
    Raises CorrelationError if none is present.
    """
    if isinstance(payload, dict):
        task = payload.get("task")
        candidates = (
            payload.get("thread_id"),
            payload.get("threadId"),
            payload.get("conversation_id"),
            task.get("thread_id") if isinstance(task, dict) else None,
            payload.get("id"),
        )
        for candidate in candidates:
            if candidate:
                return str(candidate)

    raise CorrelationError("No thread_id or conversation_id found in webhook payload")


def callback_job_id(payload: dict) -> Optional[str]:
    """External job id carried by a callback, if any."""
    job_info = payload.get("job_info")
    if isinstance(job_info, dict) and job_info.get("job_id"):
        return str(job_info["job_id"])
    if payload.get("job_id"):
        return str(payload["job_id"])
    return None


def callback_fingerprint(payload: Any) -> str:
    """Stable digest of a callback body; retries of one webhook share it."""
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CallbackReceiver:
    """
    Correlates webhook callbacks with outstanding jobs.

    Shares JobStore.claim with the fallback poller: duplicate callbacks and
    callbacks for jobs the poller already resolved are dropped.
    """

    def __init__(self, jobs: JobStore, courier: Courier):
        self.jobs = jobs
        self.courier = courier

    async def process(self, payload: Any) -> Optional[ResponseEnvelope]:
        """
        Resolve, claim and deliver one callback.

        Returns the delivered envelope, or None if the callback was dropped.
        Never raises.
        """
        try:
            return await self._process(payload)
        except CorrelationError as e:
            logger.error(f"{e}; dropping callback: {json.dumps(payload, default=str)[:1000]}")
        except Exception:
            logger.exception("Error processing webhook")
        return None

    async def _process(self, payload: Any) -> Optional[ResponseEnvelope]:
        thread_id = resolve_thread_id(payload)
        logger.info(f"Identified thread_id: {thread_id}")

        fingerprint = callback_fingerprint(payload)
        if await self.jobs.already_claimed(thread_id, fingerprint):
            logger.info(f"Callback on thread {thread_id} was already delivered, ignoring retry")
            return None

        envelope = normalize(payload)
        envelope.thread_id = envelope.thread_id or thread_id

        job = await self.jobs.find(
            thread_id,
            job_id=callback_job_id(payload),
            conversation_id=payload.get("conversation_id"),
        )
        if job is None:
            logger.info(f"No outstanding job on thread {thread_id}, ignoring callback")
            return None

        if not await self.jobs.claim(job, fingerprint=fingerprint):
            logger.info(f"Job {job.key} already resolved, ignoring duplicate callback")
            return None

        job.cancel_pending()
        await self.courier.deliver(job, envelope)
        return envelope


def _receiver(request: Request) -> CallbackReceiver:
    return request.app.state.bridge.receiver


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Failed to parse webhook body: {e}")
        return None


@router.post("/api/relevance-webhook")
@router.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive a completion callback from the processor.

    Always acknowledged with 200 before any processing so the sender never
    retries or marks the delivery failed; correlation and delivery run as a
    background task after the response is sent.
    """
    body = await _read_json(request)
    logger.info(f"Webhook received on {request.url.path}")
    logger.debug(f"Webhook body: {body}")

    if body is not None:
        background_tasks.add_task(_receiver(request).process, body)

    return {
        "status": "success",
        "message": "Webhook received and processing",
        "timestamp": utc_now(),
    }


@router.get("/api/test-webhook-get")
async def probe_webhook_get(request: Request):
    """Reachability probe for the webhook host."""
    logger.info(f"Webhook GET probe: {dict(request.query_params)}")
    return {
        "success": True,
        "message": "GET webhook test received successfully",
        "timestamp": utc_now(),
    }


@router.post("/api/test-webhook")
@router.post("/api/test-webhook-verbose")
async def echo_test_webhook(request: Request):
    """Echo a posted body without routing it anywhere. The verbose path also logs headers."""
    body = await _read_json(request)
    client = request.client.host if request.client else "unknown"
    verbose = request.url.path.endswith("-verbose")

    logger.info(f"Test webhook received from {client}: {body}")
    if verbose:
        logger.info(f"{request.method} {request.url} headers: {dict(request.headers)}")

    return {
        "status": "success",
        "message": "Test webhook received and logged" if verbose else "Test webhook received successfully",
        "timestamp": utc_now(),
        "echo": body,
    }
