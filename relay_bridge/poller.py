"""
Fallback status polling.

Started by the dispatcher only when no webhook arrived within the arm
timeout. Polls the processor at a fixed interval for a bounded number of
attempts and always ends by delivering exactly one terminal envelope
(success, failure or timeout), unless the callback path claimed the job
first.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .agent_client import AgentClient
from .config import Config
from .delivery import Courier
from .errors import JobFailed, JobTimeoutError, ParseError, TransportError
from .jobs import Job, JobStore
from .models import JobState, ResponseEnvelope
from .normalizer import as_text, parse

logger = logging.getLogger(__name__)

SUCCESS_STATES = {"completed", "complete", "succeeded", "success", "done"}
FAILURE_STATES = {"failed", "error", "cancelled", "canceled"}

NO_TEXT_MESSAGE = "Job completed, but no response text found"
TIMEOUT_MESSAGE = "Timeout: Job processing took too long"


def job_status(data: Dict[str, Any]) -> str:
    """Lower-cased state reported by a status payload ('' if absent)."""
    for key in ("state", "status"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value.lower()
    return ""


def completed_envelope(job: Job, data: Dict[str, Any]) -> ResponseEnvelope:
    """Envelope for a status payload in a terminal success state."""
    try:
        envelope = parse(data)
    except ParseError:
        result = data.get("result")
        envelope = ResponseEnvelope(text=as_text(result) if result else NO_TEXT_MESSAGE)

    envelope.conversation_id = envelope.conversation_id or data.get("conversation_id") or job.conversation_id
    envelope.thread_id = job.thread_id
    return envelope


class FallbackPoller:
    """
    Bounded-attempt poller.

    Shares JobStore.claim with the callback receiver so only one of the
    two paths ever delivers for a given job.
    """

    def __init__(self, config: Config, client: AgentClient, jobs: JobStore, courier: Courier):
        self.config = config
        self.client = client
        self.jobs = jobs
        self.courier = courier

    def start(self, job: Job) -> asyncio.Task:
        """Spawn the poll loop for job and attach it so a callback can cancel it."""
        job.poll_task = asyncio.create_task(self.run(job), name=f"poll-{job.key}")
        return job.poll_task

    async def run(self, job: Job) -> Optional[ResponseEnvelope]:
        """Poll until a terminal state or the attempt budget runs out."""
        try:
            return await self._poll(job)
        except asyncio.CancelledError:
            logger.debug(f"Polling cancelled for job {job.key}")
            raise
        except Exception as e:
            # Unexpected failures still end in a delivered error envelope.
            logger.exception(f"Polling crashed for job {job.key}")
            return await self._finish(job, ResponseEnvelope.error(
                f"Polling error: {e}", job.conversation_id, job.thread_id), JobState.FAILED)

    async def _poll(self, job: Job) -> Optional[ResponseEnvelope]:
        attempts = self.config.poll_max_attempts
        interval = self.config.poll_interval

        if not job.job_id:
            logger.warning(f"Job {job.key} has no external job id; waiting out the poll window")
            await asyncio.sleep(interval * attempts)
            return await self._timeout(job)

        logger.info(f"Starting job polling for job ID: {job.job_id}")
        last: Dict[str, Any] = {}

        for attempt in range(1, attempts + 1):
            if job.resolved:
                return None

            logger.info(f"Polling attempt {attempt}/{attempts} for job {job.job_id}")
            try:
                last = await self.client.get_job_status(job.job_id)
            except TransportError as e:
                logger.warning(f"Poll attempt {attempt} for job {job.job_id} failed: {e}")
            else:
                state = job_status(last)

                if state in SUCCESS_STATES:
                    logger.info(f"Job {job.job_id} completed, processing response")
                    return await self._finish(job, completed_envelope(job, last), JobState.RESOLVED)

                if state in FAILURE_STATES:
                    failure = JobFailed(f"Error: {as_text(last.get('error') or 'Job failed')}")
                    logger.error(f"Job {job.job_id} failed: {failure}")
                    return await self._finish(job, ResponseEnvelope.error(
                        str(failure), last.get("conversation_id") or job.conversation_id,
                        job.thread_id, raw=last), JobState.FAILED)

            if attempt < attempts:
                await asyncio.sleep(interval)

        return await self._timeout(job, last)

    async def _timeout(self, job: Job, last: Optional[Dict[str, Any]] = None) -> Optional[ResponseEnvelope]:
        error = JobTimeoutError(TIMEOUT_MESSAGE)
        logger.error(f"Max polling attempts reached for job {job.key}: {error}")
        return await self._finish(job, ResponseEnvelope.error(
            str(error), job.conversation_id, job.thread_id, raw=last), JobState.TIMED_OUT)

    async def _finish(self, job: Job, envelope: ResponseEnvelope, state: JobState) -> Optional[ResponseEnvelope]:
        if not await self.jobs.claim(job, state):
            logger.info(f"Job {job.key} already resolved, dropping poll result")
            return None

        job.cancel_pending()
        await self.courier.deliver(job, envelope)
        return envelope
