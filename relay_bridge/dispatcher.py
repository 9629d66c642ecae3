"""Outbound job dispatch and webhook-timeout hand-off to polling."""

import asyncio
import logging
from typing import Optional

from .agent_client import AgentClient
from .config import Config
from .delivery import Courier
from .errors import TransportError
from .jobs import Job, JobStore
from .poller import FallbackPoller

logger = logging.getLogger(__name__)

POLLING_NOTICE = "Webhook not received, starting polling fallback..."


class RequestDispatcher:
    """
    Sends client messages to the external processor.

    Handles:
    - Trigger request carrying the webhook URL and thread id
    - Job creation on success (transport errors raise, no job is left behind)
    - Single-shot arm timer that starts the fallback poller
    """

    def __init__(
        self,
        config: Config,
        client: AgentClient,
        jobs: JobStore,
        poller: FallbackPoller,
        courier: Courier,
    ):
        self.config = config
        self.client = client
        self.jobs = jobs
        self.poller = poller
        self.courier = courier

    async def dispatch(
        self,
        message: str,
        agent_id: Optional[str],
        thread_id: str,
        message_id: Optional[str] = None,
    ) -> Job:
        """
        Trigger the processor and start waiting for its callback.

        Raises ValueError for missing input and TransportError if the
        processor could not be reached or rejected the request.
        """
        if not message:
            raise ValueError("Message is required")
        agent_id = agent_id or self.config.agent_id
        if not agent_id:
            raise ValueError("Agent ID is required")

        # Staged before the call so a webhook racing the trigger response finds it
        job = Job(thread_id=thread_id, message_id=message_id)
        await self.jobs.add(job)

        try:
            data = await self.client.trigger(message, agent_id, thread_id)
        except TransportError:
            await self.jobs.discard(job)
            raise
        except Exception as e:
            await self.jobs.discard(job)
            raise TransportError(f"Dispatch failed: {e}") from e

        job_info = data.get("job_info")
        job_id = job_info.get("job_id") if isinstance(job_info, dict) else None
        await self.jobs.mark_awaiting(job, job_id, data.get("conversation_id"))

        if not job.resolved:
            job.timer_task = asyncio.create_task(self._arm(job), name=f"arm-{job.key}")
            logger.info(f"Waiting {self.config.arm_timeout}s for webhook on thread {thread_id} "
                        f"(job {job.key}, job_id={job_id})")
        return job

    async def _arm(self, job: Job):
        """Start polling if the job is still unresolved when the timeout elapses."""
        try:
            await asyncio.sleep(self.config.arm_timeout)

            if not await self.jobs.mark_polling(job):
                return

            logger.info(f"Webhook timeout for job {job.key}, starting polling fallback")
            await self.courier.notify_processing(job, POLLING_NOTICE)
            if not job.resolved:
                self.poller.start(job)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Arm timer failed for job {job.key}")
            if not job.resolved and job.poll_task is None:
                self.poller.start(job)
