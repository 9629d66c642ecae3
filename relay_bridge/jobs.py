"""Outstanding job table and the single-assignment resolved claim."""

import asyncio
import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from .models import JobState

logger = logging.getLogger(__name__)

TERMINAL_STATES = (JobState.RESOLVED, JobState.FAILED, JobState.TIMED_OUT)

# Claimed job ids and callback fingerprints remembered for duplicate detection
RECENT_CLAIMS = 1024


@dataclass
class Job:
    """
    One request dispatched to the external processor.

    `resolved` is written only by JobStore.claim and is the single source
    of truth for whether an envelope has been delivered.
    """
    thread_id: str
    message_id: Optional[str] = None
    job_id: Optional[str] = None
    conversation_id: Optional[str] = None
    key: str = field(default_factory=lambda: f"job_{secrets.token_hex(8)}")
    state: JobState = JobState.DISPATCHED
    dispatched_at: datetime = field(default_factory=datetime.now)
    resolved: bool = False
    timer_task: Optional[asyncio.Task] = field(default=None, repr=False)
    poll_task: Optional[asyncio.Task] = field(default=None, repr=False)

    def cancel_pending(self):
        """Cancel the arm timer and any in-flight poll, except the calling task."""
        current = asyncio.current_task()
        for task in (self.timer_task, self.poll_task):
            if task is not None and task is not current and not task.done():
                task.cancel()


class JobStore:
    """
    Table of unresolved jobs.

    Handles:
    - Staging jobs before dispatch and discarding them on transport failure
    - Locating the job a callback belongs to
    - The atomic resolved claim shared by the callback and poll paths
    - Remembering recent claims so retried callbacks are not matched to
      the next job on the same thread
    """

    def __init__(self, recent_limit: int = RECENT_CLAIMS):
        self._jobs: Dict[str, Job] = {}
        self._recent: "OrderedDict[Tuple[str, str], None]" = OrderedDict()
        self._recent_limit = recent_limit
        self._lock = asyncio.Lock()

    async def add(self, job: Job):
        async with self._lock:
            self._jobs[job.key] = job
            logger.debug(f"Staged job {job.key} for thread {job.thread_id}")

    async def discard(self, job: Job):
        """Drop a job that never reached the processor."""
        async with self._lock:
            self._jobs.pop(job.key, None)
            logger.debug(f"Discarded job {job.key}")

    async def mark_awaiting(
        self,
        job: Job,
        job_id: Optional[str],
        conversation_id: Optional[str],
    ):
        """Record the processor's job handle after a successful dispatch."""
        async with self._lock:
            job.job_id = job_id
            job.conversation_id = conversation_id
            if not job.resolved:
                job.state = JobState.AWAITING_CALLBACK

    async def mark_polling(self, job: Job) -> bool:
        """Move job to polling. Returns False if it is resolved or already polling."""
        async with self._lock:
            if job.resolved or job.state == JobState.POLLING:
                return False
            job.state = JobState.POLLING
            return True

    async def claim(
        self,
        job: Job,
        state: JobState = JobState.RESOLVED,
        fingerprint: Optional[str] = None,
    ) -> bool:
        """
        Atomically set the job's resolved flag.

        Exactly one caller ever gets True for a given job; that caller owns
        delivery. The job leaves the table on success, and its job id plus
        the winning callback's fingerprint are remembered for the thread.
        """
        if state not in TERMINAL_STATES:
            raise ValueError(f"Cannot resolve job into non-terminal state {state}")

        async with self._lock:
            if job.resolved:
                return False
            job.resolved = True
            job.state = state
            self._jobs.pop(job.key, None)
            self._remember(job.thread_id, (job.job_id, fingerprint))

        logger.info(f"Job {job.key} (job_id={job.job_id}) claimed as {state.value}")
        return True

    def _remember(self, thread_id: str, marks: Iterable[Optional[str]]):
        for mark in marks:
            if not mark:
                continue
            self._recent[(thread_id, mark)] = None
            self._recent.move_to_end((thread_id, mark))
        while len(self._recent) > self._recent_limit:
            self._recent.popitem(last=False)

    async def already_claimed(self, thread_id: str, mark: Optional[str]) -> bool:
        """True if mark (a job id or callback fingerprint) was recently claimed on thread_id."""
        if not mark:
            return False
        async with self._lock:
            return (thread_id, mark) in self._recent

    async def find(
        self,
        thread_id: str,
        job_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Find the unresolved job a callback refers to.

        A known job id matches exactly. If no job carries it yet, the oldest
        job still waiting on its trigger response (no job id) is used, unless
        that job id was already claimed. Without a job id a matching
        conversation id is preferred, then the oldest job on the thread.
        """
        async with self._lock:
            candidates = sorted(
                (j for j in self._jobs.values() if j.thread_id == thread_id and not j.resolved),
                key=lambda j: j.dispatched_at,
            )
            claimed = job_id is not None and (thread_id, job_id) in self._recent

        if job_id:
            exact = next((j for j in candidates if j.job_id == job_id), None)
            if exact is not None or claimed:
                return exact
            return next((j for j in candidates if j.job_id is None), None)

        if conversation_id:
            for job in candidates:
                if job.conversation_id == conversation_id:
                    return job

        return candidates[0] if candidates else None

    async def cancel_all(self):
        """Cancel every timer and poll task. Used on shutdown."""
        async with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel_pending()
        if jobs:
            logger.info(f"Cancelled pending work for {len(jobs)} jobs")

    @property
    def pending_count(self) -> int:
        """Number of unresolved jobs."""
        return len(self._jobs)
