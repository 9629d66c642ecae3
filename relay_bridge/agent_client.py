"""HTTP client for the external agent processor."""

import logging
from typing import Any, Dict, Optional

import httpx

from .config import Config
from .errors import TransportError

logger = logging.getLogger(__name__)


class AgentClient:
    """
    Client for the external processor's job API.

    Handles:
    - Job trigger (POST /agents/trigger) with webhook callback info
    - Job status lookup for the fallback poller

    Every network or HTTP failure surfaces as TransportError.
    """

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.client = httpx.AsyncClient(timeout=config.request_timeout, transport=transport)

        if not config.auth_token:
            logger.warning("RAI_AUTH_TOKEN is not set - processor calls will likely be rejected")
        elif ":" not in config.auth_token:
            logger.warning("RAI_AUTH_TOKEN may not be in the expected 'project:key' format")

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": self.config.auth_token,
        }

    def build_trigger_request(self, message: str, agent_id: str, thread_id: str) -> Dict[str, Any]:
        """Request body embedding the callback address and thread id."""
        return {
            "message": {
                "role": "user",
                "content": message,
            },
            "agent_id": agent_id,
            "thread_id": thread_id,
            "webhook": {
                "url": self.config.webhook_url,
                "include_thread_id": True,
            },
        }

    async def trigger(self, message: str, agent_id: str, thread_id: str) -> Dict[str, Any]:
        """
        Submit a message to an agent.

        Returns the processor's acknowledgement, typically
        {"conversation_id": ..., "job_info": {"job_id": ...}, "state": ...}.
        """
        url = f"{self.config.api_base_url.rstrip('/')}/agents/trigger"
        body = self.build_trigger_request(message, agent_id, thread_id)

        preview = message[:50] + ("..." if len(message) > 50 else "")
        logger.info(f"Triggering agent {agent_id} on thread {thread_id}: {preview}")
        logger.debug(f"Webhook callback URL: {self.config.webhook_url}")

        data = await self._request("POST", url, json=body)
        logger.info(f"Agent triggered: conversation_id={data.get('conversation_id')}, "
                    f"job_id={(data.get('job_info') or {}).get('job_id')}")
        return data

    async def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """Fetch current status of a dispatched job."""
        if not job_id:
            raise ValueError("Job ID is required")

        url = self.config.status_url(job_id)
        logger.debug(f"Checking job status at: {url}")

        data = await self._request("GET", url)
        logger.debug(f"Job {job_id} status={data.get('status')} state={data.get('state')}")
        return data

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if resp.status_code >= 400:
            logger.error(f"Processor error {resp.status_code}: {resp.text[:500]}")
            raise TransportError(
                f"Processor API error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"Processor returned non-JSON body from {url}") from e

        if not isinstance(data, dict):
            raise TransportError(f"Processor returned unexpected body type from {url}")
        return data
