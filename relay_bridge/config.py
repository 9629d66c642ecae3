"""Bridge configuration."""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Configuration loaded from environment variables."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # External processor
    api_base_url: str = field(default_factory=lambda: os.getenv(
        "RELEVANCE_API_BASE_URL", "https://api-d7b62b.stack.tryrelevance.com/latest"))
    auth_token: str = field(default_factory=lambda: os.getenv("RAI_AUTH_TOKEN", ""))
    agent_id: str = field(default_factory=lambda: os.getenv("AGENT_ID", ""))
    status_path: str = field(default_factory=lambda: os.getenv("JOB_STATUS_PATH", "/jobs/{job_id}"))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "30")))

    # Webhook
    server_url: str = field(default_factory=lambda: os.getenv("SERVER_URL", "http://localhost:3000"))
    webhook_path: str = field(default_factory=lambda: os.getenv("WEBHOOK_PATH", "/api/relevance-webhook"))

    # Fallback timing
    arm_timeout: float = field(default_factory=lambda: float(os.getenv("WEBHOOK_TIMEOUT", "10")))
    poll_interval: float = field(default_factory=lambda: float(os.getenv("POLL_INTERVAL", "6")))
    poll_max_attempts: int = field(default_factory=lambda: int(os.getenv("POLL_MAX_ATTEMPTS", "10")))

    # Registry
    monitor_interval: float = field(default_factory=lambda: float(os.getenv("REGISTRY_LOG_INTERVAL", "60")))

    @property
    def webhook_url(self) -> str:
        """URL where the external processor delivers completion callbacks."""
        base = self.server_url.strip().replace(";", "")
        base = "".join(base.split()).replace('"', "").replace("'", "")
        return base.rstrip("/") + self.webhook_path

    def status_url(self, job_id: str) -> str:
        """Status endpoint for a dispatched job."""
        return self.api_base_url.rstrip("/") + self.status_path.format(job_id=job_id)


# Global config instance
config = Config()
