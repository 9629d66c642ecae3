"""
Agent Relay Bridge - Main Entry Point

Relays chat messages from WebSocket clients to an external agent
processor and routes the asynchronous answers back. Answers arrive by
webhook; when no webhook shows up in time the job status is polled.

Usage:
    python -m relay_bridge.main

Environment Variables:
    HOST                    - Server host (default: 0.0.0.0)
    PORT                    - Server port (default: 3000)
    RELEVANCE_API_BASE_URL  - Processor API base URL
    RAI_AUTH_TOKEN          - Processor auth token
    AGENT_ID                - Default agent id
    SERVER_URL              - Public URL of this server (webhook callbacks)
    WEBHOOK_TIMEOUT         - Seconds to wait for a webhook before polling (default: 10)
    POLL_INTERVAL           - Seconds between status polls (default: 6)
    POLL_MAX_ATTEMPTS       - Status polls before giving up (default: 10)
    LOG_LEVEL               - Logging level (default: INFO)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .api import router as api_router
from .bridge import Bridge
from .config import config
from .webhooks import router as webhook_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    bridge: Bridge = app.state.bridge
    cfg = bridge.config

    # Startup
    logger.info("=" * 60)
    logger.info("Agent Relay Bridge Starting")
    logger.info("=" * 60)

    await bridge.start()

    if not cfg.agent_id:
        logger.warning("AGENT_ID is not set - clients must send agentId with each message")

    # Log configuration
    logger.info(f"Processor API: {cfg.api_base_url}")
    logger.info(f"Default agent: {cfg.agent_id or '(not set)'}")
    logger.info(f"Webhook URL: {cfg.webhook_url}")
    logger.info(f"Webhook timeout: {cfg.arm_timeout}s, "
                f"polling: {cfg.poll_max_attempts} x {cfg.poll_interval}s")

    logger.info("-" * 60)
    logger.info(f"Server ready at http://{cfg.host}:{cfg.port}")
    logger.info(f"Socket endpoint: ws://{cfg.host}:{cfg.port}/ws")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down...")
    await bridge.stop()
    logger.info("Shutdown complete")


def create_app(bridge: Optional[Bridge] = None) -> FastAPI:
    """Build the FastAPI app around a bridge instance."""
    app = FastAPI(
        title="Agent Relay Bridge",
        description=(
            "WebSocket chat relay to an external agent processor. "
            "Replies arrive by webhook, with bounded status polling as fallback."
        ),
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.bridge = bridge or Bridge(config)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount routers
    app.include_router(api_router)
    app.include_router(webhook_router)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        """Liveness banner."""
        return "Agent Relay Bridge is running."

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        bridge: Bridge = request.app.state.bridge
        return {
            "status": "healthy",
            "version": VERSION,
            "threads": bridge.registry.thread_count,
            "connections": bridge.registry.connection_count,
            "pending_jobs": bridge.jobs.pending_count,
            "webhook_url": bridge.config.webhook_url,
        }

    return app


app = create_app()


def main():
    """Run the bridge server."""
    uvicorn.run(
        "relay_bridge.main:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
