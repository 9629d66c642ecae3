"""Data models for the bridge."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> str:
    """ISO-8601 timestamp used on envelopes and client events."""
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Client-Facing Request Models
# ============================================================================

class ClientFrame(BaseModel):
    """Envelope of every frame a client sends over the socket."""
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ClientMessage(BaseModel):
    """Payload of a client `message` event."""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    message_id: Optional[str] = Field(default=None, alias="messageId")


class DiagnosticDispatchRequest(BaseModel):
    """Body of the /api/test diagnostic endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    agent_id: Optional[str] = Field(default=None, alias="agentId")


# ============================================================================
# Internal State Models
# ============================================================================

class JobState(str, Enum):
    """Lifecycle of a dispatched job."""
    DISPATCHED = "dispatched"
    AWAITING_CALLBACK = "awaiting-callback"
    POLLING = "polling"
    RESOLVED = "resolved"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


class EnvelopeStatus(str, Enum):
    """Outcome carried by a response envelope."""
    OK = "ok"
    ERROR = "error"
    UNPARSED = "unparsed"


@dataclass
class ResponseEnvelope:
    """Canonical unit delivered to connections."""
    text: str
    conversation_id: Optional[str] = None
    thread_id: Optional[str] = None
    status: EnvelopeStatus = EnvelopeStatus.OK
    timestamp: str = field(default_factory=utc_now)
    raw: Any = None

    @property
    def is_error(self) -> bool:
        return self.status == EnvelopeStatus.ERROR

    @classmethod
    def error(
        cls,
        text: str,
        conversation_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        raw: Any = None,
    ) -> "ResponseEnvelope":
        return cls(
            text=text,
            conversation_id=conversation_id,
            thread_id=thread_id,
            status=EnvelopeStatus.ERROR,
            raw=raw,
        )
