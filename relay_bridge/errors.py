"""Error types raised inside the bridge."""

from typing import Optional


class BridgeError(Exception):
    """Base class for bridge errors."""


class TransportError(BridgeError):
    """Network or HTTP failure talking to the external processor."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CorrelationError(BridgeError):
    """No thread id could be resolved from a callback payload."""


class ParseError(BridgeError):
    """Payload did not match any known response shape."""


class JobTimeoutError(BridgeError):
    """Poller exhausted its attempt budget without a terminal state."""


class JobFailed(BridgeError):
    """External processor reported a failure state for a job."""
