"""
Normalization of external response payloads.

The external processor reports results in several layouts depending on
API version and delivery path (webhook vs status poll). Each known layout
is declared as a `Shape` and tried in a fixed order; the first one that
matches produces the envelope text.

Known shapes, in priority order:

    response        {"response": "..."}
    results         {"results": [{"content": {"type": "agent-message", "text": "..."}}]}
    output          {"output": {"text": "..."}} or {"output": "..."}
    task_response   {"task": {"response": "..."}}
    content         {"content": "..."} (non-text values are JSON-encoded)
    data_content    {"data": {"content": "..."}}

Anything else degrades to an `unparsed` envelope that keeps the raw payload.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .errors import ParseError
from .models import EnvelopeStatus, ResponseEnvelope

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 100
AGENT_MESSAGE_TYPE = "agent-message"


@dataclass(frozen=True)
class Shape:
    """A recognized payload layout."""
    name: str
    extract: Callable[[dict], Optional[ResponseEnvelope]]


def as_text(value: Any) -> str:
    """Render a payload value as text, JSON-encoding structured values."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _get(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


def _envelope(payload: dict, text: Any, conversation_id: Any = None) -> ResponseEnvelope:
    return ResponseEnvelope(
        text=as_text(text),
        conversation_id=conversation_id if conversation_id is not None else payload.get("conversation_id"),
        thread_id=payload.get("thread_id"),
    )


# =============================================================================
# Shape extractors
# =============================================================================

def _from_response(payload: dict) -> Optional[ResponseEnvelope]:
    if payload.get("response"):
        return _envelope(payload, payload["response"])
    return None


def _from_results(payload: dict) -> Optional[ResponseEnvelope]:
    results = payload.get("results")
    if not isinstance(results, list) or not results:
        return None

    messages = [
        entry for entry in results
        if isinstance(_get(entry, "content"), dict)
        and entry["content"].get("type") == AGENT_MESSAGE_TYPE
    ]
    if not messages:
        return None

    latest = messages[-1]["content"]
    return _envelope(payload, latest.get("text") or "")


def _from_output(payload: dict) -> Optional[ResponseEnvelope]:
    output = payload.get("output")
    if not output:
        return None
    return _envelope(payload, _get(output, "text") or output)


def _from_task_response(payload: dict) -> Optional[ResponseEnvelope]:
    response = _get(payload.get("task"), "response")
    if not response:
        return None
    return _envelope(payload, response)


def _from_content(payload: dict) -> Optional[ResponseEnvelope]:
    content = payload.get("content")
    if not content:
        return None
    return _envelope(
        payload,
        content,
        conversation_id=payload.get("conversation_id") or payload.get("thread_id"),
    )


def _from_data_content(payload: dict) -> Optional[ResponseEnvelope]:
    data = payload.get("data")
    content = _get(data, "content")
    if not content:
        return None
    return _envelope(
        payload,
        content,
        conversation_id=data.get("conversation_id") or payload.get("thread_id"),
    )


SHAPES: List[Shape] = [
    Shape("response", _from_response),
    Shape("results", _from_results),
    Shape("output", _from_output),
    Shape("task_response", _from_task_response),
    Shape("content", _from_content),
    Shape("data_content", _from_data_content),
]


# =============================================================================
# Public API
# =============================================================================

def parse(payload: Any) -> ResponseEnvelope:
    """
    Match payload against the known shapes.

    Raises ParseError if no shape matches.
    """
    if not isinstance(payload, dict):
        raise ParseError(f"Payload is {type(payload).__name__}, not an object")

    for shape in SHAPES:
        try:
            envelope = shape.extract(payload)
        except Exception as e:
            logger.debug(f"Shape {shape.name} failed on payload: {e}")
            continue
        if envelope is not None:
            logger.debug(f"Payload matched shape: {shape.name}")
            return envelope

    raise ParseError("Payload matched no known response shape")


def normalize(payload: Any) -> ResponseEnvelope:
    """
    Convert an external payload into a ResponseEnvelope.

    Never raises: unrecognized payloads yield an envelope with
    status=unparsed, a best-effort text and the raw payload attached.
    """
    try:
        return parse(payload)
    except ParseError as e:
        logger.warning(f"Failed to parse response payload ({e}): {as_text(payload)[:500]}")

    return ResponseEnvelope(
        text=_salvage_text(payload) or "No response text could be extracted from the webhook data",
        conversation_id=_get(payload, "conversation_id"),
        thread_id=_get(payload, "thread_id"),
        status=EnvelopeStatus.UNPARSED,
        raw=payload,
    )


def _salvage_text(payload: Any) -> str:
    """Pull whatever human-readable text an unrecognized payload carries."""
    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
        return text[:EXCERPT_LENGTH]

    if not isinstance(payload, dict):
        return ""

    message = payload.get("message")
    if message:
        if isinstance(message, str):
            return message
        return "Found message property but not in expected format"

    error = payload.get("error")
    if error:
        if isinstance(error, str):
            return f"Error: {error}"
        return "Error occurred but details not available"

    job_info = payload.get("job_info")
    if _get(job_info, "status") == "failed":
        return f"Job failed: {job_info.get('error') or 'Unknown error'}"

    return ""
