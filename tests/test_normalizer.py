"""Tests for response payload normalization."""
import pytest

from relay_bridge.errors import ParseError
from relay_bridge.models import EnvelopeStatus
from relay_bridge.normalizer import normalize, parse


@pytest.mark.parametrize("payload,expected", [
    ({"response": "direct"}, "direct"),
    ({"results": [
        {"content": {"type": "user-message", "text": "question"}},
        {"content": {"type": "agent-message", "text": "first"}},
        {"content": {"type": "agent-message", "text": "latest"}},
    ]}, "latest"),
    ({"output": {"text": "from output"}}, "from output"),
    ({"output": "plain output"}, "plain output"),
    ({"task": {"response": "from task"}}, "from task"),
    ({"content": "from content"}, "from content"),
    ({"data": {"content": "nested"}}, "nested"),
])
def test_known_shapes(payload, expected):
    """Each recognized layout yields its text with status ok."""
    envelope = normalize(payload)
    assert envelope.text == expected
    assert envelope.status == EnvelopeStatus.OK
    assert envelope.raw is None


def test_shape_priority():
    """Earlier shapes win when several are present."""
    payload = {
        "content": "content",
        "output": {"text": "output"},
        "response": "response",
    }
    assert normalize(payload).text == "response"

    payload.pop("response")
    assert normalize(payload).text == "output"


def test_results_without_agent_messages_falls_through():
    """A results list with no agent-authored entry does not match."""
    payload = {
        "results": [{"content": {"type": "user-message", "text": "hi"}}, "junk", None],
        "task": {"response": "task answer"},
    }
    assert normalize(payload).text == "task answer"


def test_structured_values_are_json_encoded():
    """Non-text content and output objects become JSON text."""
    assert normalize({"content": {"a": 1}}).text == '{"a": 1}'
    assert normalize({"data": {"content": [1, 2]}}).text == "[1, 2]"
    assert normalize({"output": {"value": 3}}).text == '{"value": 3}'


def test_conversation_and_thread_ids():
    """Envelope carries ids from the payload, with the content fallbacks."""
    envelope = normalize({"response": "x", "conversation_id": "C9", "thread_id": "T9"})
    assert envelope.conversation_id == "C9"
    assert envelope.thread_id == "T9"

    assert normalize({"content": "x", "thread_id": "T1"}).conversation_id == "T1"
    assert normalize({"data": {"content": "x", "conversation_id": "C2"}, "thread_id": "T1"}).conversation_id == "C2"


@pytest.mark.parametrize("payload,expected", [
    ({"unknown": True}, "No response text could be extracted from the webhook data"),
    ({"message": "agent says"}, "agent says"),
    ({"message": {"nested": 1}}, "Found message property but not in expected format"),
    ({"error": "boom"}, "Error: boom"),
    ({"error": {"code": 1}}, "Error occurred but details not available"),
    ({"job_info": {"status": "failed", "error": "quota"}}, "Job failed: quota"),
    ({"job_info": {"status": "failed"}}, "Job failed: Unknown error"),
    ("x" * 150, "x" * 100),
])
def test_unparsed_fallback(payload, expected):
    """Unrecognized payloads degrade to an unparsed envelope keeping the raw data."""
    envelope = normalize(payload)
    assert envelope.status == EnvelopeStatus.UNPARSED
    assert envelope.text == expected
    assert envelope.raw == payload


@pytest.mark.parametrize("payload", [
    None, 42, [], ["response"], {"results": "not a list"}, {"task": "not a dict"},
    {"data": None}, {"response": ""}, {"output": None}, b"\xff\xfe bytes",
])
def test_never_raises(payload):
    """Malformed input never raises."""
    envelope = normalize(payload)
    assert envelope.status == EnvelopeStatus.UNPARSED
    assert isinstance(envelope.text, str)


def test_parse_is_strict():
    """parse raises ParseError where normalize degrades."""
    with pytest.raises(ParseError):
        parse({"nothing": "here"})
    with pytest.raises(ParseError):
        parse("text")
