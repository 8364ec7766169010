import json

import pytest
from ocpp.messages import Call, CallError, CallResult

from evse_sim.codec import decode, encode_call, encode_error, encode_result, summarize
from evse_sim.errors import MalformedMessage


def test_encode_call_shape():
    unique_id, raw = encode_call("Heartbeat", {})
    assert json.loads(raw) == [2, unique_id, "Heartbeat", {}]


def test_encode_call_ids_are_unique():
    ids = {encode_call("Heartbeat", {})[0] for _ in range(50)}
    assert len(ids) == 50


def test_encode_result_and_error():
    assert json.loads(encode_result("abc", {"status": "Accepted"})) == [3, "abc", {"status": "Accepted"}]
    assert json.loads(encode_error("abc", "NotImplemented", "nope")) == [4, "abc", "NotImplemented", "nope", {}]


def test_decode_call():
    msg = decode('[2, "42", "Reset", {"type": "Immediate"}]')
    assert isinstance(msg, Call)
    assert (msg.unique_id, msg.action, msg.payload) == ("42", "Reset", {"type": "Immediate"})


def test_decode_call_result():
    msg = decode('[3, "42", {"currentTime": "2024-01-01T00:00:00Z"}]')
    assert isinstance(msg, CallResult)
    assert msg.payload == {"currentTime": "2024-01-01T00:00:00Z"}


def test_decode_call_error_with_and_without_details():
    msg = decode('[4, "42", "FormationViolation", "bad", {"field": "x"}]')
    assert isinstance(msg, CallError)
    assert msg.error_code == "FormationViolation"
    assert msg.error_details == {"field": "x"}

    msg = decode('[4, "42", "InternalError", "boom"]')
    assert msg.error_details == {}


@pytest.mark.parametrize("raw", [
    "not json",
    '{"a": 1}',
    "[]",
    '"text"',
    '[5, "1", {}]',
    '[true, "1", "Reset", {}]',
    '["2", "1", "Reset", {}]',
    '[2, "1", "Reset"]',
    '[2, "1", "Reset", {}, {}]',
    '[3, "1"]',
    '[3, "1", {}, {}]',
    '[2, 1, "Reset", {}]',
    '[2, "1", "Reset", []]',
    '[3, "1", "Accepted"]',
    None,
])
def test_decode_rejects_malformed(raw):
    with pytest.raises(MalformedMessage):
        decode(raw)


def test_summarize():
    assert summarize(decode('[2, "7", "Heartbeat", {}]')).startswith("Heartbeat [7]")
    assert "NotImplemented" in summarize(decode('[4, "7", "NotImplemented", "x", {}]'))
