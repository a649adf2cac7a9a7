import json

import pytest

from callrelay.core import proto


def _raw(type_, payload):
    return json.dumps({"type": type_, "payload": payload})


def test_parse_register():
    ev = proto.parse_event(_raw("register", {"userId": "alice"}))
    assert isinstance(ev, proto.RegisterEvent)
    assert ev.user_id == "alice"


def test_parse_call_initiate_accepts_legacy_field_names():
    ev = proto.parse_event(_raw("call-initiate", {"userToCall": "bob", "signalData": {"type": "offer"}, "from": "alice"}))
    assert isinstance(ev, proto.CallInitiateEvent)
    assert ev.to == "bob"
    assert ev.signal == {"type": "offer"}
    assert ev.from_ == "alice"


def test_signal_payload_is_passed_through_untouched():
    blob = {"sdp": "v=0\r\n...", "candidates": [1, None, {"x": [True]}]}
    ev = proto.parse_event(_raw("call-answer", {"to": "alice", "signal": blob}))
    assert ev.signal == blob


def test_parse_accepts_bytes():
    ev = proto.parse_event(_raw("call-terminate", {"to": "bob"}).encode())
    assert isinstance(ev, proto.CallTerminateEvent)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        _raw("dance", {"to": "bob"}),
        json.dumps({"payload": {"userId": "a"}}),
        json.dumps({"type": "register", "payload": "alice"}),
        _raw("register", {}),
        _raw("register", {"userId": ""}),
        _raw("register", {"userId": 42}),
        _raw("call-initiate", {"to": "bob"}),
        _raw("call-answer", {"signal": "P"}),
        _raw("call-terminate", {}),
    ],
)
def test_malformed_events_raise(raw):
    with pytest.raises(proto.MalformedEvent):
        proto.parse_event(raw)


def test_malformed_event_is_a_value_error():
    assert issubclass(proto.MalformedEvent, ValueError)


def test_build_frame_has_fields():
    f = proto.build_frame("call-terminate", {}, ts=5)
    assert f == {"type": "call-terminate", "ts": 5, "payload": {}}


def test_error_frame_rejects_unknown_code():
    with pytest.raises(ValueError):
        proto.error_frame("NOPE", "x")
    f = proto.error_frame("USER_OFFLINE", "bob is not reachable", ref="call-initiate")
    assert f["payload"] == {"code": "USER_OFFLINE", "detail": "bob is not reachable", "ref": "call-initiate"}


def test_encode_decode_frame():
    text = proto.encode_frame(proto.build_frame("call-answer", {"signal": "é"}, ts=1))
    assert proto.decode_frame(text)["payload"]["signal"] == "é"
    with pytest.raises(ValueError):
        proto.decode_frame("[]")


@pytest.mark.parametrize("type_", ["call-initiate", "call-answer"])
def test_signal_too_deep_to_reencode_is_malformed(type_):
    deep = "[" * 300 + "]" * 300
    raw = '{"type": "%s", "payload": {"to": "bob", "signal": %s}}' % (type_, deep)
    with pytest.raises(proto.MalformedEvent):
        proto.parse_event(raw)


def test_moderately_nested_signal_is_accepted():
    nested = "[" * 100 + "]" * 100
    ev = proto.parse_event('{"type": "call-answer", "payload": {"to": "bob", "signal": %s}}' % nested)
    assert isinstance(ev.signal, list)


def test_64_bit_integers_pass_through_exactly():
    blob = {"hi": 2**63 - 1, "lo": -(2**63), "u": 2**64 - 1}
    ev = proto.parse_event(_raw("call-initiate", {"to": "bob", "signal": blob}))
    assert ev.signal == blob
    assert '"u":18446744073709551615' in proto.encode_frame({"type": "x", "payload": ev.signal})


def test_only_sent_error_codes_are_known():
    assert proto.ERROR_CODES == {"USER_NOT_FOUND", "USER_OFFLINE"}
    with pytest.raises(ValueError):
        proto.error_frame("MALFORMED", "x")
