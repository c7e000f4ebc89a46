"""Tests for the WebSocket frame codec."""

import json

import pytest

from chronicle.bridge.protocol import (
    PushFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
    make_response,
)
from chronicle.utils.exceptions import FrameValidationError


def test_decode_request_with_params():
    frame = decode_frame('{"type":"request","id":"req-1","method":"getCurrentFile","params":{"a":1}}')
    assert isinstance(frame, RequestFrame)
    assert frame.id == "req-1"
    assert frame.method == "getCurrentFile"
    assert frame.params == {"a": 1}


def test_decode_request_accepts_data_alias():
    """The Host sends triggerProcessing arguments under 'data'."""
    frame = decode_frame(json.dumps({"type": "request", "id": "trigger-1", "method": "triggerProcessing", "data": {"style": "brief"}}))
    assert isinstance(frame, RequestFrame)
    assert frame.params == {"style": "brief"}


def test_decode_response_result_and_error():
    ok = decode_frame('{"type":"response","id":"req-2","result":{"path":"/w"}}')
    assert isinstance(ok, ResponseFrame)
    assert not ok.is_error
    assert ok.result == {"path": "/w"}

    failed = decode_frame(b'{"type":"response","id":"req-3","error":"boom"}')
    assert isinstance(failed, ResponseFrame)
    assert failed.is_error
    assert failed.error == "boom"


def test_decode_response_with_null_result_is_a_result():
    frame = decode_frame('{"type":"response","id":"req-4","result":null}')
    assert isinstance(frame, ResponseFrame)
    assert not frame.is_error
    assert frame.result is None


def test_decode_push():
    frame = decode_frame('{"type":"push","event":"processingComplete","data":{"path":"a.md"}}')
    assert isinstance(frame, PushFrame)
    assert frame.event == "processingComplete"
    assert frame.data == {"path": "a.md"}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '"just a string"',
        '{"id":"req-1"}',
        '{"type":"bogus","id":"x"}',
        '{"type":"request","method":"getCurrentFile"}',
        '{"type":"request","id":5,"method":"getCurrentFile"}',
        '{"type":"request","id":"req-1","method":"m","params":[1]}',
        '{"type":"response","id":"req-1"}',
        '{"type":"response","id":"req-1","result":1,"error":"x"}',
        '{"type":"push","data":{}}',
        b"\xff\xfe",
    ],
)
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(FrameValidationError):
        decode_frame(raw)


def test_encode_is_single_line_json():
    text = encode_frame(RequestFrame(id="req-9", method="getWorkspacePath"))
    assert "\n" not in text
    assert json.loads(text) == {"type": "request", "id": "req-9", "method": "getWorkspacePath"}


def test_make_response_picks_branch():
    assert json.loads(encode_frame(make_response("req-1", result={"x": 1}))) == {
        "type": "response",
        "id": "req-1",
        "result": {"x": 1},
    }
    assert json.loads(encode_frame(make_response("req-2", error="nope"))) == {
        "type": "response",
        "id": "req-2",
        "error": "nope",
    }


def test_encoded_frames_decode_back():
    push = PushFrame(event="processingError", data={"error": "x"})
    assert decode_frame(encode_frame(push)) == push
