# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the Connect wire helpers and the Falcon app, driven through falcon.testing."""

from __future__ import annotations

import base64
import json
from typing import Any

import falcon.testing
import pytest

from connect_crosstest.codes import Code
from connect_crosstest.conformance import NON_ASCII_ERROR_MESSAGE, TestServiceImpl, error_detail
from connect_crosstest.connect import (
    STREAM_CONTENT_TYPE,
    UNARY_CONTENT_TYPE,
    decode_end_stream,
    encode_end_stream,
    encode_envelope,
    error_from_json,
    error_to_json,
    iter_envelopes,
    make_wsgi_app,
)
from connect_crosstest.connect._common import (
    END_STREAM_FLAG,
    format_timeout,
    headers_to_metadata,
    metadata_to_headers,
    parse_timeout,
)
from connect_crosstest.messages import (
    COMPRESSABLE,
    EchoStatus,
    Empty,
    ErrorDetail,
    ResponseParameters,
    SimpleRequest,
    SimpleResponse,
    StreamingOutputCallRequest,
    StreamingOutputCallResponse,
)
from connect_crosstest.metadata import LEADING_METADATA_KEY, TRAILING_METADATA_KEY, Metadata
from connect_crosstest.rpc import RpcError

_SERVICE = "/grpc.testing.TestService"

# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class TestEnvelopes:
    """Five-byte prefixed framing."""

    def test_prefix_layout(self) -> None:
        """One flags byte then a big-endian 32-bit length."""
        assert encode_envelope(b"abc") == b"\x00\x00\x00\x00\x03abc"
        assert encode_envelope(b"", END_STREAM_FLAG) == b"\x02\x00\x00\x00\x00"

    def test_reassembles_split_chunks(self) -> None:
        """Envelopes split at arbitrary byte boundaries come back whole."""
        data = encode_envelope(b"first") + encode_envelope(b"") + encode_envelope(b"{}", END_STREAM_FLAG)
        chunks = [data[i : i + 3] for i in range(0, len(data), 3)]
        assert list(iter_envelopes(chunks)) == [(0, b"first"), (0, b""), (END_STREAM_FLAG, b"{}")]

    def test_truncated(self) -> None:
        """Input ending inside an envelope is INTERNAL."""
        with pytest.raises(RpcError) as exc_info:
            list(iter_envelopes([encode_envelope(b"abcdef")[:-2]]))
        assert exc_info.value.code is Code.INTERNAL

    def test_compressed_rejected(self) -> None:
        """A compressed envelope is INTERNAL; no compression is ever negotiated."""
        with pytest.raises(RpcError) as exc_info:
            list(iter_envelopes([encode_envelope(b"x", 0x01)]))
        assert exc_info.value.code is Code.INTERNAL


# ---------------------------------------------------------------------------
# Headers and timeouts
# ---------------------------------------------------------------------------


class TestHeaders:
    """Metadata to HTTP headers and back."""

    def test_metadata_to_headers(self) -> None:
        """Binary values are base64-encoded and the prefix is applied."""
        md = Metadata([("a", "1"), ("b-bin", b"\x01\x02")])
        assert metadata_to_headers(md, prefix="trailer-") == [("trailer-a", "1"), ("trailer-b-bin", "AQI")]
        assert metadata_to_headers(None) == []

    def test_headers_to_metadata(self) -> None:
        """Trailer-prefixed headers become trailers; protocol headers are dropped."""
        leading, trailing = headers_to_metadata(
            [
                ("Content-Type", "application/proto"),
                ("Connect-Protocol-Version", "1"),
                ("X-Custom", "a, b"),
                ("Trailer-X-Other-Bin", "AQ, Ag"),
            ]
        )
        assert leading.items() == [("x-custom", "a, b")]
        assert trailing.items() == [("x-other-bin", b"\x01"), ("x-other-bin", b"\x02")]

    def test_split_values(self) -> None:
        """With split_values, joined plain values are split too."""
        leading, _ = headers_to_metadata([("x-custom", "a, b")], split_values=True)
        assert leading.get_all("x-custom") == ["a", "b"]

    def test_invalid_binary_header(self) -> None:
        """A malformed -bin value raises ValueError."""
        with pytest.raises(ValueError):
            headers_to_metadata([("x-bin", "@@@")])

    def test_timeouts(self) -> None:
        """Connect-Timeout-Ms values convert to and from seconds."""
        assert parse_timeout(None) is None
        assert parse_timeout("1500") == 1.5
        assert format_timeout(1.0) == "1000"
        assert format_timeout(0.0001) == "1"
        for bad in ("-1", "1.5", "abc", "12345678901"):
            with pytest.raises(RpcError) as exc_info:
                parse_timeout(bad)
            assert exc_info.value.code is Code.INVALID_ARGUMENT


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    """JSON error objects and end-stream messages."""

    def test_error_json(self) -> None:
        """Errors serialize as code, message and base64 detail values."""
        err = RpcError.with_details(Code.RESOURCE_EXHAUSTED, NON_ASCII_ERROR_MESSAGE, error_detail())
        obj = error_to_json(err)
        assert obj["code"] == "resource_exhausted"
        assert obj["message"] == NON_ASCII_ERROR_MESSAGE
        (detail,) = obj["details"]
        assert detail["type"] == "grpc.testing.ErrorDetail"
        parsed = error_from_json(json.loads(json.dumps(obj)))
        assert parsed.code is Code.RESOURCE_EXHAUSTED
        assert parsed.unpack_details(ErrorDetail) == [error_detail()]

    def test_error_json_omits_empty(self) -> None:
        """A bare code serializes without message or details."""
        assert error_to_json(RpcError(Code.CANCELLED)) == {"code": "canceled"}

    def test_error_from_json_http_fallback(self) -> None:
        """Without a code, the HTTP status decides."""
        assert error_from_json({}, http_status=404).code is Code.UNIMPLEMENTED
        assert error_from_json("not an object", http_status=503).code is Code.UNAVAILABLE
        assert error_from_json({}).code is Code.UNKNOWN

    def test_end_stream_ok_with_trailers(self) -> None:
        """A success end-stream carries only trailers."""
        trailers = Metadata([("t", "v"), (TRAILING_METADATA_KEY, b"\x0a\x0b")])
        ((flags, payload),) = list(iter_envelopes([encode_end_stream(None, trailers)]))
        assert flags == END_STREAM_FLAG
        error, decoded = decode_end_stream(payload, Metadata())
        assert error is None
        assert decoded == trailers

    def test_end_stream_error(self) -> None:
        """An error end-stream carries the status, and the trailers ride on the error."""
        trailers = Metadata([("t", "v")])
        raw = encode_end_stream(RpcError(Code.UNKNOWN, "bad"), trailers)
        error, decoded = decode_end_stream(raw[5:], Metadata([("h", "1")]))
        assert error is not None
        assert error.code is Code.UNKNOWN
        assert error.message == "bad"
        assert error.trailers == trailers
        assert error.headers == Metadata([("h", "1")])

    def test_end_stream_malformed(self) -> None:
        """A non-JSON end-stream payload is INTERNAL."""
        with pytest.raises(RpcError) as exc_info:
            decode_end_stream(b"not json", Metadata())
        assert exc_info.value.code is Code.INTERNAL


# ---------------------------------------------------------------------------
# Falcon app
# ---------------------------------------------------------------------------


@pytest.fixture
def app_client() -> falcon.testing.TestClient:
    """TestClient around a Connect app serving the reference implementation."""
    return falcon.testing.TestClient(make_wsgi_app(TestServiceImpl(server_id="falcon")))


def _post_unary(client: falcon.testing.TestClient, method: str, message: Any, **headers: str) -> Any:
    return client.simulate_post(
        f"{_SERVICE}/{method}",
        body=message.SerializeToString(),
        headers={"Content-Type": UNARY_CONTENT_TYPE, **headers},
    )


def _post_stream(client: falcon.testing.TestClient, method: str, *messages: Any) -> Any:
    body = b"".join(encode_envelope(m.SerializeToString()) for m in messages)
    return client.simulate_post(f"{_SERVICE}/{method}", body=body, headers={"Content-Type": STREAM_CONTENT_TYPE})


class TestApp:
    """The Connect resource end to end, without a network."""

    def test_empty_call(self, app_client: falcon.testing.TestClient) -> None:
        """EmptyCall answers 200 with an empty proto body."""
        result = _post_unary(app_client, "EmptyCall", Empty())
        assert result.status_code == 200
        assert result.headers["content-type"] == UNARY_CONTENT_TYPE
        assert result.content == b""

    def test_unary_echo(self, app_client: falcon.testing.TestClient) -> None:
        """Echo metadata comes back as headers and trailer- headers."""
        result = _post_unary(
            app_client,
            "UnaryCall",
            SimpleRequest(response_type=COMPRESSABLE, response_size=3),
            **{LEADING_METADATA_KEY: "hello", TRAILING_METADATA_KEY: "CgsKCwoL"},
        )
        assert result.status_code == 200
        assert len(SimpleResponse.FromString(result.content).payload.body) == 3
        assert result.headers[LEADING_METADATA_KEY] == "hello"
        assert result.headers[f"trailer-{TRAILING_METADATA_KEY}"] == "CgsKCwoL"
        assert result.headers["request-protocol"] == "connect"

    def test_unary_error(self, app_client: falcon.testing.TestClient) -> None:
        """FailUnaryCall answers 429 with a JSON error and one detail."""
        result = _post_unary(app_client, "FailUnaryCall", SimpleRequest())
        assert result.status_code == 429
        body = result.json
        assert body["code"] == "resource_exhausted"
        assert body["message"] == NON_ASCII_ERROR_MESSAGE
        assert len(body["details"]) == 1

    def test_echo_status_http_mapping(self, app_client: falcon.testing.TestClient) -> None:
        """An echoed UNKNOWN status answers 500 with the message intact."""
        result = _post_unary(app_client, "UnaryCall", SimpleRequest(response_status=EchoStatus(code=2, message="m")))
        assert result.status_code == 500
        assert result.json == {"code": "unknown", "message": "m"}

    def test_malformed_body(self, app_client: falcon.testing.TestClient) -> None:
        """An undecodable request is INVALID_ARGUMENT."""
        result = app_client.simulate_post(
            f"{_SERVICE}/UnaryCall", body=b"\xff\xff\xff", headers={"Content-Type": UNARY_CONTENT_TYPE}
        )
        assert result.status_code == 400
        assert result.json["code"] == "invalid_argument"

    def test_invalid_timeout(self, app_client: falcon.testing.TestClient) -> None:
        """A malformed Connect-Timeout-Ms is INVALID_ARGUMENT."""
        result = _post_unary(app_client, "EmptyCall", Empty(), **{"Connect-Timeout-Ms": "soon"})
        assert result.status_code == 400
        assert result.json["code"] == "invalid_argument"

    @pytest.mark.parametrize(
        "path",
        [
            f"{_SERVICE}/UnimplementedCall",
            f"{_SERVICE}/NoSuchMethod",
            "/grpc.testing.UnimplementedService/UnimplementedCall",
        ],
    )
    def test_unimplemented(self, app_client: falcon.testing.TestClient, path: str) -> None:
        """Unknown methods and services are 404 with code unimplemented."""
        result = app_client.simulate_post(path, body=b"", headers={"Content-Type": UNARY_CONTENT_TYPE})
        assert result.status_code == 404
        assert result.json["code"] == "unimplemented"

    def test_wrong_content_type(self, app_client: falcon.testing.TestClient) -> None:
        """A unary call with the streaming content type is 415."""
        result = app_client.simulate_post(
            f"{_SERVICE}/EmptyCall", body=b"", headers={"Content-Type": STREAM_CONTENT_TYPE}
        )
        assert result.status_code == 415

    def test_get_cacheable(self, app_client: falcon.testing.TestClient) -> None:
        """CacheableUnaryCall works over GET and says so in a header."""
        request = SimpleRequest(response_type=COMPRESSABLE, response_size=2)
        message = base64.urlsafe_b64encode(request.SerializeToString()).decode().rstrip("=")
        result = app_client.simulate_get(
            f"{_SERVICE}/CacheableUnaryCall",
            query_string=f"message={message}&encoding=proto&base64=1&connect=v1",
        )
        assert result.status_code == 200
        assert result.headers["get-request"] == "true"
        assert len(SimpleResponse.FromString(result.content).payload.body) == 2

    def test_get_not_allowed_with_side_effects(self, app_client: falcon.testing.TestClient) -> None:
        """GET is refused for methods that may have side effects."""
        result = app_client.simulate_get(f"{_SERVICE}/UnaryCall", query_string="message=&encoding=proto")
        assert result.status_code == 405

    def test_server_stream(self, app_client: falcon.testing.TestClient) -> None:
        """Responses arrive as envelopes followed by an end-stream with the trailers."""
        request = StreamingOutputCallRequest(
            response_type=COMPRESSABLE, response_parameters=[ResponseParameters(size=s) for s in (1, 4)]
        )
        result = _post_stream(app_client, "StreamingOutputCall", request)
        assert result.status_code == 200
        assert result.headers["content-type"] == STREAM_CONTENT_TYPE
        envelopes = list(iter_envelopes([result.content]))
        assert [len(StreamingOutputCallResponse.FromString(p).payload.body) for _, p in envelopes[:-1]] == [1, 4]
        flags, payload = envelopes[-1]
        assert flags == END_STREAM_FLAG
        assert decode_end_stream(payload, Metadata()) == (None, Metadata())

    def test_server_stream_error_after_responses(self, app_client: falcon.testing.TestClient) -> None:
        """A failing stream still answers 200; the error is in the end-stream message."""
        request = StreamingOutputCallRequest(response_parameters=[ResponseParameters(size=1)])
        result = _post_stream(app_client, "FailStreamingOutputCall", request)
        assert result.status_code == 200
        envelopes = list(iter_envelopes([result.content]))
        assert len(envelopes) == 2
        error, _ = decode_end_stream(envelopes[-1][1], Metadata())
        assert error is not None
        assert error.code is Code.RESOURCE_EXHAUSTED
        assert error.unpack_details(ErrorDetail) == [error_detail()]

    def test_server_stream_requires_one_request(self, app_client: falcon.testing.TestClient) -> None:
        """A server-streaming call with two request messages is INVALID_ARGUMENT."""
        request = StreamingOutputCallRequest()
        result = _post_stream(app_client, "StreamingOutputCall", request, request)
        error, _ = decode_end_stream(list(iter_envelopes([result.content]))[-1][1], Metadata())
        assert error is not None
        assert error.code is Code.INVALID_ARGUMENT

    def test_half_duplex_bidi(self, app_client: falcon.testing.TestClient) -> None:
        """A bidi call answers every buffered request in order."""
        requests = [
            StreamingOutputCallRequest(response_parameters=[ResponseParameters(size=s)]) for s in (2, 3)
        ]
        result = _post_stream(app_client, "HalfDuplexCall", *requests)
        envelopes = list(iter_envelopes([result.content]))
        sizes = [len(StreamingOutputCallResponse.FromString(p).payload.body) for f, p in envelopes if f == 0]
        assert sizes == [2, 3]
