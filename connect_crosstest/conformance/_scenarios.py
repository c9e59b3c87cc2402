# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The scenario catalogue.

Every scenario is a client-side procedure ``fn(t, client, options)`` that
drives the test service through the RPC facade and reports through the
reporter ``t``.  Scenarios are registered with :func:`_scenario` under
``category.name`` and declare the client capabilities they need; the
harness skips a scenario the client cannot run.

Assertions use :func:`expect` (non-fatal) for individual checks and
:func:`require` or ``t.fatalf`` (fatal) for prerequisites the rest of the
procedure depends on.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TextIO

from connect_crosstest.codes import Code
from connect_crosstest.messages import (
    COMPRESSABLE,
    EchoStatus,
    Empty,
    ErrorDetail,
    ResponseParameters,
    SimpleRequest,
    SimpleResponse,
    StreamingInputCallRequest,
    StreamingOutputCallRequest,
)
from connect_crosstest.metadata import LEADING_METADATA_KEY, TRAILING_METADATA_KEY, Metadata, MetadataValue
from connect_crosstest.rpc import Capability, RpcClient, RpcError

from ._fixtures import (
    CANCEL_REQUEST_SIZE,
    CANCEL_RESPONSE_SIZE,
    DEFAULT_SIZES,
    DUPLICATE_LEADING_METADATA_VALUE,
    DUPLICATE_TRAILING_METADATA_VALUE,
    LEADING_METADATA_VALUE,
    NON_ASCII_ERROR_MESSAGE,
    PICK_FIRST_CALLS,
    SLEEPING_SERVER_PAYLOAD_SIZE,
    SPECIAL_STATUS_MESSAGE,
    STATUS_MESSAGE,
    TRAILING_METADATA_VALUE,
    UNRESOLVABLE_HOST,
    SizeDialect,
    client_payload,
    error_detail,
)
from ._histogram import Histogram
from ._protocol import TEST_SERVICE_METHODS, UNIMPLEMENTED_SERVICE_METHODS
from ._reporter import Reporter, expect, expect_equal, require

_soak_logger = logging.getLogger("connect_crosstest.soak")

_T = TEST_SERVICE_METHODS
_U = UNIMPLEMENTED_SERVICE_METHODS

# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SoakOptions:
    """Tuning of the soak scenario.

    Attributes:
        iterations: Number of large-unary calls to make.
        max_failures: Failed iterations tolerated before the scenario fails.
        per_iteration_max_latency_ms: Latency above which a successful
            call still counts as a failed iteration.
        overall_timeout_s: Time budget for all iterations together.
        reset_channel: Build a fresh client for every iteration.

    Raises:
        ValueError: If any count or limit is negative, or the timeout is
            not positive.

    """

    iterations: int = 10
    max_failures: int = 0
    per_iteration_max_latency_ms: int = 1000
    overall_timeout_s: float = 10.0
    reset_channel: bool = False

    def __post_init__(self) -> None:
        """Validate the limits."""
        if self.iterations < 0 or self.max_failures < 0 or self.per_iteration_max_latency_ms < 0:
            raise ValueError("soak iterations, max_failures and per_iteration_max_latency_ms must be non-negative")
        if self.overall_timeout_s <= 0:
            raise ValueError(f"soak overall_timeout_s must be positive, got {self.overall_timeout_s}")


@dataclass(frozen=True)
class ScenarioOptions:
    """Knobs the harness passes to every scenario.

    Attributes:
        sizes: Payload size dialect.
        soak: Soak scenario tuning.
        unresolvable_host: Host name the unresolvable-host scenario dials.
        diagnostic_stream: Where the soak scenario writes its per-iteration
            lines and histogram; ``sys.stderr`` when ``None``.

    """

    sizes: SizeDialect = DEFAULT_SIZES
    soak: SoakOptions = field(default_factory=SoakOptions)
    unresolvable_host: str = UNRESOLVABLE_HOST
    diagnostic_stream: TextIO | None = None


ScenarioFn = Callable[[Reporter, RpcClient, ScenarioOptions], None]

# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Scenario:
    """A registered scenario."""

    category: str
    name: str
    fn: ScenarioFn
    requires: frozenset[Capability] = frozenset()
    timeout: Callable[[ScenarioOptions], float] | None = None

    @property
    def full_name(self) -> str:
        """Return category.name format."""
        return f"{self.category}.{self.name}"


_SCENARIOS: list[_Scenario] = []


def _scenario(
    *,
    category: str,
    name: str,
    requires: Sequence[Capability] = (),
    timeout: Callable[[ScenarioOptions], float] | None = None,
) -> Callable[[ScenarioFn], ScenarioFn]:
    """Register a scenario function."""

    def decorator(fn: ScenarioFn) -> ScenarioFn:
        _SCENARIOS.append(_Scenario(category=category, name=name, fn=fn, requires=frozenset(requires), timeout=timeout))
        return fn

    return decorator


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _expect_code(t: Reporter, client: RpcClient, exc: BaseException, expected: Code) -> bool:
    t.helper()
    actual = client.code_of(exc)
    return expect(t, actual is expected, "expected code %s, got %s (%s)", expected.name, actual.name, exc)


def _expect_failure(
    t: Reporter, client: RpcClient, call: Callable[[], Any], expected: Code, what: str
) -> RpcError | None:
    """Run *call*, which must fail with *expected*; return the error when it does."""
    t.helper()
    try:
        call()
    except RpcError as exc:
        if _expect_code(t, client, exc, expected):
            return exc
        return None
    t.errorf("%s succeeded, expected %s", what, expected.name)
    return None


def _expect_non_ascii_error(t: Reporter, client: RpcClient, err: RpcError) -> None:
    """Check the fixed ``RESOURCE_EXHAUSTED`` error and its single detail."""
    t.helper()
    _expect_code(t, client, err, Code.RESOURCE_EXHAUSTED)
    expect_equal(t, NON_ASCII_ERROR_MESSAGE, err.message, "error message")
    if expect_equal(t, 1, len(err.details), "number of error details"):
        details = err.unpack_details(ErrorDetail)
        if expect_equal(t, 1, len(details), "number of ErrorDetail details"):
            expect_equal(t, error_detail(), details[0], "error detail")


def _response_parameters(sizes: Sequence[int]) -> list[Any]:
    return [ResponseParameters(size=size) for size in sizes]


def _drain(stream: Any) -> list[Any]:
    """Receive until a clean end of stream."""
    messages: list[Any] = []
    while (message := stream.receive()) is not None:
        messages.append(message)
    return messages


def _echo_request_headers(leading: Sequence[str], trailing: Sequence[bytes]) -> Metadata:
    md = Metadata()
    for value in leading:
        md.add(LEADING_METADATA_KEY, value)
    for value in trailing:
        md.add(TRAILING_METADATA_KEY, value)
    return md


def _expect_echoed(
    t: Reporter,
    md: Metadata,
    key: str,
    expected: Sequence[MetadataValue],
    where: str,
    *,
    split_joined: bool = False,
) -> None:
    """Check that *md* holds the *expected* values under *key*, as a set with equal cardinality.

    With *split_joined*, a single comma-separated value is split back apart
    before comparing.
    """
    t.helper()
    actual = md.get_all(key)
    if split_joined and len(actual) != len(expected) and len(actual) == 1 and isinstance(actual[0], str):
        actual = list(actual[0].split(", "))
    if not expect_equal(t, len(expected), len(actual), f"number of {key} values in {where}"):
        return
    for value in actual:
        expect(t, value in expected, "unexpected %s value in %s: %r", key, where, value)
    for value in expected:
        expect(t, value in actual, "missing %s value in %s: %r", key, where, value)


def _expect_metadata_echo(
    t: Reporter,
    client: RpcClient,
    headers: Metadata,
    trailers: Metadata,
    leading: Sequence[str],
    trailing: Sequence[bytes],
) -> None:
    t.helper()
    # HTTP/1.1 allows repeated response headers to arrive joined with ", ";
    # gRPC metadata keeps every value separate.
    split_joined = client.protocol == "connect"
    _expect_echoed(t, headers, LEADING_METADATA_KEY, leading, "response headers", split_joined=split_joined)
    _expect_echoed(t, trailers, TRAILING_METADATA_KEY, trailing, "response trailers", split_joined=split_joined)


def _large_unary_request(sizes: SizeDialect) -> Any:
    return SimpleRequest(
        response_type=COMPRESSABLE,
        response_size=sizes.large_response_size,
        payload=client_payload(sizes.large_request_size),
    )


# ---------------------------------------------------------------------------
# Unary
# ---------------------------------------------------------------------------


@_scenario(category="unary", name="empty_unary")
def _empty_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    result = client.unary(_T["EmptyCall"], Empty())
    expect_equal(t, Empty(), result.message, "EmptyCall response")
    t.successf("successful empty unary")


@_scenario(category="unary", name="large_unary")
def _large_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    sizes = options.sizes
    reply = client.unary(_T["UnaryCall"], _large_unary_request(sizes)).message
    expect_equal(t, COMPRESSABLE, reply.payload.type, "response payload type")
    expect_equal(t, sizes.large_response_size, len(reply.payload.body), "response payload length")
    t.successf("successful large unary")


@_scenario(category="unary", name="cacheable_unary")
def _cacheable_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    payload = client_payload(1)
    request = SimpleRequest(response_type=COMPRESSABLE, response_size=1, payload=payload)
    result = client.unary(_T["CacheableUnaryCall"], request)
    expect_equal(t, SimpleResponse(payload=payload), result.message, "CacheableUnaryCall response")
    if result.headers.get("request-protocol") == "connect":
        expect_equal(t, "true", result.headers.get("get-request"), "get-request header")
    t.successf("successful cacheable unary")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


@_scenario(category="streaming", name="client_streaming", requires=[Capability.CLIENT_STREAM])
def _client_streaming(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    stream = client.client_stream(_T["StreamingInputCall"])
    total = 0
    for size in options.sizes.request_sizes:
        stream.send(StreamingInputCallRequest(payload=client_payload(size)))
        total += size
    reply = stream.close_and_receive().message
    expect_equal(t, total, reply.aggregated_payload_size, "aggregated payload size")
    t.successf("successful client streaming")


@_scenario(category="streaming", name="server_streaming")
def _server_streaming(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    sizes = options.sizes.response_sizes
    request = StreamingOutputCallRequest(response_type=COMPRESSABLE, response_parameters=_response_parameters(sizes))
    stream = client.server_stream(_T["StreamingOutputCall"], request)
    try:
        count = 0
        while (reply := stream.receive()) is not None:
            if count < len(sizes):
                expect_equal(t, COMPRESSABLE, reply.payload.type, f"payload type of response {count}")
                expect_equal(t, sizes[count], len(reply.payload.body), f"payload length of response {count}")
            count += 1
    finally:
        stream.close()
    expect_equal(t, len(sizes), count, "number of responses")
    t.successf("successful server streaming")


@_scenario(category="streaming", name="ping_pong", requires=[Capability.FULL_DUPLEX])
def _ping_pong(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    sizes = options.sizes
    stream = client.bidi(_T["FullDuplexCall"])
    try:
        for i, (request_size, response_size) in enumerate(zip(sizes.request_sizes, sizes.response_sizes, strict=True)):
            stream.send(
                StreamingOutputCallRequest(
                    response_type=COMPRESSABLE,
                    response_parameters=_response_parameters([response_size]),
                    payload=client_payload(request_size),
                )
            )
            reply = stream.receive()
            if reply is None:
                t.fatalf("stream ended before response %d", i)
            expect_equal(t, COMPRESSABLE, reply.payload.type, f"payload type of response {i}")
            expect_equal(t, response_size, len(reply.payload.body), f"payload length of response {i}")
        stream.close_send()
        expect(t, stream.receive() is None, "expected end of stream after closing the send side")
    finally:
        stream.close()
    t.successf("successful ping pong")


@_scenario(category="streaming", name="empty_stream", requires=[Capability.HALF_DUPLEX])
def _empty_stream(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    stream = client.bidi(_T["FullDuplexCall"])
    try:
        stream.close_send()
        expect(t, stream.receive() is None, "expected end of stream on an empty stream")
    finally:
        stream.close()
    t.successf("successful empty stream")


# ---------------------------------------------------------------------------
# Deadlines and cancellation
# ---------------------------------------------------------------------------


@_scenario(category="deadline", name="timeout_on_sleeping_server", requires=[Capability.FULL_DUPLEX])
def _timeout_on_sleeping_server(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    stream = client.bidi(_T["FullDuplexCall"], timeout=1.0)
    try:
        try:
            stream.send(
                StreamingOutputCallRequest(
                    response_type=COMPRESSABLE, payload=client_payload(SLEEPING_SERVER_PAYLOAD_SIZE)
                )
            )
        except RpcError as exc:
            # The deadline may fire before the first message goes out.
            _expect_code(t, client, exc, Code.DEADLINE_EXCEEDED)
            t.successf("successful timeout on sleeping server (deadline hit on send)")
            return
        time.sleep(1.0)
        _expect_failure(t, client, stream.receive, Code.DEADLINE_EXCEEDED, "receive past the deadline")
    finally:
        stream.close()
    t.successf("successful timeout on sleeping server")


@_scenario(category="cancel", name="cancel_after_begin", requires=[Capability.CLIENT_STREAM])
def _cancel_after_begin(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    headers = Metadata([("key1", "value1"), ("key2", "value2")])
    stream = client.client_stream(_T["StreamingInputCall"], headers=headers)
    stream.cancel()
    _expect_failure(t, client, stream.close_and_receive, Code.CANCELLED, "close_and_receive after cancel")
    t.successf("successful cancel after begin")


@_scenario(category="cancel", name="cancel_after_first_response", requires=[Capability.FULL_DUPLEX])
def _cancel_after_first_response(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    stream = client.bidi(_T["FullDuplexCall"])
    try:
        stream.send(
            StreamingOutputCallRequest(
                response_type=COMPRESSABLE,
                response_parameters=_response_parameters([CANCEL_RESPONSE_SIZE]),
                payload=client_payload(CANCEL_REQUEST_SIZE),
            )
        )
        reply = stream.receive()
        require(t, reply is not None, "stream ended before the first response")
        expect_equal(t, CANCEL_RESPONSE_SIZE, len(reply.payload.body), "payload length of the first response")
        stream.cancel()
        _expect_failure(t, client, stream.receive, Code.CANCELLED, "receive after cancel")
    finally:
        stream.close()
    t.successf("successful cancel after first response")


# ---------------------------------------------------------------------------
# Metadata echo
# ---------------------------------------------------------------------------


def _metadata_unary(t: Reporter, client: RpcClient, leading: Sequence[str], trailing: Sequence[bytes]) -> None:
    request = SimpleRequest(response_type=COMPRESSABLE, response_size=1, payload=client_payload(1))
    result = client.unary(_T["UnaryCall"], request, headers=_echo_request_headers(leading, trailing))
    expect_equal(t, 1, len(result.message.payload.body), "response payload length")
    _expect_metadata_echo(t, client, result.headers, result.trailers, leading, trailing)


def _metadata_server_streaming(
    t: Reporter, client: RpcClient, leading: Sequence[str], trailing: Sequence[bytes]
) -> None:
    request = StreamingOutputCallRequest(response_type=COMPRESSABLE, response_parameters=_response_parameters([1]))
    stream = client.server_stream(_T["StreamingOutputCall"], request, headers=_echo_request_headers(leading, trailing))
    try:
        replies = _drain(stream)
    finally:
        stream.close()
    if expect_equal(t, 1, len(replies), "number of responses"):
        expect_equal(t, 1, len(replies[0].payload.body), "response payload length")
    _expect_metadata_echo(t, client, stream.headers(), stream.trailers(), leading, trailing)


def _metadata_full_duplex(t: Reporter, client: RpcClient, leading: Sequence[str], trailing: Sequence[bytes]) -> None:
    stream = client.bidi(_T["FullDuplexCall"], headers=_echo_request_headers(leading, trailing))
    try:
        stream.send(
            StreamingOutputCallRequest(
                response_type=COMPRESSABLE,
                response_parameters=_response_parameters([1]),
                payload=client_payload(1),
            )
        )
        reply = stream.receive()
        require(t, reply is not None, "stream ended before the response")
        expect_equal(t, 1, len(reply.payload.body), "response payload length")
        stream.close_send()
        expect(t, stream.receive() is None, "expected end of stream after closing the send side")
    finally:
        stream.close()
    _expect_metadata_echo(t, client, stream.headers(), stream.trailers(), leading, trailing)


_SINGLE = ([LEADING_METADATA_VALUE], [TRAILING_METADATA_VALUE])
_DUPLICATED = (
    [LEADING_METADATA_VALUE, DUPLICATE_LEADING_METADATA_VALUE],
    [TRAILING_METADATA_VALUE, DUPLICATE_TRAILING_METADATA_VALUE],
)


@_scenario(category="metadata", name="custom_metadata_unary")
def _custom_metadata_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_unary(t, client, *_SINGLE)
    t.successf("successful custom metadata unary")


@_scenario(category="metadata", name="custom_metadata_server_streaming")
def _custom_metadata_server_streaming(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_server_streaming(t, client, *_SINGLE)
    t.successf("successful custom metadata server streaming")


@_scenario(category="metadata", name="custom_metadata_full_duplex", requires=[Capability.HALF_DUPLEX])
def _custom_metadata_full_duplex(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_full_duplex(t, client, *_SINGLE)
    t.successf("successful custom metadata full duplex")


@_scenario(category="metadata", name="duplicated_custom_metadata_unary")
def _duplicated_custom_metadata_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_unary(t, client, *_DUPLICATED)
    t.successf("successful duplicated custom metadata unary")


@_scenario(category="metadata", name="duplicated_custom_metadata_server_streaming")
def _duplicated_custom_metadata_server_streaming(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_server_streaming(t, client, *_DUPLICATED)
    t.successf("successful duplicated custom metadata server streaming")


@_scenario(category="metadata", name="duplicated_custom_metadata_full_duplex", requires=[Capability.HALF_DUPLEX])
def _duplicated_custom_metadata_full_duplex(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _metadata_full_duplex(t, client, *_DUPLICATED)
    t.successf("successful duplicated custom metadata full duplex")


# ---------------------------------------------------------------------------
# Status echo
# ---------------------------------------------------------------------------


def _expect_echoed_status(t: Reporter, client: RpcClient, err: RpcError | None, message: str) -> None:
    t.helper()
    if err is not None:
        expect_equal(t, message, err.message, "status message")


@_scenario(category="status", name="status_code_and_message_unary")
def _status_code_and_message_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    request = SimpleRequest(response_status=EchoStatus(code=Code.UNKNOWN, message=STATUS_MESSAGE))
    err = _expect_failure(t, client, lambda: client.unary(_T["UnaryCall"], request), Code.UNKNOWN, "UnaryCall")
    _expect_echoed_status(t, client, err, STATUS_MESSAGE)
    t.successf("successful code and message")


@_scenario(category="status", name="status_code_and_message_full_duplex", requires=[Capability.HALF_DUPLEX])
def _status_code_and_message_full_duplex(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    stream = client.bidi(_T["FullDuplexCall"])
    try:
        stream.send(StreamingOutputCallRequest(response_status=EchoStatus(code=Code.UNKNOWN, message=STATUS_MESSAGE)))
        stream.close_send()
        err = _expect_failure(t, client, stream.receive, Code.UNKNOWN, "receive")
    finally:
        stream.close()
    _expect_echoed_status(t, client, err, STATUS_MESSAGE)
    t.successf("successful code and message")


@_scenario(category="status", name="special_status_message")
def _special_status_message(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    request = SimpleRequest(response_status=EchoStatus(code=Code.UNKNOWN, message=SPECIAL_STATUS_MESSAGE))
    err = _expect_failure(
        t, client, lambda: client.unary(_T["UnaryCall"], request, timeout=10.0), Code.UNKNOWN, "UnaryCall"
    )
    _expect_echoed_status(t, client, err, SPECIAL_STATUS_MESSAGE)
    t.successf("successful special status message")


# ---------------------------------------------------------------------------
# Unimplemented
# ---------------------------------------------------------------------------


def _unimplemented_stream(t: Reporter, client: RpcClient, method_name: str, methods: Any) -> None:
    stream = client.server_stream(methods[method_name], Empty())
    try:
        _expect_failure(t, client, lambda: _drain(stream), Code.UNIMPLEMENTED, method_name)
    finally:
        stream.close()


@_scenario(category="unimplemented", name="unimplemented_method")
def _unimplemented_method(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    call = lambda: client.unary(_T["UnimplementedCall"], Empty())  # noqa: E731
    _expect_failure(t, client, call, Code.UNIMPLEMENTED, "UnimplementedCall")
    t.successf("successful unimplemented method")


@_scenario(category="unimplemented", name="unimplemented_server_streaming_method")
def _unimplemented_server_streaming_method(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _unimplemented_stream(t, client, "UnimplementedStreamingOutputCall", _T)
    t.successf("successful unimplemented server streaming method")


@_scenario(category="unimplemented", name="unimplemented_service")
def _unimplemented_service(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    call = lambda: client.unary(_U["UnimplementedCall"], Empty())  # noqa: E731
    _expect_failure(t, client, call, Code.UNIMPLEMENTED, "UnimplementedService.UnimplementedCall")
    t.successf("successful unimplemented service")


@_scenario(category="unimplemented", name="unimplemented_server_streaming_service")
def _unimplemented_server_streaming_service(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    _unimplemented_stream(t, client, "UnimplementedStreamingOutputCall", _U)
    t.successf("successful unimplemented server streaming service")


# ---------------------------------------------------------------------------
# Error details
# ---------------------------------------------------------------------------


@_scenario(category="errors", name="fail_with_non_ascii_error")
def _fail_with_non_ascii_error(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    request = SimpleRequest(response_type=COMPRESSABLE)
    try:
        client.unary(_T["FailUnaryCall"], request)
    except RpcError as exc:
        _expect_non_ascii_error(t, client, exc)
    else:
        t.fatalf("FailUnaryCall succeeded")
    t.successf("successful fail call with non-ASCII error")


@_scenario(category="errors", name="fail_server_streaming_with_non_ascii_error")
def _fail_server_streaming_with_non_ascii_error(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    request = StreamingOutputCallRequest(response_type=COMPRESSABLE)
    stream = client.server_stream(_T["FailStreamingOutputCall"], request)
    try:
        _drain(stream)
    except RpcError as exc:
        _expect_non_ascii_error(t, client, exc)
    else:
        t.fatalf("FailStreamingOutputCall ended without an error")
    finally:
        stream.close()
    t.successf("successful fail server streaming with non-ASCII error")


@_scenario(category="errors", name="fail_server_streaming_after_response")
def _fail_server_streaming_after_response(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    sizes = options.sizes.response_sizes
    request = StreamingOutputCallRequest(response_type=COMPRESSABLE, response_parameters=_response_parameters(sizes))
    stream = client.server_stream(_T["FailStreamingOutputCall"], request)
    try:
        for i, size in enumerate(sizes):
            try:
                reply = stream.receive()
            except RpcError as exc:
                t.fatalf("receive %d failed before all responses arrived: %s", i, exc)
            require(t, reply is not None, "stream ended after %d of %d responses", i, len(sizes))
            expect_equal(t, size, len(reply.payload.body), f"payload length of response {i}")
        try:
            stream.receive()
        except RpcError as exc:
            _expect_non_ascii_error(t, client, exc)
        else:
            t.fatalf("FailStreamingOutputCall ended without an error")
    finally:
        stream.close()
    t.successf("successful fail server streaming after response")


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@_scenario(category="transport", name="unresolvable_host")
def _unresolvable_host(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    try:
        bad_client = client.clone(host=options.unresolvable_host)
    except Exception as exc:
        t.fatalf("could not build a client for %s: %s", options.unresolvable_host, exc)
    try:
        call = lambda: bad_client.unary(_T["EmptyCall"], Empty(), timeout=10.0)  # noqa: E731
        _expect_failure(t, client, call, Code.UNAVAILABLE, "EmptyCall to an unresolvable host")
    finally:
        bad_client.close()
    t.successf("successful unresolvable host")


# ---------------------------------------------------------------------------
# Soak
# ---------------------------------------------------------------------------


def _soak_iteration(client: RpcClient, sizes: SizeDialect, reset_channel: bool) -> tuple[int, str | None]:
    """Run one large-unary call; return its latency in ms and the failure, if any."""
    iteration_client = client.clone() if reset_channel else client
    try:
        start = time.monotonic()
        try:
            reply = iteration_client.unary(_T["UnaryCall"], _large_unary_request(sizes)).message
        except RpcError as exc:
            error: str | None = str(exc)
        else:
            error = None
            if reply.payload.type != COMPRESSABLE:
                error = f"response payload type {reply.payload.type}, expected {COMPRESSABLE}"
            elif len(reply.payload.body) != sizes.large_response_size:
                error = f"response payload length {len(reply.payload.body)}, expected {sizes.large_response_size}"
        latency_ms = int((time.monotonic() - start) * 1000)
    finally:
        if iteration_client is not client:
            iteration_client.close()
    return latency_ms, error


def _soak_timeout(options: ScenarioOptions) -> float:
    return options.soak.overall_timeout_s + 30.0


@_scenario(category="soak", name="soak", timeout=_soak_timeout)
def _soak(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    soak = options.soak
    out = options.diagnostic_stream if options.diagnostic_stream is not None else sys.stderr

    def emit(line: str) -> None:
        print(line, file=out, flush=True)
        _soak_logger.debug(line)

    histogram = Histogram()
    deadline = time.monotonic() + soak.overall_timeout_s
    done = 0
    failures = 0
    for i in range(soak.iterations):
        if time.monotonic() >= deadline:
            break
        done += 1
        latency_ms, error = _soak_iteration(client, options.sizes, soak.reset_channel)
        histogram.add(latency_ms)
        if error is not None:
            failures += 1
            emit(f"soak iteration: {i} elapsed_ms: {latency_ms} failed: {error}")
        elif latency_ms > soak.per_iteration_max_latency_ms:
            failures += 1
            emit(
                f"soak iteration: {i} elapsed_ms: {latency_ms} exceeds max acceptable latency: "
                f"{soak.per_iteration_max_latency_ms}"
            )
        else:
            emit(f"soak iteration: {i} elapsed_ms: {latency_ms} succeeded")
    emit("Histogram of per-iteration latencies in milliseconds:")
    emit(histogram.format())
    emit(
        f"soak test ran: {done} / {soak.iterations} iterations. total failures: {failures}. "
        f"max failures threshold: {soak.max_failures}. See breakdown above for which iterations succeeded, "
        "failed, and why for more info."
    )
    expect(
        t,
        done >= soak.iterations,
        "soak test consumed all %.1fs of time and quit early, only completed %d of %d desired iterations",
        soak.overall_timeout_s,
        done,
        soak.iterations,
    )
    expect(
        t,
        failures <= soak.max_failures,
        "soak test total failures: %d exceeds max failures threshold: %d",
        failures,
        soak.max_failures,
    )
    t.successf("successful soak: %d iterations, %d failures", done, failures)


# ---------------------------------------------------------------------------
# Diagnostic
# ---------------------------------------------------------------------------


@_scenario(category="diagnostic", name="pick_first_unary")
def _pick_first_unary(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    request = SimpleRequest(
        response_type=COMPRESSABLE, response_size=1, payload=client_payload(1), fill_server_id=True
    )
    server_id: str | None = None
    for i in range(PICK_FIRST_CALLS):
        reply = client.unary(_T["UnaryCall"], request, timeout=10.0).message
        if not reply.server_id:
            t.fatalf("call %d: response carries an empty server id", i)
        if server_id is None:
            server_id = reply.server_id
        elif reply.server_id != server_id:
            t.fatalf("call %d: server id %r differs from the first call's %r", i, reply.server_id, server_id)
    t.successf("successful pick first: %d calls served by %s", PICK_FIRST_CALLS, server_id)
