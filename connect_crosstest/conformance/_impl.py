# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""TestServiceImpl, the reference implementation of the TestService Protocol.

Every method is stateless across calls: the only per-call state is the
request buffer of ``HalfDuplexCall`` and the running total of
``StreamingInputCall``.  Streaming bodies check the call scope before and
after each pause, so cancellation and deadlines surface at the next
suspension point.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator
from typing import Any

from connect_crosstest.codes import Code
from connect_crosstest.messages import (
    COMPRESSABLE,
    Empty,
    Payload,
    SimpleResponse,
    StreamingInputCallResponse,
    StreamingOutputCallResponse,
)
from connect_crosstest.metadata import LEADING_METADATA_KEY, TRAILING_METADATA_KEY
from connect_crosstest.rpc import RpcError, ServerCallContext

from ._fixtures import NON_ASCII_ERROR_MESSAGE, error_detail


def _server_payload(payload_type: int, size: int) -> Any:
    """Build a response payload, failing ``INVALID_ARGUMENT`` on bad input."""
    if payload_type != COMPRESSABLE:
        raise RpcError(Code.INVALID_ARGUMENT, f"unsupported payload type: {payload_type}")
    if size < 0:
        raise RpcError(Code.INVALID_ARGUMENT, f"requested a response with invalid length {size}")
    return Payload(type=COMPRESSABLE, body=bytes(size))


def _validate_parameters(payload_type: int, parameters: Iterable[Any]) -> None:
    if payload_type != COMPRESSABLE:
        raise RpcError(Code.INVALID_ARGUMENT, f"unsupported payload type: {payload_type}")
    for params in parameters:
        if params.size < 0:
            raise RpcError(Code.INVALID_ARGUMENT, f"requested a response with invalid length {params.size}")
        if params.interval_us < 0:
            raise RpcError(Code.INVALID_ARGUMENT, f"requested a negative response interval {params.interval_us}")


def _check_echo_status(request: Any) -> None:
    """Raise the echo-status carried by *request*, if it has a nonzero code."""
    if not request.HasField("response_status"):
        return
    status = request.response_status
    if status.code != 0:
        raise RpcError(Code.from_value(status.code), status.message)


def _echo_metadata(ctx: ServerCallContext) -> None:
    """Copy the echo keys from the request headers to the response headers and trailers."""
    for value in ctx.request_headers.get_all(LEADING_METADATA_KEY):
        ctx.response_headers.add(LEADING_METADATA_KEY, value)
    for value in ctx.request_headers.get_all(TRAILING_METADATA_KEY):
        ctx.response_trailers.add(TRAILING_METADATA_KEY, value)


def _stream_responses(payload_type: int, parameters: Iterable[Any], ctx: ServerCallContext) -> Iterator[Any]:
    for params in parameters:
        ctx.check()
        if params.interval_us > 0:
            ctx.sleep(params.interval_us / 1_000_000)
        ctx.check()
        yield StreamingOutputCallResponse(payload=_server_payload(payload_type, params.size))


class TestServiceImpl:
    """Reference implementation of ``grpc.testing.TestService``."""

    __test__ = False  # not a pytest test class

    def __init__(self, server_id: str | None = None) -> None:
        """Initialize with a server id reported to ``fill_server_id`` requests.

        Args:
            server_id: Identifier of this server instance; a random one when omitted.

        """
        self.server_id = server_id or uuid.uuid4().hex

    # ------------------------------------------------------------------
    # Unary
    # ------------------------------------------------------------------

    def EmptyCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Return an empty message."""
        return Empty()

    def UnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Return a payload of the requested size, echoing status and metadata."""
        _check_echo_status(request)
        payload = _server_payload(request.response_type, request.response_size)
        _echo_metadata(ctx)
        ctx.response_headers.add("request-protocol", ctx.protocol)
        response = SimpleResponse(payload=payload)
        if request.fill_server_id:
            response.server_id = self.server_id
        return response

    def FailUnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Always fail with ``RESOURCE_EXHAUSTED`` and one error detail."""
        raise RpcError.with_details(Code.RESOURCE_EXHAUSTED, NON_ASCII_ERROR_MESSAGE, error_detail())

    def CacheableUnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Same as ``UnaryCall``."""
        return self.UnaryCall(request, ctx)

    # ------------------------------------------------------------------
    # Server streaming
    # ------------------------------------------------------------------

    def StreamingOutputCall(self, request: Any, ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Stream one response per response parameter, then apply any echo-status."""
        _validate_parameters(request.response_type, request.response_parameters)
        _echo_metadata(ctx)
        yield from _stream_responses(request.response_type, request.response_parameters, ctx)
        _check_echo_status(request)

    def FailStreamingOutputCall(self, request: Any, ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Stream the requested responses, then fail with ``RESOURCE_EXHAUSTED``."""
        _validate_parameters(request.response_type, request.response_parameters)
        _echo_metadata(ctx)
        yield from _stream_responses(request.response_type, request.response_parameters, ctx)
        raise RpcError.with_details(Code.RESOURCE_EXHAUSTED, NON_ASCII_ERROR_MESSAGE, error_detail())

    # ------------------------------------------------------------------
    # Client streaming
    # ------------------------------------------------------------------

    def StreamingInputCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Any:  # noqa: N802
        """Sum the payload body lengths of every request."""
        total = 0
        for request in requests:
            ctx.check()
            total += len(request.payload.body)
        ctx.check()
        return StreamingInputCallResponse(aggregated_payload_size=total)

    # ------------------------------------------------------------------
    # Bidi
    # ------------------------------------------------------------------

    def FullDuplexCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Answer each request as it arrives; headers are flushed before the first read."""
        _echo_metadata(ctx)
        ctx.send_headers()
        for request in requests:
            ctx.check()
            _validate_parameters(request.response_type, request.response_parameters)
            yield from _stream_responses(request.response_type, request.response_parameters, ctx)
            _check_echo_status(request)

    def HalfDuplexCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Buffer every request until the client closes, then answer them in order."""
        _echo_metadata(ctx)
        buffered: list[Any] = []
        for request in requests:
            ctx.check()
            buffered.append(request)
        for request in buffered:
            _validate_parameters(request.response_type, request.response_parameters)
            yield from _stream_responses(request.response_type, request.response_parameters, ctx)
            _check_echo_status(request)
