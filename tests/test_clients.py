# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for client stream handles at the edges of a call's life."""

from __future__ import annotations

from typing import Any

import grpc
import pytest

from connect_crosstest.codes import Code
from connect_crosstest.conformance import TEST_SERVICE_METHODS
from connect_crosstest.grpc._client import _GrpcClientStream, _RequestQueue
from connect_crosstest.messages import StreamingInputCallRequest
from connect_crosstest.rpc import RpcClient, RpcError


class _FailedCall(grpc.RpcError, grpc.Call):
    """A finished grpcio call that ended with RESOURCE_EXHAUSTED."""

    def code(self) -> grpc.StatusCode:
        return grpc.StatusCode.RESOURCE_EXHAUSTED

    def details(self) -> str:
        return "quota spent"

    def initial_metadata(self) -> Any:
        return (("x-leading", "l"),)

    def trailing_metadata(self) -> Any:
        return (("x-trailing", "t"),)

    def is_active(self) -> bool:
        return False

    def time_remaining(self) -> float | None:
        return None

    def cancel(self) -> bool:
        return False

    def add_callback(self, callback: Any) -> bool:
        return False


class _DoneFuture:
    """Stands in for the future of a client-streaming call that already ended."""

    def __init__(self, exc: BaseException | None = None, *, cancelled: bool = False) -> None:
        self._exc = exc
        self._cancelled = cancelled

    def done(self) -> bool:
        return True

    def cancelled(self) -> bool:
        return self._cancelled

    def exception(self) -> BaseException | None:
        return self._exc


class TestGrpcClientStreamSend:
    """Sending on a gRPC client stream whose call has already ended."""

    def test_server_status_reaches_caller(self) -> None:
        """The status the server ended the call with is raised, not a generic error."""
        stream = _GrpcClientStream(_DoneFuture(_FailedCall()), _RequestQueue())
        with pytest.raises(RpcError) as exc_info:
            stream.send(StreamingInputCallRequest())
        err = exc_info.value
        assert err.code is Code.RESOURCE_EXHAUSTED
        assert err.message == "quota spent"
        assert err.headers.get_all("x-leading") == ["l"]
        assert err.trailers.get_all("x-trailing") == ["t"]

    def test_cancelled(self) -> None:
        """A cancelled call reports CANCELLED."""
        stream = _GrpcClientStream(_DoneFuture(cancelled=True), _RequestQueue())
        with pytest.raises(RpcError) as exc_info:
            stream.send(StreamingInputCallRequest())
        assert exc_info.value.code is Code.CANCELLED

    def test_completed(self) -> None:
        """A call that already succeeded takes no more messages."""
        stream = _GrpcClientStream(_DoneFuture(), _RequestQueue())
        with pytest.raises(RpcError) as exc_info:
            stream.send(StreamingInputCallRequest())
        assert exc_info.value.code is Code.FAILED_PRECONDITION


class TestConnectBidiReceive:
    """Receiving on a half-duplex Connect bidi handle."""

    def test_receive_without_request_raises(self, monkeypatch: pytest.MonkeyPatch, connect_client: RpcClient) -> None:
        """A handle whose request was never sent refuses to receive."""
        stream = connect_client.bidi(TEST_SERVICE_METHODS["FullDuplexCall"])
        monkeypatch.setattr(stream, "close_send", lambda: None)
        with pytest.raises(RuntimeError, match="not opened"):
            stream.receive()

    def test_receive_after_cancel(self, connect_client: RpcClient) -> None:
        """A cancelled handle reports CANCELLED before touching the network."""
        stream = connect_client.bidi(TEST_SERVICE_METHODS["FullDuplexCall"])
        stream.cancel()
        with pytest.raises(RpcError) as exc_info:
            stream.receive()
        assert exc_info.value.code is Code.CANCELLED
