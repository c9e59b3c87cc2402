"""gRPC client facade built on grpcio."""

from __future__ import annotations

import logging
import queue
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import grpc

from connect_crosstest.codes import Code
from connect_crosstest.config import TlsConfig
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import BaseRpcClient, Capability, MethodKind, RpcError, RpcMethod, UnaryResult
from connect_crosstest.rpc._debug import fmt_message, fmt_metadata, wire_request_logger, wire_response_logger

from ._common import error_from_call, from_grpc_status, metadata_from_grpc, metadata_to_grpc


class _RequestQueue:
    """Feeds messages sent from the scenario thread to grpcio's request consumer."""

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._closed = False

    def put(self, message: Any) -> None:
        if not self._closed:
            self._queue.put(message)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[Any]:
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class _GrpcServerStream:
    """Server-stream handle over a grpcio response iterator."""

    def __init__(self, call: Any) -> None:
        self._call = call

    def receive(self) -> Any | None:
        try:
            message = next(self._call)
        except StopIteration:
            return None
        except grpc.RpcError as exc:
            raise error_from_call(exc) from None
        if wire_response_logger.isEnabledFor(logging.DEBUG):
            wire_response_logger.debug("grpc received %s", fmt_message(message))
        return message

    def headers(self) -> Metadata:
        return metadata_from_grpc(self._call.initial_metadata())

    def trailers(self) -> Metadata:
        return metadata_from_grpc(self._call.trailing_metadata())

    def cancel(self) -> None:
        self._call.cancel()

    def close(self) -> None:
        self._call.cancel()


class _GrpcBidiStream(_GrpcServerStream):
    """Bidi handle: a request queue plus the grpcio response iterator."""

    def __init__(self, call: Any, requests: _RequestQueue) -> None:
        super().__init__(call)
        self._requests = requests

    def send(self, message: Any) -> None:
        if self._call.done():
            raise error_from_call(self._call)
        if wire_request_logger.isEnabledFor(logging.DEBUG):
            wire_request_logger.debug("grpc send %s", fmt_message(message))
        self._requests.put(message)

    def close_send(self) -> None:
        self._requests.close()

    def cancel(self) -> None:
        self._call.cancel()
        self._requests.close()

    def close(self) -> None:
        self.cancel()


class _GrpcClientStream:
    """Client-stream handle over a grpcio call future."""

    def __init__(self, future: Any, requests: _RequestQueue) -> None:
        self._future = future
        self._requests = requests

    def send(self, message: Any) -> None:
        if self._future.done():
            if self._future.cancelled():
                raise RpcError(Code.CANCELLED, "call cancelled")
            exc = self._future.exception()
            if isinstance(exc, grpc.RpcError):
                raise error_from_call(exc)
            raise RpcError(Code.FAILED_PRECONDITION, "call already completed")
        self._requests.put(message)

    def close_and_receive(self) -> UnaryResult:
        self._requests.close()
        try:
            response = self._future.result()
        except grpc.FutureCancelledError:
            raise RpcError(Code.CANCELLED, "call cancelled") from None
        except grpc.RpcError as exc:
            raise error_from_call(exc) from None
        return UnaryResult(
            response,
            metadata_from_grpc(self._future.initial_metadata()),
            metadata_from_grpc(self._future.trailing_metadata()),
        )

    def cancel(self) -> None:
        self._future.cancel()
        self._requests.close()


class GrpcClient(BaseRpcClient):
    """RPC facade speaking gRPC over HTTP/2 through a grpcio channel.

    Supports every call shape, including full-duplex bidi streams.
    """

    protocol = "grpc"
    capabilities = frozenset({Capability.CLIENT_STREAM, Capability.HALF_DUPLEX, Capability.FULL_DUPLEX})

    def __init__(self, host: str, port: int, *, tls: TlsConfig | None = None) -> None:
        """Open a channel to ``host:port``.

        Args:
            host: Server host name or address.
            port: Server port.
            tls: Trust settings; plaintext when ``None``.

        """
        self.host = host
        self.port = port
        self.tls = tls
        target = f"{host}:{port}"
        if tls is None:
            self._channel = grpc.insecure_channel(target)
        else:
            root = Path(tls.ca_file).read_bytes() if tls.ca_file else None
            self._channel = grpc.secure_channel(target, grpc.ssl_channel_credentials(root_certificates=root))
        self._stubs: dict[str, Any] = {}

    def _stub(self, method: RpcMethod) -> Any:
        stub = self._stubs.get(method.path)
        if stub is None:
            factory = {
                MethodKind.UNARY: self._channel.unary_unary,
                MethodKind.SERVER_STREAM: self._channel.unary_stream,
                MethodKind.CLIENT_STREAM: self._channel.stream_unary,
                MethodKind.BIDI: self._channel.stream_stream,
            }[method.kind]
            stub = factory(
                method.path,
                request_serializer=method.request_type.SerializeToString,
                response_deserializer=method.response_type.FromString,
            )
            self._stubs[method.path] = stub
        return stub

    def _log_call(self, method: RpcMethod, headers: Metadata | None, request: Any = None) -> None:
        if wire_request_logger.isEnabledFor(logging.DEBUG):
            wire_request_logger.debug(
                "grpc %s %s headers=%s request=%s",
                method.kind.value,
                method.path,
                fmt_metadata(headers),
                fmt_message(request),
            )

    def unary(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> UnaryResult:
        """Issue a unary call and wait for its result.

        Raises:
            RpcError: If the call ends with a non-OK status.

        """
        self._log_call(method, headers, request)
        try:
            response, call = self._stub(method).with_call(request, metadata=metadata_to_grpc(headers), timeout=timeout)
        except grpc.RpcError as exc:
            raise error_from_call(exc) from None
        if wire_response_logger.isEnabledFor(logging.DEBUG):
            wire_response_logger.debug("grpc %s -> %s", method.path, fmt_message(response))
        return UnaryResult(
            response,
            metadata_from_grpc(call.initial_metadata()),
            metadata_from_grpc(call.trailing_metadata()),
        )

    def server_stream(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> _GrpcServerStream:
        """Open a server-streaming call."""
        self._log_call(method, headers, request)
        return _GrpcServerStream(self._stub(method)(request, metadata=metadata_to_grpc(headers), timeout=timeout))

    def client_stream(
        self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> _GrpcClientStream:
        """Open a client-streaming call."""
        self._log_call(method, headers)
        requests = _RequestQueue()
        future = self._stub(method).future(iter(requests), metadata=metadata_to_grpc(headers), timeout=timeout)
        return _GrpcClientStream(future, requests)

    def bidi(
        self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> _GrpcBidiStream:
        """Open a bidirectional-streaming call."""
        self._log_call(method, headers)
        requests = _RequestQueue()
        call = self._stub(method)(iter(requests), metadata=metadata_to_grpc(headers), timeout=timeout)
        return _GrpcBidiStream(call, requests)

    def code_of(self, exc: BaseException) -> Code:
        """Return the status code of a facade or grpcio error."""
        if isinstance(exc, grpc.RpcError) and isinstance(exc, grpc.Call):
            return from_grpc_status(exc.code())
        return super().code_of(exc)

    def clone(self, *, host: str | None = None, port: int | None = None) -> GrpcClient:
        """Return a client on a fresh channel with the same settings."""
        return GrpcClient(
            host if host is not None else self.host,
            port if port is not None else self.port,
            tls=self.tls,
        )

    def close(self) -> None:
        """Close the channel, cancelling any call still running."""
        self._channel.close()

    def __repr__(self) -> str:
        return f"GrpcClient({self.host}:{self.port}, tls={self.tls is not None})"
