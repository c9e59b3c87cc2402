"""gRPC server for the test service, built on grpcio.

Only the implemented methods of ``grpc.testing.TestService`` are registered
through a generic handler; grpcio answers every other method and service
with ``UNIMPLEMENTED`` on its own.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from concurrent import futures
from pathlib import Path
from typing import Any, NoReturn

import grpc
from google.rpc import status_pb2

from connect_crosstest.codes import Code
from connect_crosstest.conformance._protocol import IMPLEMENTED_METHODS, TestService
from connect_crosstest.config import TlsConfig
from connect_crosstest.messages import TEST_SERVICE
from connect_crosstest.rpc import MethodKind, RpcError, RpcMethod, ServerCallContext, _emit_access_log
from connect_crosstest.rpc._debug import fmt_metadata, wire_request_logger

from ._common import STATUS_DETAILS_KEY, metadata_from_grpc, metadata_to_grpc, to_grpc_status

_logger = logging.getLogger("connect_crosstest.grpc")

DEFAULT_MAX_WORKERS = 16

# grpcio reports a deadline decades away when the client set none.
_NO_DEADLINE_AFTER = 365 * 24 * 3600.0


def _open_scope(method: RpcMethod, context: grpc.ServicerContext) -> ServerCallContext:
    remaining = context.time_remaining()
    deadline = None
    if remaining is not None and remaining < _NO_DEADLINE_AFTER:
        deadline = time.monotonic() + remaining

    def send_initial(md: Any) -> None:
        context.send_initial_metadata(metadata_to_grpc(md))

    ctx = ServerCallContext(
        method.path,
        "grpc",
        metadata_from_grpc(context.invocation_metadata()),
        deadline=deadline,
        on_send_headers=send_initial,
    )
    context.add_callback(ctx.cancel)
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "grpc call %s headers=%s deadline=%s",
            method.path,
            fmt_metadata(ctx.request_headers),
            "none" if deadline is None else f"{remaining:.3f}s",
        )
    return ctx


def _finish(context: grpc.ServicerContext, ctx: ServerCallContext) -> None:
    ctx.send_headers()
    if ctx.response_trailers:
        context.set_trailing_metadata(metadata_to_grpc(ctx.response_trailers))
    _emit_access_log(ctx, Code.OK)


def _abort(context: grpc.ServicerContext, ctx: ServerCallContext, exc: Exception) -> NoReturn:
    """End the call with the status carried by *exc*."""
    if isinstance(exc, RpcError):
        err = exc
    else:
        _logger.exception("unhandled error in %s", ctx.method)
        err = RpcError(Code.UNKNOWN, f"{type(exc).__name__}: {exc}")
    code = Code.UNKNOWN if err.code is Code.OK else err.code
    ctx.send_headers()
    trailers = list(metadata_to_grpc(ctx.response_trailers))
    if err.details:
        status = status_pb2.Status(code=code.value, message=err.message, details=err.details)
        trailers.append((STATUS_DETAILS_KEY, status.SerializeToString()))
    if trailers:
        context.set_trailing_metadata(tuple(trailers))
    _emit_access_log(ctx, code)
    context.abort(to_grpc_status(code), err.message)
    raise AssertionError("grpc context.abort returned")  # pragma: no cover


def _requests(request_iterator: Iterator[Any]) -> Iterator[Any]:
    """Yield client messages; a request stream torn down by the client surfaces as ``CANCELLED``."""
    try:
        yield from request_iterator
    except grpc.RpcError as exc:
        raise RpcError(Code.CANCELLED, "request stream aborted") from exc


def _handler_for(method: RpcMethod, fn: Callable[..., Any]) -> grpc.RpcMethodHandler:
    """Wrap one method body as a grpcio method handler."""

    def unary_body(request: Any, context: grpc.ServicerContext) -> Any:
        ctx = _open_scope(method, context)
        try:
            response = fn(request, ctx)
        except Exception as exc:
            _abort(context, ctx, exc)
        _finish(context, ctx)
        return response

    def server_stream_body(request: Any, context: grpc.ServicerContext) -> Iterator[Any]:
        ctx = _open_scope(method, context)
        try:
            for response in fn(request, ctx):
                ctx.send_headers()
                yield response
        except Exception as exc:
            _abort(context, ctx, exc)
        _finish(context, ctx)

    def client_stream_body(request_iterator: Iterator[Any], context: grpc.ServicerContext) -> Any:
        ctx = _open_scope(method, context)
        try:
            response = fn(_requests(request_iterator), ctx)
        except Exception as exc:
            _abort(context, ctx, exc)
        _finish(context, ctx)
        return response

    def bidi_body(request_iterator: Iterator[Any], context: grpc.ServicerContext) -> Iterator[Any]:
        ctx = _open_scope(method, context)
        try:
            for response in fn(_requests(request_iterator), ctx):
                ctx.send_headers()
                yield response
        except Exception as exc:
            _abort(context, ctx, exc)
        _finish(context, ctx)

    deserializer = method.request_type.FromString
    serializer = method.response_type.SerializeToString
    match method.kind:
        case MethodKind.UNARY:
            return grpc.unary_unary_rpc_method_handler(
                unary_body, request_deserializer=deserializer, response_serializer=serializer
            )
        case MethodKind.SERVER_STREAM:
            return grpc.unary_stream_rpc_method_handler(
                server_stream_body, request_deserializer=deserializer, response_serializer=serializer
            )
        case MethodKind.CLIENT_STREAM:
            return grpc.stream_unary_rpc_method_handler(
                client_stream_body, request_deserializer=deserializer, response_serializer=serializer
            )
        case MethodKind.BIDI:
            return grpc.stream_stream_rpc_method_handler(
                bidi_body, request_deserializer=deserializer, response_serializer=serializer
            )


def make_generic_handler(impl: TestService) -> grpc.GenericRpcHandler:
    """Build the grpcio handler that serves *impl* as ``grpc.testing.TestService``."""
    handlers = {name: _handler_for(method, getattr(impl, name)) for name, method in IMPLEMENTED_METHODS.items()}
    return grpc.method_handlers_generic_handler(TEST_SERVICE.full_name, handlers)


def serve_grpc(
    impl: TestService,
    *,
    host: str = "127.0.0.1",
    port: int = 0,
    tls: TlsConfig | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> tuple[grpc.Server, int]:
    """Start a gRPC server for *impl*.

    Args:
        impl: The test service implementation.
        host: Interface to bind.
        port: Port to bind; ``0`` picks a free one.
        tls: Server certificate and key; plaintext when ``None``.
        max_workers: Size of the handler thread pool.  Every open stream
            holds a worker, so this bounds concurrent streaming calls.

    Returns:
        The started server and the port it is bound to.

    Raises:
        RuntimeError: If the port cannot be bound.

    """
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="grpc-handler"))
    server.add_generic_rpc_handlers((make_generic_handler(impl),))
    address = f"{host}:{port}"
    if tls is None:
        bound = server.add_insecure_port(address)
    else:
        credentials = grpc.ssl_server_credentials(
            [(Path(tls.key_file).read_bytes(), Path(tls.cert_file).read_bytes())]
        )
        bound = server.add_secure_port(address, credentials)
    if bound == 0:
        raise RuntimeError(f"could not bind gRPC server to {address}")
    server.start()
    _logger.info(
        "gRPC server listening on %s:%d (tls=%s)",
        host,
        bound,
        "enabled" if tls is not None else "disabled",
        extra={"host": host, "port": bound, "protocol": "grpc", "tls": tls is not None},
    )
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug("grpc methods registered: %s", ", ".join(IMPLEMENTED_METHODS))
    return server, bound
