"""Connect server for the test service, as a Falcon WSGI app served by waitress.

One resource answers ``POST /{service}/{method}`` for every call shape and
``GET /{service}/{method}`` for methods declared free of side effects.
Unknown services and methods get a Connect ``unimplemented`` error with
HTTP 404.

Over HTTP/1.1 the request body is read in full before the method body
runs, so bidi calls are half-duplex.  Streaming responses are written as
they are produced; the response headers go out once the first message
(or the final status) is ready.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from collections.abc import Iterator
from typing import Any
from urllib.parse import unquote, unquote_to_bytes

import falcon
import waitress
from google.protobuf.message import DecodeError

from connect_crosstest.codes import Code
from connect_crosstest.conformance._protocol import IMPLEMENTED_METHODS, TestService
from connect_crosstest.messages import TEST_SERVICE
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import MethodKind, RpcError, RpcMethod, ServerCallContext, _emit_access_log
from connect_crosstest.rpc._debug import fmt_message, fmt_metadata, wire_http_logger

from ._common import (
    END_STREAM_FLAG,
    JSON_CONTENT_TYPE,
    STREAM_CONTENT_TYPE,
    TIMEOUT_HEADER,
    TRAILER_PREFIX,
    UNARY_CONTENT_TYPE,
    encode_end_stream,
    encode_envelope,
    error_to_json,
    headers_to_metadata,
    iter_envelopes,
    metadata_to_headers,
    parse_timeout,
)

_logger = logging.getLogger("connect_crosstest.connect")

GET_REQUEST_HEADER = "get-request"

DEFAULT_THREADS = 16


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def _as_rpc_error(exc: Exception, ctx: ServerCallContext) -> RpcError:
    if isinstance(exc, RpcError):
        return exc
    _logger.exception("unhandled error in %s", ctx.method)
    return RpcError(Code.UNKNOWN, f"{type(exc).__name__}: {exc}")


def _decode(message_type: Any, data: bytes) -> Any:
    try:
        return message_type.FromString(data)
    except DecodeError as exc:
        name = message_type.DESCRIPTOR.full_name
        raise RpcError(Code.INVALID_ARGUMENT, f"could not unmarshal {name}: {exc}") from exc


def _write_error(resp: falcon.Response, err: RpcError, *, status: int | None = None) -> int:
    http_status = status if status is not None else err.code.http_status
    resp.status = str(http_status)
    resp.content_type = JSON_CONTENT_TYPE
    resp.data = json.dumps(error_to_json(err), ensure_ascii=False).encode()
    return http_status


def _set_metadata(resp: falcon.Response, ctx: ServerCallContext, *, with_trailers: bool) -> None:
    for key, value in metadata_to_headers(ctx.response_headers):
        resp.append_header(key, value)
    if with_trailers:
        for key, value in metadata_to_headers(ctx.response_trailers, prefix=TRAILER_PREFIX):
            resp.append_header(key, value)


def _query_message(query_string: str, *, is_base64: bool) -> bytes:
    """Extract the ``message`` parameter of a GET request as bytes.

    Raises:
        RpcError: ``INVALID_ARGUMENT`` if the parameter is not valid base64.

    """
    raw = ""
    for part in query_string.split("&"):
        name, _, value = part.partition("=")
        if name == "message":
            raw = value
    if not is_base64:
        return unquote_to_bytes(raw)
    text = unquote(raw)
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except ValueError as exc:
        raise RpcError(Code.INVALID_ARGUMENT, f"invalid base64 message parameter: {exc}") from exc


class _ConnectResource:
    """Falcon resource for every method: ``/{service}/{method}``."""

    def __init__(self, impl: TestService) -> None:
        self._impl = impl

    def _resolve(self, service: str, method: str) -> RpcMethod | None:
        if service != TEST_SERVICE.full_name:
            return None
        return IMPLEMENTED_METHODS.get(method)

    def _open_scope(self, req: falcon.Request, method: RpcMethod) -> tuple[ServerCallContext, RpcError | None]:
        error: RpcError | None = None
        try:
            headers, _ = headers_to_metadata(req.headers.items(), split_values=True)
        except ValueError as exc:
            headers = Metadata()
            error = RpcError(Code.INVALID_ARGUMENT, f"invalid binary header: {exc}")
        timeout: float | None = None
        try:
            timeout = parse_timeout(req.get_header(TIMEOUT_HEADER))
        except RpcError as exc:
            error = error or exc
        deadline = None if timeout is None else time.monotonic() + timeout
        ctx = ServerCallContext(method.path, "connect", headers, deadline=deadline)
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug(
                "connect %s %s headers=%s timeout=%s",
                req.method,
                method.path,
                fmt_metadata(headers),
                timeout,
            )
        return ctx, error

    def _unimplemented(self, resp: falcon.Response, service: str, method: str) -> None:
        err = RpcError(Code.UNIMPLEMENTED, f"/{service}/{method} is not implemented")
        _write_error(resp, err, status=404)
        _logger.debug("unimplemented method /%s/%s", service, method)

    def on_post(self, req: falcon.Request, resp: falcon.Response, service: str, method: str) -> None:
        """Handle a unary or streaming call."""
        rpc_method = self._resolve(service, method)
        if rpc_method is None:
            self._unimplemented(resp, service, method)
            return
        expected = UNARY_CONTENT_TYPE if rpc_method.kind is MethodKind.UNARY else STREAM_CONTENT_TYPE
        media_type = _media_type(req.content_type)
        if media_type != expected:
            resp.status = "415"
            resp.set_header("Accept-Post", expected)
            _logger.debug("rejected %s with content type %r", rpc_method.path, media_type)
            return
        body = req.bounded_stream.read()
        if rpc_method.kind is MethodKind.UNARY:
            self._unary(req, resp, rpc_method, body)
        else:
            self._stream(req, resp, rpc_method, body)

    def on_get(self, req: falcon.Request, resp: falcon.Response, service: str, method: str) -> None:
        """Handle a side-effect-free unary call issued as ``GET``."""
        rpc_method = self._resolve(service, method)
        if rpc_method is None:
            self._unimplemented(resp, service, method)
            return
        if rpc_method.kind is not MethodKind.UNARY or not rpc_method.no_side_effects:
            raise falcon.HTTPMethodNotAllowed(["POST"])
        if req.get_param("encoding") != "proto":
            err = RpcError(Code.INVALID_ARGUMENT, f"unsupported message encoding {req.get_param('encoding')!r}")
            _write_error(resp, err)
            return
        try:
            body = _query_message(req.query_string, is_base64=req.get_param("base64") == "1")
        except RpcError as err:
            _write_error(resp, err)
            return
        self._unary(req, resp, rpc_method, body, get_request=True)

    def _unary(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        method: RpcMethod,
        body: bytes,
        *,
        get_request: bool = False,
    ) -> None:
        ctx, error = self._open_scope(req, method)
        response: Any = None
        if error is None:
            try:
                ctx.check()
                request = _decode(method.request_type, body)
                response = getattr(self._impl, method.name)(request, ctx)
            except Exception as exc:
                error = _as_rpc_error(exc, ctx)
        _set_metadata(resp, ctx, with_trailers=True)
        if get_request:
            resp.append_header(GET_REQUEST_HEADER, "true")
        if error is not None:
            http_status = _write_error(resp, error)
            _emit_access_log(ctx, error.code, http_status=http_status)
            return
        resp.status = "200"
        resp.content_type = UNARY_CONTENT_TYPE
        resp.data = response.SerializeToString()
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("connect %s -> %s", method.path, fmt_message(response))
        _emit_access_log(ctx, Code.OK, http_status=200)

    def _responses(self, method: RpcMethod, requests: list[Any], ctx: ServerCallContext) -> Iterator[Any]:
        fn = getattr(self._impl, method.name)
        ctx.check()
        match method.kind:
            case MethodKind.CLIENT_STREAM:
                yield fn(iter(requests), ctx)
            case MethodKind.SERVER_STREAM:
                if len(requests) != 1:
                    raise RpcError(Code.INVALID_ARGUMENT, f"expected exactly one request message, got {len(requests)}")
                yield from fn(requests[0], ctx)
            case _:
                yield from fn(iter(requests), ctx)

    def _stream(self, req: falcon.Request, resp: falcon.Response, method: RpcMethod, body: bytes) -> None:
        ctx, error = self._open_scope(req, method)
        requests: list[Any] = []
        if error is None:
            try:
                for flags, payload in iter_envelopes([body]):
                    if flags & END_STREAM_FLAG:
                        raise RpcError(Code.INVALID_ARGUMENT, "client sent an end-stream message")
                    requests.append(_decode(method.request_type, payload))
            except RpcError as exc:
                error = exc
        responses = self._responses(method, requests, ctx)
        primed: list[Any] = []
        if error is None:
            try:
                primed.append(next(responses))
            except StopIteration:
                pass
            except Exception as exc:
                error = _as_rpc_error(exc, ctx)
        ctx.send_headers()
        _set_metadata(resp, ctx, with_trailers=False)
        resp.status = "200"
        resp.content_type = STREAM_CONTENT_TYPE
        resp.stream = self._stream_body(ctx, primed, responses, error)

    def _stream_body(
        self,
        ctx: ServerCallContext,
        primed: list[Any],
        responses: Iterator[Any],
        error: RpcError | None,
    ) -> Iterator[bytes]:
        try:
            for message in primed:
                yield encode_envelope(message.SerializeToString())
            if error is None and primed:
                try:
                    for message in responses:
                        yield encode_envelope(message.SerializeToString())
                except Exception as exc:
                    error = _as_rpc_error(exc, ctx)
            yield encode_end_stream(error, ctx.response_trailers)
            _emit_access_log(ctx, error.code if error is not None else Code.OK, http_status=200)
        finally:
            ctx.cancel()
            close = getattr(responses, "close", None)
            if close is not None:
                close()


def make_wsgi_app(impl: TestService) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app serving *impl* over the Connect protocol.

    Args:
        impl: The test service implementation.

    Returns:
        A Falcon application routing ``/{service}/{method}``.

    """
    app: falcon.App[falcon.Request, falcon.Response] = falcon.App()
    app.add_route("/{service}/{method}", _ConnectResource(impl))
    _logger.info(
        "Connect WSGI app created for %s (%d methods)",
        TEST_SERVICE.full_name,
        len(IMPLEMENTED_METHODS),
        extra={"service": TEST_SERVICE.full_name, "protocol": "connect"},
    )
    return app


class ConnectServer:
    """A waitress server running a Connect app on a background thread."""

    def __init__(self, impl: TestService, *, host: str = "127.0.0.1", port: int = 0, threads: int = DEFAULT_THREADS):
        """Bind the listening socket.

        Args:
            impl: The test service implementation.
            host: Interface to bind.
            port: Port to bind; ``0`` picks a free one.
            threads: Number of waitress worker threads.

        """
        self.host = host
        self._server: Any = waitress.create_server(make_wsgi_app(impl), host=host, port=port, threads=threads)
        self.port: int = int(getattr(self._server, "effective_port", port))
        self._thread: threading.Thread | None = None

    def start(self) -> ConnectServer:
        """Start serving on a daemon thread."""
        self._thread = threading.Thread(target=self._server.run, name="connect-server", daemon=True)
        self._thread.start()
        _logger.info(
            "Connect server listening on %s:%d",
            self.host,
            self.port,
            extra={"host": self.host, "port": self.port, "protocol": "connect"},
        )
        return self

    def stop(self) -> None:
        """Close the listening socket and stop the worker threads."""
        self._server.close()
        self._server.task_dispatcher.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=1)
        _logger.info("Connect server on port %d stopped", self.port)


def serve_connect(
    impl: TestService, *, host: str = "127.0.0.1", port: int = 0, threads: int = DEFAULT_THREADS
) -> ConnectServer:
    """Start a Connect server for *impl* and return it.

    Args:
        impl: The test service implementation.
        host: Interface to bind.
        port: Port to bind; ``0`` picks a free one.
        threads: Number of waitress worker threads.

    Returns:
        The running server; its ``port`` attribute holds the bound port.

    """
    return ConnectServer(impl, host=host, port=port, threads=threads).start()
