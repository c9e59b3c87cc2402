"""Connect client facade built on httpx.

Unary calls are single HTTP exchanges; methods declared free of side
effects are issued as ``GET``.  Streaming calls send one request body and
read the response envelopes as they arrive.  Over HTTP/1.1 a client stream
or bidi call cannot start reading before it finishes sending, so sent
messages are buffered until ``close_and_receive`` (client streams) or the
first ``receive`` (bidi) and the call is half-duplex.
"""

from __future__ import annotations

import base64
import logging
import ssl
from collections.abc import Callable
from typing import Any

import httpx
from google.protobuf.message import DecodeError

from connect_crosstest.codes import Code, code_from_http_status
from connect_crosstest.config import TlsConfig
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import BaseRpcClient, Capability, RpcError, RpcMethod, UnaryResult
from connect_crosstest.rpc._debug import fmt_message, fmt_metadata, wire_http_logger

from ._common import (
    END_STREAM_FLAG,
    JSON_CONTENT_TYPE,
    PROTOCOL_VERSION,
    PROTOCOL_VERSION_HEADER,
    STREAM_CONTENT_TYPE,
    TIMEOUT_HEADER,
    UNARY_CONTENT_TYPE,
    decode_end_stream,
    encode_envelope,
    error_from_json,
    format_timeout,
    headers_to_metadata,
    iter_envelopes,
    metadata_to_headers,
)

_logger = logging.getLogger("connect_crosstest.connect")


def _media_type(value: str | None) -> str:
    return (value or "").split(";", 1)[0].strip().lower()


def _transport_error(exc: httpx.HTTPError) -> RpcError:
    """Map an httpx failure onto a status code."""
    if isinstance(exc, httpx.TimeoutException):
        return RpcError(Code.DEADLINE_EXCEEDED, f"request timed out: {exc}")
    if isinstance(exc, httpx.TransportError):
        return RpcError(Code.UNAVAILABLE, f"{type(exc).__name__}: {exc}")
    return RpcError(Code.UNKNOWN, f"{type(exc).__name__}: {exc}")


def _decode(message_type: Any, data: bytes) -> Any:
    try:
        return message_type.FromString(data)
    except DecodeError as exc:
        raise RpcError(Code.INTERNAL, f"could not unmarshal {message_type.DESCRIPTOR.full_name}: {exc}") from exc


def _response_metadata(response: httpx.Response) -> tuple[Metadata, Metadata]:
    try:
        return headers_to_metadata(response.headers.multi_items())
    except ValueError as exc:
        raise RpcError(Code.INTERNAL, f"invalid binary header in response: {exc}") from exc


def _error_from_response(response: httpx.Response, headers: Metadata, trailers: Metadata) -> RpcError:
    """Build the error for a non-200 response, from its JSON body when it has one."""
    if _media_type(response.headers.get("content-type")) == JSON_CONTENT_TYPE:
        try:
            obj = response.json()
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return error_from_json(obj, http_status=response.status_code, headers=headers, trailers=trailers)
    return RpcError(
        code_from_http_status(response.status_code),
        f"HTTP {response.status_code}",
        headers=headers,
        trailers=trailers,
    )


class _ResponseStream:
    """Reads the envelopes of one streaming response.

    Failures to open the call are kept and raised from :meth:`receive`, so
    a caller sees every status the same way regardless of when it arose.
    """

    def __init__(self, response_type: Any) -> None:
        self._response_type = response_type
        self._response: httpx.Response | None = None
        self._envelopes: Any = None
        self._headers = Metadata()
        self._trailers = Metadata()
        self._error: RpcError | None = None
        self._done = False

    def open(self, send: Callable[[], httpx.Response]) -> None:
        try:
            response = send()
        except httpx.HTTPError as exc:
            self._finish(_transport_error(exc))
            return
        self._response = response
        try:
            self._headers, trailing = _response_metadata(response)
            if response.status_code != 200:
                response.read()
                raise _error_from_response(response, self._headers, trailing)
            media_type = _media_type(response.headers.get("content-type"))
            if media_type != STREAM_CONTENT_TYPE:
                raise RpcError(Code.INTERNAL, f"unexpected response content type {media_type!r}")
        except RpcError as exc:
            self._finish(exc)
            return
        except httpx.HTTPError as exc:
            self._finish(_transport_error(exc))
            return
        self._envelopes = iter_envelopes(response.iter_bytes())

    def _finish(self, error: RpcError | None) -> None:
        self._done = True
        self._error = error
        if self._response is not None:
            self._response.close()

    def receive(self) -> Any | None:
        if self._done:
            if self._error is not None:
                raise self._error
            return None
        try:
            flags, payload = next(self._envelopes)
            if flags & END_STREAM_FLAG:
                error, self._trailers = decode_end_stream(payload, self._headers)
                self._finish(error)
                if error is not None:
                    raise error
                return None
            message = _decode(self._response_type, payload)
        except StopIteration:
            self._finish(RpcError(Code.INTERNAL, "stream ended without an end-stream message"))
            raise self._error from None
        except httpx.HTTPError as exc:
            self._finish(_transport_error(exc))
            raise self._error from None
        except RpcError as exc:
            if not self._done:
                self._finish(exc)
            raise
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("connect received %s", fmt_message(message))
        return message

    def headers(self) -> Metadata:
        return self._headers

    def trailers(self) -> Metadata:
        return self._trailers

    def cancel(self) -> None:
        if not self._done:
            self._finish(RpcError(Code.CANCELLED, "call cancelled"))

    def close(self) -> None:
        self.cancel()


class _ClientStream:
    """Client-stream handle; messages are buffered until the call is closed."""

    def __init__(self, client: ConnectClient, method: RpcMethod, headers: Metadata | None, timeout: float | None):
        self._client = client
        self._method = method
        self._headers = headers
        self._timeout = timeout
        self._body: list[bytes] = []
        self._cancelled = False

    def send(self, message: Any) -> None:
        if self._cancelled:
            raise RpcError(Code.CANCELLED, "call cancelled")
        self._body.append(encode_envelope(message.SerializeToString()))

    def close_and_receive(self) -> UnaryResult:
        if self._cancelled:
            raise RpcError(Code.CANCELLED, "call cancelled before it was sent")
        stream = self._client._open_stream(self._method, b"".join(self._body), self._headers, self._timeout)
        message = stream.receive()
        if message is None:
            raise RpcError(Code.INTERNAL, "server sent no response message")
        if stream.receive() is not None:
            stream.close()
            raise RpcError(Code.INTERNAL, "server sent more than one response message")
        return UnaryResult(message, stream.headers(), stream.trailers())

    def cancel(self) -> None:
        self._cancelled = True


class _BidiStream:
    """Half-duplex bidi handle; the first ``receive`` sends everything buffered so far."""

    def __init__(self, client: ConnectClient, method: RpcMethod, headers: Metadata | None, timeout: float | None):
        self._client = client
        self._method = method
        self._headers = headers
        self._timeout = timeout
        self._body: list[bytes] = []
        self._stream: _ResponseStream | None = None
        self._cancelled = False

    def send(self, message: Any) -> None:
        if self._cancelled:
            raise RpcError(Code.CANCELLED, "call cancelled")
        if self._stream is not None:
            raise RpcError(Code.FAILED_PRECONDITION, "cannot send after receiving on a half-duplex stream")
        self._body.append(encode_envelope(message.SerializeToString()))

    def close_send(self) -> None:
        if self._stream is None and not self._cancelled:
            self._stream = self._client._open_stream(self._method, b"".join(self._body), self._headers, self._timeout)

    def receive(self) -> Any | None:
        if self._cancelled:
            raise RpcError(Code.CANCELLED, "call cancelled")
        self.close_send()
        if self._stream is None:
            raise RuntimeError("bidi stream was not opened")
        return self._stream.receive()

    def headers(self) -> Metadata:
        return self._stream.headers() if self._stream is not None else Metadata()

    def trailers(self) -> Metadata:
        return self._stream.trailers() if self._stream is not None else Metadata()

    def cancel(self) -> None:
        self._cancelled = True
        if self._stream is not None:
            self._stream.cancel()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()


class ConnectClient(BaseRpcClient):
    """RPC facade speaking the Connect protocol over HTTP/1.1 through httpx.

    Full-duplex bidi calls are not possible on HTTP/1.1; scenarios that
    need them are skipped for this client.
    """

    protocol = "connect"
    capabilities = frozenset({Capability.CLIENT_STREAM, Capability.HALF_DUPLEX})

    def __init__(self, host: str, port: int, *, tls: TlsConfig | None = None, timeout: float = 30.0) -> None:
        """Create an HTTP client for ``host:port``.

        Args:
            host: Server host name or address.
            port: Server port.
            tls: Trust settings; plain HTTP when ``None``.
            timeout: Timeout in seconds for calls that set no deadline.

        """
        self.host = host
        self.port = port
        self.tls = tls
        self.timeout = timeout
        scheme = "https" if tls is not None else "http"
        verify: ssl.SSLContext | bool = True
        if tls is not None and tls.ca_file:
            verify = ssl.create_default_context(cafile=tls.ca_file)
        self._http = httpx.Client(base_url=f"{scheme}://{host}:{port}", verify=verify, timeout=timeout)

    def _request_headers(
        self, content_type: str | None, headers: Metadata | None, timeout: float | None
    ) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        if content_type is not None:
            out.append(("content-type", content_type))
            out.append((PROTOCOL_VERSION_HEADER, PROTOCOL_VERSION))
        if timeout is not None:
            out.append((TIMEOUT_HEADER, format_timeout(timeout)))
        out.extend(metadata_to_headers(headers))
        return out

    def _http_timeout(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self.timeout

    def _log_request(self, verb: str, method: RpcMethod, headers: Metadata | None, request: Any = None) -> None:
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug(
                "connect %s %s%s headers=%s request=%s",
                verb,
                self._http.base_url,
                method.path,
                fmt_metadata(headers),
                fmt_message(request),
            )

    def unary(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> UnaryResult:
        """Issue a unary call; side-effect-free methods go out as ``GET``.

        Raises:
            RpcError: If the call ends with a non-OK status or the transport fails.

        """
        data = request.SerializeToString()
        try:
            if method.no_side_effects:
                self._log_request("GET", method, headers, request)
                params = {
                    "message": base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii"),
                    "encoding": "proto",
                    "base64": "1",
                    "connect": "v1",
                }
                response = self._http.get(
                    method.path,
                    params=params,
                    headers=self._request_headers(None, headers, timeout),
                    timeout=self._http_timeout(timeout),
                )
            else:
                self._log_request("POST", method, headers, request)
                response = self._http.post(
                    method.path,
                    content=data,
                    headers=self._request_headers(UNARY_CONTENT_TYPE, headers, timeout),
                    timeout=self._http_timeout(timeout),
                )
        except httpx.HTTPError as exc:
            raise _transport_error(exc) from None
        leading, trailing = _response_metadata(response)
        if response.status_code != 200:
            raise _error_from_response(response, leading, trailing)
        media_type = _media_type(response.headers.get("content-type"))
        if media_type != UNARY_CONTENT_TYPE:
            raise RpcError(Code.INTERNAL, f"unexpected response content type {media_type!r}")
        message = _decode(method.response_type, response.content)
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("connect %s -> %s", method.path, fmt_message(message))
        return UnaryResult(message, leading, trailing)

    def _open_stream(
        self, method: RpcMethod, body: bytes, headers: Metadata | None, timeout: float | None
    ) -> _ResponseStream:
        self._log_request("POST", method, headers)
        request = self._http.build_request(
            "POST",
            method.path,
            content=body,
            headers=self._request_headers(STREAM_CONTENT_TYPE, headers, timeout),
            timeout=self._http_timeout(timeout),
        )
        stream = _ResponseStream(method.response_type)
        stream.open(lambda: self._http.send(request, stream=True))
        return stream

    def server_stream(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> _ResponseStream:
        """Open a server-streaming call."""
        return self._open_stream(method, encode_envelope(request.SerializeToString()), headers, timeout)

    def client_stream(
        self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> _ClientStream:
        """Open a client-streaming call."""
        return _ClientStream(self, method, headers, timeout)

    def bidi(self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None) -> _BidiStream:
        """Open a half-duplex bidirectional call."""
        return _BidiStream(self, method, headers, timeout)

    def code_of(self, exc: BaseException) -> Code:
        """Return the status code of a facade or httpx error."""
        if isinstance(exc, httpx.HTTPError):
            return _transport_error(exc).code
        return super().code_of(exc)

    def clone(self, *, host: str | None = None, port: int | None = None) -> ConnectClient:
        """Return a client on a fresh connection pool with the same settings."""
        return ConnectClient(
            host if host is not None else self.host,
            port if port is not None else self.port,
            tls=self.tls,
            timeout=self.timeout,
        )

    def close(self) -> None:
        """Close the connection pool."""
        self._http.close()
        _logger.debug("closed Connect client for %s", self._http.base_url)

    def __repr__(self) -> str:
        return f"ConnectClient({self.host}:{self.port}, tls={self.tls is not None})"
