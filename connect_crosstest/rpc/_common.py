"""Errors, the server call scope, and the access log shared by both transports."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from google.protobuf import any_pb2
from google.protobuf.message import Message

from connect_crosstest.codes import Code
from connect_crosstest.metadata import Metadata

_logger = logging.getLogger("connect_crosstest.rpc")
_access_logger = logging.getLogger("connect_crosstest.access")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RpcError(Exception):
    """An RPC that ended with a non-OK code.

    Raised by client facades when a call fails and by server method bodies
    to end a call with a specific status.  ``details`` holds typed payloads
    packed as ``google.protobuf.Any``, in order.

    Attributes:
        code: The canonical status code.
        message: The status message, exactly as sent by the peer.
        details: Packed detail messages.
        headers: Leading metadata observed before the failure (client side).
        trailers: Trailing metadata delivered with the status (client side).

    """

    def __init__(
        self,
        code: Code,
        message: str = "",
        details: Iterable[any_pb2.Any] = (),
        *,
        headers: Metadata | None = None,
        trailers: Metadata | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details: list[any_pb2.Any] = list(details)
        self.headers = headers if headers is not None else Metadata()
        self.trailers = trailers if trailers is not None else Metadata()
        super().__init__(f"{code.connect_name}: {message}" if message else code.connect_name)

    @classmethod
    def with_details(cls, code: Code, message: str, *details: Message) -> RpcError:
        """Build an error carrying the given detail messages.

        Raises:
            RpcError: With code ``INTERNAL`` when a detail cannot be packed.

        """
        packed: list[any_pb2.Any] = []
        for detail in details:
            value = any_pb2.Any()
            try:
                value.Pack(detail)
            except Exception as exc:
                raise RpcError(Code.INTERNAL, "error when adding error details") from exc
            packed.append(value)
        return cls(code, message, packed)

    def unpack_details(self, message_cls: Any) -> list[Any]:
        """Return every detail whose type matches *message_cls*, unpacked, in order."""
        result: list[Any] = []
        for value in self.details:
            if value.Is(message_cls.DESCRIPTOR):
                msg = message_cls()
                value.Unpack(msg)
                result.append(msg)
        return result


class ScopeError(RpcError):
    """Raised by :meth:`ServerCallContext.check` once the call is cancelled or past its deadline."""


# ---------------------------------------------------------------------------
# Server call scope
# ---------------------------------------------------------------------------


class ServerCallContext:
    """Per-call scope handed to every server method body.

    Carries the request headers, collects response headers and trailers,
    and exposes the call's deadline and cancellation signal.  Method bodies
    must call :meth:`check` at each suspension point; :meth:`sleep` returns
    early when the call is cancelled so the following check fires promptly.
    """

    __slots__ = (
        "_cancelled",
        "_headers_sent",
        "_lock",
        "_on_send_headers",
        "deadline",
        "method",
        "protocol",
        "request_headers",
        "response_headers",
        "response_trailers",
        "started",
    )

    def __init__(
        self,
        method: str,
        protocol: str,
        request_headers: Metadata,
        *,
        deadline: float | None = None,
        on_send_headers: Callable[[Metadata], None] | None = None,
    ) -> None:
        """Initialize the scope.

        Args:
            method: Fully qualified method path, e.g. ``/grpc.testing.TestService/UnaryCall``.
            protocol: Transport name (``"grpc"`` or ``"connect"``).
            request_headers: Leading metadata sent by the client.
            deadline: Absolute ``time.monotonic()`` deadline, if any.
            on_send_headers: Transport hook that flushes response headers.

        """
        self.method = method
        self.protocol = protocol
        self.request_headers = request_headers
        self.response_headers = Metadata()
        self.response_trailers = Metadata()
        self.deadline = deadline
        self.started = time.monotonic()
        self._cancelled = threading.Event()
        self._headers_sent = False
        self._lock = threading.Lock()
        self._on_send_headers = on_send_headers

    def time_remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or ``None`` without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        """Mark the call cancelled and wake any pending :meth:`sleep`."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        """Whether the call has been cancelled."""
        return self._cancelled.is_set()

    def is_active(self) -> bool:
        """Whether the call is neither cancelled nor past its deadline."""
        if self._cancelled.is_set():
            return False
        return self.deadline is None or time.monotonic() < self.deadline

    def check(self) -> None:
        """Abort the method body if the call is no longer active.

        Raises:
            ScopeError: ``DEADLINE_EXCEEDED`` once the deadline has passed,
                otherwise ``CANCELLED`` if the call was cancelled.

        """
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ScopeError(Code.DEADLINE_EXCEEDED, "deadline exceeded")
        if self._cancelled.is_set():
            raise ScopeError(Code.CANCELLED, "call cancelled")

    def sleep(self, seconds: float) -> None:
        """Wait *seconds*, returning early on cancellation or at the deadline."""
        if seconds <= 0:
            return
        remaining = self.time_remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancelled.wait(seconds)

    @property
    def headers_sent(self) -> bool:
        """Whether response headers have been flushed."""
        return self._headers_sent

    def send_headers(self) -> None:
        """Flush response headers now; later additions to them are not delivered."""
        with self._lock:
            if self._headers_sent:
                return
            self._headers_sent = True
        if self._on_send_headers is not None:
            self._on_send_headers(self.response_headers)


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------


def _emit_access_log(ctx: ServerCallContext, code: Code, *, http_status: int | None = None) -> None:
    """Emit one structured record for a completed server call."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    duration_ms = (time.monotonic() - ctx.started) * 1000
    extra: dict[str, object] = {
        "protocol": ctx.protocol,
        "method": ctx.method,
        "code": code.name,
        "duration_ms": round(duration_ms, 2),
    }
    if http_status is not None:
        extra["http_status"] = http_status
    _access_logger.info("%s %s %s", ctx.protocol, ctx.method, code.name, extra=extra)
