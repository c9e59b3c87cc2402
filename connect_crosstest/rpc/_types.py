"""The RPC facade: method descriptors, client capabilities and stream handles.

Scenarios are written once against these interfaces; each transport
(``connect_crosstest.grpc``, ``connect_crosstest.connect``) supplies a
concrete :class:`RpcClient`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from types import TracebackType
from typing import Any, Protocol, Self

from google.protobuf import descriptor_pb2, message_factory
from google.protobuf.descriptor import ServiceDescriptor

from connect_crosstest.codes import Code
from connect_crosstest.metadata import Metadata, decode_binary_header, encode_binary_header

from ._common import RpcError

# ---------------------------------------------------------------------------
# Method descriptors
# ---------------------------------------------------------------------------


class MethodKind(Enum):
    """Call shape, derived from the streaming flags of a method."""

    UNARY = "unary"
    SERVER_STREAM = "server_stream"
    CLIENT_STREAM = "client_stream"
    BIDI = "bidi"

    @property
    def client_streaming(self) -> bool:
        """Whether the client sends a stream of requests."""
        return self in (MethodKind.CLIENT_STREAM, MethodKind.BIDI)

    @property
    def server_streaming(self) -> bool:
        """Whether the server sends a stream of responses."""
        return self in (MethodKind.SERVER_STREAM, MethodKind.BIDI)


@dataclass(frozen=True)
class RpcMethod:
    """One method of a service.

    Attributes:
        service: Fully qualified service name, e.g. ``grpc.testing.TestService``.
        name: Method name, e.g. ``UnaryCall``.
        kind: Call shape.
        request_type: Message class of the request.
        response_type: Message class of the response.
        no_side_effects: Whether the method is marked safe to retry and to
            issue as an HTTP GET.

    """

    service: str
    name: str
    kind: MethodKind
    request_type: Any = field(repr=False)
    response_type: Any = field(repr=False)
    no_side_effects: bool = False

    @property
    def path(self) -> str:
        """Return the HTTP path ``/{service}/{name}``."""
        return f"/{self.service}/{self.name}"


def rpc_methods(service: ServiceDescriptor) -> Mapping[str, RpcMethod]:
    """Build the method table of a service from its descriptor.

    Args:
        service: A protobuf service descriptor.

    Returns:
        Methods keyed by method name, in declaration order.

    """
    methods: dict[str, RpcMethod] = {}
    for md in service.methods:
        if md.client_streaming and md.server_streaming:
            kind = MethodKind.BIDI
        elif md.client_streaming:
            kind = MethodKind.CLIENT_STREAM
        elif md.server_streaming:
            kind = MethodKind.SERVER_STREAM
        else:
            kind = MethodKind.UNARY
        idempotency = md.GetOptions().idempotency_level
        methods[md.name] = RpcMethod(
            service=service.full_name,
            name=md.name,
            kind=kind,
            request_type=message_factory.GetMessageClass(md.input_type),
            response_type=message_factory.GetMessageClass(md.output_type),
            no_side_effects=idempotency == descriptor_pb2.MethodOptions.NO_SIDE_EFFECTS,
        )
    return methods


# ---------------------------------------------------------------------------
# Client capabilities and results
# ---------------------------------------------------------------------------


class Capability(StrEnum):
    """Call shapes a client facade can drive."""

    CLIENT_STREAM = "client_stream"
    """Client-streaming calls."""

    HALF_DUPLEX = "half_duplex"
    """Bidi calls where the client finishes sending before it reads."""

    FULL_DUPLEX = "full_duplex"
    """Bidi calls with interleaved sends and receives."""


@dataclass(frozen=True)
class UnaryResult:
    """Outcome of a successful unary or client-streaming call."""

    message: Any
    headers: Metadata
    trailers: Metadata


# ---------------------------------------------------------------------------
# Stream handles
# ---------------------------------------------------------------------------


class ServerStream(Protocol):
    """Handle on a server-streaming call."""

    def receive(self) -> Any | None:
        """Return the next response, or ``None`` at a clean end of stream.

        Raises:
            RpcError: If the call ended with a non-OK status.

        """
        ...

    def headers(self) -> Metadata:
        """Return the response headers."""
        ...

    def trailers(self) -> Metadata:
        """Return the response trailers (available after end of stream)."""
        ...

    def close(self) -> None:
        """Release the call; cancels it if still running."""
        ...


class ClientStream(Protocol):
    """Handle on a client-streaming call."""

    def send(self, message: Any) -> None:
        """Send one request."""
        ...

    def close_and_receive(self) -> UnaryResult:
        """Finish sending and wait for the single response.

        Raises:
            RpcError: If the call failed or was cancelled.

        """
        ...

    def cancel(self) -> None:
        """Cancel the call."""
        ...


class BidiStream(Protocol):
    """Handle on a bidirectional-streaming call."""

    def send(self, message: Any) -> None:
        """Send one request.

        Raises:
            RpcError: If the call has already ended.

        """
        ...

    def close_send(self) -> None:
        """Signal that no more requests follow."""
        ...

    def receive(self) -> Any | None:
        """Return the next response, or ``None`` at a clean end of stream."""
        ...

    def headers(self) -> Metadata:
        """Return the response headers."""
        ...

    def trailers(self) -> Metadata:
        """Return the response trailers (available after end of stream)."""
        ...

    def cancel(self) -> None:
        """Cancel the call."""
        ...

    def close(self) -> None:
        """Release the call; cancels it if still running."""
        ...


class RpcClient(Protocol):
    """A live client bound to one server, protocol and HTTP version."""

    protocol: str
    capabilities: frozenset[Capability]

    def unary(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> UnaryResult:
        """Issue a unary call."""
        ...

    def server_stream(
        self, method: RpcMethod, request: Any, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> ServerStream:
        """Open a server-streaming call."""
        ...

    def client_stream(
        self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None
    ) -> ClientStream:
        """Open a client-streaming call."""
        ...

    def bidi(self, method: RpcMethod, *, headers: Metadata | None = None, timeout: float | None = None) -> BidiStream:
        """Open a bidirectional-streaming call."""
        ...

    def encode_binary(self, value: bytes) -> str:
        """Encode a binary header value for display or the wire."""
        ...

    def decode_binary(self, value: str) -> bytes:
        """Decode a binary header value."""
        ...

    def code_of(self, exc: BaseException) -> Code:
        """Return the status code carried by *exc*."""
        ...

    def clone(self, *, host: str | None = None, port: int | None = None) -> RpcClient:
        """Return a new client with the same settings, optionally re-targeted."""
        ...

    def close(self) -> None:
        """Release connections."""
        ...


class BaseRpcClient:
    """Behaviour every client facade shares."""

    protocol: str = ""
    capabilities: frozenset[Capability] = frozenset()

    def encode_binary(self, value: bytes) -> str:
        """Encode *value* as unpadded standard base64."""
        return encode_binary_header(value)

    def decode_binary(self, value: str) -> bytes:
        """Decode padded or unpadded standard base64."""
        return decode_binary_header(value)

    def code_of(self, exc: BaseException) -> Code:
        """Return ``exc.code`` for an :class:`RpcError`, ``UNKNOWN`` otherwise."""
        return exc.code if isinstance(exc, RpcError) else Code.UNKNOWN

    def close(self) -> None:
        """Release connections."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
