# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""TestService Protocol definition and the method tables of both services.

``grpc.testing.TestService`` is what every server under test implements.
``UnimplementedCall`` and ``UnimplementedStreamingOutputCall`` are declared
by the service but deliberately never registered, and
``grpc.testing.UnimplementedService`` is never registered at all, so
clients can tell a missing method from a missing service.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Protocol

from connect_crosstest import messages
from connect_crosstest.rpc import RpcMethod, ServerCallContext, rpc_methods

TEST_SERVICE_METHODS: Mapping[str, RpcMethod] = rpc_methods(messages.TEST_SERVICE)
"""Every method declared by ``grpc.testing.TestService``, keyed by name."""

UNIMPLEMENTED_SERVICE_METHODS: Mapping[str, RpcMethod] = rpc_methods(messages.UNIMPLEMENTED_SERVICE)
"""Every method declared by ``grpc.testing.UnimplementedService``, keyed by name."""

UNIMPLEMENTED_METHOD_NAMES: frozenset[str] = frozenset({"UnimplementedCall", "UnimplementedStreamingOutputCall"})

IMPLEMENTED_METHODS: Mapping[str, RpcMethod] = {
    name: method for name, method in TEST_SERVICE_METHODS.items() if name not in UNIMPLEMENTED_METHOD_NAMES
}
"""The methods a conforming server registers."""


class TestService(Protocol):
    """Server-side contract of ``grpc.testing.TestService``.

    Method names match the wire names so transports can dispatch with
    ``getattr``.  Streaming methods are generators; a method ends its call
    with a non-OK status by raising :class:`~connect_crosstest.rpc.RpcError`.
    """

    __test__ = False  # not a pytest test class

    def EmptyCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Return an empty message."""
        ...

    def UnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Return a payload of the requested size, echoing status and metadata."""
        ...

    def FailUnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Always fail with ``RESOURCE_EXHAUSTED`` and one error detail."""
        ...

    def CacheableUnaryCall(self, request: Any, ctx: ServerCallContext) -> Any:  # noqa: N802
        """Same as ``UnaryCall``; declared free of side effects."""
        ...

    def StreamingOutputCall(self, request: Any, ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Stream one response per response parameter."""
        ...

    def FailStreamingOutputCall(self, request: Any, ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Stream the requested responses, then fail with ``RESOURCE_EXHAUSTED``."""
        ...

    def StreamingInputCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Any:  # noqa: N802
        """Return the summed body length of every request."""
        ...

    def FullDuplexCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Answer each request as it arrives."""
        ...

    def HalfDuplexCall(self, requests: Iterator[Any], ctx: ServerCallContext) -> Iterator[Any]:  # noqa: N802
        """Buffer every request, then answer them in order."""
        ...
