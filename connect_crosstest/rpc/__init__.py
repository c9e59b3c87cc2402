# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Transport-independent RPC facade.

Every transport exposes the same small surface so the scenario catalogue is
written once:

- **Client side**: :class:`RpcClient` with ``unary``, ``server_stream``,
  ``client_stream`` and ``bidi`` calls, the binary header codec, and
  ``code_of`` for classifying failures.  Each client advertises the call
  shapes it can drive through ``capabilities``.
- **Server side**: method bodies receive a :class:`ServerCallContext` that
  carries headers, trailers, the deadline and the cancellation signal.
- **Errors**: :class:`RpcError` carries ``(code, message, details)``.

Server method signatures follow the call shape::

    unary          fn(request, ctx) -> response
    server stream  fn(request, ctx) -> Iterator[response]
    client stream  fn(requests: Iterator[request], ctx) -> response
    bidi           fn(requests: Iterator[request], ctx) -> Iterator[response]

"""

from connect_crosstest.rpc._common import (
    RpcError,
    ScopeError,
    ServerCallContext,
    _emit_access_log,
)
from connect_crosstest.rpc._types import (
    BaseRpcClient,
    BidiStream,
    Capability,
    ClientStream,
    MethodKind,
    RpcClient,
    RpcMethod,
    ServerStream,
    UnaryResult,
    rpc_methods,
)

__all__ = [
    "BaseRpcClient",
    "BidiStream",
    "Capability",
    "ClientStream",
    "MethodKind",
    "RpcClient",
    "RpcError",
    "RpcMethod",
    "ScopeError",
    "ServerCallContext",
    "ServerStream",
    "UnaryResult",
    "rpc_methods",
]
