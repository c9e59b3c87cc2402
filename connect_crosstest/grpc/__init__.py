# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""gRPC over HTTP/2, on grpcio.

Server::

    from connect_crosstest.conformance import TestServiceImpl
    from connect_crosstest.grpc import serve_grpc

    server, port = serve_grpc(TestServiceImpl())

Client::

    from connect_crosstest.grpc import GrpcClient

    with GrpcClient("127.0.0.1", port) as client:
        ...

Error details travel in the ``grpc-status-details-bin`` trailer as a
serialized ``google.rpc.Status``.
"""

from connect_crosstest.grpc._client import GrpcClient
from connect_crosstest.grpc._common import from_grpc_status, to_grpc_status
from connect_crosstest.grpc._server import make_generic_handler, serve_grpc

__all__ = ["GrpcClient", "from_grpc_status", "make_generic_handler", "serve_grpc", "to_grpc_status"]
