# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Reference servers for the test service.

:func:`start_servers` starts the gRPC server (HTTP/2) and the Connect
server (HTTP/1.1) side by side on one :class:`TestServiceImpl` and
describes them with a ``server.v1.ServerMetadata`` message, which
``connect-crosstest serve`` prints as one JSON line so a driving process
can discover the ports::

    {"host": "127.0.0.1", "protocols": [{"protocol": "PROTOCOL_GRPC", ...}]}

The Connect server is plaintext only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import grpc
from google.protobuf import json_format

from connect_crosstest.config import ServerConfig
from connect_crosstest.conformance import TestServiceImpl
from connect_crosstest.connect import ConnectServer, serve_connect
from connect_crosstest.grpc import serve_grpc
from connect_crosstest.messages import HTTPVersion, ProtocolSupport, ServerMetadata
from connect_crosstest.messages import Protocol as ProtocolEnum

_logger = logging.getLogger("connect_crosstest")

_STOP_GRACE_SECONDS = 1.0


@dataclass
class RunningServers:
    """Both reference servers, started.

    Attributes:
        host: Interface both servers are bound to.
        grpc_server: The running grpcio server.
        grpc_port: Port of the gRPC server.
        connect_server: The running waitress-backed Connect server.
        tls: Whether the gRPC server serves TLS.
        impl: The shared service implementation.

    """

    host: str
    grpc_server: grpc.Server
    grpc_port: int
    connect_server: ConnectServer
    tls: bool
    impl: TestServiceImpl

    @property
    def connect_port(self) -> int:
        """Port of the Connect server."""
        return self.connect_server.port

    def metadata(self) -> Any:
        """Describe the servers as a ``server.v1.ServerMetadata`` message."""
        return server_metadata(self.host, grpc_port=self.grpc_port, connect_port=self.connect_port)

    def stop(self) -> None:
        """Stop both servers."""
        self.connect_server.stop()
        self.grpc_server.stop(_STOP_GRACE_SECONDS).wait()
        _logger.info(
            "Reference servers stopped",
            extra={"grpc_port": self.grpc_port, "connect_port": self.connect_port},
        )

    def __enter__(self) -> RunningServers:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def server_metadata(host: str, *, grpc_port: int, connect_port: int) -> Any:
    """Build the ``ServerMetadata`` message for servers on *host*.

    Args:
        host: Host the servers are reachable on.
        grpc_port: Port of the gRPC server (HTTP/2).
        connect_port: Port of the Connect server (HTTP/1.1).

    Returns:
        A ``server.v1.ServerMetadata`` message listing both protocols.

    """
    return ServerMetadata(
        host=host,
        protocols=[
            ProtocolSupport(
                protocol=ProtocolEnum.values_by_name["PROTOCOL_GRPC"].number,
                http_versions=[HTTPVersion(major=2)],
                port=str(grpc_port),
            ),
            ProtocolSupport(
                protocol=ProtocolEnum.values_by_name["PROTOCOL_CONNECT"].number,
                http_versions=[HTTPVersion(major=1, minor=1)],
                port=str(connect_port),
            ),
        ],
    )


def metadata_json(metadata: Any) -> str:
    """Render a ``ServerMetadata`` message as one line of JSON."""
    return json_format.MessageToJson(metadata, indent=None)


def start_servers(config: ServerConfig | None = None) -> RunningServers:
    """Start the gRPC and Connect reference servers.

    Args:
        config: Bind addresses, ports and TLS; defaults bind free ports on
            the loopback interface.

    Returns:
        The running servers.

    Raises:
        RuntimeError: If the gRPC port cannot be bound.
        OSError: If the Connect port cannot be bound.

    """
    config = config if config is not None else ServerConfig()
    impl = TestServiceImpl(server_id=config.server_id or None)
    grpc_server, grpc_port = serve_grpc(impl, host=config.host, port=config.grpc_port, tls=config.tls)
    try:
        connect_server = serve_connect(impl, host=config.host, port=config.connect_port)
    except BaseException:
        grpc_server.stop(None)
        raise
    servers = RunningServers(
        host=config.host,
        grpc_server=grpc_server,
        grpc_port=grpc_port,
        connect_server=connect_server,
        tls=config.tls is not None,
        impl=impl,
    )
    _logger.info(
        "Reference servers started",
        extra={"host": config.host, "grpc_port": grpc_port, "connect_port": servers.connect_port},
    )
    return servers
