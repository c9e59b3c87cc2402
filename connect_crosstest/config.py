# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client and server configuration.

The CLI maps its flags onto these dataclasses; library users build them
directly.  Scenario tuning (soak knobs, size dialect) lives on
:class:`connect_crosstest.conformance.ScenarioOptions` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from connect_crosstest.rpc import RpcClient


class Protocol(StrEnum):
    """Wire protocols a client can speak."""

    GRPC = "grpc"
    CONNECT = "connect"


@dataclass(frozen=True)
class TlsConfig:
    """Certificate material for TLS.

    Servers need ``cert_file`` and ``key_file``; clients use ``ca_file`` to
    trust a private certificate authority (the system roots when empty).

    Attributes:
        cert_file: PEM certificate chain path.
        key_file: PEM private key path.
        ca_file: PEM bundle of trusted roots.

    Raises:
        ValueError: If only one of *cert_file* and *key_file* is given.

    """

    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""

    def __post_init__(self) -> None:
        """Validate that certificate and key come together."""
        if bool(self.cert_file) != bool(self.key_file):
            raise ValueError("cert_file and key_file must be given together")


@dataclass(frozen=True)
class ClientConfig:
    """Where and how a client connects.

    Attributes:
        host: Server host.
        port: Server port.
        protocol: ``grpc`` (HTTP/2) or ``connect`` (HTTP/1.1).
        tls: Trust settings; plaintext when ``None``.
        timeout: Default per-call timeout in seconds for Connect HTTP
            requests that set no deadline of their own.

    Raises:
        ValueError: If *port* is out of range or *timeout* is not positive.

    """

    host: str = "127.0.0.1"
    port: int = 0
    protocol: Protocol = Protocol.GRPC
    tls: TlsConfig | None = None
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate the port and timeout."""
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def http_version(self) -> tuple[int, int]:
        """HTTP version the protocol runs on."""
        return (2, 0) if self.protocol is Protocol.GRPC else (1, 1)

    def connect(self) -> RpcClient:
        """Build the client facade for this configuration."""
        if self.protocol is Protocol.GRPC:
            from connect_crosstest.grpc import GrpcClient

            return GrpcClient(self.host, self.port, tls=self.tls)
        from connect_crosstest.connect import ConnectClient

        return ConnectClient(self.host, self.port, tls=self.tls, timeout=self.timeout)


@dataclass(frozen=True)
class ServerConfig:
    """Where the reference servers listen.

    Attributes:
        host: Interface both servers bind.
        grpc_port: gRPC port; ``0`` picks a free one.
        connect_port: Connect port; ``0`` picks a free one.
        tls: Certificate and key; plaintext when ``None``.
        server_id: Identifier reported to ``fill_server_id`` requests;
            random when empty.

    """

    host: str = "127.0.0.1"
    grpc_port: int = 0
    connect_port: int = 0
    tls: TlsConfig | None = None
    server_id: str = field(default="")
