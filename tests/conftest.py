"""Shared test fixtures for connect-crosstest tests."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, NoReturn

import pytest

from connect_crosstest.config import ClientConfig, Protocol, ServerConfig
from connect_crosstest.conformance import InProcessReporter, ReporterFactory, ScenarioAborted
from connect_crosstest.rpc import RpcClient
from connect_crosstest.server import RunningServers, start_servers

SERVER_ID = "test-server-1"


class PytestReporter(InProcessReporter):
    """In-process reporter whose fatal reports fail the running pytest test."""

    def fatalf(self, fmt: str, *args: Any) -> NoReturn:
        """Record the failure, then hand it to ``pytest.fail``."""
        try:
            super().fatalf(fmt, *args)
        except ScenarioAborted:
            pytest.fail(f"{self.name}: {self.failure_summary()}", pytrace=False)

    def fail_now(self) -> NoReturn:
        """Fail the running pytest test with what was reported so far."""
        try:
            super().fail_now()
        except ScenarioAborted:
            pytest.fail(f"{self.name}: {self.failure_summary()}", pytrace=False)


@pytest.fixture
def pytest_reporter() -> ReporterFactory:
    """Reporter factory that delegates scenario failures to pytest."""
    return PytestReporter


@pytest.fixture(scope="session")
def reference_servers() -> Iterator[RunningServers]:
    """Start the gRPC and Connect reference servers once for the whole session."""
    servers = start_servers(ServerConfig(server_id=SERVER_ID))
    try:
        yield servers
    finally:
        servers.stop()


@pytest.fixture(scope="session")
def grpc_client(reference_servers: RunningServers) -> Iterator[RpcClient]:
    """GrpcClient bound to the reference gRPC server."""
    client = ClientConfig(port=reference_servers.grpc_port, protocol=Protocol.GRPC).connect()
    yield client
    client.close()


@pytest.fixture(scope="session")
def connect_client(reference_servers: RunningServers) -> Iterator[RpcClient]:
    """ConnectClient bound to the reference Connect server."""
    client = ClientConfig(port=reference_servers.connect_port, protocol=Protocol.CONNECT).connect()
    yield client
    client.close()


@pytest.fixture(params=["grpc", "connect"])
def client(request: pytest.FixtureRequest) -> RpcClient:
    """Parametrized client: every test using it runs over both transports."""
    fixture_name = f"{request.param}_client"
    result: RpcClient = request.getfixturevalue(fixture_name)
    return result
