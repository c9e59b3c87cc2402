# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Cross-implementation conformance harness for gRPC and Connect RPC."""

import logging

from connect_crosstest.codes import Code
from connect_crosstest.config import ClientConfig, Protocol, ServerConfig, TlsConfig
from connect_crosstest.conformance import (
    CliReporter,
    ConformanceResult,
    ConformanceSuite,
    CrossReporter,
    InProcessReporter,
    Reporter,
    ScenarioOptions,
    SoakOptions,
    TestService,
    TestServiceImpl,
    list_conformance_tests,
    run_conformance,
)
from connect_crosstest.connect import ConnectClient, ConnectServer, serve_connect
from connect_crosstest.grpc import GrpcClient, serve_grpc
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import Capability, RpcClient, RpcError, ServerCallContext
from connect_crosstest.server import RunningServers, start_servers

__all__ = [
    # Codes & errors
    "Code",
    "RpcError",
    # Facade
    "Capability",
    "Metadata",
    "RpcClient",
    "ServerCallContext",
    # Configuration
    "ClientConfig",
    "Protocol",
    "ServerConfig",
    "TlsConfig",
    # Transports
    "ConnectClient",
    "ConnectServer",
    "GrpcClient",
    "serve_connect",
    "serve_grpc",
    # Servers
    "RunningServers",
    "start_servers",
    # Conformance
    "CliReporter",
    "ConformanceResult",
    "ConformanceSuite",
    "CrossReporter",
    "InProcessReporter",
    "Reporter",
    "ScenarioOptions",
    "SoakOptions",
    "TestService",
    "TestServiceImpl",
    "list_conformance_tests",
    "run_conformance",
]

# Attach NullHandler to the root logger so library users don't get
# "No handler found" warnings.  Must come after all imports so the
# logger hierarchy is fully populated.
logging.getLogger("connect_crosstest").addHandler(logging.NullHandler())
