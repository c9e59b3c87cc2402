# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Test service, reporters and scenario catalogue for gRPC/Connect interoperability.

The reference server implementation plugs into either transport::

    from connect_crosstest.conformance import TestServiceImpl
    from connect_crosstest.grpc import serve_grpc

    server, port = serve_grpc(TestServiceImpl())

The scenario catalogue runs against any client facade::

    from connect_crosstest.conformance import run_conformance

    suite = run_conformance(client)
    assert suite.success

"""

from connect_crosstest.conformance._fixtures import (
    CROSSTEST_SIZES,
    DEFAULT_SIZES,
    ERROR_DETAIL_DOMAIN,
    GRPC_INTEROP_SIZES,
    NON_ASCII_ERROR_MESSAGE,
    SIZE_DIALECTS,
    SizeDialect,
    client_payload,
    error_detail,
)
from connect_crosstest.conformance._histogram import Histogram, HistogramOptions
from connect_crosstest.conformance._impl import TestServiceImpl
from connect_crosstest.conformance._protocol import (
    IMPLEMENTED_METHODS,
    TEST_SERVICE_METHODS,
    UNIMPLEMENTED_SERVICE_METHODS,
    TestService,
)
from connect_crosstest.conformance._reporter import (
    CliReporter,
    CrossReporter,
    EventKind,
    InProcessReporter,
    Reporter,
    ReportEvent,
    ScenarioAborted,
    expect,
    expect_equal,
    require,
)
from connect_crosstest.conformance._runner import (
    DEFAULT_TEST_TIMEOUT,
    ConformanceResult,
    ConformanceSuite,
    ReporterFactory,
    list_conformance_tests,
    run_conformance,
)
from connect_crosstest.conformance._scenarios import ScenarioOptions, SoakOptions

__all__ = [
    "CROSSTEST_SIZES",
    "CliReporter",
    "ConformanceResult",
    "ConformanceSuite",
    "CrossReporter",
    "DEFAULT_SIZES",
    "DEFAULT_TEST_TIMEOUT",
    "ERROR_DETAIL_DOMAIN",
    "EventKind",
    "GRPC_INTEROP_SIZES",
    "Histogram",
    "HistogramOptions",
    "IMPLEMENTED_METHODS",
    "InProcessReporter",
    "NON_ASCII_ERROR_MESSAGE",
    "ReportEvent",
    "Reporter",
    "ReporterFactory",
    "SIZE_DIALECTS",
    "ScenarioAborted",
    "ScenarioOptions",
    "SizeDialect",
    "SoakOptions",
    "TEST_SERVICE_METHODS",
    "TestService",
    "TestServiceImpl",
    "UNIMPLEMENTED_SERVICE_METHODS",
    "client_payload",
    "error_detail",
    "expect",
    "expect_equal",
    "list_conformance_tests",
    "require",
    "run_conformance",
]
