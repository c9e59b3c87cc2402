# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for server-side and runner logging."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

import falcon.testing
import pytest

from connect_crosstest.codes import Code
from connect_crosstest.conformance import TestServiceImpl, run_conformance
from connect_crosstest.connect import UNARY_CONTENT_TYPE, make_wsgi_app
from connect_crosstest.logging_utils import CrosstestJsonFormatter
from connect_crosstest.messages import Empty, SimpleRequest
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import RpcClient, ServerCallContext
from connect_crosstest.rpc._common import _emit_access_log


def _extra(record: logging.LogRecord, key: str) -> Any:
    """Read a dynamic extra field from a log record without ``type: ignore``."""
    return record.__dict__[key]


def _record(msg: str = "test", level: int = logging.INFO, exc_info: Any = None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------


class TestAccessLog:
    """Tests for the per-call access log."""

    def test_emit_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        """A completed call logs protocol, method, code and duration."""
        ctx = ServerCallContext("/grpc.testing.TestService/EmptyCall", "grpc", Metadata())
        with caplog.at_level(logging.INFO, logger="connect_crosstest.access"):
            _emit_access_log(ctx, Code.OK)
        (record,) = [r for r in caplog.records if r.name == "connect_crosstest.access"]
        assert _extra(record, "protocol") == "grpc"
        assert _extra(record, "method") == "/grpc.testing.TestService/EmptyCall"
        assert _extra(record, "code") == "OK"
        assert _extra(record, "duration_ms") >= 0
        assert "http_status" not in record.__dict__

    def test_disabled_below_info(self, caplog: pytest.LogCaptureFixture) -> None:
        """Nothing is logged when the access logger is above INFO."""
        ctx = ServerCallContext("/m", "grpc", Metadata())
        with caplog.at_level(logging.WARNING, logger="connect_crosstest.access"):
            _emit_access_log(ctx, Code.OK)
        assert not [r for r in caplog.records if r.name == "connect_crosstest.access"]

    def test_connect_success(self, caplog: pytest.LogCaptureFixture) -> None:
        """A Connect unary call logs its HTTP status."""
        client = falcon.testing.TestClient(make_wsgi_app(TestServiceImpl()))
        with caplog.at_level(logging.INFO, logger="connect_crosstest.access"):
            client.simulate_post(
                "/grpc.testing.TestService/EmptyCall",
                body=Empty().SerializeToString(),
                headers={"Content-Type": UNARY_CONTENT_TYPE},
            )
        (record,) = [r for r in caplog.records if r.name == "connect_crosstest.access"]
        assert _extra(record, "protocol") == "connect"
        assert _extra(record, "code") == "OK"
        assert _extra(record, "http_status") == 200

    def test_connect_error(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing Connect call logs the error code."""
        client = falcon.testing.TestClient(make_wsgi_app(TestServiceImpl()))
        with caplog.at_level(logging.INFO, logger="connect_crosstest.access"):
            client.simulate_post(
                "/grpc.testing.TestService/FailUnaryCall",
                body=SimpleRequest().SerializeToString(),
                headers={"Content-Type": UNARY_CONTENT_TYPE},
            )
        (record,) = [r for r in caplog.records if r.name == "connect_crosstest.access"]
        assert _extra(record, "code") == "RESOURCE_EXHAUSTED"
        assert _extra(record, "http_status") == 429


# ---------------------------------------------------------------------------
# Lifecycle and runner logging
# ---------------------------------------------------------------------------


class TestLifecycleLogging:
    """Tests for lifecycle and scenario records."""

    def test_wsgi_app_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        """Creating the Connect app logs the service."""
        with caplog.at_level(logging.INFO, logger="connect_crosstest.connect"):
            make_wsgi_app(TestServiceImpl())
        records = [r for r in caplog.records if "Connect WSGI app created" in r.message]
        assert len(records) == 1
        assert _extra(records[0], "service") == "grpc.testing.TestService"

    def test_runner_logs_scenarios(self, caplog: pytest.LogCaptureFixture, grpc_client: RpcClient) -> None:
        """Every scenario run logs one record carrying its name and outcome."""
        with caplog.at_level(logging.INFO, logger="connect_crosstest.conformance"):
            run_conformance(grpc_client, filter_patterns=["unary.empty_unary"])
        records = [r for r in caplog.records if r.name == "connect_crosstest.conformance"]
        (record,) = [r for r in records if r.__dict__.get("scenario") == "unary.empty_unary"]
        assert _extra(record, "passed") is True
        assert "passed" in record.message

    def test_runner_logs_skips(self, caplog: pytest.LogCaptureFixture, connect_client: RpcClient) -> None:
        """A skipped scenario is logged with the reason."""
        with caplog.at_level(logging.INFO, logger="connect_crosstest.conformance"):
            run_conformance(connect_client, filter_patterns=["streaming.ping_pong"])
        assert any("Skipping streaming.ping_pong" in r.message for r in caplog.records)

    def test_null_handler_installed(self) -> None:
        """The package root logger carries a NullHandler."""
        logger = logging.getLogger("connect_crosstest")
        assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


class TestCrosstestJsonFormatter:
    """Tests for CrosstestJsonFormatter."""

    def test_valid_json_output(self) -> None:
        """Output should be valid JSON with the fixed keys."""
        parsed = json.loads(CrosstestJsonFormatter().format(_record("test message")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["message"] == "test message"
        assert "timestamp" in parsed

    def test_extra_fields_in_output(self) -> None:
        """Extra fields should appear in JSON output."""
        record = _record()
        record.scenario = "unary.empty_unary"
        record.duration_ms = 1.5
        parsed = json.loads(CrosstestJsonFormatter().format(record))
        assert parsed["scenario"] == "unary.empty_unary"
        assert parsed["duration_ms"] == 1.5

    def test_fixed_keys_not_overridden(self) -> None:
        """An extra named like a fixed key does not replace it."""
        record = _record("real")
        record.level = "fake"
        parsed = json.loads(CrosstestJsonFormatter().format(record))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "real"

    def test_bytes_decoded(self) -> None:
        """Bytes extras are decoded leniently."""
        record = _record()
        record.payload = b"ok\xff"
        parsed = json.loads(CrosstestJsonFormatter().format(record))
        assert parsed["payload"] == "ok�"

    def test_non_ascii_preserved(self) -> None:
        """Non-ASCII text is written as-is."""
        output = CrosstestJsonFormatter().format(_record("Unicode BMP ☺ and non-BMP 😈\t\n"))
        assert "☺" in output
        assert json.loads(output)["message"].endswith("😈\t\n")

    def test_exception_info_included(self) -> None:
        """Exception info should be included in JSON output."""
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()
        parsed = json.loads(CrosstestJsonFormatter().format(_record("error", logging.ERROR, exc_info)))
        assert "ValueError" in parsed["exception"]

    def test_none_exc_info_tuple_excluded(self) -> None:
        """exc_info=(None, None, None) should not produce exception key."""
        parsed = json.loads(CrosstestJsonFormatter().format(_record(exc_info=(None, None, None))))
        assert "exception" not in parsed

    def test_default_str_handles_non_serializable(self) -> None:
        """Non-serializable values should be coerced to strings."""
        record = _record()
        record.code = Code.CANCELLED
        record.custom_obj = object()
        parsed = json.loads(CrosstestJsonFormatter().format(record))
        assert "custom_obj" in parsed
        assert parsed["code"] == int(Code.CANCELLED)
