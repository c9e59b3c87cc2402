# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the conformance harness: selection, skipping, failure capture and timeouts."""

from __future__ import annotations

import io
import threading
import time

import pytest

from connect_crosstest.codes import Code
from connect_crosstest.conformance import (
    CliReporter,
    ConformanceResult,
    EventKind,
    Reporter,
    ScenarioOptions,
    list_conformance_tests,
    run_conformance,
)
from connect_crosstest.conformance import _runner
from connect_crosstest.conformance._runner import _matches_filter
from connect_crosstest.conformance._scenarios import _Scenario
from connect_crosstest.rpc import BaseRpcClient, Capability, RpcClient, RpcError


class _NullClient(BaseRpcClient):
    """Client that never makes a call; scenarios under test don't need one."""

    protocol = "null"
    capabilities = frozenset({Capability.CLIENT_STREAM})

    def __init__(self) -> None:
        self.closed = False
        self.clones: list[_NullClient] = []

    def clone(self, *, host: str | None = None, port: int | None = None) -> _NullClient:
        copy = _NullClient()
        self.clones.append(copy)
        return copy

    def close(self) -> None:
        self.closed = True


def _install(monkeypatch: pytest.MonkeyPatch, *scenarios: _Scenario) -> None:
    monkeypatch.setattr(_runner, "_SCENARIOS", list(scenarios))


def _passing(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    t.successf("ok")


def _erroring(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    t.errorf("first problem: %d", 1)
    t.errorf("second problem")


def _fatal(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    t.fatalf("stop here")


def _asserting(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    raise AssertionError("values differ")


def _rpc_failing(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    raise RpcError(Code.UNAVAILABLE, "no route")


def _crashing(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    raise KeyError("missing")


def _sleeping(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    time.sleep(5)


def _scenario(name: str, fn: object, **kwargs: object) -> _Scenario:
    return _Scenario(category="fake", name=name, fn=fn, **kwargs)  # type: ignore[arg-type]


class TestSelection:
    """Glob filtering of scenario names."""

    def test_matches_full_name_and_category(self) -> None:
        """Patterns match the full name or the category alone."""
        assert _matches_filter("unary.large_unary", ["unary"])
        assert _matches_filter("unary.large_unary", ["*.large_*"])
        assert not _matches_filter("unary.large_unary", ["streaming"])

    def test_list_sorted(self) -> None:
        """Listed names are sorted and in category.name form."""
        names = list_conformance_tests()
        assert names == sorted(names)
        assert all("." in n for n in names)

    def test_list_filtered(self) -> None:
        """Only matching names are listed."""
        names = list_conformance_tests(["unimplemented"])
        assert len(names) == 4
        assert all(n.startswith("unimplemented.") for n in names)

    def test_filter_union(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Multiple patterns select the union, in registration order."""
        _install(monkeypatch, _scenario("a", _passing), _scenario("b", _passing), _scenario("c", _passing))
        suite = run_conformance(_NullClient(), filter_patterns=["fake.c", "fake.a"])
        assert [r.name for r in suite.results] == ["fake.a", "fake.c"]


class TestOutcomes:
    """How scenario outcomes become results."""

    def test_pass(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A scenario reporting success passes with its event recorded."""
        _install(monkeypatch, _scenario("ok", _passing))
        suite = run_conformance(_NullClient())
        (result,) = suite.results
        assert result.passed
        assert result.error is None
        assert [(e.kind, e.message) for e in result.events] == [(EventKind.SUCCESS, "ok")]
        assert suite.success

    def test_nonfatal_errors_accumulate(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Every errorf is kept and the scenario fails."""
        _install(monkeypatch, _scenario("err", _erroring))
        suite = run_conformance(_NullClient())
        (result,) = suite.results
        assert not result.passed
        assert result.error == "first problem: 1; second problem"
        assert suite.failed == 1
        assert not suite.success

    def test_fatal_stops_scenario_not_run(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A fatal report ends its scenario; later scenarios still run."""
        _install(monkeypatch, _scenario("fatal", _fatal), _scenario("after", _passing))
        suite = run_conformance(_NullClient())
        assert [r.passed for r in suite.results] == [False, True]
        assert suite.results[0].error == "stop here"

    @pytest.mark.parametrize(
        ("fn", "expected"),
        [
            (_asserting, "values differ"),
            (_rpc_failing, "unexpected RPC failure: unavailable: no route"),
            (_crashing, "KeyError: 'missing'"),
        ],
    )
    def test_exceptions_become_failures(self, monkeypatch: pytest.MonkeyPatch, fn: object, expected: str) -> None:
        """Exceptions escaping a scenario are recorded as fatal failures."""
        _install(monkeypatch, _scenario("boom", fn))
        (result,) = run_conformance(_NullClient()).results
        assert not result.passed
        assert result.error == expected
        assert result.events[-1].kind is EventKind.FATAL

    def test_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A scenario over its time budget fails with a timeout message."""
        _install(monkeypatch, _scenario("slow", _sleeping))
        (result,) = run_conformance(_NullClient(), timeout=0.2).results
        assert not result.passed
        assert result.error is not None
        assert "timeout" in result.error

    def test_timeout_moves_run_to_new_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Scenarios after a timeout never share a client with the abandoned one."""
        release = threading.Event()
        seen: list[RpcClient] = []

        def _stuck(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
            seen.append(client)
            release.wait(5)

        def _using(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
            seen.append(client)
            t.successf("ok")

        _install(
            monkeypatch,
            _scenario("stuck", _stuck),
            _scenario("stuck_again", _stuck),
            _scenario("after", _using),
        )
        original = _NullClient()
        try:
            suite = run_conformance(original, timeout=0.2)
        finally:
            release.set()
        assert [(r.passed, r.timed_out) for r in suite.results] == [(False, True), (False, True), (True, False)]
        first, second = original.clones
        assert seen == [original, first, second]
        assert first.closed
        assert second.closed
        assert not original.closed

    def test_scenario_timeout_extends_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A scenario's own timeout wins over a shorter harness timeout."""
        _install(monkeypatch, _scenario("long", _passing, timeout=lambda options: 60.0))
        (result,) = run_conformance(_NullClient(), timeout=0.5).results
        assert result.passed


class TestSkipping:
    """Scenarios needing capabilities the client lacks."""

    def test_missing_capability_skips(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The scenario is skipped, not failed, and never called."""
        called: list[bool] = []

        def _record(t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
            called.append(True)

        _install(
            monkeypatch,
            _scenario("bidi", _record, requires=frozenset({Capability.FULL_DUPLEX})),
            _scenario("client", _passing, requires=frozenset({Capability.CLIENT_STREAM})),
        )
        suite = run_conformance(_NullClient())
        assert called == []
        skipped, ran = suite.results
        assert skipped.skipped
        assert not skipped.passed
        assert skipped.error == "null client lacks full_duplex"
        assert ran.passed
        assert (suite.total, suite.passed, suite.failed, suite.skipped) == (2, 1, 0, 1)
        assert suite.success


class TestProgressAndReporters:
    """Progress callback and reporter selection."""

    def test_progress_callback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The callback sees every result in order."""
        _install(monkeypatch, _scenario("a", _passing), _scenario("b", _erroring))
        seen: list[ConformanceResult] = []
        suite = run_conformance(_NullClient(), on_progress=seen.append)
        assert seen == suite.results

    def test_cli_reporter_exits_on_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """With a CLI reporter a fatal report ends the whole run with status 1."""
        _install(monkeypatch, _scenario("fatal", _fatal), _scenario("after", _passing))
        stream = io.StringIO()
        with pytest.raises(SystemExit) as exc_info:
            run_conformance(_NullClient(), reporter_factory=lambda name: CliReporter(stream))
        assert exc_info.value.code == 1
        assert stream.getvalue() == "FAIL: stop here\n"

    def test_cli_reporter_nonfatal_run_completes(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Non-fatal CLI reports let the run finish and mark the scenario failed."""
        _install(monkeypatch, _scenario("err", _erroring), _scenario("ok", _passing))
        stream = io.StringIO()
        suite = run_conformance(_NullClient(), reporter_factory=lambda name: CliReporter(stream))
        assert [r.passed for r in suite.results] == [False, True]
        assert stream.getvalue().splitlines() == [
            "ERROR: first problem: 1",
            "ERROR: second problem",
            "SUCCESS: ok",
        ]
