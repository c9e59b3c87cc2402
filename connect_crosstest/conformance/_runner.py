# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Conformance harness.

Runs the scenario catalogue against one live client, one scenario at a
time, and collects a result per scenario.

Usage::

    from connect_crosstest.config import ClientConfig, Protocol
    from connect_crosstest.conformance import run_conformance

    with ClientConfig("127.0.0.1", 8081, Protocol.GRPC).connect() as client:
        suite = run_conformance(client)
    assert suite.success

Scenarios the client cannot drive (for example full-duplex streams over
HTTP/1.1) are reported as skipped.  A scenario that times out is abandoned
on its thread, and the rest of the run continues on ``client.clone()``;
the caller's client is never closed here.  Scenarios report through a
:class:`~connect_crosstest.conformance.Reporter` built per scenario by
``reporter_factory``; a reporter whose ``fatalf`` exits the process
(:class:`~connect_crosstest.conformance.CliReporter`) ends the run there.
"""

from __future__ import annotations

import contextlib
import fnmatch
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from connect_crosstest.rpc import RpcClient, RpcError

from ._reporter import InProcessReporter, ReportEvent, Reporter, ScenarioAborted
from ._scenarios import _SCENARIOS, ScenarioOptions, _Scenario

_logger = logging.getLogger("connect_crosstest.conformance")

# Default per-scenario timeout in seconds.
DEFAULT_TEST_TIMEOUT: float = 30.0


class _TestTimeoutError(Exception):
    """Raised when a scenario exceeds its timeout."""


def _run_with_timeout(fn: Callable[[], None], timeout: float) -> None:
    """Run *fn* on a daemon thread, raising ``_TestTimeoutError`` if it exceeds *timeout* seconds."""
    exc: BaseException | None = None
    finished = threading.Event()

    def _target() -> None:
        nonlocal exc
        try:
            fn()
        except BaseException as e:
            exc = e
        finally:
            finished.set()

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    if not finished.wait(timeout):
        raise _TestTimeoutError(f"Test exceeded {timeout}s timeout")
    if exc is not None:
        raise exc


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConformanceResult:
    """Result of a single scenario.

    Attributes:
        name: ``category.name`` of the scenario.
        category: Scenario category.
        passed: Whether the scenario ran and nothing failed.
        duration_ms: Wall time spent in the scenario.
        error: Failure summary, or the skip reason.
        skipped: Whether the client could not run the scenario.
        events: Every report the scenario made, when the reporter records them.
        timed_out: Whether the scenario was abandoned at its timeout.

    """

    name: str
    category: str
    passed: bool
    duration_ms: float
    error: str | None = None
    skipped: bool = False
    events: tuple[ReportEvent, ...] = ()
    timed_out: bool = False


@dataclass(frozen=True)
class ConformanceSuite:
    """Aggregate results of a conformance run."""

    results: list[ConformanceResult]
    total: int
    passed: int
    failed: int
    skipped: int
    duration_ms: float

    @property
    def success(self) -> bool:
        """Whether no scenario failed."""
        return self.failed == 0


ReporterFactory = Callable[[str], Reporter]

# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _matches_filter(name: str, patterns: list[str]) -> bool:
    """Check if a scenario name matches any of the given glob patterns."""
    return any(fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(name.split(".")[0], pattern) for pattern in patterns)


def _select(filter_patterns: list[str] | None) -> list[_Scenario]:
    if filter_patterns:
        return [s for s in _SCENARIOS if _matches_filter(s.full_name, filter_patterns)]
    return list(_SCENARIOS)


def list_conformance_tests(filter_patterns: list[str] | None = None) -> list[str]:
    """Return sorted names of available scenarios, optionally filtered.

    Args:
        filter_patterns: Optional glob patterns to filter scenarios.

    Returns:
        Sorted list of scenario names in ``category.name`` format.

    """
    return sorted(s.full_name for s in _select(filter_patterns))


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _invoke(scenario: _Scenario, t: Reporter, client: RpcClient, options: ScenarioOptions) -> None:
    """Run one scenario, turning stray exceptions into fatal reports."""
    try:
        scenario.fn(t, client, options)
    except ScenarioAborted:
        raise
    except AssertionError as e:
        t.fatalf("%s", str(e) or "Assertion failed")
    except RpcError as e:
        t.fatalf("unexpected RPC failure: %s", e)
    except Exception as e:
        t.fatalf("%s: %s", type(e).__name__, e)


def _run_one(
    scenario: _Scenario,
    client: RpcClient,
    reporter_factory: ReporterFactory,
    options: ScenarioOptions,
    timeout: float,
) -> ConformanceResult:
    missing = scenario.requires - client.capabilities
    if missing:
        reason = f"{client.protocol} client lacks {', '.join(sorted(missing))}"
        _logger.info("Skipping %s: %s", scenario.full_name, reason, extra={"scenario": scenario.full_name})
        return ConformanceResult(
            name=scenario.full_name,
            category=scenario.category,
            passed=False,
            duration_ms=0.0,
            error=reason,
            skipped=True,
        )

    t = reporter_factory(scenario.full_name)
    if scenario.timeout is not None and timeout > 0:
        timeout = max(timeout, scenario.timeout(options))
    start = time.monotonic()
    timed_out = False
    try:
        if timeout > 0:
            _run_with_timeout(lambda: _invoke(scenario, t, client, options), timeout)
        else:
            _invoke(scenario, t, client, options)
    except ScenarioAborted:
        pass
    except _TestTimeoutError as e:
        timed_out = True
        with contextlib.suppress(ScenarioAborted):
            t.fatalf("%s", e)
    elapsed_ms = (time.monotonic() - start) * 1000

    error = t.failure_summary()
    result = ConformanceResult(
        name=scenario.full_name,
        category=scenario.category,
        passed=not t.failed,
        duration_ms=elapsed_ms,
        error=error,
        events=tuple(getattr(t, "events", ())),
        timed_out=timed_out,
    )
    _logger.info(
        "Scenario %s %s",
        result.name,
        "passed" if result.passed else "failed",
        extra={"scenario": result.name, "passed": result.passed, "duration_ms": round(elapsed_ms, 2)},
    )
    return result


def run_conformance(
    client: RpcClient,
    *,
    reporter_factory: ReporterFactory = InProcessReporter,
    filter_patterns: list[str] | None = None,
    options: ScenarioOptions | None = None,
    on_progress: Callable[[ConformanceResult], None] | None = None,
    timeout: float = DEFAULT_TEST_TIMEOUT,
) -> ConformanceSuite:
    """Run the scenario catalogue against *client* and return the results.

    Args:
        client: A live client for the server under test.
        reporter_factory: Builds the reporter for each scenario from its name.
        filter_patterns: Optional glob patterns to filter which scenarios run.
        options: Payload sizes and soak tuning; defaults apply when ``None``.
        on_progress: Optional callback invoked after each scenario completes.
        timeout: Per-scenario timeout in seconds.  Set to ``0`` to disable.

    Returns:
        A ConformanceSuite with all results.

    Raises:
        SystemExit: When a reporter's fatal report exits the process.

    """
    options = options if options is not None else ScenarioOptions()
    suite_start = time.monotonic()
    results: list[ConformanceResult] = []

    current = client
    try:
        for scenario in _select(filter_patterns):
            result = _run_one(scenario, current, reporter_factory, options, timeout)
            results.append(result)
            if result.timed_out:
                # The abandoned scenario thread may still be calling on ``current``.
                _logger.warning(
                    "Scenario %s timed out; continuing on a new client",
                    result.name,
                    extra={"scenario": result.name},
                )
                stale, current = current, client.clone()
                if stale is not client:
                    stale.close()
            if on_progress:
                on_progress(result)
    finally:
        if current is not client:
            current.close()

    suite_elapsed = (time.monotonic() - suite_start) * 1000
    skipped_count = sum(1 for r in results if r.skipped)
    passed_count = sum(1 for r in results if r.passed)
    failed_count = len(results) - passed_count - skipped_count

    return ConformanceSuite(
        results=results,
        total=len(results),
        passed=passed_count,
        failed=failed_count,
        skipped=skipped_count,
        duration_ms=suite_elapsed,
    )
