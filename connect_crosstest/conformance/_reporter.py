# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Reporters: the outcome sink every scenario talks to.

A scenario reports through five operations:

- ``helper()`` marks the calling function as a helper (a no-op here).
- ``errorf(fmt, *args)`` records a failure and lets the scenario continue.
- ``fatalf(fmt, *args)`` records a failure and never returns.
- ``successf(fmt, *args)`` records success; after any earlier failure it
  turns into a fatal failure instead.
- ``fail_now()`` marks the scenario failed and never returns.

Formatting is ``%``-style.  Three variants exist:

- :class:`InProcessReporter` records :class:`ReportEvent` entries and
  aborts with :class:`ScenarioAborted`, which the harness catches so the
  next scenario still runs.
- :class:`CliReporter` writes ``ERROR``/``FAIL``/``SUCCESS`` lines and
  terminates the process with exit status 1 on fatal failures.
- :class:`CrossReporter` is a :class:`CliReporter` whose lines carry a
  client/server pairing label.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, NoReturn, Protocol, TextIO

_logger = logging.getLogger("connect_crosstest.conformance")


class Reporter(Protocol):
    """Outcome sink used by every scenario."""

    @property
    def failed(self) -> bool:
        """Whether any failure has been reported."""
        ...

    def helper(self) -> None:
        """Mark the caller as a helper function."""
        ...

    def errorf(self, fmt: str, *args: Any) -> None:
        """Report a non-fatal failure."""
        ...

    def fatalf(self, fmt: str, *args: Any) -> NoReturn:
        """Report a fatal failure; does not return."""
        ...

    def successf(self, fmt: str, *args: Any) -> None:
        """Report success (a failure if anything failed before)."""
        ...

    def fail_now(self) -> NoReturn:
        """Mark the scenario failed and stop it; does not return."""
        ...

    def failure_summary(self) -> str | None:
        """Return a one-line description of what failed, or ``None``."""
        ...


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    return fmt % args if args else fmt


# ---------------------------------------------------------------------------
# In-process reporter
# ---------------------------------------------------------------------------


class ScenarioAborted(Exception):
    """Raised by :class:`InProcessReporter` when a scenario must stop."""


class EventKind(StrEnum):
    """Kind of a recorded report."""

    ERROR = "error"
    FATAL = "fatal"
    SUCCESS = "success"


@dataclass(frozen=True)
class ReportEvent:
    """One structured report from a scenario."""

    kind: EventKind
    message: str


class InProcessReporter:
    """Records reports as events; fatal reports raise :class:`ScenarioAborted`."""

    def __init__(self, name: str = "") -> None:
        """Initialize an empty event list.

        Args:
            name: Scenario name, used in debug log records.

        """
        self.name = name
        self.events: list[ReportEvent] = []
        self._failed = False

    @property
    def failed(self) -> bool:
        """Whether any failure has been reported."""
        return self._failed

    @property
    def succeeded(self) -> bool:
        """Whether success was reported and nothing failed."""
        return not self._failed and any(e.kind is EventKind.SUCCESS for e in self.events)

    def _record(self, kind: EventKind, message: str) -> None:
        self.events.append(ReportEvent(kind, message))
        if kind is not EventKind.SUCCESS:
            self._failed = True
        _logger.debug("%s %s: %s", self.name, kind, message)

    def helper(self) -> None:
        """No-op."""

    def errorf(self, fmt: str, *args: Any) -> None:
        """Record a non-fatal failure."""
        self._record(EventKind.ERROR, _format(fmt, args))

    def fatalf(self, fmt: str, *args: Any) -> NoReturn:
        """Record a fatal failure and abort the scenario."""
        message = _format(fmt, args)
        self._record(EventKind.FATAL, message)
        raise ScenarioAborted(message)

    def successf(self, fmt: str, *args: Any) -> None:
        """Record success, or abort if a failure was reported earlier."""
        message = _format(fmt, args)
        if self._failed:
            self.fatalf("success reported after failure: %s", message)
        self._record(EventKind.SUCCESS, message)

    def fail_now(self) -> NoReturn:
        """Abort the scenario as failed."""
        self._failed = True
        raise ScenarioAborted("fail_now called")

    def failure_summary(self) -> str | None:
        """Join the failure messages, or ``None`` when nothing failed."""
        messages = [e.message for e in self.events if e.kind is not EventKind.SUCCESS]
        if messages:
            return "; ".join(messages)
        return "failed" if self._failed else None


# ---------------------------------------------------------------------------
# CLI reporters
# ---------------------------------------------------------------------------


class CliReporter:
    """Writes ``ERROR``/``FAIL``/``SUCCESS`` lines; fatal reports exit with status 1.

    One instance may be shared by scenarios run one after another: a
    ``successf`` following an ``errorf`` from any earlier scenario fails
    the run.
    """

    def __init__(self, stream: TextIO | None = None, *, prefix: str = "") -> None:
        """Initialize the reporter.

        Args:
            stream: Where lines are written; ``sys.stderr`` when omitted.
            prefix: Text placed in front of every line.

        """
        self._stream = stream
        self._prefix = prefix
        self._failed = False
        self._last_failure: str | None = None

    @property
    def failed(self) -> bool:
        """Whether any failure has been reported."""
        return self._failed

    def _write(self, tag: str, message: str) -> None:
        stream = self._stream if self._stream is not None else sys.stderr
        print(f"{self._prefix}{tag}: {message}", file=stream, flush=True)

    def _fail(self, tag: str, message: str) -> None:
        self._failed = True
        self._last_failure = message
        self._write(tag, message)

    def helper(self) -> None:
        """No-op."""

    def errorf(self, fmt: str, *args: Any) -> None:
        """Write an ``ERROR`` line and mark the run failed."""
        self._fail("ERROR", _format(fmt, args))

    def fatalf(self, fmt: str, *args: Any) -> NoReturn:
        """Write a ``FAIL`` line and exit with status 1."""
        self._fail("FAIL", _format(fmt, args))
        sys.exit(1)

    def successf(self, fmt: str, *args: Any) -> None:
        """Write a ``SUCCESS`` line, or fail and exit if anything failed before."""
        message = _format(fmt, args)
        if self._failed:
            self.fatalf("%s", message)
        self._write("SUCCESS", message)

    def fail_now(self) -> NoReturn:
        """Exit with status 1."""
        self._failed = True
        sys.exit(1)

    def failure_summary(self) -> str | None:
        """Return the most recent failure message."""
        if self._last_failure is not None:
            return self._last_failure
        return "failed" if self._failed else None


class CrossReporter(CliReporter):
    """A :class:`CliReporter` whose lines name the client/server pairing."""

    def __init__(self, label: str, stream: TextIO | None = None) -> None:
        """Initialize the reporter.

        Args:
            label: Pairing label, e.g. ``client=grpc server=connect``.
            stream: Where lines are written; ``sys.stderr`` when omitted.

        """
        super().__init__(stream, prefix=f"[{label}] ")
        self.label = label


# ---------------------------------------------------------------------------
# Assertion helpers
# ---------------------------------------------------------------------------


def expect(t: Reporter, condition: bool, fmt: str, *args: Any) -> bool:
    """Report a non-fatal failure unless *condition* holds; return *condition*."""
    t.helper()
    if not condition:
        t.errorf(fmt, *args)
    return condition


def require(t: Reporter, condition: bool, fmt: str, *args: Any) -> None:
    """Report a fatal failure unless *condition* holds."""
    t.helper()
    if not condition:
        t.fatalf(fmt, *args)


def expect_equal(t: Reporter, expected: Any, actual: Any, what: str) -> bool:
    """Report a non-fatal failure unless ``expected == actual``."""
    t.helper()
    return expect(t, expected == actual, "%s: expected %r, got %r", what, expected, actual)
