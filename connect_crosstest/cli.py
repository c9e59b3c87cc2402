"""Command-line interface for connect-crosstest.

Starts the reference servers and runs the scenario catalogue against any
gRPC or Connect server implementing ``grpc.testing.TestService``.

Usage::

    connect-crosstest serve --grpc-port 8081 --connect-port 8080
    connect-crosstest run --port 8081 --protocol grpc
    connect-crosstest run --port 8080 --protocol connect --filter "unary,errors.*"
    connect-crosstest run --port 8081 --reporter cli --soak-iterations 100
    connect-crosstest list --filter "metadata"
    connect-crosstest --debug run --port 8081

Exit codes of ``run``: ``0`` when every scenario passed or was skipped,
``1`` when a scenario failed, ``2`` when the harness itself could not run.
"""

from __future__ import annotations

import importlib.metadata
import json
import logging
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated

import typer

from connect_crosstest.config import ClientConfig, Protocol, ServerConfig, TlsConfig
from connect_crosstest.conformance import (
    DEFAULT_TEST_TIMEOUT,
    SIZE_DIALECTS,
    CliReporter,
    ConformanceResult,
    ConformanceSuite,
    CrossReporter,
    InProcessReporter,
    Reporter,
    ScenarioOptions,
    SoakOptions,
    list_conformance_tests,
    run_conformance,
)
from connect_crosstest.conformance._fixtures import UNRESOLVABLE_HOST
from connect_crosstest.server import metadata_json, start_servers

# ---------------------------------------------------------------------------
# Known loggers registry
# ---------------------------------------------------------------------------

_KNOWN_LOGGERS: tuple[tuple[str, str, str], ...] = (
    ("connect_crosstest", "Root logger for all connect-crosstest output", "Enable to see all logging"),
    ("connect_crosstest.access", "One structured record per completed server call", "Monitor calls and codes"),
    ("connect_crosstest.grpc", "gRPC server and client lifecycle", "Debug grpcio handler dispatch"),
    ("connect_crosstest.connect", "Connect server and client lifecycle", "Debug Falcon routing and waitress"),
    ("connect_crosstest.conformance", "Scenario execution and reports", "See which scenarios ran and how"),
    ("connect_crosstest.soak", "Soak iteration lines", "Follow long soak runs"),
    ("connect_crosstest.wire.request", "Request messages and metadata", "Debug what a client sent"),
    ("connect_crosstest.wire.response", "Response messages, headers and trailers", "Debug what a server returned"),
    ("connect_crosstest.wire.http", "Connect HTTP requests and responses", "Debug Connect framing and headers"),
)

_KNOWN_LOGGER_NAMES: frozenset[str] = frozenset(name for name, _, _ in _KNOWN_LOGGERS)

# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format of ``run``."""

    auto = "auto"
    json = "json"
    table = "table"


class LogFormat(StrEnum):
    """Stderr log format."""

    text = "text"
    json = "json"


class LogLevel(StrEnum):
    """Logging level for the connect_crosstest loggers."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ReporterKind(StrEnum):
    """How scenarios report their outcome."""

    inprocess = "inprocess"
    cli = "cli"
    cross = "cross"


class SizeChoice(StrEnum):
    """Payload size dialects."""

    crosstest = "crosstest"
    grpc_interop = "grpc-interop"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _LogConfig:
    """Holds resolved logging options."""

    debug: bool = False
    level: LogLevel | None = None
    loggers: list[str] = field(default_factory=list)
    format: LogFormat = LogFormat.text


app = typer.Typer(
    name="connect-crosstest",
    help="Cross-implementation conformance harness for gRPC and Connect.",
    add_completion=False,
    no_args_is_help=True,
)

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(config: _LogConfig) -> None:
    """Attach a stderr handler to the target loggers at the requested level."""
    level = LogLevel.DEBUG if config.debug else config.level
    if level is None:
        return

    handler = logging.StreamHandler(sys.stderr)
    if config.format is LogFormat.json:
        from connect_crosstest.logging_utils import CrosstestJsonFormatter

        handler.setFormatter(CrosstestJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(name)-30s %(levelname)-5s %(message)s"))

    numeric_level = logging.getLevelNamesMapping()[level.value]
    targets = config.loggers or ["connect_crosstest"]

    for name in targets:
        if name not in _KNOWN_LOGGER_NAMES:
            typer.echo(f"Warning: unknown logger '{name}'", err=True)
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        logger.addHandler(handler)


def _version_callback(value: bool) -> None:
    if not value:
        return
    try:
        version = importlib.metadata.version("connect-crosstest")
    except importlib.metadata.PackageNotFoundError:
        version = "unknown"
    typer.echo(f"connect-crosstest {version}")
    raise typer.Exit(0)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    debug: Annotated[bool, typer.Option("--debug", help="Enable DEBUG on all connect_crosstest loggers")] = False,
    log_level: Annotated[LogLevel | None, typer.Option("--log-level", help="Logging level")] = None,
    log_logger: Annotated[
        list[str] | None, typer.Option("--log-logger", help="Target specific logger(s); repeatable")
    ] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Stderr log format")] = LogFormat.text,
    version: Annotated[
        bool, typer.Option("--version", "-V", callback=_version_callback, is_eager=True, help="Show version and exit")
    ] = False,
) -> None:
    """Configure logging for every command."""
    _configure_logging(_LogConfig(debug=debug, level=log_level, loggers=log_logger or [], format=log_format))


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------


def _status(result: ConformanceResult) -> str:
    if result.skipped:
        return "SKIP"
    return "PASS" if result.passed else "FAIL"


def _format_table(suite: ConformanceSuite) -> str:
    """Format results as a human-readable table."""
    lines: list[str] = []
    lines.append(
        f"connect-crosstest: {suite.passed} passed, {suite.failed} failed, {suite.skipped} skipped "
        f"({suite.duration_ms / 1000:.2f}s)"
    )
    lines.append("")

    for r in suite.results:
        lines.append(f"  {r.name:<50s} {_status(r):>4s}  {r.duration_ms:>7.1f}ms")
        if r.error:
            lines.append(f"    {r.error}")

    return "\n".join(lines)


def _format_json(suite: ConformanceSuite) -> str:
    """Format results as JSON."""
    data: dict[str, object] = {
        "total": suite.total,
        "passed": suite.passed,
        "failed": suite.failed,
        "skipped": suite.skipped,
        "duration_ms": round(suite.duration_ms, 1),
        "results": [
            {
                "name": r.name,
                "category": r.category,
                "passed": r.passed,
                "skipped": r.skipped,
                "duration_ms": round(r.duration_ms, 1),
                "error": r.error,
                "events": [{"kind": str(e.kind), "message": e.message} for e in r.events],
            }
            for r in suite.results
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def _make_progress_callback() -> Callable[[ConformanceResult], None] | None:
    """Create a progress callback for real-time output on TTY stderr."""
    if not sys.stderr.isatty():
        return None

    def _progress(result: ConformanceResult) -> None:
        typer.echo(f"  {result.name:<50s} {_status(result)}", err=True)

    return _progress


def _parse_filter(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [p.strip() for p in value.split(",") if p.strip()] or None


def _reporter_factory(kind: ReporterKind, label: str) -> Callable[[str], Reporter]:
    if kind is ReporterKind.cli:
        return lambda name: CliReporter(prefix=f"{name}: ")
    if kind is ReporterKind.cross:
        return lambda name: CrossReporter(f"{label} {name}")
    return InProcessReporter


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("list")
def list_(
    filter_: Annotated[
        str | None, typer.Option("--filter", "-k", help="Comma-separated glob patterns (e.g. 'unary,errors.*')")
    ] = None,
) -> None:
    """List scenario names."""
    for name in list_conformance_tests(_parse_filter(filter_)):
        typer.echo(name)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = "127.0.0.1",
    grpc_port: Annotated[int, typer.Option("--grpc-port", help="gRPC port; 0 picks a free one")] = 0,
    connect_port: Annotated[int, typer.Option("--connect-port", help="Connect port; 0 picks a free one")] = 0,
    cert: Annotated[str | None, typer.Option("--cert", help="PEM certificate for gRPC TLS")] = None,
    key: Annotated[str | None, typer.Option("--key", help="PEM private key for gRPC TLS")] = None,
    server_id: Annotated[str, typer.Option("--server-id", help="Id reported to fill_server_id requests")] = "",
) -> None:
    """Start the reference gRPC and Connect servers and print their ServerMetadata line."""
    try:
        tls = TlsConfig(cert_file=cert or "", key_file=key or "") if cert or key else None
        config = ServerConfig(
            host=host, grpc_port=grpc_port, connect_port=connect_port, tls=tls, server_id=server_id
        )
        servers = start_servers(config)
    except (ValueError, OSError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2) from None

    with servers:
        typer.echo(metadata_json(servers.metadata()))
        sys.stdout.flush()
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            typer.echo("Interrupted", err=True)


@app.command()
def run(
    port: Annotated[int, typer.Option("--port", help="Port of the server under test")],
    host: Annotated[str, typer.Option("--host", help="Host of the server under test")] = "127.0.0.1",
    protocol: Annotated[Protocol, typer.Option("--protocol", help="Wire protocol to speak")] = Protocol.GRPC,
    filter_: Annotated[
        str | None, typer.Option("--filter", "-k", help="Comma-separated glob patterns (e.g. 'unary,errors.*')")
    ] = None,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.auto,
    output: Annotated[str | None, typer.Option("--output", "-o", help="Output file (default: stdout)")] = None,
    reporter: Annotated[
        ReporterKind, typer.Option("--reporter", help="inprocess keeps going; cli and cross exit on a fatal failure")
    ] = ReporterKind.inprocess,
    label: Annotated[str, typer.Option("--label", help="Pairing label used by the cross reporter")] = "",
    sizes: Annotated[SizeChoice, typer.Option("--sizes", help="Payload size dialect")] = SizeChoice.crosstest,
    ca: Annotated[str | None, typer.Option("--ca", help="PEM bundle of trusted roots; enables TLS")] = None,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Per-scenario timeout in seconds; 0 disables")
    ] = DEFAULT_TEST_TIMEOUT,
    soak_iterations: Annotated[int, typer.Option("--soak-iterations", help="Soak iterations")] = 10,
    soak_max_failures: Annotated[int, typer.Option("--soak-max-failures", help="Soak failures tolerated")] = 0,
    soak_max_latency_ms: Annotated[
        int, typer.Option("--soak-per-iteration-max-latency-ms", help="Latency above which an iteration fails")
    ] = 1000,
    soak_overall_timeout: Annotated[
        float, typer.Option("--soak-overall-timeout-seconds", help="Time budget for the whole soak")
    ] = 10.0,
    soak_reset_channel: Annotated[
        bool, typer.Option("--soak-reset-channel", help="Use a fresh client for every soak iteration")
    ] = False,
    unresolvable_host: Annotated[
        str, typer.Option("--unresolvable-host", help="Host name that must not resolve")
    ] = UNRESOLVABLE_HOST,
) -> None:
    """Run the scenario catalogue against a server."""
    try:
        config = ClientConfig(host=host, port=port, protocol=protocol, tls=TlsConfig(ca_file=ca) if ca else None)
        options = ScenarioOptions(
            sizes=SIZE_DIALECTS[sizes.value],
            soak=SoakOptions(
                iterations=soak_iterations,
                max_failures=soak_max_failures,
                per_iteration_max_latency_ms=soak_max_latency_ms,
                overall_timeout_s=soak_overall_timeout,
                reset_channel=soak_reset_channel,
            ),
            unresolvable_host=unresolvable_host,
        )
        if fmt is OutputFormat.auto:
            fmt = OutputFormat.table if sys.stdout.isatty() else OutputFormat.json
        pairing = label or f"client={protocol.value} server={host}:{port}"

        client = config.connect()
        try:
            suite = run_conformance(
                client,
                reporter_factory=_reporter_factory(reporter, pairing),
                filter_patterns=_parse_filter(filter_),
                options=options,
                on_progress=_make_progress_callback() if fmt is OutputFormat.table else None,
                timeout=timeout,
            )
        finally:
            client.close()
    except (typer.Exit, SystemExit):
        raise
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
        raise typer.Exit(2) from None
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2) from None

    output_text = _format_json(suite) if fmt is OutputFormat.json else _format_table(suite)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(output_text + "\n")
    else:
        typer.echo(output_text)

    raise typer.Exit(0 if suite.success else 1)


def main() -> None:
    """Run the connect-crosstest CLI."""
    app()


if __name__ == "__main__":
    main()
