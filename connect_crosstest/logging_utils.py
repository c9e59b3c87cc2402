# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Structured log output for servers and the conformance runner.

:class:`CrosstestJsonFormatter` renders each record as one line of JSON.
Fields passed through ``extra`` (the access log's ``method``, ``protocol``,
``code`` and ``duration_ms``, a scenario's ``scenario`` name) are copied into
the object automatically.

Not imported by ``connect_crosstest`` itself; the CLI loads it when
``--log-format json`` is requested::

    from connect_crosstest.logging_utils import CrosstestJsonFormatter
"""

from __future__ import annotations

import json
import logging

__all__ = ["CrosstestJsonFormatter"]

# Attributes present on every LogRecord; anything else came from ``extra``.
_BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}

_FIXED_KEYS: tuple[str, ...] = ("timestamp", "level", "logger", "message")


class CrosstestJsonFormatter(logging.Formatter):
    """Format records as single-line JSON objects.

    ``timestamp``, ``level``, ``logger`` and ``message`` always come first
    and are never replaced by an ``extra`` field of the same name.  Bytes
    values are decoded leniently; anything else JSON cannot encode is
    rendered with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as JSON."""
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key in _BUILTIN_ATTRS or key in _FIXED_KEYS:
                continue
            obj[key] = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        if record.exc_info and record.exc_info[1] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str, ensure_ascii=False)
