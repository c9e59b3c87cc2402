"""Debug logging for what crosses the wire.

Loggers live under ``connect_crosstest.wire.*``.  Enabling
``logging.getLogger("connect_crosstest.wire").setLevel(logging.DEBUG)``
shows every request, response and HTTP exchange, which is usually the
fastest way to see why two implementations disagree.

The formatting helpers only build strings; call them inside
``isEnabledFor`` guards so they cost nothing when debug logging is off.
"""

from __future__ import annotations

import logging
from typing import Any

from connect_crosstest.metadata import Metadata

wire_request_logger = logging.getLogger("connect_crosstest.wire.request")
"""Requests sent by clients and received by servers."""

wire_response_logger = logging.getLogger("connect_crosstest.wire.response")
"""Responses and final statuses."""

wire_http_logger = logging.getLogger("connect_crosstest.wire.http")
"""Connect HTTP requests and responses."""

_MAX_VALUE_LEN = 60


def fmt_message(msg: Any) -> str:
    """Format a protobuf message as ``TypeName(<n> bytes)``."""
    if msg is None:
        return "None"
    return f"{msg.DESCRIPTOR.name}({msg.ByteSize()} bytes)"


def fmt_metadata(md: Metadata | None) -> str:
    """Format metadata compactly, truncating long values."""
    if not md:
        return "{}"
    parts: list[str] = []
    for key, value in md:
        text = repr(value)
        if len(text) > _MAX_VALUE_LEN:
            text = text[:_MAX_VALUE_LEN] + "..."
        parts.append(f"{key}={text}")
    return "{" + ", ".join(parts) + "}"
