"""Conversions between the RPC facade and grpcio: status codes, metadata, error details."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, cast

import grpc
from grpc_status import rpc_status

from connect_crosstest.codes import Code
from connect_crosstest.metadata import Metadata
from connect_crosstest.rpc import RpcError

_logger = logging.getLogger("connect_crosstest.grpc")

STATUS_DETAILS_KEY = "grpc-status-details-bin"
"""Trailer carrying a serialized ``google.rpc.Status`` with the error details."""

_STATUS_BY_CODE: dict[Code, grpc.StatusCode] = {Code(sc.value[0]): sc for sc in grpc.StatusCode}


def to_grpc_status(code: Code) -> grpc.StatusCode:
    """Return the grpcio status code for *code*."""
    return _STATUS_BY_CODE[code]


def from_grpc_status(status: grpc.StatusCode | None) -> Code:
    """Return the facade code for a grpcio status code (``None`` is ``UNKNOWN``)."""
    if status is None:
        return Code.UNKNOWN
    return Code.from_value(status.value[0])


def metadata_to_grpc(md: Metadata | None) -> tuple[tuple[str, str | bytes], ...]:
    """Convert facade metadata into the tuple form grpcio accepts."""
    if not md:
        return ()
    return tuple(md.items())


def metadata_from_grpc(pairs: Iterable[Any] | None) -> Metadata:
    """Convert grpcio metadata into facade metadata, dropping the status-details trailer."""
    md = Metadata()
    if pairs is None:
        return md
    for key, value in pairs:
        if key == STATUS_DETAILS_KEY:
            continue
        md.add(key, value)
    return md


def error_from_call(exc: grpc.RpcError) -> RpcError:
    """Translate a failed grpcio call into an :class:`RpcError`.

    Error details are read from the ``grpc-status-details-bin`` trailer; a
    trailer that disagrees with the call's own code or message is ignored.
    """
    call = cast(grpc.Call, exc)
    code = from_grpc_status(call.code())
    details: list[Any] = []
    try:
        status = rpc_status.from_call(call)
    except ValueError:
        _logger.debug("ignoring status details that do not match the call status", exc_info=True)
        status = None
    if status is not None:
        details = list(status.details)
    return RpcError(
        code,
        call.details() or "",
        details,
        headers=metadata_from_grpc(call.initial_metadata()),
        trailers=metadata_from_grpc(call.trailing_metadata()),
    )
