# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Canonical RPC status codes shared by every transport.

The numeric values are the gRPC wire values.  Each code also knows its
Connect protocol spelling (``"resource_exhausted"``) and the HTTP status a
Connect server answers with when a call ends with that code.
"""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus

__all__ = ["Code", "code_from_http_status"]


class Code(IntEnum):
    """The standard RPC code set."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    @property
    def connect_name(self) -> str:
        """Return the Connect protocol spelling of this code."""
        # Connect spells CANCELLED with a single "l".
        if self is Code.CANCELLED:
            return "canceled"
        return self.name.lower()

    @property
    def http_status(self) -> int:
        """Return the HTTP status a Connect server uses for this code."""
        return _HTTP_STATUS_BY_CODE[self]

    @classmethod
    def from_connect_name(cls, name: str) -> Code:
        """Parse a Connect code string, falling back to ``UNKNOWN``.

        Args:
            name: The ``code`` field of a Connect error object.

        Returns:
            The matching ``Code``; unrecognised names map to ``UNKNOWN``.

        """
        if name == "canceled":
            return cls.CANCELLED
        try:
            return cls[name.upper()]
        except KeyError:
            return cls.UNKNOWN

    @classmethod
    def from_value(cls, value: int) -> Code:
        """Map an arbitrary integer onto the code set (out of range is ``UNKNOWN``)."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_HTTP_STATUS_BY_CODE: dict[Code, int] = {
    Code.OK: HTTPStatus.OK,
    Code.CANCELLED: 499,  # client closed request
    Code.UNKNOWN: HTTPStatus.INTERNAL_SERVER_ERROR,
    Code.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    Code.DEADLINE_EXCEEDED: HTTPStatus.GATEWAY_TIMEOUT,
    Code.NOT_FOUND: HTTPStatus.NOT_FOUND,
    Code.ALREADY_EXISTS: HTTPStatus.CONFLICT,
    Code.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    Code.RESOURCE_EXHAUSTED: HTTPStatus.TOO_MANY_REQUESTS,
    Code.FAILED_PRECONDITION: HTTPStatus.BAD_REQUEST,
    Code.ABORTED: HTTPStatus.CONFLICT,
    Code.OUT_OF_RANGE: HTTPStatus.BAD_REQUEST,
    Code.UNIMPLEMENTED: HTTPStatus.NOT_IMPLEMENTED,
    Code.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
    Code.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    Code.DATA_LOSS: HTTPStatus.INTERNAL_SERVER_ERROR,
    Code.UNAUTHENTICATED: HTTPStatus.UNAUTHORIZED,
}


def code_from_http_status(status: int) -> Code:
    """Infer a code from an HTTP status when a Connect response carries no error body.

    Args:
        status: The HTTP status of a non-200 response.

    Returns:
        The code implied by the status, per the Connect HTTP-to-code table.

    """
    match status:
        case 400:
            return Code.INTERNAL
        case 401:
            return Code.UNAUTHENTICATED
        case 403:
            return Code.PERMISSION_DENIED
        case 404:
            return Code.UNIMPLEMENTED
        case 429 | 502 | 503 | 504:
            return Code.UNAVAILABLE
        case _:
            return Code.UNKNOWN
