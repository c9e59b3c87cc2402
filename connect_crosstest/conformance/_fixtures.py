# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Constants and payload builders shared by the scenarios and the reference server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from connect_crosstest.messages import COMPRESSABLE, ErrorDetail, Payload

NON_ASCII_ERROR_MESSAGE = "soirée 🎉"
"""Message of every ``RESOURCE_EXHAUSTED`` failure raised by the ``Fail*`` methods."""

ERROR_DETAIL_DOMAIN = "connect-crosstest"

LEADING_METADATA_VALUE = "test_initial_metadata_value"
TRAILING_METADATA_VALUE = b"\x0a\x0b\x0a\x0b\x0a\x0b"

# Second values for the duplicated-metadata scenarios.
DUPLICATE_LEADING_METADATA_VALUE = LEADING_METADATA_VALUE + ";more_stuff"
DUPLICATE_TRAILING_METADATA_VALUE = TRAILING_METADATA_VALUE + b"\x0a"

STATUS_MESSAGE = "test status message"
SPECIAL_STATUS_MESSAGE = "\t\ntest with whitespace\r\nand Unicode BMP ☺ and non-BMP 😈\t\n"

SLEEPING_SERVER_PAYLOAD_SIZE = 27182
CANCEL_REQUEST_SIZE = 27182
CANCEL_RESPONSE_SIZE = 31415

PICK_FIRST_CALLS = 100

UNRESOLVABLE_HOST = "unresolvable-host.some.domain"


def error_detail() -> Any:
    """Return a fresh copy of the fixed ``ErrorDetail``."""
    return ErrorDetail(reason=NON_ASCII_ERROR_MESSAGE, domain=ERROR_DETAIL_DOMAIN)


@dataclass(frozen=True)
class SizeDialect:
    """A set of payload sizes the scenarios use.

    Attributes:
        name: Dialect name as accepted by ``--sizes``.
        request_sizes: Request payload sizes for the streaming scenarios.
        response_sizes: Response payload sizes for the streaming scenarios.
        large_request_size: Request payload size for large-unary and soak.
        large_response_size: Response payload size for large-unary and soak.

    """

    name: str
    request_sizes: tuple[int, ...]
    response_sizes: tuple[int, ...]
    large_request_size: int
    large_response_size: int


GRPC_INTEROP_SIZES = SizeDialect(
    name="grpc-interop",
    request_sizes=(27182, 8, 1828, 45904),
    response_sizes=(31415, 9, 2653, 58979),
    large_request_size=271828,
    large_response_size=314159,
)

CROSSTEST_SIZES = SizeDialect(
    name="crosstest",
    request_sizes=(256000, 8, 1024, 32768),
    response_sizes=(512000, 16, 2028, 65536),
    large_request_size=256000,
    large_response_size=512000,
)

DEFAULT_SIZES = CROSSTEST_SIZES

SIZE_DIALECTS: dict[str, SizeDialect] = {d.name: d for d in (CROSSTEST_SIZES, GRPC_INTEROP_SIZES)}


def client_payload(size: int) -> Any:
    """Build a ``COMPRESSABLE`` payload of *size* zero bytes.

    Raises:
        ValueError: If *size* is negative.

    """
    if size < 0:
        raise ValueError(f"requested a payload with a negative size: {size}")
    return Payload(type=COMPRESSABLE, body=bytes(size))
