# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Call metadata: an ordered string-keyed multimap plus the binary header codec.

Every RPC carries two of these, leading (headers) and trailing (trailers).
Keys are case-insensitive and stored lower-cased.  Keys ending in ``-bin``
hold ``bytes`` values; every other key holds ``str`` values.  Transports are
responsible for putting binary values on the wire in whatever form they
need (gRPC sends them natively, Connect base64-encodes them).
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Iterator

__all__ = [
    "BINARY_SUFFIX",
    "LEADING_METADATA_KEY",
    "TRAILING_METADATA_KEY",
    "Metadata",
    "MetadataValue",
    "decode_binary_header",
    "encode_binary_header",
    "is_binary_key",
]

MetadataValue = str | bytes

BINARY_SUFFIX = "-bin"

# Echo keys understood by the test service
LEADING_METADATA_KEY = "x-grpc-test-echo-initial"
TRAILING_METADATA_KEY = "x-grpc-test-echo-trailing-bin"


def is_binary_key(key: str) -> bool:
    """Return whether *key* carries binary values."""
    return key.lower().endswith(BINARY_SUFFIX)


# ---------------------------------------------------------------------------
# Binary header codec
# ---------------------------------------------------------------------------


def encode_binary_header(value: bytes) -> str:
    """Encode bytes for a ``-bin`` header (standard base64, no padding)."""
    return base64.b64encode(value).decode("ascii").rstrip("=")


def decode_binary_header(value: str) -> bytes:
    """Decode a ``-bin`` header value.

    Both padded and unpadded standard base64 are accepted.

    Raises:
        ValueError: If *value* is not valid base64.

    """
    stripped = value.strip()
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid binary header value {value!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Multimap
# ---------------------------------------------------------------------------


class Metadata:
    """Ordered multimap of call metadata.

    Insertion order is preserved across keys and within a key, so a value
    list read back with :meth:`get_all` is in the order it was added.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[tuple[str, MetadataValue]] | None = None) -> None:
        self._items: list[tuple[str, MetadataValue]] = []
        if items is not None:
            for key, value in items:
                self.add(key, value)

    def add(self, key: str, value: MetadataValue) -> None:
        """Append one value under *key*.

        Raises:
            TypeError: If a ``-bin`` key is given a ``str`` value or a plain
                key is given ``bytes``.

        """
        key = key.lower()
        if is_binary_key(key):
            if not isinstance(value, bytes):
                raise TypeError(f"binary metadata key {key!r} requires bytes, got {type(value).__name__}")
        elif not isinstance(value, str):
            raise TypeError(f"metadata key {key!r} requires str, got {type(value).__name__}")
        self._items.append((key, value))

    def extend(self, other: Iterable[tuple[str, MetadataValue]]) -> None:
        """Append every pair from *other*."""
        for key, value in other:
            self.add(key, value)

    def get_all(self, key: str) -> list[MetadataValue]:
        """Return every value stored under *key*, in order (empty when absent)."""
        key = key.lower()
        return [v for k, v in self._items if k == key]

    def get(self, key: str, default: MetadataValue | None = None) -> MetadataValue | None:
        """Return the first value under *key*, or *default*."""
        key = key.lower()
        for k, v in self._items:
            if k == key:
                return v
        return default

    def keys(self) -> list[str]:
        """Return distinct keys in first-seen order."""
        return list(dict.fromkeys(k for k, _ in self._items))

    def items(self) -> list[tuple[str, MetadataValue]]:
        """Return a copy of all ``(key, value)`` pairs."""
        return list(self._items)

    def copy(self) -> Metadata:
        """Return a shallow copy."""
        return Metadata(self._items)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and any(k == key.lower() for k, _ in self._items)

    def __iter__(self) -> Iterator[tuple[str, MetadataValue]]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Metadata({self._items!r})"
