"""Tests for the metadata multimap and binary header codec."""

from __future__ import annotations

import pytest

from connect_crosstest.metadata import (
    LEADING_METADATA_KEY,
    TRAILING_METADATA_KEY,
    Metadata,
    decode_binary_header,
    encode_binary_header,
    is_binary_key,
)

# ---------------------------------------------------------------------------
# Binary header codec
# ---------------------------------------------------------------------------


class TestBinaryCodec:
    """Unpadded standard base64 for ``-bin`` values."""

    def test_encode_unpadded(self) -> None:
        """Encoded values carry no padding."""
        assert encode_binary_header(b"\x0a\x0b\x0a\x0b\x0a\x0b") == "CgsKCwoL"
        assert encode_binary_header(b"\x0a\x0b\x0a\x0b\x0a\x0b\x0a") == "CgsKCwoLCg"

    def test_decode_padded_and_unpadded(self) -> None:
        """Both padded and unpadded input decode to the same bytes."""
        assert decode_binary_header("CgsKCwoLCg") == b"\x0a\x0b\x0a\x0b\x0a\x0b\x0a"
        assert decode_binary_header("CgsKCwoLCg==") == b"\x0a\x0b\x0a\x0b\x0a\x0b\x0a"

    def test_decode_empty(self) -> None:
        """The empty string decodes to empty bytes."""
        assert decode_binary_header("") == b""

    def test_decode_invalid(self) -> None:
        """Characters outside the base64 alphabet are rejected."""
        with pytest.raises(ValueError, match="invalid binary header"):
            decode_binary_header("not base64!")

    def test_is_binary_key(self) -> None:
        """Only keys ending in -bin are binary, case-insensitively."""
        assert is_binary_key(TRAILING_METADATA_KEY)
        assert is_binary_key("X-Thing-BIN")
        assert not is_binary_key(LEADING_METADATA_KEY)


# ---------------------------------------------------------------------------
# Metadata multimap
# ---------------------------------------------------------------------------


class TestMetadata:
    """Ordered multimap behaviour."""

    def test_order_preserved(self) -> None:
        """Values come back in insertion order, within and across keys."""
        md = Metadata([("a", "1"), ("b", "2"), ("a", "3")])
        assert md.get_all("a") == ["1", "3"]
        assert md.keys() == ["a", "b"]
        assert list(md) == [("a", "1"), ("b", "2"), ("a", "3")]
        assert len(md) == 3

    def test_keys_lowercased(self) -> None:
        """Keys are case-insensitive and stored lowercase."""
        md = Metadata()
        md.add("X-Custom", "v")
        assert "x-custom" in md
        assert "X-CUSTOM" in md
        assert md.get("x-CUSTOM") == "v"
        assert md.items() == [("x-custom", "v")]

    def test_get_default(self) -> None:
        """Missing keys return the default or an empty list."""
        md = Metadata()
        assert md.get("missing") is None
        assert md.get("missing", "d") == "d"
        assert md.get_all("missing") == []
        assert not md

    def test_value_types_enforced(self) -> None:
        """Binary keys take bytes; other keys take str."""
        md = Metadata()
        with pytest.raises(TypeError):
            md.add("x-bin", "text")
        with pytest.raises(TypeError):
            md.add("x-text", b"bytes")

    def test_copy_is_independent(self) -> None:
        """A copy does not see later additions to the original."""
        md = Metadata([("a", "1")])
        copy = md.copy()
        md.add("a", "2")
        assert copy.get_all("a") == ["1"]
        assert copy != md

    def test_extend_and_eq(self) -> None:
        """extend appends pairs; equality compares ordered pairs."""
        md = Metadata()
        md.extend([("k-bin", b"\x00"), ("k", "v")])
        assert md == Metadata([("k-bin", b"\x00"), ("k", "v")])
        assert md != Metadata([("k", "v"), ("k-bin", b"\x00")])
