# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the soak latency histogram."""

from __future__ import annotations

import pytest

from connect_crosstest.conformance import Histogram, HistogramOptions


class TestBuckets:
    """Bucket placement and summary statistics."""

    def test_bucket_index_clamped(self) -> None:
        """Values below the range land in the first bucket, above it in the last."""
        h = Histogram(HistogramOptions(num_buckets=5, bucket_size=10, min_value=100))
        assert h.bucket_index(50) == 0
        assert h.bucket_index(100) == 0
        assert h.bucket_index(109) == 0
        assert h.bucket_index(110) == 1
        assert h.bucket_index(10_000) == 4

    def test_add_updates_stats(self) -> None:
        """count, sum, min, max and mean track every value."""
        h = Histogram()
        for value in (3, 1, 8):
            h.add(value)
        assert h.count == 3
        assert h.sum == 12
        assert h.min == 1
        assert h.max == 8
        assert h.mean == pytest.approx(4.0)
        assert h.buckets[1] == 1
        assert h.buckets[3] == 1
        assert h.buckets[8] == 1

    def test_empty_mean(self) -> None:
        """An empty histogram has mean 0."""
        assert Histogram().mean == 0.0

    def test_invalid_options(self) -> None:
        """Zero buckets or zero width are rejected."""
        with pytest.raises(ValueError):
            Histogram(HistogramOptions(num_buckets=0))
        with pytest.raises(ValueError):
            Histogram(HistogramOptions(bucket_size=0))


class TestFormat:
    """Text rendering."""

    def test_empty(self) -> None:
        """An empty histogram renders only the header."""
        lines = Histogram().format().splitlines()
        assert lines == ["Count: 0  Min: 0  Max: 0  Avg: 0.00", "-" * 60]

    def test_rows(self) -> None:
        """Each bucket gets a row with count, percent, cumulative percent and bar."""
        h = Histogram(HistogramOptions(num_buckets=3, bucket_size=5))
        for value in (1, 2, 7, 100):
            h.add(value)
        lines = h.format().splitlines()
        assert lines[0] == "Count: 4  Min: 1  Max: 100  Avg: 27.50"
        assert len(lines) == 2 + 3
        assert lines[2].startswith("[      0,       5)      2   50.0%   50.0%  #####")
        assert lines[3].startswith("[      5,      10)      1   25.0%   75.0%")
        assert lines[4].startswith("[     10,     inf)      1   25.0%  100.0%")
