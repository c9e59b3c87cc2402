# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bucketed latency histogram printed by the soak scenario."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class HistogramOptions:
    """Shape of a linear histogram.

    Attributes:
        num_buckets: Number of buckets; values past the last bound land in the top bucket.
        bucket_size: Width of every bucket.
        min_value: Lower bound of the first bucket; smaller values land in it.

    """

    num_buckets: int = 20
    bucket_size: int = 1
    min_value: int = 0


class Histogram:
    """Counts integer values into fixed-width buckets."""

    def __init__(self, options: HistogramOptions | None = None) -> None:
        """Initialize an empty histogram."""
        self.options = options or HistogramOptions()
        if self.options.num_buckets < 1 or self.options.bucket_size < 1:
            raise ValueError("histogram needs at least one bucket of positive width")
        self.buckets: list[int] = [0] * self.options.num_buckets
        self.count = 0
        self.sum = 0
        self.min: int | None = None
        self.max: int | None = None

    def bucket_index(self, value: int) -> int:
        """Return the bucket *value* falls into."""
        offset = (value - self.options.min_value) // self.options.bucket_size
        return min(max(offset, 0), self.options.num_buckets - 1)

    def add(self, value: int) -> None:
        """Record one value."""
        self.buckets[self.bucket_index(value)] += 1
        self.count += 1
        self.sum += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    @property
    def mean(self) -> float:
        """Average of the recorded values (0 when empty)."""
        return self.sum / self.count if self.count else 0.0

    def format(self) -> str:
        """Render the histogram as text, one line per bucket."""
        opts = self.options
        lines = [
            f"Count: {self.count}  Min: {self.min or 0}  Max: {self.max or 0}  Avg: {self.mean:.2f}",
            "-" * 60,
        ]
        if self.count == 0:
            return "\n".join(lines)
        accumulated = 0
        for i, count in enumerate(self.buckets):
            low = opts.min_value + i * opts.bucket_size
            high = "inf" if i == opts.num_buckets - 1 else str(low + opts.bucket_size)
            accumulated += count
            percent = 100.0 * count / self.count
            cumulative = 100.0 * accumulated / self.count
            bar = "#" * round(percent / 10)
            lines.append(f"[{low:>7d}, {high:>7s})  {count:>5d}  {percent:>5.1f}%  {cumulative:>5.1f}%  {bar}".rstrip())
        return "\n".join(lines)
