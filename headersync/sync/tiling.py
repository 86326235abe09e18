"""
Height-range tiling.

A global range is split into one sub-range per source, and each sub-range is
cut into fixed-size fetch steps plus a trailing remainder chunk. The tiles
cover the input exactly: no gaps, no overlaps.
"""

from __future__ import annotations

from headersync.common.config import MAX_STEP
from headersync.common.errors import RangeError
from headersync.common.types import HeightRange


def split_range(start: int, stop: int, sources: int) -> list[HeightRange]:
    """Divide [start, stop) into one sub-range per source.

    The last source absorbs the remainder. With zero sources the whole span
    is returned as a single sub-range (sequential fallback).
    """
    total = len(HeightRange(start, stop))
    if sources < 0:
        raise RangeError(f"source count must be non-negative, got {sources}")
    if sources == 0:
        return [HeightRange(start, stop)]

    delta = total // sources
    extra = total % sources
    ranges = []
    for i in range(sources):
        sub_start = start + i * delta
        sub_stop = sub_start + delta
        if i == sources - 1:
            sub_stop += extra
        ranges.append(HeightRange(sub_start, sub_stop))
    return ranges


def resolve_step(step: int, delta: int) -> int:
    """Resolve an auto step (0) to min(delta, MAX_STEP), never below 1."""
    if step < 0:
        raise RangeError(f"step must be non-negative, got {step}")
    if step > 0:
        return step
    return max(1, min(delta, MAX_STEP))


def tile(sub_range: HeightRange, step: int) -> list[HeightRange]:
    """Cut a sub-range into step-sized chunks and a final remainder chunk."""
    if step <= 0:
        raise RangeError(f"step must be positive, got {step}")
    length = len(sub_range)
    if length == 0:
        return []
    if step >= length:
        return [sub_range]

    chunks = []
    full_stop = sub_range.stop - length % step
    for chunk_start in range(sub_range.start, full_stop, step):
        chunks.append(HeightRange(chunk_start, chunk_start + step))
    if full_stop < sub_range.stop:
        chunks.append(HeightRange(full_stop, sub_range.stop))
    return chunks


def assignments(start: int, stop: int, sources: int, step: int) -> list[tuple[HeightRange, int]]:
    """Per-source (sub-range, resolved step) pairs covering [start, stop)."""
    sub_ranges = split_range(start, stop, sources)
    delta = (stop - start) // max(sources, 1)
    return [(sub, resolve_step(step, delta or len(sub))) for sub in sub_ranges]
