"""
chunking.py – split one commute flow into bounded population groups

Group sizes stay within [min_size, max_size], aim for target_size, and end
at or above minimum_finalize_size wherever more than one group exists.
Leftover units are spread with a string hash of ``"<residence>-<job>"`` so
the same flow always splits the same way.
"""
from __future__ import annotations

import math
from typing import List, Optional

from .config import PopulationChunkingConfig

_INT32 = 1 << 32


def hash_string(text: str) -> int:
    """
    31-multiplier rolling hash over UTF-16 code units with signed 32-bit
    wrap-around, returned as an absolute value.
    """
    h = 0
    raw = text.encode("utf-16-le")
    for i in range(0, len(raw), 2):
        unit = raw[i] | (raw[i + 1] << 8)
        h = (h * 31 + unit) % _INT32
    if h >= 1 << 31:
        h -= _INT32
    return abs(h)


def cut_oversized(sizes: List[int], max_size: int) -> List[int]:
    if not max_size:
        return list(sizes)
    out: List[int] = []
    for value in sizes:
        while value > max_size:
            out.append(max_size)
            value -= max_size
        if value > 0:
            out.append(value)
    return out


def merge_undersized(sizes: List[int], min_size: int) -> List[int]:
    """Fold each group below `min_size` into its left (or right) neighbour."""
    sizes = list(sizes)
    if not min_size or len(sizes) < 2:
        return sizes
    i = 0
    while i < len(sizes):
        if sizes[i] >= min_size or len(sizes) < 2:
            i += 1
            continue
        neighbor = 1 if i == 0 else i - 1
        sizes[neighbor] += sizes[i]
        del sizes[i]
        if i > 0:
            i -= 1
    return sizes


def merge_to_finalize(sizes: List[int], minimum: int) -> List[int]:
    """Greedily merge the smallest groups until every group reaches `minimum`."""
    if not minimum or len(sizes) < 2 or min(sizes) >= minimum:
        return list(sizes)
    merged: List[int] = []
    accumulator = 0
    for value in sorted(sizes):
        if value >= minimum:
            # a short accumulator rides along with the next full group
            merged.append(value + accumulator)
            accumulator = 0
        else:
            accumulator += value
            if accumulator >= minimum:
                merged.append(accumulator)
                accumulator = 0
    if accumulator > 0:
        if merged:
            merged[-1] += accumulator
        else:
            merged.append(accumulator)
    return merged


def normalize_group_sizes(
    sizes: List[int], config: Optional[PopulationChunkingConfig] = None
) -> List[int]:
    """Post-split passes: max cut, min merge, finalize merge, max cut again."""
    cfg = config or PopulationChunkingConfig()
    sizes = cut_oversized(sizes, cfg.max_size)
    sizes = merge_undersized(sizes, cfg.min_size)
    sizes = merge_to_finalize(sizes, cfg.minimum_finalize_size)
    return cut_oversized(sizes, cfg.max_size)


def split_into_groups(
    size: int,
    residence_id: str,
    job_id: str,
    config: Optional[PopulationChunkingConfig] = None,
) -> List[int]:
    """Return the group sizes for one flow; they always sum to `size`."""
    cfg = config or PopulationChunkingConfig()
    if not size or size <= 0:
        return []
    if not cfg.max_size or size <= cfg.min_size:
        return [size]

    min_groups = max(1, math.ceil(size / cfg.max_size))
    max_groups = max(
        min_groups,
        math.floor(size / cfg.min_size) if cfg.min_size > 0 else size,
    )
    count = max(min_groups, math.floor(size / cfg.target_size + 0.5))
    count = max(1, min(count, max_groups))

    base = size // count
    while count > 1 and base < cfg.min_size:
        count -= 1
        base = size // count

    sizes = [base] * count
    remainder = max(0, size - base * count)
    seed = hash_string(f"{residence_id}-{job_id}")
    for i in range(remainder):
        sizes[(seed + i) % count] += 1

    return normalize_group_sizes(sizes, cfg)
