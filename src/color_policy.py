"""Priority bucketing and palette lookup.

All bucket functions are total: the index is clamped to [0, MAX_BUCKET]
before the palette is indexed, and NaN lands in bucket 0.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np
import pandas as pd

from map_config import (
    DAMAGE_MINOR_COLOR,
    DAMAGE_NONE_COLOR,
    DAMAGE_SEVERE_COLOR,
    MAX_BUCKET,
    RGB,
    RGBA,
    SCATTERPLOT_COLOR_RANGE,
    SUBCLUSTER_COLORS,
)


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def clamp_bucket(raw: float) -> int:
    if math.isnan(raw):
        return 0
    if raw == math.inf:
        return MAX_BUCKET
    if raw == -math.inf:
        return 0
    return max(0, min(MAX_BUCKET, int(math.floor(raw))))


def priority_bucket(priority: float) -> int:
    return clamp_bucket(_as_float(priority) * 6)


def overall_priority_bucket(overall_priority: float) -> int:
    return clamp_bucket((_as_float(overall_priority) - 0.5) * 15 + 5)


def by_priority(priority: float) -> RGBA:
    """Fill color for a single report."""
    return SCATTERPLOT_COLOR_RANGE[priority_bucket(priority)]


def by_overall_priority(overall_priority: float) -> RGBA:
    """Fill color for a cluster; steeper than by_priority around the 0.5 midpoint."""
    return SCATTERPLOT_COLOR_RANGE[overall_priority_bucket(overall_priority)]


def priority_buckets(priorities: pd.Series) -> pd.Series:
    """Vectorized priority_bucket for a column of priorities."""
    values = pd.to_numeric(priorities, errors='coerce').to_numpy(dtype=float) * 6
    buckets = np.clip(np.floor(np.nan_to_num(values, nan=0.0, posinf=MAX_BUCKET, neginf=0.0)), 0, MAX_BUCKET)
    return pd.Series(buckets.astype(int), index=priorities.index, name='bucket')


def count_buckets(counts: pd.Series, n_buckets: int = MAX_BUCKET + 1) -> pd.Series:
    """Quantize bin counts linearly over their [min, max] domain, the way deck.gl's quantize color scale does."""
    if counts.empty:
        return pd.Series([], index=counts.index, name='bucket', dtype=int)
    values = counts.to_numpy(dtype=float)
    lo, hi = np.nanmin(values), np.nanmax(values)
    if hi == lo:
        raw = np.zeros_like(values)
    else:
        raw = np.floor((values - lo) / (hi - lo) * n_buckets)
    buckets = np.clip(np.nan_to_num(raw, nan=0.0), 0, n_buckets - 1)
    return pd.Series(buckets.astype(int), index=counts.index, name='bucket')


def damage_color(level: Optional[str]) -> RGBA:
    if level == 'none':
        return DAMAGE_NONE_COLOR
    if level == 'MIN':
        return DAMAGE_MINOR_COLOR
    return DAMAGE_SEVERE_COLOR


def subcluster_color(index: int) -> RGB:
    return SUBCLUSTER_COLORS[index % len(SUBCLUSTER_COLORS)]
