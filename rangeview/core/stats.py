from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

import numpy as np

from .datatype import DEFAULT_COLOR
from .range import CompositeRange1D, Range1D


# -------------------------------------------------------------------------
# Summary statistics
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class Statistics:
    """
    Summary statistics over the non-NaN values of a data window.

    - count: number of non-NaN values
    - nans: number of NaN values
    - var / sd: population variance and standard deviation
    """
    count: int
    nans: int
    min: float
    max: float
    sum: float
    mean: float
    var: float
    sd: float


def compute_stats(values: Any) -> Statistics:
    arr = np.asarray(values, dtype=float).ravel()
    valid = arr[~np.isnan(arr)]
    nans = int(arr.size - valid.size)
    if valid.size == 0:
        return Statistics(count=0, nans=nans, min=np.nan, max=np.nan, sum=0.0, mean=np.nan, var=np.nan, sd=np.nan)
    var = float(valid.var())
    return Statistics(
        count=int(valid.size),
        nans=nans,
        min=float(valid.min()),
        max=float(valid.max()),
        sum=float(valid.sum()),
        mean=float(valid.mean()),
        var=var,
        sd=float(np.sqrt(var)),
    )


# -------------------------------------------------------------------------
# Histograms
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class Histogram:
    """
    Binned counts over a data window.

    Every bin also records which logical indices fell into it, so a bin
    can be turned back into a selection (see `range`).
    """
    kind: str
    counts: Tuple[int, ...]
    labels: Tuple[str, ...]
    colors: Tuple[str, ...]
    bin_ranges: Tuple[Range1D, ...]
    edges: Optional[Tuple[float, ...]] = None
    missing: int = 0

    @property
    def bins(self) -> int:
        return len(self.counts)

    @property
    def count(self) -> int:
        return sum(self.counts)

    @property
    def largest_frequency(self) -> int:
        return max(self.counts, default=0)

    def frequency(self, bin: int) -> int:
        return self.counts[bin]

    def range(self, bin: int) -> Range1D:
        return self.bin_ranges[bin]

    def bin_of(self, value: float) -> int:
        """Index of the numeric bin containing `value`, -1 if outside."""
        if self.edges is None:
            raise TypeError(f"bin_of is only defined for numerical histograms, not '{self.kind}'")
        lo, hi = self.edges[0], self.edges[-1]
        if np.isnan(value) or value < lo or value > hi:
            return -1
        return _bin_positions(np.asarray([value], dtype=float), lo, hi, self.bins)[0]

    def as_dict(self) -> Dict[str, int]:
        return dict(zip(self.labels, self.counts))

    def __iter__(self) -> Iterator[int]:
        return iter(self.counts)

    def __len__(self) -> int:
        return len(self.counts)


def _bin_positions(arr: np.ndarray, lo: float, hi: float, bins: int) -> np.ndarray:
    if hi == lo:
        return np.zeros(arr.shape, dtype=np.int64)
    with np.errstate(invalid="ignore"):
        pos = np.floor((arr - lo) / (hi - lo) * bins)
    pos = np.nan_to_num(pos, nan=-1).astype(np.int64)
    # the upper edge belongs to the last bin
    return np.clip(pos, -1, bins - 1)


def _bin_ranges(indices: np.ndarray, selected: Sequence[np.ndarray]) -> Tuple[Range1D, ...]:
    return tuple(Range1D.from_list(np.unique(indices[m])) for m in selected)


def _indices_for(arr: np.ndarray, indices: Optional[Any]) -> np.ndarray:
    if indices is None:
        return np.arange(arr.size, dtype=np.int64)
    idx = np.asarray(indices, dtype=np.int64).ravel()
    if idx.size != arr.size:
        raise ValueError(f"Got {idx.size} indices for {arr.size} values")
    return idx


def hist(
    values: Any,
    bins: int,
    value_range: Optional[Tuple[float, float]] = None,
    indices: Optional[Any] = None,
) -> Histogram:
    """
    Equal-width histogram over numeric values.

    Bins span `value_range` when given, otherwise the observed min/max.
    NaNs and values outside the range count as missing.
    """
    arr = np.asarray(values, dtype=float).ravel()
    idx = _indices_for(arr, indices)
    bins = max(int(bins), 1)
    valid = ~np.isnan(arr)

    if value_range is not None:
        lo, hi = float(value_range[0]), float(value_range[1])
    elif valid.any():
        lo, hi = float(arr[valid].min()), float(arr[valid].max())
    else:
        lo, hi = 0.0, 0.0

    inside = valid & (arr >= lo) & (arr <= hi)
    pos = _bin_positions(arr, lo, hi, bins)
    selected = [inside & (pos == b) for b in range(bins)]
    edges = tuple(float(e) for e in np.linspace(lo, hi, bins + 1))

    return Histogram(
        kind="numerical",
        counts=tuple(int(m.sum()) for m in selected),
        labels=tuple(f"{edges[b]:g} - {edges[b + 1]:g}" for b in range(bins)),
        colors=(DEFAULT_COLOR,) * bins,
        bin_ranges=_bin_ranges(idx, selected),
        edges=edges,
        missing=int(arr.size - inside.sum()),
    )


def categorical_hist(
    values: Any,
    categories: Sequence[str],
    labels: Optional[Sequence[str]] = None,
    colors: Optional[Sequence[str]] = None,
    indices: Optional[Any] = None,
) -> Histogram:
    """Per-category counts in declared category order."""
    arr = np.asarray(values, dtype=object).ravel()
    idx = _indices_for(arr, indices)
    selected = [arr == c for c in categories]
    matched = np.zeros(arr.size, dtype=bool)
    for m in selected:
        matched |= m

    return Histogram(
        kind="categorical",
        counts=tuple(int(m.sum()) for m in selected),
        labels=tuple(labels if labels is not None else (str(c) for c in categories)),
        colors=tuple(colors if colors is not None else (DEFAULT_COLOR,) * len(categories)),
        bin_ranges=_bin_ranges(idx, selected),
        missing=int(arr.size - matched.sum()),
    )


def range_hist(range: CompositeRange1D) -> Histogram:
    """Histogram with one bin per group of a composite range."""
    return Histogram(
        kind="range",
        counts=tuple(g.range.size() for g in range.groups),
        labels=tuple(g.name for g in range.groups),
        colors=tuple(g.color for g in range.groups),
        bin_ranges=tuple(g.range for g in range.groups),
    )
