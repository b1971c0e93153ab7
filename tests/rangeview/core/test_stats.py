import math

import numpy as np
import pytest

from rangeview.core.range import Range1D, Range1DGroup, composite
from rangeview.core.stats import categorical_hist, compute_stats, hist, range_hist


def test_compute_stats_ignores_nans():
    s = compute_stats([1.0, 2.0, 3.0, np.nan])

    assert s.count == 3
    assert s.nans == 1
    assert s.min == 1.0
    assert s.max == 3.0
    assert s.sum == 6.0
    assert s.mean == 2.0
    assert s.var == pytest.approx(2 / 3)
    assert s.sd == pytest.approx(math.sqrt(2 / 3))


def test_compute_stats_on_empty_data():
    s = compute_stats([])

    assert s.count == 0
    assert math.isnan(s.mean)


def test_numeric_hist_over_observed_range():
    h = hist(list(range(10)), bins=2)

    assert h.kind == "numerical"
    assert h.counts == (5, 5)
    assert h.edges == (0.0, 4.5, 9.0)
    assert h.labels == ("0 - 4.5", "4.5 - 9")
    assert h.range(0).to_list() == [0, 1, 2, 3, 4]
    assert h.range(1).to_list() == [5, 6, 7, 8, 9]
    assert h.largest_frequency == 5
    assert h.count == 10
    assert h.missing == 0


def test_numeric_hist_with_declared_range_counts_outliers_as_missing():
    h = hist([1.0, np.nan, 3.0], bins=1, value_range=(0, 2))

    assert h.counts == (1,)
    assert h.missing == 2


def test_numeric_hist_bin_lookup():
    h = hist(list(range(10)), bins=2)

    assert h.bin_of(0) == 0
    assert h.bin_of(4.5) == 1
    assert h.bin_of(9) == 1
    assert h.bin_of(100) == -1


def test_hist_records_given_indices_per_bin():
    h = hist([5.0, 1.0, 5.0], bins=2, indices=[7, 3, 9])

    assert h.range(0).to_list() == [3]
    assert h.range(1).to_list() == [7, 9]


def test_categorical_hist_preserves_declared_order():
    h = categorical_hist(["a", "b", "a", "c"], ["a", "b", "c"])

    assert h.as_dict() == {"a": 2, "b": 1, "c": 1}
    assert h.labels == ("a", "b", "c")
    assert h.colors == ("gray", "gray", "gray")
    assert h.range(0).to_list() == [0, 2]
    assert list(h) == [2, 1, 1]


def test_categorical_hist_keeps_empty_categories():
    h = categorical_hist(["b", "x"], ["a", "b"], labels=["A", "B"], colors=["red", "blue"])

    assert h.as_dict() == {"A": 0, "B": 1}
    assert h.missing == 1
    with pytest.raises(TypeError):
        h.bin_of(1)


def test_range_hist_uses_group_sizes():
    r = composite(
        "groups",
        [
            Range1DGroup("x", "red", Range1D.from_list([0, 3])),
            Range1DGroup("y", "blue", Range1D.from_list([1])),
        ],
    )

    h = range_hist(r)

    assert h.counts == (2, 1)
    assert h.labels == ("x", "y")
    assert h.colors == ("red", "blue")
    assert len(h) == 2
