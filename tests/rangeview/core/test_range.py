import numpy as np
import pytest

from rangeview.core.exceptions import (
    AxisOutOfRangeError,
    MalformedRangeError,
    NotFoundError,
    OutOfBoundsError,
    UnboundedRangeError,
)
from rangeview.core.range import (
    CompositeRange1D,
    Range,
    Range1D,
    Range1DGroup,
    RangeElem,
    as_ungrouped,
    composite,
    join,
    parse,
)


def _make_composite():
    return composite(
        "by cat",
        [
            Range1DGroup("a b", "#ff0000", Range1D.from_list([0, 2])),
            Range1DGroup("c", "blue", Range1D.from_list([1])),
        ],
    )


# -------------------------------------------------------------------------
# Construction & text form
# -------------------------------------------------------------------------
def test_from_list_compacts_ascending_runs():
    r = Range1D.from_list([0, 1, 2, 7, 3])

    assert r.elems == (RangeElem(0, 3), RangeElem(7, 8), RangeElem(3, 4))
    assert str(r) == "(0:3,7,3)"
    assert r.to_list() == [0, 1, 2, 7, 3]


@pytest.mark.parametrize(
    "r",
    [
        Range.from_list([0, 1, 2, 7, 3]),
        Range.from_range(0, 10, 3),
        Range((Range1D((RangeElem(2, None, 2),)),)),
        join([2, 0], slice(1, None)),
        Range.all(),
        Range((Range1D.all(),)),
        Range.none(2),
        Range((_make_composite(),)),
        join(_make_composite(), [4, 4, 1]),
    ],
)
def test_text_form_round_trips(r):
    extent = [10, 10]
    parsed = parse(str(r))

    assert parsed == r
    assert parsed.indices(extent) == r.indices(extent)


def test_composite_text_escapes_names_and_colors():
    text = str(Range((_make_composite(),)))

    assert text == "by%20cat{a%20b[%23ff0000](0,2),c[blue](1)}"
    parsed = parse(text).dim(0)
    assert isinstance(parsed, CompositeRange1D)
    assert parsed.name == "by cat"
    assert parsed.group(0).name == "a b"
    assert parsed.group(0).color == "#ff0000"


def test_element_text_forms():
    assert str(RangeElem.all()) == ":"
    assert str(RangeElem.single(4)) == "4"
    assert str(RangeElem(2, 8)) == "2:8"
    assert str(RangeElem(2, None)) == "2:"
    assert str(RangeElem(2, None, 3)) == "2::3"
    assert str(Range1D.none()) == "()"


def test_parse_shorthands():
    assert parse(None) == Range.all()
    assert parse(3).dim(0).to_list() == [3]
    assert parse(slice(1, 4)).dim(0).to_list() == [1, 2, 3]
    assert parse([4, 1, 1]).dim(0).to_list() == [4, 1, 1]
    assert parse(np.array([2, 0])).dim(0).to_list() == [2, 0]

    per_axis = parse([[0, 1], slice(None)])
    assert per_axis.ndim == 2
    assert per_axis.dim(1).is_all

    r1d = Range1D.from_list([5])
    assert parse(r1d).dim(0) is r1d


@pytest.mark.parametrize("bad", ["1:x", "(1,2", "a{b[c](1)", "1:2:3:4", {"a": 1}, 1.5])
def test_parse_rejects_malformed_input(bad):
    with pytest.raises(MalformedRangeError):
        parse(bad)


@pytest.mark.parametrize("bad", [-1, [2, -1], np.array([-3])])
def test_parse_rejects_negative_shorthands(bad):
    with pytest.raises(MalformedRangeError):
        parse(bad)


def test_invalid_elements_are_rejected():
    with pytest.raises(MalformedRangeError):
        Range1D.from_range(0, 5, 0)
    with pytest.raises(MalformedRangeError):
        RangeElem(-1, 3)


# -------------------------------------------------------------------------
# Projection & resolution
# -------------------------------------------------------------------------
def test_dim_is_strict_except_for_wildcard():
    assert Range.all().dim(5).is_all
    with pytest.raises(AxisOutOfRangeError):
        Range.from_list([1]).dim(1)

    assert Range.from_list([1]).axis(1).is_all


def test_size_pads_missing_axes_without_mutating():
    r = Range.from_list([0, 2])

    assert r.size([5, 4]) == [2, 4]
    assert r.ndim == 1


def test_open_ended_selector_needs_extent():
    r = Range1D.from_range(2)

    with pytest.raises(UnboundedRangeError):
        r.indices()
    assert r.to_list(5) == [2, 3, 4]


def test_filter_applies_axes_in_order():
    data = [[1, 2, 3], [4, 5, 6]]
    r = join([1, 0], [2])

    assert r.filter(data) == [[6], [3]]
    assert r.filter(np.array(data)).tolist() == [[6], [3]]


def test_filter_supports_reordering_and_repetition():
    assert Range.from_list([2, 0, 2]).filter(["a", "b", "c"]) == ["c", "a", "c"]


def test_structural_equality_ignores_trailing_wildcards():
    assert Range.from_list([1]) == join([1], None)
    assert Range.from_list([1]) != Range.from_list([2])


# -------------------------------------------------------------------------
# Composition
# -------------------------------------------------------------------------
def test_all_is_identity_under_composition():
    r = join([3, 1], [0, 0, 2])

    assert Range.all().pre_multiply(r, [5, 5]) == r
    assert r.pre_multiply(Range.all(), [5, 5]) == r


def test_composition_is_index_translation():
    seq = list("abcdefghij")
    a = Range.from_list([9, 7, 5, 3, 1, 0])
    b = Range.from_list([5, 4, 0, 2])
    c = Range.from_list([3, 1, 1])

    composed = a.pre_multiply(b.pre_multiply(c))

    assert composed.filter(seq) == c.filter(b.filter(a.filter(seq)))
    assert composed.filter(seq) == ["f", "b", "b"]
    assert a.pre_multiply(b).pre_multiply(c) == composed


def test_composition_resolves_wildcards_with_extent():
    base = join(None, [1, 2])
    inner = join([3], [1])

    composed = base.pre_multiply(inner, [5, 4])

    assert composed.indices([5, 4]) == [[3], [2]]


def test_composition_out_of_range_fails_fast():
    with pytest.raises(OutOfBoundsError):
        Range.from_list([1, 2]).pre_multiply(Range.from_list([5]))


def test_composite_inner_keeps_groups():
    base = Range.from_list([10, 20, 30, 40])

    result = base.pre_multiply(Range((_make_composite(),))).dim(0)

    assert isinstance(result, CompositeRange1D)
    assert result.group(0).range.to_list() == [10, 30]
    assert result.group(1).range.to_list() == [20]
    assert result.to_list() == [10, 30, 20]


def test_as_ungrouped_wraps_single_group():
    group = as_ungrouped(Range1D.from_range(0, 3))

    assert group.name == "unnamed"
    assert group.color == "gray"
    assert group.length == 3


def test_swap_exchanges_first_two_axes():
    assert join([1], [2, 3]).swap() == join([2, 3], [1])
    assert Range.from_list([1]).swap() == join(None, [1])


# -------------------------------------------------------------------------
# Inversion
# -------------------------------------------------------------------------
def test_invert_is_left_inverse_of_at():
    r = Range.from_list([4, 2, 2, 7])
    extent = 10

    for p in range(4):
        physical = r.at([p], extent)[0]
        assert p in r.invert([physical], extent)


def test_invert_returns_every_position_of_duplicates():
    assert Range.from_list([4, 2, 2, 7]).invert([2], 10) == [1, 2]


def test_invert_errors():
    r = Range.from_list([4, 2, 7])

    with pytest.raises(NotFoundError):
        r.invert([3], 10)
    with pytest.raises(OutOfBoundsError):
        r.invert([12], 10)


def test_at_outside_range_raises():
    with pytest.raises(OutOfBoundsError):
        Range.from_list([4, 2]).at([2], 10)
    with pytest.raises(OutOfBoundsError):
        Range.all().at([10], 10)


def test_index_of_maps_ids_to_positions_skipping_missing():
    ids = Range1D.from_list([10, 20, 30])

    assert ids.index_of(Range1D.from_list([30, 10, 99])).to_list() == [2, 0]
    assert ids.index_of(Range1D.all()).to_list() == [0, 1, 2]


def test_constructor_aliases():
    assert Range.list([3, 1]) == Range.from_list([3, 1])
    assert Range.range(2, 8, 3).dim(0).to_list() == [2, 5]
    assert Range.none().size([4]) == [0]
