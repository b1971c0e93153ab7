import anndata as ad
import numpy as np
import pandas as pd
import pytest

from rangeview.core.datatype import (
    CategoricalValueTypeDesc,
    NumberValueTypeDesc,
    ValueTypeDesc,
    VectorDataDescription,
)
from rangeview.core.exceptions import OutOfBoundsError
from rangeview.core.loader import VectorLoader, table_vector_loader
from rangeview.core.range import Range, parse
from rangeview.core.vector import Vector, VectorView, create_vector, vector_from_obs, wrap_vector


def _make_letters():
    values = ["a", "b", "a", "c"]
    desc = VectorDataDescription(
        id="letters",
        name="letters",
        value=CategoricalValueTypeDesc(categories=("a", "b", "c")),
        idtype="Cell",
    )
    return wrap_vector(desc, [f"n{i}" for i in range(len(values))], None, values)


def _make_numbers():
    values = [10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0, 80.0, 90.0]
    desc = VectorDataDescription(id="numbers", name="numbers", value=NumberValueTypeDesc(), idtype="Cell")
    ids = [100 + i for i in range(len(values))]
    return wrap_vector(desc, [f"n{i}" for i in range(len(values))], ids, values)


def test_root_shape_and_types():
    v = _make_numbers()

    assert v.dim == [9]
    assert v.length == 9
    assert v.idtype.id == "Cell"
    assert v.idtypes == [v.idtype]
    assert v.valuetype.is_numeric
    assert v.persist() == "numbers"


@pytest.mark.asyncio
async def test_at_and_bounds():
    v = _make_numbers()

    assert await v.at(2) == 30.0
    with pytest.raises(OutOfBoundsError):
        await v.at(9)


@pytest.mark.asyncio
async def test_at_falls_back_to_data_without_at_slot():
    full = table_vector_loader([1.0, 2.0, 3.0], ["a", "b", "c"])
    loader = VectorLoader(data=full.data, ids=full.ids, names=full.names)
    v = create_vector(VectorDataDescription(id="v", value=NumberValueTypeDesc(), size=3), loader)

    assert await v.at(1) == 2.0


@pytest.mark.asyncio
async def test_view_of_view_composes_ranges():
    root = _make_numbers()
    a = Range.from_list([8, 6, 4, 2, 0])
    b = Range.from_list([1, 3])

    view = root.view(a).view(b)

    assert isinstance(view, VectorView)
    assert view.root is root
    assert view.range == a.pre_multiply(b, root.dim)
    assert view.length == 2
    assert (await view.data()).tolist() == [70.0, 30.0]
    assert (await view.data()).tolist() == view.range.filter((await root.data()).tolist())
    assert await view.names() == ["n6", "n2"]
    assert await view.at(1) == 30.0


@pytest.mark.asyncio
async def test_sort_is_lazy_and_leaves_other_views_alone():
    root = _make_numbers()
    window = root.view(Range.from_range(0, 5))
    other = root.view(Range.from_range(0, 5))

    desc = await window.sort(reverse=True)

    assert (await desc.data()).tolist() == [50.0, 40.0, 30.0, 20.0, 10.0]
    assert await desc.at(0) == 50.0
    assert (await other.data()).tolist() == [10.0, 20.0, 30.0, 40.0, 50.0]
    assert (await root.data()).tolist()[:3] == [10.0, 20.0, 30.0]


@pytest.mark.asyncio
async def test_sort_with_comparator():
    v = _make_letters()

    by_cmp = await v.sort(lambda x, y: (x > y) - (x < y))

    assert (await by_cmp.data()).tolist() == ["a", "a", "b", "c"]
    assert await by_cmp.names() == ["n0", "n2", "n1", "n3"]


@pytest.mark.asyncio
async def test_filter_builds_view():
    root = _make_numbers()

    high = await root.filter(lambda x, i: x > 50)

    assert (await high.data()).tolist() == [60.0, 70.0, 80.0, 90.0]
    assert high.persist() == {"root": "numbers", "range": "5:9"}

    nothing = await high.filter(lambda x, i: x > 1000)
    assert nothing.length == 0


@pytest.mark.asyncio
async def test_stats_for_numeric_and_not_applicable():
    numbers = await _make_numbers().stats()

    assert numbers.mean == 50.0
    assert numbers.count == 9
    assert await _make_letters().stats() is None


@pytest.mark.asyncio
async def test_missing_sentinel_is_masked():
    desc = VectorDataDescription(id="m", value=NumberValueTypeDesc(missing=-1))
    v = wrap_vector(desc, ["a", "b", "c"], None, [1, -1, 3])

    stats = await v.stats()

    assert stats.nans == 1
    assert stats.mean == 2.0
    assert np.isnan(await v.at(1))


@pytest.mark.asyncio
async def test_categorical_hist_keeps_declared_category_order():
    h = await _make_letters().hist()

    assert h.as_dict() == {"a": 2, "b": 1, "c": 1}
    assert h.labels == ("a", "b", "c")
    assert h.range(0).to_list() == [0, 2]


@pytest.mark.asyncio
async def test_numeric_hist_defaults_to_sqrt_bins():
    v = _make_numbers()

    h = await v.hist()
    sub = await v.hist(bins=1, range=[8, 0])

    assert h.counts == (3, 3, 3)
    assert sub.counts == (2,)
    assert sub.range(0).to_list() == [0, 8]


@pytest.mark.asyncio
async def test_hist_not_applicable_for_strings():
    desc = VectorDataDescription(id="s", value=ValueTypeDesc())
    v = wrap_vector(desc, ["a"], None, ["free text"])

    assert await v.hist() is None
    groups = await v.groups()
    assert [g.name for g in groups.groups] == ["unnamed"]
    assert groups.group(0).range.to_list() == [0]


@pytest.mark.asyncio
async def test_traversal_follows_logical_order():
    letters = _make_letters()
    reversed_view = letters.view([3, 2, 1, 0])
    seen = []

    await reversed_view.for_each(lambda value, index: seen.append((index, value)))

    assert seen == [(0, "c"), (1, "a"), (2, "b"), (3, "a")]
    assert await letters.reduce(lambda acc, x, i: acc + x, "") == "abac"
    assert await letters.reduce_right(lambda acc, x, i: acc + x, "") == "caba"
    assert await letters.every(lambda x, i: x in "abc")
    assert await letters.some(lambda x, i: x == "c")
    assert not await letters.some(lambda x, i: x == "z")


@pytest.mark.asyncio
async def test_callbacks_receive_logical_index():
    letters = _make_letters()
    visited = []

    assert await letters.reduce(lambda acc, x, i: acc + [i], []) == [0, 1, 2, 3]
    assert await letters.reduce_right(lambda acc, x, i: acc + [i], []) == [3, 2, 1, 0]
    assert await letters.every(lambda x, i: visited.append(i) is None)
    assert visited == [0, 1, 2, 3]
    assert await letters.some(lambda x, i: i == 3 and x == "c")
    assert (await (await letters.filter(lambda x, i: i % 2 == 0)).data()).tolist() == ["a", "a"]


@pytest.mark.asyncio
async def test_id_view_selects_by_identifier():
    v = _make_numbers()

    by_id = await v.id_view([104, 100])

    assert (await by_id.data()).tolist() == [50.0, 10.0]
    assert (await by_id.ids()).dim(0).to_list() == [104, 100]


@pytest.mark.asyncio
async def test_restore_and_to_series():
    v = _make_letters()

    restored = v.restore({"range": "(3,0)"})

    assert v.restore(None) is v
    assert (await restored.data()).tolist() == ["c", "a"]
    series = await restored.to_series()
    assert isinstance(series, pd.Series)
    assert series.to_dict() == {"n3": "c", "n0": "a"}


def test_views_share_root_without_copying():
    root = _make_numbers()
    view = root.view(parse("1:3"))

    assert isinstance(root, Vector)
    assert view.desc is root.desc
    assert view.idtype is root.idtype
    assert view.view(None).range == view.range


@pytest.mark.asyncio
async def test_vector_from_obs_keeps_category_order():
    obs = pd.DataFrame(
        {
            "cluster": pd.Categorical(["B", "A", "B"], categories=["B", "A"]),
            "score": [0.5, 1.5, 2.5],
        },
        index=["c1", "c2", "c3"],
    )
    adata = ad.AnnData(X=np.zeros((3, 1)), obs=obs, var=pd.DataFrame(index=["g1"]))

    clusters = vector_from_obs(adata, "cluster")
    scores = vector_from_obs(adata, "score", id="score-vec")

    assert clusters.valuetype.names == ["B", "A"]
    assert clusters.length == 3
    assert (await clusters.hist()).as_dict() == {"B": 2, "A": 1}
    assert scores.desc.id == "score-vec"
    assert scores.valuetype.is_numeric
    assert (await scores.stats()).sum == 4.5
    assert await scores.names() == ["c1", "c2", "c3"]
