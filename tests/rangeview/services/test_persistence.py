import json

import numpy as np
import pytest

from rangeview.core.datatype import (
    CategoricalValueTypeDesc,
    DataDescription,
    MatrixDataDescription,
    NumberValueTypeDesc,
    VectorDataDescription,
)
from rangeview.core.exceptions import NotFoundError, RestoreError
from rangeview.core.loader import table_matrix_loader, table_vector_loader
from rangeview.core.matrix import Matrix, MatrixSliceColumn, TransposedMatrix
from rangeview.core.stratification import Stratification, StratificationGroup
from rangeview.core.vector import Vector
from rangeview.services.description_store import InMemoryDescriptionStore
from rangeview.services.persistence import Restorer, restore


def _make_store():
    store = InMemoryDescriptionStore()
    store.put(MatrixDataDescription(id="m", value=NumberValueTypeDesc(type="int"), size=(2, 3)))
    store.put(
        VectorDataDescription(
            id="v", value=CategoricalValueTypeDesc(categories=("a", "b")), idtype="Cell", size=3
        )
    )
    return store


def _make_factory(calls=None):
    loaders = {
        "m": table_matrix_loader(np.arange(6).reshape(2, 3), ["r0", "r1"], ["c0", "c1", "c2"]),
        "v": table_vector_loader(["a", "b", "a"], ["x", "y", "z"]),
    }

    def factory(desc):
        if calls is not None:
            calls.append(desc.id)
        return loaders[desc.id]

    return factory


def _json(persisted):
    return json.loads(json.dumps(persisted))


@pytest.mark.asyncio
async def test_restore_roots():
    store = _make_store()

    m = await restore("m", store, _make_factory())
    v = await restore("v", store, _make_factory())

    assert isinstance(m, Matrix)
    assert isinstance(v, Vector)
    assert m.dim == [2, 3]
    assert (await v.data()).tolist() == ["a", "b", "a"]


@pytest.mark.asyncio
async def test_restore_view_round_trip():
    store = _make_store()
    factory = _make_factory()
    original = Vector(store.get("v"), factory(store.get("v"))).view([1, 0])

    restored = await restore(_json(original.persist()), store, factory)

    assert restored.range == original.range
    assert (await restored.data()).tolist() == ["b", "a"]


@pytest.mark.asyncio
async def test_restore_transposed_and_nested_views():
    store = _make_store()
    factory = _make_factory()
    m = Matrix(store.get("m"), factory(store.get("m")))

    transposed = await restore(_json(m.t.persist()), store, factory)
    nested = await restore(_json(m.t.view([0]).persist()), store, factory)

    assert isinstance(transposed, TransposedMatrix)
    assert transposed.dim == [3, 2]
    assert (await nested.data()).tolist() == [[0, 3]]


@pytest.mark.asyncio
async def test_restore_column_slice():
    store = _make_store()

    col = await restore({"root": "m", "col": 1}, store, _make_factory())

    assert isinstance(col, MatrixSliceColumn)
    assert (await col.data()).tolist() == [1, 4]


@pytest.mark.asyncio
async def test_restore_stratification_and_group():
    store = _make_store()

    strat = await restore({"root": "v", "asstrat": True}, store, _make_factory())
    group = await restore({"root": "v", "asstrat": True, "group": 1}, store, _make_factory())

    assert isinstance(strat, Stratification)
    assert [(g.name, g.size) for g in strat.groups] == [("a", 2), ("b", 1)]
    assert isinstance(group, StratificationGroup)
    assert (await group.vector().data()).tolist() == ["b"]
    assert group.persist() == {"root": "v", "asstrat": True, "group": 1}


@pytest.mark.asyncio
async def test_restorer_shares_roots():
    calls = []
    restorer = Restorer(_make_store(), _make_factory(calls))

    view = await restorer.restore({"root": "v", "range": "0"})
    root = await restorer.restore("v")

    assert view.root is root
    assert calls == ["v"]
    assert root.idtype is restorer.idtypes.resolve("Cell")


@pytest.mark.asyncio
async def test_restore_errors():
    store = _make_store()
    store.put(DataDescription(id="other", type="table"))

    with pytest.raises(NotFoundError):
        await restore("missing", store, _make_factory())
    with pytest.raises(RestoreError):
        await restore({"range": "0"}, store, _make_factory())
    with pytest.raises(RestoreError):
        await restore(42, store, _make_factory())
    with pytest.raises(RestoreError):
        await restore("other", store, lambda desc: None)
