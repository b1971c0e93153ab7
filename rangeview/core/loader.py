from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import anndata as ad
import numpy as np

from .datatype import DataDescription
from .exceptions import OutOfBoundsError
from .idtype import LocalIDAssigner
from .range import Range, Range1D, join
from .stats import Histogram

logger = logging.getLogger(__name__)

P = TypeVar("P")


# -------------------------------------------------------------------------
# Capability records
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class VectorLoader:
    """
    Data access strategy for vectors.

    Each slot is a coroutine function taking the dataset description and a
    fully composed range. `at` is optional; roots fall back to a one-element
    `data` request when it is missing.
    """
    data: Callable[[DataDescription, Range], Awaitable[np.ndarray]]
    ids: Callable[[DataDescription, Range], Awaitable[Range]]
    names: Callable[[DataDescription, Range], Awaitable[List[str]]]
    at: Optional[Callable[[DataDescription, int], Awaitable[Any]]] = None


@dataclass(frozen=True)
class MatrixLoader:
    """
    Data access strategy for matrices.

    `rows`/`row_ids` and `cols`/`col_ids` take one-dimensional ranges over
    their own axis; `data` and `ids` take a (row, column) range.
    `numerical_hist` and `heatmap_url` are optional server-side fast paths.
    """
    data: Callable[[DataDescription, Range], Awaitable[np.ndarray]]
    ids: Callable[[DataDescription, Range], Awaitable[Range]]
    rows: Callable[[DataDescription, Range], Awaitable[List[str]]]
    cols: Callable[[DataDescription, Range], Awaitable[List[str]]]
    row_ids: Callable[[DataDescription, Range], Awaitable[Range]]
    col_ids: Callable[[DataDescription, Range], Awaitable[Range]]
    at: Callable[[DataDescription, int, int], Awaitable[Any]]
    numerical_hist: Optional[Callable[[DataDescription, Range, Optional[int]], Awaitable[Histogram]]] = None
    heatmap_url: Optional[Callable[[DataDescription, Range, Dict[str, Any]], Optional[str]]] = None


# -------------------------------------------------------------------------
# Whole-dataset payloads
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class VectorPayload:
    names: List[str]
    ids: Range1D
    data: np.ndarray


@dataclass(frozen=True)
class MatrixPayload:
    rows: List[str]
    cols: List[str]
    row_ids: Range1D
    col_ids: Range1D
    data: np.ndarray


class PayloadCache(Generic[P]):
    """
    Memoizes one whole-dataset fetch per dataset id.

    Concurrent callers share the same in-flight task. A failed fetch is
    evicted so that the next call fetches again.
    """

    def __init__(self, fetch: Callable[[DataDescription], Awaitable[P]]):
        self._fetch = fetch
        self._tasks: Dict[str, asyncio.Future] = {}

    async def get(self, desc: DataDescription) -> P:
        task = self._tasks.get(desc.id)
        if task is None:
            logger.debug("Fetching dataset payload", extra={"dataset": desc.id})
            task = asyncio.ensure_future(self._fetch(desc))
            self._tasks[desc.id] = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._tasks.get(desc.id) is task:
                del self._tasks[desc.id]
            logger.warning("Dataset payload fetch failed", extra={"dataset": desc.id})
            raise

    def clear(self) -> None:
        self._tasks.clear()


def _ids_for(ids: Range1D, requested: Range) -> Range:
    return Range((ids.pre_multiply(requested.axis(0)),))


def vector_loader_from_bulk(fetch: Callable[[DataDescription], Awaitable[VectorPayload]]) -> VectorLoader:
    """Build a vector loader from a coroutine that fetches the whole dataset."""
    cache: PayloadCache[VectorPayload] = PayloadCache(fetch)

    async def data(desc: DataDescription, range: Range) -> np.ndarray:
        payload = await cache.get(desc)
        return range.axis(0).filter(payload.data)

    async def ids(desc: DataDescription, range: Range) -> Range:
        payload = await cache.get(desc)
        return _ids_for(payload.ids, range)

    async def names(desc: DataDescription, range: Range) -> List[str]:
        payload = await cache.get(desc)
        return list(range.axis(0).filter(payload.names))

    async def at(desc: DataDescription, i: int) -> Any:
        payload = await cache.get(desc)
        if not 0 <= i < len(payload.data):
            raise OutOfBoundsError(f"Index {i} outside vector of size {len(payload.data)}")
        return payload.data[i]

    return VectorLoader(data=data, ids=ids, names=names, at=at)


def matrix_loader_from_bulk(fetch: Callable[[DataDescription], Awaitable[MatrixPayload]]) -> MatrixLoader:
    """Build a matrix loader from a coroutine that fetches the whole dataset."""
    cache: PayloadCache[MatrixPayload] = PayloadCache(fetch)

    async def data(desc: DataDescription, range: Range) -> np.ndarray:
        payload = await cache.get(desc)
        return range.filter(payload.data)

    async def ids(desc: DataDescription, range: Range) -> Range:
        payload = await cache.get(desc)
        return join(
            payload.row_ids.pre_multiply(range.axis(0)),
            payload.col_ids.pre_multiply(range.axis(1)),
        )

    async def rows(desc: DataDescription, range: Range) -> List[str]:
        payload = await cache.get(desc)
        return list(range.axis(0).filter(payload.rows))

    async def cols(desc: DataDescription, range: Range) -> List[str]:
        payload = await cache.get(desc)
        return list(range.axis(0).filter(payload.cols))

    async def row_ids(desc: DataDescription, range: Range) -> Range:
        payload = await cache.get(desc)
        return _ids_for(payload.row_ids, range)

    async def col_ids(desc: DataDescription, range: Range) -> Range:
        payload = await cache.get(desc)
        return _ids_for(payload.col_ids, range)

    async def at(desc: DataDescription, i: int, j: int) -> Any:
        payload = await cache.get(desc)
        n, m = payload.data.shape
        if not (0 <= i < n and 0 <= j < m):
            raise OutOfBoundsError(f"Cell ({i}, {j}) outside matrix of shape {payload.data.shape}")
        return payload.data[i, j]

    return MatrixLoader(
        data=data, ids=ids, rows=rows, cols=cols, row_ids=row_ids, col_ids=col_ids, at=at
    )


# -------------------------------------------------------------------------
# In-memory tables
# -------------------------------------------------------------------------
def table_matrix_loader(
    data: np.ndarray,
    rows: Sequence[str],
    cols: Sequence[str],
    row_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
    col_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
) -> MatrixLoader:
    """Loader over a table that already lives in memory."""
    row_assigner = row_assigner or LocalIDAssigner()
    col_assigner = col_assigner or LocalIDAssigner()
    payload = MatrixPayload(
        rows=[str(r) for r in rows],
        cols=[str(c) for c in cols],
        row_ids=row_assigner(rows),
        col_ids=col_assigner(cols),
        data=np.asarray(data),
    )

    async def fetch(desc: DataDescription) -> MatrixPayload:
        return payload

    return matrix_loader_from_bulk(fetch)


def table_vector_loader(
    data: Sequence[Any],
    names: Sequence[str],
    ids: Optional[Sequence[int]] = None,
    assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
) -> VectorLoader:
    """Loader over a vector that already lives in memory."""
    if ids is not None:
        id_range = Range1D.from_list(ids)
    else:
        id_range = (assigner or LocalIDAssigner())(names)
    payload = VectorPayload(names=[str(n) for n in names], ids=id_range, data=np.asarray(data))

    async def fetch(desc: DataDescription) -> VectorPayload:
        return payload

    return vector_loader_from_bulk(fetch)


# -------------------------------------------------------------------------
# AnnData-backed loaders
# -------------------------------------------------------------------------
def _take(X: Any, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    """
    Read the (rows x cols) block of X.

    Backed and sparse matrices only support increasing indices, so the
    unique sorted block is read and reordered afterwards.
    """
    uniq_rows, row_inv = np.unique(rows, return_inverse=True)
    uniq_cols, col_inv = np.unique(cols, return_inverse=True)
    if uniq_rows.size == 0 or uniq_cols.size == 0:
        return np.empty((rows.size, cols.size))

    block = X[uniq_rows, :]
    if hasattr(block, "toarray"):
        block = block.toarray()
    block = np.asarray(block)[:, uniq_cols]
    return block[np.ix_(row_inv.ravel(), col_inv.ravel())]


def anndata_matrix_loader(
    adata: ad.AnnData,
    row_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
    col_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
) -> MatrixLoader:
    """
    Loader reading only the requested window of `adata.X`.

    Works with in-memory, sparse and backed (`backed="r"`) AnnData objects.
    """
    obs_names = [str(n) for n in adata.obs_names]
    var_names = [str(n) for n in adata.var_names]
    row_ids_all = (row_assigner or LocalIDAssigner())(obs_names)
    col_ids_all = (col_assigner or LocalIDAssigner())(var_names)

    async def data(desc: DataDescription, range: Range) -> np.ndarray:
        rows = range.axis(0).indices(adata.n_obs)
        cols = range.axis(1).indices(adata.n_vars)
        logger.debug(
            "Reading AnnData block",
            extra={"dataset": desc.id, "n_rows": int(rows.size), "n_cols": int(cols.size)},
        )
        return _take(adata.X, rows, cols)

    async def ids(desc: DataDescription, range: Range) -> Range:
        return join(row_ids_all.pre_multiply(range.axis(0)), col_ids_all.pre_multiply(range.axis(1)))

    async def rows(desc: DataDescription, range: Range) -> List[str]:
        return list(range.axis(0).filter(obs_names))

    async def cols(desc: DataDescription, range: Range) -> List[str]:
        return list(range.axis(0).filter(var_names))

    async def row_ids(desc: DataDescription, range: Range) -> Range:
        return _ids_for(row_ids_all, range)

    async def col_ids(desc: DataDescription, range: Range) -> Range:
        return _ids_for(col_ids_all, range)

    async def at(desc: DataDescription, i: int, j: int) -> Any:
        if not (0 <= i < adata.n_obs and 0 <= j < adata.n_vars):
            raise OutOfBoundsError(f"Cell ({i}, {j}) outside matrix of shape {adata.shape}")
        return _take(adata.X, np.asarray([i]), np.asarray([j]))[0, 0]

    return MatrixLoader(
        data=data, ids=ids, rows=rows, cols=cols, row_ids=row_ids, col_ids=col_ids, at=at
    )


def anndata_obs_vector_loader(
    adata: ad.AnnData,
    column: str,
    assigner: Optional[Callable[[Sequence[str]], Range1D]] = None,
) -> VectorLoader:
    """Loader over one `.obs` column of an AnnData object."""
    if column not in adata.obs.columns:
        raise KeyError(f"Column '{column}' not found in .obs")
    series = adata.obs[column]
    if series.dtype.name == "category" or series.dtype == object:
        values = series.astype(str).to_numpy(dtype=object)
    else:
        values = series.to_numpy()
    return table_vector_loader(values, [str(n) for n in adata.obs_names], assigner=assigner)
