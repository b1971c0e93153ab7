from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd

from .datatype import (
    VALUE_TYPE_INT,
    VALUE_TYPE_REAL,
    CategoricalValueTypeDesc,
    MatrixDataDescription,
    NumberValueTypeDesc,
    ValueTypeDesc,
    VectorDataDescription,
    coerce_values,
    guess_value_type,
)
from .exceptions import OutOfBoundsError
from .idtype import IDType, IDTypeRegistry, LocalIDAssigner, ProductIDType
from .loader import MatrixLoader, anndata_matrix_loader, table_matrix_loader
from .range import Range, Range1D, join, parse
from .stats import Histogram, Statistics, categorical_hist, compute_stats, hist as numerical_hist
from .vector import RangeLike, VectorBase, VectorView, default_bins, masked

logger = logging.getLogger(__name__)

_matrix_counter = itertools.count()


class MatrixBase(ABC):
    """
    Generic matrix behaviour shared by roots, views and transposes.

    Row/column selections given to `rows`, `cols`, `row_ids` and `col_ids`
    are one-dimensional; `data`, `ids` and `view` take (row, column) ranges.
    """

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @property
    @abstractmethod
    def desc(self) -> MatrixDataDescription:
        raise NotImplementedError()

    @property
    @abstractmethod
    def rowtype(self) -> IDType:
        raise NotImplementedError()

    @property
    @abstractmethod
    def coltype(self) -> IDType:
        raise NotImplementedError()

    @property
    @abstractmethod
    def t(self) -> MatrixBase:
        raise NotImplementedError()

    @abstractmethod
    def size(self) -> List[int]:
        raise NotImplementedError()

    @abstractmethod
    async def data(self, range: RangeLike = None) -> np.ndarray:
        raise NotImplementedError()

    @abstractmethod
    async def ids(self, range: RangeLike = None) -> Range:
        raise NotImplementedError()

    @abstractmethod
    async def rows(self, range: RangeLike = None) -> List[str]:
        raise NotImplementedError()

    @abstractmethod
    async def cols(self, range: RangeLike = None) -> List[str]:
        raise NotImplementedError()

    @abstractmethod
    async def row_ids(self, range: RangeLike = None) -> Range:
        raise NotImplementedError()

    @abstractmethod
    async def col_ids(self, range: RangeLike = None) -> Range:
        raise NotImplementedError()

    @abstractmethod
    async def at(self, i: int, j: int) -> Any:
        raise NotImplementedError()

    @abstractmethod
    def view(self, range: RangeLike = None) -> MatrixBase:
        raise NotImplementedError()

    @abstractmethod
    def persist(self) -> Any:
        raise NotImplementedError()

    # ------------------------------------------------------------------
    # Shape & types
    # ------------------------------------------------------------------
    @property
    def valuetype(self) -> ValueTypeDesc:
        return self.desc.value

    @property
    def idtypes(self) -> List[IDType]:
        return [self.rowtype, self.coltype]

    @property
    def dim(self) -> List[int]:
        return self.size()

    @property
    def nrow(self) -> int:
        return self.size()[0]

    @property
    def ncol(self) -> int:
        return self.size()[1]

    @property
    def length(self) -> int:
        return self.nrow * self.ncol

    @property
    def indices(self) -> Range:
        return join(Range1D.from_range(0, self.nrow), Range1D.from_range(0, self.ncol))

    async def id_view(self, id_range: RangeLike = None) -> MatrixBase:
        ids = await self.ids()
        return self.view(ids.index_of(parse(id_range)))

    def slice(self, col: int) -> MatrixSliceColumn:
        return MatrixSliceColumn(self, col)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    async def stats(self) -> Optional[Statistics]:
        if not self.valuetype.is_numeric:
            return None
        return compute_stats(await self.data())

    async def hist(
        self,
        bins: Optional[int] = None,
        range: RangeLike = None,
        contained_ids: int = 0,
    ) -> Optional[Histogram]:
        """
        Histogram over all cells of the (optionally sub-selected) matrix.

        `contained_ids` picks the axis the per-bin ranges refer to: 0 records
        the rows contributing to a bin, 1 the columns.
        """
        v = self.valuetype
        if not (v.is_categorical or v.is_numeric):
            return None
        selection = parse(range)
        values = np.asarray(await self.data(selection))
        rows = selection.axis(0).indices(self.nrow)
        cols = selection.axis(1).indices(self.ncol)
        if contained_ids == 0:
            positions = np.repeat(rows, cols.size)
        else:
            positions = np.tile(cols, rows.size)
        flat = values.ravel()
        if isinstance(v, CategoricalValueTypeDesc):
            return categorical_hist(flat, v.names, v.labels, v.colors, indices=positions)
        return numerical_hist(
            flat,
            bins or default_bins(self.length),
            value_range=getattr(v, "range", None),
            indices=positions,
        )

    def restore(self, persisted: Optional[Dict[str, Any]]) -> MatrixBase:
        if persisted and persisted.get("range") is not None:
            return self.view(parse(persisted["range"]))
        return self

    async def to_frame(self) -> pd.DataFrame:
        values = np.asarray(await self.data())
        return pd.DataFrame(values, index=pd.Index(await self.rows()), columns=pd.Index(await self.cols()))


# -------------------------------------------------------------------------
# Root
# -------------------------------------------------------------------------
class Matrix(MatrixBase):
    """Loader-backed matrix owning its description."""

    def __init__(
        self,
        desc: MatrixDataDescription,
        loader: MatrixLoader,
        idtypes: Optional[IDTypeRegistry] = None,
    ) -> None:
        self._desc = desc
        self._loader = loader
        self._idtypes = idtypes or IDTypeRegistry()
        self._rowtype = self._idtypes.resolve(desc.rowtype)
        self._coltype = self._idtypes.resolve(desc.coltype)
        self._producttype = self._idtypes.resolve_product(self._rowtype, self._coltype)
        self._t: Optional[TransposedMatrix] = None

    @property
    def desc(self) -> MatrixDataDescription:
        return self._desc

    @property
    def rowtype(self) -> IDType:
        return self._rowtype

    @property
    def coltype(self) -> IDType:
        return self._coltype

    @property
    def producttype(self) -> ProductIDType:
        return self._producttype

    @property
    def registry(self) -> IDTypeRegistry:
        return self._idtypes

    @property
    def t(self) -> TransposedMatrix:
        if self._t is None:
            self._t = TransposedMatrix(self)
        return self._t

    def size(self) -> List[int]:
        return list(self._desc.size)

    async def data(self, range: RangeLike = None) -> np.ndarray:
        values = await self._loader.data(self._desc, parse(range))
        return masked(values, self.valuetype)

    async def ids(self, range: RangeLike = None) -> Range:
        return await self._loader.ids(self._desc, parse(range))

    async def rows(self, range: RangeLike = None) -> List[str]:
        return await self._loader.rows(self._desc, parse(range))

    async def cols(self, range: RangeLike = None) -> List[str]:
        return await self._loader.cols(self._desc, parse(range))

    async def row_ids(self, range: RangeLike = None) -> Range:
        return await self._loader.row_ids(self._desc, parse(range))

    async def col_ids(self, range: RangeLike = None) -> Range:
        return await self._loader.col_ids(self._desc, parse(range))

    async def at(self, i: int, j: int) -> Any:
        n, m = self.size()
        if not (0 <= i < n and 0 <= j < m):
            raise OutOfBoundsError(f"Cell ({i}, {j}) outside matrix '{self._desc.id}' of shape {[n, m]}")
        value = await self._loader.at(self._desc, i, j)
        if self.valuetype.is_numeric:
            return masked([value], self.valuetype)[0]
        return value

    async def hist(
        self,
        bins: Optional[int] = None,
        range: RangeLike = None,
        contained_ids: int = 0,
    ) -> Optional[Histogram]:
        if self._loader.numerical_hist is not None and self.valuetype.is_numeric:
            logger.debug("Using loader histogram", extra={"dataset": self._desc.id})
            return await self._loader.numerical_hist(self._desc, parse(range), bins)
        return await super().hist(bins, range, contained_ids)

    def heatmap_url(self, range: RangeLike = None, options: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if self._loader.heatmap_url is None:
            return None
        return self._loader.heatmap_url(self._desc, parse(range), options or {})

    def view(self, range: RangeLike = None) -> MatrixView:
        return MatrixView(self, parse(range))

    def persist(self) -> str:
        return self._desc.id

    def __repr__(self) -> str:
        return f"Matrix({self._desc.id!r}, shape={self.size()})"


# -------------------------------------------------------------------------
# Transpose
# -------------------------------------------------------------------------
class TransposedMatrix(MatrixBase):
    """Root matrix with the row and column axes exchanged."""

    def __init__(self, root: Matrix) -> None:
        self._root = root

    @property
    def root(self) -> Matrix:
        return self._root

    @property
    def desc(self) -> MatrixDataDescription:
        return self._root.desc

    @property
    def rowtype(self) -> IDType:
        return self._root.coltype

    @property
    def coltype(self) -> IDType:
        return self._root.rowtype

    @property
    def t(self) -> Matrix:
        return self._root

    def size(self) -> List[int]:
        n, m = self._root.size()
        return [m, n]

    async def data(self, range: RangeLike = None) -> np.ndarray:
        values = await self._root.data(parse(range).swap())
        return np.asarray(values).T

    async def ids(self, range: RangeLike = None) -> Range:
        ids = await self._root.ids(parse(range).swap())
        return ids.swap()

    async def rows(self, range: RangeLike = None) -> List[str]:
        return await self._root.cols(range)

    async def cols(self, range: RangeLike = None) -> List[str]:
        return await self._root.rows(range)

    async def row_ids(self, range: RangeLike = None) -> Range:
        return await self._root.col_ids(range)

    async def col_ids(self, range: RangeLike = None) -> Range:
        return await self._root.row_ids(range)

    async def at(self, i: int, j: int) -> Any:
        return await self._root.at(j, i)

    def view(self, range: RangeLike = None) -> MatrixView:
        return MatrixView(self, parse(range))

    def persist(self) -> Dict[str, Any]:
        return {"root": self._root.persist(), "transposed": True}

    def __repr__(self) -> str:
        return f"TransposedMatrix({self.desc.id!r}, shape={self.size()})"


# -------------------------------------------------------------------------
# View
# -------------------------------------------------------------------------
class MatrixView(MatrixBase):
    """
    (row, column) window onto a root or transposed matrix.

    The stored range is expressed against `base`; views of views compose.
    """

    def __init__(self, base: MatrixBase, range: Range) -> None:
        self._base = base
        self._range = range

    @property
    def root(self) -> MatrixBase:
        return self._base

    @property
    def range(self) -> Range:
        return self._range

    @property
    def desc(self) -> MatrixDataDescription:
        return self._base.desc

    @property
    def rowtype(self) -> IDType:
        return self._base.rowtype

    @property
    def coltype(self) -> IDType:
        return self._base.coltype

    @property
    def t(self) -> MatrixView:
        return MatrixView(self._base.t, self._range.swap())

    def _compose(self, range: RangeLike) -> Range:
        return self._range.pre_multiply(parse(range), self._base.dim)

    def _compose_axis(self, axis: int, range: RangeLike) -> Range:
        own = self._range.axis(axis)
        return Range((own.pre_multiply(parse(range).axis(0), self._base.dim[axis]),))

    def size(self) -> List[int]:
        return self._range.size(self._base.dim)

    async def data(self, range: RangeLike = None) -> np.ndarray:
        return await self._base.data(self._compose(range))

    async def ids(self, range: RangeLike = None) -> Range:
        return await self._base.ids(self._compose(range))

    async def rows(self, range: RangeLike = None) -> List[str]:
        return await self._base.rows(self._compose_axis(0, range))

    async def cols(self, range: RangeLike = None) -> List[str]:
        return await self._base.cols(self._compose_axis(1, range))

    async def row_ids(self, range: RangeLike = None) -> Range:
        return await self._base.row_ids(self._compose_axis(0, range))

    async def col_ids(self, range: RangeLike = None) -> Range:
        return await self._base.col_ids(self._compose_axis(1, range))

    async def at(self, i: int, j: int) -> Any:
        pi, pj = self._range.at([i, j], self._base.dim)
        return await self._base.at(pi, pj)

    def view(self, range: RangeLike = None) -> MatrixView:
        return MatrixView(self._base, self._compose(range))

    def persist(self) -> Dict[str, Any]:
        return {"root": self._base.persist(), "range": str(self._range)}

    def __repr__(self) -> str:
        return f"MatrixView({self.desc.id!r}, range='{self._range}')"


# -------------------------------------------------------------------------
# Column slice
# -------------------------------------------------------------------------
class MatrixSliceColumn(VectorBase):
    """One matrix column exposed as a vector over the matrix rows."""

    def __init__(self, matrix: MatrixBase, col: int) -> None:
        if not 0 <= col < matrix.ncol:
            raise OutOfBoundsError(f"Column {col} outside matrix of {matrix.ncol} columns")
        self._matrix = matrix
        self._col = col
        src = matrix.desc
        self._desc = VectorDataDescription(
            id=f"{src.id}-c{col}",
            name=f"{src.name}-c{col}",
            fqname=f"{src.fqname}-c{col}",
            description=src.description,
            creator=src.creator,
            ts=src.ts,
            value=matrix.valuetype,
            idtype=matrix.rowtype.id,
            size=matrix.nrow,
        )

    @property
    def desc(self) -> VectorDataDescription:
        return self._desc

    @property
    def idtype(self) -> IDType:
        return self._matrix.rowtype

    @property
    def matrix(self) -> MatrixBase:
        return self._matrix

    @property
    def col(self) -> int:
        return self._col

    def size(self) -> int:
        return self._matrix.nrow

    async def data(self, range: RangeLike = None) -> np.ndarray:
        rows = parse(range).axis(0)
        values = await self._matrix.data(join(rows, Range1D.from_list([self._col])))
        return np.asarray(values)[:, 0]

    async def ids(self, range: RangeLike = None) -> Range:
        return await self._matrix.row_ids(range)

    async def names(self, range: RangeLike = None) -> List[str]:
        return await self._matrix.rows(range)

    async def at(self, index: int) -> Any:
        return await self._matrix.at(index, self._col)

    def view(self, range: RangeLike = None) -> VectorView:
        return VectorView(self, parse(range))

    def persist(self) -> Dict[str, Any]:
        return {"root": self._matrix.persist(), "col": self._col}

    def __repr__(self) -> str:
        return f"MatrixSliceColumn({self._matrix.desc.id!r}, col={self._col})"


# -------------------------------------------------------------------------
# Construction
# -------------------------------------------------------------------------
@dataclass
class AsMatrixOptions:
    """
    Options for building a matrix from an in-memory table.

    Row and column assigners default independently of each other.
    """
    id: Optional[str] = None
    name: str = "Matrix"
    rowtype: str = "_rows"
    coltype: str = "_cols"
    row_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None
    col_assigner: Optional[Callable[[Sequence[str]], Range1D]] = None
    idtypes: Optional[IDTypeRegistry] = None


def create_matrix(
    desc: MatrixDataDescription,
    loader: MatrixLoader,
    idtypes: Optional[IDTypeRegistry] = None,
) -> Matrix:
    return Matrix(desc, loader, idtypes)


def _split_table(data: Any, rows: Optional[Sequence[str]], cols: Optional[Sequence[str]]):
    if isinstance(data, pd.DataFrame):
        rows = list(rows) if rows is not None else [str(r) for r in data.index]
        cols = list(cols) if cols is not None else [str(c) for c in data.columns]
        return data.to_numpy(dtype=object).tolist(), rows, cols

    table = [list(r) for r in data]
    if rows is None and cols is None:
        # header row and header column are part of the table; the corner cell is ignored
        if not table:
            return [], [], []
        return [r[1:] for r in table[1:]], [str(r[0]) for r in table[1:]], [str(c) for c in table[0][1:]]

    ncols = len(table[0]) if table else 0
    rows = list(rows) if rows is not None else [str(i) for i in range(len(table))]
    cols = list(cols) if cols is not None else [str(j) for j in range(ncols)]
    return table, rows, cols


def as_matrix(
    data: Any,
    rows: Optional[Sequence[str]] = None,
    cols: Optional[Sequence[str]] = None,
    options: Optional[AsMatrixOptions] = None,
) -> Matrix:
    """
    Build a root matrix over an in-memory table.

    `data` is either a pandas DataFrame, a list of rows whose first row and
    first column hold the labels (when `rows` and `cols` are omitted), or a
    plain list of value rows. The value type is inferred from the cells.
    """
    options = options or AsMatrixOptions()
    cells, rows, cols = _split_table(data, rows, cols)
    if len(cells) != len(rows):
        raise ValueError(f"Got {len(rows)} row labels for {len(cells)} rows")
    for r in cells:
        if len(r) != len(cols):
            raise ValueError(f"Got a row of {len(r)} cells for {len(cols)} column labels")

    flat = [v for r in cells for v in r]
    value = guess_value_type(flat)
    values = coerce_values(flat, value).reshape(len(rows), len(cols))

    desc = MatrixDataDescription(
        id=options.id or f"matrix{next(_matrix_counter)}",
        name=options.name,
        fqname=options.name,
        value=value,
        rowtype=options.rowtype,
        coltype=options.coltype,
        size=(len(rows), len(cols)),
    )
    loader = table_matrix_loader(
        values,
        rows,
        cols,
        row_assigner=options.row_assigner or LocalIDAssigner(),
        col_assigner=options.col_assigner or LocalIDAssigner(),
    )
    logger.debug(
        "Created in-memory matrix",
        extra={"dataset": desc.id, "shape": list(desc.size), "value_type": value.type},
    )
    return Matrix(desc, loader, options.idtypes)


def from_anndata(
    adata: ad.AnnData,
    *,
    id: Optional[str] = None,
    name: Optional[str] = None,
    rowtype: str = "Cell",
    coltype: str = "Gene",
    idtypes: Optional[IDTypeRegistry] = None,
) -> Matrix:
    """Root matrix over the expression matrix `adata.X` (cells x genes)."""
    dtype = getattr(adata.X, "dtype", np.dtype(float))
    kind = VALUE_TYPE_INT if np.issubdtype(dtype, np.integer) else VALUE_TYPE_REAL
    label = name or id or "AnnData"
    desc = MatrixDataDescription(
        id=id or label,
        name=label,
        fqname=label,
        value=NumberValueTypeDesc(type=kind),
        rowtype=rowtype,
        coltype=coltype,
        size=(int(adata.n_obs), int(adata.n_vars)),
    )
    return Matrix(desc, anndata_matrix_loader(adata), idtypes)
