from __future__ import annotations

import dataclasses
import functools
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import anndata as ad
import numpy as np
import pandas as pd

from .datatype import (
    CategoricalValueTypeDesc,
    NumberValueTypeDesc,
    ValueTypeDesc,
    VectorDataDescription,
    categorical_to_partitioning,
    guess_value_type,
    mask,
)
from .exceptions import OutOfBoundsError
from .idtype import IDType, IDTypeRegistry
from .loader import VectorLoader, anndata_obs_vector_loader, table_vector_loader
from .range import CompositeRange1D, Range, as_ungrouped, composite, parse
from .stats import Histogram, Statistics, categorical_hist, compute_stats, hist as numerical_hist
from .stratification import Stratification

logger = logging.getLogger(__name__)

RangeLike = Any


def default_bins(length: int) -> int:
    return max(int(round(math.sqrt(length))), 1)


def masked(values: Any, value: ValueTypeDesc) -> np.ndarray:
    if isinstance(value, NumberValueTypeDesc):
        return mask(values, value)
    return np.asarray(values)


class VectorBase(ABC):
    """
    Generic vector behaviour, implemented once against a small contract.

    Subclasses provide `desc`, `idtype`, `size`, `data`, `ids`, `names`,
    `at`, `view` and `persist`; everything else (statistics, histograms,
    grouping, traversal, sort/filter) is derived here from those.
    """

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @property
    @abstractmethod
    def desc(self) -> VectorDataDescription:
        raise NotImplementedError()

    @property
    @abstractmethod
    def idtype(self) -> IDType:
        raise NotImplementedError()

    @abstractmethod
    def size(self) -> int:
        raise NotImplementedError()

    @abstractmethod
    async def data(self, range: RangeLike = None) -> np.ndarray:
        raise NotImplementedError()

    @abstractmethod
    async def ids(self, range: RangeLike = None) -> Range:
        raise NotImplementedError()

    @abstractmethod
    async def names(self, range: RangeLike = None) -> List[str]:
        raise NotImplementedError()

    @abstractmethod
    async def at(self, index: int) -> Any:
        raise NotImplementedError()

    @abstractmethod
    def view(self, range: RangeLike = None) -> VectorBase:
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
        return [self.idtype]

    @property
    def dim(self) -> List[int]:
        return [self.size()]

    @property
    def length(self) -> int:
        return self.size()

    @property
    def indices(self) -> Range:
        """Logical positions 0..length-1 of this vector."""
        return Range.from_range(0, self.length)

    async def id_view(self, id_range: RangeLike = None) -> VectorBase:
        """View selecting entries by identifier instead of by position."""
        ids = await self.ids()
        return self.view(ids.index_of(parse(id_range)))

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    async def stats(self) -> Optional[Statistics]:
        if not self.valuetype.is_numeric:
            return None
        return compute_stats(await self.data())

    async def groups(self) -> CompositeRange1D:
        """
        Partition of this vector's positions.

        Categorical vectors are grouped by category, in declared category
        order; any other vector yields one "unnamed" group covering all.
        """
        v = self.valuetype
        if isinstance(v, CategoricalValueTypeDesc):
            values = await self.data()
            return categorical_to_partitioning(
                list(values),
                v.names,
                name=self.desc.id,
                labels=v.labels if v.has_metadata else None,
                colors=v.colors if v.has_metadata else ("gray",),
            )
        return composite(self.desc.id, [as_ungrouped(self.indices.dim(0))])

    async def as_stratification(self) -> Stratification:
        return Stratification(self, await self.groups())

    async def stratification(self) -> Stratification:
        return await self.as_stratification()

    async def hist(self, bins: Optional[int] = None, range: RangeLike = None) -> Optional[Histogram]:
        """
        Histogram of the (optionally sub-selected) values.

        Returns None for value types that cannot be binned.
        """
        v = self.valuetype
        if not (v.is_categorical or v.is_numeric):
            return None
        selection = parse(range)
        values = await self.data(selection)
        positions = selection.axis(0).indices(self.length)
        if isinstance(v, CategoricalValueTypeDesc):
            return categorical_hist(values, v.names, v.labels, v.colors, indices=positions)
        return numerical_hist(
            values,
            bins or default_bins(self.length),
            value_range=getattr(v, "range", None),
            indices=positions,
        )

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------
    # Callbacks receive (value, logical index), reducers (acc, value, index).
    async def every(self, predicate: Callable[[Any, int], bool]) -> bool:
        return all(predicate(v, i) for i, v in enumerate(await self.data()))

    async def some(self, predicate: Callable[[Any, int], bool]) -> bool:
        return any(predicate(v, i) for i, v in enumerate(await self.data()))

    async def for_each(self, callback: Callable[[Any, int], None]) -> None:
        for i, v in enumerate(await self.data()):
            callback(v, i)

    async def reduce(self, fn: Callable[[Any, Any, int], Any], initial: Any) -> Any:
        acc = initial
        for i, v in enumerate(await self.data()):
            acc = fn(acc, v, i)
        return acc

    async def reduce_right(self, fn: Callable[[Any, Any, int], Any], initial: Any) -> Any:
        values = list(await self.data())
        acc = initial
        for i in reversed(range(len(values))):
            acc = fn(acc, values[i], i)
        return acc

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    async def sort(
        self,
        compare: Optional[Callable[[Any, Any], int]] = None,
        *,
        key: Optional[Callable[[Any], Any]] = None,
        reverse: bool = False,
    ) -> VectorBase:
        """
        View of this vector in sorted order.

        Only the positions are permuted; the backing data is untouched.
        """
        values = list(await self.data())
        if compare is not None:
            key = functools.cmp_to_key(compare)
        keyfn = key or (lambda x: x)
        order = sorted(range(len(values)), key=lambda i: keyfn(values[i]), reverse=reverse)
        return self.view(Range.from_list(order))

    async def filter(self, predicate: Callable[[Any, int], bool]) -> VectorBase:
        values = await self.data()
        kept = [i for i, v in enumerate(values) if predicate(v, i)]
        return self.view(Range.from_list(kept))

    def restore(self, persisted: Optional[Dict[str, Any]]) -> VectorBase:
        if persisted and persisted.get("range") is not None:
            return self.view(parse(persisted["range"]))
        return self

    async def to_series(self) -> pd.Series:
        values = await self.data()
        names = await self.names()
        return pd.Series(values, index=pd.Index(names), name=self.desc.name or self.desc.id)


# -------------------------------------------------------------------------
# Root
# -------------------------------------------------------------------------
class Vector(VectorBase):
    """Loader-backed vector owning its description."""

    def __init__(
        self,
        desc: VectorDataDescription,
        loader: VectorLoader,
        idtypes: Optional[IDTypeRegistry] = None,
    ) -> None:
        self._desc = desc
        self._loader = loader
        self._idtypes = idtypes or IDTypeRegistry()
        self._idtype = self._idtypes.resolve(desc.idtype)

    @property
    def desc(self) -> VectorDataDescription:
        return self._desc

    @property
    def idtype(self) -> IDType:
        return self._idtype

    @property
    def registry(self) -> IDTypeRegistry:
        return self._idtypes

    def size(self) -> int:
        return self._desc.size

    async def data(self, range: RangeLike = None) -> np.ndarray:
        values = await self._loader.data(self._desc, parse(range))
        return masked(values, self.valuetype)

    async def ids(self, range: RangeLike = None) -> Range:
        return await self._loader.ids(self._desc, parse(range))

    async def names(self, range: RangeLike = None) -> List[str]:
        return await self._loader.names(self._desc, parse(range))

    async def at(self, index: int) -> Any:
        if not 0 <= index < self.size():
            raise OutOfBoundsError(f"Index {index} outside vector '{self._desc.id}' of size {self.size()}")
        if self._loader.at is not None:
            value = await self._loader.at(self._desc, index)
        else:
            value = (await self._loader.data(self._desc, Range.from_list([index])))[0]
        if self.valuetype.is_numeric:
            return masked([value], self.valuetype)[0]
        return value

    def view(self, range: RangeLike = None) -> VectorView:
        return VectorView(self, parse(range))

    def persist(self) -> str:
        return self._desc.id

    def __repr__(self) -> str:
        return f"Vector({self._desc.id!r}, size={self.size()})"


# -------------------------------------------------------------------------
# View
# -------------------------------------------------------------------------
class VectorView(VectorBase):
    """
    Range-parameterised window onto a root vector.

    The stored range is always expressed against the root, so a view of a
    view composes instead of nesting.
    """

    def __init__(self, root: VectorBase, range: Range) -> None:
        self._root = root
        self._range = range

    @property
    def root(self) -> VectorBase:
        return self._root

    @property
    def range(self) -> Range:
        return self._range

    @property
    def desc(self) -> VectorDataDescription:
        return self._root.desc

    @property
    def idtype(self) -> IDType:
        return self._root.idtype

    def _compose(self, range: RangeLike) -> Range:
        return self._range.pre_multiply(parse(range), self._root.dim)

    def size(self) -> int:
        return self._range.size(self._root.dim)[0]

    async def data(self, range: RangeLike = None) -> np.ndarray:
        return await self._root.data(self._compose(range))

    async def ids(self, range: RangeLike = None) -> Range:
        return await self._root.ids(self._compose(range))

    async def names(self, range: RangeLike = None) -> List[str]:
        return await self._root.names(self._compose(range))

    async def at(self, index: int) -> Any:
        return await self._root.at(self._range.at([index], self._root.dim)[0])

    def view(self, range: RangeLike = None) -> VectorView:
        return VectorView(self._root, self._compose(range))

    def persist(self) -> Dict[str, Any]:
        return {"root": self._root.persist(), "range": str(self._range)}

    def __repr__(self) -> str:
        return f"VectorView({self.desc.id!r}, range='{self._range}')"


# -------------------------------------------------------------------------
# Construction
# -------------------------------------------------------------------------
def create_vector(
    desc: VectorDataDescription,
    loader: VectorLoader,
    idtypes: Optional[IDTypeRegistry] = None,
) -> Vector:
    return Vector(desc, loader, idtypes)


def wrap_vector(
    desc: VectorDataDescription,
    names: Sequence[str],
    ids: Optional[Sequence[int]],
    data: Sequence[Any],
    idtypes: Optional[IDTypeRegistry] = None,
) -> Vector:
    """Root vector over values that already live in memory."""
    if len(names) != len(data):
        raise ValueError(f"Got {len(names)} names for {len(data)} values")
    if desc.size != len(data):
        desc = dataclasses.replace(desc, size=len(data))
    return Vector(desc, table_vector_loader(data, names, ids), idtypes)


def vector_from_obs(
    adata: ad.AnnData,
    column: str,
    *,
    id: Optional[str] = None,
    name: Optional[str] = None,
    idtype: str = "Cell",
    value: Union[ValueTypeDesc, None] = None,
    idtypes: Optional[IDTypeRegistry] = None,
) -> Vector:
    """
    Root vector over one `.obs` column.

    Pandas categoricals keep their declared category order; other columns
    get their value type inferred from the values.
    """
    loader = anndata_obs_vector_loader(adata, column)
    if value is None:
        series = adata.obs[column]
        if series.dtype.name == "category":
            value = CategoricalValueTypeDesc(categories=tuple(str(c) for c in series.cat.categories))
        else:
            value = guess_value_type(series.tolist())
    desc = VectorDataDescription(
        id=id or column,
        name=name or column,
        fqname=name or column,
        value=value,
        idtype=idtype,
        size=adata.n_obs,
    )
    logger.debug(
        "Created vector from .obs column",
        extra={"column": column, "value_type": value.type, "n_obs": adata.n_obs},
    )
    return Vector(desc, loader, idtypes)
