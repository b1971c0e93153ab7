from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .datatype import GroupDesc, StratificationDataDescription
from .idtype import IDType
from .range import CompositeRange1D, Range, Range1DGroup, composite
from .stats import Histogram, range_hist

if TYPE_CHECKING:
    from .vector import VectorBase


def _group_desc(group: Range1DGroup) -> GroupDesc:
    return GroupDesc(name=group.name, color=group.color, size=group.length)


class Stratification:
    """
    Read-only partition of a vector's logical indices into named groups.

    Backed by a composite range over the vector's positions plus a reference
    to the vector it was derived from. A new partition is always a new object.
    """

    def __init__(self, vector: VectorBase, range: CompositeRange1D) -> None:
        self._vector = vector
        self._range = range
        src = vector.desc
        self.desc = StratificationDataDescription(
            id=f"{src.id}-s",
            name=src.name,
            fqname=src.fqname,
            description=src.description,
            creator=src.creator,
            ts=src.ts,
            idtype=vector.idtype.id,
            size=vector.length,
            ngroups=len(range.groups),
            groups=tuple(_group_desc(g) for g in range.groups),
        )

    @property
    def idtype(self) -> IDType:
        return self._vector.idtype

    @property
    def idtypes(self) -> List[IDType]:
        return [self.idtype]

    @property
    def groups(self) -> Tuple[GroupDesc, ...]:
        return self.desc.groups

    @property
    def ngroups(self) -> int:
        return self.desc.ngroups

    def size(self) -> int:
        return self.desc.size

    @property
    def length(self) -> int:
        return self.size()

    @property
    def dim(self) -> List[int]:
        return [self.size()]

    def group(self, index: int) -> StratificationGroup:
        return StratificationGroup(self, index, self._range.group(index))

    def range(self) -> CompositeRange1D:
        return self._range

    def vector(self) -> VectorBase:
        return self._vector

    def origin(self) -> VectorBase:
        return self._vector

    def hist(self) -> Histogram:
        return range_hist(self._range)

    async def id_range(self) -> CompositeRange1D:
        """The partition expressed in identifier space instead of positions."""
        ids = await self._vector.ids()
        return ids.dim(0).pre_multiply(self._range)

    async def names(self, range: Any = None) -> List[str]:
        return await self._vector.names(range)

    async def ids(self, range: Any = None) -> Range:
        return await self._vector.ids(range)

    def persist(self) -> Dict[str, Any]:
        return {"root": self._vector.persist(), "asstrat": True}

    def __repr__(self) -> str:
        return f"Stratification({self.desc.id!r}, groups={[g.name for g in self.groups]})"


class StratificationGroup:
    """A single group of a stratification, usable as a one-group partition."""

    def __init__(self, stratification: Stratification, index: int, group: Range1DGroup) -> None:
        self._stratification = stratification
        self._index = index
        self._group = group
        src = stratification.desc
        self.desc = StratificationDataDescription(
            id=f"{src.id}-g{index}",
            name=f"{src.name}/{group.name}",
            fqname=f"{src.fqname}/{group.name}",
            description=src.description,
            creator=src.creator,
            ts=src.ts,
            idtype=src.idtype,
            size=group.length,
            ngroups=1,
            groups=(_group_desc(group),),
        )

    @property
    def idtype(self) -> IDType:
        return self._stratification.idtype

    @property
    def idtypes(self) -> List[IDType]:
        return [self.idtype]

    @property
    def index(self) -> int:
        return self._index

    @property
    def groups(self) -> Tuple[GroupDesc, ...]:
        return self.desc.groups

    @property
    def ngroups(self) -> int:
        return 1

    def size(self) -> int:
        return self.desc.size

    @property
    def length(self) -> int:
        return self.size()

    @property
    def dim(self) -> List[int]:
        return [self.size()]

    def group(self, index: int) -> StratificationGroup:
        if index != 0:
            raise IndexError(f"Group {index} out of range for a single-group stratification")
        return self

    def range(self) -> CompositeRange1D:
        return composite(self._group.name, [self._group])

    def vector(self) -> VectorBase:
        """The originating vector restricted to this group's members."""
        return self._stratification.vector().view(Range((self._group.range,)))

    def origin(self) -> Stratification:
        return self._stratification

    def hist(self) -> Histogram:
        return range_hist(self.range())

    async def names(self, range: Optional[Any] = None) -> List[str]:
        return await self.vector().names(range)

    async def ids(self, range: Optional[Any] = None) -> Range:
        return await self.vector().ids(range)

    def persist(self) -> Dict[str, Any]:
        persisted = self._stratification.persist()
        persisted["group"] = self._index
        return persisted

    def __repr__(self) -> str:
        return f"StratificationGroup({self._stratification.desc.id!r}, {self._index}, {self._group.name!r})"
