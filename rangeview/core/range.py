from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote, unquote

import numpy as np

from .exceptions import (
    AxisOutOfRangeError,
    MalformedRangeError,
    NotFoundError,
    OutOfBoundsError,
    UnboundedRangeError,
)

Extent = Union[int, Sequence[Optional[int]], None]

_ELEM_PATTERN = re.compile(r"^(\d*)(?::(\d*)(?::(\d*))?)?$")
_GROUP_PATTERN = re.compile(r"^([^\[\]]*)\[([^\[\]]*)\]\((.*)\)$", re.DOTALL)


# -------------------------------------------------------------------------
# Single run of indices
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class RangeElem:
    """
    Slice-like run of indices: start, start + step, ... up to end (exclusive).

    `end=None` means "up to the extent", which is resolved lazily against the
    size of whatever the range is applied to.
    """
    start: int
    end: Optional[int] = None
    step: int = 1

    def __post_init__(self) -> None:
        if self.start < 0 or (self.end is not None and self.end < 0):
            raise MalformedRangeError(f"Negative bounds are not supported: {self.start}:{self.end}")
        if self.step <= 0:
            raise MalformedRangeError(f"Step must be positive, got {self.step}")
        # a single index has no meaningful step
        if self.end is not None and self.end == self.start + 1 and self.step != 1:
            object.__setattr__(self, "step", 1)

    @classmethod
    def all(cls) -> RangeElem:
        return cls(0)

    @classmethod
    def single(cls, index: int) -> RangeElem:
        return cls(index, index + 1)

    @property
    def is_all(self) -> bool:
        return self.start == 0 and self.end is None and self.step == 1

    @property
    def is_single(self) -> bool:
        return self.end is not None and self.end == self.start + 1

    @property
    def is_unbounded(self) -> bool:
        return self.end is None

    def resolve(self, extent: Optional[int] = None) -> range:
        """
        Resolve this element to a concrete `range` of indices.

        Raises:
            UnboundedRangeError: open-ended element and no extent given
            OutOfBoundsError: the element reaches beyond the extent
        """
        end = self.end
        if end is None:
            if extent is None:
                raise UnboundedRangeError(f"Cannot resolve open-ended element '{self}' without an extent")
            if self.start > extent:
                raise OutOfBoundsError(f"Element '{self}' starts beyond extent {extent}")
            end = extent
        elif extent is not None and end > extent:
            raise OutOfBoundsError(f"Element '{self}' exceeds extent {extent}")
        return range(self.start, end, self.step)

    def size(self, extent: Optional[int] = None) -> int:
        return len(self.resolve(extent))

    def __str__(self) -> str:
        if self.is_all:
            return ":"
        if self.is_single:
            return str(self.start)
        text = f"{self.start}:{'' if self.end is None else self.end}"
        if self.step != 1:
            text += f":{self.step}"
        return text


def _parse_elem(text: str) -> RangeElem:
    match = _ELEM_PATTERN.match(text.strip())
    if match is None or text.strip() == "":
        raise MalformedRangeError(f"Invalid range element '{text}'")
    start_s, end_s, step_s = match.groups()
    if end_s is None:
        # plain index, "5"
        return RangeElem.single(int(start_s))
    start = int(start_s) if start_s else 0
    end = int(end_s) if end_s else None
    step = int(step_s) if step_s else 1
    return RangeElem(start, end, step)


# -------------------------------------------------------------------------
# One-dimensional selector
# -------------------------------------------------------------------------
class Range1D:
    """
    Ordered selector over a single axis.

    A Range1D is a sequence of RangeElem runs. Order is significant and
    duplicates are allowed, which is how sorting and filtering are expressed.
    """

    __slots__ = ("_elems",)

    def __init__(self, elems: Iterable[RangeElem] = ()) -> None:
        self._elems: Tuple[RangeElem, ...] = tuple(elems)

    @classmethod
    def all(cls) -> Range1D:
        return cls((RangeElem.all(),))

    @classmethod
    def none(cls) -> Range1D:
        return cls(())

    @classmethod
    def from_range(cls, start: int, end: Optional[int] = None, step: int = 1) -> Range1D:
        return cls((RangeElem(start, end, step),))

    @classmethod
    def from_list(cls, indices: Union[Iterable[int], np.ndarray]) -> Range1D:
        """
        Build a selector from an explicit ordered index sequence.

        Consecutive ascending runs are compacted into one element, so
        [0, 1, 2, 7, 3] is stored as (0:3, 7, 3).
        """
        arr = np.asarray(indices if isinstance(indices, (np.ndarray, list, tuple)) else list(indices))
        if arr.size == 0:
            return cls.none()
        if arr.ndim != 1 or not np.issubdtype(arr.dtype, np.integer):
            raise MalformedRangeError(f"Expected a flat sequence of integers, got dtype {arr.dtype}")
        arr = arr.astype(np.int64, copy=False)
        if (arr < 0).any():
            raise OutOfBoundsError(f"Negative index in {arr[arr < 0][:5].tolist()}")

        breaks = np.flatnonzero(np.diff(arr) != 1) + 1
        starts = np.concatenate(([0], breaks))
        ends = np.concatenate((breaks, [arr.size]))
        return cls(RangeElem(int(arr[s]), int(arr[e - 1]) + 1) for s, e in zip(starts, ends))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def elems(self) -> Tuple[RangeElem, ...]:
        return self._elems

    @property
    def is_all(self) -> bool:
        return len(self._elems) == 1 and self._elems[0].is_all

    @property
    def is_none(self) -> bool:
        return len(self._elems) == 0

    @property
    def is_unbounded(self) -> bool:
        return any(e.is_unbounded for e in self._elems)

    def is_identity(self, extent: Optional[int]) -> bool:
        """True if this selector yields 0..extent-1 unchanged."""
        if self.is_all:
            return True
        if len(self._elems) != 1 or extent is None:
            return False
        e = self._elems[0]
        return e.start == 0 and e.step == 1 and e.end in (None, extent)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def size(self, extent: Optional[int] = None) -> int:
        return sum(e.size(extent) for e in self._elems)

    def iter(self, extent: Optional[int] = None) -> Iterator[int]:
        for e in self._elems:
            yield from e.resolve(extent)

    def __iter__(self) -> Iterator[int]:
        return self.iter()

    def indices(self, extent: Optional[int] = None) -> np.ndarray:
        """Resolve to a numpy array of physical indices."""
        parts = [np.arange(r.start, r.stop, r.step, dtype=np.int64) for r in (e.resolve(extent) for e in self._elems)]
        if not parts:
            return np.empty(0, dtype=np.int64)
        return np.concatenate(parts)

    def to_list(self, extent: Optional[int] = None) -> List[int]:
        return self.indices(extent).tolist()

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------
    def at(self, position: int, extent: Optional[int] = None) -> int:
        """Forward mapping: logical position -> physical index."""
        if self.is_all:
            if position < 0 or (extent is not None and position >= extent):
                raise OutOfBoundsError(f"Position {position} outside extent {extent}")
            return position
        resolved = self.indices(extent)
        if position < 0 or position >= resolved.size:
            raise OutOfBoundsError(f"Position {position} outside range of size {resolved.size}")
        return int(resolved[position])

    def pre_multiply(self, sub: Range1D, extent: Optional[int] = None) -> Range1D:
        """
        Compose `sub` onto this selector: result[k] = self[sub[k]].

        `sub` is expressed in this selector's logical positions; the result
        is expressed in the physical positions this selector refers to.
        """
        if isinstance(sub, CompositeRange1D):
            return sub.rebase(self, extent)
        if self.is_all:
            return sub
        if sub.is_all:
            return self
        base = self.indices(extent)
        positions = sub.indices(base.size)
        if positions.size and positions.max() >= base.size:
            raise OutOfBoundsError(
                f"Cannot compose '{sub}' onto a range of size {base.size}"
            )
        return Range1D.from_list(base[positions])

    def invert(self, indices: Iterable[int], extent: Optional[int] = None) -> List[int]:
        """
        Map physical indices back to the logical positions that produce them.

        Every logical position is returned for an index that occurs more
        than once.

        Raises:
            OutOfBoundsError: index outside the extent
            NotFoundError: index not produced by this selector
        """
        wanted = [int(i) for i in indices]
        for i in wanted:
            if i < 0 or (extent is not None and i >= extent):
                raise OutOfBoundsError(f"Index {i} outside extent {extent}")
        if self.is_all:
            return wanted

        positions: Dict[int, List[int]] = {}
        for pos, value in enumerate(self.iter(extent)):
            positions.setdefault(value, []).append(pos)

        result: List[int] = []
        for i in wanted:
            if i not in positions:
                raise NotFoundError(f"Index {i} is not part of range '{self}'")
            result.extend(positions[i])
        return result

    def index_of(self, sub: Range1D, extent: Optional[int] = None) -> Range1D:
        """
        Logical positions of the indices in `sub`, in `sub` order.

        Indices missing from this selector are skipped; used to map an
        identifier-space selection back onto logical positions.
        """
        if self.is_all:
            return sub
        if sub.is_all:
            return Range1D.from_range(0, self.size(extent))
        first: Dict[int, int] = {}
        for pos, value in enumerate(self.iter(extent)):
            first.setdefault(value, pos)
        return Range1D.from_list([first[i] for i in sub.iter() if i in first])

    def filter(self, data: Any) -> Any:
        """Select from a concrete sequence in range order."""
        if self.is_all:
            return data
        n = len(data)
        idx = self.indices(n)
        if isinstance(data, np.ndarray):
            return data[idx]
        return [data[i] for i in idx]

    # ------------------------------------------------------------------
    # Dunder
    # ------------------------------------------------------------------
    def _elems_text(self) -> str:
        return ",".join(str(e) for e in self._elems)

    def __str__(self) -> str:
        if len(self._elems) == 1:
            return str(self._elems[0])
        return f"({self._elems_text()})"

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Range1D) or isinstance(other, CompositeRange1D):
            return NotImplemented
        return self._elems == other._elems

    def __hash__(self) -> int:
        return hash(self._elems)


# -------------------------------------------------------------------------
# Grouped selectors
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class Range1DGroup:
    """Named, coloured sub-range of a composite selector."""
    name: str
    color: str
    range: Range1D

    def size(self, extent: Optional[int] = None) -> int:
        return self.range.size(extent)

    @property
    def length(self) -> int:
        return self.range.size()

    def __str__(self) -> str:
        return f"{quote(self.name, safe='')}[{quote(self.color, safe='')}]({self.range._elems_text()})"


def as_ungrouped(range1d: Range1D) -> Range1DGroup:
    """Degenerate single group used when there is no categorical structure."""
    return Range1DGroup("unnamed", "gray", range1d)


class CompositeRange1D(Range1D):
    """
    Selector partitioned into named groups.

    Its own index sequence is the concatenation of its groups' sequences.
    """

    __slots__ = ("name", "groups")

    def __init__(self, name: str, groups: Sequence[Range1DGroup]) -> None:
        super().__init__(e for g in groups for e in g.range.elems)
        self.name = name
        self.groups: Tuple[Range1DGroup, ...] = tuple(groups)

    def rebase(self, base: Range1D, extent: Optional[int] = None) -> CompositeRange1D:
        """Translate every group through `base`, keeping the grouping."""
        if base.is_all:
            return self
        return CompositeRange1D(
            self.name,
            [Range1DGroup(g.name, g.color, base.pre_multiply(g.range, extent)) for g in self.groups],
        )

    def group(self, index: int) -> Range1DGroup:
        return self.groups[index]

    def __str__(self) -> str:
        return f"{quote(self.name, safe='')}{{{','.join(str(g) for g in self.groups)}}}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompositeRange1D):
            return NotImplemented
        return self.name == other.name and self.groups == other.groups

    def __hash__(self) -> int:
        return hash((self.name, self.groups))


def composite(name: str, groups: Sequence[Range1DGroup]) -> CompositeRange1D:
    return CompositeRange1D(name, groups)


# -------------------------------------------------------------------------
# Multi-dimensional range
# -------------------------------------------------------------------------
def _normalise_extent(extent: Extent, ndim: int) -> List[Optional[int]]:
    if extent is None:
        values: List[Optional[int]] = []
    elif isinstance(extent, (int, np.integer)):
        values = [int(extent)]
    else:
        values = [None if e is None else int(e) for e in extent]
    return values + [None] * (ndim - len(values))


class Range:
    """
    Immutable, possibly multi-dimensional index selection.

    One Range1D per axis. `Range.all()` carries no explicit axes and matches
    the full extent of however many axes it is applied to; missing trailing
    axes of any range are treated as "all" when resolved against an extent.
    """

    __slots__ = ("_dims",)

    def __init__(self, dims: Iterable[Range1D] = ()) -> None:
        dims = tuple(dims)
        for d in dims:
            if not isinstance(d, Range1D):
                raise MalformedRangeError(f"Expected Range1D per axis, got {type(d).__name__}")
        self._dims: Tuple[Range1D, ...] = dims

    @classmethod
    def all(cls) -> Range:
        return cls(())

    @classmethod
    def none(cls, ndim: int = 1) -> Range:
        return cls(Range1D.none() for _ in range(ndim))

    @classmethod
    def from_list(cls, indices: Iterable[int]) -> Range:
        return cls((Range1D.from_list(indices),))

    @classmethod
    def from_range(cls, start: int, end: Optional[int] = None, step: int = 1) -> Range:
        return cls((Range1D.from_range(start, end, step),))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def dims(self) -> Tuple[Range1D, ...]:
        return self._dims

    @property
    def ndim(self) -> int:
        return len(self._dims)

    @property
    def is_all(self) -> bool:
        return all(d.is_all for d in self._dims)

    @property
    def is_none(self) -> bool:
        return any(d.is_none for d in self._dims)

    def dim(self, axis: int) -> Range1D:
        """
        Project out the selector of one axis.

        Raises:
            AxisOutOfRangeError: the range has fewer explicit axes
        """
        if axis < 0:
            raise AxisOutOfRangeError(f"Negative axis {axis}")
        if axis < len(self._dims):
            return self._dims[axis]
        if self.is_all:
            return Range1D.all()
        raise AxisOutOfRangeError(f"Range '{self}' has {len(self._dims)} axes, requested axis {axis}")

    def axis(self, axis: int) -> Range1D:
        """Selector of `axis`, or "all" when the axis is not given explicitly."""
        if axis < 0:
            raise AxisOutOfRangeError(f"Negative axis {axis}")
        return self._padded(axis + 1)[axis]

    def _padded(self, ndim: int) -> Tuple[Range1D, ...]:
        return self._dims + tuple(Range1D.all() for _ in range(ndim - len(self._dims)))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def size(self, extent: Extent) -> List[int]:
        """Concrete per-axis counts for the given extent."""
        ext = _normalise_extent(extent, 0)
        if len(self._dims) > len(ext):
            raise AxisOutOfRangeError(f"Range '{self}' has more axes than extent {ext}")
        return [d.size(e) for d, e in zip(self._padded(len(ext)), ext)]

    def indices(self, extent: Extent) -> List[List[int]]:
        ext = _normalise_extent(extent, len(self._dims))
        return [d.to_list(e) for d, e in zip(self._padded(len(ext)), ext)]

    def filter(self, data: Any) -> Any:
        """
        Apply axis 0 to the outer level of `data`, axis 1 to the next, ...

        Works on nested lists/tuples and numpy arrays.
        """
        if isinstance(data, np.ndarray):
            for axis, d in enumerate(self._dims[: data.ndim]):
                if d.is_all:
                    continue
                data = np.take(data, d.indices(data.shape[axis]), axis=axis)
            return data
        return _filter_nested(data, self._dims)

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------
    def pre_multiply(self, inner: Any, extent: Extent = None) -> Range:
        """
        Compose `inner` onto this range, per axis: result[k] = self[inner[k]].

        `extent` is the extent this range is expressed against; it resolves
        "all" selectors met during the composition.
        """
        inner = parse(inner)
        if self.is_all:
            return inner
        if inner.is_all:
            return self
        ndim = max(len(self._dims), len(inner._dims))
        ext = _normalise_extent(extent, ndim)
        return Range(
            a.pre_multiply(b, e)
            for a, b, e in zip(self._padded(ndim), inner._padded(ndim), ext)
        )

    def at(self, positions: Sequence[int], extent: Extent = None) -> Tuple[int, ...]:
        """Forward mapping of one logical position per axis."""
        ext = _normalise_extent(extent, len(positions))
        dims = self._padded(len(positions))
        return tuple(d.at(p, e) for d, p, e in zip(dims, positions, ext))

    def invert(self, indices: Iterable[int], extent: Extent = None, axis: int = 0) -> List[int]:
        ext = _normalise_extent(extent, axis + 1)
        return self._padded(axis + 1)[axis].invert(indices, ext[axis])

    def index_of(self, sub: Any, extent: Extent = None) -> Range:
        sub = parse(sub)
        if self.is_all:
            return sub
        ndim = max(len(self._dims), len(sub._dims))
        ext = _normalise_extent(extent, ndim)
        return Range(
            a.index_of(b, e)
            for a, b, e in zip(self._padded(ndim), sub._padded(ndim), ext)
        )

    def swap(self) -> Range:
        """Exchange the first two axes."""
        if self.is_all:
            return self
        dims = self._padded(max(2, len(self._dims)))
        return Range((dims[1], dims[0]) + dims[2:])

    # ------------------------------------------------------------------
    # Dunder
    # ------------------------------------------------------------------
    def _significant_dims(self) -> Tuple[Range1D, ...]:
        dims = list(self._dims)
        while dims and dims[-1].is_all and not isinstance(dims[-1], CompositeRange1D):
            dims.pop()
        return tuple(dims)

    def __str__(self) -> str:
        return ",".join(str(d) for d in self._dims)

    def __repr__(self) -> str:
        return f"Range('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Range):
            return NotImplemented
        return self._significant_dims() == other._significant_dims()

    def __hash__(self) -> int:
        return hash(self._significant_dims())

    list = from_list
    range = from_range


def _filter_nested(data: Any, dims: Tuple[Range1D, ...]) -> Any:
    if not dims:
        return data
    rows = dims[0].filter(data)
    if len(dims) == 1:
        return rows if isinstance(rows, list) else list(rows)
    return [_filter_nested(row, dims[1:]) for row in rows]


# -------------------------------------------------------------------------
# Constructors & parsing
# -------------------------------------------------------------------------
def all_range() -> Range:
    return Range.all()


def none_range(ndim: int = 1) -> Range:
    return Range.none(ndim)


def list_range(indices: Iterable[int]) -> Range:
    return Range.from_list(indices)


def join(*ranges: Any) -> Range:
    """Build a multi-dimensional range from independent per-axis selectors."""
    if len(ranges) == 1 and isinstance(ranges[0], (list, tuple)):
        ranges = tuple(ranges[0])
    return Range(_parse_dim(r) for r in ranges)


def _split_top_level(text: str) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    for ch in text:
        if ch in "({":
            depth += 1
        elif ch in ")}":
            depth -= 1
            if depth < 0:
                raise MalformedRangeError(f"Unbalanced brackets in '{text}'")
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    if depth != 0:
        raise MalformedRangeError(f"Unbalanced brackets in '{text}'")
    parts.append("".join(current))
    return parts


def _parse_elems(text: str) -> Range1D:
    text = text.strip()
    if not text:
        return Range1D.none()
    return Range1D(_parse_elem(t) for t in text.split(","))


def _parse_dim_text(text: str) -> Range1D:
    text = text.strip()
    if text == "":
        return Range1D.all()
    if "{" in text:
        if not text.endswith("}"):
            raise MalformedRangeError(f"Invalid composite range '{text}'")
        name, body = text[:-1].split("{", 1)
        groups = []
        for group_text in _split_top_level(body) if body.strip() else []:
            match = _GROUP_PATTERN.match(group_text.strip())
            if match is None:
                raise MalformedRangeError(f"Invalid range group '{group_text}'")
            g_name, g_color, g_elems = match.groups()
            groups.append(Range1DGroup(unquote(g_name), unquote(g_color), _parse_elems(g_elems)))
        return CompositeRange1D(unquote(name), groups)
    if text.startswith("("):
        if not text.endswith(")"):
            raise MalformedRangeError(f"Invalid range dimension '{text}'")
        return _parse_elems(text[1:-1])
    return Range1D((_parse_elem(text),))


def _parse_text(text: str) -> Range:
    if text.strip() == "":
        return Range.all()
    return Range(_parse_dim_text(part) for part in _split_top_level(text))


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def _shorthand_list(value: Any) -> Range1D:
    arr = np.asarray(value)
    if arr.size and np.issubdtype(arr.dtype, np.integer) and (arr < 0).any():
        raise MalformedRangeError(f"Negative indices are not supported: {arr[arr < 0][:5].tolist()}")
    return Range1D.from_list(arr)


def _slice_to_range1d(value: slice) -> Range1D:
    start = 0 if value.start is None else value.start
    step = 1 if value.step is None else value.step
    return Range1D.from_range(start, value.stop, step)


def _parse_dim(value: Any) -> Range1D:
    if value is None:
        return Range1D.all()
    if isinstance(value, Range1D):
        return value
    if isinstance(value, Range):
        if value.ndim > 1:
            raise MalformedRangeError(f"Expected a one-dimensional range, got '{value}'")
        return value.dim(0)
    if isinstance(value, str):
        parsed = _parse_text(value)
        if parsed.ndim > 1:
            raise MalformedRangeError(f"Expected a one-dimensional range, got '{value}'")
        return parsed.dim(0)
    if _is_int(value):
        return _shorthand_list([int(value)])
    if isinstance(value, slice):
        return _slice_to_range1d(value)
    if isinstance(value, (list, tuple, np.ndarray)):
        return _shorthand_list(value)
    raise MalformedRangeError(f"Cannot interpret {value!r} as a range dimension")


def parse(value: Any = None) -> Range:
    """
    Turn a range-like value into a Range.

    Accepts an existing Range or Range1D, None (all), the canonical string
    form, an int, a slice, a flat sequence of ints (explicit index list) or
    a sequence of per-axis selectors.

    Raises:
        MalformedRangeError: the value cannot be interpreted
    """
    if value is None:
        return Range.all()
    if isinstance(value, Range):
        return value
    if isinstance(value, Range1D):
        return Range((value,))
    if isinstance(value, str):
        return _parse_text(value)
    if _is_int(value) or isinstance(value, slice):
        return Range((_parse_dim(value),))
    if isinstance(value, np.ndarray):
        if value.ndim != 1:
            raise MalformedRangeError(f"Expected a flat index array, got shape {value.shape}")
        return Range((_shorthand_list(value),))
    if isinstance(value, (list, tuple)):
        if all(_is_int(v) for v in value):
            return Range((_shorthand_list(value),))
        return Range(_parse_dim(v) for v in value)
    raise MalformedRangeError(f"Cannot interpret {value!r} as a range")
