from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .range import CompositeRange1D, Range1D, Range1DGroup, composite

VALUE_TYPE_CATEGORICAL = "categorical"
VALUE_TYPE_REAL = "real"
VALUE_TYPE_INT = "int"
VALUE_TYPE_STRING = "string"
VALUE_TYPE_OBJECT = "object"

NUMERIC_VALUE_TYPES = (VALUE_TYPE_REAL, VALUE_TYPE_INT)

DEFAULT_COLOR = "gray"


def now_iso() -> str:
    """Return a current UTC timestamp in ISO-8601 format."""
    return datetime.now(timezone.utc).isoformat()


# -------------------------------------------------------------------------
# Value types
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class ValueTypeDesc:
    type: str = VALUE_TYPE_STRING

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_VALUE_TYPES

    @property
    def is_categorical(self) -> bool:
        return self.type == VALUE_TYPE_CATEGORICAL


@dataclass(frozen=True)
class NumberValueTypeDesc(ValueTypeDesc):
    """
    Numeric value type.

    - range: declared (min, max) used for histogram binning, if known
    - missing: sentinel value standing for "no value", masked to NaN on load
    """
    type: str = VALUE_TYPE_REAL
    range: Optional[Tuple[float, float]] = None
    missing: Optional[float] = None


@dataclass(frozen=True)
class Category:
    name: str
    label: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class CategoricalValueTypeDesc(ValueTypeDesc):
    """
    Categorical value type. Categories are either plain names or Category
    records carrying a label and a colour.
    """
    type: str = VALUE_TYPE_CATEGORICAL
    categories: Tuple[Union[str, Category], ...] = ()

    @property
    def names(self) -> List[str]:
        return [c if isinstance(c, str) else c.name for c in self.categories]

    @property
    def labels(self) -> List[str]:
        return [c if isinstance(c, str) else (c.label or c.name) for c in self.categories]

    @property
    def colors(self) -> List[str]:
        return [DEFAULT_COLOR if isinstance(c, str) else (c.color or DEFAULT_COLOR) for c in self.categories]

    @property
    def has_metadata(self) -> bool:
        return bool(self.categories) and not isinstance(self.categories[0], str)


def value_type_from_dict(raw: Union[Dict[str, Any], ValueTypeDesc, None]) -> ValueTypeDesc:
    if isinstance(raw, ValueTypeDesc):
        return raw
    if not raw:
        return ValueTypeDesc()
    kind = raw.get("type", VALUE_TYPE_STRING)
    if kind == VALUE_TYPE_CATEGORICAL:
        categories = tuple(
            c if isinstance(c, str) else Category(c["name"], c.get("label"), c.get("color"))
            for c in raw.get("categories", [])
        )
        return CategoricalValueTypeDesc(categories=categories)
    if kind in NUMERIC_VALUE_TYPES:
        value_range = raw.get("range")
        return NumberValueTypeDesc(
            type=kind,
            range=tuple(value_range) if value_range is not None else None,
            missing=raw.get("missing"),
        )
    return ValueTypeDesc(type=kind)


# -------------------------------------------------------------------------
# Dataset descriptions
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class DataDescription:
    """
    Immutable record identifying a dataset.

    Persisted by id only; loaders resolve id -> description + data on demand.
    """
    id: str
    name: str = ""
    fqname: str = ""
    type: str = ""
    description: str = ""
    creator: str = "anonymous"
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VectorDataDescription(DataDescription):
    type: str = "vector"
    value: ValueTypeDesc = field(default_factory=ValueTypeDesc)
    idtype: str = "_rows"
    size: int = 0


@dataclass(frozen=True)
class MatrixDataDescription(DataDescription):
    type: str = "matrix"
    value: ValueTypeDesc = field(default_factory=ValueTypeDesc)
    rowtype: str = "_rows"
    coltype: str = "_cols"
    size: Tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class GroupDesc:
    name: str
    color: str
    size: int


@dataclass(frozen=True)
class StratificationDataDescription(DataDescription):
    type: str = "stratification"
    idtype: str = "_rows"
    size: int = 0
    ngroups: int = 0
    groups: Tuple[GroupDesc, ...] = ()


def description_from_dict(raw: Dict[str, Any]) -> DataDescription:
    """
    Rebuild a description from its `to_dict()` form (or a hand-written
    config entry using the same keys).
    """
    common = {
        "id": str(raw["id"]),
        "name": raw.get("name", raw["id"]),
        "fqname": raw.get("fqname", raw.get("name", raw["id"])),
        "description": raw.get("description", ""),
        "creator": raw.get("creator", "anonymous"),
        "ts": raw.get("ts") or now_iso(),
    }
    kind = raw.get("type")
    if kind == "matrix":
        size = raw.get("size", (0, 0))
        return MatrixDataDescription(
            **common,
            value=value_type_from_dict(raw.get("value")),
            rowtype=raw.get("rowtype", "_rows"),
            coltype=raw.get("coltype", "_cols"),
            size=(int(size[0]), int(size[1])),
        )
    if kind == "vector":
        return VectorDataDescription(
            **common,
            value=value_type_from_dict(raw.get("value")),
            idtype=raw.get("idtype", "_rows"),
            size=int(raw.get("size", 0)),
        )
    if kind == "stratification":
        groups = tuple(GroupDesc(g["name"], g["color"], int(g["size"])) for g in raw.get("groups", []))
        return StratificationDataDescription(
            **common,
            idtype=raw.get("idtype", "_rows"),
            size=int(raw.get("size", 0)),
            ngroups=len(groups),
            groups=groups,
        )
    return DataDescription(**common, type=kind or "")


# -------------------------------------------------------------------------
# Value helpers
# -------------------------------------------------------------------------
def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, (float, np.floating)) and math.isnan(value))


def guess_value_type(values: Iterable[Any]) -> ValueTypeDesc:
    """
    Infer numeric vs categorical from every cell.

    When all non-empty cells parse as numbers the type is int or real. Any
    empty cell forces real so it can hold NaN. Otherwise the type is
    categorical over the sorted distinct values.
    """
    values = list(values)
    present = [v for v in values if not _is_missing(v)]
    if not present:
        return ValueTypeDesc(VALUE_TYPE_STRING)

    numbers = [_as_number(v) for v in present]
    if all(n is not None for n in numbers):
        is_int = (
            len(present) == len(values)
            and all(float(n).is_integer() for n in numbers)
            and not any(isinstance(v, (float, np.floating)) or (isinstance(v, str) and "." in v) for v in present)
        )
        return NumberValueTypeDesc(type=VALUE_TYPE_INT if is_int else VALUE_TYPE_REAL)

    categories = tuple(sorted({str(v) for v in present}))
    return CategoricalValueTypeDesc(categories=categories)


def _as_real(value: Any) -> float:
    n = _as_number(value)
    return np.nan if n is None else n


def coerce_values(values: Any, value: ValueTypeDesc) -> np.ndarray:
    """
    Convert raw cells to the array dtype matching the value type.

    Cells that do not parse become NaN. For an int type this falls back to a
    float array rather than failing.
    """
    arr = np.asarray(values, dtype=object)
    if value.type == VALUE_TYPE_REAL:
        return np.vectorize(_as_real, otypes=[float])(arr)
    if value.type == VALUE_TYPE_INT:
        reals = np.vectorize(_as_real, otypes=[float])(arr) if arr.size else np.zeros(arr.shape)
        if np.isnan(reals).any():
            return reals
        return reals.astype(np.int64)
    if value.type == VALUE_TYPE_CATEGORICAL:
        return np.vectorize(str, otypes=[object])(arr)
    return arr


def mask(values: Any, value: NumberValueTypeDesc) -> np.ndarray:
    """Replace the declared missing sentinel with NaN."""
    arr = np.asarray(values)
    if value.missing is None:
        return arr
    arr = arr.astype(float)
    arr[arr == value.missing] = np.nan
    return arr


def categorical_to_partitioning(
    data: Sequence[Any],
    categories: Sequence[Any],
    *,
    name: str = "Partitioning",
    labels: Optional[Sequence[str]] = None,
    colors: Sequence[str] = (DEFAULT_COLOR,),
    skip_empty_categories: bool = True,
) -> CompositeRange1D:
    """
    Partition the indices of `data` by category value.

    Groups follow the declared category order. Values that are not a
    declared category are left out of every group.
    """
    lookup = {c: i for i, c in enumerate(categories)}
    members: List[List[int]] = [[] for _ in categories]
    for j, value in enumerate(data):
        i = lookup.get(value)
        if i is not None:
            members[i].append(j)

    colors = list(colors) or [DEFAULT_COLOR]
    groups = []
    for i, category in enumerate(categories):
        if skip_empty_categories and not members[i]:
            continue
        groups.append(
            Range1DGroup(
                labels[i] if labels else str(category),
                colors[min(i, len(colors) - 1)],
                Range1D.from_list(members[i]),
            )
        )
    return composite(name, groups)
