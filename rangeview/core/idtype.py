from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple, Union

from .range import Range1D

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IDType:
    """
    Tag classifying what a row/column index semantically represents.

    - id: canonical tag, e.g. "Cell" or "Gene"
    - name: human readable singular name
    - names: human readable plural name
    - internal: internal types are not shown to users
    """
    id: str
    name: str = ""
    names: str = ""
    internal: bool = False

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class ProductIDType:
    """Declared product of several identity types, e.g. Cell x Gene."""
    elems: Tuple[IDType, ...]

    @property
    def id(self) -> str:
        return "X".join(e.id for e in self.elems)

    def __str__(self) -> str:
        return self.id


class IDTypeRegistry:
    """
    Resolver from identity-type tags to canonical handles.

    A registry is passed to the roots that need it instead of living in a
    module global, so separate workspaces never share identity types by
    accident. Resolution is idempotent: the same tag always yields the same
    handle instance.
    """

    def __init__(self) -> None:
        self._types: Dict[str, IDType] = {}
        self._products: Dict[Tuple[str, ...], ProductIDType] = {}

    def resolve(self, tag: Union[str, IDType]) -> IDType:
        if isinstance(tag, IDType):
            return self._types.setdefault(tag.id, tag)
        idtype = self._types.get(tag)
        if idtype is None:
            logger.debug("Registering identity type %s", tag)
            idtype = IDType(id=tag, name=tag, names=f"{tag}s")
            self._types[tag] = idtype
        return idtype

    def resolve_product(self, *idtypes: Union[str, IDType]) -> ProductIDType:
        elems = tuple(self.resolve(t) for t in idtypes)
        key = tuple(e.id for e in elems)
        product = self._products.get(key)
        if product is None:
            product = ProductIDType(elems)
            self._products[key] = product
        return product

    def list(self) -> List[IDType]:
        return list(self._types.values())


@dataclass
class LocalIDAssigner:
    """
    Assigns stable integer ids to names in first-seen order.

    Used by in-memory tables that have names but no server-side identifiers.
    """
    _ids: Dict[str, int] = field(default_factory=dict)

    def __call__(self, names: Iterable[str]) -> Range1D:
        result = []
        for name in names:
            key = str(name)
            if key not in self._ids:
                self._ids[key] = len(self._ids)
            result.append(self._ids[key])
        return Range1D.from_list(result)

    def __len__(self) -> int:
        return len(self._ids)
