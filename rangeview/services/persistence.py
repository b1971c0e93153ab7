from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Union

from rangeview.core.datatype import DataDescription, MatrixDataDescription, VectorDataDescription
from rangeview.core.exceptions import RestoreError
from rangeview.core.idtype import IDTypeRegistry
from rangeview.core.loader import MatrixLoader, VectorLoader
from rangeview.core.matrix import Matrix
from rangeview.core.range import parse
from rangeview.core.vector import Vector

from .description_store import DescriptionStore

logger = logging.getLogger(__name__)

LoaderFactory = Callable[[DataDescription], Union[VectorLoader, MatrixLoader]]


class Restorer:
    """
    Rebuilds roots, views, transposes, column slices and stratifications
    from their persisted (JSON-compatible) form.

    Roots are created once per dataset id and shared by everything this
    restorer rebuilds, so restored views of the same dataset share a root.
    """

    def __init__(
        self,
        store: DescriptionStore,
        loader_factory: LoaderFactory,
        idtypes: Optional[IDTypeRegistry] = None,
    ) -> None:
        self.store = store
        self.loader_factory = loader_factory
        self.idtypes = idtypes or IDTypeRegistry()
        self._roots: Dict[str, Any] = {}

    def root(self, id: str) -> Union[Vector, Matrix]:
        root = self._roots.get(id)
        if root is not None:
            return root

        desc = self.store.get(id)
        loader = self.loader_factory(desc)
        if isinstance(desc, MatrixDataDescription):
            root = Matrix(desc, loader, self.idtypes)
        elif isinstance(desc, VectorDataDescription):
            root = Vector(desc, loader, self.idtypes)
        else:
            raise RestoreError(f"Dataset '{id}' of type '{desc.type}' cannot be restored")
        logger.debug("Restored root", extra={"dataset": id, "type": desc.type})
        self._roots[id] = root
        return root

    async def restore(self, persisted: Any) -> Any:
        if isinstance(persisted, str):
            return self.root(persisted)
        if not isinstance(persisted, dict) or "root" not in persisted:
            raise RestoreError(f"Cannot restore from {persisted!r}")

        base = await self.restore(persisted["root"])
        if persisted.get("transposed"):
            return base.t
        if "col" in persisted:
            return base.slice(int(persisted["col"]))
        if persisted.get("asstrat"):
            stratification = await base.as_stratification()
            if "group" in persisted:
                return stratification.group(int(persisted["group"]))
            return stratification
        if persisted.get("range") is not None:
            return base.view(parse(persisted["range"]))
        return base


async def restore(
    persisted: Any,
    store: DescriptionStore,
    loader_factory: LoaderFactory,
    idtypes: Optional[IDTypeRegistry] = None,
) -> Any:
    """
    Rebuild a persisted object.

    Accepted forms:
        "<dataset id>"                          root vector or matrix
        {"root": ..., "range": "<range>"}       view
        {"root": ..., "transposed": true}       transposed matrix
        {"root": ..., "col": j}                 column slice of a matrix
        {"root": ..., "asstrat": true}          stratification of a vector
        {"root": ..., "asstrat": true, "group": i}
    """
    return await Restorer(store, loader_factory, idtypes).restore(persisted)
