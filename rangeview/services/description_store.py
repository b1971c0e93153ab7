from __future__ import annotations

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

from rangeview.core.datatype import DataDescription, description_from_dict
from rangeview.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class DescriptionStore(ABC):
    """
    Abstract id -> dataset description store (in memory, local files, ...).

    Passed explicitly to whatever needs to resolve persisted dataset ids.
    """

    @abstractmethod
    def get(self, id: str) -> DataDescription:
        """Raises NotFoundError for unknown ids."""
        pass

    @abstractmethod
    def list(self) -> List[DataDescription]:
        pass

    @abstractmethod
    def put(self, desc: DataDescription) -> None:
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Remove a description; returns False if it was not stored."""
        pass

    def edit(self, id: str, /, **changes: Any) -> DataDescription:
        """Store a copy of the description with some fields replaced."""
        desc = dataclasses.replace(self.get(id), **changes)
        if desc.id != id:
            raise ValueError(f"Cannot change the id of description '{id}'")
        self.put(desc)
        return desc

    def __contains__(self, id: object) -> bool:
        try:
            self.get(str(id))
        except NotFoundError:
            return False
        return True


class InMemoryDescriptionStore(DescriptionStore):
    """Dictionary-backed store, insertion ordered."""

    def __init__(self) -> None:
        self._descs: Dict[str, DataDescription] = {}

    def get(self, id: str) -> DataDescription:
        try:
            return self._descs[id]
        except KeyError:
            raise NotFoundError(f"Unknown dataset id '{id}'") from None

    def list(self) -> List[DataDescription]:
        return list(self._descs.values())

    def put(self, desc: DataDescription) -> None:
        self._descs[desc.id] = desc

    def delete(self, id: str) -> bool:
        return self._descs.pop(id, None) is not None


class LocalFileSystemDescriptionStore(DescriptionStore):
    """
    Store keeping one JSON file per description below `root`.

    Layout:
        <prefix>_descriptions.json      ordered list of known ids
        <prefix>_description.<id>.json  the description itself
    """

    def __init__(self, root: Path, prefix: str = "rangeview"):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

    def _resolve(self, path: str) -> Path:
        # Prevent path traversal attacks
        full_path = (self.root / path).resolve()
        if full_path.parent != self.root:
            raise ValueError(f"Access denied: {path}")
        return full_path

    def _index_path(self) -> Path:
        return self._resolve(f"{self.prefix}_descriptions.json")

    def _desc_path(self, id: str) -> Path:
        return self._resolve(f"{self.prefix}_description.{id}.json")

    def _read_index(self) -> List[str]:
        p = self._index_path()
        if not p.exists():
            return []
        return json.loads(p.read_text(encoding="utf-8"))

    def _write_index(self, ids: List[str]) -> None:
        self._index_path().write_text(json.dumps(ids, indent=2), encoding="utf-8")

    def get(self, id: str) -> DataDescription:
        p = self._desc_path(id)
        if not p.exists():
            raise NotFoundError(f"Unknown dataset id '{id}'")
        return description_from_dict(json.loads(p.read_text(encoding="utf-8")))

    def list(self) -> List[DataDescription]:
        descs = []
        for id in self._read_index():
            try:
                descs.append(self.get(id))
            except NotFoundError:
                logger.warning("Index entry without description file", extra={"dataset": id})
        return descs

    def put(self, desc: DataDescription) -> None:
        p = self._desc_path(desc.id)
        p.write_text(json.dumps(desc.to_dict(), indent=2), encoding="utf-8")
        ids = self._read_index()
        if desc.id not in ids:
            ids.append(desc.id)
            self._write_index(ids)
        logger.debug("Stored description", extra={"dataset": desc.id, "path": str(p)})

    def delete(self, id: str) -> bool:
        ids = self._read_index()
        p = self._desc_path(id)
        existed = p.exists() or id in ids
        if p.exists():
            p.unlink()
        if id in ids:
            ids.remove(id)
            self._write_index(ids)
        return existed
