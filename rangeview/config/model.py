from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from rangeview.core.datatype import ValueTypeDesc, value_type_from_dict

KIND_MATRIX = "matrix"
KIND_VECTOR = "vector"


@dataclass
class DatasetConfig:
    """
    Parsed config entry for a single dataset.

    Example entry (datasets/pbmc.json):

        {
          "id": "pbmc-expr",
          "name": "PBMC expression",
          "kind": "matrix",
          "file": "pbmc.h5ad",
          "rowtype": "Cell",
          "coltype": "Gene",
          "backed": true
        }

    Vector entries name the `.obs` column (h5ad) or table column (csv/tsv)
    in "column" and may declare their value type in "value".
    """
    raw: Dict[str, Any]
    source_path: Path
    index: int

    @property
    def id(self) -> str:
        return str(self.raw.get("id", self.name))

    @property
    def name(self) -> str:
        return self.raw.get("name", f"Dataset {self.index}")

    @property
    def kind(self) -> str:
        return self.raw.get("kind", KIND_MATRIX)

    @property
    def path(self) -> Path:
        return Path(self.raw["file"])

    @property
    def description(self) -> str:
        return self.raw.get("description", "")

    @property
    def value(self) -> Optional[ValueTypeDesc]:
        raw = self.raw.get("value")
        return value_type_from_dict(raw) if raw else None

    @property
    def rowtype(self) -> str:
        return self.raw.get("rowtype", "Cell")

    @property
    def coltype(self) -> str:
        return self.raw.get("coltype", "Gene")

    @property
    def idtype(self) -> str:
        return self.raw.get("idtype", self.rowtype)

    @property
    def column(self) -> Optional[str]:
        return self.raw.get("column")

    @property
    def backed(self) -> bool:
        return bool(self.raw.get("backed", False))

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], source_path: Path, index: int) -> DatasetConfig:
        return cls(raw=raw, source_path=source_path, index=index)


@dataclass
class GlobalConfig:
    title: str
    datasets: List[DatasetConfig]
    data_root: Optional[Path] = None
