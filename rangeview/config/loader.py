from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import anndata as ad
import pandas as pd

from rangeview.config.model import KIND_MATRIX, KIND_VECTOR, DatasetConfig, GlobalConfig
from rangeview.core.datatype import VectorDataDescription, coerce_values, guess_value_type
from rangeview.core.exceptions import DatasetConfigError
from rangeview.core.idtype import IDTypeRegistry
from rangeview.core.matrix import AsMatrixOptions, Matrix, as_matrix, from_anndata
from rangeview.core.vector import Vector, vector_from_obs, wrap_vector
from rangeview.services.description_store import DescriptionStore

logger = logging.getLogger(__name__)

Root = Union[Matrix, Vector]

TABLE_SEPARATORS = {".csv": ",", ".tsv": "\t"}


def load_global_config(root: Path) -> GlobalConfig:
    """
    Load configuration from a directory using the multi-file layout.

    Expected structure:

        root/
            global.json
            datasets/
                expression.json
                clusters.json
                ...

    Each file in 'datasets/' is parsed into a DatasetConfig, in file name
    order. A relative "data_root" in global.json is resolved against `root`.

    :raises FileNotFoundError: if global.json does not exist.
    """
    root = Path(root)
    logger.info("Loading global config", extra={"config_root": str(root)})

    global_path = root / "global.json"
    if not global_path.is_file():
        raise FileNotFoundError(f"File not found at {global_path}")

    with global_path.open() as f:
        raw_global = json.load(f)

    datasets_dir = root / "datasets"
    datasets: List[DatasetConfig] = []
    if datasets_dir.is_dir():
        for idx, config_file in enumerate(sorted(datasets_dir.glob("*.json"))):
            with config_file.open() as f:
                raw = json.load(f)
            datasets.append(DatasetConfig.from_raw(raw, source_path=config_file, index=idx))

    data_root_raw = raw_global.get("data_root")
    if data_root_raw is None:
        data_root = None
    else:
        data_root_path = Path(data_root_raw)
        data_root = data_root_path if data_root_path.is_absolute() else (root / data_root_path).resolve()

    return GlobalConfig(
        title=raw_global.get("title", "rangeview"),
        datasets=datasets,
        data_root=data_root,
    )


def _resolve_path(cfg: DatasetConfig, data_root: Optional[Path]) -> Path:
    path = cfg.path
    if path.is_absolute():
        return path
    # RANGEVIEW_DATA_ROOT wins over the data_root from global.json
    env_root = os.environ.get("RANGEVIEW_DATA_ROOT")
    if env_root:
        return Path(env_root) / path
    if data_root is not None:
        return data_root / path
    return path


def _ensure_unique_names(adata: ad.AnnData, cfg: DatasetConfig, path: Path) -> ad.AnnData:
    if not adata.obs_names.is_unique:
        logger.warning(
            "Observation names are not unique; calling .obs_names_make_unique()",
            extra={"dataset": cfg.id, "path": str(path)},
        )
        adata.obs_names_make_unique()
    if not adata.var_names.is_unique:
        logger.warning(
            "Variable names are not unique; calling .var_names_make_unique()",
            extra={"dataset": cfg.id, "path": str(path)},
        )
        adata.var_names_make_unique()
    return adata


def _require_column(cfg: DatasetConfig, available, path: Path) -> str:
    column = cfg.column
    if column is None:
        raise DatasetConfigError(f"Dataset '{cfg.name}': vector entries need a 'column'")
    if column not in available:
        msg = f"Dataset '{cfg.name}': column '{column}' not found in {path.name}"
        logger.error(msg, extra={"dataset": cfg.id, "path": str(path), "column": column})
        raise DatasetConfigError(msg)
    return column


def _from_h5ad(cfg: DatasetConfig, path: Path, idtypes: IDTypeRegistry) -> Root:
    adata = ad.read_h5ad(path, backed="r" if cfg.backed else None)
    if not cfg.backed:
        adata = _ensure_unique_names(adata, cfg, path)

    if cfg.kind == KIND_MATRIX:
        return from_anndata(
            adata, id=cfg.id, name=cfg.name, rowtype=cfg.rowtype, coltype=cfg.coltype, idtypes=idtypes
        )
    column = _require_column(cfg, adata.obs.columns, path)
    return vector_from_obs(
        adata, column, id=cfg.id, name=cfg.name, idtype=cfg.idtype, value=cfg.value, idtypes=idtypes
    )


def _from_table(cfg: DatasetConfig, path: Path, idtypes: IDTypeRegistry) -> Root:
    df = pd.read_csv(path, sep=TABLE_SEPARATORS[path.suffix.lower()], index_col=0)
    df.index = df.index.astype(str)

    if cfg.kind == KIND_MATRIX:
        options = AsMatrixOptions(
            id=cfg.id, name=cfg.name, rowtype=cfg.rowtype, coltype=cfg.coltype, idtypes=idtypes
        )
        return as_matrix(df, options=options)

    column = _require_column(cfg, df.columns, path)
    raw_values = df[column].tolist()
    value = cfg.value or guess_value_type(raw_values)
    desc = VectorDataDescription(
        id=cfg.id,
        name=cfg.name,
        fqname=cfg.name,
        description=cfg.description,
        value=value,
        idtype=cfg.idtype,
        size=len(raw_values),
    )
    return wrap_vector(desc, list(df.index), None, coerce_values(raw_values, value), idtypes)


def from_config(
    cfg: DatasetConfig,
    idtypes: Optional[IDTypeRegistry] = None,
    data_root: Optional[Path] = None,
) -> Root:
    """
    Materialise a root matrix or vector from a DatasetConfig.

    .h5ad files are read with anndata (optionally backed), .csv/.tsv files
    with pandas.

    :raises DatasetConfigError: missing file, unknown kind or suffix, bad column
    """
    idtypes = idtypes or IDTypeRegistry()
    if cfg.kind not in (KIND_MATRIX, KIND_VECTOR):
        raise DatasetConfigError(f"Dataset '{cfg.name}': unknown kind '{cfg.kind}'")
    if "file" not in cfg.raw:
        raise DatasetConfigError(f"Dataset '{cfg.name}': missing 'file'")

    path = _resolve_path(cfg, data_root)
    if not path.is_file():
        raise DatasetConfigError(f"Data file not found at {path}.")

    suffix = path.suffix.lower()
    if suffix == ".h5ad":
        root = _from_h5ad(cfg, path, idtypes)
    elif suffix in TABLE_SEPARATORS:
        root = _from_table(cfg, path, idtypes)
    else:
        raise DatasetConfigError(f"Dataset '{cfg.name}': unsupported file type '{suffix}'")

    logger.info(
        "Dataset loaded",
        extra={"dataset": cfg.id, "kind": cfg.kind, "path": str(path), "shape": root.dim},
    )
    return root


def load_datasets(
    path: Path,
    store: Optional[DescriptionStore] = None,
    idtypes: Optional[IDTypeRegistry] = None,
) -> Tuple[GlobalConfig, List[Root]]:
    """
    Load the global configuration and materialise every configured dataset.

    All roots share one identity-type registry, so e.g. "Cell" resolves to
    the same handle across datasets. Invalid entries are logged and skipped.
    When a description store is given, every loaded description is put there.

    :raises RuntimeError: if no valid datasets could be loaded.
    """
    global_config = load_global_config(path)
    idtypes = idtypes or IDTypeRegistry()

    roots: List[Root] = []
    failed = 0
    for ds_cfg in global_config.datasets:
        try:
            root = from_config(ds_cfg, idtypes=idtypes, data_root=global_config.data_root)
        except DatasetConfigError as e:
            failed += 1
            logger.error(
                "Skipping dataset due to config error",
                extra={"dataset": ds_cfg.name, "path": str(ds_cfg.raw.get("file", "")), "error": str(e)},
            )
            continue
        roots.append(root)
        if store is not None:
            store.put(root.desc)

    logger.info(
        "Datasets loaded from config root",
        extra={
            "config_root": str(path),
            "n_datasets": len(roots),
            "n_failed": failed,
            "dataset_ids": [r.desc.id for r in roots],
        },
    )

    if not roots:
        raise RuntimeError(f"No valid datasets could be loaded from config root: {path}")

    return global_config, roots
