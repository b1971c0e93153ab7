"""
Config package for rangeview.

Responsible for:
- config models (GlobalConfig, DatasetConfig)
- config I/O helpers (load_datasets / load_global_config / from_config)
"""

from .model import GlobalConfig, DatasetConfig
from .loader import load_global_config, load_datasets, from_config
