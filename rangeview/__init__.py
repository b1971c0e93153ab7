"""
Top-level package for rangeview: lazy, composable index views over large
vector and matrix datasets.

Most code should import from submodules such as:
    rangeview.core
    rangeview.services
    rangeview.config
"""

__all__: list[str] = []
