"""
Core domain layer: the range algebra, loaders, vector/matrix roots and
views, stratifications and aggregates
"""

from .exceptions import (
    AxisOutOfRangeError,
    MalformedRangeError,
    NotFoundError,
    OutOfBoundsError,
    RangeViewError,
)
from .range import CompositeRange1D, Range, Range1D, Range1DGroup, composite, join, parse
from .matrix import Matrix, MatrixView, TransposedMatrix, as_matrix, create_matrix
from .stratification import Stratification, StratificationGroup
from .vector import Vector, VectorView, create_vector, wrap_vector

__all__ = [
    "AxisOutOfRangeError",
    "MalformedRangeError",
    "NotFoundError",
    "OutOfBoundsError",
    "RangeViewError",
    "CompositeRange1D",
    "Range",
    "Range1D",
    "Range1DGroup",
    "composite",
    "join",
    "parse",
    "Matrix",
    "MatrixView",
    "TransposedMatrix",
    "as_matrix",
    "create_matrix",
    "Stratification",
    "StratificationGroup",
    "Vector",
    "VectorView",
    "create_vector",
    "wrap_vector",
]
