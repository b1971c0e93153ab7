class RangeViewError(Exception):
    """Base exception for all rangeview errors"""
    pass

class MalformedRangeError(RangeViewError, ValueError):
    """Range text or shorthand that cannot be parsed into a range"""
    pass

class AxisOutOfRangeError(RangeViewError, IndexError):
    """Axis projection beyond the dimensionality of a range"""
    pass

class OutOfBoundsError(RangeViewError, IndexError):
    """Index beyond the declared extent of a dataset or range"""
    pass

class NotFoundError(RangeViewError, LookupError):
    """
    A physical index not produced by a range, or a dataset id
    unknown to a description store
    """
    pass

class UnboundedRangeError(RangeViewError, ValueError):
    """Open-ended selector (all, '5:') resolved without an extent"""
    pass

class DatasetConfigError(RangeViewError, ValueError):
    """Dataset config entry is structurally invalid for loading"""
    pass

class RestoreError(RangeViewError, ValueError):
    """Persisted form that does not describe a restorable object"""
    pass
