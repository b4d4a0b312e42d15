"""Utility functions"""

from .helpers import (
    DataValidator,
    CoordinateTransforms,
    FileHandlers,
    ProgressTracker
)
from .masked_math import (
    NODATA_FILL,
    as_masked,
    safe_divide,
    normalized_difference,
    power_to_db,
    db_to_power
)

__all__ = [
    'DataValidator',
    'CoordinateTransforms',
    'FileHandlers',
    'ProgressTracker',
    'NODATA_FILL',
    'as_masked',
    'safe_divide',
    'normalized_difference',
    'power_to_db',
    'db_to_power'
]
