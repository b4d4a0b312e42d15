"""Spatial reduction and time-series assembly"""

from .spatial_reducer import SpatialReducer, REDUCERS, coarsen
from .timeseries import Observation, assemble_series, assemble_all, series_to_frame

__all__ = [
    'SpatialReducer',
    'REDUCERS',
    'coarsen',
    'Observation',
    'assemble_series',
    'assemble_all',
    'series_to_frame'
]
