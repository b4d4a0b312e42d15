"""Sentinel-1/2 time-series feature extraction and linear trend analysis"""

from .core import (
    NODATA,
    is_nodata,
    Acquisition,
    Collection,
    Region,
    Mask,
    FeatureSeries,
    SeriesPoint,
    TrendFit,
    ReducedAcquisition
)
from .exceptions import (
    SentinelTrendsError,
    ConfigError,
    EmptyCollectionError,
    AcquisitionError,
    MaskingFailure,
    MissingBandError,
    DomainError,
    InsufficientDataError
)

__version__ = "1.0.0"

__all__ = [
    'NODATA',
    'is_nodata',
    'Acquisition',
    'Collection',
    'Region',
    'Mask',
    'FeatureSeries',
    'SeriesPoint',
    'TrendFit',
    'ReducedAcquisition',
    'SentinelTrendsError',
    'ConfigError',
    'EmptyCollectionError',
    'AcquisitionError',
    'MaskingFailure',
    'MissingBandError',
    'DomainError',
    'InsufficientDataError'
]
