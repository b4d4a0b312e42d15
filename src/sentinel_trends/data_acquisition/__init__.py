"""Imagery providers and acquisition filtering"""

from .providers import ImageryProvider, InMemoryProvider, LocalRasterProvider
from .acquisition_filter import (
    AcquisitionFilter,
    PropertyFilter,
    cloud_cover_filter,
    orbit_filters
)

__all__ = [
    'ImageryProvider',
    'InMemoryProvider',
    'LocalRasterProvider',
    'AcquisitionFilter',
    'PropertyFilter',
    'cloud_cover_filter',
    'orbit_filters'
]
