"""Trend models"""

from .trend_estimator import TrendEstimator, to_time_axis, SECONDS_PER_UNIT
from .pixel_trend import PixelTrend, fit_pixelwise, save_change_raster

__all__ = [
    'TrendEstimator',
    'to_time_axis',
    'SECONDS_PER_UNIT',
    'PixelTrend',
    'fit_pixelwise',
    'save_change_raster'
]
