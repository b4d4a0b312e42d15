"""
Per-pixel Linear Trend
OLS fit of one feature through a stack of co-registered acquisitions

Every pixel gets its own line value = slope * time + intercept, fitted over
the acquisitions in which that pixel is valid. The change raster is the
line evaluated at the end of the analysis period minus its value at the
start. Pixels with fewer than two valid samples, or with all samples at one
instant, are no-data.

Author: Research Team
License: MIT
"""

import numpy as np
import logging
import rasterio
from affine import Affine
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Union

from ..core import Acquisition, to_utc
from ..exceptions import InsufficientDataError
from ..utils.masked_math import NODATA_FILL
from .trend_estimator import SECONDS_PER_UNIT, to_time_axis

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MIN_SAMPLES = 2


@dataclass(frozen=True, eq=False)
class PixelTrend:
    """Per-pixel OLS result on the grid of the input stack"""

    feature: str
    slope: np.ma.MaskedArray
    intercept: np.ma.MaskedArray
    start_value: np.ma.MaskedArray
    end_value: np.ma.MaskedArray
    n_valid: np.ndarray
    time_unit: str
    start: datetime
    end: datetime
    transform: Optional[Affine] = None
    crs: Optional[str] = None

    @property
    def delta(self) -> np.ma.MaskedArray:
        """Predicted change between the start and end of the period"""
        return self.end_value - self.start_value


def fit_pixelwise(
    acquisitions: Sequence[Acquisition],
    feature: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    time_unit: str = 'days'
) -> PixelTrend:
    """
    Fit a line through every pixel of a feature stack

    Args:
        acquisitions: Feature-enhanced acquisitions on one shared grid
        feature: Band to fit
        start: Period start; defaults to the earliest acquisition
        end: Period end; defaults to the latest acquisition
        time_unit: 'seconds', 'days' or 'years' since the Unix epoch

    Returns:
        PixelTrend with masked slope, intercept and endpoint rasters

    Raises:
        InsufficientDataError: fewer than 2 acquisitions
        ValueError: acquisitions are not on the same grid
    """
    if time_unit not in SECONDS_PER_UNIT:
        raise ValueError(f"Unknown time unit '{time_unit}', expected one of {list(SECONDS_PER_UNIT)}")

    stack_acqs = sorted(acquisitions, key=lambda a: (a.timestamp, a.id))
    if len(stack_acqs) < MIN_SAMPLES:
        raise InsufficientDataError(feature, len(stack_acqs), "per-pixel fit needs a stack")

    shapes = {a.shape for a in stack_acqs}
    if len(shapes) > 1:
        raise ValueError(f"Cannot stack {feature} rasters of different shapes: {sorted(shapes)}")

    stack = np.ma.stack([a.read_band(feature) for a in stack_acqs])
    x = to_time_axis([a.timestamp for a in stack_acqs], time_unit)

    valid = ~np.ma.getmaskarray(stack)
    weights = valid.astype(np.float64)
    n_valid = valid.sum(axis=0)
    safe_n = np.maximum(n_valid, 1)

    # Time centred on each pixel's own valid samples
    xs = np.broadcast_to(x[:, None, None], stack.shape)
    x_mean = (weights * xs).sum(axis=0) / safe_n
    y = stack.filled(0.0)
    y_mean = (weights * y).sum(axis=0) / safe_n

    dx = (xs - x_mean) * weights
    sxx = (dx ** 2).sum(axis=0)
    sxy = (dx * (y - y_mean)).sum(axis=0)

    # A pixel needs samples at two distinct instants
    x_first = np.where(valid, xs, np.inf).min(axis=0)
    x_last = np.where(valid, xs, -np.inf).max(axis=0)
    undefined = (n_valid < MIN_SAMPLES) | ~(x_last > x_first)
    slope_data = sxy / np.where(undefined, 1.0, sxx)
    intercept_data = y_mean - slope_data * x_mean

    start = to_utc(start) if start is not None else stack_acqs[0].timestamp
    end = to_utc(end) if end is not None else stack_acqs[-1].timestamp
    t_start, t_end = to_time_axis([start, end], time_unit)

    def masked(values: np.ndarray) -> np.ma.MaskedArray:
        return np.ma.array(np.where(undefined, 0.0, values), mask=undefined, fill_value=NODATA_FILL)

    trend = PixelTrend(
        feature=feature,
        slope=masked(slope_data),
        intercept=masked(intercept_data),
        start_value=masked(slope_data * t_start + intercept_data),
        end_value=masked(slope_data * t_end + intercept_data),
        n_valid=n_valid,
        time_unit=time_unit,
        start=start,
        end=end,
        transform=stack_acqs[0].transform,
        crs=stack_acqs[0].crs,
    )

    logger.info(f"{feature} per-pixel trend: {int((~undefined).sum())}/{undefined.size} pixels fitted "
                f"from {len(stack_acqs)} acquisitions")
    return trend


def save_change_raster(trend: PixelTrend, path: Union[str, Path]) -> str:
    """
    Write delta, slope and intercept as a 3-band GeoTIFF

    No-data pixels are written as NODATA_FILL.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    layers = [('delta', trend.delta), ('slope', trend.slope), ('intercept', trend.intercept)]
    height, width = trend.slope.shape

    profile = {
        'driver': 'GTiff',
        'height': height,
        'width': width,
        'count': len(layers),
        'dtype': 'float64',
        'nodata': NODATA_FILL,
    }
    if trend.transform is not None:
        profile['transform'] = trend.transform
    if trend.crs is not None:
        profile['crs'] = trend.crs

    with rasterio.open(path, 'w', **profile) as dst:
        for index, (name, layer) in enumerate(layers, start=1):
            dst.write(np.ma.filled(layer, NODATA_FILL).astype('float64'), index)
            dst.set_band_description(index, name)

    logger.info(f"Change raster saved: {path}")
    return str(path)
