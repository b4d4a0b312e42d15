"""
Spatial reduction of an acquisition to one scalar per band

A pixel contributes only if it lies inside the region, is valid in the
acquisition mask, and is not no-data. A band with no contributing pixel
reduces to NODATA.
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np
from affine import Affine
from rasterio.features import geometry_mask

from ..core import NODATA, Acquisition, ReducedAcquisition, Region

logger = logging.getLogger(__name__)

REDUCERS: Dict[str, Callable[[np.ma.MaskedArray], Any]] = {
    'mean': np.ma.mean,
    'median': np.ma.median,
    'min': np.ma.min,
    'max': np.ma.max,
    'std': np.ma.std,
}


def coarsen(band: np.ma.MaskedArray, factor: int) -> np.ma.MaskedArray:
    """
    Block-average a masked raster by an integer factor

    Each output pixel is the mean of the valid pixels in its block; a block
    with no valid pixel is masked. Edge rows/columns that do not fill a whole
    block are dropped.
    """
    height, width = band.shape
    h, w = (height // factor) * factor, (width // factor) * factor
    blocks = band[:h, :w].reshape(h // factor, factor, w // factor, factor)

    valid = ~np.ma.getmaskarray(blocks)
    sums = np.where(valid, np.ma.getdata(blocks), 0.0).sum(axis=(1, 3))
    counts = valid.sum(axis=(1, 3))

    means = sums / np.maximum(counts, 1)
    return np.ma.array(means, mask=counts == 0)


class SpatialReducer:
    """Collapse acquisition bands over a region with a named aggregation"""

    def __init__(self, reducer: str = 'mean', scale: Optional[float] = None):
        """
        Args:
            reducer: One of REDUCERS
            scale: Ground sample distance for the reduction, in CRS units;
                   None reduces at native resolution
        """
        if reducer not in REDUCERS:
            raise ValueError(f"Unknown reducer '{reducer}', expected one of {list(REDUCERS)}")
        if scale is not None and scale <= 0:
            raise ValueError("scale must be positive")
        self.reducer = reducer
        self.scale = scale

    def _scale_factor(self, acquisition: Acquisition) -> int:
        if self.scale is None or acquisition.pixel_size is None:
            return 1
        factor = int(round(self.scale / acquisition.pixel_size))
        shape = acquisition.shape
        if factor > 1 and shape is not None and (shape[0] < factor or shape[1] < factor):
            logger.warning(
                f"{acquisition.id}: raster {shape} smaller than one {self.scale}-unit cell, "
                "reducing at native resolution"
            )
            return 1
        return max(factor, 1)

    @staticmethod
    def region_mask(region: Region, shape: Tuple[int, int], transform: Affine) -> np.ndarray:
        """Boolean grid, True where the pixel centre falls inside the region"""
        return geometry_mask(
            [region.geometry],
            out_shape=shape,
            transform=transform,
            all_touched=False,
            invert=True
        )

    def reduce(
        self,
        acquisition: Acquisition,
        region: Optional[Region] = None,
        bands: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """
        Reduce bands of one acquisition over a region

        Args:
            acquisition: Feature-enhanced acquisition
            region: Area to reduce over; None uses the whole raster
            bands: Bands to reduce; None reduces all

        Returns:
            band -> float, or NODATA when no valid pixel remains
        """
        bands = list(bands) if bands is not None else acquisition.band_names
        if region is not None and acquisition.transform is None:
            raise ValueError(f"{acquisition.id} has no georeferencing; cannot restrict to a region")

        factor = self._scale_factor(acquisition)
        transform = acquisition.transform
        if factor > 1:
            transform = transform * Affine.scale(factor)

        inside = None
        reduce_fn = REDUCERS[self.reducer]
        values: Dict[str, Any] = {}

        for name in bands:
            band = acquisition.read_band(name)
            if factor > 1:
                band = coarsen(band, factor)

            if region is not None:
                if inside is None:
                    inside = self.region_mask(region, band.shape, transform)
                band = np.ma.array(band, mask=np.ma.getmaskarray(band) | ~inside)

            if band.count() == 0:
                values[name] = NODATA
                continue

            result = reduce_fn(band)
            if result is np.ma.masked or not np.isfinite(float(result)):
                values[name] = NODATA
            else:
                values[name] = float(result)

        return values

    def reduce_acquisition(
        self,
        acquisition: Acquisition,
        region: Optional[Region] = None,
        bands: Optional[Sequence[str]] = None
    ) -> ReducedAcquisition:
        """reduce(), packaged with the acquisition id and timestamp"""
        return ReducedAcquisition(
            acquisition_id=acquisition.id,
            timestamp=acquisition.timestamp,
            values=self.reduce(acquisition, region, bands)
        )
