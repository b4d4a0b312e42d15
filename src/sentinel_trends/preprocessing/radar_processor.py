"""
Sentinel-1 Radar Preprocessor
Dual-polarisation backscatter features for one acquisition

Handles:
- Optional Lee speckle filtering (linear scale)
- Polarimetric indices from linear power (RVI, RFDI)
- Linear power to dB conversion for VV and VH

RVI and RFDI are only meaningful in linear units, so they are computed
before the dB conversion.

Author: Dorjoy Acharjee
"""

import numpy as np
import logging
from typing import Dict, List, Optional, Sequence
from scipy.ndimage import uniform_filter

from ..core import Acquisition
from ..utils.masked_math import as_masked, power_to_db, safe_divide

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RADAR_FEATURES = ('angle', 'VV', 'VH', 'RVI', 'RFDI')


def calculate_rvi(vv, vh) -> np.ma.MaskedArray:
    """Radar Vegetation Index: 4 VH / (VV + VH), linear power"""
    vv = as_masked(vv)
    vh = as_masked(vh)
    return safe_divide(4.0 * vh, vv + vh)


def calculate_rfdi(vv, vh) -> np.ma.MaskedArray:
    """Radar Forest Degradation Index: (VV - VH) / (VV + VH), linear power"""
    vv = as_masked(vv)
    vh = as_masked(vh)
    return safe_divide(vv - vh, vv + vh)


def lee_filter(img, window_size: int = 3) -> np.ma.MaskedArray:
    """
    Apply Lee speckle filter to SAR imagery

    Masked pixels do not contribute to the local statistics and stay masked.

    Args:
        img: Input SAR image (linear scale)
        window_size: Filter window size (must be odd)

    Returns:
        Filtered image
    """
    if window_size < 1 or window_size % 2 == 0:
        raise ValueError(f"window_size must be a positive odd integer, got {window_size}")

    img = as_masked(img)
    valid = ~np.ma.getmaskarray(img)
    if not valid.any():
        return img

    data = img.filled(0.0)
    weight = uniform_filter(valid.astype(np.float64), size=window_size)
    safe_weight = np.where(weight > 0, weight, 1.0)

    img_mean = uniform_filter(data, size=window_size) / safe_weight
    img_sqr_mean = uniform_filter(data ** 2, size=window_size) / safe_weight

    # Variance
    img_variance = img_sqr_mean - img_mean ** 2
    img_variance = np.maximum(img_variance, 0)  # Ensure non-negative

    # Overall variance
    overall_variance = float(np.var(data[valid]))

    # Lee filter weights
    img_weights = img_variance / (img_variance + overall_variance + 1e-10)

    # Apply filter
    img_filtered = img_mean + img_weights * (data - img_mean)

    return np.ma.array(img_filtered, mask=~valid)


class RadarProcessor:
    """Adds dB backscatter and polarimetric indices to Sentinel-1 acquisitions"""

    def __init__(
        self,
        features: Sequence[str] = RADAR_FEATURES,
        speckle_filter_window: Optional[int] = None,
        strict_db: bool = False,
        vv_band: str = 'VV',
        vh_band: str = 'VH',
        angle_band: str = 'angle'
    ):
        """
        Args:
            features: Subset of RADAR_FEATURES to keep
            speckle_filter_window: Lee filter window; None disables filtering
            strict_db: Raise DomainError on non-positive power instead of masking
            vv_band, vh_band, angle_band: Input band names (linear power, degrees)
        """
        unknown = [f for f in features if f not in RADAR_FEATURES]
        if unknown:
            raise ValueError(f"Unknown radar features {unknown}, expected {list(RADAR_FEATURES)}")
        if speckle_filter_window is not None and (speckle_filter_window < 1 or speckle_filter_window % 2 == 0):
            raise ValueError("speckle_filter_window must be a positive odd integer")

        self.features: List[str] = list(dict.fromkeys(features))
        self.speckle_filter_window = speckle_filter_window
        self.strict_db = strict_db
        self.vv_band = vv_band
        self.vh_band = vh_band
        self.angle_band = angle_band

    def compute(self, acquisition: Acquisition) -> Acquisition:
        """
        Process one acquisition

        Returns a new acquisition carrying the requested subset of
        angle (unchanged), VV and VH in dB, RVI and RFDI.
        """
        vv = acquisition.read_band(self.vv_band)
        vh = acquisition.read_band(self.vh_band)

        if self.speckle_filter_window:
            vv = lee_filter(vv, self.speckle_filter_window)
            vh = lee_filter(vh, self.speckle_filter_window)

        # Indices from linear power first, then convert to dB
        derived: Dict[str, np.ma.MaskedArray] = {}
        if 'RVI' in self.features:
            derived['RVI'] = calculate_rvi(vv, vh)
        if 'RFDI' in self.features:
            derived['RFDI'] = calculate_rfdi(vv, vh)
        if 'VV' in self.features:
            derived['VV'] = power_to_db(vv, strict=self.strict_db)
        if 'VH' in self.features:
            derived['VH'] = power_to_db(vh, strict=self.strict_db)

        base = acquisition.select([])
        if 'angle' in self.features:
            angle = acquisition.select([self.angle_band]).bands[self.angle_band]
            base = base.add_bands({'angle': angle})

        enhanced = base.add_bands(derived)
        return enhanced.select(self.features)
