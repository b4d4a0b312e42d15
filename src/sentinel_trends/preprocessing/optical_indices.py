"""
Optical Vegetation / Moisture Indices
Band-ratio indices for masked Sentinel-2 acquisitions

Indices:
- NDVI: (NIR - Red) / (NIR + Red)
- EVI:  2.5 * (nNIR - nRed) / (nNIR + 6 nRed - 7.5 nBlue + 1), nX = X / 10000
- NDMI: (NIR - SWIR1) / (NIR + SWIR1)
- NBR:  (NIR - SWIR2) / (NIR + SWIR2)
- NDWI: (Green - NIR) / (Green + NIR)

A zero denominator gives a masked (no-data) pixel.

Author: Dorjoy Acharjee
"""

import numpy as np
import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..core import Acquisition
from ..utils.helpers import DataValidator
from ..utils.masked_math import as_masked, normalized_difference, safe_divide

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Sentinel-2 band for each spectral role
DEFAULT_BAND_ROLES = {
    'nir': 'B8',
    'red': 'B4',
    'blue': 'B2',
    'green': 'B3',
    'swir1': 'B11',
    'swir2': 'B12',
}

# Sentinel-2 L2A surface reflectance is stored as integers scaled by 10000
REFLECTANCE_SCALE = 10000.0

# Indices bounded to [-1, 1] for non-negative reflectances
NORMALIZED_INDICES = ('NDVI', 'NDMI', 'NBR', 'NDWI')


def calculate_ndvi(nir, red) -> np.ma.MaskedArray:
    """Normalized Difference Vegetation Index"""
    return normalized_difference(nir, red)


def calculate_evi(nir, red, blue, scale: float = REFLECTANCE_SCALE) -> np.ma.MaskedArray:
    """
    Enhanced Vegetation Index

    Args:
        nir, red, blue: Integer-scaled reflectance bands
        scale: Factor converting stored values to reflectance

    Returns:
        EVI array
    """
    n_nir = as_masked(nir) / scale
    n_red = as_masked(red) / scale
    n_blue = as_masked(blue) / scale

    return 2.5 * safe_divide(n_nir - n_red, n_nir + 6 * n_red - 7.5 * n_blue + 1)


def calculate_ndmi(nir, swir1) -> np.ma.MaskedArray:
    """Normalized Difference Moisture Index"""
    return normalized_difference(nir, swir1)


def calculate_nbr(nir, swir2) -> np.ma.MaskedArray:
    """Normalized Burn Ratio"""
    return normalized_difference(nir, swir2)


def calculate_ndwi(green, nir) -> np.ma.MaskedArray:
    """Normalized Difference Water Index (McFeeters)"""
    return normalized_difference(green, nir)


class OpticalIndexEngine:
    """Adds the requested optical indices to masked acquisitions"""

    def __init__(
        self,
        indices: Sequence[str],
        band_roles: Optional[Dict[str, str]] = None,
        reflectance_scale: float = REFLECTANCE_SCALE,
        require_mask: bool = True
    ):
        """
        Args:
            indices: Index names to keep, e.g. ['NDVI', 'EVI']
            band_roles: Role -> band name overrides (nir, red, blue, green, swir1, swir2)
            reflectance_scale: Scaling used by EVI
            require_mask: Refuse acquisitions that have not been through the mask applier
        """
        self.band_roles = dict(DEFAULT_BAND_ROLES)
        self.band_roles.update(band_roles or {})
        self.reflectance_scale = float(reflectance_scale)
        self.require_mask = require_mask

        self._formulas: Dict[str, Callable[[Callable[[str], np.ma.MaskedArray]], np.ma.MaskedArray]] = {
            'NDVI': lambda band: calculate_ndvi(band('nir'), band('red')),
            'EVI': lambda band: calculate_evi(band('nir'), band('red'), band('blue'), self.reflectance_scale),
            'NDMI': lambda band: calculate_ndmi(band('nir'), band('swir1')),
            'NBR': lambda band: calculate_nbr(band('nir'), band('swir2')),
            'NDWI': lambda band: calculate_ndwi(band('green'), band('nir')),
        }

        unknown = [name for name in indices if name not in self._formulas]
        if unknown:
            raise ValueError(f"Unknown optical indices {unknown}, expected {list(self._formulas)}")
        self.indices: List[str] = list(dict.fromkeys(indices))

    def compute(self, acquisition: Acquisition) -> Acquisition:
        """
        Compute the requested indices for one acquisition

        Returns a new acquisition holding only the requested index bands,
        with the original mask and metadata.
        """
        if self.require_mask and acquisition.mask is None:
            raise ValueError(f"{acquisition.id} must be masked before computing optical indices")

        cache: Dict[str, np.ma.MaskedArray] = {}

        def band(role: str) -> np.ma.MaskedArray:
            if role not in cache:
                # read_band applies the attached mask before any arithmetic
                cache[role] = acquisition.read_band(self.band_roles[role])
            return cache[role]

        derived = {name: self._formulas[name](band) for name in self.indices}

        for name in NORMALIZED_INDICES:
            if name in derived:
                DataValidator.check_data_range(derived[name], -1.0, 1.0)

        return acquisition.add_bands(derived).select(self.indices)
