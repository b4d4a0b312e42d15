"""
Shared fixtures: synthetic georeferenced acquisitions
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import pytest
from affine import Affine

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from sentinel_trends.core import Acquisition, Mask, Region

PIXEL_SIZE = 10.0
ORIGIN_X = 500000.0
ORIGIN_Y = 4000000.0


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def transform():
    """10 m north-up grid"""
    return Affine(PIXEL_SIZE, 0.0, ORIGIN_X, 0.0, -PIXEL_SIZE, ORIGIN_Y)


@pytest.fixture
def make_acquisition(transform):
    """Factory for acquisitions on the shared grid, bands given as constants or arrays"""

    def _make(acq_id="A1", timestamp=None, bands=None, shape=(4, 4), properties=None, mask=None):
        bands = bands or {}
        arrays = {
            name: (np.full(shape, value, dtype=np.float64) if np.isscalar(value) else np.asarray(value))
            for name, value in bands.items()
        }
        return Acquisition(
            id=acq_id,
            timestamp=timestamp or utc(2020, 1, 1),
            bands=arrays,
            properties=properties or {},
            mask=Mask(mask) if mask is not None else None,
            transform=transform,
            crs="EPSG:32633"
        )

    return _make


@pytest.fixture
def whole_grid_region():
    """Region covering the full 4x4 grid"""
    return Region.from_bbox(ORIGIN_X, ORIGIN_Y - 4 * PIXEL_SIZE, ORIGIN_X + 4 * PIXEL_SIZE, ORIGIN_Y)
