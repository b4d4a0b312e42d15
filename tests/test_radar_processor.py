"""
Unit Tests for the radar preprocessing engine
"""

import numpy as np
import pytest

from sentinel_trends.exceptions import DomainError
from sentinel_trends.preprocessing.radar_processor import (
    RadarProcessor,
    calculate_rfdi,
    calculate_rvi,
    lee_filter
)


class TestPolarimetricIndices:
    """Tests for RVI / RFDI"""

    def test_known_values_linear(self):
        vv, vh = np.array([1.0]), np.array([0.5])

        assert calculate_rvi(vv, vh)[0] == pytest.approx(4 * 0.5 / 1.5)
        assert calculate_rfdi(vv, vh)[0] == pytest.approx(0.5 / 1.5)

    def test_zero_sum_masked(self):
        rvi = calculate_rvi(np.array([0.0]), np.array([0.0]))
        rfdi = calculate_rfdi(np.array([0.0]), np.array([0.0]))

        assert rvi.mask[0]
        assert rfdi.mask[0]


class TestRadarProcessor:
    """Tests for RadarProcessor"""

    @pytest.fixture
    def s1_acquisition(self, make_acquisition):
        return make_acquisition(
            'S1A_IW_GRDH_20200101',
            bands={'VV': 1.0, 'VH': 0.5, 'angle': 38.5},
            properties={'orbitProperties_pass': 'ASCENDING'}
        )

    def test_indices_use_linear_power(self, s1_acquisition):
        result = RadarProcessor().compute(s1_acquisition)

        assert result.read_band('RVI')[0, 0] == pytest.approx(1.3333333333333333)
        assert result.read_band('RFDI')[0, 0] == pytest.approx(0.3333333333333333)

    def test_backscatter_in_db(self, s1_acquisition):
        result = RadarProcessor().compute(s1_acquisition)

        assert result.read_band('VV')[0, 0] == pytest.approx(0.0)
        assert result.read_band('VH')[0, 0] == pytest.approx(10 * np.log10(0.5))

    def test_angle_passed_through(self, s1_acquisition):
        result = RadarProcessor().compute(s1_acquisition)

        assert result.bands['angle'] is s1_acquisition.bands['angle']
        assert result.properties['orbitProperties_pass'] == 'ASCENDING'

    def test_feature_subset(self, s1_acquisition):
        result = RadarProcessor(['RVI', 'VH']).compute(s1_acquisition)
        assert result.band_names == ['RVI', 'VH']

    def test_non_positive_power(self, make_acquisition):
        vv = np.ones((4, 4))
        vv[0, 0] = 0.0
        acq = make_acquisition(bands={'VV': vv, 'VH': 0.5, 'angle': 40.0})

        result = RadarProcessor(['VV']).compute(acq)
        assert result.read_band('VV').mask[0, 0]

        with pytest.raises(DomainError):
            RadarProcessor(['VV'], strict_db=True).compute(acq)

    def test_unknown_feature(self):
        with pytest.raises(ValueError):
            RadarProcessor(['HH'])


class TestLeeFilter:
    """Tests for the mask-aware Lee filter"""

    def test_constant_image_unchanged(self):
        img = np.full((7, 7), 0.2)
        filtered = lee_filter(img, window_size=3)
        np.testing.assert_allclose(filtered.data, 0.2)

    def test_masked_pixels_ignored(self):
        img = np.ma.array(np.full((5, 5), 0.2), mask=np.zeros((5, 5), dtype=bool))
        img[2, 2] = 1e9
        img[2, 2] = np.ma.masked

        filtered = lee_filter(img, window_size=3)

        assert filtered.mask[2, 2]
        np.testing.assert_allclose(filtered.compressed(), 0.2)

    def test_even_window_rejected(self):
        with pytest.raises(ValueError):
            lee_filter(np.ones((3, 3)), window_size=2)
