"""
Unit Tests for the OLS trend estimator
"""

from datetime import timedelta

import numpy as np
import pytest

from conftest import utc
from sentinel_trends.core import FeatureSeries, SeriesPoint
from sentinel_trends.exceptions import InsufficientDataError
from sentinel_trends.models.trend_estimator import TrendEstimator, to_time_axis

EPOCH = utc(1970, 1, 1)


def linear_series(feature, days, slope, intercept):
    """Series with value = slope * days_since_epoch + intercept"""
    points = tuple(
        SeriesPoint(EPOCH + timedelta(days=d), slope * d + intercept, f'acq_{i}')
        for i, d in enumerate(days)
    )
    return FeatureSeries(feature, points)


class TestTimeAxis:
    """Tests for the numeric time axis"""

    def test_units(self):
        when = [EPOCH + timedelta(days=365.25)]

        assert to_time_axis(when, 'days')[0] == pytest.approx(365.25)
        assert to_time_axis(when, 'years')[0] == pytest.approx(1.0)
        assert to_time_axis(when, 'seconds')[0] == pytest.approx(365.25 * 86400)

    def test_unknown_unit(self):
        with pytest.raises(ValueError):
            to_time_axis([EPOCH], 'weeks')


class TestTrendEstimator:
    """Tests for TrendEstimator"""

    def test_recovers_exact_line(self):
        series = linear_series('NDVI', [18262, 18300, 18350, 18400, 18500], slope=2.0, intercept=1.0)

        fit = TrendEstimator('days').fit(series)

        assert fit.slope == pytest.approx(2.0, rel=1e-9)
        assert fit.intercept == pytest.approx(1.0, abs=1e-5)
        assert fit.r_squared == pytest.approx(1.0)
        assert fit.n_points == 5

    def test_endpoint_prediction(self):
        series = linear_series('NDVI', [18262, 18300, 18400], slope=0.001, intercept=-17.0)
        start, end = EPOCH + timedelta(days=18200), EPOCH + timedelta(days=18600)

        fit = TrendEstimator('days').fit(series, start, end)

        assert fit.start == start
        assert fit.end == end
        assert fit.start_value == pytest.approx(0.001 * 18200 - 17.0)
        assert fit.delta == pytest.approx(0.4)

    def test_endpoints_default_to_observations(self):
        series = linear_series('VV', [18262, 18300], slope=0.0, intercept=-12.0)

        fit = TrendEstimator().fit(series)

        assert fit.start == series.timestamps[0]
        assert fit.end == series.timestamps[-1]
        assert fit.delta == pytest.approx(0.0)

    def test_yearly_slope(self):
        series = linear_series('NDVI', [0, 365.25, 730.5], slope=0.1 / 365.25, intercept=0.2)

        fit = TrendEstimator('years').fit(series)

        assert fit.slope == pytest.approx(0.1)

    def test_noisy_fit_reports_stats(self):
        rng = np.random.default_rng(0)
        days = np.arange(18000, 18300, 12)
        series = FeatureSeries('RVI', tuple(
            SeriesPoint(EPOCH + timedelta(days=int(d)), 0.5 + 1e-4 * d + rng.normal(0, 0.01), f'a{d}')
            for d in days
        ))

        fit = TrendEstimator().fit(series)

        assert 0.0 < fit.r_squared < 1.0
        assert fit.stderr > 0.0
        assert 0.0 <= fit.p_value <= 1.0

    def test_single_point(self):
        series = linear_series('NDVI', [18262], slope=1.0, intercept=0.0)
        with pytest.raises(InsufficientDataError):
            TrendEstimator().fit(series)

    def test_identical_timestamps(self):
        when = utc(2020, 1, 1)
        series = FeatureSeries('NDVI', (SeriesPoint(when, 0.2, 'a'), SeriesPoint(when, 0.4, 'b')))
        with pytest.raises(InsufficientDataError):
            TrendEstimator().fit(series)

    def test_predict(self):
        series = linear_series('NDVI', [10, 20, 30], slope=0.5, intercept=1.0)
        estimator = TrendEstimator()
        fit = estimator.fit(series)

        assert estimator.predict(fit, EPOCH + timedelta(days=40)) == pytest.approx(21.0)

    def test_fit_all_marks_short_series(self):
        fits = TrendEstimator().fit_all({
            'NDVI': linear_series('NDVI', [10, 20], slope=1.0, intercept=0.0),
            'EVI': FeatureSeries('EVI'),
        })

        assert fits['NDVI'] is not None
        assert fits['EVI'] is None

    def test_to_dict(self):
        fit = TrendEstimator().fit(linear_series('NDVI', [10, 20], slope=1.0, intercept=0.0))
        summary = fit.to_dict()

        assert summary['feature'] == 'NDVI'
        assert summary['delta'] == pytest.approx(10.0)
        assert summary['start'] == '1970-01-11T00:00:00+00:00'
