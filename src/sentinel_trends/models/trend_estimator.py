"""
Linear Trend Estimator
Ordinary least-squares trend of a feature series against time

The fit uses every point with equal weight. Time is measured from the Unix
epoch in the configured unit (seconds, days or years) so the slope reads
as change per unit; the headline number is the predicted change between
the start and end of the analysis period.

Author: Research Team
License: MIT
"""

import numpy as np
import logging
from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence
from scipy import stats

from ..core import FeatureSeries, TrendFit, to_utc
from ..exceptions import InsufficientDataError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SECONDS_PER_UNIT = {
    'seconds': 1.0,
    'days': 86400.0,
    'years': 365.25 * 86400.0,
}


def to_time_axis(timestamps: Sequence[datetime], unit: str = 'days') -> np.ndarray:
    """
    Convert timestamps to a numeric axis

    Args:
        timestamps: Acquisition instants
        unit: 'seconds', 'days' or 'years' since 1970-01-01T00:00Z

    Returns:
        Float array of elapsed time
    """
    if unit not in SECONDS_PER_UNIT:
        raise ValueError(f"Unknown time unit '{unit}', expected one of {list(SECONDS_PER_UNIT)}")
    seconds = np.array([to_utc(t).timestamp() for t in timestamps], dtype=np.float64)
    return seconds / SECONDS_PER_UNIT[unit]


class TrendEstimator:
    """Fits value = slope * time + intercept over a FeatureSeries"""

    def __init__(self, time_unit: str = 'days'):
        if time_unit not in SECONDS_PER_UNIT:
            raise ValueError(f"Unknown time unit '{time_unit}', expected one of {list(SECONDS_PER_UNIT)}")
        self.time_unit = time_unit

    def predict(self, fit: TrendFit, when: datetime) -> float:
        """Evaluate a fitted line at an instant"""
        t = to_time_axis([when], self.time_unit)[0]
        return float(fit.slope * t + fit.intercept)

    def fit(
        self,
        series: FeatureSeries,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> TrendFit:
        """
        Fit the OLS line and evaluate it at the period endpoints

        Args:
            series: Time-ordered feature values
            start: Period start; defaults to the first observation
            end: Period end; defaults to the last observation

        Returns:
            TrendFit with slope, intercept and endpoint predictions

        Raises:
            InsufficientDataError: fewer than 2 points or 2 distinct timestamps
        """
        n = len(series)
        if n < 2:
            raise InsufficientDataError(series.feature, n)

        x = to_time_axis(series.timestamps, self.time_unit)
        y = series.values

        if np.unique(x).size < 2:
            raise InsufficientDataError(series.feature, n, "all observations share one timestamp")

        result = stats.linregress(x, y)
        slope = float(result.slope)
        intercept = float(result.intercept)

        start = to_utc(start) if start is not None else series.timestamps[0]
        end = to_utc(end) if end is not None else series.timestamps[-1]
        t_start, t_end = to_time_axis([start, end], self.time_unit)

        fit = TrendFit(
            feature=series.feature,
            slope=slope,
            intercept=intercept,
            time_unit=self.time_unit,
            start=start,
            end=end,
            start_value=float(slope * t_start + intercept),
            end_value=float(slope * t_end + intercept),
            n_points=n,
            r_squared=float(result.rvalue ** 2),
            p_value=float(result.pvalue),
            stderr=float(result.stderr),
        )

        logger.info(f"{series.feature} trend: slope={slope:.6g}/{self.time_unit[:-1]}, "
                    f"change over period={fit.delta:.4f} (n={n})")
        return fit

    def fit_all(
        self,
        series: Mapping[str, FeatureSeries],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> Dict[str, Optional[TrendFit]]:
        """Fit every series; features with too little data map to None"""
        fits: Dict[str, Optional[TrendFit]] = {}
        for feature, s in series.items():
            try:
                fits[feature] = self.fit(s, start, end)
            except InsufficientDataError as e:
                logger.warning(f"No trend available: {e}")
                fits[feature] = None
        return fits
