"""
Time-series assembly

Turns per-acquisition reductions into one FeatureSeries per feature,
ordered by (timestamp, acquisition id) with no-data entries dropped.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Sequence

import pandas as pd

from ..core import FeatureSeries, ReducedAcquisition, SeriesPoint, is_nodata, to_utc

logger = logging.getLogger(__name__)


class Observation(NamedTuple):
    acquisition_id: str
    timestamp: datetime
    value: Any


def assemble_series(feature: str, observations: Iterable[Observation]) -> FeatureSeries:
    """
    Build the series for one feature

    Args:
        feature: Feature name, e.g. 'NDVI'
        observations: (acquisition_id, timestamp, value) triples in any order

    Returns:
        FeatureSeries sorted by timestamp, ties broken by acquisition id
    """
    points: List[SeriesPoint] = []
    skipped = 0

    for obs in observations:
        if is_nodata(obs.value):
            skipped += 1
            continue
        points.append(SeriesPoint(to_utc(obs.timestamp), float(obs.value), str(obs.acquisition_id)))

    points.sort(key=lambda p: (p.timestamp, p.acquisition_id))

    if skipped:
        logger.info(f"{feature}: dropped {skipped} no-data observations, kept {len(points)}")

    return FeatureSeries(feature=feature, points=tuple(points))


def assemble_all(
    reductions: Iterable[ReducedAcquisition],
    features: Sequence[str]
) -> Dict[str, FeatureSeries]:
    """Assemble one series per feature from a batch of reduced acquisitions"""
    reductions = list(reductions)
    series: Dict[str, FeatureSeries] = {}

    for feature in features:
        observations = (
            Observation(r.acquisition_id, r.timestamp, r.values.get(feature))
            for r in reductions
        )
        series[feature] = assemble_series(feature, observations)

    return series


def series_to_frame(series: Mapping[str, FeatureSeries]) -> pd.DataFrame:
    """
    Long-format table of several series

    Columns: feature, timestamp, acquisition_id, value
    """
    frames = []
    for feature, s in series.items():
        frame = s.to_frame().rename(columns={feature: 'value'})
        frame.insert(0, 'feature', feature)
        frames.append(frame)

    if not frames:
        return pd.DataFrame(columns=['feature', 'timestamp', 'acquisition_id', 'value'])

    return pd.concat(frames, ignore_index=True)
