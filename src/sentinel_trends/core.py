"""
Core data model

Acquisitions, collections, regions, masks and the series/trend results
derived from them. Everything here is immutable: deriving a band, attaching
a mask or selecting a subset returns a new object.

No-data is carried explicitly with numpy masked arrays. A masked pixel is
no-data; a reduced scalar that has no data is ``NODATA`` (``numpy.ma.masked``).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from affine import Affine
from shapely.geometry import Point, box, mapping, shape
from shapely.geometry.base import BaseGeometry

from .exceptions import MissingBandError

NODATA = np.ma.masked


def is_nodata(value: Any) -> bool:
    """True for the no-data marker, None, or anything that is not a finite number"""
    if value is np.ma.masked or value is None:
        return True
    try:
        return not np.isfinite(float(value))
    except (TypeError, ValueError):
        return True


def to_utc(value: Union[str, datetime, pd.Timestamp]) -> datetime:
    """Parse a timestamp and return it as a timezone-aware UTC datetime.

    Naive inputs are taken to already be in UTC.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return ts.to_pydatetime()


def _freeze(band: Any) -> np.ndarray:
    """Read-only band array; already read-only arrays are shared, not copied"""
    if not isinstance(band, np.ndarray):
        band = np.asarray(band)
    if band.flags.writeable:
        band = band.copy()
        band.setflags(write=False)
        if isinstance(band, np.ma.MaskedArray) and band.mask is not np.ma.nomask:
            band.mask.setflags(write=False)
    return band


@dataclass(frozen=True, eq=False)
class Mask:
    """Per-pixel validity grid, True = usable"""

    valid: np.ndarray

    def __post_init__(self):
        valid = np.array(self.valid, dtype=bool, copy=True)
        if valid.ndim != 2:
            raise ValueError(f"Mask must be 2-D, got shape {valid.shape}")
        valid.setflags(write=False)
        object.__setattr__(self, "valid", valid)

    @classmethod
    def all_valid(cls, shape: Tuple[int, int]) -> "Mask":
        return cls(np.ones(shape, dtype=bool))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.valid.shape

    @property
    def valid_fraction(self) -> float:
        return float(self.valid.mean()) if self.valid.size else 0.0

    def __and__(self, other: "Mask") -> "Mask":
        if self.shape != other.shape:
            raise ValueError(f"Cannot combine masks of shape {self.shape} and {other.shape}")
        return Mask(self.valid & other.valid)


@dataclass(frozen=True, eq=False)
class Acquisition:
    """One raster capture: bands, scalar metadata, optional mask and georeferencing"""

    id: str
    timestamp: datetime
    bands: Mapping[str, np.ndarray]
    properties: Mapping[str, Any] = field(default_factory=dict)
    mask: Optional[Mask] = None
    transform: Optional[Affine] = None
    crs: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", to_utc(self.timestamp))
        object.__setattr__(self, "bands", MappingProxyType({k: _freeze(v) for k, v in self.bands.items()}))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

        shapes = {name: np.shape(band) for name, band in self.bands.items()}
        for name, band_shape in shapes.items():
            if len(band_shape) != 2:
                raise ValueError(f"Band {name} of {self.id} is not 2-D: {band_shape}")
        if len(set(shapes.values())) > 1:
            raise ValueError(f"Bands of {self.id} have mismatched shapes: {shapes}")
        if self.mask is not None and shapes and self.mask.shape != next(iter(shapes.values())):
            raise ValueError(
                f"Mask shape {self.mask.shape} does not match raster shape of {self.id}"
            )

    @property
    def band_names(self) -> List[str]:
        return list(self.bands)

    @property
    def shape(self) -> Optional[Tuple[int, int]]:
        for band in self.bands.values():
            return tuple(np.shape(band))
        return self.mask.shape if self.mask is not None else None

    @property
    def pixel_size(self) -> Optional[float]:
        if self.transform is None:
            return None
        return abs(self.transform.a)

    def read_band(self, name: str) -> np.ma.MaskedArray:
        """
        Read one band as a float masked array

        Pixels outside the attached mask, pixels already masked in the
        band, and non-finite values all come back masked.
        """
        if name not in self.bands:
            raise MissingBandError(self.id, [name], self.band_names)

        band = np.ma.array(self.bands[name], dtype=np.float64, copy=True)
        band = np.ma.masked_invalid(band)
        if self.mask is not None:
            band = np.ma.array(band, mask=np.ma.getmaskarray(band) | ~self.mask.valid)
        return band

    def add_bands(self, new_bands: Mapping[str, np.ndarray]) -> "Acquisition":
        clashes = sorted(set(new_bands) & set(self.bands))
        if clashes:
            raise ValueError(f"Bands {clashes} already exist in {self.id}")
        merged = dict(self.bands)
        merged.update(new_bands)
        return replace(self, bands=merged)

    def select(self, names: Sequence[str]) -> "Acquisition":
        missing = [n for n in names if n not in self.bands]
        if missing:
            raise MissingBandError(self.id, missing, self.band_names)
        return replace(self, bands={n: self.bands[n] for n in names})

    def with_mask(self, mask: Mask) -> "Acquisition":
        return replace(self, mask=mask)

    def footprint(self) -> Optional[BaseGeometry]:
        """Raster bounds as a polygon, or None without georeferencing"""
        if self.transform is None or self.shape is None:
            return None
        height, width = self.shape
        corners = [self.transform * (0, 0), self.transform * (width, height)]
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        return box(min(xs), min(ys), max(xs), max(ys))


@dataclass(frozen=True)
class Collection:
    """Acquisitions of one product, ordered by (timestamp, id)"""

    product_id: str
    acquisitions: Tuple[Acquisition, ...] = ()
    description: str = ""

    def __post_init__(self):
        ordered = tuple(sorted(self.acquisitions, key=lambda a: (a.timestamp, a.id)))
        object.__setattr__(self, "acquisitions", ordered)

    def __len__(self) -> int:
        return len(self.acquisitions)

    def __iter__(self) -> Iterator[Acquisition]:
        return iter(self.acquisitions)

    def __getitem__(self, index: int) -> Acquisition:
        return self.acquisitions[index]

    @property
    def ids(self) -> List[str]:
        return [a.id for a in self.acquisitions]

    def size(self) -> int:
        return len(self.acquisitions)

    def with_acquisitions(self, acquisitions: Iterable[Acquisition]) -> "Collection":
        return replace(self, acquisitions=tuple(acquisitions))


@dataclass(frozen=True)
class Region:
    """Area of interest, in the same CRS as the rasters it is applied to"""

    geometry: BaseGeometry

    @classmethod
    def from_point(cls, x: float, y: float, radius: float = 0.0) -> "Region":
        if radius < 0:
            raise ValueError(f"Buffer radius must be non-negative, got {radius}")
        point = Point(x, y)
        return cls(point.buffer(radius) if radius > 0 else point)

    @classmethod
    def from_bbox(cls, minx: float, miny: float, maxx: float, maxy: float) -> "Region":
        return cls(box(minx, miny, maxx, maxy))

    @classmethod
    def from_geojson(cls, geojson: Mapping[str, Any]) -> "Region":
        return cls(shape(geojson))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.geometry.bounds

    def intersects(self, other: BaseGeometry) -> bool:
        return self.geometry.intersects(other)

    def to_geojson(self) -> Dict[str, Any]:
        return dict(mapping(self.geometry))


class ReducedAcquisition(NamedTuple):
    """One acquisition collapsed to one scalar (or NODATA) per feature"""

    acquisition_id: str
    timestamp: datetime
    values: Mapping[str, Any]


class SeriesPoint(NamedTuple):
    timestamp: datetime
    value: float
    acquisition_id: str


@dataclass(frozen=True)
class FeatureSeries:
    """Time-ordered scalar values of one feature"""

    feature: str
    points: Tuple[SeriesPoint, ...] = ()

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[SeriesPoint]:
        return iter(self.points)

    @property
    def timestamps(self) -> List[datetime]:
        return [p.timestamp for p in self.points]

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.points], dtype=np.float64)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "timestamp": pd.to_datetime(self.timestamps, utc=True),
            "acquisition_id": [p.acquisition_id for p in self.points],
            self.feature: self.values,
        })


@dataclass(frozen=True)
class TrendFit:
    """OLS line through one FeatureSeries, evaluated at the period endpoints"""

    feature: str
    slope: float
    intercept: float
    time_unit: str
    start: datetime
    end: datetime
    start_value: float
    end_value: float
    n_points: int
    r_squared: float
    p_value: float
    stderr: float

    @property
    def delta(self) -> float:
        """Predicted change between the start and end of the period"""
        return self.end_value - self.start_value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature,
            "slope": self.slope,
            "intercept": self.intercept,
            "time_unit": self.time_unit,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "start_value": self.start_value,
            "end_value": self.end_value,
            "delta": self.delta,
            "n_points": self.n_points,
            "r_squared": self.r_squared,
            "p_value": self.p_value,
            "stderr": self.stderr,
        }
