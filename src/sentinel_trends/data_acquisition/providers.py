"""
Imagery Providers
Sources of raw acquisitions for the analysis

A provider answers two questions: which acquisitions of a product cover a
region in a date range, and what the raster of one band is. Two providers
live here:
- InMemoryProvider: acquisitions already built in Python (tests, notebooks)
- LocalRasterProvider: GeoTIFF scenes listed in a JSON catalog

The Google Earth Engine provider is in sentinel_processor.py.
"""

import numpy as np
import rasterio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from shapely.geometry import box

from ..core import Acquisition, Region, to_utc

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ImageryProvider(ABC):
    """Catalog/storage service for raster acquisitions"""

    @abstractmethod
    def query_collection(
        self,
        product_id: str,
        region: Optional[Region],
        start: datetime,
        end: datetime,
        predicates: Sequence[Any] = ()
    ) -> List[Acquisition]:
        """
        Acquisitions of product_id covering region with start <= timestamp < end

        predicates are PropertyFilters a provider may apply at the source to
        narrow the query; the caller re-checks them, so ignoring them is valid.
        """

    def get_band(self, acquisition: Acquisition, band_name: str) -> np.ma.MaskedArray:
        """Raster of one band"""
        return acquisition.read_band(band_name)


def _in_range(timestamp: datetime, start: datetime, end: datetime) -> bool:
    return start <= timestamp < end


class InMemoryProvider(ImageryProvider):
    """Serves pre-built acquisitions, keyed by product id"""

    def __init__(self, products: Mapping[str, Iterable[Acquisition]]):
        self.products: Dict[str, List[Acquisition]] = {k: list(v) for k, v in products.items()}

    def query_collection(self, product_id, region, start, end, predicates=()) -> List[Acquisition]:
        start, end = to_utc(start), to_utc(end)
        matches = []
        for acquisition in self.products.get(product_id, []):
            if not _in_range(acquisition.timestamp, start, end):
                continue
            footprint = acquisition.footprint()
            if region is not None and footprint is not None and not region.intersects(footprint):
                continue
            matches.append(acquisition)
        return matches


class LocalRasterProvider(ImageryProvider):
    """
    GeoTIFF scenes described by a JSON catalog

    Catalog layout::

        {
          "products": {
            "COPERNICUS/S2_SR_HARMONIZED": [
              {
                "id": "20200105T101401_T32TQM",
                "datetime": "2020-01-05T10:14:01Z",
                "properties": {"CLOUDY_PIXEL_PERCENTAGE": 12.5},
                "bands": {
                  "B4": "s2/20200105/B4.tif",
                  "B8": {"path": "s2/20200105/stack.tif", "index": 4}
                }
              }
            ]
          }
        }

    Relative paths are resolved against the catalog directory. Band nodata
    values become masked pixels.
    """

    def __init__(self, catalog_path: Union[str, Path]):
        self.catalog_path = Path(catalog_path)
        if not self.catalog_path.exists():
            raise FileNotFoundError(f"Catalog not found: {self.catalog_path}")

        with open(self.catalog_path, 'r') as f:
            self.catalog = json.load(f)

        self.root = self.catalog_path.parent
        n_scenes = sum(len(v) for v in self.catalog.get('products', {}).values())
        logger.info(f"Loaded catalog {self.catalog_path} ({n_scenes} scenes)")

    def _band_source(self, spec: Union[str, Dict[str, Any]]) -> Tuple[Path, int]:
        if isinstance(spec, str):
            path, index = spec, 1
        else:
            path, index = spec['path'], int(spec.get('index', 1))
        path = Path(path)
        if not path.is_absolute():
            path = self.root / path
        return path, index

    def _read_band(self, spec) -> Tuple[np.ma.MaskedArray, Any, Optional[str]]:
        path, index = self._band_source(spec)
        with rasterio.open(path) as src:
            data = src.read(index, masked=True)
            transform = src.transform
            crs = src.crs.to_string() if src.crs else None
        return data, transform, crs

    def _footprint(self, spec):
        path, _ = self._band_source(spec)
        with rasterio.open(path) as src:
            return box(*src.bounds)

    def query_collection(self, product_id, region, start, end, predicates=()) -> List[Acquisition]:
        start, end = to_utc(start), to_utc(end)
        entries = self.catalog.get('products', {}).get(product_id, [])
        acquisitions = []

        for entry in entries:
            timestamp = to_utc(entry['datetime'])
            if not _in_range(timestamp, start, end):
                continue

            band_specs = entry.get('bands', {})
            if not band_specs:
                logger.warning(f"Catalog entry {entry.get('id')} has no bands, skipping")
                continue

            if region is not None and not region.intersects(self._footprint(next(iter(band_specs.values())))):
                continue

            bands = {}
            transform = crs = None
            for name, spec in band_specs.items():
                bands[name], transform, crs = self._read_band(spec)

            acquisitions.append(Acquisition(
                id=str(entry['id']),
                timestamp=timestamp,
                bands=bands,
                properties=entry.get('properties', {}),
                transform=transform,
                crs=crs
            ))

        logger.info(f"{product_id}: {len(acquisitions)} scenes between {start.date()} and {end.date()}")
        return acquisitions
