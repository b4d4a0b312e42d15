"""
Sentinel-1/2 Earth Engine Provider
Accesses Sentinel data via Google Earth Engine

Data Sources:
- Sentinel-1: COPERNICUS/S1_GRD_FLOAT (linear power)
- Sentinel-2: COPERNICUS/S2_SR_HARMONIZED
License: Copernicus Open Access
"""

import ee
import os
import logging
import numpy as np
from affine import Affine
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..core import Acquisition, Region, to_utc
from ..utils.masked_math import NODATA_FILL
from .providers import ImageryProvider

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_BANDS = {
    'COPERNICUS/S2_SR_HARMONIZED': ['B2', 'B3', 'B4', 'B8', 'B11', 'B12', 'SCL', 'MSK_CLDPRB', 'QA60'],
    'COPERNICUS/S1_GRD_FLOAT': ['VV', 'VH', 'angle'],
}

# PropertyFilter operator -> ee.Filter constructor
EE_FILTERS = {
    'lt': 'lt',
    'lte': 'lte',
    'gt': 'gt',
    'gte': 'gte',
    'eq': 'eq',
    'neq': 'neq',
    'contains': 'listContains',
}


def to_ee_filter(predicate: Any) -> ee.Filter:
    """Server-side equivalent of a PropertyFilter, e.g. ee.Filter.lt('CLOUDY_PIXEL_PERCENTAGE', 50)"""
    constructor = EE_FILTERS.get(predicate.op)
    if constructor is None:
        raise ValueError(f"Unknown filter operator '{predicate.op}', expected one of {list(EE_FILTERS)}")
    return getattr(ee.Filter, constructor)(predicate.name, predicate.value)


def initialize_earth_engine(project: Optional[str] = None) -> None:
    """Initialise GEE, falling back to service-account credentials from the environment"""
    try:
        ee.Initialize(project=project)
        logger.info("Google Earth Engine initialized")
    except Exception as e:
        logger.warning(f"GEE init failed, attempting service account auth: {e}")
        # Service account auth
        service_account = os.getenv('GEE_SERVICE_ACCOUNT')
        key_file = os.getenv('GEE_PRIVATE_KEY_PATH')
        credentials = ee.ServiceAccountCredentials(service_account, key_file)
        ee.Initialize(credentials, project=project)


class EarthEngineProvider(ImageryProvider):
    """Query GEE image collections and download pixels over the region grid"""

    def __init__(
        self,
        project: Optional[str] = None,
        crs: str = 'EPSG:3857',
        scale: float = 10,
        max_images: Optional[int] = 500,
        bands: Optional[Dict[str, Sequence[str]]] = None,
        initialize: bool = True
    ):
        """
        Args:
            project: Cloud project for ee.Initialize
            crs: CRS of the download grid; the region must be expressed in it
            scale: Pixel size of the download grid, in CRS units
            max_images: Upper bound on images fetched per query; None for no bound
            bands: Product id -> bands to download (defaults to DEFAULT_BANDS)
        """
        if initialize:
            initialize_earth_engine(project)

        self.crs = crs
        self.scale = float(scale)
        self.max_images = max_images
        self.bands = dict(DEFAULT_BANDS)
        self.bands.update({k: list(v) for k, v in (bands or {}).items()})

    def _geometry(self, region: Region) -> ee.Geometry:
        return ee.Geometry(region.to_geojson(), self.crs, False)

    def _grid(self, region: Region) -> Dict[str, Any]:
        """Pixel grid covering the region bounds, north-up"""
        minx, miny, maxx, maxy = region.bounds
        width = max(int(np.ceil((maxx - minx) / self.scale)), 1)
        height = max(int(np.ceil((maxy - miny) / self.scale)), 1)
        return {
            'dimensions': {'width': width, 'height': height},
            'affineTransform': {
                'scaleX': self.scale,
                'shearX': 0,
                'translateX': minx,
                'shearY': 0,
                'scaleY': -self.scale,
                'translateY': maxy,
            },
            'crsCode': self.crs,
        }

    def _download(self, image: ee.Image, band_names: List[str], grid: Dict[str, Any]) -> Dict[str, np.ma.MaskedArray]:
        """Fetch pixels with masked pixels filled, then re-mask them locally"""
        pixels = ee.data.computePixels({
            'expression': image.select(band_names).unmask(NODATA_FILL),
            'fileFormat': 'NUMPY_NDARRAY',
            'grid': grid,
        })
        bands = {}
        for name in band_names:
            data = np.asarray(pixels[name], dtype=np.float64)
            bands[name] = np.ma.masked_equal(data, NODATA_FILL)
        return bands

    def _bounded(self, collection: ee.ImageCollection, product_id: str) -> ee.ImageCollection:
        """Apply max_images, warning when matching images are left out"""
        if self.max_images is None:
            return collection
        total = collection.size().getInfo()
        if total > self.max_images:
            logger.warning(
                f"{product_id}: {total} images match the query, keeping the first "
                f"{self.max_images} by acquisition time; raise max_images to use them all"
            )
            return collection.limit(self.max_images, 'system:time_start')
        return collection

    def query_collection(self, product_id, region, start, end, predicates=()) -> List[Acquisition]:
        """
        Retrieve acquisitions of one product

        Metadata predicates are applied server-side before max_images, so the
        limit only ever drops images that match every filter.

        Args:
            product_id: GEE collection id
            region: Area of interest (required for GEE)
            start: Inclusive start instant
            end: Exclusive end instant
            predicates: PropertyFilters translated to ee.Filter

        Returns:
            List of Acquisitions with bands downloaded on the region grid
        """
        if region is None:
            raise ValueError("EarthEngineProvider needs a region to bound the download")

        start, end = to_utc(start), to_utc(end)
        geometry = self._geometry(region)
        band_names = self.bands.get(product_id)
        if not band_names:
            raise ValueError(f"No band list configured for {product_id}")

        collection = (ee.ImageCollection(product_id)
            .filterBounds(geometry)
            .filterDate(start.isoformat(), end.isoformat())
        )
        for predicate in predicates:
            collection = collection.filter(to_ee_filter(predicate))

        info = self._bounded(collection, product_id).getInfo()
        features = info.get('features', [])
        logger.info(f"{product_id} collection size: {len(features)}")

        grid = self._grid(region)
        t = grid['affineTransform']
        transform = Affine(t['scaleX'], t['shearX'], t['translateX'], t['shearY'], t['scaleY'], t['translateY'])

        acquisitions = []
        for feature in features:
            props = feature.get('properties', {})
            image_id = feature['id']
            available = [b['id'] for b in feature.get('bands', [])]
            wanted = [b for b in band_names if b in available]
            if not wanted:
                logger.warning(f"{image_id} has none of the bands {band_names}, skipping")
                continue

            bands = self._download(ee.Image(image_id), wanted, grid)
            timestamp = datetime.fromtimestamp(props['system:time_start'] / 1000.0, tz=timezone.utc)

            acquisitions.append(Acquisition(
                id=props.get('system:index', image_id),
                timestamp=timestamp,
                bands=bands,
                properties=props,
                transform=transform,
                crs=self.crs
            ))

        return acquisitions
