"""
Unit Tests for the local GeoTIFF and Earth Engine providers
"""

import json
from types import SimpleNamespace

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from conftest import ORIGIN_X, ORIGIN_Y, PIXEL_SIZE, utc
from sentinel_trends.core import Region
from sentinel_trends.data_acquisition import LocalRasterProvider, PropertyFilter, cloud_cover_filter

S2 = 'COPERNICUS/S2_SR_HARMONIZED'


def write_tif(path, arrays, nodata=None):
    """Write a (count, 4, 4) float32 stack on the shared test grid"""
    arrays = np.asarray(arrays, dtype=np.float32)
    profile = {
        'driver': 'GTiff',
        'height': arrays.shape[1],
        'width': arrays.shape[2],
        'count': arrays.shape[0],
        'dtype': 'float32',
        'crs': 'EPSG:32633',
        'transform': from_origin(ORIGIN_X, ORIGIN_Y, PIXEL_SIZE, PIXEL_SIZE),
    }
    if nodata is not None:
        profile['nodata'] = nodata
    with rasterio.open(path, 'w', **profile) as dst:
        dst.write(arrays)


@pytest.fixture
def catalog(tmp_path):
    red = np.full((4, 4), 1000.0)
    red[0, 0] = -9999.0
    write_tif(tmp_path / 'red.tif', [red], nodata=-9999.0)
    write_tif(tmp_path / 'stack.tif', [np.full((4, 4), 3000.0), np.full((4, 4), 4.0)])

    entries = [
        {
            'id': 'scene_b',
            'datetime': '2020-02-01T10:00:00Z',
            'properties': {'CLOUDY_PIXEL_PERCENTAGE': 7.5},
            'bands': {
                'B4': 'red.tif',
                'B8': {'path': 'stack.tif', 'index': 1},
                'SCL': {'path': 'stack.tif', 'index': 2},
            },
        },
        {
            'id': 'scene_a',
            'datetime': '2020-06-01T10:00:00Z',
            'bands': {'B4': str(tmp_path / 'red.tif')},
        },
    ]
    path = tmp_path / 'catalog.json'
    path.write_text(json.dumps({'products': {S2: entries}}))
    return path


class TestLocalRasterProvider:
    """Tests for LocalRasterProvider"""

    def test_reads_bands_and_metadata(self, catalog):
        provider = LocalRasterProvider(catalog)

        scenes = provider.query_collection(S2, None, utc(2020, 1, 1), utc(2020, 3, 1))

        assert [s.id for s in scenes] == ['scene_b']
        scene = scenes[0]
        assert scene.timestamp == utc(2020, 2, 1, 10)
        assert scene.properties['CLOUDY_PIXEL_PERCENTAGE'] == 7.5
        assert scene.crs == 'EPSG:32633'
        assert scene.pixel_size == pytest.approx(PIXEL_SIZE)
        assert sorted(scene.band_names) == ['B4', 'B8', 'SCL']

    def test_nodata_becomes_masked(self, catalog):
        provider = LocalRasterProvider(catalog)
        scene = provider.query_collection(S2, None, utc(2020, 1, 1), utc(2020, 3, 1))[0]

        red = provider.get_band(scene, 'B4')

        assert red.mask[0, 0]
        assert red.count() == 15
        assert provider.get_band(scene, 'SCL')[1, 1] == 4.0

    def test_date_range_end_exclusive(self, catalog):
        provider = LocalRasterProvider(catalog)
        scenes = provider.query_collection(S2, None, utc(2020, 1, 1), utc(2020, 6, 1, 10))
        assert [s.id for s in scenes] == ['scene_b']

    def test_region_filter(self, catalog, whole_grid_region):
        provider = LocalRasterProvider(catalog)

        inside = provider.query_collection(S2, whole_grid_region, utc(2020, 1, 1), utc(2021, 1, 1))
        outside = provider.query_collection(S2, Region.from_bbox(0, 0, 1, 1), utc(2020, 1, 1), utc(2021, 1, 1))

        assert len(inside) == 2
        assert outside == []

    def test_missing_catalog(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LocalRasterProvider(tmp_path / 'nope.json')


class TestEarthEngineGrid:
    """Download grid of the Earth Engine provider (no network access)"""

    def test_grid_covers_region(self):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        provider = EarthEngineProvider(crs='EPSG:32633', scale=10, initialize=False)
        grid = provider._grid(Region.from_bbox(500000, 3999955, 500040, 4000000))

        assert grid['dimensions'] == {'width': 4, 'height': 5}
        assert grid['affineTransform']['translateX'] == 500000
        assert grid['affineTransform']['translateY'] == 4000000
        assert grid['affineTransform']['scaleY'] == -10.0
        assert grid['crsCode'] == 'EPSG:32633'

    def test_band_overrides(self):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        provider = EarthEngineProvider(bands={'COPERNICUS/S1_GRD_FLOAT': ['VV', 'VH']}, initialize=False)

        assert provider.bands['COPERNICUS/S1_GRD_FLOAT'] == ['VV', 'VH']
        assert 'SCL' in provider.bands['COPERNICUS/S2_SR_HARMONIZED']

    def test_region_required(self):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        provider = EarthEngineProvider(initialize=False)
        with pytest.raises(ValueError):
            provider.query_collection(S2, None, utc(2020, 1, 1), utc(2021, 1, 1))


class FakeFilters:
    """Stands in for ee.Filter; each constructor returns (kind, property, value)"""

    def __getattr__(self, kind):
        return lambda name, value: (kind, name, value)


class FakeImageCollection:
    """Server-side collection of `total` images, recording the calls made on it"""

    def __init__(self, total):
        self.total = total
        self.filters = []
        self.limit_args = None

    def filterBounds(self, geometry):
        return self

    def filterDate(self, start, end):
        return self

    def filter(self, ee_filter):
        self.filters.append(ee_filter)
        return self

    def size(self):
        return SimpleNamespace(getInfo=lambda: self.total)

    def limit(self, count, prop):
        self.limit_args = (count, prop)
        return self

    def getInfo(self):
        return {'type': 'ImageCollection', 'features': []}


class TestEarthEngineQuery:
    """Server-side filtering and max_images handling (Earth Engine calls faked)"""

    @pytest.fixture
    def fake_ee(self, monkeypatch):
        from sentinel_trends.data_acquisition import sentinel_processor

        collection = FakeImageCollection(total=10)
        monkeypatch.setattr(sentinel_processor.ee, 'Filter', FakeFilters())
        monkeypatch.setattr(sentinel_processor.ee, 'Geometry', lambda *args: None)
        monkeypatch.setattr(sentinel_processor.ee, 'ImageCollection', lambda product_id: collection)
        return collection

    def query(self, provider, predicates=()):
        region = Region.from_bbox(500000, 3999960, 500040, 4000000)
        return provider.query_collection(S2, region, utc(2020, 1, 1), utc(2021, 1, 1), predicates)

    def test_predicates_become_ee_filters(self, fake_ee):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        predicates = [
            cloud_cover_filter(30),
            PropertyFilter('orbitProperties_pass', 'eq', 'ASCENDING'),
            PropertyFilter('transmitterReceiverPolarisation', 'contains', 'VV'),
            PropertyFilter('relativeOrbitNumber_start', 'gte', 10),
        ]

        assert self.query(EarthEngineProvider(initialize=False), predicates) == []
        assert fake_ee.filters == [
            ('lt', 'CLOUDY_PIXEL_PERCENTAGE', 30),
            ('eq', 'orbitProperties_pass', 'ASCENDING'),
            ('listContains', 'transmitterReceiverPolarisation', 'VV'),
            ('gte', 'relativeOrbitNumber_start', 10),
        ]

    def test_no_limit_when_everything_fits(self, fake_ee, caplog):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        self.query(EarthEngineProvider(max_images=10, initialize=False))

        assert fake_ee.limit_args is None
        assert not [r for r in caplog.records if r.levelname == 'WARNING']

    def test_truncation_is_logged(self, fake_ee, caplog):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        self.query(EarthEngineProvider(max_images=3, initialize=False), [cloud_cover_filter(30)])

        assert fake_ee.limit_args == (3, 'system:time_start')
        warnings = [r.message for r in caplog.records if r.levelname == 'WARNING']
        assert len(warnings) == 1
        assert '10 images match' in warnings[0]

    def test_unbounded_query(self, fake_ee):
        from sentinel_trends.data_acquisition.sentinel_processor import EarthEngineProvider

        self.query(EarthEngineProvider(max_images=None, initialize=False))

        assert fake_ee.limit_args is None

    def test_unknown_operator(self):
        from sentinel_trends.data_acquisition.sentinel_processor import to_ee_filter

        with pytest.raises(ValueError):
            to_ee_filter(PropertyFilter('CLOUDY_PIXEL_PERCENTAGE', 'between', (0, 10)))
