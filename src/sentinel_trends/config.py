"""
Configuration loading

The analysis is driven by one YAML file (``config.yaml``). User values are
merged over DEFAULT_CONFIG and validated up front so that a bad config fails
before any imagery is requested.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from shapely.errors import ShapelyError

from .core import Region, to_utc
from .exceptions import ConfigError
from .utils.helpers import CoordinateTransforms

logger = logging.getLogger(__name__)

OPTICAL_FEATURES = ('NDVI', 'EVI', 'NDMI', 'NBR', 'NDWI')
RADAR_FEATURES = ('angle', 'VV', 'VH', 'RVI', 'RFDI')
REDUCER_KINDS = ('mean', 'median', 'min', 'max', 'std')
TIME_UNITS = ('seconds', 'days', 'years')
MASKING_STRATEGIES = ('scl', 'qa60', 'cloud_probability', 'combined', 'none')

DEFAULT_CONFIG: Dict[str, Any] = {
    'analysis': {
        'start_date': '2019-04-01',
        'end_date': '2022-04-01',
        'region': {'type': 'point', 'coordinates': [0.0, 0.0], 'buffer': 50},
        'scale': 20,
        'reducer': 'mean',
        'time_unit': 'days',
        'max_workers': 4,
    },
    'optical': {
        'enabled': True,
        'product': 'COPERNICUS/S2_SR_HARMONIZED',
        'max_clouds': 50,
        'cloud_property': 'CLOUDY_PIXEL_PERCENTAGE',
        'features': ['NDVI', 'EVI', 'NBR', 'NDMI'],
        'band_roles': {
            'nir': 'B8',
            'red': 'B4',
            'blue': 'B2',
            'green': 'B3',
            'swir1': 'B11',
            'swir2': 'B12',
        },
        'reflectance_scale': 10000,
        'masking': {
            'strategy': 'combined',
            'strategies': ['scl', 'cloud_probability'],
            'scl_band': 'SCL',
            'valid_classes': [4, 5, 6, 7],
            'qa_band': 'QA60',
            'qa_bits': [10, 11],
            'probability_band': 'MSK_CLDPRB',
            'probability_threshold': 40,
        },
    },
    'radar': {
        'enabled': True,
        'product': 'COPERNICUS/S1_GRD_FLOAT',
        'features': ['VV', 'VH', 'RVI', 'RFDI'],
        'orbit_pass': None,
        'max_relative_orbit': None,
        'required_polarisations': [],
        'speckle_filter_window': None,
        'strict_db': False,
    },
    'trend': {
        # Features to fit; empty means every requested feature
        'features': [],
        # Features that also get a per-pixel change raster (GeoTIFF)
        'change_rasters': [],
    },
    'provider': {
        'type': 'local',
        'catalog': 'data/catalog.json',
        'earthengine': {
            'project': None,
            'crs': 'EPSG:3857',
            'scale': 10,
            'max_images': 500,
            'bands': {},
        },
    },
    'paths': {
        'output': 'outputs',
        'logs': 'logs',
    },
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Load and validate the analysis configuration

    Args:
        config_path: YAML file; None uses the defaults only
        overrides: Extra values merged on top of the file

    Returns:
        Validated configuration dict
    """
    user_cfg: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config not found: {path}")
        with open(path, 'r') as f:
            user_cfg = yaml.safe_load(f) or {}
        if not isinstance(user_cfg, dict):
            raise ConfigError(f"Expected YAML mapping at {path}")
        logger.info(f"Loaded config: {path}")

    config = _deep_merge(DEFAULT_CONFIG, user_cfg)
    if overrides:
        config = _deep_merge(config, overrides)

    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigError on the first invalid setting"""
    analysis = config['analysis']

    try:
        start = to_utc(analysis['start_date'])
        end = to_utc(analysis['end_date'])
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Invalid analysis dates: {e}") from e
    if start >= end:
        raise ConfigError(f"start_date {analysis['start_date']} must be before end_date {analysis['end_date']}")

    if analysis['reducer'] not in REDUCER_KINDS:
        raise ConfigError(f"Unknown reducer '{analysis['reducer']}', expected one of {REDUCER_KINDS}")
    if analysis['time_unit'] not in TIME_UNITS:
        raise ConfigError(f"Unknown time_unit '{analysis['time_unit']}', expected one of {TIME_UNITS}")
    if analysis['scale'] is not None and analysis['scale'] <= 0:
        raise ConfigError("analysis.scale must be positive")
    if int(analysis['max_workers']) < 1:
        raise ConfigError("analysis.max_workers must be at least 1")

    unknown = set(config['optical']['features']) - set(OPTICAL_FEATURES)
    if unknown:
        raise ConfigError(f"Unknown optical features {sorted(unknown)}, expected {OPTICAL_FEATURES}")
    unknown = set(config['radar']['features']) - set(RADAR_FEATURES)
    if unknown:
        raise ConfigError(f"Unknown radar features {sorted(unknown)}, expected {RADAR_FEATURES}")

    requested = set(config['optical']['features']) | set(config['radar']['features'])
    unknown = set(config['trend']['change_rasters']) - requested
    if unknown:
        raise ConfigError(f"trend.change_rasters {sorted(unknown)} are not among the requested features")

    masking = config['optical']['masking']
    if masking['strategy'] not in MASKING_STRATEGIES:
        raise ConfigError(f"Unknown masking strategy '{masking['strategy']}'")
    if masking['strategy'] == 'combined':
        bad = [s for s in masking['strategies'] if s not in MASKING_STRATEGIES or s == 'combined']
        if bad or not masking['strategies']:
            raise ConfigError(f"Invalid combined masking strategies: {masking['strategies']}")

    window = config['radar']['speckle_filter_window']
    if window is not None and (int(window) < 1 or int(window) % 2 == 0):
        raise ConfigError("radar.speckle_filter_window must be a positive odd integer")

    if config['provider']['type'] not in ('local', 'earthengine'):
        raise ConfigError(f"Unknown provider type '{config['provider']['type']}'")

    build_region(analysis['region'])


def build_region(region_cfg: Dict[str, Any]) -> Region:
    """
    Build the analysis Region from its config block

    Supported forms:
        {type: point, coordinates: [x, y], buffer: 50}
        {type: bbox, bbox: [S, W, N, E]}
        {type: geojson, geometry: {...}}
    """
    kind = region_cfg.get('type', 'point')
    try:
        if kind == 'point':
            x, y = region_cfg['coordinates']
            return Region.from_point(float(x), float(y), float(region_cfg.get('buffer') or 0))
        if kind == 'bbox':
            polygon = CoordinateTransforms.bbox_to_polygon(tuple(region_cfg['bbox']))
            return Region.from_geojson(polygon)
        if kind == 'geojson':
            return Region.from_geojson(region_cfg['geometry'])
    except (KeyError, TypeError, ValueError, AttributeError, ShapelyError) as e:
        raise ConfigError(f"Invalid region definition {region_cfg}: {e}") from e

    raise ConfigError(f"Unknown region type '{kind}'")
