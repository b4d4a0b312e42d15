"""Per-acquisition preprocessing: masking, optical indices, radar features"""

from .cloud_masking import (
    MaskingCapability,
    NoMask,
    SceneClassificationMask,
    QABitmaskMask,
    CloudProbabilityMask,
    CombinedMask,
    MaskApplier,
    masking_from_config
)
from .optical_indices import OpticalIndexEngine, DEFAULT_BAND_ROLES, REFLECTANCE_SCALE
from .radar_processor import RadarProcessor, RADAR_FEATURES, lee_filter

__all__ = [
    'MaskingCapability',
    'NoMask',
    'SceneClassificationMask',
    'QABitmaskMask',
    'CloudProbabilityMask',
    'CombinedMask',
    'MaskApplier',
    'masking_from_config',
    'OpticalIndexEngine',
    'DEFAULT_BAND_ROLES',
    'REFLECTANCE_SCALE',
    'RadarProcessor',
    'RADAR_FEATURES',
    'lee_filter'
]
