"""
Cloud / Shadow / Snow Masking
Attaches a validity mask to each optical acquisition before any index is computed

The masking algorithm itself is pluggable: anything implementing
MaskingCapability.compute(acquisition) -> Mask can be injected. A few
Sentinel-2 strategies are bundled (scene classification, QA60 bits,
cloud probability, and a combination of them).

Author: Dorjoy Acharjee
"""

import numpy as np
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Any

from ..core import Acquisition, Collection, Mask
from ..exceptions import MaskingFailure

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Sentinel-2 SCL: 4 vegetation, 5 bare soil, 6 water, 7 unclassified.
# Excluded: 3 cloud shadow, 8/9 cloud, 10 cirrus, 11 snow, 0/1 no data/defective.
DEFAULT_SCL_VALID_CLASSES = (4, 5, 6, 7)

# QA60 bit 10 = opaque clouds, bit 11 = cirrus
DEFAULT_QA_BITS = (10, 11)


def _source_band(acquisition: Acquisition, band: str) -> Tuple[np.ndarray, np.ndarray]:
    """Raw values of a masking source band and its own no-data mask"""
    if band not in acquisition.bands:
        raise MaskingFailure(acquisition.id, f"source band {band} missing")
    raw = acquisition.bands[band]
    return np.ma.getdata(raw), np.ma.getmaskarray(raw)


class MaskingCapability(ABC):
    """Produces a validity mask for one acquisition"""

    @abstractmethod
    def compute(self, acquisition: Acquisition) -> Mask:
        """Return a Mask aligned with the acquisition raster (True = usable)"""


class NoMask(MaskingCapability):
    """Every pixel valid"""

    def compute(self, acquisition: Acquisition) -> Mask:
        if acquisition.shape is None:
            raise MaskingFailure(acquisition.id, "acquisition has no bands")
        return Mask.all_valid(acquisition.shape)


class SceneClassificationMask(MaskingCapability):
    """
    Mask from the Sentinel-2 Scene Classification Layer

    Args:
        band: SCL band name
        valid_classes: Valid (non-cloud) class IDs
    """

    def __init__(self, band: str = 'SCL', valid_classes: Sequence[int] = DEFAULT_SCL_VALID_CLASSES):
        self.band = band
        self.valid_classes = list(valid_classes)

    def compute(self, acquisition: Acquisition) -> Mask:
        scl, nodata = _source_band(acquisition, self.band)
        return Mask(np.isin(scl, self.valid_classes) & ~nodata)


class QABitmaskMask(MaskingCapability):
    """Mask from the QA60 bitmask: all listed bits must be clear"""

    def __init__(self, band: str = 'QA60', bits: Sequence[int] = DEFAULT_QA_BITS):
        self.band = band
        self.bits = list(bits)

    def compute(self, acquisition: Acquisition) -> Mask:
        qa, nodata = _source_band(acquisition, self.band)
        qa = qa.astype(np.int64)

        clear = np.ones(qa.shape, dtype=bool)
        for bit in self.bits:
            clear &= (qa & (1 << bit)) == 0

        return Mask(clear & ~nodata)


class CloudProbabilityMask(MaskingCapability):
    """Mask from a per-pixel cloud probability band (0-100)"""

    def __init__(self, band: str = 'MSK_CLDPRB', threshold: float = 40):
        self.band = band
        self.threshold = threshold

    def compute(self, acquisition: Acquisition) -> Mask:
        probability, nodata = _source_band(acquisition, self.band)
        with np.errstate(invalid='ignore'):
            clear = probability.astype(np.float64) < self.threshold
        return Mask(clear & ~nodata)


class CombinedMask(MaskingCapability):
    """A pixel is valid only if every wrapped capability says so"""

    def __init__(self, capabilities: Iterable[MaskingCapability]):
        self.capabilities = list(capabilities)
        if not self.capabilities:
            raise ValueError("CombinedMask needs at least one capability")

    def compute(self, acquisition: Acquisition) -> Mask:
        masks = [c.compute(acquisition) for c in self.capabilities]
        combined = masks[0]
        for mask in masks[1:]:
            combined = combined & mask
        return combined


def masking_from_config(masking_cfg: Dict[str, Any]) -> MaskingCapability:
    """Build the configured masking strategy"""
    strategy = masking_cfg.get('strategy', 'none')

    if strategy == 'none':
        return NoMask()
    if strategy == 'scl':
        return SceneClassificationMask(
            band=masking_cfg.get('scl_band', 'SCL'),
            valid_classes=masking_cfg.get('valid_classes', DEFAULT_SCL_VALID_CLASSES)
        )
    if strategy == 'qa60':
        return QABitmaskMask(
            band=masking_cfg.get('qa_band', 'QA60'),
            bits=masking_cfg.get('qa_bits', DEFAULT_QA_BITS)
        )
    if strategy == 'cloud_probability':
        return CloudProbabilityMask(
            band=masking_cfg.get('probability_band', 'MSK_CLDPRB'),
            threshold=masking_cfg.get('probability_threshold', 40)
        )
    if strategy == 'combined':
        return CombinedMask(
            masking_from_config(dict(masking_cfg, strategy=s))
            for s in masking_cfg.get('strategies', [])
        )

    raise ValueError(f"Unknown masking strategy: {strategy}")


class MaskApplier:
    """Runs a masking capability once per acquisition and attaches the result"""

    def __init__(self, capability: Optional[MaskingCapability] = None):
        self.capability = capability or NoMask()

    def apply(self, acquisition: Acquisition) -> Acquisition:
        """
        Attach a mask to one acquisition

        Raises:
            MaskingFailure: the capability failed or returned a misaligned mask
        """
        try:
            mask = self.capability.compute(acquisition)
        except MaskingFailure:
            raise
        except Exception as e:
            # The capability is a black box; any failure drops just this acquisition
            raise MaskingFailure(acquisition.id, f"{type(e).__name__}: {e}") from e

        if not isinstance(mask, Mask):
            try:
                mask = Mask(np.asarray(mask))
            except ValueError as e:
                raise MaskingFailure(acquisition.id, str(e)) from e

        if mask.shape != acquisition.shape:
            raise MaskingFailure(
                acquisition.id,
                f"mask shape {mask.shape} does not match raster shape {acquisition.shape}"
            )

        if acquisition.mask is not None:
            mask = acquisition.mask & mask

        logger.debug(f"{acquisition.id}: {mask.valid_fraction:.1%} valid pixels")
        return acquisition.with_mask(mask)

    def try_apply(self, acquisition: Acquisition) -> Optional[Acquisition]:
        """apply(), but log and return None when masking fails"""
        try:
            return self.apply(acquisition)
        except MaskingFailure as e:
            logger.warning(f"Dropping acquisition: {e}")
            return None

    def apply_collection(self, collection: Collection) -> Collection:
        """Mask every acquisition, dropping the ones that fail"""
        masked: List[Acquisition] = []
        for acquisition in collection:
            result = self.try_apply(acquisition)
            if result is not None:
                masked.append(result)

        dropped = len(collection) - len(masked)
        if dropped:
            logger.warning(f"{collection.product_id}: dropped {dropped}/{len(collection)} acquisitions during masking")

        return collection.with_acquisitions(masked)
