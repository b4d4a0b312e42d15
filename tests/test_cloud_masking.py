"""
Unit Tests for cloud masking and the mask applier
"""

import numpy as np
import pytest

from sentinel_trends.core import Collection, Mask
from sentinel_trends.exceptions import MaskingFailure
from sentinel_trends.preprocessing.cloud_masking import (
    CloudProbabilityMask,
    CombinedMask,
    MaskApplier,
    MaskingCapability,
    QABitmaskMask,
    SceneClassificationMask,
    masking_from_config
)


class BrokenMask(MaskingCapability):
    def compute(self, acquisition):
        raise RuntimeError("model not loaded")


class WrongShapeMask(MaskingCapability):
    def compute(self, acquisition):
        return Mask(np.ones((2, 2), dtype=bool))


class TestCapabilities:
    """Tests for the bundled masking strategies"""

    def test_scene_classification(self, make_acquisition):
        scl = np.array([
            [4, 5, 6, 7],
            [8, 9, 10, 3],
            [4, 4, 11, 0],
            [4, 4, 4, 4],
        ])
        acq = make_acquisition(bands={'B4': 1.0, 'SCL': scl})

        mask = SceneClassificationMask().compute(acq)

        assert mask.valid[0].tolist() == [True, True, True, True]
        assert mask.valid[1].tolist() == [False, False, False, False]
        assert mask.valid[2].tolist() == [True, True, False, False]

    def test_qa60_bits(self, make_acquisition):
        qa = np.zeros((4, 4), dtype=np.uint16)
        qa[0, 0] = 1 << 10
        qa[0, 1] = 1 << 11
        qa[0, 2] = 1 << 3
        acq = make_acquisition(bands={'QA60': qa})

        mask = QABitmaskMask().compute(acq)

        assert mask.valid[0].tolist() == [False, False, True, True]
        assert mask.valid.sum() == 14

    def test_cloud_probability(self, make_acquisition):
        prob = np.full((4, 4), 10.0)
        prob[3, 3] = 40.0
        acq = make_acquisition(bands={'MSK_CLDPRB': prob})

        mask = CloudProbabilityMask(threshold=40).compute(acq)

        assert not mask.valid[3, 3]
        assert mask.valid.sum() == 15

    def test_combined_is_intersection(self, make_acquisition):
        scl = np.full((4, 4), 4)
        scl[0, 0] = 9
        prob = np.zeros((4, 4))
        prob[1, 1] = 90.0
        acq = make_acquisition(bands={'SCL': scl, 'MSK_CLDPRB': prob})

        mask = CombinedMask([SceneClassificationMask(), CloudProbabilityMask()]).compute(acq)

        assert not mask.valid[0, 0]
        assert not mask.valid[1, 1]
        assert mask.valid.sum() == 14

    def test_missing_source_band(self, make_acquisition):
        acq = make_acquisition(bands={'B4': 1.0})
        with pytest.raises(MaskingFailure):
            SceneClassificationMask().compute(acq)

    def test_from_config(self):
        capability = masking_from_config({'strategy': 'combined', 'strategies': ['scl', 'qa60']})

        assert isinstance(capability, CombinedMask)
        assert [type(c) for c in capability.capabilities] == [SceneClassificationMask, QABitmaskMask]

        with pytest.raises(ValueError):
            masking_from_config({'strategy': 'fmask'})


class TestMaskApplier:
    """Tests for MaskApplier"""

    def test_attaches_mask_and_keeps_metadata(self, make_acquisition):
        scl = np.full((4, 4), 4)
        scl[2, 2] = 8
        acq = make_acquisition(
            bands={'B4': 1.0, 'SCL': scl},
            properties={'CLOUDY_PIXEL_PERCENTAGE': 3.2}
        )

        masked = MaskApplier(SceneClassificationMask()).apply(acq)

        assert masked.mask.valid.sum() == 15
        assert masked.id == acq.id
        assert masked.timestamp == acq.timestamp
        assert masked.properties['CLOUDY_PIXEL_PERCENTAGE'] == 3.2
        assert masked.bands['B4'] is acq.bands['B4']
        assert acq.mask is None

    def test_intersects_existing_mask(self, make_acquisition):
        existing = np.ones((4, 4), dtype=bool)
        existing[0, 0] = False
        scl = np.full((4, 4), 4)
        scl[3, 3] = 9
        acq = make_acquisition(bands={'SCL': scl}, mask=existing)

        masked = MaskApplier(SceneClassificationMask()).apply(acq)

        assert masked.mask.valid.sum() == 14

    def test_capability_error_becomes_masking_failure(self, make_acquisition):
        acq = make_acquisition(bands={'B4': 1.0})
        applier = MaskApplier(BrokenMask())

        with pytest.raises(MaskingFailure):
            applier.apply(acq)
        assert applier.try_apply(acq) is None

    def test_shape_mismatch_rejected(self, make_acquisition):
        acq = make_acquisition(bands={'B4': 1.0})
        with pytest.raises(MaskingFailure):
            MaskApplier(WrongShapeMask()).apply(acq)

    def test_apply_collection_drops_failures(self, make_acquisition):
        good = make_acquisition('good', bands={'SCL': 4.0})
        bad = make_acquisition('bad', bands={'B4': 1.0})
        collection = Collection('S2', (good, bad))

        masked = MaskApplier(SceneClassificationMask()).apply_collection(collection)

        assert masked.ids == ['good']
        assert masked[0].mask is not None
