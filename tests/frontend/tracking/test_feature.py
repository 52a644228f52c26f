import unittest

import numpy as np

from torchvio.frontend.tracking import Feature, FeatureIdAllocator, TrackStatus


class TestFeature(unittest.TestCase):
    def test_new_feature(self):
        feature = Feature(4, 10.0, 20.0)

        assert feature.status == TrackStatus.NEW
        assert feature.position == (10.0, 20.0)
        assert feature.age == 1
        assert feature.get_motion_vector() is None
        assert not feature.has_moved()

    def test_motion_vector(self):
        feature = Feature(0, 10.0, 20.0)
        feature.update(13.0, 16.0)

        assert feature.get_motion_vector() == (3.0, -4.0)
        assert feature.has_moved()
        assert feature.has_moved(threshold=4.9)
        assert not feature.has_moved(threshold=5.0)

        feature.update(13.0, 16.0)
        assert feature.get_motion_vector() == (0.0, 0.0)
        assert not feature.has_moved()

    def test_history_is_bounded(self):
        feature = Feature(0, 0.0, 0.0, history=3)
        for i in range(1, 6):
            feature.update(float(i), 0.0)

        assert list(feature.positions) == [(3.0, 0.0), (4.0, 0.0), (5.0, 0.0)]
        assert feature.age == 6

    def test_recover_keeps_identity(self):
        descriptor = np.arange(32, dtype=np.uint8)
        feature = Feature(7, 10.0, 10.0)
        feature.mark_dropped()

        feature.recover(12.0, 11.0, descriptor)

        assert feature.feature_id == 7
        assert feature.status == TrackStatus.TRACKED
        assert feature.num_recoveries == 1
        np.testing.assert_array_equal(feature.descriptor, descriptor)

    def test_landmark_annotation(self):
        feature = Feature(0, 1.0, 2.0)
        assert feature.landmark is None

        point = np.array([0.5, -0.2, 3.0])
        feature.set_landmark(point)

        assert feature.landmark is point
        feature.update(2.0, 2.0)
        assert feature.landmark is point


def test_id_allocator_never_repeats():
    allocator = FeatureIdAllocator(start=5)
    ids = [allocator.next_id() for _ in range(4)]
    assert ids == [5, 6, 7, 8]
