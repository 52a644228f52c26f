import unittest
from unittest.mock import MagicMock

import numpy as np

from torchvio import create_system
from torchvio.backend.optimization import PeriodicSolver
from torchvio.estimator import InertialMeas, VisualMeas
from torchvio.frontend.tracking import OpticalFlowType


class TestCreateSystem(unittest.TestCase):
    def test_default_system(self):
        system = create_system()

        assert system.estimator.tracker is system.tracker
        assert system.process.estimator is system.estimator
        assert system.optimizer.problem is not None
        assert system.solver is None
        assert system.tracker.optflow_class == OpticalFlowType.LUCAS_KANADE
        system.close()

    def test_configuration_is_forwarded(self):
        system = create_system(
            {
                "tracker": {
                    "optflow_class": "farneback",
                    "num_features_min": 20,
                    "num_features_max": 40,
                },
                "process": {"max_pts_to_publish": 5},
                "optimizer": {"period": 10.0, "iterations_per_solve": 2},
            }
        )

        assert system.tracker.optflow_class == OpticalFlowType.FARNEBACK
        assert system.tracker.num_features_max == 40
        assert system.process.max_pts_to_publish == 5
        assert isinstance(system.solver, PeriodicSolver)
        assert system.solver.lock is system.process.state_lock
        assert system.solver.iterations == 2

    def test_end_to_end(self):
        pose = MagicMock()
        map_publisher = MagicMock()
        system = create_system(
            {"tracker": {"num_features_max": 30, "num_features_min": 10}},
            pose_publisher=pose,
            map_publisher=map_publisher,
        )
        rng = np.random.default_rng(1)
        image = (rng.random((120, 160)) * 255).astype(np.uint8)

        with system:
            # Queued before the worker starts so ordering is by timestamp alone
            system.enqueue(VisualMeas(0.1, np.roll(image, 1, axis=1)))
            system.enqueue(VisualMeas(0.0, image))
            system.enqueue(InertialMeas(0.05, [0, 0, 0.2], [0, 0, 9.81]))
            system.start()
            system.process.wait()

        assert system.tracker.frame_idx == 2
        assert system.estimator.num_imu == 1
        assert [c[0][0] for c in pose.publish.call_args_list] == [0.0, 0.1]
        ts, npts, positions, covariances, ids = map_publisher.publish.call_args[0]
        assert npts == len(ids) == len(positions)
        assert 0 < npts <= 30

    def test_full_queue_is_flushed_before_enqueue(self):
        system = create_system(
            {
                "tracker": {"num_features_max": 30, "num_features_min": 10},
                "process": {"max_queued": 2},
            }
        )
        image = np.zeros((60, 80), dtype=np.uint8)

        system.enqueue(VisualMeas(0.0, image))
        system.enqueue(VisualMeas(0.1, image))
        assert system.tracker.frame_idx == 0

        system.enqueue(VisualMeas(0.2, image))

        assert system.tracker.frame_idx == 2
        assert len(system.process) == 1
        system.close()

    def test_bounded_queue_with_worker(self):
        system = create_system({"process": {"max_queued": 1}})
        image = np.zeros((60, 80), dtype=np.uint8)

        with system:
            system.start()
            for i in range(5):
                system.enqueue(VisualMeas(0.1 * i, image))
                assert len(system.process) <= 1
            system.process.wait()

        assert system.tracker.frame_idx == 5

    def test_invalid_queue_bound(self):
        with self.assertRaises(ValueError):
            create_system({"process": {"max_queued": 0}})
