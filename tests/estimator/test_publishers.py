from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from torchvio.estimator import (
    CallbackPublisher,
    EstimatorProcess,
    ImageDirectoryWriter,
    TrajectoryWriter,
    VisualMeas,
)


def test_trajectory_writer_tum_lines(tmp_path):
    path = tmp_path / "out" / "trajectory.txt"
    pose = np.eye(4)
    pose[:3, :3] = Rotation.from_euler("z", 90, degrees=True).as_matrix()
    pose[:3, 3] = [1.0, 2.0, 3.0]

    with TrajectoryWriter(path) as writer:
        writer.publish(0.5, np.eye(4), np.eye(3))
        writer.publish(1.0, pose, np.eye(3))

    lines = path.read_text().splitlines()
    assert len(lines) == 2

    first = [float(v) for v in lines[0].split()]
    assert first == pytest.approx([0.5, 0, 0, 0, 0, 0, 0, 1])

    second = [float(v) for v in lines[1].split()]
    assert second[:4] == pytest.approx([1.0, 1.0, 2.0, 3.0])
    assert second[4:] == pytest.approx([0, 0, np.sqrt(0.5), np.sqrt(0.5)], abs=1e-6)


def test_image_directory_writer(tmp_path):
    writer = ImageDirectoryWriter(tmp_path / "canvas")
    image = np.full((6, 8, 3), 200, dtype=np.uint8)

    writer.publish(1.25, image)

    path = tmp_path / "canvas" / "1250000000.png"
    assert path.exists()
    np.testing.assert_array_equal(cv2.imread(str(path)), image)


def test_callback_publisher_inside_process():
    received = []
    estimator = MagicMock()
    estimator.instate_features.return_value = (1, np.zeros((1, 2)), np.eye(2)[None], [4])
    process = EstimatorProcess(
        estimator, map_publisher=CallbackPublisher(lambda *args: received.append(args))
    )

    process.enqueue(VisualMeas(3.0, np.zeros((4, 4), np.uint8)))
    process.drain()

    assert len(received) == 1
    ts, npts, positions, covariances, ids = received[0]
    assert (ts, npts, ids) == (3.0, 1, [4])
