"""
Observers fed by ``EstimatorProcess``.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Union

import cv2
import numpy as np
from scipy.spatial.transform import Rotation


class CanvasPublisher(ABC):
    @abstractmethod
    def publish(self, ts: float, image: np.ndarray):
        pass


class PosePublisher(ABC):
    @abstractmethod
    def publish(self, ts: float, pose: np.ndarray, extra: np.ndarray):
        """
        Publish a body pose.

        Args:
            ts: Timestamp in seconds
            pose: 4x4 body-to-spatial transform
            extra: State covariance for visual messages, camera-to-body
                transform for inertial messages
        """
        pass


class MapPublisher(ABC):
    @abstractmethod
    def publish(
        self,
        ts: float,
        npts: int,
        positions: np.ndarray,
        covariances: np.ndarray,
        ids: List[int],
    ):
        pass


class FullStatePublisher(ABC):
    @abstractmethod
    def publish(
        self,
        ts: float,
        state: np.ndarray,
        accel_calibration: np.ndarray,
        gyro_calibration: np.ndarray,
        covariance: np.ndarray,
    ):
        pass


class CallbackPublisher(CanvasPublisher, PosePublisher, MapPublisher, FullStatePublisher):
    """Forwards every publish call to a callable."""

    def __init__(self, callback: Callable[..., None]):
        self.callback = callback

    def publish(self, *args):
        self.callback(*args)


class TrajectoryWriter(PosePublisher):
    """
    Writes poses as TUM trajectory lines: ``ts tx ty tz qx qy qz qw``.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w")
        self.num_poses = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    def publish(self, ts: float, pose: np.ndarray, extra: np.ndarray = None):
        pose = np.asarray(pose, dtype=np.float64)
        t = pose[:3, 3]
        q = Rotation.from_matrix(pose[:3, :3]).as_quat()
        self._file.write(
            f"{ts:.9f} {t[0]:.9f} {t[1]:.9f} {t[2]:.9f} "
            f"{q[0]:.9f} {q[1]:.9f} {q[2]:.9f} {q[3]:.9f}\n"
        )
        self.num_poses += 1

    def close(self):
        if not self._file.closed:
            self._file.close()
            self.logger.info(f"Wrote {self.num_poses} poses to {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ImageDirectoryWriter(CanvasPublisher):
    """Saves canvases as PNG files named by their nanosecond timestamp."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def publish(self, ts: float, image: np.ndarray):
        path = self.directory / f"{int(round(ts * 1e9))}.png"
        if not cv2.imwrite(str(path), image):
            raise IOError(f"Could not write {path}")
