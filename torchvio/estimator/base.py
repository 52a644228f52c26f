from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Union

import numpy as np
import torch


class Estimator(ABC):
    """
    Interface the dispatch loop drives.

    Implementations own the tracker and call ``Tracker.update`` from
    ``visual_meas``. Every accessor returns already committed state and may be
    called between messages.
    """

    @abstractmethod
    def visual_meas(self, ts: float, image: Union[np.ndarray, torch.Tensor]):
        """
        Process a camera frame.

        Args:
            ts: Timestamp in seconds
            image: Grayscale or color frame
        """
        pass

    @abstractmethod
    def inertial_meas(self, ts: float, gyro: np.ndarray, accel: np.ndarray):
        """
        Process an inertial sample.

        Args:
            ts: Timestamp in seconds
            gyro: Angular velocity (3,) in rad/s
            accel: Specific force (3,) in m/s^2
        """
        pass

    @abstractmethod
    def pose(self) -> np.ndarray:
        """Body-to-spatial transform as a 4x4 matrix."""
        pass

    @abstractmethod
    def camera_to_body(self) -> np.ndarray:
        """Camera-to-body transform as a 4x4 matrix."""
        pass

    @abstractmethod
    def state(self) -> np.ndarray:
        pass

    @abstractmethod
    def state_covariance(self) -> np.ndarray:
        pass

    def accel_calibration(self) -> np.ndarray:
        return np.eye(3)

    def gyro_calibration(self) -> np.ndarray:
        return np.eye(3)

    @abstractmethod
    def instate_features(
        self, max_pts: int
    ) -> Tuple[int, np.ndarray, np.ndarray, List[int]]:
        """
        Landmarks currently held in the state.

        Args:
            max_pts: Upper bound on the number of returned landmarks

        Returns:
            Tuple of (count, positions (N, D), covariances (N, D, D), ids)
        """
        pass

    def canvas(self) -> Optional[np.ndarray]:
        """Annotated image of the latest frame, if the estimator renders one."""
        return None
