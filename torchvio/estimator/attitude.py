"""
Minimal gyro-driven estimator.

Integrates angular velocity into an orientation, keeps the active tracks of
the front-end as its 2-D "map", and exposes a small tilt-correction problem
that the background optimizer can refine using quasi-static accelerometer
samples.
"""
import logging
from collections import deque
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import torch
from scipy.spatial.transform import Rotation

from ..backend.optimization import OptimizationProblem
from ..frontend.tracking import Tracker, TrackerUpdate, TrackStatus
from ..visualize import draw_tracks
from .base import Estimator

GRAVITY = 9.81


def skew(v: np.ndarray) -> np.ndarray:
    return np.array(
        [[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]], dtype=np.float64
    )


class TiltCorrectionProblem(OptimizationProblem):
    """
    Small-angle correction aligning measured gravity with the spatial z axis.

    The single variable ``delta`` is a rotation vector applied on the left of
    the current orientation. Residuals are linearized around the stored
    spatial-frame gravity directions, so each solve is a linear least squares
    problem; ``set_values`` commits the correction and restarts from zero.

    Rotation about gravity is unobservable, a weak prior on ``delta`` keeps
    that component at zero.
    """

    def __init__(
        self, estimator: "AttitudeEstimator", weight: float = 1.0, prior_weight: float = 1e-2
    ):
        self.estimator = estimator
        self.weight = weight
        self.prior_weight = prior_weight
        self.delta = torch.zeros(3, dtype=torch.float64)

    def _directions(self) -> torch.Tensor:
        dirs = list(self.estimator.gravity_directions)
        if not dirs:
            return torch.zeros((0, 3), dtype=torch.float64)
        return torch.as_tensor(np.stack(dirs), dtype=torch.float64)

    def compute_residuals(self, variables: Dict[str, torch.Tensor]) -> torch.Tensor:
        delta = variables["delta"]
        v = self._directions()
        up = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
        # R(delta) v ~ v + delta x v
        rotated = v + torch.cross(delta.expand_as(v), v, dim=1)
        return torch.cat(
            [self.weight * (rotated - up).reshape(-1), self.prior_weight * delta]
        )

    def compute_jacobians(self, variables: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        v = self._directions().numpy()
        blocks = [-self.weight * skew(vi) for vi in v]
        blocks.append(self.prior_weight * np.eye(3))
        return {"delta": torch.as_tensor(np.vstack(blocks), dtype=torch.float64)}

    def get_variable_dimensions(self) -> Dict[str, int]:
        return {"delta": 3}

    def get_initial_values(self) -> Dict[str, torch.Tensor]:
        return {"delta": self.delta.clone()}

    def set_values(self, variables: Dict[str, torch.Tensor]):
        self.estimator.apply_correction(variables["delta"].detach().cpu().numpy())
        self.delta = torch.zeros(3, dtype=torch.float64)


class AttitudeEstimator(Estimator):
    """Gyro attitude integration around a feature tracker."""

    def __init__(self, tracker: Tracker, config: Dict = None):
        """
        Initialize the estimator.

        Args:
            tracker: Front-end driven from ``visual_meas``
            config: Configuration dictionary with the following keys:
                - gyro_noise: Gyro white noise density (rad/s/sqrt(Hz))
                - pixel_noise: Standard deviation of track positions in pixels
                - camera_to_body: 4x4 camera-to-body transform (identity if None)
                - gravity_window: Number of accelerometer samples kept for tilt correction
                - static_tolerance: Max deviation of |accel| from gravity to use a sample
        """
        config = config if config is not None else {}
        self.tracker = tracker
        self.gyro_noise = float(config.get("gyro_noise", 1e-3))
        self.pixel_noise = float(config.get("pixel_noise", 1.0))
        self.static_tolerance = float(config.get("static_tolerance", 0.5))
        gravity_window = int(config.get("gravity_window", 200))

        if self.gyro_noise < 0:
            raise ValueError(f"gyro_noise must be non-negative, got {self.gyro_noise}")
        if self.pixel_noise <= 0:
            raise ValueError(f"pixel_noise must be positive, got {self.pixel_noise}")
        if gravity_window <= 0:
            raise ValueError(f"gravity_window must be positive, got {gravity_window}")

        gbc = config.get("camera_to_body")
        self.gbc = np.eye(4) if gbc is None else np.asarray(gbc, dtype=np.float64)
        if self.gbc.shape != (4, 4):
            raise ValueError(f"camera_to_body must be 4x4, got shape {self.gbc.shape}")

        self.orientation = Rotation.identity()
        self.covariance = np.zeros((3, 3))
        self.last_imu_ts: Optional[float] = None
        self.last_image_ts: Optional[float] = None
        self.last_image = None
        self.last_update: Optional[TrackerUpdate] = None
        self.gravity_directions = deque(maxlen=gravity_window)
        self.num_frames = 0
        self.num_imu = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    def visual_meas(self, ts: float, image: Union[np.ndarray, torch.Tensor]):
        self.last_update = self.tracker.update(image)
        self.last_image = image
        self.last_image_ts = ts
        self.num_frames += 1

    def inertial_meas(self, ts: float, gyro: np.ndarray, accel: np.ndarray):
        gyro = np.asarray(gyro, dtype=np.float64)
        accel = np.asarray(accel, dtype=np.float64)

        if self.last_imu_ts is not None:
            dt = ts - self.last_imu_ts
            if dt > 0:
                step = Rotation.from_rotvec(gyro * dt)
                # Attitude error propagates through the transpose of the increment
                phi = step.inv().as_matrix()
                self.orientation = self.orientation * step
                self.covariance = (
                    phi @ self.covariance @ phi.T
                    + (self.gyro_noise ** 2) * dt * np.eye(3)
                )
            elif dt < 0:
                self.logger.warning(
                    f"Dropping out of order inertial sample at {ts:.6f} (last {self.last_imu_ts:.6f})"
                )
                return
        self.last_imu_ts = ts
        self.num_imu += 1

        norm = np.linalg.norm(accel)
        if abs(norm - GRAVITY) < self.static_tolerance:
            self.gravity_directions.append(self.orientation.apply(accel / norm))

    def apply_correction(self, delta: np.ndarray):
        """Rotate the orientation (and stored gravity directions) by ``delta``."""
        correction = Rotation.from_rotvec(delta)
        self.orientation = correction * self.orientation
        self.gravity_directions = deque(
            (correction.apply(v) for v in self.gravity_directions),
            maxlen=self.gravity_directions.maxlen,
        )

    def tilt_problem(self, weight: float = 1.0) -> TiltCorrectionProblem:
        return TiltCorrectionProblem(self, weight)

    def pose(self) -> np.ndarray:
        gsb = np.eye(4)
        gsb[:3, :3] = self.orientation.as_matrix()
        return gsb

    def camera_to_body(self) -> np.ndarray:
        return self.gbc.copy()

    def state(self) -> np.ndarray:
        return self.orientation.as_rotvec()

    def state_covariance(self) -> np.ndarray:
        return self.covariance.copy()

    def active_features(self) -> List:
        return [
            f
            for f in self.tracker.features
            if f.status in (TrackStatus.NEW, TrackStatus.TRACKED)
        ]

    def instate_features(
        self, max_pts: int
    ) -> Tuple[int, np.ndarray, np.ndarray, List[int]]:
        features = self.active_features()[: max(0, max_pts)]
        npts = len(features)
        positions = np.array([f.position for f in features], dtype=np.float64).reshape(npts, 2)
        covariances = np.tile((self.pixel_noise ** 2) * np.eye(2), (npts, 1, 1))
        ids = [f.feature_id for f in features]
        return npts, positions, covariances, ids

    def canvas(self) -> Optional[np.ndarray]:
        if self.last_image is None:
            return None
        return draw_tracks(self.last_image, self.active_features())
