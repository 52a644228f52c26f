import itertools
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import numpy as np


class TrackStatus(Enum):
    """Status of a feature track."""

    NEW = 0  # First detection, created in the current frame
    TRACKED = 1  # Successfully propagated (or recovered) in the current frame
    DROPPED = 2  # Lost by optical flow, candidate for identity recovery
    DESTROYED = 3  # Removed for good, identifier retired


class Feature:
    """A 2-D point followed across frames under a stable identifier."""

    def __init__(
        self,
        feature_id: int,
        x: float,
        y: float,
        descriptor: Optional[np.ndarray] = None,
        history: int = 16,
        size: float = 31.0,
    ):
        """
        Initialize a feature.

        Args:
            feature_id: Unique identifier for this track
            x, y: Initial image position
            descriptor: Appearance descriptor (optional)
            history: Number of past positions to retain
            size: Keypoint diameter used when re-describing the feature
        """
        self.feature_id = feature_id
        self.x = float(x)
        self.y = float(y)
        self.descriptor = descriptor
        self.size = float(size)
        self.status = TrackStatus.NEW
        self.age = 1  # Number of frames this feature has been observed
        self.num_recoveries = 0
        self.positions = deque([(self.x, self.y)], maxlen=max(2, history))
        self.landmark = None  # 3-D state annotation owned by the estimator

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def update(self, x: float, y: float, descriptor: Optional[np.ndarray] = None):
        """
        Update the feature with a new observation.

        Args:
            x, y: New image position
            descriptor: Refreshed descriptor (optional)
        """
        self.x = float(x)
        self.y = float(y)
        if descriptor is not None:
            self.descriptor = descriptor
        self.status = TrackStatus.TRACKED
        self.age += 1
        self.positions.append((self.x, self.y))

    def recover(self, x: float, y: float, descriptor: Optional[np.ndarray]):
        """Bring a dropped feature back at a new detection, keeping its identity."""
        self.update(x, y, descriptor)
        self.num_recoveries += 1

    def mark_dropped(self):
        self.status = TrackStatus.DROPPED

    def mark_destroyed(self):
        self.status = TrackStatus.DESTROYED

    def set_landmark(self, landmark: Any):
        """
        Attach estimator state to this feature.

        Args:
            landmark: Opaque estimator-side annotation (e.g. a 3-D point)
        """
        self.landmark = landmark

    def get_motion_vector(self) -> Optional[Tuple[float, float]]:
        """
        Get motion vector between the last two positions.

        Returns:
            Tuple of (dx, dy) or None if the feature has only one position
        """
        if len(self.positions) < 2:
            return None

        last_pos = self.positions[-1]
        prev_pos = self.positions[-2]
        return (last_pos[0] - prev_pos[0], last_pos[1] - prev_pos[1])

    def has_moved(self, threshold: float = 1.0) -> bool:
        """
        Check if the feature has moved.

        Args:
            threshold: Minimum distance to consider as movement

        Returns:
            True if feature has moved, False otherwise
        """
        motion = self.get_motion_vector()
        if motion is None:
            return False

        dx, dy = motion
        return (dx**2 + dy**2) > threshold**2

    def __repr__(self) -> str:
        return (
            f"Feature(id={self.feature_id}, x={self.x:.2f}, y={self.y:.2f}, "
            f"status={self.status.name})"
        )


class FeatureIdAllocator:
    """Hands out feature identifiers; an identifier is never handed out twice."""

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)

    def next_id(self) -> int:
        return next(self._counter)


@dataclass
class TrackerUpdate:
    """Summary of one ``Tracker.update`` call."""

    frame_idx: int
    num_active: int
    initialized: bool = False  # True if this frame initialized the tracker
    tracked_ids: List[int] = field(default_factory=list)
    dropped_ids: List[int] = field(default_factory=list)
    recovered_ids: List[int] = field(default_factory=list)
    new_ids: List[int] = field(default_factory=list)
    destroyed_ids: List[int] = field(default_factory=list)
