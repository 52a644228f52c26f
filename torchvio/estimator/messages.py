"""
Timestamped messages consumed by the dispatch loop.
"""
import threading
from enum import Enum
from typing import TYPE_CHECKING, Union

import numpy as np
import torch

if TYPE_CHECKING:
    from .base import Estimator


class MessageKind(Enum):
    """Message categories routed by the dispatch loop."""

    VISUAL = 0
    INERTIAL = 1
    BLOCK = 2
    TERMINATE = 3


class EstimatorMessage:
    """Base class of everything placed on the dispatch queue."""

    kind: MessageKind = None

    def __init__(self, ts: float):
        self.ts = float(ts)

    def execute(self, estimator: "Estimator"):
        """Apply the message to the estimator. Control messages do nothing here."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ts={self.ts:.6f})"


class VisualMeas(EstimatorMessage):
    """A camera frame."""

    kind = MessageKind.VISUAL

    def __init__(self, ts: float, image: Union[np.ndarray, torch.Tensor], viz: bool = False):
        super().__init__(ts)
        self.image = image
        self.viz = viz

    def execute(self, estimator: "Estimator"):
        estimator.visual_meas(self.ts, self.image)


class InertialMeas(EstimatorMessage):
    """A gyroscope and accelerometer sample."""

    kind = MessageKind.INERTIAL

    def __init__(self, ts: float, gyro, accel, viz: bool = False):
        super().__init__(ts)
        self.gyro = np.asarray(gyro, dtype=np.float64).reshape(3)
        self.accel = np.asarray(accel, dtype=np.float64).reshape(3)
        self.viz = viz

    def execute(self, estimator: "Estimator"):
        estimator.inertial_meas(self.ts, self.gyro, self.accel)


class BlockMessage(EstimatorMessage):
    """
    Barrier used by ``Process.wait``.

    Queued at +inf so that it drains after every message enqueued before it.
    """

    kind = MessageKind.BLOCK

    def __init__(self, ts: float = float("inf")):
        super().__init__(ts)
        self.ready = threading.Event()


class TerminateMessage(EstimatorMessage):
    """Stops the worker thread once every earlier message has been handled."""

    kind = MessageKind.TERMINATE

    def __init__(self, ts: float = float("inf")):
        super().__init__(ts)
