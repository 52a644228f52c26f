"""
Estimator interface and the message dispatch loop that drives it.
"""

from .attitude import AttitudeEstimator, TiltCorrectionProblem
from .base import Estimator
from .messages import (
    BlockMessage,
    EstimatorMessage,
    InertialMeas,
    MessageKind,
    TerminateMessage,
    VisualMeas,
)
from .process import EstimatorProcess, Process, ProcessError
from .publishers import (
    CallbackPublisher,
    CanvasPublisher,
    FullStatePublisher,
    ImageDirectoryWriter,
    MapPublisher,
    PosePublisher,
    TrajectoryWriter,
)

__all__ = [
    "Estimator",
    "AttitudeEstimator",
    "TiltCorrectionProblem",
    "MessageKind",
    "EstimatorMessage",
    "VisualMeas",
    "InertialMeas",
    "BlockMessage",
    "TerminateMessage",
    "Process",
    "EstimatorProcess",
    "ProcessError",
    "CanvasPublisher",
    "PosePublisher",
    "MapPublisher",
    "FullStatePublisher",
    "CallbackPublisher",
    "TrajectoryWriter",
    "ImageDirectoryWriter",
]
