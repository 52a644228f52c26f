"""
torchvio

Feature-tracking front-end for visual-inertial odometry, with a
timestamp-ordered dispatch loop and a background state optimizer.

Major Components:
- Frontend: Feature detection and description, optical flow tracking with
  identity recovery of dropped tracks
- Estimator: Estimator interface, message dispatch loop and publishers
- Backend: Levenberg-Marquardt refinement of committed state
- Datasets: EuRoC sequence replay
"""
# Import frontend components
from torchvio.frontend.feature_extraction import (
    BruteForceMatcher,
    DescriptorExtractor,
    FeatureDetector,
    FeatureType,
    KeyPoint,
)
from torchvio.frontend.tracking import (
    Feature,
    OpticalFlowType,
    Tracker,
    TrackerStateError,
    TrackerUpdate,
    TrackStatus,
)

# Import estimator components
from torchvio.estimator import (
    AttitudeEstimator,
    Estimator,
    EstimatorProcess,
    InertialMeas,
    ProcessError,
    VisualMeas,
)

# Import backend components
from torchvio.backend.optimization import GraphOptimizer, PeriodicSolver

from torchvio.config import DEFAULT_SYSTEM_CONFIG, DEFAULT_TRACKER_CONFIG, load_config
from torchvio.system import System, create_system

# Version information
from torchvio.version import __version__

__all__ = [
    "__version__",
    # Frontend
    "FeatureType",
    "KeyPoint",
    "FeatureDetector",
    "DescriptorExtractor",
    "BruteForceMatcher",
    "Feature",
    "TrackStatus",
    "TrackerUpdate",
    "OpticalFlowType",
    "Tracker",
    "TrackerStateError",
    # Estimator
    "Estimator",
    "AttitudeEstimator",
    "EstimatorProcess",
    "VisualMeas",
    "InertialMeas",
    "ProcessError",
    # Backend
    "GraphOptimizer",
    "PeriodicSolver",
    # Assembly
    "DEFAULT_TRACKER_CONFIG",
    "DEFAULT_SYSTEM_CONFIG",
    "load_config",
    "System",
    "create_system",
]
