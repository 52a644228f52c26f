"""
Assembly of the tracker, estimator, optimizer and dispatch process.
"""
import logging
from typing import Dict, Optional

from .backend.optimization import GraphOptimizer, PeriodicSolver
from .config import DEFAULT_SYSTEM_CONFIG, merge_config
from .estimator import (
    AttitudeEstimator,
    CanvasPublisher,
    EstimatorMessage,
    EstimatorProcess,
    FullStatePublisher,
    MapPublisher,
    PosePublisher,
)
from .frontend.tracking import Tracker

logger = logging.getLogger(__name__)


class System:
    """Owns every long-lived component of a running pipeline."""

    def __init__(
        self,
        tracker: Tracker,
        estimator: AttitudeEstimator,
        optimizer: GraphOptimizer,
        process: EstimatorProcess,
        solver: Optional[PeriodicSolver] = None,
        max_queued: Optional[int] = None,
    ):
        """
        Args:
            tracker, estimator, optimizer, process, solver: Pipeline components
            max_queued: Queue length at which ``enqueue`` waits for the
                process to catch up (None for an unbounded queue)
        """
        if max_queued is not None and max_queued <= 0:
            raise ValueError(f"max_queued must be positive, got {max_queued}")
        self.tracker = tracker
        self.estimator = estimator
        self.optimizer = optimizer
        self.process = process
        self.solver = solver
        self.max_queued = max_queued
        self.logger = logging.getLogger(self.__class__.__name__)

    def start(self):
        """Start the dispatch worker and, if configured, the periodic solver."""
        self.process.start()
        if self.solver is not None:
            self.solver.start()

    def enqueue(self, message: EstimatorMessage):
        """Queue a message, first flushing the queue if it is full."""
        if self.max_queued is not None and len(self.process) >= self.max_queued:
            self.process.wait()
        self.process.enqueue(message)

    def close(self):
        """Stop the periodic solver, then flush and stop the dispatch process."""
        if self.solver is not None:
            self.solver.stop()
        self.process.stop()
        self.logger.info(
            f"Closed after {self.estimator.num_frames} frames and {self.estimator.num_imu} inertial samples"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_system(
    config: Dict = None,
    canvas_publisher: Optional[CanvasPublisher] = None,
    pose_publisher: Optional[PosePublisher] = None,
    map_publisher: Optional[MapPublisher] = None,
    full_state_publisher: Optional[FullStatePublisher] = None,
) -> System:
    """
    Build a system from a configuration bundle.

    Args:
        config: Overrides merged over ``DEFAULT_SYSTEM_CONFIG``
        canvas_publisher, pose_publisher, map_publisher, full_state_publisher:
            Optional observers handed to the dispatch process

    Returns:
        System whose components share a single tracker instance
    """
    config = merge_config(DEFAULT_SYSTEM_CONFIG, config)

    tracker = Tracker.create(config["tracker"])
    estimator = AttitudeEstimator(tracker, config["estimator"])

    optimizer = GraphOptimizer.create(config["optimizer"])
    optimizer.set_problem(estimator.tilt_problem())

    process = EstimatorProcess(
        estimator,
        canvas_publisher=canvas_publisher,
        pose_publisher=pose_publisher,
        map_publisher=map_publisher,
        full_state_publisher=full_state_publisher,
        max_pts_to_publish=config["process"].get("max_pts_to_publish", 100),
    )

    solver = None
    period = config["optimizer"].get("period")
    if period is not None:
        solver = PeriodicSolver(
            optimizer,
            float(period),
            lock=process.state_lock,
            iterations=int(config["optimizer"].get("iterations_per_solve", 1)),
        )

    logger.info(
        f"Created system: optical flow {tracker.optflow_class.name}, "
        f"periodic solver {'every ' + str(period) + 's' if solver else 'disabled'}"
    )
    max_queued = config["process"].get("max_queued")
    return System(
        tracker,
        estimator,
        optimizer,
        process,
        solver,
        max_queued=int(max_queued) if max_queued is not None else None,
    )
