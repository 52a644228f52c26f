"""
Background refinement of committed estimator state.

``GraphOptimizer`` is a thin wrapper around the Levenberg-Marquardt solver;
``PeriodicSolver`` calls it on a fixed cadence from its own thread. The
synchronization policy belongs to the caller, who passes the lock that
guards the shared state.
"""
import logging
import threading
from typing import Dict, Optional

import torch

from .base import LevenbergMarquardtOptimizer, OptimizationProblem, OptimizationResult


class GraphOptimizer:
    """Periodically refines the state of a registered optimization problem."""

    def __init__(self, config: Dict = None):
        """
        Initialize optimizer.

        Args:
            config: Configuration dictionary with the following keys:
                - max_iterations: Iteration cap for a single ``solve`` call
                - initial_lambda: Initial Levenberg-Marquardt damping
                - convergence_threshold: Convergence threshold
                - device: PyTorch device name
        """
        self.config = config if config is not None else {}
        self.max_iterations = int(self.config.get("max_iterations", 10))
        initial_lambda = float(self.config.get("initial_lambda", 1e-4))
        convergence_threshold = float(self.config.get("convergence_threshold", 1e-6))

        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if initial_lambda <= 0:
            raise ValueError(f"initial_lambda must be positive, got {initial_lambda}")

        self.device = torch.device(self.config.get("device", "cpu"))
        self.solver = LevenbergMarquardtOptimizer(
            max_iterations=self.max_iterations,
            convergence_threshold=convergence_threshold,
            initial_lambda=initial_lambda,
            device=self.device,
        )
        self.problem: Optional[OptimizationProblem] = None
        self.last_result: Optional[OptimizationResult] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def create(cls, config: Dict = None) -> "GraphOptimizer":
        return cls(config)

    def set_problem(self, problem: Optional[OptimizationProblem]):
        """Register the problem refined by ``solve`` (None to clear it)."""
        self.problem = problem

    def solve(self, iterations: int = 1) -> Optional[OptimizationResult]:
        """
        Run up to ``iterations`` solver iterations on the registered problem.

        The solution is written back to the problem so consecutive calls
        continue where the previous one stopped.

        Args:
            iterations: Number of iterations, capped by ``max_iterations``

        Returns:
            Optimization result, or None when no problem is registered
        """
        if iterations < 1:
            raise ValueError(f"iterations must be at least 1, got {iterations}")

        if self.problem is None:
            self.logger.debug("No optimization problem registered, skipping solve")
            return None

        self.solver.max_iterations = min(iterations, self.max_iterations)
        result = self.solver.solve(self.problem)
        self.problem.set_values(result.variables)
        self.last_result = result

        self.logger.debug(
            f"Solved {result.num_iterations} iterations: "
            f"cost {result.initial_cost:.6f} -> {result.final_cost:.6f}"
        )
        return result


class PeriodicSolver:
    """Calls ``GraphOptimizer.solve`` every ``period`` seconds on a background thread."""

    def __init__(
        self,
        optimizer: GraphOptimizer,
        period: float,
        lock: Optional[threading.Lock] = None,
        iterations: int = 1,
    ):
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.optimizer = optimizer
        self.period = period
        self.lock = lock if lock is not None else threading.Lock()
        self.iterations = iterations
        self.num_solves = 0
        self.error: Optional[Exception] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="periodic-solver", daemon=True
        )
        self._thread.start()
        self.logger.info(f"Periodic solver started (every {self.period}s)")

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.logger.info("Periodic solver stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        while not self._stop_event.wait(self.period):
            try:
                with self.lock:
                    self.optimizer.solve(self.iterations)
            except Exception as exc:
                self.logger.exception(f"Periodic solve failed, stopping after {self.num_solves} solves")
                self.error = exc
                break
            self.num_solves += 1
