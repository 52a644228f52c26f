import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import torch


@dataclass
class OptimizationResult:
    """Results from an optimization run."""

    success: bool  # Whether optimization was successful
    initial_cost: float  # Initial cost before optimization
    final_cost: float  # Final cost after optimization
    variables: Dict[str, torch.Tensor]  # Optimized variables
    num_iterations: int  # Number of iterations performed
    time_seconds: float  # Time taken in seconds
    convergence_info: Dict[str, Any]  # Additional convergence information


class OptimizationProblem(ABC):
    """
    Base class for nonlinear least squares problems.

    Residuals are a single stacked vector; each variable contributes a
    Jacobian block with one row per residual.
    """

    @abstractmethod
    def compute_residuals(self, variables: Dict[str, torch.Tensor]) -> torch.Tensor:
        """
        Compute residuals for the current variable values.

        Args:
            variables: Dictionary of variables

        Returns:
            Tensor of residuals (R,)
        """
        pass

    def compute_cost(self, variables: Dict[str, torch.Tensor]) -> float:
        """Half the squared norm of the residuals."""
        residuals = self.compute_residuals(variables)
        return 0.5 * float(torch.sum(residuals * residuals).item())

    @abstractmethod
    def compute_jacobians(
        self, variables: Dict[str, torch.Tensor]
    ) -> Dict[str, torch.Tensor]:
        """
        Compute Jacobians for each variable.

        Args:
            variables: Dictionary of variables

        Returns:
            Dictionary mapping variable IDs to (R, dim) Jacobian matrices
        """
        pass

    @abstractmethod
    def get_variable_dimensions(self) -> Dict[str, int]:
        """
        Get dimensions of each variable.

        Returns:
            Dictionary mapping variable IDs to their dimensions
        """
        pass

    @abstractmethod
    def get_initial_values(self) -> Dict[str, torch.Tensor]:
        """
        Get initial values for all variables.

        Returns:
            Dictionary mapping variable IDs to their initial values
        """
        pass

    @abstractmethod
    def set_values(self, variables: Dict[str, torch.Tensor]):
        """Store optimized values so that the next solve starts from them."""
        pass


class LevenbergMarquardtOptimizer:
    """
    Levenberg-Marquardt optimizer for nonlinear least squares problems.

    Gauss-Newton steps on dense normal equations, with adaptive damping of
    the diagonal to stay robust far from the minimum.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        convergence_threshold: float = 1e-6,
        initial_lambda: float = 1e-4,
        lambda_factor: float = 10.0,
        min_lambda: float = 1e-10,
        max_lambda: float = 1e10,
        device: Optional[torch.device] = None,
    ):
        """
        Initialize Levenberg-Marquardt optimizer.

        Args:
            max_iterations: Maximum number of iterations
            convergence_threshold: Threshold for convergence check
            initial_lambda: Initial damping parameter
            lambda_factor: Factor for changing lambda
            min_lambda: Minimum value for lambda
            max_lambda: Maximum value for lambda
            device: PyTorch device
        """
        self.max_iterations = max_iterations
        self.convergence_threshold = convergence_threshold
        self.lambda_value = initial_lambda
        self.lambda_factor = lambda_factor
        self.min_lambda = min_lambda
        self.max_lambda = max_lambda
        self.device = device if device is not None else torch.device("cpu")
        self.logger = logging.getLogger(self.__class__.__name__)

    def measure_convergence(
        self, prev_cost: float, curr_cost: float, update_norm: float
    ) -> bool:
        """
        Check if optimization has converged.

        Args:
            prev_cost: Cost from previous iteration
            curr_cost: Cost from current iteration
            update_norm: Norm of the update step

        Returns:
            True if converged, False otherwise
        """
        relative_decrease = (prev_cost - curr_cost) / (prev_cost + 1e-10)
        return (
            update_norm < self.convergence_threshold
            or relative_decrease < self.convergence_threshold
        )

    def solve(self, problem: OptimizationProblem) -> OptimizationResult:
        """
        Solve an optimization problem starting from its current values.

        Args:
            problem: Optimization problem to solve

        Returns:
            Optimization result
        """
        start_time = time.time()

        var_dims = problem.get_variable_dimensions()
        var_ids = sorted(var_dims.keys())
        variables = {
            var_id: value.to(self.device)
            for var_id, value in problem.get_initial_values().items()
        }

        initial_cost = problem.compute_cost(variables)
        current_cost = initial_cost
        convergence_info = {
            "costs": [initial_cost],
            "update_norms": [],
            "lambda_values": [self.lambda_value],
        }

        iteration = 0
        for iteration in range(self.max_iterations):
            residuals = problem.compute_residuals(variables)
            jacobians = problem.compute_jacobians(variables)

            J = torch.cat([jacobians[var_id] for var_id in var_ids], dim=1)
            JTJ = J.t() @ J
            JTr = J.t() @ residuals

            # Damp the diagonal, scaled by its own magnitude
            damped = JTJ + self.lambda_value * torch.diag(torch.diag(JTJ))
            try:
                step = torch.linalg.solve(damped, -JTr)
            except RuntimeError:
                # Singular system, fall back to least squares
                step = torch.linalg.lstsq(damped, -JTr.unsqueeze(1)).solution.squeeze(1)

            new_variables = {}
            offset = 0
            for var_id in var_ids:
                dim = var_dims[var_id]
                new_variables[var_id] = variables[var_id] + step[offset : offset + dim]
                offset += dim

            new_cost = problem.compute_cost(new_variables)
            update_norm = float(torch.norm(step).item())
            convergence_info["update_norms"].append(update_norm)

            if new_cost < current_cost:
                prev_cost = current_cost
                variables = new_variables
                current_cost = new_cost
                self.lambda_value = max(
                    self.min_lambda, self.lambda_value / self.lambda_factor
                )
                converged = self.measure_convergence(prev_cost, current_cost, update_norm)
            else:
                self.lambda_value = min(
                    self.max_lambda, self.lambda_value * self.lambda_factor
                )
                converged = update_norm < self.convergence_threshold

            convergence_info["costs"].append(current_cost)
            convergence_info["lambda_values"].append(self.lambda_value)
            self.logger.debug(
                f"Iteration {iteration}: cost = {current_cost:.6f}, lambda = {self.lambda_value:.6e}"
            )

            if converged:
                break

        return OptimizationResult(
            success=current_cost <= initial_cost,
            initial_cost=initial_cost,
            final_cost=current_cost,
            variables=variables,
            num_iterations=iteration + 1,
            time_seconds=time.time() - start_time,
            convergence_info=convergence_info,
        )
