"""
Optimization module for the estimator backend.

This module contains the nonlinear least squares solver and the thin wrapper
that refines estimator state on a background cadence.
"""

from .base import LevenbergMarquardtOptimizer, OptimizationProblem, OptimizationResult
from .optimizer import GraphOptimizer, PeriodicSolver

__all__ = [
    "OptimizationProblem",
    "OptimizationResult",
    "LevenbergMarquardtOptimizer",
    "GraphOptimizer",
    "PeriodicSolver",
]
