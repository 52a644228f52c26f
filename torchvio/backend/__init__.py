from .optimization import GraphOptimizer, OptimizationProblem, PeriodicSolver

__all__ = ["GraphOptimizer", "OptimizationProblem", "PeriodicSolver"]
