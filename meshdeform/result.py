"""Solver status and per-step result."""

import enum
from dataclasses import dataclass


class SolverStatus(enum.Enum):
    """Outcome of a solve/iterate call."""
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    NOT_INITIALIZED = "not_initialized"
    FACTORIZATION_FAILED = "factorization_failed"
    NOT_CONVERGED = "not_converged"


@dataclass
class SolveResult:
    """Result of one solver step.

    Args:
        status: outcome of the call
        iterations: local/global or CG iterations performed
        energy: final deformation energy (ARAP), NaN when not applicable
        residual: final residual norm (FEM), NaN when not applicable
    """
    status: SolverStatus
    iterations: int = 0
    energy: float = float("nan")
    residual: float = float("nan")

    @property
    def ok(self) -> bool:
        """True when the step produced a usable result."""
        return self.status in (SolverStatus.CONVERGED, SolverStatus.MAX_ITERATIONS)

    @property
    def converged(self) -> bool:
        return self.status == SolverStatus.CONVERGED

    def raise_for_status(self, context: str = "solve"):
        """Raise DeformSolverError unless the step produced a usable result."""
        if self.ok:
            return
        from .validation import DeformSolverError
        raise DeformSolverError(
            f"{context} failed: {self.status.value}",
            iterations=self.iterations,
            residual=self.residual,
            reason=self.status.value,
        )
