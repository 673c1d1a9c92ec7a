"""Input validation utilities.

Checks vertex arrays, triangle lists, vertex ids and material constants
before they reach a solver. Configuration errors raise immediately.
"""

import logging
import numpy as np
from typing import Iterable

logger = logging.getLogger(__name__)


# ───────────────── Exceptions ─────────────────


class DeformValidationError(ValueError):
    """Invalid solver input.

    Attributes:
        parameter: name of the offending parameter
        value: value that was passed
        suggestion: how to fix it
    """

    def __init__(
        self,
        message: str,
        parameter: str = "",
        value=None,
        suggestion: str = "",
    ):
        self.parameter = parameter
        self.value = value
        self.suggestion = suggestion
        full_msg = f"[validation] {message}"
        if suggestion:
            full_msg += f" -> suggestion: {suggestion}"
        super().__init__(full_msg)


class DeformSolverError(RuntimeError):
    """Numerical failure inside a solver.

    Attributes:
        iterations: iterations performed before the failure
        residual: last residual norm
        reason: short machine-readable cause
    """

    def __init__(
        self,
        message: str,
        iterations: int = 0,
        residual: float = 0.0,
        reason: str = "",
    ):
        self.iterations = iterations
        self.residual = residual
        self.reason = reason
        super().__init__(f"[solver failure] {message}")


# ───────────────── Geometry ─────────────────


def validate_vertices(vertices) -> np.ndarray:
    """Validate and copy a vertex position array.

    Args:
        vertices: (n, 3) array-like of positions

    Returns:
        float64 copy of shape (n, 3)

    Raises:
        DeformValidationError: wrong shape or non-finite values
    """
    arr = np.array(vertices, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise DeformValidationError(
            f"vertices must have shape (n, 3), got {arr.shape}",
            parameter="vertices",
            value=arr.shape,
            suggestion="pad 2D coordinates with z = 0",
        )
    if not np.all(np.isfinite(arr)):
        raise DeformValidationError(
            "vertices contain NaN or Inf",
            parameter="vertices",
        )
    return arr


def validate_triangles(triangles, n_vertices: int) -> np.ndarray:
    """Validate a triangle index list.

    Accepts either a flat list whose length is a multiple of 3 or an (m, 3)
    array.

    Returns:
        int64 array of shape (m, 3)
    """
    arr = np.asarray(triangles, dtype=np.int64)
    if arr.ndim == 1:
        if arr.size % 3 != 0:
            raise DeformValidationError(
                f"flat triangle list length {arr.size} is not a multiple of 3",
                parameter="triangles",
                value=arr.size,
            )
        arr = arr.reshape(-1, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise DeformValidationError(
            f"triangles must have shape (m, 3), got {arr.shape}",
            parameter="triangles",
            value=arr.shape,
        )
    if arr.size and (arr.min() < 0 or arr.max() >= n_vertices):
        raise DeformValidationError(
            f"triangle index out of range [0, {n_vertices})",
            parameter="triangles",
            value=(int(arr.min()), int(arr.max())),
        )
    return arr.copy()


def validate_vertex_ids(ids: Iterable[int], n_vertices: int, name: str = "ids") -> list:
    """Check that every id is a valid, unique vertex index."""
    ids = [int(i) for i in ids]
    for i in ids:
        if i < 0 or i >= n_vertices:
            raise DeformValidationError(
                f"{name} contains vertex id {i} outside [0, {n_vertices})",
                parameter=name,
                value=i,
            )
    if len(set(ids)) != len(ids):
        raise DeformValidationError(
            f"{name} contains duplicate vertex ids",
            parameter=name,
            value=ids,
            suggestion="a vertex can carry at most one anchor",
        )
    return ids


# ───────────────── Scalars / material ─────────────────


def validate_positive(value: float, name: str, allow_zero: bool = False):
    """Check a scalar parameter is positive (or non-negative)."""
    if allow_zero:
        if value < 0:
            raise DeformValidationError(
                f"{name} is {value}, must be >= 0",
                parameter=name,
                value=value,
            )
    elif value <= 0:
        raise DeformValidationError(
            f"{name} is {value}, must be > 0",
            parameter=name,
            value=value,
        )


def validate_lame(mu: float, lam: float):
    """Lamé parameter check.

    μ must be positive; λ may be negative but 2D plane strain requires
    μ + λ > 0 for a positive-definite elasticity matrix.
    """
    if mu <= 0:
        raise DeformValidationError(
            f"shear modulus mu is {mu}, must be > 0",
            parameter="mu",
            value=mu,
        )
    if mu + lam <= 0:
        raise DeformValidationError(
            f"mu + lambda = {mu + lam} <= 0, elasticity matrix is indefinite",
            parameter="lam",
            value=lam,
            suggestion="use LinearElastic(E, nu) with -1 < nu < 0.5",
        )


def validate_elastic_constants(E: float, nu: float, name: str = "material"):
    """Isotropic elastic constant check.

    Args:
        E: Young's modulus
        nu: Poisson ratio
        name: material name for the message
    """
    if E <= 0:
        raise DeformValidationError(
            f"{name}: Young's modulus E is {E}, must be > 0",
            parameter="E",
            value=E,
        )
    if nu <= -1.0 or nu >= 0.5:
        raise DeformValidationError(
            f"{name}: Poisson ratio nu is {nu}, must satisfy -1 < nu < 0.5",
            parameter="nu",
            value=nu,
            suggestion="nearly incompressible: nu ~ 0.49",
        )
