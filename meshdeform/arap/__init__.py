"""As-Rigid-As-Possible deformation."""

from .solver import ArapSolver, ArapState, extract_rot

__all__ = [
    "ArapSolver",
    "ArapState",
    "extract_rot",
]
