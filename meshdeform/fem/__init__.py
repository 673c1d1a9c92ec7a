"""2D linear FEM on triangle meshes."""

from .material import LinearElastic
from .assembly import assemble_stiffness_matrix
from .solver import FemSolver

__all__ = [
    "LinearElastic",
    "assemble_stiffness_matrix",
    "FemSolver",
]
