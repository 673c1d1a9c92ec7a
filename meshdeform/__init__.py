"""meshdeform: interactive deformation of triangle meshes.

Three solvers share one mesh representation:
- mass-spring system with seven explicit integrators
- As-Rigid-As-Possible (ARAP) deformation
- 2D linear elastic FEM

Usage:
    from meshdeform import DeformableMesh, ArapSolver

    mesh = DeformableMesh.grid(1.5, 4)
    mesh.set_constraints([0, 3, 12, 15], [(5, (0.0, 0.0, 1.0))])

    arap = ArapSolver()
    mesh.build_arap(arap)
    for _ in range(50):
        arap.solve(1e-6)
        mesh.read_arap(arap)
"""

from .arap import ArapSolver
from .config import SimulationConfig
from .core import Adjacency, DeformableMesh, create_grid
from .fem import FemSolver, LinearElastic
from .massspring import IntegrationScheme, MassSpringSystem
from .result import SolveResult, SolverStatus
from .validation import DeformSolverError, DeformValidationError

__version__ = "0.1.0"

__all__ = [
    "ArapSolver",
    "SimulationConfig",
    "Adjacency",
    "DeformableMesh",
    "create_grid",
    "FemSolver",
    "LinearElastic",
    "IntegrationScheme",
    "MassSpringSystem",
    "SolveResult",
    "SolverStatus",
    "DeformSolverError",
    "DeformValidationError",
]
