"""2D linear elasticity on triangle meshes.

The global stiffness K (2n×2n) is assembled once per `initialize`. Fixed
vertices are eliminated (Dirichlet), leaving a reduced system over the free
DOFs. Every `solve()` rebuilds the reduced load vector F from the constraint
list, solves K_r·U = F, and adds U to the reference positions so the next
frame starts from the deformed shape.

Load sources, both keyed by vertex id:
- literal forces (id, f)
- pseudo-forces force_gain·(target - current), the offset capped at max_step
"""

import logging
import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import cg, spsolve
from typing import Dict, Iterable, Literal, Optional, Tuple

from ..result import SolveResult, SolverStatus
from ..validation import (
    DeformValidationError,
    validate_lame,
    validate_positive,
    validate_triangles,
    validate_vertex_ids,
    validate_vertices,
)
from .assembly import assemble_stiffness_matrix, reduce_system
from .material import LinearElastic

logger = logging.getLogger(__name__)


class FemSolver:
    """Static linear FEM solver with per-frame constraint loads."""

    def __init__(
        self,
        force_gain: float = 1.0,
        max_step: float = 0.25,
        linear_solver: Literal["cg", "direct"] = "cg",
        cg_tol: float = 1e-10,
        cg_maxiter: int = 5000,
    ):
        """Initialize solver settings.

        Args:
            force_gain: scale from target offset to pseudo-force
            max_step: cap on the target offset used per frame
            linear_solver: "cg" | "direct"
            cg_tol: relative residual tolerance for CG
            cg_maxiter: CG iteration cap
        """
        validate_positive(force_gain, "force_gain")
        validate_positive(max_step, "max_step")
        if linear_solver not in ("cg", "direct"):
            raise DeformValidationError(
                f"unknown linear solver '{linear_solver}'",
                parameter="linear_solver",
                value=linear_solver,
                suggestion="use 'cg' or 'direct'",
            )
        self.force_gain = force_gain
        self.max_step = max_step
        self.linear_solver = linear_solver
        self.cg_tol = cg_tol
        self.cg_maxiter = cg_maxiter

        self.material: Optional[LinearElastic] = None
        self.reference = np.zeros((0, 3))
        self.triangles = np.zeros((0, 3), dtype=np.int64)
        self.K: Optional[sparse.csr_matrix] = None
        self.K_reduced: Optional[sparse.csr_matrix] = None
        self.free_dofs = np.zeros(0, dtype=np.int64)
        self.F = np.zeros(0)
        self.U = np.zeros(0)

        self.fixed_ids: list = []
        self.targets: Dict[int, np.ndarray] = {}
        self.forces: Dict[int, np.ndarray] = {}
        self._dof_to_row: Optional[np.ndarray] = None

    # ───────────────── Setup ─────────────────

    @property
    def n_vertices(self) -> int:
        return self.reference.shape[0]

    @property
    def is_valid(self) -> bool:
        """True once K is assembled and boundary conditions are applied."""
        return self.K_reduced is not None

    @property
    def reduced_index_map(self) -> np.ndarray:
        """Vertex id of every reduced DOF."""
        return self.free_dofs // 2

    def initialize(
        self,
        vertices,
        triangles,
        material: Optional[LinearElastic] = None,
        mu: float = 10.5,
        lam: float = 0.5,
    ) -> bool:
        """Snapshot the mesh and assemble K.

        Args:
            vertices: (n, 3) positions; only x, y take part in the solve
            triangles: (m, 3) or flat vertex ids
            material: material model; built from (mu, lam) when omitted
            mu, lam: Lamé parameters

        Returns:
            True on success
        """
        self.reference = validate_vertices(vertices)
        self.triangles = validate_triangles(triangles, self.reference.shape[0])
        if material is None:
            validate_lame(mu, lam)
            material = LinearElastic.from_lame(mu, lam)
        self.material = material

        self.K_reduced = None
        self.fixed_ids = []
        self.targets = {}
        self.forces = {}
        self.U = np.zeros(0)

        if self.triangles.shape[0] == 0:
            logger.error("FEM: mesh has no triangles")
            self.K = None
            return False

        self.K = assemble_stiffness_matrix(
            self.reference, self.triangles, material.get_elasticity_tensor()
        )
        logger.info(
            f"FEM: assembled K ({2 * self.n_vertices} DOF, {self.triangles.shape[0]} elements, "
            f"nnz={self.K.nnz}), {material}"
        )
        return True

    def add_constraints(
        self,
        fixed_ids: Iterable[int],
        moving_constraints: Iterable[Tuple[int, Iterable[float]]] = (),
        forces: Iterable[Tuple[int, Iterable[float]]] = (),
    ) -> bool:
        """Set fixed vertices, dragged vertices and literal forces.

        Args:
            fixed_ids: Dirichlet vertices, at least two
            moving_constraints: (id, target) pairs driven by pseudo-forces
            forces: (id, force) pairs, force as (fx, fy) or (fx, fy, fz)

        Returns:
            True when the reduced system is well posed
        """
        if self.K is None:
            logger.error("FEM: add_constraints before initialize")
            return False

        fixed = validate_vertex_ids(fixed_ids, self.n_vertices, "fixed_ids")
        if len(fixed) < 2:
            logger.error(f"FEM: need at least 2 fixed vertices, got {len(fixed)}")
            return False

        targets = {int(i): np.asarray(t, dtype=np.float64).reshape(-1)[:2] for i, t in moving_constraints}
        loads = {int(i): np.asarray(f, dtype=np.float64).reshape(-1)[:2] for i, f in forces}
        validate_vertex_ids(list(targets), self.n_vertices, "moving_constraints")
        validate_vertex_ids(list(loads), self.n_vertices, "forces")
        overlap = set(fixed) & (set(targets) | set(loads))
        if overlap:
            raise DeformValidationError(
                f"vertices {sorted(overlap)} are fixed and also loaded",
                parameter="moving_constraints",
                value=sorted(overlap),
            )

        self.fixed_ids = fixed
        self.targets = targets
        self.forces = loads
        return self.set_boundary_conditions()

    def set_boundary_conditions(self) -> bool:
        """Eliminate fixed DOFs and build the reduced-index map.

        Fails when some connected piece of the mesh has a free vertex but
        fewer than two fixed vertices (rigid modes make K_r singular).
        """
        self.K_reduced = None
        if self.K is None:
            return False

        n = self.n_vertices
        t = self.triangles
        rows = np.concatenate([t[:, 0], t[:, 1], t[:, 2]])
        cols = np.concatenate([t[:, 1], t[:, 2], t[:, 0]])
        graph = sparse.coo_matrix((np.ones(rows.size), (rows, cols)), shape=(n, n))
        n_comp, labels = connected_components(graph, directed=False)

        is_fixed = np.zeros(n, dtype=bool)
        is_fixed[self.fixed_ids] = True
        fixed_per_comp = np.bincount(labels[is_fixed], minlength=n_comp)
        free_per_comp = np.bincount(labels[~is_fixed], minlength=n_comp)
        underconstrained = (free_per_comp > 0) & (fixed_per_comp < 2)
        if np.any(underconstrained):
            logger.error(
                f"FEM: {int(np.sum(underconstrained))} mesh component(s) with fewer than "
                f"2 fixed vertices, reduced system is singular"
            )
            return False

        self.K_reduced, self.free_dofs = reduce_system(self.K, self.fixed_ids, n)
        self._dof_to_row = np.full(2 * n, -1, dtype=np.int64)
        self._dof_to_row[self.free_dofs] = np.arange(self.free_dofs.size)
        self.F = np.zeros(self.free_dofs.size)
        self.U = np.zeros(self.free_dofs.size)
        logger.info(
            f"FEM: boundary conditions set, {len(self.fixed_ids)} fixed vertices, "
            f"reduced size {self.free_dofs.size}"
        )
        return True

    def update_boundary_conditions(self):
        """Rebuild F from the constraint list at the current positions."""
        if not self.is_valid:
            return
        F = np.zeros(self.free_dofs.size)
        for i, f in self.forces.items():
            F[self._dof_to_row[2 * i]] += f[0]
            F[self._dof_to_row[2 * i + 1]] += f[1]
        for i, target in self.targets.items():
            offset = target - self.reference[i, :2]
            dist = np.linalg.norm(offset)
            if dist > self.max_step:
                offset = offset * (self.max_step / dist)
            F[self._dof_to_row[2 * i]] += self.force_gain * offset[0]
            F[self._dof_to_row[2 * i + 1]] += self.force_gain * offset[1]
        self.F = F

    def set_constraint_target(self, vertex_id: int, target):
        """Retarget a dragged vertex."""
        if vertex_id not in self.targets:
            raise DeformValidationError(
                f"vertex {vertex_id} is not a moving constraint",
                parameter="vertex_id",
                value=vertex_id,
            )
        self.targets[vertex_id] = np.asarray(target, dtype=np.float64).reshape(-1)[:2]

    # ───────────────── Solve ─────────────────

    def solve(self) -> SolveResult:
        """Solve one frame and bake the displacement into the reference.

        Returns:
            SolveResult; on NOT_CONVERGED the reference is left unchanged
        """
        if not self.is_valid:
            return SolveResult(SolverStatus.NOT_INITIALIZED)

        self.update_boundary_conditions()
        if self.free_dofs.size == 0:
            return SolveResult(SolverStatus.CONVERGED, residual=0.0)

        iterations = 0
        if self.linear_solver == "cg":
            counter = {"n": 0}

            def _count(_):
                counter["n"] += 1

            U, info = cg(
                self.K_reduced, self.F,
                rtol=self.cg_tol, maxiter=self.cg_maxiter, callback=_count,
            )
            iterations = counter["n"]
            if info != 0:
                residual = float(np.linalg.norm(self.K_reduced @ U - self.F))
                logger.warning(f"FEM: CG did not converge (info={info}, |r|={residual:.3e})")
                return SolveResult(SolverStatus.NOT_CONVERGED, iterations=iterations, residual=residual)
        else:
            U = spsolve(self.K_reduced.tocsc(), self.F)
            iterations = 1

        if not np.all(np.isfinite(U)):
            logger.warning("FEM: linear solve produced non-finite displacements")
            return SolveResult(SolverStatus.NOT_CONVERGED, iterations=iterations)

        residual = float(np.linalg.norm(self.K_reduced @ U - self.F))
        self.U = U
        # fixed vertices keep zero displacement
        self.reference[:, :2] += self.displacement()
        logger.debug(f"FEM: solved ({iterations} it, |r|={residual:.3e}, max|u|={np.max(np.abs(U)):.3e})")
        return SolveResult(SolverStatus.CONVERGED, iterations=iterations, residual=residual)

    def displacement(self) -> np.ndarray:
        """Last solved displacement per vertex, shape (n, 2)."""
        u = np.zeros(2 * self.n_vertices)
        if self.U.size == self.free_dofs.size:
            u[self.free_dofs] = self.U
        return u.reshape(-1, 2)

    def get_result(self) -> np.ndarray:
        """Copy of the current positions (n, 3); z is untouched."""
        return self.reference.copy()
