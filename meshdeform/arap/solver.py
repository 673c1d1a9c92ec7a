"""As-Rigid-As-Possible surface deformation.

O. Sorkine and M. Alexa, "As-rigid-as-possible surface modeling", SGP 2007,
with uniform edge weights and soft (penalty) anchors.

System matrix:
    L[i][j] = -w                 for j in N(i)
    L[i][i] = w·deg(i) + a·[i is an anchor]

The matrix only depends on topology and the anchor set, so it is factored
once per `initialize` and every global step reuses the factor: dense Cholesky
up to DENSE_FACTOR_LIMIT vertices, a symmetric sparse LDLᵀ above it.
Each `solve()` call alternates

    local:  J_i = Σ_j w (p_i - p_j)(x_i - x_j)ᵀ = UΣVᵀ,  R_i = VUᵀ
    global: L·X = B,  B_i = Σ_j ½w (R_i + R_j)(p_i - p_j) + a·c_i

until the energy Σ_i Σ_j w ‖(x_i - x_j) - R_i (p_i - p_j)‖² stops changing.
"""

import enum
import logging
import numpy as np
from scipy import linalg, sparse
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import splu
from typing import Dict, Iterable, Optional, Tuple

from ..core.adjacency import Adjacency
from ..result import SolveResult, SolverStatus
from ..validation import (
    DeformValidationError,
    validate_positive,
    validate_vertex_ids,
    validate_vertices,
)

logger = logging.getLogger(__name__)

# Laplacians with more vertices are factored without densifying.
DENSE_FACTOR_LIMIT = 2000


class ArapState(enum.Enum):
    """Solver lifecycle."""
    UNINITIALIZED = "uninitialized"
    FACTORED = "factored"
    SOLVED = "solved"


def extract_rot(J: np.ndarray) -> np.ndarray:
    """Closest proper rotation to the 3×3 covariance J (Kabsch).

    J = UΣVᵀ, R = VUᵀ; a reflection (det R < 0) is removed by negating the
    singular vector of the smallest singular value.
    """
    U, _, Vt = np.linalg.svd(J)
    R = Vt.T @ U.T
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1.0
        R = Vt.T @ U.T
    return R


def extract_rot_batch(J: np.ndarray) -> np.ndarray:
    """`extract_rot` for a stack of matrices, shape (n, 3, 3)."""
    U, _, Vt = np.linalg.svd(J)
    V = np.transpose(Vt, (0, 2, 1))
    R = V @ np.transpose(U, (0, 2, 1))
    flip = np.linalg.det(R) < 0
    if np.any(flip):
        U[flip, :, -1] *= -1.0
        R[flip] = V[flip] @ np.transpose(U[flip], (0, 2, 1))
    return R


def _validate_max_iterations(value: int):
    if value < 1:
        raise DeformValidationError(
            f"max_iterations is {value}, must be >= 1",
            parameter="max_iterations",
            value=value,
        )


def _factor_laplacian(L: sparse.csc_matrix):
    """Factor the SPD Laplacian once; returns solve(B) -> X.

    Up to DENSE_FACTOR_LIMIT vertices this is a dense Cholesky. Larger systems
    use SuperLU with symmetric ordering and diagonal pivots only, which for an
    SPD matrix is its LDLᵀ factorization, so every pivot must be positive.

    Raises:
        linalg.LinAlgError: L is not positive definite
    """
    if L.shape[0] <= DENSE_FACTOR_LIMIT:
        cho = linalg.cho_factor(L.toarray(), lower=False, check_finite=True)
        return lambda B: linalg.cho_solve(cho, B)

    try:
        lu = splu(L, permc_spec="MMD_AT_PLUS_A", diag_pivot_thresh=0.0,
                  options=dict(SymmetricMode=True))
    except RuntimeError as e:
        raise linalg.LinAlgError(str(e)) from e
    if not np.all(lu.U.diagonal() > 0.0):
        raise linalg.LinAlgError("non-positive pivot in sparse factorization")
    return lu.solve


class ArapSolver:
    """ARAP deformation solver with animated soft anchors."""

    def __init__(
        self,
        edge_weight: float = 1.0,
        anchor_step: float = 0.01,
        max_iterations: int = 100,
    ):
        """Initialize an empty solver.

        Args:
            edge_weight: uniform weight w of every edge
            anchor_step: maximum distance a moving anchor travels per solve()
            max_iterations: cap on local/global iterations per solve()
        """
        validate_positive(edge_weight, "edge_weight")
        validate_positive(anchor_step, "anchor_step")
        _validate_max_iterations(max_iterations)
        self.edge_weight = edge_weight
        self.anchor_step = anchor_step
        self.max_iterations = max_iterations
        self._reset()

    def _reset(self):
        self.state = ArapState.UNINITIALIZED
        self.factorization_failed = False
        self.anchor_weight = 1.0
        self.rest_positions = np.zeros((0, 3))
        self.adjacency: Optional[Adjacency] = None
        self.anchors: Dict[int, np.ndarray] = {}
        self.targets: Dict[int, np.ndarray] = {}
        self.rotations = np.zeros((0, 3, 3))
        self.X = np.zeros((0, 3))
        self.L: Optional[sparse.csc_matrix] = None
        self._factor_solve = None
        self._edges = np.zeros((0, 2), dtype=np.int64)
        self._anchor_ids = np.zeros(0, dtype=np.int64)
        self.energy = float("nan")

    # ───────────────── Lifecycle ─────────────────

    @property
    def is_valid(self) -> bool:
        """True once the Laplacian has been factored."""
        return self.state != ArapState.UNINITIALIZED

    @property
    def n_vertices(self) -> int:
        return self.rest_positions.shape[0]

    def initialize(
        self,
        vertices,
        adjacency: Adjacency,
        fixed_anchors: Iterable[Tuple[int, Iterable[float]]],
        constraints: Iterable[Tuple[int, Iterable[float]]] = (),
        anchor_weight: float = 100.0,
    ) -> bool:
        """Take a snapshot of the mesh, factor L and compute the first guess.

        Args:
            vertices: (n, 3) rest positions
            adjacency: symmetric vertex adjacency
            fixed_anchors: (id, position) pairs held in place
            constraints: (id, target) pairs; the anchor starts at the vertex
                rest position and walks toward the target across solve() calls
            anchor_weight: penalty weight a of every anchor

        Returns:
            True on success, False if factorization failed
        """
        self._reset()
        vertices = validate_vertices(vertices)
        validate_positive(anchor_weight, "anchor_weight")
        if adjacency.n_vertices != vertices.shape[0]:
            raise DeformValidationError(
                f"adjacency has {adjacency.n_vertices} vertices, mesh has {vertices.shape[0]}",
                parameter="adjacency",
                value=adjacency.n_vertices,
            )

        fixed = [(int(i), np.asarray(p, dtype=np.float64).reshape(3)) for i, p in fixed_anchors]
        moving = [(int(i), np.asarray(p, dtype=np.float64).reshape(3)) for i, p in constraints]
        validate_vertex_ids([i for i, _ in fixed + moving], vertices.shape[0], "anchors")

        self.rest_positions = vertices
        self.adjacency = adjacency.copy()
        self.anchor_weight = float(anchor_weight)
        self._edges = self.adjacency.directed_edges()

        for i, p in fixed:
            self.anchors[i] = p.copy()
        for i, target in moving:
            self.anchors[i] = vertices[i].copy()
            self.targets[i] = target.copy()
        self._anchor_ids = np.array(sorted(self.anchors), dtype=np.int64)

        self.rotations = np.tile(np.eye(3), (self.n_vertices, 1, 1))

        if not self.build_matrix_l():
            return False
        return self.init_guess_matrix_x()

    def build_matrix_l(self) -> bool:
        """Assemble and factor the anchored Laplacian.

        Returns:
            True on success. Fails when some connected component carries no
            anchor (L singular) or Cholesky reports a non-positive pivot.
        """
        n = self.n_vertices
        w = self.edge_weight
        if n == 0:
            logger.error("ARAP: empty mesh")
            return False

        rows = self._edges[:, 0]
        cols = self._edges[:, 1]
        diag = w * self.adjacency.degrees().astype(np.float64)
        diag[self._anchor_ids] += self.anchor_weight

        L = sparse.coo_matrix(
            (
                np.concatenate([np.full(rows.size, -w), diag]),
                (np.concatenate([rows, np.arange(n)]), np.concatenate([cols, np.arange(n)])),
            ),
            shape=(n, n),
        ).tocsc()

        n_comp, labels = connected_components(
            sparse.coo_matrix((np.ones(rows.size), (rows, cols)), shape=(n, n)),
            directed=False,
        )
        anchored = np.zeros(n_comp, dtype=bool)
        anchored[labels[self._anchor_ids]] = True
        if not np.all(anchored):
            logger.error(
                f"ARAP: {int(np.sum(~anchored))} of {n_comp} connected components have no anchor, "
                f"Laplacian is singular"
            )
            self.factorization_failed = True
            self.state = ArapState.UNINITIALIZED
            return False

        try:
            self._factor_solve = _factor_laplacian(L)
        except linalg.LinAlgError as e:
            logger.error(f"ARAP: factorization failed: {e}")
            self._factor_solve = None
            self.factorization_failed = True
            self.state = ArapState.UNINITIALIZED
            return False

        self.L = L
        self.factorization_failed = False
        self.state = ArapState.FACTORED
        logger.info(f"ARAP: factored {n}x{n} Laplacian ({len(self.anchors)} anchors)")
        return True

    def init_guess_matrix_x(self) -> bool:
        """First solve with identity rotations.

        B₀_i = Σ_j w (p_i - p_j) + a·c_i
        """
        if not self.is_valid:
            return False
        self.rotations = np.tile(np.eye(3), (self.n_vertices, 1, 1))
        B = self._differential_coordinates() + self._anchor_rhs()
        self.X = self._factor_solve(B)
        self.state = ArapState.SOLVED
        self.energy = self.l2_energy()
        return True

    # ───────────────── Iteration ─────────────────

    def local_step(self) -> bool:
        """Fit one rotation per vertex to its current neighbourhood."""
        if not self.is_valid:
            return False
        i, j = self._edges[:, 0], self._edges[:, 1]
        e_rest = self.rest_positions[i] - self.rest_positions[j]
        e_cur = self.X[i] - self.X[j]

        J = np.zeros((self.n_vertices, 3, 3))
        np.add.at(J, i, self.edge_weight * np.einsum("ea,eb->eab", e_rest, e_cur))

        R = extract_rot_batch(J)
        isolated = self.adjacency.degrees() == 0
        R[isolated] = np.eye(3)
        self.rotations = R
        return True

    def global_step(self) -> bool:
        """Solve L·X = B with the cached factor."""
        if not self.is_valid or self._factor_solve is None:
            return False
        i, j = self._edges[:, 0], self._edges[:, 1]
        e_rest = self.rest_positions[i] - self.rest_positions[j]
        R_sum = self.rotations[i] + self.rotations[j]

        B = np.zeros((self.n_vertices, 3))
        np.add.at(B, i, 0.5 * self.edge_weight * np.einsum("eab,eb->ea", R_sum, e_rest))
        B += self._anchor_rhs()

        X = self._factor_solve(B)
        if not np.all(np.isfinite(X)):
            logger.warning("ARAP: global step produced non-finite coordinates")
            return False
        self.X = X
        self.state = ArapState.SOLVED
        return True

    def l2_energy(self) -> float:
        """Σ_i Σ_j w ‖(x_i - x_j) - R_i (p_i - p_j)‖²."""
        if self._edges.shape[0] == 0:
            return 0.0
        i, j = self._edges[:, 0], self._edges[:, 1]
        e_rest = self.rest_positions[i] - self.rest_positions[j]
        e_cur = self.X[i] - self.X[j]
        diff = e_cur - np.einsum("eab,eb->ea", self.rotations[i], e_rest)
        return float(self.edge_weight * np.sum(diff * diff))

    def update_anchors(self):
        """Move every animated anchor one capped step toward its target."""
        for i, target in self.targets.items():
            offset = target - self.anchors[i]
            dist = np.linalg.norm(offset)
            if dist <= self.anchor_step:
                self.anchors[i] = target.copy()
            else:
                self.anchors[i] = self.anchors[i] + self.anchor_step * offset / dist

    def set_constraint_target(self, vertex_id: int, target):
        """Retarget an existing moving anchor (live dragging)."""
        if vertex_id not in self.targets:
            raise DeformValidationError(
                f"vertex {vertex_id} is not a moving constraint",
                parameter="vertex_id",
                value=vertex_id,
            )
        self.targets[vertex_id] = np.asarray(target, dtype=np.float64).reshape(3)

    def solve(self, eps: float = 1e-6, max_iterations: Optional[int] = None) -> SolveResult:
        """One animation frame: advance anchors, then iterate to convergence.

        Args:
            eps: stop when |E_prev - E| < eps
            max_iterations: overrides the solver default

        Returns:
            SolveResult with the final energy
        """
        max_iterations = self.max_iterations if max_iterations is None else max_iterations
        _validate_max_iterations(max_iterations)
        if self.factorization_failed:
            return SolveResult(SolverStatus.FACTORIZATION_FAILED)
        if not self.is_valid:
            return SolveResult(SolverStatus.NOT_INITIALIZED)

        self.update_anchors()

        prev_energy = None
        energy = self.energy
        for it in range(max_iterations):
            self.local_step()
            if not self.global_step():
                return SolveResult(SolverStatus.NOT_CONVERGED, iterations=it + 1, energy=energy)
            energy = self.l2_energy()
            logger.debug(f"ARAP iter {it}: E = {energy:.6e}")
            if prev_energy is not None and abs(prev_energy - energy) < eps:
                self.energy = energy
                return SolveResult(SolverStatus.CONVERGED, iterations=it + 1, energy=energy)
            prev_energy = energy

        self.energy = energy
        logger.debug(f"ARAP: reached {max_iterations} iterations, E = {energy:.6e}")
        return SolveResult(SolverStatus.MAX_ITERATIONS, iterations=max_iterations, energy=energy)

    def get_result(self) -> np.ndarray:
        """Copy of the current solution X, same ordering as the input."""
        return self.X.copy()

    # ───────────────── Internals ─────────────────

    def _differential_coordinates(self) -> np.ndarray:
        """Σ_j w (p_i - p_j) per vertex."""
        B = np.zeros((self.n_vertices, 3))
        if self._edges.shape[0]:
            i, j = self._edges[:, 0], self._edges[:, 1]
            np.add.at(B, i, self.edge_weight * (self.rest_positions[i] - self.rest_positions[j]))
        return B

    def _anchor_rhs(self) -> np.ndarray:
        B = np.zeros((self.n_vertices, 3))
        for i, p in self.anchors.items():
            B[i] = self.anchor_weight * p
        return B
