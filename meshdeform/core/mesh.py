"""Deformable triangle mesh.

`DeformableMesh` aggregates the vertex positions, the triangle list, the
vertex adjacency and the anchor set, and moves data in and out of the three
solvers through build_*/read_* pairs. Build calls copy a snapshot of the
mesh into the solver; read calls copy the solver result back and leave the
mesh untouched when the sizes disagree.
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from ..validation import (
    DeformValidationError,
    validate_positive,
    validate_triangles,
    validate_vertex_ids,
    validate_vertices,
)
from .adjacency import Adjacency

if TYPE_CHECKING:
    from ..arap.solver import ArapSolver
    from ..fem.solver import FemSolver
    from ..massspring.system import MassSpringSystem

logger = logging.getLogger(__name__)


def create_grid(length: float, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """Square grid of n×n vertices centred at the origin, z = 0.

    Vertex i·n + j sits at (spacing·i - L/2, spacing·j - L/2, 0). Each cell
    with corners id(a, b) = a + b·n is split into triangles (0, 1, 3) and
    (3, 2, 0):

        0 - 1
        | \\ |
        2 - 3

    Args:
        length: side length L
        n: vertices per side (>= 2)

    Returns:
        (vertices (n², 3), triangles (2(n-1)², 3))
    """
    validate_positive(length, "length")
    if n < 2:
        raise DeformValidationError(
            f"grid needs at least 2 vertices per side, got {n}",
            parameter="n",
            value=n,
        )
    spacing = length / (n - 1)
    i, j = np.meshgrid(np.arange(n), np.arange(n), indexing="ij")
    vertices = np.zeros((n * n, 3))
    vertices[:, 0] = spacing * i.ravel() - 0.5 * length
    vertices[:, 1] = spacing * j.ravel() - 0.5 * length

    a, b = np.meshgrid(np.arange(1, n), np.arange(1, n), indexing="ij")
    a, b = a.ravel(), b.ravel()
    id0 = (a - 1) + (b - 1) * n
    id1 = a + (b - 1) * n
    id2 = (a - 1) + b * n
    id3 = a + b * n
    triangles = np.empty((2 * a.size, 3), dtype=np.int64)
    triangles[0::2] = np.stack([id0, id1, id3], axis=1)
    triangles[1::2] = np.stack([id3, id2, id0], axis=1)
    return vertices, triangles


@dataclass
class Anchor:
    """Constraint on a single vertex.

    Attributes:
        vertex_id: constrained vertex
        target: reference position (fixed) or goal position (moving)
        fixed: True when the vertex is held at `target`
    """
    vertex_id: int
    target: np.ndarray
    fixed: bool = True


class AnchorSet:
    """Anchors keyed by vertex id; a vertex carries at most one anchor."""

    def __init__(self):
        self._anchors: Dict[int, Anchor] = {}

    def add(self, vertex_id: int, target, fixed: bool = True):
        vertex_id = int(vertex_id)
        if vertex_id in self._anchors:
            raise DeformValidationError(
                f"vertex {vertex_id} already carries an anchor",
                parameter="vertex_id",
                value=vertex_id,
            )
        self._anchors[vertex_id] = Anchor(
            vertex_id, np.asarray(target, dtype=np.float64).reshape(3).copy(), fixed
        )

    def get(self, vertex_id: int) -> Optional[Anchor]:
        return self._anchors.get(int(vertex_id))

    def clear(self):
        self._anchors.clear()

    @property
    def fixed_ids(self) -> List[int]:
        return [i for i, a in self._anchors.items() if a.fixed]

    @property
    def moving(self) -> List[Tuple[int, np.ndarray]]:
        """(id, target) of every moving anchor."""
        return [(i, a.target.copy()) for i, a in self._anchors.items() if not a.fixed]

    def __contains__(self, vertex_id) -> bool:
        return int(vertex_id) in self._anchors

    def __len__(self) -> int:
        return len(self._anchors)

    def __iter__(self):
        return iter(self._anchors.values())


class DeformableMesh:
    """Triangle mesh with adjacency and anchors, the shared input of every solver."""

    def __init__(self, vertices, triangles):
        self.vertices = validate_vertices(vertices)
        self.triangles = validate_triangles(triangles, self.vertices.shape[0])
        self.adjacency = Adjacency.from_triangles(self.triangles, self.vertices.shape[0])
        self.anchors = AnchorSet()

    @classmethod
    def grid(cls, length: float, n: int) -> "DeformableMesh":
        """Mesh of `create_grid(length, n)`."""
        return cls(*create_grid(length, n))

    @property
    def n_vertices(self) -> int:
        return self.vertices.shape[0]

    def is_adjacency_empty(self) -> bool:
        return self.adjacency.is_empty()

    def vertex_degree(self, i: int) -> int:
        return self.adjacency.degree(i)

    def set_constraints(
        self,
        fixed_ids: Iterable[int],
        moving_constraints: Iterable[Tuple[int, Iterable[float]]] = (),
    ):
        """Replace the anchor set.

        Fixed vertices are held at their current position; moving vertices
        are pulled toward their target.
        """
        fixed_ids = validate_vertex_ids(fixed_ids, self.n_vertices, "fixed_ids")
        moving = list(moving_constraints)
        validate_vertex_ids([i for i, _ in moving], self.n_vertices, "moving_constraints")
        self.anchors.clear()
        for i in fixed_ids:
            self.anchors.add(i, self.vertices[i], fixed=True)
        for i, target in moving:
            self.anchors.add(i, target, fixed=False)

    # ───────────────── Mass-spring ─────────────────

    def build_mass_spring_system(
        self,
        system: "MassSpringSystem",
        mass: float = 1.0,
        damping: float = 0.1,
        stiffness: float = 0.25,
    ) -> bool:
        """Fill `system` with one point per vertex and one spring per edge."""
        system.clear()
        for p in self.vertices:
            system.add_point(p, mass, damping)
        for i, j in self.adjacency.edges():
            system.add_spring(int(i), int(j), stiffness)
        system.add_constraints(self.anchors.fixed_ids, self.anchors.moving)
        logger.info(
            f"built mass-spring system: {system.n_points} points, {len(system.springs)} springs"
        )
        return True

    def read_mass_spring_system(self, system: "MassSpringSystem") -> bool:
        return self._read_positions(system.get_positions(), "mass-spring")

    # ───────────────── ARAP ─────────────────

    def build_arap(self, arap: "ArapSolver", anchor_weight: float = 100.0) -> bool:
        """Initialize `arap`; fixed anchors target their current coordinates."""
        fixed = [(i, self.vertices[i].copy()) for i in self.anchors.fixed_ids]
        return arap.initialize(
            self.vertices, self.adjacency, fixed, self.anchors.moving, anchor_weight
        )

    def read_arap(self, arap: "ArapSolver") -> bool:
        return self._read_positions(arap.get_result(), "ARAP")

    # ───────────────── FEM ─────────────────

    def build_fem(
        self,
        fem: "FemSolver",
        mu: float = 10.5,
        lam: float = 0.5,
        moving_constraints: Optional[Iterable[Tuple[int, Iterable[float]]]] = None,
    ) -> bool:
        """Initialize `fem` and apply the anchors as boundary conditions.

        Args:
            fem: solver to initialize
            mu, lam: Lamé parameters
            moving_constraints: (id, target) pairs replacing the moving
                anchors, for in-plane targets
        """
        if not fem.initialize(self.vertices, self.triangles, mu=mu, lam=lam):
            return False
        moving = self.anchors.moving if moving_constraints is None else list(moving_constraints)
        return fem.add_constraints(self.anchors.fixed_ids, moving)

    def read_fem(self, fem: "FemSolver") -> bool:
        return self._read_positions(fem.get_result(), "FEM")

    def _read_positions(self, positions: np.ndarray, source: str) -> bool:
        if positions.shape != self.vertices.shape:
            logger.error(
                f"{source} result has {positions.shape[0]} vertices, mesh has {self.n_vertices}"
            )
            return False
        self.vertices[...] = positions
        return True
