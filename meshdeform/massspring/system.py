"""Mass-spring system.

Particles connected by linear springs. Each `iterate(dt)` call runs, in this
fixed order: clear forces → constraint (external) forces → spring (internal)
forces → integration with the selected scheme. Schemes that need several
force evaluations per step re-run the same force pipeline at their
intermediate states.
"""

import logging
import numpy as np
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.point import Point, PointState
from ..core.spring import Spring, spring_arrays, accumulate_spring_forces
from ..result import SolveResult, SolverStatus
from ..validation import (
    DeformValidationError,
    validate_positive,
    validate_vertex_ids,
)
from .integrators import IntegrationContext, IntegrationScheme, integrate

logger = logging.getLogger(__name__)


class MassSpringSystem:
    """Particles, springs and constraints advanced by an explicit integrator."""

    def __init__(
        self,
        scheme: IntegrationScheme = IntegrationScheme.RK4,
        max_pull: float = 0.25,
        external_force_factor: float = 1.0,
    ):
        """Initialize an empty system.

        Args:
            scheme: integration scheme
            max_pull: upper bound on the constraint force magnitude per step
            external_force_factor: scale applied to constraint forces
        """
        validate_positive(max_pull, "max_pull")
        validate_positive(external_force_factor, "external_force_factor", allow_zero=True)

        self.state = PointState(0)
        self.springs: List[Spring] = []
        self.scheme = IntegrationScheme(scheme)
        self.max_pull = max_pull
        self.external_force_factor = external_force_factor

        self.fixed_ids: List[int] = []
        self.moving_constraints: Dict[int, np.ndarray] = {}

        self._context = IntegrationContext()
        self._spring_cache: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = None
        self.time = 0.0

    # ───────────────── Construction ─────────────────

    @property
    def n_points(self) -> int:
        return len(self.state)

    def add_point(self, position, mass: float = 1.0, damping: float = 0.0) -> int:
        """Add a particle at rest.

        Returns:
            id of the new point
        """
        validate_positive(mass, "mass")
        validate_positive(damping, "damping", allow_zero=True)
        self.state.append(position, mass, damping)
        self._context.reset()
        return self.n_points - 1

    def add_spring(self, id1: int, id2: int, stiffness: float) -> Spring:
        """Connect two points; rest length is their current distance.

        Raises:
            DeformValidationError: equal or unknown endpoint ids
        """
        if id1 == id2:
            raise DeformValidationError(
                f"spring endpoints must differ, got ({id1}, {id2})",
                parameter="spring",
                value=(id1, id2),
            )
        validate_vertex_ids([id1, id2], self.n_points, "spring")
        spring = Spring.between(
            id1, id2, self.state.position[id1], self.state.position[id2], stiffness
        )
        self.springs.append(spring)
        self._spring_cache = None
        return spring

    def add_constraints(
        self,
        fixed_ids: Iterable[int],
        moving_constraints: Iterable[Tuple[int, Iterable[float]]] = (),
    ):
        """Set the fixed points and the (id, target) pulls.

        Replaces any previously set constraints.
        """
        fixed_ids = validate_vertex_ids(fixed_ids, self.n_points, "fixed_ids")
        moving = [(int(i), np.asarray(t, dtype=np.float64).reshape(3)) for i, t in moving_constraints]
        moving_ids = validate_vertex_ids([i for i, _ in moving], self.n_points, "moving_constraints")

        overlap = set(fixed_ids) & set(moving_ids)
        if overlap:
            raise DeformValidationError(
                f"vertices {sorted(overlap)} are both fixed and moving",
                parameter="moving_constraints",
                value=sorted(overlap),
            )

        self.fixed_ids = fixed_ids
        self.moving_constraints = {i: t for i, t in moving}

        self.state.fixed[:] = False
        self.state.fixed[fixed_ids] = True
        self.state.velocity[fixed_ids] = 0.0
        logger.info(
            f"mass-spring constraints: {len(fixed_ids)} fixed, {len(moving)} moving"
        )

    def clear(self):
        """Remove every point, spring and constraint."""
        self.state = PointState(0)
        self.springs = []
        self.fixed_ids = []
        self.moving_constraints = {}
        self._context.reset()
        self._spring_cache = None
        self.time = 0.0

    def set_integration_scheme(self, scheme: IntegrationScheme):
        """Select the integrator; scheme history restarts."""
        self.scheme = IntegrationScheme(scheme)
        self._context.reset()

    # ───────────────── Forces ─────────────────

    def clear_forces(self, state: Optional[PointState] = None):
        state = self.state if state is None else state
        state.force[...] = 0.0

    def update_external_forces(self, state: Optional[PointState] = None):
        """Pull every moving-constraint point toward its target.

        The force points at the target and its magnitude is the remaining
        distance, capped at `max_pull`.
        """
        state = self.state if state is None else state
        for i, target in self.moving_constraints.items():
            offset = target - state.position[i]
            dist = np.linalg.norm(offset)
            if dist < 1e-12:
                continue
            magnitude = min(dist, self.max_pull) * self.external_force_factor
            state.force[i] += magnitude * offset / dist

    def update_internal_forces(self, state: Optional[PointState] = None):
        """Accumulate spring forces."""
        state = self.state if state is None else state
        if self._spring_cache is None:
            self._spring_cache = spring_arrays(self.springs)
        idx, rest, k = self._spring_cache
        accumulate_spring_forces(state.position, state.force, idx, rest, k)

    def compute_forces(self, state: PointState):
        """Full force pipeline for `state`; fixed points end with zero force."""
        self.clear_forces(state)
        self.update_external_forces(state)
        self.update_internal_forces(state)
        state.force[state.fixed] = 0.0

    # ───────────────── Time stepping ─────────────────

    def iterate(self, dt: float = 0.01) -> SolveResult:
        """Advance the system by one timestep.

        Args:
            dt: timestep

        Returns:
            SolveResult (NOT_INITIALIZED if the system has no points,
            NOT_CONVERGED if the state became non-finite)
        """
        validate_positive(dt, "dt")
        if self.n_points == 0:
            return SolveResult(SolverStatus.NOT_INITIALIZED)

        backup = self.state.copy()
        history = self._context.copy()
        integrate(self.scheme, self.state, dt, self.compute_forces, self._context)

        if not (np.all(np.isfinite(self.state.position)) and np.all(np.isfinite(self.state.velocity))):
            logger.warning(
                f"{self.scheme.value}: non-finite state at t={self.time:.4f}, step rejected"
            )
            self.state.assign(backup)
            self._context.assign(history)
            return SolveResult(SolverStatus.NOT_CONVERGED, iterations=1)

        self.time += dt
        return SolveResult(SolverStatus.CONVERGED, iterations=1)

    # ───────────────── Accessors ─────────────────

    def get_positions(self) -> np.ndarray:
        """Copy of the current positions (n, 3)."""
        return self.state.position.copy()

    def point(self, i: int) -> Point:
        return self.state.point(i)

    def kinetic_energy(self) -> float:
        return float(0.5 * np.sum(self.state.mass * np.sum(self.state.velocity ** 2, axis=1)))

    def describe(self) -> str:
        """Multi-line dump of points and springs, logged at debug level."""
        lines = [f"MassSpringSystem ({self.n_points} points, {len(self.springs)} springs, {self.scheme.value})"]
        for i in range(self.n_points):
            p = self.state.point(i)
            lines.append(
                f"  point {i}: pos={p.position} vel={p.velocity} force={p.force} "
                f"mass={p.mass} damping={p.damping} fixed={p.fixed}"
            )
        for n, s in enumerate(self.springs):
            lines.append(f"  spring {n}: ids={s.ids} rest={s.rest_length:.6f} k={s.stiffness}")
        text = "\n".join(lines)
        logger.debug(text)
        return text
