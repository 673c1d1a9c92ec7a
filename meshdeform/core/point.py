"""Per-vertex physical state.

`Point` describes a single particle. The mass-spring system stores all of
its particles in a `PointState`, a structure of arrays that the integrators
update with vectorized numpy operations.
"""

import numpy as np
from dataclasses import dataclass, field


@dataclass
class Point:
    """Single particle.

    Attributes:
        position: (3,) position
        velocity: (3,) velocity
        force: (3,) force accumulator, cleared every step
        mass: mass (> 0)
        damping: linear damping coefficient (>= 0)
        fixed: True if the point is held in place
    """
    position: np.ndarray
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    force: np.ndarray = field(default_factory=lambda: np.zeros(3))
    mass: float = 1.0
    damping: float = 0.0
    fixed: bool = False


class PointState:
    """Structure-of-arrays storage for n particles."""

    def __init__(self, n: int = 0):
        self.position = np.zeros((n, 3))
        self.velocity = np.zeros((n, 3))
        self.force = np.zeros((n, 3))
        self.mass = np.ones(n)
        self.damping = np.zeros(n)
        self.fixed = np.zeros(n, dtype=bool)

    def __len__(self) -> int:
        return self.position.shape[0]

    @property
    def free(self) -> np.ndarray:
        """Boolean mask of points integrators may move."""
        return ~self.fixed

    def append(self, position, mass: float, damping: float):
        """Add one point at rest."""
        self.position = np.vstack([self.position, np.asarray(position, dtype=np.float64).reshape(1, 3)])
        self.velocity = np.vstack([self.velocity, np.zeros((1, 3))])
        self.force = np.vstack([self.force, np.zeros((1, 3))])
        self.mass = np.append(self.mass, float(mass))
        self.damping = np.append(self.damping, float(damping))
        self.fixed = np.append(self.fixed, False)

    def acceleration(self) -> np.ndarray:
        """(f - d·v) / m for every point; zero for fixed points."""
        acc = (self.force - self.damping[:, None] * self.velocity) / self.mass[:, None]
        acc[self.fixed] = 0.0
        return acc

    def copy(self) -> "PointState":
        other = PointState.__new__(PointState)
        other.position = self.position.copy()
        other.velocity = self.velocity.copy()
        other.force = self.force.copy()
        other.mass = self.mass.copy()
        other.damping = self.damping.copy()
        other.fixed = self.fixed.copy()
        return other

    def assign(self, other: "PointState"):
        """Copy every array of `other` into this state, in place."""
        self.position[...] = other.position
        self.velocity[...] = other.velocity
        self.force[...] = other.force
        self.mass[...] = other.mass
        self.damping[...] = other.damping
        self.fixed[...] = other.fixed

    def point(self, i: int) -> Point:
        """Snapshot of point i."""
        return Point(
            position=self.position[i].copy(),
            velocity=self.velocity[i].copy(),
            force=self.force[i].copy(),
            mass=float(self.mass[i]),
            damping=float(self.damping[i]),
            fixed=bool(self.fixed[i]),
        )
