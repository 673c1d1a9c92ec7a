"""Linear springs between particle pairs."""

import numpy as np
from dataclasses import dataclass
from typing import List, Tuple


@dataclass
class Spring:
    """Spring between points i and j.

    Attributes:
        i, j: endpoint ids (i != j)
        rest_length: distance between the endpoints at creation time
        stiffness: spring constant k
    """
    i: int
    j: int
    rest_length: float
    stiffness: float = 1.0

    @classmethod
    def between(cls, i: int, j: int, p_i, p_j, stiffness: float) -> "Spring":
        """Create a spring whose rest length is the current distance."""
        rest = float(np.linalg.norm(np.asarray(p_i) - np.asarray(p_j)))
        return cls(int(i), int(j), rest, float(stiffness))

    @property
    def ids(self) -> Tuple[int, int]:
        return self.i, self.j

    def force(self, p_i: np.ndarray, p_j: np.ndarray) -> np.ndarray:
        """Force exerted on endpoint i; endpoint j receives the negation.

        f = k·(|p_j - p_i| - L0)·normalize(p_j - p_i)
        """
        d = p_j - p_i
        length = np.linalg.norm(d)
        if length < 1e-12:
            return np.zeros(3)
        return self.stiffness * (length - self.rest_length) * d / length


def spring_arrays(springs: List[Spring]):
    """Pack springs into index/rest/stiffness arrays for batched force evaluation.

    Returns:
        (idx (m, 2) int64, rest (m,), stiffness (m,))
    """
    if not springs:
        return np.zeros((0, 2), dtype=np.int64), np.zeros(0), np.zeros(0)
    idx = np.array([s.ids for s in springs], dtype=np.int64)
    rest = np.array([s.rest_length for s in springs])
    k = np.array([s.stiffness for s in springs])
    return idx, rest, k


def accumulate_spring_forces(
    position: np.ndarray,
    force: np.ndarray,
    idx: np.ndarray,
    rest: np.ndarray,
    stiffness: np.ndarray,
):
    """Add all spring forces into `force` in place (vectorized).

    Zero-length springs have no direction and contribute nothing.
    """
    if idx.shape[0] == 0:
        return
    d = position[idx[:, 1]] - position[idx[:, 0]]
    length = np.linalg.norm(d, axis=1)
    valid = length > 1e-12
    scale = np.zeros_like(length)
    scale[valid] = stiffness[valid] * (length[valid] - rest[valid]) / length[valid]
    f = scale[:, None] * d
    np.add.at(force, idx[:, 0], f)
    np.add.at(force, idx[:, 1], -f)
