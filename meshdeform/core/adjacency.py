"""Vertex adjacency for triangle meshes.

Stores one neighbour set per vertex instead of an n×n boolean matrix.
Every edge is inserted in both directions, so `j in neighbors(i)` holds
exactly when `i in neighbors(j)`.
"""

import numpy as np
from typing import Iterable, List, Set, Tuple

from ..validation import DeformValidationError


class Adjacency:
    """Symmetric adjacency relation over vertex ids 0..n-1."""

    def __init__(self, n_vertices: int):
        self.n_vertices = int(n_vertices)
        self._neighbors: List[Set[int]] = [set() for _ in range(self.n_vertices)]

    @classmethod
    def from_triangles(cls, triangles: np.ndarray, n_vertices: int) -> "Adjacency":
        """Build adjacency from the three edges of every triangle."""
        adj = cls(n_vertices)
        for a, b, c in np.asarray(triangles, dtype=np.int64).reshape(-1, 3):
            adj.add_edge(a, b)
            adj.add_edge(b, c)
            adj.add_edge(c, a)
        return adj

    @classmethod
    def from_edges(cls, edges: Iterable[Tuple[int, int]], n_vertices: int) -> "Adjacency":
        adj = cls(n_vertices)
        for i, j in edges:
            adj.add_edge(i, j)
        return adj

    @classmethod
    def from_dense(cls, matrix) -> "Adjacency":
        """Build from a boolean matrix; the matrix must be symmetric."""
        m = np.asarray(matrix, dtype=bool)
        if m.ndim != 2 or m.shape[0] != m.shape[1]:
            raise DeformValidationError(
                f"adjacency matrix must be square, got {m.shape}",
                parameter="adjacency",
                value=m.shape,
            )
        if not np.array_equal(m, m.T):
            raise DeformValidationError(
                "adjacency matrix is not symmetric",
                parameter="adjacency",
                suggestion="set adj[i][j] and adj[j][i] together",
            )
        rows, cols = np.nonzero(np.triu(m, k=1))
        return cls.from_edges(zip(rows.tolist(), cols.tolist()), m.shape[0])

    def add_edge(self, i: int, j: int):
        i, j = int(i), int(j)
        if i == j:
            raise DeformValidationError(
                f"self-loop on vertex {i}",
                parameter="edge",
                value=(i, j),
            )
        if not (0 <= i < self.n_vertices and 0 <= j < self.n_vertices):
            raise DeformValidationError(
                f"edge ({i}, {j}) references a vertex outside [0, {self.n_vertices})",
                parameter="edge",
                value=(i, j),
            )
        self._neighbors[i].add(j)
        self._neighbors[j].add(i)

    def neighbors(self, i: int) -> List[int]:
        """Sorted neighbour ids of vertex i."""
        return sorted(self._neighbors[i])

    def has_edge(self, i: int, j: int) -> bool:
        return j in self._neighbors[i]

    def degree(self, i: int) -> int:
        return len(self._neighbors[i])

    def degrees(self) -> np.ndarray:
        return np.array([len(s) for s in self._neighbors], dtype=np.int64)

    def is_empty(self) -> bool:
        """True when no edge exists."""
        return all(len(s) == 0 for s in self._neighbors)

    def edges(self) -> np.ndarray:
        """Undirected edges (i < j), one row per edge, sorted."""
        pairs = [(i, j) for i, nbrs in enumerate(self._neighbors) for j in nbrs if i < j]
        if not pairs:
            return np.zeros((0, 2), dtype=np.int64)
        return np.array(sorted(pairs), dtype=np.int64)

    def directed_edges(self) -> np.ndarray:
        """Both orientations of every edge, shape (2·n_edges, 2)."""
        e = self.edges()
        return np.vstack([e, e[:, ::-1]]) if e.size else e

    def is_symmetric(self) -> bool:
        return all(i in self._neighbors[j] for i, nbrs in enumerate(self._neighbors) for j in nbrs)

    def copy(self) -> "Adjacency":
        other = Adjacency(self.n_vertices)
        other._neighbors = [set(s) for s in self._neighbors]
        return other

    def __len__(self) -> int:
        return self.n_vertices

    def __repr__(self) -> str:
        return f"Adjacency(n_vertices={self.n_vertices}, n_edges={len(self.edges())})"
