"""Mesh data: particles, springs, adjacency and the deformable mesh."""

from .point import Point, PointState
from .spring import Spring
from .adjacency import Adjacency
from .mesh import Anchor, AnchorSet, DeformableMesh, create_grid

__all__ = [
    "Point",
    "PointState",
    "Spring",
    "Adjacency",
    "Anchor",
    "AnchorSet",
    "DeformableMesh",
    "create_grid",
]
