"""Mass-spring system and explicit integrators."""

from .integrators import IntegrationContext, IntegrationScheme, integrate
from .system import MassSpringSystem

__all__ = [
    "IntegrationContext",
    "IntegrationScheme",
    "integrate",
    "MassSpringSystem",
]
