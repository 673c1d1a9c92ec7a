"""Solver configuration: Pydantic models + TOML loading."""

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


SchemeName = Literal[
    "forward_euler",
    "symplectic_euler",
    "backward_euler",
    "leapfrog",
    "midpoint",
    "verlet",
    "rk4",
]


class MassSpringConfig(BaseModel):
    """Mass-spring system settings."""

    mass: float = Field(1.0, gt=0)
    damping: float = Field(0.1, ge=0)
    stiffness: float = Field(0.25, gt=0)
    dt: float = Field(0.01, gt=0)
    scheme: SchemeName = "rk4"
    # cap on the constraint pull applied to a dragged vertex per step
    max_pull: float = Field(0.25, gt=0)
    external_force_factor: float = Field(1.0, ge=0)


class ArapConfig(BaseModel):
    """ARAP solver settings."""

    edge_weight: float = Field(1.0, gt=0)
    anchor_weight: float = Field(100.0, gt=0)
    epsilon: float = Field(1e-6, gt=0)
    max_iterations: int = Field(100, ge=1)
    # maximum distance a moving anchor travels per solve() call
    anchor_step: float = Field(0.01, gt=0)


class FemConfig(BaseModel):
    """2D FEM solver settings."""

    mu: float = Field(10.5, gt=0)
    lam: float = 0.5
    force_gain: float = Field(1.0, gt=0)
    # cap on the target offset turned into a pseudo-force per frame
    max_step: float = Field(0.25, gt=0)
    linear_solver: Literal["cg", "direct"] = "cg"
    cg_tol: float = Field(1e-10, gt=0)
    cg_maxiter: int = Field(5000, ge=1)


class SimulationConfig(BaseModel):
    """Top-level settings for a simulation run."""

    solver: Literal["mass_spring", "arap", "fem"] = "arap"
    grid_size: int = Field(4, ge=2)
    grid_length: float = Field(1.5, gt=0)
    steps: int = Field(100, ge=0)
    mass_spring: MassSpringConfig = Field(default_factory=MassSpringConfig)
    arap: ArapConfig = Field(default_factory=ArapConfig)
    fem: FemConfig = Field(default_factory=FemConfig)

    @classmethod
    def from_toml(cls, path: str | Path) -> "SimulationConfig":
        """Load settings from a TOML file.

        Args:
            path: TOML file path

        Returns:
            SimulationConfig instance
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls(**data)

    @classmethod
    def default(cls) -> "SimulationConfig":
        """Default settings."""
        return cls()
