"""Linear elastic material model.

Small strain isotropic linear elasticity in 2D:
σ = λ·tr(ε)·I + 2μ·ε

where:
- ε = (ε_xx, ε_yy, γ_xy) in Voigt notation, γ_xy = 2·ε_xy
- λ, μ are Lamé parameters
"""

import numpy as np

from ..validation import validate_elastic_constants, validate_lame


class LinearElastic:
    """Isotropic linear elastic material for 2D elements."""

    def __init__(
        self,
        youngs_modulus: float,
        poisson_ratio: float,
        plane_stress: bool = False
    ):
        """Initialize linear elastic material.

        Args:
            youngs_modulus: Young's modulus E
            poisson_ratio: Poisson's ratio ν
            plane_stress: Use plane stress assumption instead of plane strain
        """
        validate_elastic_constants(youngs_modulus, poisson_ratio)
        self.E = youngs_modulus
        self.nu = poisson_ratio
        self.plane_stress = plane_stress

        # Compute Lamé parameters
        self.mu = youngs_modulus / (2 * (1 + poisson_ratio))

        if plane_stress:
            # Plane stress: modified λ
            self.lam = youngs_modulus * poisson_ratio / (1 - poisson_ratio**2)
        else:
            self.lam = youngs_modulus * poisson_ratio / ((1 + poisson_ratio) * (1 - 2*poisson_ratio))

    @classmethod
    def from_lame(cls, mu: float, lam: float) -> "LinearElastic":
        """Create directly from Lamé parameters (plane strain)."""
        validate_lame(mu, lam)
        mat = cls.__new__(cls)
        mat.mu = float(mu)
        mat.lam = float(lam)
        mat.plane_stress = False
        # back out E, ν for reporting
        mat.E = mu * (3 * lam + 2 * mu) / (lam + mu)
        mat.nu = lam / (2 * (lam + mu))
        return mat

    def get_elasticity_tensor(self) -> np.ndarray:
        """Get elasticity tensor in Voigt notation.

        Returns:
            C matrix (3x3)
        """
        lam, mu = self.lam, self.mu
        C = np.zeros((3, 3))
        C[0, 0] = C[1, 1] = lam + 2*mu
        C[0, 1] = C[1, 0] = lam
        C[2, 2] = mu
        return C

    def __repr__(self) -> str:
        return f"LinearElastic(mu={self.mu:.4g}, lam={self.lam:.4g}, E={self.E:.4g}, nu={self.nu:.4g})"
