"""Linear triangle (CST) element.

Shape functions N_k(x, y) = a_k + b_k·x + c_k·y are the columns of P_e⁻¹,
where P_e has rows [1, x_k, y_k]. Their gradients are constant over the
element, so the stiffness is a single product K_e = B_eᵀ·C·B_e·area.

DOF order per element: (u0x, u0y, u1x, u1y, u2x, u2y).
"""

import numpy as np

from ..validation import DeformValidationError


def build_pe(coords: np.ndarray) -> np.ndarray:
    """P_e matrices.

    Args:
        coords: (n_elem, 3, 2) corner coordinates

    Returns:
        (n_elem, 3, 3) with rows [1, x_k, y_k]
    """
    n = coords.shape[0]
    Pe = np.ones((n, 3, 3))
    Pe[:, :, 1:] = coords
    return Pe


def shape_gradients(coords: np.ndarray):
    """Shape function gradients and element areas.

    Returns:
        dN: (n_elem, 3, 2) with dN[e, k] = (∂N_k/∂x, ∂N_k/∂y)
        area: (n_elem,)

    Raises:
        DeformValidationError: degenerate (zero-area) element
    """
    Pe = build_pe(coords)
    det = np.linalg.det(Pe)
    area = 0.5 * np.abs(det)
    bad = area < 1e-14
    if np.any(bad):
        raise DeformValidationError(
            f"{int(np.sum(bad))} degenerate triangle(s), first index {int(np.argmax(bad))}",
            parameter="triangles",
            value=int(np.argmax(bad)),
            suggestion="remove collinear triangles before building the FEM system",
        )
    Pinv = np.linalg.inv(Pe)
    # row 1 of P_e⁻¹ holds b_k = ∂N_k/∂x, row 2 holds c_k = ∂N_k/∂y
    dN = np.transpose(Pinv[:, 1:, :], (0, 2, 1))
    return dN, area


def build_be(dN: np.ndarray) -> np.ndarray:
    """Strain-displacement matrices (ε_xx, ε_yy, γ_xy).

    Args:
        dN: (n_elem, 3, 2) shape function gradients

    Returns:
        B: (n_elem, 3, 6)
    """
    n = dN.shape[0]
    B = np.zeros((n, 3, 6))
    for a in range(3):
        B[:, 0, 2 * a] = dN[:, a, 0]          # ε_xx
        B[:, 1, 2 * a + 1] = dN[:, a, 1]      # ε_yy
        B[:, 2, 2 * a] = dN[:, a, 1]          # γ_xy
        B[:, 2, 2 * a + 1] = dN[:, a, 0]
    return B


def build_ke(B: np.ndarray, C: np.ndarray, area: np.ndarray) -> np.ndarray:
    """K_e = area·B_eᵀ·C·B_e for every element, shape (n_elem, 6, 6)."""
    BtC = np.einsum('eiv,vw->eiw', B.transpose(0, 2, 1), C)
    return np.einsum('e,eiw,ewj->eij', area, BtC, B)


def element_stiffness(coords: np.ndarray, C: np.ndarray):
    """Convenience wrapper: element matrices and areas from coordinates.

    Returns:
        (Ke (n_elem, 6, 6), area (n_elem,))
    """
    dN, area = shape_gradients(coords)
    return build_ke(build_be(dN), C, area), area
