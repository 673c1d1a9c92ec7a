"""Vectorized global stiffness assembly.

Element matrices are computed in one batch and scattered into COO triplets
through an (n_elem, 6) DOF index array; duplicate entries are summed when
the matrix is converted to CSR.
"""

import numpy as np
from scipy import sparse

from .element import element_stiffness


def element_dofs(triangles: np.ndarray) -> np.ndarray:
    """Global DOF indices (2·id, 2·id + 1) per element corner, shape (n_elem, 6)."""
    n_elem = triangles.shape[0]
    dofs = np.empty((n_elem, 6), dtype=np.int64)
    for a in range(3):
        for d in range(2):
            dofs[:, a * 2 + d] = triangles[:, a] * 2 + d
    return dofs


def assemble_stiffness_matrix(
    vertices: np.ndarray,
    triangles: np.ndarray,
    C: np.ndarray,
) -> sparse.csr_matrix:
    """Assemble the 2n×2n global stiffness matrix.

    Args:
        vertices: (n, 2) or (n, 3) positions; z is ignored
        triangles: (n_elem, 3) vertex ids
        C: (3, 3) elasticity tensor in Voigt notation

    Returns:
        Global stiffness matrix, CSR
    """
    n_dof = vertices.shape[0] * 2
    if triangles.shape[0] == 0:
        return sparse.csr_matrix((n_dof, n_dof))

    coords = vertices[:, :2][triangles]            # (n_elem, 3, 2)
    ke, _ = element_stiffness(coords, C)

    dofs = element_dofs(triangles)
    rows = np.repeat(dofs, 6, axis=1)              # (n_elem, 36)
    cols = np.tile(dofs, (1, 6))                   # (n_elem, 36)
    vals = ke.reshape(ke.shape[0], -1)

    K = sparse.coo_matrix(
        (vals.ravel(), (rows.ravel(), cols.ravel())), shape=(n_dof, n_dof)
    )
    return K.tocsr()


def reduce_system(K: sparse.csr_matrix, fixed_ids, n_vertices: int):
    """Dirichlet elimination of every DOF of the fixed vertices.

    Args:
        K: (2n, 2n) global stiffness
        fixed_ids: vertex ids whose both DOFs are removed
        n_vertices: n

    Returns:
        (K_reduced, free_dofs) where free_dofs[r] is the global DOF of
        reduced index r
    """
    keep = np.ones(2 * n_vertices, dtype=bool)
    fixed = np.asarray(list(fixed_ids), dtype=np.int64)
    keep[2 * fixed] = False
    keep[2 * fixed + 1] = False
    free_dofs = np.nonzero(keep)[0]
    K_red = K[free_dofs][:, free_dofs].tocsr()
    return K_red, free_dofs
