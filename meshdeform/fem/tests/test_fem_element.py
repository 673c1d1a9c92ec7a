"""CST element, assembly and material tests."""

import pytest
import numpy as np

from meshdeform.core.mesh import create_grid
from meshdeform.fem.assembly import assemble_stiffness_matrix, element_dofs, reduce_system
from meshdeform.fem.element import build_be, build_pe, element_stiffness, shape_gradients
from meshdeform.fem.material import LinearElastic
from meshdeform.validation import DeformValidationError


UNIT_TRIANGLE = np.array([[[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]])


def _c(mu=10.5, lam=0.5):
    return LinearElastic.from_lame(mu, lam).get_elasticity_tensor()


# ───────────────── Material ─────────────────


class TestLinearElastic:
    """Lamé parameters and Voigt tensor."""

    def test_elasticity_tensor_from_lame(self):
        C = _c(10.5, 0.5)
        np.testing.assert_allclose(C, [[21.5, 0.5, 0.0], [0.5, 21.5, 0.0], [0.0, 0.0, 10.5]])

    def test_young_poisson_roundtrip(self):
        mat = LinearElastic.from_lame(10.5, 0.5)
        again = LinearElastic(mat.E, mat.nu)
        assert again.mu == pytest.approx(10.5)
        assert again.lam == pytest.approx(0.5)

    def test_plane_stress_lambda(self):
        mat = LinearElastic(1000.0, 0.3, plane_stress=True)
        assert mat.lam == pytest.approx(1000.0 * 0.3 / (1 - 0.09))
        assert mat.mu == pytest.approx(1000.0 / 2.6)

    def test_invalid_lame_raises(self):
        with pytest.raises(DeformValidationError):
            LinearElastic.from_lame(-1.0, 0.5)
        with pytest.raises(DeformValidationError):
            LinearElastic.from_lame(1.0, -2.0)

    def test_invalid_poisson_raises(self):
        with pytest.raises(DeformValidationError):
            LinearElastic(1000.0, 0.5)


# ───────────────── Element ─────────────────


class TestElement:
    """Shape functions, B and K_e of the linear triangle."""

    def test_pe_rows(self):
        Pe = build_pe(UNIT_TRIANGLE)
        np.testing.assert_array_equal(Pe[0], [[1, 0, 0], [1, 1, 0], [1, 0, 1]])

    def test_shape_gradients_unit_triangle(self):
        """N0 = 1 - x - y, N1 = x, N2 = y."""
        dN, area = shape_gradients(UNIT_TRIANGLE)
        np.testing.assert_allclose(dN[0], [[-1, -1], [1, 0], [0, 1]], atol=1e-12)
        assert area[0] == pytest.approx(0.5)

    def test_area_orientation_independent(self):
        flipped = UNIT_TRIANGLE[:, ::-1, :]
        _, area = shape_gradients(flipped)
        assert area[0] == pytest.approx(0.5)

    def test_b_matrix_engineering_shear(self):
        dN, _ = shape_gradients(UNIT_TRIANGLE)
        B = build_be(dN)[0]
        expected = np.array([
            [-1, 0, 1, 0, 0, 0],
            [0, -1, 0, 0, 0, 1],
            [-1, -1, 0, 1, 1, 0],
        ])
        np.testing.assert_allclose(B, expected, atol=1e-12)

    def test_ke_symmetric_and_rigid_modes(self):
        coords = np.array([[[0.2, 0.1], [1.3, 0.4], [0.5, 1.2]]])
        Ke, _ = element_stiffness(coords, _c())
        Ke = Ke[0]
        np.testing.assert_allclose(Ke, Ke.T, atol=1e-12)

        x, y = coords[0, :, 0], coords[0, :, 1]
        tx = np.tile([1.0, 0.0], 3)
        ty = np.tile([0.0, 1.0], 3)
        rot = np.column_stack([-y, x]).ravel()
        for mode in (tx, ty, rot):
            np.testing.assert_allclose(Ke @ mode, 0.0, atol=1e-10)

    def test_ke_positive_semidefinite(self):
        Ke, _ = element_stiffness(UNIT_TRIANGLE, _c())
        eig = np.linalg.eigvalsh(Ke[0])
        assert np.all(eig > -1e-10)
        # three rigid modes
        assert np.sum(np.abs(eig) < 1e-9) == 3

    def test_degenerate_triangle_raises(self):
        coords = np.array([[[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]]])
        with pytest.raises(DeformValidationError, match="degenerate"):
            shape_gradients(coords)


# ───────────────── Assembly ─────────────────


class TestAssembly:
    """Global K and Dirichlet elimination."""

    def test_element_dofs(self):
        dofs = element_dofs(np.array([[0, 2, 5]]))
        np.testing.assert_array_equal(dofs, [[0, 1, 4, 5, 10, 11]])

    def test_global_symmetric_with_translation_nullspace(self):
        vertices, triangles = create_grid(1.5, 4)
        K = assemble_stiffness_matrix(vertices, triangles, _c())
        assert K.shape == (32, 32)
        Kd = K.toarray()
        np.testing.assert_allclose(Kd, Kd.T, atol=1e-10)
        np.testing.assert_allclose(Kd @ np.tile([1.0, 0.0], 16), 0.0, atol=1e-10)
        np.testing.assert_allclose(Kd @ np.tile([0.0, 1.0], 16), 0.0, atol=1e-10)

    def test_single_element_matches_ke(self):
        vertices = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        K = assemble_stiffness_matrix(vertices, np.array([[0, 1, 2]]), _c())
        Ke, _ = element_stiffness(UNIT_TRIANGLE, _c())
        np.testing.assert_allclose(K.toarray(), Ke[0], atol=1e-12)

    def test_reduce_system(self):
        vertices, triangles = create_grid(1.0, 3)
        K = assemble_stiffness_matrix(vertices, triangles, _c())
        K_red, free = reduce_system(K, [0, 8], 9)
        assert K_red.shape == (14, 14)
        assert 0 not in free and 1 not in free
        assert 16 not in free and 17 not in free
        np.testing.assert_allclose(K_red.toarray(), K.toarray()[np.ix_(free, free)])
