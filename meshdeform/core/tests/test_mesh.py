"""Grid generation and DeformableMesh build/read tests."""

import pytest
import numpy as np

from meshdeform.arap.solver import ArapSolver
from meshdeform.core.mesh import AnchorSet, DeformableMesh, create_grid
from meshdeform.fem.solver import FemSolver
from meshdeform.massspring.system import MassSpringSystem
from meshdeform.validation import DeformValidationError


# ───────────────── Grid ─────────────────


class TestCreateGrid:
    """Square grid centred at the origin."""

    def test_counts(self):
        vertices, triangles = create_grid(1.0, 3)
        assert vertices.shape == (9, 3)
        assert triangles.shape == (8, 3)

    def test_centred_in_plane(self):
        vertices, _ = create_grid(2.0, 5)
        assert vertices[:, 0].min() == pytest.approx(-1.0)
        assert vertices[:, 0].max() == pytest.approx(1.0)
        assert vertices[:, 1].min() == pytest.approx(-1.0)
        assert np.all(vertices[:, 2] == 0.0)
        np.testing.assert_allclose(vertices.mean(axis=0), 0.0, atol=1e-12)

    def test_row_major_layout(self):
        """Vertex i·n + j sits at (spacing·i - L/2, spacing·j - L/2)."""
        vertices, _ = create_grid(1.0, 3)
        np.testing.assert_allclose(vertices[1], [-0.5, 0.0, 0.0])
        np.testing.assert_allclose(vertices[3], [0.0, -0.5, 0.0])

    def test_triangles_non_degenerate(self):
        vertices, triangles = create_grid(1.5, 4)
        p = vertices[triangles]
        cross = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        area = 0.5 * np.linalg.norm(cross, axis=1)
        np.testing.assert_allclose(area, 0.5 * 0.5 ** 2)

    def test_too_small_raises(self):
        with pytest.raises(DeformValidationError):
            create_grid(1.0, 1)


class TestAnchorSet:
    """Anchors keyed by vertex id."""

    def test_one_anchor_per_vertex(self):
        anchors = AnchorSet()
        anchors.add(3, [0, 0, 0])
        with pytest.raises(DeformValidationError):
            anchors.add(3, [1, 1, 1], fixed=False)

    def test_fixed_and_moving_split(self):
        anchors = AnchorSet()
        anchors.add(0, [0, 0, 0])
        anchors.add(5, [0, 0, 1], fixed=False)
        assert anchors.fixed_ids == [0]
        assert [i for i, _ in anchors.moving] == [5]
        assert 5 in anchors
        assert len(anchors) == 2


# ───────────────── DeformableMesh ─────────────────


@pytest.fixture
def grid_mesh():
    mesh = DeformableMesh.grid(1.5, 4)
    mesh.set_constraints([0, 3, 12, 15], [(5, [0.0, 0.0, 1.0])])
    return mesh


class TestDeformableMesh:
    """Adjacency and build/read pairs."""

    def test_adjacency_symmetric(self, grid_mesh):
        assert grid_mesh.adjacency.is_symmetric()
        assert not grid_mesh.is_adjacency_empty()

    def test_interior_vertex_degree(self, grid_mesh):
        """Interior vertices of this tessellation have 6 neighbours."""
        assert grid_mesh.vertex_degree(5) == 6

    def test_build_mass_spring_one_spring_per_edge(self, grid_mesh):
        system = MassSpringSystem()
        assert grid_mesh.build_mass_spring_system(system)
        assert system.n_points == 16
        # 3·4 horizontal + 3·4 vertical + 9 diagonals
        assert len(system.springs) == 33
        pairs = {tuple(sorted(s.ids)) for s in system.springs}
        assert len(pairs) == 33
        assert system.state.fixed.sum() == 4

    def test_build_mass_spring_defaults(self, grid_mesh):
        system = MassSpringSystem()
        grid_mesh.build_mass_spring_system(system)
        assert np.all(system.state.mass == 1.0)
        assert np.all(system.state.damping == pytest.approx(0.1))
        assert all(s.stiffness == pytest.approx(0.25) for s in system.springs)

    def test_mass_spring_roundtrip(self, grid_mesh):
        before = grid_mesh.vertices.copy()
        system = MassSpringSystem()
        grid_mesh.build_mass_spring_system(system)
        assert grid_mesh.read_mass_spring_system(system)
        np.testing.assert_allclose(grid_mesh.vertices, before)

    def test_arap_roundtrip(self, grid_mesh):
        before = grid_mesh.vertices.copy()
        arap = ArapSolver()
        assert grid_mesh.build_arap(arap)
        assert grid_mesh.read_arap(arap)
        np.testing.assert_allclose(grid_mesh.vertices, before, atol=1e-9)

    def test_fem_roundtrip(self, grid_mesh):
        before = grid_mesh.vertices.copy()
        fem = FemSolver()
        assert grid_mesh.build_fem(fem, moving_constraints=[(5, [0.5, 0.5, 0.0])])
        assert grid_mesh.read_fem(fem)
        np.testing.assert_allclose(grid_mesh.vertices, before)

    def test_read_size_mismatch_leaves_mesh(self, grid_mesh):
        before = grid_mesh.vertices.copy()
        other = DeformableMesh.grid(1.0, 3)
        other.set_constraints([0, 2, 6, 8])
        system = MassSpringSystem()
        other.build_mass_spring_system(system)
        system.state.position += 1.0

        assert not grid_mesh.read_mass_spring_system(system)
        np.testing.assert_array_equal(grid_mesh.vertices, before)

    def test_arap_drag_moves_constrained_vertex(self, grid_mesh):
        arap = ArapSolver(anchor_step=0.1)
        grid_mesh.build_arap(arap)
        for _ in range(20):
            assert arap.solve(1e-8).ok
            grid_mesh.read_arap(arap)
        assert grid_mesh.vertices[5, 2] > 0.5
        # fixed corners stay close to their rest positions
        assert abs(grid_mesh.vertices[0, 2]) < 0.05
