"""ARAP solver tests."""

import pytest
import numpy as np

from meshdeform.arap import solver as arap_solver
from meshdeform.arap.solver import ArapSolver, ArapState, extract_rot, extract_rot_batch
from meshdeform.core.adjacency import Adjacency
from meshdeform.core.mesh import create_grid
from meshdeform.result import SolverStatus
from meshdeform.validation import DeformValidationError


def _rotation(axis, angle):
    """Rodrigues rotation matrix."""
    k = np.asarray(axis, dtype=float)
    k = k / np.linalg.norm(k)
    K = np.array([[0, -k[2], k[1]], [k[2], 0, -k[0]], [-k[1], k[0], 0]])
    return np.eye(3) + np.sin(angle) * K + (1 - np.cos(angle)) * K @ K


@pytest.fixture
def tetra():
    vertices = np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
    ])
    triangles = np.array([[0, 1, 2], [0, 1, 3], [0, 2, 3], [1, 2, 3]])
    return vertices, Adjacency.from_triangles(triangles, 4)


@pytest.fixture
def grid():
    vertices, triangles = create_grid(1.5, 4)
    return vertices, Adjacency.from_triangles(triangles, 16)


# ───────────────── Rotation extraction ─────────────────


class TestExtractRot:
    """Closest proper rotation from a covariance matrix."""

    def test_identity(self):
        np.testing.assert_allclose(extract_rot(np.eye(3)), np.eye(3), atol=1e-12)

    def test_recovers_rotation(self):
        Q = _rotation([1, 2, 3], 0.7)
        S = np.diag([3.0, 2.0, 1.0])
        # J = Σ e_p (Q e_p)ᵀ = S·Qᵀ
        np.testing.assert_allclose(extract_rot(S @ Q.T), Q, atol=1e-10)

    def test_reflection_gives_proper_rotation(self):
        J = np.diag([1.0, 2.0, -3.0])
        R = extract_rot(J)
        assert np.linalg.det(R) == pytest.approx(1.0)
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)

    def test_random_matrices_proper(self):
        rng = np.random.default_rng(0)
        J = rng.normal(size=(50, 3, 3))
        R = extract_rot_batch(J)
        np.testing.assert_allclose(np.linalg.det(R), 1.0, atol=1e-10)
        np.testing.assert_allclose(R @ np.transpose(R, (0, 2, 1)), np.broadcast_to(np.eye(3), R.shape), atol=1e-10)

    def test_batch_matches_single(self):
        rng = np.random.default_rng(1)
        J = rng.normal(size=(10, 3, 3))
        batch = extract_rot_batch(J)
        for k in range(10):
            np.testing.assert_allclose(batch[k], extract_rot(J[k]), atol=1e-10)


# ───────────────── Initialization ─────────────────


class TestInitialize:
    """Factorization and state machine."""

    def test_state_after_initialize(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        assert arap.state == ArapState.UNINITIALIZED
        assert arap.initialize(vertices, adj, [(0, vertices[0]), (15, vertices[15])])
        assert arap.is_valid
        assert arap.state == ArapState.SOLVED
        assert arap.rotations.shape == (16, 3, 3)

    def test_build_matrix_l_factored(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        arap.initialize(vertices, adj, [(0, vertices[0])])
        assert arap.build_matrix_l()
        assert arap.state == ArapState.FACTORED
        L = arap.L.toarray()
        np.testing.assert_allclose(L, L.T)
        # row sums are zero except on anchors
        sums = L.sum(axis=1)
        assert sums[0] == pytest.approx(100.0)
        np.testing.assert_allclose(sums[1:], 0.0, atol=1e-12)

    def test_no_anchor_fails(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        assert not arap.initialize(vertices, adj, [])
        assert not arap.is_valid
        assert arap.factorization_failed
        assert arap.solve().status == SolverStatus.FACTORIZATION_FAILED
        assert not arap.solve().ok
        assert not arap.local_step()
        assert not arap.global_step()

    def test_solve_before_initialize(self):
        assert ArapSolver().solve().status == SolverStatus.NOT_INITIALIZED

    def test_reinitialize_clears_factorization_failure(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        assert not arap.initialize(vertices, adj, [])
        assert arap.initialize(vertices, adj, [(0, vertices[0])])
        assert not arap.factorization_failed
        assert arap.solve().ok

    def test_sparse_factor_matches_dense(self, grid, monkeypatch):
        vertices, adj = grid
        results = []
        for limit in (arap_solver.DENSE_FACTOR_LIMIT, 0):
            monkeypatch.setattr(arap_solver, "DENSE_FACTOR_LIMIT", limit)
            arap = ArapSolver(anchor_step=0.5)
            assert arap.initialize(vertices, adj, [(0, vertices[0]), (15, vertices[15])], [(5, [0, 0, 1])])
            assert arap.solve().ok
            results.append(arap.get_result())
        assert not np.allclose(results[0], vertices)
        np.testing.assert_allclose(results[1], results[0], atol=1e-8)

    def test_zero_max_iterations_rejected(self):
        with pytest.raises(DeformValidationError, match="max_iterations"):
            ArapSolver(max_iterations=0)

    def test_solve_zero_max_iterations_rejected(self, grid):
        vertices, adj = grid
        arap = ArapSolver(anchor_step=1.0)
        arap.initialize(vertices, adj, [(0, vertices[0])], [(5, [0, 0, 1])])
        anchor_before = arap.anchors[5].copy()
        with pytest.raises(DeformValidationError):
            arap.solve(max_iterations=0)
        # anchors are not advanced by a rejected call
        np.testing.assert_array_equal(arap.anchors[5], anchor_before)

    def test_unanchored_component_fails(self):
        vertices = np.array([
            [0, 0, 0], [1, 0, 0], [0, 1, 0],
            [5, 0, 0], [6, 0, 0], [5, 1, 0],
        ], dtype=float)
        adj = Adjacency.from_triangles(np.array([[0, 1, 2], [3, 4, 5]]), 6)
        arap = ArapSolver()
        assert not arap.initialize(vertices, adj, [(0, vertices[0])])
        assert arap.initialize(vertices, adj, [(0, vertices[0]), (3, vertices[3])])

    def test_adjacency_size_mismatch_raises(self, grid):
        vertices, _ = grid
        with pytest.raises(DeformValidationError):
            ArapSolver().initialize(vertices, Adjacency(3), [(0, vertices[0])])

    def test_duplicate_anchor_raises(self, grid):
        vertices, adj = grid
        with pytest.raises(DeformValidationError):
            ArapSolver().initialize(vertices, adj, [(0, vertices[0])], [(0, [0, 0, 1])])

    def test_isolated_anchored_vertex(self):
        vertices = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [3, 3, 3]], dtype=float)
        adj = Adjacency.from_triangles(np.array([[0, 1, 2]]), 4)
        arap = ArapSolver()
        assert arap.initialize(vertices, adj, [(0, vertices[0]), (3, vertices[3])])
        arap.solve()
        np.testing.assert_allclose(arap.rotations[3], np.eye(3))
        np.testing.assert_allclose(arap.get_result()[3], vertices[3], atol=1e-12)


# ───────────────── Results ─────────────────


class TestResult:
    """Round trip, idempotence and rigid motion."""

    def test_roundtrip(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        arap.initialize(vertices, adj, [(0, vertices[0]), (3, vertices[3])], [(5, [0, 0, 1])])
        np.testing.assert_allclose(arap.get_result(), vertices, atol=1e-10)
        assert arap.l2_energy() == pytest.approx(0.0, abs=1e-18)

    def test_get_result_idempotent(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        arap.initialize(vertices, adj, [(0, vertices[0])], [(5, [0, 0, 1])])
        arap.solve()
        a = arap.get_result()
        b = arap.get_result()
        np.testing.assert_array_equal(a, b)
        a[:] = 0.0
        assert not np.allclose(arap.get_result(), 0.0)

    def test_rigid_motion(self, tetra):
        vertices, adj = tetra
        Q = _rotation([0.3, -1.0, 0.5], 0.9)
        t = np.array([0.5, -0.2, 1.0])
        moved = vertices @ Q.T + t

        arap = ArapSolver()
        assert arap.initialize(vertices, adj, [(i, moved[i]) for i in range(4)])
        result = arap.solve(eps=1e-14, max_iterations=500)

        assert result.ok
        assert result.energy < 1e-8
        np.testing.assert_allclose(arap.get_result(), moved, atol=1e-4)
        for R in arap.rotations:
            np.testing.assert_allclose(R, Q, atol=1e-3)

    def test_objective_non_increasing(self, grid):
        """½·E + Σ a‖x_i - c_i‖² decreases under local/global alternation."""
        vertices, adj = grid
        arap = ArapSolver(anchor_step=1.0)
        arap.initialize(vertices, adj, [(0, vertices[0]), (3, vertices[3]), (12, vertices[12]), (15, vertices[15])],
                        [(5, [0, 0, 1])])
        arap.update_anchors()

        def objective():
            penalty = sum(np.sum((arap.X[i] - c) ** 2) for i, c in arap.anchors.items())
            return 0.5 * arap.l2_energy() + arap.anchor_weight * penalty

        values = []
        for _ in range(10):
            arap.local_step()
            values.append(objective())
            arap.global_step()
        assert all(b <= a + 1e-9 for a, b in zip(values, values[1:]))

    def test_rotations_proper_after_solve(self, grid):
        vertices, adj = grid
        arap = ArapSolver(anchor_step=0.5)
        arap.initialize(vertices, adj, [(0, vertices[0]), (15, vertices[15])], [(5, [0, 0, 1])])
        arap.solve()
        np.testing.assert_allclose(np.linalg.det(arap.rotations), 1.0, atol=1e-10)


# ───────────────── Animated anchors ─────────────────


class TestAnchors:
    """Moving anchors walk toward their targets."""

    def test_update_anchors_capped_step(self, grid):
        vertices, adj = grid
        arap = ArapSolver(anchor_step=0.1)
        arap.initialize(vertices, adj, [(0, vertices[0])], [(5, vertices[5] + [0, 0, 1.0])])
        arap.update_anchors()
        np.testing.assert_allclose(arap.anchors[5], vertices[5] + [0, 0, 0.1])

    def test_anchor_reaches_target(self, grid):
        vertices, adj = grid
        target = vertices[5] + [0, 0, 0.25]
        arap = ArapSolver(anchor_step=0.1)
        arap.initialize(vertices, adj, [(0, vertices[0])], [(5, target)])
        for _ in range(5):
            arap.update_anchors()
        np.testing.assert_allclose(arap.anchors[5], target)

    def test_fixed_anchor_does_not_move(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        arap.initialize(vertices, adj, [(0, vertices[0])], [(5, [0, 0, 1])])
        arap.update_anchors()
        np.testing.assert_array_equal(arap.anchors[0], vertices[0])

    def test_retarget_unknown_vertex_raises(self, grid):
        vertices, adj = grid
        arap = ArapSolver()
        arap.initialize(vertices, adj, [(0, vertices[0])])
        with pytest.raises(DeformValidationError):
            arap.set_constraint_target(7, [0, 0, 1])
