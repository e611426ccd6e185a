"""
Tests for the wind animator.

Wind displacement is recomputed from the rest pose every frame, so these
tests check idempotence, continuity in time, monotonic response with depth,
that the trunk base never moves, and that branches stay on their parents.
"""

import jax.numpy as jnp
import numpy as np
import pytest

from grove import geometry, skeleton, wind
from grove.config import BranchParams, LeafParams, ParameterModel, WindParams
from grove.wind import WindAnimator


def small_tree():
    model = ParameterModel(
        seed=4,
        branch=BranchParams(
            levels=2,
            angle=[0, 45, 45],
            children=[3, 2],
            start=[0, 0.4, 0.2],
            length=[8, 4, 2],
            radius=[0.6, 0.2, 0.08],
            gnarliness=[0.05, 0.15, 0.2],
            twist=[0, 0, 0],
            taper=[0.7, 0.7, 0.7],
            sections=[5, 4, 3],
            segments=[6, 4, 3],
        ),
        leaves=LeafParams(count=2),
    )
    tree = skeleton.build(model)
    return tree, geometry.emit(tree, model)


def small_geometry():
    return small_tree()[1]


class TestKernel:
    """Tests for the pure displacement kernel."""

    def test_zero_sway_no_motion(self) -> None:
        """Vertices with sway 0 and no flutter stay put."""
        rest = jnp.ones((4, 3))
        out = wind.displace(
            rest,
            jnp.zeros((4, 3)),
            jnp.zeros(4),
            jnp.zeros(4),
            jnp.zeros(4),
            jnp.zeros(4),
            jnp.asarray(1.3),
            WindParams(),
        )
        np.testing.assert_allclose(out, rest)

    def test_motion_is_horizontal(self) -> None:
        """Sway displaces in the XZ plane only."""
        rest = jnp.zeros((3, 3))
        out = wind.displace(
            rest,
            jnp.zeros((3, 3)),
            jnp.array([0.5, 1.0, 2.0]),
            jnp.zeros(3),
            jnp.zeros(3),
            jnp.zeros(3),
            jnp.asarray(0.7),
            WindParams(),
        )
        np.testing.assert_allclose(out[:, 1], 0.0)
        assert float(jnp.linalg.norm(out[2])) > 0

    def test_magnitude_matches_formula(self) -> None:
        """Horizontal magnitude is bend(t) * sway ** stiffness."""
        params = WindParams()
        sway = np.array([0.25, 1.0, 2.5], dtype=np.float32)
        t = 2.0
        out = wind.displace(
            jnp.zeros((3, 3)),
            jnp.zeros((3, 3)),
            jnp.asarray(sway),
            jnp.array([0.0, 1.0, 2.0]),
            jnp.zeros(3),
            jnp.zeros(3),
            jnp.asarray(t),
            params,
        )
        magnitude = np.linalg.norm(np.asarray(out)[:, [0, 2]], axis=1)
        np.testing.assert_allclose(magnitude, wind.sway_magnitude(sway, t, params), rtol=1e-5)

    def test_calm_wind_is_still(self) -> None:
        """Calm wind leaves every vertex at rest."""
        rest = jnp.arange(12.0).reshape(4, 3)
        out = wind.displace(
            rest,
            jnp.ones((4, 3)),
            jnp.full(4, 3.0),
            jnp.zeros(4),
            jnp.ones(4),
            jnp.arange(4.0),
            jnp.asarray(5.0),
            WindParams.calm(),
        )
        np.testing.assert_allclose(out, rest)

    def test_flutter_phase_desynchronizes_leaves(self) -> None:
        """Equal sway but different flutter phases move along the normal differently."""
        params = WindParams.stormy()
        out = wind.displace(
            jnp.zeros((2, 3)),
            jnp.tile(jnp.array([0.0, 1.0, 0.0]), (2, 1)),
            jnp.ones(2),
            jnp.zeros(2),
            jnp.ones(2),
            jnp.array([0.0, 1.5]),
            jnp.asarray(0.4),
            params,
        )
        out = np.asarray(out)
        np.testing.assert_allclose(out[0, [0, 2]], out[1, [0, 2]], rtol=1e-6)
        assert abs(out[0, 1] - out[1, 1]) > 1e-3


class TestBuckets:
    """Tests for padded kernel shapes."""

    @pytest.mark.parametrize(
        "n, expected", [(0, 256), (1, 256), (256, 256), (257, 512), (3000, 4096)]
    )
    def test_bucket_size(self, n, expected) -> None:
        """Buffers round up to a power of two with a floor."""
        assert wind.bucket_size(n) == expected

    def test_padding_does_not_change_result(self) -> None:
        """Padded and unpadded kernels agree on the real vertices."""
        geom = small_geometry()
        mesh = geom.leaves
        t = 1.25
        params = WindParams.stormy()
        direct = wind.displace(
            jnp.asarray(mesh.rest_positions),
            jnp.asarray(mesh.normals),
            jnp.asarray(mesh.sway),
            jnp.asarray(mesh.phase),
            jnp.asarray(mesh.flutter),
            jnp.asarray(mesh.flutter_phase),
            jnp.asarray(t, dtype=jnp.float32),
            params,
        )
        padded = WindAnimator(params).displaced(mesh, t)
        assert padded.shape == mesh.positions.shape
        np.testing.assert_allclose(padded, np.asarray(direct), atol=1e-6)


class TestAnimator:
    """Tests for in-place buffer updates."""

    def test_idempotent(self) -> None:
        """Two updates at the same time give identical positions."""
        geom = small_geometry()
        animator = WindAnimator()
        animator.update(geom, 1.5)
        first = geom.branches.positions.copy()
        animator.update(geom, 1.5)
        np.testing.assert_array_equal(first, geom.branches.positions)

    def test_no_accumulation(self) -> None:
        """Updating at other times and back returns the same pose."""
        geom = small_geometry()
        animator = WindAnimator()
        animator.update(geom, 0.5)
        reference = geom.leaves.positions.copy()
        for t in (1.0, 2.0, 3.0):
            animator.update(geom, t)
        animator.update(geom, 0.5)
        np.testing.assert_allclose(geom.leaves.positions, reference, atol=1e-6)

    def test_buffers_reused(self) -> None:
        """The position array object is rewritten, not replaced."""
        geom = small_geometry()
        buffer = geom.branches.positions
        WindAnimator().update(geom, 1.0)
        assert geom.branches.positions is buffer
        assert buffer.dtype == np.float32

    def test_rest_pose_untouched(self) -> None:
        """The rest pose is never modified."""
        geom = small_geometry()
        rest = geom.branches.rest_positions.copy()
        WindAnimator(WindParams.stormy()).update(geom, 2.0)
        np.testing.assert_array_equal(geom.branches.rest_positions, rest)
        assert not np.array_equal(geom.branches.positions, rest)

    def test_continuous_in_time(self) -> None:
        """Small time steps produce small displacements."""
        geom = small_geometry()
        animator = WindAnimator()
        animator.update(geom, 1.0)
        a = geom.branches.positions.copy()
        animator.update(geom, 1.001)
        b = geom.branches.positions.copy()
        assert np.max(np.abs(a - b)) < 1e-2

    def test_trunk_base_fixed(self) -> None:
        """The first trunk ring never moves."""
        geom = small_geometry()
        start, _ = geom.branches.node_ranges[0]
        ring = slice(start, start + 7)
        for t in (0.0, 0.8, 3.3):
            WindAnimator(WindParams.stormy()).update(geom, t)
            np.testing.assert_array_equal(
                geom.branches.positions[ring], geom.branches.rest_positions[ring]
            )

    @pytest.mark.parametrize("t", [0.0, 1.7, 4.2])
    def test_displacement_monotonic_in_sway(self, t) -> None:
        """Deeper (higher sway) bark vertices never move less."""
        geom = small_geometry()
        WindAnimator().update(geom, t)
        mesh = geom.branches
        offset = (mesh.positions - mesh.rest_positions).astype(float)
        magnitude = np.linalg.norm(offset, axis=1)
        order = np.argsort(mesh.sway, kind="stable")
        assert np.all(np.diff(magnitude[order]) >= -1e-5)

    def test_leaf_tips_flutter(self) -> None:
        """Leaf tops move differently from leaf bases."""
        geom = small_geometry()
        WindAnimator(WindParams.stormy()).update(geom, 0.9)
        mesh = geom.leaves
        offset = (mesh.positions - mesh.rest_positions).reshape(-1, 4, 3)
        assert not np.allclose(offset[:, 0], offset[:, 2])

    def test_displaced_does_not_write(self) -> None:
        """displaced() returns new positions without touching buffers."""
        geom = small_geometry()
        positions = WindAnimator().displaced(geom.branches, 2.0)
        np.testing.assert_array_equal(geom.branches.positions, geom.branches.rest_positions)
        assert positions.shape == geom.branches.positions.shape


def ring_offsets(mesh, node):
    """Per-ring offset of one branch (every vertex in a ring moves alike)."""
    start, end = mesh.node_ranges[node.index]
    width = node.segments + 1
    offset = (mesh.positions[start:end] - mesh.rest_positions[start:end]).astype(float)
    return offset.reshape(len(node.sections), width, 3)[:, 0]


def ring_attributes(mesh, node):
    start, end = mesh.node_ranges[node.index]
    width = node.segments + 1
    rings = len(node.sections)
    sway = mesh.sway[start:end].reshape(rings, width)[:, 0]
    phase = mesh.phase[start:end].reshape(rings, width)[:, 0]
    return sway.astype(float), phase.astype(float)


class TestJoints:
    """Tests that branches stay attached to their parents under wind."""

    def test_child_base_shares_parent_attributes(self) -> None:
        """A child's first ring has the parent's sway and phase at the joint."""
        tree, geom = small_tree()
        mesh = geom.branches
        for node in tree.nodes[1:]:
            parent = tree.nodes[node.parent]
            fractions = np.array([s.arc for s in parent.sections]) / parent.length
            parent_sway, parent_phase = ring_attributes(mesh, parent)
            sway, phase = ring_attributes(mesh, node)
            expected_sway = np.interp(node.attach, fractions, parent_sway)
            expected_phase = np.interp(node.attach, fractions, parent_phase)
            assert sway[0] == pytest.approx(expected_sway, abs=1e-5)
            assert phase[0] == pytest.approx(expected_phase, abs=1e-5)

    @pytest.mark.parametrize("params", [WindParams.breezy(), WindParams.stormy()])
    @pytest.mark.parametrize("t", [0.6, 2.0, 3.7])
    def test_child_base_moves_with_parent(self, params, t) -> None:
        """The joint gap under wind stays well inside the child's radius."""
        tree, geom = small_tree()
        WindAnimator(params).update(geom, t)
        mesh = geom.branches
        for node in tree.nodes[1:]:
            parent = tree.nodes[node.parent]
            fractions = np.array([s.arc for s in parent.sections]) / parent.length
            parent_offsets = ring_offsets(mesh, parent)
            at_joint = np.array(
                [np.interp(node.attach, fractions, parent_offsets[:, k]) for k in range(3)]
            )
            gap = np.linalg.norm(ring_offsets(mesh, node)[0] - at_joint)
            assert gap < 0.5 * node.start_radius

    def test_leaf_base_moves_with_branch(self) -> None:
        """Leaf base vertices carry the sway and phase of their branch at the leaf."""
        tree, geom = small_tree()
        sway = geom.leaves.sway.reshape(-1, 4)
        phase = geom.leaves.phase.reshape(-1, 4)
        mesh = geom.branches
        per_leaf = len(sway) // len(tree.leaves)
        q = 0
        for leaf in tree.leaves:
            node = tree.nodes[leaf.branch]
            fractions = np.array([s.arc for s in node.sections]) / node.length
            branch_sway, branch_phase = ring_attributes(mesh, node)
            for _ in range(per_leaf):
                assert sway[q, 0] == pytest.approx(
                    np.interp(leaf.offset, fractions, branch_sway), abs=1e-5
                )
                assert phase[q, 0] == pytest.approx(
                    np.interp(leaf.offset, fractions, branch_phase), abs=1e-5
                )
                q += 1
