"""
Tests for forest orchestration.

Forests must isolate per-tree failures: a bad configuration is skipped and
reported while every other tree is still generated.
"""

import asyncio
import json

import jax.random as jr
import numpy as np
import pytest

from grove import forest
from grove.config import BranchParams, LeafParams, ParameterModel, TreeType
from grove.errors import ConfigurationError
from grove.presets import PresetRepository


def tiny_model(seed: int) -> ParameterModel:
    return ParameterModel(
        seed=seed,
        branch=BranchParams(
            levels=1,
            angle=[0, 40],
            children=[3],
            start=[0, 0.4],
            length=[5, 2],
            radius=[0.3, 0.1],
            gnarliness=[0.05, 0.1],
            twist=[0, 0],
            taper=[0.7, 0.7],
            sections=[3, 3],
            segments=[4, 3],
        ),
        leaves=LeafParams(count=2),
    )


class TestRandomModel:
    """Tests for random tree options."""

    @pytest.mark.parametrize("i", range(6))
    def test_random_models_are_valid(self, i) -> None:
        """Random options always validate."""
        model = forest.random_model(jr.PRNGKey(i))
        model.validate()
        assert model.branch.levels in (2, 3)

    def test_ranges(self) -> None:
        """Drawn values fall in the documented ranges."""
        for i in range(5):
            model = forest.random_model(jr.PRNGKey(100 + i))
            branch = model.branch
            assert all(25.0 <= a <= 65.0 for a in branch.angle[1:])
            assert all(3 <= c <= 6 for c in branch.children)
            assert all(0.3 <= s <= 0.7 for s in branch.start[1:])
            assert all(0.5 <= t <= 0.8 for t in branch.taper)
            assert 3 <= model.leaves.count <= 14
            assert 1.2 <= model.leaves.size <= 2.7
            assert model.bark.tint in forest.BARK_TINTS
            assert model.leaves.tint in forest.LEAF_TINTS
            assert 3.0 <= model.bark.texture_scale.y <= 10.0

    def test_deterministic(self) -> None:
        """The same key gives the same options."""
        key = jr.PRNGKey(7)
        assert forest.random_model(key) == forest.random_model(key)

    def test_both_habits_occur(self) -> None:
        """Evergreen and deciduous trees both appear."""
        types = {forest.random_model(jr.PRNGKey(i)).type for i in range(30)}
        assert types == {TreeType.EVERGREEN, TreeType.DECIDUOUS}


class TestScatter:
    """Tests for tree placement."""

    def test_count_and_plane(self) -> None:
        """Every requested tree gets a position on the ground plane."""
        positions = forest.scatter_positions(jr.PRNGKey(0), 15)
        assert positions.shape == (15, 3)
        assert np.all(positions[:, 1] == 0.0)

    def test_outside_clearing(self) -> None:
        """Positions avoid the central clearing and stay in the square."""
        positions = forest.scatter_positions(jr.PRNGKey(1), 50, extent=40.0, clearing=15.0)
        radius = np.hypot(positions[:, 0], positions[:, 2])
        assert np.all(radius >= 15.0)
        assert np.all(np.abs(positions[:, [0, 2]]) <= 40.0)

    def test_empty(self) -> None:
        """Zero trees is an empty array."""
        assert forest.scatter_positions(jr.PRNGKey(0), 0).shape == (0, 3)

    def test_impossible_clearing(self) -> None:
        """A clearing wider than the square is rejected."""
        with pytest.raises(ConfigurationError):
            forest.scatter_positions(jr.PRNGKey(0), 3, extent=10.0, clearing=12.0)


class TestGrowForest:
    """Tests for batch generation with per-tree isolation."""

    def test_one_bad_tree_is_skipped(self) -> None:
        """15 trees with one mismatched table give 14 trees and 1 skip."""
        models = [tiny_model(i) for i in range(15)]
        models[6].branch.angle = [0.0]
        positions = forest.scatter_positions(jr.PRNGKey(2), 15)

        report = forest.grow_forest(models, positions)

        assert report.requested == 15
        assert report.generated == 14
        assert len(report.skipped) == 1
        assert report.skipped[0].index == 6
        assert report.skipped[0].name == "tree-7"
        assert "angle" in report.skipped[0].reason

    def test_wrongly_typed_model_is_skipped(self) -> None:
        """A non-numeric leaf size skips that tree instead of stopping the batch."""
        models = [
            tiny_model(1),
            ParameterModel(seed=2, leaves=LeafParams(size="big")),
            tiny_model(3),
        ]
        report = forest.grow_forest(models, np.zeros((3, 3)))

        assert report.generated == 2
        assert [skip.index for skip in report.skipped] == [1]
        assert "leaves.size" in report.skipped[0].reason

    def test_trees_placed(self) -> None:
        """Trees are moved to their positions."""
        models = [tiny_model(i) for i in range(3)]
        positions = np.array([[20.0, 0.0, 0.0], [0.0, 0.0, 20.0], [-20.0, 0.0, -20.0]])
        report = forest.grow_forest(models, positions, names=["a", "b", "c"])
        for tree, position in zip(report.trees, positions):
            np.testing.assert_array_equal(tree.position, position)
        assert [tree.name for tree in report.trees] == ["a", "b", "c"]

    def test_mismatched_positions(self) -> None:
        """Each model needs a position."""
        with pytest.raises(ConfigurationError):
            forest.grow_forest([tiny_model(0)], np.zeros((2, 3)))

    def test_update_animates_all(self) -> None:
        """ForestReport.update moves every tree."""
        report = forest.grow_forest([tiny_model(0), tiny_model(1)], np.zeros((2, 3)))
        report.update(1.5)
        for tree in report.trees:
            mesh = tree.geometry.branches
            assert not np.array_equal(mesh.positions, mesh.rest_positions)

    def test_print_summary(self, capsys) -> None:
        """The summary lists counts and skipped trees."""
        models = [tiny_model(0), tiny_model(1)]
        models[1].branch.children = [-2]
        report = forest.grow_forest(models, np.zeros((2, 3)))
        report.print_summary()
        out = capsys.readouterr().out
        assert "FOREST SUMMARY" in out
        assert "tree-2" in out


class TestGenerateForest:
    """Tests for the random forest entry point."""

    def test_small_forest(self) -> None:
        """A random forest generates every tree and is reproducible."""
        a = forest.generate_forest(count=2, seed=3)
        b = forest.generate_forest(count=2, seed=3)
        assert a.generated == 2 and not a.skipped
        np.testing.assert_array_equal(
            a.trees[0].geometry.branches.positions, b.trees[0].geometry.branches.positions
        )
        np.testing.assert_array_equal(a.trees[1].position, b.trees[1].position)

    def test_bounds(self) -> None:
        """Forest bounds enclose every tree."""
        report = forest.grow_forest(
            [tiny_model(0), tiny_model(1)], np.array([[20.0, 0, 0], [-20.0, 0, 0]])
        )
        lo, hi = forest.forest_bounds(report.trees)
        assert lo[0] < -19.0 and hi[0] > 19.0


class TestPresetForest:
    """Tests for forests grown from presets."""

    def test_failed_presets_skipped(self, tmp_path) -> None:
        """Broken presets are skipped, unknown ones use defaults."""
        good = {
            "branch": {
                "levels": 1, "angle": [0, 40], "children": [3], "start": [0, 0.4],
                "length": [5, 2], "radius": [0.3, 0.1], "gnarliness": [0, 0.1],
                "twist": [0, 0], "taper": [0.7, 0.7], "sections": [3, 3], "segments": [4, 3],
            },
            "leaves": {"count": 2},
        }
        (tmp_path / "good_tree.json").write_text(json.dumps(good))
        (tmp_path / "bad_tree.json").write_text("not json")
        repository = PresetRepository(tmp_path)

        report = asyncio.run(
            forest.generate_preset_forest(repository, ["Good Tree", "Bad Tree", "good_tree"])
        )
        assert report.requested == 3
        assert report.generated == 2
        assert [skip.index for skip in report.skipped] == [1]

    def test_repeated_presets_differ(self, tmp_path) -> None:
        """The same preset twice gets different seeds."""
        (tmp_path / "bush.json").write_text(json.dumps({"branch": {
            "levels": 1, "angle": [0, 50], "children": [4], "start": [0, 0.2],
            "length": [1, 2], "radius": [0.2, 0.05], "gnarliness": [0.1, 0.2],
            "twist": [0, 0], "taper": [0.6, 0.5], "sections": [3, 3], "segments": [4, 3],
        }}))
        report = asyncio.run(
            forest.generate_preset_forest(PresetRepository(tmp_path), ["Bush", "Bush"])
        )
        seeds = [tree.model.seed for tree in report.trees]
        assert len(set(seeds)) == 2
