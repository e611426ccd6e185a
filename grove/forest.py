"""
Forest orchestration: many trees, each generated in isolation.

A forest is a batch of independent Tree instances placed on the ground plane
around a central clearing. Trees share nothing mutable, so a failure in one
never affects another: configuration and preset errors are logged as
warnings, generator failures as errors, and the tree is recorded as skipped
while the batch carries on.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import jax.random as jr
import numpy as np
from jax import Array

from grove.config import (
    BarkParams,
    BarkType,
    Billboard,
    BranchParams,
    LeafParams,
    LeafType,
    ParameterModel,
    TextureScale,
    TreeType,
    WindParams,
)
from grove.errors import ConfigurationError, GenerationFailure, PresetLoadError
from grove.presets import PresetRepository
from grove.textures import TextureProvider
from grove.tree import Tree

logger = logging.getLogger(__name__)

BARK_TINTS = (0x8B4513, 0xA0522D, 0x654321, 0x915C3A, 0x7D6553, 0x5D4037)
LEAF_TINTS = (0x228B22, 0x32CD32, 0x006400, 0x9ACD32, 0x8FBC8F, 0xFF6347, 0xFFA500, 0xDC143C)

DEFAULT_COUNT = 15
DEFAULT_EXTENT = 40.0  # half width of the planting square
DEFAULT_CLEARING = 15.0  # radius kept free around the origin


@dataclass
class SkippedTree:
    """A tree that could not be generated."""

    index: int
    name: str
    reason: str


@dataclass
class ForestReport:
    """Generated trees plus a record of every tree that was skipped."""

    requested: int
    trees: list[Tree] = field(default_factory=list)
    skipped: list[SkippedTree] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return len(self.trees)

    @property
    def triangle_count(self) -> int:
        return sum(tree.triangle_count for tree in self.trees)

    def update(self, elapsed_time: float) -> None:
        """Animate every tree for one frame."""
        for tree in self.trees:
            tree.update(elapsed_time)

    def print_summary(self) -> None:
        """Print a formatted summary table to stdout."""
        print("\n" + "=" * 40)
        print("FOREST SUMMARY")
        print("=" * 40)
        print(f"{'Requested':20s}: {self.requested:>10d}")
        print(f"{'Generated':20s}: {self.generated:>10d}")
        print(f"{'Skipped':20s}: {len(self.skipped):>10d}")
        print(f"{'Triangles':20s}: {self.triangle_count:>10d}")
        for skip in self.skipped:
            print(f"  - {skip.name}: {skip.reason}")
        print("=" * 40)


# =============================================================================
# RANDOM TREES
# =============================================================================


def random_model(key: Array) -> ParameterModel:
    """
    Draw a random tree configuration.

    Ranges per level L (L >= 1 for angle, children and start):
        angle 25-65 deg, children 3-6, start 0.3-0.7,
        length (8-23) * (1 - 0.25 L), radius (0.4-1.2) * (1 - 0.15 L),
        gnarliness 0-0.2, taper 0.5-0.8

    Args:
        key: JAX PRNG key

    Returns:
        A valid ParameterModel
    """
    seed_key, level_key, draw_key = jr.split(key, 3)
    draws = iter(np.asarray(jr.uniform(draw_key, (16,)), dtype=float))
    levels = 2 + int(jr.randint(level_key, (), 0, 2))

    def pick(options):
        return options[min(int(next(draws) * len(options)), len(options) - 1)]

    def between(lo, hi):
        return lo + (hi - lo) * next(draws)

    level_draws = np.asarray(jr.uniform(jr.fold_in(draw_key, 1), (levels + 1, 7)), dtype=float)
    branch = BranchParams(
        levels=levels,
        angle=[0.0] + [25.0 + 40.0 * u for u in level_draws[1:, 0]],
        children=[3 + int(4 * u) for u in level_draws[1:, 1]],
        start=[0.0] + [0.3 + 0.4 * u for u in level_draws[1:, 2]],
        length=[(8.0 + 15.0 * u) * (1 - 0.25 * level) for level, u in enumerate(level_draws[:, 3])],
        radius=[(0.4 + 0.8 * u) * (1 - 0.15 * level) for level, u in enumerate(level_draws[:, 4])],
        gnarliness=[0.2 * u for u in level_draws[:, 5]],
        twist=[0.0] * (levels + 1),
        taper=[0.5 + 0.3 * u for u in level_draws[:, 6]],
        sections=[max(4, 10 - 2 * level) for level in range(levels + 1)],
        segments=[max(4, 8 - level) for level in range(levels + 1)],
    )

    tree_type = TreeType.EVERGREEN if next(draws) > 0.6 else TreeType.DECIDUOUS
    bark = BarkParams(
        type=pick(list(BarkType)),
        tint=pick(BARK_TINTS),
        texture_scale=TextureScale(x=1.0, y=between(3.0, 10.0)),
    )
    leaves = LeafParams(
        type=pick(list(LeafType)),
        billboard=Billboard.DOUBLE if next(draws) > 0.5 else Billboard.SINGLE,
        count=3 + min(int(12 * next(draws)), 11),
        size=between(1.2, 2.7),
        size_variance=between(0.2, 0.6),
        angle=between(5.0, 30.0),
        start=between(0.0, 0.2),
        tint=pick(LEAF_TINTS),
    )
    return ParameterModel(
        seed=int(jr.randint(seed_key, (), 0, 100_000)),
        type=tree_type,
        bark=bark,
        branch=branch,
        leaves=leaves,
    )


def scatter_positions(
    key: Array,
    count: int,
    extent: float = DEFAULT_EXTENT,
    clearing: float = DEFAULT_CLEARING,
) -> np.ndarray:
    """
    Sample tree positions on the ground plane.

    Points are uniform in the [-extent, extent] square, rejecting those
    within `clearing` of the origin, so every requested tree gets a spot.

    Returns:
        (count, 3) array of (x, 0, z) positions
    """
    if count < 0:
        raise ConfigurationError(f"count must be >= 0, got {count}")
    if clearing >= extent:
        raise ConfigurationError(f"clearing ({clearing}) must be smaller than extent ({extent})")

    batch = max(8, 2 * count)
    points: list[np.ndarray] = []
    while len(points) < count:
        key, sub = jr.split(key)
        xz = (np.asarray(jr.uniform(sub, (batch, 2)), dtype=float) * 2.0 - 1.0) * extent
        keep = xz[np.hypot(xz[:, 0], xz[:, 1]) >= clearing]
        points.extend(keep[: count - len(points)])

    xz = np.array(points, dtype=float).reshape(count, 2)
    return np.stack([xz[:, 0], np.zeros(count), xz[:, 1]], axis=1)


# =============================================================================
# BATCH GENERATION
# =============================================================================


def _plant(
    report: ForestReport,
    index: int,
    name: str,
    model: ParameterModel,
    position: Sequence[float],
    textures: TextureProvider | None,
    wind: WindParams | None,
) -> None:
    """Generate one tree into the report, recording it as skipped on failure."""
    try:
        tree = Tree(model, textures=textures, wind=wind, name=name)
        tree.set_position(*position)
        tree.generate()
    except (ConfigurationError, PresetLoadError) as err:
        logger.warning("Failed to generate %s: %s", name, err)
        report.skipped.append(SkippedTree(index=index, name=name, reason=str(err)))
        return
    except GenerationFailure as err:
        logger.error("Generator failure for %s: %s", name, err)
        report.skipped.append(SkippedTree(index=index, name=name, reason=str(err)))
        return

    report.trees.append(tree)
    logger.debug("%s generated at (%.1f, %.1f)", name, tree.position[0], tree.position[2])


def grow_forest(
    models: Sequence[ParameterModel],
    positions: Sequence[Sequence[float]] | np.ndarray,
    textures: TextureProvider | None = None,
    wind: WindParams | None = None,
    names: Sequence[str] | None = None,
) -> ForestReport:
    """
    Generate one tree per (model, position) pair.

    Args:
        models: Tree configurations (each tree takes its own copy)
        positions: World position per tree
        textures: Shared read-only texture provider
        wind: Wind parameters for every tree
        names: Optional labels; defaults to "tree-1", "tree-2", ...

    Returns:
        ForestReport with the generated trees and the skipped ones
    """
    if len(positions) != len(models):
        raise ConfigurationError(
            f"got {len(models)} models but {len(positions)} positions"
        )

    report = ForestReport(requested=len(models))
    for i, (model, position) in enumerate(zip(models, positions)):
        name = names[i] if names is not None else f"tree-{i + 1}"
        _plant(report, i, name, model, position, textures, wind)

    logger.info("Generated %d of %d trees", report.generated, report.requested)
    return report


def generate_forest(
    count: int = DEFAULT_COUNT,
    seed: int = 0,
    textures: TextureProvider | None = None,
    wind: WindParams | None = None,
    extent: float = DEFAULT_EXTENT,
    clearing: float = DEFAULT_CLEARING,
) -> ForestReport:
    """Random forest of `count` trees, reproducible from `seed`."""
    model_key, place_key = jr.split(jr.PRNGKey(seed % 2**32))
    models = [random_model(jr.fold_in(model_key, i)) for i in range(count)]
    positions = scatter_positions(place_key, count, extent=extent, clearing=clearing)
    return grow_forest(models, positions, textures=textures, wind=wind)


async def generate_preset_forest(
    repository: PresetRepository,
    names: Sequence[str],
    seed: int = 0,
    textures: TextureProvider | None = None,
    wind: WindParams | None = None,
    extent: float = DEFAULT_EXTENT,
    clearing: float = DEFAULT_CLEARING,
) -> ForestReport:
    """
    Forest of named presets, one tree per name.

    Unknown names grow the default tree; presets whose document failed to
    load are skipped. Tree i gets seed `preset seed + i` so repeated names
    still differ.
    """
    positions = scatter_positions(
        jr.PRNGKey(seed % 2**32), len(names), extent=extent, clearing=clearing
    )
    report = ForestReport(requested=len(names))
    for i, (name, position) in enumerate(zip(names, positions)):
        result = await repository.fetch(name)
        label = f"{result.name} #{i + 1}"
        if result.error is not None:
            logger.warning("Failed to generate %s: %s", label, result.error)
            report.skipped.append(SkippedTree(index=i, name=label, reason=str(result.error)))
            continue
        model = result.model
        model.seed = (model.seed + seed + i) % 2**31
        _plant(report, i, label, model, position, textures, wind)

    logger.info("Generated %d of %d preset trees", report.generated, report.requested)
    return report


def forest_bounds(trees: Sequence[Tree]) -> tuple[np.ndarray, np.ndarray]:
    """World-space (min, max) corners enclosing every tree."""
    if not trees:
        return np.zeros(3), np.zeros(3)
    lows, highs = zip(*(tree.world_bounds() for tree in trees))
    return np.min(lows, axis=0), np.max(highs, axis=0)

