"""
Branch skeleton construction.

The skeleton is a flat arena of BranchNodes. Node 0 is the trunk; every node
stores its curved centerline as a list of Sections and the contiguous range
[child_start, child_start + child_count) of its children in the arena. The
only back reference is the integer `parent`, so the structure is acyclic and
trivially copyable.

Leaves are LeafPlacements that refer to their branch by index. Their world
position is derived from the branch centerline when geometry is emitted.

Randomness:
    Each node owns a JAX PRNG key. The key is split into independent streams
    for centerline noise, child spacing, and leaves; child i receives
    fold_in(family_key, i). Keys are passed by value, so a subtree depends
    only on (model, seed, path from the root) and never on how many random
    numbers a sibling consumed.

Centerline growth per section (level L):
    1. advance length / sections[L] along the local +Y axis
    2. wobble about local X and Z by U(-gnarliness[L], gnarliness[L])
    3. roll by twist[L]
    4. turn toward force.direction by at most force.strength / radius
"""

import math
from collections.abc import Iterator
from dataclasses import dataclass, field

import jax.random as jr
import numpy as np
from jax import Array
from scipy.spatial.transform import Rotation, Slerp

from grove.config import GrowthForce, ParameterModel, TreeType
from grove.errors import GenerationFailure

UP = np.array([0.0, 1.0, 0.0])
GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))

ANGLE_JITTER = 0.1  # +-10% on branch and leaf divergence angles
SPACING_JITTER = (0.25, 0.75)  # position of a child inside its even-spacing slot
MIN_TAPER = 0.01  # end radius never drops below 1% of the base radius
MIN_LENGTH_SCALE = 0.05  # evergreen children keep at least 5% of their length
MIN_LEAF_SCALE = 0.05


# =============================================================================
# DATA MODEL
# =============================================================================


@dataclass
class Section:
    """One ring position on a branch centerline."""

    origin: np.ndarray  # (3,) tree-local position
    rotation: Rotation  # local +Y is the branch tangent
    radius: float
    arc: float  # distance from the branch base


@dataclass
class BranchNode:
    """
    A single branch in the arena.

    Attributes:
        index: Position in Skeleton.nodes
        level: Depth in the hierarchy (0 = trunk)
        parent: Index of the parent branch (-1 for the trunk)
        attach: Fraction along the parent where this branch starts
        origin: Base position (tree-local)
        rotation: Base orientation (local +Y along the branch)
        length: Centerline length
        start_radius: Radius at the base
        end_radius: Radius at the tip
        segments: Radial tube segments
        sections: Centerline samples, sections[level] + 1 entries once grown
        child_start: First child index in the arena
        child_count: Number of children
        phase: Wind phase for this branch
    """

    index: int
    level: int
    parent: int
    attach: float
    origin: np.ndarray
    rotation: Rotation
    length: float
    start_radius: float
    end_radius: float
    segments: int
    sections: list[Section] = field(default_factory=list)
    child_start: int = 0
    child_count: int = 0
    phase: float = 0.0

    @property
    def children(self) -> range:
        return range(self.child_start, self.child_start + self.child_count)

    @property
    def section_count(self) -> int:
        return len(self.sections) - 1

    @property
    def direction(self) -> np.ndarray:
        return self.rotation.apply(UP)

    @property
    def tip(self) -> np.ndarray:
        return self.sections[-1].origin


@dataclass(frozen=True)
class LeafPlacement:
    """A leaf attached to a branch, positioned by fraction along it."""

    branch: int
    offset: float  # fraction along the branch
    azimuth: float  # radians around the branch axis
    tilt: float  # radians away from the branch axis
    size: float
    tint: int
    phase: float


@dataclass
class Skeleton:
    """Flat arena of branches plus the leaves they carry."""

    levels: int
    seed: int
    nodes: list[BranchNode] = field(default_factory=list)
    leaves: list[LeafPlacement] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root(self) -> BranchNode:
        return self.nodes[0]

    @property
    def depth(self) -> int:
        """Number of distinct levels actually present."""
        return max(node.level for node in self.nodes) + 1

    def children(self, index: int) -> list[BranchNode]:
        return [self.nodes[i] for i in self.nodes[index].children]

    def walk(self, index: int = 0) -> Iterator[BranchNode]:
        """Depth-first traversal, children in index order."""
        stack = [index]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def point_at(
        self, index: int, fraction: float
    ) -> tuple[np.ndarray, Rotation, float, float]:
        """
        Sample a branch centerline.

        Args:
            index: Branch index
            fraction: Position along the branch in [0, 1]

        Returns:
            (position, rotation, radius, arc) at that fraction
        """
        sections = self.nodes[index].sections
        count = len(sections) - 1
        x = min(max(fraction, 0.0), 1.0) * count
        i = min(int(x), count - 1)
        t = x - i
        a, b = sections[i], sections[i + 1]

        position = a.origin + t * (b.origin - a.origin)
        radius = a.radius + t * (b.radius - a.radius)
        arc = a.arc + t * (b.arc - a.arc)
        slerp = Slerp([0.0, 1.0], Rotation.concatenate([a.rotation, b.rotation]))
        return position, slerp([t])[0], radius, arc


# =============================================================================
# RANDOM HELPERS
# =============================================================================


def _uniform(key: Array, n: int) -> np.ndarray:
    """n samples from U[0, 1) as a numpy array."""
    if n <= 0:
        return np.zeros(0)
    # Power-of-two blocks keep the number of compiled shapes small
    size = 8
    while size < n:
        size *= 2
    return np.asarray(jr.uniform(key, (size,)), dtype=float)[:n]


def _phase(seed: int, position: np.ndarray) -> float:
    """Deterministic wind phase in [0, 2*pi) from a seed and a position."""
    x = (seed % 9973) * 0.618 + position[0] * 0.37 + position[1] * 1.13 + position[2] * 0.71
    n = math.sin(x * 12.9898) * 43758.5453
    return 2.0 * math.pi * (n - math.floor(n))


def _slot(start: float, index: int, count: int, u: float) -> float:
    """Even spacing from `start` to 1 with the item placed at u inside its slot."""
    lo, hi = SPACING_JITTER
    return start + (1.0 - start) * (index + lo + (hi - lo) * u) / count


def _end_radius(radius: float, taper: float) -> float:
    return max(radius * taper, radius * MIN_TAPER)


# =============================================================================
# GROWTH
# =============================================================================


def _bend_toward(rotation: Rotation, force: GrowthForce, radius: float) -> Rotation:
    """Turn the branch tangent toward the force direction."""
    if force.strength <= 0:
        return rotation

    target = np.asarray(force.direction, dtype=float)
    target = target / np.linalg.norm(target)
    current = rotation.apply(UP)

    axis = np.cross(current, target)
    sin_a = float(np.linalg.norm(axis))
    if sin_a < 1e-9:
        return rotation  # already aligned (or exactly opposite)

    angle = math.atan2(sin_a, float(np.dot(current, target)))
    step = min(angle, force.strength / max(radius, 1e-6))
    return Rotation.from_rotvec(axis / sin_a * step) * rotation


def _grow_centerline(node: BranchNode, model: ParameterModel, key: Array) -> None:
    """Fill node.sections with the curved, tapered centerline."""
    branch = model.branch
    level = node.level
    count = branch.sections[level]
    noise = _uniform(key, 2 * count).reshape(count, 2)
    gnarliness = branch.gnarliness[level]
    twist = branch.twist[level]
    step = node.length / count

    origin = node.origin.copy()
    rotation = node.rotation
    for i in range(count + 1):
        t = i / count
        radius = node.start_radius + (node.end_radius - node.start_radius) * t
        node.sections.append(
            Section(origin=origin, rotation=rotation, radius=radius, arc=node.length * t)
        )
        if i == count:
            break

        origin = origin + rotation.apply(UP) * step
        wobble = gnarliness * (2.0 * noise[i] - 1.0)
        rotation = rotation * Rotation.from_euler("xyz", [wobble[0], twist, wobble[1]])
        rotation = _bend_toward(rotation, branch.force, radius)


def _spawn_children(
    skeleton: Skeleton, parent: BranchNode, model: ParameterModel, key: Array
) -> list[Array]:
    """Append the parent's children to the arena; return one key per child."""
    branch = model.branch
    level = parent.level + 1
    count = branch.children[parent.level]

    parent.child_start = len(skeleton.nodes)
    parent.child_count = count
    if count == 0:
        return []

    spacing_key, family_key = jr.split(key)
    noise = _uniform(spacing_key, 2 * count + 1)
    azimuth_offset = 2.0 * math.pi * noise[0]

    length = branch.length[level]
    radius = branch.radius[level]
    end_radius = _end_radius(radius, branch.taper[level])
    divergence = math.radians(branch.angle[level])

    keys = []
    for i in range(count):
        attach = _slot(branch.start[level], i, count, noise[1 + 2 * i])
        origin, rotation, _, _ = skeleton.point_at(parent.index, attach)

        azimuth = azimuth_offset + i * GOLDEN_ANGLE
        tilt = divergence * (1.0 + ANGLE_JITTER * (2.0 * noise[2 + 2 * i] - 1.0))

        child_length = length
        if model.type is TreeType.EVERGREEN:
            # Conical habit: branches higher up the parent are shorter
            child_length = length * max(1.0 - attach, MIN_LENGTH_SCALE)

        skeleton.nodes.append(
            BranchNode(
                index=len(skeleton.nodes),
                level=level,
                parent=parent.index,
                attach=attach,
                origin=origin,
                rotation=rotation * Rotation.from_euler("YX", [azimuth, tilt]),
                length=child_length,
                start_radius=radius,
                end_radius=end_radius,
                segments=branch.segments[level],
                phase=_phase(model.seed, origin),
            )
        )
        keys.append(jr.fold_in(family_key, i))
    return keys


def _place_leaves(
    skeleton: Skeleton, node: BranchNode, model: ParameterModel, key: Array
) -> None:
    """Distribute leaves from leaves.start to the tip of a terminal branch."""
    leaves = model.leaves
    count = leaves.count
    noise = _uniform(key, 3 * count + 1)
    azimuth_offset = 2.0 * math.pi * noise[0]
    tilt = math.radians(leaves.angle)

    for k in range(count):
        u_slot, u_size, u_tilt = noise[1 + 3 * k : 4 + 3 * k]
        scale = max(1.0 + leaves.size_variance * (2.0 * u_size - 1.0), MIN_LEAF_SCALE)
        skeleton.leaves.append(
            LeafPlacement(
                branch=node.index,
                offset=_slot(leaves.start, k, count, u_slot),
                azimuth=azimuth_offset + k * GOLDEN_ANGLE,
                tilt=tilt * (1.0 + ANGLE_JITTER * (2.0 * u_tilt - 1.0)),
                size=leaves.size * scale,
                tint=leaves.tint,
                phase=(node.phase + 2.0 * math.pi * u_slot) % (2.0 * math.pi),
            )
        )


def _check_invariants(skeleton: Skeleton) -> None:
    for node in skeleton.nodes:
        if len(node.sections) < 2:
            raise GenerationFailure(f"branch {node.index} was never grown")
        points = np.array([s.origin for s in node.sections])
        if not np.all(np.isfinite(points)):
            raise GenerationFailure(f"branch {node.index} has non-finite positions")
        if min(s.radius for s in node.sections) <= 0:
            raise GenerationFailure(f"branch {node.index} has a non-positive radius")
        if node.length <= 0:
            raise GenerationFailure(f"branch {node.index} has non-positive length")


def build(model: ParameterModel) -> Skeleton:
    """
    Build the branch skeleton for a tree.

    Args:
        model: Tree configuration; validated before use

    Returns:
        Skeleton arena whose node 0 is the trunk

    Raises:
        ConfigurationError: The model is malformed (e.g. table length mismatch)
        GenerationFailure: An internal invariant was violated while building
    """
    model.validate()
    branch = model.branch

    skeleton = Skeleton(levels=branch.levels, seed=model.seed)
    origin = np.zeros(3)
    skeleton.nodes.append(
        BranchNode(
            index=0,
            level=0,
            parent=-1,
            attach=0.0,
            origin=origin,
            rotation=Rotation.identity(),
            length=branch.length[0],
            start_radius=branch.radius[0],
            end_radius=_end_radius(branch.radius[0], branch.taper[0]),
            segments=branch.segments[0],
            phase=_phase(model.seed, origin),
        )
    )

    stack = [(0, jr.PRNGKey(model.seed % 2**32))]
    try:
        while stack:
            index, key = stack.pop()
            node = skeleton.nodes[index]
            section_key, family_key, leaf_key = jr.split(key, 3)

            _grow_centerline(node, model, section_key)
            if node.level < branch.levels:
                keys = _spawn_children(skeleton, node, model, family_key)
                stack.extend(reversed(list(zip(node.children, keys))))
            else:
                _place_leaves(skeleton, node, model, leaf_key)
    except (IndexError, TypeError, ValueError, ZeroDivisionError) as err:
        raise GenerationFailure(f"failed to build tree (seed={model.seed}): {err}") from err

    _check_invariants(skeleton)
    return skeleton
