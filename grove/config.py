"""
Configuration and type definitions for procedural tree generation.

This module defines the level-indexed ParameterModel that drives the branch
builder and geometry emitter, the closed enumerations used by it, and the
wind parameters consumed by the animator.

Level-indexed tables:
    Every per-level list in BranchParams has levels + 1 entries, indexed by
    branch level (0 = trunk). The exception is `children`, which is indexed
    by the *parent* level and therefore has exactly `levels` entries.

Validation policy:
    Ranged values (fractions, tessellation counts, tints) are clamped when a
    dataclass is constructed. Structural problems (table length mismatch,
    non-positive dimensions, unknown species) raise ConfigurationError, either
    immediately (enums) or from validate(), which the builder always calls.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from grove.errors import ConfigurationError

MIN_TESSELLATION = 3  # Fewest rings/ring vertices that still make a tube
MAX_TINT = 0xFFFFFF

E = TypeVar("E", bound=Enum)


class TreeType(str, Enum):
    """Overall growth habit."""

    EVERGREEN = "evergreen"
    DECIDUOUS = "deciduous"


class BarkType(str, Enum):
    """Bark species; selects the bark texture set."""

    BIRCH = "birch"
    OAK = "oak"
    PINE = "pine"
    WILLOW = "willow"


class LeafType(str, Enum):
    """Leaf species; selects the leaf texture."""

    ASH = "ash"
    ASPEN = "aspen"
    OAK = "oak"
    PINE = "pine"


class Billboard(str, Enum):
    """Leaf quad layout. DOUBLE crosses two quads for all-angle silhouettes."""

    SINGLE = "single"
    DOUBLE = "double"

    @property
    def quads_per_leaf(self) -> int:
        return 2 if self is Billboard.DOUBLE else 1


# =============================================================================
# HELPERS
# =============================================================================


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def coerce_enum(enum_cls: type[E], value: Any, name: str) -> E:
    """Accept an enum member or its (case-insensitive) value."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(member.value for member in enum_cls)
    raise ConfigurationError(f"{name} must be one of [{allowed}], got {value!r}")


def parse_tint(value: Any, name: str = "tint") -> int:
    """
    Parse a 0xRRGGBB colour.

    Accepts ints (clamped to the 24-bit range) and "#rrggbb" / "0xrrggbb"
    strings.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a colour, got {value!r}")
    if isinstance(value, int):
        return int(clamp(value, 0, MAX_TINT))
    if isinstance(value, str):
        text = value.strip().lower()
        if text.startswith("#"):
            text = text[1:]
        elif text.startswith("0x"):
            text = text[2:]
        try:
            return int(clamp(int(text, 16), 0, MAX_TINT))
        except ValueError:
            pass
    raise ConfigurationError(f"{name} must be a colour, got {value!r}")


def tint_to_rgb(tint: int) -> tuple[float, float, float]:
    """Convert 0xRRGGBB to an (r, g, b) tuple in [0, 1]."""
    return (
        ((tint >> 16) & 0xFF) / 255.0,
        ((tint >> 8) & 0xFF) / 255.0,
        (tint & 0xFF) / 255.0,
    )


def _float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from err


def _floats(values: Any, name: str) -> list[float]:
    try:
        return [float(v) for v in values]
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a list of numbers: {err}") from err


def _ints(values: Any, name: str) -> list[int]:
    try:
        return [int(round(float(v))) for v in values]
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a list of integers: {err}") from err


# =============================================================================
# TREE PARAMETERS
# =============================================================================


@dataclass
class TextureScale:
    """Bark texture repeat: x wraps around the branch, y is world units per repeat."""

    x: float = 1.0
    y: float = 1.0


@dataclass
class BarkParams:
    """Bark appearance."""

    type: BarkType = BarkType.OAK
    tint: int = 0xFFFFFF
    texture_scale: TextureScale = field(default_factory=TextureScale)

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        self.type = coerce_enum(BarkType, self.type, "bark.type")
        self.tint = parse_tint(self.tint, "bark.tint")

    def validate(self) -> None:
        self.normalize()
        self.texture_scale.x = _float(self.texture_scale.x, "bark.texture_scale.x")
        self.texture_scale.y = _float(self.texture_scale.y, "bark.texture_scale.y")
        if self.texture_scale.x <= 0 or self.texture_scale.y <= 0:
            raise ConfigurationError(
                f"bark.texture_scale must be positive, got "
                f"({self.texture_scale.x}, {self.texture_scale.y})"
            )


@dataclass
class GrowthForce:
    """
    Constant bending force applied along every branch centerline.

    Each section turns toward `direction` by at most strength / radius
    radians, so thin branches respond more than the trunk.
    """

    direction: tuple[float, float, float] = (0.0, 1.0, 0.0)
    strength: float = 0.01

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        direction = _floats(self.direction, "branch.force.direction")
        if len(direction) != 3:
            raise ConfigurationError(
                f"branch.force.direction needs 3 components, got {len(direction)}"
            )
        self.direction = (direction[0], direction[1], direction[2])
        self.strength = max(0.0, _float(self.strength, "branch.force.strength"))

    def validate(self) -> None:
        self.normalize()
        if self.strength > 0 and not any(self.direction):
            raise ConfigurationError("branch.force.direction must be non-zero")


# Per-level tables that carry levels + 1 entries
LEVEL_TABLES = (
    "angle",
    "start",
    "length",
    "radius",
    "gnarliness",
    "twist",
    "taper",
    "sections",
    "segments",
)


@dataclass
class BranchParams:
    """
    Level-indexed branch shape table.

    Attributes:
        levels: Deepest branch level (0 = trunk only)
        angle: Child divergence from the parent axis in degrees (levels >= 1)
        children: Children spawned by each parent, indexed by parent level
        start: Fraction along the parent where children begin
        length: Branch length per level
        radius: Branch base radius per level
        gnarliness: Per-section curvature noise amplitude (radians)
        twist: Per-section roll about the branch axis (radians)
        taper: End radius as a fraction of the base radius
        sections: Longitudinal tube segments per level
        segments: Radial tube segments per level
        force: Bending force toward a fixed direction
    """

    levels: int = 3
    angle: list[float] = field(default_factory=lambda: [0.0, 48.0, 75.0, 60.0])
    children: list[int] = field(default_factory=lambda: [7, 7, 5])
    start: list[float] = field(default_factory=lambda: [0.0, 0.33, 0.33, 0.0])
    length: list[float] = field(default_factory=lambda: [20.0, 12.0, 6.0, 2.0])
    radius: list[float] = field(default_factory=lambda: [1.5, 0.5, 0.2, 0.08])
    gnarliness: list[float] = field(default_factory=lambda: [0.05, 0.2, 0.3, 0.02])
    twist: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 0.0])
    taper: list[float] = field(default_factory=lambda: [0.7, 0.7, 0.7, 0.7])
    sections: list[int] = field(default_factory=lambda: [12, 10, 8, 6])
    segments: list[int] = field(default_factory=lambda: [8, 6, 4, 3])
    force: GrowthForce = field(default_factory=GrowthForce)

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        """Coerce types and clamp ranged values in place."""
        try:
            self.levels = int(self.levels)
        except (TypeError, ValueError) as err:
            raise ConfigurationError(f"branch.levels must be an integer: {err}") from err
        self.angle = _floats(self.angle, "branch.angle")
        self.children = _ints(self.children, "branch.children")
        self.start = [clamp(v, 0.0, 1.0) for v in _floats(self.start, "branch.start")]
        self.length = _floats(self.length, "branch.length")
        self.radius = _floats(self.radius, "branch.radius")
        self.gnarliness = [max(0.0, v) for v in _floats(self.gnarliness, "branch.gnarliness")]
        self.twist = _floats(self.twist, "branch.twist")
        self.taper = [clamp(v, 0.0, 1.0) for v in _floats(self.taper, "branch.taper")]
        self.sections = [max(MIN_TESSELLATION, v) for v in _ints(self.sections, "branch.sections")]
        self.segments = [max(MIN_TESSELLATION, v) for v in _ints(self.segments, "branch.segments")]

    def validate(self) -> None:
        self.normalize()
        if self.levels < 0:
            raise ConfigurationError(f"branch.levels must be >= 0, got {self.levels}")

        expected = self.levels + 1
        for name in LEVEL_TABLES:
            actual = len(getattr(self, name))
            if actual != expected:
                raise ConfigurationError(
                    f"branch.{name} has {actual} entries, expected {expected} "
                    f"for levels={self.levels}"
                )
        if len(self.children) != self.levels:
            raise ConfigurationError(
                f"branch.children has {len(self.children)} entries, expected "
                f"{self.levels} for levels={self.levels}"
            )

        if any(c < 0 for c in self.children):
            raise ConfigurationError(f"branch.children must be >= 0, got {self.children}")
        if any(v <= 0 for v in self.length):
            raise ConfigurationError(f"branch.length must be positive, got {self.length}")
        if any(v <= 0 for v in self.radius):
            raise ConfigurationError(f"branch.radius must be positive, got {self.radius}")
        self.force.validate()


@dataclass
class LeafParams:
    """Leaf placement and appearance on terminal branches."""

    type: LeafType = LeafType.OAK
    billboard: Billboard = Billboard.DOUBLE
    count: int = 1
    size: float = 2.5
    size_variance: float = 0.7
    angle: float = 10.0  # degrees away from the branch axis
    start: float = 0.0  # fraction along the branch where leaves begin
    tint: int = 0xFFFFFF
    alpha_test: float = 0.5

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        self.type = coerce_enum(LeafType, self.type, "leaves.type")
        self.billboard = coerce_enum(Billboard, self.billboard, "leaves.billboard")
        self.tint = parse_tint(self.tint, "leaves.tint")
        self.size_variance = clamp(_float(self.size_variance, "leaves.size_variance"), 0.0, 1.0)
        self.start = clamp(_float(self.start, "leaves.start"), 0.0, 1.0)
        self.alpha_test = clamp(_float(self.alpha_test, "leaves.alpha_test"), 0.0, 1.0)

    def validate(self) -> None:
        self.normalize()
        count = self.count
        if isinstance(count, bool) or not isinstance(count, (int, float)) or int(count) != count or count < 1:
            raise ConfigurationError(f"leaves.count must be a positive integer, got {count!r}")
        self.count = int(count)
        self.size = _float(self.size, "leaves.size")
        self.angle = _float(self.angle, "leaves.angle")
        if self.size <= 0:
            raise ConfigurationError(f"leaves.size must be positive, got {self.size}")


@dataclass
class ParameterModel:
    """
    Complete description of one tree.

    Every field has a default, so callers can override just the parts they
    care about. Instances are mutable; use copy() whenever a configuration is
    handed to a new tree so no level table is shared between models.
    """

    seed: int = 0
    type: TreeType = TreeType.DECIDUOUS
    bark: BarkParams = field(default_factory=BarkParams)
    branch: BranchParams = field(default_factory=BranchParams)
    leaves: LeafParams = field(default_factory=LeafParams)

    def __post_init__(self) -> None:
        self.type = coerce_enum(TreeType, self.type, "type")

    def validate(self) -> "ParameterModel":
        """Re-apply clamps and check structure. Returns self for chaining."""
        if isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0:
            raise ConfigurationError(f"seed must be a non-negative integer, got {self.seed!r}")
        self.type = coerce_enum(TreeType, self.type, "type")
        self.bark.validate()
        self.branch.validate()
        self.leaves.validate()
        return self

    def copy(self) -> "ParameterModel":
        """Deep, independent copy."""
        return copy.deepcopy(self)

    @classmethod
    def evergreen(cls, seed: int = 0) -> "ParameterModel":
        """A tall conifer: many short whorled branches, needle leaves."""
        return cls(
            seed=seed,
            type=TreeType.EVERGREEN,
            bark=BarkParams(type=BarkType.PINE, tint=0x7D6553),
            branch=BranchParams(
                levels=2,
                angle=[0.0, 110.0, 60.0],
                children=[18, 4],
                start=[0.0, 0.25, 0.3],
                length=[24.0, 9.0, 2.5],
                radius=[0.9, 0.25, 0.06],
                gnarliness=[0.02, 0.08, 0.1],
                twist=[0.0, 0.0, 0.0],
                taper=[0.4, 0.5, 0.5],
                sections=[14, 6, 4],
                segments=[8, 5, 3],
                force=GrowthForce(direction=(0.0, -1.0, 0.0), strength=0.005),
            ),
            leaves=LeafParams(
                type=LeafType.PINE,
                billboard=Billboard.DOUBLE,
                count=6,
                size=1.6,
                size_variance=0.3,
                angle=30.0,
                start=0.2,
                tint=0x2E5A2E,
            ),
        )

    @classmethod
    def bush(cls, seed: int = 0) -> "ParameterModel":
        """A flattened hierarchy: short stem, one branching level, dense leaves."""
        return cls(
            seed=seed,
            type=TreeType.DECIDUOUS,
            bark=BarkParams(type=BarkType.WILLOW, tint=0x654321),
            branch=BranchParams(
                levels=1,
                angle=[0.0, 55.0],
                children=[9],
                start=[0.0, 0.1],
                length=[2.0, 3.5],
                radius=[0.25, 0.1],
                gnarliness=[0.1, 0.25],
                twist=[0.0, 0.0],
                taper=[0.6, 0.5],
                sections=[4, 5],
                segments=[6, 4],
            ),
            leaves=LeafParams(
                type=LeafType.ASPEN,
                billboard=Billboard.DOUBLE,
                count=8,
                size=1.2,
                size_variance=0.4,
                angle=25.0,
                start=0.3,
                tint=0x32CD32,
            ),
        )


# =============================================================================
# WIND
# =============================================================================


@dataclass(frozen=True)
class WindParams:
    """
    Parameters for the wind sway signal.

    Branch vertices are pushed horizontally by

        bend(t) * sway ** stiffness

    along a heading that oscillates around `direction`:

        bend(t)    = strength * (1 + gust_strength * sin(gust_frequency * t))
        heading(t) = direction + sway_angle * sin(frequency * t + phase)

    where `sway` is the arc fraction summed along the branches from the trunk
    base to the vertex. Leaves add a flutter term along their normal.
    """

    strength: float = 0.04  # displacement at sway = 1 (trunk tip)
    direction: float = 0.0  # heading in the XZ plane, radians from +X
    frequency: float = 1.1  # radians per second
    sway_angle: float = 0.5  # heading swing, radians
    gust_strength: float = 0.35  # fractional bend modulation, [0, 1)
    gust_frequency: float = 0.3
    flutter_strength: float = 0.06
    flutter_frequency: float = 6.0
    stiffness: float = 1.5  # exponent >= 1; larger = tips move relatively more

    def __post_init__(self) -> None:
        for name in (
            "strength",
            "frequency",
            "sway_angle",
            "gust_strength",
            "gust_frequency",
            "flutter_strength",
            "flutter_frequency",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"wind.{name} must be nonnegative")
        if self.gust_strength >= 1.0:
            raise ConfigurationError("wind.gust_strength must be < 1")
        if self.stiffness < 1.0:
            raise ConfigurationError("wind.stiffness must be >= 1")

    @classmethod
    def calm(cls) -> "WindParams":
        """Barely moving air."""
        return cls(strength=0.0, gust_strength=0.0, flutter_strength=0.0)

    @classmethod
    def breezy(cls) -> "WindParams":
        """A steady light breeze (the default)."""
        return cls()

    @classmethod
    def stormy(cls) -> "WindParams":
        """Strong, gusty wind with fast leaf flutter."""
        return cls(
            strength=0.12,
            frequency=1.8,
            sway_angle=0.3,
            gust_strength=0.6,
            gust_frequency=0.7,
            flutter_strength=0.15,
            flutter_frequency=11.0,
        )
