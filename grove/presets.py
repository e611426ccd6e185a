"""
Named tree presets stored as JSON documents.

Each file under the preset root holds one ParameterModel with camelCase keys
(`textureScale`, `sizeVariance`, `alphaTest`). The file stem is the preset
id; its display name is the title-cased stem ("oak_medium" -> "Oak Medium").
Either form is accepted by lookups.

The catalog is loaded once per repository, off the event loop, and cached.
A file that cannot be read, parsed or validated is logged and skipped;
fetching it later reports the PresetLoadError, while names that were never in
the catalog fall back to the default ParameterModel.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from grove.config import (
    BarkParams,
    BarkType,
    Billboard,
    BranchParams,
    GrowthForce,
    LeafParams,
    LeafType,
    ParameterModel,
    TextureScale,
    TreeType,
    parse_tint,
)
from grove.errors import PresetLoadError

logger = logging.getLogger(__name__)

DEFAULT_ROOT = Path(__file__).parent / "data" / "presets"


#
# Schemata
#


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


Tint = Annotated[int, BeforeValidator(parse_tint)]


class TextureScaleDocument(_Document):
    x: float = Field(default=1.0, gt=0, description="Repeats around the branch")
    y: float = Field(default=1.0, gt=0, description="World units per vertical repeat")


class BarkDocument(_Document):
    type: Annotated[BarkType, BeforeValidator(_lower)] = Field(
        default=BarkType.OAK, description="Bark species"
    )
    tint: Tint = Field(default=0xFFFFFF, description="0xRRGGBB or '#rrggbb'")
    texture_scale: TextureScaleDocument = Field(default_factory=TextureScaleDocument)


class ForceDocument(_Document):
    direction: tuple[float, float, float] = Field(default=(0.0, 1.0, 0.0))
    strength: float = Field(
        default=0.01, ge=0, description="Max turn per section, scaled by 1/radius"
    )


class BranchDocument(_Document):
    """Level-indexed branch tables. Omitted tables keep their defaults."""

    levels: int | None = Field(default=None, ge=0, description="Deepest branch level")
    angle: list[float] | None = None
    children: list[int] | None = None
    start: list[float] | None = None
    length: list[float] | None = None
    radius: list[float] | None = None
    gnarliness: list[float] | None = None
    twist: list[float] | None = None
    taper: list[float] | None = None
    sections: list[int] | None = None
    segments: list[int] | None = None
    force: ForceDocument | None = None


class LeavesDocument(_Document):
    type: Annotated[LeafType, BeforeValidator(_lower)] = Field(
        default=LeafType.OAK, description="Leaf species"
    )
    billboard: Annotated[Billboard, BeforeValidator(_lower)] = Field(
        default=Billboard.DOUBLE, description="single or double"
    )
    count: int = Field(default=1, ge=1, description="Leaves per terminal branch")
    size: float = Field(default=2.5, gt=0)
    size_variance: float = Field(default=0.7, ge=0)
    angle: float = Field(default=10.0, description="Degrees away from the branch axis")
    start: float = Field(default=0.0, description="Fraction along the branch")
    tint: Tint = Field(default=0xFFFFFF)
    alpha_test: float = Field(default=0.5)


class PresetDocument(_Document):
    """Persisted form of a ParameterModel."""

    seed: int = Field(default=0, ge=0, description="PRNG seed")
    type: Annotated[TreeType, BeforeValidator(_lower)] = Field(
        default=TreeType.DECIDUOUS, description="evergreen or deciduous"
    )
    bark: BarkDocument = Field(default_factory=BarkDocument)
    branch: BranchDocument = Field(default_factory=BranchDocument)
    leaves: LeavesDocument = Field(default_factory=LeavesDocument)

    def to_model(self) -> ParameterModel:
        """Build (but do not validate) the equivalent ParameterModel."""
        tables = self.branch.model_dump(exclude_none=True, exclude={"force"})
        branch = BranchParams(**tables)
        if self.branch.force is not None:
            branch.force = GrowthForce(
                direction=self.branch.force.direction,
                strength=self.branch.force.strength,
            )
        return ParameterModel(
            seed=self.seed,
            type=self.type,
            bark=BarkParams(
                type=self.bark.type,
                tint=self.bark.tint,
                texture_scale=TextureScale(
                    x=self.bark.texture_scale.x, y=self.bark.texture_scale.y
                ),
            ),
            branch=branch,
            leaves=LeafParams(**self.leaves.model_dump()),
        )


#
# Repository
#


def display_name(name: str) -> str:
    """'oak_medium', 'Oak Medium' and 'oak medium' all map to 'Oak Medium'."""
    words = name.strip().replace(" ", "_").lower().split("_")
    return " ".join(word.capitalize() for word in words if word)


def read_preset(path: Path) -> ParameterModel:
    """
    Read and validate a single preset file.

    Raises:
        PresetLoadError: The file is unreadable, not JSON, or describes an
            invalid ParameterModel
    """
    name = display_name(path.stem)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return PresetDocument.model_validate(data).to_model().validate()
    except (OSError, ValueError) as err:
        # json, pydantic and ConfigurationError all derive from ValueError
        raise PresetLoadError(name, str(err)) from err


@dataclass(frozen=True)
class PresetResult:
    """
    Outcome of a preset lookup.

    Exactly one of `model` and `error` is set. `fallback` is True when the
    name was unknown and `model` is the default configuration.
    """

    name: str
    model: ParameterModel | None
    error: PresetLoadError | None = None
    fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.model is not None


class PresetRepository:
    """Async, cached access to the preset catalog under `root`."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else DEFAULT_ROOT
        self._models: dict[str, ParameterModel] | None = None
        self._errors: dict[str, PresetLoadError] = {}
        self._lock = asyncio.Lock()

    def _load_all(self) -> dict[str, ParameterModel]:
        models = {}
        for path in sorted(self.root.glob("*.json")):
            try:
                models[display_name(path.stem)] = read_preset(path)
            except PresetLoadError as err:
                logger.warning("Skipping preset %s: %s", path.name, err.reason)
                self._errors[err.name] = err
        logger.debug("Loaded %d presets from %s", len(models), self.root)
        return models

    async def _catalog(self) -> dict[str, ParameterModel]:
        async with self._lock:
            if self._models is None:
                self._models = await asyncio.to_thread(self._load_all)
        return self._models

    async def list(self) -> list[str]:
        """Display names of every preset that loaded, in file order."""
        return list(await self._catalog())

    async def fetch(self, name: str) -> PresetResult:
        """Look up a preset, reporting load errors and fallbacks explicitly."""
        models = await self._catalog()
        key = display_name(name)
        if key in models:
            return PresetResult(name=key, model=models[key].copy())
        if key in self._errors:
            return PresetResult(name=key, model=None, error=self._errors[key])
        logger.info("Unknown preset %r, using the default configuration", name)
        return PresetResult(name=key, model=ParameterModel(), fallback=True)

    async def load(self, name: str) -> ParameterModel:
        """Load a preset, falling back to the default model on any failure."""
        result = await self.fetch(name)
        if result.error is not None:
            logger.warning("%s; using the default configuration", result.error)
            return ParameterModel()
        return result.model
