"""
Grove: Procedural Tree Generation

Builds 3D trees (trunk, branch hierarchy, foliage) from a level-indexed
parameter model and animates them with a lightweight wind simulation.

Modules:
    errors: Exception taxonomy
    config: ParameterModel, enums and wind parameters
    textures: Bark/leaf texture references
    presets: Named preset documents (async, cached)
    skeleton: Branch skeleton builder
    geometry: Tube and billboard mesh emission, OBJ export
    wind: Jitted sway/flutter kernel and animator
    tree: Tree instance lifecycle
    forest: Batch generation with per-tree error isolation
    visualization: Matplotlib previews
"""

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
    WindParams,
)
from grove.errors import ConfigurationError, GenerationFailure, GroveError, PresetLoadError
from grove.forest import (
    ForestReport,
    SkippedTree,
    generate_forest,
    generate_preset_forest,
    grow_forest,
    random_model,
    scatter_positions,
)
from grove.geometry import Material, MeshBuffers, RenderableGeometry, emit, export_obj
from grove.presets import PresetDocument, PresetRepository, PresetResult
from grove.skeleton import BranchNode, LeafPlacement, Section, Skeleton
from grove.skeleton import build as build_skeleton
from grove.textures import BarkChannel, TextureProvider, TextureRef
from grove.tree import Tree
from grove.wind import WindAnimator

__all__ = [
    # Config
    "BarkParams",
    "BarkType",
    "Billboard",
    "BranchParams",
    "GrowthForce",
    "LeafParams",
    "LeafType",
    "ParameterModel",
    "TextureScale",
    "TreeType",
    "WindParams",
    # Errors
    "ConfigurationError",
    "GenerationFailure",
    "GroveError",
    "PresetLoadError",
    # Resources
    "BarkChannel",
    "PresetDocument",
    "PresetRepository",
    "PresetResult",
    "TextureProvider",
    "TextureRef",
    # Generation
    "BranchNode",
    "LeafPlacement",
    "Section",
    "Skeleton",
    "build_skeleton",
    "Material",
    "MeshBuffers",
    "RenderableGeometry",
    "emit",
    "export_obj",
    # Animation
    "Tree",
    "WindAnimator",
    # Forest
    "ForestReport",
    "SkippedTree",
    "generate_forest",
    "generate_preset_forest",
    "grow_forest",
    "random_model",
    "scatter_positions",
]
