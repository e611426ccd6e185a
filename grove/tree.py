"""
A single animated tree instance.

Lifecycle:
    Tree(model) -> generate() -> update(t) every frame

generate() always rebuilds from scratch and only replaces the stored skeleton
and geometry once both were built successfully. update() rewrites vertex
positions in place and is a no-op until the tree has been generated.
"""

import logging

import numpy as np

from grove import geometry, skeleton
from grove.config import ParameterModel, WindParams
from grove.geometry import RenderableGeometry
from grove.skeleton import Skeleton
from grove.textures import TextureProvider
from grove.wind import WindAnimator

logger = logging.getLogger(__name__)


class Tree:
    """
    One tree: configuration, skeleton, geometry and wind.

    Args:
        model: Tree configuration; the tree keeps a private deep copy
        textures: Shared read-only texture provider
        wind: Wind parameters for this tree
        name: Label used in logs and exports
    """

    def __init__(
        self,
        model: ParameterModel | None = None,
        textures: TextureProvider | None = None,
        wind: WindParams | None = None,
        name: str = "tree",
    ) -> None:
        self.model = (model if model is not None else ParameterModel()).copy()
        self.textures = textures
        self.animator = WindAnimator(wind)
        self.name = name
        self.position = np.zeros(3)
        self.skeleton: Skeleton | None = None
        self.geometry: RenderableGeometry | None = None

    def __repr__(self) -> str:
        state = "generated" if self.generated else "empty"
        return f"Tree({self.name!r}, seed={self.model.seed}, {state})"

    @property
    def generated(self) -> bool:
        return self.geometry is not None

    @property
    def triangle_count(self) -> int:
        return self.geometry.triangle_count if self.geometry is not None else 0

    def set_position(self, x: float, y: float, z: float) -> None:
        self.position = np.array([x, y, z], dtype=float)

    @property
    def transform(self) -> np.ndarray:
        """4x4 tree-local to world matrix."""
        matrix = np.eye(4)
        matrix[:3, 3] = self.position
        return matrix

    def generate(self) -> "Tree":
        """
        Build skeleton and geometry from the current model.

        Raises:
            ConfigurationError: The model is invalid
            GenerationFailure: Building or emitting broke an invariant
        """
        built = skeleton.build(self.model)
        emitted = geometry.emit(built, self.model, self.textures)
        self.skeleton = built
        self.geometry = emitted
        logger.debug(
            "Generated %s: %d branches, %d leaves, %d triangles",
            self.name,
            len(built),
            len(built.leaves),
            emitted.triangle_count,
        )
        return self

    def update(self, elapsed_time: float) -> None:
        """Apply wind for the given time since start, in seconds."""
        if self.geometry is None:
            return
        self.animator.update(self.geometry, elapsed_time)

    def world_bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """(min, max) corners of the current geometry in world space."""
        if self.geometry is None:
            return self.position.copy(), self.position.copy()
        points = np.concatenate(
            [mesh.positions for _, mesh in self.geometry.meshes() if mesh.vertex_count]
        )
        return points.min(axis=0) + self.position, points.max(axis=0) + self.position
