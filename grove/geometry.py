"""
Mesh emission: branch tubes and leaf billboards.

Every branch becomes a tube of (sections + 1) rings with (segments + 1)
vertices each; the seam vertex is duplicated so U can wrap cleanly. Rings
follow the curved centerline, so each ring is oriented by its Section's
rotation and scaled by its radius.

Every leaf placement becomes one quad (SINGLE) or two quads crossed at 90
degrees (DOUBLE). A quad stands on its attachment point and extends `size`
along the leaf's up vector.

Besides positions/normals/UVs, each vertex carries four wind attributes:
    sway:          summed fraction along every branch from the trunk base; 0
                   at the trunk base and +1 along each branch
    phase:         sway phase in radians, blended from the parent's phase at
                   the joint toward the branch's own phase at its tip
    flutter:       0 at a leaf's base, 1 at its top, always 0 for bark
    flutter_phase: per-leaf flutter phase, 0 for bark

A branch starts with exactly the sway and phase its parent has at the
attachment point, so wind moves a joint and the parent surface together.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation

from grove.config import Billboard, ParameterModel, tint_to_rgb
from grove.errors import GenerationFailure
from grove.skeleton import UP, BranchNode, Skeleton
from grove.textures import TextureProvider, TextureRef

logger = logging.getLogger(__name__)

FACING = np.array([0.0, 0.0, 1.0])  # SINGLE billboards face +Z where possible


@dataclass(frozen=True)
class Material:
    """Render state for one mesh group."""

    kind: str  # "bark" or "leaf"
    type: str
    tint: tuple[float, float, float]
    textures: dict[str, TextureRef] = field(default_factory=dict)
    alpha_test: float = 0.0
    double_sided: bool = False


@dataclass
class MeshBuffers:
    """
    Flat vertex/index buffers for one material.

    Attributes:
        positions: (N, 3) float32, rewritten in place by the wind animator
        normals: (N, 3) float32 rest-pose normals
        uvs: (N, 2) float32
        indices: (M, 3) uint32 triangles
        sway: (N,) float32 wind weight
        phase: (N,) float32 wind phase
        flutter: (N,) float32 leaf flutter weight
        flutter_phase: (N,) float32 leaf flutter phase
        material: Render state shared by all triangles
        node_ranges: arena index -> [first, end) vertex range
    """

    positions: np.ndarray
    normals: np.ndarray
    uvs: np.ndarray
    indices: np.ndarray
    sway: np.ndarray
    phase: np.ndarray
    flutter: np.ndarray
    flutter_phase: np.ndarray
    material: Material
    node_ranges: dict[int, tuple[int, int]] = field(default_factory=dict)
    rest_positions: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        rest = self.positions.copy()
        rest.setflags(write=False)
        self.rest_positions = rest

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices)

    def groups(self) -> Iterator[tuple[int, int, Material]]:
        """Contiguous draw ranges as (first triangle, triangle count, material)."""
        if self.triangle_count:
            yield 0, self.triangle_count, self.material

    def reset(self) -> None:
        """Restore the rest pose."""
        np.copyto(self.positions, self.rest_positions)


@dataclass
class RenderableGeometry:
    """Bark and leaf buffers for one tree."""

    branches: MeshBuffers
    leaves: MeshBuffers

    @property
    def triangle_count(self) -> int:
        return self.branches.triangle_count + self.leaves.triangle_count

    @property
    def vertex_count(self) -> int:
        return self.branches.vertex_count + self.leaves.vertex_count

    def meshes(self) -> list[tuple[str, MeshBuffers]]:
        return [("branches", self.branches), ("leaves", self.leaves)]

    def reset(self) -> None:
        self.branches.reset()
        self.leaves.reset()


# =============================================================================
# BRANCHES
# =============================================================================


def _blend_phase(start: float, end: float, fraction: float | np.ndarray):
    """Interpolate from start toward end the short way around the circle."""
    delta = (end - start + np.pi) % (2.0 * np.pi) - np.pi
    return start + delta * fraction


def _wind_bases(skeleton: Skeleton) -> tuple[np.ndarray, np.ndarray]:
    """Sway and phase at the base of every branch, inherited from the parent."""
    sway = np.zeros(len(skeleton))
    phase = np.zeros(len(skeleton))
    for node in skeleton.nodes:
        if node.parent < 0:
            phase[node.index] = node.phase
            continue
        parent = skeleton.nodes[node.parent]
        sway[node.index] = sway[parent.index] + node.attach
        phase[node.index] = _blend_phase(phase[parent.index], parent.phase, node.attach)
    return sway, phase


def _tube(
    node: BranchNode,
    v_offset: float,
    scale_x: float,
    scale_y: float,
    sway_base: float,
    phase_base: float,
):
    """Vertices, wind attributes and local triangles for one branch."""
    rings = len(node.sections)
    segments = node.segments
    width = segments + 1

    theta = 2.0 * np.pi * np.arange(width) / segments
    circle = np.stack([np.cos(theta), np.zeros(width), np.sin(theta)], axis=1)

    positions = np.empty((rings, width, 3))
    normals = np.empty((rings, width, 3))
    for s, section in enumerate(node.sections):
        radial = section.rotation.apply(circle)
        normals[s] = radial
        positions[s] = section.origin + radial * section.radius

    arcs = np.array([section.arc for section in node.sections])
    u = np.broadcast_to(np.arange(width) / segments * scale_x, (rings, width))
    v = np.broadcast_to((v_offset + arcs / scale_y)[:, None], (rings, width))
    uvs = np.stack([u, v], axis=-1)

    fraction = arcs / node.length
    sway = np.broadcast_to((sway_base + fraction)[:, None], (rings, width))
    phase = np.broadcast_to(
        _blend_phase(phase_base, node.phase, fraction)[:, None], (rings, width)
    )

    s = np.arange(rings - 1)[:, None]
    j = np.arange(segments)[None, :]
    a = (s * width + j).ravel()
    b = a + 1
    c = a + width
    d = c + 1
    triangles = np.stack(
        [np.stack([a, c, b], axis=1), np.stack([b, c, d], axis=1)], axis=1
    ).reshape(-1, 3)

    return (
        positions.reshape(-1, 3),
        normals.reshape(-1, 3),
        uvs.reshape(-1, 2),
        sway.reshape(-1),
        phase.reshape(-1),
        triangles,
    )


def _emit_branches(skeleton: Skeleton, model: ParameterModel, material: Material) -> MeshBuffers:
    scale = model.bark.texture_scale
    v_offsets = np.zeros(len(skeleton))
    sway_bases, phase_bases = _wind_bases(skeleton)
    parts = []
    node_ranges = {}
    base = 0

    # Parents precede children in the arena, so offsets are ready when needed
    for node in skeleton.nodes:
        if node.parent >= 0:
            parent = skeleton.nodes[node.parent]
            v_offsets[node.index] = v_offsets[parent.index] + node.attach * parent.length / scale.y

        positions, normals, uvs, sway, phase, triangles = _tube(
            node,
            v_offsets[node.index],
            scale.x,
            scale.y,
            sway_bases[node.index],
            phase_bases[node.index],
        )
        count = len(positions)
        parts.append((positions, normals, uvs, sway, phase, triangles + base))
        node_ranges[node.index] = (base, base + count)
        base += count

    positions, normals, uvs, sway, phase, triangles = (
        np.concatenate(column) for column in zip(*parts)
    )
    return MeshBuffers(
        positions=positions.astype(np.float32),
        normals=normals.astype(np.float32),
        uvs=uvs.astype(np.float32),
        indices=triangles.astype(np.uint32),
        sway=sway.astype(np.float32),
        phase=phase.astype(np.float32),
        flutter=np.zeros(len(positions), dtype=np.float32),
        flutter_phase=np.zeros(len(positions), dtype=np.float32),
        material=material,
        node_ranges=node_ranges,
    )


# =============================================================================
# LEAVES
# =============================================================================


def _leaf_frames(up: np.ndarray, rotation: Rotation, billboard: Billboard) -> list[np.ndarray]:
    """Right vectors for each quad of one leaf."""
    right = np.cross(up, FACING)
    norm = np.linalg.norm(right)
    if norm < 1e-6:
        right = rotation.apply(np.array([1.0, 0.0, 0.0]))
    else:
        right = right / norm

    frames = [right]
    if billboard is Billboard.DOUBLE:
        frames.append(np.cross(right, up))
    return frames


_QUAD_UV = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
_QUAD_FLUTTER = np.array([0.0, 0.0, 1.0, 1.0])
_QUAD_TRIANGLES = np.array([[0, 1, 2], [0, 2, 3]])


def _emit_leaves(skeleton: Skeleton, model: ParameterModel, material: Material) -> MeshBuffers:
    billboard = model.leaves.billboard
    quads = len(skeleton.leaves) * billboard.quads_per_leaf

    positions = np.zeros((quads, 4, 3))
    normals = np.zeros((quads, 4, 3))
    sway = np.zeros((quads, 4))
    phase = np.zeros((quads, 4))
    flutter_phase = np.zeros((quads, 4))
    sway_bases, phase_bases = _wind_bases(skeleton)
    node_ranges = {}

    q = 0
    for leaf in skeleton.leaves:
        node = skeleton.nodes[leaf.branch]
        base, rotation, _, _ = skeleton.point_at(leaf.branch, leaf.offset)
        rotation = rotation * Rotation.from_euler("YX", [leaf.azimuth, leaf.tilt])
        up = rotation.apply(UP)
        leaf_sway = sway_bases[leaf.branch] + leaf.offset
        leaf_phase = _blend_phase(phase_bases[leaf.branch], node.phase, leaf.offset)

        first = q * 4
        for right in _leaf_frames(up, rotation, billboard):
            half = 0.5 * leaf.size * right
            top = leaf.size * up
            positions[q] = [base - half, base + half, base + half + top, base - half + top]
            normals[q] = np.cross(right, up)
            sway[q] = leaf_sway
            phase[q] = leaf_phase
            flutter_phase[q] = leaf.phase
            q += 1

        start, end = node_ranges.get(leaf.branch, (first, first))
        node_ranges[leaf.branch] = (start, q * 4)

    triangles = (np.arange(quads)[:, None, None] * 4 + _QUAD_TRIANGLES).reshape(-1, 3)
    return MeshBuffers(
        positions=positions.reshape(-1, 3).astype(np.float32),
        normals=normals.reshape(-1, 3).astype(np.float32),
        uvs=np.tile(_QUAD_UV, (quads, 1)).astype(np.float32),
        indices=triangles.astype(np.uint32),
        sway=sway.reshape(-1).astype(np.float32),
        phase=phase.reshape(-1).astype(np.float32),
        flutter=np.tile(_QUAD_FLUTTER, quads).astype(np.float32),
        flutter_phase=flutter_phase.reshape(-1).astype(np.float32),
        material=material,
        node_ranges=node_ranges,
    )


# =============================================================================
# PUBLIC API
# =============================================================================


def materials(
    model: ParameterModel, textures: TextureProvider | None = None
) -> tuple[Material, Material]:
    """Bark and leaf materials for a model."""
    bark_maps = {}
    leaf_maps = {}
    if textures is not None:
        bark_maps = {c.value: ref for c, ref in textures.bark_set(model.bark.type).items()}
        leaf_maps = {"color": textures.leaf(model.leaves.type)}

    bark = Material(
        kind="bark",
        type=model.bark.type.value,
        tint=tint_to_rgb(model.bark.tint),
        textures=bark_maps,
    )
    leaf = Material(
        kind="leaf",
        type=model.leaves.type.value,
        tint=tint_to_rgb(model.leaves.tint),
        textures=leaf_maps,
        alpha_test=model.leaves.alpha_test,
        double_sided=True,
    )
    return bark, leaf


def emit(
    skeleton: Skeleton,
    model: ParameterModel,
    textures: TextureProvider | None = None,
) -> RenderableGeometry:
    """
    Convert a skeleton into renderable buffers.

    Args:
        skeleton: Output of grove.skeleton.build for the same model
        model: Supplies texture scale, billboard mode and materials
        textures: Optional provider used to attach texture references

    Returns:
        RenderableGeometry with bark and leaf buffers

    Raises:
        GenerationFailure: Emitted positions are not finite
    """
    bark, leaf = materials(model, textures)
    geometry = RenderableGeometry(
        branches=_emit_branches(skeleton, model, bark),
        leaves=_emit_leaves(skeleton, model, leaf),
    )
    for name, mesh in geometry.meshes():
        if not np.all(np.isfinite(mesh.positions)):
            raise GenerationFailure(f"{name} mesh has non-finite vertex positions")

    logger.debug(
        "Emitted %d branch and %d leaf triangles for seed %d",
        geometry.branches.triangle_count,
        geometry.leaves.triangle_count,
        model.seed,
    )
    return geometry


def export_obj(
    path: str | Path,
    meshes: Sequence[tuple[str, MeshBuffers]],
    transforms: Sequence[np.ndarray] | None = None,
) -> Path:
    """
    Write meshes to a Wavefront OBJ file, one group per mesh.

    Args:
        path: Output file
        meshes: (group name, buffers) pairs; current (animated) positions are written
        transforms: Optional 4x4 matrix per mesh applied to positions and normals

    Returns:
        The output path
    """
    path = Path(path)
    with open(path, "w") as f:
        vert_offset = 0
        for k, (name, mesh) in enumerate(meshes):
            positions = mesh.positions.astype(float)
            normals = mesh.normals.astype(float)
            if transforms is not None:
                matrix = np.asarray(transforms[k], dtype=float)
                positions = positions @ matrix[:3, :3].T + matrix[:3, 3]
                normals = normals @ matrix[:3, :3].T

            f.write(f"g {name}\n")
            for x, y, z in positions:
                f.write(f"v {x:.6f} {y:.6f} {z:.6f}\n")
            for u, v in mesh.uvs:
                f.write(f"vt {u:.6f} {v:.6f}\n")
            for x, y, z in normals:
                f.write(f"vn {x:.6f} {y:.6f} {z:.6f}\n")
            for face in mesh.indices:
                a, b, c = [int(idx) + vert_offset + 1 for idx in face]
                f.write(f"f {a}/{a}/{a} {b}/{b}/{b} {c}/{c}/{c}\n")
            vert_offset += mesh.vertex_count
    return path
