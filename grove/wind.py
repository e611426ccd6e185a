"""
Wind sway and leaf flutter.

Displacement is a pure function of the rest pose, the per-vertex wind
attributes and time:

    bend(t)    = strength * (1 + gust_strength * sin(gust_frequency * t))
    heading    = direction + sway_angle * sin(frequency * t + phase)
    offset     = bend(t) * sway ** stiffness * (cos heading, 0, sin heading)
    offset    += flutter * flutter_strength * sin(flutter_frequency * t + flutter_phase) * normal

The horizontal magnitude depends only on `sway`, which grows along every
branch and starts each child at its parent's value, so it never decreases
from the trunk toward a tip. Vertices with sway = 0 (the trunk base) never
move. A child's base ring shares the sway and phase of the parent at the
joint, so both move by the same offset. Because every frame starts from the
rest pose, repeated updates at the same time give identical positions and
nothing accumulates.

The kernel is jitted once per buffer length. WindAnimator pads buffers to a
power of two (at least MIN_BUCKET vertices) with still vertices, so a forest
of trees with different vertex counts shares a handful of compiled shapes.
"""

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from jax import Array

from grove.config import WindParams
from grove.geometry import MeshBuffers, RenderableGeometry

MIN_BUCKET = 256


@eqx.filter_jit
def displace(
    rest: Array,
    normals: Array,
    sway: Array,
    phase: Array,
    flutter: Array,
    flutter_phase: Array,
    t: Array,
    wind: WindParams,
) -> Array:
    """
    Displaced vertex positions at time t.

    Args:
        rest: (N, 3) rest positions
        normals: (N, 3) rest normals
        sway: (N,) wind weight
        phase: (N,) sway phase offsets
        flutter: (N,) leaf flutter weight
        flutter_phase: (N,) leaf flutter phase offsets
        t: Scalar time in seconds (an array, so it is traced rather than static)
        wind: Static wind parameters

    Returns:
        (N, 3) displaced positions
    """
    bend = wind.strength * (1.0 + wind.gust_strength * jnp.sin(wind.gust_frequency * t))
    heading = wind.direction + wind.sway_angle * jnp.sin(wind.frequency * t + phase)
    magnitude = bend * jnp.power(sway, wind.stiffness)

    offset = jnp.stack(
        [magnitude * jnp.cos(heading), jnp.zeros_like(magnitude), magnitude * jnp.sin(heading)],
        axis=-1,
    )
    wobble = (
        flutter
        * wind.flutter_strength
        * jnp.sin(wind.flutter_frequency * t + flutter_phase)
    )
    return rest + offset + wobble[:, None] * normals


def sway_magnitude(sway: np.ndarray, t: float, wind: WindParams) -> np.ndarray:
    """Horizontal displacement length for the given sway weights."""
    bend = wind.strength * (1.0 + wind.gust_strength * np.sin(wind.gust_frequency * t))
    return bend * np.power(sway, wind.stiffness)


def bucket_size(n: int) -> int:
    """Padded buffer length for n vertices."""
    size = MIN_BUCKET
    while size < n:
        size *= 2
    return size


def _padded(values: np.ndarray, size: int) -> Array:
    """Zero-pad the leading axis to `size`."""
    pad = [(0, size - len(values))] + [(0, 0)] * (values.ndim - 1)
    return jnp.asarray(np.pad(values, pad))


class WindAnimator:
    """Writes wind-displaced positions into existing mesh buffers."""

    def __init__(self, params: WindParams | None = None) -> None:
        self.params = params if params is not None else WindParams()

    def displaced(self, mesh: MeshBuffers, elapsed_time: float) -> np.ndarray:
        """Positions for one mesh at a time, without touching its buffers."""
        n = mesh.vertex_count
        size = bucket_size(n)
        positions = displace(
            _padded(mesh.rest_positions, size),
            _padded(mesh.normals, size),
            _padded(mesh.sway, size),
            _padded(mesh.phase, size),
            _padded(mesh.flutter, size),
            _padded(mesh.flutter_phase, size),
            jnp.asarray(elapsed_time, dtype=jnp.float32),
            self.params,
        )
        return np.asarray(positions[:n], dtype=np.float32)

    def update(self, geometry: RenderableGeometry, elapsed_time: float) -> None:
        """Animate every mesh in place from its rest pose."""
        for _, mesh in geometry.meshes():
            if mesh.vertex_count == 0:
                continue
            np.copyto(mesh.positions, self.displaced(mesh, elapsed_time))
