"""
Matplotlib previews of generated trees and forests.

Trees are Y-up; matplotlib's 3D axes are Z-up, so every point is drawn as
(x, z, y). These previews are for inspection only: flat-shaded triangles
tinted by material, no textures.
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.mplot3d.art3d import Line3DCollection, Poly3DCollection

from grove.forest import ForestReport, forest_bounds
from grove.geometry import MeshBuffers
from grove.skeleton import Skeleton
from grove.tree import Tree


def _to_plot(points: np.ndarray) -> np.ndarray:
    """Y-up scene coordinates -> Z-up plot coordinates."""
    return points[..., [0, 2, 1]]


def _new_axes(ax, figsize):
    if ax is None:
        fig = plt.figure(figsize=figsize)
        ax = fig.add_subplot(projection="3d")
    else:
        fig = ax.figure
    return fig, ax


def _set_equal(ax, lo: np.ndarray, hi: np.ndarray) -> None:
    lo, hi = _to_plot(lo), _to_plot(hi)
    center = 0.5 * (lo + hi)
    half = max(0.5 * float(np.max(hi - lo)), 1e-3)
    ax.set_xlim(center[0] - half, center[0] + half)
    ax.set_ylim(center[1] - half, center[1] + half)
    ax.set_zlim(max(0.0, center[2] - half), center[2] + half)


def draw_mesh(
    ax,
    mesh: MeshBuffers,
    offset: np.ndarray | None = None,
    alpha: float = 1.0,
    max_faces: int | None = None,
) -> Poly3DCollection | None:
    """
    Add one mesh to a 3D axes.

    Args:
        ax: Matplotlib 3D axes
        mesh: Buffers to draw (current, possibly animated, positions)
        offset: World translation added to every vertex
        alpha: Face opacity
        max_faces: Draw at most this many triangles (evenly strided)

    Returns:
        The added collection, or None for an empty mesh
    """
    if mesh.triangle_count == 0:
        return None
    indices = mesh.indices
    if max_faces is not None and len(indices) > max_faces:
        indices = indices[:: int(np.ceil(len(indices) / max_faces))]

    points = mesh.positions.astype(float)
    if offset is not None:
        points = points + offset
    faces = _to_plot(points[indices])

    collection = Poly3DCollection(
        faces,
        facecolors=mesh.material.tint,
        edgecolors="none",
        alpha=alpha,
    )
    ax.add_collection3d(collection)
    return collection


def plot_skeleton(skeleton: Skeleton, ax=None, figsize: tuple = (6, 8), color="saddlebrown"):
    """Draw branch centerlines only; line width follows branch radius."""
    fig, ax = _new_axes(ax, figsize)
    segments = []
    widths = []
    for node in skeleton.nodes:
        points = _to_plot(np.array([s.origin for s in node.sections]))
        segments.extend(zip(points[:-1], points[1:]))
        widths.extend(max(0.5, 6.0 * s.radius) for s in node.sections[:-1])
    ax.add_collection3d(Line3DCollection(segments, colors=color, linewidths=widths))

    everything = np.array([s.origin for node in skeleton.nodes for s in node.sections])
    _set_equal(ax, everything.min(axis=0), everything.max(axis=0))
    return fig, ax


def plot_tree(
    tree: Tree,
    ax=None,
    title: str | None = None,
    figsize: tuple = (6, 8),
    leaves: bool = True,
    max_faces: int | None = 20000,
    world: bool = False,
):
    """
    Render a generated tree.

    Args:
        tree: A generated Tree
        ax: Existing 3D axes (a new figure is created if None)
        title: Axes title (defaults to the tree name)
        figsize: Figure size when creating a figure
        leaves: Include leaf billboards
        max_faces: Per-mesh triangle cap for responsiveness
        world: Draw at the tree's world position instead of the origin

    Returns:
        Figure and axes
    """
    if tree.geometry is None:
        raise ValueError(f"{tree!r} has not been generated")

    fig, ax = _new_axes(ax, figsize)
    offset = tree.position if world else None
    draw_mesh(ax, tree.geometry.branches, offset=offset, max_faces=max_faces)
    if leaves:
        draw_mesh(ax, tree.geometry.leaves, offset=offset, alpha=0.8, max_faces=max_faces)

    if not world:
        lo, hi = tree.world_bounds()
        _set_equal(ax, lo - tree.position, hi - tree.position)
    ax.set_title(title if title is not None else tree.name)
    ax.set_axis_off()
    return fig, ax


def plot_forest(
    report: ForestReport,
    ax=None,
    figsize: tuple = (12, 9),
    leaves: bool = True,
    max_faces: int | None = 4000,
):
    """Render every generated tree of a forest at its world position."""
    fig, ax = _new_axes(ax, figsize)
    for tree in report.trees:
        plot_tree(tree, ax=ax, leaves=leaves, max_faces=max_faces, world=True)

    lo, hi = forest_bounds(report.trees)
    _set_equal(ax, lo, hi)
    ax.set_title(f"{report.generated} trees ({len(report.skipped)} skipped)")
    ax.view_init(elev=20, azim=-60)
    return fig, ax


def save_forest_preview(
    report: ForestReport,
    path: str | Path,
    dpi: int = 100,
    **kwargs,
) -> Path:
    """Render a forest to an image file and close the figure."""
    path = Path(path)
    fig, _ = plot_forest(report, **kwargs)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return path
