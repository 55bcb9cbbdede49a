# cortex_smooth/viz/plotting.py
from __future__ import annotations

from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt
from mpl_toolkits.mplot3d.art3d import Poly3DCollection

WHITE_RGB = (0.8, 0.8, 0.0)
PIAL_RGB = (1.0, 0.2, 0.2)


def _plot_surface(ax, mesh, colour, label: str, alpha: float):
    faces = mesh.vertices[mesh.faces]
    poly = Poly3DCollection(faces, linewidths=0)
    ax.add_collection3d(poly)
    poly.set_facecolor(colour)
    poly.set_alpha(alpha)
    poly.set_label(label)
    return poly


def plot_white(ax, mesh):
    """Plot the white surface (yellow) as a Poly3DCollection."""
    return _plot_surface(ax, mesh, WHITE_RGB, "White surface", 0.6)


def plot_pial(ax, mesh):
    """Plot the pial surface (red, translucent) as a Poly3DCollection."""
    return _plot_surface(ax, mesh, PIAL_RGB, "Pial surface", 0.35)


def set_axes_equal(ax) -> None:
    """
    Sets equal scaling for a 3D plot so that the scale for x, y, and z axes are equal.
    This ensures that a cube appears as a cube rather than a rectangular prism.
    """
    x_limits = ax.get_xlim3d()
    y_limits = ax.get_ylim3d()
    z_limits = ax.get_zlim3d()

    x_range = abs(x_limits[1] - x_limits[0])
    x_middle = np.mean(x_limits)
    y_range = abs(y_limits[1] - y_limits[0])
    y_middle = np.mean(y_limits)
    z_range = abs(z_limits[1] - z_limits[0])
    z_middle = np.mean(z_limits)

    # The plot radius is half of the maximum range
    plot_radius = 0.5 * max([x_range, y_range, z_range])

    ax.set_xlim3d([x_middle - plot_radius, x_middle + plot_radius])
    ax.set_ylim3d([y_middle - plot_radius, y_middle + plot_radius])
    ax.set_zlim3d([z_middle - plot_radius, z_middle + plot_radius])


def _background_slice(background, point):
    from ..mesh.volume import world_to_voxel

    data = np.asanyarray(background.dataobj)
    if data.ndim > 3:
        data = data.reshape(data.shape[:3] + (-1,))[..., 0]
    ijk = np.rint(world_to_voxel(background, point[None, :])[0]).astype(int)
    k = int(np.clip(ijk[2], 0, data.shape[2] - 1))
    return data[:, :, k]


def plot_trajectory(trace: np.ndarray, path, background=None) -> Path:
    """
    Save a figure of a traced vertex: thickness and residual per iteration and,
    when a background volume is given, the white/pial track over the axial
    slice through the first white position (voxel coordinates).
    """
    path = Path(path)
    trace = np.asarray(trace, dtype=float).reshape(-1, 9)

    ncols = 3 if background is not None and len(trace) else 2
    fig, axes = plt.subplots(1, ncols, figsize=(4.5 * ncols, 4))

    it = trace[:, 6]
    axes[0].plot(it, trace[:, 7], marker="o")
    axes[0].set_xlabel("iteration")
    axes[0].set_ylabel("thickness (mm)")

    axes[1].semilogy(it, np.maximum(trace[:, 8], 1e-16), marker=".")
    axes[1].set_xlabel("iteration")
    axes[1].set_ylabel("residual")

    if ncols == 3:
        from ..mesh.volume import world_to_voxel

        img_slice = _background_slice(background, trace[0, 0:3])
        ax = axes[2]
        ax.imshow(img_slice.T, origin="lower", cmap="gray")
        w_ijk = world_to_voxel(background, trace[:, 0:3])
        p_ijk = world_to_voxel(background, trace[:, 3:6])
        ax.plot(w_ijk[:, 0], w_ijk[:, 1], color=WHITE_RGB, marker=".", label="white")
        ax.plot(p_ijk[:, 0], p_ijk[:, 1], color=PIAL_RGB, marker=".", label="pial")
        ax.legend()
        ax.set_axis_off()

    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
    return path
