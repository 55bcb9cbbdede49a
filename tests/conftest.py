import os

os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pytest

from cortex_smooth.mesh.pair import SurfacePair
from cortex_smooth.mesh.preprocess import SurfaceMesh


def _grid(nx, ny, spacing=1.0, z=0.0):
    """Flat triangulated nx*ny grid in the z-plane, normals along +z."""
    xs, ys = np.meshgrid(np.arange(nx) * spacing, np.arange(ny) * spacing, indexing="xy")
    verts = np.column_stack([xs.ravel(), ys.ravel(), np.full(nx * ny, z)])
    faces = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            a = j * nx + i
            b = a + 1
            c = a + nx + 1
            d = a + nx
            faces.append((a, b, c))
            faces.append((a, c, d))
    return SurfaceMesh(verts, np.asarray(faces))


@pytest.fixture
def make_grid():
    return _grid


@pytest.fixture
def make_flat_pair():
    def _make(offset, nx=6, ny=6, spacing=1.0):
        white = _grid(nx, ny, spacing, 0.0)
        pial = _grid(nx, ny, spacing, offset)
        return SurfacePair(white, pial)

    return _make


@pytest.fixture
def icosphere():
    """Closed, outward-wound sphere (162 vertices) of radius 10."""
    import trimesh

    def _make(subdivisions=2, radius=10.0):
        tm = trimesh.creation.icosphere(subdivisions=subdivisions, radius=radius)
        return SurfaceMesh(np.asarray(tm.vertices), np.asarray(tm.faces))

    return _make
