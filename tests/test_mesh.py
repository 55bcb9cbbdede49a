"""
Tests for the surface model: topology caches, normals, volume, umbrella
operator and the white/pial pair preconditions.
"""

import numpy as np
import pytest

from cortex_smooth.mesh.pair import PIAL, WHITE, PreconditionError, SurfacePair
from cortex_smooth.mesh.preprocess import SurfaceMesh


# ============== SurfaceMesh ==============

def test_faces_are_frozen(make_grid):
    mesh = make_grid(3, 3)
    with pytest.raises(ValueError):
        mesh.faces[0, 0] = 1


def test_faces_out_of_range_rejected():
    with pytest.raises(ValueError, match="outside"):
        SurfaceMesh(np.zeros((3, 3)), np.array([[0, 1, 3]]))


def test_grid_topology(make_grid):
    mesh = make_grid(4, 4)
    assert mesh.n_vertices == 16
    assert mesh.n_faces == 18

    # interior vertex of the diagonal triangulation has 6 neighbours
    interior = 1 * 4 + 1
    assert mesh.degree[interior] == 6
    assert not mesh.boundary_vertices[interior]
    assert mesh.boundary_vertices.sum() == 12

    # vertex_faces rows match incident faces
    incident = mesh.vertex_faces[interior].indices
    expected = np.where(np.any(mesh.faces == interior, axis=1))[0]
    assert set(incident.tolist()) == set(expected.tolist())


def test_grid_normals_point_up(make_grid):
    mesh = make_grid(4, 4)
    np.testing.assert_allclose(mesh.vertex_normals(), np.tile([0.0, 0.0, 1.0], (16, 1)), atol=1e-12)
    np.testing.assert_allclose(mesh.face_areas(), 0.5)


def test_isolated_vertex_has_zero_normal_and_umbrella(make_grid):
    grid = make_grid(3, 3)
    verts = np.vstack([grid.vertices, [[10.0, 10.0, 10.0]]])
    mesh = SurfaceMesh(verts, grid.faces)
    assert mesh.degree[-1] == 0
    np.testing.assert_array_equal(mesh.vertex_normals()[-1], 0.0)
    np.testing.assert_array_equal(mesh.umbrella()[-1], 0.0)


def test_umbrella_is_zero_inside_flat_grid(make_grid):
    mesh = make_grid(5, 5)
    U = mesh.umbrella()
    interior = ~mesh.boundary_vertices
    np.testing.assert_allclose(U[interior], 0.0, atol=1e-12)
    assert np.abs(U[mesh.boundary_vertices]).max() > 0.0


def test_icosphere_volume(icosphere):
    mesh = icosphere(subdivisions=3, radius=10.0)
    exact = 4.0 / 3.0 * np.pi * 10.0 ** 3
    assert mesh.enclosed_volume() == pytest.approx(exact, rel=0.02)


def test_copy_is_independent(make_grid):
    mesh = make_grid(3, 3)
    _ = mesh.adjacency
    dup = mesh.copy()
    dup.vertices[0] += 1.0
    assert mesh.vertices[0, 0] == 0.0
    assert dup.adjacency is mesh.adjacency


# ============== SurfacePair ==============

def test_vertex_count_mismatch_is_a_precondition_failure(make_grid):
    white = make_grid(10, 10)
    pial_grid = make_grid(10, 10, z=2.0)
    pial = SurfaceMesh(np.vstack([pial_grid.vertices, [[0.0, 0.0, 5.0]]]), pial_grid.faces)
    assert white.n_vertices == 100 and pial.n_vertices == 101
    with pytest.raises(PreconditionError, match="did not match"):
        SurfacePair(white, pial)


def test_mask_length_checked(make_flat_pair):
    pair = make_flat_pair(2.0)
    with pytest.raises(PreconditionError):
        SurfacePair(pair.white, pair.pial, np.zeros(3, dtype=bool))


def test_thickness_and_orientation(make_flat_pair):
    pair = make_flat_pair(2.0)
    assert pair.orientation == 1
    np.testing.assert_allclose(pair.thickness(), 2.0)
    np.testing.assert_allclose(pair.signed_thickness(), 2.0)


def test_inward_wound_white_is_detected(make_grid):
    white = make_grid(4, 4)
    flipped = SurfaceMesh(white.vertices, white.faces[:, ::-1])
    pial = make_grid(4, 4, z=1.5)
    pair = SurfacePair(flipped, pial)
    assert pair.orientation == -1
    np.testing.assert_allclose(pair.signed_thickness(), 1.5)


def test_combined_offsets_pial_ids(make_flat_pair):
    pair = make_flat_pair(1.0, nx=3, ny=3)
    verts, faces, owner = pair.combined()
    n = pair.n_vertices
    assert verts.shape == (2 * n, 3)
    assert faces.shape == (pair.white.n_faces + pair.pial.n_faces, 3)
    assert faces[owner == 1].min() >= n
    assert faces[owner == 0].max() < n
    assert pair.surface(WHITE) is pair.white
    assert pair.surface(PIAL) is pair.pial
    with pytest.raises(IndexError):
        pair.surface(2)
