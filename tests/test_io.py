import nibabel as nib
import numpy as np
import pytest

from cortex_smooth.mesh.io import read_mesh, write_mesh
from cortex_smooth.mesh.pair import SurfacePair
from cortex_smooth.mesh.preprocess import SurfaceMesh
from cortex_smooth.mesh.volume import nonctx_mask_from_volume, read_volume, sample_volume


@pytest.fixture
def grid_mesh(make_grid):
    mesh = make_grid(5, 4, spacing=2.0, z=1.0)
    # scramble vertex order so a reader that reorders would be caught
    perm = np.random.default_rng(5).permutation(mesh.n_vertices)
    inv = np.argsort(perm)
    return SurfaceMesh(mesh.vertices[perm], inv[mesh.faces])


@pytest.mark.parametrize("suffix", [".vtk", ".vtp", ".ply", ".off"])
def test_round_trip_keeps_vertex_order(tmp_path, grid_mesh, suffix):
    path = tmp_path / f"surf{suffix}"
    write_mesh(path, grid_mesh)
    back = read_mesh(path)
    np.testing.assert_allclose(back.vertices, grid_mesh.vertices, atol=1e-5)
    np.testing.assert_array_equal(back.faces, grid_mesh.faces)


@pytest.mark.parametrize("suffix", [".vtk", ".vtp", ".ply"])
def test_colour_does_not_change_geometry(tmp_path, grid_mesh, suffix):
    path = tmp_path / f"surf{suffix}"
    write_mesh(path, grid_mesh, comment="made by a test", color=(0.8, 0.8, 0.0))
    back = read_mesh(path)
    assert back.n_vertices == grid_mesh.n_vertices
    np.testing.assert_array_equal(back.faces, grid_mesh.faces)


def test_legacy_comment_is_read_back(tmp_path, grid_mesh):
    path = tmp_path / "surf.vtk"
    write_mesh(path, grid_mesh, comment="Mon Jan 01 00:00:00 2024>>> cortex_smooth a b")
    back = read_mesh(path)
    assert any("cortex_smooth a b" in c for c in back.comments)


def test_xml_comment_lines_are_read_back(tmp_path, grid_mesh):
    path = tmp_path / "surf.vtp"
    write_mesh(path, grid_mesh, comment="first line\nsecond line")
    assert read_mesh(path).comments == ["first line", "second line"]


def test_ply_header_carries_comment_and_colour(tmp_path, grid_mesh):
    path = tmp_path / "surf.ply"
    write_mesh(path, grid_mesh, comment="provenance", color=(1.0, 0.2, 0.2))
    header = path.read_bytes().split(b"end_header")[0]
    assert b"comment provenance" in header
    assert b"red" in header


def test_off_accepts_colour(tmp_path, grid_mesh):
    path = tmp_path / "surf.off"
    write_mesh(path, grid_mesh, comment="dropped", color=(1.0, 0.2, 0.2))
    assert path.exists()


def test_unknown_suffix(tmp_path, grid_mesh):
    with pytest.raises(ValueError, match="Unsupported"):
        write_mesh(tmp_path / "surf.stl", grid_mesh)
    bogus = tmp_path / "surf.xyz"
    bogus.write_text("nothing")
    with pytest.raises(ValueError, match="Unsupported"):
        read_mesh(bogus)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_mesh(tmp_path / "absent.vtk")
    with pytest.raises(FileNotFoundError):
        read_volume(tmp_path / "absent.nii.gz")


# ============== Volumes ==============

@pytest.fixture
def mask_path(tmp_path):
    data = np.zeros((10, 10, 10), dtype=np.uint8)
    data[:, :, 0:2] = 1  # slab z in [0, 1]
    affine = np.eye(4)
    path = tmp_path / "mask.nii.gz"
    nib.save(nib.Nifti1Image(data, affine), str(path))
    return path


def test_sample_volume_nearest_voxel(mask_path):
    img = read_volume(mask_path)
    pts = np.array([[3.0, 3.0, 0.4], [3.0, 3.0, 1.2], [3.0, 3.0, 5.0], [-4.0, 3.0, 0.0]])
    np.testing.assert_array_equal(sample_volume(img, pts), [1.0, 1.0, 0.0, 0.0])


def test_nonctx_mask_uses_either_surface(mask_path, make_grid):
    img = read_volume(mask_path)
    white = make_grid(4, 4, z=0.0)
    pial = make_grid(4, 4, z=4.0)
    pial.vertices[0, 2] = 6.0
    white.vertices[0, 2] = 5.0
    pial.vertices[1, 2] = 1.0
    pair = SurfacePair(white, pial)

    mask = nonctx_mask_from_volume(img, pair)
    assert not mask[0]
    assert mask[1]
    assert mask[2:].all()


def test_unreadable_volume(tmp_path):
    path = tmp_path / "broken.nii.gz"
    path.write_bytes(b"not an image")
    with pytest.raises(RuntimeError):
        read_volume(path)


def test_negative_mask_labels_count_as_nonctx(tmp_path, make_grid):
    data = np.zeros((10, 10, 10), dtype=np.int16)
    data[:, :, 0] = -3
    path = tmp_path / "labels.nii.gz"
    nib.save(nib.Nifti1Image(data, np.eye(4)), str(path))

    pair = SurfacePair(make_grid(4, 4, z=0.0), make_grid(4, 4, z=4.0))
    assert nonctx_mask_from_volume(read_volume(path), pair).all()
