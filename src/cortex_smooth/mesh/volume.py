from __future__ import annotations

import logging
from pathlib import Path

import nibabel as nib
import numpy as np
from nibabel.affines import apply_affine

from .pair import SurfacePair

LOG = logging.getLogger(__name__)


def read_volume(path):
    """Load a volume image (NIfTI, MGH/MGZ, MINC, ...) with nibabel."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    try:
        img = nib.load(str(path))
    except Exception as exc:
        raise RuntimeError(f"could not read image {path}: {exc}") from exc
    LOG.info("Read image %s, shape=%s", path, tuple(img.shape))
    return img


def world_to_voxel(img, points: np.ndarray) -> np.ndarray:
    """Continuous voxel coordinates of world-space points."""
    inv = np.linalg.inv(img.affine)
    return apply_affine(inv, np.asarray(points, dtype=np.float64))


def sample_volume(img, points: np.ndarray) -> np.ndarray:
    """
    Nearest-voxel lookup of the first volume at world-space points.
    Points outside the grid read as 0.
    """
    data = np.asanyarray(img.dataobj)
    if data.ndim > 3:
        data = data.reshape(data.shape[:3] + (-1,))[..., 0]
    ijk = np.rint(world_to_voxel(img, points)).astype(np.int64)
    out = np.zeros(len(ijk), dtype=np.float64)
    inside = np.all((ijk >= 0) & (ijk < np.asarray(data.shape[:3])), axis=1)
    if np.any(inside):
        ii, jj, kk = ijk[inside].T
        out[inside] = data[ii, jj, kk]
    return out


def nonctx_mask_from_volume(img, pair: SurfacePair) -> np.ndarray:
    """
    Per-vertex non-cortex flag: True where the mask image is non-zero at the
    white or the pial position of the vertex.
    """
    at_white = sample_volume(img, pair.white.vertices) != 0
    at_pial = sample_volume(img, pair.pial.vertices) != 0
    mask = at_white | at_pial
    LOG.info("Non-cortex label: %d / %d vertices", int(mask.sum()), pair.n_vertices)
    return mask
