from __future__ import annotations

import logging

import numpy as np

from .preprocess import SurfaceMesh

LOG = logging.getLogger(__name__)

WHITE = 0
PIAL = 1


class PreconditionError(ValueError):
    """Input that must be rejected before any deformation step runs."""


class SurfacePair:
    """
    White (inner) and pial (outer) surfaces with 1:1 vertex correspondence.

    Vertex i on the white surface and vertex i on the pial surface describe the
    same cortical column. Only vertex positions change during a run; the face
    sets and the correspondence are fixed.
    """

    __slots__ = ("white", "pial", "nonctx", "orientation")

    def __init__(
        self,
        white: SurfaceMesh,
        pial: SurfaceMesh,
        nonctx: np.ndarray | None = None,
        *,
        orientation: int | None = None,
    ):
        if white.n_vertices != pial.n_vertices:
            raise PreconditionError(
                f"#vert did not match: white={white.n_vertices}, pial={pial.n_vertices}"
            )
        self.white = white
        self.pial = pial
        self.nonctx = None
        if nonctx is not None:
            mask = np.asarray(nonctx, dtype=bool).ravel()
            if mask.shape[0] != white.n_vertices:
                raise PreconditionError(
                    f"non-cortex mask has {mask.shape[0]} entries, surfaces have "
                    f"{white.n_vertices} vertices"
                )
            self.nonctx = mask

        if orientation is None:
            orientation = self._detect_orientation()
        self.orientation = int(orientation)

    def _detect_orientation(self) -> int:
        # Normals of an inward-wound white surface point away from the pial.
        if self.white.n_vertices == 0:
            return 1
        raw = np.einsum(
            "ij,ij->i", self.pial.vertices - self.white.vertices, self.white.vertex_normals()
        )
        raw = raw[np.isfinite(raw) & (raw != 0.0)]
        if raw.size and float(np.median(raw)) < 0.0:
            LOG.info("White surface normals point inward; flipping thickness orientation.")
            return -1
        return 1

    @property
    def n_vertices(self) -> int:
        return self.white.n_vertices

    def surface(self, k: int) -> SurfaceMesh:
        if k == WHITE:
            return self.white
        if k == PIAL:
            return self.pial
        raise IndexError(f"surface index must be 0 (white) or 1 (pial), got {k}")

    def copy(self) -> "SurfacePair":
        return SurfacePair(
            self.white.copy(),
            self.pial.copy(),
            None if self.nonctx is None else self.nonctx.copy(),
            orientation=self.orientation,
        )

    def white_normals(self) -> np.ndarray:
        """White vertex normals oriented towards the pial surface."""
        return self.orientation * self.white.vertex_normals()

    def thickness(self) -> np.ndarray:
        return np.linalg.norm(self.pial.vertices - self.white.vertices, axis=1)

    def signed_thickness(self) -> np.ndarray:
        return np.einsum("ij,ij->i", self.pial.vertices - self.white.vertices, self.white_normals())

    def combined(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Stack both surfaces into one vertex/face set.

        Returns
        -------
        verts : (2n, 3) float64 – white vertices then pial vertices
        faces : (mw+mp, 3) int64 – pial ids offset by n
        owner : (mw+mp,) int8    – 0 for white faces, 1 for pial faces
        """
        n = self.n_vertices
        verts = np.vstack([self.white.vertices, self.pial.vertices])
        faces = np.vstack([self.white.faces, self.pial.faces + n]).astype(np.int64)
        owner = np.concatenate(
            [
                np.zeros(self.white.n_faces, dtype=np.int8),
                np.ones(self.pial.n_faces, dtype=np.int8),
            ]
        )
        return np.ascontiguousarray(verts), np.ascontiguousarray(faces), owner
