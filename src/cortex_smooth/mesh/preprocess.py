from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix


@dataclass(slots=True, eq=False)
class SurfaceMesh:
    """
    Triangulated surface with a fixed face set and mutable vertex positions.

    Parameters
    ----------
    vertices : (n, 3) float64
        Vertex positions. Replaced wholesale by the deformation loop.
    faces    : (m, 3) int
        Vertex ids per triangle. Frozen (read-only) at construction.
    comments : list[str]
        Free-text provenance lines carried by the file format, if any.
    """

    vertices: np.ndarray
    faces: np.ndarray
    comments: list[str] = field(default_factory=list)
    _adjacency: csr_matrix | None = field(default=None, init=False, repr=False)
    _vertex_faces: csr_matrix | None = field(default=None, init=False, repr=False)
    _boundary: np.ndarray | None = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.vertices = np.ascontiguousarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.array(self.faces, dtype=np.int64, copy=True).reshape(-1, 3)
        if faces.size and (faces.min() < 0 or faces.max() >= len(self.vertices)):
            raise ValueError(
                f"faces reference vertex ids outside [0, {len(self.vertices)})"
            )
        faces.setflags(write=False)
        self.faces = faces

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    def copy(self) -> "SurfaceMesh":
        out = SurfaceMesh(self.vertices.copy(), self.faces, list(self.comments))
        out._adjacency = self._adjacency
        out._vertex_faces = self._vertex_faces
        out._boundary = self._boundary
        return out

    # ------------------------------------------------------------------
    # Topology (depends on faces only, cached)
    # ------------------------------------------------------------------
    @property
    def adjacency(self) -> csr_matrix:
        """Symmetric 0/1 vertex graph built from triangle edges."""
        if self._adjacency is None:
            F = self.faces
            nV = self.n_vertices
            i = F[:, [0, 1, 2]].ravel()
            j = F[:, [1, 2, 0]].ravel()
            w = np.ones(len(i), dtype=np.float64)
            A = coo_matrix((w, (i, j)), shape=(nV, nV)).tocsr()
            A = A.maximum(A.T).tocsr()
            A.data[:] = 1.0
            A.eliminate_zeros()
            self._adjacency = A
        return self._adjacency

    @property
    def degree(self) -> np.ndarray:
        return np.asarray(self.adjacency.sum(axis=1)).ravel()

    @property
    def vertex_faces(self) -> csr_matrix:
        """CSR map vertex -> incident face ids (row i lists faces touching i)."""
        if self._vertex_faces is None:
            F = self.faces
            rows = F.ravel()
            cols = np.repeat(np.arange(self.n_faces), 3)
            data = np.ones(len(rows), dtype=np.int8)
            self._vertex_faces = csr_matrix(
                (data, (rows, cols)), shape=(self.n_vertices, self.n_faces)
            )
        return self._vertex_faces

    @property
    def boundary_vertices(self) -> np.ndarray:
        """Bool mask of vertices lying on an edge used by exactly one face."""
        if self._boundary is None:
            mask = np.zeros(self.n_vertices, dtype=bool)
            if self.n_faces:
                F = self.faces
                edges = np.sort(
                    np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]]), axis=1
                )
                uniq, counts = np.unique(edges, axis=0, return_counts=True)
                mask[uniq[counts == 1].ravel()] = True
            self._boundary = mask
        return self._boundary

    # ------------------------------------------------------------------
    # Geometry (depends on current positions)
    # ------------------------------------------------------------------
    def _face_cross(self, positions: np.ndarray | None = None) -> np.ndarray:
        V = self.vertices if positions is None else positions
        v0 = V[self.faces[:, 0]]
        e1 = V[self.faces[:, 1]] - v0
        e2 = V[self.faces[:, 2]] - v0
        return np.cross(e1, e2)

    def face_areas(self) -> np.ndarray:
        return 0.5 * np.linalg.norm(self._face_cross(), axis=1)

    def face_normals(self) -> np.ndarray:
        cross = self._face_cross()
        length = np.linalg.norm(cross, axis=1)
        out = np.zeros_like(cross)
        ok = length > 1e-16
        out[ok] = cross[ok] / length[ok, None]
        return out

    def vertex_normals(self, positions: np.ndarray | None = None) -> np.ndarray:
        """
        Area-weighted pseudo-normal per vertex (sum of incident face cross
        products, normalised). Isolated or fully degenerate vertices get a
        zero vector.
        """
        V = self.vertices if positions is None else positions
        cross = self._face_cross(V)
        acc = np.zeros_like(V)
        for k in range(3):
            np.add.at(acc, self.faces[:, k], cross)
        length = np.linalg.norm(acc, axis=1)
        ok = length > 1e-16
        acc[ok] /= length[ok, None]
        acc[~ok] = 0.0
        return acc

    def edge_lengths(self) -> np.ndarray:
        A = self.adjacency.tocoo()
        upper = A.row < A.col
        return np.linalg.norm(
            self.vertices[A.row[upper]] - self.vertices[A.col[upper]], axis=1
        )

    def enclosed_volume(self, positions: np.ndarray | None = None) -> float:
        """Signed volume by the divergence theorem (closed surfaces only)."""
        V = self.vertices if positions is None else positions
        v0 = V[self.faces[:, 0]]
        v1 = V[self.faces[:, 1]]
        v2 = V[self.faces[:, 2]]
        return float(np.einsum("ij,ij->i", v0, np.cross(v1, v2)).sum() / 6.0)

    def umbrella(self, positions: np.ndarray | None = None) -> np.ndarray:
        """
        Uniform (umbrella) Laplacian: centroid of the 1-ring minus the vertex.
        Rows of isolated vertices are zero.
        """
        P = self.vertices if positions is None else positions
        deg = self.degree
        inv = np.zeros_like(deg)
        has = deg > 0
        inv[has] = 1.0 / deg[has]
        centroid = (self.adjacency @ P) * inv[:, None]
        out = centroid - P
        out[~has] = 0.0
        return out
