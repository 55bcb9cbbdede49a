from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np
from numba import njit

from .geometry import closest_point_on_triangle, point_box_distance_sq

LOG = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 7
DEFAULT_LEAF_SIZE = 16
BRANCHING = 8


@dataclass(slots=True)
class FaceOctree:
    """
    Depth-bounded octree over triangle faces, flattened breadth-first.

    Every face sits in exactly one leaf (chosen by its centroid); each node's
    box is the union of the bounding boxes of the faces below it, so a face's
    geometry always intersects the box of its leaf. Children of a node are
    stored contiguously: ``first_child[i] .. first_child[i] + n_child[i] - 1``.
    Leaves have ``first_child == -1`` and own
    ``face_order[leaf_start[i] : leaf_start[i] + leaf_count[i]]``.
    """

    vertices: np.ndarray
    faces: np.ndarray
    lo: np.ndarray
    hi: np.ndarray
    first_child: np.ndarray
    n_child: np.ndarray
    leaf_start: np.ndarray
    leaf_count: np.ndarray
    face_order: np.ndarray
    max_depth: int
    depth: int

    @property
    def n_nodes(self) -> int:
        return int(self.lo.shape[0])

    @property
    def n_leaves(self) -> int:
        return int(np.count_nonzero(self.first_child < 0))

    @property
    def stack_size(self) -> int:
        return (BRANCHING - 1) * (self.depth + 1) + 2

    def query_nearby(self, point, radius: float) -> np.ndarray:
        """
        Candidate faces for a sphere query: every face held by a leaf whose
        box intersects the sphere. A superset of the faces within ``radius``.
        """
        if self.n_nodes == 0:
            return np.empty(0, dtype=np.int64)
        x = np.ascontiguousarray(point, dtype=np.float64).reshape(3)
        r2 = float(radius) ** 2
        stack = np.empty(self.stack_size, dtype=np.int64)
        n = _query_candidates(
            x, r2, self.lo, self.hi, self.first_child, self.n_child,
            self.leaf_start, self.leaf_count, self.face_order, stack,
            np.empty(0, dtype=np.int64),
        )
        out = np.empty(n, dtype=np.int64)
        _query_candidates(
            x, r2, self.lo, self.hi, self.first_child, self.n_child,
            self.leaf_start, self.leaf_count, self.face_order, stack, out,
        )
        return np.sort(out)

    def nearest(self, point) -> tuple[int, float]:
        """Closest face to ``point`` and its distance; ``(-1, inf)`` if empty."""
        if self.n_nodes == 0:
            return -1, float("inf")
        x = np.ascontiguousarray(point, dtype=np.float64).reshape(3)
        stack = np.empty(self.stack_size, dtype=np.int64)
        face, d = _nearest_face(
            x, self.vertices, self.faces, self.lo, self.hi, self.first_child,
            self.n_child, self.leaf_start, self.leaf_count, self.face_order, stack,
        )
        return int(face), float(d)

    def refit(self, vertices: np.ndarray) -> None:
        """Recompute node boxes for moved vertices; the partition is kept."""
        V = np.ascontiguousarray(vertices, dtype=np.float64)
        if V.shape != self.vertices.shape:
            raise ValueError(
                f"refit expects vertices of shape {self.vertices.shape}, got {V.shape}"
            )
        self.vertices = V
        if self.n_nodes:
            _refit_boxes(
                V, self.faces, self.lo, self.hi, self.first_child, self.n_child,
                self.leaf_start, self.leaf_count, self.face_order,
            )


def _face_boxes(V: np.ndarray, F: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    tri = V[F]  # (m, 3, 3)
    return tri.min(axis=1), tri.max(axis=1), tri.mean(axis=1)


def build_index(
    vertices: np.ndarray,
    faces: np.ndarray,
    max_depth: int = DEFAULT_MAX_DEPTH,
    leaf_size: int = DEFAULT_LEAF_SIZE,
) -> FaceOctree:
    """
    Build a face octree. Nodes split at the midpoint of their face centroids'
    bounding box until a node holds ``leaf_size`` faces or fewer, ``max_depth``
    is reached, or the centroids coincide. Oversized leaves are scanned
    linearly by the queries.
    """
    if max_depth < 0:
        raise ValueError(f"max_depth must be >= 0, got {max_depth}")
    if leaf_size < 1:
        raise ValueError(f"leaf_size must be >= 1, got {leaf_size}")

    V = np.ascontiguousarray(vertices, dtype=np.float64)
    F = np.ascontiguousarray(faces, dtype=np.int64).reshape(-1, 3)
    m = F.shape[0]

    if m == 0:
        empty3 = np.empty((0, 3), dtype=np.float64)
        empty = np.empty(0, dtype=np.int64)
        return FaceOctree(V, F, empty3, empty3.copy(), empty, empty.copy(),
                          empty.copy(), empty.copy(), empty.copy(), int(max_depth), 0)

    flo, fhi, cent = _face_boxes(V, F)

    lo: list[np.ndarray] = [None]  # type: ignore[list-item]
    hi: list[np.ndarray] = [None]  # type: ignore[list-item]
    first_child = [-1]
    n_child = [0]
    leaf_start = [0]
    leaf_count = [0]
    order: list[np.ndarray] = []
    n_ordered = 0
    deepest = 0

    queue = deque([(0, np.arange(m, dtype=np.int64), 0)])
    while queue:
        node, ids, depth = queue.popleft()
        deepest = max(deepest, depth)
        lo[node] = flo[ids].min(axis=0)
        hi[node] = fhi[ids].max(axis=0)

        c = cent[ids]
        c_lo = c.min(axis=0)
        c_hi = c.max(axis=0)
        separable = np.any(c_hi - c_lo > 0.0)

        if len(ids) <= leaf_size or depth >= max_depth or not separable:
            leaf_start[node] = n_ordered
            leaf_count[node] = len(ids)
            order.append(ids)
            n_ordered += len(ids)
            continue

        center = 0.5 * (c_lo + c_hi)
        code = ((c >= center) * np.array([1, 2, 4])).sum(axis=1)

        groups = [ids[code == k] for k in range(BRANCHING)]
        groups = [g for g in groups if len(g)]

        first_child[node] = len(lo)
        n_child[node] = len(groups)
        for g in groups:
            child = len(lo)
            lo.append(None)
            hi.append(None)
            first_child.append(-1)
            n_child.append(0)
            leaf_start.append(0)
            leaf_count.append(0)
            queue.append((child, g, depth + 1))

    tree = FaceOctree(
        vertices=V,
        faces=F,
        lo=np.ascontiguousarray(np.vstack(lo)),
        hi=np.ascontiguousarray(np.vstack(hi)),
        first_child=np.asarray(first_child, dtype=np.int64),
        n_child=np.asarray(n_child, dtype=np.int64),
        leaf_start=np.asarray(leaf_start, dtype=np.int64),
        leaf_count=np.asarray(leaf_count, dtype=np.int64),
        face_order=np.concatenate(order).astype(np.int64),
        max_depth=int(max_depth),
        depth=int(deepest),
    )
    if LOG.isEnabledFor(logging.DEBUG):
        big = int(tree.leaf_count.max())
        LOG.debug(
            "Octree: %d faces, %d nodes, %d leaves, depth %d, largest leaf %d",
            m, tree.n_nodes, tree.n_leaves, tree.depth, big,
        )
    return tree


def build_pair_index(pair, max_depth: int = DEFAULT_MAX_DEPTH,
                     leaf_size: int = DEFAULT_LEAF_SIZE) -> FaceOctree:
    """Index over the faces of both surfaces (pial vertex ids offset by n)."""
    verts, faces, _owner = pair.combined()
    return build_index(verts, faces, max_depth=max_depth, leaf_size=leaf_size)


# ----------------------------- Kernels -----------------------------------
@njit(cache=True)
def _query_candidates(x, r2, lo, hi, first_child, n_child, leaf_start,
                      leaf_count, face_order, stack, out):
    write = out.shape[0] > 0
    n = 0
    top = 0
    stack[top] = 0
    top += 1
    while top > 0:
        top -= 1
        node = stack[top]
        if point_box_distance_sq(x, lo[node], hi[node]) > r2:
            continue
        if first_child[node] < 0:
            s = leaf_start[node]
            for k in range(leaf_count[node]):
                if write:
                    out[n] = face_order[s + k]
                n += 1
        else:
            for c in range(first_child[node], first_child[node] + n_child[node]):
                stack[top] = c
                top += 1
    return n


@njit(cache=True)
def _nearest_face(x, V, F, lo, hi, first_child, n_child, leaf_start,
                  leaf_count, face_order, stack):
    best = -1
    best_d2 = np.inf
    top = 0
    stack[top] = 0
    top += 1
    while top > 0:
        top -= 1
        node = stack[top]
        if point_box_distance_sq(x, lo[node], hi[node]) >= best_d2:
            continue
        if first_child[node] < 0:
            s = leaf_start[node]
            for k in range(leaf_count[node]):
                f = face_order[s + k]
                c = closest_point_on_triangle(x, V[F[f, 0]], V[F[f, 1]], V[F[f, 2]])
                d2 = np.sum((x - c) ** 2)
                if d2 < best_d2:
                    best_d2 = d2
                    best = f
        else:
            for ch in range(first_child[node], first_child[node] + n_child[node]):
                stack[top] = ch
                top += 1
    return best, np.sqrt(best_d2)


@njit(cache=True)
def _refit_boxes(V, F, lo, hi, first_child, n_child, leaf_start, leaf_count, face_order):
    # children always have larger ids than their parent (breadth-first layout)
    for node in range(lo.shape[0] - 1, -1, -1):
        for k in range(3):
            lo[node, k] = np.inf
            hi[node, k] = -np.inf
        if first_child[node] < 0:
            s = leaf_start[node]
            for j in range(leaf_count[node]):
                f = face_order[s + j]
                for a in range(3):
                    p = V[F[f, a]]
                    for k in range(3):
                        if p[k] < lo[node, k]:
                            lo[node, k] = p[k]
                        if p[k] > hi[node, k]:
                            hi[node, k] = p[k]
        else:
            for c in range(first_child[node], first_child[node] + n_child[node]):
                for k in range(3):
                    if lo[c, k] < lo[node, k]:
                        lo[node, k] = lo[c, k]
                    if hi[c, k] > hi[node, k]:
                        hi[node, k] = hi[c, k]
