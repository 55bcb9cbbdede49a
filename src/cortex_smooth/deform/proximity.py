from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

from ..index.geometry import closest_point_on_triangle, point_box_distance_sq
from ..index.octree import FaceOctree
from ..mesh.pair import SurfacePair

LOG = logging.getLogger(__name__)

# A face of the vertex's own surface only counts when the vertex sits on its
# normal side (a fold); in-sheet neighbours closer than min_dist are ignored.
SAME_SURFACE_MIN_COS = 0.5


def _query_mask(pair: SurfacePair, mask, active) -> np.ndarray:
    """(2n,) bool: vertices whose proximity term is evaluated."""
    n = pair.n_vertices
    if mask is None:
        mask = pair.nonctx
    cortex = np.ones(n, dtype=bool) if mask is None else ~np.asarray(mask, dtype=bool).ravel()
    if cortex.shape[0] != n:
        raise ValueError(f"mask has {cortex.shape[0]} entries, surfaces have {n} vertices")
    white_on, pial_on = active
    return np.concatenate([cortex & bool(white_on), cortex & bool(pial_on)])


def _scan(pair: SurfacePair, index: FaceOctree, min_dist: float, query: np.ndarray):
    n = pair.n_vertices
    V = index.vertices
    if V.shape[0] != 2 * n:
        raise ValueError(
            f"index was built over {V.shape[0]} vertices, expected {2 * n} (both surfaces)"
        )
    corr = np.zeros((2 * n, 3), dtype=np.float64)
    dmin = np.full(2 * n, np.inf, dtype=np.float64)
    if index.n_nodes == 0 or not np.any(query):
        return corr, dmin

    normals = np.vstack([pair.white.vertex_normals(), pair.pial.vertex_normals()])
    normals *= pair.orientation
    _proximity_kernel(
        V, index.faces, normals, query, float(min_dist), n, SAME_SURFACE_MIN_COS,
        index.lo, index.hi, index.first_child, index.n_child,
        index.leaf_start, index.leaf_count, index.face_order,
        index.stack_size, corr, dmin,
    )
    return corr, dmin


def proximity_correction(
    pair: SurfacePair,
    index: FaceOctree,
    min_dist: float,
    mask: np.ndarray | None = None,
    active: tuple[bool, bool] = (True, True),
) -> tuple[np.ndarray, np.ndarray]:
    """
    Repulsive correction keeping every cortex vertex at least ``min_dist`` away
    from any face of either surface (faces incident to the vertex excluded).

    For each violating face with closest point ``c`` at distance ``d`` the
    vertex is pushed along ``(v - c)/d`` by ``min_dist - d``; contributions
    are summed and the total is capped at the deepest single violation.
    Faces of the vertex's own surface count only when ``(v - c)`` lies within
    60 degrees of the vertex normal line, so in-sheet neighbours closer than
    ``min_dist`` on a finely sampled mesh are not contacts.
    Masked (non-cortex) vertices and inactive surfaces get exact zeros.

    ``mask`` defaults to ``pair.nonctx``.

    Returns
    -------
    white_corr, pial_corr : (n, 3) float64
    """
    n = pair.n_vertices
    query = _query_mask(pair, mask, active)
    corr, dmin = _scan(pair, index, min_dist, query)
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Proximity: %d / %d vertices closer than %.3f",
                  int(np.count_nonzero(dmin < min_dist)), int(query.sum()), min_dist)
    return corr[:n], corr[n:]


def min_separation(
    pair: SurfacePair,
    index: FaceOctree,
    radius: float,
    mask: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Distance from each cortex vertex to the nearest non-incident face, or
    ``inf`` when nothing lies within ``radius``.
    """
    n = pair.n_vertices
    query = _query_mask(pair, mask, (True, True))
    _corr, dmin = _scan(pair, index, radius, query)
    return dmin[:n], dmin[n:]


def count_violations(
    pair: SurfacePair,
    index: FaceOctree,
    min_dist: float,
    mask: np.ndarray | None = None,
) -> int:
    d_white, d_pial = min_separation(pair, index, min_dist, mask)
    return int(np.count_nonzero(d_white < min_dist) + np.count_nonzero(d_pial < min_dist))


# ----------------------------- Kernel ------------------------------------
@njit(cache=True, parallel=True)
def _proximity_kernel(V, F, normals, query, min_dist, n_white, min_cos, lo, hi, first_child,
                      n_child, leaf_start, leaf_count, face_order, stack_size,
                      corr, dmin):
    r2 = min_dist * min_dist
    for i in prange(V.shape[0]):
        if not query[i]:
            continue
        x = V[i]
        own_white = i < n_white
        stack = np.empty(stack_size, dtype=np.int64)
        acc = np.zeros(3, dtype=np.float64)
        deepest = 0.0
        nearest = np.inf

        top = 0
        stack[top] = 0
        top += 1
        while top > 0:
            top -= 1
            node = stack[top]
            if point_box_distance_sq(x, lo[node], hi[node]) > r2:
                continue
            if first_child[node] >= 0:
                for ch in range(first_child[node], first_child[node] + n_child[node]):
                    stack[top] = ch
                    top += 1
                continue

            s = leaf_start[node]
            for k in range(leaf_count[node]):
                f = face_order[s + k]
                if F[f, 0] == i or F[f, 1] == i or F[f, 2] == i:
                    continue
                c = closest_point_on_triangle(x, V[F[f, 0]], V[F[f, 1]], V[F[f, 2]])
                d = np.sqrt(np.sum((x - c) ** 2))
                if (F[f, 0] < n_white) == own_white:
                    # same surface: skip tangential contacts
                    if d <= 1e-12:
                        continue
                    cos = np.abs(np.dot(x - c, normals[i])) / d
                    if cos < min_cos:
                        continue
                if d < nearest:
                    nearest = d
                if d >= min_dist:
                    continue
                depth = min_dist - d
                if d > 1e-12:
                    u = (x - c) / d
                else:
                    # vertex lies on the face; no separating direction
                    u = normals[i].copy()
                acc += depth * u
                if depth > deepest:
                    deepest = depth

        mag = np.sqrt(np.sum(acc ** 2))
        if mag > deepest and mag > 0.0:
            acc *= deepest / mag
        for k in range(3):
            corr[i, k] = acc[k]
        dmin[i] = nearest if nearest < min_dist else np.inf
