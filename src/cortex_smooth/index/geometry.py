from __future__ import annotations

import numpy as np
from numba import njit


@njit(cache=True)
def closest_point_on_triangle(x, v0, v1, v2):
    # Closest point to x on triangle (v0,v1,v2)
    # (Christer Ericson, "Real-Time Collision Detection", robust form)
    ab = v1 - v0
    ac = v2 - v0
    ap = x - v0
    d1 = np.dot(ab, ap)
    d2 = np.dot(ac, ap)
    if d1 <= 0.0 and d2 <= 0.0:
        return v0.copy()

    bp = x - v1
    d3 = np.dot(ab, bp)
    d4 = np.dot(ac, bp)
    if d3 >= 0.0 and d4 <= d3:
        return v1.copy()

    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        v = d1 / (d1 - d3)
        return v0 + v * ab

    cp = x - v2
    d5 = np.dot(ab, cp)
    d6 = np.dot(ac, cp)
    if d6 >= 0.0 and d5 <= d6:
        return v2.copy()

    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        w = d2 / (d2 - d6)
        return v0 + w * ac

    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        w = (d4 - d3) / ((d4 - d3) + (d5 - d6))
        return v1 + w * (v2 - v1)

    # Inside face region
    denom = va + vb + vc
    if denom == 0.0:
        # zero-area triangle collapsed to a point
        return v0.copy()
    denom = 1.0 / denom
    v = vb * denom
    w = vc * denom
    u = 1.0 - v - w
    return u * v0 + v * v1 + w * v2


@njit(cache=True)
def point_box_distance_sq(x, lo, hi) -> float:
    acc = 0.0
    for k in range(3):
        if x[k] < lo[k]:
            d = lo[k] - x[k]
            acc += d * d
        elif x[k] > hi[k]:
            d = x[k] - hi[k]
            acc += d * d
    return acc


@njit(cache=True)
def point_triangle_distance(x, v0, v1, v2) -> float:
    c = closest_point_on_triangle(x, v0, v1, v2)
    return np.sqrt(np.sum((x - c) ** 2))
