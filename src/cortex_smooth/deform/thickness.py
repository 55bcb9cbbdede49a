from __future__ import annotations

import numpy as np

from ..mesh.pair import SurfacePair


def _shares(active: tuple[bool, bool]) -> tuple[float, float]:
    white_on, pial_on = bool(active[0]), bool(active[1])
    if white_on and pial_on:
        return 0.5, 0.5
    return float(white_on), float(pial_on)


def thickness_correction(
    pair: SurfacePair,
    t_min: float,
    t_max: float | None = None,
    active: tuple[bool, bool] = (True, True),
) -> tuple[np.ndarray, np.ndarray]:
    """
    Soft bounds on the white-to-pial separation of corresponding vertices.

    Thickness is measured along the white normal ``u`` (oriented towards the
    pial surface). Below ``t_min`` the pial vertex is pushed out and the white
    vertex in, above ``t_max`` the reverse; the correction is proportional to
    the violation and split between the surfaces that are allowed to move.
    Vertices without a usable direction get zero.

    Returns
    -------
    white_corr, pial_corr : (n, 3) float64
    """
    n = pair.n_vertices
    white_corr = np.zeros((n, 3), dtype=np.float64)
    pial_corr = np.zeros((n, 3), dtype=np.float64)
    s_white, s_pial = _shares(active)
    if n == 0 or (s_white == 0.0 and s_pial == 0.0):
        return white_corr, pial_corr

    gap = pair.pial.vertices - pair.white.vertices
    u = pair.white_normals()

    # fall back to the gap direction where the normal is degenerate
    bad = np.linalg.norm(u, axis=1) < 0.5
    if np.any(bad):
        g = np.linalg.norm(gap[bad], axis=1)
        fallback = np.zeros_like(gap[bad])
        ok = g > 1e-12
        fallback[ok] = gap[bad][ok] / g[ok, None]
        u[bad] = fallback

    t = np.einsum("ij,ij->i", gap, u)
    usable = np.isfinite(t) & (np.linalg.norm(u, axis=1) > 0.5)

    # positive = needs to grow, negative = needs to shrink
    violation = np.zeros(n, dtype=np.float64)
    low = usable & (t < t_min)
    violation[low] = t_min - t[low]
    if t_max is not None:
        high = usable & (t > t_max)
        violation[high] = -(t[high] - t_max)

    push = violation[:, None] * u
    white_corr -= s_white * push
    pial_corr += s_pial * push
    return white_corr, pial_corr
