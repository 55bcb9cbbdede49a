"""Two-pass (lambda / mu) umbrella smoothing displacement."""
from __future__ import annotations

import numpy as np

from ..mesh.preprocess import SurfaceMesh


def _apply_pass(mesh: SurfaceMesh, P: np.ndarray, scale: float, frozen: np.ndarray) -> np.ndarray:
    # reads P only; result goes to a fresh buffer
    step = scale * mesh.umbrella(P)
    step[frozen] = 0.0
    return P + step


def _frozen_mask(mesh: SurfaceMesh, pinned: np.ndarray | None) -> np.ndarray:
    frozen = mesh.degree == 0
    if pinned is not None:
        frozen = frozen | np.asarray(pinned, dtype=bool)
    return frozen


def taubin_displacement(
    mesh: SurfaceMesh,
    lam: float,
    mu: float,
    pinned: np.ndarray | None = None,
    positions: np.ndarray | None = None,
) -> np.ndarray:
    """
    Displacement of one Taubin step: ``P1 = P + lam*U(P)``, then
    ``P2 = P1 + mu*U(P1)``; returns ``P2 - P``.

    Each pass evaluates the umbrella operator on the positions at the start of
    that pass. Pinned and isolated vertices do not move.
    """
    P = mesh.vertices if positions is None else np.asarray(positions, dtype=np.float64)
    frozen = _frozen_mask(mesh, pinned)
    P1 = _apply_pass(mesh, P, lam, frozen)
    P2 = _apply_pass(mesh, P1, mu, frozen)
    return P2 - P


def laplacian_displacement(
    mesh: SurfaceMesh,
    lam: float,
    pinned: np.ndarray | None = None,
    positions: np.ndarray | None = None,
) -> np.ndarray:
    """Single shrinking pass ``lam*U(P)`` (plain Laplacian smoothing)."""
    P = mesh.vertices if positions is None else np.asarray(positions, dtype=np.float64)
    frozen = _frozen_mask(mesh, pinned)
    return _apply_pass(mesh, P, lam, frozen) - P
