from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import numpy as np

from ..index.octree import FaceOctree, build_pair_index
from ..mesh.pair import PIAL, WHITE, PreconditionError, SurfacePair
from .config import DeformConfig
from .proximity import proximity_correction
from .smoothing import taubin_displacement
from .thickness import thickness_correction

LOG = logging.getLogger(__name__)


class DeformState(Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FINALIZING = "finalizing"


@dataclass(slots=True)
class IterationInfo:
    """Passed to the observer once per outer iteration."""

    iteration: int
    residual: float
    pair: SurfacePair


@dataclass(slots=True)
class DeformResult:
    state: DeformState
    iterations: int
    residuals: list[float] = field(default_factory=list)
    pair: SurfacePair | None = None

    @property
    def converged(self) -> bool:
        return self.state is DeformState.CONVERGED


def log_parameters(cfg: DeformConfig, pair: SurfacePair, logger: logging.Logger = LOG) -> None:
    lines = [
        "parameters",
        f"  surface vfe          {pair.n_vertices} {pair.pial.n_faces} {pair.pial.adjacency.nnz // 2}",
        f"  deform apply step    {cfg.apply_step:<7.4f}    for each deform-apply",
        f"  time step            {cfg.delta:<7.4f}",
        f"  lambda               {cfg.lambdas[0]:<7.4f} {cfg.lambdas[1]:<7.4f}",
        f"  mju                  {cfg.mus[0]:<7.4f} {cfg.mus[1]:<7.4f}",
        f"  weights s/p/t        {cfg.smooth_weight:.3f} {cfg.proximity_weight:.3f} "
        f"{cfg.thickness_weight:.3f}",
        f"  thickness bounds     {cfg.thickness_min:.3f} "
        + ("none" if cfg.thickness_max is None else f"{cfg.thickness_max:.3f}"),
        f"  max iter             {cfg.max_iter}",
        f"  max iter2            {cfg.max_iter2}",
        f"  proximity min dist   {cfg.proximity_min_distance:<7.2f}",
        f"  octree depth         {cfg.index_depth}"
        + (" (refit)" if cfg.index_refit else ""),
        f"  tolerance            {cfg.tolerance:<7.4f}",
    ]
    if pair.nonctx is not None:
        lines.append(f"  non-cortex label     {int(pair.nonctx.sum())} / {pair.n_vertices}")
    else:
        lines.append("  non-cortex label     not used")
    lines.append(f"  deform cortex        {cfg.selection.label}")
    logger.info("\n".join(lines))


class SurfaceDeformer:
    """
    Outer/inner iteration controller.

    Each sub-step rebuilds the face index from the current positions, asks the
    smoothing, proximity and thickness terms for a displacement, combines them
    with the configured weights and applies ``delta * apply_step`` of the sum
    to the selected surfaces. All terms read the positions from the start of
    the sub-step; new positions go to fresh buffers that replace the old ones
    only after every term has been evaluated.
    """

    def __init__(
        self,
        cfg: DeformConfig | None = None,
        observer: Callable[[IterationInfo], None] | None = None,
    ):
        self.cfg = (cfg or DeformConfig()).checked()
        self.observer = observer
        self.state = DeformState.INITIALIZING
        self._index: FaceOctree | None = None

    # ------------------------------------------------------------------
    def _index_for(self, pair: SurfacePair, fresh: bool) -> FaceOctree:
        cfg = self.cfg
        if cfg.index_refit and not fresh and self._index is not None:
            verts, _faces, _owner = pair.combined()
            self._index.refit(verts)
        else:
            self._index = build_pair_index(
                pair, max_depth=cfg.index_depth, leaf_size=cfg.index_leaf_size
            )
        return self._index

    def sub_step(self, pair: SurfacePair, *, fresh_index: bool = True) -> float:
        """One combined update; returns the mean displacement of moved vertices."""
        cfg = self.cfg
        active = cfg.selection.active
        index = self._index_for(pair, fresh_index)

        prox = proximity_correction(
            pair, index, cfg.proximity_min_distance, active=active
        )
        thick = thickness_correction(
            pair, cfg.thickness_min, cfg.thickness_max, active=active
        )

        new_positions: dict[int, np.ndarray] = {}
        moved = []
        for k in (WHITE, PIAL):
            if not active[k]:
                continue
            mesh = pair.surface(k)
            pinned = None if cfg.smooth_boundary else mesh.boundary_vertices
            smooth = taubin_displacement(mesh, cfg.lambdas[k], cfg.mus[k], pinned=pinned)

            combined = (
                cfg.smooth_weight * smooth
                + cfg.proximity_weight * prox[k]
                + cfg.thickness_weight * thick[k]
            )
            bad = ~np.all(np.isfinite(combined), axis=1)
            if np.any(bad):
                LOG.debug("Neutralised %d non-finite displacement(s) on surface %d",
                          int(bad.sum()), k)
                combined[bad] = 0.0

            step = cfg.step_size * combined
            new_positions[k] = mesh.vertices + step
            moved.append(np.linalg.norm(step, axis=1))

        # swap barrier
        for k, P in new_positions.items():
            pair.surface(k).vertices = P

        if not moved:
            return 0.0
        return float(np.concatenate(moved).mean())

    def step(self, pair: SurfacePair) -> float:
        """
        One outer iteration of up to ``max_iter2`` sub-steps. Returns the mean
        over moved vertices of their net displacement in this iteration.
        """
        cfg = self.cfg
        active = cfg.selection.active
        start = {k: pair.surface(k).vertices.copy() for k in (WHITE, PIAL) if active[k]}

        for j in range(cfg.max_iter2):
            sub = self.sub_step(pair, fresh_index=(j == 0))
            if sub < cfg.tolerance / cfg.max_iter2:
                break

        net = [
            np.linalg.norm(pair.surface(k).vertices - P0, axis=1) for k, P0 in start.items()
        ]
        return float(np.concatenate(net).mean()) if net else 0.0

    def run(self, pair: SurfacePair) -> DeformResult:
        cfg = self.cfg
        self.state = DeformState.INITIALIZING
        if pair.white.n_vertices != pair.pial.n_vertices:
            raise PreconditionError(
                f"#vert did not match: white={pair.white.n_vertices}, "
                f"pial={pair.pial.n_vertices}"
            )
        if cfg.apply_step >= 1.0:
            warnings.warn(
                f"apply_step={cfg.apply_step} >= 1 applies the full combined displacement "
                "per sub-step; expect overshoot.",
                RuntimeWarning,
                stacklevel=2,
            )
        log_parameters(cfg, pair)

        self.state = DeformState.ITERATING
        residuals: list[float] = []
        final = DeformState.MAX_ITERATIONS_REACHED
        for it in range(1, cfg.max_iter + 1):
            r = self.step(pair)
            residuals.append(r)
            LOG.info("[iter %3d] residual %.6f", it, r)
            if self.observer is not None:
                self.observer(IterationInfo(iteration=it, residual=r, pair=pair))
            if r < cfg.tolerance:
                final = DeformState.CONVERGED
                break

        self.state = final
        if final is DeformState.CONVERGED:
            LOG.info("Converged after %d iteration(s), residual %.6f",
                     len(residuals), residuals[-1])
        else:
            LOG.warning("Reached max iterations (%d) without convergence, residual %.6f",
                        cfg.max_iter, residuals[-1])

        self.state = DeformState.FINALIZING
        self._index = None
        return DeformResult(state=final, iterations=len(residuals),
                            residuals=residuals, pair=pair)


def deform_surfaces(
    pair: SurfacePair,
    cfg: DeformConfig | None = None,
    observer: Callable[[IterationInfo], None] | None = None,
) -> DeformResult:
    """Convenience wrapper: run a SurfaceDeformer on ``pair`` in place."""
    return SurfaceDeformer(cfg, observer=observer).run(pair)
