from __future__ import annotations

import dataclasses
import math
import warnings
from dataclasses import dataclass
from enum import IntEnum

from ..mesh.pair import PreconditionError

# Taubin, "A signal processing approach to fair surface design" (1995)
TAUBIN_LAMBDA = 0.33
TAUBIN_MU = -0.34


class SurfaceSelection(IntEnum):
    WHITE = 1
    PIAL = 2
    BOTH = 3

    @classmethod
    def from_value(cls, value) -> "SurfaceSelection":
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise PreconditionError(f"unknown cortex_id, {value!r}") from None

    @property
    def active(self) -> tuple[bool, bool]:
        """(white moves, pial moves)"""
        return bool(self & SurfaceSelection.WHITE), bool(self & SurfaceSelection.PIAL)

    @property
    def label(self) -> str:
        return {
            SurfaceSelection.WHITE: "white surface",
            SurfaceSelection.PIAL: "pial surface",
            SurfaceSelection.BOTH: "white and pial surfaces",
        }[self]


# ----------------------------- Configuration -----------------------------
@dataclass(slots=True, frozen=True)
class DeformConfig:
    lambdas: tuple[float, float] = (TAUBIN_LAMBDA, TAUBIN_LAMBDA)
    mus: tuple[float, float] = (TAUBIN_MU, TAUBIN_MU)
    delta: float = 0.5
    apply_step: float = 0.2
    proximity_min_distance: float = 0.6
    index_depth: int = 7
    index_leaf_size: int = 16
    index_refit: bool = False
    max_iter: int = 100
    max_iter2: int = 5
    tolerance: float = 1e-3
    selection: SurfaceSelection = SurfaceSelection.BOTH
    smooth_weight: float = 1.0
    proximity_weight: float = 1.0
    thickness_weight: float = 1.0
    thickness_min: float = 0.1
    thickness_max: float | None = 6.0
    smooth_boundary: bool = False

    @property
    def step_size(self) -> float:
        """Scale applied to the combined displacement of one sub-step."""
        return self.delta * self.apply_step

    def with_overrides(self, **kwargs) -> "DeformConfig":
        return dataclasses.replace(self, **kwargs)

    def checked(self) -> "DeformConfig":
        ok, issues = validate_config(self)
        if not ok:
            raise ValueError("Invalid deformation configuration:\n" + "\n".join(issues))
        for msg in taubin_warnings(self):
            warnings.warn(msg, RuntimeWarning, stacklevel=2)
        return self


def _finite(x) -> bool:
    try:
        return math.isfinite(float(x))
    except (TypeError, ValueError):
        return False


def taubin_warnings(cfg: DeformConfig) -> list[str]:
    """Weights outside 0 < lambda < -mu are allowed but shrink or blow up."""
    out = []
    if len(cfg.lambdas) != 2 or len(cfg.mus) != 2:
        return out
    for k, surf in enumerate(("white", "pial")):
        lam, mu = cfg.lambdas[k], cfg.mus[k]
        if _finite(lam) and _finite(mu) and not (lam > 0.0 and mu < -lam):
            out.append(
                f"[{surf}] Taubin weights outside 0 < lambda < -mu (lambda={lam}, mu={mu}); "
                "the surface will shrink or oscillate"
            )
    return out


def validate_config(cfg: DeformConfig) -> tuple[bool, list[str]]:
    issues = []

    for name in ("lambdas", "mus"):
        pair = getattr(cfg, name)
        if len(pair) != 2 or not all(_finite(v) for v in pair):
            issues.append(f"{name} must be two finite numbers (white, pial), got {pair!r}")

    for name in ("delta", "apply_step", "proximity_min_distance", "tolerance"):
        v = getattr(cfg, name)
        if not _finite(v) or float(v) <= 0.0:
            issues.append(f"{name} must be a finite positive number, got {v!r}")

    for name in ("smooth_weight", "proximity_weight", "thickness_weight"):
        v = getattr(cfg, name)
        if not _finite(v) or float(v) < 0.0:
            issues.append(f"{name} must be a finite non-negative number, got {v!r}")

    if not isinstance(cfg.index_depth, int) or cfg.index_depth < 0:
        issues.append(f"index_depth must be an integer >= 0, got {cfg.index_depth!r}")
    if not isinstance(cfg.index_leaf_size, int) or cfg.index_leaf_size < 1:
        issues.append(f"index_leaf_size must be an integer >= 1, got {cfg.index_leaf_size!r}")
    if not isinstance(cfg.max_iter, int) or cfg.max_iter < 1:
        issues.append(f"max_iter must be an integer >= 1, got {cfg.max_iter!r}")
    if not isinstance(cfg.max_iter2, int) or cfg.max_iter2 < 1:
        issues.append(f"max_iter2 must be an integer >= 1, got {cfg.max_iter2!r}")

    if not isinstance(cfg.selection, SurfaceSelection):
        issues.append(f"selection must be a SurfaceSelection, got {cfg.selection!r}")

    if not _finite(cfg.thickness_min) or cfg.thickness_min < 0.0:
        issues.append(f"thickness_min must be finite and >= 0, got {cfg.thickness_min!r}")
    if cfg.thickness_max is not None:
        if not _finite(cfg.thickness_max):
            issues.append(f"thickness_max must be finite or None, got {cfg.thickness_max!r}")
        elif _finite(cfg.thickness_min) and cfg.thickness_max <= cfg.thickness_min:
            issues.append(
                f"thickness_max ({cfg.thickness_max}) must exceed thickness_min ({cfg.thickness_min})"
            )

    ok = (len(issues) == 0)
    return ok, issues
