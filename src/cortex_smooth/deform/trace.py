from __future__ import annotations

from pathlib import Path

import numpy as np

from .integrator import IterationInfo

TRACE_WIDTH = 9
TRACE_HEADER = "white_x white_y white_z pial_x pial_y pial_z iteration thickness residual"


class TrajectoryTracer:
    """
    Observer recording one vertex per outer iteration as 9 doubles:
    white xyz, pial xyz, iteration, thickness, residual.
    """

    def __init__(self, vertex: int):
        self.vertex = int(vertex)
        self._rows: list[np.ndarray] = []

    def __call__(self, info: IterationInfo) -> None:
        n = info.pair.n_vertices
        if not 0 <= self.vertex < n:
            raise IndexError(f"trace vertex {self.vertex} outside [0, {n})")
        w = info.pair.white.vertices[self.vertex]
        p = info.pair.pial.vertices[self.vertex]
        row = np.empty(TRACE_WIDTH, dtype=np.float64)
        row[0:3] = w
        row[3:6] = p
        row[6] = info.iteration
        row[7] = np.linalg.norm(p - w)
        row[8] = info.residual
        self._rows.append(row)

    def __len__(self) -> int:
        return len(self._rows)

    def as_array(self) -> np.ndarray:
        if not self._rows:
            return np.empty((0, TRACE_WIDTH), dtype=np.float64)
        return np.vstack(self._rows)

    def save(self, path) -> Path:
        path = Path(path)
        np.savetxt(path, self.as_array(), fmt="%.6f", header=TRACE_HEADER)
        return path

    def plot(self, path, background=None) -> Path:
        from ..viz.plotting import plot_trajectory

        return plot_trajectory(self.as_array(), path, background=background)
