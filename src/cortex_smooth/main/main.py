from __future__ import annotations

import argparse
import logging
import warnings
from datetime import datetime
from pathlib import Path
from typing import Sequence

import numpy as np

from cortex_smooth.deform.config import DeformConfig, SurfaceSelection
from cortex_smooth.deform.integrator import deform_surfaces
from cortex_smooth.deform.trace import TrajectoryTracer
from cortex_smooth.mesh.io import read_mesh, write_mesh
from cortex_smooth.mesh.pair import SurfacePair
from cortex_smooth.mesh.volume import nonctx_mask_from_volume, read_volume
from cortex_smooth.viz.plotting import PIAL_RGB, WHITE_RGB

LOG = logging.getLogger(__name__)
VERSION = "0.1.0"

_DEFAULTS = DeformConfig()

EXPERT_ONLY_TOKENS = {
    "--smooth-weight",
    "--proximity-weight",
    "--thickness-weight",
    "--thickness-min",
    "--thickness-max",
    "--no-thickness-max",
    "--leaf-size",
    "--refit",
    "--smooth-boundary",
}


def _has_expert_flag(argv: Sequence[str]) -> bool:
    return ("--expert" in argv)


def build_argparser(*, expert: bool) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cortex_smooth",
        description=(
            "Smooth a white/pial cortical surface pair under proximity and thickness\n"
            "constraints. Use --expert to reveal advanced tuning options."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    p.add_argument("white", type=Path, help="Input white surface (.vtk, .vtp, .ply, .off).")
    p.add_argument("pial", type=Path, help="Input pial surface, same vertex count as white.")
    p.add_argument("out_white", type=Path, help="Output white surface.")
    p.add_argument("out_pial", type=Path, help="Output pial surface.")

    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    p.add_argument(
        "--expert",
        action="store_true",
        help="Show/enable expert options in --help.",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    p.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of numba threads for the per-vertex kernels (default: all).",
    )

    g = p.add_argument_group("Processing options")
    sel = g.add_mutually_exclusive_group()
    sel.add_argument("--white-only", dest="selection", action="store_const",
                     const=SurfaceSelection.WHITE, help="Deform white surface only.")
    sel.add_argument("--pial-only", dest="selection", action="store_const",
                     const=SurfaceSelection.PIAL, help="Deform pial surface only.")
    sel.add_argument("--both", dest="selection", action="store_const",
                     const=SurfaceSelection.BOTH, help="Deform both surfaces (default).")
    p.set_defaults(selection=SurfaceSelection.BOTH)
    g.add_argument("--nonctx-mask", type=Path, default=None, help="Mask away non-cortex.")
    g.add_argument("--t1w", type=Path, default=None,
                   help="Image to use as a background for debug tracing.")

    g = p.add_argument_group("Update smoothing")
    g.add_argument("--lambda", dest="lambdas", type=float, nargs=2,
                   metavar=("WHITE", "PIAL"), default=list(_DEFAULTS.lambdas),
                   help="Taubin lambda per surface (default 0.33 0.33).")
    g.add_argument("--mju", dest="mus", type=float, nargs=2,
                   metavar=("WHITE", "PIAL"), default=list(_DEFAULTS.mus),
                   help="Taubin mu per surface (default -0.34 -0.34).")

    g = p.add_argument_group("Proximity distance constraints")
    g.add_argument("--pmin", type=float, default=_DEFAULTS.proximity_min_distance,
                   help="Minimum proximity distance (default 0.6).")

    g = p.add_argument_group("Additional optimizer parameters")
    g.add_argument("--depth", type=int, default=_DEFAULTS.index_depth,
                   help="Octree depth (default 7).")
    g.add_argument("--delta", type=float, default=_DEFAULTS.delta,
                   help="Time-step (default 0.5).")
    g.add_argument("--apply", dest="apply_step", type=float, default=_DEFAULTS.apply_step,
                   help="Apply-step (default 0.2).")
    g.add_argument("--iter", dest="max_iter", type=int, default=_DEFAULTS.max_iter,
                   help="Maximum number of iterations (default 100).")
    g.add_argument("--iter2", dest="max_iter2", type=int, default=_DEFAULTS.max_iter2,
                   help="Maximum number of sub-iterations (default 5).")
    g.add_argument("--tolerance", type=float, default=_DEFAULTS.tolerance,
                   help="Stop when the mean displacement of an iteration drops below this.")

    g = p.add_argument_group("Debug")
    g.add_argument("--trace-vertex", type=int, default=None,
                   help="Record the trajectory of this vertex id.")
    g.add_argument("--trace-dir", type=Path, default=None,
                   help="Where to write trace files (default: next to the white output).")
    g.add_argument(
        "--plot",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Show the final surfaces in a 3D window.",
    )

    if expert:
        g = p.add_argument_group("Expert options")
        g.add_argument("--smooth-weight", type=float, default=_DEFAULTS.smooth_weight)
        g.add_argument("--proximity-weight", type=float, default=_DEFAULTS.proximity_weight)
        g.add_argument("--thickness-weight", type=float, default=_DEFAULTS.thickness_weight)
        g.add_argument("--thickness-min", type=float, default=_DEFAULTS.thickness_min,
                       help="Soft lower bound on thickness (mm).")
        g.add_argument("--thickness-max", type=float, default=_DEFAULTS.thickness_max,
                       help="Soft upper bound on thickness (mm).")
        g.add_argument("--no-thickness-max", action="store_true",
                       help="Disable the upper thickness bound.")
        g.add_argument("--leaf-size", type=int, default=_DEFAULTS.index_leaf_size,
                       help="Faces per octree leaf before splitting.")
        g.add_argument("--refit", action="store_true",
                       help="Refit octree boxes between sub-iterations instead of rebuilding.")
        g.add_argument("--smooth-boundary", action="store_true",
                       help="Also smooth vertices on open mesh boundaries.")

    return p


def config_from_args(args: argparse.Namespace) -> DeformConfig:
    thickness_max = getattr(args, "thickness_max", _DEFAULTS.thickness_max)
    if getattr(args, "no_thickness_max", False):
        thickness_max = None
    return DeformConfig(
        lambdas=(float(args.lambdas[0]), float(args.lambdas[1])),
        mus=(float(args.mus[0]), float(args.mus[1])),
        delta=float(args.delta),
        apply_step=float(args.apply_step),
        proximity_min_distance=float(args.pmin),
        index_depth=int(args.depth),
        index_leaf_size=int(getattr(args, "leaf_size", _DEFAULTS.index_leaf_size)),
        index_refit=bool(getattr(args, "refit", False)),
        max_iter=int(args.max_iter),
        max_iter2=int(args.max_iter2),
        tolerance=float(args.tolerance),
        selection=SurfaceSelection.from_value(args.selection),
        smooth_weight=float(getattr(args, "smooth_weight", _DEFAULTS.smooth_weight)),
        proximity_weight=float(getattr(args, "proximity_weight", _DEFAULTS.proximity_weight)),
        thickness_weight=float(getattr(args, "thickness_weight", _DEFAULTS.thickness_weight)),
        thickness_min=float(getattr(args, "thickness_min", _DEFAULTS.thickness_min)),
        thickness_max=thickness_max,
        smooth_boundary=bool(getattr(args, "smooth_boundary", False)),
    ).checked()


def provenance_comment(argv: Sequence[str], prog: str = "cortex_smooth") -> str:
    stamp = datetime.now().strftime("%a %b %d %H:%M:%S %Y")
    return f"{stamp}>>> {' '.join([prog, *argv])}"


def _show_pair(pair: SurfacePair) -> None:
    import matplotlib.pyplot as plt
    from matplotlib.widgets import CheckButtons

    from cortex_smooth.viz.plotting import plot_pial, plot_white, set_axes_equal

    fig = plt.figure()
    ax = fig.add_subplot(111, projection="3d")
    ax.set_axis_off()
    poly_white = plot_white(ax, pair.white)
    poly_pial = plot_pial(ax, pair.pial)

    lo = np.minimum(pair.white.vertices.min(axis=0), pair.pial.vertices.min(axis=0))
    hi = np.maximum(pair.white.vertices.max(axis=0), pair.pial.vertices.max(axis=0))
    ax.set_xlim3d(lo[0], hi[0])
    ax.set_ylim3d(lo[1], hi[1])
    ax.set_zlim3d(lo[2], hi[2])

    # Checkbox controls
    rax = plt.axes([0.02, 0.4, 0.12, 0.12])
    labels = ["White surface", "Pial surface"]
    check = CheckButtons(rax, labels, [poly_white.get_visible(), poly_pial.get_visible()])

    def toggle_surfaces(label: str):
        if label.startswith("White"):
            poly_white.set_visible(not poly_white.get_visible())
        else:
            poly_pial.set_visible(not poly_pial.get_visible())
        plt.draw()

    check.on_clicked(toggle_surfaces)

    set_axes_equal(ax)
    plt.show()


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        import sys
        argv = sys.argv[1:]

    expert = _has_expert_flag(argv)
    parser = build_argparser(expert=expert)

    # If non-expert, fail gracefully when they try expert-only flags.
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        if not expert and any(tok in argv for tok in EXPERT_ONLY_TOKENS):
            print("\nNote: some advanced options are only available with --expert.")
        raise

    # Configure logging early so LOG.* messages are visible
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s: %(message)s",
    )

    if args.workers is not None:
        import numba

        workers = max(1, min(int(args.workers), numba.config.NUMBA_NUM_THREADS))
        numba.set_num_threads(workers)
        LOG.info("Using %d numba thread(s).", workers)

    try:
        cfg = config_from_args(args)
    except ValueError as exc:
        LOG.error("%s", exc)
        return 1

    try:
        LOG.info("Reading white surface %s", args.white)
        white = read_mesh(args.white)
        LOG.info("Reading pial surface  %s", args.pial)
        pial = read_mesh(args.pial)
        pair = SurfacePair(white, pial)

        if args.nonctx_mask is not None:
            mask_img = read_volume(args.nonctx_mask)
            pair = SurfacePair(white, pial, nonctx_mask_from_volume(mask_img, pair))

        background = read_volume(args.t1w) if args.t1w is not None else None
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        LOG.error("%s", exc)
        return 1

    tracer = None
    if args.trace_vertex is not None:
        if not 0 <= args.trace_vertex < pair.n_vertices:
            LOG.error("--trace-vertex %d outside [0, %d)", args.trace_vertex, pair.n_vertices)
            return 1
        tracer = TrajectoryTracer(args.trace_vertex)
    elif background is not None:
        warnings.warn(
            "--t1w only serves as a debug-trace background; it is ignored without --trace-vertex.",
            RuntimeWarning,
            stacklevel=2,
        )

    result = deform_surfaces(pair, cfg, observer=tracer)
    LOG.info("Finished: %s after %d iteration(s).", result.state.value, result.iterations)

    comment = provenance_comment(argv)
    try:
        LOG.info("Yellow color for white surface; writing %s", args.out_white)
        write_mesh(args.out_white, pair.white, comment=comment, color=WHITE_RGB)
        LOG.info("Red color for pial surface; writing %s", args.out_pial)
        write_mesh(args.out_pial, pair.pial, comment=comment, color=PIAL_RGB)
    except (ValueError, RuntimeError, OSError) as exc:
        LOG.error("%s", exc)
        return 1

    if tracer is not None:
        trace_dir = args.trace_dir if args.trace_dir is not None else Path(args.out_white).parent
        trace_dir.mkdir(parents=True, exist_ok=True)
        stem = f"trace_v{tracer.vertex}"
        txt = tracer.save(trace_dir / f"{stem}.txt")
        png = tracer.plot(trace_dir / f"{stem}.png", background=background)
        LOG.info("Trace written to %s and %s", txt, png)

    if bool(args.plot):
        _show_pair(pair)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
