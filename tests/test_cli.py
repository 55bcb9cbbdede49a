import numpy as np
import pytest

from cortex_smooth.deform.config import SurfaceSelection
from cortex_smooth.main.main import build_argparser, config_from_args, main, provenance_comment
from cortex_smooth.mesh.io import read_mesh, write_mesh
from cortex_smooth.mesh.preprocess import SurfaceMesh


@pytest.fixture
def inputs(tmp_path, make_grid):
    white = tmp_path / "white.vtk"
    pial = tmp_path / "pial.vtk"
    write_mesh(white, make_grid(6, 6, z=0.0))
    write_mesh(pial, make_grid(6, 6, z=0.3))
    return white, pial


def test_three_positionals_is_a_usage_error(tmp_path, inputs):
    white, pial = inputs
    out = tmp_path / "out_white.vtk"
    with pytest.raises(SystemExit) as exc:
        main([str(white), str(pial), str(out)])
    assert exc.value.code != 0
    assert not out.exists()


def test_expert_flags_need_expert(inputs, tmp_path, capsys):
    white, pial = inputs
    argv = [str(white), str(pial), str(tmp_path / "a.vtk"), str(tmp_path / "b.vtk"), "--refit"]
    with pytest.raises(SystemExit):
        main(argv)
    assert "--expert" in capsys.readouterr().out


def test_defaults_map_onto_config():
    args = build_argparser(expert=False).parse_args(["w", "p", "ow", "op"])
    cfg = config_from_args(args)
    assert cfg.lambdas == (0.33, 0.33)
    assert cfg.mus == (-0.34, -0.34)
    assert cfg.proximity_min_distance == 0.6
    assert cfg.selection is SurfaceSelection.BOTH
    assert cfg.index_depth == 7


def test_expert_options_map_onto_config():
    args = build_argparser(expert=True).parse_args(
        ["w", "p", "ow", "op", "--expert", "--pial-only", "--lambda", "0.4", "0.3",
         "--mju", "-0.5", "-0.35", "--no-thickness-max", "--leaf-size", "4", "--refit"]
    )
    cfg = config_from_args(args)
    assert cfg.selection is SurfaceSelection.PIAL
    assert cfg.lambdas == (0.4, 0.3)
    assert cfg.mus == (-0.5, -0.35)
    assert cfg.thickness_max is None
    assert cfg.index_leaf_size == 4
    assert cfg.index_refit


def test_provenance_comment_format():
    comment = provenance_comment(["a.vtk", "b.vtk"])
    stamp, cmd = comment.split(">>> ")
    assert cmd == "cortex_smooth a.vtk b.vtk"
    assert stamp


def test_full_run_writes_both_surfaces(inputs, tmp_path):
    white, pial = inputs
    out_w = tmp_path / "out" / "white.vtk"
    out_p = tmp_path / "out" / "pial.vtk"
    out_w.parent.mkdir()
    rc = main([str(white), str(pial), str(out_w), str(out_p), "--iter", "50"])
    assert rc == 0

    w = read_mesh(out_w)
    p = read_mesh(out_p)
    assert w.n_vertices == p.n_vertices == 36
    assert np.all(np.linalg.norm(p.vertices - w.vertices, axis=1) > 0.55)
    assert any(">>> cortex_smooth" in c for c in w.comments)


def test_vertex_count_mismatch_writes_nothing(tmp_path, make_grid):
    white = tmp_path / "white.vtk"
    pial = tmp_path / "pial.vtk"
    write_mesh(white, make_grid(10, 10))
    grid = make_grid(10, 10, z=2.0)
    write_mesh(pial, SurfaceMesh(np.vstack([grid.vertices, [[0.0, 0.0, 9.0]]]), grid.faces))

    out_w = tmp_path / "ow.vtk"
    out_p = tmp_path / "op.vtk"
    assert main([str(white), str(pial), str(out_w), str(out_p)]) == 1
    assert not out_w.exists()
    assert not out_p.exists()


def test_missing_input_fails(tmp_path, inputs):
    _white, pial = inputs
    out_w = tmp_path / "ow.vtk"
    rc = main([str(tmp_path / "nope.vtk"), str(pial), str(out_w), str(tmp_path / "op.vtk")])
    assert rc == 1
    assert not out_w.exists()


def test_invalid_parameters_fail(tmp_path, inputs):
    white, pial = inputs
    out_w = tmp_path / "a.vtk"
    rc = main([str(white), str(pial), str(out_w), str(tmp_path / "b.vtk"), "--delta", "-1"])
    assert rc == 1
    assert not out_w.exists()


def test_any_lambda_mju_pair_is_accepted(tmp_path, inputs):
    white, pial = inputs
    out_w = tmp_path / "a.vtk"
    with pytest.warns(RuntimeWarning, match="Taubin"):
        rc = main([str(white), str(pial), str(out_w), str(tmp_path / "b.vtk"),
                   "--lambda", "0.5", "0.5", "--iter", "2"])
    assert rc == 0
    assert out_w.exists()


def test_trace_vertex_writes_trace_files(inputs, tmp_path):
    white, pial = inputs
    trace_dir = tmp_path / "trace"
    rc = main([str(white), str(pial), str(tmp_path / "a.vtk"), str(tmp_path / "b.vtk"),
               "--iter", "3", "--trace-vertex", "14", "--trace-dir", str(trace_dir)])
    assert rc == 0
    data = np.loadtxt(trace_dir / "trace_v14.txt", ndmin=2)
    assert data.shape[1] == 9
    assert (trace_dir / "trace_v14.png").exists()


def test_trace_vertex_out_of_range(inputs, tmp_path):
    white, pial = inputs
    out_w = tmp_path / "a.vtk"
    rc = main([str(white), str(pial), str(out_w), str(tmp_path / "b.vtk"),
               "--trace-vertex", "99"])
    assert rc == 1
    assert not out_w.exists()
