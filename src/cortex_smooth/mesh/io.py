from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from .preprocess import SurfaceMesh

LOG = logging.getLogger(__name__)

VTK_SUFFIXES = (".vtk", ".vtp", ".ply")
TRIMESH_SUFFIXES = (".off",)


def _polydata_to_mesh(poly, source) -> SurfaceMesh:
    from vtkmodules.util.numpy_support import vtk_to_numpy
    from vtkmodules.vtkFiltersCore import vtkTriangleFilter

    tri_f = vtkTriangleFilter()
    tri_f.SetInputData(poly)
    tri_f.PassVertsOff()
    tri_f.PassLinesOff()
    tri_f.Update()
    tri_poly = tri_f.GetOutput()

    points = tri_poly.GetPoints()
    if points is None or tri_poly.GetNumberOfPoints() == 0:
        raise RuntimeError(f"Mesh has no points: {source}")

    polys = tri_poly.GetPolys()
    offsets = vtk_to_numpy(polys.GetOffsetsArray())
    conn = vtk_to_numpy(polys.GetConnectivityArray())
    if len(offsets) < 2:
        raise RuntimeError(f"No triangles extracted from mesh: {source}")
    if np.any(np.diff(offsets) != 3):
        raise RuntimeError(f"Non-triangular cells survived triangulation: {source}")

    verts = vtk_to_numpy(points.GetData()).astype(np.float64)
    faces = conn.reshape(-1, 3).astype(np.int64)
    return SurfaceMesh(verts, faces)


def _read_vtk(mesh_path: Path) -> SurfaceMesh:
    from vtkmodules.vtkIOLegacy import vtkPolyDataReader
    from vtkmodules.vtkIOPLY import vtkPLYReader
    from vtkmodules.vtkIOXML import vtkXMLPolyDataReader

    suffix = mesh_path.suffix.lower()
    if suffix == ".vtp":
        reader = vtkXMLPolyDataReader()
    elif suffix == ".vtk":
        reader = vtkPolyDataReader()
    else:
        reader = vtkPLYReader()

    reader.SetFileName(str(mesh_path))
    reader.Update()
    poly = reader.GetOutput()
    if poly is None:
        raise RuntimeError(f"VTK reader produced no output for {mesh_path}")

    mesh = _polydata_to_mesh(poly, mesh_path)

    comments: list[str] = []
    if suffix == ".vtk":
        header = reader.GetHeader()
        if header:
            comments.append(str(header))
    elif suffix == ".vtp":
        arr = poly.GetFieldData().GetAbstractArray("comment")
        if arr is not None:
            comments.extend(str(arr.GetValue(i)) for i in range(arr.GetNumberOfValues()))
    mesh.comments = comments
    return mesh


def _read_trimesh(mesh_path: Path) -> SurfaceMesh:
    import trimesh

    tm = trimesh.load(str(mesh_path), process=False, force="mesh")
    if len(tm.vertices) == 0 or len(tm.faces) == 0:
        raise RuntimeError(f"No triangles extracted from mesh: {mesh_path}")
    return SurfaceMesh(np.asarray(tm.vertices, dtype=np.float64), np.asarray(tm.faces))


def read_mesh(path) -> SurfaceMesh:
    """
    Read a triangular surface. Vertex order is preserved exactly as stored.

    Supported: .vtk (legacy PolyData), .vtp (XML PolyData), .ply and .off.
    """
    mesh_path = Path(path)
    if not mesh_path.exists():
        raise FileNotFoundError(mesh_path)

    suffix = mesh_path.suffix.lower()
    if suffix in VTK_SUFFIXES:
        mesh = _read_vtk(mesh_path)
    elif suffix in TRIMESH_SUFFIXES:
        mesh = _read_trimesh(mesh_path)
    else:
        raise ValueError(
            f"Unsupported mesh extension '{suffix}'. Use .vtk, .vtp, .ply or .off."
        )
    LOG.debug("Read %s: %d vertices, %d faces", mesh_path, mesh.n_vertices, mesh.n_faces)
    return mesh


def _color_bytes(color: Sequence[float]) -> np.ndarray:
    rgb = np.asarray(color, dtype=np.float64).ravel()
    if rgb.shape != (3,) or not np.all(np.isfinite(rgb)):
        raise ValueError(f"color must be an RGB triple, got {color!r}")
    return np.rint(np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)


def _mesh_to_polydata(mesh: SurfaceMesh):
    from vtkmodules.util.numpy_support import numpy_to_vtk
    from vtkmodules.vtkCommonCore import VTK_ID_TYPE, vtkPoints
    from vtkmodules.vtkCommonDataModel import vtkCellArray, vtkPolyData

    pts = vtkPoints()
    pts.SetData(numpy_to_vtk(np.ascontiguousarray(mesh.vertices), deep=True))

    offsets = np.arange(0, 3 * mesh.n_faces + 1, 3, dtype=np.int64)
    conn = np.ascontiguousarray(mesh.faces.ravel(), dtype=np.int64)
    cells = vtkCellArray()
    cells.SetData(
        numpy_to_vtk(offsets, deep=True, array_type=VTK_ID_TYPE),
        numpy_to_vtk(conn, deep=True, array_type=VTK_ID_TYPE),
    )

    poly = vtkPolyData()
    poly.SetPoints(pts)
    poly.SetPolys(cells)
    return poly


def _write_vtk(mesh_path: Path, mesh: SurfaceMesh, comment: str | None, color) -> None:
    from vtkmodules.util.numpy_support import numpy_to_vtk
    from vtkmodules.vtkCommonCore import vtkStringArray
    from vtkmodules.vtkIOLegacy import vtkPolyDataWriter
    from vtkmodules.vtkIOPLY import vtkPLYWriter
    from vtkmodules.vtkIOXML import vtkXMLPolyDataWriter

    poly = _mesh_to_polydata(mesh)
    suffix = mesh_path.suffix.lower()

    rgb = None if color is None else _color_bytes(color)
    if rgb is not None and suffix != ".ply":
        colors = numpy_to_vtk(np.tile(rgb, (mesh.n_vertices, 1)), deep=True)
        colors.SetName("Colors")
        poly.GetPointData().SetScalars(colors)

    if suffix == ".vtk":
        writer = vtkPolyDataWriter()
        writer.SetFileTypeToBinary()
        if comment:
            # legacy header is a single line
            writer.SetHeader(" ".join(comment.splitlines())[:255])
    elif suffix == ".vtp":
        writer = vtkXMLPolyDataWriter()
        if comment:
            arr = vtkStringArray()
            arr.SetName("comment")
            for line in comment.splitlines():
                arr.InsertNextValue(line)
            poly.GetFieldData().AddArray(arr)
    else:
        writer = vtkPLYWriter()
        if comment:
            for line in comment.splitlines():
                writer.AddComment(line)
        if rgb is not None:
            writer.SetColorModeToUniformPointColor()
            writer.SetColor(int(rgb[0]), int(rgb[1]), int(rgb[2]))

    writer.SetFileName(str(mesh_path))
    writer.SetInputData(poly)
    if not writer.Write():
        raise RuntimeError(f"VTK writer failed for {mesh_path}")


def _write_trimesh(mesh_path: Path, mesh: SurfaceMesh, comment: str | None, color) -> None:
    import trimesh

    kwargs = {}
    if color is not None:
        rgb = _color_bytes(color)
        kwargs["vertex_colors"] = np.tile(np.append(rgb, 255), (mesh.n_vertices, 1))
    tm = trimesh.Trimesh(mesh.vertices, mesh.faces, process=False, **kwargs)
    if comment:
        LOG.debug("OFF output carries no comments; dropping provenance for %s", mesh_path)
    tm.export(str(mesh_path))


def write_mesh(
    path,
    mesh: SurfaceMesh,
    comment: str | None = None,
    color: Sequence[float] | None = None,
) -> None:
    """
    Write a triangular surface with an optional provenance comment and a
    uniform RGB colour (floats in [0, 1]).
    """
    mesh_path = Path(path)
    suffix = mesh_path.suffix.lower()
    if suffix in VTK_SUFFIXES:
        _write_vtk(mesh_path, mesh, comment, color)
    elif suffix in TRIMESH_SUFFIXES:
        _write_trimesh(mesh_path, mesh, comment, color)
    else:
        raise ValueError(
            f"Unsupported mesh extension '{suffix}'. Use .vtk, .vtp, .ply or .off."
        )
    LOG.debug("Wrote %s: %d vertices, %d faces", mesh_path, mesh.n_vertices, mesh.n_faces)
