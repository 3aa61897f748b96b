from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import json
import pathlib
import numpy as np

import laspy  # type: ignore
from .entities import Entity, to_record
from .geometry import Polyline, Surface, compute_vertex_normals
from .utils import get_logger

_log = get_logger()


@dataclass
class LasWriter:
    """Writes surface vertices (or raw points) to LAS/LAZ using laspy (v2+)."""
    path: str
    point_format: int = 3
    compress: bool = False
    scale: tuple[float, float, float] = (1e-3, 1e-3, 1e-3)
    offset: Optional[tuple[float, float, float]] = None

    def write_points(self, xyz: np.ndarray) -> None:
        xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        hdr = laspy.LasHeader(point_format=self.point_format, version="1.4")
        hdr.scales = self.scale
        if self.offset is None:
            mn = np.min(xyz, axis=0) if len(xyz) else np.zeros(3)
            hdr.offsets = (float(mn[0]), float(mn[1]), float(mn[2]))
        else:
            hdr.offsets = self.offset
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pts = laspy.ScaleAwarePointRecord.zeros(len(xyz), header=hdr)
        pts.x = xyz[:, 0]
        pts.y = xyz[:, 1]
        pts.z = xyz[:, 2]
        with laspy.open(path, mode="w", header=hdr, do_compress=self.compress) as fh:
            fh.write_points(pts)
        _log.info("Wrote %d points to %s (compress=%s)", len(xyz), path.name, self.compress)

    def write_surface(self, surface: Surface) -> None:
        self.write_points(surface.points())


class PlyWriter:
    """ASCII PLY with per-vertex normals and triangle faces."""

    def __init__(self, path: str) -> None:
        self.path = path

    def write_surface(self, surface: Surface) -> None:
        vertices, faces = surface.indexed()
        normals = compute_vertex_normals(vertices, faces)
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("ply\n")
            f.write("format ascii 1.0\n")
            f.write(f"comment {surface.name}\n")
            f.write(f"element vertex {len(vertices)}\n")
            f.write("property double x\nproperty double y\nproperty double z\n")
            f.write("property float nx\nproperty float ny\nproperty float nz\n")
            f.write(f"element face {len(faces)}\n")
            f.write("property list uchar int vertex_indices\n")
            f.write("end_header\n")
            for (x, y, z), (nx, ny, nz) in zip(vertices, normals):
                f.write(f"{x:.9g} {y:.9g} {z:.9g} {nx:.6f} {ny:.6f} {nz:.6f}\n")
            for a, b, c in faces:
                f.write(f"3 {int(a)} {int(b)} {int(c)}\n")
        _log.info("Wrote %d triangles to %s", len(faces), path.name)


class NpzWriter:
    def __init__(self, path: str) -> None:
        self.path = path

    def _save(self, **arrays: np.ndarray) -> None:
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **arrays)

    def write_surface(self, surface: Surface) -> None:
        vertices, faces = surface.indexed()
        self._save(vertices=vertices, faces=faces, xyz=vertices)

    def write_polylines(self, polylines: Sequence[Polyline], elevations: Optional[Sequence[float]] = None) -> None:
        """Concatenated ``points`` with ``offsets`` marking where each polyline starts."""
        pts = [p.points for p in polylines]
        offsets = np.cumsum([0] + [len(p) for p in pts])[:-1]
        arrays: Dict[str, np.ndarray] = {
            "points": np.vstack(pts) if pts else np.zeros((0, 3)),
            "offsets": np.asarray(offsets, dtype=np.int64),
            "closed": np.asarray([p.closed for p in polylines], dtype=bool),
        }
        if elevations is not None:
            arrays["elevations"] = np.asarray(elevations, dtype=np.float64)
        self._save(**arrays)


class JsonWriter:
    def __init__(self, path: str) -> None:
        self.path = path

    def write(self, payload: Any) -> None:
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=1)

    def write_entities(self, entities: Sequence[Entity]) -> None:
        self.write({"entities": [to_record(e) for e in entities]})

    def write_polylines(self, polylines: Sequence[Polyline]) -> None:
        self.write({"polylines": [p.to_record() for p in polylines]})


def surface_writer(path: str | pathlib.Path, fmt: Optional[str] = None):
    path = pathlib.Path(path)
    fmt = (fmt or path.suffix.lstrip(".")).lower()
    if fmt in {"las", "laz"}:
        return LasWriter(str(path), compress=fmt == "laz")
    if fmt == "npz":
        return NpzWriter(str(path))
    if fmt == "ply":
        return PlyWriter(str(path))
    raise ValueError(f"Unsupported surface output format '{fmt}'")


def write_surface(surface: Surface, path: str | pathlib.Path, fmt: Optional[str] = None) -> pathlib.Path:
    surface_writer(path, fmt).write_surface(surface)
    return pathlib.Path(path)


def write_polylines(polylines: List[Polyline], path: str | pathlib.Path, fmt: Optional[str] = None) -> pathlib.Path:
    path = pathlib.Path(path)
    fmt = (fmt or path.suffix.lstrip(".")).lower()
    if fmt == "json":
        JsonWriter(str(path)).write_polylines(polylines)
    elif fmt == "npz":
        NpzWriter(str(path)).write_polylines(polylines)
    else:
        raise ValueError(f"Unsupported polyline output format '{fmt}'")
    return path
