from __future__ import annotations
from pathlib import Path
from typing import List, Tuple
import numpy as np

import laspy  # type: ignore

from .extraction import extract_triangles
from .geometry import Surface
from .utils import get_logger

_log = get_logger()

try:
    import trimesh  # type: ignore
    _HAVE_TRIMESH = True
except Exception:
    trimesh = None  # type: ignore
    _HAVE_TRIMESH = False


def _read_ascii_ply(path: Path) -> Tuple[np.ndarray, np.ndarray]:
    with open(path, "r", encoding="utf-8") as f:
        header: list[str] = []
        while True:
            line = f.readline()
            if not line:
                raise RuntimeError("Unexpected EOF while reading PLY header.")
            line = line.strip()
            header.append(line)
            if line == "end_header":
                break

        if header[0] != "ply":
            raise RuntimeError("Not a PLY file.")
        if "format ascii" not in header[1]:
            raise RuntimeError("Only ASCII PLY format is supported.")

        n_vertices = 0
        n_faces = 0
        current_element = None
        for line in header[2:]:
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "element":
                current_element = parts[1]
                if current_element == "vertex":
                    n_vertices = int(parts[2])
                elif current_element == "face":
                    n_faces = int(parts[2])

        vertices = []
        for _ in range(n_vertices):
            parts = f.readline().strip().split()
            if len(parts) < 3:
                raise RuntimeError("Vertex line must contain at least xyz.")
            vertices.append(tuple(float(v) for v in parts[:3]))

        faces = []
        for _ in range(n_faces):
            parts = f.readline().strip().split()
            if not parts:
                continue
            count = int(parts[0])
            idx = [int(v) for v in parts[1:1 + count]]
            # fan-split polygons
            for k in range(1, count - 1):
                faces.append((idx[0], idx[k], idx[k + 1]))

    return np.asarray(vertices, dtype=np.float64).reshape(-1, 3), np.asarray(faces, dtype=np.int64).reshape(-1, 3)


def _read_obj(path: Path) -> Tuple[np.ndarray, np.ndarray]:
    vertices: List[Tuple[float, float, float]] = []
    faces: List[Tuple[int, int, int]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "v" and len(parts) >= 3:
                z = float(parts[3]) if len(parts) > 3 else 0.0
                vertices.append((float(parts[1]), float(parts[2]), z))
            elif parts[0] == "f":
                idx = []
                for token in parts[1:]:
                    i = int(token.split("/")[0])
                    idx.append(i - 1 if i > 0 else len(vertices) + i)
                for k in range(1, len(idx) - 1):
                    faces.append((idx[0], idx[k], idx[k + 1]))
    return np.asarray(vertices, dtype=np.float64).reshape(-1, 3), np.asarray(faces, dtype=np.int64).reshape(-1, 3)


def load_surface(path: str | Path, *, name: str | None = None) -> Surface:
    """Read a triangulated surface from PLY or OBJ (other formats need trimesh)."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".ply":
        try:
            vertices, faces = _read_ascii_ply(path)
        except (RuntimeError, UnicodeDecodeError):
            if not _HAVE_TRIMESH:
                raise
            vertices, faces = _read_with_trimesh(path)
    elif suffix == ".obj":
        vertices, faces = _read_obj(path)
    elif _HAVE_TRIMESH:
        vertices, faces = _read_with_trimesh(path)
    else:
        raise ValueError(f"Unsupported surface format '{suffix}' (install trimesh for more formats)")
    tris = extract_triangles((vertices, faces), z_up=False)
    _log.info("Loaded %s: %d vertices, %d triangles", path.name, len(vertices), len(tris))
    return Surface(tris, name=name or path.stem, metadata={"source": str(path)})


def _read_with_trimesh(path: Path) -> Tuple[np.ndarray, np.ndarray]:
    mesh = trimesh.load_mesh(str(path), process=False)
    return np.asarray(mesh.vertices, dtype=np.float64), np.asarray(mesh.faces, dtype=np.int64)


def load_points(path: str | Path) -> np.ndarray:
    """``(N, 3)`` points from LAS/LAZ, CSV/TXT/XYZ, NPZ (``xyz``) or PLY vertices."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in {".las", ".laz"}:
        with laspy.open(path) as reader:
            pts = reader.read()
        xyz = np.column_stack([np.asarray(pts.x), np.asarray(pts.y), np.asarray(pts.z)]).astype(np.float64)
    elif suffix == ".npz":
        with np.load(path) as data:
            xyz = np.asarray(data["xyz"], dtype=np.float64)
    elif suffix == ".ply":
        xyz, _ = _read_ascii_ply(path)
    elif suffix in {".csv", ".txt", ".xyz", ".pts"}:
        xyz = _read_delimited(path)
    else:
        raise ValueError(f"Unsupported point format '{suffix}'")
    if xyz.ndim != 2 or xyz.shape[1] < 2:
        raise ValueError(f"Point file {path.name} must have at least x and y columns")
    if xyz.shape[1] == 2:
        xyz = np.column_stack([xyz, np.zeros(len(xyz))])
    _log.info("Loaded %d points from %s", len(xyz), path.name)
    return xyz[:, :3]


def _read_delimited(path: Path) -> np.ndarray:
    with open(path, "r", encoding="utf-8") as f:
        sample = f.readline()
    delimiter = "," if "," in sample else None
    skip = 0
    try:
        [float(v) for v in (sample.split(delimiter) if delimiter else sample.split())]
    except ValueError:
        skip = 1
    data = np.loadtxt(path, delimiter=delimiter, skiprows=skip, ndmin=2, dtype=np.float64)
    return data


def load_sources(path: str | Path) -> list[dict]:
    """Ballistic source records from a CSV with a header row.

    Required columns: ``x``, ``y``, ``max_distance``, ``max_velocity``;
    ``z`` and ``id`` are optional.
    """
    path = Path(path)
    table = np.genfromtxt(path, delimiter=",", names=True, dtype=None, encoding="utf-8")
    table = np.atleast_1d(table)
    names = table.dtype.names or ()
    missing = {"x", "y", "max_distance", "max_velocity"} - set(names)
    if missing:
        raise ValueError(f"Source file {path.name} is missing columns: {sorted(missing)}")
    records = []
    for i, row in enumerate(table):
        records.append({
            "x": float(row["x"]),
            "y": float(row["y"]),
            "z": float(row["z"]) if "z" in names else 0.0,
            "max_distance": float(row["max_distance"]),
            "max_velocity": float(row["max_velocity"]),
            "id": str(row["id"]) if "id" in names else str(i + 1),
        })
    _log.info("Loaded %d sources from %s", len(records), path.name)
    return records
