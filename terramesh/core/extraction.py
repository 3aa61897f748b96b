from __future__ import annotations
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple
import numpy as np

from .geometry import Surface, as_triangle_array, face_normals, flip_winding, non_degenerate_mask
from .tolerance import DEGENERATE_AREA
from .utils import get_logger

_log = get_logger()

_NAN_TRI = np.full((3, 3), np.nan)


def _coerce_point(value: Any) -> Optional[Tuple[float, float, float]]:
    """Point from a mapping ``{x, y, z}`` or a 2/3-sequence; missing or null Z becomes 0."""
    try:
        if isinstance(value, Mapping):
            x, y = value["x"], value["y"]
            z = value.get("z")
        else:
            seq = list(value)
            if len(seq) < 2:
                return None
            x, y = seq[0], seq[1]
            z = seq[2] if len(seq) > 2 else None
        return float(x), float(y), float(z) if z is not None else 0.0
    except (KeyError, TypeError, ValueError):
        return None


def _coerce_triangle(value: Any) -> np.ndarray:
    if isinstance(value, Mapping):
        if "vertices" in value:
            verts = value["vertices"]
        elif all(k in value for k in ("v0", "v1", "v2")):
            verts = [value["v0"], value["v1"], value["v2"]]
        else:
            return _NAN_TRI
    else:
        verts = value
    try:
        verts = list(verts)
    except TypeError:
        return _NAN_TRI
    if len(verts) != 3:
        return _NAN_TRI
    pts = [_coerce_point(v) for v in verts]
    if any(p is None for p in pts):
        return _NAN_TRI
    return np.asarray(pts, dtype=np.float64)


def _pad_xyz(points: np.ndarray) -> np.ndarray:
    if points.ndim != 2 or points.shape[1] not in (2, 3):
        raise ValueError(f"Unsupported point array shape {points.shape}")
    if points.shape[1] == 2:
        points = np.column_stack([points, np.zeros(len(points))])
    if np.isnan(points[:, 2]).any():
        points = points.copy()
        points[np.isnan(points[:, 2]), 2] = 0.0
    return points


def _from_indexed(points: Any, faces: Any) -> np.ndarray:
    pts_list = [_coerce_point(p) for p in points]
    pts = np.asarray([p if p is not None else (np.nan, np.nan, np.nan) for p in pts_list], dtype=np.float64)
    out: List[np.ndarray] = []
    for face in faces:
        if isinstance(face, Mapping):
            face = face.get("indices", face.get("vertices"))
        try:
            idx = [int(i) for i in face]
        except (TypeError, ValueError):
            continue
        if len(idx) != 3 or min(idx) < 0 or max(idx) >= len(pts):
            continue
        out.append(pts[idx])
    return as_triangle_array(out)


def _from_flat_buffer(positions: Any, indices: Any = None) -> np.ndarray:
    buf = np.asarray(positions, dtype=np.float64).ravel()
    verts = buf[: len(buf) - len(buf) % 3].reshape(-1, 3)
    if indices is not None:
        idx = np.asarray(indices, dtype=np.int64).ravel()
        idx = idx[: len(idx) - len(idx) % 3].reshape(-1, 3)
        idx = idx[((idx >= 0) & (idx < len(verts))).all(axis=1)]
        return verts[idx]
    usable = len(verts) - len(verts) % 3
    return verts[:usable].reshape(-1, 3, 3)


def _raw_triangles(source: Any) -> np.ndarray:
    if isinstance(source, Surface):
        return source.triangles
    if isinstance(source, np.ndarray):
        if source.ndim == 3 and source.shape[1:] == (3, 3):
            return source.astype(np.float64)
        if source.ndim == 3 and source.shape[1:] == (3, 2):
            return np.concatenate([source, np.zeros(source.shape[:2] + (1,))], axis=2).astype(np.float64)
        if source.ndim == 1:
            return _from_flat_buffer(source)
        raise ValueError(f"Unsupported triangle array shape {source.shape}")
    if isinstance(source, tuple) and len(source) == 2:
        vertices, faces = source
        vertices = _pad_xyz(np.asarray(vertices, dtype=np.float64))
        return _from_indexed(vertices, faces)
    if isinstance(source, Mapping):
        if "positions" in source:
            return _from_flat_buffer(source["positions"], source.get("indices"))
        if "points" in source and ("faces" in source or "indices" in source):
            return _from_indexed(source["points"], source.get("faces", source.get("indices")))
        if "points" in source and "triangles" in source:
            tris = list(source["triangles"])
            first = tris[0] if tris else None
            if isinstance(first, Mapping) and "indices" in first:
                return _from_indexed(source["points"], tris)
            if first is not None and not isinstance(first, Mapping) and np.ndim(first) == 1:
                return _from_indexed(source["points"], tris)
            return as_triangle_array([_coerce_triangle(t) for t in tris])
        if "triangles" in source:
            return as_triangle_array([_coerce_triangle(t) for t in source["triangles"]])
        raise ValueError("Unsupported surface mapping: expected 'triangles', 'points' or 'positions'")
    if isinstance(source, Iterable):
        return as_triangle_array([_coerce_triangle(t) for t in source])
    raise ValueError(f"Unsupported surface representation '{type(source).__name__}'")


def ensure_z_up(tris: np.ndarray) -> np.ndarray:
    """Flip triangles whose face normal points down; vertical faces are left alone."""
    if len(tris) == 0:
        return tris
    down = face_normals(tris)[:, 2] < 0.0
    if not down.any():
        return tris
    out = tris.copy()
    out[down] = flip_winding(tris[down])
    return out


def extract_triangles(source: Any, *, z_up: bool = True, eps: float = DEGENERATE_AREA) -> np.ndarray:
    """Canonical ``(N, 3, 3)`` triangles from any accepted surface representation.

    Accepted shapes: a :class:`Surface`; an ``(N, 3, 3)`` or ``(N, 3, 2)`` array;
    a ``(vertices, faces)`` tuple; a flat position buffer (optionally with
    ``indices``); mappings holding ``triangles`` (``{vertices: [...]}``,
    ``{v0, v1, v2}`` or 3-point lists), ``points`` + ``faces``/``indices``, or
    ``positions``. Malformed and degenerate triangles are dropped without error.
    """
    raw = _raw_triangles(source)
    if len(raw) == 0:
        return np.zeros((0, 3, 3), dtype=np.float64)
    keep = non_degenerate_mask(raw, eps)
    dropped = int((~keep).sum())
    if dropped:
        _log.debug("Extraction dropped %d degenerate or malformed triangles", dropped)
    tris = np.ascontiguousarray(raw[keep], dtype=np.float64)
    return ensure_z_up(tris) if z_up else tris


def to_surface(source: Any, *, name: Optional[str] = None, z_up: bool = True) -> Surface:
    if isinstance(source, Surface) and not z_up:
        return source
    tris = extract_triangles(source, z_up=z_up)
    if isinstance(source, Surface):
        return Surface(tris, surface_id=source.id, name=name or source.name,
                       visible=source.visible, metadata=source.metadata)
    surface_id = source.get("id") if isinstance(source, Mapping) else None
    return Surface(tris, surface_id=surface_id, name=name)


def points_from_records(points: Sequence[Any]) -> np.ndarray:
    """``(N, 3)`` array from point records; unusable entries are skipped."""
    if isinstance(points, np.ndarray):
        return _pad_xyz(points.astype(np.float64).reshape(len(points), -1))
    out = [p for p in (_coerce_point(v) for v in points) if p is not None]
    return np.asarray(out, dtype=np.float64).reshape(-1, 3)


def surface_from_record(record: Mapping[str, Any]) -> Surface:
    """Rebuild a :class:`Surface` from its exchange record."""
    tris = extract_triangles(record, z_up=False)
    return Surface(
        tris,
        surface_id=record.get("id"),
        name=record.get("name"),
        visible=bool(record.get("visible", True)),
        metadata=record.get("metadata") or {},
    )
