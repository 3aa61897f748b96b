from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional
import numpy as np

from .errors import InvalidInputError
from .geometry import Surface, compute_vertex_normals, flip_winding, signed_area_2d, signed_volume, weld
from .tolerance import CLOSING_VERTEX_TOLERANCE
from .triangulation import TriangulationEngine, triangulate_polygon
from .utils import get_logger

_log = get_logger()

DEFAULT_DEPTH = -10.0


@dataclass
class ExtrusionResult:
    triangles: np.ndarray        # (M, 3, 3)
    vertices: np.ndarray         # (V, 3) welded
    faces: np.ndarray            # (M, 3)
    normals: np.ndarray          # (V, 3) per-vertex, unit
    depth: float
    steps: int
    volume: float

    def to_surface(self, **kwargs: Any) -> Surface:
        meta: Dict[str, Any] = {"extrusion": {"depth": self.depth, "steps": self.steps, "volume": self.volume}}
        meta.update(kwargs.pop("metadata", {}) or {})
        return Surface(self.triangles, metadata=meta, **kwargs)


def clean_footprint(vertices: Any, tolerance: float = CLOSING_VERTEX_TOLERANCE) -> np.ndarray:
    """``(N, 3)`` footprint without a repeated closing vertex, counter-clockwise."""
    pts = np.asarray(vertices, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] not in (2, 3):
        raise InvalidInputError(f"Expected (N, 2) or (N, 3) polygon vertices, got shape {pts.shape}")
    if pts.shape[1] == 2:
        pts = np.column_stack([pts, np.zeros(len(pts))])
    if len(pts) > 1 and np.all(np.abs(pts[-1] - pts[0]) < tolerance):
        pts = pts[:-1]
    if len(pts) < 3:
        raise InvalidInputError(f"Extrusion needs at least 3 distinct vertices, got {len(pts)}")
    if signed_area_2d(pts[:, :2]) < 0:
        pts = pts[::-1].copy()
    return pts


def extrude_polygon(
    vertices: Any,
    depth: float = DEFAULT_DEPTH,
    steps: int = 1,
    *,
    engine: Optional[TriangulationEngine] = None,
    closing_tolerance: float = CLOSING_VERTEX_TOLERANCE,
) -> ExtrusionResult:
    """Turn a closed footprint into a capped, walled solid.

    The top cap keeps each vertex's Z, the bottom cap sits at ``Z + depth``
    and walls are split into ``steps`` bands. A zero depth yields the flat
    face only. Closed solids are wound so their signed volume is positive.
    """
    pts = clean_footprint(vertices, closing_tolerance)
    steps = max(1, int(steps))
    tri = triangulate_polygon(pts, engine)
    # triangulate_polygon keeps counter-clockwise order, so indices refer to pts
    cap = tri.triangle_array()
    if depth == 0:
        triangles = cap
    else:
        bottom = flip_winding(cap) + np.array([0.0, 0.0, depth])
        n = len(pts)
        walls = []
        for i in range(n):
            a = pts[i]
            b = pts[(i + 1) % n]
            for s in range(steps):
                t0 = s / steps
                t1 = (s + 1) / steps
                a0 = a + [0.0, 0.0, depth * t0]
                a1 = a + [0.0, 0.0, depth * t1]
                b0 = b + [0.0, 0.0, depth * t0]
                b1 = b + [0.0, 0.0, depth * t1]
                walls.append((a0, a1, b1))
                walls.append((a0, b1, b0))
        triangles = np.concatenate([cap, bottom, np.asarray(walls, dtype=np.float64)], axis=0)
        if signed_volume(triangles) < 0:
            triangles = flip_winding(triangles)

    triangles = np.ascontiguousarray(triangles)
    welded, faces = weld(triangles)
    normals = compute_vertex_normals(welded, faces)
    volume = signed_volume(triangles)
    _log.info("Extruded %d-vertex footprint: %d triangles, depth %g", len(pts), len(triangles), depth)
    return ExtrusionResult(
        triangles=triangles, vertices=welded, faces=faces, normals=normals,
        depth=float(depth), steps=steps, volume=volume,
    )
