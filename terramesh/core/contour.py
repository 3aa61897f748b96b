from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import math
import numpy as np

from .chaining import chain_segments
from .errors import InvalidInputError, ResourceLimitError
from .extraction import extract_triangles
from .geometry import Point3D, Polyline, Segment
from .predicates import plane_crossings
from .simplify import simplify_polyline
from .tolerance import CHAIN_TOLERANCE, MAX_CONTOUR_LEVELS, PLANE_EPSILON
from .utils import get_logger

_log = get_logger()

ProgressFn = Callable[[float, str], None]


@dataclass
class ContourLevel:
    elevation: float
    polylines: List[Polyline] = field(default_factory=list)


@dataclass
class ContourResult:
    interval: float
    levels: List[ContourLevel]
    segment_count: int = 0

    @property
    def polyline_count(self) -> int:
        return sum(len(level.polylines) for level in self.levels)

    def to_record(self) -> Dict[str, Any]:
        return {
            "interval": self.interval,
            "segmentCount": self.segment_count,
            "levels": [
                {"elevation": lvl.elevation, "polylines": [p.to_record() for p in lvl.polylines]}
                for lvl in self.levels
            ],
        }


def slice_triangle(tri: Sequence[Sequence[float]], z: float, eps: float = PLANE_EPSILON) -> Optional[Segment]:
    """Segment where a triangle crosses the horizontal plane at ``z``, if any."""
    points = plane_crossings(tri, [v[2] - z for v in tri], eps)
    if len(points) != 2:
        return None
    return Segment(Point3D(*points[0]), Point3D(*points[1]))


def contour_levels(min_z: float, max_z: float, interval: float) -> np.ndarray:
    """Levels at multiples of ``interval`` inside ``[min_z, max_z]``.

    Raises :class:`ResourceLimitError` before building anything when the count
    exceeds the cap.
    """
    if not interval > 0:
        raise InvalidInputError("Contour interval must be positive")
    if max_z < min_z:
        raise InvalidInputError(f"Contour range is empty (min {min_z} > max {max_z})")
    expected = math.floor((max_z - min_z) / interval) + 1
    if expected > MAX_CONTOUR_LEVELS:
        raise ResourceLimitError(
            f"Too many contour levels ({expected} > {MAX_CONTOUR_LEVELS}). "
            "Increase the interval or narrow the elevation range."
        )
    start = math.ceil(min_z / interval - 1e-9) * interval
    count = math.floor((max_z - start) / interval + 1e-9) + 1
    if count <= 0:
        return np.zeros(0, dtype=np.float64)
    return start + interval * np.arange(count, dtype=np.float64)


def generate_contours(
    surface: Any,
    interval: float,
    *,
    min_z: Optional[float] = None,
    max_z: Optional[float] = None,
    vertex_spacing: float = 0.0,
    chain_tolerance: float = CHAIN_TOLERANCE,
    plane_eps: float = PLANE_EPSILON,
    progress: Optional[ProgressFn] = None,
) -> ContourResult:
    """Slice a surface with horizontal planes every ``interval``.

    The range defaults to the surface's own Z extent. When both bounds are
    given the level cap is checked before the triangles are touched.
    """
    if min_z is not None and max_z is not None:
        contour_levels(min_z, max_z, interval)

    tris = extract_triangles(surface, z_up=False)
    if len(tris) == 0:
        raise InvalidInputError("Surface has no triangles to contour")
    z = tris[:, :, 2]
    z_min = z.min(axis=1)
    z_max = z.max(axis=1)
    lo = float(z_min.min()) if min_z is None else float(min_z)
    hi = float(z_max.max()) if max_z is None else float(max_z)
    levels = contour_levels(lo, hi, interval)
    if progress:
        progress(5, f"Contouring {len(levels)} levels")

    order = np.argsort(z_min, kind="stable")
    sorted_tris = tris[order].tolist()
    sorted_min = z_min[order]
    sorted_max = z_max[order]

    out: List[ContourLevel] = []
    total_segments = 0
    for k, level in enumerate(levels):
        level = float(level)
        segments: List[Segment] = []
        for i in range(len(sorted_tris)):
            if sorted_min[i] > level:
                break
            if sorted_max[i] < level:
                continue
            seg = slice_triangle(sorted_tris[i], level, plane_eps)
            if seg is not None:
                segments.append(seg)
        total_segments += len(segments)
        polylines = [simplify_polyline(p, vertex_spacing) for p in chain_segments(segments, chain_tolerance)]
        out.append(ContourLevel(elevation=level, polylines=[p for p in polylines if len(p) >= 2]))
        if progress:
            progress(5 + 90 * (k + 1) / len(levels), f"Level {level:g}")

    _log.info("Contours: %d levels, %d segments", len(out), total_segments)
    return ContourResult(interval=float(interval), levels=out, segment_count=total_segments)
