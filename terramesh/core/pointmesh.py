from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
import numpy as np

from .culling import cull_triangles
from .errors import InvalidInputError, TriangulationError
from .extraction import points_from_records
from .geometry import Surface
from .tolerance import DEDUP_TOLERANCE
from .triangulation import DelaunayProvider, TriangulationEngine, dedup_points
from .utils import get_logger

_log = get_logger()

ProgressFn = Callable[[float, str], None]


@dataclass
class MeshFromPointsOptions:
    max_points: int = 0
    xyz_tolerance: float = DEDUP_TOLERANCE
    max_edge_length: float = 0.0
    min_angle_deg: float = 0.0
    use_3d_length: bool = False
    use_3d_angle: bool = False


@dataclass
class MeshFromPointsResult:
    surface: Surface
    stats: Dict[str, Any] = field(default_factory=dict)


def decimate(points: np.ndarray, max_points: int) -> np.ndarray:
    """Uniform-stride subsample down to at most ``max_points``; ``0`` keeps everything."""
    if max_points <= 0 or len(points) <= max_points:
        return points
    idx = np.linspace(0, len(points) - 1, max_points).round().astype(np.int64)
    return points[np.unique(idx)]


def mesh_from_points(
    points: Any,
    options: Optional[MeshFromPointsOptions] = None,
    *,
    name: Optional[str] = None,
    progress: Optional[ProgressFn] = None,
) -> MeshFromPointsResult:
    opts = options or MeshFromPointsOptions()
    pts = points_from_records(points)
    original = len(pts)
    if progress:
        progress(5, f"Preparing {original} points")
    pts = decimate(pts, opts.max_points)
    pts, _ = dedup_points(pts, opts.xyz_tolerance)
    if len(pts) < 3:
        raise InvalidInputError(f"Need at least 3 distinct points to build a surface, got {len(pts)}")
    if progress:
        progress(20, f"Triangulating {len(pts)} points")

    try:
        tri = TriangulationEngine([DelaunayProvider()]).triangulate(pts)
    except TriangulationError as exc:
        raise InvalidInputError(f"Points do not span an area: {exc}") from exc
    raw = tri.triangle_array()
    if progress:
        progress(70, f"Culling {len(raw)} triangles")
    kept, cull = cull_triangles(
        raw,
        max_edge_length=opts.max_edge_length,
        min_angle_deg=opts.min_angle_deg,
        use_3d_length=opts.use_3d_length,
        use_3d_angle=opts.use_3d_angle,
    )
    if len(kept) == 0:
        raise InvalidInputError("All triangles were culled; relax max edge length or min angle")
    stats = {
        "dedupOriginal": original,
        "dedupFinal": int(len(pts)),
        "totalRawTriangles": int(len(raw)),
        "triangleCount": int(len(kept)),
        "culledByEdge": cull.removed_by_edge,
        "culledByAngle": cull.removed_by_angle,
    }
    surface = Surface(kept, name=name, metadata={"meshStats": stats})
    _log.info("Mesh from points: %d -> %d points, %d triangles", original, len(pts), len(kept))
    return MeshFromPointsResult(surface=surface, stats=stats)
