from __future__ import annotations

from itertools import combinations
from typing import Any, Callable, Dict, List

import numpy as np

from ..config.schema import (
    ContourPayload,
    ExtrudePayload,
    IntersectPayload,
    MeshFromPointsPayload,
    ShroudPayload,
    TriangulatePayload,
)
from ..core.chaining import chain_segments
from ..core.contour import generate_contours
from ..core.culling import cull_triangles
from ..core.entities import contour_entities, to_record
from ..core.errors import InvalidInputError
from ..core.extraction import points_from_records, to_surface
from ..core.extrusion import extrude_polygon
from ..core.geometry import Segment, Surface
from ..core.intersector import intersect_surfaces
from ..core.pointmesh import MeshFromPointsOptions, mesh_from_points
from ..core.shroud import generate_shroud, sources_from_records
from ..core.simplify import simplify_polyline
from ..core.tolerance import MIN_INTERSECTION_CHAIN_TOLERANCE
from ..core.triangulation import DelaunayProvider, TriangulationEngine

ProgressFn = Callable[[float, str], None]
Handler = Callable[[Any, ProgressFn], Any]


def _triangulate(payload: Any, progress: ProgressFn, engine: TriangulationEngine, use_constraints: bool) -> Dict[str, Any]:
    req = TriangulatePayload.model_validate(payload)
    pts = points_from_records(req.points)
    progress(10, f"Triangulating {len(pts)} points")
    constraints = req.constraints if use_constraints and req.constraints else None
    result = engine.triangulate(pts, constraints)
    progress(70, f"Culling {len(result.triangles)} triangles")
    tris, cull = cull_triangles(
        result.triangle_array(),
        max_edge_length=req.max_edge_length,
        min_angle_deg=req.min_angle_deg,
        use_3d_length=req.use_3d_length,
        use_3d_angle=req.use_3d_angle,
    )
    if len(tris) == 0:
        raise InvalidInputError("All triangles were culled; relax max edge length or min angle")
    stats = dict(result.stats, **cull.as_dict())
    surface = Surface(tris, name=req.name, metadata={"triangulation": stats})
    progress(90, f"{len(tris)} triangles")
    return {"surface": surface.to_record(), "stats": stats}


def run_triangulate(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    return _triangulate(payload, progress, TriangulationEngine(), use_constraints=True)


def run_triangulate_basic(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    return _triangulate(payload, progress, TriangulationEngine([DelaunayProvider()]), use_constraints=False)


def run_mesh_from_points(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    req = MeshFromPointsPayload.model_validate(payload)
    opts = MeshFromPointsOptions(
        max_points=req.max_points,
        xyz_tolerance=req.xyz_tolerance,
        max_edge_length=req.max_edge_length,
        min_angle_deg=req.min_angle_deg,
        use_3d_length=req.use_3d_length,
        use_3d_angle=req.use_3d_angle,
    )
    result = mesh_from_points(req.points, opts, name=req.name, progress=progress)
    return {"surface": result.surface.to_record(), "stats": result.stats}


def run_intersect(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    req = IntersectPayload.model_validate(payload)
    surfaces = [to_surface(s) for s in req.surfaces]
    progress(5, f"Intersecting {len(surfaces)} surfaces")
    pairs = list(combinations(range(len(surfaces)), 2))
    segments: List[Segment] = []
    for k, (i, j) in enumerate(pairs):
        segments.extend(intersect_surfaces(surfaces[i], surfaces[j]))
        progress(15 + 55 * (k + 1) / len(pairs), f"Pair {k + 1}/{len(pairs)}: {len(segments)} segments")
    if not segments:
        return {"polylines": [], "segmentCount": 0}

    avg = float(np.mean([s.length for s in segments]))
    tolerance = max(avg * 0.01, MIN_INTERSECTION_CHAIN_TOLERANCE)
    progress(70, f"Chaining {len(segments)} segments")
    polylines = chain_segments(segments, tolerance)
    progress(85, f"Simplifying {len(polylines)} polylines")
    polylines = [simplify_polyline(p, req.vertex_spacing) for p in polylines]
    polylines = [p for p in polylines if len(p) >= 2]
    return {"polylines": [p.to_record() for p in polylines], "segmentCount": len(segments)}


def run_contour(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    req = ContourPayload.model_validate(payload)
    result = generate_contours(
        req.surface,
        req.interval,
        min_z=req.min_z,
        max_z=req.max_z,
        vertex_spacing=req.vertex_spacing,
        progress=progress,
    )
    entities = contour_entities(
        result.levels,
        layer_id=req.layer_id,
        closed=req.closed_polygons,
        color=req.color,
        line_width=req.line_width,
    )
    return {
        "entities": [to_record(e) for e in entities],
        "levelCount": len(result.levels),
        "segmentCount": result.segment_count,
    }


def run_extrude(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    req = ExtrudePayload.model_validate(payload)
    progress(10, "Extruding footprint")
    result = extrude_polygon(points_from_records(req.vertices), req.depth, req.steps)
    surface = result.to_surface(name=req.name)
    return {"surface": surface.to_record(), "volume": result.volume, "normals": result.normals.tolist()}


def run_shroud(payload: Any, progress: ProgressFn) -> Dict[str, Any]:
    req = ShroudPayload.model_validate(payload)
    sources = sources_from_records([s.model_dump() for s in req.sources])
    surface = generate_shroud(
        sources,
        iterations=req.iterations,
        end_angle_deg=req.end_angle_deg,
        extend_below=req.extend_below_collar,
        name=req.name,
        metadata={
            "algorithm": req.algorithm,
            "K": req.K,
            "factorOfSafety": req.factor_of_safety,
            "stemEjectAngleDeg": req.stem_eject_angle_deg,
            "holeCount": len(sources),
            "holesSkipped": req.holes_skipped,
        },
        progress=progress,
    )
    return {"surface": surface.to_record()}


TASK_HANDLERS: Dict[str, Handler] = {
    "triangulate": run_triangulate,
    "triangulate_basic": run_triangulate_basic,
    "mesh_from_points": run_mesh_from_points,
    "intersect": run_intersect,
    "contour": run_contour,
    "extrude": run_extrude,
    "shroud": run_shroud,
}

FAMILY_BY_TASK: Dict[str, str] = {
    "triangulate": "triangulation",
    "triangulate_basic": "triangulation",
    "mesh_from_points": "mesh",
    "intersect": "intersection",
    "contour": "contour",
    "extrude": "extrusion",
    "shroud": "shroud",
}
