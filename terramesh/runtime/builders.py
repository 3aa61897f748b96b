from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple

import numpy as np

from ..config.schema import (
    ContourJob,
    ExtrudeJob,
    IntersectJob,
    JobConfig,
    MeshJob,
    ShroudJob,
    TriangulateJob,
)
from ..core.exporter import JsonWriter, NpzWriter, write_surface
from ..core.extraction import surface_from_record
from ..core.geometry import Polyline
from ..core.loader import load_points, load_sources, load_surface


def build_payload(job: Any) -> Tuple[str, Dict[str, Any]]:
    """Task type and payload for a job, with referenced files loaded."""
    if isinstance(job, ContourJob):
        fields = job.model_dump(exclude={"kind", "surface"})
        return "contour", dict(fields, surface=load_surface(job.surface))
    if isinstance(job, ShroudJob):
        fields = job.model_dump(exclude={"kind", "sources", "sources_path"})
        sources: List[Dict[str, Any]] = [s.model_dump() for s in job.sources]
        if job.sources_path is not None:
            sources.extend(load_sources(job.sources_path))
        return "shroud", dict(fields, sources=sources)
    if isinstance(job, ExtrudeJob):
        fields = job.model_dump(exclude={"kind", "polygon", "polygon_path"})
        if job.polygon_path is not None:
            vertices = load_points(job.polygon_path)
        else:
            vertices = np.asarray([list(p) + [0.0] * (3 - len(p)) for p in job.polygon], dtype=np.float64)
        return "extrude", dict(fields, vertices=vertices)
    if isinstance(job, MeshJob):
        fields = job.model_dump(exclude={"kind", "points"})
        return "mesh_from_points", dict(fields, points=load_points(job.points))
    if isinstance(job, IntersectJob):
        return "intersect", {
            "surfaces": [load_surface(p) for p in job.surfaces],
            "vertex_spacing": job.vertex_spacing,
        }
    if isinstance(job, TriangulateJob):
        fields = job.model_dump(exclude={"kind", "points", "boundary"})
        points = load_points(job.points)
        constraints: List[Tuple[int, int]] = []
        if job.boundary:
            n = len(points)
            constraints = [(i, (i + 1) % n) for i in range(n)]
        return "triangulate", dict(fields, points=points, constraints=constraints)
    raise ValueError(f"Unsupported job kind: {getattr(job, 'kind', job)}")


def polylines_from_records(records: List[Dict[str, Any]], key: str = "points") -> List[Polyline]:
    out = []
    for rec in records:
        pts = [(p["x"], p["y"], p["z"]) for p in rec[key]]
        if rec.get("entityType") == "poly" and pts:
            pts.append(pts[0])
        out.append(Polyline(np.asarray(pts, dtype=np.float64).reshape(-1, 3)))
    return out


def write_result(cfg: JobConfig, data: Dict[str, Any]) -> Path:
    out = Path(cfg.output.path)
    fmt = cfg.output.format
    kind = cfg.job.kind
    if kind in {"contour", "intersect"}:
        if kind == "contour":
            records, key = data["entities"], "data"
        else:
            records, key = data["polylines"], "points"
        if fmt == "json":
            JsonWriter(str(out)).write(data)
        else:
            NpzWriter(str(out)).write_polylines(polylines_from_records(records, key))
        return out
    return write_surface(surface_from_record(data["surface"]), out, fmt)
