from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence
import math
import numpy as np

from .errors import InvalidInputError
from .geometry import HeightGrid, Surface, face_normals
from .tolerance import GRAVITY, MAX_GRID_CELLS, NORMAL_EPSILON
from .utils import get_logger

_log = get_logger()

ProgressFn = Callable[[float, str], None]

DEFAULT_ITERATIONS = 40
DEFAULT_END_ANGLE_DEG = 85.0
DEFAULT_TRANSPARENCY = 0.5


@dataclass(frozen=True)
class BallisticSource:
    """A launch point with its maximum travel distance and launch velocity."""
    x: float
    y: float
    z: float
    max_distance: float
    max_velocity: float
    source_id: str = ""

    def padding(self, extend_below: float = 0.0, gravity: float = GRAVITY) -> float:
        if extend_below > 0:
            v = self.max_velocity
            return max(self.max_distance, (v / gravity) * math.sqrt(v * v + 2.0 * gravity * extend_below))
        return self.max_distance


def envelope_altitude(distance: np.ndarray, velocity: float, gravity: float = GRAVITY) -> np.ndarray:
    """Maximum height reachable at horizontal ``distance``: (V^4 - g^2 d^2) / (2 g V^2)."""
    v2 = velocity * velocity
    return (v2 * v2 - gravity * gravity * np.square(distance)) / (2.0 * gravity * v2)


def build_height_grid(
    sources: Sequence[BallisticSource],
    *,
    iterations: int = DEFAULT_ITERATIONS,
    extend_below: float = 0.0,
    gravity: float = GRAVITY,
    max_cells: int = MAX_GRID_CELLS,
    progress: Optional[ProgressFn] = None,
) -> HeightGrid:
    """Upper envelope of every source's ballistic reach sampled on a regular grid."""
    usable = [s for s in sources if s.max_velocity > 0]
    if not usable:
        raise InvalidInputError("Shroud needs at least one source with a positive velocity")

    paddings = [s.padding(extend_below, gravity) for s in usable]
    min_x = min(s.x - p for s, p in zip(usable, paddings))
    max_x = max(s.x + p for s, p in zip(usable, paddings))
    min_y = min(s.y - p for s, p in zip(usable, paddings))
    max_y = max(s.y + p for s, p in zip(usable, paddings))
    spacing = max(paddings) / (iterations / 2.0) if iterations > 0 else 0.0
    if spacing <= 0:
        spacing = 1.0
    cols = math.ceil((max_x - min_x) / spacing) + 1
    rows = math.ceil((max_y - min_y) / spacing) + 1
    if cols > max_cells or rows > max_cells:
        spacing = max(spacing * max(cols, rows) / max_cells, max(max_x - min_x, max_y - min_y) / (max_cells - 1))
        cols = math.ceil((max_x - min_x) / spacing - 1e-9) + 1
        rows = math.ceil((max_y - min_y) / spacing - 1e-9) + 1
        _log.info("Shroud grid capped: spacing raised to %.3f", spacing)
    if progress:
        progress(5, f"Grid {cols}x{rows}, spacing {spacing:.3f}")

    min_alt = -extend_below if extend_below > 0 else 0.0
    gx = min_x + spacing * np.arange(cols)
    sx = np.array([s.x for s in usable])[:, None]
    sy = np.array([s.y for s in usable])[:, None]
    sz = np.array([s.z for s in usable])[:, None]
    sv = np.array([s.max_velocity for s in usable])[:, None]
    v2 = sv * sv

    elevation = np.full((rows, cols), -np.inf)
    inside = np.zeros((rows, cols), dtype=bool)
    if progress:
        progress(15, "Evaluating ballistic envelopes")
    report_every = max(1, rows // 20)
    for r in range(rows):
        y = min_y + spacing * r
        d2 = np.square(gx[None, :] - sx) + np.square(y - sy)          # (sources, cols)
        alt = (v2 * v2 - gravity * gravity * d2) / (2.0 * gravity * v2)
        covered = alt >= min_alt
        absolute = np.where(covered, sz + alt, -np.inf)
        elevation[r] = absolute.max(axis=0)
        inside[r] = covered.any(axis=0)
        if progress and r % report_every == 0:
            progress(15 + 60 * r / rows, f"Row {r + 1}/{rows}")

    elevation[~inside] = np.nan
    return HeightGrid(
        origin_x=min_x, origin_y=min_y, spacing=spacing, elevation=elevation, inside=inside,
        meta={"source_count": len(usable), "paddings": paddings},
    )


def grid_triangles(grid: HeightGrid, end_angle_deg: float = DEFAULT_END_ANGLE_DEG) -> np.ndarray:
    """Counter-clockwise triangles over fully-inside cell halves, near-vertical ones removed."""
    rows, cols = grid.shape
    if rows < 2 or cols < 2:
        return np.zeros((0, 3, 3), dtype=np.float64)
    xs = grid.origin_x + grid.spacing * np.arange(cols)
    ys = grid.origin_y + grid.spacing * np.arange(rows)
    xv, yv = np.meshgrid(xs, ys)
    verts = np.stack([xv, yv, grid.elevation], axis=-1)           # (rows, cols, 3)
    ins = grid.inside

    p00 = verts[:-1, :-1]
    p10 = verts[1:, :-1]          # (r+1, c)
    p01 = verts[:-1, 1:]          # (r, c+1)
    p11 = verts[1:, 1:]
    first = ins[:-1, :-1] & ins[1:, :-1] & ins[:-1, 1:]
    second = ins[1:, :-1] & ins[1:, 1:] & ins[:-1, 1:]
    tri_a = np.stack([p00, p01, p10], axis=2)[first]
    tri_b = np.stack([p10, p01, p11], axis=2)[second]
    tris = np.concatenate([tri_a, tri_b], axis=0)
    if len(tris) == 0:
        return tris

    normals = face_normals(tris)
    lengths = np.linalg.norm(normals, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        upness = np.abs(normals[:, 2]) / lengths
    keep = (lengths >= NORMAL_EPSILON) & (upness >= math.cos(math.radians(end_angle_deg)))
    return tris[keep]


def generate_shroud(
    sources: Sequence[BallisticSource],
    *,
    iterations: int = DEFAULT_ITERATIONS,
    end_angle_deg: float = DEFAULT_END_ANGLE_DEG,
    extend_below: float = 0.0,
    gravity: float = GRAVITY,
    name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    progress: Optional[ProgressFn] = None,
) -> Surface:
    """Ballistic envelope surface over a set of sources.

    The returned surface carries the generation parameters in
    ``metadata["shroud"]``, merged with any caller-supplied ``metadata``.
    """
    grid = build_height_grid(
        sources, iterations=iterations, extend_below=extend_below, gravity=gravity, progress=progress,
    )
    if progress:
        progress(80, "Building triangles")
    tris = grid_triangles(grid, end_angle_deg)
    if len(tris) == 0:
        raise InvalidInputError("Shroud produced no triangles; check source velocities and distances")
    rows, cols = grid.shape
    params: Dict[str, Any] = {
        "iterations": int(iterations),
        "endAngleDeg": float(end_angle_deg),
        "extendBelowCollar": float(extend_below),
        "gridSpacing": float(grid.spacing),
        "gridSize": f"{cols}x{rows}",
        "sourceCount": grid.meta["source_count"],
        "transparency": DEFAULT_TRANSPARENCY,
    }
    params.update(metadata or {})
    if progress:
        progress(95, f"{len(tris)} triangles")
    _log.info("Shroud: %d triangles from %d sources on %dx%d grid", len(tris), grid.meta["source_count"], cols, rows)
    return Surface(tris, name=name or "Shroud", metadata={"shroud": params})


def sources_from_records(records: Sequence[Any]) -> List[BallisticSource]:
    out: List[BallisticSource] = []
    for i, rec in enumerate(records):
        if isinstance(rec, BallisticSource):
            out.append(rec)
            continue
        out.append(BallisticSource(
            x=float(rec["x"]), y=float(rec["y"]), z=float(rec.get("z", 0.0) or 0.0),
            max_distance=float(rec.get("max_distance", rec.get("maxDistance", 0.0))),
            max_velocity=float(rec.get("max_velocity", rec.get("maxVelocity", 0.0))),
            source_id=str(rec.get("id", rec.get("source_id", i))),
        ))
    return out
