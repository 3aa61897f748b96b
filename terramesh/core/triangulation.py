from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple
import math
import numpy as np

import mapbox_earcut
from scipy.spatial import Delaunay, QhullError

from .errors import InvalidInputError, TriangulationError
from .geometry import Surface, signed_area_2d
from .tolerance import DEDUP_TOLERANCE, DEGENERATE_AREA, MIN_CONSTRAINT_LENGTH
from .utils import get_logger

_log = get_logger()

Edge = Tuple[int, int]


# -- predicates --

def orient2d(a: Sequence[float], b: Sequence[float], c: Sequence[float]) -> float:
    """Twice the signed area of ``abc``; positive when counter-clockwise."""
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def in_circle(a: Sequence[float], b: Sequence[float], c: Sequence[float], d: Sequence[float]) -> float:
    """Positive when ``d`` lies inside the circumcircle of counter-clockwise ``abc``."""
    adx, ady = a[0] - d[0], a[1] - d[1]
    bdx, bdy = b[0] - d[0], b[1] - d[1]
    cdx, cdy = c[0] - d[0], c[1] - d[1]
    ad = adx * adx + ady * ady
    bd = bdx * bdx + bdy * bdy
    cd = cdx * cdx + cdy * cdy
    return (adx * (bdy * cd - bd * cdy)
            - ady * (bdx * cd - bd * cdx)
            + ad * (bdx * cdy - bdy * cdx))


def segments_cross(p1: Sequence[float], p2: Sequence[float], q1: Sequence[float], q2: Sequence[float]) -> bool:
    """Proper crossing only: shared endpoints and collinear touches do not count."""
    d1 = orient2d(q1, q2, p1)
    d2 = orient2d(q1, q2, p2)
    d3 = orient2d(p1, p2, q1)
    d4 = orient2d(p1, p2, q2)
    return ((d1 > 0 > d2) or (d1 < 0 < d2)) and ((d3 > 0 > d4) or (d3 < 0 < d4))


def points_in_polygon(query: np.ndarray, edge_a: np.ndarray, edge_b: np.ndarray, chunk: int = 4096) -> np.ndarray:
    """Even-odd ray casting of ``query`` (K, 2) against an edge set ``(E, 2)`` pairs.

    The edges need not be ordered; any set of closed rings works, holes included.
    """
    query = np.asarray(query, dtype=np.float64).reshape(-1, 2)
    inside = np.zeros(len(query), dtype=bool)
    if len(edge_a) == 0:
        return inside
    ax, ay = edge_a[:, 0][None, :], edge_a[:, 1][None, :]
    bx, by = edge_b[:, 0][None, :], edge_b[:, 1][None, :]
    for start in range(0, len(query), chunk):
        q = query[start:start + chunk]
        x = q[:, 0][:, None]
        y = q[:, 1][:, None]
        straddles = (ay > y) != (by > y)
        with np.errstate(divide="ignore", invalid="ignore"):
            x_cross = ax + (y - ay) * (bx - ax) / (by - ay)
        hits = straddles & (x < x_cross)
        inside[start:start + chunk] = (hits.sum(axis=1) % 2) == 1
    return inside


def point_in_polygon(x: float, y: float, ring: np.ndarray) -> bool:
    ring = np.asarray(ring, dtype=np.float64)[:, :2]
    return bool(points_in_polygon(np.array([[x, y]]), ring, np.roll(ring, -1, axis=0))[0])


# -- helpers --

def dedup_points(points: np.ndarray, tolerance: float = DEDUP_TOLERANCE) -> Tuple[np.ndarray, np.ndarray]:
    """Drop points within ``tolerance`` (XY) of an earlier point.

    Spatial hash with cell size ``2 * tolerance``. Returns the kept points and
    their indices into the input.
    """
    pts = np.asarray(points, dtype=np.float64)
    if tolerance <= 0 or len(pts) == 0:
        return pts, np.arange(len(pts))
    cell = 2.0 * tolerance
    tol2 = tolerance * tolerance
    grid: Dict[Tuple[int, int], List[int]] = {}
    kept: List[int] = []
    for i, (x, y) in enumerate(pts[:, :2]):
        gx, gy = int(math.floor(x / cell)), int(math.floor(y / cell))
        duplicate = False
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for j in grid.get((gx + dx, gy + dy), ()):
                    px, py = pts[j, 0], pts[j, 1]
                    if (px - x) ** 2 + (py - y) ** 2 < tol2:
                        duplicate = True
                        break
                if duplicate:
                    break
            if duplicate:
                break
        if not duplicate:
            grid.setdefault((gx, gy), []).append(i)
            kept.append(i)
    idx = np.asarray(kept, dtype=np.int64)
    return pts[idx], idx


def _as_constraints(constraints: Any) -> np.ndarray:
    if constraints is None:
        return np.zeros((0, 2), dtype=np.int64)
    arr = np.asarray(constraints, dtype=np.int64)
    return arr.reshape(-1, 2)


def _is_closed_edge_set(edges: np.ndarray) -> bool:
    """Every vertex touched by the edge set has even, non-zero degree."""
    if len(edges) < 3:
        return False
    _, counts = np.unique(edges.ravel(), return_counts=True)
    return bool(np.all(counts % 2 == 0))


def constraint_rings(edges: np.ndarray) -> Optional[List[List[int]]]:
    """Split a constraint edge set into simple cycles, or ``None`` if it is not one."""
    if len(edges) < 3:
        return None
    adjacency: Dict[int, List[int]] = {}
    for a, b in edges:
        if a == b:
            continue
        adjacency.setdefault(int(a), []).append(int(b))
        adjacency.setdefault(int(b), []).append(int(a))
    if any(len(nbrs) != 2 for nbrs in adjacency.values()):
        return None
    rings: List[List[int]] = []
    seen: Set[int] = set()
    for start in adjacency:
        if start in seen:
            continue
        ring = [start]
        seen.add(start)
        prev, cur = start, adjacency[start][0]
        while cur != start:
            if cur in seen:
                return None
            ring.append(cur)
            seen.add(cur)
            a, b = adjacency[cur]
            prev, cur = cur, (b if a == prev else a)
        if len(ring) >= 3:
            rings.append(ring)
    return rings or None


def orient_faces_ccw(xy: np.ndarray, faces: np.ndarray, eps: float = DEGENERATE_AREA) -> np.ndarray:
    """Counter-clockwise faces with zero-area ones removed."""
    if len(faces) == 0:
        return faces.reshape(0, 3)
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3).copy()
    a, b, c = xy[faces[:, 0]], xy[faces[:, 1]], xy[faces[:, 2]]
    area2 = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    cw = area2 < 0
    faces[cw] = faces[cw][:, [0, 2, 1]]
    return faces[np.abs(area2) > eps]


# -- constrained mesh --

class _ConstrainedMesh:
    """Mutable CCW triangle mesh supporting constraint insertion by edge flips."""

    def __init__(self, xy: np.ndarray, simplices: np.ndarray) -> None:
        self.xy = xy
        self.tris: List[List[int]] = []
        self.edges: Dict[Edge, int] = {}
        self.fixed: Set[Edge] = set()
        for s in simplices:
            a, b, c = (int(v) for v in s)
            if orient2d(xy[a], xy[b], xy[c]) < 0:
                b, c = c, b
            self.tris.append([a, b, c])
            self._register(len(self.tris) - 1)

    def _register(self, t: int) -> None:
        a, b, c = self.tris[t]
        self.edges[(a, b)] = t
        self.edges[(b, c)] = t
        self.edges[(c, a)] = t

    def _unregister(self, t: int) -> None:
        a, b, c = self.tris[t]
        for e in ((a, b), (b, c), (c, a)):
            if self.edges.get(e) == t:
                del self.edges[e]

    def has_edge(self, u: int, v: int) -> bool:
        return (u, v) in self.edges or (v, u) in self.edges

    def is_fixed(self, u: int, v: int) -> bool:
        return (min(u, v), max(u, v)) in self.fixed

    def _opposite(self, t: int, a: int, b: int) -> int:
        for v in self.tris[t]:
            if v != a and v != b:
                return v
        raise RuntimeError("Corrupt triangle")

    def _quad(self, a: int, b: int) -> Optional[Tuple[int, int]]:
        if (a, b) not in self.edges or (b, a) not in self.edges:
            return None
        c = self._opposite(self.edges[(a, b)], a, b)
        d = self._opposite(self.edges[(b, a)], b, a)
        return c, d

    def _convex(self, a: int, b: int, c: int, d: int) -> bool:
        xy = self.xy
        return segments_cross(xy[a], xy[b], xy[c], xy[d])

    def _flip(self, a: int, b: int, c: int, d: int) -> None:
        t1 = self.edges[(a, b)]
        t2 = self.edges[(b, a)]
        self._unregister(t1)
        self._unregister(t2)
        self.tris[t1] = [a, d, c]
        self.tris[t2] = [d, b, c]
        self._register(t1)
        self._register(t2)

    def _undirected_edges(self) -> Iterable[Edge]:
        for a, b in self.edges:
            if a < b or (b, a) not in self.edges:
                yield a, b

    def insert(self, u: int, v: int) -> bool:
        if u == v:
            return False
        if self.has_edge(u, v):
            self.fixed.add((min(u, v), max(u, v)))
            return True
        xy = self.xy
        pu, pv = xy[u], xy[v]
        crossing: List[Edge] = []
        for a, b in self._undirected_edges():
            if a in (u, v) or b in (u, v):
                continue
            if segments_cross(xy[a], xy[b], pu, pv):
                if self.is_fixed(a, b):
                    return False
                crossing.append((a, b))
        if not crossing:
            return False

        queue = deque(crossing)
        created: List[Edge] = []
        budget = max(1000, 20 * len(crossing) ** 2)
        while queue:
            budget -= 1
            if budget < 0:
                return False
            a, b = queue.popleft()
            quad = self._quad(a, b)
            if quad is None:
                return False
            c, d = quad
            if not self._convex(a, b, c, d):
                queue.append((a, b))
                continue
            self._flip(a, b, c, d)
            if c not in (u, v) and d not in (u, v) and segments_cross(xy[c], xy[d], pu, pv):
                queue.append((c, d))
            else:
                created.append((c, d))

        if not self.has_edge(u, v):
            return False
        self.fixed.add((min(u, v), max(u, v)))
        self._legalize(created, (u, v))
        return True

    def _legalize(self, created: List[Edge], constraint: Edge) -> None:
        xy = self.xy
        budget = 10 * len(created) + 100
        swapped = True
        while swapped and budget > 0:
            swapped = False
            for i, (c, d) in enumerate(created):
                budget -= 1
                if {c, d} == set(constraint) or self.is_fixed(c, d):
                    continue
                quad = self._quad(c, d)
                if quad is None:
                    continue
                e, f = quad
                if in_circle(xy[c], xy[d], xy[e], xy[f]) > 0 and self._convex(c, d, e, f):
                    self._flip(c, d, e, f)
                    created[i] = (e, f)
                    swapped = True

    def faces(self) -> np.ndarray:
        return np.asarray(self.tris, dtype=np.int64).reshape(-1, 3)


# -- providers --

class TriangulationProvider(Protocol):
    name: str
    last_stats: Dict[str, Any]

    def triangulate(self, xy: np.ndarray, constraints: Optional[np.ndarray] = None) -> Optional[np.ndarray]: ...


def _split_on_collinear(xy: np.ndarray, u: int, v: int, eps: float = 1e-9) -> List[Edge]:
    """Break ``u-v`` at every input vertex lying on its open interior."""
    d = xy[v] - xy[u]
    length2 = float(d @ d)
    rel = xy - xy[u]
    cross = rel[:, 0] * d[1] - rel[:, 1] * d[0]
    t = (rel @ d) / length2
    on = (np.abs(cross) <= eps * math.sqrt(length2)) & (t > eps) & (t < 1.0 - eps)
    on[[u, v]] = False
    if not on.any():
        return [(u, v)]
    mids = np.nonzero(on)[0]
    chain = [u] + [int(i) for i in mids[np.argsort(t[mids])]] + [v]
    return list(zip(chain[:-1], chain[1:]))


class DelaunayProvider:
    """scipy Delaunay plus constraint insertion by edge flipping.

    Constraint edges that cannot be forced (crossing an earlier constraint,
    endpoints merged away, flip budget exhausted) are skipped and counted.
    When the constraints form closed rings, triangles whose centroid falls
    outside them (even-odd) are discarded.
    """

    name = "constrained-delaunay"

    def __init__(self, min_constraint_length: float = MIN_CONSTRAINT_LENGTH) -> None:
        self.min_constraint_length = float(min_constraint_length)
        self.last_stats: Dict[str, Any] = {}

    def triangulate(self, xy: np.ndarray, constraints: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
        xy = np.asarray(xy, dtype=np.float64)[:, :2]
        cons = _as_constraints(constraints)
        self.last_stats = {"constraints": 0, "constraint_attempts": 0, "failed_constraints": 0, "filtered_outside": 0}
        try:
            tri = Delaunay(xy)
        except (QhullError, ValueError) as exc:
            _log.warning("Delaunay construction failed: %s", str(exc).splitlines()[0] if str(exc) else exc)
            return None

        remap = np.arange(len(xy))
        if len(tri.coplanar):
            # Duplicate/coincident inputs are left out by qhull; route them to their neighbour vertex.
            remap[tri.coplanar[:, 0]] = tri.coplanar[:, 2]
        mesh = _ConstrainedMesh(xy, tri.simplices)

        requested: List[Edge] = []
        for u, v in cons:
            u, v = int(remap[u]), int(remap[v])
            if u == v or np.linalg.norm(xy[u] - xy[v]) < self.min_constraint_length:
                continue
            requested.extend(_split_on_collinear(xy, u, v))
        for u, v in requested:
            self.last_stats["constraint_attempts"] += 1
            if mesh.insert(u, v):
                self.last_stats["constraints"] += 1
            else:
                self.last_stats["failed_constraints"] += 1
                _log.debug("Skipped constraint edge %d-%d", u, v)

        faces = orient_faces_ccw(xy, mesh.faces())
        req = np.asarray(requested, dtype=np.int64).reshape(-1, 2)
        if len(faces) and _is_closed_edge_set(req):
            centroids = xy[faces].mean(axis=1)
            keep = points_in_polygon(centroids, xy[req[:, 0]], xy[req[:, 1]])
            self.last_stats["filtered_outside"] = int((~keep).sum())
            faces = faces[keep]
        return faces if len(faces) else None


class EarClipProvider:
    """Ear clipping (mapbox_earcut) of the constraint rings, or of the input order."""

    name = "ear-clipping"

    def __init__(self) -> None:
        self.last_stats: Dict[str, Any] = {}

    def triangulate(self, xy: np.ndarray, constraints: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
        xy = np.asarray(xy, dtype=np.float64)[:, :2]
        rings = constraint_rings(_as_constraints(constraints))
        if rings is None:
            rings = [list(range(len(xy)))]
        rings.sort(key=lambda r: abs(signed_area_2d(xy[r])), reverse=True)
        order = np.asarray([i for ring in rings for i in ring], dtype=np.int64)
        ends = np.cumsum([len(r) for r in rings]).astype(np.uint32)
        self.last_stats = {"rings": len(rings)}
        if len(order) < 3:
            return None
        idx = np.asarray(mapbox_earcut.triangulate_float64(xy[order], ends), dtype=np.int64)
        if len(idx) >= 3:
            faces = order[idx.reshape(-1, 3)]
        else:
            outer = rings[0]
            faces = np.asarray([(outer[0], outer[i], outer[i + 1]) for i in range(1, len(outer) - 1)], dtype=np.int64)
            self.last_stats["fan"] = True
        faces = orient_faces_ccw(xy, faces)
        return faces if len(faces) else None


# -- engine --

@dataclass
class TriangulationResult:
    points: np.ndarray                 # (N, 3)
    triangles: np.ndarray              # (M, 3) indices into points, CCW in XY
    provider: str
    stats: Dict[str, Any] = field(default_factory=dict)

    def triangle_array(self) -> np.ndarray:
        return self.points[self.triangles]

    def to_surface(self, **kwargs: Any) -> Surface:
        return Surface(self.triangle_array(), **kwargs)


class TriangulationEngine:
    """Runs providers in order until one yields triangles."""

    def __init__(self, providers: Optional[Sequence[TriangulationProvider]] = None) -> None:
        self.providers: List[TriangulationProvider] = list(providers) if providers is not None else [
            DelaunayProvider(),
            EarClipProvider(),
        ]

    def triangulate(self, points: Any, constraints: Any = None) -> TriangulationResult:
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] not in (2, 3):
            raise InvalidInputError(f"Expected (N, 2) or (N, 3) points, got shape {pts.shape}")
        if pts.shape[1] == 2:
            pts = np.column_stack([pts, np.zeros(len(pts))])
        if len(pts) < 3:
            raise InvalidInputError(f"Triangulation needs at least 3 points, got {len(pts)}")
        cons = _as_constraints(constraints)
        if len(cons) and (cons.min() < 0 or cons.max() >= len(pts)):
            raise InvalidInputError("Constraint index out of range")

        for provider in self.providers:
            faces = provider.triangulate(pts[:, :2], cons if len(cons) else None)
            if faces is not None and len(faces):
                stats = dict(provider.last_stats)
                stats["algorithm"] = provider.name
                stats["triangle_count"] = int(len(faces))
                _log.info("Triangulation: %s produced %d triangles", provider.name, len(faces))
                return TriangulationResult(points=pts, triangles=faces, provider=provider.name, stats=stats)
            _log.warning("Triangulation: %s produced no triangles; trying next provider", provider.name)
        raise TriangulationError("No triangulation provider produced triangles")


def triangulate_polygon(vertices: Any, engine: Optional[TriangulationEngine] = None) -> TriangulationResult:
    """Triangulate a simple polygon using its boundary as constraints.

    Vertices are reordered counter-clockwise first; the returned ``points``
    reflect that order.
    """
    pts = np.asarray(vertices, dtype=np.float64)
    if len(pts) < 3:
        raise InvalidInputError(f"Polygon needs at least 3 vertices, got {len(pts)}")
    if signed_area_2d(pts[:, :2]) < 0:
        pts = pts[::-1].copy()
    n = len(pts)
    ring = np.column_stack([np.arange(n), (np.arange(n) + 1) % n])
    return (engine or TriangulationEngine()).triangulate(pts, ring)
