from __future__ import annotations
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set, Tuple
import math
import numpy as np

from .geometry import Point3D, Segment, Surface, triangle_bounds
from .predicates import cross, dot, lerp, sub
from .tolerance import INTERSECTION_EPSILON, POINT_MERGE_EPSILON
from .utils import get_logger

_log = get_logger()

ProgressFn = Callable[[float, str], None]


class ContactKind(Enum):
    NONE = "none"
    COPLANAR = "coplanar"
    SEGMENT = "segment"


def _plane_interval(
    verts: Sequence[Sequence[float]],
    distances: Sequence[float],
    merge_eps: float = POINT_MERGE_EPSILON,
) -> List[Tuple[float, float, float]]:
    """Where a triangle meets the other triangle's plane.

    Distances are already snapped to zero within tolerance. Vertices on the
    plane count, so an edge lying in the plane gives that edge and a single
    touching vertex gives one point.
    """
    points: List[Tuple[float, float, float]] = []
    for i in range(3):
        j = (i + 1) % 3
        di, dj = distances[i], distances[j]
        if di == 0.0:
            points.append((float(verts[i][0]), float(verts[i][1]), float(verts[i][2])))
        elif dj != 0.0 and (di > 0) != (dj > 0):
            points.append(lerp(verts[i], verts[j], di / (di - dj)))
    unique: List[Tuple[float, float, float]] = []
    for p in points:
        if all(sum((p[k] - q[k]) ** 2 for k in range(3)) >= merge_eps for q in unique):
            unique.append(p)
    return unique


def intersect_triangles(
    t1: Sequence[Sequence[float]],
    t2: Sequence[Sequence[float]],
    eps: float = INTERSECTION_EPSILON,
) -> Tuple[ContactKind, Optional[Segment]]:
    """Triangle-triangle test by plane separation and interval overlap.

    Each triangle is clipped against the other's plane, giving two segments on
    the planes' common line; their overlap along that line is the answer.
    Coplanar pairs are reported but produce no segment.
    """
    a0, a1, a2 = t1
    b0, b1, b2 = t2
    n2 = cross(sub(b1, b0), sub(b2, b0))
    n1 = cross(sub(a1, a0), sub(a2, a0))
    len1 = math.sqrt(dot(n1, n1))
    len2 = math.sqrt(dot(n2, n2))
    if len1 <= eps or len2 <= eps:
        return ContactKind.NONE, None
    n1 = (n1[0] / len1, n1[1] / len1, n1[2] / len1)
    n2 = (n2[0] / len2, n2[1] / len2, n2[2] / len2)

    d2 = -dot(n2, b0)
    du = [dot(n2, v) + d2 for v in t1]
    du = [0.0 if abs(d) < eps else d for d in du]
    if all(d > 0 for d in du) or all(d < 0 for d in du):
        return ContactKind.NONE, None
    if all(d == 0.0 for d in du):
        return ContactKind.COPLANAR, None

    d1 = -dot(n1, a0)
    dv = [dot(n1, v) + d1 for v in t2]
    dv = [0.0 if abs(d) < eps else d for d in dv]
    if all(d > 0 for d in dv) or all(d < 0 for d in dv):
        return ContactKind.NONE, None

    seg1 = _plane_interval(t1, du)
    seg2 = _plane_interval(t2, dv)
    if len(seg1) != 2 or len(seg2) != 2:
        return ContactKind.NONE, None

    direction = cross(n1, n2)
    s1 = sorted(seg1, key=lambda p: dot(direction, p))
    s2 = sorted(seg2, key=lambda p: dot(direction, p))
    lo = s1[0] if dot(direction, s1[0]) >= dot(direction, s2[0]) else s2[0]
    hi = s1[1] if dot(direction, s1[1]) <= dot(direction, s2[1]) else s2[1]
    if dot(direction, hi) - dot(direction, lo) <= eps:
        return ContactKind.NONE, None
    return ContactKind.SEGMENT, Segment(Point3D(*lo), Point3D(*hi))


def _snap(p: Sequence[float], decimals: int = 9) -> Tuple[float, ...]:
    return tuple(round(float(c), decimals) + 0.0 for c in p)


def intersect_surfaces(
    a: Surface,
    b: Surface,
    *,
    eps: float = INTERSECTION_EPSILON,
    progress: Optional[ProgressFn] = None,
) -> List[Segment]:
    """All intersection segments between two surfaces, unordered.

    Surfaces whose bounding boxes do not overlap return immediately. A segment
    found twice (an edge shared by two faces lying in the other surface) is
    kept once.
    """
    if len(a) == 0 or len(b) == 0 or a.bbox is None or b.bbox is None:
        return []
    if not a.bbox.overlaps(b.bbox, pad=eps):
        _log.debug("Surfaces %s and %s do not overlap", a.id, b.id)
        return []

    tris_a = np.asarray(a.triangles)
    tris_b = np.asarray(b.triangles)
    min_b, max_b = triangle_bounds(tris_b)
    min_a, max_a = triangle_bounds(tris_a)
    tb_list = tris_b.tolist()

    segments: List[Segment] = []
    seen: Set[Tuple[Tuple[float, ...], Tuple[float, ...]]] = set()
    coplanar = 0
    step = max(1, len(tris_a) // 20)
    for i, ta in enumerate(tris_a.tolist()):
        mask = np.all(max_b >= min_a[i] - eps, axis=1) & np.all(min_b <= max_a[i] + eps, axis=1)
        for j in np.nonzero(mask)[0]:
            kind, seg = intersect_triangles(ta, tb_list[j], eps)
            if kind is ContactKind.SEGMENT and seg is not None:
                key = tuple(sorted((_snap(seg.p0), _snap(seg.p1))))
                if key not in seen:
                    seen.add(key)
                    segments.append(seg)
            elif kind is ContactKind.COPLANAR:
                coplanar += 1
        if progress is not None and i % step == 0:
            progress(100.0 * i / len(tris_a), f"Intersecting triangle {i}/{len(tris_a)}")
    if coplanar:
        _log.debug("Skipped %d coplanar triangle pairs", coplanar)
    _log.info("Intersection %s x %s: %d segments", a.name, b.name, len(segments))
    return segments
