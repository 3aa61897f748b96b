from __future__ import annotations
from typing import List, Sequence, Tuple

from .tolerance import PLANE_EPSILON, POINT_MERGE_EPSILON

Vec3 = Tuple[float, float, float]


def sub(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def lerp(a: Sequence[float], b: Sequence[float], t: float) -> Vec3:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t, a[2] + (b[2] - a[2]) * t)


def classify(distance: float, eps: float = PLANE_EPSILON) -> int:
    """-1 below, 0 on, +1 above the plane."""
    if distance > eps:
        return 1
    if distance < -eps:
        return -1
    return 0


def plane_crossings(
    verts: Sequence[Sequence[float]],
    distances: Sequence[float],
    eps: float = PLANE_EPSILON,
    merge_eps: float = POINT_MERGE_EPSILON,
) -> List[Vec3]:
    """Points where a triangle meets a plane, given signed vertex distances.

    Returns nothing unless the triangle has vertices strictly on both sides,
    so faces merely touching the plane (at a vertex or along an edge) are
    ignored. Near-identical points are merged.
    """
    signs = [classify(d, eps) for d in distances]
    if not (min(signs) < 0 < max(signs)):
        return []
    points: List[Vec3] = []
    for i in range(3):
        j = (i + 1) % 3
        si, sj = signs[i], signs[j]
        if si == 0:
            points.append(tuple(float(c) for c in verts[i]))  # type: ignore[arg-type]
        elif si * sj < 0:
            t = distances[i] / (distances[i] - distances[j])
            points.append(lerp(verts[i], verts[j], t))
    unique: List[Vec3] = []
    for p in points:
        if all((p[0] - q[0]) ** 2 + (p[1] - q[1]) ** 2 + (p[2] - q[2]) ** 2 >= merge_eps for q in unique):
            unique.append(p)
    return unique
