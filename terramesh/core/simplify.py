from __future__ import annotations
import numpy as np

from .geometry import Polyline


def simplify_polyline(polyline: Polyline, spacing: float) -> Polyline:
    """Keep vertices at least ``spacing`` from the previously kept one.

    The first and last vertices always survive, so a closed polyline stays
    closed. A closed loop that would be left with fewer than three distinct
    vertices is dropped (an empty polyline is returned). ``spacing <= 0``
    returns the input unchanged.
    """
    if spacing <= 0 or len(polyline) <= 2:
        return polyline
    pts = polyline.points
    kept = [0]
    last = pts[0]
    for i in range(1, len(pts) - 1):
        if np.linalg.norm(pts[i] - last) >= spacing:
            kept.append(i)
            last = pts[i]
    kept.append(len(pts) - 1)
    if len(kept) == len(pts):
        return polyline
    if polyline.closed and len(kept) < 4:
        return Polyline(pts[:0], polyline.tolerance)
    return Polyline(pts[kept], polyline.tolerance)
