from __future__ import annotations
from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple
import math
import numpy as np

from .geometry import Polyline, Segment
from .tolerance import CHAIN_TOLERANCE
from .utils import get_logger

_log = get_logger()

Cell = Tuple[int, int, int]


class _EndpointIndex:
    """Spatial hash over segment endpoints with cell size equal to the tolerance."""

    def __init__(self, segments: np.ndarray, tolerance: float) -> None:
        self.segments = segments
        self.tolerance = tolerance
        self.cell = max(tolerance, 1e-12)
        self.buckets: Dict[Cell, List[Tuple[int, int]]] = {}
        for i, seg in enumerate(segments):
            for end in (0, 1):
                self.buckets.setdefault(self._key(seg[end]), []).append((i, end))

    def _key(self, p: np.ndarray) -> Cell:
        c = self.cell
        return (int(math.floor(p[0] / c)), int(math.floor(p[1] / c)), int(math.floor(p[2] / c)))

    def first_match(self, p: np.ndarray, consumed: np.ndarray) -> Optional[Tuple[int, int]]:
        """Lowest-index unconsumed segment with an endpoint within tolerance of ``p``."""
        kx, ky, kz = self._key(p)
        best: Optional[Tuple[int, int]] = None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for dz in (-1, 0, 1):
                    for i, end in self.buckets.get((kx + dx, ky + dy, kz + dz), ()):
                        if consumed[i] or (best is not None and i >= best[0]):
                            continue
                        if np.linalg.norm(self.segments[i, end] - p) <= self.tolerance:
                            best = (i, end)
        return best


def chain_segments(segments: Sequence[Segment] | np.ndarray, tolerance: float = CHAIN_TOLERANCE) -> List[Polyline]:
    """Greedily join unordered segments into polylines.

    Seeds are taken in input order; each end is extended with the first
    (lowest-index) unconsumed segment sharing an endpoint within
    ``tolerance``. A chain that comes back to its own start is closed, its last
    vertex repeating the first. Isolated segments become 2-point polylines.
    """
    segs = np.asarray(segments, dtype=np.float64).reshape(-1, 2, 3)
    if len(segs) == 0:
        return []
    index = _EndpointIndex(segs, tolerance)
    consumed = np.zeros(len(segs), dtype=bool)
    out: List[Polyline] = []

    for seed in range(len(segs)):
        if consumed[seed]:
            continue
        consumed[seed] = True
        chain = deque([segs[seed, 0], segs[seed, 1]])
        closed = False

        while True:
            hit = index.first_match(chain[-1], consumed)
            if hit is None:
                break
            i, end = hit
            consumed[i] = True
            far = segs[i, 1 - end]
            if np.linalg.norm(far - chain[0]) <= tolerance:
                chain.append(chain[0])
                closed = True
                break
            chain.append(far)

        while not closed:
            hit = index.first_match(chain[0], consumed)
            if hit is None:
                break
            i, end = hit
            consumed[i] = True
            far = segs[i, 1 - end]
            if np.linalg.norm(far - chain[-1]) <= tolerance:
                chain.appendleft(chain[-1])
                closed = True
                break
            chain.appendleft(far)

        out.append(Polyline(np.asarray(chain), tolerance))

    _log.debug("Chained %d segments into %d polylines", len(segs), len(out))
    return out
