from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple
import numpy as np

from .utils import get_logger

_log = get_logger()


@dataclass(frozen=True)
class CullStats:
    removed_by_edge: int = 0
    removed_by_angle: int = 0
    kept: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"culledByEdge": self.removed_by_edge, "culledByAngle": self.removed_by_angle, "kept": self.kept}


def edge_lengths(tris: np.ndarray, use_3d: bool = False) -> np.ndarray:
    """``(N, 3)`` lengths of edges v0-v1, v1-v2, v2-v0."""
    dims = 3 if use_3d else 2
    pts = tris[:, :, :dims]
    return np.linalg.norm(pts[:, [1, 2, 0]] - pts, axis=2)


def min_angles_deg(tris: np.ndarray, use_3d: bool = False) -> np.ndarray:
    """Smallest interior angle per triangle via the law of cosines."""
    lengths = edge_lengths(tris, use_3d)
    a, b, c = lengths[:, 0], lengths[:, 1], lengths[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        # angle opposite each edge: opposite c is between a and b, etc.
        cos_c = (a * a + b * b - c * c) / (2.0 * a * b)
        cos_a = (b * b + c * c - a * a) / (2.0 * b * c)
        cos_b = (c * c + a * a - b * b) / (2.0 * c * a)
    cosines = np.clip(np.stack([cos_a, cos_b, cos_c], axis=1), -1.0, 1.0)
    angles = np.degrees(np.arccos(cosines))
    angles = np.where(np.isfinite(angles), angles, 0.0)
    return angles.min(axis=1)


def cull_triangles(
    tris: np.ndarray,
    *,
    max_edge_length: float = 0.0,
    min_angle_deg: float = 0.0,
    use_3d_length: bool = False,
    use_3d_angle: bool = False,
) -> Tuple[np.ndarray, CullStats]:
    """Drop triangles with a too-long edge or a too-small interior angle.

    A threshold of zero (or below) disables that filter. A triangle failing
    both tests is counted once, under the edge reason.
    """
    tris = np.asarray(tris, dtype=np.float64).reshape(-1, 3, 3)
    if len(tris) == 0:
        return tris, CullStats()
    edge_fail = np.zeros(len(tris), dtype=bool)
    angle_fail = np.zeros(len(tris), dtype=bool)
    if max_edge_length > 0:
        edge_fail = (edge_lengths(tris, use_3d_length) > max_edge_length).any(axis=1)
    if min_angle_deg > 0:
        angle_fail = min_angles_deg(tris, use_3d_angle) < min_angle_deg
    keep = ~(edge_fail | angle_fail)
    stats = CullStats(
        removed_by_edge=int(edge_fail.sum()),
        removed_by_angle=int((angle_fail & ~edge_fail).sum()),
        kept=int(keep.sum()),
    )
    if stats.removed_by_edge or stats.removed_by_angle:
        _log.debug("Culled %d by edge length, %d by angle", stats.removed_by_edge, stats.removed_by_angle)
    return tris[keep], stats
