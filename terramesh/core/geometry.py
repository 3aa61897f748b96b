from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple
import uuid
import numpy as np

from .tolerance import CHAIN_TOLERANCE, DEGENERATE_AREA


class Point3D(NamedTuple):
    x: float
    y: float
    z: float = 0.0

    def to_record(self) -> Dict[str, float]:
        return {"x": float(self.x), "y": float(self.y), "z": float(self.z)}


class Triangle(NamedTuple):
    v0: Point3D
    v1: Point3D
    v2: Point3D


class Segment(NamedTuple):
    """Intersection edge; endpoint order carries no meaning."""
    p0: Point3D
    p1: Point3D

    @property
    def length(self) -> float:
        return float(np.linalg.norm(np.subtract(self.p1, self.p0)))


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    min_y: float
    min_z: float
    max_x: float
    max_y: float
    max_z: float

    @classmethod
    def from_points(cls, xyz: np.ndarray) -> "BoundingBox":
        xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        if len(xyz) == 0:
            raise ValueError("Cannot bound an empty point set")
        mn = xyz.min(axis=0)
        mx = xyz.max(axis=0)
        return cls(float(mn[0]), float(mn[1]), float(mn[2]), float(mx[0]), float(mx[1]), float(mx[2]))

    def overlaps(self, other: "BoundingBox", pad: float = 0.0) -> bool:
        return not (
            self.max_x + pad < other.min_x or other.max_x + pad < self.min_x
            or self.max_y + pad < other.min_y or other.max_y + pad < self.min_y
            or self.max_z + pad < other.min_z or other.max_z + pad < self.min_z
        )

    def to_record(self) -> Dict[str, float]:
        return {
            "minX": self.min_x, "minY": self.min_y, "minZ": self.min_z,
            "maxX": self.max_x, "maxY": self.max_y, "maxZ": self.max_z,
        }


@dataclass(frozen=True, eq=False)
class Polyline:
    """Ordered vertex path. Closed iff first and last vertex coincide within ``tolerance``."""
    points: np.ndarray                 # (K, 3), read-only
    tolerance: float = CHAIN_TOLERANCE

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64).reshape(-1, 3)
        pts.flags.writeable = False
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def closed(self) -> bool:
        if len(self.points) < 3:
            return False
        return bool(np.linalg.norm(self.points[-1] - self.points[0]) <= self.tolerance)

    @property
    def length(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return float(np.linalg.norm(np.diff(self.points, axis=0), axis=1).sum())

    def to_points(self) -> List[Point3D]:
        return [Point3D(float(x), float(y), float(z)) for x, y, z in self.points]

    def to_record(self) -> Dict[str, Any]:
        return {"points": [p.to_record() for p in self.to_points()], "closed": self.closed}


def as_triangle_array(triangles: Any) -> np.ndarray:
    arr = np.asarray(triangles, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 3, 3), dtype=np.float64)
    return arr.reshape(-1, 3, 3)


def face_normals(tris: np.ndarray) -> np.ndarray:
    """Unnormalised face normals ``(v1 - v0) x (v2 - v0)``."""
    return np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])


def non_degenerate_mask(tris: np.ndarray, eps: float = DEGENERATE_AREA) -> np.ndarray:
    finite = np.isfinite(tris).all(axis=(1, 2))
    safe = np.where(np.isfinite(tris), tris, 0.0)
    twice_area = np.linalg.norm(face_normals(safe), axis=1)
    return finite & (twice_area > eps)


def signed_area_2d(xy: np.ndarray) -> float:
    """Shoelace area of a closed ring; positive when counter-clockwise."""
    xy = np.asarray(xy, dtype=np.float64)
    x = xy[:, 0]
    y = xy[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def signed_volume(tris: np.ndarray) -> float:
    """Sum of scalar triple products / 6; positive for outward-facing closed meshes."""
    if len(tris) == 0:
        return 0.0
    triple = np.einsum("ij,ij->i", tris[:, 0], np.cross(tris[:, 1], tris[:, 2]))
    return float(triple.sum() / 6.0)


def flip_winding(tris: np.ndarray) -> np.ndarray:
    return tris[:, [0, 2, 1], :]


def triangle_bounds(tris: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    return tris.min(axis=1), tris.max(axis=1)


def weld(tris: np.ndarray, decimals: int = 9) -> Tuple[np.ndarray, np.ndarray]:
    """Collapse a triangle soup into shared vertices and ``(M, 3)`` faces."""
    flat = tris.reshape(-1, 3)
    if len(flat) == 0:
        return np.zeros((0, 3), dtype=np.float64), np.zeros((0, 3), dtype=np.int64)
    _, first, inverse = np.unique(np.round(flat, decimals), axis=0, return_index=True, return_inverse=True)
    vertices = flat[first]
    faces = np.asarray(inverse, dtype=np.int64).reshape(-1, 3)
    return vertices, faces


def compute_vertex_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    normals = np.zeros_like(vertices, dtype=np.float64)
    if len(faces) == 0:
        return normals
    tris = vertices[faces]
    fn = face_normals(tris)
    lens = np.linalg.norm(fn, axis=1, keepdims=True)
    fn = np.divide(fn, np.clip(lens, 1e-12, None), out=np.zeros_like(fn), where=lens > 0)
    for k in range(3):
        np.add.at(normals, faces[:, k], fn)
    lens = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, np.clip(lens, 1e-12, None), out=np.zeros_like(normals), where=lens > 0)


class Surface:
    """Canonical triangle container exchanged between components.

    Triangles are stored as a ``(N, 3, 3)`` float64 array. The bounding box is
    derived and refreshed on every assignment to :attr:`triangles`.
    """

    def __init__(
        self,
        triangles: Any,
        *,
        surface_id: Optional[str] = None,
        name: Optional[str] = None,
        visible: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.id = surface_id or f"surface_{uuid.uuid4().hex[:8]}"
        self.name = name or self.id
        self.visible = visible
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._triangles = np.zeros((0, 3, 3), dtype=np.float64)
        self._bbox: Optional[BoundingBox] = None
        self.triangles = triangles

    @property
    def triangles(self) -> np.ndarray:
        return self._triangles

    @triangles.setter
    def triangles(self, value: Any) -> None:
        arr = as_triangle_array(value).copy()
        arr.flags.writeable = False
        self._triangles = arr
        self._bbox = BoundingBox.from_points(arr.reshape(-1, 3)) if len(arr) else None

    @property
    def bbox(self) -> Optional[BoundingBox]:
        return self._bbox

    def __len__(self) -> int:
        return len(self._triangles)

    def indexed(self) -> Tuple[np.ndarray, np.ndarray]:
        return weld(self._triangles)

    def points(self) -> np.ndarray:
        return self.indexed()[0]

    def iter_triangles(self) -> List[Triangle]:
        return [Triangle(*(Point3D(*map(float, v)) for v in tri)) for tri in self._triangles]

    def to_record(self) -> Dict[str, Any]:
        vertices = self.points()
        return {
            "id": self.id,
            "name": self.name,
            "triangles": [
                {"vertices": [Point3D(*map(float, v)).to_record() for v in tri]}
                for tri in self._triangles
            ],
            "points": [Point3D(*map(float, v)).to_record() for v in vertices],
            "boundingBox": self._bbox.to_record() if self._bbox is not None else None,
            "visible": self.visible,
            "metadata": dict(self.metadata),
        }


@dataclass
class HeightGrid:
    """Regular elevation grid; row ``r`` sits at ``origin_y + r * spacing``."""
    origin_x: float
    origin_y: float
    spacing: float
    elevation: np.ndarray                 # (rows, cols)
    inside: np.ndarray                    # (rows, cols) bool
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.elevation.shape  # type: ignore[return-value]

    def xy(self, row: int, col: int) -> Tuple[float, float]:
        return self.origin_x + col * self.spacing, self.origin_y + row * self.spacing

