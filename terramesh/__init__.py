"""Terramesh – surface geometry for terrain and mine planning.

Components:
- Surface, Polyline & friends (core.geometry)
- Triangle extraction from loose surface representations (core.extraction)
- Constrained triangulation with provider fallback (core.triangulation)
- Surface/surface intersection and segment chaining (core.intersector, core.chaining)
- Contour slicing, polygon extrusion, ballistic shroud (core.contour, core.extrusion, core.shroud)
- Drawing entities for contour output (core.entities)
- Background task runner with progress messages (runtime.tasks)

Heavy operations raise :class:`~terramesh.core.errors.TerrameshError`
subclasses; the task runner turns those into error messages.
"""

from .core.geometry import BoundingBox, Point3D, Polyline, Segment, Surface, Triangle
from .core.errors import (
    InvalidInputError,
    ResourceLimitError,
    TaskCancelledError,
    TaskFailedError,
    TerrameshError,
    TriangulationError,
    WorkerBusyError,
)
from .core.extraction import extract_triangles, to_surface
from .core.triangulation import DelaunayProvider, EarClipProvider, TriangulationEngine, triangulate_polygon
from .core.culling import cull_triangles
from .core.intersector import intersect_surfaces, intersect_triangles
from .core.chaining import chain_segments
from .core.simplify import simplify_polyline
from .core.contour import generate_contours, slice_triangle
from .core.extrusion import extrude_polygon
from .core.shroud import BallisticSource, generate_shroud
from .core.pointmesh import MeshFromPointsOptions, mesh_from_points
from .core.exporter import LasWriter, NpzWriter, PlyWriter, JsonWriter
from .runtime.tasks import TaskRunner, TaskWorker, run_inline
