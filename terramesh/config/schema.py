from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..core.entities import CONTOUR_LAYER, DEFAULT_COLOR, DEFAULT_LINE_WIDTH
from ..core.extrusion import DEFAULT_DEPTH
from ..core.shroud import DEFAULT_END_ANGLE_DEG, DEFAULT_ITERATIONS
from ..core.tolerance import DEDUP_TOLERANCE


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# -- task payloads --

class CullOptions(_Payload):
    max_edge_length: float = Field(0.0, ge=0.0)
    min_angle_deg: float = Field(0.0, ge=0.0, lt=60.0)
    use_3d_length: bool = False
    use_3d_angle: bool = False


class TriangulatePayload(CullOptions):
    points: Any
    constraints: List[Tuple[int, int]] = Field(default_factory=list)
    name: Optional[str] = None


class MeshFromPointsPayload(CullOptions):
    points: Any
    max_points: int = Field(0, ge=0)
    xyz_tolerance: float = Field(DEDUP_TOLERANCE, ge=0.0)
    name: Optional[str] = None


class IntersectPayload(_Payload):
    surfaces: List[Any] = Field(min_length=2)
    vertex_spacing: float = Field(0.0, ge=0.0)


class ContourOptions(_Payload):
    interval: float = Field(gt=0.0)
    min_z: Optional[float] = None
    max_z: Optional[float] = None
    vertex_spacing: float = Field(0.0, ge=0.0)
    closed_polygons: bool = False
    layer_id: str = CONTOUR_LAYER
    color: str = DEFAULT_COLOR
    line_width: float = DEFAULT_LINE_WIDTH

    @model_validator(mode="after")
    def _check_range(self) -> "ContourOptions":
        if self.min_z is not None and self.max_z is not None and self.max_z < self.min_z:
            raise ValueError("max_z must not be below min_z")
        return self


class ContourPayload(ContourOptions):
    surface: Any


class ExtrudeOptions(_Payload):
    depth: float = DEFAULT_DEPTH
    steps: int = Field(1, ge=1)
    name: Optional[str] = None


class ExtrudePayload(ExtrudeOptions):
    vertices: Any


class ShroudSource(_Payload):
    x: float
    y: float
    z: float = 0.0
    max_distance: float = Field(0.0, ge=0.0)
    max_velocity: float = Field(gt=0.0)
    id: Optional[str] = None


class ShroudOptions(_Payload):
    iterations: int = Field(DEFAULT_ITERATIONS, gt=0)
    end_angle_deg: float = Field(DEFAULT_END_ANGLE_DEG, gt=0.0, le=90.0)
    extend_below_collar: float = Field(0.0, ge=0.0)
    algorithm: str = "richardsMoore"
    K: Optional[float] = None
    factor_of_safety: Optional[float] = None
    stem_eject_angle_deg: Optional[float] = None
    holes_skipped: int = 0
    name: Optional[str] = None


class ShroudPayload(ShroudOptions):
    sources: List[ShroudSource] = Field(min_length=1)


# -- job files --

class ContourJob(ContourOptions):
    kind: Literal["contour"]
    surface: Path


class ShroudJob(ShroudOptions):
    kind: Literal["shroud"]
    sources: List[ShroudSource] = Field(default_factory=list)
    sources_path: Optional[Path] = None

    @model_validator(mode="after")
    def _need_sources(self) -> "ShroudJob":
        if not self.sources and self.sources_path is None:
            raise ValueError("Shroud job requires 'sources' or 'sources_path'")
        return self


class ExtrudeJob(ExtrudeOptions):
    kind: Literal["extrude"]
    polygon: List[Tuple[float, ...]] = Field(default_factory=list)
    polygon_path: Optional[Path] = None

    @model_validator(mode="after")
    def _need_polygon(self) -> "ExtrudeJob":
        if not self.polygon and self.polygon_path is None:
            raise ValueError("Extrude job requires 'polygon' or 'polygon_path'")
        return self


class MeshJob(CullOptions):
    kind: Literal["mesh"]
    points: Path
    max_points: int = Field(0, ge=0)
    xyz_tolerance: float = Field(DEDUP_TOLERANCE, ge=0.0)
    name: Optional[str] = None


class IntersectJob(_Payload):
    kind: Literal["intersect"]
    surfaces: List[Path] = Field(min_length=2)
    vertex_spacing: float = Field(0.0, ge=0.0)


class TriangulateJob(CullOptions):
    kind: Literal["triangulate"]
    points: Path
    boundary: bool = False
    name: Optional[str] = None


JobSpec = Annotated[
    Union[ContourJob, ShroudJob, ExtrudeJob, MeshJob, IntersectJob, TriangulateJob],
    Field(discriminator="kind"),
]

SURFACE_FORMATS = {"ply", "npz", "las", "laz"}
POLYLINE_FORMATS = {"json", "npz"}


class OutputConfig(BaseModel):
    path: Path
    format: Optional[Literal["ply", "npz", "las", "laz", "json"]] = None

    @model_validator(mode="after")
    def _infer_format(self) -> "OutputConfig":
        if self.format is None:
            ext = self.path.suffix.lower().lstrip(".")
            if ext not in SURFACE_FORMATS | POLYLINE_FORMATS:
                raise ValueError(f"Unsupported output extension '.{ext}'")
            self.format = ext  # type: ignore[assignment]
        return self


class JobConfig(BaseModel):
    job: JobSpec
    output: OutputConfig

    @model_validator(mode="after")
    def _check_output(self) -> "JobConfig":
        polyline_job = self.job.kind in {"contour", "intersect"}
        allowed = POLYLINE_FORMATS if polyline_job else SURFACE_FORMATS
        if self.output.format not in allowed:
            raise ValueError(f"'{self.job.kind}' jobs write {sorted(allowed)}, not '{self.output.format}'")
        return self


def _resolve(base: Path, p: Optional[Path]) -> Optional[Path]:
    if p is None or p.is_absolute():
        return p
    return (base / p).resolve()


def load_config(path: str | Path) -> JobConfig:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping.")
    cfg = JobConfig.model_validate(data)
    base = path.parent
    cfg.output.path = _resolve(base, cfg.output.path)  # type: ignore[assignment]
    job = cfg.job
    for attr in ("surface", "points", "sources_path", "polygon_path"):
        if hasattr(job, attr):
            setattr(job, attr, _resolve(base, getattr(job, attr)))
    if isinstance(job, IntersectJob):
        job.surfaces = [_resolve(base, p) for p in job.surfaces]  # type: ignore[misc]
    return cfg
