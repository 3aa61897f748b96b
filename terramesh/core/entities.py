from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Tuple, Union
import uuid
import numpy as np

from .errors import InvalidInputError
from .tolerance import WELD_TOLERANCE
from .utils import format_elevation, get_logger

_log = get_logger()

DEFAULT_COLOR = "#FFCC00"
DEFAULT_LINE_WIDTH = 2.0
CONTOUR_LAYER = "CONTOUR"


@dataclass(frozen=True)
class EntityVertex:
    x: float
    y: float
    z: float = 0.0
    point_id: int = 1
    color: str = DEFAULT_COLOR
    line_width: float = DEFAULT_LINE_WIDTH
    closed: bool = False

    @property
    def xyz(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_record(self, entity_name: str) -> Dict[str, Any]:
        return {
            "entityName": entity_name,
            "pointID": self.point_id,
            "x": self.x, "y": self.y, "z": self.z,
            "color": self.color,
            "lineWidth": self.line_width,
            "closed": self.closed,
        }


@dataclass(frozen=True)
class PointEntity:
    name: str
    layer_id: str
    vertices: Tuple[EntityVertex, ...]
    entity_type: Literal["point"] = "point"


@dataclass(frozen=True)
class LineEntity:
    name: str
    layer_id: str
    vertices: Tuple[EntityVertex, ...]
    entity_type: Literal["line"] = "line"


@dataclass(frozen=True)
class PolyEntity:
    """Closed polygon; the closing edge is implied, the first vertex is not repeated."""
    name: str
    layer_id: str
    vertices: Tuple[EntityVertex, ...]
    entity_type: Literal["poly"] = "poly"


@dataclass(frozen=True)
class TextEntity:
    name: str
    layer_id: str
    position: EntityVertex
    text: str
    entity_type: Literal["text"] = "text"


Entity = Union[PointEntity, LineEntity, PolyEntity, TextEntity]
VertexEntity = Union[PointEntity, LineEntity, PolyEntity]


def _renumber(vertices: Sequence[EntityVertex], closed: bool) -> Tuple[EntityVertex, ...]:
    return tuple(replace(v, point_id=i + 1, closed=closed) for i, v in enumerate(vertices))


def to_point(entity: VertexEntity) -> PointEntity:
    return PointEntity(entity.name, entity.layer_id, _renumber(entity.vertices, False))


def to_line(entity: VertexEntity) -> LineEntity:
    return LineEntity(entity.name, entity.layer_id, _renumber(entity.vertices, False))


def to_poly(entity: VertexEntity) -> PolyEntity:
    return PolyEntity(entity.name, entity.layer_id, _renumber(entity.vertices, True))


def to_record(entity: Entity) -> Dict[str, Any]:
    if isinstance(entity, TextEntity):
        data = [dict(entity.position.to_record(entity.name), text=entity.text)]
    else:
        data = [v.to_record(entity.name) for v in entity.vertices]
    return {"entityType": entity.entity_type, "name": entity.name, "layerId": entity.layer_id, "data": data}


# -- registry --

class EntityRegistry:
    """Named drawing entities owned by the caller and passed explicitly."""

    def __init__(self, entities: Optional[Sequence[Entity]] = None) -> None:
        self._entities: Dict[str, Entity] = {}
        for e in entities or ():
            self.add(e)

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def names(self) -> List[str]:
        return list(self._entities)

    def get(self, name: str) -> Entity:
        try:
            return self._entities[name]
        except KeyError:
            raise InvalidInputError(f"Unknown entity '{name}'") from None

    def unique_name(self, base: str) -> str:
        if base not in self._entities:
            return base
        n = 1
        while f"{base}_{n}" in self._entities:
            n += 1
        return f"{base}_{n}"

    def add(self, entity: Entity, *, rename: bool = False) -> Entity:
        if entity.name in self._entities:
            if not rename:
                raise InvalidInputError(f"Entity '{entity.name}' already exists")
            entity = replace(entity, name=self.unique_name(entity.name))
        self._entities[entity.name] = entity
        return entity

    def put(self, entity: Entity) -> None:
        self._entities[entity.name] = entity

    def remove(self, name: str) -> Entity:
        entity = self.get(name)
        del self._entities[name]
        return entity


# -- validation --

class ValidationAction(Enum):
    KEEP = "keep"
    REMOVE = "remove"
    TO_POINT = "to_point"
    TO_LINE = "to_line"


@dataclass(frozen=True)
class ValidationResult:
    name: str
    action: ValidationAction
    message: str = ""


MIN_VERTICES = {"line": 2, "poly": 3}


def validate_entity(entity: Entity) -> ValidationResult:
    if isinstance(entity, TextEntity):
        return ValidationResult(entity.name, ValidationAction.KEEP)
    n = len(entity.vertices)
    if n == 0:
        return ValidationResult(entity.name, ValidationAction.REMOVE, "no vertices")
    minimum = MIN_VERTICES.get(entity.entity_type, 1)
    if n >= minimum:
        return ValidationResult(entity.name, ValidationAction.KEEP)
    if n == 1:
        return ValidationResult(entity.name, ValidationAction.TO_POINT, f"{entity.entity_type} with 1 vertex")
    return ValidationResult(entity.name, ValidationAction.TO_LINE, f"{entity.entity_type} with {n} vertices")


def apply_validation(registry: EntityRegistry) -> List[ValidationResult]:
    """Remove or downgrade entities with too few vertices; returns the non-trivial actions."""
    results: List[ValidationResult] = []
    for entity in registry:
        result = validate_entity(entity)
        if result.action is ValidationAction.KEEP:
            continue
        if result.action is ValidationAction.REMOVE:
            registry.remove(entity.name)
        elif result.action is ValidationAction.TO_POINT:
            registry.put(to_point(entity))  # type: ignore[arg-type]
        else:
            registry.put(to_line(entity))  # type: ignore[arg-type]
        _log.debug("Entity %s: %s (%s)", entity.name, result.action.value, result.message)
        results.append(result)
    return results


# -- editing --

def _vertex_entity(registry: EntityRegistry, name: str, kind: type) -> Any:
    entity = registry.get(name)
    if not isinstance(entity, kind):
        raise InvalidInputError(f"Entity '{name}' is a {entity.entity_type}, expected {kind.__name__}")
    return entity


def split_line(registry: EntityRegistry, name: str, index: int) -> Tuple[LineEntity, LineEntity]:
    """Split an open line at an interior vertex; both halves keep that vertex."""
    line: LineEntity = _vertex_entity(registry, name, LineEntity)
    n = len(line.vertices)
    if not 0 < index < n - 1:
        raise InvalidInputError(f"Split index {index} must be an interior vertex of '{name}' (1..{n - 2})")
    registry.remove(name)
    first = LineEntity(registry.unique_name(f"{name}_A"), line.layer_id, _renumber(line.vertices[: index + 1], False))
    registry.add(first)
    second = LineEntity(registry.unique_name(f"{name}_B"), line.layer_id, _renumber(line.vertices[index:], False))
    registry.add(second)
    return first, second


def split_poly(registry: EntityRegistry, name: str, i: int, j: int) -> Tuple[LineEntity, LineEntity]:
    """Cut a polygon at two vertices into two open lines."""
    poly: PolyEntity = _vertex_entity(registry, name, PolyEntity)
    n = len(poly.vertices)
    i, j = sorted((i, j))
    if i < 0 or j >= n or i == j:
        raise InvalidInputError(f"Split indices must be two distinct vertices of '{name}' (0..{n - 1})")
    verts = list(poly.vertices)
    part_a = verts[i: j + 1]
    part_b = verts[j:] + verts[: i + 1]
    registry.remove(name)
    first = LineEntity(registry.unique_name(f"{name}_A"), poly.layer_id, _renumber(part_a, False))
    registry.add(first)
    second = LineEntity(registry.unique_name(f"{name}_B"), poly.layer_id, _renumber(part_b, False))
    registry.add(second)
    return first, second


def _close(a: EntityVertex, b: EntityVertex, tol: float) -> bool:
    return float(np.linalg.norm(np.subtract(a.xyz, b.xyz))) <= tol


def join_lines(
    registry: EntityRegistry,
    name_a: str,
    name_b: str,
    end_a: Literal["start", "end"] = "end",
    end_b: Literal["start", "end"] = "start",
    *,
    weld_tolerance: float = WELD_TOLERANCE,
    close_as_poly: bool = False,
) -> Union[LineEntity, PolyEntity]:
    """Join two lines at the chosen endpoints into one entity named after ``name_a``."""
    if name_a == name_b:
        raise InvalidInputError("Cannot join a line to itself")
    a: LineEntity = _vertex_entity(registry, name_a, LineEntity)
    b: LineEntity = _vertex_entity(registry, name_b, LineEntity)
    va = list(a.vertices) if end_a == "end" else list(reversed(a.vertices))
    vb = list(b.vertices) if end_b == "start" else list(reversed(b.vertices))

    merged: List[EntityVertex] = []
    for v in va + vb:
        if merged and _close(merged[-1], v, weld_tolerance):
            continue
        merged.append(v)
    if close_as_poly and len(merged) > 1 and _close(merged[0], merged[-1], weld_tolerance):
        merged.pop()

    registry.remove(name_a)
    registry.remove(name_b)
    if close_as_poly:
        joined: Union[LineEntity, PolyEntity] = PolyEntity(name_a, a.layer_id, _renumber(merged, True))
    else:
        joined = LineEntity(name_a, a.layer_id, _renumber(merged, False))
    registry.add(joined)
    return joined


# -- contour naming --

def contour_entities(
    levels: Sequence[Any],
    *,
    layer_id: str = CONTOUR_LAYER,
    closed: bool = False,
    color: str = DEFAULT_COLOR,
    line_width: float = DEFAULT_LINE_WIDTH,
    uid: Optional[str] = None,
) -> List[VertexEntity]:
    """Drawing entities for contour levels, named ``RL{elev}-{seq:03d}-{uid}``.

    ``seq`` restarts at 1 for each elevation. With ``closed`` set every
    polyline becomes a polygon (its repeated closing vertex dropped).
    """
    out: List[VertexEntity] = []
    for level in levels:
        label = format_elevation(level.elevation)
        for seq, polyline in enumerate(level.polylines, start=1):
            pts = polyline.points
            if closed and polyline.closed:
                pts = pts[:-1]
            verts = [EntityVertex(float(x), float(y), float(z), color=color, line_width=line_width) for x, y, z in pts]
            suffix = uid if uid is not None else uuid.uuid4().hex[:6]
            name = f"RL{label}-{seq:03d}-{suffix}"
            entity: VertexEntity = (
                PolyEntity(name, layer_id, _renumber(verts, True)) if closed
                else LineEntity(name, layer_id, _renumber(verts, False))
            )
            out.append(entity)
    return out
