from __future__ import annotations

import pytest

from terramesh.core.contour import ContourLevel
from terramesh.core.entities import (
    EntityRegistry,
    EntityVertex,
    LineEntity,
    PointEntity,
    PolyEntity,
    TextEntity,
    ValidationAction,
    apply_validation,
    contour_entities,
    join_lines,
    split_line,
    split_poly,
    to_poly,
    to_record,
)
from terramesh.core.errors import InvalidInputError
from terramesh.core.geometry import Polyline


def _verts(*xs: float):
    return tuple(EntityVertex(x, 0.0, 0.0, point_id=i + 1) for i, x in enumerate(xs))


def test_registry_names_are_unique() -> None:
    registry = EntityRegistry()
    registry.add(LineEntity("L", "0", _verts(0, 1)))
    with pytest.raises(InvalidInputError):
        registry.add(LineEntity("L", "0", _verts(0, 1)))
    renamed = registry.add(LineEntity("L", "0", _verts(0, 1)), rename=True)
    assert renamed.name == "L_1"
    assert registry.names() == ["L", "L_1"]
    with pytest.raises(InvalidInputError):
        registry.get("missing")


def test_validation_downgrades_short_entities() -> None:
    registry = EntityRegistry([
        PolyEntity("P2", "0", _verts(0, 1)),
        LineEntity("L1", "0", _verts(0)),
        LineEntity("L0", "0", ()),
        PolyEntity("ok", "0", _verts(0, 1, 2)),
        TextEntity("T", "0", EntityVertex(0, 0), "label"),
    ])
    results = {r.name: r.action for r in apply_validation(registry)}
    assert results == {
        "P2": ValidationAction.TO_LINE,
        "L1": ValidationAction.TO_POINT,
        "L0": ValidationAction.REMOVE,
    }
    assert isinstance(registry.get("P2"), LineEntity)
    assert isinstance(registry.get("L1"), PointEntity)
    assert "L0" not in registry
    assert len(registry) == 4


def test_split_line_shares_vertex() -> None:
    registry = EntityRegistry([LineEntity("L", "0", _verts(0, 1, 2, 3))])
    a, b = split_line(registry, "L", 2)
    assert (a.name, b.name) == ("L_A", "L_B")
    assert [v.x for v in a.vertices] == [0, 1, 2]
    assert [v.x for v in b.vertices] == [2, 3]
    assert [v.point_id for v in b.vertices] == [1, 2]
    with pytest.raises(InvalidInputError):
        split_line(registry, "L_A", 0)


def test_split_poly_into_two_lines() -> None:
    registry = EntityRegistry([PolyEntity("P", "0", _verts(0, 1, 2, 3, 4))])
    a, b = split_poly(registry, "P", 1, 3)
    assert [v.x for v in a.vertices] == [1, 2, 3]
    assert [v.x for v in b.vertices] == [3, 4, 0, 1]
    assert "P" not in registry


def test_join_lines_welds_shared_endpoint() -> None:
    registry = EntityRegistry([
        LineEntity("A", "0", _verts(0, 1)),
        LineEntity("B", "0", _verts(3, 1.001)),
    ])
    joined = join_lines(registry, "A", "B", "end", "end")
    assert [v.x for v in joined.vertices] == [0, 1, 3]
    assert registry.names() == ["A"]


def test_join_lines_can_close_polygon() -> None:
    registry = EntityRegistry([
        LineEntity("A", "0", tuple(EntityVertex(x, y) for x, y in [(0, 0), (1, 0), (1, 1)])),
        LineEntity("B", "0", tuple(EntityVertex(x, y) for x, y in [(1, 1), (0, 1), (0, 0)])),
    ])
    joined = join_lines(registry, "A", "B", close_as_poly=True)
    assert isinstance(joined, PolyEntity)
    assert len(joined.vertices) == 4
    assert all(v.closed for v in joined.vertices)


def test_contour_entity_names_and_records() -> None:
    ring = Polyline([[0, 0, 10], [1, 0, 10], [1, 1, 10], [0, 0, 10]])
    line = Polyline([[5, 5, 10], [6, 5, 10]])
    levels = [ContourLevel(10.0, [ring, line]), ContourLevel(12.5, [line])]
    entities = contour_entities(levels, uid="abc123")
    assert [e.name for e in entities] == ["RL10-001-abc123", "RL10-002-abc123", "RL12.5-001-abc123"]
    record = to_record(entities[0])
    assert record["entityType"] == "line"
    assert record["layerId"] == "CONTOUR"
    assert record["data"][0]["color"] == "#FFCC00"
    assert len(record["data"]) == 4

    polys = contour_entities(levels[:1], closed=True, uid="x")
    assert all(isinstance(p, PolyEntity) for p in polys)
    assert len(polys[0].vertices) == 3


def test_to_poly_marks_vertices_closed() -> None:
    poly = to_poly(LineEntity("L", "0", _verts(0, 1, 2)))
    assert all(v.closed for v in poly.vertices)
