from __future__ import annotations

import math

import numpy as np
import pytest

from terramesh.core.chaining import chain_segments
from terramesh.core.geometry import Point3D, Polyline, Segment
from terramesh.core.simplify import simplify_polyline


def _seg(a, b) -> Segment:
    return Segment(Point3D(*a), Point3D(*b))


def test_triangle_loop_closes() -> None:
    segments = [
        _seg((0, 0, 0), (1, 0, 0)),
        _seg((1, 0, 0), (1, 1, 0)),
        _seg((1, 1, 0), (0, 0, 0)),
    ]
    polylines = chain_segments(segments, 1e-6)
    assert len(polylines) == 1
    assert polylines[0].closed
    assert polylines[0].length == pytest.approx(2.0 + math.sqrt(2.0))


def test_reversed_and_shuffled_segments_join() -> None:
    segments = [
        _seg((2, 0, 0), (3, 0, 0)),
        _seg((1, 0, 0), (0, 0, 0)),
        _seg((2, 0, 0), (1, 0, 0)),
    ]
    polylines = chain_segments(segments)
    assert len(polylines) == 1
    line = polylines[0]
    assert not line.closed
    assert len(line) == 4
    assert sorted([tuple(line.points[0]), tuple(line.points[-1])]) == [(0.0, 0.0, 0.0), (3.0, 0.0, 0.0)]


def test_disjoint_segments_stay_apart() -> None:
    segments = [_seg((0, 0, 0), (1, 0, 0)), _seg((5, 5, 0), (6, 5, 0))]
    polylines = chain_segments(segments)
    assert [len(p) for p in polylines] == [2, 2]


def test_branch_takes_lowest_index() -> None:
    segments = [
        _seg((0, 0, 0), (1, 0, 0)),
        _seg((1, 0, 0), (2, 1, 0)),
        _seg((1, 0, 0), (2, -1, 0)),
    ]
    polylines = chain_segments(segments)
    np.testing.assert_allclose(polylines[0].points[-1], [2, 1, 0])
    assert len(polylines) == 2


def test_tolerance_bridges_small_gaps() -> None:
    segments = [_seg((0, 0, 0), (1, 0, 0)), _seg((1.0005, 0, 0), (2, 0, 0))]
    assert len(chain_segments(segments, 1e-6)) == 2
    assert len(chain_segments(segments, 1e-3)) == 1


def test_empty_input() -> None:
    assert chain_segments([]) == []


def _wiggle() -> Polyline:
    t = np.linspace(0.0, 10.0, 101)
    return Polyline(np.column_stack([t, np.sin(t), np.zeros_like(t)]))


@pytest.mark.parametrize("spacing", [0.0, 0.05, 0.3, 1.0, 4.0])
def test_simplify_is_idempotent(spacing: float) -> None:
    once = simplify_polyline(_wiggle(), spacing)
    twice = simplify_polyline(once, spacing)
    np.testing.assert_array_equal(once.points, twice.points)


def test_simplify_keeps_ends_and_closure() -> None:
    ring = Polyline(np.array([[0, 0, 0], [0.1, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0], [0, 0, 0]], dtype=float))
    out = simplify_polyline(ring, 0.5)
    assert out.closed
    assert len(out) == 5
    np.testing.assert_array_equal(out.points[0], ring.points[0])


def test_simplify_drops_loop_smaller_than_spacing() -> None:
    angles = np.linspace(0.0, 2 * np.pi, 9)
    loop = Polyline(np.column_stack([0.1 * np.cos(angles), 0.1 * np.sin(angles), np.zeros(9)]))
    assert loop.closed
    assert len(simplify_polyline(loop, 1.0)) == 0
