from __future__ import annotations

import numpy as np
import pytest

import terramesh.core.contour as contour_mod
from terramesh.core.contour import contour_levels, generate_contours, slice_triangle
from terramesh.core.errors import InvalidInputError, ResourceLimitError
from terramesh.examples.synthetic import generate_surface

TRI = [(0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 10.0, 10.0)]


def test_slice_triangle_midway() -> None:
    seg = slice_triangle(TRI, 5.0)
    assert seg is not None
    ends = sorted([tuple(seg.p0), tuple(seg.p1)])
    np.testing.assert_allclose(ends[0], (0.0, 5.0, 5.0), atol=1e-9)
    np.testing.assert_allclose(ends[1], (5.0, 5.0, 5.0), atol=1e-9)


@pytest.mark.parametrize("z", [0.0, 10.1, -1.0])
def test_slice_triangle_misses(z: float) -> None:
    assert slice_triangle(TRI, z) is None


def test_slice_through_vertex() -> None:
    seg = slice_triangle([(0, 0, 0), (2, 0, 2), (0, 2, 1)], 1.0)
    assert seg is not None
    ends = sorted([tuple(seg.p0), tuple(seg.p1)])
    np.testing.assert_allclose(ends[0], (0.0, 2.0, 1.0))
    np.testing.assert_allclose(ends[1], (1.0, 0.0, 1.0))


def test_levels_are_interval_multiples() -> None:
    np.testing.assert_allclose(contour_levels(3.2, 17.0, 5.0), [5.0, 10.0, 15.0])
    assert len(contour_levels(1.0, 2.0, 5.0)) == 0


def test_hill_contours_are_closed_loops() -> None:
    surface = generate_surface("hill", size=100.0, divisions=30)
    result = generate_contours(surface, 10.0)
    assert [lvl.elevation for lvl in result.levels] == [10.0, 20.0, 30.0, 40.0, 50.0]
    for level in result.levels[:4]:
        assert len(level.polylines) == 1
        assert level.polylines[0].closed
        np.testing.assert_allclose(level.polylines[0].points[:, 2], level.elevation)
    assert result.segment_count > 0
    assert result.polyline_count == 4
    assert result.to_record()["levels"][0]["elevation"] == 10.0


def test_vertex_spacing_reduces_vertices() -> None:
    surface = generate_surface("hill", size=100.0, divisions=30)
    dense = generate_contours(surface, 10.0, min_z=20.0, max_z=20.0)
    sparse = generate_contours(surface, 10.0, min_z=20.0, max_z=20.0, vertex_spacing=15.0)
    assert len(sparse.levels[0].polylines[0]) < len(dense.levels[0].polylines[0])
    assert sparse.levels[0].polylines[0].closed


def test_progress_is_reported() -> None:
    seen = []
    generate_contours(generate_surface("ramp", 20.0, 4), 1.0, progress=lambda p, m: seen.append(p))
    assert seen[0] == 5
    assert seen[-1] == pytest.approx(95.0)
    assert seen == sorted(seen)


def test_too_many_levels_fail_before_scanning(monkeypatch) -> None:
    def forbidden(*args, **kwargs):
        raise AssertionError("triangles must not be touched")

    monkeypatch.setattr(contour_mod, "extract_triangles", forbidden)
    monkeypatch.setattr(contour_mod, "slice_triangle", forbidden)
    with pytest.raises(ResourceLimitError, match="Increase the interval"):
        generate_contours(object(), 0.001, min_z=0.0, max_z=100.0)


def test_too_many_levels_from_surface_extent() -> None:
    with pytest.raises(ResourceLimitError):
        generate_contours(generate_surface("hill", 100.0, 4), 0.001)


def test_bad_interval() -> None:
    with pytest.raises(InvalidInputError):
        contour_levels(0.0, 1.0, 0.0)


def test_first_level_survives_float_drift() -> None:
    levels = contour_levels(0.1 + 0.2, 1.0, 0.1)
    assert levels[0] == pytest.approx(0.3)
    assert len(levels) == 8
