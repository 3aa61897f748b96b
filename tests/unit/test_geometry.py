from __future__ import annotations

import numpy as np
import pytest

from terramesh.core.extraction import extract_triangles, points_from_records, surface_from_record, to_surface
from terramesh.core.geometry import BoundingBox, Polyline, Surface, signed_volume, weld


def _square_tris() -> np.ndarray:
    return np.array(
        [
            [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 1.0]],
            [[0.0, 0.0, 0.0], [1.0, 1.0, 1.0], [0.0, 1.0, 0.0]],
        ]
    )


def test_surface_bbox_tracks_triangles() -> None:
    surface = Surface(_square_tris(), name="sq")
    assert surface.bbox == BoundingBox(0.0, 0.0, 0.0, 1.0, 1.0, 1.0)
    surface.triangles = _square_tris() + 5.0
    assert surface.bbox is not None
    assert surface.bbox.min_x == pytest.approx(5.0)
    assert not surface.triangles.flags.writeable


def test_surface_record_round_trips() -> None:
    surface = Surface(_square_tris(), surface_id="abc", name="sq", metadata={"k": 1})
    record = surface.to_record()
    assert record["boundingBox"]["maxZ"] == 1.0
    assert len(record["points"]) == 4
    rebuilt = surface_from_record(record)
    assert rebuilt.id == "abc"
    assert rebuilt.metadata == {"k": 1}
    np.testing.assert_allclose(rebuilt.triangles, surface.triangles)


def test_polyline_closed_needs_three_points() -> None:
    assert not Polyline(np.array([[0, 0, 0], [0, 0, 0]])).closed
    ring = Polyline(np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 0, 0]]))
    assert ring.closed
    assert ring.length == pytest.approx(2.0 + np.sqrt(2.0))


def test_extract_accepts_record_shapes() -> None:
    by_vertices = {"triangles": [{"vertices": [{"x": 0, "y": 0, "z": 0}, {"x": 1, "y": 0}, {"x": 0, "y": 1, "z": None}]}]}
    by_keys = {"triangles": [{"v0": [0, 0, 0], "v1": [1, 0, 0], "v2": [0, 1, 0]}]}
    indexed = {"points": [[0, 0, 0], [1, 0, 0], [0, 1, 0]], "faces": [[0, 1, 2]]}
    flat = {"positions": [0, 0, 0, 1, 0, 0, 0, 1, 0]}
    for source in (by_vertices, by_keys, indexed, flat):
        tris = extract_triangles(source)
        assert tris.shape == (1, 3, 3)
        np.testing.assert_allclose(tris[0, :, 2], 0.0)


def test_extract_drops_degenerate_and_malformed() -> None:
    source = {
        "triangles": [
            [[0, 0, 0], [1, 0, 0], [0, 1, 0]],
            [[0, 0, 0], [1, 0, 0], [2, 0, 0]],
            [[0, 0, 0], [1, 0, 0]],
            {"bogus": True},
        ]
    }
    assert len(extract_triangles(source)) == 1


def test_extract_flips_downward_faces() -> None:
    down = np.array([[[0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 0.0, 0.0]]])
    up = extract_triangles(down)
    normal = np.cross(up[0, 1] - up[0, 0], up[0, 2] - up[0, 0])
    assert normal[2] > 0
    kept = extract_triangles(down, z_up=False)
    np.testing.assert_allclose(kept, down)


def test_to_surface_keeps_identity() -> None:
    surface = Surface(_square_tris(), surface_id="keep", name="named")
    again = to_surface(surface)
    assert again.id == "keep"
    assert again.name == "named"


def test_points_from_records_pads_z() -> None:
    pts = points_from_records([{"x": 1, "y": 2}, [3, 4, 5], "junk"])
    np.testing.assert_allclose(pts, [[1, 2, 0], [3, 4, 5]])


def test_weld_and_signed_volume_of_tetrahedron() -> None:
    a, b, c = np.array([1.0, 0, 0]), np.array([0, 1.0, 0]), np.array([0, 0, 1.0])
    o = np.zeros(3)
    tris = np.array([[o, b, a], [o, a, c], [o, c, b], [a, b, c]])
    vertices, faces = weld(tris)
    assert len(vertices) == 4
    assert faces.shape == (4, 3)
    assert signed_volume(tris) == pytest.approx(1.0 / 6.0)


def test_iter_triangles_yields_points() -> None:
    (first, _) = Surface(_square_tris()).iter_triangles()
    assert first.v1.x == 1.0
    assert first.v2.to_record() == {"x": 1.0, "y": 1.0, "z": 1.0}
