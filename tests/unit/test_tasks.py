from __future__ import annotations

import numpy as np
import pytest

from terramesh.core.errors import TaskFailedError
from terramesh.core.tolerance import GRAVITY
from terramesh.examples.synthetic import generate_points, generate_surface
from terramesh.runtime.handlers import FAMILY_BY_TASK, TASK_HANDLERS
from terramesh.runtime.tasks import (
    TaskError,
    TaskProgress,
    TaskRequest,
    TaskResult,
    TaskRunner,
    handle_request,
    run_inline,
)


def _collect(request: TaskRequest, handlers=None):
    messages = []
    handle_request(request, messages.append, handlers)
    return messages


def test_unknown_type_is_an_error_message() -> None:
    (msg,) = _collect(TaskRequest("bogus", {}))
    assert isinstance(msg, TaskError)
    assert msg.message == "Unknown message type: bogus"
    assert msg.as_message() == {"type": "error", "message": "Unknown message type: bogus"}


def test_progress_is_clamped_and_monotonic() -> None:
    def handler(payload, progress):
        progress(40, "a")
        progress(20, "b")
        progress(250, "c")
        return {"ok": True}

    messages = _collect(TaskRequest("t", None), {"t": handler})
    percents = [m.percent for m in messages if isinstance(m, TaskProgress)]
    assert percents == [40, 40, 100, 100]
    assert messages[-2].message == "Complete"
    assert isinstance(messages[-1], TaskResult)
    assert messages[-1].data == {"ok": True}


def test_handler_exception_becomes_error() -> None:
    def handler(payload, progress):
        raise ValueError("bad input")

    messages = _collect(TaskRequest("t", None), {"t": handler})
    assert isinstance(messages[-1], TaskError)
    assert messages[-1].message == "bad input"
    assert not any(isinstance(m, TaskResult) for m in messages)


def test_payload_is_not_mutated() -> None:
    payload = {"items": [1, 2]}

    def handler(p, progress):
        p["items"].append(3)
        return p

    run_inline("t", payload, handlers={"t": handler})
    assert payload == {"items": [1, 2]}


def test_run_inline_raises_task_failed() -> None:
    with pytest.raises(TaskFailedError, match="interval"):
        run_inline("contour", {"surface": generate_surface("ramp", 10.0, 2), "interval": -1.0})


def test_every_task_has_a_family() -> None:
    assert set(TASK_HANDLERS) == set(FAMILY_BY_TASK)
    assert TaskRunner.family_of("triangulate_basic") == "triangulation"


def test_contour_task_returns_entities() -> None:
    seen = []
    data = run_inline(
        "contour",
        {"surface": generate_surface("hill", 100.0, 20).to_record(), "interval": 10.0, "min_z": 20.0, "max_z": 30.0},
        on_progress=seen.append,
    )
    assert data["levelCount"] == 2
    assert data["entities"]
    assert all(e["name"].startswith(("RL20-", "RL30-")) for e in data["entities"])
    assert seen[-1].percent == 100


def test_triangulate_task_with_constraints() -> None:
    square = [{"x": 0, "y": 0}, {"x": 4, "y": 0}, {"x": 4, "y": 4}, {"x": 0, "y": 4}, {"x": 2, "y": 2, "z": 1}]
    data = run_inline("triangulate", {"points": square, "constraints": [[0, 1], [1, 2], [2, 3], [3, 0]]})
    assert len(data["surface"]["triangles"]) == 4
    assert data["stats"]["algorithm"] == "constrained-delaunay"
    basic = run_inline("triangulate_basic", {"points": square, "constraints": [[0, 2]]})
    assert len(basic["surface"]["triangles"]) == 4


def test_mesh_from_points_task_reports_stats() -> None:
    pts = generate_points("hill", 100.0, count=300, seed=3)
    pts = np.vstack([pts, pts[:10]])
    data = run_inline("mesh_from_points", {"points": pts, "max_edge_length": 40.0})
    stats = data["stats"]
    assert stats["dedupOriginal"] == 310
    assert stats["dedupFinal"] == 300
    assert stats["triangleCount"] == len(data["surface"]["triangles"])
    assert stats["triangleCount"] + stats["culledByEdge"] + stats["culledByAngle"] == stats["totalRawTriangles"]


def test_mesh_from_points_all_culled_is_an_error() -> None:
    pts = generate_points("plane", 100.0, count=50, seed=1)
    with pytest.raises(TaskFailedError, match="culled"):
        run_inline("mesh_from_points", {"points": pts, "max_edge_length": 0.01})


def test_extrude_task() -> None:
    data = run_inline("extrude", {"vertices": [[0, 0], [2, 0], [2, 2], [0, 2]], "depth": -3.0})
    assert data["volume"] == pytest.approx(12.0)
    assert len(data["surface"]["triangles"]) == 12
    assert data["surface"]["metadata"]["extrusion"]["depth"] == -3.0


def test_shroud_task_metadata() -> None:
    v = 12.0
    data = run_inline(
        "shroud",
        {
            "sources": [{"x": 0, "y": 0, "max_distance": v * v / GRAVITY, "max_velocity": v, "id": "H1"}],
            "iterations": 20,
            "K": 20.0,
            "holes_skipped": 2,
        },
    )
    meta = data["surface"]["metadata"]["shroud"]
    assert meta["holeCount"] == 1
    assert meta["holesSkipped"] == 2
    assert meta["K"] == 20.0
    assert meta["iterations"] == 20


def test_intersect_task_chains_polylines() -> None:
    plane = generate_surface("plane", 20.0, 4)
    a, b, c, d = (-10, -10, -11), (10, -10, 9), (10, 10, 9), (-10, 10, -11)
    tilted = {"triangles": [[a, b, c], [a, c, d]]}
    data = run_inline("intersect", {"surfaces": [plane.to_record(), tilted]})
    assert data["segmentCount"] > 0
    assert len(data["polylines"]) == 1
    xs = [p["x"] for p in data["polylines"][0]["points"]]
    np.testing.assert_allclose(xs, 1.0, atol=1e-9)


def test_invalid_payload_is_reported() -> None:
    with pytest.raises(TaskFailedError):
        run_inline("extrude", {"vertices": [[0, 0], [1, 0], [0, 1]], "unexpected": 1})


def test_shroud_task_accepts_camel_case_fields() -> None:
    data = run_inline(
        "shroud",
        {
            "sources": [{"x": 0, "y": 0, "maxDistance": 10, "maxVelocity": 10}],
            "endAngleDeg": 80,
            "extendBelowCollar": 2.0,
            "holesSkipped": 1,
        },
    )
    meta = data["surface"]["metadata"]["shroud"]
    assert meta["endAngleDeg"] == 80.0
    assert meta["extendBelowCollar"] == 2.0
    assert meta["holesSkipped"] == 1
