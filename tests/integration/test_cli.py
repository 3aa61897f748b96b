from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import yaml
from typer.testing import CliRunner

from terramesh.cli.main import app
from terramesh.core.loader import load_surface


def _write_ascii_ply(path: Path, z_offset: float = 0.0, tilt: float = 0.0) -> None:
    vertices = [
        (-10.0, -10.0, z_offset - 10.0 * tilt),
        (10.0, -10.0, z_offset + 10.0 * tilt),
        (10.0, 10.0, z_offset + 10.0 * tilt),
        (-10.0, 10.0, z_offset - 10.0 * tilt),
    ]
    faces = [
        (0, 1, 2),
        (0, 2, 3),
    ]
    with open(path, "w", encoding="utf-8") as f:
        f.write("ply\n")
        f.write("format ascii 1.0\n")
        f.write(f"element vertex {len(vertices)}\n")
        f.write("property float x\nproperty float y\nproperty float z\n")
        f.write(f"element face {len(faces)}\n")
        f.write("property list uchar int vertex_indices\n")
        f.write("end_header\n")
        for v in vertices:
            f.write(f"{v[0]} {v[1]} {v[2]}\n")
        for face in faces:
            f.write(f"3 {face[0]} {face[1]} {face[2]}\n")


def test_surface_generate_then_contour(tmp_path: Path) -> None:
    runner = CliRunner()
    mesh_path = tmp_path / "hill.ply"
    result = runner.invoke(app, ["surface", "generate", str(mesh_path), "--preset", "hill", "--size", "100"])
    assert result.exit_code == 0, result.stdout
    assert mesh_path.exists()

    out_path = tmp_path / "contours.json"
    result = runner.invoke(app, ["contour", str(mesh_path), "--interval", "10", "--output", str(out_path), "--closed"])
    assert result.exit_code == 0, result.stdout
    assert "contour entities" in result.stdout
    with open(out_path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    assert payload["entities"]
    assert {e["entityType"] for e in payload["entities"]} == {"poly"}


def test_cli_run_config(tmp_path: Path) -> None:
    mesh_path = tmp_path / "ramp.ply"
    _write_ascii_ply(mesh_path, tilt=0.5)
    config = {
        "job": {"kind": "contour", "surface": mesh_path.name, "interval": 2.0},
        "output": {"path": "lines.npz"},
    }
    config_path = tmp_path / "job.yaml"
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f)

    result = CliRunner().invoke(app, ["run", str(config_path), "--log-level", "WARNING"])
    assert result.exit_code == 0, result.stdout
    with np.load(tmp_path / "lines.npz") as data:
        assert len(data["offsets"]) == 5
        assert not data["closed"].any()


def test_cli_contour_level_cap_fails(tmp_path: Path) -> None:
    mesh_path = tmp_path / "ramp.ply"
    _write_ascii_ply(mesh_path, tilt=0.5)
    result = CliRunner().invoke(
        app, ["contour", str(mesh_path), "--interval", "0.0001", "--output", str(tmp_path / "c.json")]
    )
    assert result.exit_code == 1
    assert not (tmp_path / "c.json").exists()


def test_cli_extrude_and_intersect(tmp_path: Path) -> None:
    runner = CliRunner()
    polygon = tmp_path / "pit.csv"
    polygon.write_text("x,y,z\n-5,-5,0\n5,-5,0\n5,5,0\n-5,5,0\n", encoding="utf-8")
    solid = tmp_path / "pit.ply"
    result = runner.invoke(app, ["extrude", str(polygon), "--depth", "-4", "--output", str(solid)])
    assert result.exit_code == 0, result.stdout
    assert "volume 400.000" in result.stdout
    assert len(load_surface(solid)) == 12

    flat = tmp_path / "flat.ply"
    tilted = tmp_path / "tilted.ply"
    _write_ascii_ply(flat)
    _write_ascii_ply(tilted, z_offset=-1.0, tilt=1.0)
    lines = tmp_path / "lines.json"
    result = runner.invoke(app, ["intersect", str(flat), str(tilted), "--output", str(lines)])
    assert result.exit_code == 0, result.stdout
    with open(lines, "r", encoding="utf-8") as f:
        payload = json.load(f)
    assert len(payload["polylines"]) == 1
    np.testing.assert_allclose([p["x"] for p in payload["polylines"][0]["points"]], 1.0, atol=1e-9)


def test_cli_shroud_and_mesh(tmp_path: Path) -> None:
    runner = CliRunner()
    sources = tmp_path / "holes.csv"
    sources.write_text("x,y,z,max_distance,max_velocity\n0,0,0,20,14\n", encoding="utf-8")
    shroud = tmp_path / "shroud.ply"
    result = runner.invoke(app, ["shroud", str(sources), "--iterations", "20", "--output", str(shroud)])
    assert result.exit_code == 0, result.stdout
    assert len(load_surface(shroud)) > 0

    points = tmp_path / "pts.xyz"
    rng = np.random.default_rng(5)
    np.savetxt(points, np.column_stack([rng.uniform(0, 50, (200, 2)), rng.uniform(0, 3, 200)]))
    out = tmp_path / "tin.las"
    result = runner.invoke(app, ["mesh", str(points), "--output", str(out), "--max-points", "150"])
    assert result.exit_code == 0, result.stdout
    assert out.exists()


def test_cli_rejects_bad_output_extension(tmp_path: Path) -> None:
    polygon = tmp_path / "pit.csv"
    polygon.write_text("0,0\n1,0\n1,1\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["extrude", str(polygon), "--output", str(tmp_path / "pit.json")])
    assert result.exit_code != 0
