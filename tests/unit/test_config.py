from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from terramesh.config import JobConfig, load_config
from terramesh.config.schema import ContourJob, IntersectJob, ShroudJob


def _dump(path: Path, data: dict) -> Path:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)
    return path


def test_relative_paths_resolve_against_config(tmp_path: Path) -> None:
    cfg_path = _dump(
        tmp_path / "job.yaml",
        {"job": {"kind": "contour", "surface": "pit.ply", "interval": 2.0}, "output": {"path": "out/contours.json"}},
    )
    cfg = load_config(cfg_path)
    assert isinstance(cfg.job, ContourJob)
    assert cfg.job.surface == (tmp_path / "pit.ply").resolve()
    assert cfg.output.path == (tmp_path / "out" / "contours.json").resolve()
    assert cfg.output.format == "json"


def test_intersect_paths_are_resolved(tmp_path: Path) -> None:
    cfg_path = _dump(
        tmp_path / "job.yaml",
        {"job": {"kind": "intersect", "surfaces": ["a.ply", "b.ply"]}, "output": {"path": "lines.npz"}},
    )
    cfg = load_config(cfg_path)
    assert isinstance(cfg.job, IntersectJob)
    assert cfg.job.surfaces == [(tmp_path / "a.ply").resolve(), (tmp_path / "b.ply").resolve()]


def test_output_format_must_match_job() -> None:
    with pytest.raises(ValidationError):
        JobConfig.model_validate(
            {"job": {"kind": "contour", "surface": "s.ply", "interval": 1.0}, "output": {"path": "c.ply"}}
        )
    with pytest.raises(ValidationError):
        JobConfig.model_validate(
            {"job": {"kind": "extrude", "polygon": [[0, 0], [1, 0], [0, 1]]}, "output": {"path": "solid.json"}}
        )


def test_shroud_job_needs_sources() -> None:
    with pytest.raises(ValidationError):
        JobConfig.model_validate({"job": {"kind": "shroud"}, "output": {"path": "s.ply"}})
    cfg = JobConfig.model_validate(
        {
            "job": {"kind": "shroud", "sources": [{"x": 0, "y": 0, "max_velocity": 10}]},
            "output": {"path": "s.ply"},
        }
    )
    assert isinstance(cfg.job, ShroudJob)
    assert cfg.job.iterations == 40


def test_unknown_fields_and_kinds_are_rejected() -> None:
    with pytest.raises(ValidationError):
        JobConfig.model_validate(
            {"job": {"kind": "contour", "surface": "s.ply", "interval": 1.0, "intervall": 2}, "output": {"path": "c.json"}}
        )
    with pytest.raises(ValidationError):
        JobConfig.model_validate({"job": {"kind": "sample"}, "output": {"path": "c.json"}})


def test_contour_range_order() -> None:
    with pytest.raises(ValidationError):
        JobConfig.model_validate(
            {"job": {"kind": "contour", "surface": "s.ply", "interval": 1.0, "min_z": 5, "max_z": 1}, "output": {"path": "c.json"}}
        )


def test_root_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config(path)
