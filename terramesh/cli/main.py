from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from pydantic import ValidationError

from ..config import JobConfig, load_config
from ..core.errors import TerrameshError
from ..examples.synthetic import PRESETS, generate_mesh
from ..runtime.tasks import TaskProgress
from ..sdk.run import ConfigRunResult, run_from_config

app = typer.Typer(help="Terramesh surface geometry utilities")
surface_app = typer.Typer(help="Synthetic surface helpers")
app.add_typer(surface_app, name="surface")

_log = logging.getLogger("terramesh")


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("terramesh").setLevel(numeric)


def _log_progress(msg: TaskProgress) -> None:
    _log.debug("%5.1f%% %s", msg.percent, msg.message)


def _summary(result: ConfigRunResult) -> str:
    data = result.data
    kind = result.config.job.kind
    if kind == "contour":
        return f"{len(data['entities'])} contour entities over {data['levelCount']} levels"
    if kind == "intersect":
        return f"{len(data['polylines'])} polylines from {data['segmentCount']} segments"
    text = f"{len(data['surface']['triangles'])} triangles"
    if kind == "extrude":
        text += f", volume {data['volume']:.3f}"
    return text


def _execute(cfg: Any, output: Optional[Path], inline: bool, log_level: str) -> None:
    _configure_logging(log_level)
    try:
        result = run_from_config(cfg, output=output, inline=inline, on_progress=_log_progress)
    except ValueError as exc:
        if output is not None and "extension" in str(exc):
            raise typer.BadParameter(str(exc), param_hint="--output") from exc
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except TerrameshError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Completed {result.task_type}: {_summary(result)} → {result.output_path}")


def _job_config(job: Dict[str, Any], output: Path) -> JobConfig:
    try:
        return JobConfig.model_validate({"job": job, "output": {"path": output.resolve()}})
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command("run")
def run(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML job file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Override output path (extension sets format)."),
    inline: bool = typer.Option(True, "--inline/--background", help="Run on this thread or in a worker process."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Run a job specified by a YAML config."""

    try:
        cfg = load_config(config)
    except (ValidationError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="CONFIG") from exc
    _execute(cfg, output, inline, log_level)


@app.command("contour")
def contour(
    surface: Path = typer.Argument(..., exists=True, readable=True, help="Surface mesh (.ply/.obj)."),
    interval: float = typer.Option(..., "--interval", "-i", help="Elevation step between contour levels."),
    output: Path = typer.Option(..., "--output", "-o", help="Output path (.json entities or .npz polylines)."),
    min_z: Optional[float] = typer.Option(None, "--min-z", help="Lowest level (defaults to surface minimum)."),
    max_z: Optional[float] = typer.Option(None, "--max-z", help="Highest level (defaults to surface maximum)."),
    vertex_spacing: float = typer.Option(0.0, "--vertex-spacing", help="Drop vertices closer than this along each line."),
    closed: bool = typer.Option(False, "--closed", help="Emit closed contours as polygons."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Slice a surface into contour lines."""

    job = {
        "kind": "contour",
        "surface": surface.resolve(),
        "interval": interval,
        "min_z": min_z,
        "max_z": max_z,
        "vertex_spacing": vertex_spacing,
        "closed_polygons": closed,
    }
    _execute(_job_config(job, output), None, True, log_level)


@app.command("shroud")
def shroud(
    sources: Path = typer.Argument(..., exists=True, readable=True, help="CSV with x,y[,z],max_distance,max_velocity[,id]."),
    output: Path = typer.Option(..., "--output", "-o", help="Output surface path (.ply/.npz/.las/.laz)."),
    iterations: int = typer.Option(40, "--iterations", help="Grid resolution factor."),
    end_angle_deg: float = typer.Option(85.0, "--end-angle-deg", help="Drop triangles steeper than this from horizontal."),
    extend_below: float = typer.Option(0.0, "--extend-below", help="Extra envelope reach below the collar."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Build a flyrock envelope surface from ballistic sources."""

    job = {
        "kind": "shroud",
        "sources_path": sources.resolve(),
        "iterations": iterations,
        "end_angle_deg": end_angle_deg,
        "extend_below_collar": extend_below,
    }
    _execute(_job_config(job, output), None, True, log_level)


@app.command("extrude")
def extrude(
    polygon: Path = typer.Argument(..., exists=True, readable=True, help="Footprint vertices, one x,y[,z] per line."),
    output: Path = typer.Option(..., "--output", "-o", help="Output surface path (.ply/.npz/.las/.laz)."),
    depth: float = typer.Option(-10.0, "--depth", help="Vertical offset of the bottom cap."),
    steps: int = typer.Option(1, "--steps", help="Wall subdivisions."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Extrude a closed footprint into a solid."""

    job = {"kind": "extrude", "polygon_path": polygon.resolve(), "depth": depth, "steps": steps}
    _execute(_job_config(job, output), None, True, log_level)


@app.command("mesh")
def mesh(
    points: Path = typer.Argument(..., exists=True, readable=True, help="Point file (.las/.laz/.csv/.xyz/.npz/.ply)."),
    output: Path = typer.Option(..., "--output", "-o", help="Output surface path (.ply/.npz/.las/.laz)."),
    max_points: int = typer.Option(0, "--max-points", help="Decimate to at most this many points (0 keeps all)."),
    xyz_tolerance: float = typer.Option(0.001, "--xyz-tolerance", help="Merge points closer than this."),
    max_edge_length: float = typer.Option(0.0, "--max-edge-length", help="Cull triangles with a longer edge (0 disables)."),
    min_angle_deg: float = typer.Option(0.0, "--min-angle-deg", help="Cull triangles with a smaller interior angle."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Triangulate a point cloud into a surface."""

    job = {
        "kind": "mesh",
        "points": points.resolve(),
        "max_points": max_points,
        "xyz_tolerance": xyz_tolerance,
        "max_edge_length": max_edge_length,
        "min_angle_deg": min_angle_deg,
    }
    _execute(_job_config(job, output), None, True, log_level)


@app.command("intersect")
def intersect(
    surfaces: List[Path] = typer.Argument(..., exists=True, readable=True, help="Two or more surface meshes."),
    output: Path = typer.Option(..., "--output", "-o", help="Output path (.json or .npz polylines)."),
    vertex_spacing: float = typer.Option(0.0, "--vertex-spacing", help="Drop vertices closer than this along each line."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Intersection polylines between every pair of surfaces."""

    if len(surfaces) < 2:
        raise typer.BadParameter("At least two surfaces are required.", param_hint="SURFACES")
    job = {"kind": "intersect", "surfaces": [p.resolve() for p in surfaces], "vertex_spacing": vertex_spacing}
    _execute(_job_config(job, output), None, True, log_level)


@surface_app.command("generate")
def surface_generate(
    output: Path = typer.Argument(..., help="Output mesh path (.ply/.npz)."),
    preset: str = typer.Option("hill", "--preset", help="Synthetic surface preset (hill, plane, ramp)."),
    size: float = typer.Option(100.0, "--size", help="Surface extent in metres."),
    divisions: int = typer.Option(20, "--divisions", help="Grid cells per side."),
) -> None:
    """Generate a synthetic terrain surface."""

    if preset not in PRESETS:
        raise typer.BadParameter(f"preset must be one of {sorted(PRESETS)}.", param_hint="--preset")
    out = output.resolve()
    generate_mesh(preset=preset, size=size, path=out, divisions=divisions)
    typer.echo(f"Wrote synthetic surface to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
