from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config import JobConfig, load_config
from ..config.schema import POLYLINE_FORMATS, SURFACE_FORMATS
from ..runtime.builders import build_payload, write_result
from ..runtime.tasks import ProgressCallback, TaskRunner, run_inline


@dataclass(frozen=True)
class ConfigRunResult:
    """Summary of a job driven by a configuration file."""

    task_type: str
    data: Dict[str, Any]
    output_path: Path
    config: JobConfig


def run_from_config(
    config: Union[str, Path, JobConfig],
    *,
    output: Optional[Path] = None,
    inline: bool = True,
    runner: Optional[TaskRunner] = None,
    on_progress: Optional[ProgressCallback] = None,
    timeout: Optional[float] = None,
) -> ConfigRunResult:
    """Run a geometry job described by a configuration file or object.

    Parameters
    ----------
    config:
        Path to a YAML file or a pre-loaded :class:`~terramesh.config.schema.JobConfig`.
    output:
        Optional override for the output file. The extension drives the format
        (``.ply``, ``.npz``, ``.las``/``.laz`` for surfaces; ``.json`` or
        ``.npz`` for contour and intersection polylines).
    inline:
        Run on the calling thread. When false the job goes through a
        :class:`~terramesh.runtime.tasks.TaskRunner` worker process.
    runner:
        Existing runner to submit to; implies ``inline=False``. A runner
        created here is shut down before returning.
    on_progress:
        Receives every :class:`~terramesh.runtime.tasks.TaskProgress` message.
    timeout:
        Seconds to wait for a background job before cancelling it.

    Returns
    -------
    ConfigRunResult
        The task type, the raw result payload, the written output path and
        the resolved configuration.
    """

    cfg = load_config(config) if not isinstance(config, JobConfig) else config.model_copy(deep=True)

    if output is not None:
        out_path = Path(output).resolve()
        ext = out_path.suffix.lower().lstrip(".")
        allowed = POLYLINE_FORMATS if cfg.job.kind in {"contour", "intersect"} else SURFACE_FORMATS
        if ext not in allowed:
            raise ValueError(f"Unsupported output extension '.{ext}' for '{cfg.job.kind}' jobs")
        cfg.output.path = out_path
        cfg.output.format = ext  # type: ignore[assignment]
    else:
        cfg.output.path = Path(cfg.output.path).resolve()

    task_type, payload = build_payload(cfg.job)
    if runner is None and inline:
        data = run_inline(task_type, payload, on_progress)
    elif runner is not None:
        data = runner.run(task_type, payload, on_progress, timeout=timeout)
    else:
        with TaskRunner() as owned:
            data = owned.run(task_type, payload, on_progress, timeout=timeout)

    out = write_result(cfg, data)
    return ConfigRunResult(task_type=task_type, data=data, output_path=out, config=cfg)
