from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from ..core.exporter import write_surface
from ..core.geometry import Surface

HeightFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def _plane(size: float) -> HeightFn:
    return lambda x, y: np.zeros_like(x)


def _hill(size: float) -> HeightFn:
    sigma = size / 4.0
    height = size / 2.0
    return lambda x, y: height * np.exp(-(x * x + y * y) / (2.0 * sigma * sigma))


def _ramp(size: float) -> HeightFn:
    return lambda x, y: 0.25 * (x + size / 2.0)


PRESETS: Dict[str, Callable[[float], HeightFn]] = {"plane": _plane, "hill": _hill, "ramp": _ramp}


def _height_fn(preset: str, size: float) -> HeightFn:
    try:
        return PRESETS[preset](size)
    except KeyError:
        raise ValueError(f"Unknown preset '{preset}'. Expected one of {sorted(PRESETS)}.") from None


def _grid(size: float, divisions: int, height: HeightFn) -> Tuple[np.ndarray, np.ndarray]:
    lin = np.linspace(-size / 2.0, size / 2.0, divisions + 1)
    xv, yv = np.meshgrid(lin, lin, indexing="ij")
    vertices = np.column_stack([xv.ravel(), yv.ravel(), height(xv, yv).ravel()])

    faces = []
    for i in range(divisions):
        for j in range(divisions):
            idx0 = i * (divisions + 1) + j
            idx1 = idx0 + 1
            idx2 = idx0 + (divisions + 1)
            idx3 = idx2 + 1
            faces.append([idx0, idx2, idx3])
            faces.append([idx0, idx3, idx1])
    return vertices, np.asarray(faces, dtype=np.int64)


def generate_surface(preset: str = "hill", size: float = 100.0, divisions: int = 20) -> Surface:
    """Regular-grid terrain surface with upward-facing triangles."""
    vertices, faces = _grid(size, divisions, _height_fn(preset, size))
    return Surface(vertices[faces], name=f"synthetic-{preset}", metadata={"preset": preset, "size": size})


def generate_points(
    preset: str = "hill",
    size: float = 100.0,
    count: int = 500,
    seed: Optional[int] = 0,
) -> np.ndarray:
    """Random ``(count, 3)`` samples of a preset terrain."""
    rng = np.random.default_rng(seed)
    xy = rng.uniform(-size / 2.0, size / 2.0, size=(count, 2))
    z = _height_fn(preset, size)(xy[:, 0], xy[:, 1])
    return np.column_stack([xy, z])


def generate_mesh(preset: str, size: float, path: Path, divisions: int = 20) -> Path:
    surface = generate_surface(preset, size, divisions)
    return write_surface(surface, path)
