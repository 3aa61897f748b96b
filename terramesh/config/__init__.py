"""Configuration loading utilities for terramesh."""

from .schema import (
    JobConfig,
    load_config,
)

__all__ = ["JobConfig", "load_config"]
