from .run import ConfigRunResult, run_from_config

__all__ = ["ConfigRunResult", "run_from_config"]
