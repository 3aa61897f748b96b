from __future__ import annotations


class TerrameshError(Exception):
    """Base class for all terramesh failures."""


class InvalidInputError(TerrameshError, ValueError):
    pass


class ResourceLimitError(TerrameshError, RuntimeError):
    pass


class TriangulationError(TerrameshError, RuntimeError):
    pass


class TaskCancelledError(TerrameshError):
    pass


class WorkerBusyError(TerrameshError, RuntimeError):
    pass


class TaskFailedError(TerrameshError, RuntimeError):
    """A background task ended with a TaskError message."""
