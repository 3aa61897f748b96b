from __future__ import annotations
import logging

def get_logger(name: str = "terramesh") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

def format_elevation(z: float) -> str:
    """Elevation label: no decimals when integral, otherwise one decimal."""
    if float(z).is_integer():
        return str(int(z))
    return f"{z:.1f}"
