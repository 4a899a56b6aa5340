"""Utilities module."""

from .helpers import ensure_directory, format_duration, make_rng, resolve_n_jobs
from .logger import get_logger, setup_logger

__all__ = [
    "ensure_directory",
    "format_duration",
    "make_rng",
    "resolve_n_jobs",
    "get_logger",
    "setup_logger",
]
