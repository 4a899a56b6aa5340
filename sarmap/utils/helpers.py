"""Utility functions and helpers."""

import os
from pathlib import Path

import numpy as np


def make_rng(seed: int | np.random.Generator | None) -> np.random.Generator:
    """Return an explicit random generator.

    Passing a generator returns it unchanged so callers can thread a single
    stream through several sampling steps.

    Args:
        seed: Integer seed, existing generator or None (fresh entropy)

    Returns:
        numpy Generator

    Examples:
        >>> rng = make_rng(42)
        >>> rng.integers(0, 10, size=3).shape
        (3,)
    """
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def resolve_n_jobs(n_jobs: int | None, n_tasks: int | None = None) -> int:
    """Translate an sklearn-style ``n_jobs`` into a worker count.

    Args:
        n_jobs: Requested workers; None means 1, negative values count back
            from the number of CPUs (-1 = all)
        n_tasks: Optional upper bound (no point in more workers than tasks)

    Returns:
        Number of workers, at least 1
    """
    cpu_count = os.cpu_count() or 1
    if n_jobs is None or n_jobs == 0:
        workers = 1
    elif n_jobs < 0:
        workers = max(1, cpu_count + 1 + n_jobs)
    else:
        workers = n_jobs
    if n_tasks is not None:
        workers = min(workers, max(1, n_tasks))
    return workers


def ensure_directory(path: Path) -> Path:
    """Ensure directory exists, create if necessary.

    Args:
        path: Directory path

    Returns:
        Path object of the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string

    Examples:
        >>> format_duration(3661)
        '1h 1m 1s'
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
