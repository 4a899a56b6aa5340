"""Configuration module."""

from .settings import (
    ApplicabilityConfig,
    FoldConfig,
    ForestConfig,
    PathConfig,
    SelectionConfig,
    Settings,
)

__all__ = [
    "Settings",
    "FoldConfig",
    "SelectionConfig",
    "ForestConfig",
    "ApplicabilityConfig",
    "PathConfig",
]
