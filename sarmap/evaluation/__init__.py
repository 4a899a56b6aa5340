"""Evaluation module."""

from .metrics import (
    coefficient_of_determination,
    create_metrics_dataframe,
    mean_absolute_error,
    percent_bias,
    rmse,
    squared_correlation,
)

__all__ = [
    "coefficient_of_determination",
    "squared_correlation",
    "rmse",
    "mean_absolute_error",
    "percent_bias",
    "create_metrics_dataframe",
]
