"""Validation metrics for sediment accumulation rate predictions."""

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error  # type: ignore[import-untyped]


def _paired(predictions: np.ndarray, targets: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Drop pairs with a NaN on either side."""
    predictions = np.asarray(predictions, dtype=float)
    targets = np.asarray(targets, dtype=float)
    if len(predictions) != len(targets):
        raise ValueError("Predictions and targets must have the same length")

    mask = ~(np.isnan(predictions) | np.isnan(targets))
    if np.sum(mask) == 0:
        raise ValueError("No valid data points after removing NaNs")
    return predictions[mask], targets[mask]


def coefficient_of_determination(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate the coefficient of determination, 1 - SSE/SST.

    Args:
        predictions: Model predictions
        targets: Observed target values

    Returns:
        R² (ranges from -∞ to 1); NaN when the targets are constant

    Examples:
        >>> pred = np.array([1.0, 2.0, 3.0, 4.0])
        >>> obs = np.array([1.1, 1.9, 3.1, 3.9])
        >>> r2 = coefficient_of_determination(pred, obs)
    """
    pred_clean, targets_clean = _paired(predictions, targets)

    numerator = np.sum((targets_clean - pred_clean) ** 2)
    denominator = np.sum((targets_clean - np.mean(targets_clean)) ** 2)

    if denominator == 0:
        return float("nan")

    return float(1 - numerator / denominator)


def squared_correlation(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate the squared Pearson correlation between predictions and targets.

    This is the "Rsquared" reported by caret resampling and the default score
    of forward feature selection.

    Returns:
        r² in [0, 1]; NaN when either side is constant
    """
    pred_clean, targets_clean = _paired(predictions, targets)

    pred_dev = pred_clean - np.mean(pred_clean)
    targets_dev = targets_clean - np.mean(targets_clean)
    denominator = np.sqrt(np.sum(pred_dev**2) * np.sum(targets_dev**2))

    if denominator == 0:
        return float("nan")

    correlation = np.sum(pred_dev * targets_dev) / denominator
    return float(min(correlation**2, 1.0))


def rmse(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate Root Mean Square Error (RMSE).

    Args:
        predictions: Model predictions
        targets: Observed target values

    Returns:
        RMSE value (always >= 0, with 0 being perfect)
    """
    pred_clean, targets_clean = _paired(predictions, targets)
    return float(np.sqrt(mean_squared_error(targets_clean, pred_clean)))


def mean_absolute_error(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate Mean Absolute Error (MAE)."""
    pred_clean, targets_clean = _paired(predictions, targets)
    return float(np.mean(np.abs(targets_clean - pred_clean)))


def percent_bias(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate percent bias, 100 * Σ(pred - obs) / Σ(obs).

    Positive values mean overestimation. NaN when the targets sum to zero.
    """
    pred_clean, targets_clean = _paired(predictions, targets)
    total = np.sum(targets_clean)
    if total == 0:
        return float("nan")
    return float(100.0 * np.sum(pred_clean - targets_clean) / total)


def create_metrics_dataframe(
    label: str,
    predictions: np.ndarray,
    targets: np.ndarray,
) -> pd.DataFrame:
    """Create a one-row validation table, e.g. for pooled out-of-fold predictions.

    Args:
        label: Row label (model or experiment identifier)
        predictions: Model predictions
        targets: Observed target values

    Returns:
        DataFrame with R2, Rsquared, RMSE, MAE, PBIAS and observation counts

    Examples:
        >>> pred = np.array([1.0, 2.0, 3.0, 4.0])
        >>> obs = np.array([1.1, 1.9, 3.1, 3.9])
        >>> df = create_metrics_dataframe("ffs", pred, obs)
    """
    predictions = np.asarray(predictions, dtype=float)
    targets = np.asarray(targets, dtype=float)
    results = pd.DataFrame(index=[label])

    results.loc[label, "R2"] = coefficient_of_determination(predictions, targets)
    results.loc[label, "Rsquared"] = squared_correlation(predictions, targets)
    results.loc[label, "RMSE"] = rmse(predictions, targets)
    results.loc[label, "MAE"] = mean_absolute_error(predictions, targets)
    results.loc[label, "PBIAS"] = percent_bias(predictions, targets)
    results.loc[label, "n_observations"] = len(targets)
    results.loc[label, "n_valid"] = int(
        np.sum(~(np.isnan(predictions) | np.isnan(targets)))
    )

    return results
