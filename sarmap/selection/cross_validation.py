"""Spatial cross-validation of one feature subset."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

import numpy as np

from sarmap.evaluation.metrics import coefficient_of_determination, squared_correlation
from sarmap.exceptions import DegenerateFoldError, ModelFitError, SARModelError
from sarmap.models.qrf import ModelTrainer
from sarmap.utils.logger import setup_logger

R2Method = Literal["squared_correlation", "coefficient"]

_R2_FUNCTIONS = {
    "squared_correlation": squared_correlation,
    "coefficient": coefficient_of_determination,
}

Splits = Sequence[tuple[np.ndarray, np.ndarray]]

logger = setup_logger("cross_validation")


@dataclass(frozen=True)
class CVResult:
    """Out-of-fold performance of one feature subset.

    Attributes:
        features: Feature names, in column order
        fold_scores: R² per fold
        predictions: Out-of-fold prediction per sample (each sample is held
            out exactly once)
        fold_of_sample: Fold number (1..k) each prediction came from
    """

    features: tuple[str, ...]
    fold_scores: np.ndarray
    predictions: np.ndarray = field(repr=False)
    fold_of_sample: np.ndarray = field(repr=False)

    @property
    def score(self) -> float:
        """Mean R² across folds."""
        return float(np.mean(self.fold_scores))


def cross_validate(
    trainer: ModelTrainer,
    x: np.ndarray,
    y: np.ndarray,
    splits: Splits,
    features: Sequence[str],
    quantile: float = 0.5,
    r2_method: R2Method = "squared_correlation",
) -> CVResult:
    """Fit on each training split and score the held-out fold.

    Args:
        trainer: Regression engine with ``train(features, x, y)``
        x: (n, p) feature matrix, columns matching ``features``
        y: (n,) target
        splits: (train indices, test indices) per fold
        features: Feature names
        quantile: Quantile predicted for scoring (median by default)
        r2_method: "squared_correlation" or "coefficient"

    Returns:
        CVResult

    Raises:
        DegenerateFoldError: If a fold has a constant training or held-out
            target
        ModelFitError: If the engine fails on any fold
    """
    features = tuple(features)
    score_fn = _R2_FUNCTIONS[r2_method]
    predictions = np.full(len(y), np.nan)
    fold_of_sample = np.zeros(len(y), dtype=int)
    fold_scores = np.empty(len(splits), dtype=float)

    for fold_idx, (train_idx, test_idx) in enumerate(splits):
        fold = fold_idx + 1
        y_train = y[train_idx]
        y_test = y[test_idx]
        if np.ptp(y_train) == 0:
            raise DegenerateFoldError(fold, features, "training target is constant")
        if len(y_test) < 2 or np.ptp(y_test) == 0:
            raise DegenerateFoldError(fold, features, "held-out target is constant")

        try:
            model = trainer.train(features, x[train_idx], y_train)
            y_pred = np.asarray(model.predict(x[test_idx], quantile), dtype=float)
        except SARModelError as e:
            if isinstance(e, ModelFitError) and e.fold is None:
                raise ModelFitError(features, e.cause, fold=fold) from e
            raise
        except Exception as e:
            raise ModelFitError(features, e, fold=fold) from e

        if not np.all(np.isfinite(y_pred)):
            raise ModelFitError(features, "non-finite predictions", fold=fold)

        score = score_fn(y_pred, y_test)
        if np.isnan(score):
            # held-out target varies, so only the predictions can be constant
            logger.warning(
                f"Fold {fold}: constant predictions for {list(features)}, scored as R²=0"
            )
            score = 0.0

        fold_scores[fold_idx] = score
        predictions[test_idx] = y_pred
        fold_of_sample[test_idx] = fold

    return CVResult(
        features=features,
        fold_scores=fold_scores,
        predictions=predictions,
        fold_of_sample=fold_of_sample,
    )
