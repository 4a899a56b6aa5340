"""Quantile regression forest trainer.

Thin wrapper around ``quantile_forest.RandomForestQuantileRegressor`` giving
the rest of the pipeline a narrow interface: ``train(features, X, y)`` returns
a ``TrainedModel`` that predicts at a requested quantile.
"""

import io
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import joblib
import numpy as np
import pandas as pd
from quantile_forest import RandomForestQuantileRegressor  # type: ignore[import-untyped]
from sklearn.inspection import permutation_importance  # type: ignore[import-untyped]

from sarmap.config.settings import ForestConfig
from sarmap.evaluation.metrics import mean_absolute_error, percent_bias, rmse
from sarmap.exceptions import ModelFitError
from sarmap.utils.logger import setup_logger

logger = setup_logger("qrf")


class QuantileModel(Protocol):
    """Interface every trained model exposes to the pipeline."""

    feature_names: tuple[str, ...]

    def predict(self, x_new: np.ndarray | pd.DataFrame, quantile: float = 0.5) -> np.ndarray: ...

    @property
    def feature_importances(self) -> pd.Series: ...


class ModelTrainer(Protocol):
    """Interface of the regression engine driven by forward selection."""

    def train(
        self, features: Sequence[str], x: np.ndarray, y: np.ndarray
    ) -> QuantileModel: ...


@dataclass
class TrainedModel:
    """Fitted forest bound to its ordered feature subset.

    Attributes:
        estimator: Fitted RandomForestQuantileRegressor
        feature_names: Features in column order of the training matrix
        importances: Non-negative importance per feature
        residual_stats: RMSE, MAE and PBIAS of median predictions on the
            training data
    """

    estimator: RandomForestQuantileRegressor
    feature_names: tuple[str, ...]
    importances: np.ndarray
    residual_stats: dict[str, float] = field(default_factory=dict)

    def _matrix(self, x_new: np.ndarray | pd.DataFrame) -> np.ndarray:
        if isinstance(x_new, pd.DataFrame):
            missing = [f for f in self.feature_names if f not in x_new.columns]
            if missing:
                raise ValueError(f"Missing features for prediction: {missing}")
            return x_new[list(self.feature_names)].to_numpy(dtype=float)
        x_new = np.asarray(x_new, dtype=float)
        if x_new.ndim != 2 or x_new.shape[1] != len(self.feature_names):
            raise ValueError(
                f"Expected {len(self.feature_names)} feature columns, got shape {x_new.shape}"
            )
        return x_new

    def predict(self, x_new: np.ndarray | pd.DataFrame, quantile: float = 0.5) -> np.ndarray:
        """Predict the conditional quantile for new feature vectors."""
        if not 0.0 < quantile < 1.0:
            raise ValueError(f"quantile must be in (0, 1), got {quantile}")
        matrix = self._matrix(x_new)
        try:
            return np.ravel(self.estimator.predict(matrix, quantiles=quantile))
        except Exception as e:
            raise ModelFitError(self.feature_names, e) from e

    def predict_quantiles(
        self, x_new: np.ndarray | pd.DataFrame, quantiles: Sequence[float]
    ) -> pd.DataFrame:
        """Predict several quantiles at once, one column per quantile."""
        matrix = self._matrix(x_new)
        try:
            predictions = self.estimator.predict(matrix, quantiles=list(quantiles))
        except Exception as e:
            raise ModelFitError(self.feature_names, e) from e
        predictions = np.asarray(predictions).reshape(len(matrix), len(quantiles))
        return pd.DataFrame(predictions, columns=[f"q{q:g}" for q in quantiles])

    @property
    def feature_importances(self) -> pd.Series:
        return pd.Series(self.importances, index=list(self.feature_names), name="importance")

    def to_bytes(self) -> bytes:
        """Serialize the model into a joblib blob."""
        buffer = io.BytesIO()
        joblib.dump(self, buffer)
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls, blob: bytes) -> "TrainedModel":
        """Restore a model serialized with ``to_bytes``."""
        model = joblib.load(io.BytesIO(blob))
        if not isinstance(model, cls):
            raise TypeError(f"Blob does not contain a {cls.__name__}")
        return model


class QuantileForestTrainer:
    """Train quantile regression forests with fixed hyperparameters.

    The random state is fixed by the config, so repeated fits on identical
    inputs give identical forests regardless of where they run.
    """

    def __init__(self, config: ForestConfig | None = None, **overrides):
        config = config or ForestConfig()
        self.config = config.model_copy(update=overrides) if overrides else config

    def _estimator(self) -> RandomForestQuantileRegressor:
        cfg = self.config
        return RandomForestQuantileRegressor(
            n_estimators=cfg.n_estimators,
            min_samples_leaf=cfg.min_samples_leaf,
            max_features=cfg.max_features,
            max_depth=cfg.max_depth,
            default_quantiles=0.5,
            random_state=cfg.random_state,
            n_jobs=cfg.n_jobs,
        )

    def train(
        self, features: Sequence[str], x: np.ndarray, y: np.ndarray
    ) -> TrainedModel:
        """Fit a forest on the given feature columns.

        Args:
            features: Feature names, in column order of ``x``
            x: (n, p) feature matrix
            y: (n,) target

        Returns:
            TrainedModel

        Raises:
            ModelFitError: If the underlying fit fails
        """
        features = tuple(features)
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if x.ndim != 2 or x.shape[1] != len(features):
            raise ValueError(
                f"x has shape {x.shape} but {len(features)} features were named"
            )

        estimator = self._estimator()
        try:
            estimator.fit(x, y)
            fitted = np.ravel(estimator.predict(x, quantiles=0.5))
        except Exception as e:
            raise ModelFitError(features, e) from e

        if self.config.importance == "permutation":
            result = permutation_importance(
                estimator,
                x,
                y,
                n_repeats=10,
                random_state=self.config.random_state,
            )
            importances = result.importances_mean
        else:
            importances = estimator.feature_importances_
        importances = np.clip(np.asarray(importances, dtype=float), 0.0, None)

        residual_stats = {
            "RMSE": rmse(fitted, y),
            "MAE": mean_absolute_error(fitted, y),
            "PBIAS": percent_bias(fitted, y),
        }
        logger.debug(
            f"Trained QRF on {x.shape[0]} samples with {features}: "
            f"training RMSE={residual_stats['RMSE']:.4f}"
        )
        return TrainedModel(
            estimator=estimator,
            feature_names=features,
            importances=importances,
            residual_stats=residual_stats,
        )
