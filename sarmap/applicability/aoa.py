"""Area of applicability (AOA) of a trained model.

Implements the dissimilarity index (DI) of Meyer & Pebesma (2021):

1. Predictors are standardized with the training mean and standard deviation
   and multiplied by the model's feature importances.
2. For each training point, the distance to the nearest training point
   outside its cross-validation fold is divided by the mean pairwise distance
   of the training data. This is the training DI.
3. The threshold is derived from the training DI distribution: the upper
   whisker of its boxplot, i.e. the largest training DI not above
   Q3 + multiplier * IQR (multiplier 1.5 by default).
4. A new point's DI is its distance to the nearest training point divided by
   the same mean distance; it lies inside the AOA iff DI <= threshold.

References:
    Meyer, H., Pebesma, E. (2021). Predicting into unknown space? Estimating
    the area of applicability of spatial prediction models. Methods in
    Ecology and Evolution 12, 1620-1633.
"""

from dataclasses import dataclass, field
from typing import Literal

import numpy as np
import pandas as pd
import xarray as xr
from scipy.spatial.distance import pdist  # type: ignore[import-untyped]
from sklearn.neighbors import NearestNeighbors  # type: ignore[import-untyped]

from sarmap.config.settings import ApplicabilityConfig
from sarmap.data import PredictorGrid
from sarmap.exceptions import (
    EmptyTrainingSetError,
    InsufficientDataError,
    UnfittedModelError,
)
from sarmap.models.qrf import QuantileModel
from sarmap.spatial.distances import fold_heldout_to_train, sample_to_sample, standardize
from sarmap.spatial.folds import FoldAssignment
from sarmap.utils.logger import setup_logger

logger = setup_logger("applicability")


def tukey_hinges(values: np.ndarray) -> tuple[float, float]:
    """Lower and upper hinge of ``values``, as R's ``fivenum`` computes them.

    R's ``boxplot.stats`` builds its box from these hinges, not from
    interpolated quartiles.
    """
    x = np.sort(np.asarray(values, dtype=float))
    n = len(x)
    # 1-based positions; halves average the two neighbours
    depth = np.floor((n + 3) / 2) / 2
    lower, upper = depth, n + 1 - depth
    q1 = 0.5 * (x[int(np.floor(lower)) - 1] + x[int(np.ceil(lower)) - 1])
    q3 = 0.5 * (x[int(np.floor(upper)) - 1] + x[int(np.ceil(upper)) - 1])
    return float(q1), float(q3)


def applicability_threshold(
    train_di: np.ndarray,
    multiplier: float = 1.5,
    method: Literal["whisker", "iqr"] = "whisker",
) -> float:
    """Derive the DI threshold from the training DI distribution.

    Args:
        train_di: Training dissimilarity indices
        multiplier: IQR multiplier
        method: "whisker" returns the largest training DI not above
            Q3 + multiplier * IQR; "iqr" returns that bound itself

    Returns:
        Threshold, non-decreasing in ``multiplier``
    """
    train_di = np.asarray(train_di, dtype=float)
    q1, q3 = tukey_hinges(train_di)
    upper = q3 + multiplier * (q3 - q1)
    if method == "iqr":
        return float(upper)
    return float(train_di[train_di <= upper].max())


@dataclass(frozen=True)
class ApplicabilityProfile:
    """Calibration of the AOA derived from the training data.

    Attributes:
        feature_names: Predictors of the trained model, in order
        mean: Training mean per predictor
        scale: Training standard deviation per predictor (1 where constant)
        weights: Non-negative importance weight per predictor
        train_weighted: Training features in scaled, weighted space
        train_di: Training DI per training point
        average_distance: Mean pairwise distance of the training points
        threshold: DI threshold
        multiplier: IQR multiplier used for the threshold
    """

    feature_names: tuple[str, ...]
    mean: np.ndarray
    scale: np.ndarray
    weights: np.ndarray
    train_weighted: np.ndarray = field(repr=False)
    train_di: np.ndarray = field(repr=False)
    average_distance: float
    threshold: float
    multiplier: float

    def transform(self, features: pd.DataFrame | np.ndarray) -> np.ndarray:
        """Scale and weight feature vectors like the training data."""
        if isinstance(features, pd.DataFrame):
            values = features[list(self.feature_names)].to_numpy(dtype=float)
        else:
            values = np.asarray(features, dtype=float)
        return (values - self.mean) / self.scale * self.weights


@dataclass(frozen=True)
class ApplicabilityResult:
    """DI, AOA membership and (optionally) local point density per point."""

    di: np.ndarray
    aoa: np.ndarray
    lpd: np.ndarray | None = None

    @property
    def fraction_inside(self) -> float:
        return float(np.mean(self.aoa)) if len(self.aoa) else float("nan")


class ApplicabilityEngine:
    """Compute the dissimilarity index and area of applicability.

    Args:
        config: Applicability settings
    """

    def __init__(self, config: ApplicabilityConfig | None = None):
        self.config = config or ApplicabilityConfig()
        self.profile: ApplicabilityProfile | None = None
        self._index: NearestNeighbors | None = None

    def fit(
        self,
        model: QuantileModel | None,
        training_features: pd.DataFrame,
        folds: FoldAssignment | None = None,
    ) -> ApplicabilityProfile:
        """Calibrate the AOA on the model's training data.

        Args:
            model: Trained model; its feature names and importances are used
            training_features: Training predictors (must contain the model's features)
            folds: CV folds of the training data; nearest neighbours of a
                training point are searched outside its fold

        Returns:
            ApplicabilityProfile, also stored on the engine

        Raises:
            UnfittedModelError: If no trained model is given
            EmptyTrainingSetError: If the training features are empty
        """
        if model is None:
            raise UnfittedModelError("A trained model is required to compute the AOA")
        if training_features is None or len(training_features) == 0:
            raise EmptyTrainingSetError("Training features are empty")

        names = tuple(model.feature_names)
        values = training_features[list(names)].to_numpy(dtype=float)
        if len(values) < 2:
            raise InsufficientDataError(len(values), 2, what="training points")

        importances = model.feature_importances.reindex(list(names)).fillna(0.0)
        weights = np.clip(importances.to_numpy(dtype=float), 0.0, None)
        if not np.any(weights > 0):
            logger.warning("All feature importances are zero, using equal weights")
            weights = np.ones(len(names))

        scaled, mean, scale = standardize(values)
        train_weighted = scaled * weights

        average_distance = float(np.mean(pdist(train_weighted)))
        if average_distance == 0:
            raise ValueError("Training points coincide in weighted feature space")

        use_folds = folds is not None and self.config.use_folds
        if use_folds:
            if folds.n_samples != len(values):  # type: ignore[union-attr]
                raise ValueError(
                    f"Fold assignment covers {folds.n_samples} samples, "  # type: ignore[union-attr]
                    f"training data has {len(values)}"
                )
            min_distance = fold_heldout_to_train(train_weighted, folds.labels)  # type: ignore[union-attr]
        else:
            min_distance = sample_to_sample(train_weighted)

        train_di = min_distance / average_distance
        threshold = applicability_threshold(
            train_di, self.config.threshold_multiplier, self.config.threshold_method
        )

        self.profile = ApplicabilityProfile(
            feature_names=names,
            mean=mean,
            scale=scale,
            weights=weights,
            train_weighted=train_weighted,
            train_di=train_di,
            average_distance=average_distance,
            threshold=threshold,
            multiplier=self.config.threshold_multiplier,
        )
        self._index = NearestNeighbors().fit(train_weighted)

        logger.info(
            f"AOA calibrated on {len(values)} training points "
            f"({'fold-aware' if use_folds else 'leave-one-out'}): "
            f"threshold DI={threshold:.4f}, mean training distance={average_distance:.4f}"
        )
        return self.profile

    def predict(self, features: pd.DataFrame) -> ApplicabilityResult:
        """Dissimilarity index and AOA membership of new feature vectors.

        Args:
            features: Feature table containing the model's predictors

        Returns:
            ApplicabilityResult aligned with the rows of ``features``

        Raises:
            UnfittedModelError: If called before ``fit``
        """
        if self.profile is None or self._index is None:
            raise UnfittedModelError("ApplicabilityEngine.fit must be called first")
        profile = self.profile

        n_rows = len(features)
        di = np.empty(n_rows, dtype=float)
        lpd = np.empty(n_rows, dtype=int) if self.config.compute_lpd else None
        radius = profile.threshold * profile.average_distance
        chunk = self.config.chunk_size

        for start in range(0, n_rows, chunk):
            transformed = profile.transform(features.iloc[start : start + chunk])
            dist, _ = self._index.kneighbors(transformed, n_neighbors=1)
            di[start : start + chunk] = dist[:, 0] / profile.average_distance
            if lpd is not None:
                neighbours = self._index.radius_neighbors(
                    transformed, radius=radius, return_distance=False
                )
                lpd[start : start + chunk] = [len(n) for n in neighbours]

        return ApplicabilityResult(di=di, aoa=di <= profile.threshold, lpd=lpd)

    def predict_grid(self, grid: PredictorGrid) -> xr.Dataset:
        """DI and AOA surfaces on the prediction grid.

        Args:
            grid: Predictor grid containing the model's bands

        Returns:
            Dataset with "DI" (float), "AOA" (bool) and, if enabled, "LPD"
        """
        if self.profile is None:
            raise UnfittedModelError("ApplicabilityEngine.fit must be called first")
        bands = list(self.profile.feature_names)
        result = self.predict(grid.features(bands))

        surfaces = {
            "DI": grid.to_surface(result.di, "DI", bands),
            "AOA": grid.to_surface(result.aoa, "AOA", bands),
        }
        if result.lpd is not None:
            surfaces["LPD"] = grid.to_surface(result.lpd.astype(float), "LPD", bands)

        logger.info(
            f"{result.fraction_inside:.1%} of {len(result.di)} grid cells inside the AOA"
        )
        return xr.Dataset(
            surfaces,
            attrs={"threshold": self.profile.threshold, "crs": grid.crs or ""},
        )
