"""Shared fixtures: synthetic predictor grids and samples."""

from collections.abc import Sequence

import numpy as np
import pandas as pd
import pytest
from sklearn.dummy import DummyRegressor
from sklearn.linear_model import LinearRegression

from sarmap.config.settings import ForestConfig
from sarmap.data import PredictorGrid, SampleSet
from sarmap.models.qrf import QuantileForestTrainer

BANDS = ["x1", "x2", "noise1", "noise2", "noise3"]


def make_synthetic(
    n_samples: int, grid_size: int, seed: int = 0
) -> tuple[SampleSet, PredictorGrid]:
    """Grid with 2 informative and 3 noise bands; SAR = 2*x1 + 3*x2."""
    rng = np.random.default_rng(seed)
    coords = np.arange(grid_size, dtype=float) + 0.5
    bands = {name: rng.uniform(0.0, 1.0, size=(grid_size, grid_size)) for name in BANDS}
    grid = PredictorGrid.from_arrays(bands, x=coords, y=coords, crs="EPSG:3035")

    cells = rng.choice(grid_size * grid_size, size=n_samples, replace=False)
    rows, cols = np.divmod(cells, grid_size)
    features = pd.DataFrame({name: bands[name][rows, cols] for name in BANDS})
    samples = SampleSet(
        coordinates=np.column_stack([coords[cols], coords[rows]]),
        target=2.0 * features["x1"].to_numpy() + 3.0 * features["x2"].to_numpy(),
        features=features,
    )
    return samples, grid


class LinearModel:
    """Least-squares model exposing the trained-model interface."""

    def __init__(self, features: Sequence[str], estimator: LinearRegression):
        self.feature_names = tuple(features)
        self.estimator = estimator

    def predict(self, x_new, quantile: float = 0.5) -> np.ndarray:
        if isinstance(x_new, pd.DataFrame):
            x_new = x_new[list(self.feature_names)].to_numpy()
        return self.estimator.predict(np.asarray(x_new, dtype=float))

    @property
    def feature_importances(self) -> pd.Series:
        return pd.Series(1.0, index=list(self.feature_names))


class LinearTrainer:
    """Deterministic, exact-on-linear-data stand-in for the forest."""

    def train(self, features, x, y) -> LinearModel:
        return LinearModel(features, LinearRegression().fit(x, y))


class FailingTrainer(LinearTrainer):
    """Fails whenever the named feature is part of the subset."""

    def __init__(self, bad_feature: str):
        self.bad_feature = bad_feature

    def train(self, features, x, y) -> LinearModel:
        if self.bad_feature in features:
            raise np.linalg.LinAlgError("singular matrix")
        return super().train(features, x, y)


class FlatTrainer(LinearTrainer):
    """Predicts the training mean whenever the named feature is in the subset."""

    def __init__(self, flat_feature: str):
        self.flat_feature = flat_feature

    def train(self, features, x, y) -> LinearModel:
        if self.flat_feature in features:
            return LinearModel(features, DummyRegressor().fit(x, y))
        return super().train(features, x, y)


@pytest.fixture
def small_scene() -> tuple[SampleSet, PredictorGrid]:
    """12 samples on a 10x10 grid."""
    return make_synthetic(n_samples=12, grid_size=10, seed=0)


@pytest.fixture
def large_scene() -> tuple[SampleSet, PredictorGrid]:
    """80 samples on a 20x20 grid."""
    return make_synthetic(n_samples=80, grid_size=20, seed=1)


@pytest.fixture
def forest_trainer() -> QuantileForestTrainer:
    return QuantileForestTrainer(ForestConfig(n_estimators=50, random_state=0))
