"""End-to-end SAR modeling run.

Spatial folds -> forward feature selection -> final quantile forest ->
area of applicability -> prediction surfaces.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import xarray as xr

from sarmap.applicability.aoa import ApplicabilityEngine, ApplicabilityProfile
from sarmap.config.settings import Settings
from sarmap.data import PredictorGrid, SampleSet
from sarmap.models.io import save_run
from sarmap.models.qrf import ModelTrainer, QuantileForestTrainer, TrainedModel
from sarmap.selection.ffs import ForwardFeatureSelector, SelectionResult
from sarmap.selection.tuning import tune_forest
from sarmap.spatial.folds import FoldAssignment, SpatialFoldBuilder
from sarmap.utils.logger import setup_logger

logger = setup_logger("pipeline")


def _quantile_name(quantile: float) -> str:
    return f"q{round(quantile * 100):02d}"


def predict_surfaces(
    model: TrainedModel,
    grid: PredictorGrid,
    quantiles: Sequence[float] = (0.05, 0.5, 0.95),
) -> xr.Dataset:
    """Quantile prediction surfaces with interval width and ratio.

    The interval spans the lowest to the highest requested quantile; the
    ratio divides its width by the median and is NaN where the median is 0.

    Args:
        model: Trained quantile model
        grid: Predictor grid containing the model's bands
        quantiles: Quantiles to predict, must include 0.5

    Returns:
        Dataset with one variable per quantile (q05, q50, q95, ...),
        "interval_width" and "interval_ratio"
    """
    quantiles = sorted(quantiles)
    if 0.5 not in quantiles:
        raise ValueError("Quantiles must include 0.5 (median)")

    bands = list(model.feature_names)
    features = grid.features(bands)
    predictions = model.predict_quantiles(features, quantiles).to_numpy()

    median = predictions[:, quantiles.index(0.5)]
    width = predictions[:, -1] - predictions[:, 0]
    ratio = np.full_like(width, np.nan)
    np.divide(width, median, out=ratio, where=median != 0)
    n_zero = int(np.sum(median == 0))
    if n_zero:
        logger.warning(f"Median prediction is 0 in {n_zero} cells, interval ratio set to NaN")

    surfaces = {
        _quantile_name(q): grid.to_surface(predictions[:, i], _quantile_name(q), bands)
        for i, q in enumerate(quantiles)
    }
    surfaces["interval_width"] = grid.to_surface(width, "interval_width", bands)
    surfaces["interval_ratio"] = grid.to_surface(ratio, "interval_ratio", bands)
    return xr.Dataset(surfaces, attrs={"crs": grid.crs or ""})


@dataclass
class PipelineResult:
    """Everything a run produces for the I/O and plotting collaborators."""

    folds: FoldAssignment
    selection: SelectionResult
    model: TrainedModel
    profile: ApplicabilityProfile
    surfaces: xr.Dataset


class SARPipeline:
    """Wire fold construction, feature selection, training and AOA.

    Args:
        settings: Run configuration
        trainer: Regression engine; defaults to a quantile regression forest
            built from ``settings.forest``
    """

    def __init__(self, settings: Settings | None = None, trainer: ModelTrainer | None = None):
        self.settings = settings or Settings()
        self.trainer = trainer or QuantileForestTrainer(self.settings.forest)
        self.logger = setup_logger("pipeline", log_file=self.settings.paths.log_file)

    def build_folds(self, samples: SampleSet, grid: PredictorGrid) -> FoldAssignment:
        builder = SpatialFoldBuilder(self.settings.folds, seed=self.settings.seed)
        return builder.build(samples, grid)

    def select_features(self, samples: SampleSet, folds: FoldAssignment) -> SelectionResult:
        selector = ForwardFeatureSelector(self.trainer, self.settings.selection)
        return selector.select(samples.features, samples.target, folds)

    def fit_final(self, samples: SampleSet, features: Sequence[str]) -> TrainedModel:
        """Fit the final model on all samples with the selected features."""
        features = list(features)
        logger.info(f"Training final model on {samples.n_samples} samples with {features}")
        return self.trainer.train(
            features, samples.features[features].to_numpy(dtype=float), samples.target
        )

    def tune(
        self,
        samples: SampleSet,
        folds: FoldAssignment,
        features: Sequence[str],
        n_trials: int = 50,
        timeout: int | None = None,
    ) -> None:
        """Tune forest hyperparameters on the selected features and spatial folds."""
        tuned, _ = tune_forest(
            samples.features[list(features)].to_numpy(dtype=float),
            samples.target,
            list(folds.splits()),
            features,
            base_config=self.settings.forest,
            n_trials=n_trials,
            timeout=timeout,
            seed=self.settings.seed,
            r2_method=self.settings.selection.r2_method,
        )
        self.settings = self.settings.model_copy(update={"forest": tuned})
        self.trainer = QuantileForestTrainer(tuned)

    def run(
        self,
        samples: SampleSet,
        grid: PredictorGrid,
        tune_trials: int = 0,
    ) -> PipelineResult:
        """Run the full pipeline.

        Args:
            samples: Labeled samples, features in grid band order
            grid: Prediction domain
            tune_trials: Number of Optuna trials for the final forest (0 = skip)

        Returns:
            PipelineResult
        """
        samples.check_grid(grid)

        folds = self.build_folds(samples, grid)
        selection = self.select_features(samples, folds)
        if tune_trials > 0:
            if not isinstance(self.trainer, QuantileForestTrainer):
                raise TypeError("Tuning requires the quantile forest trainer")
            self.tune(samples, folds, selection.selected, n_trials=tune_trials)
        model = self.fit_final(samples, selection.selected)

        engine = ApplicabilityEngine(self.settings.applicability)
        profile = engine.fit(model, samples.features, folds)

        surfaces = predict_surfaces(model, grid, self.settings.forest.quantiles)
        surfaces = surfaces.merge(engine.predict_grid(grid), combine_attrs="override")
        surfaces.attrs["aoa_threshold"] = profile.threshold
        inside = surfaces["AOA"].values[grid.valid_mask(list(selection.selected))]
        surfaces.attrs["aoa_fraction"] = float(inside.mean()) if inside.size else 0.0

        self.logger.info(
            f"Run finished: {list(selection.selected)}, CV R²={selection.score:.4f}, "
            f"{surfaces.attrs['aoa_fraction']:.1%} of valid grid cells inside the AOA"
        )
        return PipelineResult(
            folds=folds,
            selection=selection,
            model=model,
            profile=profile,
            surfaces=surfaces,
        )

    def save(self, result: PipelineResult, output_dir: Path | None = None) -> Path:
        """Write run outputs to ``output_dir`` (default: ``settings.paths.output_dir``)."""
        return save_run(output_dir or self.settings.paths.output_dir, result)
