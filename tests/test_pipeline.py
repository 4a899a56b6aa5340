"""End-to-end tests for the modeling pipeline and run persistence."""

import json

import numpy as np
import pandas as pd
import pytest

from conftest import LinearTrainer
from sarmap.config.settings import FoldConfig, ForestConfig, SelectionConfig, Settings
from sarmap.data import SampleSet
from sarmap.models.io import load_model, save_run
from sarmap.pipeline import SARPipeline, predict_surfaces
from sarmap.selection.tuning import tune_forest
from sarmap.spatial.folds import SpatialFoldBuilder


@pytest.fixture
def settings() -> Settings:
    return Settings(
        seed=0,
        folds=FoldConfig(k=4, n_candidates=20),
        forest=ForestConfig(n_estimators=50, random_state=0),
    )


@pytest.fixture
def run(large_scene, settings):
    samples, grid = large_scene
    return SARPipeline(settings).run(samples, grid)


class TestPipeline:
    """Test a full run on synthetic data."""

    def test_surfaces(self, run, large_scene):
        """Every surface lies on the grid and quantiles are ordered."""
        _, grid = large_scene
        surfaces = run.surfaces

        expected = {"q05", "q50", "q95", "interval_width", "interval_ratio", "DI", "AOA"}
        assert expected <= set(surfaces.data_vars)
        for name in expected:
            assert surfaces[name].shape == grid.shape
        assert bool((surfaces["q05"] <= surfaces["q50"]).all())
        assert bool((surfaces["q50"] <= surfaces["q95"]).all())
        assert bool((surfaces["interval_width"] >= 0).all())
        assert surfaces.attrs["aoa_threshold"] == run.profile.threshold

    def test_selection_and_model_agree(self, run):
        """The final model uses the selected predictors."""
        assert run.model.feature_names == run.selection.selected
        assert run.profile.feature_names == run.selection.selected
        assert {"x1", "x2"} <= set(run.selection.selected)

    def test_deterministic(self, large_scene, settings, run):
        """A second run with the same seed reproduces the first."""
        samples, grid = large_scene

        again = SARPipeline(settings).run(samples, grid)

        np.testing.assert_array_equal(again.folds.labels, run.folds.labels)
        assert again.selection.selected == run.selection.selected
        np.testing.assert_array_equal(again.surfaces["q50"].values, run.surfaces["q50"].values)

    def test_band_mismatch(self, large_scene, settings):
        """Samples must carry the grid's bands in order."""
        samples, grid = large_scene
        reordered = samples.features[list(reversed(samples.feature_names))]

        shuffled = SampleSet(samples.coordinates, samples.target, reordered)

        with pytest.raises(ValueError, match="do not match"):
            SARPipeline(settings).run(shuffled, grid)

    def test_aoa_fraction_ignores_invalid_cells(self, large_scene, settings):
        """Cells without predictor data do not count as outside the AOA."""
        samples, grid = large_scene
        grid.dataset["x1"].values[:5, :] = np.nan
        grid.dataset["x2"].values[:5, :] = np.nan
        settings = settings.model_copy(
            update={"selection": SelectionConfig(min_improvement=1e-6)}
        )

        result = SARPipeline(settings, trainer=LinearTrainer()).run(samples, grid)

        aoa = result.surfaces["AOA"].values
        valid = grid.valid_mask(list(result.selection.selected))
        assert not valid[:5, :].any()
        assert result.surfaces.attrs["aoa_fraction"] == pytest.approx(aoa[valid].mean())
        assert result.surfaces.attrs["aoa_fraction"] > aoa.mean()

    def test_custom_trainer(self, large_scene, settings):
        """Any engine with the trainer interface can drive the pipeline."""
        samples, grid = large_scene
        settings = settings.model_copy(
            update={"selection": SelectionConfig(min_improvement=1e-6)}
        )
        pipeline = SARPipeline(settings, trainer=LinearTrainer())

        folds = pipeline.build_folds(samples, grid)
        selection = pipeline.select_features(samples, folds)

        assert set(selection.selected) == {"x1", "x2"}


class TestPredictSurfaces:
    """Test quantile surface construction."""

    def test_zero_median_ratio_is_nan(self, large_scene, forest_trainer):
        """Cells with a zero median get NaN interval ratios."""
        samples, grid = large_scene
        target = np.zeros(samples.n_samples)
        target[:5] = 1.0
        model = forest_trainer.train(
            ["x1", "x2"], samples.features[["x1", "x2"]].to_numpy(), target
        )

        surfaces = predict_surfaces(model, grid)

        zero = surfaces["q50"].values == 0
        assert zero.any()
        assert np.all(np.isnan(surfaces["interval_ratio"].values[zero]))

    def test_median_required(self, large_scene, forest_trainer):
        samples, grid = large_scene
        model = forest_trainer.train(
            ["x1", "x2"], samples.features[["x1", "x2"]].to_numpy(), samples.target
        )

        with pytest.raises(ValueError, match="0.5"):
            predict_surfaces(model, grid, quantiles=[0.1, 0.9])


class TestPersistence:
    """Test saving run outputs."""

    def test_save_run(self, run, tmp_path, large_scene):
        """All tabular outputs and the model blob are written."""
        samples, _ = large_scene

        save_run(tmp_path / "run", run)

        out = tmp_path / "run"
        for name in (
            "qrf_model.joblib",
            "ffs_trace.csv",
            "ffs_candidates.csv",
            "oof_predictions.csv",
            "fold_assignment.csv",
            "summary.json",
        ):
            assert (out / name).exists()

        summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))
        assert summary["selected_features"] == list(run.selection.selected)
        assert summary["fold_method"] == "knndm"

        folds = pd.read_csv(out / "fold_assignment.csv")
        np.testing.assert_array_equal(folds["fold"].to_numpy(), run.folds.labels)

        model = load_model(out / "qrf_model.joblib")
        np.testing.assert_array_equal(
            model.predict(samples.features), run.model.predict(samples.features)
        )

    def test_default_output_dir(self, run, settings, tmp_path):
        """The pipeline saves to the configured output directory."""
        settings.paths.output_dir = tmp_path / "outputs"
        settings.paths.log_file = tmp_path / "logs" / "run.log"

        saved = SARPipeline(settings).save(run)

        assert saved == tmp_path / "outputs"
        assert (saved / "summary.json").exists()
        assert (tmp_path / "logs" / "run.log").exists()


class TestTuning:
    """Test hyperparameter tuning on spatial folds."""

    def test_tune_forest(self, large_scene):
        """Tuned settings stay valid and keep untuned fields."""
        samples, grid = large_scene
        folds = SpatialFoldBuilder(FoldConfig(k=3, n_candidates=10), seed=0).build(
            samples, grid
        )
        base = ForestConfig(random_state=0, quantiles=[0.1, 0.5, 0.9])
        features = ["x1", "x2"]

        tuned, study = tune_forest(
            samples.features[features].to_numpy(),
            samples.target,
            list(folds.splits()),
            features,
            base_config=base,
            n_trials=2,
            seed=0,
        )

        assert len(study.trials) == 2
        assert tuned.quantiles == [0.1, 0.5, 0.9]
        assert 0.2 <= tuned.max_features <= 1.0
        assert tuned.n_estimators % 100 == 0
