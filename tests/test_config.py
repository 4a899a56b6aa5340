"""Tests for configuration settings."""

import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from sarmap.config.settings import (
    ApplicabilityConfig,
    FoldConfig,
    ForestConfig,
    SelectionConfig,
    Settings,
)


class TestFoldConfig:
    """Test fold configuration."""

    def test_default_values(self):
        """Test default fold configuration."""
        config = FoldConfig()

        assert config.k == 10
        assert config.method == "knndm"
        assert config.statistic == "wasserstein"
        assert config.reference_sample_size == 2000
        assert config.min_fold_size == 2

    def test_k_validation(self):
        """k must allow at least two folds."""
        with pytest.raises(ValidationError):
            FoldConfig(k=1)

    def test_method_validation(self):
        """Unknown fold methods are rejected."""
        with pytest.raises(ValidationError):
            FoldConfig(method="leave_one_out")


class TestForestConfig:
    """Test quantile forest configuration."""

    def test_default_values(self):
        config = ForestConfig()

        assert config.n_estimators == 500
        assert config.quantiles == [0.05, 0.5, 0.95]

    def test_quantiles_validation(self):
        """Test quantiles validation."""
        # unsorted input is sorted
        config = ForestConfig(quantiles=[0.9, 0.5, 0.1])
        assert config.quantiles == [0.1, 0.5, 0.9]

        with pytest.raises(ValueError, match="Quantiles must include 0.5"):
            ForestConfig(quantiles=[0.1, 0.9])

        with pytest.raises(ValueError, match="All quantiles must be between 0 and 1"):
            ForestConfig(quantiles=[0.1, 0.5, 1.5])

    def test_max_features(self):
        """Fractions and sklearn keywords are accepted."""
        assert ForestConfig(max_features="sqrt").max_features == "sqrt"
        assert ForestConfig(max_features=0.3).max_features == 0.3

        with pytest.raises(ValueError, match="max_features"):
            ForestConfig(max_features=1.5)


class TestSelectionConfig:
    """Test forward selection configuration."""

    def test_default_values(self):
        config = SelectionConfig()

        assert config.r2_method == "squared_correlation"
        assert config.min_improvement == 0.0
        assert config.n_jobs == 1

    def test_max_features_lower_bound(self):
        """Selection starts from a pair, so fewer than 2 is meaningless."""
        with pytest.raises(ValidationError):
            SelectionConfig(max_features=1)


class TestSettings:
    """Test main settings class."""

    def test_default_initialization(self):
        """Test default settings initialization."""
        settings = Settings()

        assert settings.seed == 42
        assert isinstance(settings.folds, FoldConfig)
        assert isinstance(settings.forest, ForestConfig)
        assert isinstance(settings.applicability, ApplicabilityConfig)
        assert settings.applicability.threshold_multiplier == 1.5

    def test_from_core_config(self):
        """Flat host configuration keys map onto the nested settings."""
        settings = Settings.from_core_config(
            {
                "k": 5,
                "seed": 7,
                "referenceSampleSize": 500,
                "blockSizeMultiplier": 3.0,
                "applicabilityThresholdMultiplier": 2.0,
                "foldMethod": "block",
            }
        )

        assert settings.seed == 7
        assert settings.folds.k == 5
        assert settings.folds.reference_sample_size == 500
        assert settings.folds.block_size_multiplier == 3.0
        assert settings.folds.method == "block"
        assert settings.applicability.threshold_multiplier == 2.0

    def test_from_core_config_defaults(self):
        """Missing keys keep defaults."""
        settings = Settings.from_core_config({"k": 4})

        assert settings.folds.k == 4
        assert settings.folds.method == "knndm"
        assert settings.seed == 42

    def test_yaml_roundtrip(self):
        """Test saving and loading settings to/from YAML."""
        settings = Settings()
        settings.folds.k = 6
        settings.forest.quantiles = [0.1, 0.5, 0.9]

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            temp_path = Path(f.name)

        try:
            settings.to_yaml(temp_path)
            loaded_settings = Settings.from_yaml(temp_path)

            assert loaded_settings.folds.k == 6
            assert loaded_settings.forest.quantiles == [0.1, 0.5, 0.9]
            assert loaded_settings.paths.output_dir == Path("outputs")

        finally:
            temp_path.unlink()

    def test_from_yaml_with_partial_config(self):
        """Test loading settings from partial YAML configuration."""
        partial_config = {
            "folds": {"k": 3, "statistic": "ks"},
            "selection": {"n_jobs": 4, "backend": "thread"},
        }

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(partial_config, f)
            temp_path = Path(f.name)

        try:
            settings = Settings.from_yaml(temp_path)

            assert settings.folds.k == 3
            assert settings.folds.statistic == "ks"
            assert settings.selection.backend == "thread"

            # defaults preserved
            assert settings.folds.method == "knndm"
            assert settings.forest.n_estimators == 500

        finally:
            temp_path.unlink()
