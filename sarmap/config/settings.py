"""Configuration management for the SAR modeling core."""

from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator


class FoldConfig(BaseModel):
    """Spatial fold construction settings."""

    k: int = Field(default=10, ge=2, description="Number of CV folds")
    method: Literal["knndm", "block"] = Field(
        default="knndm",
        description="Nearest-neighbour distance matching or block partitioning",
    )
    space: Literal["geographical", "feature"] = Field(
        default="geographical",
        description="Space in which nearest-neighbour distances are matched",
    )
    distance_metric: Literal["euclidean", "haversine"] = Field(
        default="euclidean",
        description="euclidean for projected CRS, haversine for lon/lat degrees",
    )
    clustering: Literal["hierarchical", "kmeans"] = Field(default="hierarchical")
    statistic: Literal["wasserstein", "ks"] = Field(
        default="wasserstein",
        description="Distributional distance between CV and prediction distances",
    )
    reference_sample_size: int = Field(
        default=2000, ge=1, description="Cap on grid cells used as reference"
    )
    n_candidates: int = Field(default=100, ge=1)
    max_fold_fraction: float = Field(default=0.5, gt=0.0, le=1.0)
    min_fold_size: int = Field(
        default=2, ge=1, description="Smallest held-out fold; R² needs two points"
    )
    block_size_multiplier: float = Field(default=2.0, gt=0.0)


class SelectionConfig(BaseModel):
    """Forward feature selection settings."""

    r2_method: Literal["squared_correlation", "coefficient"] = Field(
        default="squared_correlation"
    )
    cv_quantile: float = Field(default=0.5, gt=0.0, lt=1.0)
    min_improvement: float = Field(default=0.0, ge=0.0)
    max_features: int | None = Field(default=None, ge=2)
    n_jobs: int = Field(default=1)
    backend: Literal["process", "thread"] = Field(default="process")
    show_progress: bool = Field(default=False, description="tqdm bar per round")


class ForestConfig(BaseModel):
    """Quantile regression forest settings."""

    n_estimators: int = Field(default=500, ge=1)
    min_samples_leaf: int = Field(default=1, ge=1)
    max_features: float | Literal["sqrt", "log2"] = Field(default=1.0)
    max_depth: int | None = Field(default=None, ge=1)
    random_state: int = Field(default=42)
    n_jobs: int = Field(default=1)
    importance: Literal["impurity", "permutation"] = Field(default="impurity")
    quantiles: list[float] = Field(default=[0.05, 0.5, 0.95])

    @field_validator("quantiles")
    @classmethod
    def validate_quantiles(cls, v: list[float]) -> list[float]:
        """Validate quantile values."""
        if not all(0 < q < 1 for q in v):
            raise ValueError("All quantiles must be between 0 and 1")
        if 0.5 not in v:
            raise ValueError("Quantiles must include 0.5 (median)")
        return sorted(v)

    @field_validator("max_features")
    @classmethod
    def validate_max_features(cls, v: float | str) -> float | str:
        """Fractions must lie in (0, 1]."""
        if isinstance(v, float) and not 0.0 < v <= 1.0:
            raise ValueError("max_features fraction must be in (0, 1]")
        return v


class ApplicabilityConfig(BaseModel):
    """Area of applicability settings."""

    threshold_multiplier: float = Field(default=1.5, ge=0.0)
    threshold_method: Literal["whisker", "iqr"] = Field(default="whisker")
    use_folds: bool = Field(default=True)
    compute_lpd: bool = Field(default=False)
    chunk_size: int = Field(default=50_000, ge=1)


class PathConfig(BaseModel):
    """Path configuration settings."""

    output_dir: Path = Field(default=Path("outputs"))
    log_file: Path = Field(default=Path("logs/sarmap.log"))

    @field_validator("output_dir", "log_file", mode="before")
    @classmethod
    def validate_paths(cls, v: Any) -> Path:
        """Ensure paths are Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v


class Settings(BaseModel):
    """Main settings class containing all configuration."""

    seed: int = Field(default=42)
    folds: FoldConfig = Field(default_factory=FoldConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    forest: ForestConfig = Field(default_factory=ForestConfig)
    applicability: ApplicabilityConfig = Field(default_factory=ApplicabilityConfig)
    paths: PathConfig = Field(default_factory=PathConfig)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(config_path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
        return cls(**config_dict)

    def to_yaml(self, output_path: Path) -> None:
        """Save settings to a YAML file."""
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    @classmethod
    def from_core_config(cls, config: Mapping[str, Any]) -> "Settings":
        """Build settings from the host application's flat configuration.

        Recognised keys: ``k``, ``seed``, ``referenceSampleSize``,
        ``blockSizeMultiplier``, ``applicabilityThresholdMultiplier`` and
        ``foldMethod``. Missing keys keep their defaults.
        """
        folds: dict[str, Any] = {}
        applicability: dict[str, Any] = {}
        if "k" in config:
            folds["k"] = config["k"]
        if "referenceSampleSize" in config:
            folds["reference_sample_size"] = config["referenceSampleSize"]
        if "blockSizeMultiplier" in config:
            folds["block_size_multiplier"] = config["blockSizeMultiplier"]
        if "foldMethod" in config:
            folds["method"] = config["foldMethod"]
        if "applicabilityThresholdMultiplier" in config:
            applicability["threshold_multiplier"] = config[
                "applicabilityThresholdMultiplier"
            ]
        return cls(
            seed=config.get("seed", 42),
            folds=FoldConfig(**folds),
            applicability=ApplicabilityConfig(**applicability),
        )
