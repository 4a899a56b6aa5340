"""I/O utilities for saving and loading modeling runs."""

import json
from pathlib import Path
from typing import TYPE_CHECKING

import joblib
import pandas as pd

from sarmap.models.qrf import TrainedModel
from sarmap.utils.helpers import ensure_directory
from sarmap.utils.logger import setup_logger

if TYPE_CHECKING:
    from sarmap.pipeline import PipelineResult

logger = setup_logger("model_io")


def save_run(output_dir: Path, result: "PipelineResult") -> Path:
    """Save the tabular and model outputs of a pipeline run.

    Writes the joblib model blob, the selection trace, candidate scores,
    out-of-fold predictions, fold labels and a JSON summary. Raster surfaces
    are left to the caller.

    Args:
        output_dir: Directory to save results
        result: Pipeline result

    Returns:
        The output directory
    """
    output_dir = ensure_directory(Path(output_dir))

    model_path = output_dir / "qrf_model.joblib"
    joblib.dump(result.model, model_path)

    result.selection.trace_frame().to_csv(output_dir / "ffs_trace.csv", index=False)
    result.selection.candidates.to_csv(output_dir / "ffs_candidates.csv", index=False)
    result.selection.oof.to_csv(output_dir / "oof_predictions.csv", index=False)
    pd.DataFrame(
        {
            "sample": range(result.folds.n_samples),
            "fold": result.folds.labels,
            "cv_distance": result.folds.cv_distances,
        }
    ).to_csv(output_dir / "fold_assignment.csv", index=False)

    validation = result.selection.validation_statistics().iloc[0].to_dict()
    summary = {
        "selected_features": list(result.selection.selected),
        "cv_r2": result.selection.score,
        "cv_fold_r2": [float(s) for s in result.selection.fold_scores],
        "fold_method": result.folds.method,
        "fold_statistic": {result.folds.statistic_name: result.folds.statistic},
        "aoa_threshold": result.profile.threshold,
        "feature_importances": result.model.feature_importances.to_dict(),
        "training_residuals": result.model.residual_stats,
        "validation": {k: float(v) for k, v in validation.items()},
    }
    with open(output_dir / "summary.json", "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Saved run results to {output_dir}")
    return output_dir


def load_model(model_path: Path) -> TrainedModel:
    """Load a model saved by ``save_run``."""
    model = joblib.load(model_path)
    if not isinstance(model, TrainedModel):
        raise TypeError(f"{model_path} does not contain a TrainedModel")
    return model
