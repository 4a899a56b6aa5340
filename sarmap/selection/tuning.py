"""Hyperparameter optimization for quantile regression forests.

Scores each Optuna trial by mean spatial cross-validated R² over the same
folds used for feature selection, so the tuned forest is judged on the
prediction task rather than on random splits.
"""

from collections.abc import Sequence

import numpy as np
import optuna  # type: ignore[import-untyped]

from sarmap.config.settings import ForestConfig
from sarmap.exceptions import ModelFitError
from sarmap.models.qrf import QuantileForestTrainer
from sarmap.selection.cross_validation import R2Method, Splits, cross_validate
from sarmap.utils.logger import setup_logger

logger = setup_logger("qrf_tuning")


def objective_spatial_cv(
    trial: optuna.Trial,
    x: np.ndarray,
    y: np.ndarray,
    splits: Splits,
    features: Sequence[str],
    base_config: ForestConfig,
    r2_method: R2Method = "squared_correlation",
) -> float:
    """Objective returning the mean spatial-CV R² of one forest configuration.

    Args:
        trial: Optuna trial
        x: Feature matrix of the selected predictors
        y: Target
        splits: (train, test) index pairs
        features: Predictor names
        base_config: Forest settings the trial parameters override
        r2_method: R² variant used for scoring

    Returns:
        Mean out-of-fold R²
    """
    n_estimators = trial.suggest_int("n_estimators", 100, 1000, step=100)
    min_samples_leaf = trial.suggest_int("min_samples_leaf", 1, 10)
    max_features = trial.suggest_float("max_features", 0.2, 1.0)

    max_depth_choice = trial.suggest_categorical("max_depth_choice", ["None", "limited"])
    if max_depth_choice == "None":
        max_depth = None
    else:
        max_depth = trial.suggest_int("max_depth", 3, 30)

    trainer = QuantileForestTrainer(
        base_config,
        n_estimators=n_estimators,
        min_samples_leaf=min_samples_leaf,
        max_features=max_features,
        max_depth=max_depth,
    )
    try:
        result = cross_validate(trainer, x, y, splits, features, r2_method=r2_method)
    except ModelFitError as e:
        logger.error(f"Model training failed for trial {trial.number}: {e}")
        raise optuna.TrialPruned() from e

    logger.debug(f"Trial {trial.number}: R²={result.score:.4f}")
    return result.score


def tune_forest(
    x: np.ndarray,
    y: np.ndarray,
    splits: Splits,
    features: Sequence[str],
    base_config: ForestConfig | None = None,
    n_trials: int = 50,
    timeout: int | None = None,
    seed: int = 42,
    r2_method: R2Method = "squared_correlation",
) -> tuple[ForestConfig, optuna.Study]:
    """Search forest hyperparameters with a TPE sampler.

    Degenerate folds are a property of the data, not of a trial, and abort
    the study.

    Args:
        x: Feature matrix of the selected predictors
        y: Target
        splits: (train, test) index pairs
        features: Predictor names
        base_config: Starting forest settings
        n_trials: Number of Optuna trials
        timeout: Optional optimization timeout in seconds
        seed: Sampler seed
        r2_method: R² variant used for scoring

    Returns:
        Tuple of (tuned ForestConfig, study)
    """
    base_config = base_config or ForestConfig()
    study = optuna.create_study(
        study_name=f"QRF_spatial_cv_{'_'.join(features)}",
        direction="maximize",
        sampler=optuna.samplers.TPESampler(seed=seed),
    )

    def objective(trial: optuna.Trial) -> float:
        return objective_spatial_cv(
            trial, x, y, splits, features, base_config, r2_method
        )

    logger.info(f"Tuning QRF on {list(features)}: {n_trials} trials")
    study.optimize(
        objective,
        n_trials=n_trials,
        timeout=timeout,
        show_progress_bar=False,
        catch=(),
    )

    completed = [t for t in study.trials if t.state == optuna.trial.TrialState.COMPLETE]
    if not completed:
        raise ModelFitError(features, "no tuning trial completed")

    params = dict(study.best_trial.params)
    max_depth = params.pop("max_depth", None)
    params.pop("max_depth_choice", None)
    tuned = base_config.model_copy(update={**params, "max_depth": max_depth})

    logger.info(
        f"Best trial {study.best_trial.number}: R²={study.best_value:.4f}, "
        f"params={study.best_trial.params}"
    )
    return tuned, study
