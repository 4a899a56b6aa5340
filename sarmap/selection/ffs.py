"""Forward feature selection over spatial cross-validation.

The search starts from the best pair of predictors and then greedily adds the
predictor that improves mean out-of-fold R² the most, stopping at the first
round without improvement. For m predictors this needs at most
m(m-1)/2 + (m-1)(m-2)/2 subset evaluations instead of 2^m.

Candidate evaluations in a round are independent and can run in a worker
pool. Results are reduced in candidate order, never in arrival order, so the
selected subset does not depend on the number of workers.

References:
    Meyer, H., Reudenbach, C., Hengl, T., Katurji, M., Nauss, T. (2018).
    Improving performance of spatio-temporal machine learning models using
    forward feature selection and target-oriented validation.
    Environmental Modelling & Software 101, 1-9.
"""

import itertools
import time
from collections.abc import Sequence
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from sarmap.config.settings import SelectionConfig
from sarmap.evaluation.metrics import create_metrics_dataframe
from sarmap.exceptions import InsufficientFeaturesError
from sarmap.models.qrf import ModelTrainer
from sarmap.selection.cross_validation import CVResult, R2Method, Splits, cross_validate
from sarmap.spatial.folds import FoldAssignment
from sarmap.utils.helpers import format_duration, resolve_n_jobs
from sarmap.utils.logger import setup_logger

logger = setup_logger("forward_selection")


class _Task(NamedTuple):
    trainer: ModelTrainer
    features: tuple[str, ...]
    x: np.ndarray
    y: np.ndarray
    splits: Splits
    quantile: float
    r2_method: R2Method


def _evaluate(task: _Task) -> CVResult:
    return cross_validate(
        task.trainer,
        task.x,
        task.y,
        task.splits,
        task.features,
        quantile=task.quantile,
        r2_method=task.r2_method,
    )


@dataclass(frozen=True)
class SelectionRound:
    """Best candidate of one selection round."""

    round: int
    features: tuple[str, ...]
    score: float
    n_candidates: int
    accepted: bool


@dataclass
class SelectionResult:
    """Outcome of forward feature selection.

    Attributes:
        selected: Selected predictors, in the order they were added
        score: Mean out-of-fold R² of the selected subset
        fold_scores: Per-fold R² of the selected subset
        trace: Best candidate per round
        candidates: Every evaluated subset with its score
        oof: Pooled held-out observations and predictions of the selected subset
    """

    selected: tuple[str, ...]
    score: float
    fold_scores: np.ndarray
    trace: list[SelectionRound]
    candidates: pd.DataFrame = field(repr=False)
    oof: pd.DataFrame = field(repr=False)

    def trace_frame(self) -> pd.DataFrame:
        """One row per round for plotting selection progress."""
        return pd.DataFrame(
            {
                "round": [r.round for r in self.trace],
                "n_features": [len(r.features) for r in self.trace],
                "features": [" + ".join(r.features) for r in self.trace],
                "score": [r.score for r in self.trace],
                "n_candidates": [r.n_candidates for r in self.trace],
                "accepted": [r.accepted for r in self.trace],
            }
        )

    def validation_statistics(self) -> pd.DataFrame:
        """Validation metrics of the pooled out-of-fold predictions."""
        return create_metrics_dataframe(
            "ffs", self.oof["predicted"].to_numpy(), self.oof["observed"].to_numpy()
        )


class ForwardFeatureSelector:
    """Greedy predictor search scored by spatial cross-validation.

    Args:
        trainer: Regression engine, must be picklable for the process backend
        config: Selection settings
    """

    def __init__(self, trainer: ModelTrainer, config: SelectionConfig | None = None):
        self.trainer = trainer
        self.config = config or SelectionConfig()

    def select(
        self,
        features: pd.DataFrame,
        target: np.ndarray,
        folds: FoldAssignment | Splits,
    ) -> SelectionResult:
        """Run forward feature selection.

        Args:
            features: Candidate predictors, one column each
            target: Target per sample
            folds: Fold assignment, or explicit (train, test) index pairs

        Returns:
            SelectionResult

        Raises:
            InsufficientFeaturesError: If fewer than 2 predictors are given
            DegenerateFoldError: If R² is undefined for a fold
            ModelFitError: If any model fit in a round fails
        """
        names = [str(c) for c in features.columns]
        if len(names) < 2:
            raise InsufficientFeaturesError(len(names))
        y = np.array(target, dtype=float, copy=True)
        if len(y) != len(features):
            raise ValueError(
                f"target length {len(y)} does not match {len(features)} feature rows"
            )

        x = features.to_numpy(dtype=float, copy=True)
        x.setflags(write=False)
        y.setflags(write=False)
        splits = list(folds.splits()) if isinstance(folds, FoldAssignment) else list(folds)

        cfg = self.config
        max_features = min(cfg.max_features or len(names), len(names))
        start = time.perf_counter()
        logger.info(
            f"Forward selection over {len(names)} predictors with {len(splits)} folds "
            f"(n_jobs={cfg.n_jobs}, backend={cfg.backend})"
        )

        evaluated: list[tuple[int, CVResult]] = []
        trace: list[SelectionRound] = []

        pairs = list(itertools.combinations(range(len(names)), 2))
        results = self._run_round(pairs, names, x, y, splits)
        evaluated.extend((0, r) for r in results)
        best_idx = self._best(results)
        selected = list(pairs[best_idx])
        best = results[best_idx]
        trace.append(SelectionRound(0, best.features, best.score, len(pairs), True))
        logger.info(f"Round 0: seed pair {best.features} with R²={best.score:.4f}")

        round_no = 0
        while len(selected) < max_features:
            round_no += 1
            remaining = [i for i in range(len(names)) if i not in selected]
            candidates = [tuple(selected + [i]) for i in remaining]
            results = self._run_round(candidates, names, x, y, splits)
            evaluated.extend((round_no, r) for r in results)

            round_best = results[self._best(results)]
            accepted = round_best.score - best.score > cfg.min_improvement
            trace.append(
                SelectionRound(
                    round_no, round_best.features, round_best.score, len(candidates), accepted
                )
            )
            if not accepted:
                logger.info(
                    f"Round {round_no}: best addition {round_best.features[-1]} "
                    f"(R²={round_best.score:.4f}) does not improve {best.score:.4f}, stopping"
                )
                break

            selected.append(names.index(round_best.features[-1]))
            best = round_best
            logger.info(
                f"Round {round_no}: added {round_best.features[-1]}, R²={best.score:.4f}"
            )

        logger.info(
            f"Selected {list(best.features)} (R²={best.score:.4f}) after "
            f"{len(evaluated)} subset evaluations in "
            f"{format_duration(time.perf_counter() - start)}"
        )

        return SelectionResult(
            selected=best.features,
            score=best.score,
            fold_scores=best.fold_scores,
            trace=trace,
            candidates=pd.DataFrame(
                {
                    "round": [r for r, _ in evaluated],
                    "features": [" + ".join(res.features) for _, res in evaluated],
                    "n_features": [len(res.features) for _, res in evaluated],
                    "score": [res.score for _, res in evaluated],
                }
            ),
            oof=pd.DataFrame(
                {
                    "sample": np.arange(len(y)),
                    "fold": best.fold_of_sample,
                    "observed": y,
                    "predicted": best.predictions,
                }
            ),
        )

    @staticmethod
    def _best(results: list[CVResult]) -> int:
        """Index of the highest score; the first candidate wins ties."""
        best_idx = 0
        for idx, result in enumerate(results):
            if result.score > results[best_idx].score:
                best_idx = idx
        return best_idx

    def _run_round(
        self,
        candidates: Sequence[tuple[int, ...]],
        names: list[str],
        x: np.ndarray,
        y: np.ndarray,
        splits: Splits,
    ) -> list[CVResult]:
        """Evaluate candidate subsets, returning results in candidate order."""
        cfg = self.config
        tasks = [
            _Task(
                trainer=self.trainer,
                features=tuple(names[i] for i in columns),
                x=x[:, list(columns)],
                y=y,
                splits=splits,
                quantile=cfg.cv_quantile,
                r2_method=cfg.r2_method,
            )
            for columns in candidates
        ]

        workers = resolve_n_jobs(cfg.n_jobs, len(tasks))
        n_features = len(candidates[0]) if candidates else 0
        progress = {
            "total": len(tasks),
            "desc": f"Subsets of {n_features}",
            "disable": not cfg.show_progress,
        }
        if workers == 1:
            return [_evaluate(task) for task in tqdm(tasks, **progress)]

        executor: Executor
        if cfg.backend == "thread":
            executor = ThreadPoolExecutor(max_workers=workers)
        else:
            executor = ProcessPoolExecutor(max_workers=workers)

        results: list[CVResult | None] = [None] * len(tasks)
        try:
            futures = {executor.submit(_evaluate, task): i for i, task in enumerate(tasks)}
            for future in tqdm(as_completed(futures), **progress):
                results[futures[future]] = future.result()
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return [r for r in results if r is not None]
