"""Error taxonomy for the SAR modeling core.

Validation errors subclass ``ValueError`` so callers catching the builtin keep
working; failures that happen while fitting or scoring models subclass
``RuntimeError``.
"""

from __future__ import annotations

from collections.abc import Sequence


class SARModelError(Exception):
    """Base class for all errors raised by sarmap."""


class InsufficientDataError(SARModelError, ValueError):
    """Raised when a distance or fold computation receives too few points."""

    def __init__(self, n_points: int, minimum: int = 2, what: str = "points"):
        self.n_points = n_points
        self.minimum = minimum
        self.what = what
        super().__init__(f"Need at least {minimum} {what}, got {n_points}")

    def __reduce__(self):
        return type(self), (self.n_points, self.minimum, self.what)


class InvalidFoldCountError(SARModelError, ValueError):
    """Raised when k cannot produce a valid partition of the samples."""

    def __init__(self, k: int, n_samples: int, reason: str | None = None):
        self.k = k
        self.n_samples = n_samples
        self.reason = reason
        message = f"Invalid fold count k={k} for {n_samples} samples"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def __reduce__(self):
        return type(self), (self.k, self.n_samples, self.reason)


class InsufficientFeaturesError(SARModelError, ValueError):
    """Raised when forward selection gets fewer than two predictors."""

    def __init__(self, n_features: int, minimum: int = 2):
        self.n_features = n_features
        self.minimum = minimum
        super().__init__(
            f"Forward feature selection needs at least {minimum} predictors, "
            f"got {n_features}"
        )

    def __reduce__(self):
        return type(self), (self.n_features, self.minimum)


class DegenerateFoldError(SARModelError, RuntimeError):
    """Raised when R² is undefined for a fold (constant target or prediction)."""

    def __init__(self, fold: int, features: Sequence[str], reason: str):
        self.fold = fold
        self.features = tuple(features)
        self.reason = reason
        super().__init__(
            f"Fold {fold} is degenerate for features {list(self.features)}: {reason}"
        )

    # default exception pickling replays only the message; process pools
    # need the full __init__ arguments to re-raise in the parent
    def __reduce__(self):
        return type(self), (self.fold, self.features, self.reason)


class ModelFitError(SARModelError, RuntimeError):
    """Raised when fitting or predicting with the regression engine fails."""

    def __init__(
        self,
        features: Sequence[str],
        cause: BaseException | str,
        fold: int | None = None,
    ):
        self.features = tuple(features)
        self.fold = fold
        self.cause = cause
        where = f" in fold {fold}" if fold is not None else ""
        super().__init__(
            f"Model fit failed{where} for features {list(self.features)}: {cause}"
        )

    def __reduce__(self):
        return type(self), (self.features, self.cause, self.fold)


class UnfittedModelError(SARModelError, RuntimeError):
    """Raised when applicability is requested before a model or profile exists."""


class EmptyTrainingSetError(SARModelError, ValueError):
    """Raised when the applicability profile gets no training rows."""


__all__ = [
    "SARModelError",
    "InsufficientDataError",
    "InvalidFoldCountError",
    "InsufficientFeaturesError",
    "DegenerateFoldError",
    "ModelFitError",
    "UnfittedModelError",
    "EmptyTrainingSetError",
]
