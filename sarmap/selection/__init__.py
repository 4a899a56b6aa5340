"""Forward feature selection with spatial cross-validation."""

from sarmap.selection.cross_validation import CVResult, cross_validate
from sarmap.selection.ffs import ForwardFeatureSelector, SelectionResult, SelectionRound
from sarmap.selection.tuning import objective_spatial_cv, tune_forest

__all__ = [
    "CVResult",
    "cross_validate",
    "ForwardFeatureSelector",
    "SelectionResult",
    "SelectionRound",
    "objective_spatial_cv",
    "tune_forest",
]
