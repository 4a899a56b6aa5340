"""Spatial distances and fold construction."""

from sarmap.spatial.distances import (
    distance_summary,
    domain_to_sample,
    feature_space_distances,
    fold_heldout_to_train,
    sample_to_domain,
    sample_to_sample,
    standardize,
)
from sarmap.spatial.folds import FoldAssignment, SpatialFoldBuilder

__all__ = [
    "sample_to_sample",
    "sample_to_domain",
    "domain_to_sample",
    "fold_heldout_to_train",
    "standardize",
    "feature_space_distances",
    "distance_summary",
    "FoldAssignment",
    "SpatialFoldBuilder",
]
