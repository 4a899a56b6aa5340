"""sarmap - spatial cross-validation, feature selection and area of applicability
for sediment accumulation rate mapping."""

__version__ = "0.1.0"

from sarmap.applicability.aoa import ApplicabilityEngine
from sarmap.config.settings import Settings
from sarmap.data import PredictorGrid, SampleSet
from sarmap.models.qrf import QuantileForestTrainer, TrainedModel
from sarmap.pipeline import PipelineResult, SARPipeline, predict_surfaces
from sarmap.selection.ffs import ForwardFeatureSelector
from sarmap.spatial.folds import FoldAssignment, SpatialFoldBuilder

__all__ = [
    "Settings",
    "SampleSet",
    "PredictorGrid",
    "SpatialFoldBuilder",
    "FoldAssignment",
    "ForwardFeatureSelector",
    "QuantileForestTrainer",
    "TrainedModel",
    "ApplicabilityEngine",
    "SARPipeline",
    "PipelineResult",
    "predict_surfaces",
]
