"""Quantile regression forest engine and persistence."""

from sarmap.models.io import load_model, save_run
from sarmap.models.qrf import (
    ModelTrainer,
    QuantileForestTrainer,
    QuantileModel,
    TrainedModel,
)

__all__ = [
    "ModelTrainer",
    "QuantileModel",
    "QuantileForestTrainer",
    "TrainedModel",
    "save_run",
    "load_model",
]
