"""Classifiers, model persistence and the ensemble predictor."""

from .base import ModelInterface
from .classifiers import (
    DecisionForest, FeedForwardNetwork, LinearClassifier,
    MODEL_TYPES, MODEL_FILENAMES, create_model
)
from .persistence import ModelFileReport, validate_model_file
from .prediction_interface import EnsembleDecision, EnsemblePredictor, calculate_risk_score, decide

__all__ = [
    'ModelInterface',
    'DecisionForest', 'FeedForwardNetwork', 'LinearClassifier',
    'MODEL_TYPES', 'MODEL_FILENAMES', 'create_model',
    'ModelFileReport', 'validate_model_file',
    'EnsembleDecision', 'EnsemblePredictor', 'calculate_risk_score', 'decide'
]
