"""Classification models combined by the ensemble."""

from pathlib import Path
from typing import Any

from ..base import ModelInterface
from .decision_forest import DecisionForest, DecisionTree, LeafNode, SplitNode, gini_impurity
from .feedforward_network import FeedForwardNetwork
from .linear_classifier import LinearClassifier

# Worker rank order used by training and the ensemble.
MODEL_TYPES = ['random_forest', 'mlp', 'logistic_regression']

MODEL_CLASSES = {
    'random_forest': DecisionForest,
    'mlp': FeedForwardNetwork,
    'logistic_regression': LinearClassifier,
}

MODEL_FILENAMES = {
    'random_forest': 'random_forest_model.bin',
    'mlp': 'mlp_model.bin',
    'logistic_regression': 'logistic_regression_model.bin',
}

MODEL_DISPLAY_NAMES = {
    'random_forest': 'Random Forest',
    'mlp': 'MLP',
    'logistic_regression': 'Logistic Regression',
}


def create_model(model_type: str, **params: Any) -> ModelInterface:
    """
    Instantiate a classifier by type name.

    Args:
        model_type: One of ``MODEL_TYPES``
        **params: Constructor arguments of the model class

    Raises:
        ValueError: If the model type is unknown
    """
    if model_type not in MODEL_CLASSES:
        raise ValueError(f"Unknown model type: {model_type}. Expected one of {MODEL_TYPES}")
    return MODEL_CLASSES[model_type](**params)


def model_type_from_path(path) -> str:
    """Infer the model type from a model file name."""
    name = Path(path).name.lower()
    if 'random_forest' in name or 'forest' in name:
        return 'random_forest'
    if 'mlp' in name:
        return 'mlp'
    return 'logistic_regression'


__all__ = [
    'DecisionForest', 'DecisionTree', 'LeafNode', 'SplitNode', 'gini_impurity',
    'FeedForwardNetwork', 'LinearClassifier',
    'MODEL_TYPES', 'MODEL_CLASSES', 'MODEL_FILENAMES', 'MODEL_DISPLAY_NAMES',
    'create_model', 'model_type_from_path'
]
