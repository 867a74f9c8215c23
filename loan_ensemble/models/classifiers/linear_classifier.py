"""
Logistic regression classifier for the Loan Approval Ensemble.

Full-batch gradient descent on the binary cross-entropy. Each iteration's
gradient is a parallel reduction: row chunks compute partial sums on the
shared thread pool and the partials are merged under a lock before being
averaged over the dataset.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from ..base import ModelInterface, as_training_arrays
from .. import persistence
from .feedforward_network import LOSS_EPSILON, should_log_progress, sigmoid
from ...data.schema import check_feature_batch
from ...exceptions import FeatureCountMismatchError
from ...utils.parallel import reduce_over_chunks

logger = logging.getLogger(__name__)

DECISION_THRESHOLD = 0.5


def _add_partials(total: Tuple[np.ndarray, float], partial: Tuple[np.ndarray, float]):
    return total[0] + partial[0], total[1] + partial[1]


class LinearClassifier(ModelInterface):
    """
    Binary logistic regression.

    Args:
        n_features: Number of input features; 0 defers initialization to training
        learning_rate: Gradient descent step size
        max_iterations: Number of full-batch iterations
        seed: Seed for weight initialization
    """

    model_type = 'logistic_regression'

    def __init__(self, n_features: int = 0, learning_rate: float = 0.01,
                 max_iterations: int = 100, seed=None):
        super().__init__()
        self.learning_rate = learning_rate
        self.max_iterations = max_iterations
        self._rng = np.random.default_rng(seed)
        self.weights = np.zeros(0, dtype=np.float32)
        self.bias = np.float32(0.0)
        if n_features > 0:
            self._initialize(n_features)

    @property
    def n_features(self) -> int:
        return self.weights.shape[0]

    def _initialize(self, n_features: int) -> None:
        self.weights = self._rng.uniform(-0.1, 0.1, size=n_features).astype(np.float32)
        self.bias = np.float32(0.0)

    def _logits(self, X: np.ndarray) -> np.ndarray:
        return self.bias + X @ self.weights

    def compute_gradient(self, X: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, float]:
        """Mean gradient of the cross-entropy with respect to weights and bias."""
        n_samples = X.shape[0]

        def partial(start: int, stop: int) -> Tuple[np.ndarray, float]:
            block = X[start:stop]
            errors = sigmoid(self._logits(block)) - y[start:stop]
            return errors.astype(np.float64) @ block.astype(np.float64), float(errors.sum())

        initial = (np.zeros(self.n_features, dtype=np.float64), 0.0)
        weight_sum, bias_sum = reduce_over_chunks(n_samples, partial, _add_partials, initial)
        return weight_sum / n_samples, bias_sum / n_samples

    def compute_loss(self, X: np.ndarray, y: np.ndarray) -> float:
        """Mean binary cross-entropy with probabilities clamped away from zero."""
        def partial(start: int, stop: int) -> float:
            probabilities = sigmoid(self._logits(X[start:stop])).astype(np.float64)
            labels = y[start:stop]
            likelihood = np.where(labels == 1, probabilities, 1.0 - probabilities)
            return float(-np.log(np.maximum(likelihood, LOSS_EPSILON)).sum())

        total = reduce_over_chunks(X.shape[0], partial, lambda a, b: a + b, 0.0)
        return total / X.shape[0]

    def train(self, X, y, n_samples: Optional[int] = None,
              n_features: Optional[int] = None) -> List[float]:
        """
        Run ``max_iterations`` gradient descent steps.

        Args:
            X: Feature matrix (2-D, or flat with ``n_samples``/``n_features``)
            y: Binary labels
            n_samples: Number of rows
            n_features: Number of features per row

        Returns:
            Training loss after every iteration
        """
        X, y = as_training_arrays(X, y, n_samples, n_features)
        if self.n_features == 0:
            self._initialize(X.shape[1])
        elif X.shape[1] != self.n_features:
            raise FeatureCountMismatchError(self.n_features, X.shape[1])

        lr = self.learning_rate
        history = []
        for iteration in range(1, self.max_iterations + 1):
            weight_gradient, bias_gradient = self.compute_gradient(X, y)
            self.weights = (self.weights - lr * weight_gradient).astype(np.float32)
            self.bias = np.float32(self.bias - lr * bias_gradient)

            loss = self.compute_loss(X, y)
            history.append(loss)
            if should_log_progress(iteration, self.max_iterations):
                logger.info(
                    f"Logistic Regression Iteration {iteration}/{self.max_iterations}, "
                    f"Loss: {loss:.6f}"
                )

        self._is_trained = True
        return history

    def predict_probability(self, features) -> float:
        """Probability of the positive class for one sample."""
        sample = self._check_sample(features)
        return float(sigmoid(self._logits(sample)))

    def predict_probabilities(self, X) -> np.ndarray:
        self._check_is_trained()
        return sigmoid(self._logits(check_feature_batch(X, self.n_features)))

    def predict(self, features) -> int:
        return 1 if self.predict_probability(features) >= DECISION_THRESHOLD else 0

    def save(self, path: Union[str, Path]) -> None:
        self._check_is_trained()
        persistence.save_linear(path, self.weights, float(self.bias))

    def load(self, path: Union[str, Path]) -> None:
        weights, bias = persistence.load_linear(path)
        self.weights = weights
        self.bias = np.float32(bias)
        self._is_trained = True
