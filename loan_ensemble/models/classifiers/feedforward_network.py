"""
Feed-forward neural network classifier for the Loan Approval Ensemble.

A fully-connected sigmoid network trained with per-sample stochastic gradient
descent against a one-hot target. Parameters are kept as float32 arrays so a
saved and reloaded network predicts exactly like the original.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from ..base import ModelInterface, as_training_arrays
from .. import persistence
from ...exceptions import FeatureCountMismatchError

logger = logging.getLogger(__name__)

LOSS_EPSILON = 1e-7


def sigmoid(z: np.ndarray) -> np.ndarray:
    """Logistic function in a form that does not overflow for large ``|z|``."""
    return 0.5 * (1.0 + np.tanh(0.5 * z))


def should_log_progress(step: int, total: int) -> bool:
    """Progress is reported on the first step, every tenth step and the last."""
    return step == 1 or step % 10 == 0 or step == total


class FeedForwardNetwork(ModelInterface):
    """
    Multi-layer perceptron with sigmoid activations.

    ``weights[l]`` has shape ``(layer_sizes[l + 1], layer_sizes[l])`` and
    connects layer ``l`` to layer ``l + 1``. Activation and delta buffers hold
    one vector per layer, input layer included, and are overwritten for every
    sample.

    Args:
        input_size: Number of input features; 0 defers initialization to training
        hidden_layers: Sizes of the hidden layers
        output_size: Number of output units (one per class)
        epochs: Default number of training epochs
        learning_rate: Default SGD step size
        seed: Seed for weight initialization and epoch shuffling
    """

    model_type = 'mlp'

    def __init__(self, input_size: int = 0, hidden_layers: Sequence[int] = (16, 8),
                 output_size: int = 2, epochs: int = 100, learning_rate: float = 0.01,
                 seed=None):
        super().__init__()
        if output_size < 2:
            raise ValueError(f"output_size must be at least 2, got {output_size}")
        if any(size < 1 for size in hidden_layers):
            raise ValueError(f"Hidden layer sizes must be positive: {list(hidden_layers)}")
        self.hidden_layers = [int(size) for size in hidden_layers]
        self.output_size = int(output_size)
        self.epochs = epochs
        self.learning_rate = learning_rate
        self._rng = np.random.default_rng(seed)

        self.layer_sizes: List[int] = []
        self.weights: List[np.ndarray] = []
        self.biases: List[np.ndarray] = []
        self._activations: List[np.ndarray] = []
        self._deltas: List[np.ndarray] = []
        if input_size > 0:
            self._initialize(input_size)

    @property
    def n_features(self) -> int:
        return self.layer_sizes[0] if self.layer_sizes else 0

    def _initialize(self, input_size: int) -> None:
        self.layer_sizes = [input_size] + self.hidden_layers + [self.output_size]
        self.weights, self.biases = [], []
        for fan_in, fan_out in zip(self.layer_sizes[:-1], self.layer_sizes[1:]):
            scale = np.sqrt(fan_in)
            weights = self._rng.uniform(-0.5, 0.5, size=(fan_out, fan_in)) / scale
            self.weights.append(weights.astype(np.float32))
            self.biases.append(np.zeros(fan_out, dtype=np.float32))
        self._allocate_buffers()
        logger.info("Initialized MLP with structure: " + "->".join(map(str, self.layer_sizes)))

    def _allocate_buffers(self) -> None:
        self._activations = [np.zeros(size, dtype=np.float32) for size in self.layer_sizes]
        self._deltas = [np.zeros(size, dtype=np.float32) for size in self.layer_sizes]

    def forward(self, features: np.ndarray) -> np.ndarray:
        """Propagate one sample and return the output activations."""
        activations = self._activations
        activations[0][:] = features
        for layer, (weights, biases) in enumerate(zip(self.weights, self.biases)):
            activations[layer + 1][:] = sigmoid(biases + weights @ activations[layer])
        return activations[-1]

    def backward(self, target: np.ndarray) -> None:
        """Compute deltas for every non-input layer from a one-hot target."""
        activations, deltas = self._activations, self._deltas
        output = activations[-1]
        deltas[-1][:] = (output - target) * output * (1.0 - output)
        for layer in range(len(self.layer_sizes) - 2, 0, -1):
            upstream = self.weights[layer].T @ deltas[layer + 1]
            hidden = activations[layer]
            deltas[layer][:] = upstream * hidden * (1.0 - hidden)

    def update(self, learning_rate: float) -> None:
        """Apply the gradient step for the current sample."""
        lr = np.float32(learning_rate)
        for layer, (weights, biases) in enumerate(zip(self.weights, self.biases)):
            delta = self._deltas[layer + 1]
            weights -= lr * np.outer(delta, self._activations[layer])
            biases -= lr * delta

    def train(self, X, y, n_samples: Optional[int] = None, n_features: Optional[int] = None,
              epochs: Optional[int] = None, learning_rate: Optional[float] = None) -> List[float]:
        """
        Train with per-sample SGD, shuffling the sample order every epoch.

        Args:
            X: Feature matrix (2-D, or flat with ``n_samples``/``n_features``)
            y: Class labels, each below ``output_size``
            n_samples: Number of rows
            n_features: Number of features per row
            epochs: Overrides the configured epoch count
            learning_rate: Overrides the configured learning rate

        Returns:
            Mean cross-entropy loss of each epoch
        """
        X, y = as_training_arrays(X, y, n_samples, n_features)
        epochs = self.epochs if epochs is None else epochs
        learning_rate = self.learning_rate if learning_rate is None else learning_rate

        if not self.layer_sizes:
            self._initialize(X.shape[1])
        elif X.shape[1] != self.n_features:
            raise FeatureCountMismatchError(self.n_features, X.shape[1])
        if y.min() < 0 or y.max() >= self.output_size:
            raise ValueError(f"Labels must lie in [0, {self.output_size})")

        targets = np.eye(self.output_size, dtype=np.float32)[y]
        order = np.arange(X.shape[0])
        history = []

        for epoch in range(1, epochs + 1):
            self._rng.shuffle(order)
            epoch_loss = 0.0
            for index in order:
                output = self.forward(X[index])
                epoch_loss -= float(np.log(max(float(output[y[index]]), LOSS_EPSILON)))
                self.backward(targets[index])
                self.update(learning_rate)

            mean_loss = epoch_loss / X.shape[0]
            history.append(mean_loss)
            if should_log_progress(epoch, epochs):
                logger.info(f"MLP Epoch {epoch}/{epochs}, Loss: {mean_loss:.6f}")

        self._is_trained = True
        return history

    def predict_proba(self, features) -> np.ndarray:
        """Output activations for one sample."""
        sample = self._check_sample(features)
        return self.forward(sample).copy()

    def predict(self, features) -> int:
        """Index of the most active output unit; the first wins on ties."""
        return int(np.argmax(self.predict_proba(features)))

    def save(self, path: Union[str, Path]) -> None:
        self._check_is_trained()
        persistence.save_network(path, self.layer_sizes, self.weights, self.biases)

    def load(self, path: Union[str, Path]) -> None:
        sizes, weights, biases = persistence.load_network(path)
        self.layer_sizes = sizes
        self.hidden_layers = sizes[1:-1]
        self.output_size = sizes[-1]
        self.weights = weights
        self.biases = biases
        self._allocate_buffers()
        self._is_trained = True
