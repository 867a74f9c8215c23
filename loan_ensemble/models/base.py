"""Base interface shared by the forest, network and linear classifiers."""

import copy
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from ..data.schema import FeatureMatrix, check_feature_batch, check_feature_vector
from ..exceptions import FeatureCountMismatchError, ModelNotFittedError


def as_training_arrays(
    X,
    y,
    n_samples: Optional[int] = None,
    n_features: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Coerce training inputs to a float32 (n_samples, n_features) matrix.

    ``X`` may be 2-D, or flat row-major when ``n_samples`` and ``n_features``
    are given.

    Raises:
        ValueError: If the sizes disagree or there are no samples
    """
    X = np.asarray(X, dtype=np.float32)
    y = np.asarray(y).astype(np.int32).ravel()

    if X.ndim == 1:
        if n_samples is None or n_features is None:
            raise ValueError("Flat feature input requires n_samples and n_features")
        X = X.reshape(n_samples, n_features)
    if n_samples is not None and X.shape[0] != n_samples:
        raise ValueError(f"Expected {n_samples} samples, got {X.shape[0]}")
    if n_features is not None and X.shape[1] != n_features:
        raise FeatureCountMismatchError(n_features, X.shape[1])
    if X.shape[0] != y.shape[0]:
        raise ValueError(f"Got {X.shape[0]} feature rows but {y.shape[0]} labels")
    if X.shape[0] == 0:
        raise ValueError("Cannot train on an empty dataset")
    return X, y


class ModelInterface(ABC):
    """
    Capability set shared by every classifier in the ensemble.

    Concrete models implement training, single-sample prediction and binary
    persistence. Cloning produces an independent deep copy that can be used
    from another thread while the original keeps serving predictions.
    """

    model_type: str = 'model'

    def __init__(self):
        self._is_trained = False

    @abstractmethod
    def train(self, X, y, n_samples: Optional[int] = None,
              n_features: Optional[int] = None):
        """Train on a feature matrix and its labels."""
        pass

    @abstractmethod
    def predict(self, features) -> int:
        """Predict the class of a single sample."""
        pass

    @abstractmethod
    def save(self, path: Union[str, Path]) -> None:
        """Write the trained parameters to disk."""
        pass

    @abstractmethod
    def load(self, path: Union[str, Path]) -> None:
        """Replace the parameters with ones read from disk."""
        pass

    @property
    @abstractmethod
    def n_features(self) -> int:
        pass

    @property
    def is_trained(self) -> bool:
        return self._is_trained

    def clone(self) -> 'ModelInterface':
        """Deep, independently mutable copy of the model."""
        return copy.deepcopy(self)

    def fit(self, data: FeatureMatrix):
        """Train on a :class:`FeatureMatrix`."""
        return self.train(data.X, data.y, data.n_samples, data.n_features)

    def predict_batch(self, X) -> np.ndarray:
        """Predict every row of a 2-D batch."""
        self._check_is_trained()
        batch = check_feature_batch(X, self.n_features)
        return np.array([self.predict(row) for row in batch], dtype=np.int32)

    def _check_is_trained(self) -> None:
        if not self._is_trained:
            raise ModelNotFittedError(
                f"{type(self).__name__} must be trained or loaded before prediction"
            )

    def _check_sample(self, features) -> np.ndarray:
        self._check_is_trained()
        return check_feature_vector(features, self.n_features)
