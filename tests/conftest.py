"""Shared fixtures for the loan ensemble test suite."""

import numpy as np
import pandas as pd
import pytest

from loan_ensemble.data.schema import FeatureMatrix, PROCESSED_COLUMNS
from loan_ensemble.utils import parallel


def make_separable(n_samples=120, n_features=2, seed=42):
    """Points in [-1, 1]^d labelled by the sign of the first feature."""
    rng = np.random.default_rng(seed)
    X = rng.uniform(-1.0, 1.0, size=(n_samples, n_features)).astype(np.float32)
    y = (X[:, 0] > 0).astype(np.int32)
    return X, y


@pytest.fixture
def separable_data():
    X, y = make_separable()
    return FeatureMatrix(X, y)


@pytest.fixture
def loan_matrix():
    """Normalized five-feature loan rows with a simple approval rule."""
    np.random.seed(42)
    n_samples = 60
    X = np.random.randn(n_samples, 5).astype(np.float32)
    X[:, 4] = (np.random.rand(n_samples) > 0.3).astype(np.float32)
    y = ((X[:, 1] - X[:, 3]) > 0).astype(np.int32)
    return FeatureMatrix(X, y)


@pytest.fixture
def processed_csv(tmp_path, loan_matrix):
    """The loan matrix written as a processed CSV with the label last."""
    frame = pd.DataFrame(
        np.column_stack([loan_matrix.X, loan_matrix.y]), columns=PROCESSED_COLUMNS
    )
    frame['Employment_Status'] = frame['Employment_Status'].astype(int)
    frame['Approval'] = frame['Approval'].astype(int)
    path = tmp_path / "loan_data_processed.csv"
    frame.to_csv(path, index=False, float_format='%.6f')
    return path


@pytest.fixture(autouse=True)
def restore_num_threads():
    """Put the shared pool back to its size before the test."""
    original = parallel.get_num_threads()
    yield
    parallel.set_num_threads(original)


@pytest.fixture
def toy_separable():
    """Four two-feature points labelled by ``x1 > 0.5``; the second feature is noise."""
    X = np.array([[0.0, 0.9], [0.2, 0.1], [0.8, 0.8], [1.0, 0.2]], dtype=np.float32)
    y = (X[:, 0] > 0.5).astype(np.int32)
    return FeatureMatrix(X, y)
