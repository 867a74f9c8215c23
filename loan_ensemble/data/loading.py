"""
Dataset loading and partitioning for the Loan Approval Ensemble.

The processed loan CSV has a header row and numeric columns only. The label
sits at a fixed position (the sixth column); every other column is a feature.
"""

import logging
from pathlib import Path
from typing import List, Tuple, Union

import numpy as np
import pandas as pd

from .schema import FeatureMatrix, LABEL_COLUMN_INDEX
from ..exceptions import ConfigurationError, DataLoadError
from ..utils.parallel import split_range

logger = logging.getLogger(__name__)


def load_feature_matrix(
    filepath: Union[str, Path],
    label_column: int = LABEL_COLUMN_INDEX
) -> FeatureMatrix:
    """
    Load a processed CSV into a feature matrix.

    Args:
        filepath: Path to the CSV file (header row required)
        label_column: Zero-based position of the label column

    Returns:
        FeatureMatrix with the label column removed from the features

    Raises:
        DataLoadError: If the file cannot be read or contains non-numeric values
        ConfigurationError: If the file has no column at the label position
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise DataLoadError(f"Data file not found: {filepath}")

    try:
        frame = pd.read_csv(filepath)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataLoadError(f"Failed to read {filepath}: {str(e)}") from e

    if frame.shape[1] <= label_column:
        raise ConfigurationError(
            f"{filepath} has {frame.shape[1]} columns; label column {label_column} is missing"
        )

    try:
        values = frame.apply(pd.to_numeric, errors='raise').to_numpy(dtype=np.float32)
    except (ValueError, TypeError) as e:
        raise DataLoadError(f"Non-numeric value in {filepath}: {str(e)}") from e

    labels = values[:, label_column].astype(np.int32)
    features = np.delete(values, label_column, axis=1)

    data = FeatureMatrix(features, labels)
    logger.info(
        f"Loaded {data.n_samples} samples with {data.n_features} features from {filepath}"
    )
    return data


def partition_rows(n_samples: int, n_workers: int) -> List[Tuple[int, int]]:
    """
    Assign each worker a contiguous block of rows.

    Each block holds ``n_samples // n_workers`` rows and the first
    ``n_samples % n_workers`` blocks hold one extra row.

    Args:
        n_samples: Total number of rows
        n_workers: Number of workers

    Returns:
        ``(start, stop)`` pairs in worker order
    """
    return split_range(n_samples, n_workers)
