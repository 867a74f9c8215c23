"""
Data schema definitions for the Loan Approval Ensemble.

This module defines the core data structures shared by the models: the
read-only feature matrix used for training and evaluation, the immutable
column statistics used for normalization, and the raw loan application
record supplied at prediction time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np
from sklearn.utils.validation import check_array, check_X_y

from ..exceptions import FeatureCountMismatchError


# Column layout of the processed loan CSV; the label is the sixth column.
FEATURE_COLUMNS = ['Income', 'Credit_Score', 'Loan_Amount', 'DTI_Ratio', 'Employment_Status']
LABEL_COLUMN = 'Approval'
PROCESSED_COLUMNS = FEATURE_COLUMNS + [LABEL_COLUMN]
LABEL_COLUMN_INDEX = 5

NUMERIC_COLUMNS = ['income', 'credit_score', 'loan_amount', 'dti_ratio']


class ApprovalDecision(Enum):
    """Ensemble decision for a loan application."""
    APPROVED = "Approved"
    NOT_APPROVED = "Not Approved"
    BORDERLINE = "Borderline - Additional Review Required"

    @property
    def short_label(self) -> str:
        return "Borderline" if self is ApprovalDecision.BORDERLINE else self.value


def _freeze(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class FeatureMatrix:
    """
    Read-only N x D sample matrix with its label vector.

    Rows are float32 and row-major. Labels are integers in {0, 1}. The
    arrays are marked non-writeable so every model can share one instance
    during training without copying it.
    """

    def __init__(self, features, labels):
        """
        Build a feature matrix.

        Args:
            features: Array-like of shape (n_samples, n_features)
            labels: Array-like of shape (n_samples,)

        Raises:
            ValueError: If shapes are inconsistent or labels are not binary
        """
        features = np.asarray(features, dtype=np.float32)
        labels = np.asarray(labels)

        if features.ndim == 2 and features.shape[0] == 0:
            # sklearn rejects empty inputs; an empty block is legal here.
            self._X = _freeze(features.reshape(0, features.shape[1]).copy())
            self._y = _freeze(np.zeros(0, dtype=np.int32))
            return

        X, y = check_X_y(features, labels, dtype=np.float32, ensure_2d=True)
        y = np.asarray(y).astype(np.int32)
        if y.size and not np.isin(y, (0, 1)).all():
            raise ValueError("Labels must be 0 or 1")

        self._X = _freeze(np.ascontiguousarray(X, dtype=np.float32))
        self._y = _freeze(y)

    @property
    def X(self) -> np.ndarray:
        return self._X

    @property
    def y(self) -> np.ndarray:
        return self._y

    @property
    def n_samples(self) -> int:
        return self._X.shape[0]

    @property
    def n_features(self) -> int:
        return self._X.shape[1]

    def __len__(self) -> int:
        return self.n_samples

    def row(self, index: int) -> np.ndarray:
        return self._X[index]

    def take(self, indices: Sequence[int]) -> 'FeatureMatrix':
        """Rows selected by index, in the order given."""
        indices = np.asarray(indices, dtype=np.intp)
        return FeatureMatrix(self._X[indices], self._y[indices])

    def slice(self, start: int, stop: int) -> 'FeatureMatrix':
        """Contiguous block of rows ``[start, stop)``."""
        return FeatureMatrix(self._X[start:stop], self._y[start:stop])


def check_feature_vector(features, n_features: int) -> np.ndarray:
    """
    Validate a single sample against a model's expected feature count.

    Args:
        features: One sample as a sequence of floats
        n_features: Feature count the model was trained or loaded with

    Returns:
        The sample as a 1-D float32 array

    Raises:
        FeatureCountMismatchError: If the sample length differs
    """
    vector = np.asarray(features, dtype=np.float32).ravel()
    if vector.shape[0] != n_features:
        raise FeatureCountMismatchError(n_features, vector.shape[0])
    return vector


def check_feature_batch(features, n_features: int) -> np.ndarray:
    """Validate a 2-D batch of samples against the expected feature count."""
    batch = check_array(features, dtype=np.float32, ensure_2d=True)
    if batch.shape[1] != n_features:
        raise FeatureCountMismatchError(n_features, batch.shape[1])
    return batch


DEFAULT_COLUMN_STATS: Dict[str, Tuple[float, float]] = {
    'income': (110377.55, 51729.68),
    'credit_score': (575.72, 159.23),
    'loan_amount': (44356.15, 34666.60),
    'dti_ratio': (34.72, 32.32),
}


@dataclass(frozen=True)
class ColumnStatistics:
    """
    Immutable per-column mean and standard deviation used for normalization.

    Instances are passed explicitly to every normalization call; nothing in
    the package keeps statistics in module-level mutable state.
    """
    means: Mapping[str, float]
    stddevs: Mapping[str, float]

    def __post_init__(self):
        """Validate and freeze the statistics."""
        if set(self.means) != set(self.stddevs):
            raise ValueError("Means and standard deviations must cover the same columns")
        # Copy into plain dicts so callers cannot mutate them afterwards.
        object.__setattr__(self, 'means', dict(self.means))
        object.__setattr__(self, 'stddevs', {
            name: (float(std) if std > 0 else 1.0) for name, std in self.stddevs.items()
        })

    @classmethod
    def default(cls) -> 'ColumnStatistics':
        """Statistics of the bundled loan training set."""
        return cls.from_pairs(DEFAULT_COLUMN_STATS)

    @classmethod
    def from_pairs(cls, pairs: Mapping[str, Sequence[float]]) -> 'ColumnStatistics':
        """Build from ``{column: (mean, stddev)}``."""
        return cls(
            means={name: float(values[0]) for name, values in pairs.items()},
            stddevs={name: float(values[1]) for name, values in pairs.items()},
        )

    def normalize(self, column: str, value: float) -> float:
        """Z-score a value; unknown columns pass through."""
        if column not in self.means:
            return float(value)
        return (float(value) - self.means[column]) / self.stddevs[column]

    def to_dict(self) -> Dict[str, List[float]]:
        return {name: [self.means[name], self.stddevs[name]] for name in self.means}


@dataclass
class LoanApplication:
    """Raw applicant input for a single prediction."""
    income: float
    credit_score: float
    loan_amount: float
    dti_ratio: float
    employment_status: int = 1

    def __post_init__(self):
        """Validate application values."""
        if self.employment_status not in (0, 1):
            raise ValueError(
                f"Invalid employment status: {self.employment_status}. Must be 0 or 1."
            )
        for name in NUMERIC_COLUMNS:
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    def to_features(self, statistics: Optional[ColumnStatistics] = None) -> np.ndarray:
        """
        Normalize the application into a model feature vector.

        Args:
            statistics: Column statistics; defaults to the bundled training set

        Returns:
            Float32 vector ordered as income, credit score, loan amount,
            DTI ratio, employment status
        """
        statistics = statistics or ColumnStatistics.default()
        values = [statistics.normalize(name, getattr(self, name)) for name in NUMERIC_COLUMNS]
        values.append(float(self.employment_status))
        return np.asarray(values, dtype=np.float32)

