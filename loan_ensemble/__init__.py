"""
Loan Approval Ensemble.

Trains a decision forest, a feed-forward network and a logistic regression
classifier on loan application data in parallel worker processes, then
combines their votes into an approval decision with a risk score.
"""

from .exceptions import (
    ConfigurationError,
    DataLoadError,
    FeatureCountMismatchError,
    LoanEnsembleError,
    ModelNotFittedError,
    ModelPersistenceError,
    PredictionError,
)

__version__ = "0.1.0"

__all__ = [
    'ConfigurationError',
    'DataLoadError',
    'FeatureCountMismatchError',
    'LoanEnsembleError',
    'ModelNotFittedError',
    'ModelPersistenceError',
    'PredictionError',
    '__version__',
]
