"""
Exception types for the Loan Approval Ensemble.

Configuration errors are fatal and abort a run. Persistence and data-load
errors are I/O failures reported to the caller of the specific operation.
"""


class LoanEnsembleError(Exception):
    """Base class for all errors raised by the package."""
    pass


class ConfigurationError(LoanEnsembleError):
    """Invalid configuration, worker count or input layout."""
    pass


class FeatureCountMismatchError(ConfigurationError):
    """Supplied feature vector does not match the model's feature count."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} features, got {actual}")


class DataLoadError(LoanEnsembleError):
    """Input data file could not be read or parsed."""
    pass


class ModelPersistenceError(LoanEnsembleError):
    """Model file could not be written, read or decoded."""
    pass


class ModelNotFittedError(LoanEnsembleError):
    """Prediction requested from a model that was never trained or loaded."""
    pass


class PredictionError(LoanEnsembleError):
    """Exception raised during the ensemble prediction process."""
    pass
