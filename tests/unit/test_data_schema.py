"""
Unit tests for the data schema.

Tests cover:
- FeatureMatrix validation, immutability and slicing
- Single-sample and batch feature count checks
- Column statistics and loan application normalization
"""

import numpy as np
import pytest

from loan_ensemble.data.schema import (
    ApprovalDecision,
    ColumnStatistics,
    FeatureMatrix,
    LoanApplication,
    check_feature_batch,
    check_feature_vector,
)
from loan_ensemble.exceptions import ConfigurationError, FeatureCountMismatchError


class TestFeatureMatrix:

    def test_shapes_and_dtypes(self):
        data = FeatureMatrix([[1, 2], [3, 4], [5, 6]], [0, 1, 1])
        assert data.n_samples == 3
        assert data.n_features == 2
        assert len(data) == 3
        assert data.X.dtype == np.float32
        assert data.y.dtype == np.int32

    def test_arrays_are_read_only(self):
        data = FeatureMatrix([[1.0, 2.0]], [1])
        assert not data.X.flags.writeable
        with pytest.raises(ValueError):
            data.X[0, 0] = 5.0
        with pytest.raises(ValueError):
            data.y[0] = 0

    def test_non_binary_labels_rejected(self):
        with pytest.raises(ValueError):
            FeatureMatrix([[1.0], [2.0]], [0, 2])

    def test_inconsistent_lengths_rejected(self):
        with pytest.raises(ValueError):
            FeatureMatrix([[1.0], [2.0]], [0])

    def test_empty_matrix_allowed(self):
        data = FeatureMatrix(np.zeros((0, 4)), [])
        assert data.n_samples == 0
        assert data.n_features == 4

    def test_slice_and_take(self):
        data = FeatureMatrix(np.arange(10, dtype=float).reshape(5, 2), [0, 1, 0, 1, 1])
        block = data.slice(1, 3)
        np.testing.assert_array_equal(block.X, [[2, 3], [4, 5]])
        np.testing.assert_array_equal(block.y, [1, 0])

        picked = data.take([4, 0, 4])
        np.testing.assert_array_equal(picked.y, [1, 0, 1])
        np.testing.assert_array_equal(picked.row(1), [0, 1])

    def test_empty_slice(self):
        data = FeatureMatrix([[1.0, 2.0]], [1])
        assert data.slice(1, 1).n_samples == 0


class TestFeatureChecks:

    def test_vector_length_mismatch(self):
        with pytest.raises(FeatureCountMismatchError) as exc_info:
            check_feature_vector([1.0, 2.0, 3.0], 5)
        assert exc_info.value.expected == 5
        assert exc_info.value.actual == 3

    def test_mismatch_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            check_feature_vector([1.0], 2)

    def test_vector_is_float32(self):
        vector = check_feature_vector([1, 2], 2)
        assert vector.dtype == np.float32

    def test_batch_mismatch(self):
        with pytest.raises(FeatureCountMismatchError):
            check_feature_batch(np.zeros((3, 4)), 5)


class TestColumnStatistics:

    def test_default_statistics(self):
        stats = ColumnStatistics.default()
        assert stats.means['income'] == pytest.approx(110377.55)
        assert stats.stddevs['dti_ratio'] == pytest.approx(32.32)
        assert stats.normalize('income', 110377.55) == pytest.approx(0.0)
        assert stats.normalize('credit_score', 575.72 + 159.23) == pytest.approx(1.0)

    def test_unknown_column_passes_through(self):
        assert ColumnStatistics.default().normalize('employment_status', 1) == 1.0

    def test_non_positive_stddev_replaced(self):
        stats = ColumnStatistics.from_pairs({'income': (10.0, 0.0)})
        assert stats.stddevs['income'] == 1.0
        assert stats.normalize('income', 12.0) == pytest.approx(2.0)

    def test_mismatched_columns_rejected(self):
        with pytest.raises(ValueError):
            ColumnStatistics(means={'income': 1.0}, stddevs={})

    def test_to_dict_round_trip(self):
        stats = ColumnStatistics.default()
        assert ColumnStatistics.from_pairs(stats.to_dict()) == stats


class TestLoanApplication:

    def test_to_features(self):
        application = LoanApplication(
            income=110377.55, credit_score=575.72, loan_amount=44356.15,
            dti_ratio=34.72, employment_status=0
        )
        features = application.to_features()
        assert features.dtype == np.float32
        np.testing.assert_allclose(features, [0.0, 0.0, 0.0, 0.0, 0.0], atol=1e-6)

    def test_explicit_statistics(self):
        stats = ColumnStatistics.from_pairs({
            'income': (100.0, 10.0), 'credit_score': (0.0, 1.0),
            'loan_amount': (0.0, 1.0), 'dti_ratio': (0.0, 1.0),
        })
        features = LoanApplication(120.0, 5.0, 6.0, 7.0, 1).to_features(stats)
        np.testing.assert_allclose(features, [2.0, 5.0, 6.0, 7.0, 1.0])

    def test_invalid_employment_status(self):
        with pytest.raises(ValueError):
            LoanApplication(1.0, 600.0, 1.0, 1.0, employment_status=2)

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            LoanApplication(-1.0, 600.0, 1.0, 1.0)


class TestApprovalDecision:

    def test_labels(self):
        assert ApprovalDecision.APPROVED.value == "Approved"
        assert ApprovalDecision.NOT_APPROVED.value == "Not Approved"
        assert ApprovalDecision.BORDERLINE.value == "Borderline - Additional Review Required"
        assert ApprovalDecision.BORDERLINE.short_label == "Borderline"
        assert ApprovalDecision.APPROVED.short_label == "Approved"
