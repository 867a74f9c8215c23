"""
Data module for the Loan Approval Ensemble.

This module provides the feature matrix and column statistics types, CSV
loading and row partitioning, and raw loan data preprocessing.
"""

from .schema import (
    ApprovalDecision,
    ColumnStatistics,
    FeatureMatrix,
    LoanApplication,
    FEATURE_COLUMNS,
    LABEL_COLUMN_INDEX,
    PROCESSED_COLUMNS,
    check_feature_vector,
    check_feature_batch,
)

from .loading import load_feature_matrix, partition_rows

from .preprocessing import (
    LoanDataPreprocessor,
    PreprocessingResult,
    compute_column_statistics,
    load_statistics,
    save_statistics,
    statistics_path_for,
)

__all__ = [
    # Schema
    'ApprovalDecision',
    'ColumnStatistics',
    'FeatureMatrix',
    'LoanApplication',
    'FEATURE_COLUMNS',
    'LABEL_COLUMN_INDEX',
    'PROCESSED_COLUMNS',
    'check_feature_vector',
    'check_feature_batch',

    # Loading
    'load_feature_matrix',
    'partition_rows',

    # Preprocessing
    'LoanDataPreprocessor',
    'PreprocessingResult',
    'compute_column_statistics',
    'load_statistics',
    'save_statistics',
    'statistics_path_for',
]
