"""
Raw loan data preprocessing for the Loan Approval Ensemble.

This module turns the raw loan CSV into the numeric training file consumed by
the models:
- Categorical encoding (employment status, approval label)
- Column statistics computed with a parallel reduction over row chunks
- Missing value imputation from the column means
- Optional z-score normalization with the same statistics used at prediction
- Verification of the cleaned dataset
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .schema import ColumnStatistics, PROCESSED_COLUMNS
from ..exceptions import ConfigurationError, DataLoadError
from ..utils.parallel import reduce_over_chunks

logger = logging.getLogger(__name__)

RAW_NUMERIC_COLUMNS = {
    'Income': 'income',
    'Credit_Score': 'credit_score',
    'Loan_Amount': 'loan_amount',
    'DTI_Ratio': 'dti_ratio',
}
EMPLOYMENT_STATUS_MAP = {'unemployed': 0, 'employed': 1}
APPROVAL_MAP = {'Rejected': 0, 'Approved': 1}
REQUIRED_COLUMNS = list(RAW_NUMERIC_COLUMNS) + ['Employment_Status', 'Approval']

CREDIT_SCORE_RANGE = (300, 850)
MISSING_CODE = -1


@dataclass
class PreprocessingResult:
    """Outcome of a preprocessing run."""
    data: pd.DataFrame
    statistics: ColumnStatistics
    verified: bool
    missing_counts: Dict[str, int] = field(default_factory=dict)
    output_path: Optional[Path] = None


def _valid_mask(values: np.ndarray) -> np.ndarray:
    # Zero or negative numeric values count as missing.
    return ~np.isnan(values) & (values > 0)


def compute_column_statistics(frame: pd.DataFrame) -> ColumnStatistics:
    """
    Compute mean and sample standard deviation of each numeric column.

    Only present, positive values contribute. A column with one or fewer
    valid values gets a standard deviation of 1.0.

    Args:
        frame: Frame with the processed column names

    Returns:
        Immutable column statistics
    """
    values = frame[list(RAW_NUMERIC_COLUMNS)].to_numpy(dtype=np.float64)
    n_rows, n_cols = values.shape

    def sum_chunk(start: int, stop: int) -> Tuple[np.ndarray, np.ndarray]:
        block = values[start:stop]
        mask = _valid_mask(block)
        return np.where(mask, block, 0.0).sum(axis=0), mask.sum(axis=0)

    def merge_sums(total, partial):
        return total[0] + partial[0], total[1] + partial[1]

    sums, counts = reduce_over_chunks(
        n_rows, sum_chunk, merge_sums, (np.zeros(n_cols), np.zeros(n_cols, dtype=np.int64))
    )
    means = np.divide(sums, counts, out=np.zeros(n_cols), where=counts > 0)

    def squares_chunk(start: int, stop: int) -> np.ndarray:
        block = values[start:stop]
        mask = _valid_mask(block)
        return np.where(mask, (block - means) ** 2, 0.0).sum(axis=0)

    squares = reduce_over_chunks(n_rows, squares_chunk, lambda a, b: a + b, np.zeros(n_cols))
    stddevs = np.ones(n_cols)
    enough = counts > 1
    stddevs[enough] = np.sqrt(squares[enough] / (counts[enough] - 1))

    names = list(RAW_NUMERIC_COLUMNS.values())
    statistics = ColumnStatistics(
        means={name: float(means[i]) for i, name in enumerate(names)},
        stddevs={name: float(stddevs[i]) for i, name in enumerate(names)},
    )
    logger.info(
        "Column means: " + ", ".join(f"{name}={statistics.means[name]:.2f}" for name in names)
    )
    return statistics


def save_statistics(statistics: ColumnStatistics, filepath: Union[str, Path]) -> None:
    """Write statistics as ``{column: [mean, stddev]}`` JSON."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'w') as f:
        json.dump(statistics.to_dict(), f, indent=2)


def load_statistics(filepath: Union[str, Path]) -> ColumnStatistics:
    """Read statistics written by :func:`save_statistics`."""
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Statistics file not found: {filepath}")
    with open(filepath, 'r') as f:
        return ColumnStatistics.from_pairs(json.load(f))


class LoanDataPreprocessor:
    """
    Cleans the raw loan dataset and writes the numeric training file.

    Args:
        normalize: Z-score the numeric columns after imputation
    """

    def __init__(self, normalize: bool = True):
        self.normalize = normalize

    def load_raw(self, filepath: Union[str, Path]) -> pd.DataFrame:
        """
        Read the raw CSV and encode its categorical columns.

        Unknown employment or approval values are encoded as -1 and treated
        as missing by :meth:`impute`.

        Raises:
            DataLoadError: If the file cannot be read
            ConfigurationError: If a required column is absent
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise DataLoadError(f"Raw data file not found: {filepath}")

        try:
            raw = pd.read_csv(filepath, dtype=str, keep_default_na=False)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise DataLoadError(f"Failed to read {filepath}: {str(e)}") from e

        missing = [column for column in REQUIRED_COLUMNS if column not in raw.columns]
        if missing:
            raise ConfigurationError(f"Missing required columns in {filepath}: {missing}")

        frame = pd.DataFrame(index=raw.index)
        for column in RAW_NUMERIC_COLUMNS:
            frame[column] = pd.to_numeric(raw[column].str.strip(), errors='coerce')
        frame['Employment_Status'] = (
            raw['Employment_Status'].str.strip().map(EMPLOYMENT_STATUS_MAP)
            .fillna(MISSING_CODE).astype(int)
        )
        frame['Approval'] = (
            raw['Approval'].str.strip().map(APPROVAL_MAP).fillna(MISSING_CODE).astype(int)
        )

        logger.info(f"Loaded {len(frame)} raw loan records from {filepath}")
        return frame

    def count_missing(self, frame: pd.DataFrame) -> Dict[str, int]:
        """Count missing or invalid values per column."""
        counts = {}
        for column in RAW_NUMERIC_COLUMNS:
            counts[column] = int((~_valid_mask(frame[column].to_numpy(dtype=np.float64))).sum())
        for column in ('Employment_Status', 'Approval'):
            counts[column] = int((~frame[column].isin((0, 1))).sum())
        return counts

    def impute(self, frame: pd.DataFrame, statistics: ColumnStatistics) -> pd.DataFrame:
        """
        Fill missing values.

        Numeric columns take the column mean; the credit score mean is rounded
        and clamped to the valid score range. Missing employment defaults to
        employed and missing approval defaults to rejected.
        """
        frame = frame.copy()
        for column, name in RAW_NUMERIC_COLUMNS.items():
            values = frame[column].to_numpy(dtype=np.float64)
            fill = statistics.means[name]
            if name == 'credit_score':
                fill = float(np.clip(round(fill), *CREDIT_SCORE_RANGE))
            frame[column] = np.where(_valid_mask(values), values, fill)

        frame.loc[~frame['Employment_Status'].isin((0, 1)), 'Employment_Status'] = 1
        frame.loc[~frame['Approval'].isin((0, 1)), 'Approval'] = 0
        return frame

    def apply_normalization(self, frame: pd.DataFrame, statistics: ColumnStatistics) -> pd.DataFrame:
        frame = frame.copy()
        for column, name in RAW_NUMERIC_COLUMNS.items():
            frame[column] = (frame[column] - statistics.means[name]) / statistics.stddevs[name]
        return frame

    def verify(self, frame: pd.DataFrame) -> bool:
        """
        Check an imputed, not yet normalized frame for remaining gaps.

        Returns:
            True if no missing numeric value or invalid categorical remains
        """
        counts = self.count_missing(frame)
        missing_values = sum(counts[column] for column in RAW_NUMERIC_COLUMNS)
        invalid_categorical = counts['Employment_Status'] + counts['Approval']

        if missing_values or invalid_categorical:
            logger.warning(
                f"Dataset still contains {missing_values} missing values and "
                f"{invalid_categorical} invalid categorical values after preprocessing"
            )
            return False

        logger.info("Preprocessing verification successful")
        return True

    def save(self, frame: pd.DataFrame, filepath: Union[str, Path]) -> Path:
        """Write the processed frame with six decimal places."""
        filepath = Path(filepath)
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            frame[PROCESSED_COLUMNS].to_csv(filepath, index=False, float_format='%.6f')
        except OSError as e:
            raise DataLoadError(f"Could not write processed data to {filepath}: {str(e)}") from e
        logger.info(f"Saved {len(frame)} records to {filepath}")
        return filepath

    def run(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None
    ) -> PreprocessingResult:
        """
        Run the full pipeline: load, statistics, impute, verify, normalize, save.

        When ``output_path`` is given the column statistics are written next to
        it as ``<stem>.stats.json`` so prediction can reuse them.
        """
        frame = self.load_raw(input_path)
        missing_counts = self.count_missing(frame)
        for column, count in missing_counts.items():
            if count:
                logger.warning(f"{count} records with missing {column}")

        statistics = compute_column_statistics(frame)
        frame = self.impute(frame, statistics)
        verified = self.verify(frame)

        if self.normalize:
            frame = self.apply_normalization(frame, statistics)

        saved_path = None
        if output_path is not None:
            saved_path = self.save(frame, output_path)
            save_statistics(statistics, statistics_path_for(saved_path))

        return PreprocessingResult(
            data=frame,
            statistics=statistics,
            verified=verified,
            missing_counts=missing_counts,
            output_path=saved_path,
        )


def statistics_path_for(data_path: Union[str, Path]) -> Path:
    """Location of the statistics file stored beside a processed CSV."""
    data_path = Path(data_path)
    return data_path.with_name(f"{data_path.stem}.stats.json")
