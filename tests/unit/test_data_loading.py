"""Unit tests for CSV loading and row partitioning."""

import numpy as np
import pytest

from loan_ensemble.data.loading import load_feature_matrix, partition_rows
from loan_ensemble.exceptions import ConfigurationError, DataLoadError


class TestLoadFeatureMatrix:

    def test_label_column_removed(self, processed_csv, loan_matrix):
        data = load_feature_matrix(processed_csv)
        assert data.n_samples == loan_matrix.n_samples
        assert data.n_features == 5
        np.testing.assert_array_equal(data.y, loan_matrix.y)
        np.testing.assert_allclose(data.X, loan_matrix.X, atol=1e-5)

    def test_label_in_other_position(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text("label,a,b\n1,0.5,2.0\n0,1.5,3.0\n")
        data = load_feature_matrix(path, label_column=0)
        np.testing.assert_array_equal(data.y, [1, 0])
        np.testing.assert_allclose(data.X, [[0.5, 2.0], [1.5, 3.0]])

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataLoadError):
            load_feature_matrix(tmp_path / "missing.csv")

    def test_too_few_columns(self, tmp_path):
        path = tmp_path / "narrow.csv"
        path.write_text("a,b\n1,0\n")
        with pytest.raises(ConfigurationError):
            load_feature_matrix(path, label_column=5)

    def test_non_numeric_values(self, tmp_path):
        path = tmp_path / "text.csv"
        path.write_text("a,b,c,d,e,label\n1,2,x,4,5,1\n")
        with pytest.raises(DataLoadError):
            load_feature_matrix(path)


class TestPartitionRows:

    def test_ten_rows_three_workers(self):
        blocks = partition_rows(10, 3)
        assert blocks == [(0, 4), (4, 7), (7, 10)]
        assert [stop - start for start, stop in blocks] == [4, 3, 3]

    def test_every_row_assigned_once(self):
        blocks = partition_rows(17, 3)
        rows = [i for start, stop in blocks for i in range(start, stop)]
        assert rows == list(range(17))

    def test_fewer_rows_than_workers(self):
        assert partition_rows(2, 3) == [(0, 1), (1, 2), (2, 2)]
