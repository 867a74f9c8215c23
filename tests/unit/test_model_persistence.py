"""
Unit tests for model persistence.

Tests cover:
- Save and load round trips of all three classifiers
- Binary layout of tree, network and linear files
- Truncated, malformed and missing files
- Model file validation
"""

import io
import struct

import numpy as np
import pytest

from loan_ensemble.exceptions import ModelNotFittedError, ModelPersistenceError
from loan_ensemble.models.classifiers import (
    DecisionForest,
    FeedForwardNetwork,
    LeafNode,
    LinearClassifier,
    SplitNode,
)
from loan_ensemble.models.persistence import (
    forest_meta_path,
    forest_tree_path,
    read_tree,
    validate_model_file,
    write_tree,
)


@pytest.fixture
def trained_forest(separable_data):
    return DecisionForest(num_trees=3, max_depth=4, min_samples_leaf=2, seed=0).fit(separable_data)


@pytest.fixture
def trained_network(separable_data):
    network = FeedForwardNetwork(hidden_layers=[5, 3], epochs=3, learning_rate=0.2, seed=0)
    network.fit(separable_data)
    return network


@pytest.fixture
def trained_linear(separable_data):
    model = LinearClassifier(max_iterations=10, learning_rate=0.3, seed=0)
    model.fit(separable_data)
    return model


class TestRoundTrips:

    def test_forest(self, trained_forest, separable_data, tmp_path):
        prefix = tmp_path / "random_forest_model.bin"
        trained_forest.save(prefix)

        assert forest_meta_path(prefix).read_text().split() == ['3', '4', '2', '2']
        assert all(forest_tree_path(prefix, i).exists() for i in range(3))

        loaded = DecisionForest()
        loaded.load(prefix)
        assert loaded.num_trees == 3
        assert [t.root for t in loaded.trees] == [t.root for t in trained_forest.trees]
        np.testing.assert_array_equal(
            loaded.predict_batch(separable_data.X), trained_forest.predict_batch(separable_data.X)
        )

    def test_network(self, trained_network, separable_data, tmp_path):
        path = tmp_path / "mlp_model.bin"
        trained_network.save(path)

        loaded = FeedForwardNetwork()
        loaded.load(path)
        assert loaded.layer_sizes == [2, 5, 3, 2]
        for original, restored in zip(trained_network.weights, loaded.weights):
            np.testing.assert_array_equal(original, restored)
        for row in separable_data.X:
            np.testing.assert_array_equal(trained_network.predict_proba(row), loaded.predict_proba(row))

    def test_linear(self, trained_linear, separable_data, tmp_path):
        path = tmp_path / "logistic_regression_model.bin"
        trained_linear.save(path)

        loaded = LinearClassifier()
        loaded.load(path)
        np.testing.assert_array_equal(loaded.weights, trained_linear.weights)
        assert loaded.bias == trained_linear.bias
        np.testing.assert_array_equal(
            loaded.predict_probabilities(separable_data.X),
            trained_linear.predict_probabilities(separable_data.X)
        )

    def test_save_before_training(self, tmp_path):
        with pytest.raises(ModelNotFittedError):
            LinearClassifier(n_features=2).save(tmp_path / "model.bin")


class TestBinaryLayout:

    def test_tree_stream(self):
        root = SplitNode(1, 0.5, LeafNode(0), LeafNode(1))
        stream = io.BytesIO()
        write_tree(stream, root)
        assert stream.getvalue() == (
            b'\x00' + struct.pack('<i', 1) + struct.pack('<f', 0.5)
            + b'\x01' + struct.pack('<i', 0)
            + b'\x01' + struct.pack('<i', 1)
        )
        stream.seek(0)
        assert read_tree(stream, LeafNode, SplitNode) == root

    def test_network_file_size(self, trained_network, tmp_path):
        path = tmp_path / "mlp_model.bin"
        trained_network.save(path)
        header = 4 * (3 + 2)
        params = (2 * 5 + 5) + (5 * 3 + 3) + (3 * 2 + 2)
        assert path.stat().st_size == header + 4 * params
        assert struct.unpack('<5i', path.read_bytes()[:20]) == (2, 2, 5, 3, 2)

    def test_linear_file_layout(self, tmp_path):
        model = LinearClassifier(n_features=3, seed=0)
        model.weights = np.array([1.0, -2.0, 0.25], dtype=np.float32)
        model.bias = np.float32(0.5)
        model._is_trained = True
        path = tmp_path / "logistic_regression_model.bin"
        model.save(path)
        assert path.read_bytes() == struct.pack('<if3f', 3, 0.5, 1.0, -2.0, 0.25)


class TestCorruptFiles:

    def test_truncated_linear(self, trained_linear, tmp_path):
        path = tmp_path / "logistic_regression_model.bin"
        trained_linear.save(path)
        path.write_bytes(path.read_bytes()[:-2])
        with pytest.raises(ModelPersistenceError):
            LinearClassifier().load(path)

    def test_trailing_data(self, trained_network, tmp_path):
        path = tmp_path / "mlp_model.bin"
        trained_network.save(path)
        path.write_bytes(path.read_bytes() + b'\x00')
        with pytest.raises(ModelPersistenceError):
            FeedForwardNetwork().load(path)

    def test_missing_files(self, tmp_path):
        with pytest.raises(ModelPersistenceError):
            LinearClassifier().load(tmp_path / "missing.bin")
        with pytest.raises(ModelPersistenceError):
            DecisionForest().load(tmp_path / "random_forest_model.bin")

    def test_missing_tree_file(self, trained_forest, tmp_path):
        prefix = tmp_path / "random_forest_model.bin"
        trained_forest.save(prefix)
        forest_tree_path(prefix, 2).unlink()
        with pytest.raises(ModelPersistenceError):
            DecisionForest().load(prefix)

    def test_split_feature_out_of_range(self, tmp_path):
        prefix = tmp_path / "forest"
        with open(forest_tree_path(prefix, 0), 'wb') as stream:
            write_tree(stream, SplitNode(7, 0.0, LeafNode(0), LeafNode(1)))
        forest_meta_path(prefix).write_text("1 3 2 2\n")
        with pytest.raises(ModelPersistenceError):
            DecisionForest().load(prefix)

    def test_invalid_leaf_flag(self):
        with pytest.raises(ModelPersistenceError):
            read_tree(io.BytesIO(b'\x07'), LeafNode, SplitNode)


class TestValidateModelFile:

    def test_valid_file(self, trained_linear, tmp_path):
        path = tmp_path / "logistic_regression_model.bin"
        trained_linear.save(path)
        report = validate_model_file(path)
        assert report.valid
        assert report.size_bytes == 8 + 4 * 2
        assert report.header_hex.startswith("02 00 00 00")
        assert len(report.file_hash) == 64

    def test_missing_file(self, tmp_path):
        report = validate_model_file(tmp_path / "nothing.bin")
        assert not report.valid
        assert "Cannot open" in report.message

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.touch()
        report = validate_model_file(path)
        assert not report.valid
        assert "empty" in report.message

    def test_size_disagrees_with_header(self, trained_network, tmp_path):
        path = tmp_path / "mlp_model.bin"
        trained_network.save(path)
        path.write_bytes(path.read_bytes()[:-4])
        assert not validate_model_file(path).valid

    def test_tree_file_checked_for_readability_only(self, trained_forest, tmp_path):
        prefix = tmp_path / "random_forest_model.bin"
        trained_forest.save(prefix)
        assert validate_model_file(forest_tree_path(prefix, 0)).valid
