"""
Unit tests for the decision forest.

Tests cover:
- Gini impurity and majority class tie-breaking
- Split search over candidate features
- Tree induction properties on bootstrap samples
- Forest voting, determinism and accuracy on separable data
"""

import numpy as np
import pytest

from loan_ensemble.exceptions import FeatureCountMismatchError, ModelNotFittedError
from loan_ensemble.models.classifiers import decision_forest
from loan_ensemble.models.classifiers.decision_forest import (
    DecisionForest,
    DecisionTree,
    LeafNode,
    SplitNode,
    find_best_split,
    gini_impurity,
    majority_class,
)


def route(node, features):
    while not node.is_leaf:
        node = node.left if features[node.feature_index] <= node.threshold else node.right
    return node


class TestImpurity:

    def test_pure_set(self):
        assert gini_impurity([1, 1, 1, 1]) == 0.0

    def test_balanced_set(self):
        assert gini_impurity([0, 1, 0, 1]) == pytest.approx(0.5)

    def test_empty_set(self):
        assert gini_impurity([]) == 0.0

    def test_majority_class_first_seen_on_tie(self):
        assert majority_class([0, 1, 1, 0]) == 0
        assert majority_class([1, 0]) == 1
        assert majority_class([0, 1, 1]) == 1

    def test_majority_of_nothing(self):
        with pytest.raises(ValueError):
            majority_class([])


class TestFindBestSplit:

    def test_perfect_split(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]], dtype=np.float32)
        y = np.array([0, 0, 1, 1])
        feature, threshold = find_best_split(X, y, np.arange(4), [0], 1)
        assert feature == 0
        assert threshold == pytest.approx(1.0)

    def test_picks_informative_feature(self):
        X = np.array([[5, 0], [5, 1], [5, 2], [5, 3]], dtype=np.float32)
        y = np.array([0, 0, 1, 1])
        feature, threshold = find_best_split(X, y, np.arange(4), [0, 1], 1)
        assert feature == 1
        assert threshold == pytest.approx(1.0)

    def test_tie_goes_to_earlier_candidate(self):
        X = np.array([[0, 0], [1, 1], [2, 2], [3, 3]], dtype=np.float32)
        y = np.array([0, 0, 1, 1])
        assert find_best_split(X, y, np.arange(4), [1, 0], 1)[0] == 1
        assert find_best_split(X, y, np.arange(4), [0, 1], 1)[0] == 0

    def test_min_samples_leaf_blocks_split(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]], dtype=np.float32)
        y = np.array([0, 0, 1, 1])
        assert find_best_split(X, y, np.arange(4), [0], 3) == (-1, 0.0)

    def test_constant_feature_has_no_split(self):
        X = np.ones((4, 1), dtype=np.float32)
        y = np.array([0, 1, 0, 1])
        assert find_best_split(X, y, np.arange(4), [0], 1)[0] == -1


class TestDecisionTree:

    @pytest.fixture
    def tree_and_data(self, separable_data):
        X, y = np.array(separable_data.X), np.array(separable_data.y)
        tree = DecisionTree(max_depth=4, min_samples_leaf=2, n_features=X.shape[1], seed=7)
        tree.train(X, y)
        return tree, X, y

    def test_mtry(self):
        assert DecisionTree(10, 2, 5).mtry == 2
        assert DecisionTree(10, 2, 4).mtry == 2
        assert DecisionTree(10, 2, 1).mtry == 1
        assert DecisionTree(10, 2, 8).mtry == 2
        assert DecisionTree(10, 2, 9).mtry == 3

    def test_split_search_sees_mtry_candidates(self, loan_matrix, monkeypatch):
        searched = []

        def recording_split(X, y, indices, feature_indices, min_samples_leaf):
            searched.append(len(feature_indices))
            return find_best_split(X, y, indices, feature_indices, min_samples_leaf)

        monkeypatch.setattr(decision_forest, 'find_best_split', recording_split)
        tree = DecisionTree(max_depth=4, min_samples_leaf=2, n_features=5, seed=3)
        tree.train(np.array(loan_matrix.X), np.array(loan_matrix.y))
        assert searched
        assert set(searched) == {2}

    def test_bootstrap_indices(self, tree_and_data):
        tree, X, _ = tree_and_data
        assert tree.bootstrap_indices.shape == (X.shape[0],)
        assert tree.bootstrap_indices.min() >= 0
        assert tree.bootstrap_indices.max() < X.shape[0]

    def test_depth_bounded(self, tree_and_data):
        tree, _, _ = tree_and_data
        assert tree.depth() <= 4

    def test_leaf_holds_majority_of_its_training_rows(self, tree_and_data):
        tree, X, y = tree_and_data
        routed = {}
        for index in tree.bootstrap_indices:
            leaf = route(tree.root, X[index])
            routed.setdefault(id(leaf), (leaf, []))[1].append(y[index])

        assert len(routed) == len(tree.leaves())
        for leaf, labels in routed.values():
            assert leaf.class_label == majority_class(labels)

    def test_zero_depth_is_single_leaf(self, separable_data):
        tree = DecisionTree(max_depth=0, min_samples_leaf=1, n_features=2, seed=1)
        tree.train(np.array(separable_data.X), np.array(separable_data.y))
        assert tree.root.is_leaf

    def test_pure_data_is_single_leaf(self):
        X = np.random.default_rng(0).normal(size=(20, 3)).astype(np.float32)
        tree = DecisionTree(max_depth=5, min_samples_leaf=1, n_features=3, seed=0)
        tree.train(X, np.ones(20, dtype=np.int32))
        assert tree.root == LeafNode(1)


class TestDecisionForest:

    def test_accuracy_on_separable_data(self, separable_data):
        forest = DecisionForest(num_trees=25, max_depth=8, min_samples_leaf=2, seed=3)
        forest.fit(separable_data)
        predictions = forest.predict_batch(separable_data.X)
        assert np.mean(predictions == separable_data.y) > 0.9
        assert len(forest.trees) == 25
        assert forest.n_features == 2

    def test_seeded_training_is_deterministic(self, separable_data):
        first = DecisionForest(num_trees=5, max_depth=5, seed=11).fit(separable_data)
        second = DecisionForest(num_trees=5, max_depth=5, seed=11).fit(separable_data)
        np.testing.assert_array_equal(
            first.predict_batch(separable_data.X), second.predict_batch(separable_data.X)
        )
        assert [t.root for t in first.trees] == [t.root for t in second.trees]

    def test_flat_input(self, separable_data):
        forest = DecisionForest(num_trees=3, max_depth=3, seed=0)
        forest.train(np.array(separable_data.X).ravel(), separable_data.y,
                     separable_data.n_samples, separable_data.n_features)
        assert forest.is_trained

    def test_vote_tie_goes_to_first_tree(self):
        forest = DecisionForest(num_trees=2, num_features=2)
        for label in (1, 0):
            tree = DecisionTree(1, 1, 2)
            tree.root = LeafNode(label)
            forest.trees.append(tree)
        forest._is_trained = True
        assert forest.tree_votes([0.0, 0.0]) == [1, 0]
        assert forest.predict([0.0, 0.0]) == 1

        forest.trees.reverse()
        assert forest.predict([0.0, 0.0]) == 0

    def test_majority_vote(self):
        forest = DecisionForest(num_trees=3, num_features=1)
        split = SplitNode(0, 0.5, LeafNode(0), LeafNode(1))
        for root in (split, split, LeafNode(0)):
            tree = DecisionTree(2, 1, 1)
            tree.root = root
            forest.trees.append(tree)
        forest._is_trained = True
        assert forest.predict([1.0]) == 1
        assert forest.predict([0.0]) == 0

    def test_predict_before_training(self):
        with pytest.raises(ModelNotFittedError):
            DecisionForest(num_trees=2).predict([0.0, 1.0])

    def test_feature_count_mismatch(self, separable_data):
        forest = DecisionForest(num_trees=2, max_depth=2, seed=0).fit(separable_data)
        with pytest.raises(FeatureCountMismatchError):
            forest.predict([0.1, 0.2, 0.3])

    def test_clone_is_independent(self, separable_data):
        forest = DecisionForest(num_trees=3, max_depth=3, seed=0).fit(separable_data)
        clone = forest.clone()
        clone.trees.pop()
        assert len(forest.trees) == 3
        assert clone.predict(separable_data.row(0)) in (0, 1)

    def test_invalid_hyperparameters(self):
        with pytest.raises(ValueError):
            DecisionForest(num_trees=0)
        with pytest.raises(ValueError):
            DecisionForest(max_depth=-1)
