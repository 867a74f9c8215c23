"""
Decision forest classifier for the Loan Approval Ensemble.

Trees are grown on bootstrap resamples of the training rows with Gini
impurity splits over a random feature subset drawn at every node. Trees are
trained concurrently on the shared thread pool, and inside a tree the split
search over candidate features is a parallel reduction.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..base import ModelInterface, as_training_arrays
from .. import persistence
from ...utils.parallel import parallel_map, parallel_reduce

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafNode:
    """Terminal node carrying a predicted class."""
    class_label: int

    @property
    def is_leaf(self) -> bool:
        return True


@dataclass(frozen=True)
class SplitNode:
    """Internal node; rows with ``x[feature_index] <= threshold`` go left."""
    feature_index: int
    threshold: float
    left: 'TreeNode'
    right: 'TreeNode'

    @property
    def is_leaf(self) -> bool:
        return False


TreeNode = Union[LeafNode, SplitNode]


def gini_impurity(labels: Sequence[int]) -> float:
    """
    Gini impurity ``1 - sum(p_c ** 2)`` of a label collection.

    An empty collection has impurity 0.
    """
    labels = np.asarray(labels)
    if labels.size == 0:
        return 0.0
    _, counts = np.unique(labels, return_counts=True)
    proportions = counts / labels.size
    return float(1.0 - np.sum(proportions * proportions))


def majority_class(labels: Sequence[int]) -> int:
    """Most frequent label; ties go to the label seen first."""
    counts: Dict[int, int] = {}
    for label in np.asarray(labels).tolist():
        counts[label] = counts.get(label, 0) + 1
    if not counts:
        raise ValueError("Cannot take the majority of an empty label set")
    # max() keeps the first maximal key in insertion order.
    return int(max(counts, key=counts.get))


# (weighted gini, candidate position, feature index, threshold)
_SplitCandidate = Tuple[float, int, int, float]
_NO_SPLIT: _SplitCandidate = (math.inf, -1, -1, 0.0)


def _better_split(current: _SplitCandidate, candidate: _SplitCandidate) -> _SplitCandidate:
    return candidate if candidate[:2] < current[:2] else current


def _best_threshold(
    values: np.ndarray,
    onehot: np.ndarray,
    min_samples_leaf: int
) -> Optional[Tuple[float, float]]:
    """
    Best ``(weighted_gini, threshold)`` for one feature, or None.

    Every distinct observed value is a candidate threshold. Candidates leaving
    fewer than ``min_samples_leaf`` rows on either side are skipped; ties go
    to the smallest threshold.
    """
    n = values.shape[0]
    order = np.argsort(values, kind='stable')
    sorted_values = values[order]
    cumulative = np.cumsum(onehot[order], axis=0)

    # Last position of each run of equal values.
    boundaries = np.flatnonzero(np.append(sorted_values[1:] != sorted_values[:-1], True))
    left_counts = cumulative[boundaries].astype(np.float64)
    right_counts = cumulative[-1].astype(np.float64) - left_counts
    n_left = (boundaries + 1).astype(np.float64)
    n_right = n - n_left

    valid = (n_left >= min_samples_leaf) & (n_right >= min_samples_leaf)
    if not valid.any():
        return None

    left_gini = 1.0 - np.sum((left_counts / n_left[:, None]) ** 2, axis=1)
    safe_right = np.where(n_right > 0, n_right, 1.0)
    right_gini = np.where(
        n_right > 0, 1.0 - np.sum((right_counts / safe_right[:, None]) ** 2, axis=1), 0.0
    )
    weighted = (n_left * left_gini + n_right * right_gini) / n
    weighted[~valid] = np.inf

    best = int(np.argmin(weighted))
    return float(weighted[best]), float(sorted_values[boundaries[best]])


def find_best_split(
    X: np.ndarray,
    y: np.ndarray,
    indices: np.ndarray,
    feature_indices: Sequence[int],
    min_samples_leaf: int
) -> Tuple[int, float]:
    """
    Search candidate features for the split with the lowest weighted Gini.

    Each feature is scored as a separate task and the per-feature bests are
    merged into the global best under a lock. Ties resolve to the earliest
    feature in ``feature_indices``.

    Returns:
        ``(feature_index, threshold)``; feature index -1 when no candidate
        satisfies ``min_samples_leaf``
    """
    labels = y[indices]
    classes, encoded = np.unique(labels, return_inverse=True)
    onehot = np.eye(len(classes), dtype=np.int64)[encoded]

    def score(position: int, feature: int):
        def task() -> _SplitCandidate:
            result = _best_threshold(X[indices, feature], onehot, min_samples_leaf)
            if result is None:
                return _NO_SPLIT
            return result[0], position, int(feature), result[1]
        return task

    tasks = [score(position, feature) for position, feature in enumerate(feature_indices)]
    best = parallel_reduce(tasks, _better_split, _NO_SPLIT)
    return best[2], best[3]


class DecisionTree:
    """
    Single CART-style tree grown on a bootstrap sample.

    Args:
        max_depth: Nodes at this depth become leaves
        min_samples_leaf: Minimum rows on each side of a split
        n_features: Feature count of the training data
        seed: Seed for bootstrap and feature subsampling
    """

    def __init__(self, max_depth: int, min_samples_leaf: int, n_features: int, seed=None):
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.n_features = n_features
        self.mtry = max(1, int(math.sqrt(n_features)))
        self.root: Optional[TreeNode] = None
        self.bootstrap_indices: Optional[np.ndarray] = None
        self._rng = np.random.default_rng(seed)

    def train(self, X: np.ndarray, y: np.ndarray) -> 'DecisionTree':
        n_samples = X.shape[0]
        self.bootstrap_indices = self._rng.integers(0, n_samples, size=n_samples)
        self.root = self._build(X, y, self.bootstrap_indices, 0)
        return self

    def _build(self, X: np.ndarray, y: np.ndarray, indices: np.ndarray, depth: int) -> TreeNode:
        labels = y[indices]
        if depth >= self.max_depth or indices.size <= self.min_samples_leaf:
            return LeafNode(majority_class(labels))
        # A pure node has no split that lowers impurity.
        if np.all(labels == labels[0]):
            return LeafNode(int(labels[0]))

        features = self._rng.choice(self.n_features, size=min(self.mtry, self.n_features),
                                    replace=False)
        feature_index, threshold = find_best_split(
            X, y, indices, features, self.min_samples_leaf
        )
        if feature_index == -1:
            return LeafNode(majority_class(labels))

        goes_left = X[indices, feature_index] <= threshold
        left_indices = indices[goes_left]
        right_indices = indices[~goes_left]
        if left_indices.size == 0 or right_indices.size == 0:
            return LeafNode(majority_class(labels))

        return SplitNode(
            feature_index=int(feature_index),
            threshold=float(np.float32(threshold)),
            left=self._build(X, y, left_indices, depth + 1),
            right=self._build(X, y, right_indices, depth + 1),
        )

    def predict(self, features: np.ndarray) -> int:
        node = self.root
        while not node.is_leaf:
            node = node.left if features[node.feature_index] <= node.threshold else node.right
        return node.class_label

    def leaves(self) -> List[LeafNode]:
        """All leaves in left-to-right order."""
        found, stack = [], [self.root]
        while stack:
            node = stack.pop()
            if node.is_leaf:
                found.append(node)
            else:
                stack.extend((node.right, node.left))
        return found

    def depth(self) -> int:
        def walk(node: TreeNode) -> int:
            return 0 if node.is_leaf else 1 + max(walk(node.left), walk(node.right))
        return walk(self.root) if self.root is not None else 0


class DecisionForest(ModelInterface):
    """
    Bootstrap-aggregated ensemble of decision trees.

    Prediction is a majority vote over trees in training order; a tied vote
    goes to the class voted for first.
    """

    model_type = 'random_forest'

    def __init__(self, num_trees: int = 100, max_depth: int = 10,
                 min_samples_leaf: int = 2, num_features: int = 0, seed=None):
        super().__init__()
        if num_trees < 1:
            raise ValueError(f"num_trees must be positive, got {num_trees}")
        if max_depth < 0 or min_samples_leaf < 0:
            raise ValueError("max_depth and min_samples_leaf must be non-negative")
        self.num_trees = num_trees
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.num_features = num_features
        self.seed = seed
        self.trees: List[DecisionTree] = []

    @property
    def n_features(self) -> int:
        return self.num_features

    def train(self, X, y, n_samples: Optional[int] = None,
              n_features: Optional[int] = None) -> 'DecisionForest':
        """
        Grow ``num_trees`` independent trees.

        Args:
            X: Feature matrix (2-D, or flat with ``n_samples``/``n_features``)
            y: Labels
            n_samples: Number of rows
            n_features: Number of features per row

        Returns:
            self
        """
        X, y = as_training_arrays(X, y, n_samples, n_features)
        self.num_features = X.shape[1]
        logger.info(
            f"Training random forest with {self.num_trees} trees, "
            f"{X.shape[0]} samples and {self.num_features} features"
        )

        tree_seeds = np.random.SeedSequence(self.seed).spawn(self.num_trees)

        def grow(index: int) -> DecisionTree:
            tree = DecisionTree(self.max_depth, self.min_samples_leaf, self.num_features,
                                seed=tree_seeds[index])
            tree.train(X, y)
            logger.debug(f"Tree {index + 1}/{self.num_trees} trained")
            return tree

        self.trees = parallel_map(grow, range(self.num_trees))
        self._is_trained = True
        logger.info("Random forest training completed")
        return self

    def tree_votes(self, features) -> List[int]:
        sample = self._check_sample(features)
        return [tree.predict(sample) for tree in self.trees]

    def predict(self, features) -> int:
        """Majority vote of all trees for one sample."""
        return majority_class(self.tree_votes(features))

    def save(self, path: Union[str, Path]) -> None:
        """Save trees as ``<path>_tree_<i>.bin`` plus ``<path>_meta.txt``."""
        self._check_is_trained()
        persistence.save_forest(
            path, [tree.root for tree in self.trees],
            self.max_depth, self.min_samples_leaf, self.num_features
        )

    def load(self, path: Union[str, Path]) -> None:
        """Load a forest saved under the prefix ``path``."""
        meta, roots = persistence.load_forest(path, LeafNode, SplitNode)
        self.num_trees, self.max_depth, self.min_samples_leaf, self.num_features = meta
        self.trees = []
        for root in roots:
            tree = DecisionTree(self.max_depth, self.min_samples_leaf, self.num_features)
            tree.root = root
            self.trees.append(tree)
        self._is_trained = True
