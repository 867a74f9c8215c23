"""
Model persistence for the Loan Approval Ensemble.

This module implements the binary formats of the three classifiers. All
fields are little-endian and fixed width with no version header:

- Forest: one pre-order node stream per tree in ``<prefix>_tree_<i>.bin``
  (1-byte leaf flag; leaf -> int32 class; split -> int32 feature index,
  float32 threshold, left subtree, right subtree) plus a text file
  ``<prefix>_meta.txt`` holding ``numTrees maxDepth minSamplesLeaf numFeatures``.
- Network: int32 input size, int32 hidden layer count, that many int32
  hidden sizes, int32 output size, then per layer all weights (neuron-major,
  input-minor) followed by all biases, as float32.
- Linear: int32 feature count, float32 bias, feature-count float32 weights.

It also provides a lightweight validator for model files on disk.
"""

import hashlib
import logging
import struct
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from ..exceptions import ModelPersistenceError

logger = logging.getLogger(__name__)

_INT = struct.Struct('<i')
_FLOAT = struct.Struct('<f')
_FLAG = struct.Struct('<?')
_FLOAT32 = np.dtype('<f4')

PathLike = Union[str, Path]


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise ModelPersistenceError(
            f"Truncated model data: expected {size} bytes for {what}, got {len(data)}"
        )
    return data


def _read_int(stream: BinaryIO, what: str) -> int:
    return _INT.unpack(_read_exact(stream, _INT.size, what))[0]


def _read_floats(stream: BinaryIO, count: int, what: str) -> np.ndarray:
    data = _read_exact(stream, count * _FLOAT32.itemsize, what)
    return np.frombuffer(data, dtype=_FLOAT32).astype(np.float32)


def _open_for_write(path: Path) -> BinaryIO:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, 'wb')
    except OSError as e:
        raise ModelPersistenceError(f"Cannot open {path} for writing: {str(e)}") from e


def _open_for_read(path: Path) -> BinaryIO:
    if not path.exists():
        raise ModelPersistenceError(f"Model file not found: {path}")
    try:
        return open(path, 'rb')
    except OSError as e:
        raise ModelPersistenceError(f"Cannot open {path} for reading: {str(e)}") from e


def _expect_eof(stream: BinaryIO, path: Path) -> None:
    if stream.read(1):
        raise ModelPersistenceError(f"Unexpected trailing data in {path}")


# ---------------------------------------------------------------------------
# Decision trees and forests
# ---------------------------------------------------------------------------

def forest_tree_path(prefix: PathLike, index: int) -> Path:
    return Path(f"{prefix}_tree_{index}.bin")


def forest_meta_path(prefix: PathLike) -> Path:
    return Path(f"{prefix}_meta.txt")


def write_tree(stream: BinaryIO, node: Any) -> None:
    """Write a tree in pre-order. Nodes expose ``is_leaf`` and their fields."""
    stack = [node]
    while stack:
        current = stack.pop()
        stream.write(_FLAG.pack(current.is_leaf))
        if current.is_leaf:
            stream.write(_INT.pack(current.class_label))
        else:
            stream.write(_INT.pack(current.feature_index))
            stream.write(_FLOAT.pack(current.threshold))
            # Right is pushed first so the left subtree is written first.
            stack.append(current.right)
            stack.append(current.left)


def read_tree(
    stream: BinaryIO,
    make_leaf: Callable[[int], Any],
    make_split: Callable[[int, float, Any, Any], Any],
    max_depth: Optional[int] = None,
    depth: int = 0
) -> Any:
    """Read a pre-order node stream written by :func:`write_tree`."""
    if max_depth is not None and depth > max_depth:
        raise ModelPersistenceError(f"Tree deeper than the declared maximum depth {max_depth}")

    flag = _read_exact(stream, _FLAG.size, "leaf flag")[0]
    if flag not in (0, 1):
        raise ModelPersistenceError(f"Invalid leaf flag byte {flag}")

    if flag:
        return make_leaf(_read_int(stream, "leaf class"))

    feature_index = _read_int(stream, "split feature")
    threshold = _FLOAT.unpack(_read_exact(stream, _FLOAT.size, "split threshold"))[0]
    left = read_tree(stream, make_leaf, make_split, max_depth, depth + 1)
    right = read_tree(stream, make_leaf, make_split, max_depth, depth + 1)
    return make_split(feature_index, threshold, left, right)


def save_forest(prefix: PathLike, roots: List[Any], max_depth: int,
                min_samples_leaf: int, num_features: int) -> None:
    """Write every tree and the forest metadata file."""
    for index, root in enumerate(roots):
        path = forest_tree_path(prefix, index)
        with _open_for_write(path) as stream:
            write_tree(stream, root)

    meta_path = forest_meta_path(prefix)
    try:
        meta_path.write_text(f"{len(roots)} {max_depth} {min_samples_leaf} {num_features}\n")
    except OSError as e:
        raise ModelPersistenceError(f"Cannot write forest metadata {meta_path}: {str(e)}") from e

    logger.info(f"Random forest model saved with prefix: {prefix}")


def read_forest_meta(prefix: PathLike) -> Tuple[int, int, int, int]:
    """Return ``(num_trees, max_depth, min_samples_leaf, num_features)``."""
    meta_path = forest_meta_path(prefix)
    if not meta_path.exists():
        raise ModelPersistenceError(f"Forest metadata not found: {meta_path}")
    try:
        fields = meta_path.read_text().split()
        num_trees, max_depth, min_samples_leaf, num_features = (int(v) for v in fields[:4])
    except (OSError, ValueError) as e:
        raise ModelPersistenceError(f"Malformed forest metadata {meta_path}: {str(e)}") from e
    if num_trees < 1 or num_features < 1:
        raise ModelPersistenceError(f"Invalid forest metadata in {meta_path}: {fields}")
    return num_trees, max_depth, min_samples_leaf, num_features


def load_forest(
    prefix: PathLike,
    make_leaf: Callable[[int], Any],
    make_split: Callable[[int, float, Any, Any], Any]
) -> Tuple[Tuple[int, int, int, int], List[Any]]:
    """Read forest metadata and every tree root."""
    meta = read_forest_meta(prefix)
    num_trees, max_depth, _, num_features = meta

    def checked_split(feature_index, threshold, left, right):
        if not 0 <= feature_index < num_features:
            raise ModelPersistenceError(
                f"Split feature {feature_index} outside [0, {num_features})"
            )
        return make_split(feature_index, threshold, left, right)

    roots = []
    for index in range(num_trees):
        path = forest_tree_path(prefix, index)
        with _open_for_read(path) as stream:
            roots.append(read_tree(stream, make_leaf, checked_split, max_depth))
            _expect_eof(stream, path)

    logger.info(f"Random forest model loaded from prefix: {prefix}")
    return meta, roots


# ---------------------------------------------------------------------------
# Feed-forward network
# ---------------------------------------------------------------------------

def save_network(path: PathLike, layer_sizes: List[int],
                 weights: List[np.ndarray], biases: List[np.ndarray]) -> None:
    """Write network architecture followed by per-layer weights and biases."""
    path = Path(path)
    input_size, hidden, output_size = layer_sizes[0], layer_sizes[1:-1], layer_sizes[-1]
    with _open_for_write(path) as stream:
        stream.write(_INT.pack(input_size))
        stream.write(_INT.pack(len(hidden)))
        for size in hidden:
            stream.write(_INT.pack(size))
        stream.write(_INT.pack(output_size))
        for layer_weights, layer_biases in zip(weights, biases):
            stream.write(np.ascontiguousarray(layer_weights, dtype=_FLOAT32).tobytes())
            stream.write(np.ascontiguousarray(layer_biases, dtype=_FLOAT32).tobytes())
    logger.info(f"MLP model saved to {path}")


def _read_network_header(stream: BinaryIO) -> List[int]:
    input_size = _read_int(stream, "input size")
    hidden_count = _read_int(stream, "hidden layer count")
    if input_size < 1 or hidden_count < 0:
        raise ModelPersistenceError(
            f"Invalid network header: input size {input_size}, hidden layers {hidden_count}"
        )
    hidden = [_read_int(stream, "hidden layer size") for _ in range(hidden_count)]
    output_size = _read_int(stream, "output size")
    sizes = [input_size] + hidden + [output_size]
    if any(size < 1 for size in sizes):
        raise ModelPersistenceError(f"Invalid network layer sizes {sizes}")
    return sizes


def load_network(path: PathLike) -> Tuple[List[int], List[np.ndarray], List[np.ndarray]]:
    """Read ``(layer_sizes, weights, biases)`` from a network file."""
    path = Path(path)
    with _open_for_read(path) as stream:
        sizes = _read_network_header(stream)
        weights, biases = [], []
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            weights.append(_read_floats(stream, fan_in * fan_out, "weights").reshape(fan_out, fan_in))
            biases.append(_read_floats(stream, fan_out, "biases"))
        _expect_eof(stream, path)
    logger.info(f"MLP model loaded from {path}")
    return sizes, weights, biases


# ---------------------------------------------------------------------------
# Linear classifier
# ---------------------------------------------------------------------------

def save_linear(path: PathLike, weights: np.ndarray, bias: float) -> None:
    path = Path(path)
    with _open_for_write(path) as stream:
        stream.write(_INT.pack(len(weights)))
        stream.write(_FLOAT.pack(bias))
        stream.write(np.ascontiguousarray(weights, dtype=_FLOAT32).tobytes())
    logger.info(f"Logistic regression model saved to {path}")


def load_linear(path: PathLike) -> Tuple[np.ndarray, float]:
    """Read ``(weights, bias)`` from a linear model file."""
    path = Path(path)
    with _open_for_read(path) as stream:
        n_features = _read_int(stream, "feature count")
        if n_features < 1:
            raise ModelPersistenceError(f"Invalid feature count {n_features} in {path}")
        bias = _FLOAT.unpack(_read_exact(stream, _FLOAT.size, "bias"))[0]
        weights = _read_floats(stream, n_features, "weights")
        _expect_eof(stream, path)
    logger.info(f"Logistic regression model loaded from {path}")
    return weights, bias


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@dataclass
class ModelFileReport:
    """Result of checking one model file on disk."""
    path: str
    valid: bool
    message: str
    size_bytes: int = 0
    header_hex: str = ''
    file_hash: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _expected_size(path: Path, header: bytes) -> Optional[int]:
    """Size implied by the header for network and linear files, else None."""
    name = path.name.lower()
    ints = [
        _INT.unpack_from(header, offset)[0]
        for offset in range(0, len(header) - len(header) % 4, 4)
    ]
    if 'mlp' in name and len(ints) >= 2:
        hidden_count = ints[1]
        if hidden_count < 0 or len(ints) < 3 + hidden_count:
            return None
        sizes = [ints[0]] + ints[2:2 + hidden_count] + [ints[2 + hidden_count]]
        header_bytes = 4 * (3 + hidden_count)
        params = sum(a * b + b for a, b in zip(sizes[:-1], sizes[1:]))
        return header_bytes + 4 * params
    if 'logistic' in name and ints:
        return 8 + 4 * ints[0]
    return None


def validate_model_file(path: PathLike, header_size: int = 100) -> ModelFileReport:
    """
    Check that a model file exists, is non-empty and has a readable header.

    Network and logistic regression files (recognised by name) are also
    checked against the size their header implies.

    Args:
        path: Model file to check
        header_size: Number of leading bytes to read

    Returns:
        ModelFileReport describing the file
    """
    path = Path(path)
    if not path.is_file():
        return ModelFileReport(str(path), False, f"Cannot open model file: {path}")

    size = path.stat().st_size
    if size <= 0:
        return ModelFileReport(str(path), False, f"Model file is empty: {path}")

    try:
        with open(path, 'rb') as f:
            header = f.read(min(header_size, size))
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError as e:
        return ModelFileReport(str(path), False, f"Failed to read header from {path}: {e}", size)

    report = ModelFileReport(
        path=str(path),
        valid=True,
        message=f"Model file {path} appears valid (size: {size} bytes)",
        size_bytes=size,
        header_hex=' '.join(f"{b:02x}" for b in header[:16]),
        file_hash=digest,
    )

    expected = _expected_size(path, header)
    if expected is not None and expected != size:
        report.valid = False
        report.message = f"Model file {path} is {size} bytes but its header implies {expected}"

    return report
