"""
Model evaluation and metrics utilities for the Loan Approval Ensemble.

This module provides:
- Confusion counts computed in parallel, each chunk using its own model clone
- Accuracy, precision, recall and F1 that degrade to 0 on empty denominators
- Plain-text and JSON evaluation reports
- Confusion matrix visualization
- Distributed evaluation of several model files across worker processes
"""

import json
import logging
import multiprocessing
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from ..data.schema import FeatureMatrix
from ..exceptions import LoanEnsembleError
from ..models.base import ModelInterface
from ..models.classifiers import MODEL_DISPLAY_NAMES, create_model, model_type_from_path
from .parallel import reduce_over_chunks, thread_count

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfusionCounts:
    """Binary outcome counts; a prediction of 1 is positive, anything else negative."""
    tp: int = 0
    fp: int = 0
    tn: int = 0
    fn: int = 0

    def __add__(self, other: 'ConfusionCounts') -> 'ConfusionCounts':
        return ConfusionCounts(
            self.tp + other.tp, self.fp + other.fp, self.tn + other.tn, self.fn + other.fn
        )

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    @property
    def matrix(self) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        """Rows are actual classes 0, 1; columns are predicted classes 0, 1."""
        return ((self.tn, self.fp), (self.fn, self.tp))


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


@dataclass(frozen=True)
class EvaluationMetrics:
    """Metrics of one evaluation call."""
    model_name: str
    n_samples: int
    accuracy: float
    precision: float
    recall: float
    f1: float
    confusion_matrix: Tuple[Tuple[int, int], Tuple[int, int]]
    evaluation_time: float

    @classmethod
    def from_counts(cls, counts: ConfusionCounts, evaluation_time: float,
                    model_name: str = 'model') -> 'EvaluationMetrics':
        precision = _ratio(counts.tp, counts.tp + counts.fp)
        recall = _ratio(counts.tp, counts.tp + counts.fn)
        return cls(
            model_name=model_name,
            n_samples=counts.total,
            accuracy=_ratio(counts.tp + counts.tn, counts.total),
            precision=precision,
            recall=recall,
            f1=_ratio(2 * precision * recall, precision + recall),
            confusion_matrix=counts.matrix,
            evaluation_time=evaluation_time,
        )

    @property
    def counts(self) -> ConfusionCounts:
        (tn, fp), (fn, tp) = self.confusion_matrix
        return ConfusionCounts(tp=tp, fp=fp, tn=tn, fn=fn)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['confusion_matrix'] = [list(row) for row in self.confusion_matrix]
        return result


def format_report(metrics: EvaluationMetrics) -> str:
    """Plain-text evaluation report."""
    (tn, fp), (fn, tp) = metrics.confusion_matrix
    return "\n".join([
        f"=== Evaluation Results: {metrics.model_name} ===",
        f"Samples: {metrics.n_samples}",
        f"Accuracy: {metrics.accuracy:.4f}",
        f"Precision: {metrics.precision:.4f}",
        f"Recall: {metrics.recall:.4f}",
        f"F1 Score: {metrics.f1:.4f}",
        "Confusion Matrix (rows = actual, columns = predicted):",
        f"              Pred 0    Pred 1",
        f"  Actual 0  {tn:>8}  {fp:>8}",
        f"  Actual 1  {fn:>8}  {tp:>8}",
        f"Evaluation Time: {metrics.evaluation_time:.4f} seconds",
    ])


def format_gathered(results: Sequence[EvaluationMetrics]) -> str:
    """One line per gathered result, in gather order."""
    lines = ["=== Evaluation Metrics ==="]
    for rank, metrics in enumerate(results):
        lines.append(
            f"Model (rank {rank}) {metrics.model_name}: Accuracy={metrics.accuracy:.4f}, "
            f"Precision={metrics.precision:.4f}, Recall={metrics.recall:.4f}, F1={metrics.f1:.4f}"
        )
    return "\n".join(lines)


class ModelEvaluator:
    """
    Evaluates trained ensemble models on labelled data.

    Rows are split into contiguous chunks on the shared thread pool. Each
    chunk predicts with its own clone of the model and returns local counts,
    which are merged under a lock.
    """

    def __init__(self, class_names: Optional[List[str]] = None, n_chunks: Optional[int] = None):
        """
        Initialize the evaluator.

        Args:
            class_names: Display names of classes 0 and 1
            n_chunks: Number of row chunks; defaults to the thread pool size
        """
        self.class_names = class_names or ['Not Approved', 'Approved']
        self.n_chunks = n_chunks

    def count_outcomes(self, model: ModelInterface, data: FeatureMatrix) -> ConfusionCounts:
        X, y = data.X, data.y

        def count_chunk(start: int, stop: int) -> ConfusionCounts:
            local_model = model.clone()
            tp = fp = tn = fn = 0
            for i in range(start, stop):
                predicted = local_model.predict(X[i])
                if predicted == 1:
                    if y[i] == 1:
                        tp += 1
                    else:
                        fp += 1
                elif y[i] == 1:
                    fn += 1
                else:
                    tn += 1
            return ConfusionCounts(tp, fp, tn, fn)

        return reduce_over_chunks(
            data.n_samples, count_chunk, lambda a, b: a + b, ConfusionCounts(), self.n_chunks
        )

    def evaluate(self, model: ModelInterface, data: FeatureMatrix,
                 model_name: Optional[str] = None) -> EvaluationMetrics:
        """
        Evaluate a trained model.

        Args:
            model: Trained or loaded model
            data: Labelled evaluation data
            model_name: Name shown in reports

        Returns:
            Evaluation metrics with TP + FP + TN + FN equal to the sample count
        """
        model_name = model_name or MODEL_DISPLAY_NAMES.get(model.model_type, model.model_type)
        start = time.perf_counter()
        counts = self.count_outcomes(model, data)
        elapsed = time.perf_counter() - start

        metrics = EvaluationMetrics.from_counts(counts, elapsed, model_name)
        logger.info(
            f"{model_name}: accuracy={metrics.accuracy:.4f}, precision={metrics.precision:.4f}, "
            f"recall={metrics.recall:.4f}, f1={metrics.f1:.4f} ({elapsed:.3f}s)"
        )
        return metrics

    def evaluate_model_file(self, model_path: Union[str, Path],
                            data: FeatureMatrix) -> EvaluationMetrics:
        """Load a model file, picking the model type from its name, and evaluate it."""
        model_type = model_type_from_path(model_path)
        model = create_model(model_type)
        model.load(model_path)
        return self.evaluate(model, data, model_name=Path(model_path).name)

    def save_report(self, metrics: Union[EvaluationMetrics, Sequence[EvaluationMetrics]],
                    save_path: Union[str, Path]) -> None:
        """Write one or more plain-text reports to a results file."""
        if isinstance(metrics, EvaluationMetrics):
            metrics = [metrics]
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            f.write("\n\n".join(format_report(m) for m in metrics) + "\n")
        logger.info(f"Evaluation report saved to: {save_path}")

    def save_report_json(self, metrics: Sequence[EvaluationMetrics],
                         save_path: Union[str, Path]) -> None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        report = {
            'evaluation_timestamp': pd.Timestamp.now().isoformat(),
            'class_names': self.class_names,
            'models': [m.to_dict() for m in metrics],
        }
        with open(save_path, 'w') as f:
            json.dump(report, f, indent=2)
        logger.info(f"Evaluation report saved to: {save_path}")

    def plot_confusion_matrix(
        self,
        metrics: EvaluationMetrics,
        normalize: bool = False,
        save_path: Optional[Union[str, Path]] = None,
        figsize: Tuple[int, int] = (6, 5)
    ) -> np.ndarray:
        """
        Draw the confusion matrix as a heatmap.

        Args:
            metrics: Evaluation result to plot
            normalize: Show row-normalized rates instead of counts
            save_path: Path to save the plot (optional)
            figsize: Figure size for the plot

        Returns:
            The plotted matrix
        """
        cm = np.array(metrics.confusion_matrix, dtype=float if normalize else int)
        if normalize:
            row_sums = cm.sum(axis=1, keepdims=True)
            cm = np.divide(cm, row_sums, out=np.zeros_like(cm), where=row_sums > 0)

        fig, ax = plt.subplots(figsize=figsize)
        sns.heatmap(cm, annot=True, fmt='.2f' if normalize else 'd', cmap='Blues',
                    xticklabels=self.class_names, yticklabels=self.class_names, ax=ax)
        ax.set_title(f'Confusion Matrix: {metrics.model_name}')
        ax.set_xlabel('Predicted Label')
        ax.set_ylabel('True Label')

        if save_path:
            save_path = Path(save_path)
            save_path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(save_path, dpi=150, bbox_inches='tight')
            logger.info(f"Confusion matrix saved to: {save_path}")

        plt.close(fig)
        return cm

    def compare_models(self, results: Sequence[EvaluationMetrics],
                       save_path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
        """Tabulate several evaluation results side by side."""
        comparison_df = pd.DataFrame([
            {
                'Model': m.model_name,
                'Accuracy': m.accuracy,
                'Precision': m.precision,
                'Recall': m.recall,
                'F1': m.f1,
                'Evaluation Time (s)': m.evaluation_time,
            }
            for m in results
        ])
        if save_path:
            comparison_df.to_csv(save_path, index=False)
            logger.info(f"Model comparison saved to: {save_path}")
        return comparison_df


@dataclass
class DistributedEvaluation:
    """Gathered outcome of evaluating several model files."""
    metrics: List[EvaluationMetrics] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


def _evaluate_assigned(rank: int, assigned: List[Tuple[int, str]], features: np.ndarray,
                       labels: np.ndarray, num_threads: Optional[int]
                       ) -> List[Tuple[int, str, Optional[EvaluationMetrics], Optional[str]]]:
    data = FeatureMatrix(features, labels)
    evaluator = ModelEvaluator()
    outcomes = []
    with thread_count(num_threads):
        for index, path in assigned:
            logger.info(f"Worker {rank} evaluating {path}")
            try:
                outcomes.append((index, path, evaluator.evaluate_model_file(path, data), None))
            except (LoanEnsembleError, OSError) as e:
                logger.error(f"Worker {rank} could not evaluate {path}: {e}")
                outcomes.append((index, path, None, str(e)))
    return outcomes


def evaluate_distributed(
    model_paths: Sequence[Union[str, Path]],
    data: FeatureMatrix,
    world_size: int = 3,
    use_processes: bool = True,
    start_method: str = 'spawn',
    num_threads: Optional[int] = None
) -> DistributedEvaluation:
    """
    Evaluate model files across worker processes and gather the metrics.

    Paths are dealt round-robin: worker ``r`` evaluates ``paths[r::world_size]``.
    Results come back in the order of ``model_paths``; files that fail to load
    are reported in ``errors`` without affecting the others.
    """
    if world_size < 1:
        raise ValueError(f"world_size must be positive, got {world_size}")

    indexed = [(i, str(path)) for i, path in enumerate(model_paths)]
    assignments = [(rank, indexed[rank::world_size]) for rank in range(world_size)]
    assignments = [(rank, items) for rank, items in assignments if items]
    logger.info(f"Evaluating {len(indexed)} models using {world_size} workers")

    features, labels = np.array(data.X), np.array(data.y)
    if use_processes and assignments:
        context = multiprocessing.get_context(start_method)
        with ProcessPoolExecutor(max_workers=len(assignments), mp_context=context) as pool:
            futures = [
                pool.submit(_evaluate_assigned, rank, items, features, labels, num_threads)
                for rank, items in assignments
            ]
            gathered = [outcome for future in futures for outcome in future.result()]
    else:
        gathered = [
            outcome
            for rank, items in assignments
            for outcome in _evaluate_assigned(rank, items, features, labels, num_threads)
        ]

    result = DistributedEvaluation()
    for _, path, metrics, error in sorted(gathered, key=lambda outcome: outcome[0]):
        if metrics is not None:
            result.metrics.append(metrics)
        else:
            result.errors[path] = error
    return result
