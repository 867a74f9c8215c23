"""
Training Orchestrator for the Loan Approval Ensemble.

This module coordinates one training run: the coordinator loads the dataset,
broadcasts its shape, scatters a contiguous block of rows to each worker
process, and every worker trains exactly one model type on its block and saves
it. Per-worker timings are gathered back in rank order and the fastest model
is reported.
"""

import json
import logging
import multiprocessing
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml

from ..data.loading import load_feature_matrix, partition_rows
from ..data.schema import FeatureMatrix, LABEL_COLUMN_INDEX
from ..exceptions import ConfigurationError, LoanEnsembleError
from ..models.classifiers import MODEL_FILENAMES, MODEL_TYPES, create_model
from ..utils.parallel import DEFAULT_NUM_THREADS, thread_count

logger = logging.getLogger(__name__)

MODEL_ABBREVIATIONS = {
    'random_forest': 'RF',
    'mlp': 'MLP',
    'logistic_regression': 'LR',
}


def _section(parent: Dict[str, Any], name: str, prefix: str = '') -> Dict[str, Any]:
    value = parent.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{prefix}{name}' must be a mapping")
    return value


@dataclass
class ForestConfig:
    """Hyperparameters of the decision forest."""
    num_trees: int = 100
    max_depth: int = 10
    min_samples_leaf: int = 2
    seed: Optional[int] = None

    def __post_init__(self):
        if self.num_trees < 1:
            raise ConfigurationError(f"num_trees must be positive, got {self.num_trees}")
        if self.max_depth < 0 or self.min_samples_leaf < 0:
            raise ConfigurationError("max_depth and min_samples_leaf must be non-negative")


@dataclass
class NetworkConfig:
    """Hyperparameters of the feed-forward network."""
    hidden_layers: List[int] = field(default_factory=lambda: [16, 8])
    output_size: int = 2
    epochs: int = 100
    learning_rate: float = 0.01
    seed: Optional[int] = None

    def __post_init__(self):
        if any(size < 1 for size in self.hidden_layers):
            raise ConfigurationError(f"Invalid hidden layer sizes: {self.hidden_layers}")
        if self.output_size < 2:
            raise ConfigurationError(f"output_size must be at least 2, got {self.output_size}")
        if self.epochs < 1 or self.learning_rate <= 0:
            raise ConfigurationError("epochs and learning_rate must be positive")


@dataclass
class LinearConfig:
    """Hyperparameters of the logistic regression."""
    learning_rate: float = 0.01
    max_iterations: int = 100
    seed: Optional[int] = None

    def __post_init__(self):
        if self.max_iterations < 1 or self.learning_rate <= 0:
            raise ConfigurationError("max_iterations and learning_rate must be positive")


@dataclass
class TrainingConfig:
    """Configuration for a training run."""

    # Data configuration
    data_path: str = "data/processed/loan_data_processed.csv"
    label_column: int = LABEL_COLUMN_INDEX

    # Worker configuration
    world_size: int = 3
    model_assignment: List[str] = field(default_factory=lambda: list(MODEL_TYPES))
    num_threads: int = DEFAULT_NUM_THREADS
    use_processes: bool = True
    start_method: str = "spawn"

    # Model configuration
    forest: Optional[ForestConfig] = None
    network: Optional[NetworkConfig] = None
    linear: Optional[LinearConfig] = None

    # Output configuration
    output_dir: str = "models"
    log_to_file: bool = True

    def __post_init__(self):
        """Validate configuration and set defaults."""
        unknown = [name for name in self.model_assignment if name not in MODEL_TYPES]
        if unknown:
            raise ConfigurationError(f"Unknown model types in assignment: {unknown}")
        if len(set(self.model_assignment)) != len(self.model_assignment):
            raise ConfigurationError(f"Duplicate model types in assignment: {self.model_assignment}")
        if self.num_threads < 1:
            raise ConfigurationError(f"num_threads must be positive, got {self.num_threads}")

        if self.forest is None:
            self.forest = ForestConfig()
        if self.network is None:
            self.network = NetworkConfig()
        if self.linear is None:
            self.linear = LinearConfig()

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> 'TrainingConfig':
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is not valid YAML, a section is not
                a mapping, or a value has the wrong type
        """
        with open(config_path, 'r') as f:
            try:
                config_dict = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {str(e)}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration root in {config_path} must be a mapping")

        data_config = _section(config_dict, 'data')
        training_config = _section(config_dict, 'training')
        model_config = _section(config_dict, 'model')
        parallel_config = _section(config_dict, 'parallel')

        forest = _section(model_config, 'random_forest', 'model.')
        network = _section(model_config, 'mlp', 'model.')
        linear = _section(model_config, 'logistic_regression', 'model.')

        try:
            return cls(
                data_path=data_config.get('processed_data_path', cls.data_path),
                label_column=data_config.get('label_column', LABEL_COLUMN_INDEX),
                world_size=training_config.get('world_size', 3),
                model_assignment=training_config.get('model_assignment', list(MODEL_TYPES)),
                num_threads=parallel_config.get('num_threads', DEFAULT_NUM_THREADS),
                use_processes=training_config.get('use_processes', True),
                start_method=training_config.get('start_method', 'spawn'),
                output_dir=training_config.get('output_dir', cls.output_dir),
                forest=ForestConfig(
                    num_trees=forest.get('num_trees', 100),
                    max_depth=forest.get('max_depth', 10),
                    min_samples_leaf=forest.get('min_samples_leaf', 2),
                    seed=forest.get('seed'),
                ),
                network=NetworkConfig(
                    hidden_layers=network.get('hidden_layers', [16, 8]),
                    output_size=network.get('output_size', 2),
                    epochs=network.get('epochs', 100),
                    learning_rate=network.get('learning_rate', 0.01),
                    seed=network.get('seed'),
                ),
                linear=LinearConfig(
                    learning_rate=linear.get('learning_rate', 0.01),
                    max_iterations=linear.get('max_iterations', 100),
                    seed=linear.get('seed'),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in {config_path}: {str(e)}") from e

    def model_params(self, model_type: str, n_features: int) -> Dict[str, Any]:
        """Constructor arguments for a model type trained on ``n_features`` features."""
        if model_type == 'random_forest':
            return {
                'num_trees': self.forest.num_trees,
                'max_depth': self.forest.max_depth,
                'min_samples_leaf': self.forest.min_samples_leaf,
                'num_features': n_features,
                'seed': self.forest.seed,
            }
        if model_type == 'mlp':
            return {
                'input_size': n_features,
                'hidden_layers': list(self.network.hidden_layers),
                'output_size': self.network.output_size,
                'epochs': self.network.epochs,
                'learning_rate': self.network.learning_rate,
                'seed': self.network.seed,
            }
        return {
            'n_features': n_features,
            'learning_rate': self.linear.learning_rate,
            'max_iterations': self.linear.max_iterations,
            'seed': self.linear.seed,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WorkerTask:
    """Everything a worker receives: the broadcast shape and its row block."""
    rank: int
    model_type: str
    n_samples: int
    n_features: int
    start_row: int
    stop_row: int
    features: np.ndarray
    labels: np.ndarray
    model_params: Dict[str, Any]
    model_path: str
    num_threads: int = DEFAULT_NUM_THREADS


@dataclass
class WorkerResult:
    """What a worker sends back to the coordinator."""
    rank: int
    model_type: str
    start_row: int
    stop_row: int
    elapsed_seconds: float
    model_path: str
    error: Optional[str] = None
    final_loss: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def n_rows(self) -> int:
        return self.stop_row - self.start_row


def train_worker(task: WorkerTask) -> WorkerResult:
    """
    Train and save one model on one row block.

    Runs inside a worker process. Training and I/O failures are returned in
    the result so other workers are unaffected. The shared thread pool is
    sized to ``task.num_threads`` for the duration of the call.
    """
    with thread_count(task.num_threads):
        return _train_block(task)


def _train_block(task: WorkerTask) -> WorkerResult:
    block_rows = task.stop_row - task.start_row
    logger.info(
        f"Worker {task.rank} training {task.model_type} on rows "
        f"[{task.start_row}, {task.stop_row}) of {task.n_samples}"
    )

    start = time.perf_counter()
    error = None
    final_loss = None
    try:
        if task.features.shape != (block_rows, task.n_features):
            raise ConfigurationError(
                f"Worker {task.rank} received a block of shape {task.features.shape}, "
                f"expected ({block_rows}, {task.n_features})"
            )
        model = create_model(task.model_type, **task.model_params)
        history = model.train(task.features, task.labels, block_rows, task.n_features)
        if isinstance(history, list) and history:
            final_loss = float(history[-1])
        model.save(task.model_path)
    except (LoanEnsembleError, OSError, ValueError) as e:
        error = f"{type(e).__name__}: {str(e)}"
        logger.error(f"Worker {task.rank} ({task.model_type}) failed: {error}")
    elapsed = time.perf_counter() - start

    return WorkerResult(
        rank=task.rank,
        model_type=task.model_type,
        start_row=task.start_row,
        stop_row=task.stop_row,
        elapsed_seconds=elapsed,
        model_path=task.model_path,
        error=error,
        final_loss=final_loss,
    )


@dataclass
class TrainingSummary:
    """Gathered worker results of one run."""
    results: List[WorkerResult]
    n_samples: int
    n_features: int

    @property
    def timings(self) -> Dict[str, float]:
        return {result.model_type: result.elapsed_seconds for result in self.results}

    @property
    def fastest_model(self) -> Optional[str]:
        """Model type of the quickest successful worker."""
        succeeded = [result for result in self.results if result.succeeded]
        if not succeeded:
            return None
        return min(succeeded, key=lambda result: result.elapsed_seconds).model_type

    @property
    def failed(self) -> List[WorkerResult]:
        return [result for result in self.results if not result.succeeded]

    def format_timings(self) -> str:
        names = ", ".join(MODEL_ABBREVIATIONS[r.model_type] for r in self.results)
        values = ", ".join(f"{r.elapsed_seconds:.1f}s" for r in self.results)
        return f"Timings ({names}): {values}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'n_samples': self.n_samples,
            'n_features': self.n_features,
            'workers': [asdict(result) for result in self.results],
            'timings': self.timings,
            'fastest_model': self.fastest_model,
        }


class TrainingOrchestrator:
    """
    Trains the three ensemble models in parallel worker processes.

    Each worker process owns one model type and sees only its own contiguous
    block of rows. The worker count must equal the number of assigned model
    types.
    """

    def __init__(self, config: TrainingConfig):
        """Initialize training orchestrator."""
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.last_summary: Optional[TrainingSummary] = None
        self._file_handler: Optional[logging.Handler] = None

        if config.log_to_file:
            self._setup_logging()

    def _setup_logging(self):
        """Write this run's log records to ``training.log`` in the output directory."""
        log_file = self.output_dir / "training.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        self._file_handler = file_handler

        logger.info(f"Training orchestrator initialized, output directory: {self.output_dir}")

    def close(self) -> None:
        """Detach and close the run's log file handler."""
        if self._file_handler is not None:
            logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    def check_world_size(self) -> None:
        """
        Raises:
            ConfigurationError: If the worker count differs from the model count
        """
        expected = len(self.config.model_assignment)
        if self.config.world_size != expected:
            raise ConfigurationError(
                f"This program requires exactly {expected} worker processes "
                f"(one per model type), got {self.config.world_size}"
            )

    def load_data(self) -> FeatureMatrix:
        return load_feature_matrix(self.config.data_path, self.config.label_column)

    def model_path(self, model_type: str) -> Path:
        return self.output_dir / MODEL_FILENAMES[model_type]

    def scatter(self, data: FeatureMatrix) -> List[WorkerTask]:
        """Build one task per worker holding the broadcast shape and its row block."""
        blocks = partition_rows(data.n_samples, self.config.world_size)
        tasks = []
        for rank, (model_type, (start, stop)) in enumerate(zip(self.config.model_assignment, blocks)):
            block = data.slice(start, stop)
            tasks.append(WorkerTask(
                rank=rank,
                model_type=model_type,
                n_samples=data.n_samples,
                n_features=data.n_features,
                start_row=start,
                stop_row=stop,
                features=np.array(block.X),
                labels=np.array(block.y),
                model_params=self.config.model_params(model_type, data.n_features),
                model_path=str(self.model_path(model_type)),
                num_threads=self.config.num_threads,
            ))
        return tasks

    def _run_workers(self, tasks: List[WorkerTask]) -> List[WorkerResult]:
        if not self.config.use_processes:
            return [train_worker(task) for task in tasks]

        context = multiprocessing.get_context(self.config.start_method)
        with ProcessPoolExecutor(max_workers=len(tasks), mp_context=context) as pool:
            futures = [pool.submit(train_worker, task) for task in tasks]
            # Gather in rank order.
            return [future.result() for future in futures]

    def train(self, data: FeatureMatrix) -> TrainingSummary:
        """
        Train every assigned model on its share of ``data``.

        Args:
            data: Full training set held by the coordinator

        Returns:
            Gathered worker results

        Raises:
            ConfigurationError: If the worker count is wrong
        """
        self.check_world_size()
        logger.info(
            f"Broadcasting dataset shape: {data.n_samples} samples, {data.n_features} features"
        )
        tasks = self.scatter(data)
        results = self._run_workers(tasks)

        summary = TrainingSummary(results, data.n_samples, data.n_features)
        for result in summary.failed:
            logger.error(f"{result.model_type} training failed: {result.error}")

        logger.info(summary.format_timings())
        if summary.fastest_model is not None:
            logger.info(f"Fastest model: {summary.fastest_model}")
        for result in results:
            if result.succeeded:
                logger.info(f"Saved {result.model_type} model to {result.model_path}")

        self.last_summary = summary
        return summary

    def run_full_training(self) -> Dict[str, Any]:
        """
        Load the configured dataset, train all models and save the results.

        Returns:
            Training results, also written to ``training_results.json``
        """
        logger.info("Starting full training pipeline...")
        start_time = datetime.now()

        try:
            self.check_world_size()
            data = self.load_data()
            summary = self.train(data)

            results_summary = {
                'start_time': start_time.isoformat(),
                'end_time': datetime.now().isoformat(),
                'training_config': self.config.to_dict(),
                'data_path': str(self.config.data_path),
                **summary.to_dict(),
            }

            results_file = self.output_dir / "training_results.json"
            with open(results_file, 'w') as f:
                json.dump(results_summary, f, indent=2, default=str)

            logger.info(f"Training completed. Results saved to {results_file}")
            return results_summary

        except Exception as e:
            logger.error(f"Training failed with error: {e}")
            raise

    def get_training_summary(self) -> Dict[str, Any]:
        """Get a summary of the last training run."""
        if self.last_summary is None:
            return {'trained': False}
        return {'trained': True, **self.last_summary.to_dict()}
