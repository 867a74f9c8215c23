"""
Unit tests for the training orchestrator.

Tests cover:
- Worker count validation
- Scattering contiguous row blocks to workers
- The worker entry point, including failures
- Summaries and timing output
"""

import logging

import numpy as np
import pytest

from loan_ensemble.data.schema import FeatureMatrix
from loan_ensemble.exceptions import ConfigurationError
from loan_ensemble.training import (
    ForestConfig,
    LinearConfig,
    NetworkConfig,
    TrainingConfig,
    TrainingOrchestrator,
    TrainingSummary,
    WorkerResult,
    WorkerTask,
    train_worker,
)
from loan_ensemble.utils.parallel import get_num_threads, set_num_threads


@pytest.fixture
def small_config(tmp_path):
    return TrainingConfig(
        output_dir=str(tmp_path / "models"),
        use_processes=False,
        num_threads=2,
        log_to_file=False,
        forest=ForestConfig(num_trees=3, max_depth=3, seed=0),
        network=NetworkConfig(hidden_layers=[4], epochs=2, seed=0),
        linear=LinearConfig(max_iterations=3, seed=0),
    )


@pytest.fixture
def ten_rows():
    X = np.arange(20, dtype=np.float32).reshape(10, 2)
    y = np.array([0, 1] * 5)
    return FeatureMatrix(X, y)


class TestWorldSize:

    def test_mismatch_raises_before_training(self, small_config, ten_rows, tmp_path):
        small_config.world_size = 2
        orchestrator = TrainingOrchestrator(small_config)
        with pytest.raises(ConfigurationError, match="exactly 3 worker processes"):
            orchestrator.train(ten_rows)
        assert not list((tmp_path / "models").iterdir())

    def test_custom_assignment(self, small_config):
        small_config.model_assignment = ['logistic_regression']
        small_config.world_size = 1
        TrainingOrchestrator(small_config).check_world_size()


class TestScatter:

    def test_blocks_follow_partition(self, small_config, ten_rows):
        tasks = TrainingOrchestrator(small_config).scatter(ten_rows)

        assert [task.model_type for task in tasks] == ['random_forest', 'mlp', 'logistic_regression']
        assert [(task.start_row, task.stop_row) for task in tasks] == [(0, 4), (4, 7), (7, 10)]
        assert [task.features.shape for task in tasks] == [(4, 2), (3, 2), (3, 2)]
        np.testing.assert_array_equal(tasks[1].features, ten_rows.X[4:7])
        np.testing.assert_array_equal(tasks[2].labels, ten_rows.y[7:10])
        assert all(task.n_samples == 10 and task.n_features == 2 for task in tasks)
        assert tasks[0].model_path.endswith("random_forest_model.bin")
        assert tasks[0].model_params['num_trees'] == 3


class TestTrainWorker:

    def make_task(self, model_path, **overrides):
        X = np.random.default_rng(0).normal(size=(12, 3)).astype(np.float32)
        y = (X[:, 0] > 0).astype(np.int32)
        fields = dict(
            rank=2, model_type='logistic_regression', n_samples=12, n_features=3,
            start_row=0, stop_row=12, features=X, labels=y,
            model_params={'n_features': 3, 'max_iterations': 4, 'seed': 0},
            model_path=str(model_path), num_threads=1,
        )
        fields.update(overrides)
        return WorkerTask(**fields)

    def test_trains_and_saves(self, tmp_path, restore_num_threads):
        path = tmp_path / "logistic_regression_model.bin"
        result = train_worker(self.make_task(path))
        assert result.succeeded
        assert result.n_rows == 12
        assert result.final_loss is not None
        assert path.exists()

    def test_unwritable_output_is_reported(self, tmp_path, restore_num_threads):
        directory = tmp_path / "occupied"
        directory.mkdir()
        result = train_worker(self.make_task(directory))
        assert not result.succeeded
        assert "ModelPersistenceError" in result.error

    def test_shape_mismatch_is_reported(self, tmp_path, restore_num_threads):
        task = self.make_task(tmp_path / "model.bin", stop_row=5)
        result = train_worker(task)
        assert not result.succeeded
        assert "ConfigurationError" in result.error

    def test_caller_pool_size_is_kept(self, tmp_path):
        set_num_threads(4)
        result = train_worker(self.make_task(tmp_path / "model.bin", num_threads=2))
        assert result.succeeded
        assert get_num_threads() == 4


class TestSummary:

    def make_result(self, rank, model_type, elapsed, error=None):
        return WorkerResult(rank, model_type, 0, 1, elapsed, f"{model_type}.bin", error)

    def test_fastest_successful_model(self):
        summary = TrainingSummary([
            self.make_result(0, 'random_forest', 3.0),
            self.make_result(1, 'mlp', 1.0, error="boom"),
            self.make_result(2, 'logistic_regression', 2.0),
        ], n_samples=3, n_features=1)
        assert summary.fastest_model == 'logistic_regression'
        assert [r.model_type for r in summary.failed] == ['mlp']
        assert summary.format_timings() == "Timings (RF, MLP, LR): 3.0s, 1.0s, 2.0s"

    def test_all_failed(self):
        summary = TrainingSummary([self.make_result(0, 'mlp', 1.0, error="x")], 1, 1)
        assert summary.fastest_model is None


class TestInProcessTraining:

    def test_train_saves_every_model(self, small_config, loan_matrix, tmp_path):
        orchestrator = TrainingOrchestrator(small_config)
        summary = orchestrator.train(loan_matrix)

        assert not summary.failed
        assert set(summary.timings) == {'random_forest', 'mlp', 'logistic_regression'}
        models_dir = tmp_path / "models"
        assert (models_dir / "random_forest_model.bin_meta.txt").exists()
        assert (models_dir / "random_forest_model.bin_tree_0.bin").exists()
        assert (models_dir / "mlp_model.bin").exists()
        assert (models_dir / "logistic_regression_model.bin").exists()
        assert orchestrator.get_training_summary()['trained']

    def test_summary_before_training(self, small_config):
        assert TrainingOrchestrator(small_config).get_training_summary() == {'trained': False}

    def test_log_file(self, small_config, loan_matrix, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="loan_ensemble")
        small_config.log_to_file = True
        orchestrator = TrainingOrchestrator(small_config)
        try:
            orchestrator.train(loan_matrix)
        finally:
            orchestrator.close()
        log_text = (tmp_path / "models" / "training.log").read_text()
        assert "Timings (RF, MLP, LR)" in log_text
