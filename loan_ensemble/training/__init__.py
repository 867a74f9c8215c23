"""Training pipeline for the Loan Approval Ensemble."""

from .training_orchestrator import (
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

__all__ = [
    'ForestConfig',
    'LinearConfig',
    'NetworkConfig',
    'TrainingConfig',
    'TrainingOrchestrator',
    'TrainingSummary',
    'WorkerResult',
    'WorkerTask',
    'train_worker',
]
