"""
Prediction Interface for the Loan Approval Ensemble.

This module loads whichever trained models are available, normalizes raw loan
applications with explicit column statistics, combines the model votes into
an approval decision and derives a risk score from the model confidences.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..data.schema import ApprovalDecision, ColumnStatistics, LoanApplication
from ..exceptions import ModelPersistenceError, PredictionError
from .base import ModelInterface
from .classifiers import MODEL_DISPLAY_NAMES, MODEL_FILENAMES, MODEL_TYPES, create_model


logger = logging.getLogger(__name__)

# Risk score weighting; the network vote maps to a fixed confidence.
APPROVAL_THRESHOLD = 0.5
BASE_RISK_SCORE = 50.0
RISK_SCALE = 50.0
RISK_MODEL_WEIGHT = 0.5
MLP_POSITIVE_CONFIDENCE = 0.8
MLP_NEGATIVE_CONFIDENCE = 0.2


def decide(votes: Sequence[int]) -> ApprovalDecision:
    """
    Combine binary votes into a decision.

    The approval ratio is the share of approving votes among the models that
    voted. Above one half approves, below one half rejects and exactly one
    half is borderline.

    Raises:
        PredictionError: If no model voted
    """
    if not votes:
        raise PredictionError("No models available to vote")
    ratio = sum(1 for vote in votes if vote == 1) / len(votes)
    if ratio > APPROVAL_THRESHOLD:
        return ApprovalDecision.APPROVED
    if ratio == APPROVAL_THRESHOLD:
        return ApprovalDecision.BORDERLINE
    return ApprovalDecision.NOT_APPROVED


def calculate_risk_score(
    linear_probability: Optional[float] = None,
    mlp_prediction: Optional[int] = None
) -> Optional[float]:
    """
    Risk score out of 100 from the linear probability and the MLP vote.

    Starts at 50; each available model adds 50 times its confidence and
    contributes weight 0.5; the sum is divided by twice the total weight.

    Returns:
        The score, or None when neither input is available
    """
    risk_score = BASE_RISK_SCORE
    weight_sum = 0.0

    if linear_probability is not None:
        risk_score += linear_probability * RISK_SCALE
        weight_sum += RISK_MODEL_WEIGHT

    if mlp_prediction is not None:
        confidence = MLP_POSITIVE_CONFIDENCE if mlp_prediction == 1 else MLP_NEGATIVE_CONFIDENCE
        risk_score += confidence * RISK_SCALE
        weight_sum += RISK_MODEL_WEIGHT

    if weight_sum == 0.0:
        return None
    return risk_score / (weight_sum * 2.0)


@dataclass
class EnsembleDecision:
    """Outcome of an ensemble prediction."""
    decision: ApprovalDecision
    votes: Dict[str, int]
    approval_ratio: float
    risk_score: Optional[float] = None
    unavailable_models: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.decision.value

    @property
    def approved_count(self) -> int:
        return sum(self.votes.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision': self.decision.value,
            'votes': dict(self.votes),
            'approval_ratio': self.approval_ratio,
            'risk_score': self.risk_score,
            'unavailable_models': list(self.unavailable_models),
        }

    def format(self) -> str:
        """Human-readable summary."""
        lines = ["Model predictions:"]
        for model_type, vote in self.votes.items():
            outcome = "Approved" if vote == 1 else "Not Approved"
            lines.append(f"  {MODEL_DISPLAY_NAMES.get(model_type, model_type)}: {outcome}")
        for model_type in self.unavailable_models:
            lines.append(f"  {MODEL_DISPLAY_NAMES.get(model_type, model_type)}: unavailable")
        lines.append(f"Final decision: {self.decision.value}")
        if self.risk_score is not None:
            lines.append(f"Risk Assessment Score: {self.risk_score:.1f}/100")
        else:
            lines.append("Risk Assessment: Not available (models could not be loaded)")
        return "\n".join(lines)


class EnsemblePredictor:
    """
    Majority-vote ensemble over the forest, network and linear classifiers.

    Models that fail to load are skipped; votes and risk weights are taken
    over the models that did load. Only when none loaded does prediction
    fail.
    """

    def __init__(self, models_dir: Optional[Union[str, Path]] = None,
                 statistics: Optional[ColumnStatistics] = None):
        """
        Initialize the predictor.

        Args:
            models_dir: Directory holding the trained model files
            statistics: Normalization statistics for raw applications
        """
        self.statistics = statistics or ColumnStatistics.default()
        self.models: Dict[str, ModelInterface] = {}
        self.load_errors: Dict[str, str] = {}
        if models_dir is not None:
            self.load_models(models_dir)

    def load_models(self, models_dir: Union[str, Path]) -> Dict[str, bool]:
        """
        Try to load every model type from a directory.

        Args:
            models_dir: Directory holding the model files

        Returns:
            Mapping of model type to whether it loaded
        """
        models_dir = Path(models_dir)
        status = {}
        for model_type in MODEL_TYPES:
            path = models_dir / MODEL_FILENAMES[model_type]
            model = create_model(model_type)
            try:
                model.load(path)
            except (ModelPersistenceError, OSError) as e:
                logger.warning(
                    f"Error loading {MODEL_DISPLAY_NAMES[model_type]} model: {str(e)}"
                )
                self.load_errors[model_type] = str(e)
                self.models.pop(model_type, None)
                status[model_type] = False
                continue
            self.models[model_type] = model
            self.load_errors.pop(model_type, None)
            status[model_type] = True

        if not self.models:
            logger.error("No models could be loaded. Make sure the models have been trained.")
        return status

    def add_model(self, model_type: str, model: ModelInterface) -> None:
        """Register an already trained model."""
        if model_type not in MODEL_TYPES:
            raise ValueError(f"Unknown model type: {model_type}")
        self.models[model_type] = model

    @property
    def available_models(self) -> List[str]:
        return [model_type for model_type in MODEL_TYPES if model_type in self.models]

    def normalize(self, application: LoanApplication,
                  statistics: Optional[ColumnStatistics] = None) -> np.ndarray:
        return application.to_features(statistics or self.statistics)

    def collect_votes(self, features) -> Dict[str, int]:
        """Prediction of every available model, in rank order."""
        if not self.models:
            raise PredictionError(
                "No models could be loaded. Make sure you have trained the models first."
            )
        return {
            model_type: int(self.models[model_type].predict(features))
            for model_type in self.available_models
        }

    def risk_score(self, features) -> Optional[float]:
        """Risk score from the linear and network models that are available."""
        linear = self.models.get('logistic_regression')
        network = self.models.get('mlp')
        return calculate_risk_score(
            linear.predict_probability(features) if linear is not None else None,
            network.predict(features) if network is not None else None,
        )

    def predict(self, features) -> EnsembleDecision:
        """
        Ensemble decision for one normalized feature vector.

        Raises:
            PredictionError: If no model is available
        """
        votes = self.collect_votes(features)
        decision = decide(list(votes.values()))
        return EnsembleDecision(
            decision=decision,
            votes=votes,
            approval_ratio=sum(votes.values()) / len(votes),
            risk_score=self.risk_score(features),
            unavailable_models=[t for t in MODEL_TYPES if t not in self.models],
        )

    def predict_application(self, application: LoanApplication) -> EnsembleDecision:
        """Normalize a raw application and predict it."""
        features = self.normalize(application)
        logger.debug(f"Normalized features: {features.tolist()}")
        return self.predict(features)

    def get_model_info(self) -> Dict[str, Any]:
        return {
            'available_models': self.available_models,
            'load_errors': dict(self.load_errors),
            'column_statistics': self.statistics.to_dict(),
        }
