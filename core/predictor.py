"""
Fire risk predictors, selectable by strategy name.

Two strategies are available:
- "dummy": fixed rule weighting temperature and dryness, no learning.
- "logistic": multinomial logistic regression over (temperature, humidity),
  fitted with L-BFGS and labelled by the RiskClassifier.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, ValidationError
from scipy.optimize import minimize
from scipy.special import logsumexp, softmax

from .config import (
    LOGISTIC_L2_PENALTY,
    LOGISTIC_MAX_ITER,
    LOGISTIC_MIN_SAMPLES,
    LOGISTIC_TEST_FRACTION,
    PROBABILITY_CUTOFFS,
    RULE_DRYNESS_WEIGHT,
    RULE_TEMPERATURE_WEIGHT,
)
from .errors import PredictorError
from .models import EvaluationMetrics, Reading, RiskCategory
from .risk_classifier import RiskClassifier

logger = logging.getLogger(__name__)

CATEGORIES: List[RiskCategory] = list(RiskCategory)


class Predictor(ABC):
    """Trainable estimator of fire risk for a single reading."""

    name: str = "Predictor"
    algorithm_name: str = "unknown"

    def __init__(self, classifier: Optional[RiskClassifier] = None):
        self.classifier = classifier or RiskClassifier()
        self._metrics: Optional[EvaluationMetrics] = None

    @property
    def metrics(self) -> Optional[EvaluationMetrics]:
        return self._metrics

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def train(self, readings: Sequence[Reading]) -> EvaluationMetrics:
        ...

    @abstractmethod
    def predict_probability(self, reading: Reading) -> float:
        """Probability in [0, 1] that the reading calls for immediate action."""

    @abstractmethod
    def predict_category(self, reading: Reading) -> RiskCategory:
        ...

    @abstractmethod
    def load_model(self, model_data: bytes) -> None:
        ...

    @abstractmethod
    def save_model(self) -> bytes:
        ...

    @abstractmethod
    def is_trained(self) -> bool:
        ...

    def _labels(self, readings: Sequence[Reading]) -> np.ndarray:
        return np.array(
            [CATEGORIES.index(self.classifier.classify(r.temperature)) for r in readings],
            dtype=int,
        )


# ============================================================================
# Rule-based predictor
# ============================================================================

class _RuleModelState(BaseModel):
    metrics: Optional[EvaluationMetrics] = None


class RulePredictor(Predictor):
    """Threshold rule: hotter and drier means riskier. Ready as soon as it is initialized."""

    name = "Dummy Predictor"
    algorithm_name = "rule-based-thresholds"

    def __init__(self, classifier: Optional[RiskClassifier] = None):
        super().__init__(classifier)
        self._trained = False

    def initialize(self) -> None:
        logger.info("Initializing rule-based predictor")
        self._trained = True

    def train(self, readings: Sequence[Reading]) -> EvaluationMetrics:
        """Nothing to fit; scores the rule against classifier labels."""
        logger.info("Evaluating rule-based predictor on %d readings", len(readings))
        if not readings:
            raise PredictorError("No training data provided")

        truth = self._labels(readings)
        predicted = np.array([CATEGORIES.index(self._category_for(r)) for r in readings], dtype=int)
        self._metrics = evaluate(truth, predicted, train_size=len(readings))
        self._trained = True
        return self._metrics

    def predict_probability(self, reading: Reading) -> float:
        if not self._trained:
            raise PredictorError("Model not trained")
        return self._probability_for(reading)

    def predict_category(self, reading: Reading) -> RiskCategory:
        if not self._trained:
            raise PredictorError("Model not trained")
        return self._category_for(reading)

    def load_model(self, model_data: bytes) -> None:
        if not model_data:
            raise PredictorError("Model data is empty")
        try:
            state = _RuleModelState.model_validate_json(model_data)
        except ValidationError as exc:
            raise PredictorError(f"Failed to load model: {exc}") from exc
        self._metrics = state.metrics
        self._trained = True

    def save_model(self) -> bytes:
        if not self._trained:
            raise PredictorError("Model not trained")
        return _RuleModelState(metrics=self._metrics).model_dump_json().encode("utf-8")

    def is_trained(self) -> bool:
        return self._trained

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------
    @staticmethod
    def _probability_for(reading: Reading) -> float:
        temperature_component = float(np.clip(reading.temperature / 100.0, 0.0, 1.0))
        dryness_component = float(np.clip((100.0 - reading.humidity) / 100.0, 0.0, 1.0))
        probability = temperature_component * RULE_TEMPERATURE_WEIGHT + dryness_component * RULE_DRYNESS_WEIGHT
        return float(np.clip(probability, 0.0, 1.0))

    @classmethod
    def _category_for(cls, reading: Reading) -> RiskCategory:
        probability = cls._probability_for(reading)
        index = int(np.searchsorted(PROBABILITY_CUTOFFS, probability, side="right"))
        return CATEGORIES[index]


# ============================================================================
# Logistic regression predictor
# ============================================================================

class _LogisticModelState(BaseModel):
    weights: List[List[float]]
    mean: List[float]
    scale: List[float]
    metrics: Optional[EvaluationMetrics] = None


class LogisticPredictor(Predictor):
    """
    Multinomial logistic regression over standardized (temperature, humidity).

    Labels come from the RiskClassifier, so the model learns a smooth,
    humidity-aware version of the temperature bands. 20% of the readings are
    held out (deterministic shuffle) to compute the evaluation metrics.
    """

    name = "Logistic Predictor"
    algorithm_name = "multinomial-logistic-regression"

    def __init__(
        self,
        classifier: Optional[RiskClassifier] = None,
        l2_penalty: float = LOGISTIC_L2_PENALTY,
        seed: int = 0,
    ):
        super().__init__(classifier)
        self.l2_penalty = l2_penalty
        self.seed = seed
        self._weights: Optional[np.ndarray] = None
        self._mean: Optional[np.ndarray] = None
        self._scale: Optional[np.ndarray] = None

    def initialize(self) -> None:
        # The model itself is created by train() or load_model()
        logger.info("Initializing logistic predictor")

    def train(self, readings: Sequence[Reading]) -> EvaluationMetrics:
        logger.info("Training logistic predictor with %d readings", len(readings))
        if len(readings) < LOGISTIC_MIN_SAMPLES:
            raise PredictorError(
                f"At least {LOGISTIC_MIN_SAMPLES} readings are required, got {len(readings)}"
            )

        features = self._features(readings)
        labels = self._labels(readings)
        if len(np.unique(labels)) < 2:
            raise PredictorError("Training data must span at least two risk categories")

        # 1. Deterministic train/test split
        train_idx, test_idx = self._split(len(readings))

        # 2. Standardize on the training portion
        mean = features[train_idx].mean(axis=0)
        scale = features[train_idx].std(axis=0)
        scale[scale < 1e-9] = 1.0

        # 3. Fit
        x_train = self._design_matrix((features[train_idx] - mean) / scale)
        try:
            weights = self._fit(x_train, labels[train_idx])
        except (ValueError, FloatingPointError) as exc:
            raise PredictorError(f"Failed to train model: {exc}") from exc

        self._weights, self._mean, self._scale = weights, mean, scale

        # 4. Evaluate on the held-out portion
        predicted = self._predict_proba_matrix(features[test_idx]).argmax(axis=1)
        self._metrics = evaluate(labels[test_idx], predicted, train_size=len(train_idx))
        logger.info("Logistic predictor trained; accuracy %.3f", self._metrics.accuracy)
        return self._metrics

    def predict_probability(self, reading: Reading) -> float:
        probabilities = self._probabilities(reading)
        urgent = [i for i, c in enumerate(CATEGORIES) if self.classifier.requires_immediate_action(c)]
        return float(np.clip(probabilities[urgent].sum(), 0.0, 1.0))

    def predict_category(self, reading: Reading) -> RiskCategory:
        return CATEGORIES[int(self._probabilities(reading).argmax())]

    def load_model(self, model_data: bytes) -> None:
        if not model_data:
            raise PredictorError("Model data is empty")
        try:
            state = _LogisticModelState.model_validate_json(model_data)
        except ValidationError as exc:
            raise PredictorError(f"Failed to load model: {exc}") from exc

        weights = np.array(state.weights, dtype=float)
        if weights.shape != (3, len(CATEGORIES)) or len(state.mean) != 2 or len(state.scale) != 2:
            raise PredictorError(f"Model has unexpected shape {weights.shape}")

        self._weights = weights
        self._mean = np.array(state.mean, dtype=float)
        self._scale = np.array(state.scale, dtype=float)
        self._metrics = state.metrics

    def save_model(self) -> bytes:
        if not self.is_trained():
            raise PredictorError("Model not trained")
        state = _LogisticModelState(
            weights=self._weights.tolist(),
            mean=self._mean.tolist(),
            scale=self._scale.tolist(),
            metrics=self._metrics,
        )
        return state.model_dump_json().encode("utf-8")

    def is_trained(self) -> bool:
        return self._weights is not None

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------
    @staticmethod
    def _features(readings: Sequence[Reading]) -> np.ndarray:
        return np.array([[r.temperature, r.humidity] for r in readings], dtype=float)

    @staticmethod
    def _design_matrix(standardized: np.ndarray) -> np.ndarray:
        """Prepend the bias column."""
        return np.hstack([np.ones((standardized.shape[0], 1)), standardized])

    def _split(self, n: int) -> tuple[np.ndarray, np.ndarray]:
        order = np.random.default_rng(self.seed).permutation(n)
        test_size = max(1, int(round(n * LOGISTIC_TEST_FRACTION)))
        return order[test_size:], order[:test_size]

    def _fit(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        n_samples, n_features = x.shape
        n_classes = len(CATEGORIES)
        one_hot = np.eye(n_classes)[y]
        penalty_mask = np.ones((n_features, n_classes))
        penalty_mask[0, :] = 0.0  # bias is not regularized

        def loss_and_grad(flat: np.ndarray) -> tuple[float, np.ndarray]:
            w = flat.reshape(n_features, n_classes)
            logits = x @ w
            log_norm = logsumexp(logits, axis=1, keepdims=True)
            nll = -np.sum(one_hot * (logits - log_norm)) / n_samples
            reg = 0.5 * self.l2_penalty * np.sum((w * penalty_mask) ** 2)
            probs = np.exp(logits - log_norm)
            grad = x.T @ (probs - one_hot) / n_samples + self.l2_penalty * w * penalty_mask
            return nll + reg, grad.ravel()

        result = minimize(
            loss_and_grad,
            np.zeros(n_features * n_classes),
            jac=True,
            method="L-BFGS-B",
            options={"maxiter": LOGISTIC_MAX_ITER},
        )
        if not np.all(np.isfinite(result.x)):
            raise ValueError("optimizer produced non-finite weights")
        if not result.success:
            logger.warning("Logistic fit did not fully converge: %s", result.message)
        return result.x.reshape(n_features, n_classes)

    def _predict_proba_matrix(self, features: np.ndarray) -> np.ndarray:
        x = self._design_matrix((features - self._mean) / self._scale)
        return softmax(x @ self._weights, axis=1)

    def _probabilities(self, reading: Reading) -> np.ndarray:
        if not self.is_trained():
            raise PredictorError("Model not trained")
        return self._predict_proba_matrix(self._features([reading]))[0]


# ============================================================================
# Evaluation
# ============================================================================

def evaluate(truth: np.ndarray, predicted: np.ndarray, train_size: int) -> EvaluationMetrics:
    """Accuracy, per-category precision/recall/F1 and a confusion matrix (rows = truth)."""
    n_classes = len(CATEGORIES)
    matrix = np.zeros((n_classes, n_classes), dtype=int)
    np.add.at(matrix, (truth, predicted), 1)

    true_positive = np.diag(matrix).astype(float)
    predicted_totals = matrix.sum(axis=0).astype(float)
    actual_totals = matrix.sum(axis=1).astype(float)

    with np.errstate(divide="ignore", invalid="ignore"):
        precision = np.where(predicted_totals > 0, true_positive / predicted_totals, 0.0)
        recall = np.where(actual_totals > 0, true_positive / actual_totals, 0.0)
        f1 = np.where(precision + recall > 0, 2 * precision * recall / (precision + recall), 0.0)

    # Macro averages over categories that occur in truth or predictions
    present = (predicted_totals + actual_totals) > 0
    total = matrix.sum()

    def per_category(values: np.ndarray) -> dict:
        scores = {c.value: round(float(v), 4) for c, v in zip(CATEGORIES, values)}
        scores["overall"] = round(float(values[present].mean()), 4) if present.any() else 0.0
        return scores

    return EvaluationMetrics(
        accuracy=round(float(true_positive.sum() / total), 4) if total else 0.0,
        precision=per_category(precision),
        recall=per_category(recall),
        f1_score=per_category(f1),
        confusion_matrix=matrix.tolist(),
        train_size=train_size,
        test_size=int(total),
    )


# ============================================================================
# Factory
# ============================================================================

class PredictorType(str, Enum):
    DUMMY = "dummy"
    LOGISTIC = "logistic"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "PredictorType":
        normalized = (name or "").strip().lower()
        if not normalized:
            logger.warning("No predictor type specified, defaulting to dummy predictor")
            return cls.DUMMY
        try:
            return cls(normalized)
        except ValueError:
            raise PredictorError(f"Unsupported predictor type: {name}") from None


def create_predictor(name: Optional[str], classifier: Optional[RiskClassifier] = None) -> Predictor:
    predictor_type = PredictorType.from_name(name)
    logger.info("Creating predictor of type: %s", predictor_type.value)
    if predictor_type is PredictorType.LOGISTIC:
        return LogisticPredictor(classifier)
    return RulePredictor(classifier)


def create_and_initialize(name: Optional[str], classifier: Optional[RiskClassifier] = None) -> Predictor:
    predictor = create_predictor(name, classifier)
    try:
        predictor.initialize()
    except PredictorError:
        raise
    except Exception as exc:
        raise PredictorError(f"Failed to initialize predictor: {exc}") from exc
    return predictor
