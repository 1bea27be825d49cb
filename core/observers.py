"""Reading observers wired into the orchestrator besides the AlertGate."""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from .config import RECENT_READINGS_LIMIT
from .errors import PredictorError
from .models import Reading
from .predictor import Predictor
from .risk_classifier import RiskClassifier
from .store import Store

logger = logging.getLogger(__name__)


class StoreWriter:
    """Persists every reading it receives. StoreError propagates to the caller."""

    def __init__(self, store: Store):
        self.store = store

    def __call__(self, reading: Reading) -> None:
        self.store.save_reading(reading)


class PredictionAnnotator:
    """
    Attaches a risk category and probability to a copy of each reading and
    hands the copy downstream. The shared reading is never modified.

    Without a trained predictor the copy carries the classifier's category only.
    """

    def __init__(
        self,
        predictor: Optional[Predictor],
        downstream: Callable[[Reading], None],
        classifier: Optional[RiskClassifier] = None,
    ):
        self.predictor = predictor
        self.downstream = downstream
        self.classifier = classifier or RiskClassifier()

    def __call__(self, reading: Reading) -> None:
        self.downstream(self.annotate(reading))

    def annotate(self, reading: Reading) -> Reading:
        predictor = self.predictor
        if predictor is not None and predictor.is_trained():
            try:
                probability = predictor.predict_probability(reading)
                category = predictor.predict_category(reading)
                return reading.annotated(category, probability)
            except PredictorError as exc:
                logger.error(
                    "Prediction failed for %s: %s",
                    reading.source_id,
                    exc,
                    extra={"source_id": reading.source_id},
                )
        return reading.annotated(self.classifier.classify(reading.temperature))


class RecentReadings:
    """Bounded, thread-safe buffer of the latest readings, newest first."""

    def __init__(self, maxlen: int = RECENT_READINGS_LIMIT):
        self._items: Deque[Reading] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, reading: Reading) -> None:
        with self._lock:
            self._items.appendleft(reading)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def latest(self, limit: Optional[int] = None) -> List[Reading]:
        with self._lock:
            items = list(self._items)
        return items if limit is None else items[:limit]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
