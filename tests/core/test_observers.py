# tests/core/test_observers.py

from core.errors import PredictorError
from core.models import Reading, RiskCategory
from core.observers import PredictionAnnotator, RecentReadings, StoreWriter
from core.predictor import RulePredictor
from core.store import InMemoryStore


class BrokenPredictor(RulePredictor):
    def predict_probability(self, reading):
        raise PredictorError("model exploded")


def make_reading(temperature=45.0, source_id="S1"):
    return Reading(source_id=source_id, temperature=temperature, humidity=20.0)


def test_store_writer_persists_readings():
    store = InMemoryStore()
    store.initialize()
    writer = StoreWriter(store)

    writer(make_reading())

    assert len(store.get_all_readings()) == 1


def test_annotator_attaches_prediction_to_copy():
    """Downstream gets an annotated copy; the shared reading is untouched."""
    predictor = RulePredictor()
    predictor.initialize()
    received = []
    annotator = PredictionAnnotator(predictor, received.append)
    reading = make_reading(temperature=70.0)

    annotator(reading)

    [annotated] = received
    assert annotated is not reading
    assert annotated.risk_category is RiskCategory.HIGH
    assert annotated.risk_probability == predictor.predict_probability(reading)
    assert reading.risk_category is None


def test_annotator_falls_back_to_classifier_when_untrained():
    received = []
    annotator = PredictionAnnotator(RulePredictor(), received.append)

    annotator(make_reading(temperature=55.0))

    assert received[0].risk_category is RiskCategory.EXTREME
    assert received[0].risk_probability is None


def test_annotator_falls_back_when_prediction_fails():
    predictor = BrokenPredictor()
    predictor.initialize()
    received = []
    annotator = PredictionAnnotator(predictor, received.append)

    annotator(make_reading(temperature=35.0))

    assert received[0].risk_category is RiskCategory.MODERATE


def test_recent_readings_newest_first_and_bounded():
    recent = RecentReadings(maxlen=3)
    for i in range(5):
        recent(make_reading(source_id=f"S{i}"))

    assert len(recent) == 3
    assert [r.source_id for r in recent.latest()] == ["S4", "S3", "S2"]
    assert [r.source_id for r in recent.latest(2)] == ["S4", "S3"]


def test_recent_readings_clear():
    recent = RecentReadings()
    recent(make_reading())

    recent.clear()

    assert recent.latest() == []
