# tests/core/test_data_sources.py

import random
from datetime import datetime, timezone

import pytest

from core.config import SIM_HUMIDITY_BOUNDS, SIM_TEMPERATURE_BOUNDS
from core.data_sources import AdversarialSource, Severity, SimulatedSource, SourceState
from core.errors import SourceError
from core.models import RiskCategory, UNKNOWN_LOCATION
from core.risk_classifier import RiskClassifier

classifier = RiskClassifier()


class FixedClock:
    def __init__(self, now):
        self._now = now

    def now(self):
        return self._now


def test_lifecycle_transitions():
    """UNINITIALIZED -> CONNECTED -> CLOSED, with polling only while connected."""
    source = SimulatedSource("SIM1", "Living Room", rng=random.Random(1))
    assert source.state is SourceState.UNINITIALIZED
    with pytest.raises(SourceError):
        source.poll()

    source.initialize()
    assert source.is_connected()
    source.poll()

    source.close()
    assert source.state is SourceState.CLOSED
    with pytest.raises(SourceError):
        source.poll()


def test_initialize_is_idempotent_while_connected():
    source = SimulatedSource("SIM1", rng=random.Random(1))
    source.initialize()
    base = source.base_temperature

    source.initialize()

    assert source.base_temperature == base


def test_close_is_idempotent_and_closed_source_cannot_reopen():
    source = SimulatedSource("SIM1", rng=random.Random(1))
    source.initialize()

    source.close()
    source.close()

    with pytest.raises(SourceError):
        source.initialize()


def test_empty_source_id_is_rejected():
    with pytest.raises(ValueError):
        SimulatedSource("")


def test_readings_carry_identity_and_clock_time():
    when = datetime(2025, 8, 1, 9, 30, tzinfo=timezone.utc)
    source = SimulatedSource("SIM2", "Kitchen", rng=random.Random(3), clock=FixedClock(when))
    source.initialize()

    reading = source.poll()

    assert reading.source_id == "SIM2"
    assert reading.location == "Kitchen"
    assert reading.timestamp == when


def test_location_defaults_to_unknown():
    assert SimulatedSource("SIM3").location == UNKNOWN_LOCATION


def test_simulated_walk_stays_within_realistic_bounds():
    """Base values are clamped; noise keeps readings close to them."""
    source = SimulatedSource("SIM1", rng=random.Random(42))
    source.initialize()

    for _ in range(500):
        reading = source.poll()
        assert SIM_TEMPERATURE_BOUNDS[0] - 1 <= reading.temperature <= SIM_TEMPERATURE_BOUNDS[1] + 1
        assert SIM_HUMIDITY_BOUNDS[0] - 1 <= reading.humidity <= SIM_HUMIDITY_BOUNDS[1] + 1
        assert SIM_TEMPERATURE_BOUNDS[0] <= source.base_temperature <= SIM_TEMPERATURE_BOUNDS[1]
        assert SIM_HUMIDITY_BOUNDS[0] <= source.base_humidity <= SIM_HUMIDITY_BOUNDS[1]


def test_simulated_start_can_be_pinned():
    source = SimulatedSource("SIM1", base_temperature=28.0, base_humidity=40.0, randomize_on_init=False)

    source.initialize()

    assert source.base_temperature == 28.0
    assert source.base_humidity == 40.0


def test_severe_adversarial_readings_are_always_extreme():
    source = AdversarialSource("DANGER-SIM", "Server Room", severity=Severity.SEVERE, rng=random.Random(7))
    source.initialize()

    for _ in range(200):
        reading = source.poll()
        assert classifier.classify(reading.temperature) is RiskCategory.EXTREME
        assert 10 <= reading.humidity < 30


def test_elevated_adversarial_readings_are_always_high():
    source = AdversarialSource("HOT-SIM", severity="elevated", rng=random.Random(7))
    source.initialize()

    for _ in range(200):
        reading = source.poll()
        assert classifier.classify(reading.temperature) is RiskCategory.HIGH


def test_adversarial_band_upper_bound_is_excluded():
    """Even a generator returning values just under 1.0 stays inside the band."""

    class TopRandom(random.Random):
        def random(self):
            return 0.9999999999

    source = AdversarialSource("DANGER-SIM", severity=Severity.ELEVATED, rng=TopRandom())
    source.initialize()

    assert classifier.classify(source.poll().temperature) is RiskCategory.HIGH
