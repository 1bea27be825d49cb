# tests/core/test_orchestrator.py

import threading
import time

import pytest

from core.data_sources import DataSource
from core.errors import AggregateInitError, SourceError
from core.models import Reading
from core.orchestrator import SourceOrchestrator


class StubSource(DataSource):
    """Source with scripted behavior for orchestrator tests."""

    def __init__(self, source_id, temperature=22.0, fail_init=False, fail_poll=False):
        super().__init__(source_id, location=f"Room {source_id}")
        self.temperature = temperature
        self.fail_init = fail_init
        self.fail_poll = fail_poll
        self.polls = 0
        self.released = False

    def _open(self):
        if self.fail_init:
            raise SourceError(f"{self.source_id} unavailable")

    def _read(self):
        self.polls += 1
        if self.fail_poll:
            raise RuntimeError("sensor glitch")
        return self._make_reading(self.temperature, 50.0)

    def _release(self):
        self.released = True


def connected(*sources):
    orchestrator = SourceOrchestrator(period_seconds=60)
    for source in sources:
        source.initialize()
        orchestrator.add_source(source)
    return orchestrator


def test_poll_once_skips_failing_source():
    """N sources with one always failing yields N-1 readings and no exception."""
    sources = [StubSource("A"), StubSource("B", fail_poll=True), StubSource("C")]
    orchestrator = connected(*sources)

    readings = orchestrator.poll_once()

    assert [r.source_id for r in readings] == ["A", "C"]
    assert sources[1].polls == 1


def test_poll_once_skips_disconnected_sources():
    ready = StubSource("READY")
    ready.initialize()
    never_opened = StubSource("NEW")
    orchestrator = SourceOrchestrator()
    orchestrator.add_source(ready)
    orchestrator.add_source(never_opened)

    readings = orchestrator.poll_once()

    assert [r.source_id for r in readings] == ["READY"]
    assert never_opened.polls == 0


def test_failing_observer_does_not_block_others():
    """A throwing observer is isolated; later observers and the caller still get the reading."""
    orchestrator = connected(StubSource("A"), StubSource("B"))
    received = []

    def broken(reading):
        raise ValueError("observer bug")

    orchestrator.add_observer(broken)
    orchestrator.add_observer(received.append)

    readings = orchestrator.poll_once()

    assert len(readings) == 2
    assert [r.source_id for r in received] == ["A", "B"]


def test_observers_are_called_in_registration_order():
    orchestrator = connected(StubSource("A"))
    calls = []
    orchestrator.add_observer(lambda r: calls.append("first"))
    orchestrator.add_observer(lambda r: calls.append("second"))
    orchestrator.add_observer(lambda r: calls.append("third"))

    orchestrator.poll_once()

    assert calls == ["first", "second", "third"]


def test_every_observer_sees_the_same_reading():
    orchestrator = connected(StubSource("A"))
    seen = []
    orchestrator.add_observer(seen.append)
    orchestrator.add_observer(seen.append)

    [reading] = orchestrator.poll_once()

    assert seen[0] is reading and seen[1] is reading


def test_remove_observer_and_source():
    source = StubSource("A")
    orchestrator = connected(source)
    calls = []
    orchestrator.add_observer(calls.append)

    assert orchestrator.remove_observer(calls.append) is True
    assert orchestrator.remove_observer(calls.append) is False
    assert orchestrator.remove_source(source) is True
    assert orchestrator.remove_source(source) is False
    assert orchestrator.poll_once() == []
    assert calls == []


def test_initialize_all_raises_once_for_multiple_failures():
    """2 failing sources out of 5 produce exactly one aggregated error."""
    sources = [
        StubSource("A"),
        StubSource("B", fail_init=True),
        StubSource("C"),
        StubSource("D", fail_init=True),
        StubSource("E"),
    ]
    orchestrator = SourceOrchestrator()
    for source in sources:
        orchestrator.add_source(source)

    with pytest.raises(AggregateInitError) as excinfo:
        orchestrator.initialize_all()

    error = excinfo.value
    assert error.failed_source_ids == ["B", "D"]
    assert "B unavailable" in str(error.first)
    assert error.__cause__ is error.first
    assert [s.source_id for s in sources if s.is_connected()] == ["A", "C", "E"]


def test_polling_continues_with_sources_that_connected():
    orchestrator = SourceOrchestrator()
    orchestrator.add_source(StubSource("OK"))
    orchestrator.add_source(StubSource("BAD", fail_init=True))

    with pytest.raises(AggregateInitError):
        orchestrator.initialize_all()

    assert [r.source_id for r in orchestrator.poll_once()] == ["OK"]


def test_initialize_all_succeeds_silently():
    orchestrator = SourceOrchestrator()
    orchestrator.add_source(StubSource("A"))

    orchestrator.initialize_all()

    assert orchestrator.sources[0].is_connected()


def test_close_all_closes_and_forgets_sources():
    sources = [StubSource("A"), StubSource("B")]
    orchestrator = connected(*sources)

    orchestrator.close_all()

    assert all(s.released for s in sources)
    assert orchestrator.sources == ()


def test_sources_snapshot_is_immutable_copy():
    orchestrator = connected(StubSource("A"))
    snapshot = orchestrator.sources

    orchestrator.add_source(StubSource("B"))

    assert len(snapshot) == 1
    assert len(orchestrator.sources) == 2


def test_start_runs_first_cycle_immediately_and_stop_halts():
    orchestrator = connected(StubSource("A"))
    polled = threading.Event()
    orchestrator.add_observer(lambda r: polled.set())

    orchestrator.start(period_seconds=30)
    try:
        assert polled.wait(timeout=2.0)
        assert orchestrator.is_running
    finally:
        orchestrator.stop(timeout=2.0)

    assert not orchestrator.is_running


def test_start_twice_keeps_single_schedule():
    orchestrator = connected(StubSource("A"))

    orchestrator.start(period_seconds=30)
    first = orchestrator._scheduler
    orchestrator.start(period_seconds=30)
    try:
        assert orchestrator._scheduler is first
    finally:
        orchestrator.stop(timeout=2.0)


def test_stop_when_not_running_is_harmless():
    orchestrator = SourceOrchestrator()

    orchestrator.stop()

    assert not orchestrator.is_running


def test_schedule_repeats_at_fixed_rate():
    source = StubSource("A")
    orchestrator = connected(source)

    orchestrator.start(period_seconds=0.05)
    time.sleep(0.3)
    orchestrator.stop(timeout=2.0)

    assert source.polls >= 3


def test_set_period_updates_interval():
    orchestrator = SourceOrchestrator(period_seconds=60)

    orchestrator.set_period(5)

    assert orchestrator.period_seconds == 5


def test_non_positive_period_is_rejected():
    with pytest.raises(ValueError):
        SourceOrchestrator(period_seconds=0)
    with pytest.raises(ValueError):
        SourceOrchestrator().set_period(-1)


def test_manual_poll_returns_reading_objects():
    orchestrator = connected(StubSource("A", temperature=33.0))

    [reading] = orchestrator.poll_once()

    assert isinstance(reading, Reading)
    assert reading.temperature == 33.0
    assert reading.location == "Room A"


class FlakyConnectivitySource(StubSource):
    """Variant whose connectivity check itself fails."""

    def is_connected(self):
        raise OSError("port vanished")


class WrongTypeSource(StubSource):
    def poll(self):
        return {"temperature": 20.0}


class BlockingSource(StubSource):
    """Poll blocks until released, so a cycle can be held in flight."""

    def __init__(self, source_id):
        super().__init__(source_id)
        self.entered = threading.Event()
        self.release = threading.Event()

    def _read(self):
        self.entered.set()
        self.release.wait(timeout=5.0)
        return super()._read()


def test_source_failing_connectivity_check_is_skipped():
    bad = FlakyConnectivitySource("BAD")
    good = StubSource("GOOD")
    good.initialize()
    orchestrator = SourceOrchestrator()
    orchestrator.add_source(bad)
    orchestrator.add_source(good)

    readings = orchestrator.poll_once()

    assert [r.source_id for r in readings] == ["GOOD"]


def test_source_returning_non_reading_is_skipped():
    orchestrator = connected(WrongTypeSource("ODD"), StubSource("GOOD"))
    received = []
    orchestrator.add_observer(received.append)

    readings = orchestrator.poll_once()

    assert [r.source_id for r in readings] == ["GOOD"]
    assert [r.source_id for r in received] == ["GOOD"]


def test_stop_returns_within_timeout_when_cycle_hangs(caplog):
    """A cycle outliving the stop timeout is abandoned, not waited for."""
    blocker = BlockingSource("SLOW")
    orchestrator = connected(blocker)
    orchestrator.start(period_seconds=30)
    assert blocker.entered.wait(timeout=2.0)

    try:
        began = time.monotonic()
        with caplog.at_level("ERROR"):
            orchestrator.stop(timeout=0.2)
        elapsed = time.monotonic() - began

        assert elapsed < 1.5
        assert not orchestrator.is_running
        assert "abandoning scheduler thread" in caplog.text
    finally:
        blocker.release.set()


def test_schedule_survives_a_failing_cycle():
    orchestrator = SourceOrchestrator()
    calls = []
    second_tick = threading.Event()

    def flaky_poll_once():
        calls.append(time.monotonic())
        if len(calls) == 1:
            raise RuntimeError("cycle blew up")
        second_tick.set()
        return []

    orchestrator.poll_once = flaky_poll_once
    orchestrator.start(period_seconds=0.05)
    try:
        assert second_tick.wait(timeout=2.0)
        assert orchestrator.is_running
    finally:
        orchestrator.stop(timeout=2.0)


def test_registry_changes_during_cycle_apply_to_next_cycle():
    """Mutations from another thread neither disturb the in-flight cycle nor get lost."""
    blocker = BlockingSource("SLOW")
    leaving = StubSource("LEAVING")
    joining = StubSource("JOINING")
    joining.initialize()
    orchestrator = connected(blocker, leaving)
    results = []

    cycle = threading.Thread(target=lambda: results.append(orchestrator.poll_once()))
    cycle.start()
    assert blocker.entered.wait(timeout=2.0)

    mutator = threading.Thread(
        target=lambda: (orchestrator.add_source(joining), orchestrator.remove_source(leaving))
    )
    mutator.start()
    mutator.join(timeout=2.0)
    assert not mutator.is_alive()

    blocker.release.set()
    cycle.join(timeout=2.0)

    assert [r.source_id for r in results[0]] == ["SLOW", "LEAVING"]
    assert [s.source_id for s in orchestrator.sources] == ["SLOW", "JOINING"]
    assert [r.source_id for r in orchestrator.poll_once()] == ["SLOW", "JOINING"]


def test_concurrent_starts_spawn_one_scheduler():
    orchestrator = connected(StubSource("A"))
    barrier = threading.Barrier(8)
    existing = set(threading.enumerate())

    def racer():
        barrier.wait()
        orchestrator.start(period_seconds=30)

    racers = [threading.Thread(target=racer) for _ in range(8)]
    for thread in racers:
        thread.start()
    for thread in racers:
        thread.join(timeout=2.0)

    try:
        schedulers = [
            t for t in threading.enumerate()
            if t not in existing and t.name == "source-orchestrator"
        ]
        assert len(schedulers) == 1
    finally:
        orchestrator.stop(timeout=2.0)
