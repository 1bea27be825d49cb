import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

from .config import DEFAULT_POLL_INTERVAL_SECONDS, STOP_TIMEOUT_SECONDS
from .data_sources import DataSource
from .errors import AggregateInitError, SourceError
from .models import Reading

logger = logging.getLogger(__name__)

Observer = Callable[[Reading], None]


class SourceOrchestrator:
    """
    Polls a fleet of data sources on a fixed schedule and fans each reading
    out to registered observers.

    Failures are isolated at two levels: a source that fails to poll is
    skipped for the cycle, and an observer that raises is skipped for that
    reading. Neither stops the rest of the cycle or the schedule.
    """

    def __init__(self, period_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS):
        _validate_period(period_seconds)
        self._period = period_seconds
        self._sources: List[DataSource] = []
        self._observers: List[Observer] = []
        self._lock = threading.RLock()

        # Scheduler state
        self._scheduler: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._schedule_lock = threading.Lock()
        logger.info("Source orchestrator created with %ss poll interval", period_seconds)

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------
    @property
    def sources(self) -> Tuple[DataSource, ...]:
        with self._lock:
            return tuple(self._sources)

    @property
    def observers(self) -> Tuple[Observer, ...]:
        with self._lock:
            return tuple(self._observers)

    @property
    def period_seconds(self) -> float:
        return self._period

    def add_source(self, source: DataSource) -> None:
        logger.info("Adding source: %s (%s)", source.source_id, source.location, extra={"source_id": source.source_id})
        with self._lock:
            self._sources.append(source)

    def remove_source(self, source: DataSource) -> bool:
        with self._lock:
            try:
                self._sources.remove(source)
            except ValueError:
                return False
        logger.info("Removed source: %s (%s)", source.source_id, source.location, extra={"source_id": source.source_id})
        return True

    def add_observer(self, observer: Observer) -> None:
        """Register a reading consumer; registration order is invocation order."""
        with self._lock:
            self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> bool:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                return False
        return True

    # -------------------------------------------------------------------------
    # Lifecycle of sources
    # -------------------------------------------------------------------------
    def initialize_all(self) -> None:
        """
        Initialize every source, collecting failures instead of stopping at the
        first. Raises a single AggregateInitError if any source failed.
        """
        sources = self.sources
        logger.info("Initializing %d sources", len(sources))

        errors: List[Tuple[str, Exception]] = []
        for source in sources:
            try:
                source.initialize()
            except Exception as exc:
                logger.error(
                    "Failed to initialize source %s: %s",
                    source.source_id,
                    exc,
                    extra={"source_id": source.source_id},
                )
                errors.append((source.source_id, exc))

        if errors:
            if len(errors) > 1:
                logger.warning("%d sources failed to initialize; reporting the first", len(errors), extra={"error_count": len(errors)})
            raise AggregateInitError(errors)

    def close_all(self) -> None:
        """Stop the schedule, close every source and forget them."""
        logger.info("Closing source orchestrator")
        if self.is_running:
            self.stop()

        for source in self.sources:
            try:
                source.close()
            except Exception as exc:
                logger.error(
                    "Error closing source %s: %s",
                    source.source_id,
                    exc,
                    extra={"source_id": source.source_id},
                )

        with self._lock:
            self._sources.clear()

    # -------------------------------------------------------------------------
    # Poll cycle
    # -------------------------------------------------------------------------
    def poll_once(self) -> List[Reading]:
        """
        Run one cycle: poll each connected source in registration order and
        deliver each reading to every observer. Never raises for source or
        observer failures; failed sources are simply absent from the result.
        """
        with self._cycle_lock:
            return self._run_cycle()

    def _run_cycle(self) -> List[Reading]:
        start = time.perf_counter()
        sources = self.sources
        readings: List[Reading] = []
        error_count = 0

        for source in sources:
            try:
                reading = self._poll_source(source)
            except Exception as exc:
                error_count += 1
                logger.error(
                    "Error reading from source %s: %s",
                    source.source_id,
                    exc,
                    exc_info=not isinstance(exc, SourceError),
                    extra={"source_id": source.source_id},
                )
                continue
            if reading is None:
                continue

            readings.append(reading)
            self._notify_observers(reading)

        logger.debug(
            "Poll cycle finished",
            extra={
                "reading_count": len(readings),
                "error_count": error_count,
                "cycle_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return readings

    @staticmethod
    def _poll_source(source: DataSource) -> Optional[Reading]:
        """One source's share of a cycle. Returns None for a disconnected source."""
        if not source.is_connected():
            logger.warning("Source not connected: %s", source.source_id, extra={"source_id": source.source_id})
            return None

        reading = source.poll()
        if not isinstance(reading, Reading):
            raise SourceError(f"Source returned {type(reading).__name__} instead of a Reading")

        logger.info(
            "Reading from %s at %s: %.1f°C, %.1f%%",
            reading.source_id,
            reading.location,
            reading.temperature,
            reading.humidity,
            extra={"source_id": reading.source_id},
        )
        return reading

    def _notify_observers(self, reading: Reading) -> None:
        # Snapshot per reading so observers registered mid-cycle see later readings
        for observer in self.observers:
            try:
                observer(reading)
            except Exception as exc:
                logger.error(
                    "Error in reading observer %s: %s",
                    _observer_name(observer),
                    exc,
                    exc_info=True,
                    extra={"source_id": reading.source_id, "observer": _observer_name(observer)},
                )

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        scheduler = self._scheduler
        return scheduler is not None and scheduler.is_alive() and not self._stop_event.is_set()

    def start(self, period_seconds: Optional[float] = None) -> None:
        """
        Start fixed-rate polling on a single background thread. The first
        cycle runs immediately. Calling start() while running is a no-op.
        """
        with self._schedule_lock:
            if self.is_running:
                logger.warning("Scheduled polling already running")
                return

            if period_seconds is not None:
                _validate_period(period_seconds)
                self._period = period_seconds

            logger.info("Starting scheduled polling every %s seconds", self._period)
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._scheduler = threading.Thread(
                target=self._schedule_loop,
                args=(stop_event,),
                name="source-orchestrator",
                daemon=True,
            )
            self._scheduler.start()

    def stop(self, timeout: float = STOP_TIMEOUT_SECONDS) -> None:
        """
        Cancel future cycles and wait up to `timeout` seconds for an in-flight
        cycle to finish. If it does not, the scheduler thread is abandoned; it
        exits as soon as its current cycle returns.
        """
        with self._schedule_lock:
            scheduler, self._scheduler = self._scheduler, None
            if scheduler is None or not scheduler.is_alive():
                logger.warning("Scheduled polling not running")
                return
            logger.info("Stopping scheduled polling")
            self._stop_event.set()

        if scheduler is not threading.current_thread():
            scheduler.join(timeout=timeout)
            if scheduler.is_alive():
                logger.error("Poll cycle did not finish within %.1fs; abandoning scheduler thread", timeout)

    def set_period(self, period_seconds: float) -> None:
        """Change the poll interval, restarting the schedule if it is running."""
        _validate_period(period_seconds)
        self._period = period_seconds
        logger.info("Updated poll interval to %s seconds", period_seconds)
        if self.is_running:
            self.stop()
            self.start()

    def _schedule_loop(self, stop_event: threading.Event) -> None:
        period = self._period
        next_run = time.monotonic()
        while not stop_event.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                # The schedule must survive any single bad cycle
                logger.error("Error in scheduled poll cycle: %s", exc, exc_info=True)

            next_run += period
            now = time.monotonic()
            if next_run < now:
                # Skip missed deadlines instead of running cycles back to back
                missed = int((now - next_run) // period) + 1
                next_run += missed * period
            stop_event.wait(next_run - now)


def _validate_period(period_seconds: float) -> None:
    if period_seconds <= 0:
        raise ValueError(f"Poll period must be positive, got {period_seconds}")


def _observer_name(observer: Observer) -> str:
    name = getattr(observer, "__qualname__", None)
    if name is None:
        name = type(observer).__name__
    return name