import logging
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from .clock import Clock, SystemClock
from .config import (
    ADVERSARIAL_HUMIDITY_BAND,
    ELEVATED_TEMPERATURE_BAND,
    SEVERE_TEMPERATURE_BAND,
    SIM_BASE_HUMIDITY,
    SIM_BASE_TEMPERATURE,
    SIM_HUMIDITY_BOUNDS,
    SIM_HUMIDITY_COUPLING,
    SIM_HUMIDITY_PIVOT_TEMPERATURE,
    SIM_HUMIDITY_VOLATILITY,
    SIM_INIT_HUMIDITY_RANGE,
    SIM_INIT_TEMPERATURE_RANGE,
    SIM_TEMPERATURE_BOUNDS,
    SIM_TEMPERATURE_VOLATILITY,
)
from .errors import SourceError
from .models import UNKNOWN_LOCATION, Reading

logger = logging.getLogger(__name__)


class SourceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    CLOSED = "closed"


class DataSource(ABC):
    """
    Pollable producer of Readings.

    Lifecycle: UNINITIALIZED -> CONNECTED -> CLOSED. Subclasses implement the
    _open/_read/_release hooks; the state machine lives here.
    """

    def __init__(self, source_id: str, location: str = UNKNOWN_LOCATION, clock: Optional[Clock] = None):
        if not source_id:
            raise ValueError("source_id must be a non-empty string")
        self._source_id = source_id
        self._location = location or UNKNOWN_LOCATION
        self._clock = clock or SystemClock()
        self._state = SourceState.UNINITIALIZED

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def location(self) -> str:
        return self._location

    @property
    def state(self) -> SourceState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is SourceState.CONNECTED

    def initialize(self) -> None:
        """Open the source; on failure the state stays UNINITIALIZED."""
        if self._state is SourceState.CONNECTED:
            return
        if self._state is SourceState.CLOSED:
            raise SourceError(f"Source {self._source_id} is closed")

        logger.info("Initializing source %s", self._source_id, extra={"source_id": self._source_id})
        try:
            self._open()
        except SourceError:
            raise
        except Exception as exc:
            raise SourceError(f"Failed to initialize source {self._source_id}: {exc}") from exc
        self._state = SourceState.CONNECTED

    def poll(self) -> Reading:
        """Take one reading; only valid while CONNECTED."""
        if self._state is not SourceState.CONNECTED:
            raise SourceError(f"Source {self._source_id} is not connected (state={self._state.value})")
        try:
            return self._read()
        except SourceError:
            raise
        except Exception as exc:
            raise SourceError(f"Failed to read from source {self._source_id}: {exc}") from exc

    def close(self) -> None:
        """Release resources. Calling close() again is a no-op."""
        if self._state is SourceState.CLOSED:
            return
        was_connected = self._state is SourceState.CONNECTED
        self._state = SourceState.CLOSED
        if not was_connected:
            return
        try:
            self._release()
        except Exception as exc:
            raise SourceError(f"Error closing source {self._source_id}: {exc}") from exc
        logger.info("Source closed: %s", self._source_id, extra={"source_id": self._source_id})

    def _make_reading(self, temperature: float, humidity: float) -> Reading:
        return Reading(
            source_id=self._source_id,
            temperature=temperature,
            humidity=humidity,
            location=self._location,
            timestamp=self._clock.now(),
        )

    # -------------------------------------------------------------------------
    # Variant hooks
    # -------------------------------------------------------------------------
    @abstractmethod
    def _open(self) -> None:
        ...

    @abstractmethod
    def _read(self) -> Reading:
        ...

    def _release(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source_id={self._source_id!r}, location={self._location!r}, state={self._state.value})"


class SimulatedSource(DataSource):
    """
    Random-walk temperature/humidity generator for development and demos.

    The base values persist across polls; each poll nudges them by a bounded
    delta, clamps them to a realistic range and adds small independent noise.
    Humidity drifts down while temperature sits above the pivot.
    """

    def __init__(
        self,
        source_id: str,
        location: str = UNKNOWN_LOCATION,
        base_temperature: float = SIM_BASE_TEMPERATURE,
        base_humidity: float = SIM_BASE_HUMIDITY,
        temperature_volatility: float = SIM_TEMPERATURE_VOLATILITY,
        humidity_volatility: float = SIM_HUMIDITY_VOLATILITY,
        randomize_on_init: bool = True,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(source_id, location, clock)
        self.base_temperature = base_temperature
        self.base_humidity = base_humidity
        self.temperature_volatility = temperature_volatility
        self.humidity_volatility = humidity_volatility
        self._randomize_on_init = randomize_on_init
        self._rng = rng or random.Random()

    def _open(self) -> None:
        if self._randomize_on_init:
            # Different starting points per simulated location
            self.base_temperature = self._rng.uniform(*SIM_INIT_TEMPERATURE_RANGE)
            self.base_humidity = self._rng.uniform(*SIM_INIT_HUMIDITY_RANGE)
        logger.info(
            "Simulated source %s initialized with base temp %.1f°C, humidity %.1f%%",
            self.source_id,
            self.base_temperature,
            self.base_humidity,
            extra={"source_id": self.source_id},
        )

    def _read(self) -> Reading:
        temperature = self._simulate_temperature()
        humidity = self._simulate_humidity()
        logger.debug("Simulated reading from %s: temp=%.2f°C, humidity=%.2f%%", self.source_id, temperature, humidity)
        return self._make_reading(temperature, humidity)

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------
    def _simulate_temperature(self) -> float:
        self.base_temperature += (self._rng.random() - 0.5) * self.temperature_volatility
        self.base_temperature = _clamp(self.base_temperature, *SIM_TEMPERATURE_BOUNDS)
        return self.base_temperature + (self._rng.random() - 0.5) * 2 * self.temperature_volatility

    def _simulate_humidity(self) -> float:
        temperature_effect = (SIM_HUMIDITY_PIVOT_TEMPERATURE - self.base_temperature) * SIM_HUMIDITY_COUPLING
        self.base_humidity += (self._rng.random() - 0.5) * self.humidity_volatility + temperature_effect
        self.base_humidity = _clamp(self.base_humidity, *SIM_HUMIDITY_BOUNDS)
        return self.base_humidity + (self._rng.random() - 0.5) * 2 * self.humidity_volatility


class Severity(str, Enum):
    ELEVATED = "elevated"
    SEVERE = "severe"


class AdversarialSource(DataSource):
    """
    Stateless generator pinned to a dangerous temperature band.

    ELEVATED readings always classify as HIGH and SEVERE readings always
    classify as EXTREME, which makes the alerting path deterministic to test.
    """

    def __init__(
        self,
        source_id: str,
        location: str = UNKNOWN_LOCATION,
        severity: Severity = Severity.SEVERE,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(source_id, location, clock)
        self.severity = Severity(severity)
        self._rng = rng or random.Random()

    @property
    def temperature_band(self) -> tuple[float, float]:
        if self.severity is Severity.SEVERE:
            return SEVERE_TEMPERATURE_BAND
        return ELEVATED_TEMPERATURE_BAND

    def _open(self) -> None:
        logger.info(
            "Adversarial source %s initialized (%s band)",
            self.source_id,
            self.severity.value,
            extra={"source_id": self.source_id},
        )

    def _read(self) -> Reading:
        temperature = _uniform_half_open(self._rng, *self.temperature_band)
        humidity = _uniform_half_open(self._rng, *ADVERSARIAL_HUMIDITY_BAND)
        logger.warning(
            "Generating %s risk temperature: %.1f°C",
            self.severity.value,
            temperature,
            extra={"source_id": self.source_id, "temperature": round(temperature, 1)},
        )
        return self._make_reading(temperature, humidity)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _uniform_half_open(rng: random.Random, low: float, high: float) -> float:
    """Draw from [low, high); random.uniform may return the upper bound."""
    return low + rng.random() * (high - low)
