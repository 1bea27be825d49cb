"""Persistence backends for readings and serialized models."""

import base64
import binascii
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from .errors import StoreError
from .models import Reading, RiskCategory, to_utc, utc_now

logger = logging.getLogger(__name__)

READINGS_TABLE = "sensor_readings"
MODELS_TABLE = "ml_models"


class Store(ABC):
    """Remote store for readings and model artifacts. Every failure raises StoreError."""

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def save_reading(self, reading: Reading) -> bool:
        ...

    @abstractmethod
    def get_all_readings(self) -> List[Reading]:
        ...

    @abstractmethod
    def get_readings(self, start: Optional[datetime], end: Optional[datetime]) -> List[Reading]:
        ...

    @abstractmethod
    def get_readings_for_source(self, source_id: str) -> List[Reading]:
        ...

    @abstractmethod
    def save_model(self, model_data: bytes, name: str) -> bool:
        ...

    @abstractmethod
    def load_model(self, name: str) -> bytes:
        """Return the newest model stored under `name`, or b"" if there is none."""

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class InMemoryStore(Store):
    """Thread-safe process-local store used in simulation mode and tests."""

    def __init__(self) -> None:
        self._readings: List[Reading] = []
        self._models: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._connected = False

    def initialize(self) -> None:
        self._connected = True
        logger.info("In-memory store ready")

    def save_reading(self, reading: Reading) -> bool:
        self._require_connected()
        with self._lock:
            self._readings.append(reading)
        return True

    def get_all_readings(self) -> List[Reading]:
        return self.get_readings(None, None)

    def get_readings(self, start: Optional[datetime], end: Optional[datetime]) -> List[Reading]:
        self._require_connected()
        lower = to_utc(start) if start is not None else None
        upper = to_utc(end) if end is not None else None
        with self._lock:
            selected = [
                r for r in self._readings
                if (lower is None or r.timestamp >= lower) and (upper is None or r.timestamp <= upper)
            ]
        return sorted(selected, key=lambda r: r.timestamp)

    def get_readings_for_source(self, source_id: str) -> List[Reading]:
        self._require_connected()
        with self._lock:
            selected = [r for r in self._readings if r.source_id == source_id]
        return sorted(selected, key=lambda r: r.timestamp, reverse=True)

    def save_model(self, model_data: bytes, name: str) -> bool:
        self._require_connected()
        with self._lock:
            self._models[name] = bytes(model_data)
        return True

    def load_model(self, name: str) -> bytes:
        self._require_connected()
        with self._lock:
            return self._models.get(name, b"")

    def is_connected(self) -> bool:
        return self._connected

    def close(self) -> None:
        self._connected = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise StoreError("Store not connected")


class RestStore(Store):
    """
    PostgREST-style HTTP backend (e.g. Supabase).

    Readings live in `sensor_readings`, models in `ml_models` with the bytes
    base64-encoded. Timestamps travel as ISO-8601 UTC strings.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url or not api_key:
            raise StoreError("Store URL and API key are required")
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._connected = False

    def initialize(self) -> None:
        logger.info("Connecting to REST store at %s", self.base_url)
        self._client = httpx.Client(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            self._request("GET", f"/{READINGS_TABLE}", params={"limit": "1"})
        except StoreError:
            self._connected = False
            raise
        self._connected = True
        logger.info("Connected to REST store")

    def save_reading(self, reading: Reading) -> bool:
        self._require_connected()
        self._request(
            "POST",
            f"/{READINGS_TABLE}",
            json=reading_to_record(reading),
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Saved reading from %s", reading.source_id, extra={"source_id": reading.source_id})
        return True

    def get_all_readings(self) -> List[Reading]:
        return self.get_readings(None, None)

    def get_readings(self, start: Optional[datetime], end: Optional[datetime]) -> List[Reading]:
        self._require_connected()
        params: List[Tuple[str, str]] = []
        if start is not None:
            params.append(("timestamp", f"gte.{format_timestamp(start)}"))
        if end is not None:
            params.append(("timestamp", f"lte.{format_timestamp(end)}"))
        params.append(("order", "timestamp.asc"))
        return self._parse_readings(self._request("GET", f"/{READINGS_TABLE}", params=params))

    def get_readings_for_source(self, source_id: str) -> List[Reading]:
        self._require_connected()
        params = [("sensor_id", f"eq.{source_id}"), ("order", "timestamp.desc")]
        return self._parse_readings(self._request("GET", f"/{READINGS_TABLE}", params=params))

    def save_model(self, model_data: bytes, name: str) -> bool:
        self._require_connected()
        existing = self._request("GET", f"/{MODELS_TABLE}", params=[("name", f"eq.{name}"), ("select", "name")])
        prefer = "return=minimal"
        if isinstance(existing, list) and existing:
            prefer += ", resolution=merge-duplicates"

        self._request(
            "POST",
            f"/{MODELS_TABLE}",
            json={
                "name": name,
                "model_data": base64.b64encode(model_data).decode("ascii"),
                "created_at": format_timestamp(utc_now()),
            },
            headers={"Prefer": prefer},
        )
        logger.info("Saved model %s (%d bytes)", name, len(model_data))
        return True

    def load_model(self, name: str) -> bytes:
        self._require_connected()
        rows = self._request(
            "GET",
            f"/{MODELS_TABLE}",
            params=[("name", f"eq.{name}"), ("order", "created_at.desc"), ("limit", "1")],
        )
        if not isinstance(rows, list) or not rows:
            logger.info("No stored model named %s", name)
            return b""
        try:
            return base64.b64decode(rows[0]["model_data"], validate=True)
        except (KeyError, TypeError, binascii.Error) as exc:
            raise StoreError(f"Stored model {name!r} is not valid base64: {exc}") from exc

    def is_connected(self) -> bool:
        return self._connected

    def close(self) -> None:
        logger.info("Closing REST store connection")
        client, self._client = self._client, None
        self._connected = False
        if client is not None:
            try:
                client.close()
            except httpx.HTTPError as exc:
                raise StoreError(f"Error closing store connection: {exc}") from exc

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------
    def _require_connected(self) -> None:
        if not self._connected or self._client is None:
            raise StoreError("Store not connected")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._client
        if client is None:
            raise StoreError("Store not connected")
        try:
            response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            raise StoreError(f"{method} {path} returned {response.status_code}: {response.text}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"{method} {path} returned invalid JSON") from exc

    @staticmethod
    def _parse_readings(payload: Any) -> List[Reading]:
        if not isinstance(payload, list):
            raise StoreError("Expected a JSON array of readings")
        return [record_to_reading(row) for row in payload]


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat().replace("+00:00", "Z")


def reading_to_record(reading: Reading) -> Dict[str, Any]:
    """Row shape written to the readings table."""
    record: Dict[str, Any] = {
        "sensor_id": reading.source_id,
        "temperature": reading.temperature,
        "humidity": reading.humidity,
        "location": reading.location,
        "timestamp": format_timestamp(reading.timestamp),
    }
    if reading.risk_category is not None:
        record["risk_level"] = reading.risk_category.value
        record["risk_probability"] = reading.risk_probability
    return record


def record_to_reading(row: Dict[str, Any]) -> Reading:
    try:
        risk_level = row.get("risk_level")
        return Reading(
            source_id=row["sensor_id"],
            temperature=row["temperature"],
            humidity=row["humidity"],
            location=row.get("location"),
            timestamp=row["timestamp"],
            risk_category=RiskCategory(risk_level) if risk_level else None,
            risk_probability=row.get("risk_probability") if risk_level else None,
        )
    except (KeyError, ValueError, TypeError, ValidationError) as exc:
        raise StoreError(f"Malformed reading row: {exc}") from exc
