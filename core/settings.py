import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from .config import ALERT_COOLDOWN_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS

_APP_NAME_ENV = "APP_NAME"
_READ_INTERVAL_ENV = "SENSOR_READ_INTERVAL_SECONDS"
_PREDICTOR_ENV = "DEFAULT_PREDICTOR"
_SIMULATION_ENV = "SIMULATION_MODE_ENABLED"
_COOLDOWN_ENV = "ALERT_COOLDOWN_SECONDS"
_SERIAL_PORTS_ENV = "SENSOR_SERIAL_PORTS"
_STORE_URL_ENV = "STORE_URL"
_STORE_KEY_ENV = "STORE_API_KEY"
_SMTP_HOST_ENV = "SMTP_HOST"
_SMTP_PORT_ENV = "SMTP_PORT"
_SMTP_USERNAME_ENV = "SMTP_USERNAME"
_SMTP_PASSWORD_ENV = "SMTP_PASSWORD"
_ALERT_SENDER_ENV = "ALERT_SENDER"
_ALERT_RECIPIENT_ENV = "ALERT_RECIPIENT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    poll_interval_seconds: int
    predictor_name: str
    simulation_mode: bool
    alert_cooldown_seconds: int
    serial_ports: Tuple[str, ...]
    store_url: Optional[str]
    store_api_key: Optional[str]
    smtp_host: Optional[str]
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    alert_sender: Optional[str]
    alert_recipient: Optional[str]
    log_level: str

    @property
    def store_configured(self) -> bool:
        return bool(self.store_url and self.store_api_key)

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host and self.alert_sender and self.alert_recipient)


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name=_read_str_env(_APP_NAME_ENV, "Fire Prediction System"),
        poll_interval_seconds=_read_positive_int(_READ_INTERVAL_ENV, DEFAULT_POLL_INTERVAL_SECONDS),
        predictor_name=_read_str_env(_PREDICTOR_ENV, "dummy"),
        simulation_mode=_read_bool(_SIMULATION_ENV, True),
        alert_cooldown_seconds=_read_positive_int(_COOLDOWN_ENV, ALERT_COOLDOWN_SECONDS),
        serial_ports=_read_list(_SERIAL_PORTS_ENV),
        store_url=_read_optional_env(_STORE_URL_ENV),
        store_api_key=_read_optional_env(_STORE_KEY_ENV),
        smtp_host=_read_optional_env(_SMTP_HOST_ENV),
        smtp_port=_read_positive_int(_SMTP_PORT_ENV, 587),
        smtp_username=_read_optional_env(_SMTP_USERNAME_ENV),
        smtp_password=_read_optional_env(_SMTP_PASSWORD_ENV),
        alert_sender=_read_optional_env(_ALERT_SENDER_ENV),
        alert_recipient=_read_optional_env(_ALERT_RECIPIENT_ENV),
        log_level=_read_str_env(_LOG_LEVEL_ENV, "INFO").upper(),
    )
