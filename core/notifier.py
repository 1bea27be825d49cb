"""Alert transports used by the AlertGate."""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

from .errors import NotifierError
from .models import Reading, RiskCategory

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivers one alert. Returns True when delivered; may also raise."""

    def send_alert(self, reading: Reading, category: RiskCategory) -> bool:
        ...


@dataclass(frozen=True)
class EmailConfig:
    """SMTP configuration for alert emails."""

    smtp_host: str
    sender: str
    recipient: str
    smtp_port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout_seconds: float = 15.0


def format_subject(category: RiskCategory) -> str:
    return f"[FIRE ALERT] {category.description} Detected"


def format_body(reading: Reading, category: RiskCategory) -> str:
    return "\n".join(
        [
            f"A {category.description.lower()} has been detected at location: {reading.location}",
            "",
            "Sensor reading details:",
            f"  Sensor ID:   {reading.source_id}",
            f"  Temperature: {reading.temperature:.1f}°C",
            f"  Humidity:    {reading.humidity:.1f}%",
            f"  Timestamp:   {reading.timestamp.isoformat()}",
            "",
            f"Recommended action: {category.recommended_action}",
            "",
            "This is an automated alert from the Fire Prediction System.",
        ]
    )


class EmailNotifier:
    """Plain-text alert emails over SMTP (STARTTLS by default)."""

    def __init__(self, config: EmailConfig):
        if not (config.smtp_host and config.sender and config.recipient):
            raise NotifierError("SMTP host, sender and recipient are required for email alerts")
        self.config = config

    def build_message(self, reading: Reading, category: RiskCategory) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = format_subject(category)
        msg["From"] = self.config.sender
        msg["To"] = self.config.recipient
        msg.set_content(format_body(reading, category))
        return msg

    def send_alert(self, reading: Reading, category: RiskCategory) -> bool:
        cfg = self.config
        logger.info("Preparing fire risk email for %s", category.value, extra={"source_id": reading.source_id, "category": category.value})
        msg = self.build_message(reading, category)

        try:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds) as server:
                server.ehlo()
                if cfg.use_tls:
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                if cfg.username and cfg.password:
                    server.login(cfg.username, cfg.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send alert email: %s", exc, extra={"source_id": reading.source_id})
            return False

        logger.info("Sent fire risk alert email to %s", cfg.recipient, extra={"source_id": reading.source_id})
        return True


class LogNotifier:
    """Fallback transport that records alerts in the log only."""

    def send_alert(self, reading: Reading, category: RiskCategory) -> bool:
        logger.warning(
            "%s | %s",
            format_subject(category),
            category.recommended_action,
            extra={
                "source_id": reading.source_id,
                "location": reading.location,
                "category": category.value,
                "temperature": round(reading.temperature, 1),
                "humidity": round(reading.humidity, 1),
            },
        )
        return True
