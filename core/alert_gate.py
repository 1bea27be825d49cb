import logging
from datetime import datetime, timedelta
from typing import Optional

from .clock import Clock, SystemClock
from .config import ALERT_COOLDOWN_SECONDS
from .notifier import Notifier
from .risk_classifier import RiskClassifier
from .models import Reading

logger = logging.getLogger(__name__)


class AlertGate:
    """
    Reading observer that sends an alert when a reading needs immediate action,
    at most once per cooldown window.

    The cooldown is measured from the last successful send only: a failed send
    leaves the gate open so the next qualifying reading retries straight away.
    Not thread-safe; the orchestrator calls observers sequentially.
    """

    def __init__(
        self,
        notifier: Notifier,
        cooldown: timedelta = timedelta(seconds=ALERT_COOLDOWN_SECONDS),
        classifier: Optional[RiskClassifier] = None,
        clock: Optional[Clock] = None,
    ):
        if cooldown < timedelta(0):
            raise ValueError("cooldown must not be negative")
        self.notifier = notifier
        self.cooldown = cooldown
        self.classifier = classifier or RiskClassifier()
        self.clock = clock or SystemClock()
        self._last_sent_at: Optional[datetime] = None
        logger.info("Alert gate initialized with %ss cooldown", int(cooldown.total_seconds()))

    @property
    def last_sent_at(self) -> Optional[datetime]:
        return self._last_sent_at

    def __call__(self, reading: Reading) -> None:
        self.on_reading(reading)

    def on_reading(self, reading: Reading) -> None:
        category = self.classifier.classify(reading.temperature)
        if not self.classifier.requires_immediate_action(category):
            return

        if not self._cooldown_elapsed():
            logger.info(
                "%s detected but alert is in cooldown; skipping",
                category.description,
                extra={"source_id": reading.source_id, "category": category.value},
            )
            return

        logger.warning(
            "ALERT: %s from %s: %.1f°C, %.1f%%",
            category.description,
            reading.source_id,
            reading.temperature,
            reading.humidity,
            extra={"source_id": reading.source_id, "category": category.value},
        )

        try:
            delivered = self.notifier.send_alert(reading, category)
        except Exception as exc:
            logger.error(
                "Alert notifier raised for %s: %s",
                category.value,
                exc,
                exc_info=True,
                extra={"source_id": reading.source_id, "category": category.value},
            )
            return

        if not delivered:
            logger.error(
                "Failed to deliver alert for %s",
                category.value,
                extra={"source_id": reading.source_id, "category": category.value},
            )
            return

        self._last_sent_at = self.clock.now()
        logger.info("Alert delivered for %s", category.value, extra={"source_id": reading.source_id, "category": category.value})

    def reset_notification_state(self) -> None:
        """Forget the last send so the next qualifying reading alerts immediately."""
        self._last_sent_at = None

    def _cooldown_elapsed(self) -> bool:
        if self._last_sent_at is None:
            return True
        return self.clock.now() - self._last_sent_at > self.cooldown
