import logging
from datetime import timedelta
from functools import lru_cache
from typing import List, Optional

from .alert_gate import AlertGate
from .clock import Clock, SystemClock
from .data_sources import AdversarialSource, DataSource, Severity, SimulatedSource
from .errors import AggregateInitError, PredictorError, StoreError
from .hardware_source import HardwareSource
from .models import EvaluationMetrics, MonitorStatus, Reading, SourceStatus
from .notifier import EmailConfig, EmailNotifier, LogNotifier, Notifier
from .observers import PredictionAnnotator, RecentReadings, StoreWriter
from .orchestrator import SourceOrchestrator
from .predictor import Predictor, create_predictor
from .risk_classifier import RiskClassifier
from .settings import Settings, get_settings
from .store import InMemoryStore, RestStore, Store

logger = logging.getLogger(__name__)


class MonitorService:
    """High-level service wiring sources, observers, prediction and persistence."""

    def __init__(
        self,
        orchestrator: SourceOrchestrator,
        store: Store,
        predictor: Predictor,
        alert_gate: AlertGate,
        recent: Optional[RecentReadings] = None,
        classifier: Optional[RiskClassifier] = None,
        app_name: str = "Fire Prediction System",
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.predictor = predictor
        self.alert_gate = alert_gate
        self.recent = recent or RecentReadings()
        self.classifier = classifier or RiskClassifier()
        self.app_name = app_name
        self._started = False

        # Fan-out order: alerting first, then persistence, then the status buffer
        orchestrator.add_observer(alert_gate.on_reading)
        orchestrator.add_observer(PredictionAnnotator(predictor, StoreWriter(store), self.classifier))
        orchestrator.add_observer(self.recent)

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "MonitorService":
        clock = clock or SystemClock()
        classifier = RiskClassifier()

        orchestrator = SourceOrchestrator(period_seconds=settings.poll_interval_seconds)
        for source in build_sources(settings, clock):
            orchestrator.add_source(source)

        alert_gate = AlertGate(
            notifier=build_notifier(settings),
            cooldown=timedelta(seconds=settings.alert_cooldown_seconds),
            classifier=classifier,
            clock=clock,
        )
        return cls(
            orchestrator=orchestrator,
            store=build_store(settings),
            predictor=create_predictor(settings.predictor_name, classifier),
            alert_gate=alert_gate,
            classifier=classifier,
            app_name=settings.app_name,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def start(self) -> None:
        """Bring up store, sources and predictor, then start scheduled polling."""
        if self._started:
            logger.warning("Monitor service already started")
            return

        logger.info("Starting %s", self.app_name)

        # 1. Persistence
        try:
            self.store.initialize()
        except StoreError as exc:
            logger.error("Store unavailable; readings will not be persisted: %s", exc)

        # 2. Sources (keep polling whichever ones connected)
        try:
            self.orchestrator.initialize_all()
        except AggregateInitError as exc:
            logger.error(
                "Sources failed to initialize: %s",
                ", ".join(exc.failed_source_ids),
                extra={"error_count": len(exc.errors)},
            )

        # 3. Prediction
        try:
            self.predictor.initialize()
        except PredictorError as exc:
            logger.error("Predictor failed to initialize: %s", exc)
        self.bootstrap_model()

        # 4. Schedule
        self.orchestrator.start()
        self._started = True

    def stop(self) -> None:
        logger.info("Stopping %s", self.app_name)
        self.orchestrator.close_all()
        try:
            self.store.close()
        except StoreError as exc:
            logger.error("Error closing store: %s", exc)
        self._started = False
        logger.info("Monitor service stopped")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    def poll_once(self) -> List[Reading]:
        return self.orchestrator.poll_once()

    def bootstrap_model(self) -> None:
        """Load the stored model for the active predictor, or train a new one."""
        if not self.store.is_connected():
            logger.warning("Store not connected; skipping model bootstrap")
            return

        try:
            model_data = self.store.load_model(self.predictor.algorithm_name)
            if model_data:
                logger.info("Loading existing %s model", self.predictor.algorithm_name)
                self.predictor.load_model(model_data)
                return
        except (StoreError, PredictorError) as exc:
            logger.warning("Failed to load model, training a new one: %s", exc)

        try:
            self.train_model()
        except (StoreError, PredictorError) as exc:
            logger.error("Failed to train model: %s", exc)

    def train_model(self) -> Optional[EvaluationMetrics]:
        """Train on stored history and persist the result. Returns None without history."""
        history = self.store.get_all_readings()
        if not history:
            logger.warning("No historical data available for training")
            return None

        logger.info("Training %s with %d readings", self.predictor.name, len(history))
        metrics = self.predictor.train(history)
        self.store.save_model(self.predictor.save_model(), self.predictor.algorithm_name)
        return metrics

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            app_name=self.app_name,
            running=self.orchestrator.is_running,
            poll_interval_seconds=self.orchestrator.period_seconds,
            sources=[
                SourceStatus(
                    source_id=source.source_id,
                    location=source.location,
                    kind=type(source).__name__,
                    state=source.state.value,
                    connected=source.is_connected(),
                )
                for source in self.orchestrator.sources
            ],
            predictor=self.predictor.name,
            predictor_trained=self.predictor.is_trained(),
            store_connected=self.store.is_connected(),
            last_alert_at=self.alert_gate.last_sent_at,
        )


# -------------------------------------------------------------------------
# Builders
# -------------------------------------------------------------------------
def build_sources(settings: Settings, clock: Optional[Clock] = None) -> List[DataSource]:
    if settings.simulation_mode:
        logger.info("Simulation mode: adding simulated sources")
        return [
            SimulatedSource("SIM1", "Living Room", clock=clock),
            SimulatedSource("SIM2", "Kitchen", clock=clock),
            AdversarialSource("DANGER-SIM", "Server Room", severity=Severity.SEVERE, clock=clock),
        ]

    logger.info("Hardware mode: adding %d serial sources", len(settings.serial_ports))
    return [
        HardwareSource(f"ESP{index}", port, location=port, clock=clock)
        for index, port in enumerate(settings.serial_ports, start=1)
    ]


def build_store(settings: Settings) -> Store:
    if settings.store_configured:
        return RestStore(settings.store_url, settings.store_api_key)
    logger.info("No store URL configured; using in-memory store")
    return InMemoryStore()


def build_notifier(settings: Settings) -> Notifier:
    if settings.email_configured:
        return EmailNotifier(
            EmailConfig(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                sender=settings.alert_sender,
                recipient=settings.alert_recipient,
                username=settings.smtp_username,
                password=settings.smtp_password,
            )
        )
    logger.info("SMTP not configured; alerts will be logged only")
    return LogNotifier()


@lru_cache
def build_default_service() -> MonitorService:
    """Factory that wires the service from environment settings."""
    return MonitorService.from_settings(get_settings())
