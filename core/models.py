from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import (
    EXTREME_RISK_RANGE,
    HIGH_RISK_RANGE,
    LOW_RISK_RANGE,
    MODERATE_RISK_RANGE,
)

UNKNOWN_LOCATION = "Unknown"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RiskBand(BaseModel):
    """Inclusive temperature range and guidance attached to a risk category."""

    model_config = ConfigDict(frozen=True)

    min_temperature: float
    max_temperature: float
    description: str
    recommended_action: str
    requires_immediate_action: bool

    def contains(self, value: float) -> bool:
        return self.min_temperature <= value <= self.max_temperature


class RiskCategory(str, Enum):
    """Fire risk levels, declared from least to most severe."""

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    EXTREME = "EXTREME"

    @property
    def band(self) -> RiskBand:
        return RISK_BANDS[self]

    @property
    def severity(self) -> int:
        return list(RiskCategory).index(self)

    @property
    def description(self) -> str:
        return self.band.description

    @property
    def recommended_action(self) -> str:
        return self.band.recommended_action

    @property
    def requires_immediate_action(self) -> bool:
        return self.band.requires_immediate_action

    def __str__(self) -> str:
        return self.band.description


RISK_BANDS: Dict[RiskCategory, RiskBand] = {
    RiskCategory.LOW: RiskBand(
        min_temperature=LOW_RISK_RANGE[0],
        max_temperature=LOW_RISK_RANGE[1],
        description="Low fire risk",
        recommended_action="No action required",
        requires_immediate_action=False,
    ),
    RiskCategory.MODERATE: RiskBand(
        min_temperature=MODERATE_RISK_RANGE[0],
        max_temperature=MODERATE_RISK_RANGE[1],
        description="Moderate fire risk",
        recommended_action="Maintain awareness",
        requires_immediate_action=False,
    ),
    RiskCategory.HIGH: RiskBand(
        min_temperature=HIGH_RISK_RANGE[0],
        max_temperature=HIGH_RISK_RANGE[1],
        description="High fire risk",
        recommended_action="Implement fire prevention measures",
        requires_immediate_action=True,
    ),
    RiskCategory.EXTREME: RiskBand(
        min_temperature=EXTREME_RISK_RANGE[0],
        max_temperature=EXTREME_RISK_RANGE[1],
        description="Extreme fire risk",
        recommended_action="Evacuate immediately",
        requires_immediate_action=True,
    ),
}


class Reading(BaseModel):
    """One timestamped temperature/humidity measurement from a data source."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., min_length=1)
    temperature: float = Field(..., allow_inf_nan=False)
    humidity: float = Field(..., allow_inf_nan=False)
    location: str = UNKNOWN_LOCATION
    timestamp: datetime = Field(default_factory=utc_now)
    risk_category: Optional[RiskCategory] = None
    risk_probability: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("location", mode="before")
    @classmethod
    def default_location(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_LOCATION
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def default_timestamp(cls, v: Any) -> Any:
        return utc_now() if v is None else v

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_utc(v)

    def annotated(
        self,
        category: Optional[RiskCategory],
        probability: Optional[float] = None,
    ) -> "Reading":
        """Return a validated copy carrying the given risk annotations."""
        data = self.model_dump()
        data["risk_category"] = category
        data["risk_probability"] = probability
        return Reading.model_validate(data)


class RiskAssessment(BaseModel):
    """Classification outcome for a single measurement."""

    measurement: float
    category: RiskCategory
    description: str
    recommended_action: str
    requires_immediate_action: bool


class RiskLevelInfo(BaseModel):
    category: RiskCategory
    min_temperature: float
    max_temperature: float
    description: str
    recommended_action: str
    requires_immediate_action: bool


class SourceStatus(BaseModel):
    source_id: str
    location: str
    kind: str
    state: str
    connected: bool


class MonitorStatus(BaseModel):
    app_name: str
    running: bool
    poll_interval_seconds: float
    sources: List[SourceStatus]
    predictor: str
    predictor_trained: bool
    store_connected: bool
    last_alert_at: Optional[datetime] = None


class EvaluationMetrics(BaseModel):
    """Model quality figures returned by Predictor.train()."""

    accuracy: float = Field(..., ge=0.0, le=1.0)
    precision: Dict[str, float]
    recall: Dict[str, float]
    f1_score: Dict[str, float]
    confusion_matrix: List[List[int]]
    train_size: int = Field(..., ge=0)
    test_size: int = Field(..., ge=0)


class ClassifyRequest(BaseModel):
    temperature: float = Field(..., allow_inf_nan=False)
