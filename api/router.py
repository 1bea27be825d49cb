from typing import List

from fastapi import APIRouter, Depends, Query

from core.config import RECENT_READINGS_LIMIT
from core.models import ClassifyRequest, MonitorStatus, Reading, RiskAssessment, RiskLevelInfo
from core.monitor_service import MonitorService
from .validation import get_monitor, validate_sources_registered

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/risk-levels", response_model=List[RiskLevelInfo])
def risk_levels(monitor: MonitorService = Depends(get_monitor)):
    return monitor.classifier.describe_levels()


@router.post("/classify", response_model=RiskAssessment)
def classify(request: ClassifyRequest, monitor: MonitorService = Depends(get_monitor)):
    return monitor.classifier.assess(request.temperature)


@router.get("/readings/latest", response_model=List[Reading])
def latest_readings(
    limit: int = Query(10, ge=1, le=RECENT_READINGS_LIMIT),
    monitor: MonitorService = Depends(get_monitor),
):
    return monitor.recent.latest(limit)


@router.post("/poll", response_model=List[Reading])
def poll(monitor: MonitorService = Depends(get_monitor)):
    # Runs one cycle now; observers (alerts, persistence) fire as on a scheduled tick
    validate_sources_registered(monitor)
    return monitor.poll_once()


@router.get("/status", response_model=MonitorStatus)
def status(monitor: MonitorService = Depends(get_monitor)):
    return monitor.status()
