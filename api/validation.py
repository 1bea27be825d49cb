from fastapi import HTTPException, Request

from core.monitor_service import MonitorService


def get_monitor(request: Request) -> MonitorService:
    """Resolve the service bound to the app; 503 until the app has one."""
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor service is not available.")
    return monitor


def validate_sources_registered(monitor: MonitorService) -> None:
    """Guardrail for manual polling: there must be something to poll."""
    if not monitor.orchestrator.sources:
        raise HTTPException(
            status_code=503,
            detail="No data sources are registered. Configure simulation mode or serial ports."
        )
