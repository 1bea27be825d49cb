from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from api.router import router as monitor_router
from core.logging_config import configure_logging
from core.monitor_service import MonitorService, build_default_service


def create_app(service: Optional[MonitorService] = None, autostart: bool = True) -> FastAPI:
    """Build the status API around a monitor service; the default is wired from env settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        monitor = service or build_default_service()
        app.state.monitor = monitor
        if autostart:
            monitor.start()
        try:
            yield
        finally:
            if autostart:
                monitor.stop()

    app = FastAPI(title="Fire Risk Monitor", lifespan=lifespan)
    app.include_router(monitor_router)
    return app


app = create_app()
