from datetime import datetime
from typing import Protocol

from .models import utc_now


class Clock(Protocol):
    """Source of the current time; injected wherever elapsed time matters."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock implementation returning timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return utc_now()
