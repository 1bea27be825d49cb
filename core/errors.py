from typing import List, Tuple


class MonitorError(Exception):
    """Base class for every error raised by the fire risk monitor."""


class SourceError(MonitorError):
    """A single data source failed to initialize, poll or close."""


class AggregateInitError(SourceError):
    """
    One or more sources failed during bulk initialization.

    Carries every failure as (source_id, error) pairs and reports the first.
    """

    def __init__(self, errors: List[Tuple[str, Exception]]):
        if not errors:
            raise ValueError("AggregateInitError requires at least one error")
        self.errors = list(errors)
        first_id, first_error = self.errors[0]
        super().__init__(
            f"{len(self.errors)} source(s) failed to initialize; first: {first_id}: {first_error}"
        )
        self.__cause__ = first_error

    @property
    def first(self) -> Exception:
        return self.errors[0][1]

    @property
    def failed_source_ids(self) -> List[str]:
        return [source_id for source_id, _ in self.errors]


class StoreError(MonitorError):
    """Persistence backend I/O or protocol failure."""


class PredictorError(MonitorError):
    """Predictor construction, training or inference failure."""


class NotifierError(MonitorError):
    """Alert transport failure."""
