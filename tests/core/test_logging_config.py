# tests/core/test_logging_config.py

import logging

from core.logging_config import ContextualFormatter, configure_logging
from core.models import RiskCategory


def make_record(**extra):
    record = logging.LogRecord("core.orchestrator", logging.INFO, __file__, 1, "Reading from %s", ("SIM1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_known_extra_fields_are_appended():
    formatter = ContextualFormatter(fmt="%(levelname)s | %(message)s")

    line = formatter.format(make_record(source_id="SIM1", category="EXTREME"))

    assert line == "INFO | Reading from SIM1 | source_id=SIM1 category=EXTREME"


def test_unknown_and_missing_fields_are_ignored():
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["source_id"])

    assert formatter.format(make_record(unrelated="x")) == "Reading from SIM1"


def test_values_are_rendered_compactly():
    """Floats get two decimals and enum members show their value."""
    formatter = ContextualFormatter(fmt="%(message)s")

    line = formatter.format(make_record(temperature=55.123, category=RiskCategory.EXTREME, cycle_ms=12))

    assert line == "Reading from SIM1 | category=EXTREME temperature=55.12 cycle_ms=12"


def test_configure_logging_quiets_http_client_loggers():
    configure_logging("DEBUG", force=True)
    try:
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
        assert logging.getLogger().level == logging.DEBUG
    finally:
        configure_logging("INFO", force=True)
