"""
Pytest fixtures for the storage billing test suite.

Provides:
- Structured logging configured for every test, plus a log capture fixture
- A deterministic clock
- Record, pricing and tariff factories
"""

import json
import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from io import StringIO

import pytest

from storage_engines.tariff import TariffResolver
from storage_kernel.domain.clock import DeterministicClock
from storage_kernel.domain.records import CropPricing, StorageRecord
from storage_kernel.domain.values import Money
from storage_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture storage_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.process_outflow(...)
            logs = captured_logs()
            assert any(r["message"] == "outflow_processed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("storage_kernel")
    root.addHandler(handler)
    previous_level = root.level
    root.setLevel(logging.DEBUG)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-12-31 12:00 UTC, after every test record's start."""
    return DeterministicClock(datetime(2024, 12, 31, 12, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Domain factories
# =============================================================================


@pytest.fixture
def pricing() -> CropPricing:
    """The standard paddy tariff: 36 for six months, 55 for a year."""
    return CropPricing.of("36", "55")


@pytest.fixture
def tariff_resolver(pricing) -> TariffResolver:
    return TariffResolver({"paddy": pricing, "wheat": CropPricing.of("30", "50")})


def make_record(
    record_id: str = "rec-0001",
    bags_in: int = 50,
    start: date = date(2024, 1, 1),
    crop_id: str = "paddy",
    customer_id: str = "cust-1",
    hamali: str = "0",
    **overrides,
) -> StorageRecord:
    """A freshly inflowed record; ``overrides`` replace any field."""
    record = StorageRecord.inflow(
        record_id=record_id,
        customer_id=customer_id,
        crop_id=crop_id,
        bags_in=bags_in,
        storage_start_date=start,
        hamali_payable=Money.of(hamali, "INR"),
    )
    if overrides:
        record = replace(record, **overrides)
    return record


@pytest.fixture
def record_factory():
    """Factory fixture wrapping ``make_record``."""
    return make_record
