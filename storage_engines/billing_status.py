"""
Module: storage_engines.billing_status
Responsibility:
    Classify an open storage record into its current billing phase (the
    6-month term, the 1-year rollover, or a yearly renewal), report the
    next billing date and applicable per-bag rate, and raise the operator
    alert when a top-up or renewal is due.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Never reads the clock: ``as_of`` is always supplied by the caller.

Invariants enforced:
    - Closed records are always "Withdrawn" with no next date and no rate.
    - Phase boundaries are the calendar anniversaries computed with
      ``add_months`` (month-end clamped), the same calendar the rent
      engine prices against.

Usage:
    from storage_engines.billing_status import get_record_status

    status = get_record_status(record, date(2024, 9, 1), pricing)
    status.status   # "Active - 1-Year Rollover"
    status.alert    # "1-Year Rollover top-up is due."
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from storage_engines.rent import ONE_YEAR_TIER_MONTHS, SIX_MONTH_TIER_MONTHS, add_months
from storage_kernel.domain.records import INITIAL_BILLING_CYCLE, CropPricing, StorageRecord
from storage_kernel.domain.values import Money

STATUS_WITHDRAWN = "Withdrawn"
STATUS_SIX_MONTH_TERM = "Active - 6-Month Term"
STATUS_ONE_YEAR_ROLLOVER = "Active - 1-Year Rollover"

ROLLOVER_ALERT = "1-Year Rollover top-up is due."


@dataclass(frozen=True, slots=True)
class RecordStatus:
    """Billing phase of a record on a given date."""

    status: str
    next_billing_date: date | None
    current_rate: Money
    alert: str | None = None

    @property
    def has_alert(self) -> bool:
        return self.alert is not None


def calendar_months_between(start: date, as_of: date) -> int:
    """Difference in calendar months, ignoring the day of month."""
    return (as_of.year - start.year) * 12 + (as_of.month - start.month)


def renewal_label(renewal_year: int) -> str:
    return f"In 1-Year Renewal (Y{renewal_year})"


def renewal_alert(renewal_year: int) -> str:
    return f"Renewal for Year {renewal_year + 1} is due."


def get_record_status(
    record: StorageRecord,
    as_of: date,
    pricing: CropPricing,
    initial_billing_cycle: str = INITIAL_BILLING_CYCLE,
) -> RecordStatus:
    """
    Billing phase of ``record`` on ``as_of``.

    - closed: "Withdrawn"
    - before the 6-month anniversary: 6-month term at ``price_6m``
    - before the 12-month anniversary: 1-year rollover at ``price_1y``;
      alerts while the record is still on the initial billing cycle
    - afterwards: yearly renewal ``Y{n}`` at ``price_1y``; alerts once the
      last renewal anniversary has been reached
    """
    if record.storage_end_date is not None or record.is_closed:
        return RecordStatus(
            status=STATUS_WITHDRAWN,
            next_billing_date=None,
            current_rate=Money.zero(record.currency),
        )

    start = record.storage_start_date
    six_month_date = add_months(start, SIX_MONTH_TIER_MONTHS)
    twelve_month_date = add_months(start, ONE_YEAR_TIER_MONTHS)

    if six_month_date > as_of:
        return RecordStatus(
            status=STATUS_SIX_MONTH_TERM,
            next_billing_date=six_month_date,
            current_rate=pricing.price_6m,
        )

    if twelve_month_date > as_of:
        alert = ROLLOVER_ALERT if record.billing_cycle == initial_billing_cycle else None
        return RecordStatus(
            status=STATUS_ONE_YEAR_ROLLOVER,
            next_billing_date=twelve_month_date,
            current_rate=pricing.price_1y,
            alert=alert,
        )

    years_stored = calendar_months_between(start, as_of) // ONE_YEAR_TIER_MONTHS
    renewal_year = years_stored + 1
    last_renewal = add_months(start, years_stored * ONE_YEAR_TIER_MONTHS)
    return RecordStatus(
        status=renewal_label(renewal_year),
        next_billing_date=add_months(start, renewal_year * ONE_YEAR_TIER_MONTHS),
        current_rate=pricing.price_1y,
        alert=renewal_alert(renewal_year) if last_renewal <= as_of else None,
    )
