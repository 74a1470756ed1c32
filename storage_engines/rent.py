"""
storage_engines.rent -- Time-tiered storage rent.

Responsibility:
    Measure how long a record's bags have been in storage and price a
    withdrawal of some of those bags against the crop's two-tier tariff.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Never reads the clock: ``as_of`` is always supplied by the caller.

Rules:
    Duration -- ``months_stored`` counts calendar months *started* since
    the storage start date. Exactly six calendar months is 6; one day more
    is 7. Anniversaries clamp to month end (Aug 31 + 6 months = Feb 28/29).
    A same-day withdrawal counts ``minimum_months`` (default 1).

    Tiers (per bag, m = months_stored):
        m <= 6          price_6m
        6 < m <= 12     price_1y, a flat charge for the whole stay that
                        replaces (is not layered on) the 6-month charge
        m > 12          storage renews yearly; each completed year costs
                        price_1y and the running year is priced like the
                        first one (price_6m up to six months, else price_1y):
                        13 months -> 1y + 6m, 24 -> 2 x 1y, 25 -> 2 x 1y + 6m

    Rent is ``rent_per_bag * bags`` rounded to the currency's precision.

Invariants enforced:
    - Monotonicity: for a fixed record and bag count, rent never decreases
      as ``as_of`` moves later (given price_1y >= price_6m, which
      CropPricing guarantees).

Failure modes:
    - MissingPricingError when no pricing is supplied.
    - InvalidWithdrawalDateError when ``as_of`` precedes storage start.
    - InvalidQuantityError for negative bags, InsufficientBagsError when
      bags exceed what the record holds.
    - InvalidPricingError when pricing and record currencies differ.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

from storage_engines.tracer import traced_engine
from storage_kernel.domain.records import CropPricing, StorageRecord
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import (
    InsufficientBagsError,
    InvalidPricingError,
    InvalidQuantityError,
    InvalidWithdrawalDateError,
    MissingPricingError,
)
from storage_kernel.logging_config import get_logger

logger = get_logger("engines.rent")

SIX_MONTH_TIER_MONTHS = 6
ONE_YEAR_TIER_MONTHS = 12
DEFAULT_MINIMUM_MONTHS = 1


@dataclass(frozen=True, slots=True)
class RentQuote:
    """
    Rent owed for withdrawing ``bags`` bags on a given date.

    Guarantees:
        - ``rent == (rent_per_bag * bags).round()``.
    """

    rent: Money
    months_stored: int
    rent_per_bag: Money
    bags: int


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by whole calendar months, clamping to month end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_stored(start: date, as_of: date, minimum_months: int = DEFAULT_MINIMUM_MONTHS) -> int:
    """
    Calendar months started between ``start`` and ``as_of``.

    Preconditions:
        ``as_of >= start``.
    Postconditions:
        Returns the smallest ``n >= minimum_months`` with
        ``add_months(start, n) >= as_of``.
    """
    if as_of < start:
        raise ValueError(f"as_of {as_of} precedes start {start}")

    whole = (as_of.year - start.year) * 12 + (as_of.month - start.month)
    if add_months(start, whole) > as_of:
        whole -= 1
    # A partial month counts as a full one
    months = whole if add_months(start, whole) == as_of else whole + 1
    return max(months, minimum_months)


def rent_per_bag_for_months(months: int, pricing: CropPricing) -> Money:
    """Per-bag rent for a stay of ``months`` calendar months."""
    if months <= 0:
        return pricing.price_6m * 0
    full_years = (months - 1) // ONE_YEAR_TIER_MONTHS
    running = months - ONE_YEAR_TIER_MONTHS * full_years
    running_charge = (
        pricing.price_6m if running <= SIX_MONTH_TIER_MONTHS else pricing.price_1y
    )
    return pricing.price_1y * full_years + running_charge


@traced_engine("rent", "1.0", fingerprint_fields=("as_of", "bags_quantity"))
def calculate_final_rent(
    record: StorageRecord,
    as_of: date,
    bags_quantity: int,
    pricing: CropPricing | None = None,
    minimum_months: int = DEFAULT_MINIMUM_MONTHS,
) -> RentQuote:
    """
    Price the withdrawal of ``bags_quantity`` bags from ``record`` on ``as_of``.

    Args:
        record: Snapshot of the storage record being withdrawn from.
        as_of: Valuation (withdrawal) date; must not precede storage start.
        bags_quantity: Bags to price, 0 <= bags_quantity <= record.bags_stored.
        pricing: The crop's tariff. Resolve it with ``TariffResolver``;
            passing None is a MissingPricingError, never free storage.
        minimum_months: Months charged for a same-day withdrawal.

    Returns:
        RentQuote with rent, months stored and per-bag rent.
    """
    if pricing is None:
        raise MissingPricingError(record.crop_id, record_id=record.record_id)
    if pricing.currency != record.currency:
        raise InvalidPricingError(
            str(pricing.price_6m),
            str(pricing.price_1y),
            f"pricing currency differs from record currency {record.currency}",
        )
    if as_of < record.storage_start_date:
        raise InvalidWithdrawalDateError(
            record.record_id,
            as_of.isoformat(),
            f"before storage start {record.storage_start_date.isoformat()}",
        )
    if bags_quantity < 0:
        raise InvalidQuantityError(
            "bags_quantity", bags_quantity, "cannot be negative", record_id=record.record_id
        )
    if bags_quantity > record.bags_stored:
        raise InsufficientBagsError(record.record_id, bags_quantity, record.bags_stored)

    months = months_stored(record.storage_start_date, as_of, minimum_months)
    per_bag = rent_per_bag_for_months(months, pricing)
    rent = (per_bag * bags_quantity).round()

    logger.debug("rent_calculated", extra={
        "record_id": record.record_id,
        "months_stored": months,
        "rent_per_bag": str(per_bag.amount),
        "bags": bags_quantity,
        "rent": str(rent.amount),
    })

    return RentQuote(
        rent=rent,
        months_stored=months,
        rent_per_bag=per_bag,
        bags=bags_quantity,
    )
