"""
Module: storage_engines.bulk_outflow
Responsibility:
    Plan a withdrawal of a target number of bags of one commodity across a
    customer's open records, oldest first, pricing each record's share with
    the rent engine; and split a payment taken at bulk outflow across the
    planned records by rent.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - FIFO consumption: eligible records are drained in ascending
      storage_start_date; ties keep input order.
    - Sum of ``take`` over operations never exceeds ``target_bags`` and
      equals it unless the plan is impossible.
    - Idempotent: identical inputs (including exclusions) give identical
      plans.

Failure modes:
    - InvalidQuantityError for a non-positive target.
    - MissingPricingError (from the rent engine) when pricing is absent and
      at least one record is drawn from.
    - An infeasible target is NOT an error: ``impossible`` is set and the
      caller must block submission.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from storage_engines.allocation import AllocationEngine, AllocationMethod, AllocationTarget
from storage_engines.rent import DEFAULT_MINIMUM_MONTHS, calculate_final_rent
from storage_engines.tariff import normalize_crop_id
from storage_engines.tracer import traced_engine
from storage_kernel.domain.records import CropPricing, StorageRecord
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import InvalidQuantityError
from storage_kernel.logging_config import get_logger

logger = get_logger("engines.bulk_outflow")


@dataclass(frozen=True, slots=True)
class BulkOutflowOperation:
    """Bags drawn from one record as part of a bulk outflow."""

    record: StorageRecord
    take: int
    rent: Money
    months_stored: int

    @property
    def is_closing(self) -> bool:
        return self.take == self.record.bags_stored


@dataclass(frozen=True, slots=True)
class BulkOutflowPlan:
    """
    Greedy FIFO plan for a bulk outflow.

    Guarantees:
        - ``total_rent`` is the sum of operation rents.
        - ``impossible`` iff ``available < requested``.
    """

    operations: tuple[BulkOutflowOperation, ...]
    total_rent: Money
    requested: int
    available: int

    @property
    def impossible(self) -> bool:
        return self.available < self.requested

    @property
    def planned_bags(self) -> int:
        return sum(op.take for op in self.operations)


@dataclass(frozen=True, slots=True)
class PaymentShare:
    """Portion of a bulk-outflow payment recorded against one record."""

    record_id: str
    record_number: str
    amount: Money


def eligible_records(
    records: Iterable[StorageRecord],
    commodity: str,
    excluded_record_ids: Iterable[str] = (),
) -> list[StorageRecord]:
    """Open, non-deleted records of ``commodity``, oldest first."""
    wanted = normalize_crop_id(commodity)
    excluded = frozenset(excluded_record_ids)
    matching = [
        r
        for r in records
        if normalize_crop_id(r.crop_id) == wanted
        and r.bags_stored > 0
        and r.storage_end_date is None
        and not r.deleted
        and r.record_id not in excluded
    ]
    return sorted(matching, key=lambda r: r.storage_start_date)


@traced_engine(
    "bulk_outflow",
    "1.0",
    fingerprint_fields=("commodity", "target_bags", "as_of", "excluded_record_ids"),
)
def plan_bulk_outflow(
    records: Sequence[StorageRecord],
    commodity: str,
    target_bags: int,
    as_of: date,
    excluded_record_ids: Iterable[str] = frozenset(),
    pricing: CropPricing | None = None,
    minimum_months: int = DEFAULT_MINIMUM_MONTHS,
    currency: str | None = None,
) -> BulkOutflowPlan:
    """
    Draw ``target_bags`` bags of ``commodity`` from the oldest open records.

    Args:
        records: Candidate records (typically one customer's).
        commodity: Crop id to withdraw; matched case-insensitively.
        target_bags: Bags requested, > 0.
        as_of: Withdrawal date used to price every take.
        excluded_record_ids: Records the operator removed from consideration.
        pricing: Tariff for the commodity.
        minimum_months: Passed through to the rent engine.
        currency: Currency of ``total_rent`` when no record is drawn from;
            defaults to the first eligible record's (or pricing's) currency.
    """
    if target_bags <= 0:
        raise InvalidQuantityError("target_bags", target_bags, "must be positive")

    candidates = eligible_records(records, commodity, excluded_record_ids)
    available = sum(r.bags_stored for r in candidates)

    operations: list[BulkOutflowOperation] = []
    remaining = target_bags
    for record in candidates:
        if remaining <= 0:
            break
        take = min(record.bags_stored, remaining)
        quote = calculate_final_rent(record, as_of, take, pricing, minimum_months)
        operations.append(
            BulkOutflowOperation(
                record=record,
                take=take,
                rent=quote.rent,
                months_stored=quote.months_stored,
            )
        )
        remaining -= take

    if currency is None:
        if candidates:
            currency = candidates[0].currency.code
        elif pricing is not None:
            currency = pricing.currency.code
        else:
            currency = "INR"
    total_rent = Money.total((op.rent for op in operations), currency)

    plan = BulkOutflowPlan(
        operations=tuple(operations),
        total_rent=total_rent,
        requested=target_bags,
        available=available,
    )

    logger.debug("bulk_outflow_planned", extra={
        "commodity": commodity,
        "requested": target_bags,
        "available": available,
        "operation_count": len(operations),
        "total_rent": str(total_rent.amount),
        "impossible": plan.impossible,
    })

    return plan


def split_payment_by_rent(plan: BulkOutflowPlan, amount: Money) -> tuple[PaymentShare, ...]:
    """
    Spread ``amount`` across the plan's records in proportion to their rent.

    Lines are rounded to currency precision and the largest-rent line
    absorbs the residue, so the shares always sum to ``amount``. When the
    plan carries no rent at all, the whole payment is recorded on the first
    operation; when rounding would leave a share negative (a few paise over
    many records), it is recorded on the largest-rent operation.
    """
    if not plan.operations or amount.is_zero:
        return ()

    def share(op: BulkOutflowOperation, value: Money) -> PaymentShare:
        return PaymentShare(
            record_id=op.record.record_id,
            record_number=op.record.record_number,
            amount=value,
        )

    if plan.total_rent.is_zero:
        first = plan.operations[0]
        return (share(first, amount),)

    targets = [
        AllocationTarget(target_id=op.record.record_id, weight=op.rent.amount)
        for op in plan.operations
    ]
    largest = max(range(len(plan.operations)), key=lambda i: plan.operations[i].rent)
    result = AllocationEngine().allocate(
        amount, targets, AllocationMethod.WEIGHTED, rounding_target_index=largest
    )
    if any(line.allocated.is_negative for line in result.lines):
        return (share(plan.operations[largest], amount),)
    return tuple(
        share(op, line.allocated)
        for op, line in zip(plan.operations, result.lines, strict=True)
        if line.allocated.amount != Decimal("0")
    )
