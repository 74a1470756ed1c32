"""
Module: storage_engines.allocation
Responsibility:
    Allocate a payment across storage records: oldest-first (FIFO) for
    settling dues, weighted for splitting a bulk-outflow payment by rent,
    and validation of operator-entered (manual) allocations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: total_allocated + unallocated == source amount.
    - FIFO policy: records are visited in ascending storage_start_date;
      ties keep input order (stable sort).
    - Weighted rounding: every line except the rounding target is rounded
      to currency precision (ROUND_HALF_UP); the rounding target (last by
      default) absorbs the residue so pennies are never lost.
    - Currency consistency across the payment and all targets.

Failure modes:
    - InvalidAmountError on a negative payment.
    - ValueError on currency mismatch or zero total weight.
    - AllocationMismatchError when manual allocations do not reconcile.

Usage:
    from storage_engines.allocation import allocate_payment_fifo

    result = allocate_payment_fifo(pending, Money.of("1500", "INR"))
    for line in result.allocations:
        insert_payment(line.record_id, line.amount)
    if not result.unallocated.is_zero:
        ...  # caller decides: reject, or keep as credit
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from storage_engines.tracer import traced_engine
from storage_kernel.domain.records import PendingRecord
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import AllocationMismatchError, InvalidAmountError
from storage_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class AllocationMethod(str, Enum):
    """Method for allocating amounts."""

    FIFO = "fifo"  # Oldest first by date
    WEIGHTED = "weighted"  # By explicit weight factor


@dataclass(frozen=True)
class AllocationTarget:
    """
    A target that can receive an allocation.

    Guarantees:
        - ``weight`` is non-negative.
    """

    target_id: str
    eligible_amount: Money | None = None
    weight: Decimal = Decimal("1")
    date: date | None = None  # For FIFO
    label: str = ""

    def __post_init__(self) -> None:
        if self.weight < Decimal("0"):
            raise ValueError("Weight cannot be negative")


@dataclass(frozen=True)
class AllocationLine:
    """
    Result of allocation to a single target.

    Guarantees:
        - ``allocated + remaining == eligible_amount`` (when eligible is set).
    """

    target_id: str
    allocated: Money
    remaining: Money
    label: str = ""

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining.is_zero


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation result.

    Guarantees:
        - ``total_allocated + unallocated == source_amount``.
    """

    source_amount: Money
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: Money
    unallocated: Money
    rounding_adjustment: Money

    @property
    def is_fully_allocated(self) -> bool:
        """True if entire source amount was allocated."""
        return self.unallocated.is_zero

    @property
    def allocation_count(self) -> int:
        """Number of targets that received allocations."""
        return sum(1 for line in self.lines if not line.allocated.is_zero)


class AllocationEngine:
    """
    Allocate amounts across multiple targets.

    Contract:
        Pure functions with deterministic rounding. No I/O.
    Guarantees:
        - All intermediate calculations use full precision.
        - Weighted amounts are rounded to currency decimal places
          (ROUND_HALF_UP); the rounding target gets the remainder.
        - FIFO never allocates more than a target's eligible amount and
          stops visiting targets once the amount is exhausted.
    Non-goals:
        - Does not persist results; callers insert the payments.
    """

    def allocate(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        method: AllocationMethod,
        rounding_target_index: int | None = None,
    ) -> AllocationResult:
        """
        Allocate amount to targets using specified method.

        Args:
            amount: Amount to allocate (non-negative)
            targets: Sequence of allocation targets
            method: Allocation method to use
            rounding_target_index: Which target gets rounding adjustment (default: last)
        """
        if amount.is_negative:
            raise InvalidAmountError("payment_amount", str(amount.amount), "cannot be negative")
        for target in targets:
            if (
                target.eligible_amount is not None
                and target.eligible_amount.currency != amount.currency
            ):
                raise ValueError(
                    f"Currency mismatch: {target.eligible_amount.currency} vs {amount.currency}"
                )

        if not targets:
            return AllocationResult(
                source_amount=amount,
                method=method,
                lines=(),
                total_allocated=Money.zero(amount.currency),
                unallocated=amount,
                rounding_adjustment=Money.zero(amount.currency),
            )

        match method:
            case AllocationMethod.FIFO:
                return self._allocate_fifo(amount, targets)
            case AllocationMethod.WEIGHTED:
                return self._allocate_weighted(amount, targets, rounding_target_index)
            case _:
                raise ValueError(f"Unknown allocation method: {method}")

    def _allocate_fifo(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
    ) -> AllocationResult:
        """Allocate to oldest first (by date); ties keep input order."""
        sorted_targets = sorted(targets, key=lambda t: t.date or date.min)
        return self._allocate_sequential(amount, sorted_targets, AllocationMethod.FIFO)

    def _allocate_weighted(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        rounding_target_index: int | None,
    ) -> AllocationResult:
        """Allocate by explicit weight factors."""
        total_weight = sum((t.weight for t in targets), Decimal("0"))

        if total_weight == Decimal("0"):
            raise ValueError("Total weight cannot be zero")

        return self._allocate_by_ratio(
            amount=amount,
            targets=targets,
            get_ratio=lambda t: t.weight / total_weight,
            rounding_target_index=rounding_target_index,
        )

    def _allocate_by_ratio(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        get_ratio: Callable[[AllocationTarget], Decimal],
        rounding_target_index: int | None,
    ) -> AllocationResult:
        """Common logic for ratio-based allocations.

        Preconditions:
            - ``targets`` is non-empty and ratios sum to 1.
        Postconditions:
            - Sum of all ``allocated`` amounts == ``amount``.
        """
        if rounding_target_index is None:
            rounding_target_index = len(targets) - 1

        currency = amount.currency
        quantum = Decimal(10) ** -currency.decimal_places
        lines: list[AllocationLine] = []
        allocated_so_far = Decimal("0")

        for i, target in enumerate(targets):
            if i == rounding_target_index:
                continue
            allocated_amount = (amount.amount * get_ratio(target)).quantize(
                quantum, rounding=ROUND_HALF_UP
            )
            allocated_so_far += allocated_amount
            lines.append(self._line(target, Money.of(allocated_amount, currency)))

        # Rounding target gets remainder
        residue = Money.of(amount.amount - allocated_so_far, currency)
        lines.insert(rounding_target_index, self._line(targets[rounding_target_index], residue))

        total_allocated = Money.total((line.allocated for line in lines), currency)
        unallocated = amount - total_allocated

        assert total_allocated + unallocated == amount, (
            f"Allocation conservation violated: "
            f"{total_allocated.amount} + {unallocated.amount} != {amount.amount}"
        )

        naive_total = sum(
            (
                (amount.amount * get_ratio(t)).quantize(quantum, rounding=ROUND_HALF_UP)
                for t in targets
            ),
            Decimal("0"),
        )
        rounding_adjustment = Money.of(amount.amount - naive_total, currency)

        logger.debug("allocation_by_ratio_completed", extra={
            "source_amount": str(amount.amount),
            "total_allocated": str(total_allocated.amount),
            "rounding_adjustment": str(rounding_adjustment.amount),
            "line_count": len(lines),
        })

        return AllocationResult(
            source_amount=amount,
            method=AllocationMethod.WEIGHTED,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=unallocated,
            rounding_adjustment=rounding_adjustment,
        )

    @staticmethod
    def _line(target: AllocationTarget, allocated: Money) -> AllocationLine:
        if target.eligible_amount is not None:
            remaining = target.eligible_amount - allocated
        else:
            remaining = Money.zero(allocated.currency)
        return AllocationLine(
            target_id=target.target_id,
            allocated=allocated,
            remaining=remaining,
            label=target.label,
        )

    def _allocate_sequential(
        self,
        amount: Money,
        sorted_targets: Sequence[AllocationTarget],
        method: AllocationMethod,
    ) -> AllocationResult:
        """
        Allocate sequentially until amount exhausted.

        Each target receives up to its eligible amount. Targets with nothing
        eligible are skipped, and no line is produced once the amount runs
        out.
        """
        currency = amount.currency
        remaining_to_allocate = amount.amount
        lines: list[AllocationLine] = []

        for target in sorted_targets:
            if remaining_to_allocate <= Decimal("0"):
                break

            eligible = (
                target.eligible_amount.amount
                if target.eligible_amount is not None
                else remaining_to_allocate
            )
            if eligible <= Decimal("0"):
                continue

            to_allocate = min(remaining_to_allocate, eligible)
            remaining_to_allocate -= to_allocate

            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    allocated=Money.of(to_allocate, currency),
                    remaining=Money.of(eligible - to_allocate, currency),
                    label=target.label,
                )
            )

        total_allocated = Money.of(amount.amount - remaining_to_allocate, currency)
        unallocated = Money.of(remaining_to_allocate, currency)

        logger.debug("allocation_sequential_completed", extra={
            "method": method.value,
            "source_amount": str(amount.amount),
            "total_allocated": str(total_allocated.amount),
            "unallocated": str(remaining_to_allocate),
            "line_count": len(lines),
        })

        return AllocationResult(
            source_amount=amount,
            method=method,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=unallocated,
            rounding_adjustment=Money.zero(currency),  # No rounding in sequential
        )


# ---------------------------------------------------------------------------
# Payment allocation over pending records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentAllocation:
    """Share of a payment applied to one record."""

    record_id: str
    record_number: str
    amount: Money
    remaining_due: Money


@dataclass(frozen=True)
class PaymentAllocationResult:
    """
    Outcome of spreading one payment over pending records.

    ``unallocated`` is non-zero only when the payment exceeds the dues of
    every supplied record; the caller decides whether that is a rejection
    or a credit.
    """

    payment_amount: Money
    allocations: tuple[PaymentAllocation, ...]
    unallocated: Money

    @property
    def total_allocated(self) -> Money:
        return self.payment_amount - self.unallocated

    @property
    def is_overallocated(self) -> bool:
        return self.unallocated.is_positive


_engine = AllocationEngine()


@traced_engine("allocation.fifo", "1.0", fingerprint_fields=("payment_amount",))
def allocate_payment_fifo(
    pending_records: Sequence[PendingRecord],
    payment_amount: Money,
) -> PaymentAllocationResult:
    """
    Settle the oldest dues first.

    Records are visited by ascending ``storage_start_date`` (ties keep input
    order). Each gets ``min(remaining, total_due)``; records with no dues are
    skipped and nothing is produced after the payment is used up, so a zero
    payment yields no allocations.
    """
    targets = [
        AllocationTarget(
            target_id=p.record_id,
            eligible_amount=p.total_due,
            date=p.storage_start_date,
            label=p.record_number,
        )
        for p in pending_records
    ]
    result = _engine.allocate(payment_amount, targets, AllocationMethod.FIFO)
    return PaymentAllocationResult(
        payment_amount=payment_amount,
        allocations=tuple(
            PaymentAllocation(
                record_id=line.target_id,
                record_number=line.label,
                amount=line.allocated,
                remaining_due=line.remaining,
            )
            for line in result.lines
        ),
        unallocated=result.unallocated,
    )


def validate_manual_allocations(
    pending_records: Sequence[PendingRecord],
    allocations: Mapping[str, Money],
    payment_amount: Money,
) -> PaymentAllocationResult:
    """
    Check operator-chosen allocations and shape them like a FIFO result.

    Every allocation must name a pending record, be positive and not
    exceed that record's due, and the allocations must sum to the payment
    within the currency's rounding tolerance.
    """
    by_id = {p.record_id: p for p in pending_records}
    currency = payment_amount.currency
    lines: list[PaymentAllocation] = []

    for record_id, amount in allocations.items():
        if record_id not in by_id:
            raise AllocationMismatchError(
                str(payment_amount.amount), str(amount.amount),
                f"record {record_id} has no pending dues",
            )
        if not amount.is_positive:
            raise InvalidAmountError(
                "allocation", str(amount.amount), "must be positive", record_id=record_id
            )
        pending = by_id[record_id]
        if amount > pending.total_due:
            raise InvalidAmountError(
                "allocation",
                str(amount.amount),
                f"exceeds the record's due of {pending.total_due.amount}",
                record_id=record_id,
            )
        lines.append(
            PaymentAllocation(
                record_id=record_id,
                record_number=pending.record_number,
                amount=amount,
                remaining_due=pending.total_due - amount,
            )
        )

    total = Money.total((line.amount for line in lines), currency)
    if abs(total - payment_amount).amount > currency.rounding_tolerance:
        raise AllocationMismatchError(
            str(payment_amount.amount), str(total.amount), "allocations must sum to the payment"
        )

    return PaymentAllocationResult(
        payment_amount=payment_amount,
        allocations=tuple(lines),
        unallocated=Money.zero(currency),
    )
