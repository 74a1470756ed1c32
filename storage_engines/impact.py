"""
storage_engines.impact -- Record impact of withdrawals, edits and reversals.

Responsibility:
    Given a storage record snapshot and an outflow event (a new withdrawal,
    an edit of an earlier withdrawal, or the reversal of one), compute the
    record's new bag counts, cumulative rent and lifecycle state as a
    ``RecordUpdate``.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Nothing is mutated; the
    caller applies the returned update together with the matching
    transaction/payment writes in one persistence transaction.

State machine:
    OPEN   (bags_stored > 0, storage_end_date None)
    CLOSED (bags_stored == 0, storage_end_date = withdrawal date,
            billing_cycle = "Completed")

    outflow that empties the record      OPEN   -> CLOSED
    edit that empties the record         OPEN   -> CLOSED
    edit that restores bags              CLOSED -> OPEN
    any reversal                         *      -> OPEN

    Reopening restores the pre-completion billing cycle label: the record's
    own label when it is not the completed label, else the initial label.
    Both labels are parameters (defaults "6-Month Initial" and "Completed")
    so a warehouse can configure its own.

Invariants enforced:
    - bags_stored + bags_out == bags_in after every update.
    - total_rent_billed rises only by the rent of a withdrawal and falls
      only by exactly the rent of a reversed withdrawal.
    - Out-of-range quantities are errors, never clamped.

Failure modes:
    - InvalidQuantityError for non-positive withdrawal bags.
    - InsufficientBagsError when a withdrawal or edit needs more bags than
      the record holds.
    - InvalidAmountError for negative rent.
    - InvalidReversalError when a reversal exceeds bags_out or rent billed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from storage_engines.tracer import traced_engine
from storage_kernel.domain.records import (
    COMPLETED_BILLING_CYCLE,
    INITIAL_BILLING_CYCLE,
    RecordTransition,
    RecordUpdate,
    StorageRecord,
)
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import (
    InsufficientBagsError,
    InvalidAmountError,
    InvalidQuantityError,
    InvalidReversalError,
)


@dataclass(frozen=True, slots=True)
class OutflowImpact:
    """Update produced by a new withdrawal."""

    updates: RecordUpdate

    @property
    def is_closed(self) -> bool:
        return self.updates.transition is RecordTransition.CLOSE


@dataclass(frozen=True, slots=True)
class TransactionSnapshot:
    """The bags and rent of a withdrawal as originally recorded."""

    bags: int
    rent: Money


@dataclass(frozen=True, slots=True)
class RevisedTransaction:
    """The corrected bags, rent and date of an edited withdrawal."""

    bags: int
    rent: Money
    withdrawal_date: date


def reopened_billing_cycle(
    record: StorageRecord,
    initial_label: str = INITIAL_BILLING_CYCLE,
    completed_label: str = COMPLETED_BILLING_CYCLE,
) -> str:
    """Label a reopened record returns to."""
    if record.billing_cycle and record.billing_cycle != completed_label:
        return record.billing_cycle
    return initial_label


def _check_rent(record: StorageRecord, field: str, rent: Money) -> None:
    if rent.currency != record.currency:
        raise InvalidAmountError(
            field, str(rent), f"currency differs from record currency {record.currency}",
            record_id=record.record_id,
        )
    if rent.is_negative:
        raise InvalidAmountError(
            field, str(rent.amount), "cannot be negative", record_id=record.record_id
        )


@traced_engine("impact.outflow", "1.0", fingerprint_fields=("bags_withdrawn", "withdrawal_date"))
def calculate_outflow_impact(
    record: StorageRecord,
    bags_withdrawn: int,
    rent_charged: Money,
    withdrawal_date: date,
    completed_billing_cycle: str = COMPLETED_BILLING_CYCLE,
) -> OutflowImpact:
    """
    Apply a new withdrawal of ``bags_withdrawn`` bags charging ``rent_charged``.

    Preconditions:
        0 < bags_withdrawn <= record.bags_stored; rent_charged >= 0.
    Postconditions:
        bags move from stored to out; rent is added to total_rent_billed;
        the record closes on ``withdrawal_date`` when it empties.
    """
    if bags_withdrawn <= 0:
        raise InvalidQuantityError(
            "bags_withdrawn", bags_withdrawn, "must be positive", record_id=record.record_id
        )
    if bags_withdrawn > record.bags_stored:
        raise InsufficientBagsError(record.record_id, bags_withdrawn, record.bags_stored)
    _check_rent(record, "rent_charged", rent_charged)

    bags_stored = record.bags_stored - bags_withdrawn
    closes = bags_stored == 0
    updates = RecordUpdate(
        record_id=record.record_id,
        bags_stored=bags_stored,
        bags_out=record.bags_out + bags_withdrawn,
        total_rent_billed=record.total_rent_billed + rent_charged,
        transition=RecordTransition.CLOSE if closes else RecordTransition.NONE,
        storage_end_date=withdrawal_date if closes else None,
        billing_cycle=completed_billing_cycle if closes else None,
    )
    return OutflowImpact(updates=updates)


@traced_engine("impact.update", "1.0")
def calculate_update_impact(
    record: StorageRecord,
    old_transaction: TransactionSnapshot,
    new_transaction: RevisedTransaction,
    initial_billing_cycle: str = INITIAL_BILLING_CYCLE,
    completed_billing_cycle: str = COMPLETED_BILLING_CYCLE,
) -> RecordUpdate:
    """
    Replace an earlier withdrawal with a corrected one.

    The bag delta ``new.bags - old.bags`` moves between stored and out;
    the old rent contribution is swapped for the new one (replace, not add).

    Preconditions:
        new.bags > 0; the record holds at least ``delta`` more bags;
        old rent does not exceed total_rent_billed; rents >= 0.
    Postconditions:
        Closes the record on the new date if it empties, reopens it if a
        closed record gets bags back, otherwise leaves lifecycle untouched.
    """
    if new_transaction.bags <= 0:
        raise InvalidQuantityError(
            "new_transaction.bags", new_transaction.bags, "must be positive",
            record_id=record.record_id,
        )
    if old_transaction.bags <= 0 or old_transaction.bags > record.bags_out:
        raise InvalidReversalError(
            record.record_id, "bags", str(old_transaction.bags), str(record.bags_out)
        )
    _check_rent(record, "old_transaction.rent", old_transaction.rent)
    _check_rent(record, "new_transaction.rent", new_transaction.rent)
    if old_transaction.rent > record.total_rent_billed:
        raise InvalidReversalError(
            record.record_id,
            "rent",
            str(old_transaction.rent.amount),
            str(record.total_rent_billed.amount),
        )

    delta = new_transaction.bags - old_transaction.bags
    bags_stored = record.bags_stored - delta
    if bags_stored < 0:
        raise InsufficientBagsError(record.record_id, delta, record.bags_stored)

    total_rent = record.total_rent_billed - old_transaction.rent + new_transaction.rent
    bags_out = record.bags_out + delta

    if bags_stored == 0:
        return RecordUpdate(
            record_id=record.record_id,
            bags_stored=0,
            bags_out=bags_out,
            total_rent_billed=total_rent,
            transition=RecordTransition.CLOSE,
            storage_end_date=new_transaction.withdrawal_date,
            billing_cycle=completed_billing_cycle,
        )
    if record.is_closed:
        return RecordUpdate(
            record_id=record.record_id,
            bags_stored=bags_stored,
            bags_out=bags_out,
            total_rent_billed=total_rent,
            transition=RecordTransition.REOPEN,
            storage_end_date=None,
            billing_cycle=reopened_billing_cycle(
                record, initial_billing_cycle, completed_billing_cycle
            ),
        )
    return RecordUpdate(
        record_id=record.record_id,
        bags_stored=bags_stored,
        bags_out=bags_out,
        total_rent_billed=total_rent,
    )


@traced_engine("impact.reversal", "1.0", fingerprint_fields=("transaction_bags",))
def calculate_reversal_impact(
    record: StorageRecord,
    transaction_bags: int,
    transaction_rent: Money,
    initial_billing_cycle: str = INITIAL_BILLING_CYCLE,
    completed_billing_cycle: str = COMPLETED_BILLING_CYCLE,
) -> RecordUpdate:
    """
    Undo a withdrawal of ``transaction_bags`` bags that charged ``transaction_rent``.

    Reversing any amount reopens the record: storage_end_date is cleared
    and the pre-completion billing cycle label restored.

    Preconditions:
        0 < transaction_bags <= record.bags_out;
        0 <= transaction_rent <= record.total_rent_billed.
    """
    if transaction_bags <= 0:
        raise InvalidQuantityError(
            "transaction_bags", transaction_bags, "must be positive", record_id=record.record_id
        )
    if transaction_bags > record.bags_out:
        raise InvalidReversalError(
            record.record_id, "bags", str(transaction_bags), str(record.bags_out)
        )
    _check_rent(record, "transaction_rent", transaction_rent)
    if transaction_rent > record.total_rent_billed:
        raise InvalidReversalError(
            record.record_id,
            "rent",
            str(transaction_rent.amount),
            str(record.total_rent_billed.amount),
        )

    return RecordUpdate(
        record_id=record.record_id,
        bags_stored=record.bags_stored + transaction_bags,
        bags_out=record.bags_out - transaction_bags,
        total_rent_billed=record.total_rent_billed - transaction_rent,
        transition=RecordTransition.REOPEN,
        storage_end_date=None,
        billing_cycle=reopened_billing_cycle(
            record, initial_billing_cycle, completed_billing_cycle
        ),
    )
