"""
Records -- Storage billing domain objects.

Responsibility:
    Defines the single strongly-typed ``StorageRecord`` shared by every
    billing engine, the payment and withdrawal entries attached to it, the
    ``CropPricing`` tariff pair, the ``PendingRecord`` projection consumed by
    FIFO allocation, and the ``RecordUpdate`` instruction engines hand back
    to the persistence collaborator.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Mapping storage-layer column names (``bags_stored`` rows, JSON payloads)
    onto these types is the persistence collaborator's job.

Invariants enforced:
    - Bag conservation: ``bags_stored + bags_out == bags_in``.
    - Closure: ``storage_end_date`` is set if and only if ``bags_stored == 0``.
    - Single currency per record (hamali, rent and payments).
    - Tariff ordering: ``price_1y >= price_6m`` so rent never falls with time.

Failure modes:
    - InvariantViolationError when a snapshot breaks conservation or closure.
    - InvalidPricingError for negative or inverted tier prices.
    - ValueError for malformed field values.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any

from storage_kernel.domain.values import Currency, Money
from storage_kernel.exceptions import InvalidPricingError, InvariantViolationError

INITIAL_BILLING_CYCLE = "6-Month Initial"
COMPLETED_BILLING_CYCLE = "Completed"

DEFAULT_CURRENCY = "INR"


class PaymentType(str, Enum):
    """What a payment settles."""

    RENT = "rent"
    HAMALI = "hamali"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Payment:
    """A payment received against one storage record."""

    amount: Money
    payment_date: date
    payment_type: PaymentType = PaymentType.RENT
    notes: str = ""
    deleted: bool = False

    def __post_init__(self) -> None:
        if self.amount.is_negative:
            raise ValueError(f"Payment amount cannot be negative, got {self.amount}")


@dataclass(frozen=True, slots=True)
class WithdrawalTransaction:
    """One outflow from a storage record, with the rent it charged."""

    bags_withdrawn: int
    rent_charged: Money
    withdrawal_date: date
    transaction_id: str | None = None

    def __post_init__(self) -> None:
        if self.bags_withdrawn <= 0:
            raise ValueError(f"bags_withdrawn must be positive, got {self.bags_withdrawn}")
        if self.rent_charged.is_negative:
            raise ValueError(f"rent_charged cannot be negative, got {self.rent_charged}")


@dataclass(frozen=True, slots=True)
class CropPricing:
    """
    Per-bag rent for the two duration tiers of one commodity.

    Guarantees:
        - Both prices are non-negative and share a currency.
        - ``price_1y >= price_6m`` (tier rent never decreases with time).
    """

    price_6m: Money
    price_1y: Money

    def __post_init__(self) -> None:
        if self.price_6m.currency != self.price_1y.currency:
            raise InvalidPricingError(
                str(self.price_6m), str(self.price_1y), "tier currencies differ"
            )
        if self.price_6m.is_negative or self.price_1y.is_negative:
            raise InvalidPricingError(
                str(self.price_6m.amount), str(self.price_1y.amount), "prices cannot be negative"
            )
        if self.price_1y < self.price_6m:
            raise InvalidPricingError(
                str(self.price_6m.amount),
                str(self.price_1y.amount),
                "1-year price cannot be below the 6-month price",
            )

    @classmethod
    def of(
        cls,
        price_6m: str | int,
        price_1y: str | int,
        currency: str = DEFAULT_CURRENCY,
    ) -> CropPricing:
        return cls(
            price_6m=Money.of(price_6m, currency),
            price_1y=Money.of(price_1y, currency),
        )

    @classmethod
    def zero(cls, currency: str | Currency = DEFAULT_CURRENCY) -> CropPricing:
        return cls(price_6m=Money.zero(currency), price_1y=Money.zero(currency))

    @property
    def currency(self) -> Currency:
        return self.price_6m.currency


@dataclass(frozen=True, slots=True)
class StorageRecord:
    """
    One inbound storage transaction and its running billing state.

    Contract:
        Immutable snapshot. Engines never mutate a record; they return a
        ``RecordUpdate`` that the caller applies atomically.

    Guarantees:
        - ``bags_stored + bags_out == bags_in``.
        - ``storage_end_date is not None`` iff ``bags_stored == 0``.
        - hamali, rent and every payment share one currency.
    """

    record_id: str
    customer_id: str
    crop_id: str
    bags_in: int
    bags_stored: int
    storage_start_date: date
    hamali_payable: Money
    total_rent_billed: Money
    record_number: str = ""
    lot_id: str | None = None
    location: str | None = None
    bags_out: int = 0
    storage_end_date: date | None = None
    billing_cycle: str = INITIAL_BILLING_CYCLE
    payments: tuple[Payment, ...] = ()
    withdrawals: tuple[WithdrawalTransaction, ...] = ()
    deleted: bool = False

    def __post_init__(self) -> None:
        for name in ("bags_in", "bags_stored", "bags_out"):
            value = getattr(self, name)
            if value < 0:
                raise InvariantViolationError(
                    self.record_id, "non-negative bags", f"{name}={value}"
                )
        if self.bags_stored + self.bags_out != self.bags_in:
            raise InvariantViolationError(
                self.record_id,
                "bag conservation",
                f"bags_stored={self.bags_stored} + bags_out={self.bags_out} "
                f"!= bags_in={self.bags_in}",
            )
        if (self.storage_end_date is not None) != (self.bags_stored == 0):
            raise InvariantViolationError(
                self.record_id,
                "closure",
                f"bags_stored={self.bags_stored} with storage_end_date={self.storage_end_date}",
            )
        currency = self.hamali_payable.currency
        if self.total_rent_billed.currency != currency:
            raise ValueError(
                f"Record {self.record_id}: rent currency {self.total_rent_billed.currency} "
                f"differs from hamali currency {currency}"
            )
        for payment in self.payments:
            if payment.amount.currency != currency:
                raise ValueError(
                    f"Record {self.record_id}: payment currency {payment.amount.currency} "
                    f"differs from record currency {currency}"
                )

    @classmethod
    def inflow(
        cls,
        record_id: str,
        customer_id: str,
        crop_id: str,
        bags_in: int,
        storage_start_date: date,
        hamali_payable: Money,
        **kwargs: Any,
    ) -> StorageRecord:
        """Create a fresh record at inflow: nothing withdrawn, nothing billed."""
        if bags_in <= 0:
            raise ValueError(f"bags_in must be positive, got {bags_in}")
        return cls(
            record_id=record_id,
            customer_id=customer_id,
            crop_id=crop_id,
            bags_in=bags_in,
            bags_stored=bags_in,
            bags_out=0,
            storage_start_date=storage_start_date,
            hamali_payable=hamali_payable,
            total_rent_billed=Money.zero(hamali_payable.currency),
            **kwargs,
        )

    @property
    def currency(self) -> Currency:
        return self.hamali_payable.currency

    @property
    def is_closed(self) -> bool:
        return self.bags_stored == 0

    @property
    def is_open(self) -> bool:
        return self.bags_stored > 0 and self.storage_end_date is None

    @property
    def total_billed(self) -> Money:
        """Rent billed so far plus the fixed hamali charge."""
        return self.total_rent_billed + self.hamali_payable

    @property
    def total_paid(self) -> Money:
        return Money.total(
            (p.amount for p in self.payments if not p.deleted), self.currency
        )

    @property
    def balance_due(self) -> Money:
        """Billed minus paid. Negative means the customer holds a credit."""
        return self.total_billed - self.total_paid

    @property
    def displayed_balance(self) -> Money:
        """Balance as shown to operators: never below zero."""
        return max(self.balance_due, Money.zero(self.currency))


class RecordTransition(str, Enum):
    """Lifecycle effect of an update on its record."""

    NONE = "none"  # Stays in its current state
    CLOSE = "close"  # OPEN -> CLOSED
    REOPEN = "reopen"  # -> OPEN, end date cleared


@dataclass(frozen=True, slots=True)
class RecordUpdate:
    """
    New field values for one record, computed from a snapshot.

    Contract:
        Absolute replacement values (not deltas) for the mutable fields.
        ``storage_end_date`` and ``billing_cycle`` are only meaningful when
        ``transition`` is CLOSE or REOPEN; on NONE they stay untouched.

    Non-goals:
        - Does not serialize concurrent writers. Two updates computed from
          the same snapshot must not both be applied.
    """

    record_id: str
    bags_stored: int
    bags_out: int
    total_rent_billed: Money
    transition: RecordTransition = RecordTransition.NONE
    storage_end_date: date | None = None
    billing_cycle: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.bags_stored == 0

    def to_changes(self) -> dict[str, Any]:
        """Only the fields the persistence collaborator must write."""
        changes: dict[str, Any] = {
            "bags_stored": self.bags_stored,
            "bags_out": self.bags_out,
            "total_rent_billed": self.total_rent_billed.amount,
        }
        if self.transition is not RecordTransition.NONE:
            changes["storage_end_date"] = self.storage_end_date
            changes["billing_cycle"] = self.billing_cycle
        return changes

    def apply_to(self, record: StorageRecord, **extra: Any) -> StorageRecord:
        """Return the record as it looks after this update is persisted."""
        if record.record_id != self.record_id:
            raise ValueError(
                f"Update for {self.record_id} applied to record {record.record_id}"
            )
        changes: dict[str, Any] = {
            "bags_stored": self.bags_stored,
            "bags_out": self.bags_out,
            "total_rent_billed": self.total_rent_billed,
        }
        if self.transition is not RecordTransition.NONE:
            changes["storage_end_date"] = self.storage_end_date
            changes["billing_cycle"] = self.billing_cycle
        changes.update(extra)
        return replace(record, **changes)


@dataclass(frozen=True, slots=True)
class PendingRecord:
    """Projection of a StorageRecord with outstanding dues, for FIFO allocation."""

    record_id: str
    total_due: Money
    storage_start_date: date
    record_number: str = ""

    @classmethod
    def from_record(cls, record: StorageRecord) -> PendingRecord:
        return cls(
            record_id=record.record_id,
            record_number=record.record_number or f"REC-{record.record_id[:8]}",
            total_due=record.displayed_balance,
            storage_start_date=record.storage_start_date,
        )
