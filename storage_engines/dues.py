"""
Module: storage_engines.dues
Responsibility:
    Outstanding-dues views over storage records: the pending list that
    feeds payment allocation and the overdue digest sent to warehouse
    administrators.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A record's due is ``(total_rent_billed + hamali_payable) - payments``;
      deleted payments and deleted records are ignored.
    - Pending lists are ordered oldest first (the FIFO policy), ties stable.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from storage_kernel.domain.records import DEFAULT_CURRENCY, PendingRecord, StorageRecord
from storage_kernel.domain.values import Money

DEFAULT_DUES_THRESHOLD = Decimal("100")


def balance_due(record: StorageRecord) -> Money:
    """Billed minus paid; negative when the customer holds a credit."""
    return record.balance_due


def pending_records(records: Iterable[StorageRecord]) -> list[PendingRecord]:
    """Non-deleted records that still owe something, oldest first."""
    pending = [
        PendingRecord.from_record(r)
        for r in records
        if not r.deleted and r.balance_due.is_positive
    ]
    return sorted(pending, key=lambda p: p.storage_start_date)


@dataclass(frozen=True, slots=True)
class DuesSummary:
    """Records owing more than a threshold, with their combined dues."""

    records: tuple[PendingRecord, ...]
    total_due: Money
    threshold: Money

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def has_dues(self) -> bool:
        return bool(self.records)

    def message(self) -> str:
        whole = self.total_due.amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return (
            f"{self.count} records have outstanding dues totaling "
            f"{self.total_due.currency} {whole}."
        )


def summarize_dues(
    records: Iterable[StorageRecord],
    threshold: Decimal | int | str = DEFAULT_DUES_THRESHOLD,
    currency: str = DEFAULT_CURRENCY,
) -> DuesSummary:
    """Digest of records whose balance exceeds ``threshold`` (small dues are noise)."""
    limit = Money.of(threshold, currency)
    over = [p for p in pending_records(records) if p.total_due > limit]
    return DuesSummary(
        records=tuple(over),
        total_due=Money.total((p.total_due for p in over), currency),
        threshold=limit,
    )
