"""
Pure domain layer.

This module contains pure data objects and domain logic with NO
dependencies on:
- Persistence
- Time/clock (except the injectable Clock itself)
- I/O

All domain objects are immutable and deterministic.
"""

from storage_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from storage_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from storage_kernel.domain.records import (
    COMPLETED_BILLING_CYCLE,
    DEFAULT_CURRENCY,
    INITIAL_BILLING_CYCLE,
    CropPricing,
    Payment,
    PaymentType,
    PendingRecord,
    RecordTransition,
    RecordUpdate,
    StorageRecord,
    WithdrawalTransaction,
)
from storage_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
    "COMPLETED_BILLING_CYCLE",
    "DEFAULT_CURRENCY",
    "INITIAL_BILLING_CYCLE",
    "CropPricing",
    "Payment",
    "PaymentType",
    "PendingRecord",
    "RecordTransition",
    "RecordUpdate",
    "StorageRecord",
    "WithdrawalTransaction",
]
