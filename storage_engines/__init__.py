"""
Module: storage_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    billing engines. This is the canonical import surface for higher
    layers (storage_services).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import storage_kernel (and sibling engine modules).
    MUST NOT import storage_services or storage_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in; services read the clock.
    - Decimal-only arithmetic through ``Money``; floats are rejected.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``storage_engines.tracer``), emitting STORAGE_ENGINE_TRACE records.

Usage:
    from storage_engines.rent import calculate_final_rent
    from storage_engines.impact import calculate_outflow_impact
    from storage_engines.allocation import allocate_payment_fifo
    from storage_engines.bulk_outflow import plan_bulk_outflow
"""

from storage_kernel.logging_config import get_logger

logger = get_logger("engines")

from storage_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationMethod,
    AllocationResult,
    AllocationTarget,
    PaymentAllocation,
    PaymentAllocationResult,
    allocate_payment_fifo,
    validate_manual_allocations,
)
from storage_engines.billing_status import RecordStatus, get_record_status
from storage_engines.bulk_outflow import (
    BulkOutflowOperation,
    BulkOutflowPlan,
    PaymentShare,
    eligible_records,
    plan_bulk_outflow,
    split_payment_by_rent,
)
from storage_engines.dues import DuesSummary, balance_due, pending_records, summarize_dues
from storage_engines.impact import (
    OutflowImpact,
    RevisedTransaction,
    TransactionSnapshot,
    calculate_outflow_impact,
    calculate_reversal_impact,
    calculate_update_impact,
    reopened_billing_cycle,
)
from storage_engines.rent import RentQuote, add_months, calculate_final_rent, months_stored
from storage_engines.tariff import MissingPricingPolicy, TariffResolver, resolve_tariff
from storage_engines.tracer import traced_engine

__all__ = [
    # Allocation
    "AllocationEngine",
    "AllocationLine",
    "AllocationMethod",
    "AllocationResult",
    "AllocationTarget",
    "PaymentAllocation",
    "PaymentAllocationResult",
    "allocate_payment_fifo",
    "validate_manual_allocations",
    # Billing status
    "RecordStatus",
    "get_record_status",
    # Bulk outflow
    "BulkOutflowOperation",
    "BulkOutflowPlan",
    "PaymentShare",
    "eligible_records",
    "plan_bulk_outflow",
    "split_payment_by_rent",
    # Dues
    "DuesSummary",
    "balance_due",
    "pending_records",
    "summarize_dues",
    # Impact
    "OutflowImpact",
    "RevisedTransaction",
    "TransactionSnapshot",
    "calculate_outflow_impact",
    "calculate_reversal_impact",
    "calculate_update_impact",
    "reopened_billing_cycle",
    # Rent
    "RentQuote",
    "add_months",
    "calculate_final_rent",
    "months_stored",
    # Tariff
    "MissingPricingPolicy",
    "TariffResolver",
    "resolve_tariff",
    # Tracer
    "traced_engine",
]
