"""
storage_services -- Billing workflow orchestration.

Composes the pure engines with the clock, tariff configuration, rate
limiting and request-scoped logging. Returns persistence instructions;
never persists.
"""

from storage_services.billing_service import (
    BillingOutcome,
    BillingService,
    BillingStatus,
    PaymentStrategy,
    RecordPayment,
    RecordWithdrawal,
    status_for_error,
)
from storage_services.rate_limit import RateLimiter, build_rate_limiters

__all__ = [
    "BillingOutcome",
    "BillingService",
    "BillingStatus",
    "PaymentStrategy",
    "RateLimiter",
    "RecordPayment",
    "RecordWithdrawal",
    "build_rate_limiters",
    "status_for_error",
]
