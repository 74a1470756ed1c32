"""
Typed Exception Hierarchy for the Storage Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing errors must reach the operator precisely: "you asked for 120 bags
but record R-104 holds 80" is actionable, "invalid input" is not. Callers
catch by type, read a machine-readable ``code``, and build their message
from structured attributes rather than parsing exception text.

Example - WRONG way to handle errors:
    try:
        impact = calculate_outflow_impact(record, bags, rent, day)
    except Exception as e:
        if "more bags" in str(e):
            ...

Example - RIGHT way:
    try:
        impact = calculate_outflow_impact(record, bags, rent, day)
    except InsufficientBagsError as e:
        toast(f"Only {e.available} bags left in {e.record_id}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StorageKernelError (base)
    |
    +-- QuantityError
    |   +-- InvalidQuantityError
    |   +-- InsufficientBagsError
    |
    +-- AmountError
    |   +-- InvalidAmountError
    |   +-- AllocationMismatchError
    |
    +-- PricingError
    |   +-- MissingPricingError
    |   +-- InvalidPricingError
    |
    +-- DateError
    |   +-- InvalidWithdrawalDateError
    |
    +-- ReversalError
    |   +-- InvalidReversalError
    |
    +-- RecordStateError
    |   +-- RecordClosedError
    |   +-- InvariantViolationError
    |
    +-- RateLimitExceededError
    |
    +-- ConfigError
        +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Quantity        | INVALID_QUANTITY            | Bag count <= 0 or otherwise malformed
                | INSUFFICIENT_BAGS           | Withdrawal exceeds bags on hand
----------------|-----------------------------|-----------------------------------------
Amount          | INVALID_AMOUNT              | Negative rent / payment amount
                | ALLOCATION_MISMATCH         | Manual allocations don't sum to payment
----------------|-----------------------------|-----------------------------------------
Pricing         | MISSING_PRICING             | No tariff for the record's crop
                | INVALID_PRICING             | Negative or inverted tier prices
----------------|-----------------------------|-----------------------------------------
Date            | INVALID_WITHDRAWAL_DATE     | Before storage start / in the future
----------------|-----------------------------|-----------------------------------------
Reversal        | INVALID_REVERSAL            | Reversal exceeds withdrawn bags or rent
----------------|-----------------------------|-----------------------------------------
Record state    | RECORD_CLOSED               | Withdrawal from a closed record
                | INVARIANT_VIOLATION         | bagsStored + bagsOut != bagsIn
----------------|-----------------------------|-----------------------------------------
Rate limiting   | RATE_LIMITED                | Too many requests in the window
----------------|-----------------------------|-----------------------------------------
Config          | CONFIGURATION_ERROR         | Tariff set malformed

Expected user-input conditions are NOT exceptions: an infeasible bulk
plan is reported via ``BulkOutflowPlan.impossible`` and an overpayment via
``PaymentAllocationResult.unallocated``.
"""


class StorageKernelError(Exception):
    """
    Base exception for all storage kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STORAGE_KERNEL_ERROR"


# Quantity-related exceptions


class QuantityError(StorageKernelError):
    """Base exception for bag-quantity errors."""

    code: str = "QUANTITY_ERROR"


class InvalidQuantityError(QuantityError):
    """A bag quantity is zero, negative, or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: int, reason: str, record_id: str | None = None):
        self.field = field
        self.value = value
        self.reason = reason
        self.record_id = record_id
        where = f" on record {record_id}" if record_id else ""
        super().__init__(f"Invalid {field}={value}{where}: {reason}")


class InsufficientBagsError(QuantityError):
    """More bags requested than the record holds."""

    code: str = "INSUFFICIENT_BAGS"

    def __init__(self, record_id: str, requested: int, available: int):
        self.record_id = record_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot withdraw {requested} bags from record {record_id}: "
            f"only {available} in storage"
        )


# Amount-related exceptions


class AmountError(StorageKernelError):
    """Base exception for monetary amount errors."""

    code: str = "AMOUNT_ERROR"


class InvalidAmountError(AmountError):
    """A monetary amount is negative or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: str, reason: str, record_id: str | None = None):
        self.field = field
        self.amount = amount
        self.reason = reason
        self.record_id = record_id
        where = f" on record {record_id}" if record_id else ""
        super().__init__(f"Invalid {field}={amount}{where}: {reason}")


class AllocationMismatchError(AmountError):
    """Manual allocations do not reconcile with the payment."""

    code: str = "ALLOCATION_MISMATCH"

    def __init__(self, payment: str, allocated: str, reason: str):
        self.payment = payment
        self.allocated = allocated
        self.reason = reason
        super().__init__(
            f"Allocation of {allocated} does not match payment {payment}: {reason}"
        )


# Pricing-related exceptions


class PricingError(StorageKernelError):
    """Base exception for tariff errors."""

    code: str = "PRICING_ERROR"


class MissingPricingError(PricingError):
    """
    No pricing could be resolved for a crop.

    Raised instead of defaulting to zero rent, which would under-bill.
    """

    code: str = "MISSING_PRICING"

    def __init__(self, crop_id: str | None, record_id: str | None = None):
        self.crop_id = crop_id
        self.record_id = record_id
        where = f" (record {record_id})" if record_id else ""
        super().__init__(f"No rent pricing configured for crop {crop_id!r}{where}")


class InvalidPricingError(PricingError):
    """Tier prices are negative or the 1-year price undercuts the 6-month price."""

    code: str = "INVALID_PRICING"

    def __init__(self, price_6m: str, price_1y: str, reason: str):
        self.price_6m = price_6m
        self.price_1y = price_1y
        self.reason = reason
        super().__init__(
            f"Invalid pricing (6m={price_6m}, 1y={price_1y}): {reason}"
        )


# Date-related exceptions


class DateError(StorageKernelError):
    """Base exception for date errors."""

    code: str = "DATE_ERROR"


class InvalidWithdrawalDateError(DateError):
    """Withdrawal date precedes storage start or lies in the future."""

    code: str = "INVALID_WITHDRAWAL_DATE"

    def __init__(self, record_id: str, withdrawal_date: str, reason: str):
        self.record_id = record_id
        self.withdrawal_date = withdrawal_date
        self.reason = reason
        super().__init__(
            f"Invalid withdrawal date {withdrawal_date} for record {record_id}: {reason}"
        )


# Reversal-related exceptions


class ReversalError(StorageKernelError):
    """Base exception for withdrawal reversal errors."""

    code: str = "REVERSAL_ERROR"


class InvalidReversalError(ReversalError):
    """A reversal would drive bagsOut or totalRentBilled below zero."""

    code: str = "INVALID_REVERSAL"

    def __init__(self, record_id: str, field: str, reversed_value: str, current_value: str):
        self.record_id = record_id
        self.field = field
        self.reversed_value = reversed_value
        self.current_value = current_value
        super().__init__(
            f"Cannot reverse {field}={reversed_value} on record {record_id}: "
            f"record only has {current_value}"
        )


# Record state exceptions


class RecordStateError(StorageKernelError):
    """Base exception for record lifecycle errors."""

    code: str = "RECORD_STATE_ERROR"


class RecordClosedError(RecordStateError):
    """Withdrawal attempted on a closed record."""

    code: str = "RECORD_CLOSED"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record {record_id} is closed")


class InvariantViolationError(RecordStateError):
    """A record snapshot breaks the bag conservation invariant."""

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, record_id: str, invariant: str, detail: str):
        self.record_id = record_id
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Record {record_id} violates {invariant}: {detail}")


# Rate limiting


class RateLimitExceededError(StorageKernelError):
    """Too many requests for one action/identifier in the current window."""

    code: str = "RATE_LIMITED"

    def __init__(self, key: str, limit: int, retry_after_seconds: float):
        self.key = key
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit of {limit} exceeded for {key}; retry in {retry_after_seconds:.0f}s"
        )


# Configuration


class ConfigError(StorageKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class ConfigurationError(ConfigError):
    """A tariff configuration set is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, errors: list[str]):
        self.source = source
        self.errors = errors
        super().__init__(
            f"Configuration {source} is invalid:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
