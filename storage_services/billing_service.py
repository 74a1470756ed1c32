"""
storage_services.billing_service -- Outflow, payment and bulk workflows.

Responsibility:
    Compose the pure billing engines into the operator workflows of a
    storage warehouse: pricing and recording a withdrawal, editing or
    reverting one, settling dues with a bulk payment, and planning and
    executing a bulk outflow. Every workflow returns a ``BillingOutcome``
    describing what the persistence collaborator must write; nothing is
    persisted here.

Architecture position:
    Services -- orchestration. Reads the clock, applies rate limits,
    resolves tariffs and binds the log context; the engines below it stay
    pure.

Invariants enforced:
    - Withdrawal dates are never in the future (per the injected clock)
      and never before the record's storage start.
    - Bulk payments never allocate more than the customer owes: FIFO
      overallocation is rejected with OVERALLOCATED.
    - Bulk outflows with an infeasible target are rejected with INFEASIBLE
      and produce no updates.
    - Typed engine errors are returned as a status, never raised; unexpected
      exceptions propagate.

Usage:
    service = BillingService.from_config(get_active_config(), clock=clock)
    outcome = service.process_outflow(record, 20, date(2024, 8, 1))
    if outcome.is_success:
        persist(outcome.record_updates, outcome.withdrawals, outcome.payments)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from storage_config import BillingConfig, build_tariff_resolver
from storage_engines.allocation import (
    PaymentAllocationResult,
    allocate_payment_fifo,
    validate_manual_allocations,
)
from storage_engines.billing_status import RecordStatus, get_record_status
from storage_engines.bulk_outflow import BulkOutflowPlan, plan_bulk_outflow, split_payment_by_rent
from storage_engines.dues import DEFAULT_DUES_THRESHOLD, DuesSummary, pending_records, summarize_dues
from storage_engines.impact import (
    RevisedTransaction,
    TransactionSnapshot,
    calculate_outflow_impact,
    calculate_reversal_impact,
    calculate_update_impact,
)
from storage_engines.rent import DEFAULT_MINIMUM_MONTHS, RentQuote, calculate_final_rent
from storage_engines.tariff import TariffResolver
from storage_kernel.domain.clock import Clock, SystemClock
from storage_kernel.domain.records import (
    COMPLETED_BILLING_CYCLE,
    DEFAULT_CURRENCY,
    INITIAL_BILLING_CYCLE,
    Payment,
    PaymentType,
    RecordUpdate,
    StorageRecord,
    WithdrawalTransaction,
)
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import (
    AllocationMismatchError,
    DateError,
    InsufficientBagsError,
    InvalidAmountError,
    InvalidPricingError,
    InvalidWithdrawalDateError,
    InvariantViolationError,
    MissingPricingError,
    QuantityError,
    RateLimitExceededError,
    RecordClosedError,
    ReversalError,
    StorageKernelError,
)
from storage_kernel.logging_config import LogContext, get_logger
from storage_services.rate_limit import RateLimiter, build_rate_limiters

logger = get_logger("services.billing")

ACTION_OUTFLOW = "outflow"
ACTION_EDIT_WITHDRAWAL = "edit_withdrawal"
ACTION_REVERSE_WITHDRAWAL = "reverse_withdrawal"
ACTION_BULK_PAYMENT = "bulk_payment"
ACTION_BULK_OUTFLOW = "bulk_outflow"


class BillingStatus(str, Enum):
    """Status of a billing workflow."""

    OK = "ok"
    INVALID_QUANTITY = "invalid_quantity"
    INSUFFICIENT_BAGS = "insufficient_bags"
    INVALID_AMOUNT = "invalid_amount"
    ALLOCATION_MISMATCH = "allocation_mismatch"
    MISSING_PRICING = "missing_pricing"
    INVALID_PRICING = "invalid_pricing"
    INVALID_DATE = "invalid_date"
    INVALID_REVERSAL = "invalid_reversal"
    RECORD_CLOSED = "record_closed"
    INVARIANT_VIOLATION = "invariant_violation"
    RATE_LIMITED = "rate_limited"
    NO_PENDING_DUES = "no_pending_dues"
    OVERALLOCATED = "overallocated"
    INFEASIBLE = "infeasible"


class PaymentStrategy(str, Enum):
    """How a bulk payment is spread over pending records."""

    FIFO = "fifo"
    MANUAL = "manual"


# Most specific first: isinstance picks the first match.
_ERROR_STATUS: tuple[tuple[type[StorageKernelError], BillingStatus], ...] = (
    (InsufficientBagsError, BillingStatus.INSUFFICIENT_BAGS),
    (QuantityError, BillingStatus.INVALID_QUANTITY),
    (AllocationMismatchError, BillingStatus.ALLOCATION_MISMATCH),
    (InvalidAmountError, BillingStatus.INVALID_AMOUNT),
    (MissingPricingError, BillingStatus.MISSING_PRICING),
    (InvalidPricingError, BillingStatus.INVALID_PRICING),
    (DateError, BillingStatus.INVALID_DATE),
    (ReversalError, BillingStatus.INVALID_REVERSAL),
    (RecordClosedError, BillingStatus.RECORD_CLOSED),
    (InvariantViolationError, BillingStatus.INVARIANT_VIOLATION),
    (RateLimitExceededError, BillingStatus.RATE_LIMITED),
)


def status_for_error(exc: StorageKernelError) -> BillingStatus:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    raise exc


@dataclass(frozen=True)
class RecordWithdrawal:
    """A withdrawal transaction to write (or soft-delete) for one record."""

    record_id: str
    transaction: WithdrawalTransaction


@dataclass(frozen=True)
class RecordPayment:
    """A payment to insert against one record."""

    record_id: str
    payment: Payment


@dataclass(frozen=True)
class BillingOutcome:
    """
    Result of a billing workflow.

    On success the persistence collaborator applies ``record_updates``,
    inserts ``withdrawals`` and ``payments`` and soft-deletes
    ``reversed_withdrawals``, all in one transaction. On failure only
    ``status``, ``message`` and ``error_code`` (plus any preview data such
    as ``plan`` or ``allocation``) are set.
    """

    status: BillingStatus
    message: str | None = None
    error_code: str | None = None
    record_updates: tuple[RecordUpdate, ...] = ()
    withdrawals: tuple[RecordWithdrawal, ...] = ()
    reversed_withdrawals: tuple[RecordWithdrawal, ...] = ()
    payments: tuple[RecordPayment, ...] = ()
    quote: RentQuote | None = None
    plan: BulkOutflowPlan | None = None
    allocation: PaymentAllocationResult | None = None

    @property
    def is_success(self) -> bool:
        return self.status is BillingStatus.OK

    @property
    def total_paid(self) -> Money | None:
        if not self.payments:
            return None
        currency = self.payments[0].payment.amount.currency
        return Money.total((p.payment.amount for p in self.payments), currency)


class BillingService:
    """
    Orchestrates storage billing workflows.

    Contract:
        Accepts record snapshots and operator input, runs the engines and
        returns a ``BillingOutcome``. Typed engine errors become a status
        with the error's code and message; anything else propagates.

    Non-goals:
        - Does NOT persist, fetch records, or serialize concurrent writers.
          Two outcomes computed from the same snapshot must not both be
          applied.
    """

    def __init__(
        self,
        tariff_resolver: TariffResolver,
        clock: Clock | None = None,
        rate_limiters: Mapping[str, RateLimiter] | None = None,
        minimum_months: int = DEFAULT_MINIMUM_MONTHS,
        initial_billing_cycle: str = INITIAL_BILLING_CYCLE,
        completed_billing_cycle: str = COMPLETED_BILLING_CYCLE,
        dues_threshold: Decimal = DEFAULT_DUES_THRESHOLD,
        currency: str = DEFAULT_CURRENCY,
    ):
        self._tariffs = tariff_resolver
        self._clock = clock or SystemClock()
        self._rate_limiters = dict(rate_limiters or {})
        self._minimum_months = minimum_months
        self._initial_billing_cycle = initial_billing_cycle
        self._completed_billing_cycle = completed_billing_cycle
        self._dues_threshold = dues_threshold
        self._currency = currency

    @classmethod
    def from_config(cls, config: BillingConfig, clock: Clock | None = None) -> BillingService:
        """Build a service from a validated ``BillingConfig``."""
        clock = clock or SystemClock()
        limiters = build_rate_limiters(
            {rule.action: (rule.limit, rule.window_seconds) for rule in config.rate_limits},
            clock,
        )
        return cls(
            tariff_resolver=build_tariff_resolver(config),
            clock=clock,
            rate_limiters=limiters,
            minimum_months=config.minimum_months,
            initial_billing_cycle=config.initial_billing_cycle,
            completed_billing_cycle=config.completed_billing_cycle,
            dues_threshold=config.dues_threshold,
            currency=config.currency,
        )

    # ------------------------------------------------------------------
    # Single-record workflows
    # ------------------------------------------------------------------

    def preview_outflow(
        self,
        record: StorageRecord,
        bags: int,
        withdrawal_date: date,
    ) -> BillingOutcome:
        """Rent a withdrawal would be charged; nothing to persist."""

        def work() -> BillingOutcome:
            return BillingOutcome(
                status=BillingStatus.OK,
                quote=self._quote(record, withdrawal_date, bags),
            )

        return self._execute("preview_outflow", work, record_id=record.record_id)

    def process_outflow(
        self,
        record: StorageRecord,
        bags: int,
        withdrawal_date: date,
        amount_paid: Money | None = None,
        final_rent: Money | None = None,
        actor_id: str | None = None,
    ) -> BillingOutcome:
        """
        Withdraw ``bags`` bags from ``record`` on ``withdrawal_date``.

        ``final_rent`` lets the operator override the computed rent; when
        omitted the tariff rent is charged. A positive ``amount_paid`` is
        recorded as a rent payment dated on the withdrawal.
        """

        def work() -> BillingOutcome:
            self._throttle(ACTION_OUTFLOW, record.record_id)
            if record.is_closed or record.deleted:
                raise RecordClosedError(record.record_id)
            self._check_not_future(record, withdrawal_date)

            quote = self._quote(record, withdrawal_date, bags)
            rent = final_rent if final_rent is not None else quote.rent
            impact = calculate_outflow_impact(
                record, bags, rent, withdrawal_date, self._completed_billing_cycle
            )
            transaction = WithdrawalTransaction(
                bags_withdrawn=bags,
                rent_charged=rent,
                withdrawal_date=withdrawal_date,
            )
            payments = self._payment_now(
                record, amount_paid, withdrawal_date, "Rent paid during outflow"
            )

            logger.info("outflow_processed", extra={
                "bags": bags,
                "rent": str(rent.amount),
                "closed": impact.is_closed,
                "paid_now": str(amount_paid.amount) if amount_paid else "0",
            })

            return BillingOutcome(
                status=BillingStatus.OK,
                message=f"Withdrew {bags} bags; rent {rent}.",
                record_updates=(impact.updates,),
                withdrawals=(RecordWithdrawal(record.record_id, transaction),),
                payments=payments,
                quote=quote,
            )

        return self._execute(
            ACTION_OUTFLOW, work,
            record_id=record.record_id, customer_id=record.customer_id, actor_id=actor_id,
        )

    def edit_withdrawal(
        self,
        record: StorageRecord,
        transaction: WithdrawalTransaction,
        new_bags: int,
        new_date: date,
        new_rent: Money | None = None,
        actor_id: str | None = None,
    ) -> BillingOutcome:
        """
        Correct an earlier withdrawal's bags, date and rent.

        When ``new_rent`` is omitted the rent is re-priced for ``new_bags``
        on ``new_date`` as if the original withdrawal had not happened.
        """

        def work() -> BillingOutcome:
            self._throttle(ACTION_EDIT_WITHDRAWAL, actor_id)
            self._check_not_future(record, new_date)

            rent = new_rent
            if rent is None:
                # Price against the record with the original bags put back.
                restored = calculate_reversal_impact(
                    record,
                    transaction.bags_withdrawn,
                    transaction.rent_charged,
                    self._initial_billing_cycle,
                    self._completed_billing_cycle,
                ).apply_to(record)
                rent = self._quote(restored, new_date, new_bags).rent

            update = calculate_update_impact(
                record,
                TransactionSnapshot(bags=transaction.bags_withdrawn, rent=transaction.rent_charged),
                RevisedTransaction(bags=new_bags, rent=rent, withdrawal_date=new_date),
                self._initial_billing_cycle,
                self._completed_billing_cycle,
            )
            revised = WithdrawalTransaction(
                bags_withdrawn=new_bags,
                rent_charged=rent,
                withdrawal_date=new_date,
                transaction_id=transaction.transaction_id,
            )

            logger.info("withdrawal_edited", extra={
                "old_bags": transaction.bags_withdrawn,
                "new_bags": new_bags,
                "old_rent": str(transaction.rent_charged.amount),
                "new_rent": str(rent.amount),
                "transition": update.transition.value,
            })

            return BillingOutcome(
                status=BillingStatus.OK,
                message="Outflow updated successfully.",
                record_updates=(update,),
                withdrawals=(RecordWithdrawal(record.record_id, revised),),
            )

        return self._execute(
            ACTION_EDIT_WITHDRAWAL, work, record_id=record.record_id, actor_id=actor_id
        )

    def reverse_withdrawal(
        self,
        record: StorageRecord,
        transaction: WithdrawalTransaction,
        actor_id: str | None = None,
    ) -> BillingOutcome:
        """Undo a withdrawal: bags and rent go back, the record reopens."""

        def work() -> BillingOutcome:
            self._throttle(ACTION_REVERSE_WITHDRAWAL, actor_id)
            update = calculate_reversal_impact(
                record,
                transaction.bags_withdrawn,
                transaction.rent_charged,
                self._initial_billing_cycle,
                self._completed_billing_cycle,
            )

            logger.info("withdrawal_reversed", extra={
                "bags": transaction.bags_withdrawn,
                "rent": str(transaction.rent_charged.amount),
            })

            return BillingOutcome(
                status=BillingStatus.OK,
                message="Outflow reverted successfully.",
                record_updates=(update,),
                reversed_withdrawals=(RecordWithdrawal(record.record_id, transaction),),
            )

        return self._execute(
            ACTION_REVERSE_WITHDRAWAL, work, record_id=record.record_id, actor_id=actor_id
        )

    def record_status(self, record: StorageRecord) -> RecordStatus:
        """Billing phase of ``record`` today."""
        pricing = self._tariffs.resolve(record.crop_id, record.record_id)
        return get_record_status(
            record, self._clock.today(), pricing, self._initial_billing_cycle
        )

    def dues_digest(self, records: Iterable[StorageRecord]) -> DuesSummary:
        """Records owing more than the configured threshold."""
        return summarize_dues(records, self._dues_threshold, self._currency)

    # ------------------------------------------------------------------
    # Bulk workflows
    # ------------------------------------------------------------------

    def process_bulk_payment(
        self,
        records: Sequence[StorageRecord],
        amount: Money,
        payment_date: date,
        strategy: PaymentStrategy = PaymentStrategy.FIFO,
        manual_allocations: Mapping[str, Money] | None = None,
        customer_id: str | None = None,
    ) -> BillingOutcome:
        """
        Spread one payment over a customer's records with dues.

        FIFO settles the oldest records first and rejects a payment larger
        than the total dues (OVERALLOCATED). MANUAL takes the operator's
        per-record amounts, which must add up to the payment.
        """

        def work() -> BillingOutcome:
            self._throttle(ACTION_BULK_PAYMENT, customer_id)
            if not amount.is_positive:
                raise InvalidAmountError("payment_amount", str(amount.amount), "must be positive")

            method = PaymentStrategy(strategy)
            pending = pending_records(records)
            if not pending:
                return BillingOutcome(
                    status=BillingStatus.NO_PENDING_DUES,
                    message="No pending dues found for this customer.",
                )

            match method:
                case PaymentStrategy.FIFO:
                    allocation = allocate_payment_fifo(pending, amount)
                    if allocation.unallocated.amount > amount.currency.rounding_tolerance:
                        logger.warning("bulk_payment_overallocated", extra={
                            "amount": str(amount.amount),
                            "unallocated": str(allocation.unallocated.amount),
                        })
                        return BillingOutcome(
                            status=BillingStatus.OVERALLOCATED,
                            message=(
                                f"Payment amount ({amount}) exceeds total dues "
                                f"({allocation.total_allocated})."
                            ),
                            allocation=allocation,
                        )
                case PaymentStrategy.MANUAL:
                    allocation = validate_manual_allocations(
                        pending, manual_allocations or {}, amount
                    )

            notes = f"Bulk payment - {amount} allocated via {method.value.upper()}"
            payments = tuple(
                RecordPayment(
                    record_id=line.record_id,
                    payment=Payment(
                        amount=line.amount,
                        payment_date=payment_date,
                        payment_type=PaymentType.RENT,
                        notes=notes,
                    ),
                )
                for line in allocation.allocations
                if line.amount.is_positive
            )

            logger.info("bulk_payment_processed", extra={
                "amount": str(amount.amount),
                "strategy": method.value,
                "records_updated": len(payments),
            })

            return BillingOutcome(
                status=BillingStatus.OK,
                message=f"Successfully processed {amount} across {len(payments)} record(s).",
                payments=payments,
                allocation=allocation,
            )

        return self._execute(ACTION_BULK_PAYMENT, work, customer_id=customer_id)

    def plan_bulk_outflow(
        self,
        records: Sequence[StorageRecord],
        commodity: str,
        target_bags: int,
        as_of: date,
        excluded_record_ids: Iterable[str] = frozenset(),
    ) -> BillingOutcome:
        """Preview a bulk outflow; INFEASIBLE when too few bags are available."""

        def work() -> BillingOutcome:
            plan = self._plan(records, commodity, target_bags, as_of, excluded_record_ids)
            if plan.impossible:
                return self._infeasible(plan)
            return BillingOutcome(status=BillingStatus.OK, plan=plan)

        return self._execute("plan_bulk_outflow", work)

    def process_bulk_outflow(
        self,
        records: Sequence[StorageRecord],
        commodity: str,
        target_bags: int,
        withdrawal_date: date,
        amount_paid: Money | None = None,
        excluded_record_ids: Iterable[str] = frozenset(),
        customer_id: str | None = None,
    ) -> BillingOutcome:
        """
        Withdraw ``target_bags`` bags of ``commodity`` oldest record first.

        Each drawn record gets its own update and withdrawal transaction; a
        payment taken now is split across them by rent.
        """

        def work() -> BillingOutcome:
            self._throttle(ACTION_BULK_OUTFLOW, customer_id)
            if withdrawal_date > self._clock.today():
                raise InvalidWithdrawalDateError(
                    None, withdrawal_date.isoformat(), "date cannot be in the future"
                )
            if amount_paid is not None and amount_paid.is_negative:
                raise InvalidAmountError("amount_paid", str(amount_paid.amount), "cannot be negative")

            plan = self._plan(records, commodity, target_bags, withdrawal_date, excluded_record_ids)
            if plan.impossible:
                return self._infeasible(plan)

            updates: list[RecordUpdate] = []
            withdrawals: list[RecordWithdrawal] = []
            for op in plan.operations:
                impact = calculate_outflow_impact(
                    op.record, op.take, op.rent, withdrawal_date, self._completed_billing_cycle
                )
                updates.append(impact.updates)
                withdrawals.append(
                    RecordWithdrawal(
                        op.record.record_id,
                        WithdrawalTransaction(
                            bags_withdrawn=op.take,
                            rent_charged=op.rent,
                            withdrawal_date=withdrawal_date,
                        ),
                    )
                )

            shares = split_payment_by_rent(plan, amount_paid) if amount_paid is not None else ()
            payments = tuple(
                RecordPayment(
                    record_id=share.record_id,
                    payment=Payment(
                        amount=share.amount,
                        payment_date=withdrawal_date,
                        payment_type=PaymentType.RENT,
                        notes="Bulk Outflow Payment",
                    ),
                )
                for share in shares
            )

            logger.info("bulk_outflow_processed", extra={
                "commodity": commodity,
                "bags": target_bags,
                "records_processed": len(updates),
                "total_rent": str(plan.total_rent.amount),
            })

            return BillingOutcome(
                status=BillingStatus.OK,
                message=f"Withdrew {target_bags} bags across {len(updates)} record(s).",
                record_updates=tuple(updates),
                withdrawals=tuple(withdrawals),
                payments=payments,
                plan=plan,
            )

        return self._execute(ACTION_BULK_OUTFLOW, work, customer_id=customer_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(
        self,
        action: str,
        work: Callable[[], BillingOutcome],
        **context: str | None,
    ) -> BillingOutcome:
        with LogContext.bind(correlation_id=str(uuid4()), **context):
            t0 = time.monotonic()
            try:
                outcome = work()
            except StorageKernelError as exc:
                status = status_for_error(exc)
                logger.warning("billing_rejected", extra={
                    "action": action,
                    "status": status.value,
                    "error_code": exc.code,
                    "reason": str(exc),
                })
                return BillingOutcome(status=status, message=str(exc), error_code=exc.code)

            logger.debug("billing_completed", extra={
                "action": action,
                "status": outcome.status.value,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })
            return outcome

    def _throttle(self, action: str, identifier: str | None) -> None:
        limiter = self._rate_limiters.get(action)
        if limiter is not None:
            limiter.check(action, identifier)

    def _check_not_future(self, record: StorageRecord, withdrawal_date: date) -> None:
        if withdrawal_date > self._clock.today():
            raise InvalidWithdrawalDateError(
                record.record_id, withdrawal_date.isoformat(), "date cannot be in the future"
            )

    def _quote(self, record: StorageRecord, as_of: date, bags: int) -> RentQuote:
        pricing = self._tariffs.resolve(record.crop_id, record.record_id)
        return calculate_final_rent(record, as_of, bags, pricing, self._minimum_months)

    def _plan(
        self,
        records: Sequence[StorageRecord],
        commodity: str,
        target_bags: int,
        as_of: date,
        excluded_record_ids: Iterable[str],
    ) -> BulkOutflowPlan:
        return plan_bulk_outflow(
            records,
            commodity,
            target_bags,
            as_of,
            excluded_record_ids=frozenset(excluded_record_ids),
            pricing=self._tariffs.resolve(commodity),
            minimum_months=self._minimum_months,
            currency=self._currency,
        )

    @staticmethod
    def _infeasible(plan: BulkOutflowPlan) -> BillingOutcome:
        logger.warning("bulk_outflow_infeasible", extra={
            "requested": plan.requested,
            "available": plan.available,
        })
        return BillingOutcome(
            status=BillingStatus.INFEASIBLE,
            message=(
                f"Requested {plan.requested} bags, but only {plan.available} are available."
            ),
            plan=plan,
        )

    @staticmethod
    def _payment_now(
        record: StorageRecord,
        amount_paid: Money | None,
        payment_date: date,
        notes: str,
    ) -> tuple[RecordPayment, ...]:
        if amount_paid is None or amount_paid.is_zero:
            return ()
        if amount_paid.is_negative:
            raise InvalidAmountError(
                "amount_paid", str(amount_paid.amount), "cannot be negative",
                record_id=record.record_id,
            )
        return (
            RecordPayment(
                record_id=record.record_id,
                payment=Payment(
                    amount=amount_paid,
                    payment_date=payment_date,
                    payment_type=PaymentType.RENT,
                    notes=notes,
                ),
            ),
        )
