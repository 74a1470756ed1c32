"""
Tests for BillingService workflows.

The service is run against the standard paddy/wheat tariff and a clock
fixed at 2024-12-31. Outcomes are inspected as persistence instructions;
nothing is written anywhere.
"""

from datetime import date

import pytest

from storage_config import get_active_config
from storage_config.loader import parse_billing_config
from storage_kernel.domain.records import (
    COMPLETED_BILLING_CYCLE,
    INITIAL_BILLING_CYCLE,
    PaymentType,
    RecordTransition,
    WithdrawalTransaction,
)
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import MissingPricingError
from storage_services import BillingService, BillingStatus, PaymentStrategy, RateLimiter


def inr(amount) -> Money:
    return Money.of(str(amount), "INR")


@pytest.fixture
def service(tariff_resolver, deterministic_clock) -> BillingService:
    return BillingService(tariff_resolver, clock=deterministic_clock)


@pytest.fixture
def closed_record(record_factory):
    """50 bags from 2024-01-01, all withdrawn on 2024-02-01 for 1800."""
    return record_factory(
        bags_stored=0,
        bags_out=50,
        total_rent_billed=inr(1800),
        storage_end_date=date(2024, 2, 1),
        billing_cycle=COMPLETED_BILLING_CYCLE,
    )


# =============================================================================
# Single-record outflow
# =============================================================================


class TestPreviewOutflow:

    def test_quotes_without_updates(self, service, record_factory):
        outcome = service.preview_outflow(record_factory(), 50, date(2024, 2, 1))

        assert outcome.is_success
        assert outcome.quote.rent == inr(1800)
        assert outcome.quote.months_stored == 1
        assert outcome.record_updates == ()
        assert outcome.withdrawals == ()

    def test_missing_pricing_is_reported(self, service, record_factory):
        outcome = service.preview_outflow(
            record_factory(crop_id="soybean"), 10, date(2024, 2, 1)
        )

        assert outcome.status is BillingStatus.MISSING_PRICING
        assert outcome.error_code == MissingPricingError.code
        assert "soybean" in outcome.message


class TestProcessOutflow:
    """Pricing and recording a withdrawal."""

    def test_partial_withdrawal(self, service, record_factory):
        record = record_factory()
        outcome = service.process_outflow(record, 20, date(2024, 2, 1))

        assert outcome.is_success
        (update,) = outcome.record_updates
        assert update.bags_stored == 30
        assert update.bags_out == 20
        assert update.total_rent_billed == inr(720)
        assert update.transition is RecordTransition.NONE

        (withdrawal,) = outcome.withdrawals
        assert withdrawal.record_id == record.record_id
        assert withdrawal.transaction.bags_withdrawn == 20
        assert withdrawal.transaction.rent_charged == inr(720)
        assert outcome.payments == ()

    def test_full_withdrawal_after_six_months_closes_at_year_rate(
        self, service, record_factory
    ):
        outcome = service.process_outflow(record_factory(), 50, date(2024, 8, 1))

        (update,) = outcome.record_updates
        assert update.total_rent_billed == inr(2750)
        assert update.transition is RecordTransition.CLOSE
        assert update.storage_end_date == date(2024, 8, 1)
        assert update.billing_cycle == COMPLETED_BILLING_CYCLE

    def test_rent_override_and_payment(self, service, record_factory):
        outcome = service.process_outflow(
            record_factory(hamali="200"),
            10,
            date(2024, 3, 1),
            amount_paid=inr(300),
            final_rent=inr(250),
        )

        assert outcome.is_success
        assert outcome.record_updates[0].total_rent_billed == inr(250)
        assert outcome.quote.rent == inr(360)
        (payment,) = outcome.payments
        assert payment.payment.amount == inr(300)
        assert payment.payment.payment_date == date(2024, 3, 1)
        assert payment.payment.payment_type is PaymentType.RENT
        assert outcome.total_paid == inr(300)

    def test_zero_payment_records_nothing(self, service, record_factory):
        outcome = service.process_outflow(
            record_factory(), 10, date(2024, 3, 1), amount_paid=inr(0)
        )
        assert outcome.payments == ()
        assert outcome.total_paid is None

    def test_more_bags_than_stored(self, service, record_factory):
        outcome = service.process_outflow(record_factory(), 60, date(2024, 3, 1))

        assert outcome.status is BillingStatus.INSUFFICIENT_BAGS
        assert outcome.error_code == "INSUFFICIENT_BAGS"
        assert outcome.record_updates == ()

    def test_zero_bags(self, service, record_factory):
        outcome = service.process_outflow(record_factory(), 0, date(2024, 3, 1))
        assert outcome.status is BillingStatus.INVALID_QUANTITY

    def test_future_date_rejected(self, service, record_factory):
        outcome = service.process_outflow(record_factory(), 10, date(2025, 1, 5))

        assert outcome.status is BillingStatus.INVALID_DATE
        assert outcome.error_code == "INVALID_WITHDRAWAL_DATE"

    def test_date_before_storage_start_rejected(self, service, record_factory):
        outcome = service.process_outflow(record_factory(), 10, date(2023, 12, 31))
        assert outcome.status is BillingStatus.INVALID_DATE

    def test_closed_record_rejected(self, service, closed_record):
        outcome = service.process_outflow(closed_record, 1, date(2024, 3, 1))
        assert outcome.status is BillingStatus.RECORD_CLOSED

    def test_negative_payment_rejected(self, service, record_factory):
        outcome = service.process_outflow(
            record_factory(), 10, date(2024, 3, 1), amount_paid=inr(-5)
        )
        assert outcome.status is BillingStatus.INVALID_AMOUNT

    def test_rate_limited(self, tariff_resolver, deterministic_clock, record_factory):
        service = BillingService(
            tariff_resolver,
            clock=deterministic_clock,
            rate_limiters={"outflow": RateLimiter(1, 60, deterministic_clock)},
        )
        record = record_factory()

        assert service.process_outflow(record, 10, date(2024, 3, 1)).is_success
        outcome = service.process_outflow(record, 10, date(2024, 3, 1))

        assert outcome.status is BillingStatus.RATE_LIMITED
        assert outcome.error_code == "RATE_LIMITED"

    def test_logs_success_and_rejection(self, service, record_factory, captured_logs):
        record = record_factory()
        service.process_outflow(record, 10, date(2024, 3, 1))
        service.process_outflow(record, 99, date(2024, 3, 1))

        logs = captured_logs()
        processed = [r for r in logs if r["message"] == "outflow_processed"]
        rejected = [r for r in logs if r["message"] == "billing_rejected"]
        assert processed[0]["record_id"] == record.record_id
        assert processed[0]["bags"] == 10
        assert rejected[0]["level"] == "WARNING"
        assert rejected[0]["error_code"] == "INSUFFICIENT_BAGS"


# =============================================================================
# Edits and reversals
# =============================================================================


class TestEditWithdrawal:

    @pytest.fixture
    def withdrawn(self, record_factory):
        record = record_factory(bags_stored=30, bags_out=20, total_rent_billed=inr(720))
        transaction = WithdrawalTransaction(20, inr(720), date(2024, 2, 1), "tx-1")
        return record, transaction

    def test_reprices_new_quantity(self, service, withdrawn):
        record, transaction = withdrawn
        outcome = service.edit_withdrawal(record, transaction, 30, date(2024, 2, 1))

        assert outcome.is_success
        (update,) = outcome.record_updates
        assert update.bags_stored == 20
        assert update.bags_out == 30
        assert update.total_rent_billed == inr(1080)
        assert update.transition is RecordTransition.NONE
        (revised,) = outcome.withdrawals
        assert revised.transaction.transaction_id == "tx-1"
        assert revised.transaction.rent_charged == inr(1080)

    def test_edit_that_empties_record_closes_it(self, service, withdrawn):
        record, transaction = withdrawn
        outcome = service.edit_withdrawal(record, transaction, 50, date(2024, 2, 10))

        (update,) = outcome.record_updates
        assert update.bags_stored == 0
        assert update.total_rent_billed == inr(1800)
        assert update.transition is RecordTransition.CLOSE
        assert update.storage_end_date == date(2024, 2, 10)

    def test_explicit_rent(self, service, withdrawn):
        record, transaction = withdrawn
        outcome = service.edit_withdrawal(
            record, transaction, 10, date(2024, 2, 1), new_rent=inr(100)
        )

        (update,) = outcome.record_updates
        assert update.bags_stored == 40
        assert update.total_rent_billed == inr(100)

    def test_future_date_rejected(self, service, withdrawn):
        record, transaction = withdrawn
        outcome = service.edit_withdrawal(record, transaction, 20, date(2025, 2, 1))
        assert outcome.status is BillingStatus.INVALID_DATE


class TestReverseWithdrawal:

    def test_reopens_closed_record(self, service, closed_record):
        transaction = WithdrawalTransaction(50, inr(1800), date(2024, 2, 1), "tx-9")
        outcome = service.reverse_withdrawal(closed_record, transaction)

        assert outcome.is_success
        (update,) = outcome.record_updates
        assert update.bags_stored == 50
        assert update.bags_out == 0
        assert update.total_rent_billed == inr(0)
        assert update.transition is RecordTransition.REOPEN
        assert update.storage_end_date is None
        assert update.billing_cycle == INITIAL_BILLING_CYCLE
        assert outcome.reversed_withdrawals[0].transaction is transaction

    def test_rent_beyond_billed_rejected(self, service, closed_record):
        transaction = WithdrawalTransaction(50, inr(2000), date(2024, 2, 1))
        outcome = service.reverse_withdrawal(closed_record, transaction)

        assert outcome.status is BillingStatus.INVALID_REVERSAL
        assert outcome.record_updates == ()


class TestRecordViews:

    def test_record_status_uses_clock(self, service, record_factory):
        status = service.record_status(record_factory())

        assert status.status == "Active - 1-Year Rollover"
        assert status.next_billing_date == date(2025, 1, 1)
        assert status.current_rate == inr(55)
        assert status.has_alert

    def test_dues_digest_uses_threshold(self, service, record_factory):
        digest = service.dues_digest([
            record_factory("a", hamali="150"),
            record_factory("b", hamali="50"),
        ])

        assert digest.count == 1
        assert digest.records[0].record_id == "a"
        assert digest.total_due == inr(150)


# =============================================================================
# Bulk payment
# =============================================================================


class TestProcessBulkPayment:

    @pytest.fixture
    def owing(self, record_factory):
        """Jan record owes 1000, Feb record owes 2000 (hamali only)."""
        return [
            record_factory("feb", start=date(2024, 2, 1), hamali="2000", record_number="2"),
            record_factory("jan", start=date(2024, 1, 1), hamali="1000", record_number="1"),
        ]

    def test_fifo_settles_oldest_first(self, service, owing):
        outcome = service.process_bulk_payment(owing, inr(1500), date(2024, 6, 1))

        assert outcome.is_success
        assert [(p.record_id, p.payment.amount) for p in outcome.payments] == [
            ("jan", inr(1000)),
            ("feb", inr(500)),
        ]
        assert all("FIFO" in p.payment.notes for p in outcome.payments)
        assert outcome.allocation.unallocated == inr(0)

    def test_fifo_overpayment_rejected(self, service, owing):
        outcome = service.process_bulk_payment(owing, inr(4000), date(2024, 6, 1))

        assert outcome.status is BillingStatus.OVERALLOCATED
        assert outcome.payments == ()
        assert outcome.allocation.unallocated == inr(1000)

    def test_manual_allocation(self, service, owing):
        outcome = service.process_bulk_payment(
            owing,
            inr(1500),
            date(2024, 6, 1),
            strategy=PaymentStrategy.MANUAL,
            manual_allocations={"jan": inr(500), "feb": inr(1000)},
        )

        assert outcome.is_success
        paid = {p.record_id: p.payment.amount for p in outcome.payments}
        assert paid == {"jan": inr(500), "feb": inr(1000)}

    def test_manual_allocation_must_match_payment(self, service, owing):
        outcome = service.process_bulk_payment(
            owing,
            inr(1500),
            date(2024, 6, 1),
            strategy="manual",
            manual_allocations={"jan": inr(500)},
        )
        assert outcome.status is BillingStatus.ALLOCATION_MISMATCH

    def test_manual_allocation_above_record_due(self, service, owing):
        outcome = service.process_bulk_payment(
            owing,
            inr(1500),
            date(2024, 6, 1),
            strategy=PaymentStrategy.MANUAL,
            manual_allocations={"jan": inr(1500)},
        )

        assert outcome.status is BillingStatus.INVALID_AMOUNT
        assert outcome.error_code == "INVALID_AMOUNT"
        assert "jan" in outcome.message
        assert outcome.payments == ()

    def test_no_pending_dues(self, service, record_factory):
        outcome = service.process_bulk_payment(
            [record_factory()], inr(100), date(2024, 6, 1)
        )
        assert outcome.status is BillingStatus.NO_PENDING_DUES

    def test_non_positive_amount(self, service, owing):
        outcome = service.process_bulk_payment(owing, inr(0), date(2024, 6, 1))
        assert outcome.status is BillingStatus.INVALID_AMOUNT


# =============================================================================
# Bulk outflow
# =============================================================================


class TestBulkOutflow:

    @pytest.fixture
    def paddy(self, record_factory):
        """30 bags from Jan 1 and 40 bags from Mar 1."""
        return [
            record_factory("paddy-new", bags_in=40, start=date(2024, 3, 1)),
            record_factory("paddy-old", bags_in=30, start=date(2024, 1, 1)),
        ]

    def test_plan_preview(self, service, paddy):
        outcome = service.plan_bulk_outflow(paddy, "paddy", 50, date(2024, 4, 1))

        assert outcome.is_success
        ops = outcome.plan.operations
        assert [(op.record.record_id, op.take, op.rent) for op in ops] == [
            ("paddy-old", 30, inr(1080)),
            ("paddy-new", 20, inr(720)),
        ]
        assert outcome.plan.total_rent == inr(1800)
        assert outcome.record_updates == ()

    def test_plan_infeasible(self, service, paddy):
        outcome = service.plan_bulk_outflow(paddy, "paddy", 100, date(2024, 4, 1))

        assert outcome.status is BillingStatus.INFEASIBLE
        assert outcome.plan.available == 70
        assert "only 70" in outcome.message

    def test_plan_respects_exclusions(self, service, paddy):
        outcome = service.plan_bulk_outflow(
            paddy, "paddy", 30, date(2024, 4, 1), excluded_record_ids={"paddy-old"}
        )

        assert [op.record.record_id for op in outcome.plan.operations] == ["paddy-new"]

    def test_unknown_commodity(self, service, paddy):
        outcome = service.plan_bulk_outflow(paddy, "soybean", 10, date(2024, 4, 1))
        assert outcome.status is BillingStatus.MISSING_PRICING

    def test_process_updates_and_splits_payment(self, service, paddy):
        outcome = service.process_bulk_outflow(
            paddy, "paddy", 50, date(2024, 4, 1), amount_paid=inr(900)
        )

        assert outcome.is_success
        updates = {u.record_id: u for u in outcome.record_updates}
        assert updates["paddy-old"].transition is RecordTransition.CLOSE
        assert updates["paddy-old"].total_rent_billed == inr(1080)
        assert updates["paddy-new"].bags_stored == 20
        assert updates["paddy-new"].transition is RecordTransition.NONE

        assert [(w.record_id, w.transaction.bags_withdrawn) for w in outcome.withdrawals] == [
            ("paddy-old", 30),
            ("paddy-new", 20),
        ]
        assert [(p.record_id, p.payment.amount) for p in outcome.payments] == [
            ("paddy-old", inr(540)),
            ("paddy-new", inr(360)),
        ]
        assert outcome.total_paid == inr(900)

    def test_process_infeasible_writes_nothing(self, service, paddy):
        outcome = service.process_bulk_outflow(paddy, "paddy", 71, date(2024, 4, 1))

        assert outcome.status is BillingStatus.INFEASIBLE
        assert outcome.record_updates == ()
        assert outcome.withdrawals == ()

    def test_process_future_date_rejected(self, service, paddy):
        outcome = service.process_bulk_outflow(paddy, "paddy", 10, date(2025, 4, 1))
        assert outcome.status is BillingStatus.INVALID_DATE


class TestFromConfig:

    def test_builds_from_default_config(self, deterministic_clock, record_factory):
        service = BillingService.from_config(get_active_config(), deterministic_clock)
        record = record_factory(crop_id="potato", bags_in=10)

        outcome = service.process_outflow(record, 10, date(2024, 2, 1))

        assert outcome.is_success
        assert outcome.record_updates[0].total_rent_billed == inr(400)

    def test_config_rate_limits_applied(self, deterministic_clock, record_factory):
        service = BillingService.from_config(get_active_config(), deterministic_clock)
        record = record_factory()

        statuses = [
            service.process_outflow(record, 1, date(2024, 2, 1)).status for _ in range(11)
        ]

        assert statuses[:10] == [BillingStatus.OK] * 10
        assert statuses[10] is BillingStatus.RATE_LIMITED

    def test_configured_cycle_labels_written(self, deterministic_clock, record_factory):
        config = parse_billing_config({
            "config_id": "custom-labels",
            "version": 1,
            "effective_from": "2024-01-01",
            "currency": "INR",
            "billing_cycles": {"initial": "Initial Term", "completed": "Closed Out"},
            "crops": [{"crop_id": "paddy", "price_6m": "36", "price_1y": "55"}],
        })
        service = BillingService.from_config(config, deterministic_clock)
        record = record_factory(billing_cycle="Initial Term")

        closed = service.process_outflow(record, 50, date(2024, 2, 1))
        (update,) = closed.record_updates
        assert update.billing_cycle == "Closed Out"

        after = update.apply_to(record)
        transaction = closed.withdrawals[0].transaction
        reopened = service.reverse_withdrawal(after, transaction).record_updates[0]
        assert reopened.billing_cycle == "Initial Term"
