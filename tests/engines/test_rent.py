"""Tests for the time-tiered rent engine."""

from datetime import date

import pytest

from storage_engines.rent import (
    add_months,
    calculate_final_rent,
    months_stored,
    rent_per_bag_for_months,
)
from storage_kernel.domain.records import CropPricing
from storage_kernel.domain.values import Money
from storage_kernel.exceptions import (
    InsufficientBagsError,
    InvalidPricingError,
    InvalidQuantityError,
    InvalidWithdrawalDateError,
    MissingPricingError,
)


def inr(amount) -> Money:
    return Money.of(str(amount), "INR")


class TestAddMonths:
    """Calendar month shifting."""

    def test_simple(self):
        assert add_months(date(2024, 1, 15), 1) == date(2024, 2, 15)

    def test_crosses_year(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 8, 31), 6) == date(2025, 2, 28)


class TestMonthsStored:
    """Calendar months started since storage start."""

    def test_exact_anniversary(self):
        assert months_stored(date(2024, 1, 1), date(2024, 7, 1)) == 6

    def test_one_day_past_anniversary_starts_next_month(self):
        assert months_stored(date(2024, 1, 1), date(2024, 7, 2)) == 7

    def test_same_day_uses_minimum(self):
        assert months_stored(date(2024, 1, 1), date(2024, 1, 1)) == 1

    def test_same_day_with_zero_minimum(self):
        assert months_stored(date(2024, 1, 1), date(2024, 1, 1), minimum_months=0) == 0

    def test_partial_month_across_month_boundary(self):
        """Feb 28 to Mar 1 is a partial first month."""
        assert months_stored(date(2024, 2, 28), date(2024, 3, 1)) == 1

    def test_day_count_does_not_decide(self):
        """180 days is not six calendar months."""
        assert months_stored(date(2024, 1, 1), date(2024, 6, 29)) == 6
        assert months_stored(date(2024, 1, 1), date(2024, 6, 30)) == 6

    def test_month_end_start(self):
        assert months_stored(date(2024, 8, 31), date(2025, 2, 28)) == 6
        assert months_stored(date(2024, 8, 31), date(2025, 3, 1)) == 7

    def test_as_of_before_start_rejected(self):
        with pytest.raises(ValueError, match="precedes"):
            months_stored(date(2024, 2, 1), date(2024, 1, 31))


class TestTierSchedule:
    """Per-bag rent by months stored (36 / 55 tariff)."""

    def setup_method(self):
        self.pricing = CropPricing.of("36", "55")

    @pytest.mark.parametrize(
        "months, expected",
        [
            (0, 0),
            (1, 36),
            (6, 36),
            (7, 55),
            (12, 55),
            (13, 91),
            (18, 91),
            (19, 110),
            (24, 110),
            (25, 146),
            (36, 165),
        ],
    )
    def test_rent_per_bag(self, months, expected):
        assert rent_per_bag_for_months(months, self.pricing) == inr(expected)

    def test_one_year_tier_replaces_six_month_charge(self):
        """Seven months costs 55 per bag, not 36 + 55."""
        assert rent_per_bag_for_months(7, self.pricing) == self.pricing.price_1y


class TestCalculateFinalRent:
    """Pricing a withdrawal."""

    def test_one_month_scenario(self, record_factory, pricing):
        record = record_factory(bags_in=50, start=date(2024, 1, 1))
        quote = calculate_final_rent(record, date(2024, 2, 1), 50, pricing)
        assert quote.months_stored == 1
        assert quote.rent_per_bag == inr(36)
        assert quote.rent == inr(1800)

    def test_seven_month_scenario(self, record_factory, pricing):
        record = record_factory(bags_in=50, start=date(2024, 1, 1))
        quote = calculate_final_rent(record, date(2024, 8, 1), 50, pricing)
        assert quote.months_stored == 7
        assert quote.rent_per_bag == inr(55)
        assert quote.rent == inr(2750)

    @pytest.mark.parametrize(
        "as_of, per_bag",
        [
            (date(2024, 7, 1), 36),
            (date(2024, 7, 2), 55),
            (date(2025, 1, 1), 55),
            (date(2025, 1, 2), 91),
            (date(2026, 1, 1), 110),
            (date(2026, 1, 2), 146),
        ],
    )
    def test_tier_boundaries(self, record_factory, pricing, as_of, per_bag):
        record = record_factory(bags_in=10, start=date(2024, 1, 1))
        assert calculate_final_rent(record, as_of, 10, pricing).rent == inr(per_bag * 10)

    def test_same_day_withdrawal_charges_one_month(self, record_factory, pricing):
        record = record_factory(bags_in=10)
        quote = calculate_final_rent(record, date(2024, 1, 1), 10, pricing)
        assert quote.months_stored == 1
        assert quote.rent == inr(360)

    def test_same_day_with_zero_minimum_is_free(self, record_factory, pricing):
        record = record_factory(bags_in=10)
        quote = calculate_final_rent(record, date(2024, 1, 1), 10, pricing, minimum_months=0)
        assert quote.rent.is_zero

    def test_zero_bags_zero_rent(self, record_factory, pricing):
        quote = calculate_final_rent(record_factory(), date(2024, 9, 1), 0, pricing)
        assert quote.rent.is_zero

    def test_rounded_to_currency_precision(self, record_factory):
        pricing = CropPricing.of("36.333", "55")
        quote = calculate_final_rent(record_factory(), date(2024, 2, 1), 3, pricing)
        assert quote.rent == inr("109.00")
        assert quote.rent.amount.as_tuple().exponent == -2

    def test_partial_withdrawal_from_partially_drawn_record(self, record_factory, pricing):
        record = record_factory(bags_in=50, bags_stored=30, bags_out=20)
        assert calculate_final_rent(record, date(2024, 3, 1), 30, pricing).rent == inr(30 * 36)

    def test_missing_pricing_fails_loudly(self, record_factory):
        with pytest.raises(MissingPricingError) as exc_info:
            calculate_final_rent(record_factory(), date(2024, 2, 1), 10, None)
        assert exc_info.value.crop_id == "paddy"
        assert exc_info.value.record_id == "rec-0001"

    def test_as_of_before_start(self, record_factory, pricing):
        with pytest.raises(InvalidWithdrawalDateError):
            calculate_final_rent(record_factory(), date(2023, 12, 31), 10, pricing)

    def test_more_bags_than_stored(self, record_factory, pricing):
        with pytest.raises(InsufficientBagsError) as exc_info:
            calculate_final_rent(record_factory(bags_in=50), date(2024, 2, 1), 51, pricing)
        assert exc_info.value.requested == 51
        assert exc_info.value.available == 50

    def test_negative_bags(self, record_factory, pricing):
        with pytest.raises(InvalidQuantityError):
            calculate_final_rent(record_factory(), date(2024, 2, 1), -1, pricing)

    def test_pricing_currency_must_match_record(self, record_factory):
        usd = CropPricing.of("1", "2", "USD")
        with pytest.raises(InvalidPricingError, match="currency"):
            calculate_final_rent(record_factory(), date(2024, 2, 1), 1, usd)

    def test_emits_engine_trace(self, record_factory, pricing, captured_logs):
        calculate_final_rent(record_factory(), date(2024, 2, 1), 10, pricing)
        traces = [r for r in captured_logs() if r["message"] == "STORAGE_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "rent"
        assert len(traces[0]["input_fingerprint"]) == 16
