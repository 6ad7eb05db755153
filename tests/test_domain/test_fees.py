"""Tests for FeeCalculator arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from engagement_escrow.domain.exceptions import InputValidationError
from engagement_escrow.domain.fees import (
    FeeCalculator,
    FeeSchedule,
    round_money,
    to_decimal,
    to_money,
)


@pytest.fixture
def fees() -> FeeCalculator:
    return FeeCalculator()


class TestPlatformFee:
    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            ("1000", "150.00"),
            ("1234.56", "185.18"),
            ("0", "0.00"),
            ("12000", "1800.00"),
            ("0.03", "0.00"),
            ("0.10", "0.02"),
        ],
    )
    def test_standard_rate(self, fees: FeeCalculator, amount: str, expected: str) -> None:
        assert fees.platform_fee(amount) == Decimal(expected)

    def test_negative_amount_is_linear(self, fees: FeeCalculator) -> None:
        assert fees.platform_fee("-1000") == Decimal("-150.00")

    def test_rate_comes_from_schedule(self) -> None:
        calc = FeeCalculator(FeeSchedule(standard_platform_fee_rate=Decimal("0.10")))
        assert calc.platform_fee("1000") == Decimal("100.00")

    def test_facilitation_fee_is_separate_policy(self, fees: FeeCalculator) -> None:
        assert fees.facilitation_fee("12000") == Decimal("600.00")


class TestProcessorFee:
    def test_fixed_plus_percentage(self, fees: FeeCalculator) -> None:
        # 0.30 + 2.9% of 100 = 3.20, below the 9.00 cap
        assert fees.processor_fee("100") == Decimal("3.20")

    def test_capped_for_small_amounts(self, fees: FeeCalculator) -> None:
        # 0.30 + 0.029 = 0.329 exceeds 9% of 1.00
        assert fees.processor_fee("1") == Decimal("0.09")

    def test_zero(self, fees: FeeCalculator) -> None:
        assert fees.processor_fee("0") == Decimal("0.00")

    def test_negative_mirrors_positive(self, fees: FeeCalculator) -> None:
        assert fees.processor_fee("-100") == -fees.processor_fee("100")

    def test_always_below_ten_percent(self, fees: FeeCalculator) -> None:
        for amount in ("1", "2", "5", "10", "99.99", "12000"):
            assert fees.processor_fee(amount) < Decimal(amount) * Decimal("0.10")


class TestNetAmount:
    @pytest.mark.parametrize("amount", ["0", "1", "10", "100", "1234.56", "12000", "999999.99"])
    def test_fees_and_net_sum_to_amount(self, fees: FeeCalculator, amount: str) -> None:
        a = Decimal(amount)
        assert fees.platform_fee(a) + fees.processor_fee(a) + fees.net_amount(a) == a

    def test_net_for_thousand(self, fees: FeeCalculator) -> None:
        # 1000 - 150 - (0.30 + 29.00)
        assert fees.net_amount("1000") == Decimal("820.70")


class TestMilestones:
    def test_escrow_amount_covers_full_split(self, fees: FeeCalculator) -> None:
        assert fees.escrow_amount("10000", ["30", "40", "30"]) == Decimal("10000.00")

    def test_partial_split(self, fees: FeeCalculator) -> None:
        assert fees.escrow_amount("10000", ["25", "25"]) == Decimal("5000.00")

    def test_over_hundred_percent_rejected(self, fees: FeeCalculator) -> None:
        with pytest.raises(InputValidationError, match="more than 100"):
            fees.escrow_amount("10000", ["60", "50"])

    def test_negative_percentage_rejected(self, fees: FeeCalculator) -> None:
        with pytest.raises(InputValidationError):
            fees.escrow_amount("10000", ["-10", "50"])

    def test_milestone_amount_rounds_half_up(self, fees: FeeCalculator) -> None:
        assert fees.milestone_amount("100.01", "50") == Decimal("50.01")


class TestBreakdown:
    def test_end_to_end_split(self, fees: FeeCalculator) -> None:
        b = fees.breakdown(Decimal("100") * Decimal("120"))
        assert b.total == Decimal("12000.00")
        assert b.platform_fee == Decimal("1800.00")
        assert b.provider_amount == Decimal("10200.00")
        assert b.total == b.platform_fee + b.provider_amount
        assert b.currency == "USD"

    def test_to_dict_serializes_strings(self, fees: FeeCalculator) -> None:
        assert fees.breakdown("1000", "EUR").to_dict() == {
            "total": "1000.00",
            "platform_fee": "150.00",
            "provider_amount": "850.00",
            "platform_fee_rate": "0.15",
            "currency": "EUR",
        }


class TestCoercion:
    def test_floats_rejected(self) -> None:
        with pytest.raises(InputValidationError, match="float"):
            to_decimal(10.5)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InputValidationError):
            to_decimal("ten dollars")

    def test_infinity_rejected(self) -> None:
        with pytest.raises(InputValidationError):
            to_decimal("Infinity")

    def test_round_money(self) -> None:
        assert round_money(Decimal("2.675")) == Decimal("2.68")

    def test_money_keeps_whole_cents(self) -> None:
        assert to_money("100.5") == Decimal("100.5")
        assert to_money(Decimal("100.50")) == Decimal("100.50")

    def test_money_rejects_fractions_of_a_cent(self) -> None:
        with pytest.raises(InputValidationError, match="two decimal places"):
            to_money("100.005", "refund_amount")


class TestSchedule:
    def test_cap_must_stay_below_ten_percent(self) -> None:
        with pytest.raises(ValueError):
            FeeSchedule(processor_fee_cap_rate=Decimal("0.10"))

    def test_fee_schedule_description(self, fees: FeeCalculator) -> None:
        schedule = fees.fee_schedule()
        assert schedule["standard_platform_fee_rate"] == "0.15"
        assert schedule["facilitation_fee_rate"] == "0.05"
        assert schedule["processor_fee"]["cap_rate"] == "0.09"
