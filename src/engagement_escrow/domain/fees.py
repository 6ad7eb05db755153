"""Fee arithmetic for offers, engagements and escrow payments.

Everything here is pure Decimal math rounded half-up to the currency minor
unit. Rates come from a frozen FeeSchedule built from Settings; nothing in
this module reads configuration on its own.

Two platform-fee policies coexist:
    - standard platform fee (15%): retained from escrow on release.
    - facilitation fee (5%): recorded on accepted engagements.
They are deliberately not unified.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from engagement_escrow.domain.exceptions import InputValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from engagement_escrow.config import Settings

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

Amount = Decimal | int | str


def to_decimal(value: Amount, field: str = "amount") -> Decimal:
    """Coerce an int, str or Decimal to a finite Decimal.

    Floats are rejected: they carry binary rounding error into money math.
    """
    if isinstance(value, float):
        raise InputValidationError(f"{field} must not be a float", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as err:
        raise InputValidationError(f"{field} is not a number: {value!r}", field=field) from err
    if not result.is_finite():
        raise InputValidationError(f"{field} must be finite", field=field)
    return result


def round_money(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Amount, field: str = "amount") -> Decimal:
    """Coerce like to_decimal, rejecting anything finer than the minor unit."""
    result = to_decimal(value, field)
    if result != round_money(result):
        raise InputValidationError(
            f"{field} must have at most two decimal places: {value!r}", field=field
        )
    return result


@dataclass(frozen=True)
class FeeSchedule:
    """Rates and constants for every fee the marketplace charges."""

    standard_platform_fee_rate: Decimal = Decimal("0.15")
    facilitation_fee_rate: Decimal = Decimal("0.05")
    processor_fee_fixed: Decimal = Decimal("0.30")
    processor_fee_rate: Decimal = Decimal("0.029")
    processor_fee_cap_rate: Decimal = Decimal("0.09")
    currency: str = "USD"

    def __post_init__(self) -> None:
        if not ZERO <= self.standard_platform_fee_rate < 1:
            raise ValueError("standard_platform_fee_rate must be in [0, 1)")
        if not ZERO <= self.facilitation_fee_rate < 1:
            raise ValueError("facilitation_fee_rate must be in [0, 1)")
        if not ZERO <= self.processor_fee_cap_rate < Decimal("0.10"):
            raise ValueError("processor_fee_cap_rate must be below 10%")

    @classmethod
    def from_settings(cls, settings: Settings) -> FeeSchedule:
        return cls(
            standard_platform_fee_rate=settings.standard_platform_fee_rate,
            facilitation_fee_rate=settings.facilitation_fee_rate,
            processor_fee_fixed=settings.processor_fee_fixed,
            processor_fee_rate=settings.processor_fee_rate,
            processor_fee_cap_rate=settings.processor_fee_cap_rate,
            currency=settings.default_currency,
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Exact split of a total into the platform's and the provider's share.

    Invariant: total == platform_fee + provider_amount.
    """

    total: Decimal
    platform_fee: Decimal
    provider_amount: Decimal
    platform_fee_rate: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {
            "total": str(self.total),
            "platform_fee": str(self.platform_fee),
            "provider_amount": str(self.provider_amount),
            "platform_fee_rate": str(self.platform_fee_rate),
            "currency": self.currency,
        }


class FeeCalculator:
    """Stateless fee arithmetic over a FeeSchedule."""

    def __init__(self, schedule: FeeSchedule | None = None) -> None:
        self.schedule = schedule or FeeSchedule()

    def platform_fee(self, amount: Amount) -> Decimal:
        """Standard platform fee. Linear in amount, so negatives stay negative."""
        a = to_decimal(amount)
        return round_money(a * self.schedule.standard_platform_fee_rate)

    def facilitation_fee(self, amount: Amount) -> Decimal:
        a = to_decimal(amount)
        return round_money(a * self.schedule.facilitation_fee_rate)

    def processor_fee(self, amount: Amount) -> Decimal:
        """Fixed plus percentage fee, capped below 10% of the amount.

        Zero for a zero amount. Negative amounts yield the mirrored fee.
        """
        a = to_decimal(amount)
        if a == 0:
            return ZERO.quantize(CENT)
        magnitude = abs(a)
        s = self.schedule
        fee = min(
            s.processor_fee_fixed + s.processor_fee_rate * magnitude,
            s.processor_fee_cap_rate * magnitude,
        )
        fee = round_money(fee)
        return fee if a > 0 else -fee

    def total_fees(self, amount: Amount) -> Decimal:
        return self.platform_fee(amount) + self.processor_fee(amount)

    def net_amount(self, amount: Amount) -> Decimal:
        """What remains after platform and processor fees.

        Clamped at zero for positive amounts; negatives pass through unclamped.
        """
        a = to_decimal(amount)
        if a == 0:
            return ZERO.quantize(CENT)
        net = a - self.total_fees(a)
        if a > 0:
            return max(net, ZERO)
        return net

    def milestone_amount(self, total: Amount, percentage: Amount) -> Decimal:
        t = to_decimal(total, "total")
        p = to_decimal(percentage, "percentage")
        return round_money(t * p / HUNDRED)

    def escrow_amount(self, total: Amount, percentages: Iterable[Amount]) -> Decimal:
        """Sum of milestone amounts for the given percentage split.

        Raises:
            InputValidationError: If any percentage is negative or they sum above 100.
        """
        parts = [to_decimal(p, "percentage") for p in percentages]
        if any(p < 0 for p in parts):
            raise InputValidationError(
                "Milestone percentages must be non-negative", field="milestones"
            )
        if sum(parts, ZERO) > HUNDRED:
            raise InputValidationError(
                "Milestone percentages sum to more than 100", field="milestones"
            )
        return sum((self.milestone_amount(total, p) for p in parts), ZERO.quantize(CENT))

    def breakdown(self, amount: Amount, currency: str | None = None) -> FeeBreakdown:
        total = round_money(to_decimal(amount))
        fee = self.platform_fee(total)
        return FeeBreakdown(
            total=total,
            platform_fee=fee,
            provider_amount=total - fee,
            platform_fee_rate=self.schedule.standard_platform_fee_rate,
            currency=currency or self.schedule.currency,
        )

    def fee_schedule(self) -> dict:
        """Serializable description of the configured schedule."""
        s = self.schedule
        return {
            "standard_platform_fee_rate": str(s.standard_platform_fee_rate),
            "facilitation_fee_rate": str(s.facilitation_fee_rate),
            "processor_fee": {
                "fixed": str(s.processor_fee_fixed),
                "rate": str(s.processor_fee_rate),
                "cap_rate": str(s.processor_fee_cap_rate),
            },
            "currency": s.currency,
        }
