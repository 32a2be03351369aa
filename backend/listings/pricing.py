from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional

from django.conf import settings

from core.exceptions import InvalidAmount, InvalidDuration

DEFAULT_HOURLY_DURATIONS = (30, 60, 90, 120, 180, 240)


@dataclass(frozen=True)
class PriceQuote:
    """
    Result of pricing a booking request.

    ``requires_manual_amount`` quotes carry no amounts; the figure has to be
    supplied out-of-band and run through :func:`split_amount`.
    """

    total_cents: Optional[int]
    upfront_cents: Optional[int]
    completion_cents: Optional[int]
    commission_cents: Optional[int]
    requires_manual_amount: bool = False

    @classmethod
    def manual(cls) -> "PriceQuote":
        return cls(None, None, None, None, requires_manual_amount=True)


def _upfront_percent() -> Decimal:
    return Decimal(str(getattr(settings, "MARKETPLACE_UPFRONT_PERCENT", "50")))


def _commission_percent() -> Decimal:
    return Decimal(str(getattr(settings, "MARKETPLACE_COMMISSION_PERCENT", "12")))


def allowed_hourly_durations() -> Iterable[int]:
    return tuple(getattr(settings, "MARKETPLACE_HOURLY_DURATIONS", DEFAULT_HOURLY_DURATIONS))


def percent_of(amount_cents: int, percent: Decimal) -> int:
    """Whole cents of ``percent`` of ``amount_cents``, rounding halves up."""
    value = Decimal(amount_cents) * percent / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _require_cents(value: Any, *, field: str, allow_zero: bool = True) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{field} must be a whole number of cents.")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{field} must be a positive number of cents.")
    return value


def split_amount(total_cents: int) -> PriceQuote:
    """Split a total into upfront and completion halves; the remainder lands on completion."""
    total_cents = _require_cents(total_cents, field="total")
    upfront = percent_of(total_cents, _upfront_percent())
    return PriceQuote(
        total_cents=total_cents,
        upfront_cents=upfront,
        completion_cents=total_cents - upfront,
        commission_cents=percent_of(total_cents, _commission_percent()),
    )


def split_manual_amount(amount_cents: Any) -> PriceQuote:
    """Validate a negotiated quote or donor-chosen figure and split it."""
    return split_amount(_require_cents(amount_cents, field="amount_cents", allow_zero=False))


def calculate_price(
    pricing_model: str,
    *,
    price_cents: Optional[int] = None,
    hourly_rate_cents: Optional[int] = None,
    duration_minutes: Optional[int] = None,
) -> PriceQuote:
    from listings.models import Service

    if pricing_model == Service.FIXED:
        if price_cents is None:
            raise InvalidAmount("Fixed-price service has no price configured.")
        return split_amount(price_cents)

    if pricing_model == Service.HOURLY:
        if hourly_rate_cents is None:
            raise InvalidAmount("Hourly service has no rate configured.")
        allowed = allowed_hourly_durations()
        if duration_minutes not in allowed:
            options = ", ".join(str(minutes) for minutes in allowed)
            raise InvalidDuration(
                f"Duration must be one of {options} minutes.",
                allowed_durations=list(allowed),
            )
        rate = _require_cents(hourly_rate_cents, field="hourly_rate_cents")
        total = Decimal(rate) * Decimal(duration_minutes) / Decimal(60)
        return split_amount(int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP)))

    if pricing_model in {Service.QUOTE, Service.DONATION}:
        return PriceQuote.manual()

    raise ValueError(f"Unknown pricing model: {pricing_model}")


def quote_for_service(service, duration_minutes: Optional[int]) -> PriceQuote:
    return calculate_price(
        service.pricing_model,
        price_cents=service.price_cents,
        hourly_rate_cents=service.hourly_rate_cents,
        duration_minutes=duration_minutes,
    )


def build_pricing_snapshot(service, duration_minutes: int) -> Dict[str, Any]:
    """Capture the price terms a booking was made under."""
    return {
        "pricing_model": service.pricing_model,
        "price_cents": service.price_cents,
        "hourly_rate_cents": service.hourly_rate_cents,
        "duration_minutes": duration_minutes,
        "currency": getattr(settings, "MARKETPLACE_CURRENCY", "usd"),
        "upfront_percent": str(_upfront_percent()),
        "commission_percent": str(_commission_percent()),
    }
