"""Pricing policy — which per-30-minute rate applies to a reservation.

The matching engine depends on the Protocol so the rate table can change
without touching settlement code.
"""

from typing import Protocol

from config.settings import settings
from src.rs_common.enums import ReservationType
from src.rs_settlement.domain.calculator import required_points


class PricingPolicy(Protocol):
    def rate_per_30min(self, reservation_type: str, cast_grade_points: list[int]) -> int: ...


class DefaultPricingPolicy:
    """Flat configured rates for standard/free; pishatto bills every winner's own rate."""

    def __init__(self, rates: dict[str, int] | None = None) -> None:
        self._rates = rates or {
            ReservationType.STANDARD.value: settings.STANDARD_POINTS_PER_30MIN,
            ReservationType.FREE.value: settings.FREE_POINTS_PER_30MIN,
        }

    def rate_per_30min(self, reservation_type: str, cast_grade_points: list[int]) -> int:
        if reservation_type == ReservationType.PISHATTO:
            return sum(cast_grade_points)
        return self._rates[reservation_type]


def price_reservation(
    policy: PricingPolicy,
    reservation_type: str,
    minutes: int,
    cast_grade_points: list[int] | None = None,
) -> int:
    rate = policy.rate_per_30min(reservation_type, cast_grade_points or [])
    return required_points(rate, minutes)
