"""Kinked utilization interest rate model.

All rates, utilization and the borrow index are scaled by SCALE; model
parameters are configured in basis points.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..constants import BPS_SCALE, MAX_RATE_PARAM_BPS, SCALE, SECONDS_PER_YEAR
from ..errors import InvalidConfig
from ..fixed_point import checked_add, checked_mul, checked_div, checked_sub, mul_div
from ..models import LendingMarket


def bps_to_scale(bps: int) -> int:
    return mul_div(bps, SCALE, BPS_SCALE)


@dataclass(frozen=True)
class InterestRateModel:
    base_rate_bps: int
    slope1_bps: int
    slope2_bps: int
    kink_bps: int

    def __post_init__(self) -> None:
        for name in ("base_rate_bps", "slope1_bps", "slope2_bps"):
            value = getattr(self, name)
            if not 0 <= value <= MAX_RATE_PARAM_BPS:
                raise InvalidConfig(f"{name} out of range", **{name: value})
        if not 0 <= self.kink_bps <= BPS_SCALE:
            raise InvalidConfig("kink_bps out of range", kink_bps=self.kink_bps)

    @classmethod
    def for_market(cls, market: LendingMarket) -> InterestRateModel:
        return cls(market.base_rate_bps, market.slope1_bps, market.slope2_bps, market.kink_bps)

    @staticmethod
    def utilization(total_borrowed: int, total_supply: int) -> int:
        return mul_div(total_borrowed, SCALE, max(1, total_supply))

    def annual_rate(self, utilization: int) -> int:
        """Borrow APR at ``utilization``, both scaled by SCALE."""
        base = bps_to_scale(self.base_rate_bps)
        slope1 = bps_to_scale(self.slope1_bps)
        slope2 = bps_to_scale(self.slope2_bps)
        kink = bps_to_scale(self.kink_bps)

        if utilization < kink:
            return checked_add(base, mul_div(utilization, slope1, SCALE))

        pre_kink = checked_add(base, mul_div(kink, slope1, SCALE))
        excess = checked_sub(utilization, kink)
        return checked_add(pre_kink, mul_div(excess, slope2, SCALE))

    def annual_rate_for(self, total_borrowed: int, total_supply: int) -> int:
        return self.annual_rate(self.utilization(total_borrowed, total_supply))


def accrue_index(index: int, annual_rate: int, elapsed: int) -> int:
    """Linear accrual of ``index`` over ``elapsed`` seconds.

    Not compounded within a call; accrual runs on every mutating call so
    ``elapsed`` stays small.
    """
    if elapsed <= 0 or annual_rate == 0:
        return index
    increment = checked_mul(checked_mul(index, annual_rate), elapsed)
    increment = checked_div(checked_div(increment, SCALE), SECONDS_PER_YEAR)
    return checked_add(index, increment)


def owed(principal: int, borrow_index: int, current_index: int) -> int:
    """Principal grown from ``borrow_index`` to ``current_index``."""
    if principal == 0:
        return 0
    return mul_div(principal, current_index, max(1, borrow_index))
