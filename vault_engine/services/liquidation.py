"""Liquidation of under-collateralized leveraged positions."""
from __future__ import annotations

import logging

from ..constants import BPS_SCALE, MAX_LIQUIDATION_BONUS_BPS, PRICE_SCALE, U64_MAX
from ..errors import InvalidConfig, NotLiquidatable
from ..fixed_point import bps_of, checked_add, mul_div
from ..models import HealthReport, LeveragedPosition, PositionLiquidated
from .atomic import atomic_operation
from .positions import LeveragedPositionManager, collateral_value

logger = logging.getLogger(__name__)


class LiquidationEngine:
    def __init__(self, positions: LeveragedPositionManager, bonus_bps: int | None = None) -> None:
        self.positions = positions
        if bonus_bps is None:
            bonus_bps = positions.config.liquidation_bonus_bps
        if not 0 <= bonus_bps <= MAX_LIQUIDATION_BONUS_BPS:
            raise InvalidConfig("Liquidation bonus out of range", bonus_bps=bonus_bps)
        self.bonus_bps = bonus_bps

    def health(self, position: LeveragedPosition, price: int | None = None) -> HealthReport:
        """Loan-to-value of ``position`` at the validated oracle price."""
        if price is None:
            price = self.positions.current_price()
        lending = self.positions.lending
        value = collateral_value(position.collateral_amount, price)
        debt = lending.total_owed(position.borrower)
        if value == 0:
            ltv_bps = U64_MAX if debt else 0
        else:
            ltv_bps = mul_div(debt, BPS_SCALE, value)
        return HealthReport(
            collateral_value=value,
            debt_owed=debt,
            ltv_bps=ltv_bps,
            liquidation_threshold_bps=lending.market.liquidation_threshold_bps,
            price=price,
        )

    def liquidate(self, liquidator: str, owner: str, position_id: int) -> PositionLiquidated:
        """Repay an unhealthy position's debt and seize its collateral.

        The liquidator repays the full debt and receives collateral worth the
        debt plus the bonus, capped at the position's collateral. Whatever is
        left of the position's claim on the vault goes back to the owner.
        """
        manager = self.positions
        position = manager.get_open(owner, position_id)
        report = self.health(position)
        if not report.liquidatable:
            raise NotLiquidatable(
                "Position is healthy",
                ltv_bps=report.ltv_bps,
                threshold_bps=report.liquidation_threshold_bps,
            )

        debt = report.debt_owed
        bonus = bps_of(debt, self.bonus_bps)
        collateral = position.collateral_amount

        vault = manager.vault
        with atomic_operation(
            manager.ledger, manager.events, vault.vault, manager.lending.market, store=manager.store
        ):
            vault.require_active()
            vault.check_balance()
            if position.shares:
                value = vault.position_value(position.shares)
            else:
                value = collateral
            owed_units = mul_div(checked_add(debt, bonus), PRICE_SCALE, report.price)
            seized = min(collateral, value, owed_units)
            remainder = value - seized

            if debt:
                manager.lending.repay(position.borrower, debt, payer=liquidator)
            vault.release_collateral(
                collateral,
                [(liquidator, seized), (owner, remainder)],
                shares=position.shares,
                holder=position.borrower,
            )

            position.is_open = False
            position.closed_at = manager.clock.now()
            event = PositionLiquidated(
                owner=owner,
                position_id=position_id,
                liquidator=liquidator,
                ltv_bps=report.ltv_bps,
                debt_repaid=debt,
                bonus=bonus,
                seized=seized,
                returned_to_owner=remainder,
                price=report.price,
            )
            manager.events.publish(event)

        logger.info(
            "Liquidated position %s#%d by %s: ltv %d bps, repaid %d, seized %d",
            owner, position_id, liquidator, report.ltv_bps, debt, seized,
        )
        return event
