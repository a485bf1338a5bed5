"""Leveraged positions: collateral parked in a vault, debt in a lending market.

Collateral is deposited against vault shares held by the position's own
account, so it earns the pool rate like any other deposit. Values are computed
in quote units (collateral * price / PRICE_SCALE) and converted back to
collateral units only when collateral leaves the vault.
"""
from __future__ import annotations

import logging

from ..config import LeverageConfig
from ..constants import BPS_SCALE, LEVERAGE_SCALE, MIN_LEVERAGE, PRICE_SCALE
from ..errors import (
    InvalidAmount,
    PositionNotOpen,
    SlippageExceeded,
    Unauthorized,
)
from ..fixed_point import bps_of, checked_add, mul_div, split_fee, to_u64
from ..interfaces.clock import Clock
from ..interfaces.ledger import Ledger
from ..interfaces.lending import LendingPort
from ..interfaces.store import KeyedStore
from ..models import (
    POSITION,
    CloseSettlement,
    LeveragedPosition,
    PositionClosed,
    PositionOpened,
    position_borrower,
)
from ..oracles.validation import OracleGuard
from .atomic import atomic_operation
from .events import EventBus
from .vault import VaultService

logger = logging.getLogger(__name__)


def collateral_value(amount: int, price: int) -> int:
    """Quote-unit value of ``amount`` collateral units at ``price``."""
    return mul_div(amount, price, PRICE_SCALE)


class LeveragedPositionManager:
    """Opens and closes leveraged positions against one vault and one market."""

    def __init__(
        self,
        vault: VaultService,
        lending: LendingPort,
        oracle: OracleGuard,
        store: KeyedStore,
        ledger: Ledger,
        clock: Clock,
        events: EventBus,
        config: LeverageConfig | None = None,
    ) -> None:
        self.vault = vault
        self.lending = lending
        self.oracle = oracle
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.events = events
        self.config = config or LeverageConfig()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, owner: str, position_id: int) -> LeveragedPosition:
        position = self.store.get((POSITION, owner, position_id))
        if position is None:
            raise PositionNotOpen("No such position", owner=owner, position_id=position_id)
        return position

    def get_open(self, owner: str, position_id: int) -> LeveragedPosition:
        position = self.get(owner, position_id)
        if not position.is_open:
            raise PositionNotOpen(
                "Position already closed", owner=owner, position_id=position_id
            )
        return position

    def current_price(self) -> int:
        return self.oracle.validated_price(self.vault.vault.oracle_feed_id).price

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(
        self,
        owner: str,
        collateral_amount: int,
        leverage_factor: int,
        borrow_amount: int | None = None,
    ) -> LeveragedPosition:
        """Lock collateral in the vault and borrow against it.

        ``leverage_factor`` is scaled by 100 (150 = 1.5x). The borrowed amount
        is derived from the oracle price; a caller-supplied ``borrow_amount``
        must match it exactly.
        """
        vault = self.vault.vault
        self.vault.require_active()
        if not MIN_LEVERAGE <= leverage_factor <= self.config.max_leverage:
            raise InvalidAmount(
                "Leverage out of range",
                leverage_factor=leverage_factor,
                max_leverage=self.config.max_leverage,
            )
        if not vault.min_amount <= collateral_amount <= vault.max_amount:
            raise InvalidAmount(
                "Collateral out of bounds",
                amount=collateral_amount,
                min_amount=vault.min_amount,
                max_amount=vault.max_amount,
            )

        price = self.current_price()
        value = collateral_value(collateral_amount, price)
        borrowed = to_u64(
            mul_div(value, leverage_factor - LEVERAGE_SCALE, LEVERAGE_SCALE), "borrowed"
        )
        if borrow_amount is not None and borrow_amount != borrowed:
            raise InvalidAmount(
                "Borrow amount does not match leverage", computed=borrowed, supplied=borrow_amount
            )

        with atomic_operation(
            self.ledger, self.events, vault, self.lending.market, store=self.store
        ):
            entry_rate = self.vault.exchange_rate()
            position_id = self.store.next_nonce(POSITION, owner)
            borrower = position_borrower(owner, position_id)

            shares = self.vault.lock_collateral(owner, collateral_amount, borrower)
            if borrowed:
                self.lending.borrow(borrower, borrowed, recipient=owner)

            position = LeveragedPosition(
                position_id=position_id,
                owner=owner,
                collateral_asset=vault.base_asset,
                borrower=borrower,
                collateral_amount=collateral_amount,
                borrowed_amount=borrowed,
                leverage_factor=leverage_factor,
                entry_price=price,
                entry_exchange_rate_index=entry_rate,
                created_at=self.clock.now(),
                shares=shares,
            )
            self.store.put((POSITION, owner, position_id), position)
            self.events.publish(
                PositionOpened(
                    owner, position_id, collateral_amount, borrowed, leverage_factor, price, entry_rate
                )
            )

        logger.info(
            "Opened position %s#%d: %d %s at %dx/100, borrowed %d %s",
            owner, position_id, collateral_amount, vault.base_asset,
            leverage_factor, borrowed, self.lending.market.base_asset,
        )
        return position

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def settle(self, position: LeveragedPosition, price: int, exchange_rate: int) -> CloseSettlement:
        """Compute what closing ``position`` now would pay, without side effects."""
        cfg = self.config
        entry_value = collateral_value(position.collateral_amount, position.entry_price)
        current_value = collateral_value(position.collateral_amount, price)
        slippage_bps = mul_div(
            abs(current_value - entry_value), BPS_SCALE, max(1, entry_value)
        )

        entry_rate = position.entry_exchange_rate_index
        growth = max(0, exchange_rate - entry_rate)
        yield_value = checked_add(
            mul_div(entry_value, growth, entry_rate), max(0, current_value - entry_value)
        )
        principal_fee = bps_of(entry_value, cfg.principal_fee_bps)
        yield_fee = bps_of(yield_value, cfg.yield_fee_bps)
        vault_fee, treasury_fee = split_fee(
            checked_add(principal_fee, yield_fee), cfg.vault_fee_share_bps
        )

        if position.shares:
            gross_units = self.vault.position_value(position.shares, exchange_rate)
        else:
            gross_units = position.collateral_amount
        fee_units = mul_div(checked_add(principal_fee, yield_fee), PRICE_SCALE, price)
        if fee_units > gross_units:
            raise InvalidAmount(
                "Fees exceed position value", fee_units=fee_units, gross_units=gross_units
            )

        return CloseSettlement(
            entry_value=entry_value,
            current_value=current_value,
            slippage_bps=slippage_bps,
            yield_value=yield_value,
            principal_fee=principal_fee,
            yield_fee=yield_fee,
            vault_fee_share=vault_fee,
            treasury_fee_share=treasury_fee,
            repay_amount=self.lending.total_owed(position.borrower),
            payout=gross_units - fee_units,
        )

    def close(
        self,
        owner: str,
        position_id: int,
        max_slippage_bps: int | None = None,
        caller: str | None = None,
    ) -> CloseSettlement:
        """Repay the position's debt and pay out its collateral plus vault yield."""
        position = self.get_open(owner, position_id)
        if (caller or owner) != position.owner:
            raise Unauthorized(
                "Only the position owner may close it", caller=caller, owner=position.owner
            )
        if max_slippage_bps is None:
            max_slippage_bps = self.config.max_slippage_bps

        vault = self.vault.vault
        price = self.current_price()

        with atomic_operation(
            self.ledger, self.events, vault, self.lending.market, store=self.store
        ):
            self.vault.require_active()
            exchange_rate = self.vault.exchange_rate()
            settlement = self.settle(position, price, exchange_rate)
            if settlement.slippage_bps > max_slippage_bps:
                raise SlippageExceeded(
                    "Price moved beyond slippage tolerance",
                    slippage_bps=settlement.slippage_bps,
                    max_slippage_bps=max_slippage_bps,
                )

            if settlement.repay_amount:
                self.lending.repay(position.borrower, settlement.repay_amount, payer=owner)

            collateral = position.collateral_amount
            fee_units = self._fee_units(settlement, price)
            fee_vault_units, fee_treasury_units = split_fee(
                fee_units, self.config.vault_fee_share_bps
            )
            self.vault.release_collateral(
                collateral,
                [(owner, settlement.payout), (vault.treasury, fee_treasury_units)],
                fee_retained=fee_vault_units,
                shares=position.shares,
                holder=position.borrower,
            )

            position.is_open = False
            position.closed_at = self.clock.now()
            self.events.publish(
                PositionClosed(
                    owner,
                    position_id,
                    collateral,
                    settlement.payout,
                    settlement.yield_value,
                    settlement.principal_fee + settlement.yield_fee,
                    settlement.repay_amount,
                    price,
                )
            )

        logger.info(
            "Closed position %s#%d: payout %d %s, fees %d, repaid %d",
            owner, position_id, settlement.payout, vault.base_asset,
            settlement.principal_fee + settlement.yield_fee, settlement.repay_amount,
        )
        return settlement

    @staticmethod
    def _fee_units(settlement: CloseSettlement, price: int) -> int:
        return mul_div(settlement.principal_fee + settlement.yield_fee, PRICE_SCALE, price)
