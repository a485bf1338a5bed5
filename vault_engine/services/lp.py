"""Leveraged liquidity positions: a base/quote pair, part of the quote borrowed.

The base leg is deposited into the vault against shares held by the
position's account, so it earns the pool rate like leveraged collateral. The
quote leg (the lending market's asset) is parked in the pair's quote account.
Debt is measured against the value of the whole pair. ``liquidity`` is the
geometric mean of the two leg values at entry; it is recorded for reporting
and no LP unit is minted for it.
"""
from __future__ import annotations

import logging
import math

from ..config import LPConfig
from ..constants import (
    BPS_SCALE,
    LEVERAGE_SCALE,
    MAX_LIQUIDATION_BONUS_BPS,
    MIN_LEVERAGE,
    PRICE_SCALE,
    U64_MAX,
)
from ..errors import (
    InvalidAmount,
    InvalidConfig,
    NotLiquidatable,
    PositionNotOpen,
    SlippageExceeded,
    TransferFailed,
    Unauthorized,
)
from ..fixed_point import bps_of, checked_add, mul_div, split_fee, to_u64
from ..interfaces.clock import Clock
from ..interfaces.ledger import Ledger
from ..interfaces.lending import LendingPort
from ..interfaces.store import KeyedStore
from ..models import (
    LP_POSITION,
    HealthReport,
    LPPosition,
    LPPositionClosed,
    LPPositionOpened,
    LPSettlement,
    lp_position_borrower,
)
from ..oracles.validation import OracleGuard
from .atomic import atomic_operation
from .events import EventBus
from .positions import collateral_value
from .vault import VaultService

logger = logging.getLogger(__name__)


def pair_value(base_amount: int, quote_amount: int, price: int) -> int:
    """Quote-unit value of a base/quote pair at ``price``."""
    return checked_add(collateral_value(base_amount, price), quote_amount)


class LPPositionManager:
    """Opens, closes and liquidates LP positions against one vault and one market."""

    def __init__(
        self,
        vault: VaultService,
        lending: LendingPort,
        oracle: OracleGuard,
        store: KeyedStore,
        ledger: Ledger,
        clock: Clock,
        events: EventBus,
        config: LPConfig | None = None,
    ) -> None:
        self.vault = vault
        self.lending = lending
        self.oracle = oracle
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.events = events
        self.config = config or LPConfig()
        if not 0 <= self.config.liquidation_bonus_bps <= MAX_LIQUIDATION_BONUS_BPS:
            raise InvalidConfig(
                "Liquidation bonus out of range", bonus_bps=self.config.liquidation_bonus_bps
            )
        self.quote_account = self.config.quote_account or f"lp:{vault.vault.base_asset}"

    @property
    def quote_asset(self) -> str:
        return self.lending.market.base_asset

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, owner: str, position_id: int) -> LPPosition:
        position = self.store.get((LP_POSITION, owner, position_id))
        if position is None:
            raise PositionNotOpen("No such LP position", owner=owner, position_id=position_id)
        return position

    def get_open(self, owner: str, position_id: int) -> LPPosition:
        position = self.get(owner, position_id)
        if not position.is_open:
            raise PositionNotOpen(
                "LP position already closed", owner=owner, position_id=position_id
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
        base_amount: int,
        quote_amount: int,
        leverage_factor: int,
        borrow_amount: int | None = None,
        max_slippage_bps: int | None = None,
    ) -> LPPosition:
        """Deposit a base/quote pair, borrowing part of the quote leg.

        The two legs must be worth the same within ``max_slippage_bps``. The
        borrowed quote is ``total * (leverage - 100) / leverage`` so the
        owner's equity is levered by ``leverage_factor``; it is paid to the
        owner, who then supplies the whole quote leg. The open fee is taken
        from the base leg.
        """
        cfg = self.config
        vault = self.vault.vault
        self.vault.require_active()
        if max_slippage_bps is None:
            max_slippage_bps = cfg.max_slippage_bps
        if not 0 <= max_slippage_bps <= BPS_SCALE:
            raise InvalidAmount("Slippage tolerance out of range", max_slippage_bps=max_slippage_bps)
        if not MIN_LEVERAGE <= leverage_factor <= cfg.max_leverage:
            raise InvalidAmount(
                "Leverage out of range",
                leverage_factor=leverage_factor,
                max_leverage=cfg.max_leverage,
            )
        if not cfg.min_base_amount <= base_amount <= vault.max_amount:
            raise InvalidAmount(
                "Base amount out of bounds",
                amount=base_amount,
                min_amount=cfg.min_base_amount,
                max_amount=vault.max_amount,
            )
        if not cfg.min_quote_amount <= quote_amount <= cfg.max_quote_amount:
            raise InvalidAmount(
                "Quote amount out of bounds",
                amount=quote_amount,
                min_amount=cfg.min_quote_amount,
                max_amount=cfg.max_quote_amount,
            )

        price = self.current_price()
        base_value = collateral_value(base_amount, price)
        if base_value == 0:
            raise InvalidAmount("Base leg has no value", base_amount=base_amount, price=price)
        slippage_bps = mul_div(
            abs(base_value - quote_amount), BPS_SCALE, max(base_value, quote_amount)
        )
        if slippage_bps > max_slippage_bps:
            raise SlippageExceeded(
                "Pair legs are unbalanced",
                slippage_bps=slippage_bps,
                max_slippage_bps=max_slippage_bps,
            )

        total_value = checked_add(base_value, quote_amount)
        borrowed = to_u64(
            mul_div(total_value, leverage_factor - LEVERAGE_SCALE, leverage_factor), "borrowed"
        )
        if borrow_amount is not None and borrow_amount != borrowed:
            raise InvalidAmount(
                "Borrow amount does not match leverage", computed=borrowed, supplied=borrow_amount
            )

        open_fee = bps_of(total_value, cfg.open_fee_bps)
        fee_units = mul_div(open_fee, PRICE_SCALE, price)
        if fee_units >= base_amount:
            raise InvalidAmount("Open fee exceeds base leg", fee_units=fee_units, base_amount=base_amount)
        net_base = base_amount - fee_units
        liquidity = math.isqrt(base_value * quote_amount)

        with atomic_operation(
            self.ledger, self.events, vault, self.lending.market, store=self.store
        ):
            position_id = self.store.next_nonce(LP_POSITION, owner)
            borrower = lp_position_borrower(owner, position_id)

            if fee_units:
                self.vault.charge_fee(owner, fee_units, cfg.vault_fee_share_bps, "lp_open_fee")
            entry_rate = self.vault.exchange_rate()
            shares = self.vault.lock_collateral(owner, net_base, borrower)
            if borrowed:
                self.lending.borrow(borrower, borrowed, recipient=owner)
            self._transfer_quote(owner, self.quote_account, quote_amount)

            position = LPPosition(
                position_id=position_id,
                owner=owner,
                base_asset=vault.base_asset,
                quote_asset=self.quote_asset,
                borrower=borrower,
                base_amount=net_base,
                quote_amount=quote_amount,
                borrowed_amount=borrowed,
                leverage_factor=leverage_factor,
                liquidity=liquidity,
                entry_price=price,
                entry_exchange_rate_index=entry_rate,
                created_at=self.clock.now(),
                shares=shares,
            )
            self.store.put((LP_POSITION, owner, position_id), position)
            self.events.publish(
                LPPositionOpened(
                    owner=owner,
                    position_id=position_id,
                    base_amount=net_base,
                    quote_amount=quote_amount,
                    borrowed=borrowed,
                    open_fee=open_fee,
                    liquidity=liquidity,
                    entry_price=price,
                    entry_exchange_rate_index=entry_rate,
                )
            )

        logger.info(
            "Opened LP position %s#%d: %d %s + %d %s at %dx/100, borrowed %d, fee %d",
            owner, position_id, net_base, vault.base_asset, quote_amount, self.quote_asset,
            leverage_factor, borrowed, open_fee,
        )
        return position

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self, position: LPPosition, price: int | None = None) -> HealthReport:
        """Loan-to-value of ``position`` against the value of both legs."""
        if price is None:
            price = self.current_price()
        value = pair_value(position.base_amount, position.quote_amount, price)
        debt = self.lending.total_owed(position.borrower)
        if value == 0:
            ltv_bps = U64_MAX if debt else 0
        else:
            ltv_bps = mul_div(debt, BPS_SCALE, value)
        return HealthReport(
            collateral_value=value,
            debt_owed=debt,
            ltv_bps=ltv_bps,
            liquidation_threshold_bps=self.lending.market.liquidation_threshold_bps,
            price=price,
        )

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def settle(self, position: LPPosition, price: int, exchange_rate: int) -> LPSettlement:
        """Compute what closing ``position`` now would pay, without side effects."""
        cfg = self.config
        entry_value = pair_value(position.base_amount, position.quote_amount, position.entry_price)
        current_value = pair_value(position.base_amount, position.quote_amount, price)
        slippage_bps = mul_div(
            abs(current_value - entry_value), BPS_SCALE, max(1, entry_value)
        )

        # only the base leg sits in the vault and earns its rate
        entry_rate = position.entry_exchange_rate_index
        growth = max(0, exchange_rate - entry_rate)
        base_entry_value = collateral_value(position.base_amount, position.entry_price)
        yield_value = checked_add(
            mul_div(base_entry_value, growth, entry_rate), max(0, current_value - entry_value)
        )
        principal_fee = bps_of(entry_value, cfg.principal_fee_bps)
        yield_fee = bps_of(yield_value, cfg.yield_fee_bps)
        fee_units = mul_div(checked_add(principal_fee, yield_fee), PRICE_SCALE, price)

        if position.shares:
            base_claim = self.vault.position_value(position.shares, exchange_rate)
        else:
            base_claim = position.base_amount
        if fee_units > base_claim:
            raise InvalidAmount("Fees exceed base leg", fee_units=fee_units, base_claim=base_claim)

        return LPSettlement(
            entry_value=entry_value,
            current_value=current_value,
            slippage_bps=slippage_bps,
            yield_value=yield_value,
            principal_fee=principal_fee,
            yield_fee=yield_fee,
            fee_units=fee_units,
            repay_amount=self.lending.total_owed(position.borrower),
            base_payout=base_claim - fee_units,
            quote_payout=position.quote_amount,
        )

    def close(
        self,
        owner: str,
        position_id: int,
        max_slippage_bps: int | None = None,
        caller: str | None = None,
    ) -> LPSettlement:
        """Return both legs to the owner after the debt is repaid.

        The quote leg comes back first so the owner can repay from it; the
        close fee is taken from the base leg.
        """
        position = self.get_open(owner, position_id)
        if (caller or owner) != position.owner:
            raise Unauthorized(
                "Only the position owner may close it", caller=caller, owner=position.owner
            )
        if max_slippage_bps is None:
            max_slippage_bps = self.config.max_slippage_bps
        if not 0 <= max_slippage_bps <= BPS_SCALE:
            raise InvalidAmount("Slippage tolerance out of range", max_slippage_bps=max_slippage_bps)

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

            self._transfer_quote(self.quote_account, owner, settlement.quote_payout)
            if settlement.repay_amount:
                self.lending.repay(position.borrower, settlement.repay_amount, payer=owner)

            fee_vault, fee_treasury = split_fee(settlement.fee_units, self.config.vault_fee_share_bps)
            self.vault.release_collateral(
                position.base_amount,
                [(owner, settlement.base_payout), (vault.treasury, fee_treasury)],
                fee_retained=fee_vault,
                shares=position.shares,
                holder=position.borrower,
            )

            position.is_open = False
            position.closed_at = self.clock.now()
            self.events.publish(
                LPPositionClosed(
                    owner=owner,
                    position_id=position_id,
                    base_returned=settlement.base_payout,
                    quote_returned=settlement.quote_payout,
                    yield_value=settlement.yield_value,
                    total_fee=settlement.principal_fee + settlement.yield_fee,
                    repaid=settlement.repay_amount,
                    exit_price=price,
                )
            )

        logger.info(
            "Closed LP position %s#%d: %d %s + %d %s returned, fees %d, repaid %d",
            owner, position_id, settlement.base_payout, vault.base_asset,
            settlement.quote_payout, self.quote_asset,
            settlement.principal_fee + settlement.yield_fee, settlement.repay_amount,
        )
        return settlement

    # ------------------------------------------------------------------
    # Liquidation
    # ------------------------------------------------------------------

    def liquidate(self, liquidator: str, owner: str, position_id: int) -> LPPositionClosed:
        """Repay an unhealthy LP position's debt and seize part of its legs.

        The liquidator is owed the debt plus the bonus in quote units, taken
        from the quote leg first and then from the base leg at the oracle
        price. Whatever is left of either leg goes back to the owner.
        """
        position = self.get_open(owner, position_id)
        report = self.health(position)
        if not report.liquidatable:
            raise NotLiquidatable(
                "LP position is healthy",
                ltv_bps=report.ltv_bps,
                threshold_bps=report.liquidation_threshold_bps,
            )

        debt = report.debt_owed
        bonus = bps_of(debt, self.config.liquidation_bonus_bps)
        owed = checked_add(debt, bonus)

        vault = self.vault
        with atomic_operation(
            self.ledger, self.events, vault.vault, self.lending.market, store=self.store
        ):
            vault.require_active()
            vault.check_balance()
            if position.shares:
                base_claim = vault.position_value(position.shares)
            else:
                base_claim = position.base_amount

            if debt:
                self.lending.repay(position.borrower, debt, payer=liquidator)

            seized_quote = min(position.quote_amount, owed)
            seized_base = min(base_claim, mul_div(owed - seized_quote, PRICE_SCALE, report.price))
            quote_left = position.quote_amount - seized_quote
            base_left = base_claim - seized_base

            self._transfer_quote(self.quote_account, liquidator, seized_quote)
            self._transfer_quote(self.quote_account, owner, quote_left)
            vault.release_collateral(
                position.base_amount,
                [(liquidator, seized_base), (owner, base_left)],
                shares=position.shares,
                holder=position.borrower,
            )

            position.is_open = False
            position.closed_at = self.clock.now()
            event = LPPositionClosed(
                owner=owner,
                position_id=position_id,
                base_returned=base_left,
                quote_returned=quote_left,
                yield_value=0,
                total_fee=0,
                repaid=debt,
                exit_price=report.price,
                liquidated_by=liquidator,
            )
            self.events.publish(event)

        logger.info(
            "Liquidated LP position %s#%d by %s: ltv %d bps, repaid %d, seized %d %s + %d %s",
            owner, position_id, liquidator, report.ltv_bps, debt,
            seized_quote, self.quote_asset, seized_base, vault.vault.base_asset,
        )
        return event

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transfer_quote(self, source: str, destination: str, amount: int) -> None:
        if amount == 0:
            return
        if not self.ledger.transfer(self.quote_asset, source, destination, amount):
            raise TransferFailed(
                "Transfer rejected by ledger",
                asset=self.quote_asset,
                source=source,
                destination=destination,
                amount=amount,
            )
