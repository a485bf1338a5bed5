"""Vault accounting: share mint/burn against a pooled base asset.

The exchange rate is derived from tracked principal and fees, never from the
raw vault balance, so donations cannot move it. The raw balance is only used
to detect manipulation: it may not drop below what the accounting expects and
may not exceed it by more than ``max_deviation_bps``.
"""
from __future__ import annotations

import logging

from ..constants import BPS_SCALE, SCALE
from ..errors import (
    InsufficientLiquidity,
    InvalidAmount,
    ProtocolPaused,
    TransferFailed,
    VaultBalanceMismatch,
)
from ..fixed_point import (
    bps_of,
    checked_add,
    checked_sub,
    mul_div,
    split_fee,
    to_u64,
)
from ..interfaces.clock import Clock
from ..interfaces.ledger import Ledger
from ..models import BurnReceipt, FeesAccrued, MintReceipt, ShareBurned, ShareMinted, Vault
from .atomic import atomic_operation
from .events import EventBus

logger = logging.getLogger(__name__)


class VaultService:
    """Mints and burns vault shares for one base asset."""

    def __init__(self, vault: Vault, ledger: Ledger, clock: Clock, events: EventBus) -> None:
        self.vault = vault
        self._ledger = ledger
        self._clock = clock
        self._events = events

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def share_supply(self) -> int:
        return self._ledger.total_supply(self.vault.share_asset)

    def actual_balance(self) -> int:
        return self._ledger.balance_of(self.vault.base_asset, self.vault.account)

    def free_liquidity(self) -> int:
        """Vault balance not reserved as leveraged-position collateral."""
        return max(0, self.actual_balance() - self.vault.locked_collateral)

    def check_balance(self) -> None:
        """Raise ``VaultBalanceMismatch`` if the raw balance disagrees with accounting."""
        vault = self.vault
        actual = self.actual_balance()
        expected = vault.expected_balance
        if actual < expected:
            raise VaultBalanceMismatch(
                "Vault balance below tracked balance", expected=expected, actual=actual
            )
        if actual > expected and expected > 0:
            deviation_bps = mul_div(actual - expected, BPS_SCALE, expected)
            if deviation_bps > vault.max_deviation_bps:
                raise VaultBalanceMismatch(
                    "Vault balance deviates too far above tracked balance",
                    expected=expected,
                    actual=actual,
                    deviation_bps=deviation_bps,
                    max_deviation_bps=vault.max_deviation_bps,
                )

    def exchange_rate(self) -> int:
        """Base units per share, scaled by SCALE."""
        self.check_balance()
        supply = self.share_supply()
        if supply == 0:
            return SCALE
        tracked = checked_add(self.vault.total_deposited, self.vault.accrued_fees)
        return to_u64(mul_div(tracked, SCALE, supply), "exchange_rate")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def mint(self, user: str, amount: int) -> MintReceipt:
        """Deposit ``amount`` base units and receive shares."""
        vault = self.vault
        self.require_active()
        self._require_bounds(amount)

        with atomic_operation(self._ledger, self._events, vault):
            rate = self.exchange_rate()
            supply_before = self.share_supply()
            tracked_before = vault.tracked_balance

            fee = bps_of(amount, vault.mint_fee_bps)
            vault_share, treasury_share = split_fee(fee, vault.vault_fee_share_bps)
            net = checked_sub(amount, fee)
            shares = to_u64(mul_div(net, SCALE, rate), "shares")
            if shares == 0:
                raise InvalidAmount("Deposit too small to mint a share", amount=amount, rate=rate)

            self._transfer(user, vault.account, checked_add(net, vault_share))
            self._transfer(user, vault.treasury, treasury_share)
            if not self._ledger.mint_units(vault.share_asset, vault.account, user, shares):
                raise TransferFailed("Share mint rejected", user=user, shares=shares)

            vault.total_deposited = to_u64(checked_add(vault.total_deposited, net), "total_deposited")
            vault.expected_balance = to_u64(
                checked_add(vault.expected_balance, checked_add(net, vault_share)),
                "expected_balance",
            )
            fees_before = vault.accrued_fees
            vault.accrued_fees = to_u64(checked_add(vault.accrued_fees, vault_share), "accrued_fees")
            vault.last_update = self._clock.now()

            self._events.publish(
                ShareMinted(
                    vault=vault.base_asset,
                    user=user,
                    amount=amount,
                    shares=shares,
                    fee=fee,
                    vault_share=vault_share,
                    treasury_share=treasury_share,
                    exchange_rate=rate,
                    supply_before=supply_before,
                    supply_after=supply_before + shares,
                    tracked_before=tracked_before,
                    tracked_after=vault.tracked_balance,
                )
            )
            if vault_share:
                self._events.publish(
                    FeesAccrued(vault.base_asset, "mint_fee", vault_share, fees_before, vault.accrued_fees)
                )

        logger.info(
            "Minted %d %s for %s (deposit %d, fee %d, rate %d)",
            shares, vault.share_asset, user, amount, fee, rate,
        )
        return MintReceipt(amount, fee, vault_share, treasury_share, net, shares, rate)

    def burn(self, user: str, shares: int) -> BurnReceipt:
        """Redeem ``shares`` for base units at the current exchange rate."""
        vault = self.vault
        self.require_active()
        if not 0 < shares <= vault.max_amount:
            raise InvalidAmount("Share amount out of bounds", shares=shares, max_amount=vault.max_amount)

        with atomic_operation(self._ledger, self._events, vault):
            rate = self.exchange_rate()
            supply_before = self.share_supply()
            tracked_before = vault.tracked_balance

            gross = to_u64(mul_div(shares, rate, SCALE), "gross")
            if gross == 0:
                raise InvalidAmount("Nothing to redeem", shares=shares, rate=rate)
            liquidity = self.free_liquidity()
            if gross > liquidity:
                raise InsufficientLiquidity(
                    "Vault cannot cover redemption", requested=gross, available=liquidity
                )

            fee = bps_of(gross, vault.burn_fee_bps)
            vault_share, treasury_share = split_fee(fee, vault.vault_fee_share_bps)
            net = checked_sub(gross, fee)

            if not self._ledger.burn_units(vault.share_asset, user, shares):
                raise TransferFailed("Share burn rejected", user=user, shares=shares)
            self._transfer(vault.account, user, net)
            self._transfer(vault.account, vault.treasury, treasury_share)

            principal_portion = mul_div(gross, vault.total_deposited, tracked_before)
            yield_portion = checked_sub(gross, principal_portion)
            vault.total_deposited = checked_sub(vault.total_deposited, principal_portion)
            fees_before = vault.accrued_fees
            vault.accrued_fees = checked_add(
                checked_sub(vault.accrued_fees, yield_portion), vault_share
            )
            vault.expected_balance = checked_sub(
                vault.expected_balance, checked_add(net, treasury_share)
            )
            vault.last_update = self._clock.now()

            self._events.publish(
                ShareBurned(
                    vault=vault.base_asset,
                    user=user,
                    shares=shares,
                    returned=net,
                    fee=fee,
                    vault_share=vault_share,
                    treasury_share=treasury_share,
                    exchange_rate=rate,
                    supply_before=supply_before,
                    supply_after=supply_before - shares,
                    tracked_before=tracked_before,
                    tracked_after=vault.tracked_balance,
                )
            )
            if vault_share:
                self._events.publish(
                    FeesAccrued(vault.base_asset, "burn_fee", vault_share, fees_before, vault.accrued_fees)
                )

        logger.info(
            "Burned %d %s for %s (returned %d, fee %d, rate %d)",
            shares, vault.share_asset, user, net, fee, rate,
        )
        return BurnReceipt(shares, gross, fee, vault_share, treasury_share, net, rate)

    def deposit_yield(self, depositor: str, amount: int) -> int:
        """Route external profit into the vault.

        The vault share raises the exchange rate for every holder, the rest
        goes to the treasury. The depositor is rewarded with shares worth
        ``yield_reward_bps`` of the deposit at the pre-deposit rate. Returns
        the reward shares minted.
        """
        vault = self.vault
        self.require_active()
        if not 0 < amount <= vault.max_amount:
            raise InvalidAmount("Yield deposit out of bounds", amount=amount)

        with atomic_operation(self._ledger, self._events, vault):
            rate = self.exchange_rate()
            supply = self.share_supply()
            vault_share, treasury_share = split_fee(amount, vault.yield_vault_share_bps)

            self._transfer(depositor, vault.account, vault_share)
            self._transfer(depositor, vault.treasury, treasury_share)

            reward = bps_of(amount, vault.yield_reward_bps)
            reward_shares = mul_div(reward, SCALE, rate) if reward and supply else 0
            if reward_shares and not self._ledger.mint_units(
                vault.share_asset, vault.account, depositor, reward_shares
            ):
                raise TransferFailed("Reward mint rejected", shares=reward_shares)

            fees_before = vault.accrued_fees
            vault.accrued_fees = to_u64(checked_add(vault.accrued_fees, vault_share), "accrued_fees")
            vault.expected_balance = to_u64(
                checked_add(vault.expected_balance, vault_share), "expected_balance"
            )
            vault.last_update = self._clock.now()
            self._events.publish(
                FeesAccrued(vault.base_asset, "yield_deposit", vault_share, fees_before, vault.accrued_fees)
            )

        logger.info("Yield deposit of %d into %s vault by %s", amount, vault.base_asset, depositor)
        return reward_shares

    # ------------------------------------------------------------------
    # Position custody
    # ------------------------------------------------------------------

    def lock_collateral(self, owner: str, amount: int, holder: str) -> int:
        """Move position collateral into the pool and return the shares backing it.

        Shares are minted at the current rate to ``holder`` (the position's
        account), so the collateral earns the same yield as any deposit and
        leaves only through ``release_collateral``.
        """
        vault = self.vault
        rate = self.exchange_rate()
        shares = to_u64(mul_div(amount, SCALE, rate), "shares")
        if shares == 0:
            raise InvalidAmount("Collateral too small to back a share", amount=amount, rate=rate)

        self._transfer(owner, vault.account, amount)
        if not self._ledger.mint_units(vault.share_asset, vault.account, holder, shares):
            raise TransferFailed("Share mint rejected", user=holder, shares=shares)

        vault.total_deposited = to_u64(checked_add(vault.total_deposited, amount), "total_deposited")
        vault.locked_collateral = to_u64(checked_add(vault.locked_collateral, amount), "locked")
        vault.expected_balance = to_u64(checked_add(vault.expected_balance, amount), "expected_balance")
        vault.last_update = self._clock.now()
        return shares

    def position_value(self, shares: int, rate: int | None = None) -> int:
        """Base units currently backing ``shares`` held by a position."""
        if rate is None:
            rate = self.exchange_rate()
        return mul_div(shares, rate, SCALE)

    def release_collateral(
        self,
        collateral: int,
        transfers: list[tuple[str, int]],
        fee_retained: int = 0,
        shares: int = 0,
        holder: str | None = None,
    ) -> int:
        """Pay out a position's claim on the pool and return its value.

        The claim is ``shares`` at the current rate; it must equal everything
        transferred out plus ``fee_retained``, which stays in the vault as
        fees. Positions recorded without shares are worth their collateral.
        """
        vault = self.vault
        rate = self.exchange_rate()
        value = self.position_value(shares, rate) if shares else collateral
        paid = sum(amount for _, amount in transfers)
        if value != paid + fee_retained:
            raise InvalidAmount(
                "Collateral release does not balance",
                value=value,
                paid=paid,
                fee_retained=fee_retained,
            )

        for recipient, amount in transfers:
            self._transfer(vault.account, recipient, amount)

        fees_before = vault.accrued_fees
        if shares:
            if holder is None or not self._ledger.burn_units(vault.share_asset, holder, shares):
                raise TransferFailed("Share burn rejected", user=holder, shares=shares)
            tracked = vault.tracked_balance
            principal_portion = mul_div(value, vault.total_deposited, tracked) if value else 0
            vault.total_deposited = checked_sub(vault.total_deposited, principal_portion)
            vault.accrued_fees = checked_sub(
                vault.accrued_fees, checked_sub(value, principal_portion)
            )
        vault.accrued_fees = checked_add(vault.accrued_fees, fee_retained)
        vault.locked_collateral = checked_sub(vault.locked_collateral, collateral)
        vault.expected_balance = checked_sub(vault.expected_balance, paid)
        vault.last_update = self._clock.now()
        if fee_retained:
            self._events.publish(
                FeesAccrued(vault.base_asset, "position_fee", fee_retained, fees_before, vault.accrued_fees)
            )
        return value

    def charge_fee(self, payer: str, fee: int, vault_share_bps: int, source: str) -> tuple[int, int]:
        """Collect ``fee`` base units from ``payer``, split between vault and treasury."""
        vault = self.vault
        vault_share, treasury_share = split_fee(fee, vault_share_bps)
        self._transfer(payer, vault.account, vault_share)
        self._transfer(payer, vault.treasury, treasury_share)
        if vault_share:
            fees_before = vault.accrued_fees
            vault.accrued_fees = to_u64(checked_add(vault.accrued_fees, vault_share), "accrued_fees")
            vault.expected_balance = to_u64(
                checked_add(vault.expected_balance, vault_share), "expected_balance"
            )
            self._events.publish(
                FeesAccrued(vault.base_asset, source, vault_share, fees_before, vault.accrued_fees)
            )
        return vault_share, treasury_share

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def require_active(self) -> None:
        if self.vault.paused:
            raise ProtocolPaused("Vault is paused", vault=self.vault.base_asset)

    def _require_bounds(self, amount: int) -> None:
        vault = self.vault
        if not vault.min_amount <= amount <= vault.max_amount:
            raise InvalidAmount(
                "Amount out of bounds",
                amount=amount,
                min_amount=vault.min_amount,
                max_amount=vault.max_amount,
            )

    def _transfer(self, source: str, destination: str, amount: int) -> None:
        if amount == 0:
            return
        if not self._ledger.transfer(self.vault.base_asset, source, destination, amount):
            raise TransferFailed(
                "Transfer rejected by ledger",
                asset=self.vault.base_asset,
                source=source,
                destination=destination,
                amount=amount,
            )
