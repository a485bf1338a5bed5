"""Lending market: supply, borrow and repay against a global borrow index."""
from __future__ import annotations

import logging

from ..errors import (
    InsufficientLiquidity,
    InvalidAmount,
    ProtocolPaused,
    TransferFailed,
    VaultBalanceMismatch,
)
from ..fixed_point import checked_add, checked_sub, mul_div, to_u64
from ..interfaces.clock import Clock
from ..interfaces.ledger import Ledger
from ..interfaces.store import KeyedStore
from ..models import BORROWER, BorrowerAccount, InterestAccrued, LendingMarket
from .atomic import atomic_operation
from .events import EventBus
from .interest import InterestRateModel, accrue_index, owed

logger = logging.getLogger(__name__)


class LendingService:
    """Operations on one ``LendingMarket``.

    Interest accrues lazily at the start of every mutating call; views
    project the index to ``now`` without touching state.
    """

    def __init__(
        self,
        market: LendingMarket,
        ledger: Ledger,
        store: KeyedStore,
        clock: Clock,
        events: EventBus,
    ) -> None:
        self._market = market
        self._ledger = ledger
        self._store = store
        self._clock = clock
        self._events = events
        self.model = InterestRateModel.for_market(market)
        if market.last_accrued_timestamp == 0:
            market.last_accrued_timestamp = clock.now()

    @property
    def market(self) -> LendingMarket:
        return self._market

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def utilization(self) -> int:
        return self.model.utilization(self._market.total_borrowed, self._market.total_supply)

    def borrow_rate(self) -> int:
        return self.model.annual_rate(self.utilization())

    def available_liquidity(self) -> int:
        market = self._market
        return max(0, market.total_supply - market.total_borrowed)

    def current_index(self) -> int:
        """Borrow index as it would be after accruing to ``now``."""
        market = self._market
        elapsed = self._clock.now() - market.last_accrued_timestamp
        if elapsed <= 0:
            return market.accumulated_index
        return accrue_index(market.accumulated_index, self.borrow_rate(), elapsed)

    def borrower_account(self, borrower: str) -> BorrowerAccount | None:
        return self._store.get(self._key(borrower))

    def total_owed(self, borrower: str) -> int:
        account = self.borrower_account(borrower)
        if account is None:
            return 0
        return owed(account.principal, account.borrow_index, self.current_index())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def accrue(self) -> int:
        """Advance the borrow index to ``now``; returns the index."""
        market = self._market
        now = self._clock.now()
        if now <= market.last_accrued_timestamp:
            return market.accumulated_index

        elapsed = now - market.last_accrued_timestamp
        rate = self.borrow_rate()
        before = market.accumulated_index
        market.accumulated_index = accrue_index(before, rate, elapsed)
        market.last_accrued_timestamp = now

        logger.debug(
            "Accrued %s market: index %d -> %d over %ds at rate %d",
            market.base_asset, before, market.accumulated_index, elapsed, rate,
        )
        self._events.publish(
            InterestAccrued(market.base_asset, elapsed, rate, before, market.accumulated_index, now)
        )
        return market.accumulated_index

    def supply(self, supplier: str, amount: int) -> None:
        market = self._market
        self._require_active(amount)

        with atomic_operation(self._ledger, self._events, market, store=self._store):
            self._check_invariants()
            self.accrue()
            self._transfer(supplier, market.account, amount)
            if not self._ledger.mint_units(market.receipt_asset, market.account, supplier, amount):
                raise TransferFailed("Receipt mint rejected", supplier=supplier, amount=amount)
            market.total_supply = to_u64(checked_add(market.total_supply, amount), "total_supply")

        logger.info("Supplied %d %s from %s", amount, market.base_asset, supplier)

    def withdraw(self, supplier: str, amount: int) -> None:
        market = self._market
        self._require_active(amount)

        with atomic_operation(self._ledger, self._events, market, store=self._store):
            self._check_invariants()
            self.accrue()
            available = self.available_liquidity()
            if amount > available:
                raise InsufficientLiquidity(
                    "Withdrawal exceeds free liquidity", requested=amount, available=available
                )
            if not self._ledger.burn_units(market.receipt_asset, supplier, amount):
                raise TransferFailed("Receipt burn rejected", supplier=supplier, amount=amount)
            self._transfer(market.account, supplier, amount)
            market.total_supply = checked_sub(market.total_supply, amount)

        logger.info("Withdrew %d %s to %s", amount, market.base_asset, supplier)

    def borrow(self, borrower: str, amount: int, recipient: str | None = None) -> int:
        """Borrow ``amount`` against ``borrower``'s account; returns new principal."""
        market = self._market
        self._require_active(amount)

        with atomic_operation(self._ledger, self._events, market, store=self._store):
            self._check_invariants()
            index = self.accrue()

            available = max(0, self.available_liquidity() - market.minimum_reserve)
            if amount > available:
                raise InsufficientLiquidity(
                    "Borrow exceeds liquidity above reserve",
                    requested=amount,
                    available=available,
                    minimum_reserve=market.minimum_reserve,
                )

            account = self.borrower_account(borrower)
            if account is None:
                account = BorrowerAccount(owner=borrower, principal=0, borrow_index=index)
                self._store.put(self._key(borrower), account)

            if account.principal > 0:
                weighted = checked_add(
                    account.principal * account.borrow_index, amount * index
                )
                account.borrow_index = weighted // checked_add(account.principal, amount)
            else:
                account.borrow_index = index
            account.principal = to_u64(checked_add(account.principal, amount), "principal")
            market.total_borrowed = to_u64(
                checked_add(market.total_borrowed, amount), "total_borrowed"
            )

            self._transfer(market.account, recipient or borrower, amount)

        logger.info(
            "Borrowed %d %s for %s (principal %d, index %d)",
            amount, market.base_asset, borrower, account.principal, account.borrow_index,
        )
        return account.principal

    def repay(self, borrower: str, amount: int, payer: str | None = None) -> int:
        """Repay up to the full debt of ``borrower``; returns principal repaid."""
        market = self._market
        self._require_active(amount)

        with atomic_operation(self._ledger, self._events, market, store=self._store):
            self._check_invariants()
            index = self.accrue()

            account = self.borrower_account(borrower)
            if account is None or account.principal == 0:
                raise InvalidAmount("Borrower has no debt", borrower=borrower)
            total_owed = owed(account.principal, account.borrow_index, index)
            if amount > total_owed:
                raise InvalidAmount(
                    "Repayment exceeds debt", amount=amount, total_owed=total_owed
                )

            self._transfer(payer or borrower, market.account, amount)

            if amount >= total_owed:
                principal_repaid = account.principal
            else:
                # borrow_index stays put so the remainder keeps its entry point
                principal_repaid = min(
                    account.principal, mul_div(amount, account.borrow_index, index)
                )

            account.principal = checked_sub(account.principal, principal_repaid)
            market.total_borrowed = checked_sub(market.total_borrowed, principal_repaid)
            if account.principal == 0:
                account.borrow_index = index

        logger.info(
            "Repaid %d %s for %s (principal repaid %d, remaining %d)",
            amount, market.base_asset, borrower, principal_repaid, account.principal,
        )
        return principal_repaid

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _key(self, borrower: str) -> tuple[str, str, int]:
        return (f"{BORROWER}:{self._market.base_asset}", borrower, 0)

    def _require_active(self, amount: int) -> None:
        if self._market.paused:
            raise ProtocolPaused("Market is paused", market=self._market.base_asset)
        if amount <= 0:
            raise InvalidAmount("Amount must be positive", amount=amount)

    def _check_invariants(self) -> None:
        market = self._market
        if market.total_borrowed > market.total_supply:
            raise VaultBalanceMismatch(
                "Market borrowed more than supplied",
                total_borrowed=market.total_borrowed,
                total_supply=market.total_supply,
            )
        expected = market.total_supply - market.total_borrowed
        actual = self._ledger.balance_of(market.base_asset, market.account)
        if actual < expected:
            raise VaultBalanceMismatch(
                "Market balance below free liquidity", expected=expected, actual=actual
            )

    def _transfer(self, source: str, destination: str, amount: int) -> None:
        if amount == 0:
            return
        if not self._ledger.transfer(self._market.base_asset, source, destination, amount):
            raise TransferFailed(
                "Transfer rejected by ledger",
                asset=self._market.base_asset,
                source=source,
                destination=destination,
                amount=amount,
            )
