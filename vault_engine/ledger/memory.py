"""In-memory ledger and clock.

The ledger keeps balances per ``(asset, holder)`` and supports nested
``atomic()`` blocks: a failing block restores the balances it started with.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class InMemoryLedger:
    """Balance book for base assets and issued units."""

    def __init__(self) -> None:
        self._balances: defaultdict[tuple[str, str], int] = defaultdict(int)
        self._supply: defaultdict[str, int] = defaultdict(int)
        self._authorities: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def register_unit(self, asset: str, authority: str) -> None:
        """Declare ``authority`` as the only holder allowed to mint ``asset``."""
        self._authorities[asset] = authority

    def credit(self, asset: str, holder: str, amount: int) -> None:
        """Create base-asset balance out of thin air (funding, donations)."""
        self._balances[(asset, holder)] += amount
        self._supply[asset] += amount

    def debit(self, asset: str, holder: str, amount: int) -> None:
        """Remove balance outside any engine operation (drain simulation)."""
        key = (asset, holder)
        if self._balances[key] < amount:
            raise ValueError(f"{holder} holds less than {amount} {asset}")
        self._balances[key] -= amount
        self._supply[asset] -= amount

    # ------------------------------------------------------------------
    # Ledger protocol
    # ------------------------------------------------------------------

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances.get((asset, holder), 0)

    def total_supply(self, asset: str) -> int:
        return self._supply.get(asset, 0)

    def transfer(self, asset: str, source: str, destination: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(asset, source) < amount:
            logger.debug("Transfer of %s %s from %s rejected", amount, asset, source)
            return False
        self._balances[(asset, source)] -= amount
        self._balances[(asset, destination)] += amount
        return True

    def mint_units(self, asset: str, authority: str, to: str, amount: int) -> bool:
        expected = self._authorities.get(asset)
        if amount < 0 or (expected is not None and expected != authority):
            logger.debug("Mint of %s %s by %s rejected", amount, asset, authority)
            return False
        self._balances[(asset, to)] += amount
        self._supply[asset] += amount
        return True

    def burn_units(self, asset: str, owner: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(asset, owner) < amount:
            logger.debug("Burn of %s %s from %s rejected", amount, asset, owner)
            return False
        self._balances[(asset, owner)] -= amount
        self._supply[asset] -= amount
        return True

    @contextmanager
    def atomic(self) -> Iterator[None]:
        balances = dict(self._balances)
        supply = dict(self._supply)
        try:
            yield
        except BaseException:
            self._balances = defaultdict(int, balances)
            self._supply = defaultdict(int, supply)
            raise


class ManualClock:
    """Clock advanced explicitly by the host (tests, simulations)."""

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("Clock cannot move backwards")
        self._now = timestamp


class SystemClock:
    """Wall-clock seconds."""

    def now(self) -> int:
        return int(time.time())
