"""Lending port — what leveraged positions need from a lending market."""
from typing import Protocol

from ..models import LendingMarket


class LendingPort(Protocol):
    """Injected lending market used by positions and liquidations."""

    @property
    def market(self) -> LendingMarket: ...

    def borrow(self, borrower: str, amount: int, recipient: str | None = None) -> int: ...

    def repay(self, borrower: str, amount: int, payer: str | None = None) -> int: ...

    def total_owed(self, borrower: str) -> int: ...
