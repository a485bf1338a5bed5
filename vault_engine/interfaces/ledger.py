"""Ledger protocol — asset transfer and unit issuance primitives."""
from contextlib import AbstractContextManager
from typing import Protocol


class Ledger(Protocol):
    """Abstract interface for the hosting asset ledger.

    Primitives return ``True`` on success and ``False`` on failure.
    Authorization is the ledger's concern.
    """

    def transfer(self, asset: str, source: str, destination: str, amount: int) -> bool: ...

    def mint_units(self, asset: str, authority: str, to: str, amount: int) -> bool: ...

    def burn_units(self, asset: str, owner: str, amount: int) -> bool: ...

    def balance_of(self, asset: str, holder: str) -> int: ...

    def total_supply(self, asset: str) -> int: ...

    def atomic(self) -> AbstractContextManager[None]: ...
