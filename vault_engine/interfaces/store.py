"""Keyed store protocol — entity records keyed by (entity_type, owner, nonce)."""
from contextlib import AbstractContextManager
from typing import Any, Protocol

Key = tuple[str, str, int]


class KeyedStore(Protocol):
    """External storage for borrower accounts and positions."""

    def get(self, key: Key) -> Any | None: ...

    def put(self, key: Key, record: Any) -> None: ...

    def next_nonce(self, entity_type: str, owner: str) -> int: ...

    def atomic(self) -> AbstractContextManager[None]: ...
