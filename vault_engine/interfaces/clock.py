"""Clock protocol — externally supplied wall-clock seconds."""
from typing import Protocol


class Clock(Protocol):
    """Monotonic unix seconds supplied by the host."""

    def now(self) -> int: ...
