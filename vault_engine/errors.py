"""Engine error taxonomy.

Every error aborts the whole operation. Errors carry the numbers that tripped
them in ``context`` so callers can report them without re-reading state.
"""
from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base error class for engine errors"""

    def __init__(self, message: str = "", **context: Any) -> None:
        self.message = message or self.__class__.__name__
        self.context = context
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class InvalidAmount(EngineError):
    """Amount is zero, dust, above the cap, or inconsistent with inputs"""


class ArithmeticOverflow(EngineError):
    """Checked arithmetic failed: overflow, underflow or division by zero"""


class StaleOracle(EngineError):
    """Oracle price is older than the allowed staleness window"""


class OracleOutOfBounds(EngineError):
    """Oracle price or confidence outside accepted bounds"""


class InsufficientLiquidity(EngineError):
    """Not enough free liquidity to serve the request"""


class SlippageExceeded(EngineError):
    """Value moved further than the caller tolerates"""


class Unauthorized(EngineError):
    """Caller does not own the entity it is acting on"""


class VaultBalanceMismatch(EngineError):
    """Actual balance disagrees with tracked accounting"""


class PositionNotOpen(EngineError):
    """Position is closed or does not exist"""


class NotLiquidatable(EngineError):
    """Position is healthy"""


class ProtocolPaused(EngineError):
    """Vault or market is paused"""


class InvalidConfig(EngineError, ValueError):
    """Configuration or parameters rejected"""


class TransferFailed(EngineError):
    """Ledger primitive reported failure"""
