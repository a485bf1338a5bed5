"""Oracle adapters and price validation."""
from .fixed import FixedPriceFeed
from .pyth import PythHermesFeed, parse_price_update_account, quote_from_pyth
from .validation import OracleGuard, OraclePolicy

__all__ = [
    "FixedPriceFeed",
    "OracleGuard",
    "OraclePolicy",
    "PythHermesFeed",
    "parse_price_update_account",
    "quote_from_pyth",
]
