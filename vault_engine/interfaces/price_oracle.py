"""Price feed protocol — typed oracle quotes."""
from typing import Protocol

from ..models import PriceQuote


class PriceFeed(Protocol):
    """Abstract interface for fetching one asset price."""

    def get_price(self, feed_id: str) -> PriceQuote: ...
