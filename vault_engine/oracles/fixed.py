"""Settable in-memory price feed."""
from __future__ import annotations

from ..errors import OracleOutOfBounds
from ..models import PriceQuote


class FixedPriceFeed:
    """Serve quotes pushed by the host."""

    def __init__(self, quotes: dict[str, PriceQuote] | None = None) -> None:
        self._quotes: dict[str, PriceQuote] = dict(quotes or {})

    def set_price(
        self, feed_id: str, price: int, publish_time: int, confidence_bps: int = 0
    ) -> None:
        self._quotes[feed_id] = PriceQuote(
            price=price, confidence_bps=confidence_bps, publish_time=publish_time
        )

    def get_price(self, feed_id: str) -> PriceQuote:
        quote = self._quotes.get(feed_id)
        if quote is None:
            raise OracleOutOfBounds("No price published for feed", feed_id=feed_id)
        return quote
