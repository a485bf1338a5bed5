"""Engine-side oracle validation: freshness, confidence and absolute bounds."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..constants import (
    DEFAULT_MAX_CONFIDENCE_BPS,
    DEFAULT_MAX_PRICE,
    DEFAULT_MAX_STALENESS_SECONDS,
    DEFAULT_MIN_PRICE,
)
from ..errors import InvalidConfig, OracleOutOfBounds, StaleOracle
from ..interfaces.clock import Clock
from ..interfaces.price_oracle import PriceFeed
from ..models import PriceQuote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OraclePolicy:
    max_staleness_seconds: int = DEFAULT_MAX_STALENESS_SECONDS
    max_confidence_bps: int = DEFAULT_MAX_CONFIDENCE_BPS
    min_price: int = DEFAULT_MIN_PRICE
    max_price: int = DEFAULT_MAX_PRICE


class OracleGuard:
    """Wrap a ``PriceFeed`` and reject quotes the engine must not act on."""

    def __init__(self, feed: PriceFeed | None, clock: Clock, policy: OraclePolicy) -> None:
        self.feed = feed
        self._clock = clock
        self.policy = policy

    def validated_price(self, feed_id: str | None) -> PriceQuote:
        if not feed_id or self.feed is None:
            raise InvalidConfig("Asset requires an oracle but none is configured", feed_id=feed_id)

        quote = self.feed.get_price(feed_id)
        self.check(quote, feed_id)
        return quote

    def check(self, quote: PriceQuote, feed_id: str = "") -> None:
        """Raise if ``quote`` is stale, too uncertain or out of bounds."""
        policy = self.policy
        now = self._clock.now()
        if quote.publish_time > now:
            logger.warning(
                "Rejected price for %s published %ss in the future", feed_id, quote.publish_time - now
            )
            raise StaleOracle(
                "Oracle price published in the future",
                feed_id=feed_id,
                publish_time=quote.publish_time,
                now=now,
            )
        age = now - quote.publish_time
        if age > policy.max_staleness_seconds:
            logger.warning("Rejected stale price for %s: %ss old", feed_id, age)
            raise StaleOracle(
                "Oracle price is stale",
                feed_id=feed_id,
                age=age,
                max_staleness=policy.max_staleness_seconds,
            )
        if quote.confidence_bps > policy.max_confidence_bps:
            logger.warning(
                "Rejected price for %s: confidence %s bps", feed_id, quote.confidence_bps
            )
            raise OracleOutOfBounds(
                "Oracle confidence interval too wide",
                feed_id=feed_id,
                confidence_bps=quote.confidence_bps,
                max_confidence_bps=policy.max_confidence_bps,
            )
        if quote.price <= 0 or not policy.min_price <= quote.price <= policy.max_price:
            logger.warning("Rejected out-of-bounds price for %s: %s", feed_id, quote.price)
            raise OracleOutOfBounds(
                "Oracle price outside bounds",
                feed_id=feed_id,
                price=quote.price,
                min_price=policy.min_price,
                max_price=policy.max_price,
            )
