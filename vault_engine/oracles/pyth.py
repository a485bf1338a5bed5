"""Pyth Network price oracle adapter.

Prices arrive either from the Hermes HTTP API or as raw ``PriceUpdateV2``
account bytes. Both are turned into ``PriceQuote`` here; nothing else in the
engine looks at Pyth's wire format.
"""
from __future__ import annotations

import logging
import ssl
import struct

import aiohttp
import certifi

from ..config import PythConfig
from ..constants import BPS_SCALE, PRICE_SCALE
from ..errors import OracleOutOfBounds
from ..models import PriceQuote

logger = logging.getLogger(__name__)

_PRICE_DECIMALS = len(str(PRICE_SCALE)) - 1

# PriceUpdateV2: discriminator(8) write_authority(32) verification_level(1|2)
# then feed_id(32) price(i64) conf(u64) exponent(i32) publish_time(i64) ...
_HEADER_SIZE = 8 + 32
_VERIFICATION_PARTIAL = 0
_VERIFICATION_FULL = 1
_FEED_ID_SIZE = 32
_PRICE_FIELDS = struct.Struct("<qQiq")


def _rescale(value: int, expo: int) -> int:
    """Convert ``value * 10**expo`` into PRICE_SCALE units without floats."""
    shift = expo + _PRICE_DECIMALS
    if shift >= 0:
        return value * 10**shift
    return value // 10**-shift


def quote_from_pyth(price: int, conf: int, expo: int, publish_time: int) -> PriceQuote:
    """Build a quote from Pyth's integer mantissa/exponent representation."""
    confidence_bps = conf * BPS_SCALE // price if price > 0 else BPS_SCALE
    return PriceQuote(
        price=_rescale(price, expo),
        confidence_bps=confidence_bps,
        publish_time=publish_time,
    )


def parse_price_update_account(data: bytes) -> tuple[bytes, PriceQuote]:
    """Decode a ``PriceUpdateV2`` account into ``(feed_id, quote)``."""
    if len(data) < _HEADER_SIZE + 1:
        raise OracleOutOfBounds("Price account too short", size=len(data))

    tag = data[_HEADER_SIZE]
    if tag == _VERIFICATION_PARTIAL:
        offset = _HEADER_SIZE + 2
    elif tag == _VERIFICATION_FULL:
        offset = _HEADER_SIZE + 1
    else:
        raise OracleOutOfBounds("Unknown verification level", tag=tag)

    end = offset + _FEED_ID_SIZE + _PRICE_FIELDS.size
    if len(data) < end:
        raise OracleOutOfBounds("Price account too short", size=len(data), required=end)

    feed_id = bytes(data[offset : offset + _FEED_ID_SIZE])
    price, conf, expo, publish_time = _PRICE_FIELDS.unpack_from(
        data, offset + _FEED_ID_SIZE
    )
    return feed_id, quote_from_pyth(price, conf, expo, publish_time)


class PythHermesFeed:
    """Fetch prices from Pyth Hermes and serve them synchronously from cache."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self._quotes: dict[str, PriceQuote] = {}

    def get_price(self, feed_id: str) -> PriceQuote:
        quote = self._quotes.get(_normalize(feed_id))
        if quote is None:
            raise OracleOutOfBounds("No cached price for feed", feed_id=feed_id)
        return quote

    def feed_id(self, symbol: str) -> str | None:
        return self.price_feeds.get(symbol)

    async def refresh(self, symbols: list[str] | None = None) -> dict[str, PriceQuote]:
        """Fetch current quotes from Hermes.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.

        Returns the quotes fetched, keyed by symbol. Transport errors are
        logged and leave the cache as it was.
        """
        quotes: dict[str, PriceQuote] = {}

        feeds = self.price_feeds
        if symbols is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in symbols}

        feed_ids = list(set(feeds.values()))
        if not feed_ids:
            return quotes

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return quotes

                    data = await response.json()
                    parsed = data.get("parsed", [])

                    id_to_symbols: dict[str, list[str]] = {}
                    for symbol, fid in feeds.items():
                        id_to_symbols.setdefault(_normalize(fid), []).append(symbol)

                    for item in parsed:
                        fid = _normalize(item.get("id", ""))
                        price_data = item.get("price", {})
                        quote = quote_from_pyth(
                            int(price_data.get("price", 0)),
                            int(price_data.get("conf", 0)),
                            int(price_data.get("expo", 0)),
                            int(price_data.get("publish_time", 0)),
                        )
                        self._quotes[fid] = quote
                        for symbol in id_to_symbols.get(fid, []):
                            quotes[symbol] = quote

                    logger.info("Fetched prices from Pyth Network:")
                    for symbol, quote in sorted(quotes.items()):
                        logger.info(
                            "  %s: %d (conf %d bps, t=%d)",
                            symbol,
                            quote.price,
                            quote.confidence_bps,
                            quote.publish_time,
                        )

        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)

        return quotes


def _normalize(feed_id: str) -> str:
    return feed_id.lower().removeprefix("0x")
