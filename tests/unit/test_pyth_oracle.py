"""Unit tests for the Pyth adapter: Hermes responses and raw account bytes."""
from __future__ import annotations

import struct
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vault_engine.config import PythConfig
from vault_engine.errors import OracleOutOfBounds
from vault_engine.oracles import PythHermesFeed, parse_price_update_account, quote_from_pyth


@pytest.fixture()
def feed(sample_pyth_config: PythConfig) -> PythHermesFeed:
    return PythHermesFeed(sample_pyth_config)


def _make_pyth_response(items: list[dict]) -> dict:
    return {"parsed": items}


def _mock_session(response: AsyncMock | None = None, error: Exception | None = None) -> AsyncMock:
    session = AsyncMock()
    if error is not None:
        session.get = MagicMock(side_effect=error)
    else:
        session.get = MagicMock(return_value=response)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    return session


def _mock_response(status: int, data: dict | None = None) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=data or {})
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


class TestQuoteFromPyth:
    def test_rescales_exponent(self) -> None:
        quote = quote_from_pyth(350_000_000, 350_000, -8, 1_700_000_000)
        assert quote.price == 3_500_000
        assert quote.confidence_bps == 10
        assert quote.publish_time == 1_700_000_000

    def test_positive_exponent(self) -> None:
        assert quote_from_pyth(5, 0, 2, 0).price == 500_000_000

    def test_non_positive_price_has_full_uncertainty(self) -> None:
        assert quote_from_pyth(0, 1, -8, 0).confidence_bps == 10_000


class TestParsePriceUpdateAccount:
    FEED_ID = bytes(range(32))

    def _account(self, verification: bytes) -> bytes:
        header = b"\x22" * 8 + b"\x11" * 32
        body = struct.pack("<qQiq", 200_000_000, 100_000, -8, 1_700_000_123)
        return header + verification + self.FEED_ID + body + b"\x00" * 16

    def test_fully_verified(self) -> None:
        feed_id, quote = parse_price_update_account(self._account(b"\x01"))
        assert feed_id == self.FEED_ID
        assert quote.price == 2_000_000
        assert quote.confidence_bps == 5
        assert quote.publish_time == 1_700_000_123

    def test_partially_verified_skips_signature_count(self) -> None:
        feed_id, quote = parse_price_update_account(self._account(b"\x00\x05"))
        assert feed_id == self.FEED_ID
        assert quote.price == 2_000_000

    def test_unknown_verification_level(self) -> None:
        with pytest.raises(OracleOutOfBounds, match="verification level"):
            parse_price_update_account(self._account(b"\x07"))

    def test_truncated_account(self) -> None:
        with pytest.raises(OracleOutOfBounds, match="too short"):
            parse_price_update_account(self._account(b"\x01")[:60])


class TestPythHermesFeed:
    @pytest.mark.asyncio
    async def test_parses_response_correctly(self, feed: PythHermesFeed) -> None:
        data = _make_pyth_response(
            [
                {"id": "aaa111", "price": {"price": "350000000", "conf": "0", "expo": "-8", "publish_time": 10}},
                {"id": "0xBBB222", "price": {"price": "10000000000000", "conf": "0", "expo": "-8", "publish_time": 11}},
            ]
        )
        session = _mock_session(_mock_response(200, data))

        with patch("vault_engine.oracles.pyth.aiohttp.ClientSession", return_value=session):
            with patch("vault_engine.oracles.pyth.aiohttp.TCPConnector"):
                quotes = await feed.refresh()

        assert quotes["SUI"].price == 3_500_000
        assert quotes["BTC"].price == 100_000_000_000
        assert "USDC" not in quotes
        assert feed.get_price("aaa111").publish_time == 10
        assert feed.get_price("0xbbb222").price == 100_000_000_000

    @pytest.mark.asyncio
    async def test_handles_http_error(self, feed: PythHermesFeed) -> None:
        session = _mock_session(_mock_response(500))

        with patch("vault_engine.oracles.pyth.aiohttp.ClientSession", return_value=session):
            with patch("vault_engine.oracles.pyth.aiohttp.TCPConnector"):
                quotes = await feed.refresh()

        assert quotes == {}
        with pytest.raises(OracleOutOfBounds):
            feed.get_price("aaa111")

    @pytest.mark.asyncio
    async def test_handles_network_error(self, feed: PythHermesFeed) -> None:
        session = _mock_session(error=ConnectionError("timeout"))

        with patch("vault_engine.oracles.pyth.aiohttp.ClientSession", return_value=session):
            with patch("vault_engine.oracles.pyth.aiohttp.TCPConnector"):
                quotes = await feed.refresh()

        assert quotes == {}

    @pytest.mark.asyncio
    async def test_symbol_filter(self, feed: PythHermesFeed) -> None:
        data = _make_pyth_response(
            [{"id": "aaa111", "price": {"price": "350000000", "conf": "0", "expo": "-8", "publish_time": 1}}]
        )
        session = _mock_session(_mock_response(200, data))

        with patch("vault_engine.oracles.pyth.aiohttp.ClientSession", return_value=session):
            with patch("vault_engine.oracles.pyth.aiohttp.TCPConnector"):
                quotes = await feed.refresh(symbols=["SUI"])

        assert "SUI" in quotes
        assert "BTC" not in quotes
        url = session.get.call_args[0][0]
        assert "ids[]=aaa111" in url
        assert "bbb222" not in url

    @pytest.mark.asyncio
    async def test_empty_feeds_returns_empty(self) -> None:
        feed = PythHermesFeed(PythConfig(hermes_url="https://x.com", feeds={}))
        assert await feed.refresh() == {}

    def test_feed_id_lookup(self, feed: PythHermesFeed) -> None:
        assert feed.feed_id("SUI") == "aaa111"
        assert feed.feed_id("DOGE") is None
