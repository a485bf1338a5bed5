"""Integration tests: engine wiring from a YAML config."""
from __future__ import annotations

from pathlib import Path

import pytest

from vault_engine.config import load_config
from vault_engine.constants import PRICE_SCALE, SCALE
from vault_engine.ledger import InMemoryLedger, ManualClock, SystemClock
from vault_engine.oracles import FixedPriceFeed, PythHermesFeed
from vault_engine.services import Engine, EventBus, RecordingEventSink

NOW = 1_700_000_000


@pytest.fixture()
def engine_parts(sample_yaml_path: Path) -> tuple[Engine, InMemoryLedger, FixedPriceFeed, RecordingEventSink]:
    ledger = InMemoryLedger()
    feed = FixedPriceFeed()
    # vault oracle_feed "SUI" resolves through the Pyth feed map to "aaa"
    feed.set_price("aaa", 2 * PRICE_SCALE, NOW)
    recorder = RecordingEventSink()
    engine = Engine.from_config(
        load_config(sample_yaml_path),
        ledger=ledger,
        clock=ManualClock(NOW),
        price_feed=feed,
        events=EventBus([recorder]),
    )
    return engine, ledger, feed, recorder


class TestFromConfig:
    def test_services_are_wired(self, engine_parts: tuple) -> None:
        engine, _, _, _ = engine_parts
        assert set(engine.vaults) == {"SUI"}
        assert set(engine.markets) == {"USDC"}
        assert engine.vaults["SUI"].vault.oracle_feed_id == "aaa"
        assert engine.markets["USDC"].market.last_accrued_timestamp == NOW
        assert engine.positions is not None
        assert engine.liquidation is not None
        assert engine.liquidation.bonus_bps == 500
        assert engine.lp is not None
        assert engine.lp.quote_account == "lp:SUI"
        assert engine.lp.quote_asset == "USDC"
        assert engine.lp.vault is engine.vaults["SUI"]

    def test_default_price_feed_is_pyth(self, sample_yaml_path: Path) -> None:
        engine = Engine.from_config(load_config(sample_yaml_path))
        assert isinstance(engine.oracle.feed, PythHermesFeed)

    def test_live_feed_uses_wall_clock(self, sample_yaml_path: Path) -> None:
        engine = Engine.from_config(load_config(sample_yaml_path))
        assert isinstance(engine.clock, SystemClock)
        assert engine.clock.now() > NOW

    def test_explicit_clock_is_kept(self, sample_yaml_path: Path) -> None:
        clock = ManualClock(NOW)
        engine = Engine.from_config(load_config(sample_yaml_path), clock=clock)
        assert engine.clock is clock

    def test_end_to_end(self, engine_parts: tuple) -> None:
        engine, ledger, _, recorder = engine_parts
        ledger.credit("SUI", "alice", 1_001_000)
        ledger.credit("USDC", "lp", 500_000)

        engine.vaults["SUI"].mint("alice", 1_000_000)
        engine.markets["USDC"].supply("lp", 500_000)
        engine.positions.open("alice", 1_000, 150)
        settlement = engine.positions.close("alice", 0)

        # 995 shares at the post-open rate are worth 999 SUI; share rounding favours the pool
        assert settlement.payout == 979
        assert engine.vaults["SUI"].exchange_rate() > SCALE
        engine.vaults["SUI"].check_balance()
        assert ledger.balance_of("cSUI", "alice") == 995_000
        assert ledger.balance_of("lUSDC", "lp") == 500_000
        assert {type(e).__name__ for e in recorder.events} >= {
            "ShareMinted",
            "PositionOpened",
            "PositionClosed",
        }

    def test_lp_round_trip(self, engine_parts: tuple) -> None:
        engine, ledger, _, recorder = engine_parts
        ledger.credit("SUI", "alice", 1_000)
        ledger.credit("USDC", "alice", 2_000)
        ledger.credit("USDC", "lp", 500_000)
        engine.markets["USDC"].supply("lp", 500_000)

        position = engine.lp.open("alice", 1_000, 2_000, 150)
        assert ledger.balance_of("USDC", "lp:SUI") == 2_000
        settlement = engine.lp.close("alice", position.position_id)

        assert ledger.balance_of("USDC", "lp:SUI") == 0
        assert ledger.balance_of("USDC", "alice") == 2_000
        assert ledger.balance_of("SUI", "alice") == settlement.base_payout
        assert engine.markets["USDC"].market.total_borrowed == 0
        engine.vaults["SUI"].check_balance()
        assert {type(e).__name__ for e in recorder.events} >= {"LPPositionOpened", "LPPositionClosed"}
