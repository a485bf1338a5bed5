"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from vault_engine.config import LeverageConfig, LPConfig, PythConfig
from vault_engine.constants import PRICE_SCALE
from vault_engine.ledger import InMemoryLedger, InMemoryStore, ManualClock
from vault_engine.models import LendingMarket, Vault
from vault_engine.oracles import FixedPriceFeed, OracleGuard, OraclePolicy
from vault_engine.services import (
    EventBus,
    LendingService,
    LeveragedPositionManager,
    LiquidationEngine,
    LPPositionManager,
    RecordingEventSink,
    VaultService,
)

START_TIME = 1_700_000_000

SUI_PRICE = 2 * PRICE_SCALE  # $2.00
MARKET_LIQUIDITY = 1_000_000


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(start=START_TIME)


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def recorder() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture()
def bus(recorder: RecordingEventSink) -> EventBus:
    return EventBus([recorder])


@pytest.fixture()
def price_feed(clock: ManualClock) -> FixedPriceFeed:
    feed = FixedPriceFeed()
    feed.set_price("SUI", SUI_PRICE, publish_time=clock.now())
    return feed


@pytest.fixture()
def oracle(price_feed: FixedPriceFeed, clock: ManualClock) -> OracleGuard:
    return OracleGuard(price_feed, clock, OraclePolicy())


# ---------------------------------------------------------------------------
# Vault & market
# ---------------------------------------------------------------------------


@pytest.fixture()
def vault() -> Vault:
    return Vault(
        base_asset="SUI",
        share_asset="cSUI",
        account="vault:SUI",
        treasury="treasury",
        oracle_feed_id="SUI",
    )


@pytest.fixture()
def vault_service(
    vault: Vault, ledger: InMemoryLedger, clock: ManualClock, bus: EventBus
) -> VaultService:
    ledger.register_unit(vault.share_asset, vault.account)
    return VaultService(vault, ledger, clock, bus)


@pytest.fixture()
def market() -> LendingMarket:
    return LendingMarket(
        base_asset="USDC",
        account="market:USDC",
        receipt_asset="lUSDC",
        base_rate_bps=200,
        slope1_bps=1_000,
        slope2_bps=10_000,
        kink_bps=8_000,
        liquidation_threshold_bps=9_000,
    )


@pytest.fixture()
def lending(
    market: LendingMarket,
    ledger: InMemoryLedger,
    store: InMemoryStore,
    clock: ManualClock,
    bus: EventBus,
) -> LendingService:
    ledger.register_unit(market.receipt_asset, market.account)
    return LendingService(market, ledger, store, clock, bus)


@pytest.fixture()
def funded_lending(lending: LendingService, ledger: InMemoryLedger) -> LendingService:
    """Market with MARKET_LIQUIDITY supplied by ``lp``."""
    ledger.credit("USDC", "lp", MARKET_LIQUIDITY)
    lending.supply("lp", MARKET_LIQUIDITY)
    return lending


# ---------------------------------------------------------------------------
# Leverage
# ---------------------------------------------------------------------------


@pytest.fixture()
def leverage_config() -> LeverageConfig:
    return LeverageConfig(
        collateral_vault="SUI",
        borrow_market="USDC",
        max_leverage=200,
        principal_fee_bps=200,
        yield_fee_bps=1_000,
        vault_fee_share_bps=8_000,
        liquidation_bonus_bps=500,
        max_slippage_bps=100,
    )


@pytest.fixture()
def manager(
    vault_service: VaultService,
    funded_lending: LendingService,
    oracle: OracleGuard,
    store: InMemoryStore,
    ledger: InMemoryLedger,
    clock: ManualClock,
    bus: EventBus,
    leverage_config: LeverageConfig,
) -> LeveragedPositionManager:
    return LeveragedPositionManager(
        vault_service, funded_lending, oracle, store, ledger, clock, bus, leverage_config
    )


@pytest.fixture()
def liquidation(manager: LeveragedPositionManager) -> LiquidationEngine:
    return LiquidationEngine(manager)


# ---------------------------------------------------------------------------
# LP positions
# ---------------------------------------------------------------------------


@pytest.fixture()
def lp_config() -> LPConfig:
    return LPConfig(
        collateral_vault="SUI",
        borrow_market="USDC",
        quote_account="lp:SUI",
        max_leverage=200,
        open_fee_bps=100,
        principal_fee_bps=200,
        yield_fee_bps=1_000,
        vault_fee_share_bps=8_000,
        liquidation_bonus_bps=500,
        max_slippage_bps=100,
    )


@pytest.fixture()
def lp_manager(
    vault_service: VaultService,
    funded_lending: LendingService,
    oracle: OracleGuard,
    store: InMemoryStore,
    ledger: InMemoryLedger,
    clock: ManualClock,
    bus: EventBus,
    lp_config: LPConfig,
) -> LPPositionManager:
    return LPPositionManager(
        vault_service, funded_lending, oracle, store, ledger, clock, bus, lp_config
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.example.com/v2/updates/price/latest",
        feeds={"SUI": "aaa111", "BTC": "bbb222", "USDC": "ccc333"},
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    vaults:
      SUI:
        treasury: "treasury:SUI"
        oracle_feed: SUI
        fees:
          mint_fee_bps: 50
          burn_fee_bps: 75
    markets:
      USDC:
        base_rate_bps: 200
        slope1_bps: 1000
        slope2_bps: 10000
        kink_bps: 8000
        liquidation_threshold_bps: 9000
    leverage:
      collateral_vault: SUI
      borrow_market: USDC
      max_leverage: 180
    lp:
      collateral_vault: SUI
      borrow_market: USDC
      max_leverage: 200
    oracle:
      provider: pyth
      max_staleness_seconds: 120
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {SUI: "aaa", USDC: "bbb"}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
