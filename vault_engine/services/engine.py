"""Wire vaults, markets, positions and liquidation from an ``AppConfig``."""
from __future__ import annotations

import logging

from ..config import AppConfig, MarketConfig, VaultConfig
from ..interfaces.clock import Clock
from ..interfaces.ledger import Ledger
from ..interfaces.price_oracle import PriceFeed
from ..interfaces.store import KeyedStore
from ..ledger.memory import InMemoryLedger, ManualClock, SystemClock
from ..ledger.store import InMemoryStore
from ..models import LendingMarket, Vault
from ..oracles.pyth import PythHermesFeed
from ..oracles.validation import OracleGuard, OraclePolicy
from .events import EventBus, LoggingEventSink
from .lending import LendingService
from .liquidation import LiquidationEngine
from .lp import LPPositionManager
from .positions import LeveragedPositionManager
from .vault import VaultService

logger = logging.getLogger(__name__)


def vault_from_config(cfg: VaultConfig, feed_id: str | None = None) -> Vault:
    fees = cfg.fees
    return Vault(
        base_asset=cfg.base_asset,
        share_asset=cfg.share_asset,
        account=cfg.account,
        treasury=cfg.treasury,
        mint_fee_bps=fees.mint_fee_bps,
        burn_fee_bps=fees.burn_fee_bps,
        vault_fee_share_bps=fees.vault_fee_share_bps,
        yield_vault_share_bps=fees.yield_vault_share_bps,
        yield_reward_bps=fees.yield_reward_bps,
        min_amount=cfg.min_amount,
        max_amount=cfg.max_amount,
        max_deviation_bps=cfg.max_deviation_bps,
        oracle_feed_id=feed_id or cfg.oracle_feed or None,
    )


def market_from_config(cfg: MarketConfig) -> LendingMarket:
    return LendingMarket(
        base_asset=cfg.base_asset,
        account=cfg.account,
        receipt_asset=cfg.receipt_asset,
        base_rate_bps=cfg.base_rate_bps,
        slope1_bps=cfg.slope1_bps,
        slope2_bps=cfg.slope2_bps,
        kink_bps=cfg.kink_bps,
        liquidation_threshold_bps=cfg.liquidation_threshold_bps,
        minimum_reserve=cfg.minimum_reserve,
    )


class Engine:
    """All configured services sharing one ledger, store, clock and event bus."""

    def __init__(
        self,
        ledger: Ledger,
        store: KeyedStore,
        clock: Clock,
        events: EventBus,
        oracle: OracleGuard,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.clock = clock
        self.events = events
        self.oracle = oracle
        self.vaults: dict[str, VaultService] = {}
        self.markets: dict[str, LendingService] = {}
        self.positions: LeveragedPositionManager | None = None
        self.liquidation: LiquidationEngine | None = None
        self.lp: LPPositionManager | None = None

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        ledger: Ledger | None = None,
        store: KeyedStore | None = None,
        clock: Clock | None = None,
        price_feed: PriceFeed | None = None,
        events: EventBus | None = None,
    ) -> Engine:
        """Build an engine; collaborators default to the in-memory ones.

        Without an explicit ``price_feed`` a Pyth Hermes feed is built from
        the oracle section, paired with the system clock unless one is given.
        Vault ``oracle_feed`` values may name a configured Pyth symbol or be a
        raw feed id.
        """
        ledger = ledger if ledger is not None else InMemoryLedger()
        store = store if store is not None else InMemoryStore()
        events = events if events is not None else EventBus([LoggingEventSink(logging.DEBUG)])
        if price_feed is None and cfg.oracle.provider == "pyth":
            price_feed = PythHermesFeed(cfg.oracle.pyth)
            # live quotes carry wall-clock publish times
            clock = clock if clock is not None else SystemClock()
        clock = clock if clock is not None else ManualClock()

        policy = OraclePolicy(
            max_staleness_seconds=cfg.oracle.max_staleness_seconds,
            max_confidence_bps=cfg.oracle.max_confidence_bps,
            min_price=cfg.oracle.min_price,
            max_price=cfg.oracle.max_price,
        )
        engine = cls(ledger, store, clock, events, OracleGuard(price_feed, clock, policy))

        feeds = cfg.oracle.pyth.feeds
        for name, vault_cfg in cfg.vaults.items():
            vault = vault_from_config(vault_cfg, feeds.get(vault_cfg.oracle_feed))
            if isinstance(ledger, InMemoryLedger):
                ledger.register_unit(vault.share_asset, vault.account)
            engine.vaults[name] = VaultService(vault, ledger, clock, events)
            logger.debug("Configured vault %s (shares %s)", name, vault.share_asset)

        for name, market_cfg in cfg.markets.items():
            market = market_from_config(market_cfg)
            if isinstance(ledger, InMemoryLedger):
                ledger.register_unit(market.receipt_asset, market.account)
            engine.markets[name] = LendingService(market, ledger, store, clock, events)
            logger.debug("Configured market %s (receipts %s)", name, market.receipt_asset)

        if cfg.leverage is not None:
            engine.positions = LeveragedPositionManager(
                engine.vaults[cfg.leverage.collateral_vault],
                engine.markets[cfg.leverage.borrow_market],
                engine.oracle,
                store,
                ledger,
                clock,
                events,
                cfg.leverage,
            )
            engine.liquidation = LiquidationEngine(engine.positions)

        if cfg.lp is not None:
            engine.lp = LPPositionManager(
                engine.vaults[cfg.lp.collateral_vault],
                engine.markets[cfg.lp.borrow_market],
                engine.oracle,
                store,
                ledger,
                clock,
                events,
                cfg.lp,
            )

        logger.info(
            "Engine ready: %d vault(s), %d market(s), leverage %s, LP %s",
            len(engine.vaults),
            len(engine.markets),
            "enabled" if engine.positions else "disabled",
            "enabled" if engine.lp else "disabled",
        )
        return engine
