"""Command-line interface for the vault engine."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import AppConfig, load_config
from .constants import BPS_SCALE, PRICE_SCALE, SCALE
from .errors import EngineError
from .ledger import SystemClock
from .logging_setup import configure_logging
from .oracles import OracleGuard, OraclePolicy, PythHermesFeed
from .services.engine import market_from_config
from .services.interest import InterestRateModel


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="vault-engine",
        description="Pooled-yield vault, lending market and leverage engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Validate the configuration and print a summary")

    prices_parser = sub.add_parser("prices", help="Fetch oracle prices and validate them")
    prices_parser.add_argument(
        "symbols",
        nargs="*",
        help="Symbols to fetch (default: every configured feed)",
    )

    rates_parser = sub.add_parser("rates", help="Print the borrow-rate curve of each market")
    rates_parser.add_argument("--market", default=None, help="Only this market")
    rates_parser.add_argument(
        "--step",
        type=int,
        default=1_000,
        help="Utilization step in bps (default: 1000)",
    )

    return parser


def _pct(value: int, scale: int) -> str:
    return f"{value * 100 / scale:.2f}%"


def cmd_check(config: AppConfig) -> None:
    print(f"Vaults ({len(config.vaults)}):")
    for name, vault in sorted(config.vaults.items()):
        print(
            f"  {name}: shares={vault.share_asset} mint={vault.fees.mint_fee_bps}bps "
            f"burn={vault.fees.burn_fee_bps}bps oracle={vault.oracle_feed or '-'}"
        )
    print(f"Markets ({len(config.markets)}):")
    for name, market in sorted(config.markets.items()):
        print(
            f"  {name}: base={market.base_rate_bps}bps slope1={market.slope1_bps}bps "
            f"slope2={market.slope2_bps}bps kink={market.kink_bps}bps "
            f"liquidation={market.liquidation_threshold_bps}bps"
        )
    if config.leverage is None:
        print("Leverage: disabled")
    else:
        lev = config.leverage
        print(
            f"Leverage: {lev.collateral_vault} -> {lev.borrow_market}, "
            f"max {lev.max_leverage / 100:.2f}x, bonus {lev.liquidation_bonus_bps}bps"
        )
    if config.lp is None:
        print("LP: disabled")
    else:
        lp = config.lp
        print(
            f"LP: {lp.collateral_vault}/{lp.borrow_market} quote at {lp.quote_account}, "
            f"max {lp.max_leverage / 100:.2f}x, open fee {lp.open_fee_bps}bps"
        )


def cmd_rates(config: AppConfig, market_name: str | None, step: int) -> int:
    if step <= 0:
        print("--step must be positive")
        return 1
    names = sorted(config.markets)
    if market_name is not None:
        if market_name not in config.markets:
            print(f"Unknown market: {market_name}")
            return 1
        names = [market_name]

    for name in names:
        model = InterestRateModel.for_market(market_from_config(config.markets[name]))
        print(f"{name}:")
        for util_bps in range(0, BPS_SCALE + 1, step):
            rate = model.annual_rate(util_bps * SCALE // BPS_SCALE)
            print(f"  utilization {_pct(util_bps, BPS_SCALE):>8}  borrow APR {_pct(rate, SCALE)}")
    return 0


async def cmd_prices(config: AppConfig, symbols: list[str]) -> int:
    feed = PythHermesFeed(config.oracle.pyth)
    quotes = await feed.refresh(symbols or None)
    if not quotes:
        print("No prices fetched")
        return 1

    guard = OracleGuard(
        feed,
        SystemClock(),
        OraclePolicy(
            max_staleness_seconds=config.oracle.max_staleness_seconds,
            max_confidence_bps=config.oracle.max_confidence_bps,
            min_price=config.oracle.min_price,
            max_price=config.oracle.max_price,
        ),
    )
    for symbol, quote in sorted(quotes.items()):
        try:
            guard.check(quote, symbol)
            verdict = "ok"
        except EngineError as e:
            verdict = str(e)
        print(
            f"{symbol:<8} {quote.price / PRICE_SCALE:>16,.6f}  "
            f"conf {quote.confidence_bps}bps  {verdict}"
        )
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "check":
        cmd_check(config)
        code = 0
    elif args.command == "rates":
        code = cmd_rates(config, args.market, args.step)
    else:
        code = asyncio.run(cmd_prices(config, args.symbols))
    sys.exit(code)
