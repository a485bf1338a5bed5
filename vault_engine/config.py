"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .constants import (
    BPS_SCALE,
    DEFAULT_BURN_FEE_BPS,
    DEFAULT_LIQUIDATION_BONUS_BPS,
    DEFAULT_LIQUIDATION_THRESHOLD_BPS,
    DEFAULT_LP_OPEN_FEE_BPS,
    DEFAULT_MAX_AMOUNT,
    DEFAULT_MAX_CONFIDENCE_BPS,
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MAX_LEVERAGE,
    DEFAULT_MAX_LP_QUOTE_AMOUNT,
    DEFAULT_MAX_PRICE,
    DEFAULT_MAX_SLIPPAGE_BPS,
    DEFAULT_MAX_STALENESS_SECONDS,
    DEFAULT_MIN_AMOUNT,
    DEFAULT_MIN_PRICE,
    DEFAULT_MINT_FEE_BPS,
    DEFAULT_PRINCIPAL_FEE_BPS,
    DEFAULT_VAULT_FEE_SHARE_BPS,
    DEFAULT_YIELD_FEE_BPS,
    DEFAULT_YIELD_REWARD_BPS,
    DEFAULT_YIELD_VAULT_SHARE_BPS,
    LEVERAGE_SCALE,
    MAX_LIQUIDATION_BONUS_BPS,
    MAX_RATE_PARAM_BPS,
    MIN_LEVERAGE,
    U64_MAX,
)
from .errors import InvalidConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeConfig:
    mint_fee_bps: int = DEFAULT_MINT_FEE_BPS
    burn_fee_bps: int = DEFAULT_BURN_FEE_BPS
    vault_fee_share_bps: int = DEFAULT_VAULT_FEE_SHARE_BPS
    yield_vault_share_bps: int = DEFAULT_YIELD_VAULT_SHARE_BPS
    yield_reward_bps: int = DEFAULT_YIELD_REWARD_BPS


@dataclass(frozen=True)
class VaultConfig:
    base_asset: str = ""
    share_asset: str = ""
    account: str = ""
    treasury: str = ""
    oracle_feed: str = ""
    fees: FeeConfig = field(default_factory=FeeConfig)
    min_amount: int = DEFAULT_MIN_AMOUNT
    max_amount: int = DEFAULT_MAX_AMOUNT
    max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS


@dataclass(frozen=True)
class MarketConfig:
    base_asset: str = ""
    account: str = ""
    receipt_asset: str = ""
    base_rate_bps: int = 0
    slope1_bps: int = 0
    slope2_bps: int = 0
    kink_bps: int = 8_000
    liquidation_threshold_bps: int = DEFAULT_LIQUIDATION_THRESHOLD_BPS
    minimum_reserve: int = 0


@dataclass(frozen=True)
class LeverageConfig:
    collateral_vault: str = ""
    borrow_market: str = ""
    max_leverage: int = DEFAULT_MAX_LEVERAGE
    principal_fee_bps: int = DEFAULT_PRINCIPAL_FEE_BPS
    yield_fee_bps: int = DEFAULT_YIELD_FEE_BPS
    vault_fee_share_bps: int = DEFAULT_VAULT_FEE_SHARE_BPS
    liquidation_bonus_bps: int = DEFAULT_LIQUIDATION_BONUS_BPS
    max_slippage_bps: int = DEFAULT_MAX_SLIPPAGE_BPS


@dataclass(frozen=True)
class LPConfig:
    collateral_vault: str = ""
    borrow_market: str = ""
    quote_account: str = ""
    max_leverage: int = DEFAULT_MAX_LEVERAGE
    open_fee_bps: int = DEFAULT_LP_OPEN_FEE_BPS
    principal_fee_bps: int = DEFAULT_PRINCIPAL_FEE_BPS
    yield_fee_bps: int = DEFAULT_YIELD_FEE_BPS
    vault_fee_share_bps: int = DEFAULT_VAULT_FEE_SHARE_BPS
    liquidation_bonus_bps: int = DEFAULT_LIQUIDATION_BONUS_BPS
    max_slippage_bps: int = DEFAULT_MAX_SLIPPAGE_BPS
    min_base_amount: int = DEFAULT_MIN_AMOUNT
    min_quote_amount: int = DEFAULT_MIN_AMOUNT
    max_quote_amount: int = DEFAULT_MAX_LP_QUOTE_AMOUNT


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OracleConfig:
    provider: str = "pyth"
    max_staleness_seconds: int = DEFAULT_MAX_STALENESS_SECONDS
    max_confidence_bps: int = DEFAULT_MAX_CONFIDENCE_BPS
    min_price: int = DEFAULT_MIN_PRICE
    max_price: int = DEFAULT_MAX_PRICE
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class AppConfig:
    vaults: dict[str, VaultConfig] = field(default_factory=dict)
    markets: dict[str, MarketConfig] = field(default_factory=dict)
    leverage: LeverageConfig | None = None
    lp: LPConfig | None = None
    oracle: OracleConfig = field(default_factory=OracleConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_fees(raw: dict[str, Any]) -> FeeConfig:
    return FeeConfig(
        mint_fee_bps=int(raw.get("mint_fee_bps", DEFAULT_MINT_FEE_BPS)),
        burn_fee_bps=int(raw.get("burn_fee_bps", DEFAULT_BURN_FEE_BPS)),
        vault_fee_share_bps=int(raw.get("vault_fee_share_bps", DEFAULT_VAULT_FEE_SHARE_BPS)),
        yield_vault_share_bps=int(
            raw.get("yield_vault_share_bps", DEFAULT_YIELD_VAULT_SHARE_BPS)
        ),
        yield_reward_bps=int(raw.get("yield_reward_bps", DEFAULT_YIELD_REWARD_BPS)),
    )


def _build_vaults(raw: dict[str, Any]) -> dict[str, VaultConfig]:
    vaults: dict[str, VaultConfig] = {}
    for asset, cfg in raw.items():
        vaults[asset] = VaultConfig(
            base_asset=cfg.get("base_asset", asset),
            share_asset=cfg.get("share_asset", f"c{asset}"),
            account=cfg.get("account", f"vault:{asset}"),
            treasury=cfg.get("treasury", ""),
            oracle_feed=cfg.get("oracle_feed", ""),
            fees=_build_fees(cfg.get("fees", {})),
            min_amount=int(cfg.get("min_amount", DEFAULT_MIN_AMOUNT)),
            max_amount=int(cfg.get("max_amount", DEFAULT_MAX_AMOUNT)),
            max_deviation_bps=int(cfg.get("max_deviation_bps", DEFAULT_MAX_DEVIATION_BPS)),
        )
    return vaults


def _build_markets(raw: dict[str, Any]) -> dict[str, MarketConfig]:
    markets: dict[str, MarketConfig] = {}
    for asset, cfg in raw.items():
        markets[asset] = MarketConfig(
            base_asset=cfg.get("base_asset", asset),
            account=cfg.get("account", f"market:{asset}"),
            receipt_asset=cfg.get("receipt_asset", f"l{asset}"),
            base_rate_bps=int(cfg.get("base_rate_bps", 0)),
            slope1_bps=int(cfg.get("slope1_bps", 0)),
            slope2_bps=int(cfg.get("slope2_bps", 0)),
            kink_bps=int(cfg.get("kink_bps", 8_000)),
            liquidation_threshold_bps=int(
                cfg.get("liquidation_threshold_bps", DEFAULT_LIQUIDATION_THRESHOLD_BPS)
            ),
            minimum_reserve=int(cfg.get("minimum_reserve", 0)),
        )
    return markets


def _build_leverage(raw: dict[str, Any] | None) -> LeverageConfig | None:
    if not raw:
        return None
    return LeverageConfig(
        collateral_vault=raw.get("collateral_vault", ""),
        borrow_market=raw.get("borrow_market", ""),
        max_leverage=int(raw.get("max_leverage", DEFAULT_MAX_LEVERAGE)),
        principal_fee_bps=int(raw.get("principal_fee_bps", DEFAULT_PRINCIPAL_FEE_BPS)),
        yield_fee_bps=int(raw.get("yield_fee_bps", DEFAULT_YIELD_FEE_BPS)),
        vault_fee_share_bps=int(raw.get("vault_fee_share_bps", DEFAULT_VAULT_FEE_SHARE_BPS)),
        liquidation_bonus_bps=int(
            raw.get("liquidation_bonus_bps", DEFAULT_LIQUIDATION_BONUS_BPS)
        ),
        max_slippage_bps=int(raw.get("max_slippage_bps", DEFAULT_MAX_SLIPPAGE_BPS)),
    )


def _build_lp(raw: dict[str, Any] | None) -> LPConfig | None:
    if not raw:
        return None
    vault = raw.get("collateral_vault", "")
    return LPConfig(
        collateral_vault=vault,
        borrow_market=raw.get("borrow_market", ""),
        quote_account=raw.get("quote_account", f"lp:{vault}"),
        max_leverage=int(raw.get("max_leverage", DEFAULT_MAX_LEVERAGE)),
        open_fee_bps=int(raw.get("open_fee_bps", DEFAULT_LP_OPEN_FEE_BPS)),
        principal_fee_bps=int(raw.get("principal_fee_bps", DEFAULT_PRINCIPAL_FEE_BPS)),
        yield_fee_bps=int(raw.get("yield_fee_bps", DEFAULT_YIELD_FEE_BPS)),
        vault_fee_share_bps=int(raw.get("vault_fee_share_bps", DEFAULT_VAULT_FEE_SHARE_BPS)),
        liquidation_bonus_bps=int(
            raw.get("liquidation_bonus_bps", DEFAULT_LIQUIDATION_BONUS_BPS)
        ),
        max_slippage_bps=int(raw.get("max_slippage_bps", DEFAULT_MAX_SLIPPAGE_BPS)),
        min_base_amount=int(raw.get("min_base_amount", DEFAULT_MIN_AMOUNT)),
        min_quote_amount=int(raw.get("min_quote_amount", DEFAULT_MIN_AMOUNT)),
        max_quote_amount=int(raw.get("max_quote_amount", DEFAULT_MAX_LP_QUOTE_AMOUNT)),
    )


def _build_oracle(raw: dict[str, Any]) -> OracleConfig:
    pyth_raw = raw.get("pyth", {})
    return OracleConfig(
        provider=raw.get("provider", "pyth"),
        max_staleness_seconds=int(
            raw.get("max_staleness_seconds", DEFAULT_MAX_STALENESS_SECONDS)
        ),
        max_confidence_bps=int(raw.get("max_confidence_bps", DEFAULT_MAX_CONFIDENCE_BPS)),
        min_price=int(raw.get("min_price", DEFAULT_MIN_PRICE)),
        max_price=int(raw.get("max_price", DEFAULT_MAX_PRICE)),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        vaults=_build_vaults(raw.get("vaults", {})),
        markets=_build_markets(raw.get("markets", {})),
        leverage=_build_leverage(raw.get("leverage")),
        lp=_build_lp(raw.get("lp")),
        oracle=_build_oracle(raw.get("oracle", {})),
    )

    validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _check_bps(name: str, value: int, upper: int = BPS_SCALE) -> None:
    if not 0 <= value <= upper:
        raise InvalidConfig(f"{name} must be within [0, {upper}] bps", **{name: value})


def validate_market(market: MarketConfig) -> None:
    """Reject interest model and risk parameters outside sane bounds."""
    _check_bps("base_rate_bps", market.base_rate_bps, MAX_RATE_PARAM_BPS)
    _check_bps("slope1_bps", market.slope1_bps, MAX_RATE_PARAM_BPS)
    _check_bps("slope2_bps", market.slope2_bps, MAX_RATE_PARAM_BPS)
    _check_bps("kink_bps", market.kink_bps)
    if not 0 < market.liquidation_threshold_bps < BPS_SCALE:
        raise InvalidConfig(
            "liquidation_threshold_bps must be within (0, 10000)",
            liquidation_threshold_bps=market.liquidation_threshold_bps,
        )
    if market.minimum_reserve < 0:
        raise InvalidConfig("minimum_reserve must not be negative")


def validate_vault(vault: VaultConfig) -> None:
    fees = vault.fees
    for name in (
        "mint_fee_bps",
        "burn_fee_bps",
        "vault_fee_share_bps",
        "yield_vault_share_bps",
        "yield_reward_bps",
    ):
        _check_bps(name, getattr(fees, name))
    if not vault.treasury:
        raise InvalidConfig(f"Vault '{vault.base_asset}' has no treasury")
    if not 0 < vault.min_amount <= vault.max_amount <= U64_MAX:
        raise InvalidConfig(
            "Vault amount bounds are invalid",
            min_amount=vault.min_amount,
            max_amount=vault.max_amount,
        )
    if vault.max_deviation_bps < 0:
        raise InvalidConfig("max_deviation_bps must not be negative")


def validate_leverage(leverage: LeverageConfig | LPConfig) -> None:
    if leverage.max_leverage < MIN_LEVERAGE:
        raise InvalidConfig("max_leverage must be at least 100", max_leverage=leverage.max_leverage)
    _check_bps("principal_fee_bps", leverage.principal_fee_bps)
    _check_bps("yield_fee_bps", leverage.yield_fee_bps)
    _check_bps("vault_fee_share_bps", leverage.vault_fee_share_bps)
    _check_bps("liquidation_bonus_bps", leverage.liquidation_bonus_bps, MAX_LIQUIDATION_BONUS_BPS)
    _check_bps("max_slippage_bps", leverage.max_slippage_bps)


def validate_lp(lp: LPConfig) -> None:
    validate_leverage(lp)
    _check_bps("open_fee_bps", lp.open_fee_bps)
    if not lp.quote_account:
        raise InvalidConfig("LP section needs a quote_account")
    if not 0 < lp.min_quote_amount <= lp.max_quote_amount <= U64_MAX:
        raise InvalidConfig(
            "LP quote bounds are invalid",
            min_quote_amount=lp.min_quote_amount,
            max_quote_amount=lp.max_quote_amount,
        )
    if lp.min_base_amount <= 0:
        raise InvalidConfig("min_base_amount must be positive", min_base_amount=lp.min_base_amount)


def _validate_position_section(
    name: str, section: LeverageConfig | LPConfig, cfg: AppConfig, opening_ltv_bps: int
) -> None:
    """Cross-check a position section against the vault and market it names."""
    if section.collateral_vault not in cfg.vaults:
        raise InvalidConfig(f"{name} references unknown vault '{section.collateral_vault}'")
    if section.borrow_market not in cfg.markets:
        raise InvalidConfig(f"{name} references unknown market '{section.borrow_market}'")
    vault = cfg.vaults[section.collateral_vault]
    if not vault.oracle_feed:
        raise InvalidConfig(
            f"Vault '{vault.base_asset}' backs {name.lower()} but has no oracle_feed"
        )
    threshold = cfg.markets[section.borrow_market].liquidation_threshold_bps
    # a position opened at max leverage must start below the liquidation line
    if opening_ltv_bps >= threshold:
        raise InvalidConfig(
            f"{name} max_leverage opens positions at or above the liquidation threshold",
            max_leverage=section.max_leverage,
            opening_ltv_bps=opening_ltv_bps,
            liquidation_threshold_bps=threshold,
        )


def validate(cfg: AppConfig) -> None:
    """Raise InvalidConfig on invalid configuration."""
    if not cfg.vaults and not cfg.markets:
        raise InvalidConfig("At least one vault or market must be configured")

    for vault in cfg.vaults.values():
        validate_vault(vault)
    for market in cfg.markets.values():
        validate_market(market)

    if cfg.oracle.min_price <= 0 or cfg.oracle.min_price > cfg.oracle.max_price:
        raise InvalidConfig(
            "Oracle price bounds are invalid",
            min_price=cfg.oracle.min_price,
            max_price=cfg.oracle.max_price,
        )

    if cfg.leverage is not None:
        validate_leverage(cfg.leverage)
        leverage_ltv = (cfg.leverage.max_leverage - LEVERAGE_SCALE) * 100
        _validate_position_section("Leverage", cfg.leverage, cfg, leverage_ltv)

    if cfg.lp is not None:
        validate_lp(cfg.lp)
        # LP debt is measured against the whole pair, borrowed share (L-100)/L
        lp_ltv = (cfg.lp.max_leverage - LEVERAGE_SCALE) * BPS_SCALE // cfg.lp.max_leverage
        _validate_position_section("LP", cfg.lp, cfg, lp_ltv)
