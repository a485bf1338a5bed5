"""Data models.

State objects (vault, market, borrower accounts, positions) are mutable and
owned by the service operating on them. Quotes, receipts and events are frozen.
"""
from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    DEFAULT_BURN_FEE_BPS,
    DEFAULT_LIQUIDATION_THRESHOLD_BPS,
    DEFAULT_MAX_AMOUNT,
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MIN_AMOUNT,
    DEFAULT_MINT_FEE_BPS,
    DEFAULT_VAULT_FEE_SHARE_BPS,
    DEFAULT_YIELD_REWARD_BPS,
    DEFAULT_YIELD_VAULT_SHARE_BPS,
    SCALE,
)

# ---------------------------------------------------------------------------
# Store entity types
# ---------------------------------------------------------------------------

BORROWER = "borrower"
POSITION = "position"
LP_POSITION = "lp_position"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class Vault:
    """Pooled base-asset vault issuing shares."""

    base_asset: str
    share_asset: str
    account: str
    treasury: str
    mint_fee_bps: int = DEFAULT_MINT_FEE_BPS
    burn_fee_bps: int = DEFAULT_BURN_FEE_BPS
    vault_fee_share_bps: int = DEFAULT_VAULT_FEE_SHARE_BPS
    yield_vault_share_bps: int = DEFAULT_YIELD_VAULT_SHARE_BPS
    yield_reward_bps: int = DEFAULT_YIELD_REWARD_BPS
    min_amount: int = DEFAULT_MIN_AMOUNT
    max_amount: int = DEFAULT_MAX_AMOUNT
    max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS
    oracle_feed_id: str | None = None
    paused: bool = False
    total_deposited: int = 0
    accrued_fees: int = 0
    expected_balance: int = 0
    locked_collateral: int = 0
    last_update: int = 0

    @property
    def tracked_balance(self) -> int:
        """Share-backing value: principal plus accrued fees."""
        return self.total_deposited + self.accrued_fees


@dataclass
class LendingMarket:
    """Single-asset lending market with a global borrow index."""

    base_asset: str
    account: str
    receipt_asset: str
    base_rate_bps: int
    slope1_bps: int
    slope2_bps: int
    kink_bps: int
    liquidation_threshold_bps: int = DEFAULT_LIQUIDATION_THRESHOLD_BPS
    minimum_reserve: int = 0
    paused: bool = False
    total_supply: int = 0
    total_borrowed: int = 0
    accumulated_index: int = SCALE
    last_accrued_timestamp: int = 0


@dataclass
class BorrowerAccount:
    owner: str
    principal: int = 0
    borrow_index: int = SCALE


@dataclass
class LeveragedPosition:
    position_id: int
    owner: str
    collateral_asset: str
    borrower: str
    collateral_amount: int
    borrowed_amount: int
    leverage_factor: int
    entry_price: int
    entry_exchange_rate_index: int
    created_at: int
    is_open: bool = True
    closed_at: int | None = None
    shares: int = 0


@dataclass
class LPPosition:
    """Base + quote pair; the base leg sits in the vault, the quote leg in the pair account."""

    position_id: int
    owner: str
    base_asset: str
    quote_asset: str
    borrower: str
    base_amount: int
    quote_amount: int
    borrowed_amount: int
    leverage_factor: int
    liquidity: int
    entry_price: int
    entry_exchange_rate_index: int
    created_at: int
    shares: int = 0
    is_open: bool = True
    closed_at: int | None = None


def position_borrower(owner: str, position_id: int) -> str:
    """Debt account identity used by a position inside the lending market."""
    return f"{owner}/position/{position_id}"


def lp_position_borrower(owner: str, position_id: int) -> str:
    return f"{owner}/lp/{position_id}"


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """Price scaled by PRICE_SCALE, confidence in bps of price."""

    price: int
    confidence_bps: int
    publish_time: int


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MintReceipt:
    amount: int
    fee: int
    vault_share: int
    treasury_share: int
    net: int
    shares: int
    exchange_rate: int


@dataclass(frozen=True)
class BurnReceipt:
    shares: int
    gross: int
    fee: int
    vault_share: int
    treasury_share: int
    net: int
    exchange_rate: int


@dataclass(frozen=True)
class CloseSettlement:
    entry_value: int
    current_value: int
    slippage_bps: int
    yield_value: int
    principal_fee: int
    yield_fee: int
    vault_fee_share: int
    treasury_fee_share: int
    repay_amount: int
    payout: int


@dataclass(frozen=True)
class LPSettlement:
    entry_value: int
    current_value: int
    slippage_bps: int
    yield_value: int
    principal_fee: int
    yield_fee: int
    fee_units: int
    repay_amount: int
    base_payout: int
    quote_payout: int


@dataclass(frozen=True)
class HealthReport:
    collateral_value: int
    debt_owed: int
    ltv_bps: int
    liquidation_threshold_bps: int
    price: int

    @property
    def liquidatable(self) -> bool:
        return self.ltv_bps >= self.liquidation_threshold_bps


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShareMinted:
    vault: str
    user: str
    amount: int
    shares: int
    fee: int
    vault_share: int
    treasury_share: int
    exchange_rate: int
    supply_before: int
    supply_after: int
    tracked_before: int
    tracked_after: int


@dataclass(frozen=True)
class ShareBurned:
    vault: str
    user: str
    shares: int
    returned: int
    fee: int
    vault_share: int
    treasury_share: int
    exchange_rate: int
    supply_before: int
    supply_after: int
    tracked_before: int
    tracked_after: int


@dataclass(frozen=True)
class FeesAccrued:
    vault: str
    source: str
    amount: int
    fees_before: int
    fees_after: int


@dataclass(frozen=True)
class InterestAccrued:
    market: str
    elapsed: int
    annual_rate: int
    index_before: int
    index_after: int
    timestamp: int


@dataclass(frozen=True)
class PositionOpened:
    owner: str
    position_id: int
    collateral: int
    borrowed: int
    leverage_factor: int
    entry_price: int
    entry_exchange_rate_index: int


@dataclass(frozen=True)
class PositionClosed:
    owner: str
    position_id: int
    collateral: int
    payout: int
    yield_value: int
    total_fee: int
    repaid: int
    exit_price: int


@dataclass(frozen=True)
class PositionLiquidated:
    owner: str
    position_id: int
    liquidator: str
    ltv_bps: int
    debt_repaid: int
    bonus: int
    seized: int
    returned_to_owner: int
    price: int


@dataclass(frozen=True)
class LPPositionOpened:
    owner: str
    position_id: int
    base_amount: int
    quote_amount: int
    borrowed: int
    open_fee: int
    liquidity: int
    entry_price: int
    entry_exchange_rate_index: int


@dataclass(frozen=True)
class LPPositionClosed:
    owner: str
    position_id: int
    base_returned: int
    quote_returned: int
    yield_value: int
    total_fee: int
    repaid: int
    exit_price: int
    liquidated_by: str | None = None
