"""Unit tests for data models."""
from __future__ import annotations

import pytest

from vault_engine.constants import SCALE
from vault_engine.models import (
    HealthReport,
    LendingMarket,
    PriceQuote,
    Vault,
    position_borrower,
)


class TestVault:
    def test_defaults(self) -> None:
        v = Vault(base_asset="SUI", share_asset="cSUI", account="vault:SUI", treasury="t")
        assert v.mint_fee_bps == 50
        assert v.burn_fee_bps == 75
        assert v.vault_fee_share_bps == 8_000
        assert v.min_amount == 1_000
        assert v.paused is False

    def test_tracked_balance(self) -> None:
        v = Vault("SUI", "cSUI", "vault:SUI", "t", total_deposited=995_000, accrued_fees=4_000)
        assert v.tracked_balance == 999_000


class TestLendingMarket:
    def test_index_starts_at_scale(self) -> None:
        m = LendingMarket("USDC", "market:USDC", "lUSDC", 0, 0, 0, 8_000)
        assert m.accumulated_index == SCALE
        assert m.total_supply == 0


class TestPriceQuote:
    def test_frozen(self) -> None:
        q = PriceQuote(price=1, confidence_bps=0, publish_time=0)
        with pytest.raises(AttributeError):
            q.price = 2  # type: ignore[misc]


class TestHealthReport:
    @pytest.mark.parametrize("ltv,liquidatable", [(8_999, False), (9_000, True), (9_001, True)])
    def test_liquidatable_at_threshold(self, ltv: int, liquidatable: bool) -> None:
        report = HealthReport(
            collateral_value=1, debt_owed=1, ltv_bps=ltv, liquidation_threshold_bps=9_000, price=1
        )
        assert report.liquidatable is liquidatable


def test_position_borrower() -> None:
    assert position_borrower("alice", 3) == "alice/position/3"
