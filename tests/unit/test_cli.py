"""Unit tests for CLI argument parsing and commands."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from vault_engine.cli import build_parser, cmd_prices, cmd_rates, main
from vault_engine.config import load_config
from vault_engine.models import PriceQuote


class TestBuildParser:
    def test_check_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["check"])
        assert args.command == "check"

    def test_prices_command_default_symbols(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["prices"])
        assert args.command == "prices"
        assert args.symbols == []

    def test_prices_command_symbols(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["prices", "SUI", "BTC"])
        assert args.symbols == ["SUI", "BTC"]

    def test_rates_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["rates", "--market", "USDC", "--step", "500"])
        assert args.market == "USDC"
        assert args.step == 500

    def test_rates_default_step(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["rates"])
        assert args.market is None
        assert args.step == 1_000

    def test_config_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "/tmp/c.yaml", "check"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--log-level", "DEBUG", "check"])
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([])
        assert args.command is None


class TestCommands:
    def test_check_prints_summary(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(sample_yaml_path), "check"])
        assert exc.value.code == 0
        out = capsys.readouterr().out
        assert "SUI: shares=cSUI" in out
        assert "Leverage: SUI -> USDC, max 1.80x" in out
        assert "LP: SUI/USDC quote at lp:SUI, max 2.00x, open fee 100bps" in out

    def test_no_command_exits_with_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1
        assert "usage" in capsys.readouterr().out

    def test_rates_curve(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = load_config(sample_yaml_path)
        assert cmd_rates(config, "USDC", 5_000) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "USDC:"
        assert "borrow APR 2.00%" in lines[1]
        assert "borrow APR 7.00%" in lines[2]
        assert "borrow APR 30.00%" in lines[3]

    def test_rates_unknown_market(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = load_config(sample_yaml_path)
        assert cmd_rates(config, "DAI", 1_000) == 1
        assert "Unknown market: DAI" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_prices_reports_verdicts(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = load_config(sample_yaml_path)
        quotes = {
            "SUI": PriceQuote(price=2_000_000, confidence_bps=1, publish_time=1_700_000_000),
            "USDC": PriceQuote(price=1_000_000, confidence_bps=1, publish_time=1_700_000_000),
        }
        with patch(
            "vault_engine.cli.PythHermesFeed.refresh", new=AsyncMock(return_value=quotes)
        ), patch("vault_engine.cli.SystemClock.now", return_value=1_700_000_500):
            code = await cmd_prices(config, [])

        assert code == 0
        out = capsys.readouterr().out
        assert "SUI" in out
        assert "Oracle price is stale" in out

    @pytest.mark.asyncio
    async def test_prices_nothing_fetched(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = load_config(sample_yaml_path)
        with patch("vault_engine.cli.PythHermesFeed.refresh", new=AsyncMock(return_value={})):
            assert await cmd_prices(config, ["SUI"]) == 1
        assert "No prices fetched" in capsys.readouterr().out
