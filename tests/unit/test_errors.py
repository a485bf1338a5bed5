"""Unit tests for the error taxonomy."""
from __future__ import annotations

import pytest

from vault_engine.errors import EngineError, InvalidAmount, InvalidConfig, VaultBalanceMismatch


class TestEngineError:
    def test_message_without_context(self) -> None:
        err = InvalidAmount("Amount must be positive")
        assert str(err) == "Amount must be positive"
        assert err.context == {}

    def test_context_is_rendered(self) -> None:
        err = VaultBalanceMismatch("Vault drained", expected=100, actual=90)
        assert str(err) == "Vault drained (expected=100, actual=90)"
        assert err.context == {"expected": 100, "actual": 90}

    def test_default_message_is_class_name(self) -> None:
        assert str(InvalidAmount()) == "InvalidAmount"

    def test_all_errors_share_base(self) -> None:
        with pytest.raises(EngineError):
            raise InvalidAmount("x")

    def test_invalid_config_is_value_error(self) -> None:
        with pytest.raises(ValueError, match="bad"):
            raise InvalidConfig("bad")
