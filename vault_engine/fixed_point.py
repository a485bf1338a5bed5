"""Checked integer fixed-point helpers.

Operands are treated as u64 amounts with u128 intermediates. Anything that
leaves those widths raises ``ArithmeticOverflow``; nothing saturates.
"""
from __future__ import annotations

from .constants import BPS_SCALE, U64_MAX, U128_MAX
from .errors import ArithmeticOverflow


def checked_add(a: int, b: int) -> int:
    """Add with overflow checking"""
    result = a + b
    if result > U128_MAX:
        raise ArithmeticOverflow("Arithmetic overflow in addition", a=a, b=b)
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract with underflow checking"""
    if b > a:
        raise ArithmeticOverflow("Arithmetic underflow in subtraction", a=a, b=b)
    return a - b


def checked_mul(a: int, b: int) -> int:
    """Multiply with overflow checking"""
    result = a * b
    if result > U128_MAX:
        raise ArithmeticOverflow("Arithmetic overflow in multiplication", a=a, b=b)
    return result


def checked_div(a: int, b: int) -> int:
    """Divide with zero checking"""
    if b == 0:
        raise ArithmeticOverflow("Division by zero", a=a)
    return a // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """``a * b // denominator`` with the product kept in u128."""
    return checked_div(checked_mul(a, b), denominator)


def bps_of(amount: int, bps: int) -> int:
    return mul_div(amount, bps, BPS_SCALE)


def to_u64(value: int, name: str = "value") -> int:
    """Narrow a u128 intermediate back to a stored u64 amount."""
    if value < 0 or value > U64_MAX:
        raise ArithmeticOverflow(f"{name} does not fit in u64", **{name: value})
    return value


def split_fee(fee: int, vault_share_bps: int) -> tuple[int, int]:
    """Split a fee into ``(vault_share, treasury_share)``."""
    vault_share = bps_of(fee, vault_share_bps)
    return vault_share, checked_sub(fee, vault_share)
