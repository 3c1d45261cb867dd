"""Integer fixed-point arithmetic at the 10**18 scale."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from engine.errors import (
    ArithmeticOverflow,
    ArithmeticUnderflow,
    DivisionByZero,
    InvalidAmount,
)

ONE = 10**18
HALF = ONE // 2
UINT256_MAX = 2**256 - 1

_SCALE = Decimal(ONE)
_UNIT = Decimal("1")


def require_amount(value: int, name: str = "amount") -> int:
    """Validate a scaled amount: an int in [0, UINT256_MAX]."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{name} must be an int, got {type(value).__name__}.")
    if value < 0:
        raise InvalidAmount(f"{name} must be non-negative, got {value}.")
    if value > UINT256_MAX:
        raise ArithmeticOverflow(f"{name} exceeds the 256-bit range.")
    return value


def add(x: int, y: int) -> int:
    result = require_amount(x, "x") + require_amount(y, "y")
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"add overflow: {x} + {y}.")
    return result


def sub(x: int, y: int) -> int:
    result = require_amount(x, "x") - require_amount(y, "y")
    if result < 0:
        raise ArithmeticUnderflow(f"sub underflow: {x} - {y}.")
    return result


def mul(x: int, y: int) -> int:
    result = require_amount(x, "x") * require_amount(y, "y")
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"mul overflow: {x} * {y}.")
    return result


def scaled_mul(x: int, y: int) -> int:
    """Return round_half_up(x * y / ONE)."""
    return add(mul(x, y), HALF) // ONE


def scaled_div(x: int, y: int) -> int:
    """Return round_half_up(x * ONE / y)."""
    if require_amount(y, "y") == 0:
        raise DivisionByZero("scaled_div by zero.")
    return add(mul(x, ONE), y // 2) // y


def to_scaled(value: Union[Decimal, str, int]) -> int:
    """Convert a human decimal value into a scaled integer (rounded half up)."""
    if isinstance(value, bool):
        raise InvalidAmount("bool is not a decimal value.")
    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidAmount(f"Invalid decimal value: {value!r}.") from exc
    scaled = (decimal_value * _SCALE).quantize(_UNIT, rounding=ROUND_HALF_UP)
    return require_amount(int(scaled), "value")


def from_scaled(value: int) -> Decimal:
    """Convert a scaled integer back into an exact Decimal."""
    return Decimal(require_amount(value, "value")) / _SCALE
