"""Unit tests for scaled integer arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from engine.errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero, InvalidAmount
from engine.fixed_point import (
    ONE,
    UINT256_MAX,
    add,
    from_scaled,
    mul,
    require_amount,
    scaled_div,
    scaled_mul,
    sub,
    to_scaled,
)


def test_scaled_mul_rounds_half_up() -> None:
    assert scaled_mul(2 * ONE, 3 * ONE) == 6 * ONE
    assert scaled_mul(1, ONE // 2) == 1
    assert scaled_mul(1, ONE // 2 - 1) == 0
    assert scaled_mul(0, 5 * ONE) == 0


def test_scaled_div_rounds_half_up() -> None:
    assert scaled_div(ONE, 3 * ONE) == 333333333333333333
    assert scaled_div(2 * ONE, 3 * ONE) == 666666666666666667
    assert scaled_div(6 * ONE, 2 * ONE) == 3 * ONE


def test_scaled_div_by_zero_fails() -> None:
    with pytest.raises(DivisionByZero):
        scaled_div(ONE, 0)


def test_sub_underflow_and_add_overflow() -> None:
    assert sub(5, 3) == 2
    with pytest.raises(ArithmeticUnderflow):
        sub(3, 5)
    with pytest.raises(ArithmeticOverflow):
        add(UINT256_MAX, 1)
    with pytest.raises(ArithmeticOverflow):
        mul(UINT256_MAX, 2)


def test_scaled_mul_overflow_is_not_saturated() -> None:
    with pytest.raises(ArithmeticOverflow):
        scaled_mul(UINT256_MAX, 2 * ONE)


@pytest.mark.parametrize("value", [-1, 1.5, True, "10"])
def test_require_amount_rejects_invalid_values(value: object) -> None:
    with pytest.raises(InvalidAmount):
        require_amount(value)  # type: ignore[arg-type]


def test_require_amount_rejects_values_beyond_256_bits() -> None:
    with pytest.raises(ArithmeticOverflow):
        require_amount(UINT256_MAX + 1)


def test_decimal_conversions() -> None:
    assert to_scaled("2.5") == 2_500_000_000_000_000_000
    assert to_scaled(Decimal("0.0000000000000000015")) == 2
    assert to_scaled(7) == 7 * ONE
    assert from_scaled(1_500_000_000_000_000_000) == Decimal("1.5")
    with pytest.raises(InvalidAmount):
        to_scaled("not-a-number")
    with pytest.raises(InvalidAmount):
        to_scaled("-1")
