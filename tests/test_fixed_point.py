"""Unit tests for integer fixed-point helpers."""

import pytest
from dloop.core.errors import (
    ArithmeticOverflowError,
    ArithmeticUnderflowError,
    DivisionByZeroError,
    InvalidAmountError,
)
from dloop.core.fixed_point import (
    UINT256_MAX,
    Rounding,
    checked_sub,
    convert_from_base,
    convert_to_base,
    fee_on_gross,
    gross_amount_required_for_net,
    mul_div,
    net_amount_after_fee,
    require_int,
)


def test_mul_div_rounds_in_requested_direction():
    """Test that mul_div rounds down by default and up on request."""
    assert mul_div(10, 1, 3) == 3, "Should round down"
    assert mul_div(10, 1, 3, Rounding.UP) == 4, "Should round up"
    assert mul_div(9, 1, 3, Rounding.UP) == 3, "Exact division should not round"


def test_mul_div_keeps_full_precision_of_intermediate_product():
    """Test that a product above uint256 still divides correctly."""
    result = mul_div(UINT256_MAX, UINT256_MAX, UINT256_MAX)
    assert result == UINT256_MAX, "Should not lose precision in the product"


def test_mul_div_rejects_zero_denominator_and_overflow():
    """Test that mul_div fails loudly instead of wrapping."""
    with pytest.raises(DivisionByZeroError):
        mul_div(1, 1, 0)
    with pytest.raises(ArithmeticOverflowError):
        mul_div(UINT256_MAX, 2, 1)


def test_require_int_rejects_floats_and_bools():
    """Test that only plain integers are accepted as amounts."""
    assert require_int(5) == 5
    with pytest.raises(InvalidAmountError):
        require_int(1.0)
    with pytest.raises(InvalidAmountError):
        require_int(True)
    with pytest.raises(ArithmeticUnderflowError):
        require_int(-1)


def test_checked_sub_underflow():
    """Test that checked_sub refuses to go negative."""
    assert checked_sub(5, 3) == 2
    with pytest.raises(ArithmeticUnderflowError):
        checked_sub(3, 5)


def test_base_conversion_uses_token_decimals():
    """Test conversion between token units and 8-decimal base currency."""
    # 2.5 tokens with 6 decimals at a price of 2000.00000000
    assert convert_to_base(2_500_000, 2000 * 10**8, 6) == 5000 * 10**8
    assert convert_from_base(5000 * 10**8, 2000 * 10**8, 6) == 2_500_000
    assert convert_from_base(1, 3, 0) == 0, "Should round down by default"
    assert convert_from_base(1, 3, 0, Rounding.UP) == 1, "Should round up on request"


def test_fee_helpers_are_consistent():
    """Test that the gross needed for a net amount really nets at least that amount."""
    assert fee_on_gross(10_000, 100) == 100
    assert net_amount_after_fee(10_000, 100) == 9_900

    for net in (1, 99, 12_345, 10**18 + 7):
        gross = gross_amount_required_for_net(net, 250)
        assert net_amount_after_fee(gross, 250) >= net, "Gross should cover the fee"
        assert gross - net <= fee_on_gross(gross, 250) + 1, "Gross should not overshoot the fee"

    assert gross_amount_required_for_net(500, 0) == 500, "No fee means gross equals net"
