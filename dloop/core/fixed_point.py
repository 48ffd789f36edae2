"""Integer fixed-point helpers.

All ratios are basis points out of ONE_HUNDRED_PERCENT_BPS and all amounts are
native token units. Floats are rejected at the boundary; every helper fails
loudly instead of wrapping.
"""

from enum import Enum

from dloop.core.errors import (
    ArithmeticOverflowError,
    ArithmeticUnderflowError,
    DivisionByZeroError,
    InvalidAmountError,
)

ONE_HUNDRED_PERCENT_BPS = 10_000
ONE_PERCENT_BPS = 100
UINT256_MAX = 2**256 - 1

# Returned by the leverage calculator when collateral value equals debt value.
UNBOUNDED_LEVERAGE_BPS = UINT256_MAX

# Rounding slack tolerated on venue transfers (aToken-style balance rounding).
BALANCE_DIFF_TOLERANCE = 1


class Rounding(str, Enum):
    """Rounding direction for mul_div."""
    DOWN = "down"
    UP = "up"


def require_int(value, name: str = "value") -> int:
    """Validate that value is a non-negative uint256 integer.

    Args:
        value: Candidate amount
        name: Field name used in the error message

    Returns:
        The value unchanged

    Raises:
        InvalidAmountError: If value is a bool, float or any non-int
        ArithmeticOverflowError: If value is outside [0, UINT256_MAX]
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    return check_uint(value, name)


def check_uint(value: int, name: str = "value") -> int:
    if value < 0:
        raise ArithmeticUnderflowError(f"{name} is negative: {value}")
    if value > UINT256_MAX:
        raise ArithmeticOverflowError(f"{name} exceeds uint256: {value}")
    return value


def checked_sub(a: int, b: int, name: str = "difference") -> int:
    if b > a:
        raise ArithmeticUnderflowError(f"{name} underflows: {a} - {b}")
    return a - b


def mul_div(a: int, b: int, denominator: int, rounding: Rounding = Rounding.DOWN) -> int:
    """Compute a * b / denominator with explicit rounding.

    The full product is formed before dividing, so no precision is lost in the
    intermediate step. The result must fit in uint256.
    """
    if denominator == 0:
        raise DivisionByZeroError("mul_div denominator is zero")
    check_uint(a, "a")
    check_uint(b, "b")
    product = a * b
    quotient, remainder = divmod(product, denominator)
    if rounding == Rounding.UP and remainder:
        quotient += 1
    return check_uint(quotient, "mul_div result")


def ceil_div(a: int, b: int) -> int:
    return mul_div(a, 1, b, Rounding.UP)


def abs_diff(a: int, b: int) -> int:
    return a - b if a >= b else b - a


def convert_to_base(amount: int, price: int, decimals: int) -> int:
    """Value of amount tokens in oracle base-currency units (rounded down)."""
    return mul_div(amount, price, 10**decimals)


def convert_from_base(
    base_value: int,
    price: int,
    decimals: int,
    rounding: Rounding = Rounding.DOWN,
) -> int:
    """Token amount worth base_value at the given oracle price."""
    return mul_div(base_value, 10**decimals, price, rounding)


def fee_on_gross(gross_amount: int, fee_bps: int) -> int:
    return mul_div(gross_amount, fee_bps, ONE_HUNDRED_PERCENT_BPS)


def net_amount_after_fee(gross_amount: int, fee_bps: int) -> int:
    return gross_amount - fee_on_gross(gross_amount, fee_bps)


def gross_amount_required_for_net(net_amount: int, fee_bps: int) -> int:
    """Smallest gross amount whose net after fee_bps is at least net_amount.

    Raises:
        DivisionByZeroError: If fee_bps is 100%
    """
    if fee_bps == 0:
        return net_amount
    return mul_div(
        net_amount,
        ONE_HUNDRED_PERCENT_BPS,
        ONE_HUNDRED_PERCENT_BPS - fee_bps,
        Rounding.UP,
    )
