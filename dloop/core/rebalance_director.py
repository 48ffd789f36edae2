"""Rebalance Director: closed-form rebalance quotes.

Given the current position (C collateral, D debt in base units), target T and
subsidy k (all bps, ONE = 10000), the amounts that land exactly on target are:

    increase:  x = ONE * (T*(C-D) - C*ONE) / (ONE^2 + T*k)
               y = x * (ONE + k) / ONE
    decrease:  y = ONE * (C*ONE - T*(C-D)) / (ONE^2 + k*ONE - T*k)
               x = ceil(y * (ONE + k) / ONE)

where on increase the vault adds x collateral and borrows y debt, and on
decrease it repays y debt and releases x collateral. The k share of each leg is
the rebalancer's subsidy, paid out of vault equity.
"""

import logging
from typing import Optional

from dloop.core.errors import ArithmeticUnderflowError
from dloop.core.fixed_point import (
    ONE_HUNDRED_PERCENT_BPS,
    UNBOUNDED_LEVERAGE_BPS,
    Rounding,
    mul_div,
)
from dloop.core.leverage_calculator import LeverageCalculator, subsidy_bps_for
from dloop.core.types import PositionValue, RebalanceDirection, RebalanceQuote

logger = logging.getLogger(__name__)

ONE = ONE_HUNDRED_PERCENT_BPS


def increase_amounts_base(
    collateral_base: int,
    debt_base: int,
    target_bps: int,
    subsidy_bps: int,
) -> tuple[int, int]:
    """Collateral to add and debt to borrow (base units) to reach target from below.

    Raises:
        ArithmeticUnderflowError: If the position is already at or above target
    """
    numerator = target_bps * (collateral_base - debt_base) - collateral_base * ONE
    if numerator <= 0:
        raise ArithmeticUnderflowError(
            f"increase from C={collateral_base} D={debt_base} does not approach target {target_bps}"
        )
    denominator = ONE * ONE + target_bps * subsidy_bps
    add_collateral = mul_div(ONE, numerator, denominator)
    borrow_debt = mul_div(add_collateral, ONE + subsidy_bps, ONE)
    return add_collateral, borrow_debt


def decrease_amounts_base(
    collateral_base: int,
    debt_base: int,
    target_bps: int,
    subsidy_bps: int,
) -> tuple[int, int]:
    """Debt to repay and collateral to release (base units) to reach target from above.

    Raises:
        ArithmeticUnderflowError: If the position is at or below target, or if
            the subsidy is so large that no decrease can reach target
    """
    numerator = collateral_base * ONE - target_bps * (collateral_base - debt_base)
    if numerator <= 0:
        raise ArithmeticUnderflowError(
            f"decrease from C={collateral_base} D={debt_base} does not approach target {target_bps}"
        )
    denominator = ONE * ONE + subsidy_bps * ONE - target_bps * subsidy_bps
    if denominator <= 0:
        raise ArithmeticUnderflowError(
            f"subsidy {subsidy_bps} too large for target {target_bps}"
        )
    repay_debt = mul_div(ONE, numerator, denominator)
    release_collateral = mul_div(repay_debt, ONE + subsidy_bps, ONE, Rounding.UP)
    return repay_debt, release_collateral


class RebalanceDirector:
    """Quotes the single-step rebalance that returns the vault to target.

    Attributes:
        calculator: LeverageCalculator providing leverage, bounds and subsidy
    """

    def __init__(self, calculator: LeverageCalculator):
        self.calculator = calculator

    @property
    def ledger(self):
        return self.calculator.ledger

    def quote_rebalance(self, value: Optional[PositionValue] = None) -> RebalanceQuote:
        """Compute (input_amount, estimated_output, direction) for the current position.

        A position whose debt value equals its collateral value has no defined
        leverage; it is always quoted as a decrease.

        Returns:
            RebalanceQuote with token amounts; BALANCED with zero amounts when
            there is no collateral or leverage already equals target
        """
        if value is None:
            value = self.ledger.get_position_value()
        bounds = self.calculator.bounds

        if value.collateral_base == 0:
            return RebalanceQuote(input_amount=0, estimated_output=0, direction=RebalanceDirection.BALANCED)

        if value.collateral_base == value.debt_base:
            # Undefined leverage resolves to decrease regardless of arithmetic.
            leverage = UNBOUNDED_LEVERAGE_BPS
            direction = RebalanceDirection.DECREASE
        else:
            leverage = self.calculator.current_leverage_bps(value)
            if leverage == bounds.target_bps:
                return RebalanceQuote(
                    input_amount=0, estimated_output=0, direction=RebalanceDirection.BALANCED
                )
            direction = (
                RebalanceDirection.INCREASE if leverage < bounds.target_bps else RebalanceDirection.DECREASE
            )

        subsidy = subsidy_bps_for(leverage, bounds)

        if direction == RebalanceDirection.INCREASE:
            add_base, _ = increase_amounts_base(
                value.collateral_base, value.debt_base, bounds.target_bps, subsidy
            )
            input_amount = self.ledger.base_to_collateral(add_base)
            output = self.collateral_to_debt_for_increase(input_amount, subsidy)
        else:
            repay_base, _ = decrease_amounts_base(
                value.collateral_base, value.debt_base, bounds.target_bps, subsidy
            )
            input_amount = self.ledger.base_to_debt(repay_base)
            output = self.debt_to_collateral_for_decrease(input_amount, subsidy)

        quote = RebalanceQuote(
            input_amount=input_amount,
            estimated_output=output,
            direction=direction,
            subsidy_bps=subsidy,
        )
        logger.debug(f"Quoted {quote} at leverage {leverage}")
        return quote

    def collateral_to_debt_for_increase(self, collateral_amount: int, subsidy_bps: int) -> int:
        """Debt tokens borrowed when collateral_amount is added, subsidy included."""
        collateral_base = self.ledger.collateral_to_base(collateral_amount)
        debt_base = mul_div(collateral_base, ONE + subsidy_bps, ONE)
        return self.ledger.base_to_debt(debt_base)

    def debt_to_collateral_for_decrease(self, debt_amount: int, subsidy_bps: int) -> int:
        """Collateral tokens released when debt_amount is repaid, subsidy included."""
        debt_base = self.ledger.debt_to_base(debt_amount)
        collateral_base = mul_div(debt_base, ONE + subsidy_bps, ONE, Rounding.UP)
        return self.ledger.base_to_collateral(collateral_base)
