"""Leverage Calculator: current leverage and keeper subsidy.

Leverage is never stored. It is derived on every call from the position
ledger as collateral * 10000 / (collateral - debt), in basis points.
"""

import logging
from typing import Optional

from dloop.core.errors import CollateralLessThanDebtError, LeverageDivergedError
from dloop.core.fixed_point import (
    ONE_HUNDRED_PERCENT_BPS,
    UNBOUNDED_LEVERAGE_BPS,
    Rounding,
    abs_diff,
    mul_div,
)
from dloop.core.position_ledger import PositionLedger
from dloop.core.types import BoundsConfig, PositionValue

logger = logging.getLogger(__name__)


def leverage_bps_from_values(collateral_base: int, debt_base: int) -> int:
    """Leverage of a position given its two base values.

    Args:
        collateral_base: Collateral value in base-currency units
        debt_base: Debt value in base-currency units

    Returns:
        0 without collateral, UNBOUNDED_LEVERAGE_BPS when debt equals
        collateral, otherwise collateral * 10000 / (collateral - debt)

    Raises:
        CollateralLessThanDebtError: If debt value exceeds collateral value
    """
    if collateral_base == 0:
        return 0
    if collateral_base < debt_base:
        raise CollateralLessThanDebtError(collateral_base, debt_base)
    if collateral_base == debt_base:
        return UNBOUNDED_LEVERAGE_BPS
    return mul_div(collateral_base, ONE_HUNDRED_PERCENT_BPS, collateral_base - debt_base)


def subsidy_bps_for(leverage_bps: int, bounds: BoundsConfig) -> int:
    """Keeper subsidy for a given leverage.

    max_subsidy_bps is scaled by the distance from target normalised by the
    distance from target to the bound on the same side, then clamped to
    [0, max_subsidy_bps]. Distances under min_deviation_bps pay nothing.
    """
    if leverage_bps == 0 or leverage_bps == bounds.target_bps:
        return 0

    deviation = abs_diff(leverage_bps, bounds.target_bps)
    if deviation < bounds.min_deviation_bps:
        return 0

    if leverage_bps > bounds.target_bps:
        span = bounds.upper_bound_bps - bounds.target_bps
    else:
        span = bounds.target_bps - bounds.lower_bound_bps

    subsidy = mul_div(bounds.max_subsidy_bps, deviation, span)
    return min(subsidy, bounds.max_subsidy_bps)


class LeverageCalculator:
    """Derives leverage, imbalance and subsidy from the position ledger.

    Attributes:
        ledger: PositionLedger for the two designated reserves
        bounds: Active BoundsConfig (replaced by the vault's admin setters)
    """

    def __init__(self, ledger: PositionLedger, bounds: BoundsConfig):
        self.ledger = ledger
        self.bounds = bounds

    def current_leverage_bps(self, value: Optional[PositionValue] = None) -> int:
        if value is None:
            value = self.ledger.get_position_value()
        return leverage_bps_from_values(value.collateral_base, value.debt_base)

    def subsidy_bps(self, value: Optional[PositionValue] = None) -> int:
        return subsidy_bps_for(self.current_leverage_bps(value), self.bounds)

    def is_too_imbalanced(self, value: Optional[PositionValue] = None) -> bool:
        """True when leverage is non-zero and strictly outside [lower, upper]."""
        leverage = self.current_leverage_bps(value)
        if leverage == 0:
            return False
        return leverage < self.bounds.lower_bound_bps or leverage > self.bounds.upper_bound_bps

    def deviation_from_target(self, leverage_bps: int) -> int:
        return abs_diff(leverage_bps, self.bounds.target_bps)

    def ensure_not_diverged(self, operation: str, before_bps: int, tolerance_bps: int = 0) -> int:
        """Check that leverage is no further from target than before_bps was.

        Args:
            operation: Name used in the error
            before_bps: Leverage measured before the operation
            tolerance_bps: Rounding slack allowed on top of the old deviation

        Returns:
            Leverage after the operation

        Raises:
            LeverageDivergedError: If the deviation grew beyond the tolerance
        """
        after_bps = self.current_leverage_bps()
        if self.deviation_from_target(after_bps) > self.deviation_from_target(before_bps) + tolerance_bps:
            logger.warning(
                f"{operation} diverged from target {self.bounds.target_bps}: {before_bps} -> {after_bps}"
            )
            raise LeverageDivergedError(operation, before_bps, after_bps, self.bounds.target_bps)
        return after_bps

    def repay_amount_keeping_leverage(self, withdraw_collateral: int, leverage_bps: int) -> int:
        """Debt tokens to repay alongside withdraw_collateral so leverage stays put.

        Debt value repaid is withdraw_value * (L - 1) / L, rounded up so the
        remaining position never ends up more levered than before.
        """
        if leverage_bps == 0 or withdraw_collateral == 0:
            return 0
        withdraw_base = self.ledger.collateral_to_base(withdraw_collateral)
        repay_base = mul_div(
            withdraw_base, leverage_bps - ONE_HUNDRED_PERCENT_BPS, leverage_bps, Rounding.UP
        )
        return self.ledger.base_to_debt(repay_base, Rounding.UP)

    def borrow_amount_keeping_leverage(self, supply_collateral: int, leverage_bps: int) -> int:
        """Debt tokens to borrow alongside supply_collateral so leverage stays put."""
        if leverage_bps == 0 or supply_collateral == 0:
            return 0
        supply_base = self.ledger.collateral_to_base(supply_collateral)
        borrow_base = mul_div(supply_base, leverage_bps - ONE_HUNDRED_PERCENT_BPS, leverage_bps)
        return self.ledger.base_to_debt(borrow_base)
