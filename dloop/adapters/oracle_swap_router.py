"""
OracleSwapRouter: swap venue that fills at oracle price minus a fee.

Stands in for a DEX aggregator in the reference environment. It ignores the
routing payload and settles against its own token inventory.
"""
import logging

from dloop.core.errors import SlippageExceededError, ZeroAmountError
from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, Rounding, mul_div, require_int
from dloop.execution.interfaces import PriceOracle, Token

logger = logging.getLogger(__name__)


class OracleSwapRouter:
    """
    Fills swaps at the oracle cross rate.

    Exact-input swaps round the output down and exact-output swaps round the
    input up, so the router never pays out more value than it takes in.

    Attributes:
        oracle: Price source for the cross rate
        fee_bps: Fee charged on the input side
        address: Identity holding the router's inventory
    """

    def __init__(self, oracle: PriceOracle, fee_bps: int = 0, address: str = "router:oracle"):
        self.oracle = oracle
        self.fee_bps = fee_bps
        self.address = address
        self.swaps_filled = 0

    def quote_exact_input(self, token_in: Token, token_out: Token, amount_in: int) -> int:
        numerator = (
            amount_in
            * self.oracle.get_asset_price(token_in)
            * 10**token_out.decimals
            * (ONE_HUNDRED_PERCENT_BPS - self.fee_bps)
        )
        denominator = (
            self.oracle.get_asset_price(token_out) * 10**token_in.decimals * ONE_HUNDRED_PERCENT_BPS
        )
        return mul_div(numerator, 1, denominator)

    def quote_exact_output(self, token_in: Token, token_out: Token, amount_out: int) -> int:
        numerator = (
            amount_out
            * self.oracle.get_asset_price(token_out)
            * 10**token_in.decimals
            * ONE_HUNDRED_PERCENT_BPS
        )
        denominator = (
            self.oracle.get_asset_price(token_in)
            * 10**token_out.decimals
            * (ONE_HUNDRED_PERCENT_BPS - self.fee_bps)
        )
        return mul_div(numerator, 1, denominator, Rounding.UP)

    def swap_exact_input(
        self,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        min_amount_out: int,
        payload: bytes,
        identity: str,
    ) -> int:
        """Swap exactly amount_in; returns the amount of token_out received."""
        require_int(amount_in, "amount_in")
        if amount_in == 0:
            raise ZeroAmountError("swap amount_in is zero")
        amount_out = self.quote_exact_input(token_in, token_out, amount_in)
        if amount_out < min_amount_out:
            raise SlippageExceededError("swap output", amount_out, min_amount_out)
        self._settle(token_in, token_out, amount_in, amount_out, identity)
        return amount_out

    def swap_exact_output(
        self,
        token_in: Token,
        token_out: Token,
        amount_out: int,
        max_amount_in: int,
        payload: bytes,
        identity: str,
    ) -> int:
        """Swap for exactly amount_out; returns the amount of token_in spent."""
        require_int(amount_out, "amount_out")
        if amount_out == 0:
            raise ZeroAmountError("swap amount_out is zero")
        amount_in = self.quote_exact_output(token_in, token_out, amount_out)
        if amount_in > max_amount_in:
            raise SlippageExceededError("swap input", amount_in, max_amount_in)
        self._settle(token_in, token_out, amount_in, amount_out, identity)
        return amount_in

    def _settle(self, token_in: Token, token_out: Token, amount_in: int, amount_out: int, identity: str) -> None:
        token_in.transfer_from(self.address, identity, self.address, amount_in)
        token_out.transfer(self.address, identity, amount_out)
        self.swaps_filled += 1
        logger.debug(
            f"Swapped {amount_in} {token_in.symbol} -> {amount_out} {token_out.symbol} for {identity}"
        )
