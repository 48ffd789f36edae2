"""
MockFlashLender: ERC-3156 style flash lender over in-memory tokens.
"""
import logging

from dloop.core.errors import (
    FlashLiquidityUnavailableError,
    FlashRepaymentShortfallError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    ZeroAmountError,
)
from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, Rounding, mul_div, require_int
from dloop.execution.interfaces import FlashCallback, Token

logger = logging.getLogger(__name__)


class MockFlashLender:
    """
    Lends its own token balances for the duration of a callback.

    The fee is fee_bps of the amount, rounded up. After the callback returns
    the lender pulls amount + fee with transfer_from; anything less fails the
    whole call.
    """

    def __init__(self, fee_bps: int = 0, address: str = "flash:lender"):
        self.address = address
        self.fee_bps = fee_bps
        self.loans_served = 0

    def max_flash_loan(self, asset: Token) -> int:
        return asset.balance_of(self.address)

    def flash_fee(self, asset: Token, amount: int) -> int:
        return mul_div(amount, self.fee_bps, ONE_HUNDRED_PERCENT_BPS, Rounding.UP)

    def flash_loan(self, asset: Token, amount: int, receiver: str, callback: FlashCallback) -> None:
        require_int(amount, "amount")
        if amount == 0:
            raise ZeroAmountError("flash loan amount is zero")
        available = self.max_flash_loan(asset)
        if amount > available:
            raise FlashLiquidityUnavailableError(
                f"{asset.symbol}: requested {amount}, available {available}"
            )

        fee = self.flash_fee(asset, amount)
        balance_before = asset.balance_of(self.address)
        asset.transfer(self.address, receiver, amount)

        callback(asset, amount, fee)

        owed = amount + fee
        try:
            asset.transfer_from(self.address, receiver, self.address, owed)
        except (InsufficientAllowanceError, InsufficientBalanceError) as e:
            logger.warning(f"Flash loan of {amount} {asset.symbol} not repaid: {e}")
            raise FlashRepaymentShortfallError(owed, asset.balance_of(receiver)) from e

        if asset.balance_of(self.address) < balance_before + fee:
            raise FlashRepaymentShortfallError(owed, asset.balance_of(self.address) - balance_before)
        self.loans_served += 1
