"""
MockPriceOracle: settable base-currency prices for local runs and tests.
"""
import logging
from typing import Dict

from dloop.core.errors import OracleUnavailableError
from dloop.core.fixed_point import require_int
from dloop.execution.interfaces import Token

logger = logging.getLogger(__name__)

# Aave-style oracles quote in 8-decimal base currency units.
DEFAULT_BASE_CURRENCY_UNIT = 10**8


class MockPriceOracle:
    """
    Oracle with manually set prices.

    A token without a price, or marked unavailable, raises
    OracleUnavailableError just as a stale live feed would.
    """

    def __init__(self, base_currency_unit: int = DEFAULT_BASE_CURRENCY_UNIT):
        self.base_currency_unit = base_currency_unit
        self.prices: Dict[str, int] = {}
        self.unavailable: set = set()

    def set_price(self, token: Token, price: int) -> None:
        require_int(price, "price")
        self.prices[token.address] = price
        self.unavailable.discard(token.address)
        logger.debug(f"Price of {token.symbol} set to {price}")

    def set_unavailable(self, token: Token) -> None:
        self.unavailable.add(token.address)

    def get_asset_price(self, token: Token) -> int:
        if token.address in self.unavailable:
            raise OracleUnavailableError(f"price feed for {token.symbol} is unavailable")
        price = self.prices.get(token.address, 0)
        if price == 0:
            raise OracleUnavailableError(f"no price for {token.symbol}")
        return price
