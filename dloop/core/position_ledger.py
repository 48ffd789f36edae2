"""Position Ledger: reads the vault position at the lending venue.

The ledger owns the vault's position handle. It only ever asks the venue about
the designated collateral reserve and the designated debt reserve, so balances
of any other asset supplied or borrowed under the vault identity never reach
the accounting.
"""

import logging

from dloop.core.errors import OracleUnavailableError
from dloop.core.fixed_point import Rounding, convert_from_base, convert_to_base
from dloop.core.types import PositionAmounts, PositionValue
from dloop.execution.interfaces import LendingVenue, PriceOracle, Token

logger = logging.getLogger(__name__)


class PositionLedger:
    """Read-only view of the vault position for two designated reserves.

    Attributes:
        venue: Lending venue holding the position
        oracle: Price oracle quoting both tokens in base-currency units
        collateral_token: Designated collateral reserve
        debt_token: Designated debt reserve
        identity: Address the position is held under
    """

    def __init__(
        self,
        venue: LendingVenue,
        oracle: PriceOracle,
        collateral_token: Token,
        debt_token: Token,
        identity: str,
    ):
        self.venue = venue
        self.oracle = oracle
        self.collateral_token = collateral_token
        self.debt_token = debt_token
        self.identity = identity

    def get_position_amounts(self) -> PositionAmounts:
        """Raw token balances of the two designated reserves."""
        return PositionAmounts(
            collateral_amount=self.venue.collateral_balance(self.collateral_token, self.identity),
            debt_amount=self.venue.debt_balance(self.debt_token, self.identity),
        )

    def get_position_value(self) -> PositionValue:
        """Collateral and debt value in oracle base-currency units.

        Returns:
            PositionValue(0, 0) for an empty position, without an oracle read

        Raises:
            OracleUnavailableError: If either price cannot be served
        """
        amounts = self.get_position_amounts()
        if amounts.collateral_amount == 0 and amounts.debt_amount == 0:
            return PositionValue(collateral_base=0, debt_base=0)

        collateral_base = 0
        if amounts.collateral_amount:
            collateral_base = convert_to_base(
                amounts.collateral_amount,
                self.collateral_price(),
                self.collateral_token.decimals,
            )
        debt_base = 0
        if amounts.debt_amount:
            debt_base = convert_to_base(
                amounts.debt_amount,
                self.debt_price(),
                self.debt_token.decimals,
            )
        return PositionValue(collateral_base=collateral_base, debt_base=debt_base)

    def collateral_price(self) -> int:
        return self._price(self.collateral_token)

    def debt_price(self) -> int:
        return self._price(self.debt_token)

    def collateral_to_base(self, amount: int) -> int:
        return convert_to_base(amount, self.collateral_price(), self.collateral_token.decimals)

    def debt_to_base(self, amount: int) -> int:
        return convert_to_base(amount, self.debt_price(), self.debt_token.decimals)

    def base_to_collateral(self, base_value: int, rounding: Rounding = Rounding.DOWN) -> int:
        return convert_from_base(
            base_value, self.collateral_price(), self.collateral_token.decimals, rounding
        )

    def base_to_debt(self, base_value: int, rounding: Rounding = Rounding.DOWN) -> int:
        return convert_from_base(base_value, self.debt_price(), self.debt_token.decimals, rounding)

    def total_collateral_in_tokens(self) -> int:
        """Leveraged assets: collateral supplied at the venue, in collateral tokens."""
        return self.venue.collateral_balance(self.collateral_token, self.identity)

    def net_assets_in_collateral(self) -> int:
        """Equity of the position expressed in collateral-token units.

        Zero for an empty position or when debt value reaches collateral value.
        """
        value = self.get_position_value()
        if value.equity_base == 0:
            return 0
        return self.base_to_collateral(value.equity_base)

    def _price(self, token: Token) -> int:
        price = self.oracle.get_asset_price(token)
        if price <= 0:
            logger.error(f"Oracle returned non-positive price {price} for {token.symbol}")
            raise OracleUnavailableError(f"no usable price for {token.symbol}")
        return price
