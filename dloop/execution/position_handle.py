"""Position handle: the only path through which the vault mutates its venue position.

Each call measures the vault's token balance around the venue call and
rejects a delta that differs from the requested amount by more than
BALANCE_DIFF_TOLERANCE.
"""

import logging

from dloop.core.errors import BalanceDeltaMismatchError, ZeroAmountError
from dloop.core.fixed_point import BALANCE_DIFF_TOLERANCE, abs_diff
from dloop.execution.interfaces import LendingVenue, Token

logger = logging.getLogger(__name__)


class PositionHandle:
    """Supply/withdraw/borrow/repay for the designated reserves of one identity.

    Attributes:
        venue: Lending venue holding the position
        collateral_token: Designated collateral reserve
        debt_token: Designated debt reserve
        identity: Vault address the position is held under
    """

    def __init__(self, venue: LendingVenue, collateral_token: Token, debt_token: Token, identity: str):
        self.venue = venue
        self.collateral_token = collateral_token
        self.debt_token = debt_token
        self.identity = identity

    def supply_collateral(self, amount: int) -> int:
        return self._run("supply", self.collateral_token, amount, outgoing=True)

    def withdraw_collateral(self, amount: int) -> int:
        return self._run("withdraw", self.collateral_token, amount, outgoing=False)

    def borrow_debt(self, amount: int) -> int:
        return self._run("borrow", self.debt_token, amount, outgoing=False)

    def repay_debt(self, amount: int) -> int:
        return self._run("repay", self.debt_token, amount, outgoing=True)

    def _run(self, action: str, token: Token, amount: int, outgoing: bool) -> int:
        """Call the venue and return the measured balance delta."""
        if amount == 0:
            raise ZeroAmountError(f"{action} amount is zero")
        before = token.balance_of(self.identity)
        getattr(self.venue, action)(token, amount, self.identity)
        after = token.balance_of(self.identity)
        moved = before - after if outgoing else after - before
        if abs_diff(moved, amount) > BALANCE_DIFF_TOLERANCE:
            raise BalanceDeltaMismatchError(f"venue {action} of {token.symbol}", amount, moved)
        logger.debug(f"Venue {action}: {moved} {token.symbol}")
        return moved
