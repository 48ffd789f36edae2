"""
MockRewardsController: accrues incentive tokens to identities and pays them on claim.
"""
import logging
from typing import Dict, Tuple

from dloop.core.fixed_point import require_int
from dloop.execution.interfaces import Token

logger = logging.getLogger(__name__)


class MockRewardsController:
    """Rewards source backed by minted reward tokens."""

    def __init__(self, address: str = "rewards:controller"):
        self.address = address
        self.accrued: Dict[Tuple[str, str], int] = {}

    def accrue(self, reward_token, identity: str, amount: int) -> None:
        """Mint amount of reward_token into the controller and credit identity."""
        require_int(amount, "amount")
        reward_token.mint(self.address, amount)
        key = (reward_token.address, identity)
        self.accrued[key] = self.accrued.get(key, 0) + amount

    def pending(self, reward_token: Token, identity: str) -> int:
        return self.accrued.get((reward_token.address, identity), 0)

    def claim_rewards(self, reward_token: Token, identity: str, to: str) -> int:
        amount = self.accrued.pop((reward_token.address, identity), 0)
        if amount:
            reward_token.transfer(self.address, to, amount)
            logger.debug(f"Claimed {amount} {reward_token.symbol} for {identity} to {to}")
        return amount
