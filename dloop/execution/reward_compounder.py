"""Reward Compounder: sells accrued incentive rewards for vault shares.

The caller burns shares as the price of the claim; the vault claims each
reward token from the rewards source, keeps a treasury cut and forwards the
rest. The leveraged position is not touched.
"""

import logging
from typing import List, Sequence

from dloop.core.errors import (
    ExchangeAmountTooLowError,
    InvalidAmountError,
    RestrictedRewardTokenError,
    ZeroAmountError,
)
from dloop.core.fixed_point import fee_on_gross
from dloop.core.types import RewardClaim, VaultConfig
from dloop.execution.interfaces import RewardsSource, Token

logger = logging.getLogger(__name__)


class RewardCompounder:
    """Claims rewards on behalf of the vault identity in exchange for burned shares."""

    def __init__(
        self,
        rewards_source: RewardsSource,
        share_token: Token,
        restricted_tokens: Sequence[Token],
        identity: str,
    ):
        self.rewards_source = rewards_source
        self.share_token = share_token
        self.restricted = {t.address for t in restricted_tokens} | {share_token.address}
        self.identity = identity

    def compound(
        self,
        caller: str,
        share_amount: int,
        reward_tokens: Sequence[Token],
        receiver: str,
        treasury: str,
        config: VaultConfig,
    ) -> List[RewardClaim]:
        """Burn share_amount of caller's shares and pay out every listed reward.

        Raises:
            ExchangeAmountTooLowError: If share_amount is below the exchange threshold
            RestrictedRewardTokenError: If a reward token is collateral, debt or shares
            InvalidAmountError: If the burn would take the whole share supply
        """
        if share_amount < max(config.exchange_threshold, 1):
            raise ExchangeAmountTooLowError(
                f"{share_amount} shares is below the exchange threshold {config.exchange_threshold}"
            )
        if not reward_tokens:
            raise ZeroAmountError("no reward tokens to claim")
        for token in reward_tokens:
            if token.address in self.restricted:
                raise RestrictedRewardTokenError(f"{token.symbol} cannot be claimed as a reward")
        if share_amount >= self.share_token.total_supply:
            raise InvalidAmountError("compounding cannot burn the entire share supply")

        self.share_token.burn(caller, share_amount)

        claims = []
        seen = set()
        for token in reward_tokens:
            if token.address in seen:
                continue
            seen.add(token.address)

            before = token.balance_of(self.identity)
            self.rewards_source.claim_rewards(token, self.identity, self.identity)
            claimed = token.balance_of(self.identity) - before

            treasury_fee = fee_on_gross(claimed, config.treasury_fee_bps)
            to_receiver = claimed - treasury_fee
            if treasury_fee:
                token.transfer(self.identity, treasury, treasury_fee)
            if to_receiver:
                token.transfer(self.identity, receiver, to_receiver)
            claims.append(
                RewardClaim(
                    token=token.address,
                    claimed=claimed,
                    treasury_fee=treasury_fee,
                    to_receiver=to_receiver,
                )
            )

        logger.info(
            f"Compounded rewards: {caller} burned {share_amount} shares, "
            + ", ".join(f"{c.token}={c.claimed}" for c in claims)
        )
        return claims
