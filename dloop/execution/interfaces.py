"""Execution interfaces: Protocol definitions for external collaborators.

The vault consumes the lending venue, oracle, flash-liquidity provider, swap
collaborator and rewards source only through these Protocols, so the reference
adapters in dloop.adapters can be swapped for live integrations or test doubles
without touching the engine. Every amount is an integer in native token units;
identities are address strings.
"""

from typing import Callable, Protocol


class Token(Protocol):
    """ERC20-like fungible token."""

    address: str
    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...

    def approve(self, owner: str, spender: str, amount: int) -> None:
        ...

    def transfer(self, sender: str, to: str, amount: int) -> None:
        ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        """Move amount from owner to to, spending spender's allowance."""
        ...


class LendingVenue(Protocol):
    """Protocol for the external lending venue holding the vault position.

    Balance queries are keyed by a single asset so callers can restrict
    themselves to the two designated reserves.
    """

    address: str

    def supply(self, asset: Token, amount: int, identity: str) -> None:
        """Pull amount of asset from identity and credit it as collateral."""
        ...

    def withdraw(self, asset: Token, amount: int, identity: str) -> None:
        """Release amount of collateral back to identity."""
        ...

    def borrow(self, asset: Token, amount: int, identity: str) -> None:
        """Lend amount of asset to identity against its collateral."""
        ...

    def repay(self, asset: Token, amount: int, identity: str) -> None:
        """Pull amount of asset from identity and reduce its debt."""
        ...

    def collateral_balance(self, asset: Token, identity: str) -> int:
        """Receipt-token balance of identity for asset."""
        ...

    def debt_balance(self, asset: Token, identity: str) -> int:
        """Variable-debt balance of identity for asset."""
        ...


class PriceOracle(Protocol):
    """Protocol for asset prices in a fixed base-currency unit.

    Freshness and validation are the oracle's responsibility; a price that
    cannot be served raises OracleUnavailableError.
    """

    base_currency_unit: int

    def get_asset_price(self, asset: Token) -> int:
        ...


# Invoked by the provider with (asset, amount, fee); must leave amount + fee
# approved for the provider to pull before returning.
FlashCallback = Callable[[Token, int, int], None]


class FlashLiquidityProvider(Protocol):
    """Protocol for ERC-3156 style flash lenders."""

    address: str

    def max_flash_loan(self, asset: Token) -> int:
        ...

    def flash_fee(self, asset: Token, amount: int) -> int:
        ...

    def flash_loan(
        self,
        asset: Token,
        amount: int,
        receiver: str,
        callback: FlashCallback,
    ) -> None:
        """Lend amount to receiver, run callback, then pull amount + fee."""
        ...


class SwapCollaborator(Protocol):
    """Protocol for swap venues.

    swap_exact_input reports the amount of token_out received and
    swap_exact_output reports the amount of token_in spent. The orchestrator
    verifies both against its own balance deltas.
    """

    address: str

    def quote_exact_output(self, token_in: Token, token_out: Token, amount_out: int) -> int:
        """Amount of token_in swap_exact_output would spend for amount_out."""
        ...

    def swap_exact_input(
        self,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        min_amount_out: int,
        payload: bytes,
        identity: str,
    ) -> int:
        ...

    def swap_exact_output(
        self,
        token_in: Token,
        token_out: Token,
        amount_out: int,
        max_amount_in: int,
        payload: bytes,
        identity: str,
    ) -> int:
        ...


class RewardsSource(Protocol):
    """Protocol for the incentive controller accruing rewards to the vault."""

    def claim_rewards(self, reward_token: Token, identity: str, to: str) -> int:
        """Claim everything accrued to identity in reward_token, sending it to to.

        Returns:
            Amount claimed
        """
        ...
