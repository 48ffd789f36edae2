"""
In-memory ERC20-like token ledger.

Used for the collateral, debt, share and reward tokens of the reference
environment. Balances and allowances are plain dicts so the atomic scope can
snapshot and restore them.
"""
import logging
from typing import Dict, Tuple

from dloop.core.errors import (
    InsufficientAllowanceError,
    InsufficientBalanceError,
    ZeroAddressError,
)
from dloop.core.fixed_point import UINT256_MAX, require_int
from dloop.core.types import ZERO_ADDRESS

logger = logging.getLogger(__name__)


class Token:
    """
    Fungible token with balances, allowances, mint and burn.

    An allowance of UINT256_MAX is never decreased by transfer_from.
    """

    def __init__(self, symbol: str, decimals: int = 18, address: str = ""):
        """
        Initialize token.

        Args:
            symbol: Ticker used in logs
            decimals: Decimal places of the native unit
            address: Identity of the token; derived from the symbol if empty
        """
        self.symbol = symbol
        self.decimals = decimals
        self.address = address or f"token:{symbol.lower()}"
        self.total_supply = 0
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}

    def __repr__(self) -> str:
        return f"Token({self.symbol})"

    def unit(self, amount: int = 1) -> int:
        """amount whole tokens in native units."""
        return amount * 10**self.decimals

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        require_int(amount, "allowance")
        if spender == ZERO_ADDRESS:
            raise ZeroAddressError("cannot approve the zero address")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        require_int(amount, "amount")
        if to == ZERO_ADDRESS:
            raise ZeroAddressError(f"{self.symbol}: transfer to the zero address")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{self.symbol}: {sender} holds {balance}, needs {amount}"
            )
        self.balances[sender] = balance - amount
        self.balances[to] = self.balance_of(to) + amount

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        self.spend_allowance(owner, spender, amount)
        self.transfer(owner, to, amount)

    def spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        if spender == owner:
            return
        current = self.allowance(owner, spender)
        if current < amount:
            raise InsufficientAllowanceError(
                f"{self.symbol}: {spender} may spend {current} of {owner}, needs {amount}"
            )
        if current != UINT256_MAX:
            self.allowances[(owner, spender)] = current - amount

    def mint(self, to: str, amount: int) -> None:
        require_int(amount, "amount")
        if to == ZERO_ADDRESS:
            raise ZeroAddressError(f"{self.symbol}: mint to the zero address")
        self.total_supply += amount
        self.balances[to] = self.balance_of(to) + amount

    def burn(self, owner: str, amount: int) -> None:
        require_int(amount, "amount")
        balance = self.balance_of(owner)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{self.symbol}: cannot burn {amount}, {owner} holds {balance}"
            )
        self.balances[owner] = balance - amount
        self.total_supply -= amount
