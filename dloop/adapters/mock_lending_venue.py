"""
MockLendingVenue: in-memory pool-style lending venue.

Tracks per-identity collateral and debt for any number of listed reserves,
enforces a loan-to-value ceiling across every reserve of an identity, and holds
real token balances for its liquidity. It also exposes the aggregate
get_user_account_data view that live venues offer; the vault must never rely
on it because it mixes in reserves the vault does not manage.
"""
import logging
from typing import Dict, Optional, Tuple

from dloop.core.errors import LendingVenueError
from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, convert_to_base, require_int
from dloop.execution.interfaces import PriceOracle, Token

logger = logging.getLogger(__name__)


class MockLendingVenue:
    """
    Lending venue keyed by (asset, identity).

    Attributes:
        address: Identity of the pool (holds supplied tokens and liquidity)
        oracle: Used for the LTV check; None disables it
        max_ltv_bps: Maximum debt value over collateral value per identity
        transfer_shortfall: Units withheld on withdraw/borrow transfers, to
            emulate receipt-token rounding
    """

    def __init__(
        self,
        oracle: Optional[PriceOracle] = None,
        max_ltv_bps: int = 9_000,
        address: str = "venue:pool",
    ):
        self.address = address
        self.oracle = oracle
        self.max_ltv_bps = max_ltv_bps
        self.transfer_shortfall = 0
        self.reserves: Dict[str, Token] = {}
        self.collateral: Dict[Tuple[str, str], int] = {}
        self.debt: Dict[Tuple[str, str], int] = {}

    def list_reserve(self, token: Token) -> None:
        self.reserves[token.address] = token

    def _require_listed(self, asset: Token) -> None:
        if asset.address not in self.reserves:
            raise LendingVenueError(f"{asset.symbol} is not a listed reserve")

    def supply(self, asset: Token, amount: int, identity: str, payer: Optional[str] = None) -> None:
        """Pull amount from payer (identity by default) and credit identity."""
        require_int(amount, "amount")
        self._require_listed(asset)
        if amount == 0:
            raise LendingVenueError("supply amount is zero")
        payer = payer or identity
        asset.transfer_from(self.address, payer, self.address, amount)
        key = (asset.address, identity)
        self.collateral[key] = self.collateral.get(key, 0) + amount
        logger.debug(f"Supplied {amount} {asset.symbol} for {identity}")

    def withdraw(self, asset: Token, amount: int, identity: str) -> None:
        require_int(amount, "amount")
        self._require_listed(asset)
        key = (asset.address, identity)
        balance = self.collateral.get(key, 0)
        if amount > balance:
            raise LendingVenueError(
                f"withdraw {amount} {asset.symbol} exceeds collateral {balance}"
            )
        self.collateral[key] = balance - amount
        self._check_health(identity)
        asset.transfer(self.address, identity, amount - min(self.transfer_shortfall, amount))
        logger.debug(f"Withdrew {amount} {asset.symbol} for {identity}")

    def borrow(self, asset: Token, amount: int, identity: str) -> None:
        require_int(amount, "amount")
        self._require_listed(asset)
        available = asset.balance_of(self.address)
        if amount > available:
            raise LendingVenueError(
                f"borrow {amount} {asset.symbol} exceeds available liquidity {available}"
            )
        key = (asset.address, identity)
        self.debt[key] = self.debt.get(key, 0) + amount
        self._check_health(identity)
        asset.transfer(self.address, identity, amount - min(self.transfer_shortfall, amount))
        logger.debug(f"Borrowed {amount} {asset.symbol} for {identity}")

    def repay(self, asset: Token, amount: int, identity: str) -> None:
        """Repay up to the outstanding debt; any excess is not pulled."""
        require_int(amount, "amount")
        self._require_listed(asset)
        key = (asset.address, identity)
        outstanding = self.debt.get(key, 0)
        paid = min(amount, outstanding)
        if paid == 0:
            raise LendingVenueError(f"no {asset.symbol} debt to repay for {identity}")
        asset.transfer_from(self.address, identity, self.address, paid)
        self.debt[key] = outstanding - paid
        logger.debug(f"Repaid {paid} {asset.symbol} for {identity}")

    def collateral_balance(self, asset: Token, identity: str) -> int:
        return self.collateral.get((asset.address, identity), 0)

    def debt_balance(self, asset: Token, identity: str) -> int:
        return self.debt.get((asset.address, identity), 0)

    def get_user_account_data(self, identity: str) -> Tuple[int, int]:
        """Total collateral and debt value of identity across every reserve."""
        if self.oracle is None:
            raise LendingVenueError("account data needs an oracle")
        total_collateral = 0
        total_debt = 0
        for address, token in self.reserves.items():
            supplied = self.collateral.get((address, identity), 0)
            owed = self.debt.get((address, identity), 0)
            if supplied or owed:
                price = self.oracle.get_asset_price(token)
                total_collateral += convert_to_base(supplied, price, token.decimals)
                total_debt += convert_to_base(owed, price, token.decimals)
        return total_collateral, total_debt

    def _check_health(self, identity: str) -> None:
        if self.oracle is None:
            return
        total_collateral, total_debt = self.get_user_account_data(identity)
        if total_debt * ONE_HUNDRED_PERCENT_BPS > total_collateral * self.max_ltv_bps:
            raise LendingVenueError(
                f"{identity} would exceed max LTV {self.max_ltv_bps}bps "
                f"(collateral {total_collateral}, debt {total_debt})"
            )
