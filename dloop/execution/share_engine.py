"""Deposit/Withdraw Engine: share-based entry and exit at target leverage.

Deposits are levered up in one flash sequence (borrow debt, swap to
collateral, supply, borrow the debt back). The collateral bought is sized from
the swap collaborator's quote and the flash fee so that the deposited slice
sits at target leverage after costs; the borrow leg is then measured from the
collateral actually supplied. Redemptions unwind a proportional slice in one
flash sequence (borrow collateral, swap to debt, repay, withdraw), and their
previews charge the same quoted unwind cost. Shares are minted in proportion
to the leveraged collateral a deposit adds, and the first deposit mints one
share per unit of assets.
"""

import logging
from typing import Dict, Optional, Tuple

from dloop.core.errors import (
    InsufficientAllowanceError,
    SlippageExceededError,
    ZeroAmountError,
)
from dloop.core.fixed_point import (
    BALANCE_DIFF_TOLERANCE,
    ONE_HUNDRED_PERCENT_BPS,
    Rounding,
    fee_on_gross,
    gross_amount_required_for_net,
    mul_div,
    net_amount_after_fee,
)
from dloop.core.leverage_calculator import LeverageCalculator
from dloop.core.position_ledger import PositionLedger
from dloop.core.types import PositionAmounts, SwapResult, VaultConfig
from dloop.execution.flash_orchestrator import FlashLoanSwapOrchestrator, FlashSwapPlan
from dloop.execution.interfaces import Token
from dloop.execution.position_handle import PositionHandle

logger = logging.getLogger(__name__)

# Refinement steps when inverting rounded fees and quoted payouts.
REFINE_ROUNDS = 4


class DepositWithdrawEngine:
    """ERC-4626 style share accounting on top of the leveraged position.

    Attributes:
        ledger: PositionLedger for the designated reserves
        calculator: LeverageCalculator (bounds and convergence checks)
        orchestrator: FlashLoanSwapOrchestrator for the vault identity
        position: PositionHandle mutating the venue position
        share_token: Vault share token (the engine mints and burns it)
        identity: Vault address
    """

    def __init__(
        self,
        ledger: PositionLedger,
        calculator: LeverageCalculator,
        orchestrator: FlashLoanSwapOrchestrator,
        position: PositionHandle,
        share_token: Token,
        identity: str,
    ):
        self.ledger = ledger
        self.calculator = calculator
        self.orchestrator = orchestrator
        self.position = position
        self.share_token = share_token
        self.identity = identity

    @property
    def collateral_token(self) -> Token:
        return self.ledger.collateral_token

    @property
    def debt_token(self) -> Token:
        return self.ledger.debt_token

    # Views

    def total_assets(self) -> int:
        """Net equity of the designated reserves, in collateral tokens."""
        return self.ledger.net_assets_in_collateral()

    def convert_to_shares(self, assets: int, rounding: Rounding = Rounding.DOWN) -> int:
        supply = self.share_token.total_supply
        total = self.total_assets()
        if supply == 0 or total == 0:
            return assets
        return mul_div(assets, supply, total, rounding)

    def convert_to_assets(self, shares: int, rounding: Rounding = Rounding.DOWN) -> int:
        supply = self.share_token.total_supply
        if supply == 0:
            return shares
        return mul_div(shares, self.total_assets(), supply, rounding)

    def preview_deposit(self, assets: int) -> int:
        """Shares a deposit of assets would mint, after swap and flash costs."""
        supply = self.share_token.total_supply
        if supply == 0:
            return assets
        leveraged = assets + self.leveraged_extra(assets)
        return mul_div(supply, leveraged, self.ledger.total_collateral_in_tokens())

    def preview_mint(self, shares: int) -> int:
        """Smallest deposit whose preview_deposit is at least shares."""
        supply = self.share_token.total_supply
        if supply == 0:
            return shares
        needed = mul_div(shares, self.ledger.total_collateral_in_tokens(), supply, Rounding.UP)
        if needed == 0:
            return 0
        assets = mul_div(
            needed, ONE_HUNDRED_PERCENT_BPS, self.calculator.bounds.target_bps, Rounding.UP
        )
        leveraged = assets + self.leveraged_extra(assets)
        assets = mul_div(needed, assets, leveraged, Rounding.UP)
        for _ in range(REFINE_ROUNDS):
            leveraged = assets + self.leveraged_extra(assets)
            if leveraged >= needed:
                break
            assets += mul_div(needed - leveraged, assets, leveraged, Rounding.UP)
        return assets

    def preview_redeem(self, shares: int, withdrawal_fee_bps: int) -> int:
        """Collateral redeem pays for shares, net of unwind costs and the withdrawal fee."""
        return net_amount_after_fee(self.redeem_payout(shares), withdrawal_fee_bps)

    def preview_withdraw(self, assets: int, withdrawal_fee_bps: int) -> int:
        """Fewest shares whose redemption pays at least assets after fees."""
        gross = gross_amount_required_for_net(assets, withdrawal_fee_bps)
        supply = self.share_token.total_supply
        full = self.redeem_payout(supply) if supply else 0
        if full == 0:
            return self.convert_to_shares(gross, Rounding.UP)
        shares = mul_div(gross, supply, full, Rounding.UP)
        for _ in range(REFINE_ROUNDS):
            payout = self.redeem_payout(shares)
            if payout >= gross or shares >= supply:
                break
            shares += mul_div(gross - payout, supply, full, Rounding.UP)
        return shares

    def redeem_payout(self, shares: int) -> int:
        """Collateral a redemption of shares releases before the withdrawal fee.

        The slice's collateral minus the quoted cost of buying its debt and the
        flash fee on the collateral borrowed to do so.
        """
        supply = self.share_token.total_supply
        if supply == 0:
            return shares
        withdraw_amount, repay_amount = self._slice(shares, supply, self.ledger.get_position_amounts())
        if repay_amount == 0:
            return withdraw_amount
        _, cost = self._unwind_quote(withdraw_amount, repay_amount)
        return max(withdraw_amount - cost, 0)

    def leveraged_extra(self, assets: int) -> int:
        """Collateral a deposit of assets buys so that its slice sits at target.

        With k the quoted cost of the purchase (swap input plus flash fee) per
        unit of its oracle value and T the target ratio, a slice of
        assets + extra carries debt worth extra * k and lands on T when
        extra = assets * (T - 1) / (T * k - (T - 1)). Quotes better than the
        oracle are priced at the oracle.
        """
        target = self.calculator.bounds.target_bps
        oracle_extra = mul_div(assets, target - ONE_HUNDRED_PERCENT_BPS, ONE_HUNDRED_PERCENT_BPS)
        if oracle_extra == 0:
            return 0
        _, _, cost = self._purchase(oracle_extra)
        cost_in_collateral = max(
            self.ledger.base_to_collateral(self.ledger.debt_to_base(cost), Rounding.UP),
            oracle_extra,
        )
        denominator = target * cost_in_collateral - (target - ONE_HUNDRED_PERCENT_BPS) * oracle_extra
        return mul_div(assets * (target - ONE_HUNDRED_PERCENT_BPS), oracle_extra, denominator)

    # Flows

    def deposit(
        self,
        caller: str,
        assets: int,
        receiver: str,
        config: VaultConfig,
        exact_shares: Optional[int] = None,
    ) -> int:
        """Pull assets from caller, lever them to target and mint shares to receiver.

        Args:
            caller: Address paying the collateral
            assets: Collateral tokens deposited
            receiver: Address receiving the shares
            config: Active VaultConfig
            exact_shares: Mint exactly this many shares (mint path); the
                measured amount must be at least this

        Returns:
            Shares minted
        """
        leverage_before = self.calculator.current_leverage_bps()
        supply_before = self.share_token.total_supply
        leveraged_before = self.ledger.total_collateral_in_tokens()

        allowed = self.collateral_token.allowance(caller, self.identity)
        if caller != self.identity and allowed < assets:
            raise InsufficientAllowanceError(
                f"{caller} approved {allowed} {self.collateral_token.symbol}, deposit needs {assets}"
            )
        self.collateral_token.transfer_from(self.identity, caller, self.identity, assets)

        extra = self.leveraged_extra(assets)
        if extra == 0:
            self.position.supply_collateral(assets)
        else:
            self._lever_up(assets, extra, receiver)

        leveraged_delta = self.ledger.total_collateral_in_tokens() - leveraged_before
        if supply_before == 0:
            shares = assets
        else:
            shares = mul_div(supply_before, leveraged_delta, leveraged_before)

        if exact_shares is not None:
            if shares < exact_shares:
                raise SlippageExceededError("minted shares", shares, exact_shares)
            shares = exact_shares
        if shares == 0:
            raise ZeroAmountError(f"deposit of {assets} mints no shares")

        self.share_token.mint(receiver, shares)
        leverage_after = self.calculator.ensure_not_diverged(
            "deposit", leverage_before, config.leverage_tolerance_bps
        )
        logger.info(
            f"Deposit: {assets} {self.collateral_token.symbol} from {caller} -> {shares} shares "
            f"to {receiver}, leverage {leverage_before} -> {leverage_after}"
        )
        return shares

    def _lever_up(self, assets: int, extra: int, receiver: str) -> None:
        quoted_in, flash_amount, _ = self._purchase(extra)

        def update_position(swap: SwapResult, fee: int) -> None:
            supplied = assets + swap.amount_out
            self.position.supply_collateral(supplied)
            # the vault still holds flash_amount - amount_in of the loan
            owed = swap.amount_in + fee
            self.position.borrow_debt(max(self._debt_at_target(supplied), owed))

        self.orchestrator.execute(
            FlashSwapPlan(
                label="deposit",
                flash_token=self.debt_token,
                flash_amount=flash_amount,
                swap_out_token=self.collateral_token,
                required_out=extra,
                estimated_in=quoted_in,
                update_position=update_position,
                settle=lambda leftovers: self._sweep(leftovers, receiver),
            )
        )

    def _purchase(self, amount_out: int) -> Tuple[int, int, int]:
        """Quote buying amount_out collateral with flash-borrowed debt.

        Returns:
            (quoted_in, flash_amount, cost) in debt tokens, where cost is the
            expected swap input plus the flash fee
        """
        strategy = self.orchestrator.swap_strategy
        provider = self.orchestrator.flash_provider
        quoted_in = strategy.quote_input(self.debt_token, self.collateral_token, amount_out)
        budget = strategy.input_budget(quoted_in)
        flash_amount = budget
        for _ in range(REFINE_ROUNDS):
            fee = provider.flash_fee(self.debt_token, flash_amount)
            if flash_amount - fee >= budget:
                break
            flash_amount = budget + fee
        fee = provider.flash_fee(self.debt_token, flash_amount)
        return quoted_in, flash_amount, strategy.expected_spend(quoted_in, flash_amount - fee) + fee

    def _debt_at_target(self, collateral_amount: int) -> int:
        """Debt tokens that put collateral_amount at target leverage."""
        target = self.calculator.bounds.target_bps
        debt_base = mul_div(
            self.ledger.collateral_to_base(collateral_amount),
            target - ONE_HUNDRED_PERCENT_BPS,
            target,
        )
        return self.ledger.base_to_debt(debt_base)

    def redeem(
        self,
        caller: str,
        shares: int,
        receiver: str,
        owner: str,
        config: VaultConfig,
        fee_receiver: str,
        exact_assets: Optional[int] = None,
    ) -> int:
        """Burn shares of owner and pay the unwound collateral to receiver.

        Shares are burned before any collaborator is called. The owner's slice
        is collateral * shares / supply and debt * shares / supply (debt
        rounded up); a full exit takes the whole position.

        Args:
            exact_assets: Withdraw path; the net payout must reach this amount
                within BALANCE_DIFF_TOLERANCE

        Returns:
            Collateral tokens paid to receiver after the withdrawal fee
        """
        if caller != owner:
            self.share_token.spend_allowance(owner, caller, shares)

        supply = self.share_token.total_supply
        withdraw_amount, repay_amount = self._slice(shares, supply, self.ledger.get_position_amounts())
        leverage_before = self.calculator.current_leverage_bps()

        self.share_token.burn(owner, shares)
        if withdraw_amount == 0:
            raise ZeroAmountError(f"redeeming {shares} shares releases no collateral")

        collateral_before = self.collateral_token.balance_of(self.identity)
        debt_before = self.debt_token.balance_of(self.identity)

        if repay_amount == 0:
            self.position.withdraw_collateral(withdraw_amount)
        else:
            self._unwind(withdraw_amount, repay_amount)

        gross = self.collateral_token.balance_of(self.identity) - collateral_before
        debt_surplus = self.debt_token.balance_of(self.identity) - debt_before
        fee = fee_on_gross(gross, config.withdrawal_fee_bps)
        net = gross - fee
        if exact_assets is not None and net + BALANCE_DIFF_TOLERANCE < exact_assets:
            raise SlippageExceededError("withdrawn assets", net, exact_assets)

        if fee:
            self.collateral_token.transfer(self.identity, fee_receiver, fee)
        if net:
            self.collateral_token.transfer(self.identity, receiver, net)
        if debt_surplus > 0:
            self.debt_token.transfer(self.identity, receiver, debt_surplus)

        if self.share_token.total_supply > 0:
            self.calculator.ensure_not_diverged("redeem", leverage_before, config.leverage_tolerance_bps)
        logger.info(
            f"Redeem: {shares} shares of {owner} -> {net} {self.collateral_token.symbol} "
            f"to {receiver} (fee {fee})"
        )
        return net

    def _slice(self, shares: int, supply: int, amounts: PositionAmounts) -> Tuple[int, int]:
        if shares == supply:
            return amounts.collateral_amount, amounts.debt_amount
        return (
            mul_div(amounts.collateral_amount, shares, supply),
            mul_div(amounts.debt_amount, shares, supply, Rounding.UP),
        )

    def _unwind_quote(self, withdraw_amount: int, repay_amount: int) -> Tuple[int, int]:
        """(quoted_in, cost) of buying repay_amount debt with withdraw_amount flash collateral."""
        strategy = self.orchestrator.swap_strategy
        quoted_in = strategy.quote_input(self.collateral_token, self.debt_token, repay_amount)
        fee = self.orchestrator.flash_provider.flash_fee(self.collateral_token, withdraw_amount)
        return quoted_in, strategy.expected_spend(quoted_in, withdraw_amount - fee) + fee

    def _unwind(self, withdraw_amount: int, repay_amount: int) -> None:
        quoted_in, _ = self._unwind_quote(withdraw_amount, repay_amount)

        def update_position(swap: SwapResult, fee: int) -> None:
            self.position.repay_debt(repay_amount)
            self.position.withdraw_collateral(withdraw_amount)

        self.orchestrator.execute(
            FlashSwapPlan(
                label="redeem",
                flash_token=self.collateral_token,
                flash_amount=withdraw_amount,
                swap_out_token=self.debt_token,
                required_out=repay_amount,
                estimated_in=quoted_in,
                update_position=update_position,
            )
        )

    def _sweep(self, leftovers: Dict[str, int], to: str) -> None:
        for token in (self.collateral_token, self.debt_token):
            amount = leftovers.get(token.address, 0)
            if amount > 0:
                token.transfer(self.identity, to, amount)
