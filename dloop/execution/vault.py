"""LeverageVault: caller-facing surface of the leveraged-position engine.

Every state-changing entry point runs behind a non-reentrant guard, a pause
check and an atomic Transaction over all in-memory participants, so it either
completes fully or leaves no trace. Callers are passed explicitly as the first
argument; access control is left to the deployment wrapping the vault.
"""

import functools
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from dloop.adapters.token import Token as ShareToken
from dloop.core.errors import (
    CannotRescueRestrictedTokenError,
    ExceededMaxDepositError,
    ExceededMaxMintError,
    ExceededMaxRedeemError,
    ExceededMaxWithdrawError,
    InvalidBoundsError,
    InvalidConfigurationError,
    LeverageAboveTargetError,
    LeverageBelowTargetError,
    NoPositionError,
    ReentrancyError,
    SlippageExceededError,
    TreasuryFeeTooHighError,
    VaultPausedError,
    WithdrawalFeeTooHighError,
    ZeroAddressError,
    ZeroAmountError,
)
from dloop.core.fixed_point import UINT256_MAX, Rounding, require_int
from dloop.core.leverage_calculator import LeverageCalculator
from dloop.core.position_ledger import PositionLedger
from dloop.core.rebalance_director import RebalanceDirector
from dloop.core.types import (
    MAX_WITHDRAWAL_FEE_BPS,
    ZERO_ADDRESS,
    BoundsConfig,
    FlashSwapOutcome,
    PositionValue,
    RebalanceQuote,
    RewardClaim,
    SwapResult,
    VaultConfig,
)
from dloop.execution.atomic import Transaction
from dloop.execution.flash_orchestrator import FlashLoanSwapOrchestrator, FlashSwapPlan
from dloop.execution.interfaces import (
    FlashLiquidityProvider,
    LendingVenue,
    PriceOracle,
    RewardsSource,
    SwapCollaborator,
    Token,
)
from dloop.execution.position_handle import PositionHandle
from dloop.execution.reward_compounder import RewardCompounder
from dloop.execution.share_engine import DepositWithdrawEngine
from dloop.execution.swap_strategies import SwapMode, SwapStrategyConfig, build_swap_strategy

logger = logging.getLogger(__name__)


def state_changing(allow_when_paused: bool = False):
    """Guard a vault method: reject re-entry and pause, run it atomically."""

    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            if self._entered:
                logger.warning(f"Rejected re-entry into {method.__name__}")
                raise ReentrancyError(f"{method.__name__} called during an active operation")
            if self.paused and not allow_when_paused:
                raise VaultPausedError(f"{method.__name__} is disabled while paused")
            self._entered = True
            try:
                with Transaction(self._participants(), name=method.__name__) as txn:
                    self._active_txn = txn
                    return method(self, *args, **kwargs)
            finally:
                self._entered = False
                self._active_txn = None

        return wrapper

    return decorator


class LeverageVault:
    """Automated leverage vault over one collateral and one debt reserve.

    Attributes:
        address: Vault identity at the venue and on every token
        collateral_token: Designated collateral reserve (also the deposit asset)
        debt_token: Designated debt reserve
        share_token: Vault shares, same decimals as the collateral token
        config: Active VaultConfig (fees, thresholds, tolerances)
        treasury: Receiver of the reward treasury fee
        fee_receiver: Receiver of the withdrawal fee
        paused: True while entry points are disabled
    """

    def __init__(
        self,
        collateral_token: Token,
        debt_token: Token,
        venue: LendingVenue,
        oracle: PriceOracle,
        flash_provider: FlashLiquidityProvider,
        swap_collaborator: SwapCollaborator,
        bounds: BoundsConfig,
        config: Optional[VaultConfig] = None,
        swap_mode: SwapMode = SwapMode.EXACT_OUTPUT,
        rewards_source: Optional[RewardsSource] = None,
        treasury: str = "treasury",
        fee_receiver: str = "fee-receiver",
        address: str = "vault:dloop",
        name: Optional[str] = None,
    ):
        """Initialize LeverageVault.

        Args:
            collateral_token: Designated collateral reserve
            debt_token: Designated debt reserve
            venue: Lending venue holding the position
            oracle: Price oracle for both reserves
            flash_provider: Flash-liquidity collaborator
            swap_collaborator: Swap venue
            bounds: Leverage bounds and subsidy
            config: Fees and tolerances (defaults if None)
            swap_mode: Swap strategy variant, fixed for the vault's lifetime
            rewards_source: Incentive controller for compound_rewards
            treasury: Receiver of the reward treasury fee
            fee_receiver: Receiver of the withdrawal fee
            address: Vault identity
            name: Share token symbol (derived from the assets if None)
        """
        if collateral_token.address == debt_token.address:
            raise InvalidConfigurationError("collateral and debt tokens must differ")

        self.address = address
        self.collateral_token = collateral_token
        self.debt_token = debt_token
        self.venue = venue
        self.oracle = oracle
        self.flash_provider = flash_provider
        self.swap_collaborator = swap_collaborator
        self.rewards_source = rewards_source
        self.config = config or VaultConfig()
        self.swap_mode = swap_mode
        self.treasury = treasury
        self.fee_receiver = fee_receiver
        self.paused = False
        self._entered = False
        self._active_txn: Optional[Transaction] = None

        symbol = name or f"d{collateral_token.symbol}-{debt_token.symbol}-{bounds.target_bps // 100}"
        self.share_token = ShareToken(symbol, collateral_token.decimals, f"{address}:shares")

        self.ledger = PositionLedger(venue, oracle, collateral_token, debt_token, address)
        self.calculator = LeverageCalculator(self.ledger, bounds)
        self.director = RebalanceDirector(self.calculator)
        self.position = PositionHandle(venue, collateral_token, debt_token, address)
        self.swap_strategy = build_swap_strategy(
            swap_collaborator, SwapStrategyConfig(swap_mode, self.config.slippage_buffer_bps)
        )
        self.orchestrator = FlashLoanSwapOrchestrator(
            address, flash_provider, self.swap_strategy, [collateral_token, debt_token]
        )
        self.engine = DepositWithdrawEngine(
            self.ledger, self.calculator, self.orchestrator, self.position, self.share_token, address
        )
        self.compounder = None
        if rewards_source is not None:
            self.compounder = RewardCompounder(
                rewards_source, self.share_token, [collateral_token, debt_token], address
            )

        collateral_token.approve(address, venue.address, UINT256_MAX)
        debt_token.approve(address, venue.address, UINT256_MAX)

        logger.info(
            f"Initialized LeverageVault {symbol}: target {bounds.target_bps}bps "
            f"[{bounds.lower_bound_bps}, {bounds.upper_bound_bps}], swaps {swap_mode.value}"
        )

    def _participants(self) -> list:
        participants = [
            self,
            self.calculator,
            self.share_token,
            self.collateral_token,
            self.debt_token,
            self.venue,
            self.flash_provider,
            self.swap_collaborator,
        ]
        if self.rewards_source is not None:
            participants.append(self.rewards_source)
        return participants

    def _track(self, *objects: object) -> None:
        if self._active_txn is not None:
            for obj in objects:
                self._active_txn.track(obj)

    @property
    def bounds(self) -> BoundsConfig:
        return self.calculator.bounds

    # Views

    def get_position_value(self) -> PositionValue:
        return self.ledger.get_position_value()

    def current_leverage_bps(self) -> int:
        return self.calculator.current_leverage_bps()

    def current_subsidy_bps(self) -> int:
        return self.calculator.subsidy_bps()

    def is_too_imbalanced(self) -> bool:
        return self.calculator.is_too_imbalanced()

    def quote_rebalance(self) -> RebalanceQuote:
        return self.director.quote_rebalance()

    def total_assets(self) -> int:
        return self.engine.total_assets()

    def total_supply(self) -> int:
        return self.share_token.total_supply

    def balance_of(self, account: str) -> int:
        return self.share_token.balance_of(account)

    def convert_to_shares(self, assets: int) -> int:
        return self.engine.convert_to_shares(assets)

    def convert_to_assets(self, shares: int) -> int:
        return self.engine.convert_to_assets(shares)

    def preview_deposit(self, assets: int) -> int:
        return self.engine.preview_deposit(assets)

    def preview_mint(self, shares: int) -> int:
        return self.engine.preview_mint(shares)

    def preview_redeem(self, shares: int) -> int:
        return self.engine.preview_redeem(shares, self.config.withdrawal_fee_bps)

    def preview_withdraw(self, assets: int) -> int:
        return self.engine.preview_withdraw(assets, self.config.withdrawal_fee_bps)

    def max_deposit(self, receiver: str = "") -> int:
        """UINT256_MAX while balanced and unpaused, zero otherwise."""
        if self.paused or self.is_too_imbalanced():
            return 0
        return UINT256_MAX

    def max_mint(self, receiver: str = "") -> int:
        return self.max_deposit(receiver)

    def max_redeem(self, owner: str) -> int:
        if self.paused or self.is_too_imbalanced():
            return 0
        return self.share_token.balance_of(owner)

    def max_withdraw(self, owner: str) -> int:
        shares = self.max_redeem(owner)
        if shares == 0:
            return 0
        return self.preview_redeem(shares)

    def get_repay_amount_that_keeps_current_leverage(self, withdraw_collateral: int) -> int:
        return self.calculator.repay_amount_keeping_leverage(
            withdraw_collateral, self.current_leverage_bps()
        )

    def get_borrow_amount_that_keeps_current_leverage(self, supply_collateral: int) -> int:
        return self.calculator.borrow_amount_keeping_leverage(
            supply_collateral, self.current_leverage_bps()
        )

    # Deposit / withdraw

    @state_changing()
    def deposit(self, caller: str, assets: int, receiver: str, min_shares: int = 0) -> int:
        """Deposit collateral at target leverage.

        Returns:
            Shares minted to receiver

        Raises:
            ExceededMaxDepositError: While the vault is imbalanced
            SlippageExceededError: If fewer than min_shares are minted
        """
        self._require_amount(assets)
        self._require_address(receiver, "receiver")
        if assets > self.max_deposit(receiver):
            raise ExceededMaxDepositError(f"deposit of {assets} exceeds max deposit")
        shares = self.engine.deposit(caller, assets, receiver, self.config)
        if shares < min_shares:
            raise SlippageExceededError("deposit shares", shares, min_shares)
        return shares

    @state_changing()
    def mint(self, caller: str, shares: int, receiver: str, max_assets: int = UINT256_MAX) -> int:
        """Mint exactly shares, pulling the deposit preview_mint prices them at.

        Returns:
            Collateral tokens pulled from caller
        """
        self._require_amount(shares)
        self._require_address(receiver, "receiver")
        if shares > self.max_mint(receiver):
            raise ExceededMaxMintError(f"mint of {shares} exceeds max mint")
        assets = self.preview_mint(shares)
        if assets > max_assets:
            raise SlippageExceededError("mint assets", assets, max_assets)
        self.engine.deposit(caller, assets, receiver, self.config, exact_shares=shares)
        return assets

    @state_changing()
    def redeem(self, caller: str, shares: int, receiver: str, owner: str, min_assets: int = 0) -> int:
        """Redeem shares of owner for collateral.

        Returns:
            Collateral tokens paid to receiver, net of the withdrawal fee
        """
        self._require_amount(shares)
        self._require_address(receiver, "receiver")
        self._require_address(owner, "owner")
        if shares > self.max_redeem(owner):
            raise ExceededMaxRedeemError(f"redeem of {shares} exceeds max redeem for {owner}")
        assets = self.engine.redeem(caller, shares, receiver, owner, self.config, self.fee_receiver)
        if assets < min_assets:
            raise SlippageExceededError("redeemed assets", assets, min_assets)
        return assets

    @state_changing()
    def withdraw(
        self,
        caller: str,
        assets: int,
        receiver: str,
        owner: str,
        max_shares: int = UINT256_MAX,
    ) -> int:
        """Withdraw at least assets collateral (net of fee) to receiver.

        Returns:
            Shares burned from owner
        """
        self._require_amount(assets)
        self._require_address(receiver, "receiver")
        self._require_address(owner, "owner")
        if assets > self.max_withdraw(owner):
            raise ExceededMaxWithdrawError(f"withdraw of {assets} exceeds max withdraw for {owner}")
        shares = min(self.preview_withdraw(assets), self.share_token.balance_of(owner))
        if shares > max_shares:
            raise SlippageExceededError("withdraw shares", shares, max_shares)
        self.engine.redeem(
            caller, shares, receiver, owner, self.config, self.fee_receiver, exact_assets=assets
        )
        return shares

    # Rebalance

    @state_changing()
    def increase_leverage(
        self,
        caller: str,
        amount: int,
        payload: bytes = b"",
        min_output: int = 0,
    ) -> FlashSwapOutcome:
        """Add amount collateral and borrow its debt value plus subsidy.

        The flash loan funds the collateral; whatever the borrowed debt leaves
        after repaying it is paid to caller.

        Args:
            caller: Rebalancer receiving the subsidy
            amount: Collateral to add (quote_rebalance().input_amount)
            payload: Routing payload for the swap collaborator
            min_output: Minimum debt tokens caller must receive

        Raises:
            LeverageAboveTargetError: If leverage is already at or above target
            LeverageDivergedError: If the result is further from target
        """
        self._require_amount(amount)
        self._require_address(caller, "caller")
        value = self._require_position()
        leverage_before = self.calculator.current_leverage_bps(value)
        if leverage_before >= self.bounds.target_bps:
            raise LeverageAboveTargetError(
                f"leverage {leverage_before} is not below target {self.bounds.target_bps}"
            )
        subsidy = self.calculator.subsidy_bps(value)
        borrow_amount = self.director.collateral_to_debt_for_increase(amount, subsidy)
        if borrow_amount == 0:
            raise ZeroAmountError(f"increase of {amount} borrows nothing")
        estimated_in = self.ledger.base_to_debt(self.ledger.collateral_to_base(amount), Rounding.UP)

        def update_position(swap: SwapResult, fee: int) -> None:
            self.position.supply_collateral(amount)
            self.position.borrow_debt(borrow_amount)

        outcome = self.orchestrator.execute(
            FlashSwapPlan(
                label="increase_leverage",
                flash_token=self.debt_token,
                flash_amount=borrow_amount,
                swap_out_token=self.collateral_token,
                required_out=amount,
                estimated_in=estimated_in,
                update_position=update_position,
                settle=lambda leftovers: self._pay_leftovers(leftovers, caller),
                payload=payload,
            )
        )
        return self._finish_rebalance(
            "increase_leverage", outcome, leverage_before, self.debt_token, min_output
        )

    @state_changing()
    def decrease_leverage(
        self,
        caller: str,
        amount: int,
        payload: bytes = b"",
        min_output: int = 0,
    ) -> FlashSwapOutcome:
        """Repay amount debt and release its collateral value plus subsidy.

        Args:
            caller: Rebalancer receiving the subsidy
            amount: Debt to repay (quote_rebalance().input_amount)
            payload: Routing payload for the swap collaborator
            min_output: Minimum collateral tokens caller must receive

        Raises:
            LeverageBelowTargetError: If leverage is already at or below target
            LeverageDivergedError: If the result is further from target
        """
        self._require_amount(amount)
        self._require_address(caller, "caller")
        value = self._require_position()
        leverage_before = self.calculator.current_leverage_bps(value)
        if leverage_before <= self.bounds.target_bps:
            raise LeverageBelowTargetError(
                f"leverage {leverage_before} is not above target {self.bounds.target_bps}"
            )
        subsidy = self.calculator.subsidy_bps(value)
        release_amount = self.director.debt_to_collateral_for_decrease(amount, subsidy)
        if release_amount == 0:
            raise ZeroAmountError(f"decrease of {amount} releases nothing")
        estimated_in = self.ledger.base_to_collateral(self.ledger.debt_to_base(amount), Rounding.UP)

        def update_position(swap: SwapResult, fee: int) -> None:
            self.position.repay_debt(amount)
            self.position.withdraw_collateral(release_amount)

        outcome = self.orchestrator.execute(
            FlashSwapPlan(
                label="decrease_leverage",
                flash_token=self.collateral_token,
                flash_amount=release_amount,
                swap_out_token=self.debt_token,
                required_out=amount,
                estimated_in=estimated_in,
                update_position=update_position,
                settle=lambda leftovers: self._pay_leftovers(leftovers, caller),
                payload=payload,
            )
        )
        return self._finish_rebalance(
            "decrease_leverage", outcome, leverage_before, self.collateral_token, min_output
        )

    def _finish_rebalance(
        self,
        operation: str,
        outcome: FlashSwapOutcome,
        leverage_before: int,
        output_token: Token,
        min_output: int,
    ) -> FlashSwapOutcome:
        paid = outcome.leftovers.get(output_token.address, 0)
        if paid < min_output:
            raise SlippageExceededError(f"{operation} subsidy", paid, min_output)
        leverage_after = self.calculator.ensure_not_diverged(operation, leverage_before)
        logger.info(
            f"{operation}: leverage {leverage_before} -> {leverage_after}, "
            f"paid {paid} {output_token.symbol} to rebalancer"
        )
        return outcome

    def _pay_leftovers(self, leftovers: Dict[str, int], to: str) -> None:
        for token in (self.collateral_token, self.debt_token):
            amount = leftovers.get(token.address, 0)
            if amount > 0:
                token.transfer(self.address, to, amount)

    # Rewards

    @state_changing()
    def compound_rewards(
        self,
        caller: str,
        share_amount: int,
        reward_tokens: Sequence[Token],
        receiver: str,
    ) -> List[RewardClaim]:
        """Burn share_amount of caller's shares and claim reward_tokens to receiver."""
        if self.compounder is None:
            raise InvalidConfigurationError("vault has no rewards source")
        self._require_address(receiver, "receiver")
        self._track(*reward_tokens)
        return self.compounder.compound(
            caller, share_amount, reward_tokens, receiver, self.treasury, self.config
        )

    # Administration

    @state_changing()
    def set_leverage_bounds(self, lower_bound_bps: int, target_bps: int, upper_bound_bps: int) -> None:
        try:
            bounds = BoundsConfig(
                target_bps=target_bps,
                lower_bound_bps=lower_bound_bps,
                upper_bound_bps=upper_bound_bps,
                max_subsidy_bps=self.bounds.max_subsidy_bps,
                min_deviation_bps=self.bounds.min_deviation_bps,
            )
        except ValidationError as e:
            raise InvalidBoundsError(str(e)) from e
        self.calculator.bounds = bounds
        logger.info(f"Leverage bounds set to [{lower_bound_bps}, {target_bps}, {upper_bound_bps}]")

    @state_changing()
    def set_max_subsidy_bps(self, max_subsidy_bps: int) -> None:
        self.calculator.bounds = self._updated(self.bounds, max_subsidy_bps=max_subsidy_bps)
        logger.info(f"Max subsidy set to {max_subsidy_bps}bps")

    @state_changing()
    def set_min_deviation_bps(self, min_deviation_bps: int) -> None:
        self.calculator.bounds = self._updated(self.bounds, min_deviation_bps=min_deviation_bps)

    @state_changing()
    def set_withdrawal_fee_bps(self, withdrawal_fee_bps: int) -> None:
        require_int(withdrawal_fee_bps, "withdrawal_fee_bps")
        if withdrawal_fee_bps > MAX_WITHDRAWAL_FEE_BPS:
            raise WithdrawalFeeTooHighError(
                f"withdrawal fee {withdrawal_fee_bps} exceeds {MAX_WITHDRAWAL_FEE_BPS}"
            )
        self.config = self._updated(self.config, withdrawal_fee_bps=withdrawal_fee_bps)

    @state_changing()
    def set_treasury_fee_bps(self, treasury_fee_bps: int) -> None:
        require_int(treasury_fee_bps, "treasury_fee_bps")
        if treasury_fee_bps > self.config.max_treasury_fee_bps:
            raise TreasuryFeeTooHighError(
                f"treasury fee {treasury_fee_bps} exceeds {self.config.max_treasury_fee_bps}"
            )
        self.config = self._updated(self.config, treasury_fee_bps=treasury_fee_bps)

    @state_changing()
    def set_exchange_threshold(self, exchange_threshold: int) -> None:
        self.config = self._updated(self.config, exchange_threshold=exchange_threshold)

    @state_changing()
    def set_fee_receiver(self, fee_receiver: str) -> None:
        self._require_address(fee_receiver, "fee_receiver")
        self.fee_receiver = fee_receiver

    @state_changing()
    def set_treasury(self, treasury: str) -> None:
        self._require_address(treasury, "treasury")
        self.treasury = treasury

    @state_changing()
    def pause(self) -> None:
        self.paused = True
        logger.info(f"{self.share_token.symbol} paused")

    @state_changing(allow_when_paused=True)
    def unpause(self) -> None:
        if not self.paused:
            raise InvalidConfigurationError("vault is not paused")
        self.paused = False
        logger.info(f"{self.share_token.symbol} unpaused")

    @state_changing()
    def rescue_token(self, token: Token, receiver: str, amount: int) -> None:
        """Send a stray token held by the vault identity to receiver."""
        restricted = {self.collateral_token.address, self.debt_token.address, self.share_token.address}
        if token.address in restricted:
            raise CannotRescueRestrictedTokenError(f"{token.symbol} is a designated vault token")
        self._require_amount(amount)
        self._require_address(receiver, "receiver")
        self._track(token)
        token.transfer(self.address, receiver, amount)
        logger.info(f"Rescued {amount} {token.symbol} to {receiver}")

    # Helpers

    def _require_position(self) -> PositionValue:
        value = self.ledger.get_position_value()
        if value.collateral_base == 0:
            raise NoPositionError("vault has no collateral to rebalance")
        return value

    @staticmethod
    def _require_amount(amount: int) -> None:
        require_int(amount, "amount")
        if amount == 0:
            raise ZeroAmountError("amount is zero")

    @staticmethod
    def _require_address(address: str, what: str) -> None:
        if not address or address == ZERO_ADDRESS:
            raise ZeroAddressError(f"{what} is the zero address")

    @staticmethod
    def _updated(model, **changes):
        try:
            return type(model)(**{**model.model_dump(), **changes})
        except ValidationError as e:
            raise InvalidConfigurationError(str(e)) from e
