"""Flash-Loan Swap Orchestrator: the atomic borrow, swap, update, repay sequence.

One execute() call walks a single FlashSwapPlan through

    INITIATED -> FLASH_BORROWED -> SWAPPED -> POSITION_UPDATED -> FLASH_REPAID -> SETTLED

and raises on the first step that fails. The orchestrator itself never commits
anything partially; the caller runs it inside an atomic scope that discards
every effect on failure.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from dloop.core.errors import (
    ArithmeticUnderflowError,
    BalanceDeltaMismatchError,
    FlashRepaymentShortfallError,
    ReentrancyError,
    UnexpectedFlashCallbackError,
    ZeroAmountError,
)
from dloop.core.types import FlashLoanRequest, FlashStage, FlashSwapOutcome, SwapResult
from dloop.execution.interfaces import FlashLiquidityProvider, Token
from dloop.execution.swap_strategies import SwapStrategy

logger = logging.getLogger(__name__)


@dataclass
class FlashSwapPlan:
    """One flash-funded swap and the position change it pays for.

    The flash token is always the swap's input token.

    Attributes:
        label: Operation name for logs
        flash_token: Asset borrowed from the flash provider and sold
        flash_amount: Amount borrowed
        swap_out_token: Asset bought
        required_out: Minimum amount of swap_out_token the position update needs
        estimated_in: Oracle-equivalent input for required_out, used to size
            exact-input swaps
        update_position: Called with (swap_result, flash_fee) after the swap;
            must leave the vault holding flash_amount + fee of flash_token
        settle: Called with the positive balance deltas of the tracked tokens
            once the flash loan is repaid
        payload: Routing payload passed through to the swap collaborator
    """
    label: str
    flash_token: Token
    flash_amount: int
    swap_out_token: Token
    required_out: int
    estimated_in: int
    update_position: Callable[[SwapResult, int], None]
    settle: Optional[Callable[[Dict[str, int]], None]] = None
    payload: bytes = b""


class FlashLoanSwapOrchestrator:
    """Runs FlashSwapPlans for a single vault identity.

    Attributes:
        identity: Address that receives the flash loan and performs the swap
        flash_provider: Flash-liquidity collaborator
        swap_strategy: Exact-input or exact-output swap variant
        tracked_tokens: Tokens whose balance deltas are reported as leftovers
        stage: Last stage reached (kept after failures for diagnosis)
    """

    def __init__(
        self,
        identity: str,
        flash_provider: FlashLiquidityProvider,
        swap_strategy: SwapStrategy,
        tracked_tokens: Sequence[Token],
    ):
        self.identity = identity
        self.flash_provider = flash_provider
        self.swap_strategy = swap_strategy
        self.tracked_tokens = list(tracked_tokens)
        self.stage: Optional[FlashStage] = None
        self._active_plan: Optional[FlashSwapPlan] = None
        self._baseline: Dict[str, int] = {}
        self._swap_result: Optional[SwapResult] = None
        self._flash_fee = 0

    @property
    def in_progress(self) -> bool:
        return self._active_plan is not None

    def execute(self, plan: FlashSwapPlan) -> FlashSwapOutcome:
        """Run plan to completion.

        Raises:
            ReentrancyError: If another plan is already running
            FlashRepaymentShortfallError: If the vault cannot repay amount + fee
            SwapAccountingMismatchError: If the swap report disagrees with balances
        """
        if self._active_plan is not None:
            raise ReentrancyError(f"{plan.label}: flash sequence already in progress")
        if plan.flash_amount <= 0 or plan.required_out <= 0:
            raise ZeroAmountError(f"{plan.label}: flash and swap amounts must be positive")

        self._advance(FlashStage.INITIATED, plan)
        self._baseline = {t.address: t.balance_of(self.identity) for t in self._tokens(plan)}
        self._swap_result = None
        self._flash_fee = 0
        self._active_plan = plan
        try:
            self.flash_provider.flash_loan(
                plan.flash_token, plan.flash_amount, self.identity, self._on_flash_loan
            )
        finally:
            self._active_plan = None

        if self._swap_result is None:
            raise UnexpectedFlashCallbackError(f"{plan.label}: flash provider never invoked the callback")
        self._advance(FlashStage.FLASH_REPAID, plan)

        leftovers = {}
        for token in self._tokens(plan):
            delta = token.balance_of(self.identity) - self._baseline[token.address]
            if delta > 0:
                leftovers[token.address] = delta
        if plan.settle is not None:
            plan.settle(leftovers)
        self._advance(FlashStage.SETTLED, plan)

        return FlashSwapOutcome(
            request=FlashLoanRequest(asset=plan.flash_token.address, amount=plan.flash_amount),
            flash_fee=self._flash_fee,
            swap=self._swap_result,
            leftovers=leftovers,
        )

    def _on_flash_loan(self, asset: Token, amount: int, fee: int) -> None:
        plan = self._active_plan
        if plan is None:
            raise UnexpectedFlashCallbackError("flash callback outside an active sequence")
        if asset.address != plan.flash_token.address or amount != plan.flash_amount:
            raise UnexpectedFlashCallbackError(
                f"{plan.label}: callback for {amount} {asset.symbol} does not match the request"
            )

        received = asset.balance_of(self.identity) - self._baseline[asset.address]
        if received != amount:
            raise BalanceDeltaMismatchError("flash loan received", amount, received)
        self._advance(FlashStage.FLASH_BORROWED, plan)

        if fee >= amount:
            raise ArithmeticUnderflowError(f"{plan.label}: flash fee {fee} consumes the whole loan")
        instruction = self.swap_strategy.build_instruction(
            plan.flash_token,
            plan.swap_out_token,
            plan.required_out,
            amount - fee,
            plan.estimated_in,
            plan.payload,
        )
        swap_result = self.swap_strategy.swap(
            plan.flash_token, plan.swap_out_token, instruction, self.identity
        )
        self._advance(FlashStage.SWAPPED, plan)

        plan.update_position(swap_result, fee)
        self._advance(FlashStage.POSITION_UPDATED, plan)

        owed = amount + fee
        # balances held before the sequence started are never used to repay
        held = asset.balance_of(self.identity) - self._baseline[asset.address]
        if held < owed:
            logger.warning(f"{plan.label}: flash repayment short, owes {owed}, holds {held}")
            raise FlashRepaymentShortfallError(owed, held)
        asset.approve(self.identity, self.flash_provider.address, owed)

        self._swap_result = swap_result
        self._flash_fee = fee

    def _tokens(self, plan: FlashSwapPlan) -> list:
        tokens = list(self.tracked_tokens)
        for token in (plan.flash_token, plan.swap_out_token):
            if all(t.address != token.address for t in tokens):
                tokens.append(token)
        return tokens

    def _advance(self, stage: FlashStage, plan: FlashSwapPlan) -> None:
        self.stage = stage
        logger.debug(f"{plan.label}: {stage.value}")
