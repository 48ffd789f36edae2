"""Swap strategies: exact-input and exact-output variants over a swap collaborator.

The vault picks one variant at construction time. Each variant builds the
instruction for a "buy at least required_out of token_out" leg and then
verifies the collaborator against balance deltas measured on the vault's own
identity:

* the fixed side moved by exactly the instructed amount;
* the reported amount equals the measured delta of the side it describes
  (amount out for exact-input, amount in for exact-output).

A collaborator that reports the other side's amount is rejected.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union

from dloop.core.errors import (
    BalanceDeltaMismatchError,
    SlippageExceededError,
    SwapAccountingMismatchError,
)
from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, Rounding, mul_div
from dloop.core.types import SwapInstruction, SwapResult, SwapSide
from dloop.execution.interfaces import SwapCollaborator, Token

logger = logging.getLogger(__name__)


class SwapMode(str, Enum):
    """Swap strategy variant, fixed per vault."""
    EXACT_INPUT = "exact_input"
    EXACT_OUTPUT = "exact_output"


class _BalanceCheckedSwap:
    side: SwapSide

    def __init__(self, collaborator: SwapCollaborator, slippage_buffer_bps: int = 50):
        self.collaborator = collaborator
        self.slippage_buffer_bps = slippage_buffer_bps

    def swap(
        self,
        token_in: Token,
        token_out: Token,
        instruction: SwapInstruction,
        identity: str,
    ) -> SwapResult:
        """Run instruction for identity and verify it against balance deltas."""
        in_before = token_in.balance_of(identity)
        out_before = token_out.balance_of(identity)

        token_in.approve(identity, self.collaborator.address, self._max_spend(instruction))
        reported = self._call(token_in, token_out, instruction, identity)
        # no standing allowance survives the swap
        token_in.approve(identity, self.collaborator.address, 0)

        spent = in_before - token_in.balance_of(identity)
        received = token_out.balance_of(identity) - out_before
        if spent < 0:
            raise BalanceDeltaMismatchError(f"{token_in.symbol} balance grew during swap", 0, spent)
        if received < 0:
            raise BalanceDeltaMismatchError(f"{token_out.symbol} balance shrank during swap", 0, received)

        self._verify(instruction, reported, spent, received)
        result = SwapResult(
            exact_side=self.side,
            amount_in=spent,
            amount_out=received,
            reported_amount=reported,
        )
        logger.debug(
            f"Swap {self.side.value}: {spent} {token_in.symbol} -> {received} {token_out.symbol}"
        )
        return result

    def quote_input(self, token_in: Token, token_out: Token, amount_out: int) -> int:
        """Input the collaborator charges for exactly amount_out."""
        return self.collaborator.quote_exact_output(token_in, token_out, amount_out)

    def _buffered(self, amount: int) -> int:
        return mul_div(
            amount,
            ONE_HUNDRED_PERCENT_BPS + self.slippage_buffer_bps,
            ONE_HUNDRED_PERCENT_BPS,
            Rounding.UP,
        )

    def _max_spend(self, instruction: SwapInstruction) -> int:
        if self.side == SwapSide.EXACT_INPUT:
            return instruction.specified_amount
        return instruction.limit_amount

    def _call(self, token_in, token_out, instruction, identity) -> int:
        raise NotImplementedError

    def _verify(self, instruction: SwapInstruction, reported: int, spent: int, received: int) -> None:
        raise NotImplementedError


class ExactInputSwap(_BalanceCheckedSwap):
    """Spend a fixed input, require at least a minimum output.

    The input is the estimate plus slippage_buffer_bps, so the output usually
    exceeds the required amount.
    """
    side = SwapSide.EXACT_INPUT

    def build_instruction(
        self,
        token_in: Token,
        token_out: Token,
        required_out: int,
        budget_in: int,
        estimated_in: int,
        payload: bytes = b"",
    ) -> SwapInstruction:
        """Input is the estimate plus buffer, capped by budget_in."""
        return SwapInstruction(
            token_in=token_in.address,
            token_out=token_out.address,
            specified_amount=self.expected_spend(estimated_in, budget_in),
            exact_side=self.side,
            limit_amount=required_out,
            routing_payload=payload,
        )

    def input_budget(self, quoted_in: int) -> int:
        """Flash funding to reserve for a leg quoted at quoted_in.

        The whole budget is spent, so no buffer is reserved on top of the quote.
        """
        return quoted_in

    def expected_spend(self, estimated_in: int, budget_in: int) -> int:
        return min(self._buffered(estimated_in), budget_in)

    def _call(self, token_in, token_out, instruction, identity) -> int:
        return self.collaborator.swap_exact_input(
            token_in,
            token_out,
            instruction.specified_amount,
            instruction.limit_amount,
            instruction.routing_payload,
            identity,
        )

    def _verify(self, instruction: SwapInstruction, reported: int, spent: int, received: int) -> None:
        if spent != instruction.specified_amount:
            raise SwapAccountingMismatchError("exact-input amount spent", instruction.specified_amount, spent)
        if reported != received:
            raise SwapAccountingMismatchError("exact-input reported amount out", reported, received)
        if received < instruction.limit_amount:
            raise SlippageExceededError("swap output", received, instruction.limit_amount)


class ExactOutputSwap(_BalanceCheckedSwap):
    """Buy a fixed output, spending at most a maximum input."""
    side = SwapSide.EXACT_OUTPUT

    def build_instruction(
        self,
        token_in: Token,
        token_out: Token,
        required_out: int,
        budget_in: int,
        estimated_in: int,
        payload: bytes = b"",
    ) -> SwapInstruction:
        return SwapInstruction(
            token_in=token_in.address,
            token_out=token_out.address,
            specified_amount=required_out,
            exact_side=self.side,
            limit_amount=budget_in,
            routing_payload=payload,
        )

    def input_budget(self, quoted_in: int) -> int:
        """Flash funding to reserve for a leg quoted at quoted_in: the quote plus buffer."""
        return self._buffered(quoted_in)

    def expected_spend(self, estimated_in: int, budget_in: int) -> int:
        return estimated_in

    def _call(self, token_in, token_out, instruction, identity) -> int:
        return self.collaborator.swap_exact_output(
            token_in,
            token_out,
            instruction.specified_amount,
            instruction.limit_amount,
            instruction.routing_payload,
            identity,
        )

    def _verify(self, instruction: SwapInstruction, reported: int, spent: int, received: int) -> None:
        if received != instruction.specified_amount:
            raise SwapAccountingMismatchError("exact-output amount received", instruction.specified_amount, received)
        if reported != spent:
            raise SwapAccountingMismatchError("exact-output reported amount in", reported, spent)
        if spent > instruction.limit_amount:
            raise SlippageExceededError("swap input", spent, instruction.limit_amount)


SwapStrategy = Union[ExactInputSwap, ExactOutputSwap]


@dataclass
class SwapStrategyConfig:
    """Configuration for building a swap strategy.

    Attributes:
        mode: Which variant to use (default: exact-output)
        slippage_buffer_bps: Input allowance over the quoted amount (default: 50)
    """
    mode: SwapMode = SwapMode.EXACT_OUTPUT
    slippage_buffer_bps: int = 50


def build_swap_strategy(collaborator: SwapCollaborator, config: SwapStrategyConfig) -> SwapStrategy:
    if config.mode == SwapMode.EXACT_INPUT:
        return ExactInputSwap(collaborator, config.slippage_buffer_bps)
    return ExactOutputSwap(collaborator, config.slippage_buffer_bps)
