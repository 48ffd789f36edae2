"""
Core type definitions and Pydantic models for the dLoop leverage vault.

This module defines the shared enums, configuration models and value objects
passed between the ledger, the calculators, the flash orchestrator and the
vault surface. Amounts are integers in native token units and ratios are
integer basis points; no model in this module accepts floats.
"""
from enum import Enum, IntEnum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, UINT256_MAX

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Hard caps on admin-set fees, mirroring the vault's deployment defaults.
MAX_WITHDRAWAL_FEE_BPS = 1_000
MAX_SUBSIDY_BPS_CAP = 1_000


class RebalanceDirection(IntEnum):
    """Direction of a rebalance quote."""
    DECREASE = -1
    BALANCED = 0
    INCREASE = 1


class SwapSide(str, Enum):
    """Which side of a swap is fixed by the instruction."""
    EXACT_INPUT = "exact_input"
    EXACT_OUTPUT = "exact_output"


class FlashStage(str, Enum):
    """Stages of a flash-loan swap sequence, in order."""
    INITIATED = "initiated"
    FLASH_BORROWED = "flash_borrowed"
    SWAPPED = "swapped"
    POSITION_UPDATED = "position_updated"
    FLASH_REPAID = "flash_repaid"
    SETTLED = "settled"


class BoundsConfig(BaseModel):
    """
    Leverage bounds and keeper subsidy configuration.

    Attributes:
        target_bps: Target leverage (30000 = 3x)
        lower_bound_bps: Leverage below which the vault is imbalanced
        upper_bound_bps: Leverage above which the vault is imbalanced
        max_subsidy_bps: Subsidy paid to a rebalancer at either bound
        min_deviation_bps: Distance from target under which no subsidy is paid
    """
    model_config = ConfigDict(frozen=True)

    target_bps: int = Field(strict=True, gt=ONE_HUNDRED_PERCENT_BPS)
    lower_bound_bps: int = Field(strict=True, ge=ONE_HUNDRED_PERCENT_BPS)
    upper_bound_bps: int = Field(strict=True, le=UINT256_MAX)
    max_subsidy_bps: int = Field(strict=True, ge=0, le=MAX_SUBSIDY_BPS_CAP, default=100)
    min_deviation_bps: int = Field(strict=True, ge=0, default=0)

    @model_validator(mode="after")
    def _target_strictly_inside(self) -> "BoundsConfig":
        if not (self.lower_bound_bps < self.target_bps < self.upper_bound_bps):
            raise ValueError(
                f"target {self.target_bps} must lie strictly between "
                f"{self.lower_bound_bps} and {self.upper_bound_bps}"
            )
        return self


class VaultConfig(BaseModel):
    """
    Fee and tolerance configuration of a vault instance.

    Attributes:
        withdrawal_fee_bps: Fee taken from collateral paid out on withdraw/redeem
        treasury_fee_bps: Share of claimed rewards sent to the treasury
        max_treasury_fee_bps: Upper bound enforced on treasury_fee_bps
        exchange_threshold: Minimum shares burned per reward claim
        leverage_tolerance_bps: Integer rounding slack allowed when
            deposit/withdraw moves leverage away from target. Swap and flash
            costs are priced into the deposited slice, so this only absorbs
            the bps floor and unit rounding of the venue amounts
        slippage_buffer_bps: Input allowance over the quoted amount of a swap
    """
    model_config = ConfigDict(frozen=True)

    withdrawal_fee_bps: int = Field(strict=True, ge=0, le=MAX_WITHDRAWAL_FEE_BPS, default=0)
    treasury_fee_bps: int = Field(strict=True, ge=0, le=ONE_HUNDRED_PERCENT_BPS, default=0)
    max_treasury_fee_bps: int = Field(strict=True, ge=0, le=ONE_HUNDRED_PERCENT_BPS, default=3_000)
    exchange_threshold: int = Field(strict=True, ge=0, default=1)
    leverage_tolerance_bps: int = Field(strict=True, ge=0, default=1)
    slippage_buffer_bps: int = Field(strict=True, ge=0, le=ONE_HUNDRED_PERCENT_BPS, default=50)

    @model_validator(mode="after")
    def _treasury_fee_within_max(self) -> "VaultConfig":
        if self.treasury_fee_bps > self.max_treasury_fee_bps:
            raise ValueError(
                f"treasury fee {self.treasury_fee_bps} exceeds max {self.max_treasury_fee_bps}"
            )
        return self


class PositionValue(BaseModel):
    """Vault position at the lending venue, in oracle base-currency units."""
    model_config = ConfigDict(frozen=True)

    collateral_base: int = Field(ge=0)
    debt_base: int = Field(ge=0)

    @property
    def is_empty(self) -> bool:
        return self.collateral_base == 0 and self.debt_base == 0

    @property
    def equity_base(self) -> int:
        return max(self.collateral_base - self.debt_base, 0)


class PositionAmounts(BaseModel):
    """Vault position at the lending venue, in native token units."""
    model_config = ConfigDict(frozen=True)

    collateral_amount: int = Field(ge=0)
    debt_amount: int = Field(ge=0)


class RebalanceQuote(BaseModel):
    """
    Closed-form rebalance quote.

    For INCREASE the input is collateral the vault adds and the output is debt
    it borrows. For DECREASE the input is debt the vault repays and the output
    is collateral it withdraws. Both amounts already include the subsidy.
    """
    model_config = ConfigDict(frozen=True)

    input_amount: int = Field(ge=0)
    estimated_output: int = Field(ge=0)
    direction: RebalanceDirection
    subsidy_bps: int = Field(ge=0, default=0)

    def __str__(self) -> str:
        return (
            f"RebalanceQuote({self.direction.name}, in={self.input_amount}, "
            f"out={self.estimated_output}, subsidy={self.subsidy_bps}bps)"
        )


class SwapInstruction(BaseModel):
    """
    A single swap the orchestrator asks a swap collaborator to perform.

    specified_amount is the fixed side (amount in for EXACT_INPUT, amount out
    for EXACT_OUTPUT). limit_amount bounds the other side (minimum out or
    maximum in).
    """
    model_config = ConfigDict(frozen=True)

    token_in: str
    token_out: str
    specified_amount: int = Field(gt=0)
    exact_side: SwapSide
    limit_amount: int = Field(ge=0)
    routing_payload: bytes = b""

    @field_validator("token_out")
    @classmethod
    def _distinct_tokens(cls, v: str, info) -> str:
        if v == info.data.get("token_in"):
            raise ValueError("token_in and token_out must differ")
        return v


class SwapResult(BaseModel):
    """Measured outcome of a swap, after verification against balance deltas."""
    model_config = ConfigDict(frozen=True)

    exact_side: SwapSide
    amount_in: int = Field(ge=0)
    amount_out: int = Field(ge=0)
    reported_amount: int = Field(ge=0)


class FlashLoanRequest(BaseModel):
    """Flash liquidity to borrow for one atomic sequence."""
    model_config = ConfigDict(frozen=True)

    asset: str
    amount: int = Field(gt=0)


class FlashSwapOutcome(BaseModel):
    """Result of a completed flash-loan swap sequence."""
    request: FlashLoanRequest
    flash_fee: int = Field(ge=0)
    swap: SwapResult
    leftovers: Dict[str, int] = Field(default_factory=dict)
    stage: FlashStage = FlashStage.SETTLED


class RewardClaim(BaseModel):
    """Per-token split of a compound_rewards call."""
    model_config = ConfigDict(frozen=True)

    token: str
    claimed: int = Field(ge=0)
    treasury_fee: int = Field(ge=0)
    to_receiver: int = Field(ge=0)


class RoutingPayload(BaseModel):
    """Aggregator routing data fetched off-line and handed to a swap collaborator."""
    path_id: str
    input_token: str
    output_token: str
    amount_in: int = Field(ge=0)
    amount_out: int = Field(ge=0)
    transaction_data: Optional[str] = None

    def to_bytes(self) -> bytes:
        if not self.transaction_data:
            return self.path_id.encode()
        data = self.transaction_data
        if data.startswith("0x"):
            data = data[2:]
        return bytes.fromhex(data)
