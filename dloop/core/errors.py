"""Error hierarchy for the leverage vault engine.

Every failure surfaces synchronously as a distinct subclass of VaultError so
that keepers and operators can decide whether to retry with adjusted
parameters. Nothing in the engine retries internally.
"""


class VaultError(Exception):
    """Base class for every error raised by the engine."""


# Input validation


class ZeroAmountError(VaultError):
    """An amount that must be positive was zero."""


class ZeroAddressError(VaultError):
    """A receiver, owner or treasury identity was the zero address."""


class InvalidAmountError(VaultError):
    """An amount was not an integer inside the uint256 range."""


class SlippageExceededError(VaultError):
    """A result crossed the caller-specified minimum or maximum."""

    def __init__(self, what: str, actual: int, bound: int):
        self.what = what
        self.actual = actual
        self.bound = bound
        super().__init__(f"{what}: got {actual}, bound {bound}")


class InvalidBoundsError(VaultError):
    """Leverage bounds are inconsistent (target must lie strictly between them)."""


class InvalidConfigurationError(VaultError):
    """An admin setter received a value outside its allowed range."""


class TreasuryFeeTooHighError(InvalidConfigurationError):
    """Treasury fee exceeds the configured maximum."""


class WithdrawalFeeTooHighError(InvalidConfigurationError):
    """Withdrawal fee exceeds the hard cap."""


class CannotRescueRestrictedTokenError(VaultError):
    """The collateral, debt and share tokens can never be rescued."""


# Allowances and balances


class InsufficientAllowanceError(VaultError):
    """A transfer_from or share spend exceeded the approved allowance."""


class InsufficientBalanceError(VaultError):
    """A transfer or burn exceeded the holder's balance."""


# Imbalance


class ExceededMaxDepositError(VaultError):
    """Deposit above max_deposit (zero while imbalanced or paused)."""


class ExceededMaxMintError(VaultError):
    """Mint above max_mint (zero while imbalanced or paused)."""


class ExceededMaxWithdrawError(VaultError):
    """Withdraw above max_withdraw (zero while imbalanced)."""


class ExceededMaxRedeemError(VaultError):
    """Redeem above max_redeem (zero while imbalanced)."""


# Leverage


class CollateralLessThanDebtError(VaultError):
    """Debt value exceeds collateral value, leverage is undefined."""

    def __init__(self, collateral_base: int, debt_base: int):
        self.collateral_base = collateral_base
        self.debt_base = debt_base
        super().__init__(
            f"collateral {collateral_base} is less than debt {debt_base}"
        )


class LeverageAboveTargetError(VaultError):
    """Increase requested while leverage is already at or above target."""


class LeverageBelowTargetError(VaultError):
    """Decrease requested while leverage is already at or below target."""


class LeverageDivergedError(VaultError):
    """An operation moved leverage further away from target."""

    def __init__(self, operation: str, before_bps: int, after_bps: int, target_bps: int):
        self.operation = operation
        self.before_bps = before_bps
        self.after_bps = after_bps
        self.target_bps = target_bps
        super().__init__(
            f"{operation} moved leverage away from target {target_bps}: "
            f"{before_bps} -> {after_bps}"
        )


class NoPositionError(VaultError):
    """A rebalance was requested on a vault without collateral."""


# Accounting


class BalanceDeltaMismatchError(VaultError):
    """A collaborator moved a different amount than instructed."""

    def __init__(self, what: str, expected: int, measured: int):
        self.what = what
        self.expected = expected
        self.measured = measured
        super().__init__(f"{what}: expected {expected}, measured {measured}")


class SwapAccountingMismatchError(BalanceDeltaMismatchError):
    """The swap collaborator's report disagrees with the measured delta of the same side."""


# Flash liquidity


class FlashLiquidityUnavailableError(VaultError):
    """The flash provider cannot lend the requested amount."""


class FlashRepaymentShortfallError(VaultError):
    """The vault holds less than amount plus fee when the flash loan is due."""

    def __init__(self, owed: int, held: int):
        self.owed = owed
        self.held = held
        super().__init__(f"flash loan owes {owed} but only {held} is held")


class UnexpectedFlashCallbackError(VaultError):
    """A flash callback arrived outside an active flash sequence."""


# External collaborators


class OracleUnavailableError(VaultError):
    """The oracle could not supply a usable price."""


class LendingVenueError(VaultError):
    """The lending venue rejected a supply, withdraw, borrow or repay."""


# Rewards


class ExchangeAmountTooLowError(VaultError):
    """Shares offered for a reward claim are below the exchange threshold."""


class RestrictedRewardTokenError(VaultError):
    """Designated collateral, debt and share tokens cannot be claimed as rewards."""


# Arithmetic


class ArithmeticOverflowError(VaultError):
    """A value left the uint256 range."""


class ArithmeticUnderflowError(VaultError):
    """A subtraction would go below zero."""


class DivisionByZeroError(VaultError):
    """A division had a zero denominator."""


# Guards


class ReentrancyError(VaultError):
    """A state-changing entry point was entered while another was active."""


class VaultPausedError(VaultError):
    """The vault is paused."""
