"""Unit tests for deposit, mint, redeem and withdraw on LeverageVault."""

import pytest
from dloop.core.errors import (
    ExceededMaxDepositError,
    ExceededMaxRedeemError,
    FlashRepaymentShortfallError,
    InsufficientAllowanceError,
    InvalidAmountError,
    SlippageExceededError,
    ZeroAddressError,
    ZeroAmountError,
)
from dloop.core.fixed_point import UINT256_MAX
from dloop.core.types import ZERO_ADDRESS, RebalanceDirection, VaultConfig
from dloop.execution.swap_strategies import SwapMode
from dloop.simulation.environment import build_environment


def test_first_deposit_levers_to_target():
    """Test that a 100-token deposit reaches 3x with one share per token."""
    env = build_environment()
    amount = env.fund("alice", 100)

    shares = env.vault.deposit("alice", amount, "alice")

    assert shares == amount, "First deposit should mint one share per unit"
    assert env.vault.balance_of("alice") == env.vault.total_supply() == shares
    assert env.vault.current_leverage_bps() == 30_000, "Should land exactly on 3x"
    assert env.vault.get_position_value().debt_base > 0, "Should carry debt"
    assert env.vault.total_assets() == amount, "Equity should equal the deposit"
    assert env.collateral.balance_of(env.vault.address) == 0, "Nothing should idle in the vault"
    assert env.debt.balance_of(env.vault.address) == 0


def test_second_deposit_is_priced_on_leveraged_collateral():
    """Test that a later deposit mints shares in proportion to the collateral it adds."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    preview = env.vault.preview_deposit(env.collateral.unit(50))

    shares = env.vault.deposit("bob", env.fund("bob", 50), "bob")

    assert shares == preview == env.collateral.unit(50), "Preview should match the minted shares"
    assert env.vault.current_leverage_bps() == 30_000, "Leverage should stay on target"


def test_round_trip_never_returns_more_than_deposited():
    """Test that deposit then full redeem pays back at most the deposit."""
    for router_fee_bps in (0, 30):
        env = build_environment(router_fee_bps=router_fee_bps)
        amount = env.fund("alice", 100)
        shares = env.vault.deposit("alice", amount, "alice")

        paid = env.vault.redeem("alice", shares, "alice", "alice")

        assert 0 < paid <= amount, f"Round trip with fee {router_fee_bps} should not profit"
        assert env.collateral.balance_of("alice") == paid
        assert env.vault.total_supply() == 0, "All shares should be burned"
        assert env.vault.get_position_value().collateral_base == 0, "Position should be closed"


def test_round_trip_without_costs_is_exact():
    """Test that with free swaps and flash loans a round trip returns the deposit."""
    env = build_environment()
    amount = env.fund("alice", 100)
    env.vault.deposit("alice", amount, "alice")

    assert env.vault.redeem("alice", amount, "alice", "alice") == amount


def test_partial_redeem_keeps_leverage():
    """Test that redeeming part of the supply unwinds a proportional slice."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")

    paid = env.vault.redeem("alice", env.collateral.unit(40), "alice", "alice")

    assert paid == env.collateral.unit(40)
    assert env.vault.current_leverage_bps() == 30_000, "Remaining position should stay at 3x"
    amounts = env.vault.ledger.get_position_amounts()
    assert amounts.collateral_amount == env.collateral.unit(180)
    assert amounts.debt_amount == env.debt.unit(120)


def test_withdraw_pays_requested_assets():
    """Test that withdraw burns the previewed shares and pays at least the requested amount."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    target = env.collateral.unit(40)

    burned = env.vault.withdraw("alice", target, "alice", "alice")

    assert burned == env.collateral.unit(40)
    assert env.collateral.balance_of("alice") >= target, "Should pay at least the requested assets"
    assert env.vault.balance_of("alice") == env.collateral.unit(60)


def test_withdrawal_fee_goes_to_fee_receiver():
    """Test that the withdrawal fee is cut from the payout and sent to the fee receiver."""
    env = build_environment(vault_config=VaultConfig(withdrawal_fee_bps=100))
    amount = env.fund("alice", 100)
    env.vault.deposit("alice", amount, "alice")
    assert env.vault.preview_redeem(amount) == env.collateral.unit(99)

    paid = env.vault.redeem("alice", amount, "alice", "alice")

    assert paid == env.collateral.unit(99), "Receiver should get the net amount"
    assert env.collateral.balance_of(env.vault.fee_receiver) == env.collateral.unit(1), "Fee should be 1%"


def test_mint_pulls_previewed_assets():
    """Test that mint produces exactly the requested shares."""
    env = build_environment()
    env.fund("alice", 100)
    env.fund("bob", 100)

    assert env.vault.mint("alice", env.collateral.unit(50), "alice") == env.collateral.unit(50)
    assets = env.vault.mint("bob", env.collateral.unit(30), "bob")

    assert assets == env.collateral.unit(30), "Should price shares at current equity"
    assert env.vault.balance_of("bob") == env.collateral.unit(30)
    assert env.collateral.balance_of("bob") == env.collateral.unit(70)


def test_mint_respects_max_assets():
    """Test that mint refuses to pull more than max_assets."""
    env = build_environment()
    env.fund("alice", 100)
    with pytest.raises(SlippageExceededError):
        env.vault.mint("alice", env.collateral.unit(50), "alice", max_assets=env.collateral.unit(49))


def test_deposit_min_shares_rolls_back():
    """Test that a deposit below min_shares leaves no trace."""
    env = build_environment()
    amount = env.fund("alice", 100)

    with pytest.raises(SlippageExceededError):
        env.vault.deposit("alice", amount, "alice", min_shares=amount + 1)

    assert env.collateral.balance_of("alice") == amount, "Collateral should be returned"
    assert env.vault.total_supply() == 0
    assert env.flash_lender.loans_served == 0, "Lender bookkeeping should be restored"


def test_deposit_requires_allowance():
    """Test that a deposit without approval is rejected."""
    env = build_environment()
    amount = env.fund("carol", 10, approve=False)
    with pytest.raises(InsufficientAllowanceError):
        env.vault.deposit("carol", amount, "carol")


def test_deposit_argument_validation():
    """Test zero, non-integer and zero-address arguments."""
    env = build_environment()
    amount = env.fund("alice", 10)
    with pytest.raises(ZeroAmountError):
        env.vault.deposit("alice", 0, "alice")
    with pytest.raises(InvalidAmountError):
        env.vault.deposit("alice", 1.5, "alice")
    with pytest.raises(ZeroAddressError):
        env.vault.deposit("alice", amount, ZERO_ADDRESS)


def test_redeem_on_behalf_needs_share_allowance():
    """Test that a third party can only redeem with the owner's share allowance."""
    env = build_environment()
    shares = env.vault.deposit("alice", env.fund("alice", 100), "alice")

    with pytest.raises(InsufficientAllowanceError):
        env.vault.redeem("bob", shares, "bob", "alice")

    env.vault.share_token.approve("alice", "bob", shares)
    paid = env.vault.redeem("bob", shares, "bob", "alice")
    assert env.collateral.balance_of("bob") == paid > 0, "Receiver chosen by the spender should be paid"
    assert env.vault.share_token.allowance("alice", "bob") == 0, "Allowance should be spent"


def test_imbalanced_vault_has_zero_capacity():
    """Test that deposits and redemptions are disabled outside the bounds."""
    env = build_environment()
    shares = env.vault.deposit("alice", env.fund("alice", 100), "alice")
    assert env.vault.max_deposit() == UINT256_MAX

    env.set_collateral_price(85 * 10**6)

    assert env.vault.is_too_imbalanced(), "4.6x should be outside [2x, 4x]"
    assert env.vault.max_deposit() == 0
    assert env.vault.max_mint() == 0
    assert env.vault.max_redeem("alice") == 0
    assert env.vault.max_withdraw("alice") == 0
    with pytest.raises(ExceededMaxDepositError):
        env.vault.deposit("bob", env.fund("bob", 10), "bob")
    with pytest.raises(ExceededMaxRedeemError):
        env.vault.redeem("alice", shares, "alice", "alice")


def test_venue_rounding_on_borrow_is_unrepayable():
    """Test that losing a unit on borrow makes the flash loan unrepayable and reverts the deposit."""
    env = build_environment()
    env.venue.transfer_shortfall = 1
    amount = env.fund("alice", 100)

    with pytest.raises(FlashRepaymentShortfallError):
        env.vault.deposit("alice", amount, "alice")

    assert env.collateral.balance_of("alice") == amount, "Depositor should keep their collateral"
    assert env.vault.ledger.get_position_amounts().collateral_amount == 0, "Supply should be reverted"
    assert env.vault.total_supply() == 0


def test_exact_input_mode_deposit_and_exit():
    """Test deposits and redemptions through the exact-input strategy."""
    env = build_environment(swap_mode=SwapMode.EXACT_INPUT)
    amount = env.fund("alice", 100)

    shares = env.vault.deposit("alice", amount, "alice")

    assert shares == amount
    assert env.vault.current_leverage_bps() == 30_000, "Quoted input should land on target"
    preview = env.vault.preview_redeem(shares)

    paid = env.vault.redeem("alice", shares, "alice", "alice")

    assert paid == preview == env.collateral.unit(99), "Buffered input is charged to the payout"
    assert env.debt.balance_of("alice") == env.debt.unit(1), "Over-bought debt should be forwarded"
    assert env.vault.total_supply() == 0


def test_withdraw_with_swap_fee_pays_requested_assets():
    """Test that withdraw covers the unwind swap cost when the router charges a fee."""
    env = build_environment(router_fee_bps=30)
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    target = env.collateral.unit(40)
    preview = env.vault.preview_withdraw(target)

    burned = env.vault.withdraw("alice", target, "alice", "alice")

    assert burned == preview
    assert burned > env.collateral.unit(40), "Unwind costs should need more shares than at equity"
    assert env.collateral.balance_of("alice") >= target, "Should pay at least the requested assets"


def test_max_withdraw_is_withdrawable_with_fees():
    """Test that max_withdraw can be withdrawn in full with swap, flash and withdrawal fees."""
    env = build_environment(
        router_fee_bps=30,
        flash_fee_bps=10,
        vault_config=VaultConfig(withdrawal_fee_bps=50),
    )
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    env.vault.deposit("bob", env.fund("bob", 50), "bob")
    limit = env.vault.max_withdraw("alice")

    env.vault.withdraw("alice", limit, "alice", "alice")

    assert env.collateral.balance_of("alice") >= limit
    assert env.vault.balance_of("alice") < 10, "At most rounding dust of shares should remain"
    assert env.vault.balance_of("bob") > 0


def test_preview_redeem_matches_payout_with_fees():
    """Test that preview_redeem is never above what redeem pays when swaps carry fees."""
    env = build_environment(router_fee_bps=30, flash_fee_bps=10)
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    shares = env.collateral.unit(40)
    preview = env.vault.preview_redeem(shares)

    assert preview < env.vault.convert_to_assets(shares), "Unwind costs should lower the preview"
    paid = env.vault.redeem("alice", shares, "alice", "alice")

    assert paid == preview, "Preview should price the unwind exactly"


def test_deposit_after_rebalance_with_swap_fee():
    """Test that a fee-bearing deposit into a freshly rebalanced vault keeps leverage on target."""
    env = build_environment(router_fee_bps=30)
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    assert abs(env.vault.current_leverage_bps() - 30_000) <= 1, "Costs should be priced into the slice"

    env.set_collateral_price(9 * 10**7)
    env.vault.decrease_leverage("keeper", env.vault.quote_rebalance().input_amount)
    before = env.vault.current_leverage_bps()
    assert abs(before - 30_000) <= 1
    preview = env.vault.preview_deposit(env.collateral.unit(10))

    shares = env.vault.deposit("bob", env.fund("bob", 10), "bob")

    assert shares == preview, "Preview should include swap costs"
    assert abs(env.vault.current_leverage_bps() - 30_000) <= max(abs(before - 30_000), 1), "Deviation should not grow"


def test_mixed_decimals_deposit_rebalance_redeem():
    """Test a 6-decimal debt asset against collateral priced at 2000 with a fee-bearing router."""
    env = build_environment(collateral_price=2_000 * 10**8, debt_decimals=6, router_fee_bps=30)

    env.vault.deposit("alice", env.fund("alice", 10), "alice")

    assert abs(env.vault.current_leverage_bps() - 30_000) <= 1
    amounts = env.vault.ledger.get_position_amounts()
    assert env.debt.unit(39_000) < amounts.debt_amount < env.debt.unit(40_000), "Debt is in 6-decimal units"

    env.set_collateral_price(1_800 * 10**8)
    quote = env.vault.quote_rebalance()
    assert quote.direction == RebalanceDirection.DECREASE
    env.vault.decrease_leverage("keeper", quote.input_amount)
    assert abs(env.vault.current_leverage_bps() - 30_000) <= 50

    leverage_before = env.vault.current_leverage_bps()
    shares = env.collateral.unit(4)
    preview = env.vault.preview_redeem(shares)
    paid = env.vault.redeem("alice", shares, "alice", "alice")

    assert paid == preview
    assert abs(env.vault.current_leverage_bps() - leverage_before) <= 1, "Redeem should keep leverage"


def test_off_target_deposit_and_redeem_do_not_widen_deviation():
    """Test that entries and exits in a vault inside bounds but off target never move it further away."""
    env = build_environment(router_fee_bps=30)
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    env.set_collateral_price(11 * 10**7)
    before = env.vault.current_leverage_bps()
    assert 20_000 < before < 29_000, "Price rise should leave the vault under-levered"

    env.vault.deposit("bob", env.fund("bob", 10), "bob")
    after_deposit = env.vault.current_leverage_bps()
    assert abs(after_deposit - 30_000) < abs(before - 30_000), "Deposit at target should converge"

    env.vault.redeem("alice", env.collateral.unit(40), "alice", "alice")
    after_redeem = env.vault.current_leverage_bps()
    assert abs(after_redeem - 30_000) <= abs(after_deposit - 30_000) + 1, "Redeem should keep leverage"
