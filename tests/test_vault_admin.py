"""Unit tests for LeverageVault administration, pause and views."""

import pytest
from dloop.adapters.token import Token
from dloop.core.errors import (
    CannotRescueRestrictedTokenError,
    InvalidBoundsError,
    InvalidConfigurationError,
    TreasuryFeeTooHighError,
    VaultPausedError,
    WithdrawalFeeTooHighError,
    ZeroAddressError,
)
from dloop.core.types import ZERO_ADDRESS
from dloop.simulation.environment import build_environment


def test_pause_blocks_entry_points():
    """Test that a paused vault rejects deposits and reports zero capacity."""
    env = build_environment()
    amount = env.fund("alice", 10)
    env.vault.pause()

    assert env.vault.max_deposit() == 0
    with pytest.raises(VaultPausedError):
        env.vault.deposit("alice", amount, "alice")
    with pytest.raises(VaultPausedError):
        env.vault.set_withdrawal_fee_bps(10)

    env.vault.unpause()
    assert env.vault.deposit("alice", amount, "alice") == amount, "Deposits should work after unpause"


def test_unpause_requires_paused_vault():
    """Test that unpausing an active vault is a configuration error."""
    env = build_environment()
    with pytest.raises(InvalidConfigurationError):
        env.vault.unpause()


def test_set_leverage_bounds_validation():
    """Test that bounds must keep the target strictly inside and above 1x."""
    env = build_environment()
    env.vault.set_leverage_bounds(15_000, 25_000, 35_000)
    assert env.vault.bounds.target_bps == 25_000

    with pytest.raises(InvalidBoundsError):
        env.vault.set_leverage_bounds(35_000, 30_000, 40_000)
    with pytest.raises(InvalidBoundsError):
        env.vault.set_leverage_bounds(5_000, 8_000, 40_000)
    assert env.vault.bounds.target_bps == 25_000, "Rejected bounds should not be applied"


def test_fee_setters_enforce_caps():
    """Test withdrawal and treasury fee caps."""
    env = build_environment()
    env.vault.set_withdrawal_fee_bps(50)
    env.vault.set_treasury_fee_bps(2_000)
    assert env.vault.config.withdrawal_fee_bps == 50
    assert env.vault.config.treasury_fee_bps == 2_000

    with pytest.raises(WithdrawalFeeTooHighError):
        env.vault.set_withdrawal_fee_bps(2_000)
    with pytest.raises(TreasuryFeeTooHighError):
        env.vault.set_treasury_fee_bps(5_000)
    with pytest.raises(InvalidConfigurationError):
        env.vault.set_max_subsidy_bps(5_000)
    assert env.vault.config.withdrawal_fee_bps == 50, "Rejected fee should not be applied"


def test_subsidy_setters_change_quotes():
    """Test that max subsidy and min deviation feed the subsidy curve."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    env.set_collateral_price(9 * 10**7)
    assert env.vault.current_subsidy_bps() == 85

    env.vault.set_max_subsidy_bps(200)
    assert env.vault.current_subsidy_bps() == 171

    env.vault.set_min_deviation_bps(9_000)
    assert env.vault.current_subsidy_bps() == 0, "Deviation under the minimum pays nothing"


def test_receiver_setters_reject_zero_address():
    """Test that fee receiver and treasury cannot be the zero address."""
    env = build_environment()
    env.vault.set_fee_receiver("ops")
    assert env.vault.fee_receiver == "ops"
    with pytest.raises(ZeroAddressError):
        env.vault.set_fee_receiver(ZERO_ADDRESS)
    with pytest.raises(ZeroAddressError):
        env.vault.set_treasury("")


def test_rescue_token():
    """Test that stray tokens can be rescued but vault tokens cannot."""
    env = build_environment()
    stray = Token("AIRDROP")
    stray.mint(env.vault.address, stray.unit(3))

    env.vault.rescue_token(stray, "ops", stray.unit(3))
    assert stray.balance_of("ops") == stray.unit(3)

    for token in (env.collateral, env.debt, env.vault.share_token):
        with pytest.raises(CannotRescueRestrictedTokenError):
            env.vault.rescue_token(token, "ops", 1)


def test_keep_leverage_views():
    """Test the repay/borrow amounts that keep current leverage."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")

    assert env.vault.get_repay_amount_that_keeps_current_leverage(env.collateral.unit(30)) == env.debt.unit(20)
    assert env.vault.get_borrow_amount_that_keeps_current_leverage(env.collateral.unit(30)) == env.debt.unit(20)


def test_conversion_views():
    """Test share/asset conversions around a seeded vault."""
    env = build_environment()
    assert env.vault.convert_to_shares(10) == 10, "Empty vault converts 1:1"
    env.vault.deposit("alice", env.fund("alice", 100), "alice")
    env.set_collateral_price(11 * 10**7)

    assets = env.vault.convert_to_assets(env.collateral.unit(100))
    assert assets == env.vault.total_assets(), "All shares should convert to all assets"
    assert env.vault.convert_to_shares(assets) == env.collateral.unit(100)
