"""Unit tests for PositionLedger."""

import pytest
from dloop.adapters.token import Token
from dloop.core.errors import OracleUnavailableError
from dloop.simulation.environment import build_environment


def test_empty_position_needs_no_oracle():
    """Test that an empty vault reports zero without reading prices."""
    env = build_environment()
    env.oracle.set_unavailable(env.collateral)
    env.oracle.set_unavailable(env.debt)

    value = env.vault.ledger.get_position_value()

    assert value.collateral_base == 0 and value.debt_base == 0, "Should be empty"
    assert env.vault.current_leverage_bps() == 0, "Empty vault has zero leverage"


def test_position_value_after_deposit():
    """Test that a 3x deposit shows up as collateral and debt at oracle prices."""
    env = build_environment()
    amount = env.fund("alice", 100)
    env.vault.deposit("alice", amount, "alice")

    amounts = env.vault.ledger.get_position_amounts()
    value = env.vault.get_position_value()

    assert amounts.collateral_amount == env.collateral.unit(300), "Should supply 3x the deposit"
    assert amounts.debt_amount == env.debt.unit(200), "Should borrow 2x the deposit"
    assert value.collateral_base == 300 * 10**8
    assert value.debt_base == 200 * 10**8


def test_unavailable_oracle_is_surfaced():
    """Test that a missing price fails loudly once there is a position."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 10), "alice")
    env.oracle.set_unavailable(env.debt)

    with pytest.raises(OracleUnavailableError):
        env.vault.get_position_value()


def test_foreign_reserve_donation_is_ignored():
    """Test that another asset supplied on behalf of the vault never reaches the accounting."""
    env = build_environment()
    env.vault.deposit("alice", env.fund("alice", 100), "alice")

    value_before = env.vault.get_position_value()
    assets_before = env.vault.total_assets()
    leverage_before = env.vault.current_leverage_bps()

    foreign = Token("USDT", 6)
    env.oracle.set_price(foreign, 10**8)
    env.venue.list_reserve(foreign)
    foreign.mint("attacker", foreign.unit(1_000_000))
    foreign.approve("attacker", env.venue.address, foreign.unit(1_000_000))
    env.venue.supply(foreign, foreign.unit(1_000_000), env.vault.address, payer="attacker")

    assert env.venue.get_user_account_data(env.vault.address)[0] > value_before.collateral_base, (
        "Venue aggregate should include the donation"
    )
    assert env.vault.get_position_value() == value_before, "Position value should ignore the donation"
    assert env.vault.total_assets() == assets_before, "Total assets should ignore the donation"
    assert env.vault.current_leverage_bps() == leverage_before, "Leverage should ignore the donation"

    shares = env.vault.deposit("bob", env.fund("bob", 50), "bob")
    assert shares == env.collateral.unit(50), "New deposits should still be priced on designated reserves"
