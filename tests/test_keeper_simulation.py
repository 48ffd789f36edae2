"""Integration tests for the keeper simulation and its health check."""

import asyncio
import json

from dloop.core.types import RebalanceDirection
from dloop.simulation.environment import build_environment
from dloop.simulation.keeper_simulator import KeeperSimulator
from tools.health_check import check_report


def seeded_simulator(**kwargs):
    env = build_environment()
    simulator = KeeperSimulator(env, **kwargs)
    simulator.seed_deposit("alice", 100)
    simulator.seed_deposit("bob", 50)
    return env, simulator


def test_keeper_keeps_vault_within_bounds():
    """Test that a keeper acting on quotes keeps the vault inside its bounds."""
    env, simulator = seeded_simulator(seed=11, volatility_bps=300)

    summary = asyncio.run(simulator.run(60))

    assert summary["steps"] == 60
    assert summary["rejected"] == 0, f"No rebalance should be rejected: {simulator.rejected}"
    assert summary["increase_rebalances"] + summary["decrease_rebalances"] > 0, "Keeper should act"
    assert 20_000 <= summary["min_leverage_bps"] <= summary["max_leverage_bps"] <= 40_000
    assert summary["total_supply"] == env.collateral.unit(150), "Shares only change through deposits"
    assert all(amount >= 0 for amount in summary["keeper_income"].values()), "Keeper should never lose"


def test_large_move_triggers_single_step_rebalance():
    """Test that one step of a 20% move is fully corrected by the keeper."""
    env, simulator = seeded_simulator(seed=3, volatility_bps=0)
    env.set_collateral_price(8 * 10**7)

    record = asyncio.run(simulator.run_step(0))

    assert record["action"] == "decrease", "Over-levered vault should be decreased"
    assert abs(record["leverage_after"] - 30_000) <= 50


def test_payload_provider_is_awaited():
    """Test that routing payloads are fetched per rebalance."""
    requested = []

    async def provider(quote):
        requested.append(quote.direction)
        return b"route"

    env, simulator = seeded_simulator(volatility_bps=0, payload_provider=provider)
    env.set_collateral_price(12 * 10**7)
    asyncio.run(simulator.run_step(0))

    assert requested == [RebalanceDirection.INCREASE]


def test_report_passes_health_check(tmp_path):
    """Test that the written report is accepted by the health check."""
    env, simulator = seeded_simulator(seed=5)
    asyncio.run(simulator.run(20))
    path = tmp_path / "report.json"

    simulator.write_report(str(path))
    report = json.loads(path.read_text())

    assert len(report["history"]) == 20
    assert check_report(report, 20_000, 40_000) == [], "Healthy run should report no problems"


def test_health_check_flags_problems():
    """Test that an out-of-bounds, rejected run is flagged."""
    report = {"summary": {"final_leverage_bps": 45_000, "rejected": 2, "total_supply": 1, "total_assets": 0}}

    problems = check_report(report, 20_000, 40_000)

    assert len(problems) == 3
    assert check_report({}, 20_000, 40_000) == ["report has no summary"]
