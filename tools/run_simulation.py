#!/usr/bin/env python3
"""
Run a keeper simulation against the reference leverage vault.

Seeds a vault with depositors, replays a random-walk collateral price path and
lets a keeper rebalance whenever the vault drifts. Optionally fetches routing
payloads from Odos for each rebalance.
"""
import asyncio
import argparse
import logging
import os
import sys
from typing import Optional

import tqdm

from dloop.adapters.odos_quote_client import OdosQuoteClient
from dloop.core.types import RebalanceDirection, RebalanceQuote, VaultConfig
from dloop.execution.swap_strategies import SwapMode
from dloop.simulation.environment import EnvironmentConfig, build_environment
from dloop.simulation.keeper_simulator import KeeperSimulator


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

def setup_logging(verbose: bool = False, log_file: Optional[str] = "simulation.log") -> logging.Logger:
    """Configure structured logging."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )

    return logging.getLogger(__name__)


# ============================================================================
# MAIN SIMULATION RUNNER
# ============================================================================

async def run_simulation(
    steps: int,
    depositors: int,
    deposit_size: int,
    seed: int,
    volatility_bps: int,
    swap_mode: SwapMode,
    router_fee_bps: int,
    flash_fee_bps: int,
    output_path: str,
    use_odos: bool,
    verbose: bool,
):
    """
    Run keeper simulation.

    Args:
        steps: Number of price steps
        depositors: Number of depositors seeded before the run
        deposit_size: Whole collateral tokens per depositor
        seed: Price path seed
        volatility_bps: Maximum per-step price move
        swap_mode: Vault swap strategy variant
        router_fee_bps: Swap router fee
        flash_fee_bps: Flash lender fee
        output_path: Path to write the JSON report
        use_odos: Fetch routing payloads from Odos for each rebalance
        verbose: Verbose logging
    """
    logger = setup_logging(verbose)

    env = build_environment(
        EnvironmentConfig(
            swap_mode=swap_mode,
            router_fee_bps=router_fee_bps,
            flash_fee_bps=flash_fee_bps,
            vault_config=VaultConfig(slippage_buffer_bps=max(50, 2 * router_fee_bps)),
        )
    )

    payload_provider = None
    if use_odos:
        client = OdosQuoteClient(
            chain_id=int(os.getenv("ODOS_CHAIN_ID", "146")),
            user_address=os.getenv("VAULT_ADDRESS", env.vault.address),
            odos_endpoint=os.getenv("ODOS_ENDPOINT", "https://api.odos.xyz"),
        )

        async def payload_provider(quote: RebalanceQuote) -> bytes:
            # the flash-borrowed leg (estimated_output) is what gets sold
            if quote.direction == RebalanceDirection.INCREASE:
                token_in, token_out = env.debt, env.collateral
            else:
                token_in, token_out = env.collateral, env.debt
            routing = await client.get_routing_payload(
                token_in.address, token_out.address, quote.estimated_output
            )
            return routing.to_bytes()

    simulator = KeeperSimulator(
        env,
        seed=seed,
        volatility_bps=volatility_bps,
        payload_provider=payload_provider,
    )
    for i in range(depositors):
        simulator.seed_deposit(f"depositor-{i}", deposit_size)

    logger.info(
        f"Starting simulation: {steps} steps, {depositors} depositors x {deposit_size}, "
        f"seed={seed}, volatility={volatility_bps}bps, swaps={swap_mode.value}"
    )

    progress = tqdm.tqdm(total=steps, desc="Simulation Progress")
    try:
        summary = await simulator.run(steps, on_step=lambda record: progress.update(1))
    except Exception as e:
        logger.error(f"Simulation failed: {e}", exc_info=True)
        raise
    finally:
        progress.close()

    logger.info("=" * 60)
    logger.info("SIMULATION COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Steps: {summary['steps']}")
    logger.info(f"Increase rebalances: {summary['increase_rebalances']}")
    logger.info(f"Decrease rebalances: {summary['decrease_rebalances']}")
    logger.info(f"Rejected attempts: {summary['rejected']}")
    logger.info(
        f"Leverage range: {summary['min_leverage_bps']} - {summary['max_leverage_bps']} "
        f"(final {summary['final_leverage_bps']}, target {summary['target_bps']})"
    )
    logger.info(f"Keeper income: {summary['keeper_income']}")
    logger.info("=" * 60)

    simulator.write_report(output_path)
    return summary


# ============================================================================
# CLI ENTRY POINT
# ============================================================================

def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run a keeper simulation against the reference dLoop vault"
    )

    parser.add_argument(
        "--steps",
        type=int,
        default=200,
        help="Number of price steps (default: 200)"
    )

    parser.add_argument(
        "--depositors",
        type=int,
        default=3,
        help="Depositors seeded before the run (default: 3)"
    )

    parser.add_argument(
        "--deposit-size",
        type=int,
        default=100,
        help="Whole collateral tokens per depositor (default: 100)"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=int(os.getenv("SIM_SEED", "7")),
        help="Price path seed (default: $SIM_SEED or 7)"
    )

    parser.add_argument(
        "--volatility-bps",
        type=int,
        default=300,
        help="Maximum per-step collateral price move in bps (default: 300)"
    )

    parser.add_argument(
        "--swap-mode",
        choices=[m.value for m in SwapMode],
        default=SwapMode.EXACT_OUTPUT.value,
        help="Vault swap strategy (default: exact_output)"
    )

    parser.add_argument(
        "--router-fee-bps",
        type=int,
        default=0,
        help="Swap router fee in bps (default: 0)"
    )

    parser.add_argument(
        "--flash-fee-bps",
        type=int,
        default=0,
        help="Flash lender fee in bps (default: 0)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default="data/keeper_simulation.json",
        help="Output path for the report (default: data/keeper_simulation.json)"
    )

    parser.add_argument(
        "--odos",
        action="store_true",
        help="Fetch routing payloads from Odos (uses ODOS_ENDPOINT, ODOS_CHAIN_ID)"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args()

    asyncio.run(run_simulation(
        steps=args.steps,
        depositors=args.depositors,
        deposit_size=args.deposit_size,
        seed=args.seed,
        volatility_bps=args.volatility_bps,
        swap_mode=SwapMode(args.swap_mode),
        router_fee_bps=args.router_fee_bps,
        flash_fee_bps=args.flash_fee_bps,
        output_path=args.output,
        use_odos=args.odos,
        verbose=args.verbose,
    ))


if __name__ == "__main__":
    main()
