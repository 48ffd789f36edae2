"""
KeeperSimulator: replays a collateral price path against a vault and keeper.

Each step moves the collateral price, asks the vault for a rebalance quote
and, when the vault is out of bounds or the subsidy clears the keeper's
threshold, executes exactly the quoted amount. Rejected attempts are recorded
rather than raised, the way an external keeper would log and retry later.
"""
import json
import logging
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dloop.core.errors import VaultError
from dloop.core.fixed_point import ONE_HUNDRED_PERCENT_BPS, mul_div
from dloop.core.types import RebalanceDirection, RebalanceQuote
from dloop.simulation.environment import VaultEnvironment

logger = logging.getLogger(__name__)

PayloadProvider = Callable[[RebalanceQuote], Awaitable[bytes]]


class KeeperSimulator:
    """
    Drives one vault through a seeded random-walk price path.

    Attributes:
        env: VaultEnvironment under simulation
        keeper: Keeper address receiving subsidies
        volatility_bps: Maximum per-step collateral price move
        min_subsidy_bps: Keeper only acts on balanced vaults at or above this subsidy
        payload_provider: Optional async source of routing payloads
    """

    def __init__(
        self,
        env: VaultEnvironment,
        seed: int = 7,
        volatility_bps: int = 300,
        min_subsidy_bps: int = 10,
        keeper: str = "keeper",
        payload_provider: Optional[PayloadProvider] = None,
    ):
        self.env = env
        self.rng = random.Random(seed)
        self.volatility_bps = volatility_bps
        self.min_subsidy_bps = min_subsidy_bps
        self.keeper = keeper
        self.payload_provider = payload_provider

        self.history: List[Dict[str, Any]] = []
        self.rebalances = {"increase": 0, "decrease": 0}
        self.rejected: List[str] = []
        self.keeper_income: Dict[str, int] = {env.collateral.symbol: 0, env.debt.symbol: 0}

    def seed_deposit(self, depositor: str, whole_tokens: int) -> int:
        """Fund depositor and deposit whole_tokens collateral into the vault."""
        amount = self.env.fund(depositor, whole_tokens)
        return self.env.vault.deposit(depositor, amount, depositor)

    def next_price(self) -> int:
        move_bps = self.rng.randint(-self.volatility_bps, self.volatility_bps)
        price = self.env.oracle.get_asset_price(self.env.collateral)
        new_price = mul_div(price, ONE_HUNDRED_PERCENT_BPS + move_bps, ONE_HUNDRED_PERCENT_BPS)
        return max(new_price, 1)

    async def run_step(self, step: int) -> Dict[str, Any]:
        """Advance the price once and let the keeper react.

        Returns:
            Record of the step (price, leverage before/after, action taken)
        """
        vault = self.env.vault
        self.env.set_collateral_price(self.next_price())

        leverage_before = vault.current_leverage_bps()
        quote = vault.quote_rebalance()
        record: Dict[str, Any] = {
            "step": step,
            "collateral_price": self.env.oracle.get_asset_price(self.env.collateral),
            "leverage_before": leverage_before,
            "subsidy_bps": quote.subsidy_bps,
            "action": "hold",
        }

        should_act = quote.direction != RebalanceDirection.BALANCED and (
            vault.is_too_imbalanced() or quote.subsidy_bps >= self.min_subsidy_bps
        )
        if should_act:
            await self._execute(quote, record)

        record["leverage_after"] = vault.current_leverage_bps()
        self.history.append(record)
        return record

    async def _execute(self, quote: RebalanceQuote, record: Dict[str, Any]) -> None:
        vault = self.env.vault
        payload = b""
        if self.payload_provider is not None:
            payload = await self.payload_provider(quote)

        before = self._keeper_balances()
        try:
            if quote.direction == RebalanceDirection.INCREASE:
                vault.increase_leverage(self.keeper, quote.input_amount, payload)
                self.rebalances["increase"] += 1
                record["action"] = "increase"
            else:
                vault.decrease_leverage(self.keeper, quote.input_amount, payload)
                self.rebalances["decrease"] += 1
                record["action"] = "decrease"
        except VaultError as e:
            logger.warning(f"Step {record['step']}: {quote} rejected: {e}")
            self.rejected.append(f"{record['step']}: {type(e).__name__}")
            record["action"] = "rejected"
            return

        after = self._keeper_balances()
        for symbol, amount in after.items():
            self.keeper_income[symbol] += amount - before[symbol]

    def _keeper_balances(self) -> Dict[str, int]:
        return {
            self.env.collateral.symbol: self.env.collateral.balance_of(self.keeper),
            self.env.debt.symbol: self.env.debt.balance_of(self.keeper),
        }

    async def run(self, steps: int, on_step: Optional[Callable[[Dict[str, Any]], None]] = None) -> Dict[str, Any]:
        for step in range(steps):
            record = await self.run_step(step)
            if on_step is not None:
                on_step(record)
        return self.summary()

    def summary(self) -> Dict[str, Any]:
        leverages = [r["leverage_after"] for r in self.history]
        vault = self.env.vault
        return {
            "steps": len(self.history),
            "increase_rebalances": self.rebalances["increase"],
            "decrease_rebalances": self.rebalances["decrease"],
            "rejected": len(self.rejected),
            "keeper_income": dict(self.keeper_income),
            "min_leverage_bps": min(leverages) if leverages else 0,
            "max_leverage_bps": max(leverages) if leverages else 0,
            "final_leverage_bps": vault.current_leverage_bps(),
            "target_bps": vault.bounds.target_bps,
            "total_assets": vault.total_assets(),
            "total_supply": vault.total_supply(),
        }

    def write_report(self, output_path: str) -> None:
        report = {"summary": self.summary(), "history": self.history}
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Report written to: {output_path}")
