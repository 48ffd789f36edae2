"""
Reference environment: a vault wired to in-memory collaborators.

build_environment() creates the collateral and debt tokens, oracle, lending
venue, flash lender, swap router and rewards controller, seeds their
liquidity and returns them with a LeverageVault on top. Used by the keeper
simulation and the test suite.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Type

from dloop.adapters.mock_flash_lender import MockFlashLender
from dloop.adapters.mock_lending_venue import MockLendingVenue
from dloop.adapters.mock_price_oracle import DEFAULT_BASE_CURRENCY_UNIT, MockPriceOracle
from dloop.adapters.mock_rewards_controller import MockRewardsController
from dloop.adapters.oracle_swap_router import OracleSwapRouter
from dloop.adapters.token import Token
from dloop.core.types import BoundsConfig, VaultConfig
from dloop.execution.swap_strategies import SwapMode
from dloop.execution.vault import LeverageVault

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentConfig:
    """Configuration for the reference environment.

    Attributes:
        target_bps: Target leverage (default: 30000, i.e. 3x)
        lower_bound_bps: Lower leverage bound (default: 20000)
        upper_bound_bps: Upper leverage bound (default: 40000)
        max_subsidy_bps: Rebalance subsidy at either bound (default: 100)
        collateral_price: Oracle price of the collateral token (8 decimals)
        debt_price: Oracle price of the debt token (8 decimals)
        collateral_decimals: Decimals of the collateral token
        debt_decimals: Decimals of the debt token
        router_fee_bps: Swap router fee (default: 0)
        flash_fee_bps: Flash lender fee (default: 0)
        swap_mode: Swap strategy variant of the vault
        liquidity: Whole tokens seeded into venue, lender and router
        max_ltv_bps: Venue loan-to-value ceiling
        vault_config: Fees and tolerances of the vault
    """
    target_bps: int = 30_000
    lower_bound_bps: int = 20_000
    upper_bound_bps: int = 40_000
    max_subsidy_bps: int = 100
    collateral_price: int = DEFAULT_BASE_CURRENCY_UNIT
    debt_price: int = DEFAULT_BASE_CURRENCY_UNIT
    collateral_decimals: int = 18
    debt_decimals: int = 18
    router_fee_bps: int = 0
    flash_fee_bps: int = 0
    swap_mode: SwapMode = SwapMode.EXACT_OUTPUT
    liquidity: int = 1_000_000
    max_ltv_bps: int = 9_000
    vault_config: VaultConfig = field(default_factory=VaultConfig)


@dataclass
class VaultEnvironment:
    """Everything build_environment() wires together."""
    collateral: Token
    debt: Token
    oracle: MockPriceOracle
    venue: MockLendingVenue
    flash_lender: MockFlashLender
    router: OracleSwapRouter
    rewards: MockRewardsController
    vault: LeverageVault
    config: EnvironmentConfig

    def fund(self, account: str, whole_tokens: int, approve: bool = True) -> int:
        """Mint collateral to account and (optionally) approve the vault.

        Returns:
            Amount minted in native units
        """
        amount = self.collateral.unit(whole_tokens)
        self.collateral.mint(account, amount)
        if approve:
            self.collateral.approve(account, self.vault.address, self.collateral.balance_of(account))
        return amount

    def set_collateral_price(self, price: int) -> None:
        self.oracle.set_price(self.collateral, price)

    def set_debt_price(self, price: int) -> None:
        self.oracle.set_price(self.debt, price)


def build_environment(
    config: Optional[EnvironmentConfig] = None,
    router_cls: Type[OracleSwapRouter] = OracleSwapRouter,
    **overrides,
) -> VaultEnvironment:
    """Create a vault over fresh in-memory collaborators.

    Args:
        config: EnvironmentConfig (defaults if None)
        router_cls: Swap router class, instantiated with (oracle, fee_bps=...)
        **overrides: Field overrides applied on top of config

    Returns:
        VaultEnvironment with seeded liquidity
    """
    config = config or EnvironmentConfig()
    if overrides:
        config = EnvironmentConfig(**{**config.__dict__, **overrides})

    collateral = Token("WETH", config.collateral_decimals)
    debt = Token("dUSD", config.debt_decimals)

    oracle = MockPriceOracle()
    oracle.set_price(collateral, config.collateral_price)
    oracle.set_price(debt, config.debt_price)

    venue = MockLendingVenue(oracle=oracle, max_ltv_bps=config.max_ltv_bps)
    venue.list_reserve(collateral)
    venue.list_reserve(debt)

    flash_lender = MockFlashLender(fee_bps=config.flash_fee_bps)
    router = router_cls(oracle, fee_bps=config.router_fee_bps)
    rewards = MockRewardsController()

    for token in (collateral, debt):
        seed = token.unit(config.liquidity)
        token.mint(venue.address, seed)
        token.mint(flash_lender.address, seed)
        token.mint(router.address, seed)

    bounds = BoundsConfig(
        target_bps=config.target_bps,
        lower_bound_bps=config.lower_bound_bps,
        upper_bound_bps=config.upper_bound_bps,
        max_subsidy_bps=config.max_subsidy_bps,
    )
    vault = LeverageVault(
        collateral_token=collateral,
        debt_token=debt,
        venue=venue,
        oracle=oracle,
        flash_provider=flash_lender,
        swap_collaborator=router,
        bounds=bounds,
        config=config.vault_config,
        swap_mode=config.swap_mode,
        rewards_source=rewards,
    )
    logger.debug(f"Built environment with {config.liquidity} tokens of liquidity per venue")
    return VaultEnvironment(
        collateral=collateral,
        debt=debt,
        oracle=oracle,
        venue=venue,
        flash_lender=flash_lender,
        router=router,
        rewards=rewards,
        vault=vault,
        config=config,
    )
