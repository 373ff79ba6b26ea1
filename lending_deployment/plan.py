from typing import List

from lending_deployment.constants import DeploymentStage as Stage
from lending_deployment.steps import (
    Assign,
    AttachProxy,
    Configure,
    Deploy,
    DeployProxy,
    Handoff,
    InitReserves,
    LendOwnership,
    RunSmokeTest,
)
from lending_deployment.wiring import CallSpec, RoleAssignment, RoleKind

PROVIDER = "LendingPoolAddressesProvider"


def market_plan() -> List:
    """The fixed, dependency ordered deployment of a lending market and its reward chain."""
    return [
        # registries and addresses provider
        Deploy(Stage.REGISTRIES_DEPLOYED, "LendingPoolAddressesProviderRegistry"),
        Deploy(Stage.REGISTRIES_DEPLOYED, PROVIDER),
        Configure(
            Stage.REGISTRIES_DEPLOYED,
            CallSpec(
                "LendingPoolAddressesProviderRegistry",
                "registerAddressesProvider",
                (f"${PROVIDER}", "$PROVIDER_ID"),
            ),
        ),
        Assign(Stage.REGISTRIES_DEPLOYED, RoleAssignment(PROVIDER, RoleKind.POOL_ADMIN, "$deployer")),
        Assign(
            Stage.REGISTRIES_DEPLOYED,
            RoleAssignment(PROVIDER, RoleKind.EMERGENCY_ADMIN, "$deployer"),
        ),
        Assign(
            Stage.REGISTRIES_DEPLOYED,
            RoleAssignment(PROVIDER, RoleKind.LIQUIDATION_FEE_RECIPIENT, "$treasury"),
        ),
        # logic libraries and the lending pool implementation linked against them
        Deploy(Stage.CORE_LIBRARIES_LINKED, "ReserveLogic"),
        Deploy(Stage.CORE_LIBRARIES_LINKED, "GenericLogic"),
        Deploy(Stage.CORE_LIBRARIES_LINKED, "ValidationLogic", libraries=("GenericLogic",)),
        Deploy(
            Stage.CORE_LIBRARIES_LINKED,
            "LendingPool",
            libraries=("ValidationLogic", "ReserveLogic"),
            implementation=True,
        ),
        # proxies created by the addresses provider
        Configure(
            Stage.CORE_PROXY_DEPLOYED,
            CallSpec("LendingPool_Implementation", "initialize", (f"${PROVIDER}",)),
        ),
        AttachProxy(
            Stage.CORE_PROXY_DEPLOYED, "LendingPool", PROVIDER, "setLendingPoolImpl", "getLendingPool"
        ),
        Deploy(Stage.CORE_PROXY_DEPLOYED, "LendingPoolConfigurator", implementation=True),
        AttachProxy(
            Stage.CORE_PROXY_DEPLOYED,
            "LendingPoolConfigurator",
            PROVIDER,
            "setLendingPoolConfiguratorImpl",
            "getLendingPoolConfigurator",
        ),
        # deployment helpers
        Deploy(Stage.HELPERS_DEPLOYED, "StableAndVariableTokensHelper"),
        Deploy(Stage.HELPERS_DEPLOYED, "ATokensAndRatesHelper"),
        # tokenization implementations
        Deploy(Stage.TOKENIZATION_IMPLS_DEPLOYED, "AaveAToken"),
        Deploy(Stage.TOKENIZATION_IMPLS_DEPLOYED, "StableDebtToken"),
        Deploy(Stage.TOKENIZATION_IMPLS_DEPLOYED, "VariableDebtToken"),
        # oracles
        Deploy(Stage.ORACLES_WIRED_AND_OWNED, "AaveOracle"),
        Assign(
            Stage.ORACLES_WIRED_AND_OWNED,
            RoleAssignment(PROVIDER, RoleKind.PRICE_ORACLE, "$AaveOracle"),
        ),
        Deploy(Stage.ORACLES_WIRED_AND_OWNED, "LendingRateOracle"),
        Assign(
            Stage.ORACLES_WIRED_AND_OWNED,
            RoleAssignment(PROVIDER, RoleKind.LENDING_RATE_ORACLE, "$LendingRateOracle"),
        ),
        LendOwnership(
            Stage.ORACLES_WIRED_AND_OWNED,
            target="LendingRateOracle",
            borrower="$StableAndVariableTokensHelper",
            calls=(
                CallSpec(
                    "StableAndVariableTokensHelper",
                    "setOracleBorrowRates",
                    ("$BORROW_RATE_ASSETS", "$BORROW_RATES", "$LendingRateOracle"),
                ),
            ),
            hand_back=CallSpec(
                "StableAndVariableTokensHelper",
                "setOracleOwnership",
                ("$LendingRateOracle", "$deployer"),
            ),
        ),
        # staking and reward distribution chain
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MockStakingToken"),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "AMockToken"),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MockChainlinkAggregatorFactory"),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MockChainlinkAggregator"),
        Configure(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            CallSpec("MockChainlinkAggregator", "setLatestAnswer", ("$AGGREGATOR_LATEST_ANSWER",)),
        ),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MockLpContract"),
        Configure(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, CallSpec("MockLpContract", "mint")),
        DeployProxy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "PriceProvider"),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MFDstats"),
        DeployProxy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "LPFeeDistribution"),
        DeployProxy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MultiFeeDistribution"),
        DeployProxy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MiddleFeeDistribution"),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "RewardEligibleDataProvider"),
        DeployProxy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "ChefIncentivesController"),
        Assign(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            RoleAssignment(
                "RewardEligibleDataProvider",
                RoleKind.CHEF_INCENTIVES_CONTROLLER,
                "$ChefIncentivesController",
            ),
        ),
        Deploy(Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED, "MerkleDistributor"),
        Assign(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            RoleAssignment(
                "LPFeeDistribution",
                RoleKind.MINTER,
                ["$MiddleFeeDistribution", "$ChefIncentivesController"],
            ),
        ),
        Assign(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            RoleAssignment(
                "MultiFeeDistribution",
                RoleKind.MINTER,
                ["$MiddleFeeDistribution", "$ChefIncentivesController"],
            ),
        ),
        Assign(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            RoleAssignment(
                "MiddleFeeDistribution",
                RoleKind.MINTER,
                ["$ChefIncentivesController", "$MerkleDistributor"],
            ),
        ),
        # the configurator registers new aTokens as rewards on the middle distribution
        Handoff(
            Stage.REWARD_CHAIN_DEPLOYED_AND_WIRED,
            RoleAssignment("MiddleFeeDistribution", RoleKind.OWNER, "$LendingPoolConfigurator"),
        ),
        # reserves
        Deploy(Stage.RESERVE_BATCH_INITIALIZED, "DefaultReserveInterestRateStrategy"),
        Deploy(Stage.RESERVE_BATCH_INITIALIZED, "MockFlashLoan"),
        Configure(
            Stage.RESERVE_BATCH_INITIALIZED,
            CallSpec(
                "AaveOracle",
                "setAssetSources",
                (["$AMockToken"], ["$MockChainlinkAggregator"]),
            ),
        ),
        InitReserves(Stage.RESERVE_BATCH_INITIALIZED, "LendingPoolConfigurator"),
        # protocol admin takes over everything the deployer administered
        Deploy(Stage.OWNERSHIP_FINALIZED, "MockProtocolAdmin"),
        Handoff(
            Stage.OWNERSHIP_FINALIZED,
            RoleAssignment("AaveOracle", RoleKind.OWNER, "$MockProtocolAdmin"),
        ),
        Handoff(
            Stage.OWNERSHIP_FINALIZED,
            RoleAssignment("StableAndVariableTokensHelper", RoleKind.OWNER, "$MockProtocolAdmin"),
        ),
        Handoff(
            Stage.OWNERSHIP_FINALIZED,
            RoleAssignment(PROVIDER, RoleKind.POOL_ADMIN, "$MockProtocolAdmin"),
        ),
        RunSmokeTest(
            Stage.SMOKE_TESTED, pool="LendingPool", asset="AMockToken", flash_loan="MockFlashLoan"
        ),
    ]
