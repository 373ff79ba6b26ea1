"""
In-memory stand-in for a development network: accounts that deploy, contract
handles that transact, and just enough contract behaviour (ownership, pool
admin, one-time initializers, proxies, token balances) to run a whole market
deployment without a node.
"""

import inspect
from types import SimpleNamespace
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import pytest
from ape.exceptions import ApeException, ContractLogicError
from eth_utils import to_checksum_address

from lending_deployment.constants import CONSTRUCTOR_PARAMS_DIR, PROXY_CONTRACT
from lending_deployment.context import DeploymentContext
from lending_deployment.orchestrator import Orchestrator
from lending_deployment.params import Deployer, MarketParameters
from lending_deployment.utils import _load_yaml

LOCAL_PARAMS_FILEPATH = CONSTRUCTOR_PARAMS_DIR / "local" / "market.yml"


def revert(reason: str):
    raise ContractLogicError(revert_message=reason)


class Calldata(NamedTuple):
    method: str
    args: Tuple[Any, ...]


#
# Contract behaviour
#


class FakeContract:
    def __init__(self, chain: "FakeChain", address: str, deployer: str, *args):
        self.chain = chain
        self.address = address
        self.deployer = deployer
        self.constructor(*args)

    def constructor(self, *args):
        self.constructor_args = args


class Ownable(FakeContract):
    def __init__(self, chain, address, deployer, *args):
        self._owner = deployer
        super().__init__(chain, address, deployer, *args)

    def owner(self):
        return self._owner

    def _only_owner(self, sender):
        if sender != self._owner:
            revert("Ownable: caller is not the owner")

    def transferOwnership(self, sender, new_owner):
        self._only_owner(sender)
        self._owner = new_owner


class Initializable(Ownable):
    initialized = False

    def _initializer(self, sender):
        if self.initialized:
            revert("Initializable: contract is already initialized")
        self.initialized = True
        self._owner = sender

    def initialize(self, sender, *args):
        self._initializer(sender)
        self.initialize_args = args


class AddressesProviderRegistry(Ownable):
    def constructor(self):
        self.providers = dict()

    def registerAddressesProvider(self, sender, provider, provider_id):
        self._only_owner(sender)
        self.providers[provider] = provider_id


class AddressesProvider(Ownable):
    def constructor(self, market_id):
        self.market_id = market_id
        self.pool_admin = None
        self.emergency_admin = None
        self.liquidation_fee_to = None
        self.price_oracle = None
        self.lending_rate_oracle = None
        self.lending_pool = None
        self.configurator = None

    def _set(self, sender, attribute, value):
        self._only_owner(sender)
        setattr(self, attribute, value)

    def setPoolAdmin(self, sender, admin):
        self._set(sender, "pool_admin", admin)

    def setEmergencyAdmin(self, sender, admin):
        self._set(sender, "emergency_admin", admin)

    def setLiquidationFeeTo(self, sender, recipient):
        self._set(sender, "liquidation_fee_to", recipient)

    def setPriceOracle(self, sender, oracle):
        self._set(sender, "price_oracle", oracle)

    def setLendingRateOracle(self, sender, oracle):
        self._set(sender, "lending_rate_oracle", oracle)

    def setLendingPoolImpl(self, sender, implementation):
        self._only_owner(sender)
        self.lending_pool = self.chain.create_proxy(
            implementation, deployer=self.address, data=Calldata("initialize", (self.address,))
        )

    def setLendingPoolConfiguratorImpl(self, sender, implementation):
        self._only_owner(sender)
        self.configurator = self.chain.create_proxy(
            implementation, deployer=self.address, data=Calldata("initialize", (self.address,))
        )

    def getPoolAdmin(self):
        return self.pool_admin

    def getLendingPool(self):
        return self.lending_pool

    def getLendingPoolConfigurator(self):
        return self.configurator


class LendingPool(Initializable):
    LIBRARIES = ("ValidationLogic", "ReserveLogic")
    deposit_fee = 0

    def constructor(self):
        self.reserves = dict()

    def initialize(self, sender, provider):
        self._initializer(sender)
        self.provider = provider

    def initReserve(self, sender, asset, a_token):
        provider = self.chain.contracts[self.provider]
        if sender != provider.getLendingPoolConfigurator():
            revert("Caller must be lending pool configurator")
        self.reserves[asset] = a_token

    def getReserveData(self, asset):
        return SimpleNamespace(aTokenAddress=self.reserves[asset])

    def deposit(self, sender, asset, amount, on_behalf_of, referral_code):
        if asset not in self.reserves:
            revert("Reserve is not initialized")
        token = self.chain.contracts[asset]
        token.transferFrom(self.address, sender, self.reserves[asset], amount - self.deposit_fee)

    def flashLoan(self, sender, assets, amounts):
        for asset, amount in zip(assets, amounts):
            token = self.chain.contracts[asset]
            token._move(self.reserves[asset], sender, amount)
            token._move(sender, self.reserves[asset], amount)


class LendingPoolConfigurator(Initializable):
    def initialize(self, sender, provider):
        self._initializer(sender)
        self.provider = provider

    def batchInitReserve(self, sender, inputs):
        provider = self.chain.contracts[self.provider]
        if sender != provider.getPoolAdmin():
            revert("Caller not pool admin")
        pool = self.chain.contracts[provider.getLendingPool()]
        for reserve in inputs:
            a_token_impl, underlying_asset, treasury = reserve[0], reserve[5], reserve[6]
            a_token = self.chain.create_proxy(a_token_impl, deployer=self.address)
            pool.initReserve(self.address, underlying_asset, a_token)
            self.chain.contracts[treasury].addReward(self.address, a_token)


class MockToken(Ownable):
    def constructor(self, initial_supply=0):
        self.balances = dict()
        self.allowances = dict()
        self.balances[self.deployer] = initial_supply

    def name(self):
        return "Mock Token"

    def balanceOf(self, account):
        return self.balances.get(account, 0)

    def _move(self, source, destination, amount):
        if self.balanceOf(source) < amount:
            revert("ERC20: transfer amount exceeds balance")
        self.balances[source] -= amount
        self.balances[destination] = self.balanceOf(destination) + amount

    def mint(self, sender, to, amount):
        self.balances[to] = self.balanceOf(to) + amount

    def approve(self, sender, spender, amount):
        self.allowances[(sender, spender)] = amount

    def transferFrom(self, sender, source, destination, amount):
        allowance = self.allowances.get((source, sender), 0)
        if allowance < amount:
            revert("ERC20: insufficient allowance")
        self.allowances[(source, sender)] = allowance - amount
        self._move(source, destination, amount)


class AaveOracle(Ownable):
    def constructor(self, assets, sources, fallback_oracle, base_currency, base_currency_unit):
        self.sources = dict(zip(assets, sources))

    def setAssetSources(self, sender, assets, sources):
        self._only_owner(sender)
        if len(assets) != len(sources):
            revert("INCONSISTENT_PARAMS_LENGTH")
        self.sources.update(zip(assets, sources))


class LendingRateOracle(Ownable):
    def constructor(self):
        self.rates = dict()

    def setMarketBorrowRate(self, sender, asset, rate):
        self._only_owner(sender)
        self.rates[asset] = rate


class StableAndVariableTokensHelper(Ownable):
    def setOracleBorrowRates(self, sender, assets, rates, oracle):
        self._only_owner(sender)
        rate_oracle = self.chain.contracts[oracle]
        # the helper writes to the oracle as its owner
        rate_oracle._only_owner(self.address)
        for asset, rate in zip(assets, rates):
            rate_oracle.setMarketBorrowRate(self.address, asset, rate)

    def setOracleOwnership(self, sender, oracle, admin):
        self._only_owner(sender)
        self.chain.contracts[oracle].transferOwnership(self.address, admin)


class MockChainlinkAggregator(FakeContract):
    latest_answer = 0

    def setLatestAnswer(self, sender, answer):
        self.latest_answer = answer


class MockLpContract(FakeContract):
    minted = False

    def mint(self, sender):
        self.minted = True


class FeeDistribution(Initializable):
    def constructor(self):
        self.minters = list()
        self.rewards = list()

    def setMinters(self, sender, minters):
        self._only_owner(sender)
        self.minters = list(minters)

    def addReward(self, sender, token):
        self._only_owner(sender)
        self.rewards.append(token)


class RewardEligibleDataProvider(Ownable):
    chef_incentives_controller = None

    def setChefIncentivesController(self, sender, controller):
        self._only_owner(sender)
        self.chef_incentives_controller = controller


class MockFlashLoan(FakeContract):
    def constructor(self, provider):
        self.provider = provider

    def flashLoanCall(self, sender, assets, amounts):
        pool = self.chain.contracts[self.chain.contracts[self.provider].getLendingPool()]
        pool.flashLoan(self.address, assets, amounts)


class Library(FakeContract):
    pass


class ValidationLogic(Library):
    LIBRARIES = ("GenericLogic",)


BEHAVIOURS = {
    "LendingPoolAddressesProviderRegistry": AddressesProviderRegistry,
    "LendingPoolAddressesProvider": AddressesProvider,
    "ReserveLogic": Library,
    "GenericLogic": Library,
    "ValidationLogic": ValidationLogic,
    "LendingPool": LendingPool,
    "LendingPoolConfigurator": LendingPoolConfigurator,
    "StableAndVariableTokensHelper": StableAndVariableTokensHelper,
    "ATokensAndRatesHelper": Ownable,
    "AaveOracle": AaveOracle,
    "LendingRateOracle": LendingRateOracle,
    "MockToken": MockToken,
    "MockStakingToken": MockToken,
    "MockChainlinkAggregator": MockChainlinkAggregator,
    "MockLpContract": MockLpContract,
    "PriceProvider": Initializable,
    "MultiFeeDistribution": FeeDistribution,
    "MiddleFeeDistribution": FeeDistribution,
    "ChefIncentivesController": Initializable,
    "RewardEligibleDataProvider": RewardEligibleDataProvider,
    "MockFlashLoan": MockFlashLoan,
    "MockProtocolAdmin": Ownable,
}


#
# Chain, accounts and handles
#


class FakeReceipt:
    def __init__(self, txn_hash: str, block_number: int, failed: bool = False):
        self.txn_hash = txn_hash
        self.block_number = block_number
        self.failed = failed

    def await_confirmations(self):
        return self


class FakeChain:
    def __init__(self):
        self.contracts: Dict[str, FakeContract] = dict()
        self.block_number = 0
        self.calls: List[Tuple[str, str, str]] = list()
        self.deployments: List[str] = list()
        self.forced_reverts = set()

    def _next_address(self) -> str:
        return to_checksum_address(f"0x{len(self.contracts) + 1:040x}")

    def mine(self) -> FakeReceipt:
        self.block_number += 1
        return FakeReceipt(txn_hash=f"0x{self.block_number:064x}", block_number=self.block_number)

    def revert_on(self, name: str) -> None:
        """Makes every transaction calling method ``name`` (or deploying type ``name``) revert."""
        self.forced_reverts.add(name)

    def deploy(self, contract_type: str, args, deployer: str, libraries=None) -> FakeContract:
        if contract_type in self.forced_reverts:
            revert(f"{contract_type} deployment reverted")
        behaviour = BEHAVIOURS.get(contract_type, FakeContract)
        for library in getattr(behaviour, "LIBRARIES", ()):
            address = (libraries or dict()).get(library)
            if address not in self.contracts:
                revert(f"{contract_type} is not linked against {library}")

        if contract_type == PROXY_CONTRACT:
            logic, initial_owner, data = args
            address = self.create_proxy(logic, deployer=deployer, data=data)
            self.deployments.append(contract_type)
            return self.contracts[address]

        address = self._next_address()
        self.contracts[address] = behaviour(self, address, deployer, *args)
        self.deployments.append(contract_type)
        return self.contracts[address]

    def create_proxy(self, implementation: str, deployer: str, data: Optional[Calldata] = None):
        behaviour = type(self.contracts[implementation])
        address = self._next_address()
        proxied = behaviour(self, address, deployer)
        if data:
            if data.method in self.forced_reverts:
                revert(f"{data.method} reverted")
            getattr(proxied, data.method)(deployer, *data.args)
        self.contracts[address] = proxied
        return address


RESERVE_INPUT_TYPE = (
    "(address,address,address,uint8,address,address,address,address,uint256,"
    "string,string,string,string,string,string,string,bytes)[]"
)

# ABI types of the fake contracts' method parameters, by parameter name
INPUT_TYPES = {
    "account": "address",
    "admin": "address",
    "a_token": "address",
    "asset": "address",
    "controller": "address",
    "destination": "address",
    "implementation": "address",
    "new_owner": "address",
    "on_behalf_of": "address",
    "oracle": "address",
    "provider": "address",
    "recipient": "address",
    "source": "address",
    "spender": "address",
    "to": "address",
    "token": "address",
    "amount": "uint256",
    "provider_id": "uint256",
    "rate": "uint256",
    "referral_code": "uint16",
    "answer": "int256",
    "assets": "address[]",
    "minters": "address[]",
    "sources": "address[]",
    "amounts": "uint256[]",
    "rates": "uint256[]",
    "inputs": RESERVE_INPUT_TYPE,
}


def _method_abi(name: str, function) -> SimpleNamespace:
    """Builds the ABI of a transacting behaviour method (the first parameter is the sender)."""
    parameters = list(inspect.signature(function).parameters.values())[1:]
    inputs = [
        SimpleNamespace(
            name=parameter.name,
            type=INPUT_TYPES[parameter.name],
            canonical_type=INPUT_TYPES[parameter.name],
        )
        for parameter in parameters
        if parameter.kind is not inspect.Parameter.VAR_POSITIONAL
    ]
    return SimpleNamespace(name=name, inputs=inputs)


class FakeMethod:
    def __init__(self, instance: "FakeInstance", name: str):
        self.contract = instance
        self.name = name

    @property
    def abis(self):
        return [_method_abi(self.name, getattr(self.contract.state, self.name))]

    def encode_input(self, *args) -> Calldata:
        function = getattr(self.contract.state, self.name)
        try:
            inspect.signature(function).bind(None, *args)  # sender first
        except TypeError:
            raise ApeException(f"{self.name} does not take {len(args)} argument(s)")
        return Calldata(self.name, args)

    def __call__(self, *args, sender=None):
        function = getattr(self.contract.state, self.name)
        if sender is None:
            return function(*args)

        chain = self.contract.chain
        if self.name in chain.forced_reverts:
            revert(f"{self.name} reverted")
        function(sender.address, *args)
        chain.calls.append((self.contract.contract_type.name, self.name, sender.address))
        return chain.mine()


class FakeInstance:
    def __init__(self, chain: FakeChain, contract_type: str, state: FakeContract, receipt=None):
        self.chain = chain
        self.contract_type = SimpleNamespace(name=contract_type, abi=[])
        self.state = state
        self.address = state.address
        self.receipt = receipt

    def __getattr__(self, name):
        if name.startswith("_") or not callable(getattr(self.state, name, None)):
            raise AttributeError(f"{self.contract_type.name} has no method {name}")
        return FakeMethod(self, name)


class FakeContainer:
    def __init__(self, chain: FakeChain, contract_type: str, libraries=None):
        self.chain = chain
        self.contract_type = SimpleNamespace(name=contract_type, abi=[])
        self.libraries = dict(libraries or dict())

    def at(self, address: str) -> FakeInstance:
        return FakeInstance(self.chain, self.contract_type.name, self.chain.contracts[address])


class FakeArtifacts:
    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.linked_types = dict()

    def get(self, contract_type: str) -> FakeContainer:
        return FakeContainer(self.chain, contract_type)

    def linked(self, contract_type: str, libraries) -> FakeContainer:
        self.linked_types[contract_type] = dict(libraries)
        return FakeContainer(self.chain, contract_type, libraries)


class FakeAccount:
    def __init__(self, chain: FakeChain, address: str):
        self.chain = chain
        self.address = address
        self.autosign = False

    def set_autosign(self, enabled: bool):
        self.autosign = enabled

    def deploy(self, container: FakeContainer, *args, publish: bool = False) -> FakeInstance:
        state = self.chain.deploy(
            container.contract_type.name, args, deployer=self.address, libraries=container.libraries
        )
        return FakeInstance(
            self.chain, container.contract_type.name, state, receipt=self.chain.mine()
        )


# Fixtures


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def artifacts(chain):
    return FakeArtifacts(chain)


@pytest.fixture
def deployer_account(chain):
    return FakeAccount(chain, to_checksum_address("0x" + "d" * 40))


@pytest.fixture
def treasury():
    return to_checksum_address("0x" + "7" * 40)


@pytest.fixture
def market_config():
    return _load_yaml(LOCAL_PARAMS_FILEPATH)


@pytest.fixture
def market_params(market_config):
    return MarketParameters.from_config(market_config)


@pytest.fixture
def context(deployer_account, treasury, market_params):
    return DeploymentContext(
        accounts={"deployer": deployer_account.address, "treasury": treasury},
        constants=market_params.constants,
    )


@pytest.fixture
def deployer(context, artifacts, deployer_account):
    return Deployer(context=context, artifacts=artifacts, account=deployer_account, autosign=True)


@pytest.fixture
def orchestrator(market_params, deployer_account, treasury, artifacts):
    return Orchestrator(
        params=market_params,
        account=deployer_account,
        treasury=treasury,
        artifacts=artifacts,
        autosign=True,
    )


@pytest.fixture
def deployed(orchestrator):
    return orchestrator.run()
