import typing
from pathlib import Path
from typing import Any, List, Optional, Sequence, Set

from ape import networks
from ape.api import AccountAPI
from ape.cli.choices import select_account

from lending_deployment.artifacts import ProjectArtifacts
from lending_deployment.confirm import _continue
from lending_deployment.constants import DEPLOYER, IMPLEMENTATION_SUFFIX, TREASURY, DeploymentStage
from lending_deployment.context import DeploymentContext
from lending_deployment.errors import (
    DeploymentError,
    DuplicateNameError,
    PlanError,
    UnknownNameError,
    UnresolvedLibraryError,
)
from lending_deployment.ownership import OwnershipHandoff
from lending_deployment.params import (
    Deployer,
    MarketParameters,
    VariableContext,
    _process_raw_value,
    referenced_contracts,
)
from lending_deployment.plan import market_plan
from lending_deployment.registry import RecordKind
from lending_deployment.smoke import (
    DEFAULT_DEPOSIT_AMOUNT,
    DEFAULT_DEPOSIT_ROUNDS,
    DEFAULT_FLASH_LOAN_AMOUNT,
    SmokeTest,
)
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
from lending_deployment.utils import _load_yaml, check_plugins, validate_config
from lending_deployment.wiring import CallSpec, ConfigurationWirer, RoleKind


def _describe(index: int, step: Any) -> str:
    return f"step {index} ({type(step).__name__} in {step.stage.name})"


class Orchestrator:
    """
    Runs a deployment plan against a single network, one confirmed step at a
    time. The whole plan is checked before the first transaction is sent; after
    that the first failure halts the run where it is.
    """

    def __init__(
        self,
        params: MarketParameters,
        account: Optional[AccountAPI] = None,
        treasury: Optional[str] = None,
        artifacts: Optional[ProjectArtifacts] = None,
        plan: Optional[Sequence[Any]] = None,
        autosign: bool = False,
        verify: bool = False,
    ):
        if account is None:
            account = select_account()
        self.params = params
        self.plan = list(market_plan() if plan is None else plan)
        self.registry_filepath = None

        self.context = DeploymentContext(
            accounts={DEPLOYER: account.address, TREASURY: treasury or account.address},
            constants=params.constants,
        )
        self.deployer = Deployer(
            context=self.context,
            artifacts=artifacts,
            account=account,
            autosign=autosign,
            verify=verify,
        )
        self.variables = VariableContext(
            contract_names=self._contract_names(),
            contract_name="plan",
            constants=params.constants,
        )
        self.wirer = ConfigurationWirer(self.context, self.deployer, self.variables)
        self.ownership = OwnershipHandoff(self.context, self.wirer)
        self._handlers = {
            Deploy: self._deploy,
            DeployProxy: self._deploy_proxy,
            AttachProxy: self._attach_proxy,
            Configure: self._configure,
            Assign: self._assign,
            Handoff: self._handoff,
            LendOwnership: self._lend_ownership,
            InitReserves: self._init_reserves,
            RunSmokeTest: self._run_smoke_test,
        }

    @classmethod
    def from_yaml(
        cls,
        filepath: Path,
        account: Optional[AccountAPI] = None,
        treasury: Optional[str] = None,
        autosign: bool = False,
        verify: bool = False,
    ) -> "Orchestrator":
        check_plugins()
        config = _load_yaml(filepath)
        registry_filepath = validate_config(config=config)
        params = MarketParameters.from_config(config)
        orchestrator = cls(
            params=params, account=account, treasury=treasury, autosign=autosign, verify=verify
        )
        orchestrator.registry_filepath = registry_filepath
        params.validate(orchestrator.deployer.artifacts, orchestrator.context)
        orchestrator._print_deployment_info(filepath)

        if not autosign:
            # Confirms the start of the deployment.
            _continue()
        return orchestrator

    def _print_deployment_info(self, filepath: Path) -> None:
        print(
            f"Account: {self.context.deployer}",
            f"Treasury: {self.context.accounts[TREASURY]}",
            f"Config: {filepath}",
            f"Registry: {self.registry_filepath}",
            f"Verify: {self.deployer.verify}",
            f"Steps: {len(self.plan)}",
            f"Ecosystem: {networks.provider.network.ecosystem.name}",
            f"Network: {networks.provider.network.name}",
            f"Chain ID: {networks.provider.network.chain_id}",
            f"Gas Price: {networks.provider.gas_price}",
            sep="\n",
        )

    def _contract_names(self) -> List[str]:
        names = list(self.params.contract_names)
        for step in self.plan:
            for name in self._provides(step):
                if name not in names:
                    names.append(name)
        return names

    #
    # Pre-flight checks
    #

    def validate_plan(self) -> None:
        """Rejects a plan that could not complete, before anything is sent."""
        self._validate_stages()
        self._validate_references()
        self._validate_handoffs()

    def _validate_stages(self) -> None:
        if not self.plan:
            raise PlanError("The deployment plan has no steps.")

        previous = DeploymentStage.INIT
        for index, step in enumerate(self.plan):
            stage = DeploymentStage(step.stage)
            if stage in (DeploymentStage.INIT, DeploymentStage.DONE):
                raise PlanError(f"{_describe(index, step)}: no step may run in {stage.name}")
            if stage not in (previous, previous + 1):
                raise PlanError(f"{_describe(index, step)} cannot follow {previous.name}")
            previous = stage

        if previous != DeploymentStage.SMOKE_TESTED:
            raise PlanError(f"The deployment plan stops at {previous.name}")

    def _validate_references(self) -> None:
        registered: Set[str] = set()
        for index, step in enumerate(self.plan):
            if isinstance(step, Deploy) and step.libraries:
                missing = [name for name in step.libraries if name not in registered]
                if missing:
                    raise UnresolvedLibraryError(step.deployed_name, missing)

            missing = sorted(self._references(step) - registered)
            if missing:
                raise UnknownNameError(
                    f"{_describe(index, step)} uses {', '.join(missing)} before deployment"
                )

            for name in self._provides(step):
                if name in registered:
                    raise DuplicateNameError(f"{_describe(index, step)} deploys {name} again")
                registered.add(name)

    def _validate_handoffs(self) -> None:
        handed_off = dict()
        pool_admin = None
        for index, step in enumerate(self.plan):
            for target in self._privileged_targets(step):
                if target in handed_off:
                    raise PlanError(
                        f"{_describe(index, step)} calls {target} after its ownership "
                        f"was handed to {handed_off[target]}"
                    )
            if isinstance(step, InitReserves) and pool_admin is not None:
                raise PlanError(
                    f"{_describe(index, step)} needs the pool admin role, "
                    f"already handed to {pool_admin}"
                )
            if isinstance(step, Handoff):
                assignment = step.assignment
                if assignment.role is RoleKind.OWNER:
                    handed_off[assignment.target] = assignment.grantee
                elif assignment.role is RoleKind.POOL_ADMIN:
                    pool_admin = assignment.grantee

    def _call_references(self, call: CallSpec) -> Set[str]:
        args = _process_raw_value(list(call.args), self.variables)
        return {call.target} | referenced_contracts(args)

    def _references(self, step: Any) -> Set[str]:
        """Names that must be registered before ``step`` runs."""
        if isinstance(step, (Deploy, DeployProxy)):
            return self.params.references(step.name)
        if isinstance(step, AttachProxy):
            return {step.provider, step.implementation}
        if isinstance(step, Configure):
            return self._call_references(step.call)
        if isinstance(step, (Assign, Handoff)):
            return self._call_references(step.assignment.as_call())
        if isinstance(step, LendOwnership):
            references = {step.target} | referenced_contracts(
                _process_raw_value(step.borrower, self.variables)
            )
            for call in (*step.calls, step.hand_back):
                references |= self._call_references(call)
            return references
        if isinstance(step, InitReserves):
            return {step.target} | self.params.reserve_references()
        if isinstance(step, RunSmokeTest):
            return {step.pool, step.asset, step.flash_loan}
        raise PlanError(f"Unknown deployment step {step!r}")

    @staticmethod
    def _provides(step: Any) -> List[str]:
        """Names registered by ``step``."""
        if isinstance(step, Deploy):
            return [step.deployed_name]
        if isinstance(step, DeployProxy):
            return [f"{step.name}{IMPLEMENTATION_SUFFIX}", step.name]
        if isinstance(step, AttachProxy):
            return [step.name]
        return []

    @staticmethod
    def _privileged_targets(step: Any) -> List[str]:
        """Contracts that ``step`` calls with the deployer's privileges."""
        if isinstance(step, Configure):
            return [step.call.target]
        if isinstance(step, (Assign, Handoff)):
            return [step.assignment.target]
        if isinstance(step, AttachProxy):
            return [step.provider]
        if isinstance(step, LendOwnership):
            return [step.target, step.hand_back.target, *(call.target for call in step.calls)]
        if isinstance(step, InitReserves):
            return [step.target]
        return []

    #
    # Driver
    #

    def run(self) -> DeploymentContext:
        """Executes the plan from an empty registry and returns the run's context."""
        self.validate_plan()

        current = None
        try:
            for step in self.plan:
                if step.stage != current:
                    if current is not None:
                        self._reach(current)
                    print(f"\n--- {DeploymentStage(step.stage).name} ---")
                    current = DeploymentStage(step.stage)
                self._handlers[type(step)](step)
        except DeploymentError:
            print(
                f"\nDeployment halted during {current.name} "
                f"with {len(self.context.registry)} contract(s) deployed."
            )
            raise

        self._reach(current)
        self._reach(DeploymentStage.DONE)
        return self.context

    def _reach(self, stage: DeploymentStage) -> None:
        self.context.stage = stage
        print(f"(i) Reached {stage.name}")

    def finalize(self, chain_id: Optional[int] = None) -> None:
        """Writes the registry artifact of a completed run."""
        if self.context.stage != DeploymentStage.DONE:
            raise PlanError(f"Cannot publish a run stopped at {self.context.stage.name}")
        if self.registry_filepath is None:
            raise PlanError("No registry file configured for this deployment.")
        if chain_id is None:
            chain_id = networks.provider.network.chain_id
        self.deployer.finalize(registry_filepath=self.registry_filepath, chain_id=chain_id)

    #
    # Step handlers
    #

    def _deploy(self, step: Deploy) -> None:
        kind = RecordKind.PROXY_IMPLEMENTATION if step.implementation else RecordKind.PLAIN
        self.deployer.deploy_plain(
            name=step.deployed_name,
            args=self.params.constructor_args(step.name, self.context),
            contract_type=self.params.contract_type(step.name),
            libraries=step.libraries,
            kind=kind,
        )

    def _deploy_proxy(self, step: DeployProxy) -> None:
        self.deployer.deploy_behind_proxy(
            name=step.name,
            args=self.params.constructor_args(step.name, self.context),
            initializer=self.params.initializer(step.name, self.context),
            contract_type=self.params.contract_type(step.name),
        )

    def _attach_proxy(self, step: AttachProxy) -> None:
        provider = self.context.contract(step.provider)
        implementation = self.context.address(step.implementation)
        self.deployer.transact(getattr(provider, step.setter), implementation)
        address = getattr(provider, step.getter)()
        self.deployer.attach_proxy(step.name, address, self.params.contract_type(step.name))

    def _configure(self, step: Configure) -> None:
        self.wirer.apply(step.call)

    def _assign(self, step: Assign) -> None:
        self.wirer.assign(step.assignment)

    def _handoff(self, step: Handoff) -> None:
        assignment = step.assignment
        self.ownership.transfer_ownership(assignment.target, assignment.grantee, assignment.role)

    def _lend_ownership(self, step: LendOwnership) -> None:
        with self.ownership.lend(step.target, step.borrower, step.hand_back):
            for call in step.calls:
                self.wirer.apply(call)

    def _init_reserves(self, step: InitReserves) -> None:
        reserves = self.params.reserves(self.context)
        print(f"\nInitializing {len(reserves)} reserve(s) through {step.target}.{step.method}")
        configurator = self.context.contract(step.target)
        self.deployer.transact(
            getattr(configurator, step.method), [reserve.as_struct() for reserve in reserves]
        )

    def _run_smoke_test(self, step: RunSmokeTest) -> None:
        constants: typing.Dict[str, Any] = self.params.constants
        smoke_test = SmokeTest(
            transactor=self.deployer,
            pool=step.pool,
            asset=step.asset,
            flash_loan=step.flash_loan,
            deposit_amount=constants.get("SMOKE_DEPOSIT_AMOUNT", DEFAULT_DEPOSIT_AMOUNT),
            deposit_rounds=constants.get("SMOKE_DEPOSIT_ROUNDS", DEFAULT_DEPOSIT_ROUNDS),
            flash_loan_amount=constants.get("FLASH_LOAN_AMOUNT", DEFAULT_FLASH_LOAN_AMOUNT),
        )
        smoke_test.run(self.context)
